import logging
from contextlib import ExitStack
from typing import List, Optional

from redis import Redis
from sqlalchemy.exc import IntegrityError

from portal.exceptions import NameConflict, SSHKeyMissing, StoreUnavailable, StreamUnavailable, ValidationError
from portal.services.messages import K8sIntent, RequestRecord, VMIntent, WorkerIntent, WorkloadKind
from portal.services.quota_service import QuotaService
from portal.services.resource_calculator import ResourceCalculator, SizeClass
from portal.services.stream_service import StreamService
from portal.services.user_service import UserService
from portal.services.workload_service import WorkloadService
from portal.utils.redis_lock import RedisLock
from portal.utils.validators import parse_bool, require_distinct_names, require_name

logger = logging.getLogger(__name__)


class IntakeService:
    """
    Accepts deployment intents from the API.
    An accepted intent has its quota debited, a pending workload row and a
    record on the request stream; a rejected one changes nothing.
    """

    def __init__(self, stream_service: StreamService, quota_service: QuotaService, redis_client: Redis,
                 admin_ssh_key: str = '', lock_timeout: float = 10):
        self.streams = stream_service
        self.quota = quota_service
        self.redis = redis_client
        self.admin_ssh_key = admin_ssh_key
        self.lock_timeout = lock_timeout

    def enqueue_vm(self, user_id: int, name, resources, public=False):
        require_name(name)
        intent = VMIntent(
            name=name,
            resources=SizeClass.parse(resources),
            public=parse_bool(public, 'public')
        )
        return self._enqueue(WorkloadKind.VM, user_id, intent, [name])

    def enqueue_k8s(self, user_id: int, master_name, resources, public=False,
                    region: Optional[str] = None, workers: Optional[List[dict]] = None):
        require_name(master_name, 'master_name')
        size = SizeClass.parse(resources)

        if region is not None and not isinstance(region, str):
            raise ValidationError("Invalid region", "INVALID_REGION")
        if workers is not None and not isinstance(workers, list):
            raise ValidationError("Invalid workers. Must be a list.", "INVALID_WORKERS")

        worker_intents = []
        for worker in workers or []:
            if not isinstance(worker, dict):
                raise ValidationError("Invalid worker", "INVALID_WORKERS")
            worker_intents.append(WorkerIntent(
                name=require_name(worker.get('name'), 'worker name'),
                resources=SizeClass.parse(worker.get('resources'))
            ))

        names = [master_name] + [w.name for w in worker_intents]
        require_distinct_names(names)

        intent = K8sIntent(
            master_name=master_name,
            resources=size,
            public=parse_bool(public, 'public'),
            region=region or None,
            workers=worker_intents
        )
        return self._enqueue(WorkloadKind.K8S, user_id, intent, names)

    def _enqueue(self, kind: WorkloadKind, user_id: int, intent, names: List[str]):
        user = UserService.get_user_by_id(user_id)
        if not user.has_ssh_key():
            raise SSHKeyMissing()

        vms, ips = ResourceCalculator.intent_quota(intent)

        with ExitStack() as locks:
            # sorted so overlapping requests take their shared names in the same order
            for name in sorted(names):
                locks.enter_context(RedisLock(self.redis, f"intake:{kind.value}:{name}", timeout=self.lock_timeout))

            if not WorkloadService.names_available(kind, names):
                raise NameConflict(intent.name)

            self.quota.debit(user_id, vms, ips)

            try:
                if kind == WorkloadKind.VM:
                    row = WorkloadService.create_pending_vm(user_id, intent)
                else:
                    row = WorkloadService.create_pending_k8s(user_id, intent)
            except IntegrityError:
                self.quota.credit(user_id, vms, ips)
                raise NameConflict(intent.name)
            except StoreUnavailable:
                self.quota.credit(user_id, vms, ips)
                raise

            record = RequestRecord(
                kind=kind,
                user_id=user_id,
                ssh_key=user.ssh_key,
                admin_ssh_key=self.admin_ssh_key,
                intent=intent
            )
            try:
                request_id = self.streams.append(kind.request_stream, record)
            except StreamUnavailable:
                logger.error("Failed to enqueue %s '%s', rolling back", kind.value, intent.name)
                WorkloadService.delete(row)
                self.quota.credit(user_id, vms, ips)
                raise

        WorkloadService.set_request_id(row, request_id)
        logger.info("Enqueued %s '%s' for user %s as %s", kind.value, intent.name, user_id, request_id)
        return row
