import logging
import secrets
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from portal.exceptions import NoSuitableNode, ServiceException, StoreUnavailable, StreamUnavailable
from portal.grid import workloads
from portal.grid.client import GridClient
from portal.services.messages import DeploymentSpec, K8sIntent, RequestRecord, VMIntent, WorkloadKind
from portal.services.notification_service import NotificationService
from portal.services.quota_service import QuotaService
from portal.services.resource_calculator import ResourceCalculator
from portal.services.stream_service import StreamService
from portal.services.workload_service import WorkloadService

logger = logging.getLogger(__name__)

DISK_NAME = 'disk'
DISK_MOUNT_POINT = '/disk'


class RequestConsumer:
    """
    Turns request records of one workload kind into deployment specs.

    Every record is bound to a grid node and expanded into the network and
    workload descriptors the batch deployer sends to the grid. A request is
    acknowledged only once its spec is on the deployment stream, or once its
    failure has been recorded and notified.
    """

    def __init__(self, app, kind: WorkloadKind, stream_service: StreamService, grid: GridClient,
                 quota_service: QuotaService, notification_service: NotificationService,
                 farm_ids: Iterable[int], max_workers: int = 8):
        self.app = app
        self.kind = kind
        self.streams = stream_service
        self.grid = grid
        self.quota = quota_service
        self.notifications = notification_service
        self.farm_ids = sorted(farm_ids)
        self.max_workers = max_workers

    def consume(self, pending: bool = False) -> int:
        """
        Handle every request currently on the stream, one thread per record.
        Records left unacknowledged by an earlier tick are retried before new ones.
        :param pending: only re-read records delivered before but never acknowledged
        :return: number of records acknowledged
        """
        stream = self.kind.request_stream
        try:
            entries = self.streams.read(stream, pending=True)
            if not pending:
                entries += self.streams.read(stream)
        except StreamUnavailable as e:
            logger.error("Skipping %s tick: %s", stream, e)
            return 0

        if not entries:
            return 0

        logger.info("Handling %d request(s) from %s", len(entries), stream)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            acked = list(pool.map(lambda entry: self._handle(*entry), entries))
        return sum(acked)

    def _handle(self, request_id: str, message) -> bool:
        with self.app.app_context():
            try:
                return self._process(request_id, message)
            except Exception:
                logger.exception("Request %s left pending", request_id)
                return False

    def _process(self, request_id: str, message) -> bool:
        stream = self.kind.request_stream

        if not isinstance(message, RequestRecord) or message.kind != self.kind:
            logger.error("Dropping unexpected %s message %s on %s", message.type.value, request_id, stream)
            return self._ack(request_id)

        # a redelivered request may already be past this stage
        try:
            if self.streams.was_appended(self.kind.deploy_stream, request_id):
                logger.info("Request %s was already handed over", request_id)
                return self._ack(request_id)
            outcome = WorkloadService.outcome_for(request_id)
        except (StreamUnavailable, StoreUnavailable) as e:
            logger.error("Leaving %s pending: %s", request_id, e)
            return False

        if outcome is not None:
            if outcome.succeeded:
                return self._ack(request_id)
            return self._fail(request_id, message, outcome.error_kind, outcome.error_message)

        try:
            spec = self.build_spec(request_id, message)
        except ServiceException as e:
            return self._fail(request_id, message, type(e).__name__, str(e))

        try:
            if self.streams.append_once(self.kind.deploy_stream, spec, dedup_key=request_id) is None:
                logger.info("Deployment spec for %s already exists", request_id)
        except StreamUnavailable as e:
            logger.error("Failed to hand over %s: %s", request_id, e)
            return False

        logger.info("Request %s for %s '%s' bound to node %s", request_id, self.kind.value, spec.name, spec.node_id)
        return self._ack(request_id)

    def _ack(self, request_id: str) -> bool:
        try:
            self.streams.ack(self.kind.request_stream, request_id)
            return True
        except StreamUnavailable as e:
            logger.error("Failed to acknowledge %s: %s", request_id, e)
            return False

    def _fail(self, request_id: str, record: RequestRecord, error_kind: str, reason: str) -> bool:
        logger.warning("Request %s for %s '%s' failed: %s", request_id, self.kind.value, record.name, reason)

        try:
            outcome = WorkloadService.record_failure(self.kind, request_id, record.user_id, record.name,
                                                     error_kind, reason)
        except StoreUnavailable as e:
            logger.error("Failed to record failure of %s: %s", request_id, e)
            return False

        if outcome.succeeded:
            logger.warning("Request %s is already deployed, keeping its quota", request_id)
            return self._ack(request_id)

        vms, ips = ResourceCalculator.intent_quota(record.intent)
        try:
            self.quota.refund(request_id, record.user_id, vms, ips)
        except (ServiceException, TimeoutError) as e:
            logger.error("Failed to refund %s: %s", request_id, e)

        try:
            self.notifications.notify(record.user_id, request_id, self.kind.value, record.name, outcome.error_kind)
        except StoreUnavailable as e:
            logger.error("Failed to notify failure of %s: %s", request_id, e)
            return False

        return self._ack(request_id)

    def build_spec(self, request_id: str, record: RequestRecord) -> DeploymentSpec:
        intent = record.intent
        node_id = self.select_node(intent)

        network = workloads.Network(
            name=self.kind.network_name(intent.name),
            nodes=[node_id],
            mycelium_keys={node_id: workloads.random_mycelium_key()}
        )

        ssh_keys = "\n".join(key for key in (record.ssh_key, record.admin_ssh_key) if key)
        if self.kind == WorkloadKind.VM:
            workload = self._vm_deployment(intent, node_id, network.name, ssh_keys)
        else:
            workload = self._k8s_cluster(intent, node_id, network.name, ssh_keys)

        vms, ips = ResourceCalculator.intent_quota(intent)
        return DeploymentSpec(
            kind=self.kind,
            request_id=request_id,
            user_id=record.user_id,
            name=intent.name,
            node_id=node_id,
            vms=vms,
            public_ips=ips,
            network=network,
            workload=workload
        )

    def select_node(self, intent) -> int:
        """First node that can host the whole intent, NoSuitableNode if none can"""
        total = ResourceCalculator.intent_resources(intent)
        node_filter = workloads.NodeFilter(
            free_mru=ResourceCalculator.gib_to_bytes(total.mru),
            free_sru=ResourceCalculator.gib_to_bytes(total.sru),
            free_ips=total.ips,
            farm_ids=self.farm_ids,
            region=getattr(intent, 'region', None)
        )

        nodes = self.grid.filter_nodes(node_filter)
        if not nodes:
            raise NoSuitableNode()
        return nodes[0].node_id

    @staticmethod
    def _vm_deployment(intent: VMIntent, node_id: int, network_name: str, ssh_keys: str) -> workloads.Deployment:
        resources = ResourceCalculator.resources(intent.resources, intent.public)
        vm = workloads.VM(
            name=intent.name,
            node_id=node_id,
            network_name=network_name,
            cpu=resources.cru,
            memory_mb=resources.mru * 1024,
            public_ip=intent.public,
            planetary=True,
            mycelium_ip_seed=workloads.random_mycelium_ip_seed(),
            mounts=[workloads.Mount(disk_name=DISK_NAME, mount_point=DISK_MOUNT_POINT)],
            env_vars={'SSH_KEY': ssh_keys}
        )
        return workloads.Deployment(
            name=intent.name,
            node_id=node_id,
            network_name=network_name,
            solution_type=f"vm/{intent.name}",
            disks=[workloads.Disk(name=DISK_NAME, size_gb=resources.sru)],
            vms=[vm]
        )

    @staticmethod
    def _k8s_cluster(intent: K8sIntent, node_id: int, network_name: str, ssh_keys: str) -> workloads.K8sCluster:
        def node(name, size, public):
            resources = ResourceCalculator.resources(size, public)
            return workloads.K8sNode(
                name=name,
                node_id=node_id,
                network_name=network_name,
                cpu=resources.cru,
                memory_mb=resources.mru * 1024,
                disk_size_gb=resources.sru,
                public_ip=public,
                planetary=True,
                mycelium_ip_seed=workloads.random_mycelium_ip_seed()
            )

        return workloads.K8sCluster(
            master=node(intent.master_name, intent.resources, intent.public),
            network_name=network_name,
            token=secrets.token_hex(16),
            ssh_key=ssh_keys,
            solution_type=f"k8s/{intent.master_name}",
            workers=[node(w.name, w.resources, False) for w in intent.workers]
        )
