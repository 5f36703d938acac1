import logging
import queue
from typing import Dict, List, Optional, Tuple

from portal.exceptions import (
    GridDeployFailed,
    GridError,
    GridNotFound,
    ServiceException,
    StoreUnavailable,
    StreamUnavailable,
)
from portal.grid.client import GridClient
from portal.services.messages import DeploymentSpec, WorkloadKind
from portal.services.notification_service import NotificationService
from portal.services.quota_service import QuotaService
from portal.services.stream_service import StreamService
from portal.services.workload_service import WorkloadService

logger = logging.getLogger(__name__)

# seconds to wait for a completion signal before giving up on the rest of the batch
COMPLETION_TIMEOUT = 30


class BatchDeployer:
    """
    Deploys specs from the deployment streams to the grid in batches.

    Within one batch every network is deployed before any workload, and a
    workload is only attempted when its network succeeded. Outcomes are read
    back from the grid, persisted and notified before the deployment spec is
    acknowledged.
    """

    def __init__(self, app, stream_service: StreamService, grid: GridClient, quota_service: QuotaService,
                 notification_service: NotificationService, batch_size: int = 5):
        self.app = app
        self.streams = stream_service
        self.grid = grid
        self.quota = quota_service
        self.notifications = notification_service
        self.batch_size = batch_size

    def tick(self) -> int:
        return sum(self.deploy_batch(kind) for kind in WorkloadKind)

    def deploy_batch(self, kind: WorkloadKind, pending: bool = False) -> int:
        """
        Deploy up to batch_size specs of one kind.
        Specs left unacknowledged by an earlier tick come first; they are
        finished from grid state when their deployment already went through.
        :param pending: only re-read specs delivered before but never acknowledged
        :return: number of specs acknowledged
        """
        stream = kind.deploy_stream
        try:
            retried = self.streams.read(stream, max_count=self.batch_size, pending=True)
            fresh = []
            if not pending and len(retried) < self.batch_size:
                fresh = self.streams.read(stream, max_count=self.batch_size - len(retried))
        except StreamUnavailable as e:
            logger.error("Skipping %s tick: %s", stream, e)
            return 0

        entries = [(entry_id, spec, True) for entry_id, spec in retried]
        entries += [(entry_id, spec, False) for entry_id, spec in fresh]
        if not entries:
            return 0

        with self.app.app_context():
            acked = 0
            batch = []
            for entry_id, spec, was_delivered in entries:
                if not isinstance(spec, DeploymentSpec) or spec.kind != kind:
                    logger.error("Dropping unexpected %s message %s on %s", spec.type.value, entry_id, stream)
                    acked += self._ack(stream, entry_id)
                    continue

                try:
                    outcome = WorkloadService.outcome_for(spec.request_id)
                except StoreUnavailable as e:
                    logger.error("Leaving %s pending: %s", spec.request_id, e)
                    continue

                if outcome is not None:
                    # redelivered after the outcome was written
                    acked += self._renotify(stream, entry_id, spec, outcome)
                    continue

                if was_delivered:
                    resumed = self._resume(stream, entry_id, spec)
                    if resumed is not None:
                        acked += resumed
                        continue

                batch.append((entry_id, spec))

            if not batch:
                return acked

            logger.info("Deploying batch of %d %s spec(s)", len(batch), kind.value)
            failures = self._deploy(kind, [spec for _, spec in batch])

            completions = queue.Queue(maxsize=len(batch))
            for entry_id, spec in batch:
                completions.put((entry_id, spec, failures.get(spec.request_id)))

            for _ in range(len(batch)):
                try:
                    entry_id, spec, error = completions.get(timeout=COMPLETION_TIMEOUT)
                except queue.Empty:
                    logger.error("Completion signal missing, leaving the rest of the %s batch pending", kind.value)
                    break

                if error is None:
                    acked += self._succeed(stream, entry_id, spec)
                else:
                    acked += self._fail(stream, entry_id, spec, error)

            return acked

    def _deploy(self, kind: WorkloadKind, specs: List[DeploymentSpec]) -> Dict[str, ServiceException]:
        """Run the network batch then the workload batch, returning failures by request id"""
        failures = {}

        try:
            failed_networks = self.grid.network_deployer.batch_deploy([s.network for s in specs])
        except GridError as e:
            logger.error("Network batch failed: %s", e)
            return {s.request_id: GridDeployFailed(f"network deployment failed: {e}") for s in specs}

        ready = []
        for spec in specs:
            reason = failed_networks.get(spec.network.name)
            if reason:
                failures[spec.request_id] = GridDeployFailed(f"network {spec.network.name} failed: {reason}")
            else:
                ready.append(spec)

        if not ready:
            return failures

        deployer = self.grid.deployment_deployer if kind == WorkloadKind.VM else self.grid.k8s_deployer
        try:
            failed_workloads = deployer.batch_deploy([s.workload for s in ready])
        except GridError as e:
            logger.error("%s batch failed: %s", kind.value, e)
            for spec in ready:
                failures[spec.request_id] = GridDeployFailed(f"{kind.value} deployment failed: {e}")
            return failures

        for spec in ready:
            reason = failed_workloads.get(spec.workload.name)
            if reason:
                failures[spec.request_id] = GridDeployFailed(f"{kind.value} {spec.name} failed: {reason}")

        return failures

    def _load(self, spec: DeploymentSpec) -> Tuple:
        """
        Read the deployed network and workload back from the grid.
        Raises GridDeployFailed when the grid reports them missing, GridError when it cannot be reached.
        """
        try:
            network = self.grid.state.load_network(spec.network.name)
            if spec.node_id not in network.node_deployment_id:
                raise GridDeployFailed(f"network {spec.network.name} has no deployment on node {spec.node_id}")

            if spec.kind == WorkloadKind.VM:
                deployment = self.grid.state.load_deployment(spec.node_id, spec.name)
                if not deployment.vms:
                    raise GridDeployFailed(f"deployment {spec.name} has no vm")
                return network, deployment

            return network, self.grid.state.load_k8s(spec.node_id, spec.name)
        except GridNotFound as e:
            raise GridDeployFailed(f"{spec.name} is missing on the grid: {e}") from e

    def _resume(self, stream: str, entry_id: str, spec: DeploymentSpec) -> Optional[int]:
        """
        Finish a spec whose earlier attempt may have reached the grid.
        :return: number of specs acknowledged, None when it has to be deployed again
        """
        try:
            network, workload = self._load(spec)
        except GridDeployFailed:
            return None
        except GridError as e:
            logger.error("Leaving %s pending: %s", spec.request_id, e)
            return 0

        logger.info("Resuming %s '%s' from grid state", spec.kind.value, spec.name)
        return self._persist(stream, entry_id, spec, network, workload)

    def _succeed(self, stream: str, entry_id: str, spec: DeploymentSpec) -> int:
        try:
            network, workload = self._load(spec)
        except GridDeployFailed as e:
            return self._fail(stream, entry_id, spec, e)
        except GridError as e:
            # deployed, but not readable right now
            logger.error("Leaving %s pending: %s", spec.request_id, e)
            return 0

        return self._persist(stream, entry_id, spec, network, workload)

    def _persist(self, stream: str, entry_id: str, spec: DeploymentSpec, network, workload) -> int:
        try:
            if spec.kind == WorkloadKind.VM:
                outcome = WorkloadService.persist_vm_outcome(spec, network, workload)
            else:
                outcome = WorkloadService.persist_k8s_outcome(spec, network, workload)
            self.notifications.notify(spec.user_id, spec.request_id, spec.kind.value, spec.name)
        except StoreUnavailable as e:
            logger.error("Leaving %s pending: %s", spec.request_id, e)
            return 0

        logger.info(
            "Deployed %s '%s' for user %s, contract %s",
            spec.kind.value, spec.name, spec.user_id, outcome.contract_id
        )
        return self._ack(stream, entry_id)

    def _fail(self, stream: str, entry_id: str, spec: DeploymentSpec, error: ServiceException) -> int:
        logger.warning("Deployment of %s '%s' failed: %s", spec.kind.value, spec.name, error)

        try:
            outcome = WorkloadService.record_failure(
                spec.kind, spec.request_id, spec.user_id, spec.name, type(error).__name__, str(error)
            )
        except StoreUnavailable as e:
            logger.error("Leaving %s pending: %s", spec.request_id, e)
            return 0

        if outcome.succeeded:
            logger.warning("%s is already deployed, keeping its quota", spec.request_id)
            return self._ack(stream, entry_id)

        try:
            self.quota.refund(spec.request_id, spec.user_id, spec.vms, spec.public_ips)
        except (ServiceException, TimeoutError) as e:
            logger.error("Failed to refund %s: %s", spec.request_id, e)

        try:
            self.notifications.notify(spec.user_id, spec.request_id, spec.kind.value, spec.name, outcome.error_kind)
        except StoreUnavailable as e:
            logger.error("Leaving %s pending: %s", spec.request_id, e)
            return 0

        return self._ack(stream, entry_id)

    def _renotify(self, stream: str, entry_id: str, spec: DeploymentSpec, outcome) -> int:
        error_kind = None if outcome.succeeded else outcome.error_kind
        try:
            self.notifications.notify(spec.user_id, spec.request_id, spec.kind.value, spec.name, error_kind)
        except StoreUnavailable as e:
            logger.error("Leaving %s pending: %s", spec.request_id, e)
            return 0
        return self._ack(stream, entry_id)

    def _ack(self, stream: str, entry_id: str) -> int:
        try:
            self.streams.ack(stream, entry_id)
            return 1
        except StreamUnavailable as e:
            logger.error("Failed to acknowledge %s on %s: %s", entry_id, stream, e)
            return 0
