import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from portal.db import db
from portal.db.models import VM, DeploymentOutcome, K8sCluster, K8sWorker
from portal.db.models.outcome import OutcomeStatus
from portal.db.models.vm import WorkloadState
from portal.exceptions import StoreUnavailable, WorkloadNotFound
from portal.grid.workloads import LoadedCluster, LoadedDeployment, LoadedNetwork
from portal.services.messages import DeploymentSpec, K8sIntent, VMIntent, WorkloadKind
from portal.services.resource_calculator import ResourceCalculator

logger = logging.getLogger(__name__)


class WorkloadService:
    """Portal store access for vm and kubernetes workload rows and their outcomes"""

    @staticmethod
    def names_available(kind: WorkloadKind, names: List[str]) -> bool:
        """
        Names are unique per kind across all users, pending workloads included.
        Kubernetes master and worker names share one namespace.
        """
        try:
            if kind == WorkloadKind.VM:
                return VM.query.filter(VM.name.in_(names)).first() is None

            if K8sCluster.query.filter(K8sCluster.master_name.in_(names)).first():
                return False
            return K8sWorker.query.filter(K8sWorker.name.in_(names)).first() is None
        except SQLAlchemyError as e:
            raise StoreUnavailable("Failed to check name availability") from e

    @staticmethod
    def create_pending_vm(user_id: int, intent: VMIntent) -> VM:
        """Create the vm row in progress. Raises IntegrityError if the name was taken meanwhile"""
        resources = ResourceCalculator.resources(intent.resources, intent.public)
        vm = VM(
            user_id=user_id,
            name=intent.name,
            resources=intent.resources.value,
            public=intent.public,
            state=WorkloadState.IN_PROGRESS.value,
            cru=resources.cru,
            mru=resources.mru * 1024,
            sru=resources.sru,
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc)
        )
        WorkloadService._add(vm)
        return vm

    @staticmethod
    def create_pending_k8s(user_id: int, intent: K8sIntent) -> K8sCluster:
        cluster = K8sCluster(
            user_id=user_id,
            master_name=intent.master_name,
            resources=intent.resources.value,
            public=intent.public,
            region=intent.region,
            state=WorkloadState.IN_PROGRESS.value,
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc)
        )
        for position, worker in enumerate(intent.workers):
            cluster.workers.append(K8sWorker(
                position=position,
                name=worker.name,
                resources=worker.resources.value
            ))
        WorkloadService._add(cluster)
        return cluster

    @staticmethod
    def _add(row) -> None:
        try:
            db.session.add(row)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to create workload") from e

    @staticmethod
    def set_request_id(row, request_id: str) -> None:
        try:
            row.request_id = request_id
            row.updated_at = datetime.now(timezone.utc)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to store request id") from e

    @staticmethod
    def delete(row) -> None:
        try:
            db.session.delete(row)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to delete workload") from e

    @staticmethod
    def _pending_row(kind: WorkloadKind, user_id: int, name: str):
        model, column = (VM, VM.name) if kind == WorkloadKind.VM else (K8sCluster, K8sCluster.master_name)
        return model.query.filter(
            column == name,
            model.user_id == user_id,
            model.state == WorkloadState.IN_PROGRESS.value
        ).first()

    @staticmethod
    def outcome_for(request_id: str) -> Optional[DeploymentOutcome]:
        try:
            return DeploymentOutcome.query.filter_by(request_id=request_id).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable("Failed to read deployment outcome") from e

    @staticmethod
    def persist_vm_outcome(spec: DeploymentSpec, network: LoadedNetwork, deployment: LoadedDeployment) -> DeploymentOutcome:
        """Move the pending vm to created and record the successful outcome"""
        machine = deployment.vms[0] if deployment.vms else None
        network_contract_id = network.node_deployment_id.get(spec.node_id)

        def update(vm: VM):
            vm.node_id = spec.node_id
            vm.contract_id = deployment.contract_id
            vm.network_contract_id = network_contract_id
            if machine:
                vm.public_ip = machine.public_ip
                vm.ygg_ip = machine.planetary_ip
                vm.mycelium_ip = machine.mycelium_ip

        return WorkloadService._persist_success(
            spec,
            update,
            contract_id=deployment.contract_id,
            network_contract_id=network_contract_id,
            public_ip=machine.public_ip if machine else None,
            internal_ip=machine.planetary_ip if machine else None
        )

    @staticmethod
    def persist_k8s_outcome(spec: DeploymentSpec, network: LoadedNetwork, loaded: LoadedCluster) -> DeploymentOutcome:
        network_contract_id = network.node_deployment_id.get(spec.node_id)

        def update(cluster: K8sCluster):
            cluster.node_id = spec.node_id
            cluster.contract_id = loaded.contract_id
            cluster.network_contract_id = network_contract_id
            cluster.public_ip = loaded.master.public_ip
            cluster.ygg_ip = loaded.master.planetary_ip
            cluster.mycelium_ip = loaded.master.mycelium_ip

            by_name = {w.name: w for w in loaded.workers}
            for worker in cluster.workers:
                machine = by_name.get(worker.name)
                if machine:
                    worker.ygg_ip = machine.planetary_ip
                    worker.mycelium_ip = machine.mycelium_ip

        return WorkloadService._persist_success(
            spec,
            update,
            contract_id=loaded.contract_id,
            network_contract_id=network_contract_id,
            public_ip=loaded.master.public_ip,
            internal_ip=loaded.master.planetary_ip
        )

    @staticmethod
    def _persist_success(spec: DeploymentSpec, update, **fields) -> DeploymentOutcome:
        try:
            existing = DeploymentOutcome.query.filter_by(request_id=spec.request_id).first()
            if existing:
                return existing

            row = WorkloadService._pending_row(spec.kind, spec.user_id, spec.name)
            if row is None:
                logger.warning("No pending %s row for '%s', recording outcome only", spec.kind.value, spec.name)
            else:
                update(row)
                row.state = WorkloadState.CREATED.value
                row.request_id = spec.request_id
                row.updated_at = datetime.now(timezone.utc)

            outcome = DeploymentOutcome(
                request_id=spec.request_id,
                user_id=spec.user_id,
                kind=spec.kind.value,
                name=spec.name,
                status=OutcomeStatus.SUCCEEDED.value,
                **fields
            )
            db.session.add(outcome)
            db.session.commit()
            return outcome

        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to persist deployment outcome") from e

    @staticmethod
    def record_failure(kind: WorkloadKind, request_id: str, user_id: int, name: str,
                       error_kind: str, message: str) -> DeploymentOutcome:
        """
        Drop the pending workload so its name is free again and record the failed outcome.
        Calling it again for the same request returns the first outcome.
        """
        try:
            existing = DeploymentOutcome.query.filter_by(request_id=request_id).first()
            if existing:
                return existing

            row = WorkloadService._pending_row(kind, user_id, name)
            if row is not None:
                db.session.delete(row)

            outcome = DeploymentOutcome(
                request_id=request_id,
                user_id=user_id,
                kind=kind.value,
                name=name,
                status=OutcomeStatus.FAILED.value,
                error_kind=error_kind,
                error_message=message
            )
            db.session.add(outcome)
            db.session.commit()
            return outcome

        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to record deployment failure") from e

    @staticmethod
    def list_vms(user_id: int) -> List[VM]:
        return VM.query.filter_by(user_id=user_id).order_by(VM.created_at.desc()).all()

    @staticmethod
    def get_vm(user_id: int, vm_id: int) -> VM:
        """Only deployed vms can be fetched or deleted"""
        vm = VM.query.filter_by(id=vm_id, user_id=user_id, state=WorkloadState.CREATED.value).first()
        if not vm:
            raise WorkloadNotFound("VM not found")
        return vm

    @staticmethod
    def created_vms(user_id: int) -> List[VM]:
        return VM.query.filter_by(user_id=user_id, state=WorkloadState.CREATED.value).all()

    @staticmethod
    def list_k8s(user_id: int) -> List[K8sCluster]:
        return K8sCluster.query.filter_by(user_id=user_id).order_by(K8sCluster.created_at.desc()).all()

    @staticmethod
    def get_k8s(user_id: int, cluster_id: int) -> K8sCluster:
        cluster = K8sCluster.query.filter_by(
            id=cluster_id,
            user_id=user_id,
            state=WorkloadState.CREATED.value
        ).first()
        if not cluster:
            raise WorkloadNotFound("Kubernetes cluster not found")
        return cluster

    @staticmethod
    def created_k8s(user_id: int) -> List[K8sCluster]:
        return K8sCluster.query.filter_by(user_id=user_id, state=WorkloadState.CREATED.value).all()
