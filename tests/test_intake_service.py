import threading

import pytest
from sqlalchemy.exc import IntegrityError

from portal.db import db
from portal.db.models import VM, K8sCluster, K8sWorker, User
from portal.db.models.vm import WorkloadState
from portal.exceptions import (
    InsufficientQuota,
    InvalidSizeClass,
    NameConflict,
    SSHKeyMissing,
    StreamUnavailable,
    UserNotFound,
    ValidationError,
)
from portal.services.messages import K8sIntent, WorkerIntent, WorkloadKind
from portal.services.resource_calculator import SizeClass
from portal.services.workload_service import WorkloadService
from helpers import quota_of

VM_STREAM = WorkloadKind.VM.request_stream
K8S_STREAM = WorkloadKind.K8S.request_stream


def test_enqueue_vm_debits_and_appends(services, make_user):
    user_id = make_user(vms=3, ips=1)

    vm = services.intake.enqueue_vm(user_id, "alpha", "small", True)

    assert vm.state == WorkloadState.IN_PROGRESS.value
    assert vm.request_id
    assert (vm.cru, vm.mru, vm.sru) == (1, 2048, 25)
    assert quota_of(services, user_id) == (2, 0)
    assert services.streams.length(VM_STREAM) == 1


def test_request_keeps_ssh_key_of_enqueue_time(services, make_user):
    user_id = make_user()
    vm = services.intake.enqueue_vm(user_id, "alpha", "small", False)

    user = db.session.get(User, user_id)
    user.ssh_key = "ssh-ed25519 AAAAchanged"
    db.session.commit()

    [(request_id, record)] = services.streams.read(VM_STREAM)
    assert request_id == vm.request_id
    assert record.ssh_key == "ssh-ed25519 AAAAstudent student@portal"
    assert record.admin_ssh_key == "ssh-ed25519 AAAAadmin admin@portal"


def test_k8s_over_quota_is_rejected(services, make_user):
    user_id = make_user(vms=1, ips=0)

    with pytest.raises(InsufficientQuota) as exc:
        services.intake.enqueue_k8s(
            user_id, "kone", "medium", public=False,
            workers=[{'name': "wone", 'resources': "small"}]
        )

    assert exc.value.kind == 'vm'
    assert quota_of(services, user_id) == (1, 0)
    assert services.streams.length(K8S_STREAM) == 0
    assert K8sCluster.query.count() == 0


def test_enqueue_k8s_creates_workers_in_order(services, make_user):
    user_id = make_user(vms=5, ips=1)

    cluster = services.intake.enqueue_k8s(
        user_id, "kone", "small", public=True, region="europe",
        workers=[{'name': "wtwo", 'resources': "small"}, {'name': "wone", 'resources': "medium"}]
    )

    assert [w.name for w in cluster.workers] == ["wtwo", "wone"]
    assert cluster.region == "europe"
    assert quota_of(services, user_id) == (1, 0)


@pytest.mark.parametrize("name", ["ab", "a" * 21, None, 42])
def test_invalid_names_are_rejected(services, make_user, name):
    user_id = make_user()

    with pytest.raises(ValidationError):
        services.intake.enqueue_vm(user_id, name, "small", False)
    assert services.streams.length(VM_STREAM) == 0


def test_invalid_size_is_rejected(services, make_user):
    user_id = make_user()

    with pytest.raises(InvalidSizeClass):
        services.intake.enqueue_vm(user_id, "alpha", "huge", False)
    with pytest.raises(InvalidSizeClass):
        services.intake.enqueue_k8s(user_id, "kone", "small", workers=[{'name': "wone", 'resources': "tiny"}])

    assert quota_of(services, user_id) == (3, 1)


def test_worker_names_must_be_distinct(services, make_user):
    user_id = make_user(vms=5)

    with pytest.raises(ValidationError):
        services.intake.enqueue_k8s(user_id, "kone", "small", workers=[{'name': "kone", 'resources': "small"}])
    with pytest.raises(ValidationError):
        services.intake.enqueue_k8s(
            user_id, "kone", "small",
            workers=[{'name': "wone", 'resources': "small"}, {'name': "wone", 'resources': "small"}]
        )


def test_missing_ssh_key_is_rejected(services, make_user):
    user_id = make_user(ssh_key="  ")

    with pytest.raises(SSHKeyMissing):
        services.intake.enqueue_vm(user_id, "alpha", "small", False)
    assert quota_of(services, user_id) == (3, 1)


def test_unknown_user_is_rejected(services):
    with pytest.raises(UserNotFound):
        services.intake.enqueue_vm(404, "alpha", "small", False)


def test_taken_name_conflicts(services, make_user):
    user_id = make_user(vms=3)
    other_id = make_user(email="other@example.com", vms=3)

    services.intake.enqueue_vm(user_id, "alpha", "small", False)

    # names are unique across users
    with pytest.raises(NameConflict):
        services.intake.enqueue_vm(other_id, "alpha", "small", False)

    assert quota_of(services, user_id) == (2, 1)
    assert quota_of(services, other_id) == (3, 1)
    assert services.streams.length(VM_STREAM) == 1


def test_k8s_worker_name_conflicts_with_existing_cluster(services, make_user):
    user_id = make_user(vms=6)
    services.intake.enqueue_k8s(user_id, "kone", "small", workers=[{'name': "wone", 'resources': "small"}])

    with pytest.raises(NameConflict):
        services.intake.enqueue_k8s(user_id, "ktwo", "small", workers=[{'name': "wone", 'resources': "small"}])


def test_concurrent_same_name_is_accepted_once(app, services, make_user):
    user_id = make_user(vms=3, ips=1)
    barrier = threading.Barrier(2)
    results = []

    def enqueue():
        with app.app_context():
            barrier.wait()
            try:
                services.intake.enqueue_vm(user_id, "gamma", "small", False)
                results.append(201)
            except NameConflict:
                results.append(400)

    threads = [threading.Thread(target=enqueue) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [201, 400]
    assert quota_of(services, user_id) == (2, 1)
    assert services.streams.length(VM_STREAM) == 1
    assert VM.query.filter_by(name="gamma").count() == 1


def test_stream_failure_rolls_back(services, make_user, monkeypatch):
    user_id = make_user(vms=3, ips=1)

    def broken(stream, message):
        raise StreamUnavailable()

    monkeypatch.setattr(services.streams, 'append', broken)

    with pytest.raises(StreamUnavailable):
        services.intake.enqueue_vm(user_id, "alpha", "small", True)

    assert quota_of(services, user_id) == (3, 1)
    assert VM.query.filter_by(name="alpha").first() is None


def test_concurrent_clusters_sharing_a_worker_name_are_accepted_once(app, services, make_user):
    user_id = make_user(vms=6, ips=0)
    barrier = threading.Barrier(2)
    results = []

    def enqueue(master_name):
        with app.app_context():
            barrier.wait()
            try:
                services.intake.enqueue_k8s(
                    user_id, master_name, "small", workers=[{'name': "shared", 'resources': "small"}]
                )
                results.append(201)
            except NameConflict:
                results.append(400)

    threads = [threading.Thread(target=enqueue, args=(name,)) for name in ("kone", "ktwo")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [201, 400]
    assert K8sWorker.query.filter_by(name="shared").count() == 1
    assert quota_of(services, user_id) == (4, 0)
    assert services.streams.length(K8S_STREAM) == 1


def test_worker_names_are_unique_in_the_store(services, make_user):
    user_id = make_user(vms=6)
    services.intake.enqueue_k8s(user_id, "kone", "small", workers=[{'name': "shared", 'resources': "small"}])

    intent = K8sIntent(
        master_name="ktwo",
        resources=SizeClass.SMALL,
        public=False,
        region=None,
        workers=[WorkerIntent(name="shared", resources=SizeClass.SMALL)]
    )
    with pytest.raises(IntegrityError):
        WorkloadService.create_pending_k8s(user_id, intent)
