import time

from portal.db import db
from portal.db.models import Notification
from portal.exceptions import StreamUnavailable
from portal.services.messages import WorkloadKind
from helpers import enqueue_vm


def wait_for(predicate, timeout=10):
    deadline = time.time() + timeout
    while time.time() < deadline:
        db.session.expire_all()
        if predicate():
            return True
        time.sleep(0.05)
    return False


def test_broker_deploys_until_stopped(services, make_user):
    user_id = make_user(vms=3, ips=1)
    broker = services.broker()
    broker.start()

    try:
        enqueue_vm(services, user_id, "alpha")
        assert wait_for(lambda: Notification.query.count() == 1)
    finally:
        broker.stop(timeout=5)

    assert broker.stopped
    assert Notification.query.one().msg == "Your vm 'alpha' is deployed successfully"


def test_recover_finishes_pending_records(services, make_user, monkeypatch):
    user_id = make_user(vms=3, ips=1)
    enqueue_vm(services, user_id, "alpha")

    ack = services.streams.ack

    def crash(stream, entry_id):
        raise StreamUnavailable()

    # the consumer hands the deployment spec over but dies before acknowledging
    monkeypatch.setattr(services.streams, 'ack', crash)
    services.consumers[WorkloadKind.VM].consume()
    monkeypatch.setattr(services.streams, 'ack', ack)

    services.broker().recover()
    services.batch_deployer.tick()

    assert Notification.query.one().msg == "Your vm 'alpha' is deployed successfully"
    assert services.streams.length(WorkloadKind.VM.deploy_stream) == 1
    assert services.streams.read(WorkloadKind.VM.request_stream, pending=True) == []
