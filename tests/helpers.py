from portal.db import db
from portal.services.messages import WorkloadKind


def quota_of(services, user_id):
    """Ledger balance as (vms, public_ips), read past the test session's cache"""
    db.session.expire_all()
    quota = services.quota.read(user_id)
    return quota.vms, quota.public_ips


def run_tick(services):
    """One request consumer tick per kind followed by one batch deployer tick"""
    for kind in WorkloadKind:
        services.consumers[kind].consume()
    services.batch_deployer.tick()
    # the broker commits through its own sessions
    db.session.expire_all()


def enqueue_vm(services, user_id, name, resources='small', public=False):
    return services.intake.enqueue_vm(user_id, name, resources, public).request_id
