import threading

import pytest

from portal.exceptions import InsufficientQuota, ValidationError
from helpers import quota_of


def test_debit_takes_slots(services, make_user):
    user_id = make_user(vms=3, ips=1)

    services.quota.debit(user_id, 1, 1)

    assert quota_of(services, user_id) == (2, 0)


def test_debit_fails_without_partial_change(services, make_user):
    user_id = make_user(vms=1, ips=0)

    with pytest.raises(InsufficientQuota) as exc:
        services.quota.debit(user_id, 3, 0)
    assert exc.value.kind == 'vm'

    with pytest.raises(InsufficientQuota) as exc:
        services.quota.debit(user_id, 1, 1)
    assert exc.value.kind == 'ip'

    assert quota_of(services, user_id) == (1, 0)


def test_user_without_quota_has_none(app, services):
    from portal.db import db
    from portal.db.models import User

    user = User(email='empty@example.com', ssh_key='ssh-ed25519 AAAA')
    db.session.add(user)
    db.session.commit()

    assert quota_of(services, user.id) == (0, 0)
    with pytest.raises(InsufficientQuota):
        services.quota.debit(user.id, 1, 0)

    services.quota.credit(user.id, 2, 1)
    assert quota_of(services, user.id) == (2, 1)


def test_negative_amounts_are_rejected(services, make_user):
    user_id = make_user()

    with pytest.raises(ValidationError):
        services.quota.debit(user_id, -1, 0)
    with pytest.raises(ValidationError):
        services.quota.credit(user_id, 0, -1)


def test_refund_is_applied_once_per_request(services, make_user):
    user_id = make_user(vms=3, ips=1)
    services.quota.debit(user_id, 2, 1)

    assert services.quota.refund("1-0", user_id, 2, 1) is True
    assert services.quota.refund("1-0", user_id, 2, 1) is False

    assert quota_of(services, user_id) == (3, 1)


def test_concurrent_debits_never_overdraw(app, services, make_user):
    user_id = make_user(vms=3, ips=0)
    barrier = threading.Barrier(6)
    results = []

    def debit():
        with app.app_context():
            barrier.wait()
            try:
                services.quota.debit(user_id, 1, 0)
                results.append('ok')
            except InsufficientQuota:
                results.append('rejected')

    threads = [threading.Thread(target=debit) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count('ok') == 3
    assert results.count('rejected') == 3
    assert quota_of(services, user_id) == (0, 0)
