import pytest

from portal.db import db
from portal.db.models import Notification
from portal.exceptions import NotFoundError
from portal.services.notification_service import NotificationService


def test_messages():
    assert NotificationService.message('vm', 'alpha') == "Your vm 'alpha' is deployed successfully"
    assert NotificationService.message('k8s', 'k1', 'NoSuitableNode') == \
        "Your k8s 'k1' failed to be deployed with error: NoSuitableNode"


def test_notify_once_per_request(services, delivery_queue, make_user):
    user_id = make_user()

    first = services.notifications.notify(user_id, "1-0", 'vm', 'alpha')
    second = services.notifications.notify(user_id, "1-0", 'vm', 'alpha', 'GridDeployFailed')

    assert first is not None
    assert second is None
    assert Notification.query.count() == 1
    assert Notification.query.one().msg == "Your vm 'alpha' is deployed successfully"
    assert delivery_queue.jobs == [('worker.deliver_notification', (first.id,), f"notification:{first.id}")]


def test_queue_failure_keeps_notification(services, delivery_queue, make_user):
    user_id = make_user()
    delivery_queue.fail = True

    notification = services.notifications.notify(user_id, "1-0", 'vm', 'alpha')

    assert notification.delivered is False
    assert delivery_queue.jobs == []


def test_mark_delivered(services, make_user):
    user_id = make_user()
    notification = services.notifications.notify(user_id, "1-0", 'vm', 'alpha')

    assert NotificationService.mark_delivered(notification.id) is True
    assert NotificationService.mark_delivered(9999) is False

    db.session.expire_all()
    assert db.session.get(Notification, notification.id).delivered is True


def test_mark_seen_only_own_notifications(services, make_user):
    user_id = make_user()
    other_id = make_user(email="other@example.com")
    notification = services.notifications.notify(user_id, "1-0", 'vm', 'alpha')

    with pytest.raises(NotFoundError):
        NotificationService.mark_seen(other_id, notification.id)

    assert NotificationService.mark_seen(user_id, notification.id).seen is True
    assert [n.id for n in NotificationService.list_notifications(user_id)] == [notification.id]
    assert NotificationService.list_notifications(other_id) == []
