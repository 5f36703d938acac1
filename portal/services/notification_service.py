import logging
from datetime import datetime, timezone
from typing import List, Optional

from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from portal.db import db
from portal.db.models import Notification
from portal.exceptions import NotFoundError, StoreUnavailable

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE = 'notifications'

SUCCESS_TEMPLATE = "Your {kind} '{name}' is deployed successfully"
FAILURE_TEMPLATE = "Your {kind} '{name}' failed to be deployed with error: {reason}"


class NotificationService:
    """
    Writes one notification per deployment request and hands it to the
    RQ delivery worker.
    """

    def __init__(self, queue=None):
        """
        :param queue: rq Queue the delivery jobs go to, None to skip delivery
        """
        self.queue = queue

    @staticmethod
    def message(kind: str, name: str, error_kind: Optional[str] = None) -> str:
        if error_kind is None:
            return SUCCESS_TEMPLATE.format(kind=kind, name=name)
        return FAILURE_TEMPLATE.format(kind=kind, name=name, reason=error_kind)

    def notify(self, user_id: int, request_id: str, kind: str, name: str,
               error_kind: Optional[str] = None) -> Optional[Notification]:
        """
        Emit the outcome of a request.
        :param kind: 'vm' or 'k8s'
        :param error_kind: None on success, otherwise the error name shown to the user
        :return: the new notification, None if this request was already notified
        """
        return self.enqueue_notification(user_id, request_id, self.message(kind, name, error_kind), kind)

    def enqueue_notification(self, user_id: int, request_id: str, msg: str, kind: str) -> Optional[Notification]:
        try:
            if Notification.query.filter_by(request_id=request_id).first():
                logger.info("Request %s was already notified", request_id)
                return None

            notification = Notification(
                user_id=user_id,
                request_id=request_id,
                msg=msg,
                type=kind,
                created_at=datetime.now(timezone.utc)
            )
            db.session.add(notification)
            db.session.commit()

        except IntegrityError:
            # a concurrent emit for the same request won
            db.session.rollback()
            return None
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to store notification") from e

        logger.info("Notification %s for user %s: %s", notification.id, user_id, msg)
        self.enqueue_delivery(notification.id)
        return notification

    def enqueue_delivery(self, notification_id: int) -> None:
        if self.queue is None:
            return

        job_id = f"notification:{notification_id}"
        try:
            self.queue.enqueue(
                'worker.deliver_notification',
                notification_id,
                job_id=job_id
            )
        except RedisError as e:
            logger.error("Failed to enqueue delivery of notification %s: %s", notification_id, e)

    @staticmethod
    def mark_delivered(notification_id: int) -> bool:
        try:
            notification = db.session.get(Notification, notification_id)
            if not notification:
                return False
            notification.delivered = True
            db.session.commit()
            return True
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to mark notification delivered") from e

    @staticmethod
    def list_notifications(user_id: int) -> List[Notification]:
        return Notification.query.filter_by(user_id=user_id).order_by(Notification.id.desc()).all()

    @staticmethod
    def mark_seen(user_id: int, notification_id: int) -> Notification:
        notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if not notification:
            raise NotFoundError("Notification not found", "NOTIFICATION_NOT_FOUND")

        try:
            notification.seen = True
            db.session.commit()
            return notification
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StoreUnavailable("Failed to update notification") from e
