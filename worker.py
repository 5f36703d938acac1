import logging
from rq import Worker

from portal.app import create_app
from portal.logging_setup import configure_logging
from portal.services.notification_service import NOTIFICATION_QUEUE, NotificationService
from portal.services.registry import services

logger = logging.getLogger(__name__)

_app = None


def get_app():
    global _app
    if _app is None:
        _app = create_app()
    return _app


def deliver_notification(notification_id: int):
    """
    Deliver a notification to its user.
    This function will be called by the RQ worker.
    :param notification_id: ID of the notification to deliver
    """
    with get_app().app_context():
        if not NotificationService.mark_delivered(notification_id):
            logger.warning("Notification %s no longer exists", notification_id)
            return
        logger.info("Delivered notification %s", notification_id)


def main():
    configure_logging()
    app = get_app()

    with app.app_context():
        registry = services()

    broker = registry.broker()
    broker.start()
    try:
        worker = Worker([NOTIFICATION_QUEUE], connection=registry.notifications.queue.connection)
        logger.info("Worker ready to deliver notifications")
        # rq turns SIGINT and SIGTERM into a warm shutdown that returns from work()
        worker.work()
    finally:
        broker.stop(timeout=registry.config.tick_interval_seconds)


if __name__ == '__main__':
    main()
