from dataclasses import dataclass
from typing import Dict, Optional

from flask import current_app
from redis import Redis
from rq import Queue

from portal.config import PortalConfig
from portal.grid.client import GridClient
from portal.services.batch_deployer import BatchDeployer
from portal.services.broker import Broker
from portal.services.cancellation_service import CancellationService
from portal.services.intake_service import IntakeService
from portal.services.messages import WorkloadKind
from portal.services.notification_service import NOTIFICATION_QUEUE, NotificationService
from portal.services.quota_service import QuotaService
from portal.services.request_consumer import RequestConsumer
from portal.services.stream_service import StreamService

EXTENSION_KEY = 'portal'


@dataclass
class ServiceRegistry:
    config: PortalConfig
    redis: Redis
    grid: GridClient
    streams: StreamService
    quota: QuotaService
    notifications: NotificationService
    intake: IntakeService
    cancellation: CancellationService
    consumers: Dict[WorkloadKind, RequestConsumer]
    batch_deployer: BatchDeployer

    def broker(self) -> Broker:
        return Broker(self.consumers, self.batch_deployer, self.config.tick_interval_seconds)


def redis_from_config(config: PortalConfig, decode_responses: bool = True) -> Redis:
    return Redis(
        host=config.redis_host,
        port=config.redis_port,
        password=config.redis_password,
        decode_responses=decode_responses,
    )


def build_services(app, config: PortalConfig, redis_client: Optional[Redis] = None,
                   grid: Optional[GridClient] = None, notification_queue=None) -> ServiceRegistry:
    """Wire every broker service around one Redis connection and one grid client"""
    redis_client = redis_client or redis_from_config(config)
    grid = grid or GridClient.from_config(config)
    if notification_queue is None:
        # rq stores pickled jobs and needs a connection returning bytes
        notification_queue = Queue(NOTIFICATION_QUEUE, connection=redis_from_config(config, decode_responses=False))

    streams = StreamService(redis_client, config.consumer_name, config.stream_block_ms)
    quota = QuotaService(redis_client)
    notifications = NotificationService(notification_queue)

    consumers = {
        kind: RequestConsumer(
            app, kind, streams, grid, quota, notifications,
            farm_ids=config.farm_ids,
            max_workers=config.request_workers
        )
        for kind in WorkloadKind
    }

    registry = ServiceRegistry(
        config=config,
        redis=redis_client,
        grid=grid,
        streams=streams,
        quota=quota,
        notifications=notifications,
        intake=IntakeService(streams, quota, redis_client, config.admin_ssh_key),
        cancellation=CancellationService(grid),
        consumers=consumers,
        batch_deployer=BatchDeployer(app, streams, grid, quota, notifications, config.batch_size)
    )
    app.extensions[EXTENSION_KEY] = registry
    return registry


def services() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]
