import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from dotenv import load_dotenv


def _parse_farm_ids(value: str) -> FrozenSet[int]:
    return frozenset(int(part) for part in value.split(',') if part.strip())


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == '':
        return None
    return int(value)


@dataclass(frozen=True)
class PortalConfig:
    """Process-wide settings, read once at startup"""

    database_path: str = 'db.sqlite'

    redis_host: str = 'localhost'
    redis_port: int = 6379
    redis_password: Optional[str] = None

    # broker
    tick_interval_seconds: int = 6
    batch_size: int = 5
    farm_ids: FrozenSet[int] = field(default_factory=lambda: frozenset({1}))
    admin_ssh_key: str = ''
    consumer_name: str = 'broker'
    # None means reads return immediately
    stream_block_ms: Optional[int] = 1000
    request_workers: int = 8

    # grid
    grid_proxy_url: str = 'https://gridproxy.grid.tf'
    grid_gateway_url: str = 'http://localhost:8080'
    grid_identity: str = ''
    grid_timeout_seconds: int = 60

    jwt_secret_key: str = ''

    @classmethod
    def from_env(cls) -> 'PortalConfig':
        load_dotenv()

        return cls(
            database_path=os.getenv('DATABASE_PATH', 'db.sqlite'),
            redis_host=os.getenv('REDIS_HOST', 'localhost'),
            redis_port=int(os.getenv('REDIS_PORT', 6379)),
            redis_password=os.getenv('REDIS_PASSWORD') or None,
            tick_interval_seconds=int(os.getenv('TICK_INTERVAL_SECONDS', 6)),
            batch_size=int(os.getenv('BATCH_SIZE', 5)),
            farm_ids=_parse_farm_ids(os.getenv('FARM_IDS', '1')),
            admin_ssh_key=os.getenv('ADMIN_SSH_KEY', ''),
            consumer_name=os.getenv('BROKER_CONSUMER_NAME', 'broker'),
            stream_block_ms=_optional_int(os.getenv('STREAM_BLOCK_MS', '1000')),
            request_workers=int(os.getenv('REQUEST_WORKERS', 8)),
            grid_proxy_url=os.getenv('GRID_PROXY_URL', 'https://gridproxy.grid.tf'),
            grid_gateway_url=os.getenv('GRID_GATEWAY_URL', 'http://localhost:8080'),
            grid_identity=os.getenv('GRID_IDENTITY', ''),
            grid_timeout_seconds=int(os.getenv('GRID_TIMEOUT_SECONDS', 60)),
            jwt_secret_key=os.getenv('JWT_SECRET_KEY', ''),
        )
