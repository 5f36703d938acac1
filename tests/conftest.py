import fakeredis
import pytest

from portal.app import create_app
from portal.config import PortalConfig
from portal.db import db
from portal.db.models import User
from portal.middleware.auth import AuthService

from fakes import FakeGrid, RecordingQueue

ADMIN_SSH_KEY = 'ssh-ed25519 AAAAadmin admin@portal'
USER_SSH_KEY = 'ssh-ed25519 AAAAstudent student@portal'
JWT_SECRET = 'test-secret'


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def grid():
    return FakeGrid()


@pytest.fixture
def delivery_queue():
    return RecordingQueue()


@pytest.fixture
def config(tmp_path):
    return PortalConfig(
        database_path=str(tmp_path / 'portal.sqlite'),
        admin_ssh_key=ADMIN_SSH_KEY,
        farm_ids=frozenset({1}),
        stream_block_ms=None,
        request_workers=4,
        tick_interval_seconds=0.05,
        jwt_secret_key=JWT_SECRET
    )


@pytest.fixture
def app(config, redis_client, grid, delivery_queue):
    app = create_app(config, redis_client=redis_client, grid=grid, notification_queue=delivery_queue)
    app.config['TESTING'] = True

    with app.app_context():
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def services(app):
    return app.extensions['portal']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app, services):
    """Create a user with an ssh key and a quota, returns its id"""
    def _make(email='student@example.com', ssh_key=USER_SSH_KEY, vms=3, ips=1):
        user = User(email=email, ssh_key=ssh_key)
        db.session.add(user)
        db.session.commit()
        services.quota.set_quota(user.id, vms, ips)
        return user.id
    return _make


@pytest.fixture
def auth_header(app):
    def _header(user_id):
        user = db.session.get(User, user_id)
        token = AuthService.create_access_token(user, JWT_SECRET)
        return {'Authorization': f'Bearer {token}'}
    return _header
