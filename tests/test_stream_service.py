import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from portal.exceptions import StreamUnavailable
from portal.services.messages import RequestRecord, VMIntent, WorkloadKind
from portal.services.resource_calculator import SizeClass
from portal.services.stream_service import STREAMS, StreamService

STREAM = WorkloadKind.VM.request_stream


def create_record(name="alpha") -> RequestRecord:
    """Helper to create a vm request record"""
    return RequestRecord(
        kind=WorkloadKind.VM,
        user_id=1,
        ssh_key="ssh-ed25519 AAAA",
        admin_ssh_key="",
        intent=VMIntent(name=name, resources=SizeClass.SMALL, public=False)
    )


@pytest.fixture
def streams():
    service = StreamService(fakeredis.FakeRedis(decode_responses=True), consumer_name='test', block_ms=None)
    service.ensure_groups()
    return service


def test_ensure_groups_is_idempotent(streams):
    streams.ensure_groups()

    for stream in STREAMS:
        assert streams.length(stream) == 0
    entry_id = streams.append(STREAM, create_record())
    assert streams.read(STREAM) == [(entry_id, create_record())]


def test_read_returns_new_entries_once(streams):
    entry_id = streams.append(STREAM, create_record())

    entries = streams.read(STREAM)
    assert entries == [(entry_id, create_record())]
    assert streams.read(STREAM) == []


def test_unacked_entries_are_pending_until_acked(streams):
    entry_id = streams.append(STREAM, create_record())
    streams.read(STREAM)

    assert [e for e, _ in streams.read(STREAM, pending=True)] == [entry_id]

    streams.ack(STREAM, entry_id)
    streams.ack(STREAM, entry_id)
    assert streams.read(STREAM, pending=True) == []


def test_read_respects_max_count(streams):
    for name in ("alpha", "beta", "gamma"):
        streams.append(STREAM, create_record(name))

    assert [m.name for _, m in streams.read(STREAM, max_count=2)] == ["alpha", "beta"]
    assert [m.name for _, m in streams.read(STREAM, max_count=2)] == ["gamma"]


def test_append_once_skips_known_keys(streams):
    first = streams.append_once(STREAM, create_record(), dedup_key="1-0")
    second = streams.append_once(STREAM, create_record(), dedup_key="1-0")

    assert first is not None
    assert second is None
    assert streams.length(STREAM) == 1
    assert streams.was_appended(STREAM, "1-0")
    assert not streams.was_appended(STREAM, "2-0")


def test_undecodable_entries_are_dropped(streams):
    streams.redis.xadd(STREAM, {'payload': 'not json'})
    streams.redis.xadd(STREAM, {'other': 'field'})
    entry_id = streams.append(STREAM, create_record())

    assert [e for e, _ in streams.read(STREAM)] == [entry_id]
    # dropped entries were acknowledged
    assert [e for e, _ in streams.read(STREAM, pending=True)] == [entry_id]


def test_redis_errors_surface_as_stream_unavailable(streams, monkeypatch):
    def broken(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(streams.redis, 'xadd', broken)
    monkeypatch.setattr(streams.redis, 'xreadgroup', broken)

    with pytest.raises(StreamUnavailable):
        streams.append(STREAM, create_record())
    with pytest.raises(StreamUnavailable):
        streams.read(STREAM)
