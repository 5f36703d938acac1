import logging
from typing import List, Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError, ResponseError

from portal.exceptions import MessageDecodeError, StreamUnavailable
from portal.services import messages
from portal.services.messages import Message, WorkloadKind

logger = logging.getLogger(__name__)

PAYLOAD_FIELD = 'payload'

# dedup markers outlive any realistic redelivery window
DEDUP_TTL_SECONDS = 7 * 24 * 3600

STREAMS = [stream for kind in WorkloadKind for stream in (kind.request_stream, kind.deploy_stream)]


def group_name(stream: str) -> str:
    return f"{stream}.g"


def dedup_marker(stream: str, dedup_key: str) -> str:
    return f"{stream}:dedup:{dedup_key}"


class StreamService:
    """
    Append-only request and deployment logs on top of Redis streams.
    Every stream has exactly one consumer group; delivery is at-least-once.
    """

    def __init__(self, redis_client: Redis, consumer_name: str = 'broker', block_ms: Optional[int] = 1000):
        """
        :param redis_client: Redis connection, must decode responses
        :param consumer_name: stable name so a restarted process finds its own pending entries
        :param block_ms: how long a read of new entries may block, None to never block
        """
        self.redis = redis_client
        self.consumer_name = consumer_name
        self.block_ms = block_ms

    def ensure_groups(self) -> None:
        """Create every stream and its consumer group if missing"""
        for stream in STREAMS:
            try:
                self.redis.xgroup_create(stream, group_name(stream), id='0', mkstream=True)
            except ResponseError as e:
                if 'BUSYGROUP' not in str(e):
                    raise StreamUnavailable(f"failed to create group for {stream}: {e}") from e
            except RedisError as e:
                raise StreamUnavailable(f"failed to create group for {stream}: {e}") from e

    def append(self, stream: str, message: Message) -> str:
        try:
            return self.redis.xadd(stream, {PAYLOAD_FIELD: messages.encode(message)})
        except RedisError as e:
            raise StreamUnavailable(f"failed to append to {stream}: {e}") from e

    def append_once(self, stream: str, message: Message, dedup_key: str) -> Optional[str]:
        """
        Append unless a message with the same dedup key was appended before.
        The entry and its marker are written in one transaction.
        :return: the new entry id, or None if it was already appended
        """
        marker = dedup_marker(stream, dedup_key)
        try:
            if self.redis.exists(marker):
                return None

            pipe = self.redis.pipeline(transaction=True)
            pipe.xadd(stream, {PAYLOAD_FIELD: messages.encode(message)})
            pipe.set(marker, '1', ex=DEDUP_TTL_SECONDS)
            entry_id, _ = pipe.execute()
            return entry_id
        except RedisError as e:
            raise StreamUnavailable(f"failed to append to {stream}: {e}") from e

    def was_appended(self, stream: str, dedup_key: str) -> bool:
        """Whether append_once already appended a message with this dedup key"""
        try:
            return bool(self.redis.exists(dedup_marker(stream, dedup_key)))
        except RedisError as e:
            raise StreamUnavailable(f"failed to read dedup marker on {stream}: {e}") from e

    def read(self, stream: str, max_count: Optional[int] = None, pending: bool = False) -> List[Tuple[str, Message]]:
        """
        Read entries for the stream's group.
        :param max_count: upper bound of entries, None for no bound
        :param pending: return entries already delivered to this consumer but never acknowledged
        :return: list of (entry id, message); empty when nothing arrived before the timeout
        """
        try:
            response = self.redis.xreadgroup(
                group_name(stream),
                self.consumer_name,
                {stream: '0' if pending else '>'},
                count=max_count,
                block=None if pending else self.block_ms,
            )
        except RedisError as e:
            raise StreamUnavailable(f"failed to read {stream}: {e}") from e

        entries = []
        for _, stream_entries in response or []:
            for entry_id, fields in stream_entries:
                message = self._decode(stream, entry_id, fields)
                if message is not None:
                    entries.append((entry_id, message))
        return entries

    def ack(self, stream: str, entry_id: str) -> None:
        try:
            self.redis.xack(stream, group_name(stream), entry_id)
        except RedisError as e:
            raise StreamUnavailable(f"failed to acknowledge {entry_id} on {stream}: {e}") from e

    def length(self, stream: str) -> int:
        try:
            return self.redis.xlen(stream)
        except RedisError as e:
            raise StreamUnavailable(f"failed to read length of {stream}: {e}") from e

    def _decode(self, stream: str, entry_id: str, fields) -> Optional[Message]:
        # pending entries that were trimmed from the stream come back without fields
        if not fields or PAYLOAD_FIELD not in fields:
            logger.warning("Dropping empty entry %s on %s", entry_id, stream)
            self.ack(stream, entry_id)
            return None

        try:
            return messages.decode(fields[PAYLOAD_FIELD])
        except MessageDecodeError as e:
            logger.error("Dropping undecodable entry %s on %s: %s", entry_id, stream, e)
            self.ack(stream, entry_id)
            return None
