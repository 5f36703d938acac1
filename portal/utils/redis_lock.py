import time
import uuid
from redis import Redis

class RedisLock:
    def __init__(self, redis_client: Redis, lock_key: str, expire_seconds: int = 30, timeout: float = 10, retry_delay: float = 0.05):
        """
        Initialize a Redis-based distributed lock
        :param redis_client: Redis client instance
        :param lock_key: Unique key for the lock
        :param expire_seconds: Lock expiry time in seconds (default: 30)
        :param timeout: Maximum time to wait for the lock when used as a context manager
        :param retry_delay: Time to wait between retries in seconds
        """
        self.redis = redis_client
        self.lock_key = f"lock:{lock_key}"
        self.expire_seconds = expire_seconds
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._token = None

    def acquire(self, timeout: float = None) -> bool:
        """
        Acquire the lock with timeout
        :param timeout: Maximum time to wait for lock in seconds
        :return: True if lock acquired, False otherwise
        """
        timeout = self.timeout if timeout is None else timeout
        end_time = time.time() + timeout
        token = uuid.uuid4().hex

        while True:
            # Try to set the lock key with expiry
            success = self.redis.set(
                self.lock_key,
                token,
                ex=self.expire_seconds,
                nx=True  # Only set if key doesn't exist
            )

            if success:
                self._token = token
                return True

            if time.time() >= end_time:
                return False

            # Wait before retrying
            time.sleep(self.retry_delay)

    def release(self) -> bool:
        """
        Release the lock if owned
        :return: True if lock was released, False if not owned
        """
        if not self._token:
            return False

        # the key may have expired and been taken by another owner
        current = self.redis.get(self.lock_key)
        if isinstance(current, bytes):
            current = current.decode()
        if current == self._token:
            self.redis.delete(self.lock_key)

        self._token = None
        return True

    def __enter__(self):
        """Context manager entry"""
        success = self.acquire()
        if not success:
            raise TimeoutError(f"Could not acquire lock for {self.lock_key}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.release()
