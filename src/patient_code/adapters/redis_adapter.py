"""Redis adapter holding the live state of patient code sequences."""

import abc
import logging
from datetime import datetime
from typing import Optional

import redis
from redis.exceptions import LockError

import config
from patient_code.domain.errors import BackendUnavailable

logger = logging.getLogger(__name__)

LOCK_POLL_SECONDS = 0.005


class PatientCacheKeys:
    """Type-safe helpers for the Redis keys of the patient domain."""

    def __init__(self, namespace: Optional[str] = None):
        self.namespace = namespace or config.get_cache_namespace()

    def sequence_key(self, tenant_code: str, year: int) -> str:
        # Format: soins_suite_{tenant}_patient_sequence:{year}
        return f"{self.namespace}_{tenant_code}_patient_sequence:{year}"

    def sequence_lock_key(self, tenant_code: str, year: int) -> str:
        # Format: soins_suite_{tenant}_patient_sequence_lock:{year}
        return f"{self.namespace}_{tenant_code}_patient_sequence_lock:{year}"


def seconds_until_year_end(year: int, now: Optional[datetime] = None) -> float:
    """TTL that makes a sequence entry expire on 31 December 23:59:59."""
    now = now or datetime.now()
    end_of_year = datetime(year, 12, 31, 23, 59, 59)
    return max((end_of_year - now).total_seconds(), 1.0)


def _ms(seconds: float) -> int:
    return max(int(seconds * 1000), 1)


class AbstractSequenceCache(abc.ABC):
    """
    Key/value store with expiring entries, compare-and-set and expiring locks.

    Implementations raise BackendUnavailable when the store cannot be reached.
    """

    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abc.abstractmethod
    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def compare_and_set(self, key: str, expected: Optional[str], value: str, ttl_seconds: float) -> bool:
        """
        Store ``value`` only if the current value equals ``expected``
        (``None`` meaning the key is absent). Returns True if stored.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def acquire_lock(self, key: str, ttl_seconds: float, wait_seconds: float = 0.0):
        """
        Take the expiring lock, waiting up to ``wait_seconds`` for the holder.
        Returns an ownership handle, or None if the lock is still held.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def release_lock(self, key: str, token) -> bool:
        """Release the lock if ``token`` still owns it."""
        raise NotImplementedError


class RedisSequenceCache(AbstractSequenceCache):
    """Redis implementation of the sequence cache."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client or redis.Redis.from_url(config.get_redis_url(), decode_responses=True)

    @staticmethod
    def _decode(value):
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return value

    def get(self, key):
        try:
            return self._decode(self.client.get(key))
        except redis.RedisError as e:
            raise BackendUnavailable(f"Redis get failed: {e}") from e

    def set(self, key, value, ttl_seconds):
        try:
            self.client.set(key, value, px=_ms(ttl_seconds))
        except redis.RedisError as e:
            raise BackendUnavailable(f"Redis set failed: {e}") from e

    def delete(self, key):
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise BackendUnavailable(f"Redis delete failed: {e}") from e

    def compare_and_set(self, key, expected, value, ttl_seconds):
        try:
            with self.client.pipeline() as pipe:
                pipe.watch(key)
                current = self._decode(pipe.get(key))
                if current != expected:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value, px=_ms(ttl_seconds))
                pipe.execute()
                return True
        except redis.WatchError:
            logger.debug(f"Key {key} changed during compare-and-set")
            return False
        except redis.RedisError as e:
            raise BackendUnavailable(f"Redis compare-and-set failed: {e}") from e

    def acquire_lock(self, key, ttl_seconds, wait_seconds=0.0):
        try:
            lock = self.client.lock(
                key,
                timeout=ttl_seconds,
                sleep=LOCK_POLL_SECONDS,
                blocking_timeout=wait_seconds,
                thread_local=False,
            )
            acquired = lock.acquire()
        except redis.RedisError as e:
            raise BackendUnavailable(f"Unable to acquire Redis lock: {e}") from e
        return lock if acquired else None

    def release_lock(self, key, token):
        try:
            token.release()
            return True
        except LockError:
            # expired and possibly taken by someone else
            logger.debug(f"Lock {key} was no longer ours at release")
            return False
        except redis.RedisError as e:
            logger.warning(f"Failed to release Redis lock {key}: {e}")
            return False
