"""
Durable allocation of patient codes through the sequences table.

This path is always correct on its own: the process-local mutex keeps threads
of one process from queueing on the same row, and the SERIALIZABLE upsert
orders writers across processes. When the cache is reachable the result is
pushed into it before the transaction commits, so the cache and the table
never hand out the same code twice.

While the cache is reachable the fallback also takes the period's Redis lock
(waiting a bounded time) so fast path callers cannot move the cached state
between the peek and the push. Locks are always taken Redis lock first, then
process mutex.
"""

import logging
from typing import Callable, Optional, Tuple

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from patient_code.adapters.redis_adapter import AbstractSequenceCache, PatientCacheKeys, seconds_until_year_end
from patient_code.domain.errors import (
    BackendUnavailable,
    LockTimeout,
    PatientCodeError,
    SerializationConflict,
    StateCorrupt,
)
from patient_code.domain.model import SequencePosition, SequenceState
from patient_code.service_layer.mutex_registry import MutexRegistry
from patient_code.service_layer.unit_of_work import AbstractSequenceUnitOfWork

logger = logging.getLogger(__name__)


class CacheMoved(PatientCodeError):
    """The cached state changed between peek and compare-and-set."""

    code = "CACHE_MOVED"


def retry_on_conflict(attempts: int) -> Retrying:
    return Retrying(
        retry=retry_if_exception_type(SerializationConflict),
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(multiplier=0.01, max=0.5),
        reraise=True,
    )


def retry_while_cache_moves() -> Retrying:
    # the cache only moves while someone else makes progress, so keep going
    return Retrying(
        retry=retry_if_exception_type(CacheMoved),
        wait=wait_random_exponential(multiplier=0.005, max=0.1),
        before_sleep=lambda state: logger.info(
            f"Cache moved during database allocation (attempt {state.attempt_number}), retrying"
        ),
        reraise=True,
    )


class DurableFallback:
    def __init__(
        self,
        uow_factory: Callable[[], AbstractSequenceUnitOfWork],
        mutexes: MutexRegistry,
        cache: Optional[AbstractSequenceCache] = None,
        keys: Optional[PatientCacheKeys] = None,
        serialization_retries: int = 5,
        lock_ttl_seconds: float = 5.0,
        lock_wait_seconds: float = 0.25,
    ):
        self.uow_factory = uow_factory
        self.mutexes = mutexes
        self.cache = cache
        self.keys = keys or PatientCacheKeys()
        self.serialization_retries = serialization_retries
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds

    def allocate(self, tenant_code: str, year: int, lock_held: bool = False) -> SequenceState:
        """
        Allocate the next position of the period in the database.

        ``lock_held`` is set by a fast path caller that already owns the
        period's Redis lock.

        Raises:
            CapacityExceeded: the period is full
            BackendUnavailable: the database could not complete the allocation
            LockTimeout: only with ``lock_held``, when the lock expired under us
        """
        if lock_held:
            try:
                return self._allocate_under_mutex(tenant_code, year)
            except CacheMoved as e:
                raise LockTimeout(f"Sequence lock expired during allocation: {e}", tenant_code, year) from e

        if self.cache is None:
            return self._allocate_under_mutex(tenant_code, year)

        for attempt in retry_while_cache_moves():
            with attempt:
                # wait longer each round, up to the time any holder may keep the lock
                wait = min(
                    self.lock_wait_seconds * 2 ** (attempt.retry_state.attempt_number - 1),
                    self.lock_ttl_seconds,
                )
                return self._allocate_with_lock(tenant_code, year, wait)

    def _allocate_with_lock(self, tenant_code, year, wait_seconds) -> SequenceState:
        lock_key = self.keys.sequence_lock_key(tenant_code, year)
        try:
            token = self.cache.acquire_lock(lock_key, self.lock_ttl_seconds, wait_seconds)
        except BackendUnavailable as e:
            logger.warning(f"Cache unreachable, allocating {tenant_code}/{year} without its lock: {e}")
            token = None
        else:
            if token is None:
                logger.warning(f"Sequence lock {lock_key} still held after {wait_seconds}s, allocating anyway")

        try:
            return self._allocate_under_mutex(tenant_code, year)
        finally:
            if token is not None:
                self.cache.release_lock(lock_key, token)

    def _allocate_under_mutex(self, tenant_code, year) -> SequenceState:
        with self.mutexes.hold(tenant_code, year):
            try:
                for attempt in retry_on_conflict(self.serialization_retries):
                    with attempt:
                        return self._allocate_once(tenant_code, year)
            except SerializationConflict as e:
                raise BackendUnavailable(
                    f"Sequence {tenant_code}/{year} kept conflicting: {e}", tenant_code, year
                ) from e

    def _peek_cache(self, key) -> Tuple[bool, Optional[str], Optional[SequencePosition]]:
        """Returns (reachable, raw value, parsed position)."""
        if self.cache is None:
            return False, None, None
        try:
            raw = self.cache.get(key)
        except BackendUnavailable as e:
            logger.warning(f"Cache unreachable, allocating from database only: {e}")
            return False, None, None
        if raw is None:
            return True, None, None
        try:
            return True, raw, SequencePosition.decode(raw)
        except StateCorrupt:
            logger.warning(f"Ignoring corrupt cached sequence {raw!r} under {key}")
            return True, raw, None

    def _allocate_once(self, tenant_code, year) -> SequenceState:
        key = self.keys.sequence_key(tenant_code, year)
        reachable, raw, floor = self._peek_cache(key)

        with self.uow_factory() as uow:
            if floor is not None and uow.sequences.advance_to(tenant_code, year, floor):
                logger.info(f"Fast-forwarded {tenant_code}/{year} to cached position {floor.encode()}")
            state = uow.sequences.allocate_next(tenant_code, year)

            if reachable:
                self._push_to_cache(key, raw, state)
            uow.commit()

        logger.info(
            f"Allocated {state.last_number:03d}-{state.last_suffix} for {tenant_code}/{year} from database"
        )
        return state

    def _push_to_cache(self, key, expected, state: SequenceState):
        try:
            stored = self.cache.compare_and_set(
                key, expected, state.position.encode(), seconds_until_year_end(state.year)
            )
        except BackendUnavailable as e:
            # best effort; the table stays authoritative
            logger.warning(f"Could not sync cache {key} after database allocation: {e}")
            return
        if not stored:
            raise CacheMoved(f"Cache entry {key} moved during database allocation", state.tenant_code, state.year)
