"""Cache-backed allocation of patient codes."""

import logging
from typing import Optional

from patient_code.adapters.redis_adapter import AbstractSequenceCache, PatientCacheKeys, seconds_until_year_end
from patient_code.domain.errors import CapacityExceeded, LockTimeout
from patient_code.domain.model import CodeGenerationResult, SequencePosition
from patient_code.service_layer.durable_fallback import DurableFallback
from patient_code.service_layer.sync_bridge import SyncBridge

logger = logging.getLogger(__name__)


class FastPath:
    """
    Allocates from the cached "number:suffix" state while holding a short
    Redis lock on the period.

    Any BackendUnavailable, LockTimeout or StateCorrupt raised here tells the
    caller to use the durable fallback instead. CapacityExceeded is final.
    """

    def __init__(
        self,
        cache: AbstractSequenceCache,
        bridge: SyncBridge,
        durable: DurableFallback,
        keys: Optional[PatientCacheKeys] = None,
        lock_ttl_seconds: float = 5.0,
        lock_wait_seconds: float = 0.25,
    ):
        self.cache = cache
        self.bridge = bridge
        self.durable = durable
        self.keys = keys or PatientCacheKeys()
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds

    def _acquire(self, lock_key, tenant_code, year):
        token = self.cache.acquire_lock(lock_key, self.lock_ttl_seconds, self.lock_wait_seconds)
        if token is None:
            raise LockTimeout(
                f"Sequence lock {lock_key} still held after {self.lock_wait_seconds}s", tenant_code, year
            )
        return token

    def allocate(self, tenant_code: str, year: int) -> CodeGenerationResult:
        key = self.keys.sequence_key(tenant_code, year)
        lock_key = self.keys.sequence_lock_key(tenant_code, year)
        ttl = seconds_until_year_end(year)

        token = self._acquire(lock_key, tenant_code, year)
        try:
            current = self.cache.get(key)
            if current is None:
                current = self.bridge.warm_up(tenant_code, year, self.cache, key, ttl)
            if current is None:
                # first code of the period: the table creates the row and seeds the cache
                logger.info(f"Initialising sequence {tenant_code}/{year} through the database")
                state = self.durable.allocate(tenant_code, year, lock_held=True)
                return CodeGenerationResult.build(
                    tenant_code, year, state.position, "database", state.generated_count
                )

            position = SequencePosition.decode(current)
            try:
                nxt = position.next()
            except CapacityExceeded as e:
                raise CapacityExceeded(e.message, tenant_code, year) from e

            if not self.cache.compare_and_set(key, current, nxt.encode(), ttl):
                raise LockTimeout(f"Sequence {key} moved while locked", tenant_code, year)
        finally:
            self.cache.release_lock(lock_key, token)

        self.bridge.write_behind(tenant_code, year, nxt)
        return CodeGenerationResult.build(tenant_code, year, nxt, "cache", nxt.ordinal)
