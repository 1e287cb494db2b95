# pylint: disable=broad-except
"""
Background replication between the sequence cache and the sequences table.

Write-behind copies fast path results into the table so a lost cache entry can
be rebuilt; warm-up seeds a cold cache entry from the table. Both run on a
small bounded thread pool and never fail the allocation that triggered them.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from typing import Callable, Optional, Set

from patient_code.adapters.redis_adapter import AbstractSequenceCache
from patient_code.domain.errors import BackendUnavailable, SerializationConflict
from patient_code.domain.model import SequencePosition, SequenceState
from patient_code.service_layer.durable_fallback import retry_on_conflict
from patient_code.service_layer.unit_of_work import AbstractSequenceUnitOfWork

logger = logging.getLogger(__name__)


class SyncBridge:
    def __init__(
        self,
        uow_factory: Callable[[], AbstractSequenceUnitOfWork],
        max_workers: int = 4,
        max_pending_writes: int = 1000,
        warmup_timeout_seconds: float = 2.0,
        write_retries: int = 3,
    ):
        self.uow_factory = uow_factory
        self.warmup_timeout_seconds = warmup_timeout_seconds
        self.write_retries = write_retries
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="patient-code-sync")
        self._slots = threading.BoundedSemaphore(max_pending_writes)
        self._pending = set()  # type: Set[Future]
        self._pending_lock = threading.Lock()

    # ---------- write-behind ----------

    def write_behind(self, tenant_code: str, year: int, position: SequencePosition) -> Optional[Future]:
        """Schedule persistence of a fast path result. Never raises."""
        if not self._slots.acquire(blocking=False):
            logger.warning(
                f"Write-behind queue full, dropping {position.encode()} for {tenant_code}/{year}"
            )
            return None
        try:
            future = self._executor.submit(self._persist, tenant_code, year, position)
        except RuntimeError as e:
            self._slots.release()
            logger.warning(f"Write-behind rejected for {tenant_code}/{year}: {e}")
            return None

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._write_done)
        return future

    def _write_done(self, future: Future):
        with self._pending_lock:
            self._pending.discard(future)
        self._slots.release()

    def _persist(self, tenant_code, year, position):
        try:
            for attempt in retry_on_conflict(self.write_retries):
                with attempt:
                    with self.uow_factory() as uow:
                        moved = uow.sequences.advance_to(tenant_code, year, position)
                        uow.commit()
            if moved:
                logger.debug(f"Persisted {position.encode()} for {tenant_code}/{year}")
            else:
                logger.debug(f"Table already at or past {position.encode()} for {tenant_code}/{year}")
        except Exception as e:
            # the next cold start reconciles from the table
            logger.error(f"Write-behind failed for {tenant_code}/{year} at {position.encode()}: {e}")

    # ---------- warm-up ----------

    def load_state(self, tenant_code: str, year: int) -> Optional[SequenceState]:
        """Read the durable state on the pool, waiting at most the warm-up timeout."""
        try:
            future = self._executor.submit(self._read_state, tenant_code, year)
        except RuntimeError as e:
            raise BackendUnavailable(f"Sync bridge is shut down: {e}", tenant_code, year) from e
        try:
            return future.result(timeout=self.warmup_timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            raise BackendUnavailable(
                f"Warm-up of {tenant_code}/{year} timed out after {self.warmup_timeout_seconds}s",
                tenant_code,
                year,
            ) from e
        except SerializationConflict as e:
            raise BackendUnavailable(f"Warm-up of {tenant_code}/{year} conflicted: {e}", tenant_code, year) from e

    def _read_state(self, tenant_code, year):
        with self.uow_factory() as uow:
            return uow.sequences.get_state(tenant_code, year)

    def warm_up(
        self,
        tenant_code: str,
        year: int,
        cache: AbstractSequenceCache,
        key: str,
        ttl_seconds: float,
    ) -> Optional[str]:
        """
        Seed an empty cache entry from the table.

        Returns:
            The cached value after seeding, or None if the period has no
            durable state yet.
        """
        state = self.load_state(tenant_code, year)
        if state is None:
            return None

        raw = state.position.encode()
        if not cache.compare_and_set(key, None, raw, ttl_seconds):
            raw = cache.get(key)
        logger.info(f"Warmed up cache {key} from database at {raw}")
        return raw

    # ---------- lifecycle ----------

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding write-behinds. Returns True if all finished."""
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True):
        self._executor.shutdown(wait=wait_for_pending)
