"""
Patient code generation.

Format: {ETABLISSEMENT}-{YYYY}-{NNN}-{LLL}
Example: CENTREA-2025-001-AAA
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from patient_code.domain.errors import (
    BackendUnavailable,
    CapacityExceeded,
    LockTimeout,
    StateCorrupt,
    ValidationError,
)
from patient_code.domain.model import CodeGenerationResult
from patient_code.service_layer.durable_fallback import DurableFallback
from patient_code.service_layer.fast_path import FastPath

logger = logging.getLogger(__name__)

MAX_TENANT_CODE_LENGTH = 20

# fast path failures that are recovered by the database path
RECOVERABLE_ERRORS = (BackendUnavailable, LockTimeout, StateCorrupt)


def validate_tenant_code(tenant_code: str) -> None:
    if not tenant_code or not tenant_code.strip():
        raise ValidationError("Establishment code is required", tenant_code or "")
    if len(tenant_code) > MAX_TENANT_CODE_LENGTH:
        raise ValidationError(
            f"Establishment code too long (max {MAX_TENANT_CODE_LENGTH} characters)", tenant_code
        )


class PatientCodeGenerator:
    """
    Single entry point for allocating patient codes.

    Tries the cache first and silently falls back to the database when the
    cache is unreachable, contended or holds garbage. Only capacity exhaustion
    and a failing database reach the caller.
    """

    def __init__(
        self,
        durable: DurableFallback,
        fast_path: Optional[FastPath] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.durable = durable
        self.fast_path = fast_path
        self.clock = clock

    def generate_code(self, tenant_code: str) -> CodeGenerationResult:
        validate_tenant_code(tenant_code)
        start = time.monotonic()
        year = self.clock().year

        result = None
        if self.fast_path is not None:
            try:
                result = self.fast_path.allocate(tenant_code, year)
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"Fast path unavailable for {tenant_code}/{year}, using database: {e}")

        if result is None:
            result = self._generate_from_database(tenant_code, year)

        result.generation_time_ms = int((time.monotonic() - start) * 1000)
        logger.debug(f"Generated {result.code_patient} from {result.source} in {result.generation_time_ms}ms")
        return result

    def _generate_from_database(self, tenant_code, year) -> CodeGenerationResult:
        try:
            state = self.durable.allocate(tenant_code, year)
        except CapacityExceeded:
            logger.error(f"Patient code capacity exhausted for {tenant_code}/{year}")
            raise
        except BackendUnavailable:
            logger.error(f"Failed to generate patient code for {tenant_code}/{year}")
            raise
        return CodeGenerationResult.build(tenant_code, year, state.position, "database", state.generated_count)
