"""Errors raised while allocating patient codes."""

from typing import Optional


class PatientCodeError(Exception):
    """Base class for patient code allocation errors."""

    code = "PATIENT_CODE_ERROR"

    def __init__(self, message: str, tenant_code: str = "", year: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.tenant_code = tenant_code
        self.year = year


class ValidationError(PatientCodeError, ValueError):
    """Malformed establishment code."""

    code = "INVALID_ESTABLISHMENT"


class CapacityExceeded(PatientCodeError):
    """All 17,558,424 codes of a period have been issued."""

    code = "CAPACITY_EXCEEDED"


class BackendUnavailable(PatientCodeError):
    """Cache or database unreachable."""

    code = "BACKEND_UNAVAILABLE"


class LockTimeout(PatientCodeError):
    """Fast path contention was not resolved in time."""

    code = "LOCK_TIMEOUT"


class StateCorrupt(PatientCodeError):
    """Cached sequence value could not be parsed."""

    code = "INVALID_FORMAT"


class SerializationConflict(PatientCodeError):
    """The database aborted a transaction that raced another writer."""

    code = "SERIALIZATION_CONFLICT"
