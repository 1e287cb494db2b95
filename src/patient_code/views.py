"""
Read-only views over the patient code sequences, separate from the write path.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from patient_code.domain.errors import CapacityExceeded
from patient_code.domain.model import CAPACITY, SequencePosition, format_patient_code
from patient_code.service_layer.unit_of_work import AbstractSequenceUnitOfWork

logger = logging.getLogger(__name__)


def get_sequence_stats(
    tenant_code: str,
    uow: AbstractSequenceUnitOfWork,
    year: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Usage of an establishment's yearly patient code sequence, for monitoring.

    Returns:
        - generated_count: codes issued so far
        - capacity_used_pct: share of the 17,558,424 codes already used
        - last_code: most recent code, None if nothing was issued
        - next_code: code the next allocation will produce, None at capacity
    """
    year = year or datetime.now().year

    with uow:
        state = uow.sequences.get_state(tenant_code, year)

    if state is None:
        return {
            "tenant_code": tenant_code,
            "year": year,
            "generated_count": 0,
            "capacity_used_pct": 0.0,
            "last_code": None,
            "next_code": format_patient_code(tenant_code, year, SequencePosition.empty().next()),
        }

    position = state.position
    try:
        next_code = format_patient_code(tenant_code, year, position.next())
    except CapacityExceeded:
        logger.warning(f"Sequence {tenant_code}/{year} is at capacity")
        next_code = None

    return {
        "tenant_code": tenant_code,
        "year": year,
        "generated_count": state.generated_count,
        "capacity_used_pct": state.generated_count / CAPACITY * 100,
        "last_code": format_patient_code(tenant_code, year, position) if position.number else None,
        "next_code": next_code,
    }
