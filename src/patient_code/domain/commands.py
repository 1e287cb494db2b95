"""Commands for the patient code service."""

from dataclasses import dataclass
from typing import Optional

from shared.domain.commands import Command


@dataclass(frozen=True)
class GeneratePatientCode(Command):
    """Allocate the next patient code for an establishment."""
    tenant_code: str


@dataclass(frozen=True)
class GetSequenceStats(Command):
    """Report usage of an establishment's yearly sequence."""
    tenant_code: str
    year: Optional[int] = None
