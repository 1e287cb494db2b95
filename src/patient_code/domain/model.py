"""
Domain model for patient code sequences.

A patient code looks like ``CENTREA-2025-001-AAA``: establishment, year, a
3-digit number and a 3-letter suffix. The number runs 1..999; when it wraps the
suffix advances like a base-26 odometer (AAA, AAB, ... AAZ, ABA, ... ZZZ).
"""

from dataclasses import dataclass, field
from datetime import datetime
from string import ascii_uppercase
from typing import Optional

from patient_code.domain.errors import CapacityExceeded, StateCorrupt

MAX_NUMBER = 999
FIRST_SUFFIX = "AAA"
LAST_SUFFIX = "ZZZ"
SUFFIX_LENGTH = 3
CAPACITY = MAX_NUMBER * len(ascii_uppercase) ** SUFFIX_LENGTH  # 17,558,424


def next_suffix(suffix: str) -> str:
    """Advance the suffix by one tick, rightmost letter first."""
    if suffix == LAST_SUFFIX:
        raise CapacityExceeded("Maximum capacity reached for the year")

    letters = list(suffix.upper())
    for i in range(SUFFIX_LENGTH - 1, -1, -1):
        if letters[i] < "Z":
            letters[i] = chr(ord(letters[i]) + 1)
            break
        letters[i] = "A"
    return "".join(letters)


def suffix_index(suffix: str) -> int:
    index = 0
    for letter in suffix:
        index = index * 26 + ascii_uppercase.index(letter)
    return index


@dataclass(frozen=True)
class SequencePosition:
    """The (number, suffix) pair of the most recently issued code."""

    number: int
    suffix: str = FIRST_SUFFIX

    def __post_init__(self):
        if not 0 <= self.number <= MAX_NUMBER:
            raise StateCorrupt(f"Sequence number out of range: {self.number}")
        if len(self.suffix) != SUFFIX_LENGTH or any(c not in ascii_uppercase for c in self.suffix):
            raise StateCorrupt(f"Invalid sequence suffix: {self.suffix!r}")

    @classmethod
    def empty(cls) -> "SequencePosition":
        """Position before the first allocation of a period."""
        return cls(0, FIRST_SUFFIX)

    @classmethod
    def decode(cls, raw) -> "SequencePosition":
        """Parse the ``"number:suffix"`` cache encoding."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            number, suffix = str(raw).split(":")
            return cls(int(number), suffix)
        except (ValueError, TypeError) as e:
            raise StateCorrupt(f"Invalid cached sequence value {raw!r}") from e

    def encode(self) -> str:
        return f"{self.number}:{self.suffix}"

    @property
    def ordinal(self) -> int:
        """How many codes have been issued up to and including this one."""
        return suffix_index(self.suffix) * MAX_NUMBER + self.number

    @property
    def at_capacity(self) -> bool:
        return self.number >= MAX_NUMBER and self.suffix == LAST_SUFFIX

    def next(self) -> "SequencePosition":
        """Apply the rollover rule. Raises CapacityExceeded past 999-ZZZ."""
        if self.number < MAX_NUMBER:
            return SequencePosition(self.number + 1, self.suffix)
        return SequencePosition(1, next_suffix(self.suffix))

    def is_ahead_of(self, other: "SequencePosition") -> bool:
        return self.ordinal > other.ordinal


def format_patient_code(tenant_code: str, year: int, position: SequencePosition) -> str:
    return f"{tenant_code}-{year}-{position.number:03d}-{position.suffix}"


@dataclass
class SequenceState:
    """Durable counter for one (establishment, year) period."""

    tenant_code: str
    year: int
    last_number: int
    last_suffix: str
    generated_count: int = 0
    updated_at: Optional[datetime] = None

    @property
    def position(self) -> SequencePosition:
        return SequencePosition(self.last_number, self.last_suffix)


@dataclass
class CodeGenerationResult:
    """Outcome of one patient code allocation."""

    code_patient: str
    tenant_code: str
    year: int
    number: int
    suffix: str
    source: str  # "cache" or "database"
    generated_count: Optional[int] = None
    generated_at: datetime = field(default_factory=datetime.now)
    generation_time_ms: int = 0

    @classmethod
    def build(cls, tenant_code, year, position: SequencePosition, source, generated_count=None):
        return cls(
            code_patient=format_patient_code(tenant_code, year, position),
            tenant_code=tenant_code,
            year=year,
            number=position.number,
            suffix=position.suffix,
            source=source,
            generated_count=generated_count,
        )
