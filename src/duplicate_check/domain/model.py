"""Domain model for duplicate patient detection."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

import config

RECOMMENDATION_BLOCK = "BLOCK"  # score >= 85
RECOMMENDATION_WARN = "WARN"  # score 70-84
RECOMMENDATION_ALLOW = "ALLOW"  # score < 70

# patients in these states are never proposed as duplicates
EXCLUDED_STATUSES = ("archive", "decede")


class InvalidDuplicateCheck(ValueError):
    """Raised when a duplicate check request is incomplete or out of range."""
    pass


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights and thresholds of the duplicate score."""

    name_weight: float = 0.4
    date_weight: float = 0.4
    phone_weight: float = 0.2
    warn_threshold: int = 70
    block_threshold: int = 85
    similarity_floor: float = 0.3

    @classmethod
    def from_config(cls) -> "ScoringPolicy":
        return cls(**config.get_duplicate_scoring_settings())

    def recommendation_for(self, score: int) -> str:
        if score >= self.block_threshold:
            return RECOMMENDATION_BLOCK
        if score >= self.warn_threshold:
            return RECOMMENDATION_WARN
        return RECOMMENDATION_ALLOW


@dataclass
class PatientIdentity:
    """Identity fields of an existing patient, as read for scoring."""

    id: str
    code_patient: str
    nom: str
    prenoms: str
    date_naissance: date
    sexe: Optional[str] = None
    telephone_principal: Optional[str] = None
    statut: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class DuplicateCandidate:
    """An existing patient that may be the one being registered."""

    patient: PatientIdentity
    global_score: int
    name_score: int
    date_score: int
    phone_score: int
    nom_match: int = 0
    prenoms_match: int = 0


@dataclass
class DuplicateCheckResult:
    has_duplicates: bool
    highest_score: int
    recommendation: str
    potential_matches: List[DuplicateCandidate] = field(default_factory=list)
    checked_at: datetime = field(default_factory=datetime.now)

    def should_block(self) -> bool:
        """Whether patient creation should be refused."""
        return self.recommendation == RECOMMENDATION_BLOCK
