"""
Duplicate patient detection.

Runs before a patient is created. Every active patient that passes a cheap
pre-filter (similar name, birth date within a year, or same phone) is scored
out of 100:

    global = 0.4 * name + 0.4 * birth date + 0.2 * phone

and the best score drives the recommendation (BLOCK >= 85, WARN >= 70).
"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from duplicate_check.domain import scoring
from duplicate_check.domain.model import DuplicateCheckResult, InvalidDuplicateCheck, ScoringPolicy
from duplicate_check.service_layer.unit_of_work import AbstractPatientUnitOfWork

logger = logging.getLogger(__name__)

MAX_RESULTS = 50


def _parse_birth_date(value) -> date:
    if value is None or value == "":
        raise InvalidDuplicateCheck("date_naissance is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise InvalidDuplicateCheck(f"Invalid date_naissance: {value!r}") from e


class DuplicateChecker:
    def __init__(
        self,
        uow_factory: Callable[[], AbstractPatientUnitOfWork],
        policy: Optional[ScoringPolicy] = None,
    ):
        self.uow_factory = uow_factory
        self.policy = policy or ScoringPolicy.from_config()

    def check_duplicate(
        self,
        nom: str,
        prenoms: str,
        date_naissance,
        telephone: Optional[str] = None,
        score_minimum: int = 70,
        limit: int = 5,
    ) -> DuplicateCheckResult:
        if not nom or not nom.strip():
            raise InvalidDuplicateCheck("nom is required")
        if not prenoms or not prenoms.strip():
            raise InvalidDuplicateCheck("prenoms is required")
        birth = _parse_birth_date(date_naissance)
        if not 0 <= score_minimum <= 100:
            raise InvalidDuplicateCheck("score_minimum must be between 0 and 100")
        if not 1 <= limit <= MAX_RESULTS:
            raise InvalidDuplicateCheck(f"limit must be between 1 and {MAX_RESULTS}")

        floor = self.policy.similarity_floor
        with self.uow_factory() as uow:
            rows = uow.patients.candidates(nom, prenoms, birth, telephone, floor)

        scored = [
            scoring.score_candidate(patient, nom, prenoms, birth, telephone, self.policy)
            for patient in rows
            if scoring.passes_prefilter(patient, nom, prenoms, birth, telephone, floor)
        ]
        matches = sorted(
            (c for c in scored if c.global_score >= score_minimum),
            key=lambda c: c.global_score,
            reverse=True,
        )[:limit]

        highest = matches[0].global_score if matches else 0
        result = DuplicateCheckResult(
            has_duplicates=bool(matches),
            highest_score=highest,
            recommendation=self.policy.recommendation_for(highest),
            potential_matches=matches,
        )
        if result.has_duplicates:
            logger.info(
                f"Duplicate check for {nom} {prenoms}: {len(matches)} match(es), "
                f"best {highest} -> {result.recommendation}"
            )
        return result
