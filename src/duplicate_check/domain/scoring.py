"""
Duplicate patient scoring.

Trigram similarity follows PostgreSQL pg_trgm: text is lower-cased and split on
non-alphanumeric characters, each word is padded with two leading blanks and one
trailing blank, and similarity is |shared trigrams| / |all trigrams|. Accents
are stripped first, like ``unaccent``.
"""

import math
import re
import unicodedata
from datetime import date, datetime
from typing import Optional, Set

from duplicate_check.domain.model import DuplicateCandidate, PatientIdentity, ScoringPolicy

_WORD_RE = re.compile(r"[^\W_]+")
_NON_DIGITS_RE = re.compile(r"\D+")

PHONE_SUFFIX_DIGITS = 8
BIRTH_DATE_WINDOW_DAYS = 365


def strip_accents(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalise(value: Optional[str]) -> str:
    return strip_accents(value or "").lower()


def trigrams(value: Optional[str]) -> Set[str]:
    grams = set()
    for word in _WORD_RE.findall(normalise(value)):
        padded = f"  {word} "
        grams.update(padded[i:i + 3] for i in range(len(padded) - 2))
    return grams


def similarity(left: Optional[str], right: Optional[str]) -> float:
    a, b = trigrams(left), trigrams(right)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def days_apart(left, right) -> int:
    return abs((_as_date(left) - _as_date(right)).days)


def date_score(candidate_birth, requested_birth) -> int:
    if candidate_birth is None or requested_birth is None:
        return 0
    gap = days_apart(candidate_birth, requested_birth)
    if gap == 0:
        return 100
    if gap <= 7:
        return 90
    if gap <= 30:
        return 70
    if gap <= BIRTH_DATE_WINDOW_DAYS:
        return 30
    return 0


def _digits(phone: Optional[str]) -> str:
    return _NON_DIGITS_RE.sub("", phone or "")


def phone_score(candidate_phone: Optional[str], requested_phone: Optional[str]) -> int:
    if not candidate_phone or not requested_phone:
        return 0
    if candidate_phone.strip() == requested_phone.strip():
        return 100
    a, b = _digits(candidate_phone), _digits(requested_phone)
    if len(a) >= PHONE_SUFFIX_DIGITS and len(b) >= PHONE_SUFFIX_DIGITS and a[-PHONE_SUFFIX_DIGITS:] == b[-PHONE_SUFFIX_DIGITS:]:
        return 80
    return 0


def round_score(value: float) -> int:
    # half up, like a numeric cast in SQL
    return int(math.floor(value + 0.5))


def passes_prefilter(patient: PatientIdentity, nom, prenoms, date_naissance, telephone, floor: float) -> bool:
    """Cheap test deciding whether a row is worth scoring at all."""
    if similarity(patient.nom, nom) > floor or similarity(patient.prenoms, prenoms) > floor:
        return True
    if patient.date_naissance is not None and days_apart(patient.date_naissance, date_naissance) <= BIRTH_DATE_WINDOW_DAYS:
        return True
    return bool(telephone) and patient.telephone_principal == telephone


def score_candidate(
    patient: PatientIdentity,
    nom: str,
    prenoms: str,
    date_naissance,
    telephone: Optional[str],
    policy: ScoringPolicy,
) -> DuplicateCandidate:
    nom_match = similarity(patient.nom, nom) * 100
    prenoms_match = similarity(patient.prenoms, prenoms) * 100
    name = max(nom_match, prenoms_match)
    birth = date_score(patient.date_naissance, date_naissance)
    phone = phone_score(patient.telephone_principal, telephone)

    total = policy.name_weight * name + policy.date_weight * birth + policy.phone_weight * phone
    return DuplicateCandidate(
        patient=patient,
        global_score=round_score(total),
        name_score=round_score(name),
        date_score=birth,
        phone_score=phone,
        nom_match=round_score(nom_match),
        prenoms_match=round_score(prenoms_match),
    )
