import abc
import logging
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import DBAPIError

from duplicate_check.adapters.orm import patients
from duplicate_check.domain.model import EXCLUDED_STATUSES, PatientIdentity
from duplicate_check.domain.scoring import BIRTH_DATE_WINDOW_DAYS
from patient_code.domain.errors import BackendUnavailable

logger = logging.getLogger(__name__)


class AbstractPatientIdentityRepository(abc.ABC):
    """Read access to registered patients for duplicate detection."""

    def candidates(
        self,
        nom: str,
        prenoms: str,
        date_naissance: date,
        telephone: Optional[str],
        similarity_floor: float,
    ) -> List[PatientIdentity]:
        """
        Active patients that may match the given identity. The result can be
        a superset of the real pre-filter; callers score every row anyway.
        """
        return self._candidates(nom, prenoms, date_naissance, telephone, similarity_floor)

    @abc.abstractmethod
    def _candidates(self, nom, prenoms, date_naissance, telephone, similarity_floor) -> List[PatientIdentity]:
        raise NotImplementedError


# dialects whose connections provide similarity() and unaccent()
TRIGRAM_DIALECTS = ("postgresql", "sqlite")


def _name_matches(column, value: str, floor: float):
    return func.similarity(func.unaccent(func.lower(column)), func.unaccent(func.lower(value))) > floor


class SqlAlchemyPatientIdentityRepository(AbstractPatientIdentityRepository):
    def __init__(self, session):
        self.session = session

    def _candidates(self, nom, prenoms, date_naissance, telephone, similarity_floor):
        p = patients.c
        window = timedelta(days=BIRTH_DATE_WINDOW_DAYS)
        stmt = select(
            p.id,
            p.code_patient,
            p.nom,
            p.prenoms,
            p.date_naissance,
            p.sexe,
            p.telephone_principal,
            p.statut,
            p.created_at,
        ).where(p.statut.notin_(EXCLUDED_STATUSES))

        clauses = [p.date_naissance.between(date_naissance - window, date_naissance + window)]
        if telephone:
            clauses.append(p.telephone_principal == telephone)
        if self.session.get_bind().dialect.name in TRIGRAM_DIALECTS:
            clauses.append(_name_matches(p.nom, nom, similarity_floor))
            clauses.append(_name_matches(p.prenoms, prenoms, similarity_floor))
        else:
            logger.warning("No trigram functions on this database, name-only matches are not fetched")
        stmt = stmt.where(or_(*clauses))

        try:
            rows = self.session.execute(stmt).all()
        except DBAPIError as e:
            raise BackendUnavailable(f"Database error: {e.orig}") from e
        return [PatientIdentity(*row) for row in rows]
