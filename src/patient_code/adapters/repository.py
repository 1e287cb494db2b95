import abc
import logging
from datetime import datetime
from string import ascii_uppercase
from typing import Optional

from sqlalchemy import String, and_, case, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError

from patient_code.adapters.orm import sequences
from patient_code.domain.errors import BackendUnavailable, CapacityExceeded, SerializationConflict
from patient_code.domain.model import FIRST_SUFFIX, LAST_SUFFIX, MAX_NUMBER, SequencePosition, SequenceState

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE_CODES = {"40001", "40P01"}


def translate_db_error(error: DBAPIError, tenant_code: str = "", year: Optional[int] = None):
    """Map a driver error onto the allocation error taxonomy."""
    orig = getattr(error, "orig", None)
    if getattr(orig, "pgcode", None) in SERIALIZATION_FAILURE_CODES or "database is locked" in str(orig):
        return SerializationConflict(f"Concurrent update of sequence: {orig}", tenant_code, year)
    return BackendUnavailable(f"Database error: {orig}", tenant_code, year)


class AbstractSequenceRepository(abc.ABC):
    """Access to the durable patient code sequences."""

    def get_state(self, tenant_code: str, year: int) -> Optional[SequenceState]:
        return self._get_state(tenant_code, year)

    def allocate_next(self, tenant_code: str, year: int) -> SequenceState:
        """
        Atomically move the period to its next position and return it.
        Creates the row at 1/AAA on first use.

        Raises:
            CapacityExceeded: if the period already reached 999-ZZZ
        """
        state = self._allocate_next(tenant_code, year)
        if state is None:
            raise CapacityExceeded("Maximum capacity reached for the year", tenant_code, year)
        return state

    def advance_to(self, tenant_code: str, year: int, position: SequencePosition) -> bool:
        """
        Move the period forward to ``position`` if it is behind it.
        Never moves a period backwards. Returns True if the row changed.
        """
        if position.number == 0:
            return False
        return self._advance_to(tenant_code, year, position)

    @abc.abstractmethod
    def _get_state(self, tenant_code: str, year: int) -> Optional[SequenceState]:
        raise NotImplementedError

    @abc.abstractmethod
    def _allocate_next(self, tenant_code: str, year: int) -> Optional[SequenceState]:
        raise NotImplementedError

    @abc.abstractmethod
    def _advance_to(self, tenant_code: str, year: int, position: SequencePosition) -> bool:
        raise NotImplementedError


def _next_letter(letter):
    # 'Z' maps to NULL; callers only apply it to letters below 'Z'
    return case(dict(zip(ascii_uppercase, ascii_uppercase[1:])), value=letter)


def _advance_suffix(suffix):
    """SQL form of the odometer rule applied to a 3-letter suffix column."""
    first, second, third = (func.substr(suffix, i, 1, type_=String) for i in (1, 2, 3))
    return case(
        (third != "Z", first.concat(second).concat(_next_letter(third))),
        (second != "Z", first.concat(_next_letter(second)).concat("A")),
        else_=_next_letter(first).concat("AA"),
    )


class SqlAlchemySequenceRepository(AbstractSequenceRepository):
    def __init__(self, session):
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(sequences)
        if dialect == "sqlite":
            return sqlite.insert(sequences)
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    def _get_state(self, tenant_code, year):
        c = sequences.c
        try:
            row = self.session.execute(
                select(c.last_number, c.last_suffix, c.generated_count, c.updated_at)
                .where(c.tenant_code == tenant_code, c.year == year)
            ).first()
        except DBAPIError as e:
            raise translate_db_error(e, tenant_code, year) from e
        if row is None:
            return None
        return SequenceState(tenant_code, year, *row)

    def _allocate_next(self, tenant_code, year):
        c = sequences.c
        now = datetime.now()
        wraps = c.last_number >= MAX_NUMBER
        stmt = self._insert().values(
            tenant_code=tenant_code,
            year=year,
            last_number=1,
            last_suffix=FIRST_SUFFIX,
            generated_count=1,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[c.tenant_code, c.year],
            set_={
                "last_number": case((wraps, 1), else_=c.last_number + 1),
                "last_suffix": case((wraps, _advance_suffix(c.last_suffix)), else_=c.last_suffix),
                "generated_count": c.generated_count + 1,
                "updated_at": now,
            },
            # at 999-ZZZ the row is left untouched and nothing is returned
            where=~and_(wraps, c.last_suffix == LAST_SUFFIX),
        ).returning(c.last_number, c.last_suffix, c.generated_count, c.updated_at)

        try:
            row = self.session.execute(stmt).first()
        except DBAPIError as e:
            raise translate_db_error(e, tenant_code, year) from e
        if row is None:
            return None
        return SequenceState(tenant_code, year, *row)

    def _advance_to(self, tenant_code, year, position):
        c = sequences.c
        now = datetime.now()
        stmt = self._insert().values(
            tenant_code=tenant_code,
            year=year,
            last_number=position.number,
            last_suffix=position.suffix,
            generated_count=position.ordinal,
            updated_at=now,
        )
        new = stmt.excluded
        behind = or_(
            c.last_suffix < new.last_suffix,
            and_(c.last_suffix == new.last_suffix, c.last_number < new.last_number),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[c.tenant_code, c.year],
            set_={
                "last_number": new.last_number,
                "last_suffix": new.last_suffix,
                "generated_count": case(
                    (c.generated_count < new.generated_count, new.generated_count),
                    else_=c.generated_count,
                ),
                "updated_at": now,
            },
            where=behind,
        ).returning(c.last_number)

        try:
            row = self.session.execute(stmt).first()
        except DBAPIError as e:
            raise translate_db_error(e, tenant_code, year) from e
        return row is not None
