from __future__ import annotations
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import sessionmaker

import config
from patient_code.adapters import repository
from shared.service_layer.unit_of_work import AbstractUnitOfWork, SqlAlchemySessionUnitOfWork


class AbstractSequenceUnitOfWork(AbstractUnitOfWork):
    sequences: repository.AbstractSequenceRepository


def create_serializable_engine(uri=None, statement_timeout_ms=None):
    """
    Engine for sequence transactions. Every transaction runs SERIALIZABLE so
    the database itself orders concurrent writers of the same period.
    """
    uri = uri or config.get_postgres_uri()
    connect_args = {}
    if uri.startswith("postgresql") and statement_timeout_ms:
        connect_args["options"] = f"-c statement_timeout={statement_timeout_ms}"
    return create_engine(
        uri,
        isolation_level="SERIALIZABLE",
        pool_pre_ping=True,
        connect_args=connect_args,
    )


@lru_cache(maxsize=None)
def default_session_factory():
    settings = config.get_patient_code_settings()
    return sessionmaker(
        bind=create_serializable_engine(statement_timeout_ms=settings["statement_timeout_ms"])
    )


class SqlAlchemyUnitOfWork(SqlAlchemySessionUnitOfWork, AbstractSequenceUnitOfWork):
    def __init__(self, session_factory=None):
        super().__init__(session_factory or default_session_factory())

    def _bind(self, session):
        self.sequences = repository.SqlAlchemySequenceRepository(session)

    def _commit(self):
        # PostgreSQL may only detect a serialization failure at commit time
        try:
            self.session.commit()
        except DBAPIError as e:
            raise repository.translate_db_error(e) from e
