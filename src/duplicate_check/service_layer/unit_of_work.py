from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import config
from duplicate_check.adapters import orm, repository
from shared.service_layer.unit_of_work import AbstractUnitOfWork, SqlAlchemySessionUnitOfWork


class AbstractPatientUnitOfWork(AbstractUnitOfWork):
    patients: repository.AbstractPatientIdentityRepository


@lru_cache(maxsize=None)
def default_session_factory():
    # read only; default isolation is enough
    engine = create_engine(config.get_postgres_uri(), pool_pre_ping=True)
    orm.register_trigram_functions(engine)
    return sessionmaker(bind=engine)


class SqlAlchemyUnitOfWork(SqlAlchemySessionUnitOfWork, AbstractPatientUnitOfWork):
    def __init__(self, session_factory=None):
        super().__init__(session_factory or default_session_factory())

    def _bind(self, session):
        self.patients = repository.SqlAlchemyPatientIdentityRepository(session)
