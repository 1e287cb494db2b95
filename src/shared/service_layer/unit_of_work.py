"""Unit of Work base classes shared by the patient identity contexts."""

from __future__ import annotations

import abc


class AbstractUnitOfWork(abc.ABC):
    """Transaction boundary; anything not committed is rolled back on exit."""

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args):
        self.rollback()

    def commit(self):
        self._commit()

    @abc.abstractmethod
    def _commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self):
        raise NotImplementedError


class SqlAlchemySessionUnitOfWork(AbstractUnitOfWork):
    """
    Opens one session per ``with`` block and closes it afterwards.
    Subclasses attach their repositories in ``_bind``.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def __enter__(self):
        self.session = self.session_factory()
        self._bind(self.session)
        return super().__enter__()

    def __exit__(self, *args):
        super().__exit__(*args)
        self.session.close()

    @abc.abstractmethod
    def _bind(self, session):
        raise NotImplementedError

    def _commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
