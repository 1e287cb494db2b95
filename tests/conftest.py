# pylint: disable=redefined-outer-name
import threading
import time
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

import fakeredis
import pytest
from sqlalchemy import insert
from sqlalchemy.orm import sessionmaker

from duplicate_check.adapters import orm as duplicate_orm
from duplicate_check.adapters.orm import patients
from duplicate_check.adapters.repository import AbstractPatientIdentityRepository
from duplicate_check.service_layer.unit_of_work import AbstractPatientUnitOfWork
from patient_code.adapters import orm
from patient_code.adapters.redis_adapter import AbstractSequenceCache, PatientCacheKeys
from patient_code.adapters.repository import AbstractSequenceRepository
from patient_code.domain.errors import BackendUnavailable
from patient_code.domain.model import SequencePosition, SequenceState
from patient_code.service_layer.mutex_registry import MutexRegistry
from patient_code.service_layer.unit_of_work import AbstractSequenceUnitOfWork, create_serializable_engine


class FakeSequenceCache(AbstractSequenceCache):
    """In-memory cache; flip ``available`` to simulate an outage."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.locks = {}
        self.available = True
        self._mutex = threading.Lock()

    def _check(self):
        if not self.available:
            raise BackendUnavailable("cache is down")

    def get(self, key):
        self._check()
        with self._mutex:
            return self.data.get(key)

    def set(self, key, value, ttl_seconds):
        self._check()
        with self._mutex:
            self.data[key] = value
            self.ttls[key] = ttl_seconds

    def delete(self, key):
        self._check()
        with self._mutex:
            self.data.pop(key, None)

    def compare_and_set(self, key, expected, value, ttl_seconds):
        self._check()
        with self._mutex:
            if self.data.get(key) != expected:
                return False
            self.data[key] = value
            self.ttls[key] = ttl_seconds
            return True

    def acquire_lock(self, key, ttl_seconds, wait_seconds=0.0):
        self._check()
        deadline = time.monotonic() + wait_seconds
        while True:
            with self._mutex:
                if key not in self.locks:
                    token = uuid4().hex
                    self.locks[key] = token
                    return token
            if time.monotonic() >= deadline:
                return None
            time.sleep(0.001)

    def release_lock(self, key, token):
        with self._mutex:
            if self.locks.get(key) != token:
                return False
            del self.locks[key]
            return True


class FakeSequenceStore:
    """Committed rows shared by every FakeUnitOfWork of a test."""

    def __init__(self):
        self.rows = {}
        self.lock = threading.RLock()
        self.fail_commits = False
        self.commits = 0

    def seed(self, tenant_code, year, number, suffix, generated_count=None):
        position = SequencePosition(number, suffix)
        count = position.ordinal if generated_count is None else generated_count
        self.rows[(tenant_code, year)] = SequenceState(tenant_code, year, number, suffix, count, datetime.now())


class FakeSequenceRepository(AbstractSequenceRepository):
    def __init__(self, rows):
        self.rows = rows

    def _get_state(self, tenant_code, year):
        state = self.rows.get((tenant_code, year))
        return replace(state) if state else None

    def _allocate_next(self, tenant_code, year):
        state = self.rows.get((tenant_code, year))
        if state is None:
            position, count = SequencePosition(1), 1
        elif state.position.at_capacity:
            return None
        else:
            position, count = state.position.next(), state.generated_count + 1
        new = SequenceState(tenant_code, year, position.number, position.suffix, count, datetime.now())
        self.rows[(tenant_code, year)] = new
        return replace(new)

    def _advance_to(self, tenant_code, year, position):
        state = self.rows.get((tenant_code, year))
        if state is not None and not position.is_ahead_of(state.position):
            return False
        count = max(state.generated_count if state else 0, position.ordinal)
        self.rows[(tenant_code, year)] = SequenceState(
            tenant_code, year, position.number, position.suffix, count, datetime.now()
        )
        return True


class FakeUnitOfWork(AbstractSequenceUnitOfWork):
    """Holds the store lock for its whole lifetime, like a row lock held until commit."""

    def __init__(self, store):
        self.store = store
        self.committed = False

    def __enter__(self):
        self.store.lock.acquire()
        self.sequences = FakeSequenceRepository(dict(self.store.rows))
        return super().__enter__()

    def __exit__(self, *args):
        try:
            super().__exit__(*args)
        finally:
            self.store.lock.release()

    def _commit(self):
        if self.store.fail_commits:
            raise BackendUnavailable("database is down")
        self.store.rows = dict(self.sequences.rows)
        self.store.commits += 1
        self.committed = True

    def rollback(self):
        pass


class FakePatientRepository(AbstractPatientIdentityRepository):
    def __init__(self, patients_):
        self.patients = patients_

    def _candidates(self, nom, prenoms, date_naissance, telephone, similarity_floor):
        return [p for p in self.patients if p.statut not in ("archive", "decede")]


class FakePatientUnitOfWork(AbstractPatientUnitOfWork):
    def __init__(self, patients_):
        self.patients = FakePatientRepository(patients_)

    def _commit(self):
        pass

    def rollback(self):
        pass


@pytest.fixture
def fake_cache():
    return FakeSequenceCache()


@pytest.fixture
def sequence_store():
    return FakeSequenceStore()


@pytest.fixture
def fake_uow_factory(sequence_store):
    return lambda: FakeUnitOfWork(sequence_store)


@pytest.fixture
def cache_keys():
    return PatientCacheKeys("test")


@pytest.fixture
def mutexes():
    return MutexRegistry()


@pytest.fixture
def make_patient_uow():
    def factory(patients_):
        return lambda: FakePatientUnitOfWork(patients_)
    return factory


@pytest.fixture
def sqlite_session_factory(tmp_path):
    """File backed SQLite so background threads see the same database."""
    engine = create_serializable_engine(f"sqlite:///{tmp_path / 'sequences.db'}")
    duplicate_orm.register_trigram_functions(engine)
    orm.create_tables(engine)
    duplicate_orm.metadata.create_all(engine)

    yield sessionmaker(bind=engine)

    engine.dispose()


@pytest.fixture
def add_patient(sqlite_session_factory):
    """Insert a row into patients_patient."""

    def _add(nom, prenoms, date_naissance, telephone=None, statut="actif", code_patient=None):
        patient_id = str(uuid4())
        with sqlite_session_factory() as session:
            session.execute(
                insert(patients).values(
                    id=patient_id,
                    code_patient=code_patient or f"T-2025-{patient_id[:8]}",
                    nom=nom,
                    prenoms=prenoms,
                    date_naissance=date_naissance,
                    telephone_principal=telephone,
                    statut=statut,
                    created_at=datetime.now(),
                )
            )
            session.commit()
        return patient_id

    return _add


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def build_generator(fake_uow_factory, fake_cache, mutexes, cache_keys):
    """
    Build a PatientCodeGenerator on the in-memory fakes, pinned to 2025.
    Bridges created here are shut down after the test.
    """
    from patient_code.service_layer.code_generator import PatientCodeGenerator
    from patient_code.service_layer.durable_fallback import DurableFallback
    from patient_code.service_layer.fast_path import FastPath
    from patient_code.service_layer.sync_bridge import SyncBridge

    bridges = []

    def _build(fast_path=True, lock_wait_seconds=0.05, warmup_timeout_seconds=2.0, serialization_retries=5):
        durable = DurableFallback(
            fake_uow_factory,
            mutexes,
            cache=fake_cache if fast_path else None,
            keys=cache_keys,
            serialization_retries=serialization_retries,
            lock_wait_seconds=lock_wait_seconds,
        )
        fast = None
        if fast_path:
            bridge = SyncBridge(fake_uow_factory, warmup_timeout_seconds=warmup_timeout_seconds)
            bridges.append(bridge)
            fast = FastPath(fake_cache, bridge, durable, keys=cache_keys, lock_wait_seconds=lock_wait_seconds)
        return PatientCodeGenerator(durable, fast, clock=lambda: datetime(2025, 6, 1, 10, 0))

    yield _build

    for bridge in bridges:
        bridge.shutdown(wait_for_pending=True)
