"""
Concurrent patient code allocation against SQLite and fakeredis.

Several generators share the database and Redis but each has its own mutex
registry, like separate service processes. The lock wait is short so database
allocations run alongside cache allocations.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from patient_code.adapters.redis_adapter import PatientCacheKeys, RedisSequenceCache
from patient_code.domain.model import SequencePosition
from patient_code.service_layer.code_generator import PatientCodeGenerator
from patient_code.service_layer.durable_fallback import DurableFallback
from patient_code.service_layer.fast_path import FastPath
from patient_code.service_layer.mutex_registry import MutexRegistry
from patient_code.service_layer.sync_bridge import SyncBridge
from patient_code.service_layer.unit_of_work import SqlAlchemyUnitOfWork

T = "CENTREA"
YEAR = datetime.now().year
PROCESSES = 4
CALLERS = 60


@pytest.fixture
def uow_factory(sqlite_session_factory):
    return lambda: SqlAlchemyUnitOfWork(sqlite_session_factory)


@pytest.fixture
def generators(uow_factory, redis_client):
    keys = PatientCacheKeys("soins_suite")
    bridges = []
    built = []
    for _ in range(PROCESSES):
        cache = RedisSequenceCache(redis_client)
        durable = DurableFallback(
            uow_factory, MutexRegistry(), cache=cache, keys=keys, lock_wait_seconds=0.01
        )
        bridge = SyncBridge(uow_factory, max_workers=1)
        bridges.append(bridge)
        fast_path = FastPath(cache, bridge, durable, keys=keys, lock_wait_seconds=0.01)
        built.append(PatientCodeGenerator(durable, fast_path))

    yield built

    for bridge in bridges:
        bridge.shutdown(wait_for_pending=True)


def _generate(generators, i):
    try:
        return generators[i % len(generators)].generate_code(T), None
    except Exception as e:  # pylint: disable=broad-except
        return None, e


def test_concurrent_processes_issue_unique_contiguous_codes(generators, uow_factory):
    with ThreadPoolExecutor(max_workers=20) as pool:
        outcomes = list(pool.map(lambda i: _generate(generators, i), range(CALLERS)))

    errors = [e for _, e in outcomes if e is not None]
    results = [r for r, _ in outcomes if r is not None]
    assert errors == []

    positions = [SequencePosition(r.number, r.suffix) for r in results]
    assert len(set(positions)) == CALLERS
    assert sorted(p.ordinal for p in positions) == list(range(1, CALLERS + 1))

    for generator in generators:
        assert generator.fast_path.bridge.drain(timeout=10)
    with uow_factory() as uow:
        assert uow.sequences.get_state(T, YEAR).position == SequencePosition(CALLERS, "AAA")
