"""
Patient identity service entrypoint.

Wires patient code allocation and duplicate detection onto a message bus used
by the patient creation workflow, and exposes a small command line for
operators:

    python -m shared.entrypoints.patient_identity_service generate CENTREA
    python -m shared.entrypoints.patient_identity_service stats CENTREA --year 2025
    python -m shared.entrypoints.patient_identity_service check KOUASSI "Jean Marc" 1985-03-15
"""
import argparse
import json
import logging
from dataclasses import asdict
from functools import partial
from typing import Callable, Optional

import config
from duplicate_check.domain.commands import CheckPatientDuplicate
from duplicate_check.domain.model import ScoringPolicy
from duplicate_check.service_layer import handlers as duplicate_handlers
from duplicate_check.service_layer import unit_of_work as duplicate_uow
from duplicate_check.service_layer.duplicate_checker import DuplicateChecker
from patient_code.adapters import orm
from patient_code.adapters.redis_adapter import AbstractSequenceCache, PatientCacheKeys, RedisSequenceCache
from patient_code.domain.commands import GeneratePatientCode, GetSequenceStats
from patient_code.domain.errors import PatientCodeError
from patient_code.service_layer import handlers as patient_code_handlers
from patient_code.service_layer import unit_of_work as patient_code_uow
from patient_code.service_layer.code_generator import PatientCodeGenerator
from patient_code.service_layer.durable_fallback import DurableFallback
from patient_code.service_layer.fast_path import FastPath
from patient_code.service_layer.mutex_registry import MutexRegistry
from patient_code.service_layer.sync_bridge import SyncBridge
from shared.service_layer.messagebus import MessageBus

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, config.get_log_level(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def bootstrap(
    sequence_uow_factory: Optional[Callable] = None,
    patient_uow_factory: Optional[Callable] = None,
    cache: Optional[AbstractSequenceCache] = None,
    sync_bridge: Optional[SyncBridge] = None,
    fast_path_enabled: Optional[bool] = None,
    policy: Optional[ScoringPolicy] = None,
) -> MessageBus:
    """
    Build the service graph and register command handlers.

    Every collaborator can be injected; missing ones are built from config.
    With the fast path disabled no cache client is created at all and every
    code comes from the database.
    """
    settings = config.get_patient_code_settings()
    if fast_path_enabled is None:
        fast_path_enabled = settings["fast_path_enabled"]

    sequence_uow_factory = sequence_uow_factory or patient_code_uow.SqlAlchemyUnitOfWork
    patient_uow_factory = patient_uow_factory or duplicate_uow.SqlAlchemyUnitOfWork
    keys = PatientCacheKeys(config.get_cache_namespace())

    if fast_path_enabled and cache is None:
        cache = RedisSequenceCache()
    if not fast_path_enabled:
        cache = None

    durable = DurableFallback(
        sequence_uow_factory,
        MutexRegistry(),
        cache=cache,
        keys=keys,
        serialization_retries=settings["serialization_retries"],
        lock_ttl_seconds=settings["lock_ttl_seconds"],
        lock_wait_seconds=settings["lock_wait_seconds"],
    )

    fast_path = None
    if cache is not None:
        sync_bridge = sync_bridge or SyncBridge(
            sequence_uow_factory,
            max_workers=settings["background_workers"],
            max_pending_writes=settings["max_pending_writes"],
            warmup_timeout_seconds=settings["warmup_timeout_seconds"],
        )
        fast_path = FastPath(
            cache,
            sync_bridge,
            durable,
            keys=keys,
            lock_ttl_seconds=settings["lock_ttl_seconds"],
            lock_wait_seconds=settings["lock_wait_seconds"],
        )
    logger.info(f"Patient code allocation ready (fast path {'on' if fast_path else 'off'})")

    generator = PatientCodeGenerator(durable, fast_path)
    checker = DuplicateChecker(patient_uow_factory, policy)

    bus = MessageBus()
    bus.register_handler(
        GeneratePatientCode,
        partial(patient_code_handlers.generate_patient_code, generator=generator),
    )
    bus.register_handler(
        GetSequenceStats,
        lambda cmd: patient_code_handlers.get_sequence_stats(cmd, uow=sequence_uow_factory()),
    )
    bus.register_handler(
        CheckPatientDuplicate,
        partial(duplicate_handlers.check_patient_duplicate, checker=checker),
    )
    return bus


def _command_from_args(args):
    if args.action == "generate":
        return GeneratePatientCode(args.tenant_code)
    if args.action == "stats":
        return GetSequenceStats(args.tenant_code, args.year)
    return CheckPatientDuplicate(
        nom=args.nom,
        prenoms=args.prenoms,
        date_naissance=args.date_naissance,
        telephone=args.telephone,
        score_minimum=args.score_minimum,
        limit=args.limit,
    )


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Patient identity operations")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--init-db",
        action="store_true",
        help="Create the sequences table before running",
    )
    sub = parser.add_subparsers(dest="action", required=True)

    generate = sub.add_parser("generate", parents=[common], help="Allocate the next patient code")
    generate.add_argument("tenant_code")

    stats = sub.add_parser("stats", parents=[common], help="Show sequence usage for a year")
    stats.add_argument("tenant_code")
    stats.add_argument("--year", type=int, default=None)

    check = sub.add_parser("check", parents=[common], help="Look for likely duplicates of a patient")
    check.add_argument("nom")
    check.add_argument("prenoms")
    check.add_argument("date_naissance", help="YYYY-MM-DD")
    check.add_argument("--telephone", default=None)
    check.add_argument("--score-minimum", type=int, default=70)
    check.add_argument("--limit", type=int, default=5)

    args = parser.parse_args(argv)

    configure_logging()
    session_factory = patient_code_uow.default_session_factory()
    if args.init_db:
        orm.create_tables(session_factory.kw["bind"])

    bridge = None
    settings = config.get_patient_code_settings()
    if settings["fast_path_enabled"]:
        bridge = SyncBridge(
            patient_code_uow.SqlAlchemyUnitOfWork,
            max_workers=settings["background_workers"],
            max_pending_writes=settings["max_pending_writes"],
            warmup_timeout_seconds=settings["warmup_timeout_seconds"],
        )
    bus = bootstrap(sync_bridge=bridge)

    try:
        result = bus.handle(_command_from_args(args))
    except (PatientCodeError, ValueError) as e:
        logger.error(f"{args.action} failed: {e}")
        return 1
    finally:
        if bridge is not None:
            bridge.shutdown(wait_for_pending=True)

    payload = result if isinstance(result, dict) else asdict(result)
    print(json.dumps(payload, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
