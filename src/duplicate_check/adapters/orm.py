import sqlite3

from sqlalchemy import (
    Table,
    Column,
    String,
    Date,
    DateTime,
    event,
)
from sqlalchemy.orm import registry

from duplicate_check.domain import scoring

mapper_registry = registry()
metadata = mapper_registry.metadata

# PostgreSQL needs both extensions for the candidate pre-filter
REQUIRED_EXTENSIONS = ("pg_trgm", "unaccent")

# Owned by the patient creation workflow; only the identity columns used for
# duplicate scoring are declared here.
patients = Table(
    "patients_patient",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("code_patient", String(40), unique=True, nullable=False),
    Column("nom", String(100), nullable=False),
    Column("prenoms", String(150), nullable=False),
    Column("date_naissance", Date, nullable=False),
    Column("sexe", String(1)),
    Column("telephone_principal", String(20)),
    Column("statut", String(20), nullable=False, server_default="actif"),
    Column("created_at", DateTime),
)


def register_trigram_functions(engine):
    """
    Give SQLite connections ``similarity`` and ``unaccent`` so the candidate
    query runs unchanged outside PostgreSQL. No-op for other drivers.
    """

    @event.listens_for(engine, "connect")
    def _register(dbapi_connection, connection_record):
        if isinstance(dbapi_connection, sqlite3.Connection):
            dbapi_connection.create_function("similarity", 2, scoring.similarity, deterministic=True)
            dbapi_connection.create_function("unaccent", 1, scoring.strip_accents, deterministic=True)
