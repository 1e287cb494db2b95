import logging
from sqlalchemy import (
    Table,
    Column,
    Integer,
    BigInteger,
    String,
    DateTime,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import registry

logger = logging.getLogger(__name__)

# SQLAlchemy 2.0 pattern: use registry
mapper_registry = registry()
metadata = mapper_registry.metadata

# One row per establishment and year. Rows are never deleted: they back
# capacity reporting and rebuild the cache after it is lost.
sequences = Table(
    "patients_code_sequences",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_code", String(20), nullable=False),
    Column("year", Integer, nullable=False),
    Column("last_number", Integer, nullable=False, server_default="0"),
    Column("last_suffix", String(3), nullable=False, server_default="AAA"),
    Column("generated_count", BigInteger, nullable=False, server_default="0"),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("tenant_code", "year", name="uq_patients_sequences_tenant_year"),
)


def create_tables(engine):
    logger.info("Creating patient code tables")
    metadata.create_all(engine)
