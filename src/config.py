"""Configuration settings for the patient identity core."""

import os


def _env_bool(name, default):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def get_postgres_uri():
    """Get PostgreSQL connection URI from environment variables."""
    host = os.environ.get("DB_HOST", "localhost")
    port = os.environ.get("DB_PORT", "5432")
    password = os.environ.get("DB_PASSWORD", "soins_suite_pass")
    user = os.environ.get("DB_USER", "soins_suite_user")
    db_name = os.environ.get("DB_NAME", "soins_suite_db")
    return f"postgresql://{user}:{password}@{host}:{port}/{db_name}"


def get_redis_host_and_port():
    """Get Redis connection details from environment variables."""
    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", "6379"))
    return dict(host=host, port=port)


def get_redis_url():
    """Get Redis URL from environment variables."""
    redis_config = get_redis_host_and_port()
    db = os.environ.get("REDIS_DB", "0")
    return f"redis://{redis_config['host']}:{redis_config['port']}/{db}"


def get_cache_namespace():
    """Prefix shared by every cache key of this service."""
    return os.environ.get("CACHE_NAMESPACE", "soins_suite")


def get_patient_code_settings():
    """Tuning knobs for patient code allocation."""
    return dict(
        fast_path_enabled=_env_bool("PATIENT_CODE_FAST_PATH_ENABLED", "true"),
        lock_ttl_seconds=float(os.environ.get("PATIENT_CODE_LOCK_TTL_SECONDS", "5")),
        lock_wait_seconds=float(os.environ.get("PATIENT_CODE_LOCK_WAIT_SECONDS", "0.25")),
        warmup_timeout_seconds=float(os.environ.get("PATIENT_CODE_WARMUP_TIMEOUT_SECONDS", "2")),
        background_workers=int(os.environ.get("PATIENT_CODE_BACKGROUND_WORKERS", "4")),
        max_pending_writes=int(os.environ.get("PATIENT_CODE_MAX_PENDING_WRITES", "1000")),
        serialization_retries=int(os.environ.get("PATIENT_CODE_SERIALIZATION_RETRIES", "5")),
        statement_timeout_ms=int(os.environ.get("PATIENT_CODE_STATEMENT_TIMEOUT_MS", "5000")),
    )


def get_duplicate_scoring_settings():
    """
    Weights and thresholds used by the duplicate patient detector.

    Defaults reproduce the scoring used in production: 40% name, 40% birth date,
    20% phone; WARN from 70, BLOCK from 85.
    """
    return dict(
        name_weight=float(os.environ.get("DUPLICATE_NAME_WEIGHT", "0.4")),
        date_weight=float(os.environ.get("DUPLICATE_DATE_WEIGHT", "0.4")),
        phone_weight=float(os.environ.get("DUPLICATE_PHONE_WEIGHT", "0.2")),
        warn_threshold=int(os.environ.get("DUPLICATE_WARN_THRESHOLD", "70")),
        block_threshold=int(os.environ.get("DUPLICATE_BLOCK_THRESHOLD", "85")),
        similarity_floor=float(os.environ.get("DUPLICATE_SIMILARITY_FLOOR", "0.3")),
    )


def get_log_level():
    return os.environ.get("LOG_LEVEL", "INFO").upper()
