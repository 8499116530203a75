"""
corebank_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_settings()`` is the only way services and tooling obtain
    configuration.  It loads the packaged ``defaults.yaml``, merges the file
    named by ``COREBANK_CONFIG`` (or an explicit path) over it, applies the
    ``DATABASE_URL`` override and returns frozen ``CoreBankSettings``.

Architecture position:
    Configuration -- sits above ``corebank_kernel`` and below
    ``corebank_services``.  The kernel never imports from this package;
    ``retry_policy_from`` and ``lock_manager_from`` translate ledger settings
    into the kernel's locking; ``engine_from`` builds the configured engine.

Failure modes:
    - ``FileNotFoundError`` -- COREBANK_CONFIG or ``path`` names a missing file.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every load emits a ``COREBANK_CONFIG_TRACE`` log entry carrying the
    source and checksum, tying later postings to the configuration in force.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy.engine import Engine

from corebank_config.loader import load_yaml_file, merge, parse_settings
from corebank_config.schema import (
    LOAN_POSTING_ROLES,
    CoreBankSettings,
    DatabaseSettings,
    LedgerSettings,
    LoanSettings,
    ReconciliationSettings,
)
from corebank_kernel.db.engine import build_engine
from corebank_kernel.services.locking import LockManager, RetryPolicy, configure_lock_manager

_logger = logging.getLogger("corebank.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_ENV_VAR = "COREBANK_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_settings(path: Path | str | None = None) -> CoreBankSettings:
    """
    Load the active settings.

    Resolution order: packaged defaults, then ``path`` (or the file named by
    COREBANK_CONFIG), then DATABASE_URL for ``database.url``.

    Not cached: callers hold the returned settings for as long as they need
    them.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)

    override_path = path or os.environ.get(CONFIG_ENV_VAR)
    if override_path:
        data = merge(data, load_yaml_file(Path(override_path)))
        source = str(override_path)

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        data = merge(data, {"database": {"url": database_url}})

    settings = parse_settings(data, source=source)

    _logger.info(
        "COREBANK_CONFIG_TRACE",
        extra={
            "trace_type": "COREBANK_CONFIG_TRACE",
            "source": source,
            "checksum": settings.checksum,
            "allow_prepayment": settings.loans.allow_prepayment,
            "max_retries": settings.ledger.max_retries,
        },
    )
    return settings


def retry_policy_from(ledger: LedgerSettings) -> RetryPolicy:
    """Kernel RetryPolicy for the configured lock and retry settings."""
    return RetryPolicy(
        lock_timeout_seconds=ledger.lock_timeout_seconds,
        max_retries=ledger.max_retries,
        backoff_base_seconds=ledger.backoff_base_seconds,
        backoff_max_seconds=ledger.backoff_max_seconds,
    )


def lock_manager_from(ledger: LedgerSettings) -> LockManager:
    """The process-wide LockManager, put under the configured retry policy."""
    return configure_lock_manager(retry_policy_from(ledger))


def engine_from(database: DatabaseSettings) -> Engine:
    """Engine built from the configured connection settings."""
    return build_engine(
        database.url,
        echo=database.echo,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
    )


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "DEFAULTS_PATH",
    "LOAN_POSTING_ROLES",
    "CoreBankSettings",
    "DatabaseSettings",
    "LedgerSettings",
    "LoanSettings",
    "ReconciliationSettings",
    "engine_from",
    "get_active_settings",
    "lock_manager_from",
    "retry_policy_from",
]
