"""
Configuration Loader (``corebank_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the frozen dataclasses of
``corebank_config.schema``.  Runtime callers go through
``corebank_config.get_active_settings()`` instead of calling this directly.

Invariants enforced
-------------------
* Decimal settings are parsed from strings or ints; floats are rejected.
* Unknown keys in a section raise ``ValueError`` so that typos are not
  silently ignored.
* Every posting role in ``LOAN_POSTING_ROLES`` is bound.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from corebank_config.schema import (
    LOAN_POSTING_ROLES,
    ClassificationThresholdsDef,
    CoreBankSettings,
    DatabaseSettings,
    LedgerSettings,
    LoanSettings,
    ReconciliationSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, float):
        raise ValueError(f"{name} must be quoted as a string, got float {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} is not a decimal: {value!r}") from exc


def _check_keys(section: str, data: dict[str, Any], cls: type) -> None:
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    _check_keys("database", data, DatabaseSettings)
    return DatabaseSettings(**data)


def parse_ledger(data: dict[str, Any]) -> LedgerSettings:
    _check_keys("ledger", data, LedgerSettings)
    settings = LedgerSettings(**data)
    if settings.lock_timeout_seconds <= 0:
        raise ValueError("ledger.lock_timeout_seconds must be positive")
    if settings.max_retries < 0:
        raise ValueError("ledger.max_retries must not be negative")
    return settings


def parse_loans(data: dict[str, Any]) -> LoanSettings:
    data = dict(data)
    _check_keys("loans", data, LoanSettings)

    thresholds_raw = data.pop("classification_thresholds", {}) or {}
    _check_keys("loans.classification_thresholds", thresholds_raw, ClassificationThresholdsDef)
    thresholds = ClassificationThresholdsDef(**thresholds_raw)

    if "penalty_daily_rate" in data:
        data["penalty_daily_rate"] = parse_decimal(data["penalty_daily_rate"], "loans.penalty_daily_rate")

    roles = {str(k): str(v) for k, v in (data.pop("posting_roles", {}) or {}).items()}
    missing = [r for r in LOAN_POSTING_ROLES if r not in roles]
    if missing:
        raise ValueError(f"loans.posting_roles is missing roles: {missing}")

    settings = LoanSettings(classification_thresholds=thresholds, posting_roles=roles, **data)
    if settings.max_tenor_months < 1:
        raise ValueError("loans.max_tenor_months must be at least 1")
    if settings.grace_days < 0:
        raise ValueError("loans.grace_days must not be negative")
    return settings


def parse_reconciliation(data: dict[str, Any]) -> ReconciliationSettings:
    data = dict(data)
    _check_keys("reconciliation", data, ReconciliationSettings)
    for key in ("amount_tolerance", "variance_alert_threshold"):
        if key in data:
            data[key] = parse_decimal(data[key], f"reconciliation.{key}")
    return ReconciliationSettings(**data)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; ``override`` wins."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_settings(data: dict[str, Any], source: str = "") -> CoreBankSettings:
    """Parse a full settings dict (already merged over the defaults)."""
    unknown = set(data) - {"database", "ledger", "loans", "reconciliation"}
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
    return CoreBankSettings(
        database=parse_database(data.get("database", {}) or {}),
        ledger=parse_ledger(data.get("ledger", {}) or {}),
        loans=parse_loans(data.get("loans", {}) or {}),
        reconciliation=parse_reconciliation(data.get("reconciliation", {}) or {}),
        checksum=compute_checksum(data),
        source=source,
    )
