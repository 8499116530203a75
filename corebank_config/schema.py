"""
Core banking settings schema.

Frozen dataclasses that YAML configuration is parsed into by the loader.
Every field has a default matching the packaged ``defaults.yaml`` so that a
partial file only overrides what it names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# Posting roles every loan needs bound to an account code.
LOAN_POSTING_ROLES: tuple[str, ...] = (
    "cash",
    "loan_portfolio",
    "interest_income",
    "fee_receivable",
    "fee_income",
    "penalty_receivable",
    "penalty_income",
    "write_off_expense",
)


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings handed to build_engine()."""

    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class LedgerSettings:
    """Lock and retry policy for postings."""

    lock_timeout_seconds: float = 5.0
    max_retries: int = 3
    backoff_base_seconds: float = 0.05
    backoff_max_seconds: float = 1.0


@dataclass(frozen=True)
class ClassificationThresholdsDef:
    """Days-overdue lower bounds of each non-performing class."""

    special_mention: int = 31
    substandard: int = 91
    doubtful: int = 181
    loss: int = 361


@dataclass(frozen=True)
class LoanSettings:
    """
    Loan product policy.

    ``posting_roles`` maps each role in LOAN_POSTING_ROLES to an account code
    in ``book``.
    """

    allow_prepayment: bool = True
    max_tenor_months: int = 360
    penalty_daily_rate: Decimal = Decimal("0.0005")
    grace_days: int = 0
    book: str = "core"
    classification_thresholds: ClassificationThresholdsDef = field(
        default_factory=ClassificationThresholdsDef
    )
    posting_roles: dict[str, str] = field(default_factory=dict)

    def account_for(self, role: str) -> str:
        try:
            return self.posting_roles[role]
        except KeyError:
            raise KeyError(f"No account bound to posting role '{role}'") from None


@dataclass(frozen=True)
class ReconciliationSettings:
    """Matching tolerances and variance alerting."""

    amount_tolerance: Decimal = Decimal("0.00")
    date_window_days: int = 2
    variance_alert_threshold: Decimal = Decimal("0.01")


@dataclass(frozen=True)
class CoreBankSettings:
    """The complete, validated runtime configuration."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    loans: LoanSettings = field(default_factory=LoanSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    checksum: str = ""
    source: str = ""
