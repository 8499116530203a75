"""
Pytest fixtures for the corebank test suite.

Provides:
- In-memory SQLite sessions (one fresh database per test)
- A standard chart of accounts bound to the loan posting roles
- Ledger, loan and reconciliation services wired with a deterministic clock
- A period service sharing that clock and lock registry
- Structured log capture

Environment Variables:
- DATABASE_URL: run the DB tests against PostgreSQL instead of SQLite.
"""

import json
import logging
from datetime import date, datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest

from corebank_config import engine_from, get_active_settings
from corebank_kernel.db.engine import create_tables, drop_tables
from corebank_kernel.db.engine import session_factory as make_session_factory
from corebank_kernel.db.immutability import register_immutability_listeners
from corebank_kernel.domain.clock import DeterministicClock
from corebank_kernel.domain.context import OperationContext
from corebank_kernel.domain.dtos import AccountType
from corebank_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from corebank_kernel.selectors.ledger_selector import LedgerSelector
from corebank_kernel.services.ledger_service import LedgerService
from corebank_kernel.services.locking import LockManager, RetryPolicy
from corebank_kernel.services.period_service import PeriodService
from corebank_services.loan_service import LoanAccountingService
from corebank_services.reconciliation_service import ReconciliationService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()
TEST_TENANT = "tenant-test"

# (code, name, type, parent)
STANDARD_CHART = (
    ("1000", "Assets", AccountType.ASSET, None),
    ("1010", "Cash at bank", AccountType.ASSET, "1000"),
    ("1200", "Loan portfolio", AccountType.ASSET, "1000"),
    ("1210", "Fee receivable", AccountType.ASSET, "1000"),
    ("1220", "Penalty receivable", AccountType.ASSET, "1000"),
    ("2100", "Customer deposits", AccountType.LIABILITY, None),
    ("3000", "Share capital", AccountType.EQUITY, None),
    ("4000", "Income", AccountType.INCOME, None),
    ("4100", "Interest income", AccountType.INCOME, "4000"),
    ("4200", "Fee income", AccountType.INCOME, "4000"),
    ("4300", "Penalty income", AccountType.INCOME, "4000"),
    ("5100", "Loan write-off expense", AccountType.EXPENSE, None),
    ("5200", "Bank charges", AccountType.EXPENSE, None),
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture corebank logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.post_entry(...)
            assert any(r["message"] == "entry_posted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("corebank")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line("markers", "slow_locks: mark test as potentially waiting for locks")


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def engine():
    """Fresh schema per test on the configured database (DATABASE_URL may point at PostgreSQL)."""
    eng = engine_from(get_active_settings().database)
    drop_tables(eng)
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Context and services
# =============================================================================


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def ctx():
    return OperationContext(tenant_id=TEST_TENANT, actor_id=TEST_ACTOR_ID)


@pytest.fixture
def other_tenant_ctx():
    return OperationContext(tenant_id="tenant-other", actor_id=TEST_ACTOR_ID)


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def lock_manager():
    """Private lock registry with short waits so contention tests stay fast."""
    return LockManager(
        RetryPolicy(
            lock_timeout_seconds=0.2,
            max_retries=2,
            backoff_base_seconds=0.01,
            backoff_max_seconds=0.05,
        )
    )


@pytest.fixture
def settings():
    return get_active_settings()


@pytest.fixture
def loan_settings(settings):
    return settings.loans


@pytest.fixture
def ledger(session, deterministic_clock, lock_manager):
    return LedgerService(session, deterministic_clock, lock_manager)


@pytest.fixture
def selector(session):
    return LedgerSelector(session)


@pytest.fixture
def periods(session, deterministic_clock, lock_manager):
    return PeriodService(session, deterministic_clock, lock_manager)


@pytest.fixture
def standard_accounts(ledger, ctx):
    """Create STANDARD_CHART for the test tenant and return accounts by code."""
    accounts = {}
    for code, name, account_type, parent in STANDARD_CHART:
        accounts[code] = ledger.create_account(ctx, code, name, account_type, parent_code=parent)
    return accounts


@pytest.fixture
def loan_service(session, loan_settings, deterministic_clock, lock_manager, ledger, standard_accounts):
    return LoanAccountingService(
        session,
        settings=loan_settings,
        clock=deterministic_clock,
        lock_manager=lock_manager,
        ledger=ledger,
    )


@pytest.fixture
def reconciliation_service(session, settings, deterministic_clock, lock_manager, standard_accounts):
    return ReconciliationService(
        session,
        settings=settings.reconciliation,
        clock=deterministic_clock,
        lock_manager=lock_manager,
    )


@pytest.fixture
def create_loan(loan_service, ctx):
    """
    Factory: create (and by default disburse) a loan.

    Usage::

        loan = create_loan(principal="120000.00", annual_rate="0.12", tenor_months=12)
    """
    counter = iter(range(1, 10_000))

    def _create(
        principal="12000.00",
        annual_rate="0.12",
        tenor_months=12,
        interest_method="flat",
        start_date=date(2024, 1, 15),
        disburse=True,
        **kwargs,
    ):
        loan = loan_service.create_loan(
            ctx,
            loan_number=f"LN-{next(counter):05d}",
            principal=principal,
            annual_rate=annual_rate,
            tenor_months=tenor_months,
            interest_method=interest_method,
            start_date=start_date,
            **kwargs,
        )
        if disburse:
            loan_service.disburse(ctx, loan.id, start_date)
        return loan

    return _create
