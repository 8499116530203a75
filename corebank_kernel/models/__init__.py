"""ORM models for the core banking kernel."""

from corebank_kernel.models.account import Account
from corebank_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from corebank_kernel.models.journal import JournalEntry, JournalLine
from corebank_kernel.models.loan import Loan, LoanTransaction, RepaymentScheduleEntry
from corebank_kernel.models.reconciliation import (
    BankStatement,
    BankStatementLine,
    ReconciliationMatch,
    ReconciliationRun,
    StatementLineStatus,
)
from corebank_kernel.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "BankStatement",
    "BankStatementLine",
    "FiscalPeriod",
    "JournalEntry",
    "JournalLine",
    "Loan",
    "LoanTransaction",
    "PeriodStatus",
    "ReconciliationMatch",
    "ReconciliationRun",
    "RepaymentScheduleEntry",
    "SequenceCounter",
    "StatementLineStatus",
]
