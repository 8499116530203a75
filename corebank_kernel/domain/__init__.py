"""
Pure domain layer.

Data transfer objects and value types with NO dependencies on the ORM, the
database, the clock or any I/O. All domain objects are immutable.
"""

from corebank_kernel.domain.audit import AuditEnvelope
from corebank_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from corebank_kernel.domain.context import CancellationToken, OperationContext
from corebank_kernel.domain.dtos import (
    AccountBalance,
    AccountType,
    BalanceSheet,
    Book,
    FiscalPeriodInfo,
    IncomeStatement,
    LineSpec,
    NormalBalance,
    PeriodStatus,
    PostedEntry,
    PostedLine,
    Side,
    StatementSection,
    TrialBalance,
)
from corebank_kernel.domain.entry_lifecycle import EntryStatus, can_transition
from corebank_kernel.domain.values import Money, round_money

__all__ = [
    "AccountBalance",
    "AccountType",
    "AuditEnvelope",
    "BalanceSheet",
    "Book",
    "CancellationToken",
    "Clock",
    "DeterministicClock",
    "EntryStatus",
    "FiscalPeriodInfo",
    "IncomeStatement",
    "LineSpec",
    "Money",
    "NormalBalance",
    "OperationContext",
    "PeriodStatus",
    "PostedEntry",
    "PostedLine",
    "Side",
    "StatementSection",
    "SystemClock",
    "TrialBalance",
    "can_transition",
    "round_money",
]
