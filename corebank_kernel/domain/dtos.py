"""
DTOs -- Pure ledger data transfer objects.

Responsibility:
    Immutable structures that flow into and out of the Ledger Engine:
    LineSpec (one requested debit or credit), PostedLine / PostedEntry
    (read-side snapshots handed to reporting and reconciliation), plus the
    ledger enums shared by models and services.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies. ``from_model`` converters are only invoked from
    the service and selector layers.

Invariants enforced:
    - LineSpec amounts are strictly positive; the side carries direction.
    - Monetary fields use Decimal + currency code (never float).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from corebank_kernel.domain.values import Money, to_decimal

if TYPE_CHECKING:
    from corebank_kernel.models.journal import JournalEntry as JournalEntryModel


class Book(str, Enum):
    """
    Parallel bounded contexts for accounts and journals.

    The core-banking schema carries two chart-of-accounts / journal shapes.
    They are kept as separate books instead of being merged: account codes
    are unique per book and an entry only posts to its own book.
    """

    CORE = "core"
    ACCOUNTING = "accounting"


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def default_normal_balance(self) -> "NormalBalance":
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


class Side(str, Enum):
    """Which side of the entry a line is on. Exactly two exist."""

    DEBIT = "debit"
    CREDIT = "credit"

    @property
    def opposite(self) -> "Side":
        return Side.CREDIT if self is Side.DEBIT else Side.DEBIT


@dataclass(frozen=True)
class LineSpec:
    """
    Specification for a journal line.

    Contract:
        Names the account by code (resolved to an ID by the Ledger Engine),
        a side, and a positive amount in a currency.

    Non-goals:
        - Does NOT validate account existence or activity; the Ledger
          Engine does that before any mutation.
    """

    account_code: str
    side: Side
    amount: Decimal
    currency: str = "USD"
    memo: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "side", Side(self.side))
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def debit(cls, account_code: str, amount: Decimal | str, currency: str = "USD", memo: str | None = None) -> LineSpec:
        return cls(account_code, Side.DEBIT, to_decimal(amount), currency, memo)

    @classmethod
    def credit(cls, account_code: str, amount: Decimal | str, currency: str = "USD", memo: str | None = None) -> LineSpec:
        return cls(account_code, Side.CREDIT, to_decimal(amount), currency, memo)

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)


@dataclass(frozen=True)
class PostedLine:
    """Read-side snapshot of one journal line."""

    line_id: UUID
    entry_id: UUID
    account_id: UUID
    account_code: str
    side: Side
    amount: Decimal
    currency: str
    effective_date: date
    memo: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        """Debit-positive amount (money into an asset account)."""
        return self.amount if self.side is Side.DEBIT else -self.amount


@dataclass(frozen=True)
class PostedEntry:
    """Read-side snapshot of a journal entry and its lines."""

    entry_id: UUID
    entry_number: int | None
    tenant_id: str
    book: Book
    status: str
    effective_date: date
    total_debit: Decimal
    total_credit: Decimal
    currency: str
    description: str | None
    reversal_of_id: UUID | None
    lines: tuple[PostedLine, ...]

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit

    @classmethod
    def from_model(cls, entry: JournalEntryModel) -> PostedEntry:
        lines = tuple(
            PostedLine(
                line_id=line.id,
                entry_id=entry.id,
                account_id=line.account_id,
                account_code=line.account.code,
                side=Side(line.side),
                amount=line.amount,
                currency=line.currency,
                effective_date=entry.effective_date,
                memo=line.memo,
            )
            for line in sorted(entry.lines, key=lambda ln: ln.line_seq)
        )
        return cls(
            entry_id=entry.id,
            entry_number=entry.entry_number,
            tenant_id=entry.tenant_id,
            book=Book(entry.book),
            status=entry.lifecycle_status.value,
            effective_date=entry.effective_date,
            total_debit=entry.total_debit,
            total_credit=entry.total_credit,
            currency=entry.currency,
            description=entry.description,
            reversal_of_id=entry.reversal_of_id,
            lines=lines,
        )


@dataclass(frozen=True)
class AccountBalance:
    """Balance of one account in its normal-balance direction."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    normal_balance: NormalBalance
    debit_total: Decimal
    credit_total: Decimal
    currency: str

    @property
    def balance(self) -> Decimal:
        if self.normal_balance is NormalBalance.DEBIT:
            return self.debit_total - self.credit_total
        return self.credit_total - self.debit_total


@dataclass(frozen=True)
class TrialBalance:
    """Debit/credit totals over every account of one book."""

    tenant_id: str
    book: Book
    as_of: date | None
    rows: tuple[AccountBalance, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((r.debit_total for r in self.rows), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((r.credit_total for r in self.rows), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


@dataclass(frozen=True)
class StatementSection:
    """Accounts of one type on a financial statement."""

    account_type: AccountType
    rows: tuple[AccountBalance, ...]

    @property
    def total(self) -> Decimal:
        """
        Section total in the type's natural direction.

        Taken from debit and credit totals, not row balances, so a contra
        account (e.g. a credit-normal loan loss allowance among assets)
        reduces its section.
        """
        debits = sum((r.debit_total for r in self.rows), Decimal("0"))
        credits = sum((r.credit_total for r in self.rows), Decimal("0"))
        if self.account_type.default_normal_balance is NormalBalance.DEBIT:
            return debits - credits
        return credits - debits


@dataclass(frozen=True)
class BalanceSheet:
    """Assets against liabilities and equity as of a date."""

    tenant_id: str
    book: Book
    as_of: date | None
    assets: StatementSection
    liabilities: StatementSection
    equity: StatementSection
    current_earnings: Decimal

    @property
    def total_assets(self) -> Decimal:
        return self.assets.total

    @property
    def total_liabilities_and_equity(self) -> Decimal:
        return self.liabilities.total + self.equity.total + self.current_earnings

    @property
    def is_balanced(self) -> bool:
        return self.total_assets == self.total_liabilities_and_equity


@dataclass(frozen=True)
class IncomeStatement:
    """Income and expenses over an inclusive date range."""

    tenant_id: str
    book: Book
    start: date | None
    end: date | None
    income: StatementSection
    expenses: StatementSection

    @property
    def net_income(self) -> Decimal:
        return self.income.total - self.expenses.total


class PeriodStatus(str, Enum):
    """
    Lifecycle of a fiscal period.

    OPEN <-> CLOSED -> LOCKED.  A closed period may be reopened for late
    adjustments; a locked one (year end) may not.
    """

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


@dataclass(frozen=True)
class FiscalPeriodInfo:
    """Read-only snapshot of a fiscal period."""

    id: UUID
    period_code: str
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    closed_at: datetime | None
    closed_by: UUID | None

    @property
    def is_open(self) -> bool:
        return self.status is PeriodStatus.OPEN
