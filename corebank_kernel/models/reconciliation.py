"""
Module: corebank_kernel.models.reconciliation
Responsibility: ORM persistence for imported bank statements, the matches
    between statement lines and ledger lines, and reconciliation run results.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - A statement line is matched to at most one journal line and a journal
      line to at most one statement line (two UNIQUE constraints on
      ReconciliationMatch).  Journal lines themselves are never touched.
    - Statement line amounts are signed from the bank customer's view:
      positive = deposit, negative = withdrawal.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from corebank_kernel.db.base import TenantScopedBase, UUIDString
from corebank_kernel.db.types import MoneyAmount, RateValue


class StatementLineStatus(str, Enum):
    """Reconciliation state of an imported statement line."""

    UNMATCHED = "unmatched"
    MATCHED = "matched"
    EXCLUDED = "excluded"


class BankStatement(TenantScopedBase):
    """A bank statement for one GL cash account over one period."""

    __tablename__ = "bank_statements"

    __table_args__ = (
        Index("idx_statement_account", "bank_account_id"),
    )

    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )

    statement_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    statement_date: Mapped[date] = mapped_column(Date, nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    closing_balance: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    lines: Mapped[list["BankStatementLine"]] = relationship(
        back_populates="statement",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BankStatementLine.transaction_date",
    )

    def __repr__(self) -> str:
        return f"<BankStatement {self.statement_ref or self.id} {self.period_start}..{self.period_end}>"


class BankStatementLine(TenantScopedBase):
    """One transaction reported by the bank."""

    __tablename__ = "bank_statement_lines"

    __table_args__ = (
        Index("idx_statement_line_statement", "statement_id"),
        Index("idx_statement_line_ref_date", "reference", "transaction_date"),
    )

    statement_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bank_statements.id"), nullable=False
    )

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StatementLineStatus.UNMATCHED.value
    )

    statement: Mapped["BankStatement"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<BankStatementLine {self.transaction_date} {self.amount} ref={self.reference}>"


class ReconciliationMatch(TenantScopedBase):
    """Link between a statement line and the journal line it clears."""

    __tablename__ = "reconciliation_matches"

    __table_args__ = (
        UniqueConstraint("statement_line_id", name="uq_match_statement_line"),
        UniqueConstraint("journal_line_id", name="uq_match_journal_line"),
    )

    statement_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bank_statement_lines.id"), nullable=False
    )

    journal_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_lines.id"), nullable=False
    )

    # "auto" or "manual"
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="auto")

    score: Mapped[Decimal | None] = mapped_column(RateValue(), nullable=True)

    matched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReconciliationRun(TenantScopedBase):
    """Persisted summary of one reconcile() call."""

    __tablename__ = "reconciliation_runs"

    __table_args__ = (
        Index("idx_recon_run_statement", "statement_id"),
    )

    statement_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bank_statements.id"), nullable=False
    )

    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    matched_count: Mapped[int] = mapped_column(Integer, nullable=False)

    unmatched_statement_count: Mapped[int] = mapped_column(Integer, nullable=False)

    outstanding_book_count: Mapped[int] = mapped_column(Integer, nullable=False)

    statement_closing: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    book_closing: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    deposits_in_transit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    outstanding_payments: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    unrecorded_bank_net: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    variance: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    is_reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False)
