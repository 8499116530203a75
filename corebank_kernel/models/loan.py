"""
Module: corebank_kernel.models.loan
Responsibility: ORM persistence for loans, their repayment schedules and the
    financial transactions recorded against them.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - outstanding_principal + principal_paid + principal_written_off == principal
      (maintained by LoanAccountingService; ``principal_reconciles`` checks it).
    - Each LoanTransaction maps 1:1 to a JournalEntry (UNIQUE journal_entry_id).
    - A LoanTransaction is reversed at most once (UNIQUE reversal_of_id).
    - LoanTransaction rows are append-only (db/immutability.py).
    - Loan rows carry an optimistic ``version`` counter; a concurrent update
      from a stale session raises StaleDataError.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from corebank_kernel.db.base import TenantScopedBase, UUIDString
from corebank_kernel.db.types import MoneyAmount, RateValue
from corebank_kernel.domain.dtos import Book
from corebank_kernel.domain.loan_terms import (
    Classification,
    Component,
    InstallmentStatus,
    LoanStatus,
)
from corebank_kernel.domain.values import ZERO

if TYPE_CHECKING:
    from corebank_kernel.models.journal import JournalEntry


class Loan(TenantScopedBase):
    """
    A loan account and its running balances.

    Contract:
        Balances are only changed by LoanAccountingService, and every change
        is paired with a LoanTransaction and a posted JournalEntry in the same
        database transaction.

    Guarantees:
        - Monetary columns are exact decimals.
        - status follows ACTIVE <-> DELINQUENT -> CLOSED | WRITTEN_OFF.
    """

    __tablename__ = "loans"

    __table_args__ = (
        UniqueConstraint("tenant_id", "loan_number", name="uq_loan_tenant_number"),
        Index("idx_loan_status", "status"),
    )

    loan_number: Mapped[str] = mapped_column(String(50), nullable=False)

    borrower_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    book: Mapped[str] = mapped_column(String(20), nullable=False, default=Book.CORE.value)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    principal: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    annual_rate: Mapped[Decimal] = mapped_column(RateValue(), nullable=False)

    tenor_months: Mapped[int] = mapped_column(Integer, nullable=False)

    interest_method: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    allow_prepayment: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    penalty_daily_rate: Mapped[Decimal] = mapped_column(RateValue(), nullable=False)

    grace_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Running balances
    outstanding_principal: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    outstanding_interest: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    outstanding_fees: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    outstanding_penalties: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)

    principal_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    interest_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    fees_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    penalties_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)

    principal_written_off: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=LoanStatus.ACTIVE.value)

    classification: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Classification.PERFORMING.value
    )

    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    disbursed_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    closed_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    installments: Mapped[list["RepaymentScheduleEntry"]] = relationship(
        back_populates="loan",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RepaymentScheduleEntry.installment_number",
    )

    transactions: Mapped[list["LoanTransaction"]] = relationship(
        back_populates="loan",
        lazy="select",
        order_by="LoanTransaction.created_at",
        viewonly=True,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Loan {self.loan_number} status={self.status} outstanding={self.outstanding_principal}>"

    @property
    def loan_status(self) -> LoanStatus:
        return LoanStatus(self.status)

    @property
    def total_outstanding(self) -> Decimal:
        return (
            self.outstanding_principal
            + self.outstanding_interest
            + self.outstanding_fees
            + self.outstanding_penalties
        )

    @property
    def principal_reconciles(self) -> bool:
        return (
            self.outstanding_principal + self.principal_paid + self.principal_written_off
            == self.principal
        )


class RepaymentScheduleEntry(TenantScopedBase):
    """
    One installment of a loan's repayment schedule.

    Contract:
        *_due columns are what the installment asks for; *_paid columns are
        what allocation has settled.  Fees and penalties assessed after
        origination are added to the *_due columns of the installment they
        relate to.
    """

    __tablename__ = "repayment_schedule"

    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", name="uq_schedule_loan_installment"),
        Index("idx_schedule_due_date", "due_date"),
    )

    loan_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("loans.id"), nullable=False)

    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    principal_due: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    interest_due: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    fee_due: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    penalty_due: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)

    principal_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    interest_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    fee_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    penalty_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstallmentStatus.PENDING.value
    )

    paid_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    loan: Mapped["Loan"] = relationship(back_populates="installments")

    def __repr__(self) -> str:
        return f"<Installment #{self.installment_number} due={self.due_date} status={self.status}>"

    def due_for(self, component: Component) -> Decimal:
        return getattr(self, f"{component.value}_due")

    def paid_for(self, component: Component) -> Decimal:
        return getattr(self, f"{component.value}_paid")

    def add_paid(self, component: Component, amount: Decimal) -> None:
        attr = f"{component.value}_paid"
        setattr(self, attr, getattr(self, attr) + amount)

    @property
    def total_due(self) -> Decimal:
        return self.principal_due + self.interest_due + self.fee_due + self.penalty_due

    @property
    def total_paid(self) -> Decimal:
        return self.principal_paid + self.interest_paid + self.fee_paid + self.penalty_paid

    @property
    def total_outstanding(self) -> Decimal:
        return self.total_due - self.total_paid


class LoanTransaction(TenantScopedBase):
    """
    A financial event on a loan, paired with exactly one journal entry.

    Contract:
        Append-only.  A reversal is a new LoanTransaction of type REVERSAL
        whose reversal_of_id names the original; the original row is never
        updated.  ``allocation`` holds the per-installment split so the
        reversal can undo it exactly.
    """

    __tablename__ = "loan_transactions"

    __table_args__ = (
        UniqueConstraint("journal_entry_id", name="uq_loan_txn_journal_entry"),
        UniqueConstraint("reversal_of_id", name="uq_loan_txn_reversal_of"),
        Index("idx_loan_txn_loan", "loan_id"),
        Index("idx_loan_txn_value_date", "value_date"),
    )

    loan_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("loans.id"), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    value_date: Mapped[date] = mapped_column(Date, nullable=False)

    principal_component: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    interest_component: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    fee_component: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)
    penalty_component: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)

    # Portion of the payment applied ahead of schedule
    prepayment_component: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=ZERO)

    # [{"installment_number": 1, "penalty": "0.00", "fee": ..., ...}, ...]
    allocation: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=False
    )

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("loan_transactions.id"), nullable=True
    )

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    loan: Mapped["Loan"] = relationship(back_populates="transactions")

    journal_entry: Mapped["JournalEntry"] = relationship(lazy="joined")

    reversed_by: Mapped["LoanTransaction | None"] = relationship(
        primaryjoin="LoanTransaction.id == foreign(LoanTransaction.reversal_of_id)",
        uselist=False,
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<LoanTransaction {self.transaction_type} {self.amount} {self.currency}>"

    def component(self, component: Component) -> Decimal:
        return getattr(self, f"{component.value}_component")
