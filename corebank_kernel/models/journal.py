"""
Module: corebank_kernel.models.journal
Responsibility: ORM persistence for journal entries and journal lines -- the
    single source of financial truth in this system.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.
    MUST NOT import from services/ or selectors/.

Invariants enforced:
    - Balance: total_debit == total_credit before status becomes POSTED
      (checked by LedgerService; is_balanced is the read-side assertion).
    - Append-only: posted entries and their lines are never updated or
      deleted (ORM listeners in db/immutability.py).
    - At most one reversal per entry (UNIQUE reversal_of_id).
    - entry_number is monotonic per tenant, assigned at posting
      (UNIQUE (tenant_id, entry_number)).

Failure modes:
    - IntegrityError on a second reversal of the same entry.
    - ImmutabilityViolationError on UPDATE/DELETE of a posted entry/line.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    BigInteger,
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
from corebank_kernel.db.types import MoneyAmount
from corebank_kernel.domain.dtos import Book, Side
from corebank_kernel.domain.entry_lifecycle import EntryStatus

if TYPE_CHECKING:
    from corebank_kernel.models.account import Account


class JournalEntry(TenantScopedBase):
    """
    Journal entry header -- the atomic unit of double-entry accounting.

    Contract:
        An entry moves DRAFT -> PENDING -> APPROVED -> POSTED.  Once POSTED
        the row and all child lines become immutable.  Reversal never touches
        the row: a mirror entry points back through reversal_of_id and the
        REVERSED state is derived from it (``lifecycle_status``).

    Guarantees:
        - Debits == Credits at posting.
        - submitted_by / approved_by / posted_by record the acting identity
          at each workflow step.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_number", name="uq_journal_tenant_number"),
        UniqueConstraint("reversal_of_id", name="uq_journal_reversal_of"),
        Index("idx_journal_effective_date", "effective_date"),
        Index("idx_journal_status", "status"),
        Index("idx_journal_source", "source_type", "source_id"),
    )

    book: Mapped[str] = mapped_column(String(20), nullable=False, default=Book.CORE.value)

    # Monotonic per tenant, assigned at posting
    entry_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(10),
        default=EntryStatus.DRAFT.value,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    total_debit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    total_credit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # What produced the entry, e.g. ("loan_transaction", "<uuid>")
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    submitted_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    posted_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    reversal_of: Mapped["JournalEntry | None"] = relationship(
        remote_side="JournalEntry.id",
        foreign_keys=[reversal_of_id],
        viewonly=True,
    )

    reversed_by: Mapped["JournalEntry | None"] = relationship(
        primaryjoin="JournalEntry.id == foreign(JournalEntry.reversal_of_id)",
        uselist=False,
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.id} #{self.entry_number} status={self.status}>"

    @property
    def is_posted(self) -> bool:
        return self.status == EntryStatus.POSTED.value

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None

    @property
    def lifecycle_status(self) -> EntryStatus:
        """Stored status, with REVERSED derived from an existing reversal."""
        if self.is_posted and self.reversed_by is not None:
            return EntryStatus.REVERSED
        return EntryStatus(self.status)

    @property
    def is_balanced(self) -> bool:
        debits = sum((ln.amount for ln in self.lines if ln.side == Side.DEBIT.value), Decimal("0"))
        credits = sum((ln.amount for ln in self.lines if ln.side == Side.CREDIT.value), Decimal("0"))
        return debits == credits == self.total_debit == self.total_credit


class JournalLine(TenantScopedBase):
    """
    Individual debit or credit line within a journal entry.

    Contract:
        Each line belongs to exactly one JournalEntry, references exactly one
        Account, and records a positive amount on one side.

    Guarantees:
        - amount > 0; the side column determines direction.
        - line_seq gives a deterministic order within the entry.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    side: Mapped[str] = mapped_column(String(10), nullable=False)

    amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(back_populates="journal_lines", lazy="joined")

    def __repr__(self) -> str:
        return f"<JournalLine {self.side} {self.amount} {self.currency}>"
