"""
Module: corebank_kernel.models.account
Responsibility: ORM persistence for the Chart of Accounts -- the target of
    every journal line.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - code is unique per (tenant, book) (uq_account_tenant_book_code).
    - The tree is stored as a flat table with an explicit parent_id; every
      walk goes through an id -> account map, never through object pointers.
    - Only leaf accounts receive postings, and inactive accounts receive none
      (enforced by LedgerService before any mutation).

Failure modes:
    - AccountNotFoundError when a posting references a non-existent account.
    - InactiveAccountError when a posting targets an inactive account.
    - NonLeafAccountError when a posting targets a parent account.
"""

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from corebank_kernel.db.base import TenantScopedBase, UUIDString
from corebank_kernel.domain.dtos import AccountType, Book, NormalBalance

if TYPE_CHECKING:
    from corebank_kernel.models.journal import JournalLine


class Account(TenantScopedBase):
    """
    Chart of Accounts entry -- a single node in the general ledger tree.

    Contract:
        Account.code is unique within its tenant and book.  The account's
        balance is never stored: it is the signed sum of its posted lines,
        computed by LedgerSelector.

    Guarantees:
        - account_type is one of ASSET, LIABILITY, EQUITY, INCOME, EXPENSE.
        - normal_balance is DEBIT or CREDIT.
        - parent_id, when set, names an account in the same tenant and book.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "book", "code", name="uq_account_tenant_book_code"),
        Index("idx_account_parent", "parent_id"),
        Index("idx_account_active", "is_active"),
    )

    book: Mapped[str] = mapped_column(String(20), nullable=False, default=Book.CORE.value)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[str] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[str] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # null = any currency
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    journal_lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.book}:{self.code}: {self.name}>"

    @property
    def type(self) -> AccountType:
        return AccountType(self.account_type)

    @property
    def is_debit_normal(self) -> bool:
        return NormalBalance(self.normal_balance) is NormalBalance.DEBIT
