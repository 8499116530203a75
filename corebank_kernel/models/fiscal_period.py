"""
Module: corebank_kernel.models.fiscal_period
Responsibility: ORM persistence for fiscal periods -- the date ranges whose
    status decides whether the ledger accepts postings.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - period_code is unique per tenant (uq_period_tenant_code).
    - Periods of one tenant never overlap (checked by PeriodService).
    - No entry is posted or reversed with an effective_date inside a CLOSED
      or LOCKED period (enforced by LedgerService through PeriodService).

Failure modes:
    - PeriodClosedError when a posting falls in a closed period.
    - PeriodOverlapError when a new period intersects an existing one.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from corebank_kernel.db.base import TenantScopedBase, UUIDString
from corebank_kernel.domain.dtos import PeriodStatus


class FiscalPeriod(TenantScopedBase):
    """
    One accounting period of a tenant, bounds inclusive.

    Dates not covered by any period are not period-controlled; tenants that
    define periods cover the dates they want guarded.
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint("tenant_id", "period_code", name="uq_period_tenant_code"),
        Index("idx_period_dates", "tenant_id", "start_date", "end_date"),
    )

    # e.g. "2024-01", "2024-Q1"
    period_code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PeriodStatus.OPEN.value)

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    closed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.period_code}: {self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN.value

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date
