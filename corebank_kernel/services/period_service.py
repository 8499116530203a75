"""
PeriodService -- fiscal period lifecycle and posting-date control.

Responsibility:
    Creates fiscal periods, drives them through OPEN <-> CLOSED -> LOCKED,
    and tells the ledger whether an effective date may still be posted to.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by LedgerService before every posting, draft, approval post and
    reversal; called directly by back-office tooling for period close.

Invariants enforced:
    - No entry is posted or reversed into a CLOSED or LOCKED period.
    - Periods of a tenant never overlap, so a date has at most one period.
    - Lifecycle changes on one period are serialized (lock key
      ``period:<tenant>:<code>`` plus SELECT ... FOR UPDATE on the row).
      Posting reads the covering period FOR SHARE, so on PostgreSQL a close
      waits for in-flight postings into that period.
    - Returns frozen FiscalPeriodInfo snapshots, never ORM rows.

Failure modes:
    - PeriodClosedError: effective date inside a closed or locked period.
    - PeriodNotFoundError: unknown period code.
    - PeriodOverlapError: new period intersects an existing one.
    - InvalidPeriodTransitionError: e.g. reopening a LOCKED period.

Audit relevance:
    Close, reopen and lock are logged with the period code and actor;
    reopening also records the reason.
"""

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from corebank_kernel.domain.clock import Clock, SystemClock
from corebank_kernel.domain.context import OperationContext
from corebank_kernel.domain.dtos import FiscalPeriodInfo, PeriodStatus
from corebank_kernel.exceptions import (
    InvalidPeriodTransitionError,
    PeriodClosedError,
    PeriodNotFoundError,
    PeriodOverlapError,
)
from corebank_kernel.logging_config import LogContext, get_logger
from corebank_kernel.models.fiscal_period import FiscalPeriod
from corebank_kernel.services.locking import LockManager, get_lock_manager, period_key

logger = get_logger("services.period")


class PeriodService:
    """
    Fiscal period lifecycle for one session.

    Contract:
        Lifecycle methods flush within the caller's transaction and return
        the updated snapshot.  ``validate_effective_date`` returns normally
        when the date may be posted to and raises PeriodClosedError when not.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT require every date to be covered: a date outside all
          periods is not period-controlled.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lock_manager: LockManager | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._locks = lock_manager or get_lock_manager()

    def create_period(
        self,
        ctx: OperationContext,
        period_code: str,
        name: str,
        start_date: date,
        end_date: date,
    ) -> FiscalPeriodInfo:
        """
        Create an OPEN period covering ``start_date``..``end_date`` inclusive.

        Raises:
            ValueError: blank code, inverted range, or the code already exists.
            PeriodOverlapError: the range intersects an existing period.
        """
        if not period_code or not period_code.strip():
            raise ValueError("period_code is required")
        if start_date > end_date:
            raise ValueError(f"start_date ({start_date}) cannot be after end_date ({end_date})")

        with self._locks.acquire(period_key(ctx.tenant_id, period_code)):
            if self._find(ctx, period_code) is not None:
                raise ValueError(f"Fiscal period {period_code} already exists")

            overlapping = self._session.execute(
                select(FiscalPeriod).where(
                    FiscalPeriod.tenant_id == ctx.tenant_id,
                    FiscalPeriod.start_date <= end_date,
                    FiscalPeriod.end_date >= start_date,
                )
            ).scalars().first()
            if overlapping is not None:
                raise PeriodOverlapError(period_code, overlapping.period_code)

            period = FiscalPeriod(
                tenant_id=ctx.tenant_id,
                period_code=period_code,
                name=name,
                start_date=start_date,
                end_date=end_date,
                status=PeriodStatus.OPEN.value,
                created_by=ctx.actor_id,
            )
            self._session.add(period)
            self._session.flush()

        logger.info(
            "period_created",
            extra={
                **ctx.log_fields(),
                "period_code": period_code,
                "start_date": start_date,
                "end_date": end_date,
            },
        )
        return self._to_info(period)

    def close_period(self, ctx: OperationContext, period_code: str) -> FiscalPeriodInfo:
        """OPEN -> CLOSED.  Later postings dated inside the period are refused."""
        return self._transition(ctx, period_code, "close", PeriodStatus.OPEN, PeriodStatus.CLOSED)

    def reopen_period(self, ctx: OperationContext, period_code: str, reason: str) -> FiscalPeriodInfo:
        """CLOSED -> OPEN, for late adjustments.  A LOCKED period stays shut."""
        return self._transition(
            ctx, period_code, "reopen", PeriodStatus.CLOSED, PeriodStatus.OPEN, reason=reason
        )

    def lock_period(self, ctx: OperationContext, period_code: str) -> FiscalPeriodInfo:
        """CLOSED -> LOCKED.  Permanent."""
        return self._transition(ctx, period_code, "lock", PeriodStatus.CLOSED, PeriodStatus.LOCKED)

    def get_period(self, ctx: OperationContext, period_code: str) -> FiscalPeriodInfo:
        period = self._find(ctx, period_code)
        if period is None:
            raise PeriodNotFoundError(period_code)
        return self._to_info(period)

    def period_for_date(self, ctx: OperationContext, day: date) -> FiscalPeriodInfo | None:
        period = self._covering(ctx, day, for_share=False)
        return self._to_info(period) if period is not None else None

    def list_periods(self, ctx: OperationContext) -> list[FiscalPeriodInfo]:
        periods = self._session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.tenant_id == ctx.tenant_id)
            .order_by(FiscalPeriod.start_date)
        ).scalars()
        return [self._to_info(p) for p in periods]

    def is_open_for_posting(self, ctx: OperationContext, day: date) -> bool:
        period = self._covering(ctx, day, for_share=False)
        return period is None or period.is_open

    def validate_effective_date(self, ctx: OperationContext, day: date) -> None:
        """
        Raise PeriodClosedError if ``day`` falls in a closed or locked period.

        The covering row is read FOR SHARE so a concurrent close on
        PostgreSQL waits for this transaction.
        """
        period = self._covering(ctx, day, for_share=True)
        if period is not None and not period.is_open:
            logger.warning(
                "posting_into_closed_period",
                extra={
                    **ctx.log_fields(),
                    "period_code": period.period_code,
                    "effective_date": day,
                    "status": period.status,
                },
            )
            raise PeriodClosedError(period.period_code, str(day))

    # -------------------------------------------------------------------------

    def _transition(
        self,
        ctx: OperationContext,
        period_code: str,
        action: str,
        source: PeriodStatus,
        target: PeriodStatus,
        reason: str | None = None,
    ) -> FiscalPeriodInfo:
        with LogContext.bind(**ctx.log_fields()):
            with self._locks.acquire(period_key(ctx.tenant_id, period_code)):
                period = self._find(ctx, period_code, for_update=True)
                if period is None:
                    raise PeriodNotFoundError(period_code)
                if period.status != source.value:
                    raise InvalidPeriodTransitionError(period_code, period.status, action)

                period.status = target.value
                if target is PeriodStatus.CLOSED:
                    period.closed_at = self._clock.now()
                    period.closed_by = ctx.actor_id
                elif target is PeriodStatus.OPEN:
                    period.closed_at = None
                    period.closed_by = None
                period.touch(ctx.actor_id)
                self._session.flush()

            extra = {"period_code": period_code, "from_status": source.value, "to_status": target.value}
            if reason is not None:
                extra["reason"] = reason
            logger.info(f"period_{action}", extra=extra)
            return self._to_info(period)

    def _find(self, ctx: OperationContext, period_code: str, for_update: bool = False) -> FiscalPeriod | None:
        stmt = select(FiscalPeriod).where(
            FiscalPeriod.tenant_id == ctx.tenant_id,
            FiscalPeriod.period_code == period_code,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _covering(self, ctx: OperationContext, day: date, for_share: bool) -> FiscalPeriod | None:
        stmt = select(FiscalPeriod).where(
            FiscalPeriod.tenant_id == ctx.tenant_id,
            FiscalPeriod.start_date <= day,
            FiscalPeriod.end_date >= day,
        )
        if for_share:
            stmt = stmt.with_for_update(read=True).execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _to_info(period: FiscalPeriod) -> FiscalPeriodInfo:
        return FiscalPeriodInfo(
            id=period.id,
            period_code=period.period_code,
            name=period.name,
            start_date=period.start_date,
            end_date=period.end_date,
            status=PeriodStatus(period.status),
            closed_at=period.closed_at,
            closed_by=period.closed_by,
        )
