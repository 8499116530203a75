"""
Amortization Engine -- repayment schedules for flat and reducing-balance loans.

Responsibility:
    Turns (principal, annual rate, tenor, method, start date) into an ordered
    sequence of installments with principal and interest components.

Architecture position:
    Engines -- pure functional core, zero I/O.  Called by
    LoanAccountingService.create_loan; the schedule is then persisted as
    RepaymentScheduleEntry rows.

Invariants enforced:
    - Sum of installment principal == principal, exactly.
    - Sum of installment interest == schedule total_interest, exactly.
    - Every amount is rounded ROUND_HALF_UP to 2 decimals; no installment
      component is negative.
    - Due dates are start_date + k calendar months, clamped to month end
      (Jan 31 -> Feb 29 -> Mar 31).

Rounding policy:
    Flat:
        total interest = round(P x rate x n / 12).  Every installment but the
        last carries round(P / n) principal and round(total / n) interest;
        the final installment absorbs both remainders.
    Reducing balance:
        r = rate / 12, level payment PMT = P.r(1+r)^n / ((1+r)^n - 1),
        rounded.  Each period's interest is round(balance x r) and the rest
        of PMT repays principal.  The final installment clears the remaining
        balance.  total_interest is the sum of the period interest, which is
        within a few cents of round(PMT x n - P).
    Zero rate (either method): equal principal installments, no interest.

Failure modes:
    - ScheduleGenerationError for principal <= 0, rate < 0 or > 1, tenor < 1
      or above the configured maximum, or a principal too small to give every
      installment at least one minor unit.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, localcontext

from corebank_engines.tracer import traced_engine
from corebank_kernel.domain.loan_terms import InterestMethod
from corebank_kernel.domain.values import CENT, ZERO, round_money, to_decimal
from corebank_kernel.exceptions import ScheduleGenerationError

DEFAULT_MAX_TENOR_MONTHS = 360

_MAX_ANNUAL_RATE = Decimal("1")
_MONTHS_PER_YEAR = Decimal("12")


@dataclass(frozen=True)
class Installment:
    """One planned repayment."""

    number: int
    due_date: date
    principal: Decimal
    interest: Decimal
    opening_balance: Decimal
    closing_balance: Decimal

    @property
    def total(self) -> Decimal:
        return self.principal + self.interest


@dataclass(frozen=True)
class AmortizationSchedule:
    """Ordered installments plus the totals they were built to hit."""

    principal: Decimal
    annual_rate: Decimal
    tenor_months: int
    method: InterestMethod
    start_date: date
    total_interest: Decimal
    installments: tuple[Installment, ...]

    @property
    def total_principal(self) -> Decimal:
        return sum((i.principal for i in self.installments), ZERO)

    @property
    def total_payable(self) -> Decimal:
        return self.principal + self.total_interest

    @property
    def installment_interest_total(self) -> Decimal:
        return sum((i.interest for i in self.installments), ZERO)


def add_months(start: date, months: int) -> date:
    """Calendar-month arithmetic, clamping the day to the target month's end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def spread_evenly(total: Decimal, parts: int) -> list[Decimal]:
    """
    Split ``total`` into ``parts`` rounded amounts that sum to it exactly.

    Every part but the last is round(total / parts) and the last takes the
    remainder.  When that would leave the last part negative (tiny totals
    over long tenors) the split falls back to cumulative rounding, which
    keeps every part between floor and ceiling of the exact share.
    """
    each = round_money(total / parts)
    last = total - each * (parts - 1)
    if last >= ZERO:
        return [each] * (parts - 1) + [last]

    shares = []
    previous = ZERO
    for k in range(1, parts + 1):
        cumulative = round_money(total * k / parts)
        shares.append(cumulative - previous)
        previous = cumulative
    return shares


def _validate(principal: Decimal, annual_rate: Decimal, tenor_months: int, max_tenor_months: int) -> None:
    if principal <= ZERO:
        raise ScheduleGenerationError("principal", str(principal), "must be positive")
    if principal != round_money(principal):
        raise ScheduleGenerationError("principal", str(principal), "must have at most 2 decimals")
    if annual_rate < ZERO:
        raise ScheduleGenerationError("annual_rate", str(annual_rate), "must not be negative")
    if annual_rate > _MAX_ANNUAL_RATE:
        raise ScheduleGenerationError("annual_rate", str(annual_rate), "must not exceed 1 (100% per year)")
    if not isinstance(tenor_months, int) or isinstance(tenor_months, bool):
        raise ScheduleGenerationError("tenor_months", str(tenor_months), "must be an integer")
    if tenor_months < 1:
        raise ScheduleGenerationError("tenor_months", str(tenor_months), "must be at least 1")
    if tenor_months > max_tenor_months:
        raise ScheduleGenerationError(
            "tenor_months", str(tenor_months), f"must not exceed {max_tenor_months}"
        )
    if principal < CENT * tenor_months:
        raise ScheduleGenerationError(
            "principal", str(principal), f"too small to spread over {tenor_months} installments"
        )


def _build(
    principal: Decimal,
    start_date: date,
    principal_parts: list[Decimal],
    interest_parts: list[Decimal],
) -> tuple[Installment, ...]:
    installments = []
    balance = principal
    for k, (p, i) in enumerate(zip(principal_parts, interest_parts), start=1):
        closing = balance - p
        installments.append(
            Installment(
                number=k,
                due_date=add_months(start_date, k),
                principal=p,
                interest=i,
                opening_balance=balance,
                closing_balance=closing,
            )
        )
        balance = closing
    return tuple(installments)


def level_payment(principal: Decimal, monthly_rate: Decimal, tenor_months: int) -> Decimal:
    """Unrounded annuity payment PMT = P.r(1+r)^n / ((1+r)^n - 1)."""
    if monthly_rate == ZERO:
        return principal / tenor_months
    with localcontext() as dctx:
        dctx.prec = 34
        growth = (1 + monthly_rate) ** tenor_months
        return principal * monthly_rate * growth / (growth - 1)


def _flat(principal: Decimal, annual_rate: Decimal, tenor_months: int) -> tuple[list[Decimal], list[Decimal], Decimal]:
    total_interest = round_money(principal * annual_rate * tenor_months / _MONTHS_PER_YEAR)
    return (
        spread_evenly(principal, tenor_months),
        spread_evenly(total_interest, tenor_months),
        total_interest,
    )


def _reducing(principal: Decimal, annual_rate: Decimal, tenor_months: int) -> tuple[list[Decimal], list[Decimal], Decimal]:
    monthly_rate = annual_rate / _MONTHS_PER_YEAR
    payment = round_money(level_payment(principal, monthly_rate, tenor_months))

    principal_parts: list[Decimal] = []
    interest_parts: list[Decimal] = []
    balance = principal
    for k in range(1, tenor_months + 1):
        interest = round_money(balance * monthly_rate)
        if k == tenor_months:
            repaid = balance
        else:
            repaid = min(max(payment - interest, ZERO), balance)
        principal_parts.append(repaid)
        interest_parts.append(interest)
        balance -= repaid

    return principal_parts, interest_parts, sum(interest_parts, ZERO)


@traced_engine(
    "amortization",
    "1.0",
    fingerprint_fields=("principal", "annual_rate", "tenor_months", "method", "start_date"),
)
def generate_schedule(
    principal: Decimal | str | int,
    annual_rate: Decimal | str | int,
    tenor_months: int,
    method: InterestMethod | str,
    start_date: date,
    max_tenor_months: int = DEFAULT_MAX_TENOR_MONTHS,
) -> AmortizationSchedule:
    """
    Generate the repayment schedule for a loan.

    Args:
        principal: Amount lent, 2 decimals at most.
        annual_rate: Nominal annual rate as a fraction (0.12 = 12%).
        tenor_months: Number of monthly installments.
        method: FLAT or REDUCING_BALANCE.
        start_date: Disbursement date; installment k falls due k months later.
        max_tenor_months: Upper bound on tenor (from LoanSettings).

    Returns:
        AmortizationSchedule whose installment principal sums to ``principal``
        and whose installment interest sums to ``total_interest``.

    Raises:
        ScheduleGenerationError: invalid parameters.
    """
    try:
        principal = to_decimal(principal)
        annual_rate = to_decimal(annual_rate)
    except (TypeError, ValueError) as exc:
        raise ScheduleGenerationError("principal/annual_rate", "", str(exc)) from exc
    try:
        method = InterestMethod(method)
    except ValueError as exc:
        raise ScheduleGenerationError("method", str(method), "unknown interest method") from exc

    _validate(principal, annual_rate, tenor_months, max_tenor_months)

    if annual_rate == ZERO:
        principal_parts = spread_evenly(principal, tenor_months)
        interest_parts = [ZERO] * tenor_months
        total_interest = ZERO
    elif method is InterestMethod.FLAT:
        principal_parts, interest_parts, total_interest = _flat(principal, annual_rate, tenor_months)
    else:
        principal_parts, interest_parts, total_interest = _reducing(principal, annual_rate, tenor_months)

    return AmortizationSchedule(
        principal=principal,
        annual_rate=annual_rate,
        tenor_months=tenor_months,
        method=method,
        start_date=start_date,
        total_interest=total_interest,
        installments=_build(principal, start_date, principal_parts, interest_parts),
    )
