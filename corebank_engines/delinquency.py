"""
corebank_engines.delinquency -- Days overdue, asset classification and penalties.

Responsibility:
    Pure calculations behind loan delinquency management: how many days an
    installment is overdue, which prudential classification a loan falls
    into, and how much penalty an overdue installment has accrued.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Thresholds and the daily
    penalty rate come from LoanSettings via the calling service.

Invariants enforced:
    - Thresholds are strictly ascending.
    - Penalty = overdue amount x daily rate x days overdue, ROUND_HALF_UP to
      2 decimals; the increment charged never goes negative.
    - No clock access: ``as_of`` is always a parameter.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from corebank_engines.tracer import traced_engine
from corebank_kernel.domain.loan_terms import Classification
from corebank_kernel.domain.values import ZERO, round_money, to_decimal


@dataclass(frozen=True)
class ClassificationThresholds:
    """
    Lower bound (in days overdue) of each non-performing class.

    PERFORMING < special_mention <= SPECIAL_MENTION < substandard <=
    SUBSTANDARD < doubtful <= DOUBTFUL < loss <= LOSS
    """

    special_mention: int = 31
    substandard: int = 91
    doubtful: int = 181
    loss: int = 361

    def __post_init__(self) -> None:
        bounds = (self.special_mention, self.substandard, self.doubtful, self.loss)
        if bounds[0] < 1 or any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
            raise ValueError(f"Classification thresholds must be positive and ascending: {bounds}")


@dataclass(frozen=True)
class OverdueInstallment:
    """Arrears on one installment, as input to penalty assessment."""

    installment_number: int
    due_date: date
    overdue_amount: Decimal
    penalty_charged: Decimal = ZERO


@dataclass(frozen=True)
class PenaltyCharge:
    """Penalty to add to one installment."""

    installment_number: int
    days_overdue: int
    overdue_amount: Decimal
    accrued: Decimal
    increment: Decimal


def days_overdue(due_date: date, as_of: date) -> int:
    """Calendar days past ``due_date``; zero on or before it."""
    return max(0, (as_of - due_date).days)


def oldest_days_overdue(due_dates: Sequence[date], as_of: date) -> int:
    """Days overdue of the oldest unpaid installment (0 if none is late)."""
    if not due_dates:
        return 0
    return days_overdue(min(due_dates), as_of)


def classify(days: int, thresholds: ClassificationThresholds | None = None) -> Classification:
    thresholds = thresholds or ClassificationThresholds()
    if days >= thresholds.loss:
        return Classification.LOSS
    if days >= thresholds.doubtful:
        return Classification.DOUBTFUL
    if days >= thresholds.substandard:
        return Classification.SUBSTANDARD
    if days >= thresholds.special_mention:
        return Classification.SPECIAL_MENTION
    return Classification.PERFORMING


def penalty_amount(overdue_amount: Decimal, daily_rate: Decimal, days: int) -> Decimal:
    """overdue amount x daily rate x days, rounded half-up."""
    if days <= 0 or overdue_amount <= ZERO:
        return ZERO
    return round_money(to_decimal(overdue_amount) * to_decimal(daily_rate) * days)


@traced_engine("penalty_assessment", "1.0", fingerprint_fields=("installments", "daily_rate", "as_of", "grace_days"))
def assess_penalties(
    installments: Sequence[OverdueInstallment],
    daily_rate: Decimal,
    as_of: date,
    grace_days: int = 0,
) -> list[PenaltyCharge]:
    """
    Penalty increments for overdue installments.

    An installment inside its grace period accrues nothing; once past it,
    penalty accrues from the due date.  The increment is the accrued total
    minus what was already charged, floored at zero.  Only installments
    with a positive increment are returned.
    """
    charges = []
    for inst in sorted(installments, key=lambda i: (i.due_date, i.installment_number)):
        days = days_overdue(inst.due_date, as_of)
        if days <= grace_days:
            continue
        accrued = penalty_amount(inst.overdue_amount, daily_rate, days)
        increment = max(accrued - inst.penalty_charged, ZERO)
        if increment > ZERO:
            charges.append(
                PenaltyCharge(
                    installment_number=inst.installment_number,
                    days_overdue=days,
                    overdue_amount=inst.overdue_amount,
                    accrued=accrued,
                    increment=increment,
                )
            )
    return charges
