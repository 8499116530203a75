"""
corebank_engines.allocation -- Repayment waterfall across loan installments.

Responsibility:
    Split one payment across the components of a loan's installments in the
    fixed priority order penalty -> fee -> interest -> principal.  Amounts
    already due at the payment date are settled first (component by
    component, oldest installment first); any excess is applied ahead of
    schedule, installment by installment, when prepayment is allowed.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Callers (LoanAccountingService) build InstallmentState snapshots from the
    repayment schedule and write the resulting allocation back.

Invariants enforced:
    - Conservation: sum of every allocated component == payment amount.
    - No component receives more than its outstanding amount.
    - Deterministic: identical inputs produce identical allocations.

Failure modes:
    - ValueError for a non-positive amount, or an amount larger than what the
      installments can absorb (the service turns this into OverpaymentError
      after checking ``max_payable`` first).

Audit relevance:
    The allocation is stored with the loan transaction so that a reversal
    can undo exactly what the payment settled.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from corebank_engines.tracer import traced_engine
from corebank_kernel.domain.loan_terms import ALLOCATION_PRIORITY, Component
from corebank_kernel.domain.values import ZERO, to_decimal
from corebank_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class InstallmentState:
    """
    Outstanding amounts of one installment at the payment date.

    Contract:
        Amounts are what is still owed (due minus paid), never negative.
    """

    installment_number: int
    due_date: date
    penalty: Decimal = ZERO
    fee: Decimal = ZERO
    interest: Decimal = ZERO
    principal: Decimal = ZERO

    def __post_init__(self) -> None:
        for component in ALLOCATION_PRIORITY:
            value = to_decimal(getattr(self, component.value))
            if value < ZERO:
                raise ValueError(
                    f"Installment {self.installment_number}: negative {component.value} outstanding"
                )
            object.__setattr__(self, component.value, value)

    def outstanding(self, component: Component) -> Decimal:
        return getattr(self, component.value)

    @property
    def total(self) -> Decimal:
        return self.penalty + self.fee + self.interest + self.principal

    def is_due(self, as_of: date) -> bool:
        return self.due_date <= as_of


@dataclass(frozen=True)
class InstallmentAllocation:
    """What a payment settled on one installment."""

    installment_number: int
    penalty: Decimal = ZERO
    fee: Decimal = ZERO
    interest: Decimal = ZERO
    principal: Decimal = ZERO
    is_prepayment: bool = False

    def amount(self, component: Component) -> Decimal:
        return getattr(self, component.value)

    @property
    def total(self) -> Decimal:
        return self.penalty + self.fee + self.interest + self.principal

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form stored on LoanTransaction.allocation."""
        return {
            "installment_number": self.installment_number,
            "penalty": str(self.penalty),
            "fee": str(self.fee),
            "interest": str(self.interest),
            "principal": str(self.principal),
            "is_prepayment": self.is_prepayment,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstallmentAllocation:
        return cls(
            installment_number=int(data["installment_number"]),
            penalty=Decimal(data["penalty"]),
            fee=Decimal(data["fee"]),
            interest=Decimal(data["interest"]),
            principal=Decimal(data["principal"]),
            is_prepayment=bool(data.get("is_prepayment", False)),
        )


@dataclass(frozen=True)
class PaymentAllocation:
    """
    Complete result of allocating one payment.

    Guarantees:
        - ``total_allocated == amount``.
        - ``lines`` is ordered by installment number and only contains
          installments that received something.
    """

    amount: Decimal
    payment_date: date
    lines: tuple[InstallmentAllocation, ...]

    def component_total(self, component: Component) -> Decimal:
        return sum((line.amount(component) for line in self.lines), ZERO)

    @property
    def totals(self) -> dict[Component, Decimal]:
        return {c: self.component_total(c) for c in ALLOCATION_PRIORITY}

    @property
    def total_allocated(self) -> Decimal:
        return sum((line.total for line in self.lines), ZERO)

    @property
    def prepayment_total(self) -> Decimal:
        return sum((line.total for line in self.lines if line.is_prepayment), ZERO)

    def to_json(self) -> list[dict[str, Any]]:
        return [line.to_dict() for line in self.lines]


def amount_due(installments: Sequence[InstallmentState], as_of: date) -> Decimal:
    """Everything outstanding on installments due on or before ``as_of``."""
    return sum((i.total for i in installments if i.is_due(as_of)), ZERO)


def total_outstanding(installments: Sequence[InstallmentState]) -> Decimal:
    return sum((i.total for i in installments), ZERO)


def max_payable(
    installments: Sequence[InstallmentState],
    as_of: date,
    allow_prepayment: bool,
) -> Decimal:
    """Largest payment the waterfall can absorb under the prepayment policy."""
    if allow_prepayment:
        return total_outstanding(installments)
    return amount_due(installments, as_of)


class PaymentAllocationEngine:
    """
    Repayment waterfall.

    Contract:
        Pure functions -- no I/O, no database access.
    Guarantees:
        - Due amounts are consumed component-major: all overdue penalties
          (oldest first), then fees, then interest, then principal.
        - Prepayment is consumed installment-major in due-date order, with
          the same component order inside each installment.
    Non-goals:
        - Does not decide the prepayment policy or raise OverpaymentError;
          the caller checks ``max_payable`` first.
    """

    @traced_engine("payment_allocation", "1.0", fingerprint_fields=("amount", "payment_date", "installments"))
    def allocate(
        self,
        amount: Decimal,
        installments: Sequence[InstallmentState],
        payment_date: date,
        allow_prepayment: bool = True,
    ) -> PaymentAllocation:
        """
        Allocate ``amount`` across ``installments``.

        Raises:
            ValueError: amount is not positive or exceeds ``max_payable``.
        """
        t0 = time.monotonic()
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise ValueError(f"Payment amount must be positive, got {amount}")

        capacity = max_payable(installments, payment_date, allow_prepayment)
        if amount > capacity:
            logger.warning("allocation_exceeds_capacity", extra={
                "amount": str(amount),
                "capacity": str(capacity),
                "allow_prepayment": allow_prepayment,
            })
            raise ValueError(f"Payment {amount} exceeds allocatable amount {capacity}")

        ordered = sorted(installments, key=lambda i: (i.due_date, i.installment_number))
        due = [i for i in ordered if i.is_due(payment_date)]
        future = [i for i in ordered if not i.is_due(payment_date)]

        applied: dict[int, dict[Component, Decimal]] = {}
        remaining = amount

        for component in ALLOCATION_PRIORITY:
            for inst in due:
                if remaining == ZERO:
                    break
                take = min(remaining, inst.outstanding(component))
                if take > ZERO:
                    applied.setdefault(inst.installment_number, {})[component] = take
                    remaining -= take

        prepaid: set[int] = set()
        if allow_prepayment:
            for inst in future:
                if remaining == ZERO:
                    break
                for component in ALLOCATION_PRIORITY:
                    take = min(remaining, inst.outstanding(component))
                    if take > ZERO:
                        applied.setdefault(inst.installment_number, {})[component] = take
                        prepaid.add(inst.installment_number)
                        remaining -= take

        lines = tuple(
            InstallmentAllocation(
                installment_number=number,
                penalty=parts.get(Component.PENALTY, ZERO),
                fee=parts.get(Component.FEE, ZERO),
                interest=parts.get(Component.INTEREST, ZERO),
                principal=parts.get(Component.PRINCIPAL, ZERO),
                is_prepayment=number in prepaid,
            )
            for number, parts in sorted(applied.items())
        )
        result = PaymentAllocation(amount=amount, payment_date=payment_date, lines=lines)

        logger.info("allocation_completed", extra={
            "amount": str(amount),
            "installments_touched": len(lines),
            "prepayment": str(result.prepayment_total),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return result


def allocate_payment(
    amount: Decimal,
    installments: Sequence[InstallmentState],
    payment_date: date,
    allow_prepayment: bool = True,
) -> PaymentAllocation:
    """Convenience wrapper around PaymentAllocationEngine.allocate."""
    return PaymentAllocationEngine().allocate(amount, installments, payment_date, allow_prepayment)
