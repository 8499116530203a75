"""
Module: corebank_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines used by
    the loan and reconciliation services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import corebank_kernel.domain, corebank_kernel.exceptions and
    corebank_kernel.logging_config only.  MUST NOT import corebank_services,
    the ORM models or the database layer.

Invariants enforced:
    - Purity: engines never call ``datetime.now()`` or ``date.today()``.
      Dates are explicit parameters.
    - Decimal-only arithmetic; floats are rejected.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``, emitting
    COREBANK_ENGINE_TRACE records with engine name, version, input
    fingerprint and duration.
"""

from corebank_engines.allocation import (
    InstallmentAllocation,
    InstallmentState,
    PaymentAllocation,
    PaymentAllocationEngine,
    allocate_payment,
    amount_due,
    max_payable,
    total_outstanding,
)
from corebank_engines.amortization import (
    AmortizationSchedule,
    Installment,
    add_months,
    generate_schedule,
)
from corebank_engines.delinquency import (
    ClassificationThresholds,
    OverdueInstallment,
    PenaltyCharge,
    assess_penalties,
    classify,
    days_overdue,
    penalty_amount,
)
from corebank_engines.matching import (
    BankMatchingEngine,
    MatchCandidate,
    MatchingResult,
    MatchSuggestion,
    MatchTolerance,
)
from corebank_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "AmortizationSchedule",
    "BankMatchingEngine",
    "ClassificationThresholds",
    "Installment",
    "InstallmentAllocation",
    "InstallmentState",
    "MatchCandidate",
    "MatchSuggestion",
    "MatchTolerance",
    "MatchingResult",
    "OverdueInstallment",
    "PaymentAllocation",
    "PaymentAllocationEngine",
    "PenaltyCharge",
    "add_months",
    "allocate_payment",
    "amount_due",
    "assess_penalties",
    "classify",
    "compute_input_fingerprint",
    "days_overdue",
    "generate_schedule",
    "max_payable",
    "penalty_amount",
    "total_outstanding",
    "traced_engine",
]
