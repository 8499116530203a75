"""
Loan vocabulary shared by the loan models, engines and services.

Pure enums only -- no I/O. Kept in the kernel domain so that both the ORM
models and the pure engines can import them without depending on each other.
"""

from enum import Enum


class InterestMethod(str, Enum):
    """How interest is computed over the tenor."""

    FLAT = "flat"
    REDUCING_BALANCE = "reducing_balance"


class LoanStatus(str, Enum):
    """Loan lifecycle. CLOSED and WRITTEN_OFF are terminal."""

    ACTIVE = "active"
    DELINQUENT = "delinquent"
    CLOSED = "closed"
    WRITTEN_OFF = "written_off"

    @property
    def is_open(self) -> bool:
        return self in (LoanStatus.ACTIVE, LoanStatus.DELINQUENT)


class InstallmentStatus(str, Enum):
    """Repayment schedule entry status."""

    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


class LoanTransactionType(str, Enum):
    """Financial events on a loan. Each maps 1:1 to a journal entry."""

    DISBURSEMENT = "disbursement"
    REPAYMENT = "repayment"
    FEE = "fee"
    PENALTY = "penalty"
    WRITE_OFF = "write_off"
    REVERSAL = "reversal"


class Component(str, Enum):
    """Allocation components, in repayment priority order."""

    PENALTY = "penalty"
    FEE = "fee"
    INTEREST = "interest"
    PRINCIPAL = "principal"


ALLOCATION_PRIORITY: tuple[Component, ...] = (
    Component.PENALTY,
    Component.FEE,
    Component.INTEREST,
    Component.PRINCIPAL,
)


class Classification(str, Enum):
    """Prudential asset classification by days overdue."""

    PERFORMING = "performing"
    SPECIAL_MENTION = "special_mention"
    SUBSTANDARD = "substandard"
    DOUBTFUL = "doubtful"
    LOSS = "loss"
