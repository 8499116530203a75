"""
corebank_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure engines
    (corebank_engines/) with database sessions, locks and the clock.  Loan
    accounting and bank reconciliation live here.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        corebank_services/ -> corebank_engines/  (allowed)
        corebank_services/ -> corebank_kernel/   (allowed)
        corebank_engines/  -> corebank_services/ (FORBIDDEN)
        corebank_kernel/   -> corebank_services/ (FORBIDDEN)

Audit relevance:
    This package is the import surface for external consumers.
"""

from corebank_services.loan_service import LoanAccountingService, PayoffQuote
from corebank_services.reconciliation_service import (
    LoggingVarianceNotifier,
    MatchRecord,
    ReconciliationReport,
    ReconciliationService,
    StatementLineInput,
    UnmatchedStatementLine,
    VarianceNotifier,
)

__all__ = [
    "LoanAccountingService",
    "LoggingVarianceNotifier",
    "MatchRecord",
    "PayoffQuote",
    "ReconciliationReport",
    "ReconciliationService",
    "StatementLineInput",
    "UnmatchedStatementLine",
    "VarianceNotifier",
]
