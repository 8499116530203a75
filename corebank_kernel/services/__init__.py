"""Kernel services -- the imperative shell over the ledger tables."""

from corebank_kernel.services.ledger_service import LedgerService
from corebank_kernel.services.locking import (
    LockManager,
    RetryPolicy,
    configure_lock_manager,
    get_lock_manager,
    run_in_transaction,
    run_with_retry,
)
from corebank_kernel.services.period_service import PeriodService
from corebank_kernel.services.sequence_service import SequenceService

__all__ = [
    "LedgerService",
    "LockManager",
    "PeriodService",
    "RetryPolicy",
    "SequenceService",
    "configure_lock_manager",
    "get_lock_manager",
    "run_in_transaction",
    "run_with_retry",
]
