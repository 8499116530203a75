"""
Locking -- named exclusive locks, bounded waits and retry with backoff.

Responsibility:
    Serializes writers that touch the same account, loan or statement line
    while letting writers on disjoint resources run in parallel.  Also
    retries units of work that fail with a database serialization conflict.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by LedgerService, LoanAccountingService and ReconciliationService.
    Complements, and does not replace, the row locks (SELECT ... FOR UPDATE)
    and SERIALIZABLE isolation used on PostgreSQL.

Invariants enforced:
    - Multi-key acquisition happens in sorted key order, so two callers can
      never wait on each other in a cycle.
    - Every wait is bounded by ``lock_timeout_seconds``; after ``max_retries``
      further attempts the caller gets ConcurrencyConflictError.
    - Locks are re-entrant per thread: a loan operation holding
      ``loan:<tenant>:<id>`` may post through the ledger, which locks
      accounts, without deadlocking on itself.

Failure modes:
    - ConcurrencyConflictError after the retry budget is exhausted.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from corebank_kernel.db.engine import session_scope
from corebank_kernel.exceptions import ConcurrencyConflictError
from corebank_kernel.logging_config import get_logger

logger = get_logger("services.locking")

T = TypeVar("T")


def account_key(tenant_id: str, account_id) -> str:
    return f"account:{tenant_id}:{account_id}"


def entry_key(tenant_id: str, entry_id) -> str:
    return f"entry:{tenant_id}:{entry_id}"


def loan_key(tenant_id: str, loan_id) -> str:
    return f"loan:{tenant_id}:{loan_id}"


def statement_line_key(tenant_id: str, line_id) -> str:
    return f"statement_line:{tenant_id}:{line_id}"


def period_key(tenant_id: str, period_code: str) -> str:
    return f"period:{tenant_id}:{period_code}"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded wait plus exponential backoff."""

    lock_timeout_seconds: float = 5.0
    max_retries: int = 3
    backoff_base_seconds: float = 0.05
    backoff_max_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)


class LockManager:
    """
    In-process registry of named re-entrant locks.

    Contract:
        ``acquire(*keys)`` is a context manager holding every key for the
        duration of the block.  All keys are taken or none are.

    Guarantees:
        - Keys are de-duplicated and sorted before acquisition.
        - A failed attempt releases whatever it took before backing off.

    Non-goals:
        - Does NOT coordinate across processes; PostgreSQL row locks and
          SERIALIZABLE isolation cover that (see run_with_retry).
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def _try_acquire_all(self, keys: list[str]) -> list[threading.RLock] | None:
        held: list[threading.RLock] = []
        for key in keys:
            lock = self._lock_for(key)
            if not lock.acquire(timeout=self.policy.lock_timeout_seconds):
                for acquired in reversed(held):
                    acquired.release()
                return None
            held.append(lock)
        return held

    @contextmanager
    def acquire(self, *keys: str) -> Iterator[None]:
        ordered = sorted(set(keys))
        if not ordered:
            yield
            return

        held = None
        for attempt in range(self.policy.max_attempts):
            held = self._try_acquire_all(ordered)
            if held is not None:
                break
            if attempt < self.policy.max_retries:
                delay = self.policy.backoff(attempt)
                logger.info(
                    "lock_contention_retry",
                    extra={"keys": ordered, "attempt": attempt + 1, "delay_seconds": delay},
                )
                self._sleep(delay)

        if held is None:
            logger.warning(
                "lock_acquisition_failed",
                extra={"keys": ordered, "attempts": self.policy.max_attempts},
            )
            raise ConcurrencyConflictError(
                resource=",".join(ordered), attempts=self.policy.max_attempts
            )

        try:
            yield
        finally:
            for lock in reversed(held):
                lock.release()


_default_manager: LockManager | None = None
_default_manager_guard = threading.Lock()


def get_lock_manager() -> LockManager:
    """Process-wide LockManager shared by every service instance."""
    global _default_manager
    with _default_manager_guard:
        if _default_manager is None:
            _default_manager = LockManager()
        return _default_manager


def configure_lock_manager(policy: RetryPolicy) -> LockManager:
    """
    Put the process-wide LockManager under ``policy``.

    The lock table is kept, so callers already holding a key still exclude
    callers that arrive under the new policy.
    """
    manager = get_lock_manager()
    if manager.policy != policy:
        logger.info(
            "lock_policy_configured",
            extra={
                "lock_timeout_seconds": policy.lock_timeout_seconds,
                "max_retries": policy.max_retries,
            },
        )
        manager.policy = policy
    return manager


def run_with_retry(
    work: Callable[[], T],
    policy: RetryPolicy,
    resource: str,
    on_retry: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``work`` and retry it on database conflicts.

    Retried: OperationalError (serialization failure, deadlock, SQLite
    "database is locked") and StaleDataError (optimistic version check on a
    loan row lost to a concurrent writer).

    ``on_retry`` runs before each new attempt (typically a session rollback).
    ConcurrencyConflictError raised inside ``work`` is not retried again here:
    the lock layer has already spent its own budget.

    Raises:
        ConcurrencyConflictError: still conflicting after ``policy.max_retries``.
    """
    for attempt in range(policy.max_attempts):
        try:
            return work()
        except (OperationalError, StaleDataError) as exc:
            if attempt >= policy.max_retries:
                logger.warning(
                    "db_conflict_retries_exhausted",
                    extra={"resource": resource, "attempts": attempt + 1},
                )
                raise ConcurrencyConflictError(resource=resource, attempts=attempt + 1) from exc
            delay = policy.backoff(attempt)
            logger.info(
                "db_conflict_retry",
                extra={"resource": resource, "attempt": attempt + 1, "delay_seconds": delay},
            )
            if on_retry is not None:
                on_retry()
            sleep(delay)
    raise AssertionError("unreachable")


def run_in_transaction(
    session_factory: sessionmaker[Session],
    work: Callable[[Session], T],
    policy: RetryPolicy,
    resource: str = "transaction",
) -> T:
    """
    Run ``work(session)`` in its own transaction, committing on success.

    Each attempt gets a fresh session; a serialization failure rolls the
    attempt back and starts over.
    """

    def attempt() -> T:
        with session_scope(session_factory) as session:
            return work(session)

    return run_with_retry(attempt, policy, resource)
