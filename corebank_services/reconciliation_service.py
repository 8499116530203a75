"""
corebank_services.reconciliation_service -- Bank statement reconciliation.

Responsibility:
    Imports bank statements, matches their lines against posted lines on the
    corresponding cash account, and explains any difference between the
    statement closing balance and the book balance.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Matching heuristics live in corebank_engines.matching; book balances and
    unreconciled lines come from LedgerSelector.

Invariants enforced:
    - Snapshot reads are lock-free; each match is written under the lock of
      its statement line (statement_line:<tenant>:<id>) and re-checked there.
    - A statement line and a journal line are each matched at most once.
    - variance = (statement closing + deposits in transit - outstanding
      payments) - (book closing + unrecorded bank items net).
    - Never posts adjusting entries.  A non-zero variance is attached to the
      report as an advisory UnreconciledVarianceError, never raised.

Failure modes:
    - StatementNotFoundError, StatementLineNotFoundError.
    - AccountNotFoundError for an unknown cash account on import.
    - ConcurrencyConflictError when a statement-line lock cannot be obtained.

Audit relevance:
    Each run is persisted as a ReconciliationRun row and logged as
    ``reconciliation_completed`` with its counts and variance.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from corebank_config import get_active_settings, lock_manager_from
from corebank_config.schema import ReconciliationSettings
from corebank_engines.matching import BankMatchingEngine, MatchCandidate, MatchTolerance
from corebank_kernel.domain.clock import Clock, SystemClock
from corebank_kernel.domain.context import OperationContext
from corebank_kernel.domain.dtos import Book, PostedLine, Side
from corebank_kernel.domain.entry_lifecycle import EntryStatus
from corebank_kernel.domain.values import ZERO, to_decimal
from corebank_kernel.exceptions import (
    AccountNotFoundError,
    StatementLineNotFoundError,
    StatementNotFoundError,
    UnreconciledVarianceError,
)
from corebank_kernel.logging_config import LogContext, get_logger
from corebank_kernel.models.account import Account
from corebank_kernel.models.journal import JournalEntry, JournalLine
from corebank_kernel.models.reconciliation import (
    BankStatement,
    BankStatementLine,
    ReconciliationMatch,
    ReconciliationRun,
    StatementLineStatus,
)
from corebank_kernel.selectors.ledger_selector import LedgerSelector
from corebank_kernel.services.locking import LockManager, statement_line_key

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class StatementLineInput:
    """One line of a statement being imported.  Deposits are positive."""

    transaction_date: date
    amount: Decimal
    reference: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))


@dataclass(frozen=True)
class MatchRecord:
    statement_line_id: UUID
    journal_line_id: UUID
    score: Decimal | None
    method: str


@dataclass(frozen=True)
class UnmatchedStatementLine:
    statement_line_id: UUID
    transaction_date: date
    amount: Decimal
    reference: str | None


@dataclass(frozen=True)
class ReconciliationReport:
    """
    Outcome of one reconciliation run.

    Guarantees:
        - ``variance`` follows the formula in the module docstring.
        - ``advisory`` is set exactly when ``variance`` is non-zero.
    """

    statement_id: UUID
    run_id: UUID
    matches: tuple[MatchRecord, ...]
    unmatched_statement_lines: tuple[UnmatchedStatementLine, ...]
    outstanding_book_lines: tuple[PostedLine, ...]
    statement_closing: Decimal
    book_closing: Decimal
    deposits_in_transit: Decimal
    outstanding_payments: Decimal
    unrecorded_bank_net: Decimal
    variance: Decimal
    advisory: UnreconciledVarianceError | None = None

    @property
    def is_reconciled(self) -> bool:
        return self.variance == ZERO

    @property
    def adjusted_statement_balance(self) -> Decimal:
        return self.statement_closing + self.deposits_in_transit - self.outstanding_payments

    @property
    def adjusted_book_balance(self) -> Decimal:
        return self.book_closing + self.unrecorded_bank_net


class VarianceNotifier(Protocol):
    """Receives reports whose variance reaches the alert threshold."""

    def notify(self, ctx: OperationContext, report: ReconciliationReport) -> None: ...


class LoggingVarianceNotifier:
    """Default notifier: a WARNING log record per alert."""

    def notify(self, ctx: OperationContext, report: ReconciliationReport) -> None:
        logger.warning(
            "reconciliation_variance_alert",
            extra={
                **ctx.log_fields(),
                "statement_id": str(report.statement_id),
                "variance": report.variance,
                "unmatched_statement_lines": len(report.unmatched_statement_lines),
                "outstanding_book_lines": len(report.outstanding_book_lines),
            },
        )


class ReconciliationService:
    """
    Bank reconciliation.

    Contract:
        Receives Session, ReconciliationSettings, Clock, LockManager and a
        VarianceNotifier via constructor injection.
    Guarantees:
        - ``reconcile`` is idempotent for lines already matched: a second run
          only considers what is still unmatched.
    Non-goals:
        - Does NOT post adjusting entries for bank fees or interest.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        settings: ReconciliationSettings | None = None,
        clock: Clock | None = None,
        lock_manager: LockManager | None = None,
        notifier: VarianceNotifier | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_active_settings().reconciliation
        self._clock = clock or SystemClock()
        self._locks = lock_manager or lock_manager_from(get_active_settings().ledger)
        self._notifier = notifier or LoggingVarianceNotifier()
        self._selector = LedgerSelector(session)
        self._engine = BankMatchingEngine(
            MatchTolerance(
                amount_tolerance=self._settings.amount_tolerance,
                date_window_days=self._settings.date_window_days,
            )
        )

    # =========================================================================
    # Import
    # =========================================================================

    def import_statement(
        self,
        ctx: OperationContext,
        bank_account_code: str,
        statement_date: date,
        period_start: date,
        period_end: date,
        opening_balance: Decimal | str,
        closing_balance: Decimal | str,
        lines: Sequence[StatementLineInput],
        currency: str = "USD",
        statement_ref: str | None = None,
        book: Book = Book.CORE,
    ) -> BankStatement:
        """
        Store a statement for a cash account.

        Lines whose (reference, transaction date) already exist for the same
        account, or repeat within the file, are skipped.  Lines without a
        reference are always kept.
        """
        account = self._session.execute(
            select(Account).where(
                Account.tenant_id == ctx.tenant_id,
                Account.book == Book(book).value,
                Account.code == bank_account_code,
            )
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(f"{Book(book).value}:{bank_account_code}")

        seen = set(
            self._session.execute(
                select(BankStatementLine.reference, BankStatementLine.transaction_date)
                .join(BankStatement, BankStatementLine.statement_id == BankStatement.id)
                .where(
                    BankStatement.tenant_id == ctx.tenant_id,
                    BankStatement.bank_account_id == account.id,
                    BankStatementLine.reference.is_not(None),
                )
            ).all()
        )

        statement = BankStatement(
            tenant_id=ctx.tenant_id,
            bank_account_id=account.id,
            statement_ref=statement_ref,
            statement_date=statement_date,
            period_start=period_start,
            period_end=period_end,
            currency=currency.upper(),
            opening_balance=to_decimal(opening_balance),
            closing_balance=to_decimal(closing_balance),
            created_by=ctx.actor_id,
        )
        skipped = 0
        for line in lines:
            if line.reference:
                key = (line.reference, line.transaction_date)
                if key in seen:
                    skipped += 1
                    continue
                seen.add(key)
            statement.lines.append(
                BankStatementLine(
                    tenant_id=ctx.tenant_id,
                    transaction_date=line.transaction_date,
                    amount=line.amount,
                    reference=line.reference,
                    description=line.description,
                    status=StatementLineStatus.UNMATCHED.value,
                    created_by=ctx.actor_id,
                )
            )
        self._session.add(statement)
        self._session.flush()

        line_total = sum((line.amount for line in lines), ZERO)
        if statement.opening_balance + line_total != statement.closing_balance:
            logger.warning(
                "statement_totals_mismatch",
                extra={
                    **ctx.log_fields(),
                    "statement_id": str(statement.id),
                    "opening_balance": statement.opening_balance,
                    "line_total": line_total,
                    "closing_balance": statement.closing_balance,
                },
            )

        logger.info(
            "statement_imported",
            extra={
                **ctx.log_fields(),
                "statement_id": str(statement.id),
                "bank_account_code": bank_account_code,
                "line_count": len(statement.lines),
                "duplicates_skipped": skipped,
            },
        )
        return statement

    # =========================================================================
    # Reconcile
    # =========================================================================

    def reconcile(self, ctx: OperationContext, statement_id: UUID) -> ReconciliationReport:
        """
        Match a statement against the books and compute the variance.

        Book lines considered are the unreconciled posted lines on the cash
        account dated on or before the statement's period end.
        """
        with LogContext.bind(**ctx.log_fields()):
            statement = self._load_statement(ctx, statement_id)

            statement_items = [
                MatchCandidate(
                    candidate_id=line.id,
                    amount=line.amount,
                    date=line.transaction_date,
                    reference=line.reference or "",
                )
                for line in statement.lines
                if line.status == StatementLineStatus.UNMATCHED.value
            ]
            book_lines = self._selector.unreconciled_lines(
                ctx, statement.bank_account_id, end=statement.period_end
            )
            by_line_id = {bl.line_id: bl for bl in book_lines}
            book_items = [
                MatchCandidate(
                    candidate_id=bl.line_id,
                    amount=bl.signed_amount,
                    date=bl.effective_date,
                    reference=bl.memo or "",
                )
                for bl in book_lines
            ]

            result = self._engine.pair(statement_items, book_items)

            matched: list[MatchRecord] = []
            for suggestion in result.matches:
                record = self._write_match(
                    ctx,
                    statement.bank_account_id,
                    suggestion.statement.candidate_id,
                    suggestion.book.candidate_id,
                    suggestion.score,
                    "auto",
                )
                if record is not None:
                    matched.append(record)

            matched_statement = {m.statement_line_id for m in matched}
            matched_book = {m.journal_line_id for m in matched}

            unmatched_statement = tuple(
                UnmatchedStatementLine(
                    statement_line_id=line.id,
                    transaction_date=line.transaction_date,
                    amount=line.amount,
                    reference=line.reference,
                )
                for line in statement.lines
                if line.status == StatementLineStatus.UNMATCHED.value and line.id not in matched_statement
            )
            outstanding = tuple(
                by_line_id[item.candidate_id]
                for item in book_items
                if item.candidate_id not in matched_book
            )

            report = self._build_report(ctx, statement, matched, unmatched_statement, outstanding)

            logger.info(
                "reconciliation_completed",
                extra={
                    "statement_id": str(statement.id),
                    "run_id": str(report.run_id),
                    "matched": len(report.matches),
                    "unmatched_statement_lines": len(report.unmatched_statement_lines),
                    "outstanding_book_lines": len(report.outstanding_book_lines),
                    "variance": report.variance,
                    "is_reconciled": report.is_reconciled,
                },
            )
            if abs(report.variance) >= self._settings.variance_alert_threshold and report.variance != ZERO:
                self._notifier.notify(ctx, report)
            return report

    def match(
        self,
        ctx: OperationContext,
        statement_line_id: UUID,
        journal_line_id: UUID,
    ) -> MatchRecord | None:
        """
        Manually match a statement line to a posted journal line.

        Returns None when either side is already matched, or when the journal
        line is not a posted line on the statement's bank account.
        """
        line = self._load_statement_line(ctx, statement_line_id)
        statement = self._load_statement(ctx, line.statement_id)
        record = self._write_match(
            ctx, statement.bank_account_id, statement_line_id, journal_line_id, None, "manual"
        )
        if record is not None:
            logger.info(
                "statement_line_matched",
                extra={
                    **ctx.log_fields(),
                    "statement_line_id": str(statement_line_id),
                    "journal_line_id": str(journal_line_id),
                    "method": "manual",
                },
            )
        return record

    def unmatch(self, ctx: OperationContext, statement_line_id: UUID) -> bool:
        """
        Undo the match on a statement line.

        Returns:
            True if a match was removed, False if the line was not matched.
        """
        with self._locks.acquire(statement_line_key(ctx.tenant_id, statement_line_id)):
            line = self._load_statement_line(ctx, statement_line_id)
            existing = self._session.execute(
                select(ReconciliationMatch).where(
                    ReconciliationMatch.tenant_id == ctx.tenant_id,
                    ReconciliationMatch.statement_line_id == statement_line_id,
                )
            ).scalar_one_or_none()
            if existing is None:
                return False

            journal_line_id = existing.journal_line_id
            self._session.delete(existing)
            line.status = StatementLineStatus.UNMATCHED.value
            line.touch(ctx.actor_id)
            self._session.flush()

        logger.info(
            "statement_line_unmatched",
            extra={
                **ctx.log_fields(),
                "statement_line_id": str(statement_line_id),
                "journal_line_id": str(journal_line_id),
            },
        )
        return True

    def latest_run(self, ctx: OperationContext, statement_id: UUID) -> ReconciliationRun | None:
        return self._session.execute(
            select(ReconciliationRun)
            .where(
                ReconciliationRun.tenant_id == ctx.tenant_id,
                ReconciliationRun.statement_id == statement_id,
            )
            .order_by(ReconciliationRun.run_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    # =========================================================================
    # Internal
    # =========================================================================

    def _load_statement(self, ctx: OperationContext, statement_id: UUID) -> BankStatement:
        statement = self._session.execute(
            select(BankStatement).where(
                BankStatement.tenant_id == ctx.tenant_id,
                BankStatement.id == statement_id,
            )
        ).scalar_one_or_none()
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return statement

    def _load_statement_line(self, ctx: OperationContext, line_id: UUID) -> BankStatementLine:
        line = self._session.execute(
            select(BankStatementLine).where(
                BankStatementLine.tenant_id == ctx.tenant_id,
                BankStatementLine.id == line_id,
            )
        ).scalar_one_or_none()
        if line is None:
            raise StatementLineNotFoundError(str(line_id))
        return line

    def _write_match(
        self,
        ctx: OperationContext,
        bank_account_id: UUID,
        statement_line_id: UUID,
        journal_line_id: UUID,
        score: Decimal | None,
        method: str,
    ) -> MatchRecord | None:
        """
        Persist one match under the statement-line lock.

        None if either side was taken meanwhile, or if the journal line is not
        a line of a posted entry on ``bank_account_id``.
        """
        with self._locks.acquire(statement_line_key(ctx.tenant_id, statement_line_id)):
            line = self._session.execute(
                select(BankStatementLine)
                .where(
                    BankStatementLine.tenant_id == ctx.tenant_id,
                    BankStatementLine.id == statement_line_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
            if line.status != StatementLineStatus.UNMATCHED.value:
                return None

            journal_taken = self._session.execute(
                select(ReconciliationMatch.id).where(
                    ReconciliationMatch.tenant_id == ctx.tenant_id,
                    ReconciliationMatch.journal_line_id == journal_line_id,
                )
            ).first()
            if journal_taken is not None:
                return None

            journal_line = self._session.execute(
                select(JournalLine)
                .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
                .where(
                    JournalEntry.tenant_id == ctx.tenant_id,
                    JournalEntry.status == EntryStatus.POSTED.value,
                    JournalLine.id == journal_line_id,
                    JournalLine.account_id == bank_account_id,
                )
            ).scalar_one_or_none()
            if journal_line is None:
                logger.info(
                    "match_rejected_not_a_book_item",
                    extra={
                        **ctx.log_fields(),
                        "statement_line_id": str(statement_line_id),
                        "journal_line_id": str(journal_line_id),
                    },
                )
                return None

            self._session.add(
                ReconciliationMatch(
                    tenant_id=ctx.tenant_id,
                    statement_line_id=statement_line_id,
                    journal_line_id=journal_line_id,
                    method=method,
                    score=score,
                    matched_at=self._clock.now(),
                    created_by=ctx.actor_id,
                )
            )
            line.status = StatementLineStatus.MATCHED.value
            line.touch(ctx.actor_id)
            self._session.flush()
        return MatchRecord(statement_line_id, journal_line_id, score, method)

    def _build_report(
        self,
        ctx: OperationContext,
        statement: BankStatement,
        matched: list[MatchRecord],
        unmatched_statement: tuple[UnmatchedStatementLine, ...],
        outstanding: tuple[PostedLine, ...],
    ) -> ReconciliationReport:
        account = self._session.get(Account, statement.bank_account_id)
        book_closing = self._selector.account_balance(
            ctx, account.code, Book(account.book), as_of=statement.period_end
        ).balance

        deposits_in_transit = sum((bl.amount for bl in outstanding if bl.side is Side.DEBIT), ZERO)
        outstanding_payments = sum((bl.amount for bl in outstanding if bl.side is Side.CREDIT), ZERO)
        unrecorded_bank_net = sum((ln.amount for ln in unmatched_statement), ZERO)

        variance = (statement.closing_balance + deposits_in_transit - outstanding_payments) - (
            book_closing + unrecorded_bank_net
        )
        advisory = UnreconciledVarianceError(str(statement.id), str(variance)) if variance != ZERO else None

        run = ReconciliationRun(
            tenant_id=ctx.tenant_id,
            statement_id=statement.id,
            run_at=self._clock.now(),
            matched_count=len(matched),
            unmatched_statement_count=len(unmatched_statement),
            outstanding_book_count=len(outstanding),
            statement_closing=statement.closing_balance,
            book_closing=book_closing,
            deposits_in_transit=deposits_in_transit,
            outstanding_payments=outstanding_payments,
            unrecorded_bank_net=unrecorded_bank_net,
            variance=variance,
            is_reconciled=variance == ZERO,
            created_by=ctx.actor_id,
        )
        self._session.add(run)
        self._session.flush()

        return ReconciliationReport(
            statement_id=statement.id,
            run_id=run.id,
            matches=tuple(matched),
            unmatched_statement_lines=unmatched_statement,
            outstanding_book_lines=outstanding,
            statement_closing=statement.closing_balance,
            book_closing=book_closing,
            deposits_in_transit=deposits_in_transit,
            outstanding_payments=outstanding_payments,
            unrecorded_bank_net=unrecorded_bank_net,
            variance=variance,
            advisory=advisory,
        )
