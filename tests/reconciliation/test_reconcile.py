"""
Bank reconciliation tests.

Verifies:
- Statement import skips duplicate (reference, date) lines
- Automatic matching within tolerance and the variance formula
- Advisory variance and the alert notifier
- Manual match and unmatch; manual matches only take posted cash-account lines
- Each run is persisted
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from corebank_kernel.domain.dtos import LineSpec, Side
from corebank_kernel.exceptions import (
    AccountNotFoundError,
    StatementLineNotFoundError,
    StatementNotFoundError,
    UnreconciledVarianceError,
)
from corebank_kernel.models.journal import JournalLine
from corebank_kernel.models.reconciliation import ReconciliationMatch, StatementLineStatus
from corebank_services.reconciliation_service import ReconciliationService, StatementLineInput

PERIOD_START = date(2024, 3, 1)
PERIOD_END = date(2024, 3, 31)


class RecordingNotifier:
    def __init__(self):
        self.reports = []

    def notify(self, ctx, report):
        self.reports.append(report)


@pytest.fixture
def march_books(ledger, ctx, standard_accounts):
    """Capital in, a cheque out, and a deposit the bank has not yet credited.  Book closing 4,600."""
    ledger.post_entry(
        ctx,
        [LineSpec.debit("1010", "5000.00", memo="DEP-001"), LineSpec.credit("3000", "5000.00")],
        date(2024, 3, 1),
    )
    ledger.post_entry(
        ctx,
        [LineSpec.debit("2100", "1200.00"), LineSpec.credit("1010", "1200.00", memo="CHQ 1001")],
        date(2024, 3, 10),
    )
    ledger.post_entry(
        ctx,
        [LineSpec.debit("1010", "800.00", memo="DEP-002"), LineSpec.credit("3000", "800.00")],
        date(2024, 3, 30),
    )


def _march_lines():
    return [
        StatementLineInput(date(2024, 3, 2), Decimal("5000.00"), "DEP-001"),
        StatementLineInput(date(2024, 3, 12), Decimal("-1200.00"), "CHQ 1001"),
        StatementLineInput(date(2024, 3, 31), Decimal("-15.00"), "FEE", "Monthly service fee"),
    ]


def _import(service, ctx, closing="3785.00", lines=None):
    return service.import_statement(
        ctx,
        "1010",
        statement_date=PERIOD_END,
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        opening_balance="0.00",
        closing_balance=closing,
        lines=_march_lines() if lines is None else lines,
        statement_ref="STMT-2024-03",
    )


class TestImport:

    def test_import_stores_lines(self, reconciliation_service, ctx, standard_accounts):
        statement = _import(reconciliation_service, ctx)

        assert statement.bank_account_id == standard_accounts["1010"].id
        assert statement.currency == "USD"
        assert [line.amount for line in statement.lines] == [
            Decimal("5000.00"), Decimal("-1200.00"), Decimal("-15.00"),
        ]
        assert all(line.status == StatementLineStatus.UNMATCHED.value for line in statement.lines)

    def test_duplicate_lines_skipped(self, reconciliation_service, ctx, standard_accounts, captured_logs):
        _import(reconciliation_service, ctx)

        again = _import(
            reconciliation_service,
            ctx,
            closing="0.00",
            lines=[
                StatementLineInput(date(2024, 3, 2), Decimal("5000.00"), "DEP-001"),
                StatementLineInput(date(2024, 3, 20), Decimal("40.00"), "INT"),
                StatementLineInput(date(2024, 3, 20), Decimal("40.00"), "INT"),
                StatementLineInput(date(2024, 3, 21), Decimal("7.00")),
                StatementLineInput(date(2024, 3, 21), Decimal("7.00")),
            ],
        )

        assert [(line.reference, line.amount) for line in again.lines] == [
            ("INT", Decimal("40.00")),
            (None, Decimal("7.00")),
            (None, Decimal("7.00")),
        ]
        imported = [r for r in captured_logs() if r["message"] == "statement_imported"]
        assert imported[-1]["duplicates_skipped"] == 2

    def test_totals_mismatch_warns(self, reconciliation_service, ctx, standard_accounts, captured_logs):
        _import(reconciliation_service, ctx, closing="3795.00")

        warnings = [r for r in captured_logs() if r["message"] == "statement_totals_mismatch"]
        assert warnings
        assert warnings[-1]["line_total"] == "3785.00"
        assert warnings[-1]["level"] == "WARNING"

    def test_unknown_account(self, reconciliation_service, ctx, standard_accounts):
        with pytest.raises(AccountNotFoundError):
            reconciliation_service.import_statement(
                ctx, "9999", PERIOD_END, PERIOD_START, PERIOD_END, "0", "0", []
            )


class TestReconcile:

    def test_full_reconciliation(self, reconciliation_service, ctx, march_books):
        statement = _import(reconciliation_service, ctx)

        report = reconciliation_service.reconcile(ctx, statement.id)

        assert len(report.matches) == 2
        assert all(m.method == "auto" for m in report.matches)
        assert report.book_closing == Decimal("4600.00")
        assert report.statement_closing == Decimal("3785.00")
        assert report.deposits_in_transit == Decimal("800.00")
        assert report.outstanding_payments == Decimal("0")
        assert report.unrecorded_bank_net == Decimal("-15.00")
        assert report.variance == Decimal("0")
        assert report.is_reconciled
        assert report.advisory is None
        assert report.adjusted_statement_balance == report.adjusted_book_balance

        [unmatched] = report.unmatched_statement_lines
        assert unmatched.reference == "FEE"
        [outstanding] = report.outstanding_book_lines
        assert outstanding.memo == "DEP-002"
        assert outstanding.side is Side.DEBIT

    def test_matched_lines_flip_status(self, reconciliation_service, session, ctx, march_books):
        statement = _import(reconciliation_service, ctx)

        reconciliation_service.reconcile(ctx, statement.id)

        statuses = {line.reference: line.status for line in statement.lines}
        assert statuses == {"DEP-001": "matched", "CHQ 1001": "matched", "FEE": "unmatched"}
        assert session.query(ReconciliationMatch).count() == 2

    def test_outstanding_payment(self, reconciliation_service, ledger, ctx, march_books):
        ledger.post_entry(
            ctx,
            [LineSpec.debit("2100", "300.00"), LineSpec.credit("1010", "300.00", memo="CHQ 1002")],
            date(2024, 3, 29),
        )
        statement = _import(reconciliation_service, ctx)

        report = reconciliation_service.reconcile(ctx, statement.id)

        assert report.book_closing == Decimal("4300.00")
        assert report.outstanding_payments == Decimal("300.00")
        assert report.variance == Decimal("0")

    def test_variance_is_advisory(self, reconciliation_service, ctx, march_books):
        statement = _import(reconciliation_service, ctx, closing="3795.00")

        report = reconciliation_service.reconcile(ctx, statement.id)

        assert report.variance == Decimal("10.00")
        assert not report.is_reconciled
        assert isinstance(report.advisory, UnreconciledVarianceError)
        assert report.advisory.variance == "10.00"

    def test_notifier_called_on_variance(
        self, session, settings, deterministic_clock, lock_manager, ctx, march_books
    ):
        notifier = RecordingNotifier()
        service = ReconciliationService(
            session,
            settings=settings.reconciliation,
            clock=deterministic_clock,
            lock_manager=lock_manager,
            notifier=notifier,
        )
        balanced = _import(service, ctx)
        service.reconcile(ctx, balanced.id)
        assert notifier.reports == []

        off = _import(service, ctx, closing="3795.00", lines=[])
        report = service.reconcile(ctx, off.id)

        assert notifier.reports == [report]

    def test_default_notifier_logs(self, reconciliation_service, ctx, march_books, captured_logs):
        statement = _import(reconciliation_service, ctx, closing="3795.00")

        reconciliation_service.reconcile(ctx, statement.id)

        alerts = [r for r in captured_logs() if r["message"] == "reconciliation_variance_alert"]
        assert alerts
        assert alerts[-1]["variance"] == "10.00"

    def test_lines_after_period_end_ignored(self, reconciliation_service, ledger, ctx, march_books):
        ledger.post_entry(
            ctx,
            [LineSpec.debit("1010", "999.00", memo="APR"), LineSpec.credit("3000", "999.00")],
            date(2024, 4, 1),
        )
        statement = _import(reconciliation_service, ctx)

        report = reconciliation_service.reconcile(ctx, statement.id)

        assert report.book_closing == Decimal("4600.00")
        assert [bl.memo for bl in report.outstanding_book_lines] == ["DEP-002"]

    def test_second_run_only_sees_unmatched(self, reconciliation_service, ctx, march_books):
        statement = _import(reconciliation_service, ctx)
        reconciliation_service.reconcile(ctx, statement.id)

        report = reconciliation_service.reconcile(ctx, statement.id)

        assert report.matches == ()
        assert len(report.unmatched_statement_lines) == 1
        assert report.variance == Decimal("0")

    def test_run_persisted(self, reconciliation_service, ctx, march_books):
        statement = _import(reconciliation_service, ctx)

        report = reconciliation_service.reconcile(ctx, statement.id)

        run = reconciliation_service.latest_run(ctx, statement.id)
        assert run.id == report.run_id
        assert run.matched_count == 2
        assert run.unmatched_statement_count == 1
        assert run.outstanding_book_count == 1
        assert run.variance == Decimal("0")
        assert run.is_reconciled is True

    def test_logs_completion(self, reconciliation_service, ctx, march_books, captured_logs):
        statement = _import(reconciliation_service, ctx)

        reconciliation_service.reconcile(ctx, statement.id)

        records = [r for r in captured_logs() if r["message"] == "reconciliation_completed"]
        assert records[-1]["matched"] == 2
        assert records[-1]["tenant_id"] == ctx.tenant_id

    def test_unknown_statement(self, reconciliation_service, ctx, standard_accounts):
        with pytest.raises(StatementNotFoundError):
            reconciliation_service.reconcile(ctx, uuid4())

    def test_other_tenant_cannot_see_statement(self, reconciliation_service, ctx, other_tenant_ctx, march_books):
        statement = _import(reconciliation_service, ctx)

        with pytest.raises(StatementNotFoundError):
            reconciliation_service.reconcile(other_tenant_ctx, statement.id)


class TestManualMatching:

    def _fee_line(self, statement):
        return next(line for line in statement.lines if line.reference == "FEE")

    def _book_fee(self, ledger, selector, ctx, standard_accounts):
        ledger.post_entry(
            ctx,
            [LineSpec.debit("5200", "15.00"), LineSpec.credit("1010", "15.00", memo="bank fee")],
            date(2024, 3, 31),
        )
        lines = selector.unreconciled_lines(ctx, standard_accounts["1010"].id)
        return next(bl for bl in lines if bl.memo == "bank fee")

    def test_manual_match_after_booking_fee(
        self, reconciliation_service, ledger, selector, ctx, standard_accounts, march_books
    ):
        statement = _import(reconciliation_service, ctx)
        reconciliation_service.reconcile(ctx, statement.id)
        book_fee = self._book_fee(ledger, selector, ctx, standard_accounts)

        record = reconciliation_service.match(ctx, self._fee_line(statement).id, book_fee.line_id)

        assert record.method == "manual"
        assert record.score is None
        report = reconciliation_service.reconcile(ctx, statement.id)
        assert report.unmatched_statement_lines == ()
        assert report.book_closing == Decimal("4585.00")
        assert report.variance == Decimal("0")

    def test_manual_match_refuses_taken_sides(
        self, reconciliation_service, ledger, selector, ctx, standard_accounts, march_books
    ):
        statement = _import(reconciliation_service, ctx)
        reconciliation_service.reconcile(ctx, statement.id)
        book_fee = self._book_fee(ledger, selector, ctx, standard_accounts)
        fee_line = self._fee_line(statement)
        reconciliation_service.match(ctx, fee_line.id, book_fee.line_id)

        assert reconciliation_service.match(ctx, fee_line.id, book_fee.line_id) is None

        extra = _import(
            reconciliation_service,
            ctx,
            closing="-15.00",
            lines=[StatementLineInput(date(2024, 3, 31), Decimal("-15.00"))],
        )
        assert reconciliation_service.match(ctx, extra.lines[0].id, book_fee.line_id) is None

    def test_manual_match_unknown_journal_line(self, reconciliation_service, ctx, march_books):
        statement = _import(reconciliation_service, ctx)

        assert reconciliation_service.match(ctx, self._fee_line(statement).id, uuid4()) is None

    def test_unmatch(self, reconciliation_service, ctx, march_books, captured_logs):
        statement = _import(reconciliation_service, ctx)
        report = reconciliation_service.reconcile(ctx, statement.id)
        line_id = report.matches[0].statement_line_id

        assert reconciliation_service.unmatch(ctx, line_id) is True
        assert reconciliation_service.unmatch(ctx, line_id) is False
        assert any(r["message"] == "statement_line_unmatched" for r in captured_logs())

        rerun = reconciliation_service.reconcile(ctx, statement.id)
        assert [m.statement_line_id for m in rerun.matches] == [line_id]

    def test_unmatch_unknown_line(self, reconciliation_service, ctx, standard_accounts):
        with pytest.raises(StatementLineNotFoundError):
            reconciliation_service.unmatch(ctx, uuid4())

    def test_manual_match_refuses_line_on_other_account(
        self, reconciliation_service, selector, ctx, standard_accounts, march_books, captured_logs
    ):
        statement = _import(reconciliation_service, ctx)
        reconciliation_service.reconcile(ctx, statement.id)
        equity_line = next(bl for bl in selector.entries_for_account(ctx, "3000") if bl.amount == Decimal("800.00"))

        assert reconciliation_service.match(ctx, self._fee_line(statement).id, equity_line.line_id) is None
        assert any(r["message"] == "match_rejected_not_a_book_item" for r in captured_logs())

        report = reconciliation_service.reconcile(ctx, statement.id)
        assert [line.reference for line in report.unmatched_statement_lines] == ["FEE"]
        assert [bl.amount for bl in report.outstanding_book_lines] == [Decimal("800.00")]
        assert report.variance == Decimal("0")

    def test_manual_match_refuses_unposted_line(
        self, reconciliation_service, ledger, session, ctx, standard_accounts, march_books
    ):
        statement = _import(reconciliation_service, ctx)
        draft_id = ledger.create_draft(
            ctx,
            [LineSpec.debit("5200", "15.00"), LineSpec.credit("1010", "15.00", memo="bank fee")],
            date(2024, 3, 31),
        )
        draft_cash_line = session.execute(
            select(JournalLine).where(
                JournalLine.journal_entry_id == draft_id,
                JournalLine.account_id == standard_accounts["1010"].id,
            )
        ).scalar_one()

        assert reconciliation_service.match(ctx, self._fee_line(statement).id, draft_cash_line.id) is None
        assert self._fee_line(statement).status == StatementLineStatus.UNMATCHED.value
