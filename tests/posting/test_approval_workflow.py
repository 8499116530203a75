"""
Approval workflow tests: DRAFT -> PENDING -> APPROVED -> POSTED.

Verifies:
- Happy path records the acting identity at each step
- Rejection returns the entry to DRAFT with a reason
- No step skips APPROVED
- Drafts do not count towards balances
- Posting re-checks account state
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from corebank_kernel.domain.context import OperationContext
from corebank_kernel.domain.dtos import LineSpec
from corebank_kernel.exceptions import (
    EntryNotFoundError,
    ImbalancedEntryError,
    InactiveAccountError,
    InvalidStatusTransitionError,
)
from corebank_kernel.models.journal import JournalEntry

DAY = date(2024, 2, 1)
LINES = [LineSpec.debit("5200", "25.00"), LineSpec.credit("1010", "25.00")]


@pytest.fixture
def approver(ctx):
    return OperationContext(tenant_id=ctx.tenant_id, actor_id=uuid4())


class TestHappyPath:

    def test_draft_to_posted(self, ledger, selector, session, ctx, approver, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY, description="Bank charges")
        assert ledger.get_entry(ctx, entry_id).status == "draft"
        assert ledger.get_entry(ctx, entry_id).entry_number is None

        ledger.submit(ctx, entry_id)
        assert ledger.get_entry(ctx, entry_id).status == "pending"

        ledger.approve(approver, entry_id)
        assert ledger.get_entry(ctx, entry_id).status == "approved"

        ledger.post(approver, entry_id)
        entry = ledger.get_entry(ctx, entry_id)
        assert entry.status == "posted"
        assert entry.entry_number == 1

        row = session.get(JournalEntry, entry_id)
        assert row.submitted_by == ctx.actor_id
        assert row.approved_by == approver.actor_id
        assert row.posted_by == approver.actor_id

        assert selector.account_balance(ctx, "5200").balance == Decimal("25.00")

    def test_drafts_do_not_move_balances(self, ledger, selector, ctx, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY)
        ledger.submit(ctx, entry_id)

        assert selector.account_balance(ctx, "5200").balance == Decimal("0")
        assert selector.trial_balance(ctx).rows == ()

    def test_logs_each_step(self, ledger, ctx, approver, standard_accounts, captured_logs):
        entry_id = ledger.create_draft(ctx, LINES, DAY)
        ledger.submit(ctx, entry_id)
        ledger.approve(approver, entry_id)
        ledger.post(approver, entry_id)

        events = [r["message"] for r in captured_logs()]
        for name in ("entry_drafted", "entry_submitted", "entry_approved", "entry_posted"):
            assert name in events


class TestRejection:

    def test_reject_returns_to_draft(self, ledger, session, ctx, approver, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY)
        ledger.submit(ctx, entry_id)

        ledger.reject(approver, entry_id, "wrong cost centre")

        row = session.get(JournalEntry, entry_id)
        assert row.status == "draft"
        assert row.rejection_reason == "wrong cost centre"

    def test_resubmit_clears_reason(self, ledger, session, ctx, approver, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY)
        ledger.submit(ctx, entry_id)
        ledger.reject(approver, entry_id, "missing receipt")

        ledger.submit(ctx, entry_id)

        row = session.get(JournalEntry, entry_id)
        assert row.status == "pending"
        assert row.rejection_reason is None


class TestIllegalTransitions:

    def test_draft_cannot_be_approved(self, ledger, ctx, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            ledger.approve(ctx, entry_id)
        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "approved"

    def test_pending_cannot_be_posted(self, ledger, ctx, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY)
        ledger.submit(ctx, entry_id)

        with pytest.raises(InvalidStatusTransitionError):
            ledger.post(ctx, entry_id)

    def test_approved_cannot_be_rejected(self, ledger, ctx, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY)
        ledger.submit(ctx, entry_id)
        ledger.approve(ctx, entry_id)

        with pytest.raises(InvalidStatusTransitionError):
            ledger.reject(ctx, entry_id, "too late")

    def test_posted_cannot_be_resubmitted(self, ledger, ctx, standard_accounts):
        entry_id = ledger.post_entry(ctx, LINES, DAY)

        with pytest.raises(InvalidStatusTransitionError):
            ledger.submit(ctx, entry_id)

    def test_unknown_entry(self, ledger, ctx, standard_accounts):
        with pytest.raises(EntryNotFoundError):
            ledger.submit(ctx, uuid4())


class TestDraftValidation:

    def test_imbalanced_draft_rejected(self, ledger, ctx, standard_accounts):
        with pytest.raises(ImbalancedEntryError):
            ledger.create_draft(ctx, [LineSpec.debit("5200", "1.00"), LineSpec.credit("1010", "2.00")], DAY)

    def test_post_rechecks_active_accounts(self, ledger, ctx, standard_accounts):
        entry_id = ledger.create_draft(ctx, LINES, DAY)
        ledger.submit(ctx, entry_id)
        ledger.approve(ctx, entry_id)
        ledger.deactivate_account(ctx, "5200")

        with pytest.raises(InactiveAccountError):
            ledger.post(ctx, entry_id)
