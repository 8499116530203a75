"""
Immutability tests: posted entries, their lines and referenced accounts.
"""

from datetime import date
from decimal import Decimal

import pytest

from corebank_kernel.domain.dtos import LineSpec
from corebank_kernel.exceptions import ImmutabilityViolationError
from corebank_kernel.models.account import Account
from corebank_kernel.models.journal import JournalEntry

DAY = date(2024, 1, 31)


@pytest.fixture
def posted(ledger, session, ctx, standard_accounts):
    entry_id = ledger.post_entry(ctx, [LineSpec.debit("1010", "10.00"), LineSpec.credit("3000", "10.00")], DAY)
    return session.get(JournalEntry, entry_id)


class TestPostedEntry:

    def test_header_update_blocked(self, session, posted):
        posted.description = "edited"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "JournalEntry"

    def test_status_rollback_blocked(self, session, posted):
        posted.status = "draft"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, posted):
        session.delete(posted)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_line_update_blocked(self, session, posted):
        posted.lines[0].amount = Decimal("11.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "JournalLine"

    def test_audit_columns_stay_writable(self, session, posted, ctx):
        posted.touch(ctx.actor_id)
        session.flush()


class TestAccountStructure:

    def test_code_change_blocked_once_posted(self, session, posted, standard_accounts):
        account = session.get(Account, standard_accounts["1010"].id)
        account.code = "1011"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Account"

    def test_rename_allowed(self, session, posted, standard_accounts):
        account = session.get(Account, standard_accounts["1010"].id)
        account.name = "Operating cash"
        session.flush()

    def test_unused_account_can_change_type(self, session, standard_accounts):
        account = session.get(Account, standard_accounts["5200"].id)
        account.account_type = "asset"
        session.flush()
