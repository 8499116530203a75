"""
Write-off and loan transaction reversal tests.

Verifies:
- Write-off clears receivables, forgoes unearned interest and keeps the
  principal identity intact
- Reversal undoes the schedule and balance effect exactly
- Reversal rules: once only, never a reversal, no undoing paid charges,
  no undoing a disbursement with later activity, written-off loans only
  allow reversing the write-off
- Loan transactions are append-only
- Loan journal entries cannot be reversed around the loan sub-ledger
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from corebank_kernel.domain.loan_terms import InstallmentStatus, LoanStatus, LoanTransactionType
from corebank_kernel.exceptions import (
    AlreadyReversedError,
    ImmutabilityViolationError,
    LoanNotActiveError,
    LoanTransactionNotFoundError,
    LoanTransactionNotReversibleError,
    SourceOwnedEntryError,
)

FIRST_DUE = date(2024, 2, 15)
WRITE_OFF_DATE = date(2024, 6, 1)


class TestWriteOff:

    def test_write_off_after_one_installment(self, loan_service, ledger, selector, ctx, create_loan):
        loan = create_loan()
        loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

        txn = loan_service.write_off(ctx, loan.id, WRITE_OFF_DATE, "borrower insolvent")

        assert txn.transaction_type == LoanTransactionType.WRITE_OFF.value
        assert txn.amount == Decimal("11000.00")
        assert txn.interest_component == Decimal("1320.00")
        assert loan.status == LoanStatus.WRITTEN_OFF.value
        assert loan.closed_on == WRITE_OFF_DATE
        assert loan.principal_written_off == Decimal("11000.00")
        assert loan.total_outstanding == Decimal("0")
        assert loan.principal_reconciles

        entry = ledger.get_entry(ctx, txn.journal_entry_id)
        assert [(ln.account_code, ln.side.value, ln.amount) for ln in entry.lines] == [
            ("5100", "debit", Decimal("11000.00")),
            ("1200", "credit", Decimal("11000.00")),
        ]
        assert selector.account_balance(ctx, "1200").balance == Decimal("0")

    def test_write_off_clears_charges(self, loan_service, selector, ctx, create_loan):
        loan = create_loan()
        loan_service.assess_fee(ctx, loan.id, "50.00", date(2024, 2, 1))
        loan_service.assess_penalties(ctx, loan.id, date(2024, 2, 25))

        txn = loan_service.write_off(ctx, loan.id, WRITE_OFF_DATE, "fraud")

        # 12,000 principal + 50 fee + (1,170 x 0.0005 x 10) penalty
        assert txn.amount == Decimal("12055.85")
        for code in ("1200", "1210", "1220"):
            assert selector.account_balance(ctx, code).balance == Decimal("0")
        assert selector.account_balance(ctx, "5100").balance == Decimal("12055.85")

    def test_written_off_loan_is_closed_for_business(self, loan_service, ctx, create_loan):
        loan = create_loan()
        loan_service.write_off(ctx, loan.id, WRITE_OFF_DATE, "insolvent")

        with pytest.raises(LoanNotActiveError):
            loan_service.apply_payment(ctx, loan.id, "10.00", WRITE_OFF_DATE)
        with pytest.raises(LoanNotActiveError):
            loan_service.write_off(ctx, loan.id, WRITE_OFF_DATE, "again")

    def test_not_disbursed(self, loan_service, ctx, create_loan):
        loan = create_loan(disburse=False)

        with pytest.raises(LoanNotActiveError):
            loan_service.write_off(ctx, loan.id, WRITE_OFF_DATE, "never paid out")


class TestRepaymentReversal:

    def test_undoes_schedule_and_balances(self, loan_service, ledger, selector, ctx, create_loan):
        loan = create_loan()
        payment = loan_service.apply_payment(ctx, loan.id, "1500.00", FIRST_DUE)

        reversal = loan_service.reverse_transaction(ctx, payment.id, "cheque bounced")

        assert reversal.transaction_type == LoanTransactionType.REVERSAL.value
        assert reversal.reversal_of_id == payment.id
        assert reversal.amount == Decimal("1500.00")
        assert reversal.value_date == FIRST_DUE
        assert loan.outstanding_principal == Decimal("12000.00")
        assert loan.outstanding_interest == Decimal("1440.00")
        assert loan.principal_paid == Decimal("0")
        assert all(i.total_paid == Decimal("0") for i in loan.installments)
        assert loan.installments[0].paid_on is None
        assert loan.installments[0].status == InstallmentStatus.PENDING.value

        assert ledger.get_entry(ctx, payment.journal_entry_id).status == "reversed"
        assert selector.account_balance(ctx, "1200").balance == Decimal("12000.00")
        assert selector.account_balance(ctx, "4100").balance == Decimal("0")

    def test_reopens_closed_loan(self, loan_service, ctx, create_loan):
        loan = create_loan()
        payoff = loan_service.apply_payment(ctx, loan.id, "13440.00", FIRST_DUE)

        loan_service.reverse_transaction(ctx, payoff.id, "funds recalled")

        assert loan.status == LoanStatus.ACTIVE.value
        assert loan.closed_on is None
        assert loan.total_outstanding == Decimal("13440.00")

    def test_reversal_dated_later(self, loan_service, ctx, create_loan):
        loan = create_loan()
        payment = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

        reversal = loan_service.reverse_transaction(ctx, payment.id, "bounced", value_date=date(2024, 3, 1))

        assert reversal.value_date == date(2024, 3, 1)
        assert loan.status == LoanStatus.DELINQUENT.value

    def test_reverse_twice(self, loan_service, ctx, create_loan):
        loan = create_loan()
        payment = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)
        loan_service.reverse_transaction(ctx, payment.id, "bounced")

        with pytest.raises(AlreadyReversedError):
            loan_service.reverse_transaction(ctx, payment.id, "again")

    def test_reversal_is_not_reversible(self, loan_service, ctx, create_loan):
        loan = create_loan()
        payment = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)
        reversal = loan_service.reverse_transaction(ctx, payment.id, "bounced")

        with pytest.raises(AlreadyReversedError) as exc_info:
            loan_service.reverse_transaction(ctx, reversal.id, "undo")
        assert exc_info.value.reason == "transaction is itself a reversal"

    def test_unknown_transaction(self, loan_service, ctx, standard_accounts):
        with pytest.raises(LoanTransactionNotFoundError):
            loan_service.reverse_transaction(ctx, uuid4(), "nope")

    def test_ledger_reversal_of_loan_entry_refused(self, loan_service, ledger, selector, ctx, create_loan):
        loan = create_loan()
        payment = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

        with pytest.raises(SourceOwnedEntryError) as exc_info:
            ledger.reverse_entry(ctx, payment.journal_entry_id, "direct correction")
        assert exc_info.value.source_type == "loan_transaction"
        assert selector.account_balance(ctx, "1200").balance == Decimal("11000.00")
        assert loan.outstanding_principal == Decimal("11000.00")

        loan_service.reverse_transaction(ctx, payment.id, "bounced")

        assert selector.account_balance(ctx, "1200").balance == Decimal("12000.00")
        assert loan.outstanding_principal == Decimal("12000.00")


class TestChargeReversal:

    def test_unpaid_fee(self, loan_service, selector, ctx, create_loan):
        loan = create_loan()
        fee = loan_service.assess_fee(ctx, loan.id, "30.00", date(2024, 2, 1))

        loan_service.reverse_transaction(ctx, fee.id, "waived")

        assert loan.outstanding_fees == Decimal("0")
        assert loan.installments[0].fee_due == Decimal("0")
        assert selector.account_balance(ctx, "4200").balance == Decimal("0")

    def test_paid_fee_not_reversible(self, loan_service, ctx, create_loan):
        loan = create_loan()
        fee = loan_service.assess_fee(ctx, loan.id, "50.00", date(2024, 2, 1))
        loan_service.apply_payment(ctx, loan.id, "1170.00", FIRST_DUE)

        with pytest.raises(LoanTransactionNotReversibleError):
            loan_service.reverse_transaction(ctx, fee.id, "waive")

    def test_unpaid_penalty(self, loan_service, ctx, create_loan):
        loan = create_loan()
        penalty = loan_service.assess_penalties(ctx, loan.id, date(2024, 2, 25))

        loan_service.reverse_transaction(ctx, penalty.id, "waived")

        assert loan.outstanding_penalties == Decimal("0")
        assert loan.installments[0].penalty_due == Decimal("0")


class TestDisbursementAndWriteOffReversal:

    def test_disbursement_without_activity(self, loan_service, selector, ctx, create_loan):
        loan = create_loan()
        disbursement = loan_service.transactions(ctx, loan.id)[0]

        loan_service.reverse_transaction(ctx, disbursement.id, "booked twice")

        assert loan.disbursed_on is None
        assert selector.account_balance(ctx, "1200").balance == Decimal("0")
        loan_service.disburse(ctx, loan.id, date(2024, 1, 16))

    def test_disbursement_with_later_activity(self, loan_service, ctx, create_loan):
        loan = create_loan()
        disbursement = loan_service.transactions(ctx, loan.id)[0]
        loan_service.apply_payment(ctx, loan.id, "100.00", FIRST_DUE)

        with pytest.raises(LoanTransactionNotReversibleError):
            loan_service.reverse_transaction(ctx, disbursement.id, "booked twice")

    def test_write_off_reversal_restores_balances(self, loan_service, selector, ctx, create_loan):
        loan = create_loan()
        loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)
        write_off = loan_service.write_off(ctx, loan.id, WRITE_OFF_DATE, "insolvent")

        loan_service.reverse_transaction(ctx, write_off.id, "borrower traced")

        assert loan.loan_status.is_open
        assert loan.closed_on is None
        assert loan.outstanding_principal == Decimal("11000.00")
        assert loan.outstanding_interest == Decimal("1320.00")
        assert loan.principal_written_off == Decimal("0")
        assert loan.principal_reconciles
        assert selector.account_balance(ctx, "1200").balance == Decimal("11000.00")

    def test_written_off_loan_blocks_other_reversals(self, loan_service, ctx, create_loan):
        loan = create_loan()
        payment = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)
        loan_service.write_off(ctx, loan.id, WRITE_OFF_DATE, "insolvent")

        with pytest.raises(LoanTransactionNotReversibleError):
            loan_service.reverse_transaction(ctx, payment.id, "bounced")


class TestAppendOnly:

    def test_transaction_update_blocked(self, loan_service, session, ctx, create_loan):
        loan = create_loan()
        txn = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

        txn.memo = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_transaction_delete_blocked(self, loan_service, session, ctx, create_loan):
        loan = create_loan()
        txn = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

        session.delete(txn)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
