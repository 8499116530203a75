"""
Repayment tests through LoanAccountingService.apply_payment.

Reference loan (conftest ``create_loan`` defaults): 12,000.00 at 12% flat
over 12 months from 2024-01-15.  Each installment is 1,000.00 principal +
120.00 interest, due on the 15th from 2024-02-15.
"""

from datetime import date
from decimal import Decimal

import pytest

from corebank_kernel.domain.loan_terms import InstallmentStatus, LoanStatus, LoanTransactionType
from corebank_kernel.exceptions import InvalidPaymentError, LoanNotActiveError, OverpaymentError

FIRST_DUE = date(2024, 2, 15)


class TestWaterfall:

    def test_scheduled_installment(self, loan_service, ledger, ctx, create_loan):
        loan = create_loan()

        txn = loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

        assert txn.transaction_type == LoanTransactionType.REPAYMENT.value
        assert (txn.interest_component, txn.principal_component) == (Decimal("120.00"), Decimal("1000.00"))
        assert txn.prepayment_component == Decimal("0")
        assert loan.outstanding_principal == Decimal("11000.00")
        assert loan.outstanding_interest == Decimal("1320.00")
        assert loan.installments[0].status == InstallmentStatus.PAID.value
        assert loan.installments[0].paid_on == FIRST_DUE
        assert loan.installments[1].status == InstallmentStatus.PENDING.value

        entry = ledger.get_entry(ctx, txn.journal_entry_id)
        assert [(ln.account_code, ln.side.value, ln.amount) for ln in entry.lines] == [
            ("1010", "debit", Decimal("1120.00")),
            ("4100", "credit", Decimal("120.00")),
            ("1200", "credit", Decimal("1000.00")),
        ]

    def test_fee_then_interest_then_principal(self, loan_service, ctx, create_loan):
        loan = create_loan(principal="120000.00")
        loan_service.assess_fee(ctx, loan.id, "500.00", date(2024, 2, 1))

        txn = loan_service.apply_payment(ctx, loan.id, "5000.00", FIRST_DUE)

        assert txn.fee_component == Decimal("500.00")
        assert txn.interest_component == Decimal("1200.00")
        assert txn.principal_component == Decimal("3300.00")
        assert loan.installments[0].status == InstallmentStatus.PARTIALLY_PAID.value

    def test_penalty_settled_first(self, loan_service, selector, ctx, create_loan):
        loan = create_loan()
        loan_service.assess_penalties(ctx, loan.id, date(2024, 2, 25))
        assert loan.outstanding_penalties == Decimal("5.60")

        txn = loan_service.apply_payment(ctx, loan.id, "1125.60", date(2024, 2, 25))

        assert txn.penalty_component == Decimal("5.60")
        assert txn.principal_component == Decimal("1000.00")
        assert loan.outstanding_penalties == Decimal("0")
        assert loan.status == LoanStatus.ACTIVE.value
        assert selector.account_balance(ctx, "1220").balance == Decimal("0")
        assert selector.account_balance(ctx, "4300").balance == Decimal("5.60")

    def test_allocation_is_stored(self, loan_service, ctx, create_loan):
        loan = create_loan()

        txn = loan_service.apply_payment(ctx, loan.id, "1500.00", FIRST_DUE)

        assert [line["installment_number"] for line in txn.allocation] == [1, 2]
        assert txn.allocation[1]["is_prepayment"] is True
        assert txn.prepayment_component == Decimal("380.00")


class TestLimits:

    def test_more_than_outstanding(self, loan_service, ctx, create_loan):
        loan = create_loan()

        with pytest.raises(OverpaymentError) as exc_info:
            loan_service.apply_payment(ctx, loan.id, "13440.01", FIRST_DUE)
        assert exc_info.value.allowed == "13440.00"

    def test_prepayment_disallowed(self, loan_service, ctx, create_loan):
        loan = create_loan(allow_prepayment=False)

        with pytest.raises(OverpaymentError) as exc_info:
            loan_service.apply_payment(ctx, loan.id, "1120.01", FIRST_DUE)
        assert exc_info.value.allowed == "1120.00"

        loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

    def test_nothing_due_and_prepayment_disallowed(self, loan_service, ctx, create_loan):
        loan = create_loan(allow_prepayment=False)

        with pytest.raises(OverpaymentError):
            loan_service.apply_payment(ctx, loan.id, "1.00", date(2024, 2, 1))

    def test_currency_mismatch(self, loan_service, ctx, create_loan):
        loan = create_loan()

        with pytest.raises(InvalidPaymentError):
            loan_service.apply_payment(ctx, loan.id, "100.00", FIRST_DUE, currency="EUR")

    def test_matching_currency_accepted(self, loan_service, ctx, create_loan):
        loan = create_loan()
        loan_service.apply_payment(ctx, loan.id, "100.00", FIRST_DUE, currency="usd")


class TestClosure:

    def test_full_payoff_closes(self, loan_service, ctx, create_loan):
        loan = create_loan()

        loan_service.apply_payment(ctx, loan.id, "13440.00", FIRST_DUE)

        assert loan.status == LoanStatus.CLOSED.value
        assert loan.closed_on == FIRST_DUE
        assert loan.total_outstanding == Decimal("0")
        assert loan.principal_paid == Decimal("12000.00")
        assert all(i.status == InstallmentStatus.PAID.value for i in loan.installments)

    def test_closed_loan_rejects_payments(self, loan_service, ctx, create_loan):
        loan = create_loan()
        loan_service.apply_payment(ctx, loan.id, "13440.00", FIRST_DUE)

        with pytest.raises(LoanNotActiveError) as exc_info:
            loan_service.apply_payment(ctx, loan.id, "1.00", FIRST_DUE)
        assert exc_info.value.status == "closed"

    def test_portfolio_matches_outstanding_principal(self, loan_service, selector, ctx, create_loan):
        loan = create_loan()
        for n, amount in enumerate(["1120.00", "700.00", "1540.00"]):
            loan_service.apply_payment(ctx, loan.id, amount, date(2024, 2 + n, 15))

        assert selector.account_balance(ctx, "1200").balance == loan.outstanding_principal
        assert selector.account_balance(ctx, "4100").balance == loan.interest_paid
        assert loan.principal_reconciles


class TestPaymentLogging:

    def test_logs_split(self, loan_service, ctx, create_loan, captured_logs):
        loan = create_loan()
        loan_service.apply_payment(ctx, loan.id, "1120.00", FIRST_DUE)

        record = [r for r in captured_logs() if r["message"] == "payment_applied"][-1]
        assert record["loan_id"] == str(loan.id)
        assert record["interest"] == "120.00"
        assert record["principal"] == "1000.00"
