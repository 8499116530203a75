"""
Tests for the Amortization Engine.

Covers:
- Flat schedules (including the 120,000 @ 12% reference loan)
- Reducing-balance schedules
- Zero-rate schedules
- Due-date arithmetic
- Rounding and remainder absorption
- Parameter validation
- Property tests: totals always reconcile exactly
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from corebank_engines.amortization import (
    add_months,
    generate_schedule,
    level_payment,
    spread_evenly,
)
from corebank_kernel.domain.loan_terms import InterestMethod
from corebank_kernel.exceptions import ScheduleGenerationError


class TestFlatSchedule:
    """Flat interest: interest on the original principal for the whole tenor."""

    def test_reference_loan_120k(self):
        """120,000 at 12% flat over 12 months: 12 x 11,200.00 = 134,400.00."""
        schedule = generate_schedule("120000.00", "0.12", 12, InterestMethod.FLAT, date(2024, 1, 15))

        assert len(schedule.installments) == 12
        assert schedule.total_interest == Decimal("14400.00")
        assert schedule.total_payable == Decimal("134400.00")
        for inst in schedule.installments:
            assert inst.principal == Decimal("10000.00")
            assert inst.interest == Decimal("1200.00")
            assert inst.total == Decimal("11200.00")
        assert sum(i.total for i in schedule.installments) == Decimal("134400.00")

    def test_remainder_goes_to_final_installment(self):
        schedule = generate_schedule("1000.00", "0.10", 3, "flat", date(2024, 1, 1))

        # total interest = 1000 x 0.10 x 3/12 = 25.00
        assert schedule.total_interest == Decimal("25.00")
        assert [i.principal for i in schedule.installments] == [
            Decimal("333.33"),
            Decimal("333.33"),
            Decimal("333.34"),
        ]
        assert [i.interest for i in schedule.installments] == [
            Decimal("8.33"),
            Decimal("8.33"),
            Decimal("8.34"),
        ]

    def test_balances_run_down_to_zero(self):
        schedule = generate_schedule("5000.00", "0.08", 6, "flat", date(2024, 3, 1))

        assert schedule.installments[0].opening_balance == Decimal("5000.00")
        assert schedule.installments[-1].closing_balance == Decimal("0.00")
        for prev, nxt in zip(schedule.installments, schedule.installments[1:]):
            assert prev.closing_balance == nxt.opening_balance


class TestReducingBalanceSchedule:
    """Level payment, interest on the declining balance."""

    def test_first_installment(self):
        """10,000 at 12%: r = 1%, PMT = 888.49, first interest 100.00."""
        schedule = generate_schedule("10000.00", "0.12", 12, InterestMethod.REDUCING_BALANCE, date(2024, 1, 1))

        first = schedule.installments[0]
        assert first.interest == Decimal("100.00")
        assert first.principal == Decimal("788.49")
        assert first.total == Decimal("888.49")

    def test_level_payment_until_final(self):
        schedule = generate_schedule("10000.00", "0.12", 12, "reducing_balance", date(2024, 1, 1))

        totals = {i.total for i in schedule.installments[:-1]}
        assert totals == {Decimal("888.49")}
        assert abs(schedule.installments[-1].total - Decimal("888.49")) < Decimal("0.10")

    def test_interest_declines(self):
        schedule = generate_schedule("10000.00", "0.12", 12, "reducing_balance", date(2024, 1, 1))

        interest = [i.interest for i in schedule.installments]
        assert interest == sorted(interest, reverse=True)

    def test_total_interest_close_to_annuity_formula(self):
        schedule = generate_schedule("10000.00", "0.12", 12, "reducing_balance", date(2024, 1, 1))

        payment = level_payment(Decimal("10000.00"), Decimal("0.01"), 12)
        expected = (payment * 12 - Decimal("10000.00")).quantize(Decimal("0.01"))
        assert abs(schedule.total_interest - expected) <= Decimal("0.12")

    def test_single_installment(self):
        schedule = generate_schedule("1000.00", "0.12", 1, "reducing_balance", date(2024, 1, 1))

        assert len(schedule.installments) == 1
        assert schedule.installments[0].principal == Decimal("1000.00")
        assert schedule.installments[0].interest == Decimal("10.00")


class TestZeroRate:

    @pytest.mark.parametrize("method", list(InterestMethod))
    def test_zero_rate_has_no_interest(self, method):
        schedule = generate_schedule("1000.00", "0", 3, method, date(2024, 1, 1))

        assert schedule.total_interest == Decimal("0")
        assert all(i.interest == Decimal("0") for i in schedule.installments)
        assert schedule.total_principal == Decimal("1000.00")


class TestDueDates:

    def test_monthly_due_dates(self):
        schedule = generate_schedule("1200.00", "0.12", 3, "flat", date(2024, 1, 15))

        assert [i.due_date for i in schedule.installments] == [
            date(2024, 2, 15),
            date(2024, 3, 15),
            date(2024, 4, 15),
        ]

    def test_month_end_is_clamped(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 1, 31), 2) == date(2024, 3, 31)
        assert add_months(date(2024, 1, 31), 3) == date(2024, 4, 30)

    def test_year_rollover(self):
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
        assert add_months(date(2024, 12, 1), 12) == date(2025, 12, 1)


class TestSpreadEvenly:

    def test_exact_split(self):
        assert spread_evenly(Decimal("90.00"), 3) == [Decimal("30.00")] * 3

    def test_small_total_over_many_parts_never_negative(self):
        """Rounding every part up would overshoot; the split falls back to cumulative rounding."""
        parts = spread_evenly(Decimal("0.05"), 10)

        assert sum(parts) == Decimal("0.05")
        assert all(p >= Decimal("0") for p in parts)


class TestValidation:

    @pytest.mark.parametrize(
        "principal, rate, tenor",
        [
            ("0", "0.12", 12),
            ("-100.00", "0.12", 12),
            ("100.001", "0.12", 12),
            ("1000.00", "-0.01", 12),
            ("1000.00", "1.5", 12),
            ("1000.00", "0.12", 0),
            ("1000.00", "0.12", 361),
            ("1000.00", "0.12", "12"),
            ("0.05", "0.12", 12),
        ],
    )
    def test_invalid_parameters(self, principal, rate, tenor):
        with pytest.raises(ScheduleGenerationError) as exc_info:
            generate_schedule(principal, rate, tenor, "flat", date(2024, 1, 1))
        assert exc_info.value.code == "SCHEDULE_GENERATION_ERROR"

    def test_custom_max_tenor(self):
        with pytest.raises(ScheduleGenerationError):
            generate_schedule("1000.00", "0.12", 61, "flat", date(2024, 1, 1), max_tenor_months=60)

    def test_unknown_method(self):
        with pytest.raises(ScheduleGenerationError):
            generate_schedule("1000.00", "0.12", 12, "balloon", date(2024, 1, 1))

    def test_float_principal_rejected(self):
        with pytest.raises(ScheduleGenerationError):
            generate_schedule(1000.0, "0.12", 12, "flat", date(2024, 1, 1))

    def test_rate_of_one_is_allowed(self):
        schedule = generate_schedule("1200.00", "1", 12, "flat", date(2024, 1, 1))
        assert schedule.total_interest == Decimal("1200.00")


class TestTracing:

    def test_emits_engine_trace(self, captured_logs):
        generate_schedule("1200.00", "0.12", 12, "flat", date(2024, 1, 1))

        traces = [r for r in captured_logs() if r["message"] == "COREBANK_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "amortization"
        assert len(traces[-1]["input_fingerprint"]) == 16


# ---------------------------------------------------------------------------
# Property tests
# ---------------------------------------------------------------------------

@st.composite
def loan_terms(draw):
    tenor = draw(st.integers(min_value=1, max_value=360))
    cents = draw(st.integers(min_value=tenor, max_value=10_000_000_00))
    rate_bp = draw(st.integers(min_value=0, max_value=10_000))
    method = draw(st.sampled_from(list(InterestMethod)))
    return Decimal(cents) / 100, Decimal(rate_bp) / 10_000, tenor, method


class TestScheduleProperties:

    @given(terms=loan_terms())
    @settings(max_examples=200, deadline=None)
    def test_totals_reconcile_exactly(self, terms):
        principal, rate, tenor, method = terms
        schedule = generate_schedule(principal, rate, tenor, method, date(2024, 1, 31))

        assert len(schedule.installments) == tenor
        assert schedule.total_principal == principal
        assert schedule.installment_interest_total == schedule.total_interest
        assert schedule.installments[-1].closing_balance == 0

    @given(terms=loan_terms())
    @settings(max_examples=200, deadline=None)
    def test_components_are_non_negative_cents(self, terms):
        principal, rate, tenor, method = terms
        schedule = generate_schedule(principal, rate, tenor, method, date(2024, 1, 31))

        for inst in schedule.installments:
            assert inst.principal >= 0
            assert inst.interest >= 0
            assert inst.principal == inst.principal.quantize(Decimal("0.01"))
            assert inst.interest == inst.interest.quantize(Decimal("0.01"))

    @given(terms=loan_terms())
    @settings(max_examples=50, deadline=None)
    def test_due_dates_strictly_increase(self, terms):
        principal, rate, tenor, method = terms
        schedule = generate_schedule(principal, rate, tenor, method, date(2024, 1, 31))

        dates = [i.due_date for i in schedule.installments]
        assert all(a < b for a, b in zip(dates, dates[1:]))
