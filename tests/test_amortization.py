"""
Test suite for the amortization calculator

Totals, rounding, schedule reconciliation and term validation. Every amount
is an integer of minor units and schedules must reconcile exactly.
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_core.currency import Currency
from lending_core.errors import ValidationError, InvalidAmountError
from lending_core.amortization import (
    PaymentType, LoanLimits, calculate_quote, split_evenly, split_floor, add_months,
    total_interest_percent, interest_amount, build_schedule, to_rate
)


START = date(2024, 1, 15)


class TestLoanTotals:
    """Test interest and total derivation"""

    def test_installment_example(self):
        """10,000 at 30% + 2% per extra installment over 3 installments"""
        quote = calculate_quote(10000, Decimal('30'), Decimal('2'), PaymentType.INSTALLMENTS,
                                3, Currency.USD, START)

        assert quote.total_interest_percent == Decimal('34')
        assert quote.interest_minor == 3400
        assert quote.total_amount_minor == 13400
        assert [row.amount_due_minor for row in quote.rows] == [4467, 4467, 4466]

    def test_once_off_uses_base_rate(self):
        """Once-off loans ignore the extra rate"""
        quote = calculate_quote(50000, Decimal('20'), Decimal('5'), PaymentType.ONCE_OFF,
                                1, Currency.USD, START)

        assert quote.total_interest_percent == Decimal('20')
        assert quote.interest_minor == 10000
        assert quote.total_amount_minor == 60000
        assert len(quote.rows) == 1
        assert quote.rows[0].due_date == date(2024, 2, 15)
        assert quote.end_date == date(2024, 2, 15)

    def test_interest_rounds_half_up(self):
        """Half a minor unit of interest rounds up"""
        assert interest_amount(10010, Decimal('5')) == 501    # 500.5
        assert interest_amount(10001, Decimal('5')) == 500    # 500.05
        assert interest_amount(10000, Decimal('0')) == 0

    def test_total_interest_percent(self):
        """Extra rate is added once per installment after the first"""
        assert total_interest_percent(Decimal('10'), Decimal('3'), PaymentType.INSTALLMENTS, 1) == Decimal('10')
        assert total_interest_percent(Decimal('10'), Decimal('3'), PaymentType.INSTALLMENTS, 12) == Decimal('43')
        assert total_interest_percent(Decimal('10'), Decimal('3'), PaymentType.ONCE_OFF, 1) == Decimal('10')

    def test_payment_type_accepts_string(self):
        """Payment type may be passed by value"""
        quote = calculate_quote(10000, "30", "2", "installments", 3, Currency.USD, START)
        assert quote.payment_type == PaymentType.INSTALLMENTS

    def test_describe(self):
        quote = calculate_quote(10000, Decimal('30'), Decimal('2'), PaymentType.INSTALLMENTS,
                                3, Currency.USD, START)
        assert "USD 134.00" in quote.describe()


class TestScheduleRows:
    """Test schedule rows, due dates and component split"""

    def test_due_dates_are_monthly(self):
        """Installment n is due n months after the start date"""
        quote = calculate_quote(10000, Decimal('30'), Decimal('2'), PaymentType.INSTALLMENTS,
                                3, Currency.USD, START)

        assert [row.due_date for row in quote.rows] == [
            date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)
        ]
        assert [row.installment_no for row in quote.rows] == [1, 2, 3]
        assert quote.end_date == date(2024, 4, 15)

    def test_month_end_start_clamps(self):
        """A loan starting on the 31st falls due on each month's last day when shorter"""
        rows = build_schedule(13400, 3400, 3, date(2024, 1, 31))
        assert [row.due_date for row in rows] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)
        ]

    def test_components_sum_per_row(self):
        """Principal and interest components add up to each row and to the loan"""
        quote = calculate_quote(10000, Decimal('30'), Decimal('2'), PaymentType.INSTALLMENTS,
                                3, Currency.USD, START)

        assert [row.interest_component_minor for row in quote.rows] == [1134, 1134, 1132]
        assert [row.principal_component_minor for row in quote.rows] == [3333, 3333, 3334]
        for row in quote.rows:
            assert row.principal_component_minor + row.interest_component_minor == row.amount_due_minor
        assert sum(row.principal_component_minor for row in quote.rows) == 10000
        assert sum(row.interest_component_minor for row in quote.rows) == 3400

    @pytest.mark.parametrize("principal,base,extra,count", [
        (10000, "0", "0", 1),
        (10000, "17.5", "1.25", 7),
        (123457, "33", "4", 12),
        (999999, "100", "50", 12),
        (25000, "12", "0", 11),
    ])
    def test_schedule_reconciles_to_total(self, principal, base, extra, count):
        """Sum of amounts due equals the total exactly"""
        quote = calculate_quote(principal, base, extra, PaymentType.INSTALLMENTS,
                                count, Currency.USD, START)

        assert sum(row.amount_due_minor for row in quote.rows) == quote.total_amount_minor
        assert quote.total_amount_minor == principal + quote.interest_minor
        assert all(row.amount_due_minor > 0 for row in quote.rows)
        assert all(row.principal_component_minor >= 0 for row in quote.rows)
        # Remainder only ever lands on the last row
        assert len({row.amount_due_minor for row in quote.rows[:-1]}) <= 1

    def test_zero_decimal_currency(self):
        """Currencies without minor units use the same minor-unit floor rules"""
        quote = calculate_quote(100, Decimal('10'), Decimal('0'), PaymentType.ONCE_OFF,
                                1, Currency.UGX, START)
        assert quote.total_amount_minor == 110


class TestSplitting:
    """Test the ceil/remainder split"""

    def test_split_remainder_on_last(self):
        assert split_evenly(13400, 3) == [4467, 4467, 4466]
        assert split_evenly(10, 3) == [4, 4, 2]
        assert split_evenly(9, 3) == [3, 3, 3]

    def test_split_never_negative(self):
        """Small totals leave trailing parts at zero"""
        assert split_evenly(1, 3) == [1, 0, 0]
        assert split_evenly(0, 4) == [0, 0, 0, 0]

    def test_split_requires_a_part(self):
        with pytest.raises(ValidationError):
            split_evenly(10, 0)

    def test_split_floor(self):
        assert split_floor(109, 12) == [9] * 11 + [10]
        assert split_floor(13400, 3) == [4466, 4466, 4468]

    def test_small_total_falls_back_to_floor_split(self):
        """A ceil split that would empty the tail installments uses floor shares"""
        rows = build_schedule(110, 10, 12, START)

        assert [row.amount_due_minor for row in rows] == [9] * 11 + [11]
        assert sum(row.interest_component_minor for row in rows) == 10
        assert all(row.principal_component_minor >= 0 for row in rows)

    def test_small_zero_decimal_loan(self):
        quote = calculate_quote(109, "0", "0", PaymentType.INSTALLMENTS, 12, Currency.UGX, START)

        assert [row.amount_due_minor for row in quote.rows] == [9] * 11 + [10]
        assert sum(row.amount_due_minor for row in quote.rows) == 109

    def test_empty_installment_rejected(self):
        """A total smaller than the installment count cannot fill every installment"""
        with pytest.raises(ValidationError):
            build_schedule(11, 0, 12, START)

    def test_add_months(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)
        assert add_months(date(2024, 3, 10), 12) == date(2025, 3, 10)


class TestValidation:
    """Test rejection of out-of-range terms"""

    def _quote(self, **overrides):
        params = dict(
            principal_minor=10000,
            base_rate_percent=Decimal('30'),
            extra_rate_per_installment=Decimal('2'),
            payment_type=PaymentType.INSTALLMENTS,
            installment_count=3,
            currency=Currency.USD,
            start_date=START
        )
        params.update(overrides)
        return calculate_quote(**params)

    def test_principal_below_minimum(self):
        """Principal under 100 major units is rejected"""
        with pytest.raises(ValidationError):
            self._quote(principal_minor=9999)

    def test_custom_minimum(self):
        limits = LoanLimits(minimum_principal_major=500)
        with pytest.raises(ValidationError):
            self._quote(principal_minor=40000, limits=limits)
        assert self._quote(principal_minor=50000, limits=limits).principal_minor == 50000

    @pytest.mark.parametrize("principal", [0, -100, 10000.0, "10000", True])
    def test_principal_must_be_positive_integer(self, principal):
        with pytest.raises(InvalidAmountError):
            self._quote(principal_minor=principal)

    @pytest.mark.parametrize("rate", [Decimal('-1'), Decimal('100.01'), "abc"])
    def test_base_rate_range(self, rate):
        with pytest.raises(ValidationError):
            self._quote(base_rate_percent=rate)

    @pytest.mark.parametrize("rate", [Decimal('-0.5'), Decimal('50.5')])
    def test_extra_rate_range(self, rate):
        with pytest.raises(ValidationError):
            self._quote(extra_rate_per_installment=rate)

    def test_rate_bounds_inclusive(self):
        quote = self._quote(base_rate_percent=Decimal('100'), extra_rate_per_installment=Decimal('50'))
        assert quote.total_interest_percent == Decimal('200')

    @pytest.mark.parametrize("count", [0, 13, -1])
    def test_installment_count_range(self, count):
        with pytest.raises(ValidationError):
            self._quote(installment_count=count)

    def test_once_off_requires_single_installment(self):
        with pytest.raises(ValidationError):
            self._quote(payment_type=PaymentType.ONCE_OFF, installment_count=3)

    def test_unknown_payment_type(self):
        with pytest.raises(ValidationError):
            self._quote(payment_type="weekly")

    def test_float_rate_parsed_from_repr(self):
        assert to_rate(30.5) == Decimal('30.5')
