"""
Tests for affordability checks

Debt-to-income ratios, the borrower's budget check and the lender's grade,
all against the heaviest installment of a loan quote.
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_core.config import LendingConfig
from lending_core.storage import InMemoryStorage
from lending_core.system import LendingSystem
from lending_core.currency import Currency
from lending_core.amortization import PaymentType, calculate_quote
from lending_core.affordability import (
    AffordabilityGrade, RecommendationStatus, assess_borrower, assess_for_lender,
    borrower_score_for_dti, dti_percent, grade_for, max_principal_for_payment,
    monthly_payment, suggested_rate_for_score
)
from lending_core.errors import ValidationError, InvalidAmountError


START = date(2024, 1, 15)


@pytest.fixture
def quote():
    return calculate_quote(10000, "30", "2", PaymentType.INSTALLMENTS, 3, Currency.USD, START)


class TestRatios:
    """Test the shared arithmetic"""

    def test_monthly_payment_is_heaviest_installment(self, quote):
        assert monthly_payment(quote) == 4467

    def test_dti_percent(self):
        assert dti_percent(18000, 50000) == Decimal('36.00')
        assert dti_percent(22467, 50000) == Decimal('44.93')

    def test_dti_requires_income(self):
        with pytest.raises(ValidationError):
            dti_percent(100, 0)

    @pytest.mark.parametrize("dti,score", [
        (Decimal('50.01'), 30),
        (Decimal('50'), 50),
        (Decimal('40'), 70),
        (Decimal('30'), 85),
        (Decimal('20.01'), 85),
        (Decimal('20'), 100),
        (Decimal('0'), 100),
    ])
    def test_borrower_score_bands(self, dti, score):
        assert borrower_score_for_dti(dti) == score

    @pytest.mark.parametrize("dti,disposable,grade", [
        (Decimal('30'), 1, AffordabilityGrade.EXCELLENT),
        (Decimal('30'), 0, AffordabilityGrade.FAIR),
        (Decimal('40'), 10, AffordabilityGrade.GOOD),
        (Decimal('50'), 0, AffordabilityGrade.FAIR),
        (Decimal('50.01'), 100, AffordabilityGrade.POOR),
        (Decimal('20'), -1, AffordabilityGrade.POOR),
    ])
    def test_lender_grades(self, dti, disposable, grade):
        assert grade_for(dti, disposable) == grade

    @pytest.mark.parametrize("score,rate", [
        (800, Decimal('10')),
        (750, Decimal('10')),
        (700, Decimal('12')),
        (650, Decimal('15')),
        (600, Decimal('18')),
        (599, Decimal('22')),
    ])
    def test_suggested_rate(self, score, rate):
        assert suggested_rate_for_score(score) == rate

    def test_max_principal_fits_budget(self, quote):
        # 34% add-on over 3 installments, at most 25000 per installment
        assert max_principal_for_payment(25000, quote) == 55970
        assert max_principal_for_payment(0, quote) == 0

    def test_max_principal_uses_half_up_interest(self, quote):
        """3730 * 1.34 = 4998.2 but interest rounds to 1268, so it still fits"""
        assert max_principal_for_payment(1666, quote) == 3730


class TestBorrowerAssessment:
    """Test the borrower's budget check"""

    def test_affordable_but_heavy(self, quote):
        result = assess_borrower(quote, 50000, 20000, savings_minor=2000, credit_score=650)

        assert result.total_income_minor == 50000
        assert result.disposable_income_minor == 30000
        assert result.monthly_payment_minor == 4467
        assert result.total_repayment_minor == 13400
        assert result.current_dti_percent == Decimal('36.00')
        assert result.new_dti_percent == Decimal('44.93')
        assert result.affordability_score == 50
        assert result.can_afford
        assert result.status == RecommendationStatus.WARNING
        assert result.max_affordable_payment_minor == 25000
        assert result.max_affordable_principal_minor == 55970
        assert result.suggested_base_rate_percent == Decimal('15')

    def test_cannot_afford(self, quote):
        result = assess_borrower(quote, 10000, 8000)

        assert not result.can_afford
        assert result.status == RecommendationStatus.BAD
        assert result.affordability_score == 30
        assert result.max_affordable_payment_minor == 1666
        assert result.max_affordable_principal_minor == 3730
        assert result.suggestions
        assert result.suggested_base_rate_percent is None

    def test_comfortable(self, quote):
        result = assess_borrower(quote, 40000, 5000, additional_income_minor=10000)

        assert result.total_income_minor == 50000
        assert result.new_dti_percent == Decimal('18.93')
        assert result.affordability_score == 100
        assert result.status == RecommendationStatus.GOOD

    def test_buffer_is_configurable(self, quote):
        # 5000 disposable covers 4467 with a 10% buffer but not with 20%
        assert not assess_borrower(quote, 10000, 5000).can_afford
        assert assess_borrower(quote, 10000, 5000, buffer_percent=Decimal('10')).can_afford

    def test_savings_cannot_exceed_expenses(self, quote):
        with pytest.raises(ValidationError):
            assess_borrower(quote, 10000, 1000, savings_minor=2000)

    def test_no_income(self, quote):
        with pytest.raises(ValidationError):
            assess_borrower(quote, 0, 0)

    @pytest.mark.parametrize("income", [-1, 100.5, "100", True])
    def test_amounts_are_minor_unit_integers(self, quote, income):
        with pytest.raises(InvalidAmountError):
            assess_borrower(quote, income, 0)


class TestLenderAssessment:
    """Test the lender's grade"""

    def test_excellent(self, quote):
        result = assess_for_lender(quote, 50000, 15000, existing_debt_minor=5000)

        assert result.total_monthly_debt_minor == 9467
        assert result.dti_percent == Decimal('18.93')
        assert result.disposable_income_minor == 25533
        assert result.grade == AffordabilityGrade.EXCELLENT
        assert result.can_afford
        assert result.max_recommended_payment_minor == 12500
        assert result.max_recommended_principal_minor == 27985
        assert result.recommendation.startswith("Excellent")

    def test_poor_when_overextended(self, quote):
        result = assess_for_lender(quote, 10000, 4000, existing_debt_minor=3000)

        assert result.dti_percent == Decimal('74.67')
        assert result.grade == AffordabilityGrade.POOR
        assert not result.can_afford
        assert result.max_recommended_payment_minor == 500
        assert result.max_recommended_principal_minor == 1119

    def test_debt_above_target_recommends_nothing(self, quote):
        result = assess_for_lender(quote, 10000, 0, existing_debt_minor=4000)
        assert result.max_recommended_payment_minor == 0
        assert result.max_recommended_principal_minor == 0

    def test_income_required(self, quote):
        with pytest.raises(InvalidAmountError):
            assess_for_lender(quote, 0, 0)


class TestSystemAffordability:
    """Test affordability through the lending system"""

    def setup_method(self):
        self.system = LendingSystem(settings=LendingConfig(storage_backend="memory"),
                                    storage=InMemoryStorage())

    def teardown_method(self):
        self.system.close()

    def test_quote_loan_creates_nothing(self):
        quote = self.system.quote_loan(10000, "30", "2", "installments", 3, "USD", START)

        assert quote.total_amount_minor == 13400
        assert self.system.loan_manager.get_borrower_loans("borrower-1") == []

    def test_quote_rejects_unknown_currency(self):
        with pytest.raises(ValidationError):
            self.system.quote_loan(10000, "30", "2", "installments", 3, "XYZ", START)

    def test_borrower_rate_follows_score(self):
        quote = self.system.quote_loan(10000, "30", "2", "installments", 3, "USD", START)
        result = self.system.assess_borrower_affordability("newcomer", quote, 50000, 20000)

        # No history scores 650
        assert result.suggested_base_rate_percent == Decimal('15')

    def test_lender_target_from_settings(self):
        system = LendingSystem(
            settings=LendingConfig(storage_backend="memory", affordability_target_dti_percent="40"),
            storage=InMemoryStorage()
        )
        quote = system.quote_loan(10000, "30", "2", "installments", 3, "USD", START)
        result = system.assess_lender_affordability(quote, 50000, 15000, existing_debt_minor=5000)

        assert result.max_recommended_payment_minor == 15000
        system.close()
