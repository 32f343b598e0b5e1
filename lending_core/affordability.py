"""
Affordability Module

Debt-to-income checks run before a loan is offered. The monthly payment
is the largest installment of the loan's quote, so the check always uses
the heaviest month of the schedule.

Two views share the same arithmetic:

    borrower view  DTI = (expenses - savings + payment) / income
                   can afford when disposable >= payment * (1 + buffer)
    lender view    DTI = (existing debt + payment) / income
                   graded excellent / good / fair / poor

Money stays in integer minor units; ratios are Decimal percentages.
"""

from decimal import Decimal, ROUND_FLOOR
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum

from .amortization import LoanQuote, interest_amount
from .errors import ValidationError, InvalidAmountError


HUNDRED = Decimal('100')

# Borrower view: (DTI above, score)
BORROWER_DTI_BANDS = [
    (Decimal('50'), 30),
    (Decimal('40'), 50),
    (Decimal('30'), 70),
    (Decimal('20'), 85),
]

SUGGESTED_RATES = [
    (750, Decimal('10')),
    (700, Decimal('12')),
    (650, Decimal('15')),
    (600, Decimal('18')),
]
FALLBACK_RATE = Decimal('22')


class RecommendationStatus(Enum):
    GOOD = "good"
    WARNING = "warning"
    BAD = "bad"


class AffordabilityGrade(Enum):
    """Lender-side grade of a borrower's capacity to repay"""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @property
    def can_afford(self) -> bool:
        return self != AffordabilityGrade.POOR


GRADE_RECOMMENDATIONS = {
    AffordabilityGrade.EXCELLENT: "Excellent affordability. Borrower has strong capacity to repay.",
    AffordabilityGrade.GOOD: "Good affordability. Consider loan approval with standard terms.",
    AffordabilityGrade.FAIR: "Fair affordability. Consider reducing loan amount or requiring collateral.",
    AffordabilityGrade.POOR: "Poor affordability. High risk, consider rejection or significant loan reduction.",
}


@dataclass
class BorrowerAffordability:
    """Borrower's own check of a loan against their budget"""
    total_income_minor: int
    total_expenses_minor: int
    disposable_income_minor: int
    monthly_payment_minor: int
    total_repayment_minor: int
    current_dti_percent: Decimal
    new_dti_percent: Decimal
    affordability_score: int
    can_afford: bool
    max_affordable_payment_minor: int
    max_affordable_principal_minor: int
    status: RecommendationStatus
    suggestions: List[str] = field(default_factory=list)
    suggested_base_rate_percent: Optional[Decimal] = None

    def to_dict(self) -> Dict:
        return {
            "total_income_minor": self.total_income_minor,
            "total_expenses_minor": self.total_expenses_minor,
            "disposable_income_minor": self.disposable_income_minor,
            "monthly_payment_minor": self.monthly_payment_minor,
            "total_repayment_minor": self.total_repayment_minor,
            "current_dti_percent": str(self.current_dti_percent),
            "new_dti_percent": str(self.new_dti_percent),
            "affordability_score": self.affordability_score,
            "can_afford": self.can_afford,
            "max_affordable_payment_minor": self.max_affordable_payment_minor,
            "max_affordable_principal_minor": self.max_affordable_principal_minor,
            "status": self.status.value,
            "suggestions": list(self.suggestions),
            "suggested_base_rate_percent": (
                str(self.suggested_base_rate_percent)
                if self.suggested_base_rate_percent is not None else None
            )
        }


@dataclass
class LenderAffordability:
    """Lender's check of a borrower before offering a loan"""
    monthly_payment_minor: int
    total_monthly_debt_minor: int
    dti_percent: Decimal
    disposable_income_minor: int
    grade: AffordabilityGrade
    can_afford: bool
    max_recommended_payment_minor: int
    max_recommended_principal_minor: int
    recommendation: str

    def to_dict(self) -> Dict:
        return {
            "monthly_payment_minor": self.monthly_payment_minor,
            "total_monthly_debt_minor": self.total_monthly_debt_minor,
            "dti_percent": str(self.dti_percent),
            "disposable_income_minor": self.disposable_income_minor,
            "grade": self.grade.value,
            "can_afford": self.can_afford,
            "max_recommended_payment_minor": self.max_recommended_payment_minor,
            "max_recommended_principal_minor": self.max_recommended_principal_minor,
            "recommendation": self.recommendation
        }


def _require_amount(value, name: str, allow_zero: bool = True) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{name} must be an integer of minor units")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmountError(f"{name} must be {'non-negative' if allow_zero else 'positive'}")


def dti_percent(monthly_debt_minor: int, income_minor: int) -> Decimal:
    """Debt-to-income ratio as a percentage, two decimal places"""
    if income_minor <= 0:
        raise ValidationError("Income must be positive to compute a debt-to-income ratio")
    return (Decimal(monthly_debt_minor) * HUNDRED / Decimal(income_minor)).quantize(Decimal('0.01'))


def monthly_payment(quote: LoanQuote) -> int:
    """Heaviest installment of the quote"""
    return max(row.amount_due_minor for row in quote.rows)


def borrower_score_for_dti(new_dti: Decimal) -> int:
    """Affordability score, 0-100, for the DTI after taking the loan"""
    for threshold, score in BORROWER_DTI_BANDS:
        if new_dti > threshold:
            return score
    return 100


def grade_for(dti: Decimal, disposable_minor: int) -> AffordabilityGrade:
    if dti <= Decimal('30') and disposable_minor > 0:
        return AffordabilityGrade.EXCELLENT
    if dti <= Decimal('40') and disposable_minor > 0:
        return AffordabilityGrade.GOOD
    if dti <= Decimal('50') and disposable_minor >= 0:
        return AffordabilityGrade.FAIR
    return AffordabilityGrade.POOR


def suggested_rate_for_score(score: int) -> Decimal:
    """Base rate a borrower with this credit score can expect"""
    for minimum, rate in SUGGESTED_RATES:
        if score >= minimum:
            return rate
    return FALLBACK_RATE


def max_principal_for_payment(max_payment_minor: int, quote: LoanQuote) -> int:
    """
    Largest principal whose schedule never asks for more than
    max_payment_minor in one installment, at the quote's interest percentage
    """
    if max_payment_minor <= 0:
        return 0
    budget = max_payment_minor * quote.installment_count
    factor = HUNDRED + quote.total_interest_percent
    principal = int((Decimal(budget) * HUNDRED / factor).to_integral_value(rounding=ROUND_FLOOR))

    def total(p: int) -> int:
        return p + interest_amount(p, quote.total_interest_percent)

    # Half-up interest can move the exact bound a unit either way
    while principal > 0 and total(principal) > budget:
        principal -= 1
    while total(principal + 1) <= budget:
        principal += 1
    return principal


def _borrower_suggestions(status: RecommendationStatus) -> List[str]:
    if status == RecommendationStatus.BAD:
        return [
            "Consider a smaller loan amount",
            "Spread the loan over more installments to reduce each payment",
            "Review and reduce your monthly expenses",
        ]
    if status == RecommendationStatus.WARNING:
        return [
            "Build an emergency fund first",
            "Consider paying off existing debt",
        ]
    return [
        "Pay on or before each due date to keep your score",
        "Keep building your emergency fund",
    ]


def assess_borrower(
    quote: LoanQuote,
    monthly_income_minor: int,
    monthly_expenses_minor: int,
    additional_income_minor: int = 0,
    savings_minor: int = 0,
    buffer_percent: Decimal = Decimal('20'),
    credit_score: Optional[int] = None
) -> BorrowerAffordability:
    """
    Check a loan against a borrower's monthly budget

    Args:
        quote: Quote of the loan being considered
        monthly_income_minor: Main monthly income
        monthly_expenses_minor: All monthly outgoings, savings included
        additional_income_minor: Other monthly income
        savings_minor: Part of the expenses put into savings; not debt
        buffer_percent: Headroom required on top of the payment
        credit_score: Borrower's score, used to suggest a base rate

    Raises:
        InvalidAmountError: If an amount is negative or not an integer
        ValidationError: If there is no income or savings exceed expenses
    """
    _require_amount(monthly_income_minor, "Monthly income")
    _require_amount(monthly_expenses_minor, "Monthly expenses")
    _require_amount(additional_income_minor, "Additional income")
    _require_amount(savings_minor, "Savings")
    if savings_minor > monthly_expenses_minor:
        raise ValidationError("Savings are part of expenses and cannot exceed them")

    total_income = monthly_income_minor + additional_income_minor
    disposable = total_income - monthly_expenses_minor
    payment = monthly_payment(quote)
    debt = monthly_expenses_minor - savings_minor

    current_dti = dti_percent(debt, total_income)
    new_dti = dti_percent(debt + payment, total_income)

    multiplier = (HUNDRED + buffer_percent) / HUNDRED
    can_afford = Decimal(disposable) >= Decimal(payment) * multiplier
    max_payment = max(0, int((Decimal(disposable) / multiplier).to_integral_value(rounding=ROUND_FLOOR)))

    if not can_afford:
        status = RecommendationStatus.BAD
    elif new_dti > Decimal('40'):
        status = RecommendationStatus.WARNING
    else:
        status = RecommendationStatus.GOOD

    return BorrowerAffordability(
        total_income_minor=total_income,
        total_expenses_minor=monthly_expenses_minor,
        disposable_income_minor=disposable,
        monthly_payment_minor=payment,
        total_repayment_minor=quote.total_amount_minor,
        current_dti_percent=current_dti,
        new_dti_percent=new_dti,
        affordability_score=borrower_score_for_dti(new_dti),
        can_afford=can_afford,
        max_affordable_payment_minor=max_payment,
        max_affordable_principal_minor=max_principal_for_payment(max_payment, quote),
        status=status,
        suggestions=_borrower_suggestions(status),
        suggested_base_rate_percent=(
            suggested_rate_for_score(credit_score) if credit_score is not None else None
        )
    )


def assess_for_lender(
    quote: LoanQuote,
    monthly_income_minor: int,
    monthly_expenses_minor: int,
    existing_debt_minor: int = 0,
    target_dti_percent: Decimal = Decimal('35')
) -> LenderAffordability:
    """
    Grade a borrower's capacity to carry a loan

    Args:
        quote: Quote of the loan being offered
        monthly_income_minor: Borrower's monthly income
        monthly_expenses_minor: Living expenses, debt payments excluded
        existing_debt_minor: Monthly payments on other debt
        target_dti_percent: DTI the recommended maximum payment aims for

    Raises:
        InvalidAmountError: If an amount is negative or not an integer
        ValidationError: If there is no income
    """
    _require_amount(monthly_income_minor, "Monthly income", allow_zero=False)
    _require_amount(monthly_expenses_minor, "Monthly expenses")
    _require_amount(existing_debt_minor, "Existing debt")

    payment = monthly_payment(quote)
    total_debt = existing_debt_minor + payment
    dti = dti_percent(total_debt, monthly_income_minor)
    disposable = monthly_income_minor - monthly_expenses_minor - total_debt
    grade = grade_for(dti, disposable)

    target = Decimal(monthly_income_minor) * target_dti_percent / HUNDRED
    max_payment = max(0, int(target.to_integral_value(rounding=ROUND_FLOOR)) - existing_debt_minor)

    return LenderAffordability(
        monthly_payment_minor=payment,
        total_monthly_debt_minor=total_debt,
        dti_percent=dti,
        disposable_income_minor=disposable,
        grade=grade,
        can_afford=grade.can_afford,
        max_recommended_payment_minor=max_payment,
        max_recommended_principal_minor=max_principal_for_payment(max_payment, quote),
        recommendation=GRADE_RECOMMENDATIONS[grade]
    )
