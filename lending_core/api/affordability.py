"""
Affordability endpoints: debt-to-income checks before a loan is offered
"""

from fastapi import APIRouter, Depends

from .deps import get_lending_system
from .schemas import LoanTermsRequest, BorrowerAffordabilityRequest, LenderAffordabilityRequest
from ..system import LendingSystem


router = APIRouter()


def _quote(system: LendingSystem, request: LoanTermsRequest):
    return system.quote_loan(
        principal_minor=request.principal_minor,
        base_rate_percent=request.base_rate_percent,
        extra_rate_per_installment=request.extra_rate_per_installment,
        payment_type=request.payment_type,
        installment_count=request.installment_count,
        currency=request.currency
    )


@router.post("/borrower")
def assess_borrower(
    request: BorrowerAffordabilityRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower's own budget check of a loan"""
    result = system.assess_borrower_affordability(
        borrower_id=request.borrower_id,
        quote=_quote(system, request),
        monthly_income_minor=request.monthly_income_minor,
        monthly_expenses_minor=request.monthly_expenses_minor,
        additional_income_minor=request.additional_income_minor,
        savings_minor=request.savings_minor
    )
    return result.to_dict()


@router.post("/lender")
def assess_for_lender(
    request: LenderAffordabilityRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender's grade of a borrower's capacity to repay"""
    result = system.assess_lender_affordability(
        quote=_quote(system, request),
        monthly_income_minor=request.monthly_income_minor,
        monthly_expenses_minor=request.monthly_expenses_minor,
        existing_debt_minor=request.existing_debt_minor
    )
    return result.to_dict()
