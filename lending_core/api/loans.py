"""
Loan endpoints: creation, offer acceptance, disbursement and write-off
"""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from datetime import date

from .deps import get_lending_system
from .schemas import (
    CreateLoanRequest, AcceptOfferRequest, DeclineOfferRequest, WriteOffRequest,
    DisbursementProofRequest, ConfirmDisbursementRequest, DisputeDisbursementRequest,
    loan_response, installment_response
)
from ..system import LendingSystem
from ..storage import utc_now


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_loan(
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a loan; active immediately unless the borrower must accept"""
    loan = system.create_loan(
        borrower_id=request.borrower_id,
        lender_id=request.lender_id,
        principal_minor=request.principal_minor,
        base_rate_percent=request.base_rate_percent,
        extra_rate_per_installment=request.extra_rate_per_installment,
        payment_type=request.payment_type,
        installment_count=request.installment_count,
        currency=request.currency,
        requires_borrower_acceptance=request.requires_borrower_acceptance,
        purpose=request.purpose,
        start_date=request.start_date,
        created_by=request.created_by
    )
    schedule = system.get_schedule(loan.id)
    today = utc_now().date()

    return {
        "loan_id": loan.id,
        "status": loan.status.value,
        "total_interest_percent": str(loan.total_interest_percent),
        "interest_minor": loan.interest_minor,
        "total_amount_minor": loan.total_amount_minor,
        "schedule": [installment_response(i, today, system.schedule_store) for i in schedule]
    }


@router.get("/{loan_id}")
def get_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details with its outstanding balance"""
    loan = system.get_loan(loan_id)
    result = loan_response(loan)
    result["balance_minor"] = system.get_balance(loan_id)
    return result


@router.get("/{loan_id}/schedule")
def get_loan_schedule(
    loan_id: str,
    as_of: Optional[date] = Query(None, description="Date used to derive overdue status"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the repayment schedule"""
    as_of = as_of or utc_now().date()
    schedule = system.get_schedule(loan_id)
    return {
        "loan_id": loan_id,
        "installments": [installment_response(i, as_of, system.schedule_store) for i in schedule]
    }


@router.get("/{loan_id}/payments")
def get_loan_payments(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the payment event ledger of a loan"""
    events = system.get_payment_events(loan_id)
    return {
        "loan_id": loan_id,
        "events": [event.to_dict() for event in events]
    }


@router.post("/{loan_id}/accept")
def accept_offer(
    loan_id: str,
    request: Optional[AcceptOfferRequest] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower accepts the loan offer"""
    request = request or AcceptOfferRequest()
    loan = system.accept_offer(loan_id, request.accepted_on, request.accepted_by)
    return loan_response(loan)


@router.post("/{loan_id}/decline")
def decline_offer(
    loan_id: str,
    request: Optional[DeclineOfferRequest] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower declines the loan offer"""
    request = request or DeclineOfferRequest()
    loan = system.decline_offer(loan_id, request.reason, request.declined_by)
    return loan_response(loan)


@router.post("/{loan_id}/write-off")
def write_off_loan(
    loan_id: str,
    request: WriteOffRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Write off a loan as uncollectible"""
    loan = system.write_off_loan(loan_id, request.reason, request.written_off_by)
    return loan_response(loan)


@router.post("/{loan_id}/disbursement", status_code=status.HTTP_201_CREATED)
def submit_disbursement_proof(
    loan_id: str,
    request: DisbursementProofRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender submits proof that funds were sent"""
    proof = system.submit_disbursement_proof(
        loan_id, request.amount_minor, request.method,
        request.reference, request.proof_url, request.submitted_by
    )
    return proof.to_dict()


@router.post("/{loan_id}/disbursement/confirm")
def confirm_disbursement(
    loan_id: str,
    request: Optional[ConfirmDisbursementRequest] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower confirms receipt of funds"""
    request = request or ConfirmDisbursementRequest()
    loan = system.confirm_disbursement(loan_id, request.notes, request.confirmed_by)
    return loan_response(loan)


@router.post("/{loan_id}/disbursement/dispute")
def dispute_disbursement(
    loan_id: str,
    request: DisputeDisbursementRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower disputes the disbursement"""
    proof = system.dispute_disbursement(loan_id, request.reason, request.disputed_by)
    return proof.to_dict()
