"""
Payment endpoints: recording payments and reviewing payment proofs
"""

from fastapi import APIRouter, Depends, status
from typing import Optional

from .deps import get_lending_system
from .schemas import (
    RecordPaymentRequest, PaymentProofRequest, ApproveProofRequest, RejectProofRequest,
    allocation_response
)
from ..system import LendingSystem


router = APIRouter()


@router.post("/loans/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
def record_payment(
    loan_id: str,
    request: RecordPaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a payment; returns schedules_paid, loan_completed and overpayment"""
    allocation = system.record_payment(
        loan_id=loan_id,
        amount_minor=request.amount_minor,
        occurred_at=request.occurred_at,
        method=request.method,
        reference=request.reference,
        recorded_by=request.recorded_by
    )
    return allocation_response(allocation)


@router.post("/loans/{loan_id}/payment-proofs", status_code=status.HTTP_201_CREATED)
def submit_payment_proof(
    loan_id: str,
    request: PaymentProofRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower submits proof of an offline payment"""
    proof = system.submit_payment_proof(
        loan_id=loan_id,
        amount_minor=request.amount_minor,
        payment_date=request.payment_date,
        method=request.method,
        reference=request.reference,
        proof_url=request.proof_url,
        notes=request.notes,
        submitted_by=request.submitted_by
    )
    return proof.to_dict()


@router.get("/loans/{loan_id}/payment-proofs")
def get_payment_proofs(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Payment proofs of a loan, oldest first"""
    return {
        "loan_id": loan_id,
        "proofs": [proof.to_dict() for proof in system.get_payment_proofs(loan_id)]
    }

@router.post("/payment-proofs/{proof_id}/approve")
def approve_payment_proof(
    proof_id: str,
    request: Optional[ApproveProofRequest] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender approves a proof; the payment is recorded"""
    request = request or ApproveProofRequest()
    proof, allocation = system.approve_payment_proof(proof_id, request.approved_by)
    return {
        "proof": proof.to_dict(),
        "payment": allocation_response(allocation)
    }


@router.post("/payment-proofs/{proof_id}/reject")
def reject_payment_proof(
    proof_id: str,
    request: RejectProofRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender rejects a proof"""
    proof = system.reject_payment_proof(proof_id, request.reason, request.rejected_by)
    return proof.to_dict()
