"""
Borrower endpoints: credit score and risk flags
"""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from datetime import date

from .deps import get_lending_system
from .schemas import ReportRiskFlagRequest, ResolveRiskFlagRequest, risk_flag_response, score_response
from ..system import LendingSystem


router = APIRouter()


@router.get("/borrowers/{borrower_id}/score")
def get_borrower_score(
    borrower_id: str,
    as_of: Optional[date] = Query(None),
    system: LendingSystem = Depends(get_lending_system)
):
    """Borrower score recomputed from the payment ledger"""
    return score_response(system.get_borrower_score(borrower_id, as_of))


@router.post("/borrowers/{borrower_id}/risk-flags", status_code=status.HTTP_201_CREATED)
def report_risk_flag(
    borrower_id: str,
    request: ReportRiskFlagRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Lender lists a borrower as risky"""
    flag = system.report_risk_flag(
        borrower_id=borrower_id,
        flag_type=request.type,
        reason=request.reason,
        amount_at_issue_minor=request.amount_at_issue_minor,
        reported_by=request.reported_by,
        loan_id=request.loan_id,
        proof_hash=request.proof_hash
    )
    return risk_flag_response(flag)


@router.get("/borrowers/{borrower_id}/risk-flags")
def get_risk_flags(
    borrower_id: str,
    include_resolved: bool = Query(True),
    system: LendingSystem = Depends(get_lending_system)
):
    """Risk flags of a borrower, oldest first"""
    flags = system.get_risk_flags(borrower_id, include_resolved)
    return {
        "borrower_id": borrower_id,
        "flags": [risk_flag_response(flag) for flag in flags]
    }


@router.post("/risk-flags/{flag_id}/resolve")
def resolve_risk_flag(
    flag_id: str,
    request: ResolveRiskFlagRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Resolve a risk flag; the record is kept"""
    flag = system.resolve_risk_flag(flag_id, request.resolution_reason, request.resolved_by)
    return risk_flag_response(flag)
