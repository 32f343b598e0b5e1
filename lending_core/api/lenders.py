"""
Lender compliance endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_lending_system
from .schemas import IssueWarningRequest, loan_response
from ..system import LendingSystem


router = APIRouter()


@router.post("/{lender_id}/warnings", status_code=status.HTTP_201_CREATED)
def issue_warning(
    lender_id: str,
    request: IssueWarningRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Issue a warning against a lender"""
    warning = system.issue_warning(
        lender_id=lender_id,
        warning_type=request.warning_type,
        severity=request.severity,
        title=request.title,
        description=request.description,
        issued_by=request.issued_by
    )
    return warning.to_dict()


@router.get("/{lender_id}/warnings")
def get_warnings(
    lender_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Warnings issued against a lender, oldest first"""
    return {
        "lender_id": lender_id,
        "warnings": [w.to_dict() for w in system.get_lender_warnings(lender_id)]
    }


@router.get("/{lender_id}/compliance")
def get_compliance(
    lender_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Current compliance score and status"""
    compliance = system.get_lender_compliance(lender_id)
    result = compliance.to_dict()
    result["can_create_loans"] = compliance.status.can_lend
    return result


@router.get("/{lender_id}/loans")
def get_lender_loans(
    lender_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Loans a lender has originated, oldest first"""
    return {
        "lender_id": lender_id,
        "loans": [loan_response(loan) for loan in system.get_lender_loans(lender_id)]
    }
