"""
Pydantic schemas for API requests and responses

Monetary fields are integers of minor units; floats are rejected.
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, StrictInt

from ..loans import Loan
from ..schedule import Installment
from ..payments import PaymentAllocation
from ..risk import RiskFlag
from ..credit_scoring import BorrowerScore


# Loan schemas
class CreateLoanRequest(BaseModel):
    borrower_id: str
    lender_id: str
    principal_minor: StrictInt = Field(..., description="Principal in minor units")
    base_rate_percent: Decimal = Field(..., description="Base interest percentage, 0-100")
    extra_rate_per_installment: Decimal = Field(Decimal('0'), description="Added percentage per extra installment, 0-50")
    payment_type: str = Field(..., description="once_off or installments")
    installment_count: StrictInt = 1
    currency: str = "USD"
    requires_borrower_acceptance: bool = False
    purpose: Optional[str] = None
    start_date: Optional[date] = None
    created_by: Optional[str] = None


class AcceptOfferRequest(BaseModel):
    accepted_on: Optional[date] = None
    accepted_by: Optional[str] = None


class DeclineOfferRequest(BaseModel):
    reason: Optional[str] = None
    declined_by: Optional[str] = None


class WriteOffRequest(BaseModel):
    reason: str
    written_off_by: Optional[str] = None


# Disbursement schemas
class DisbursementProofRequest(BaseModel):
    amount_minor: StrictInt
    method: str = Field(..., description="cash, bank_transfer, mobile_money or other")
    reference: Optional[str] = None
    proof_url: Optional[str] = None
    submitted_by: Optional[str] = None


class ConfirmDisbursementRequest(BaseModel):
    notes: Optional[str] = None
    confirmed_by: Optional[str] = None


class DisputeDisbursementRequest(BaseModel):
    reason: str
    disputed_by: Optional[str] = None


# Payment schemas
class RecordPaymentRequest(BaseModel):
    amount_minor: StrictInt
    occurred_at: Optional[datetime] = None
    method: Optional[str] = None
    reference: Optional[str] = None
    recorded_by: Optional[str] = None


class PaymentProofRequest(BaseModel):
    amount_minor: StrictInt
    payment_date: date
    method: str
    reference: Optional[str] = None
    proof_url: Optional[str] = None
    notes: Optional[str] = None
    submitted_by: Optional[str] = None


class ApproveProofRequest(BaseModel):
    approved_by: Optional[str] = None


class RejectProofRequest(BaseModel):
    reason: str
    rejected_by: Optional[str] = None


# Risk flag schemas
class ReportRiskFlagRequest(BaseModel):
    type: str = Field(..., description="LATE_1_7, LATE_8_30, LATE_31_60 or DEFAULT")
    reason: str
    amount_at_issue_minor: StrictInt
    reported_by: str
    loan_id: Optional[str] = None
    proof_hash: Optional[str] = Field(None, description="SHA-256 of the proof document, lowercase hex")


class ResolveRiskFlagRequest(BaseModel):
    resolution_reason: str
    resolved_by: Optional[str] = None


# Affordability schemas
class LoanTermsRequest(BaseModel):
    principal_minor: StrictInt
    base_rate_percent: Decimal
    extra_rate_per_installment: Decimal = Decimal('0')
    payment_type: str
    installment_count: StrictInt = 1
    currency: str = "USD"


class BorrowerAffordabilityRequest(LoanTermsRequest):
    borrower_id: str
    monthly_income_minor: StrictInt
    monthly_expenses_minor: StrictInt
    additional_income_minor: StrictInt = 0
    savings_minor: StrictInt = Field(0, description="Part of the expenses that goes into savings")


class LenderAffordabilityRequest(LoanTermsRequest):
    monthly_income_minor: StrictInt
    monthly_expenses_minor: StrictInt = Field(..., description="Living expenses, debt payments excluded")
    existing_debt_minor: StrictInt = 0


# Lender compliance schemas
class IssueWarningRequest(BaseModel):
    warning_type: str
    severity: str = Field(..., description="notice, warning, final_warning, suspension or ban")
    title: str
    description: str = ""
    issued_by: Optional[str] = None


def loan_response(loan: Loan) -> Dict[str, Any]:
    result = loan.to_dict()
    result['loan_id'] = loan.id
    return result


def installment_response(installment: Installment, as_of: date, schedule_store) -> Dict[str, Any]:
    result = installment.to_dict()
    result['remaining_minor'] = installment.remaining_minor
    result['effective_status'] = schedule_store.effective_status(installment, as_of).value
    return result


def allocation_response(allocation: PaymentAllocation) -> Dict[str, Any]:
    result = allocation.to_result()
    result['applied'] = [
        {
            "installment_no": applied.installment_no,
            "amount_minor": applied.amount_minor,
            "paid": applied.became_paid,
            "days_late": applied.days_late,
            "lateness": applied.lateness.value
        }
        for applied in allocation.applied
    ]
    return result


def risk_flag_response(flag: RiskFlag) -> Dict[str, Any]:
    result = flag.to_dict()
    result['type'] = result.pop('flag_type')
    result['is_active'] = flag.is_active
    return result


def score_response(score: BorrowerScore) -> Dict[str, Any]:
    return {
        "borrower_id": score.borrower_id,
        "score": score.score,
        "factors": score.factors,
        "history": score.history,
        "on_time_payments": score.on_time_payments,
        "late_payments": score.late_payments,
        "active_flags": score.active_flags,
        "has_history": score.has_history,
        "updated_at": score.updated_at.isoformat()
    }
