"""
Lending System Module

Wires every component onto one storage backend and exposes the engine's
operations as typed methods. This is the only entry point the HTTP layer
talks to.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, TypeVar, Union
import time

from .config import LendingConfig, get_config
from .currency import Currency, parse_currency
from .storage import StorageInterface, create_storage, utc_now
from .audit import AuditTrail
from .amortization import LoanLimits, LoanQuote, PaymentType, calculate_quote
from .affordability import BorrowerAffordability, LenderAffordability, assess_borrower, assess_for_lender
from .schedule import RepaymentScheduleStore, Installment
from .compliance import LenderComplianceEngine, LenderCompliance, LenderWarning, WarningSeverity
from .loans import LoanManager, Loan, DisbursementProof, PaymentMethod
from .payments import (
    PaymentAllocator, PaymentAllocation, PaymentEvent, PaymentProof, PaymentProofManager,
    LoanLockRegistry
)
from .risk import RiskFlagEngine, RiskFlag, RiskFlagType
from .credit_scoring import CreditScoringEngine, BorrowerScore
from .errors import LockContentionError, ValidationError
from .logging_config import get_logger


logger = get_logger("system")

T = TypeVar("T")


class LendingSystem:
    """Lending engine with all components initialized"""

    def __init__(self, settings: Optional[LendingConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.settings = settings or get_config()

        self.storage = storage or create_storage(
            self.settings.storage_backend, self.settings.sqlite_path
        )
        self.audit_trail = AuditTrail(self.storage, enabled=self.settings.enable_audit_logging)
        self.compliance_engine = LenderComplianceEngine(
            self.storage, self.audit_trail,
            min_proofs_for_rate=self.settings.compliance_min_proofs_for_rate
        )
        self.schedule_store = RepaymentScheduleStore(self.storage)
        self.loan_manager = LoanManager(
            self.storage, self.schedule_store, self.audit_trail, self.compliance_engine,
            limits=LoanLimits.from_config(self.settings)
        )
        self.lock_registry = LoanLockRegistry()
        self.allocator = PaymentAllocator(
            self.storage, self.loan_manager, self.schedule_store, self.audit_trail,
            lock_registry=self.lock_registry,
            lock_timeout=self.settings.lock_timeout_seconds
        )
        self.proof_manager = PaymentProofManager(
            self.storage, self.loan_manager, self.allocator, self.compliance_engine,
            self.audit_trail
        )
        self.risk_engine = RiskFlagEngine(
            self.storage, self.loan_manager, self.schedule_store, self.audit_trail,
            default_threshold_days=self.settings.default_threshold_days
        )
        self.scoring_engine = CreditScoringEngine.from_config(
            self.storage, self.allocator, self.risk_engine, self.settings
        )

        self.retry_attempts = max(1, self.settings.payment_retry_attempts)
        self.retry_backoff = self.settings.payment_retry_backoff_seconds

    # Loans

    def create_loan(
        self,
        borrower_id: str,
        lender_id: str,
        principal_minor: int,
        base_rate_percent: Union[Decimal, str, int],
        extra_rate_per_installment: Union[Decimal, str, int],
        payment_type: Union[PaymentType, str],
        installment_count: int,
        currency: Union[Currency, str, None] = None,
        requires_borrower_acceptance: bool = False,
        purpose: Optional[str] = None,
        start_date: Optional[date] = None,
        created_by: Optional[str] = None
    ) -> Loan:
        return self.loan_manager.create_loan(
            borrower_id=borrower_id,
            lender_id=lender_id,
            principal_minor=principal_minor,
            base_rate_percent=base_rate_percent,
            extra_rate_per_installment=extra_rate_per_installment,
            payment_type=payment_type,
            installment_count=installment_count,
            currency=currency,
            requires_borrower_acceptance=requires_borrower_acceptance,
            purpose=purpose,
            start_date=start_date,
            created_by=created_by
        )

    def get_loan(self, loan_id: str) -> Loan:
        return self.loan_manager.require_loan(loan_id)

    def get_schedule(self, loan_id: str) -> List[Installment]:
        self.loan_manager.require_loan(loan_id)
        return self.schedule_store.get_schedule(loan_id)

    def get_balance(self, loan_id: str) -> int:
        self.loan_manager.require_loan(loan_id)
        return self.schedule_store.balance(loan_id)

    def get_payment_events(self, loan_id: str) -> List[PaymentEvent]:
        self.loan_manager.require_loan(loan_id)
        return self.allocator.get_payment_events(loan_id)

    def get_lender_loans(self, lender_id: str) -> List[Loan]:
        return self.loan_manager.get_lender_loans(lender_id)

    def quote_loan(
        self,
        principal_minor: int,
        base_rate_percent: Union[Decimal, str, int],
        extra_rate_per_installment: Union[Decimal, str, int],
        payment_type: Union[PaymentType, str],
        installment_count: int,
        currency: Union[Currency, str, None] = None,
        start_date: Optional[date] = None
    ) -> LoanQuote:
        """Quote loan terms without creating a loan"""
        try:
            currency = currency if isinstance(currency, Currency) else parse_currency(currency)
        except ValueError as e:
            raise ValidationError(str(e))
        return calculate_quote(
            principal_minor, base_rate_percent, extra_rate_per_installment, payment_type,
            installment_count, currency, start_date or utc_now().date(), self.loan_manager.limits
        )

    def accept_offer(self, loan_id: str, accepted_on: Optional[date] = None,
                     accepted_by: Optional[str] = None) -> Loan:
        return self.loan_manager.accept_offer(loan_id, accepted_on, accepted_by)

    def decline_offer(self, loan_id: str, reason: Optional[str] = None,
                      declined_by: Optional[str] = None) -> Loan:
        return self.loan_manager.decline_offer(loan_id, reason, declined_by)

    def submit_disbursement_proof(self, loan_id: str, amount_minor: int,
                                  method: Union[PaymentMethod, str],
                                  reference: Optional[str] = None,
                                  proof_url: Optional[str] = None,
                                  submitted_by: Optional[str] = None) -> DisbursementProof:
        return self.loan_manager.submit_disbursement_proof(
            loan_id, amount_minor, method, reference, proof_url, submitted_by
        )

    def confirm_disbursement(self, loan_id: str, notes: Optional[str] = None,
                             confirmed_by: Optional[str] = None) -> Loan:
        return self.loan_manager.confirm_disbursement_receipt(loan_id, notes, confirmed_by)

    def dispute_disbursement(self, loan_id: str, reason: str,
                             disputed_by: Optional[str] = None) -> DisbursementProof:
        return self.loan_manager.dispute_disbursement(loan_id, reason, disputed_by)

    def get_disbursement_proof(self, loan_id: str) -> Optional[DisbursementProof]:
        self.loan_manager.require_loan(loan_id)
        return self.loan_manager.get_disbursement_proof(loan_id)

    def write_off_loan(self, loan_id: str, reason: str,
                       written_off_by: Optional[str] = None) -> Loan:
        return self.loan_manager.write_off(loan_id, reason, written_off_by)

    # Payments

    def record_payment(
        self,
        loan_id: str,
        amount_minor: int,
        occurred_at: Union[datetime, date, None] = None,
        method: Union[PaymentMethod, str, None] = None,
        reference: Optional[str] = None,
        recorded_by: Optional[str] = None
    ) -> PaymentAllocation:
        """
        Record a payment, retrying while another payment holds the loan

        Returns:
            PaymentAllocation; ``to_result()`` gives schedules_paid,
            loan_completed and overpayment
        """
        allocation = self._with_retry(
            lambda: self.allocator.allocate(
                loan_id, amount_minor, occurred_at, method, reference, recorded_by
            ),
            f"payment on loan {loan_id}"
        )
        self._after_payment(allocation, recorded_by)
        return allocation

    def submit_payment_proof(self, loan_id: str, amount_minor: int, payment_date: date,
                             method: Union[PaymentMethod, str],
                             reference: Optional[str] = None,
                             proof_url: Optional[str] = None,
                             notes: Optional[str] = None,
                             submitted_by: Optional[str] = None) -> PaymentProof:
        return self.proof_manager.submit_payment_proof(
            loan_id, amount_minor, payment_date, method, reference, proof_url, notes, submitted_by
        )

    def approve_payment_proof(self, proof_id: str, approved_by: Optional[str] = None):
        """Approve a proof and record its payment; returns (proof, allocation)"""
        proof, allocation = self._with_retry(
            lambda: self.proof_manager.approve_payment_proof(proof_id, approved_by),
            f"payment proof {proof_id}"
        )
        self._after_payment(allocation, approved_by)
        return proof, allocation

    def get_payment_proofs(self, loan_id: str) -> List[PaymentProof]:
        self.loan_manager.require_loan(loan_id)
        return self.proof_manager.get_loan_proofs(loan_id)

    def reject_payment_proof(self, proof_id: str, reason: str,
                             rejected_by: Optional[str] = None) -> PaymentProof:
        return self.proof_manager.reject_payment_proof(proof_id, reason, rejected_by)

    def _after_payment(self, allocation: PaymentAllocation, actor: Optional[str]) -> None:
        """Flag the lateness the payment reveals, clear settled installments, rescore"""
        loan = self.loan_manager.require_loan(allocation.loan_id)
        self.risk_engine.record_payment_lateness(allocation, resolved_by=actor)
        self.scoring_engine.refresh_score(loan.borrower_id)

    def _with_retry(self, operation: Callable[[], T], description: str) -> T:
        """Retry lock contention with exponential backoff; other errors propagate"""
        attempt = 0
        while True:
            try:
                return operation()
            except LockContentionError:
                attempt += 1
                if attempt >= self.retry_attempts:
                    logger.error("Giving up on %s after %d attempts", description, attempt)
                    raise
                backoff = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning("Lock contention on %s, retry %d in %.2fs",
                               description, attempt, backoff)
                time.sleep(backoff)

    # Borrowers

    def get_borrower_score(self, borrower_id: str, as_of: Optional[date] = None) -> BorrowerScore:
        return self.scoring_engine.get_score(borrower_id, as_of)

    def assess_borrower_affordability(self, borrower_id: str, quote: LoanQuote,
                                      monthly_income_minor: int, monthly_expenses_minor: int,
                                      additional_income_minor: int = 0,
                                      savings_minor: int = 0) -> BorrowerAffordability:
        """Borrower's budget check, with a base rate suggested from their score"""
        score = self.scoring_engine.calculate_score(borrower_id)
        return assess_borrower(
            quote, monthly_income_minor, monthly_expenses_minor,
            additional_income_minor=additional_income_minor,
            savings_minor=savings_minor,
            buffer_percent=Decimal(self.settings.affordability_buffer_percent),
            credit_score=score.score
        )

    def assess_lender_affordability(self, quote: LoanQuote, monthly_income_minor: int,
                                    monthly_expenses_minor: int,
                                    existing_debt_minor: int = 0) -> LenderAffordability:
        return assess_for_lender(
            quote, monthly_income_minor, monthly_expenses_minor, existing_debt_minor,
            target_dti_percent=Decimal(self.settings.affordability_target_dti_percent)
        )

    def report_risk_flag(self, borrower_id: str, flag_type: Union[RiskFlagType, str],
                         reason: str, amount_at_issue_minor: int, reported_by: str,
                         loan_id: Optional[str] = None,
                         proof_hash: Optional[str] = None) -> RiskFlag:
        flag = self.risk_engine.report_flag(
            borrower_id, flag_type, reason, amount_at_issue_minor, reported_by, loan_id, proof_hash
        )
        self.scoring_engine.refresh_score(borrower_id)
        return flag

    def resolve_risk_flag(self, flag_id: str, resolution_reason: str,
                          resolved_by: Optional[str] = None) -> RiskFlag:
        flag = self.risk_engine.resolve_flag(flag_id, resolution_reason, resolved_by)
        self.scoring_engine.refresh_score(flag.borrower_id)
        return flag

    def get_risk_flags(self, borrower_id: str, include_resolved: bool = True) -> List[RiskFlag]:
        return self.risk_engine.get_flags(borrower_id, include_resolved)

    def sweep_overdue(self, as_of: Optional[date] = None) -> Dict[str, int]:
        return self.risk_engine.sweep_overdue(as_of)

    # Lenders

    def issue_warning(self, lender_id: str, warning_type: str,
                      severity: Union[WarningSeverity, str], title: str, description: str,
                      issued_by: Optional[str] = None) -> LenderWarning:
        return self.compliance_engine.issue_warning(
            lender_id, warning_type, severity, title, description, issued_by
        )

    def get_lender_compliance(self, lender_id: str) -> LenderCompliance:
        return self.compliance_engine.get_compliance(lender_id)

    def get_lender_warnings(self, lender_id: str) -> List[LenderWarning]:
        return self.compliance_engine.get_warnings(lender_id)

    # Audit

    def verify_audit_trail(self) -> Dict:
        return self.audit_trail.verify_integrity()

    def close(self) -> None:
        self.storage.close()
