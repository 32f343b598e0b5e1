"""
Loan Module

Loan lifecycle state machine: offer, acceptance, disbursement proof and
confirmation, completion and the exceptional exits (default, write-off).

    pending_offer -> pending_disbursement -> active -> completed
    pending_offer -> declined
    active -> defaulted                     (risk engine only)
    active | pending_disbursement -> written_off

Loans without borrower acceptance (tracked/offline borrowers) skip straight
to active with their schedule generated at creation.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import uuid

from .currency import Currency, parse_currency
from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime, utc_now
from .audit import AuditTrail, AuditEventType
from .amortization import PaymentType, LoanLimits, LoanQuote, calculate_quote
from .schedule import RepaymentScheduleStore
from .compliance import LenderComplianceEngine
from .errors import (
    ValidationError, InvalidAmountError, NotFoundError, InvalidStateError,
    LoanClosedError, ConflictError, ActiveLoanExists
)
from .logging_config import get_logger, log_action


logger = get_logger("loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING_OFFER = "pending_offer"                  # Awaiting borrower acceptance
    PENDING_DISBURSEMENT = "pending_disbursement"    # Accepted, funds not yet confirmed
    ACTIVE = "active"                                # Repaying
    COMPLETED = "completed"                          # Fully repaid
    DEFAULTED = "defaulted"                          # DEFAULT risk flag raised
    WRITTEN_OFF = "written_off"                      # Uncollectible
    DECLINED = "declined"                            # Borrower declined the offer

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    LoanStatus.COMPLETED,
    LoanStatus.DEFAULTED,
    LoanStatus.WRITTEN_OFF,
    LoanStatus.DECLINED,
})


class PaymentMethod(Enum):
    """How money moved between lender and borrower"""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    OTHER = "other"


def parse_payment_method(method: Union[str, PaymentMethod, None]) -> PaymentMethod:
    if method is None:
        return PaymentMethod.OTHER
    try:
        return PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Unknown payment method: {method}")


@dataclass
class Loan(StorageRecord):
    """Loan between a lender and a borrower"""
    borrower_id: str
    lender_id: str
    principal_minor: int
    currency: Currency
    base_rate_percent: Decimal
    extra_rate_per_installment: Decimal
    payment_type: PaymentType
    installment_count: int
    total_interest_percent: Decimal
    interest_minor: int
    total_amount_minor: int
    status: LoanStatus
    start_date: date
    end_date: date
    requires_borrower_acceptance: bool = False
    overpayment_minor: int = 0
    purpose: Optional[str] = None

    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    defaulted_at: Optional[datetime] = None
    default_flag_id: Optional[str] = None
    written_off_at: Optional[datetime] = None
    write_off_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result


@dataclass
class DisbursementProof(StorageRecord):
    """Lender's proof that funds were sent, and the borrower's response"""
    loan_id: str
    lender_submitted_at: datetime
    lender_proof_amount_minor: int
    lender_proof_method: PaymentMethod
    lender_proof_reference: Optional[str] = None
    lender_proof_url: Optional[str] = None
    borrower_confirmed_at: Optional[datetime] = None
    borrower_confirmation_notes: Optional[str] = None
    borrower_disputed: bool = False
    borrower_dispute_reason: Optional[str] = None
    borrower_disputed_at: Optional[datetime] = None


class LoanManager:
    """
    Manages the loan lifecycle from offer through a terminal state
    """

    def __init__(
        self,
        storage: StorageInterface,
        schedule_store: RepaymentScheduleStore,
        audit_trail: AuditTrail,
        compliance_engine: LenderComplianceEngine,
        limits: Optional[LoanLimits] = None
    ):
        self.storage = storage
        self.schedule_store = schedule_store
        self.audit_trail = audit_trail
        self.compliance_engine = compliance_engine
        self.limits = limits or LoanLimits()

        self.loans_table = "loans"
        self.disbursements_table = "disbursement_proofs"

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
        """
        Create a loan from a lender's request

        Args:
            borrower_id: Borrower receiving the loan
            lender_id: Lender funding the loan
            principal_minor: Principal in minor units
            base_rate_percent: Base interest percentage
            extra_rate_per_installment: Added percentage per extra installment
            payment_type: Once-off or installments
            installment_count: Number of monthly installments
            currency: Loan currency (code or Currency)
            requires_borrower_acceptance: Borrower must accept before disbursement
            purpose: Optional purpose of the loan
            start_date: Loan start date (defaults to today)
            created_by: Actor creating the loan

        Returns:
            Created Loan, pending_offer or active

        Raises:
            ValidationError: If the terms are out of range
            LenderRestrictedError: If the lender is suspended or banned
            ActiveLoanExists: If the borrower has a non-terminal loan
        """
        if not borrower_id or not lender_id:
            raise ValidationError("Borrower and lender are required")
        if borrower_id == lender_id:
            raise ValidationError("A lender cannot lend to themselves")
        try:
            currency = currency if isinstance(currency, Currency) else parse_currency(currency)
        except ValueError as e:
            raise ValidationError(str(e))

        now = utc_now()
        start_date = start_date or now.date()
        quote = calculate_quote(
            principal_minor, base_rate_percent, extra_rate_per_installment,
            payment_type, installment_count, currency, start_date, self.limits
        )

        with self.storage.atomic():
            self.compliance_engine.ensure_can_lend(lender_id)

            open_loans = [loan for loan in self.get_borrower_loans(borrower_id) if not loan.is_terminal]
            if open_loans:
                logger.warning("Borrower %s already has loan %s (%s)",
                               borrower_id, open_loans[0].id, open_loans[0].status.value)
                raise ActiveLoanExists(
                    f"Borrower {borrower_id} already has an active loan ({open_loans[0].id})"
                )

            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                borrower_id=borrower_id,
                lender_id=lender_id,
                principal_minor=quote.principal_minor,
                currency=currency,
                base_rate_percent=quote.base_rate_percent,
                extra_rate_per_installment=quote.extra_rate_per_installment,
                payment_type=quote.payment_type,
                installment_count=quote.installment_count,
                total_interest_percent=quote.total_interest_percent,
                interest_minor=quote.interest_minor,
                total_amount_minor=quote.total_amount_minor,
                status=LoanStatus.PENDING_OFFER if requires_borrower_acceptance else LoanStatus.ACTIVE,
                start_date=start_date,
                end_date=quote.end_date,
                requires_borrower_acceptance=requires_borrower_acceptance,
                purpose=purpose
            )
            if loan.status == LoanStatus.ACTIVE:
                loan.activated_at = now

            self.storage.insert(self.loans_table, loan.id, loan.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "borrower_id": borrower_id,
                    "lender_id": lender_id,
                    "principal_minor": loan.principal_minor,
                    "currency": currency.code,
                    "total_interest_percent": loan.total_interest_percent,
                    "total_amount_minor": loan.total_amount_minor,
                    "installment_count": loan.installment_count,
                    "status": loan.status.value
                },
                user_id=created_by
            )

            if loan.status == LoanStatus.ACTIVE:
                self._create_schedule(loan, quote)

        log_action(
            logger, "info", f"Loan created: {quote.describe()}",
            user_id=created_by, action="loan.created", resource=f"loan:{loan.id}",
            extra={"borrower_id": borrower_id, "lender_id": lender_id, "status": loan.status.value}
        )
        return loan

    def accept_offer(self, loan_id: str, accepted_on: Optional[date] = None,
                     accepted_by: Optional[str] = None) -> Loan:
        """
        Borrower accepts a pending offer; the schedule is generated now

        Raises:
            NotFoundError: If the loan does not exist
            InvalidStateError: If the loan is not a pending offer
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._require_status(loan, "accept offer", LoanStatus.PENDING_OFFER)

            now = utc_now()
            if not self.schedule_store.has_schedule(loan.id):
                # Due dates run from the acceptance date
                loan.start_date = accepted_on or now.date()
                quote = calculate_quote(
                    loan.principal_minor, loan.base_rate_percent, loan.extra_rate_per_installment,
                    loan.payment_type, loan.installment_count, loan.currency, loan.start_date,
                    self.limits
                )
                loan.end_date = quote.end_date
                self._create_schedule(loan, quote)

            loan.status = LoanStatus.PENDING_DISBURSEMENT
            loan.accepted_at = now
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_OFFER_ACCEPTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"start_date": loan.start_date, "end_date": loan.end_date},
                user_id=accepted_by
            )

        log_action(logger, "info", "Loan offer accepted", user_id=accepted_by,
                   action="loan.offer_accepted", resource=f"loan:{loan.id}")
        return loan

    def decline_offer(self, loan_id: str, reason: Optional[str] = None,
                      declined_by: Optional[str] = None) -> Loan:
        """Borrower declines a pending offer (terminal)"""
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._require_status(loan, "decline offer", LoanStatus.PENDING_OFFER)

            loan.status = LoanStatus.DECLINED
            loan.declined_at = utc_now()
            loan.decline_reason = reason
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_OFFER_DECLINED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"reason": reason},
                user_id=declined_by
            )

        log_action(logger, "info", "Loan offer declined", user_id=declined_by,
                   action="loan.offer_declined", resource=f"loan:{loan.id}")
        return loan

    def submit_disbursement_proof(
        self,
        loan_id: str,
        amount_minor: int,
        method: Union[PaymentMethod, str],
        reference: Optional[str] = None,
        proof_url: Optional[str] = None,
        submitted_by: Optional[str] = None
    ) -> DisbursementProof:
        """
        Lender records that funds were sent

        Raises:
            InvalidAmountError: If amount is not a positive integer
            InvalidStateError: If the loan is not pending disbursement
            ConflictError: If a proof was already submitted
        """
        if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
            raise InvalidAmountError("Disbursement amount must be a positive integer")
        method = parse_payment_method(method)

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._require_status(loan, "submit disbursement proof", LoanStatus.PENDING_DISBURSEMENT)
            if self.storage.exists(self.disbursements_table, loan.id):
                raise ConflictError(f"Disbursement proof already submitted for loan {loan.id}")

            now = utc_now()
            proof = DisbursementProof(
                id=loan.id,
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                lender_submitted_at=now,
                lender_proof_amount_minor=amount_minor,
                lender_proof_method=method,
                lender_proof_reference=reference,
                lender_proof_url=proof_url
            )
            self.storage.insert(self.disbursements_table, proof.id, proof.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.DISBURSEMENT_SUBMITTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"amount_minor": amount_minor, "method": method.value, "reference": reference},
                user_id=submitted_by
            )

        if amount_minor != loan.principal_minor:
            logger.warning("Disbursement for loan %s is %d, principal is %d",
                           loan.id, amount_minor, loan.principal_minor)
        log_action(logger, "info", "Disbursement proof submitted", user_id=submitted_by,
                   action="loan.disbursement_submitted", resource=f"loan:{loan.id}")
        return proof

    def confirm_disbursement_receipt(self, loan_id: str, notes: Optional[str] = None,
                                     confirmed_by: Optional[str] = None) -> Loan:
        """
        Borrower confirms receiving the funds; the loan becomes active

        Raises:
            InvalidStateError: If no proof was submitted, the disbursement is
                disputed, or the loan is not pending disbursement
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._require_status(loan, "confirm disbursement", LoanStatus.PENDING_DISBURSEMENT)

            proof = self.get_disbursement_proof(loan.id)
            if proof is None or proof.lender_submitted_at is None:
                logger.warning("Confirmation refused for loan %s: no disbursement proof", loan.id)
                raise InvalidStateError(f"Lender has not submitted a disbursement proof for loan {loan.id}")
            if proof.borrower_disputed:
                logger.warning("Confirmation refused for loan %s: disbursement disputed", loan.id)
                raise InvalidStateError(f"Disbursement for loan {loan.id} is disputed")

            now = utc_now()
            proof.borrower_confirmed_at = now
            proof.borrower_confirmation_notes = notes
            proof.touch(now)
            self.storage.save(self.disbursements_table, proof.id, proof.to_dict())

            loan.status = LoanStatus.ACTIVE
            loan.activated_at = now
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.DISBURSEMENT_CONFIRMED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"notes": notes},
                user_id=confirmed_by
            )
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_ACTIVATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"activated_at": now},
                user_id=confirmed_by
            )

        log_action(logger, "info", "Disbursement confirmed, loan active", user_id=confirmed_by,
                   action="loan.activated", resource=f"loan:{loan.id}")
        return loan

    def dispute_disbursement(self, loan_id: str, reason: str,
                             disputed_by: Optional[str] = None) -> DisbursementProof:
        """
        Borrower disputes the disbursement; the loan stays pending

        Raises:
            ValidationError: If no reason is given
            InvalidStateError: If there is no proof to dispute or it is
                already disputed
        """
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required")

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._require_status(loan, "dispute disbursement", LoanStatus.PENDING_DISBURSEMENT)

            proof = self.get_disbursement_proof(loan.id)
            if proof is None:
                raise InvalidStateError(f"No disbursement proof to dispute for loan {loan.id}")
            if proof.borrower_disputed:
                raise InvalidStateError(f"Disbursement for loan {loan.id} is already disputed")

            now = utc_now()
            proof.borrower_disputed = True
            proof.borrower_dispute_reason = reason.strip()
            proof.borrower_disputed_at = now
            proof.touch(now)
            self.storage.save(self.disbursements_table, proof.id, proof.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.DISBURSEMENT_DISPUTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"reason": proof.borrower_dispute_reason},
                user_id=disputed_by
            )

        log_action(logger, "warning", "Disbursement disputed", user_id=disputed_by,
                   action="loan.disbursement_disputed", resource=f"loan:{loan.id}")
        return proof

    def evaluate_completion(self, loan_id: str) -> bool:
        """
        Complete an active loan once its balance reaches zero

        Returns:
            True if the loan transitioned to completed on this call
        """
        loan = self.require_loan(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            return False
        if self.schedule_store.balance(loan.id) > 0:
            return False

        with self.storage.atomic():
            loan.status = LoanStatus.COMPLETED
            loan.completed_at = utc_now()
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_COMPLETED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"overpayment_minor": loan.overpayment_minor}
            )

        log_action(logger, "info", "Loan completed", action="loan.completed",
                   resource=f"loan:{loan.id}")
        return True

    def add_overpayment(self, loan_id: str, amount_minor: int) -> Loan:
        """Accumulate excess payment on the loan record"""
        loan = self.require_loan(loan_id)
        loan.overpayment_minor += amount_minor
        self._save_loan(loan)
        return loan

    def mark_defaulted(self, loan_id: str, flag_id: str) -> Loan:
        """
        Move an active loan to defaulted after a DEFAULT risk flag

        Already-defaulted loans are returned unchanged.
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status == LoanStatus.DEFAULTED:
                return loan
            self._require_status(loan, "mark defaulted", LoanStatus.ACTIVE)

            loan.status = LoanStatus.DEFAULTED
            loan.defaulted_at = utc_now()
            loan.default_flag_id = flag_id
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_DEFAULTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"flag_id": flag_id, "balance_minor": self.schedule_store.balance(loan.id)}
            )

        log_action(logger, "warning", "Loan defaulted", action="loan.defaulted",
                   resource=f"loan:{loan.id}", extra={"flag_id": flag_id})
        return loan

    def write_off(self, loan_id: str, reason: str, written_off_by: Optional[str] = None) -> Loan:
        """Write off an active or undisbursed loan as uncollectible"""
        if not reason or not reason.strip():
            raise ValidationError("A write-off reason is required")

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._require_status(loan, "write off", LoanStatus.ACTIVE, LoanStatus.PENDING_DISBURSEMENT)

            loan.status = LoanStatus.WRITTEN_OFF
            loan.written_off_at = utc_now()
            loan.write_off_reason = reason.strip()
            self._save_loan(loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_WRITTEN_OFF,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"reason": loan.write_off_reason},
                user_id=written_off_by
            )

        log_action(logger, "warning", "Loan written off", user_id=written_off_by,
                   action="loan.written_off", resource=f"loan:{loan.id}")
        return loan

    def ensure_accepts_payments(self, loan: Loan) -> None:
        """
        Raises:
            LoanClosedError: If the loan is in a terminal state
            InvalidStateError: If the loan is not active yet
        """
        if loan.is_terminal:
            logger.warning("Payment refused for loan %s: %s", loan.id, loan.status.value)
            raise LoanClosedError(f"Loan {loan.id} is {loan.status.value} and accepts no payments")
        if loan.status != LoanStatus.ACTIVE:
            logger.warning("Payment refused for loan %s: %s", loan.id, loan.status.value)
            raise InvalidStateError(f"Loan {loan.id} is {loan.status.value}, not active")

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return self._loan_from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        """
        Raises:
            NotFoundError: If the loan does not exist
        """
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def get_borrower_loans(self, borrower_id: str) -> List[Loan]:
        loans = [
            self._loan_from_dict(data)
            for data in self.storage.find(self.loans_table, {'borrower_id': borrower_id})
        ]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def get_lender_loans(self, lender_id: str) -> List[Loan]:
        loans = [
            self._loan_from_dict(data)
            for data in self.storage.find(self.loans_table, {'lender_id': lender_id})
        ]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def get_loans_by_status(self, status: LoanStatus) -> List[Loan]:
        loans = [
            self._loan_from_dict(data)
            for data in self.storage.find(self.loans_table, {'status': status.value})
        ]
        loans.sort(key=lambda loan: loan.created_at)
        return loans

    def get_disbursement_proof(self, loan_id: str) -> Optional[DisbursementProof]:
        data = self.storage.load(self.disbursements_table, loan_id)
        if data:
            return self._proof_from_dict(data)
        return None

    def _create_schedule(self, loan: Loan, quote: LoanQuote) -> None:
        self.schedule_store.create_schedule(loan.id, quote.rows)
        self.audit_trail.log_event(
            event_type=AuditEventType.SCHEDULE_CREATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "installments": [row.amount_due_minor for row in quote.rows],
                "end_date": quote.end_date
            }
        )

    def _require_status(self, loan: Loan, action: str, *allowed: LoanStatus) -> None:
        if loan.status in allowed:
            return
        logger.warning("Cannot %s for loan %s in status %s", action, loan.id, loan.status.value)
        if loan.is_terminal:
            raise LoanClosedError(f"Cannot {action}: loan {loan.id} is {loan.status.value}")
        raise InvalidStateError(f"Cannot {action}: loan {loan.id} is {loan.status.value}")

    def _save_loan(self, loan: Loan) -> None:
        loan.touch()
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _loan_from_dict(self, data: Dict) -> Loan:
        return Loan(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            borrower_id=data['borrower_id'],
            lender_id=data['lender_id'],
            principal_minor=data['principal_minor'],
            currency=Currency.from_code(data['currency']),
            base_rate_percent=Decimal(data['base_rate_percent']),
            extra_rate_per_installment=Decimal(data['extra_rate_per_installment']),
            payment_type=PaymentType(data['payment_type']),
            installment_count=data['installment_count'],
            total_interest_percent=Decimal(data['total_interest_percent']),
            interest_minor=data['interest_minor'],
            total_amount_minor=data['total_amount_minor'],
            status=LoanStatus(data['status']),
            start_date=parse_date(data['start_date']),
            end_date=parse_date(data['end_date']),
            requires_borrower_acceptance=data.get('requires_borrower_acceptance', False),
            overpayment_minor=data.get('overpayment_minor', 0),
            purpose=data.get('purpose'),
            accepted_at=parse_datetime(data.get('accepted_at')),
            declined_at=parse_datetime(data.get('declined_at')),
            decline_reason=data.get('decline_reason'),
            activated_at=parse_datetime(data.get('activated_at')),
            completed_at=parse_datetime(data.get('completed_at')),
            defaulted_at=parse_datetime(data.get('defaulted_at')),
            default_flag_id=data.get('default_flag_id'),
            written_off_at=parse_datetime(data.get('written_off_at')),
            write_off_reason=data.get('write_off_reason')
        )

    def _proof_from_dict(self, data: Dict) -> DisbursementProof:
        return DisbursementProof(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            lender_submitted_at=parse_datetime(data['lender_submitted_at']),
            lender_proof_amount_minor=data['lender_proof_amount_minor'],
            lender_proof_method=PaymentMethod(data['lender_proof_method']),
            lender_proof_reference=data.get('lender_proof_reference'),
            lender_proof_url=data.get('lender_proof_url'),
            borrower_confirmed_at=parse_datetime(data.get('borrower_confirmed_at')),
            borrower_confirmation_notes=data.get('borrower_confirmation_notes'),
            borrower_disputed=data.get('borrower_disputed', False),
            borrower_dispute_reason=data.get('borrower_dispute_reason'),
            borrower_disputed_at=parse_datetime(data.get('borrower_disputed_at'))
        )
