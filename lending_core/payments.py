"""
Payment Module

Oldest-first payment allocation against a loan's repayment schedule, the
append-only payment event ledger, per-loan locking and borrower-submitted
payment proofs.

A payment fans out into one event per installment it touches, plus one
overpayment event when money is left after every installment is paid.
The whole allocation runs under the loan's lock inside one atomic block:
either every write commits or none does.
"""

from datetime import datetime, date, time, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union
from contextlib import contextmanager
from enum import Enum
import threading
import uuid

from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime, utc_now
from .audit import AuditTrail, AuditEventType
from .schedule import RepaymentScheduleStore
from .loans import LoanManager, LoanStatus, PaymentMethod, parse_payment_method
from .compliance import LenderComplianceEngine
from .errors import (
    ValidationError, InvalidAmountError, NotFoundError, InvalidStateError, LockContentionError
)
from .logging_config import get_logger, log_action


logger = get_logger("payments")


class LatenessBucket(Enum):
    """Days late at the moment a payment was applied"""
    ON_TIME = "on_time"
    LATE_1_7 = "1-7"
    LATE_8_30 = "8-30"
    LATE_31_60 = "31-60"
    LATE_60_PLUS = "60+"    # Default grade

    @property
    def is_late(self) -> bool:
        return self != LatenessBucket.ON_TIME


def bucket_for_days(days_late: int) -> LatenessBucket:
    """Bucket a number of days late"""
    if days_late <= 0:
        return LatenessBucket.ON_TIME
    if days_late <= 7:
        return LatenessBucket.LATE_1_7
    if days_late <= 30:
        return LatenessBucket.LATE_8_30
    if days_late <= 60:
        return LatenessBucket.LATE_31_60
    return LatenessBucket.LATE_60_PLUS


def classify_lateness(occurred_at: Union[datetime, date], due_date: date) -> Tuple[int, LatenessBucket]:
    """
    Classify a payment against an installment's due date

    A payment is on time when it occurs on or before the due date.

    Returns:
        (days_late, bucket)
    """
    occurred_on = occurred_at.date() if isinstance(occurred_at, datetime) else occurred_at
    days_late = max(0, (occurred_on - due_date).days)
    return days_late, bucket_for_days(days_late)


def as_datetime(value: Union[datetime, date, None]) -> datetime:
    """Normalise a payment timestamp to an aware UTC datetime"""
    if value is None:
        return utc_now()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _require_positive_amount(amount_minor) -> None:
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
        raise InvalidAmountError(f"Payment amount must be a positive integer of minor units, got {amount_minor!r}")


@dataclass
class PaymentEvent(StorageRecord):
    """
    Immutable record of money applied to one installment, or of the excess
    left after every installment was paid
    """
    loan_id: str
    borrower_id: str
    payment_id: str             # Groups the events of one payment
    sequence: int               # Per-loan allocation order, 1-based
    amount_minor: int
    occurred_at: datetime
    method: PaymentMethod
    reference: Optional[str] = None
    installment_id: Optional[str] = None
    installment_no: Optional[int] = None
    due_date: Optional[date] = None
    days_late: int = 0
    lateness: LatenessBucket = LatenessBucket.ON_TIME
    is_overpayment: bool = False


@dataclass
class AppliedAmount:
    """Portion of a payment applied to one installment"""
    installment_id: str
    installment_no: int
    amount_minor: int
    became_paid: bool
    days_late: int
    lateness: LatenessBucket


@dataclass
class PaymentAllocation:
    """Outcome of allocating one payment"""
    payment_id: str
    loan_id: str
    amount_minor: int
    occurred_at: Optional[datetime] = None
    applied: List[AppliedAmount] = field(default_factory=list)
    events: List[PaymentEvent] = field(default_factory=list)
    schedules_paid: int = 0
    loan_completed: bool = False
    overpayment_minor: int = 0
    loan_status: LoanStatus = LoanStatus.ACTIVE

    def to_result(self) -> Dict:
        return {
            "payment_id": self.payment_id,
            "schedules_paid": self.schedules_paid,
            "loan_completed": self.loan_completed,
            "overpayment": self.overpayment_minor,
            "loan_status": self.loan_status.value
        }


class LoanLockRegistry:
    """One exclusive lock per loan, created on first use"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, loan_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[loan_id] = lock
            return lock

    @contextmanager
    def hold(self, loan_id: str, timeout: float):
        """
        Hold the loan's lock for the duration of the block

        Raises:
            LockContentionError: If the lock is not acquired within timeout
        """
        lock = self.lock_for(loan_id)
        if not lock.acquire(timeout=timeout):
            logger.warning("Lock contention on loan %s after %.2fs", loan_id, timeout)
            raise LockContentionError(f"Another payment is being applied to loan {loan_id}")
        try:
            yield
        finally:
            lock.release()


class PaymentAllocator:
    """
    Applies payments to a loan's installments, oldest due date first
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        schedule_store: RepaymentScheduleStore,
        audit_trail: AuditTrail,
        lock_registry: Optional[LoanLockRegistry] = None,
        lock_timeout: float = 5.0
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.schedule_store = schedule_store
        self.audit_trail = audit_trail
        self.lock_registry = lock_registry or LoanLockRegistry()
        self.lock_timeout = lock_timeout

        self.events_table = "payment_events"

    @contextmanager
    def hold(self, loan_id: str):
        """Exclusive access to a loan's schedule"""
        with self.lock_registry.hold(loan_id, self.lock_timeout):
            yield

    def allocate(
        self,
        loan_id: str,
        amount_minor: int,
        occurred_at: Union[datetime, date, None] = None,
        method: Union[PaymentMethod, str, None] = None,
        reference: Optional[str] = None,
        recorded_by: Optional[str] = None
    ) -> PaymentAllocation:
        """
        Record a payment against a loan

        Args:
            loan_id: Loan being repaid
            amount_minor: Payment amount in minor units
            occurred_at: When the payment was made (defaults to now)
            method: Payment method
            reference: External payment reference
            recorded_by: Actor recording the payment

        Returns:
            PaymentAllocation describing what was paid

        Raises:
            InvalidAmountError: If amount is not a positive integer
            NotFoundError: If the loan does not exist
            LoanClosedError: If the loan is in a terminal state
            InvalidStateError: If the loan is not active yet
            LockContentionError: If another payment holds the loan's lock
        """
        _require_positive_amount(amount_minor)
        method = parse_payment_method(method)

        with self.hold(loan_id):
            with self.storage.atomic():
                return self.apply_payment(loan_id, amount_minor, occurred_at, method,
                                          reference, recorded_by)

    def apply_payment(
        self,
        loan_id: str,
        amount_minor: int,
        occurred_at: Union[datetime, date, None],
        method: PaymentMethod,
        reference: Optional[str] = None,
        recorded_by: Optional[str] = None
    ) -> PaymentAllocation:
        """
        Allocation waterfall; the caller holds the loan's lock and an
        atomic block
        """
        _require_positive_amount(amount_minor)
        occurred_at = as_datetime(occurred_at)

        loan = self.loan_manager.require_loan(loan_id)
        self.loan_manager.ensure_accepts_payments(loan)

        allocation = PaymentAllocation(
            payment_id=str(uuid.uuid4()),
            loan_id=loan.id,
            amount_minor=amount_minor,
            occurred_at=occurred_at
        )
        sequence = self._last_sequence(loan.id)
        payment_left = amount_minor

        for installment in self.schedule_store.outstanding(loan.id):
            if payment_left == 0:
                break
            portion = min(installment.remaining_minor, payment_left)
            if portion <= 0:
                continue

            result = self.schedule_store.apply(installment.id, portion, paid_at=occurred_at)
            payment_left -= result.applied_minor

            days_late, lateness = classify_lateness(occurred_at, installment.due_date)
            allocation.applied.append(AppliedAmount(
                installment_id=installment.id,
                installment_no=installment.installment_no,
                amount_minor=result.applied_minor,
                became_paid=result.became_paid,
                days_late=days_late,
                lateness=lateness
            ))
            if result.became_paid:
                allocation.schedules_paid += 1

            sequence += 1
            allocation.events.append(self._append_event(
                loan.id, loan.borrower_id, allocation.payment_id, sequence,
                result.applied_minor, occurred_at, method, reference,
                installment_id=installment.id,
                installment_no=installment.installment_no,
                due_date=installment.due_date,
                days_late=days_late,
                lateness=lateness
            ))

        if payment_left > 0:
            self.loan_manager.add_overpayment(loan.id, payment_left)
            allocation.overpayment_minor = payment_left
            sequence += 1
            allocation.events.append(self._append_event(
                loan.id, loan.borrower_id, allocation.payment_id, sequence,
                payment_left, occurred_at, method, reference,
                is_overpayment=True
            ))

        self.audit_trail.log_event(
            event_type=AuditEventType.PAYMENT_RECORDED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "payment_id": allocation.payment_id,
                "amount_minor": amount_minor,
                "method": method.value,
                "reference": reference,
                "applied": {str(a.installment_no): a.amount_minor for a in allocation.applied},
                "schedules_paid": allocation.schedules_paid
            },
            user_id=recorded_by
        )
        if allocation.overpayment_minor:
            self.audit_trail.log_event(
                event_type=AuditEventType.OVERPAYMENT_RECORDED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"payment_id": allocation.payment_id,
                          "overpayment_minor": allocation.overpayment_minor},
                user_id=recorded_by
            )

        allocation.loan_completed = self.loan_manager.evaluate_completion(loan.id)
        allocation.loan_status = self.loan_manager.require_loan(loan.id).status

        log_action(
            logger, "info", f"Payment of {amount_minor} allocated to loan {loan.id}",
            user_id=recorded_by, action="payment.recorded", resource=f"loan:{loan.id}",
            extra={
                "payment_id": allocation.payment_id,
                "schedules_paid": allocation.schedules_paid,
                "overpayment_minor": allocation.overpayment_minor,
                "loan_completed": allocation.loan_completed
            }
        )
        return allocation

    def get_payment_events(self, loan_id: str) -> List[PaymentEvent]:
        """Events of one loan in allocation order"""
        events = [
            self._event_from_dict(data)
            for data in self.storage.find(self.events_table, {'loan_id': loan_id})
        ]
        events.sort(key=lambda e: e.sequence)
        return events

    def get_borrower_payment_events(self, borrower_id: str) -> List[PaymentEvent]:
        """Every event of a borrower, oldest first"""
        events = [
            self._event_from_dict(data)
            for data in self.storage.find(self.events_table, {'borrower_id': borrower_id})
        ]
        events.sort(key=lambda e: (e.occurred_at, e.loan_id, e.sequence))
        return events

    def _last_sequence(self, loan_id: str) -> int:
        events = self.storage.find(self.events_table, {'loan_id': loan_id})
        return max((e['sequence'] for e in events), default=0)

    def _append_event(self, loan_id: str, borrower_id: str, payment_id: str, sequence: int,
                      amount_minor: int, occurred_at: datetime, method: PaymentMethod,
                      reference: Optional[str], **details) -> PaymentEvent:
        now = utc_now()
        event = PaymentEvent(
            id=f"{loan_id}:{sequence}",
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            borrower_id=borrower_id,
            payment_id=payment_id,
            sequence=sequence,
            amount_minor=amount_minor,
            occurred_at=occurred_at,
            method=method,
            reference=reference,
            **details
        )
        self.storage.insert(self.events_table, event.id, event.to_dict())
        return event

    def _event_from_dict(self, data: Dict) -> PaymentEvent:
        return PaymentEvent(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            borrower_id=data['borrower_id'],
            payment_id=data['payment_id'],
            sequence=data['sequence'],
            amount_minor=data['amount_minor'],
            occurred_at=parse_datetime(data['occurred_at']),
            method=PaymentMethod(data['method']),
            reference=data.get('reference'),
            installment_id=data.get('installment_id'),
            installment_no=data.get('installment_no'),
            due_date=parse_date(data.get('due_date')),
            days_late=data.get('days_late', 0),
            lateness=LatenessBucket(data['lateness']),
            is_overpayment=data.get('is_overpayment', False)
        )


class PaymentProofStatus(Enum):
    """Review state of a borrower's payment proof"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class PaymentProof(StorageRecord):
    """Borrower's claim of an offline payment, awaiting the lender"""
    loan_id: str
    borrower_id: str
    lender_id: str
    amount_minor: int
    payment_date: date
    method: PaymentMethod
    reference: Optional[str] = None
    proof_url: Optional[str] = None
    notes: Optional[str] = None
    status: PaymentProofStatus = PaymentProofStatus.PENDING
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    payment_id: Optional[str] = None


class PaymentProofManager:
    """
    Borrower-submitted payment proofs and the lender's review of them
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        allocator: PaymentAllocator,
        compliance_engine: LenderComplianceEngine,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.allocator = allocator
        self.compliance_engine = compliance_engine
        self.audit_trail = audit_trail

        self.proofs_table = "payment_proofs"

    def submit_payment_proof(
        self,
        loan_id: str,
        amount_minor: int,
        payment_date: date,
        method: Union[PaymentMethod, str],
        reference: Optional[str] = None,
        proof_url: Optional[str] = None,
        notes: Optional[str] = None,
        submitted_by: Optional[str] = None
    ) -> PaymentProof:
        """
        Borrower submits proof of a payment for lender review

        Raises:
            InvalidAmountError: If amount is not a positive integer
            ValidationError: If the payment date is in the future
            LoanClosedError / InvalidStateError: If the loan is not active
        """
        _require_positive_amount(amount_minor)
        method = parse_payment_method(method)
        if payment_date > utc_now().date():
            raise ValidationError("Payment date cannot be in the future")

        with self.storage.atomic():
            loan = self.loan_manager.require_loan(loan_id)
            self.loan_manager.ensure_accepts_payments(loan)

            now = utc_now()
            proof = PaymentProof(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                borrower_id=loan.borrower_id,
                lender_id=loan.lender_id,
                amount_minor=amount_minor,
                payment_date=payment_date,
                method=method,
                reference=reference,
                proof_url=proof_url,
                notes=notes
            )
            self.storage.insert(self.proofs_table, proof.id, proof.to_dict())
            self.compliance_engine.record_proof_received(loan.lender_id)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_PROOF_SUBMITTED,
                entity_type="payment_proof",
                entity_id=proof.id,
                metadata={"loan_id": loan.id, "amount_minor": amount_minor,
                          "payment_date": payment_date, "method": method.value},
                user_id=submitted_by
            )

        log_action(logger, "info", "Payment proof submitted", user_id=submitted_by,
                   action="payment_proof.submitted", resource=f"loan:{loan.id}",
                   extra={"proof_id": proof.id, "amount_minor": amount_minor})
        return proof

    def approve_payment_proof(self, proof_id: str,
                              approved_by: Optional[str] = None) -> Tuple[PaymentProof, PaymentAllocation]:
        """
        Lender approves a proof; the payment is recorded as of its payment date

        Raises:
            NotFoundError: If the proof does not exist
            InvalidStateError: If the proof was already reviewed
            LockContentionError: If another payment holds the loan's lock
        """
        loan_id = self.require_proof(proof_id).loan_id

        with self.allocator.hold(loan_id):
            with self.storage.atomic():
                proof = self.require_proof(proof_id)
                self._require_pending(proof)

                allocation = self.allocator.apply_payment(
                    proof.loan_id, proof.amount_minor, proof.payment_date,
                    proof.method, proof.reference, recorded_by=approved_by
                )

                proof.status = PaymentProofStatus.APPROVED
                proof.reviewed_at = utc_now()
                proof.reviewed_by = approved_by
                proof.payment_id = allocation.payment_id
                self._save(proof)
                self.compliance_engine.record_proof_outcome(proof.lender_id, approved=True)

                self.audit_trail.log_event(
                    event_type=AuditEventType.PAYMENT_PROOF_APPROVED,
                    entity_type="payment_proof",
                    entity_id=proof.id,
                    metadata={"loan_id": proof.loan_id, "payment_id": allocation.payment_id},
                    user_id=approved_by
                )

        log_action(logger, "info", "Payment proof approved", user_id=approved_by,
                   action="payment_proof.approved", resource=f"loan:{proof.loan_id}",
                   extra={"proof_id": proof.id, "payment_id": allocation.payment_id})
        return proof, allocation

    def reject_payment_proof(self, proof_id: str, reason: str,
                             rejected_by: Optional[str] = None) -> PaymentProof:
        """
        Lender rejects a proof

        Raises:
            ValidationError: If no reason is given
            NotFoundError: If the proof does not exist
            InvalidStateError: If the proof was already reviewed
        """
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        with self.storage.atomic():
            proof = self.require_proof(proof_id)
            self._require_pending(proof)

            proof.status = PaymentProofStatus.REJECTED
            proof.reviewed_at = utc_now()
            proof.reviewed_by = rejected_by
            proof.rejection_reason = reason.strip()
            self._save(proof)
            self.compliance_engine.record_proof_outcome(proof.lender_id, approved=False)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_PROOF_REJECTED,
                entity_type="payment_proof",
                entity_id=proof.id,
                metadata={"loan_id": proof.loan_id, "reason": proof.rejection_reason},
                user_id=rejected_by
            )

        log_action(logger, "info", "Payment proof rejected", user_id=rejected_by,
                   action="payment_proof.rejected", resource=f"loan:{proof.loan_id}",
                   extra={"proof_id": proof.id})
        return proof

    def get_proof(self, proof_id: str) -> Optional[PaymentProof]:
        data = self.storage.load(self.proofs_table, proof_id)
        if data:
            return self._from_dict(data)
        return None

    def require_proof(self, proof_id: str) -> PaymentProof:
        proof = self.get_proof(proof_id)
        if proof is None:
            raise NotFoundError(f"Payment proof {proof_id} not found")
        return proof

    def get_loan_proofs(self, loan_id: str) -> List[PaymentProof]:
        proofs = [
            self._from_dict(data)
            for data in self.storage.find(self.proofs_table, {'loan_id': loan_id})
        ]
        proofs.sort(key=lambda p: p.created_at)
        return proofs

    def _require_pending(self, proof: PaymentProof) -> None:
        if proof.status != PaymentProofStatus.PENDING:
            logger.warning("Payment proof %s already %s", proof.id, proof.status.value)
            raise InvalidStateError(f"Payment proof {proof.id} is already {proof.status.value}")

    def _save(self, proof: PaymentProof) -> None:
        proof.touch()
        self.storage.save(self.proofs_table, proof.id, proof.to_dict())

    def _from_dict(self, data: Dict) -> PaymentProof:
        return PaymentProof(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            borrower_id=data['borrower_id'],
            lender_id=data['lender_id'],
            amount_minor=data['amount_minor'],
            payment_date=parse_date(data['payment_date']),
            method=PaymentMethod(data['method']),
            reference=data.get('reference'),
            proof_url=data.get('proof_url'),
            notes=data.get('notes'),
            status=PaymentProofStatus(data['status']),
            reviewed_at=parse_datetime(data.get('reviewed_at')),
            reviewed_by=data.get('reviewed_by'),
            rejection_reason=data.get('rejection_reason'),
            payment_id=data.get('payment_id')
        )
