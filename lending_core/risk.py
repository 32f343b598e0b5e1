"""
Risk Flag Module

Borrower risk flags: raised automatically when an installment crosses a
lateness threshold, or reported manually by a lender. Flags are never
deleted; resolving one stamps resolved_at and appends a CLEARED record.

Automatic flags are tracked per installment and only ever upgrade
(LATE_1_7 -> LATE_8_30 -> LATE_31_60 -> DEFAULT). A DEFAULT flag moves the
loan to defaulted.
"""

from datetime import datetime, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import re
import uuid

from .storage import StorageInterface, StorageRecord, parse_datetime, utc_now
from .audit import AuditTrail, AuditEventType
from .schedule import RepaymentScheduleStore
from .loans import Loan, LoanManager, LoanStatus
from .payments import PaymentAllocation
from .errors import ValidationError, InvalidAmountError, NotFoundError, InvalidStateError
from .logging_config import get_logger, log_action


logger = get_logger("risk")

PROOF_HASH_PATTERN = re.compile(r'^[a-f0-9]{64}$')
MIN_REASON_LENGTH = 10


class RiskFlagType(Enum):
    """Risk flag taxonomy, mildest first"""
    LATE_1_7 = "LATE_1_7"
    LATE_8_30 = "LATE_8_30"
    LATE_31_60 = "LATE_31_60"
    DEFAULT = "DEFAULT"
    CLEARED = "CLEARED"

    @property
    def severity(self) -> int:
        return FLAG_SEVERITY[self]


FLAG_SEVERITY = {
    RiskFlagType.CLEARED: 0,
    RiskFlagType.LATE_1_7: 1,
    RiskFlagType.LATE_8_30: 2,
    RiskFlagType.LATE_31_60: 3,
    RiskFlagType.DEFAULT: 4,
}


class RiskFlagOrigin(Enum):
    LENDER_REPORTED = "LENDER_REPORTED"
    SYSTEM_AUTO = "SYSTEM_AUTO"


def flag_type_for_days(days_overdue: int, default_threshold_days: int = 60) -> Optional[RiskFlagType]:
    """Flag type for an installment this many days overdue, None when not overdue"""
    if days_overdue <= 0:
        return None
    if days_overdue <= 7:
        return RiskFlagType.LATE_1_7
    if days_overdue <= 30:
        return RiskFlagType.LATE_8_30
    if days_overdue <= default_threshold_days:
        return RiskFlagType.LATE_31_60
    return RiskFlagType.DEFAULT


@dataclass
class RiskFlag(StorageRecord):
    """Permanent risk record against a borrower"""
    borrower_id: str
    flag_type: RiskFlagType
    origin: RiskFlagOrigin
    reason: str
    amount_at_issue_minor: int
    loan_id: Optional[str] = None
    installment_no: Optional[int] = None
    reported_by: Optional[str] = None
    proof_hash: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_reason: Optional[str] = None
    resolved_by: Optional[str] = None
    superseded_by: Optional[str] = None
    clears_flag_id: Optional[str] = None    # Set on CLEARED records

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None and self.flag_type != RiskFlagType.CLEARED


class RiskFlagEngine:
    """
    Raises, upgrades and resolves borrower risk flags
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        schedule_store: RepaymentScheduleStore,
        audit_trail: AuditTrail,
        default_threshold_days: int = 60
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.schedule_store = schedule_store
        self.audit_trail = audit_trail
        self.default_threshold_days = default_threshold_days

        self.flags_table = "risk_flags"

    def report_flag(
        self,
        borrower_id: str,
        flag_type: Union[RiskFlagType, str],
        reason: str,
        amount_at_issue_minor: int,
        reported_by: str,
        loan_id: Optional[str] = None,
        proof_hash: Optional[str] = None
    ) -> RiskFlag:
        """
        Lender lists a borrower as risky

        Args:
            borrower_id: Borrower being flagged
            flag_type: LATE_1_7, LATE_8_30, LATE_31_60 or DEFAULT
            reason: Explanation, at least 10 characters
            amount_at_issue_minor: Amount in dispute, minor units
            reported_by: Reporting lender
            loan_id: Loan the flag relates to
            proof_hash: SHA-256 of the supporting document, lowercase hex

        Raises:
            ValidationError: If any input is invalid
            NotFoundError: If loan_id is given but does not exist
        """
        try:
            flag_type = RiskFlagType(flag_type)
        except ValueError:
            raise ValidationError(f"Unknown risk flag type: {flag_type}")
        if flag_type == RiskFlagType.CLEARED:
            raise ValidationError("CLEARED flags are created by resolving a flag")
        if not reason or len(reason.strip()) < MIN_REASON_LENGTH:
            raise ValidationError(f"Reason must be at least {MIN_REASON_LENGTH} characters")
        if (isinstance(amount_at_issue_minor, bool) or not isinstance(amount_at_issue_minor, int)
                or amount_at_issue_minor <= 0):
            raise InvalidAmountError("Amount at issue must be a positive integer of minor units")
        if proof_hash is not None and not PROOF_HASH_PATTERN.match(proof_hash):
            raise ValidationError("Proof hash must be a 64-character lowercase hex SHA-256 digest")
        if not reported_by:
            raise ValidationError("Reporting lender is required")

        if loan_id is not None:
            loan = self.loan_manager.require_loan(loan_id)
            if loan.borrower_id != borrower_id:
                raise ValidationError(f"Loan {loan_id} does not belong to borrower {borrower_id}")

        with self.storage.atomic():
            flag = self._raise_flag(
                borrower_id, flag_type, RiskFlagOrigin.LENDER_REPORTED, reason.strip(),
                amount_at_issue_minor, loan_id=loan_id, reported_by=reported_by,
                proof_hash=proof_hash
            )
        return flag

    def evaluate_loan(self, loan_id: str, as_of: Optional[date] = None) -> List[RiskFlag]:
        """
        Raise or upgrade automatic flags for the loan's overdue installments

        Evaluating twice for the same day raises nothing new.

        Returns:
            Flags raised by this call
        """
        as_of = as_of or utc_now().date()
        raised = []

        with self.storage.atomic():
            loan = self.loan_manager.require_loan(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                return raised

            default_flag = None
            for installment in self.schedule_store.overdue(loan.id, as_of):
                days = self.schedule_store.days_overdue(installment, as_of)
                target = flag_type_for_days(days, self.default_threshold_days)
                if target is None:
                    continue

                flag = self._raise_or_upgrade(
                    loan, installment.installment_no, target,
                    f"Installment {installment.installment_no} is {days} days overdue",
                    installment.remaining_minor
                )
                if flag is None:
                    continue
                raised.append(flag)

                if target == RiskFlagType.DEFAULT and default_flag is None:
                    default_flag = flag

            if default_flag is not None:
                self.loan_manager.mark_defaulted(loan.id, default_flag.id)

        return raised

    def record_payment_lateness(self, allocation: PaymentAllocation,
                                resolved_by: Optional[str] = None) -> List[RiskFlag]:
        """
        Put the lateness a payment reveals on the borrower's record

        An installment settled late gets the flag its lateness calls for
        and is cleared straight away, so the crossing stays on record.
        Installments still overdue on the payment date are evaluated as of
        that date, which can default the loan.

        Returns:
            Flags raised by this call
        """
        loan = self.loan_manager.require_loan(allocation.loan_id)
        raised = []

        with self.storage.atomic():
            for applied in allocation.applied:
                if not applied.became_paid:
                    continue
                target = flag_type_for_days(applied.days_late, self.default_threshold_days)
                if target is not None:
                    flag = self._raise_or_upgrade(
                        loan, applied.installment_no, target,
                        f"Installment {applied.installment_no} paid {applied.days_late} days late",
                        applied.amount_minor
                    )
                    if flag is not None:
                        raised.append(flag)
                self.clear_installment_flags(loan.id, applied.installment_no, resolved_by)

        occurred_on = (allocation.occurred_at or utc_now()).date()
        raised.extend(self.evaluate_loan(loan.id, occurred_on))
        return raised

    def sweep_overdue(self, as_of: Optional[date] = None) -> Dict[str, int]:
        """Evaluate every active loan"""
        as_of = as_of or utc_now().date()
        summary = {"loans_evaluated": 0, "flags_raised": 0, "loans_defaulted": 0}

        for loan in self.loan_manager.get_loans_by_status(LoanStatus.ACTIVE):
            raised = self.evaluate_loan(loan.id, as_of)
            summary["loans_evaluated"] += 1
            summary["flags_raised"] += len(raised)
            if any(f.flag_type == RiskFlagType.DEFAULT for f in raised):
                summary["loans_defaulted"] += 1

        logger.info("Overdue sweep as of %s: %s", as_of.isoformat(), summary)
        return summary

    def clear_installment_flags(self, loan_id: str, installment_no: int,
                                resolved_by: Optional[str] = None) -> List[RiskFlag]:
        """Resolve the automatic flags of an installment that has been paid"""
        cleared = []
        with self.storage.atomic():
            for flag in self._installment_flags(loan_id, installment_no):
                self._resolve(flag, f"Installment {installment_no} paid", resolved_by)
                cleared.append(flag)
        return cleared

    def resolve_flag(self, flag_id: str, resolution_reason: str,
                     resolved_by: Optional[str] = None) -> RiskFlag:
        """
        Resolve a flag; the record stays and a CLEARED record is appended

        Raises:
            ValidationError: If no reason is given
            NotFoundError: If the flag does not exist
            InvalidStateError: If the flag is already resolved
        """
        if not resolution_reason or not resolution_reason.strip():
            raise ValidationError("A resolution reason is required")

        with self.storage.atomic():
            flag = self.require_flag(flag_id)
            if not flag.is_active:
                logger.warning("Risk flag %s is already resolved", flag.id)
                raise InvalidStateError(f"Risk flag {flag.id} is already resolved")
            self._resolve(flag, resolution_reason.strip(), resolved_by)
        return flag

    def get_flag(self, flag_id: str) -> Optional[RiskFlag]:
        data = self.storage.load(self.flags_table, flag_id)
        if data:
            return self._from_dict(data)
        return None

    def require_flag(self, flag_id: str) -> RiskFlag:
        flag = self.get_flag(flag_id)
        if flag is None:
            raise NotFoundError(f"Risk flag {flag_id} not found")
        return flag

    def get_flags(self, borrower_id: str, include_resolved: bool = True) -> List[RiskFlag]:
        flags = [
            self._from_dict(data)
            for data in self.storage.find(self.flags_table, {'borrower_id': borrower_id})
        ]
        if not include_resolved:
            flags = [f for f in flags if f.is_active]
        flags.sort(key=lambda f: f.created_at)
        return flags

    def active_flags(self, borrower_id: str) -> List[RiskFlag]:
        return self.get_flags(borrower_id, include_resolved=False)

    def _installment_flags(self, loan_id: str, installment_no: int) -> List[RiskFlag]:
        """Active automatic flags of one installment"""
        return [
            flag for flag in (
                self._from_dict(data) for data in self.storage.find(
                    self.flags_table,
                    {'loan_id': loan_id, 'installment_no': installment_no, 'origin': RiskFlagOrigin.SYSTEM_AUTO}
                )
            )
            if flag.is_active
        ]

    def _raise_or_upgrade(self, loan: Loan, installment_no: int, target: RiskFlagType,
                          reason: str, amount_minor: int) -> Optional[RiskFlag]:
        """Raise an automatic flag unless the installment already has one as severe"""
        existing = self._installment_flags(loan.id, installment_no)
        if any(f.flag_type.severity >= target.severity for f in existing):
            return None

        flag = self._raise_flag(
            loan.borrower_id, target, RiskFlagOrigin.SYSTEM_AUTO, reason, amount_minor,
            loan_id=loan.id, installment_no=installment_no
        )
        for lower in existing:
            lower.superseded_by = flag.id
            self._resolve(lower, f"Upgraded to {target.value}", resolved_by=None,
                          append_cleared=False)
        return flag

    def _raise_flag(self, borrower_id: str, flag_type: RiskFlagType, origin: RiskFlagOrigin,
                    reason: str, amount_minor: int, **details) -> RiskFlag:
        now = utc_now()
        flag = RiskFlag(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            flag_type=flag_type,
            origin=origin,
            reason=reason,
            amount_at_issue_minor=amount_minor,
            **details
        )
        self.storage.insert(self.flags_table, flag.id, flag.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.RISK_FLAG_RAISED,
            entity_type="risk_flag",
            entity_id=flag.id,
            metadata={
                "borrower_id": borrower_id,
                "type": flag_type.value,
                "origin": origin.value,
                "loan_id": flag.loan_id,
                "installment_no": flag.installment_no,
                "amount_at_issue_minor": amount_minor
            },
            user_id=flag.reported_by
        )
        log_action(
            logger, "warning", f"Risk flag {flag_type.value} raised for borrower {borrower_id}",
            user_id=flag.reported_by, action="risk_flag.raised", resource=f"borrower:{borrower_id}",
            extra={"flag_id": flag.id, "origin": origin.value, "loan_id": flag.loan_id}
        )
        return flag

    def _resolve(self, flag: RiskFlag, reason: str, resolved_by: Optional[str],
                 append_cleared: bool = True) -> None:
        now = utc_now()
        flag.resolved_at = now
        flag.resolution_reason = reason
        flag.resolved_by = resolved_by
        flag.touch(now)
        self.storage.save(self.flags_table, flag.id, flag.to_dict())

        if append_cleared:
            cleared = RiskFlag(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                borrower_id=flag.borrower_id,
                flag_type=RiskFlagType.CLEARED,
                origin=flag.origin,
                reason=reason,
                amount_at_issue_minor=flag.amount_at_issue_minor,
                loan_id=flag.loan_id,
                installment_no=flag.installment_no,
                reported_by=resolved_by,
                resolved_at=now,
                clears_flag_id=flag.id
            )
            self.storage.insert(self.flags_table, cleared.id, cleared.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.RISK_FLAG_RESOLVED,
            entity_type="risk_flag",
            entity_id=flag.id,
            metadata={"reason": reason, "superseded_by": flag.superseded_by},
            user_id=resolved_by
        )
        log_action(logger, "info", f"Risk flag {flag.id} resolved", user_id=resolved_by,
                   action="risk_flag.resolved", resource=f"borrower:{flag.borrower_id}")

    def _from_dict(self, data: Dict) -> RiskFlag:
        return RiskFlag(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            borrower_id=data['borrower_id'],
            flag_type=RiskFlagType(data['flag_type']),
            origin=RiskFlagOrigin(data['origin']),
            reason=data['reason'],
            amount_at_issue_minor=data['amount_at_issue_minor'],
            loan_id=data.get('loan_id'),
            installment_no=data.get('installment_no'),
            reported_by=data.get('reported_by'),
            proof_hash=data.get('proof_hash'),
            resolved_at=parse_datetime(data.get('resolved_at')),
            resolution_reason=data.get('resolution_reason'),
            resolved_by=data.get('resolved_by'),
            superseded_by=data.get('superseded_by'),
            clears_flag_id=data.get('clears_flag_id')
        )
