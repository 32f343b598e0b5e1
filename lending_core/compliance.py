"""
Lender Compliance Module

Tracks a 0-100 compliance score per lender. The score is recomputed from the
append-only warning ledger and the lender's payment-proof outcomes:

    score = 100 - sum(severity weights) - proof rejection penalty

Status is the worse of the score band and the harshest severity ever issued.
A banned lender stays banned.
"""

from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, parse_datetime, utc_now
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, InvalidStateError, LenderRestrictedError
from .logging_config import get_logger, log_action


logger = get_logger("compliance")


class ComplianceStatus(Enum):
    """Lender standing, mildest first"""
    GOOD = "good"
    WARNING = "warning"
    PROBATION = "probation"
    SUSPENDED = "suspended"
    BANNED = "banned"

    @property
    def rank(self) -> int:
        return list(ComplianceStatus).index(self)

    @property
    def can_lend(self) -> bool:
        return self not in (ComplianceStatus.SUSPENDED, ComplianceStatus.BANNED)


class WarningSeverity(Enum):
    """Severity of a lender warning, mildest first"""
    NOTICE = "notice"
    WARNING = "warning"
    FINAL_WARNING = "final_warning"
    SUSPENSION = "suspension"
    BAN = "ban"

    @property
    def rank(self) -> int:
        return list(WarningSeverity).index(self)


SEVERITY_WEIGHTS = {
    WarningSeverity.NOTICE: 5,
    WarningSeverity.WARNING: 10,
    WarningSeverity.FINAL_WARNING: 20,
    WarningSeverity.SUSPENSION: 30,
    WarningSeverity.BAN: 100,
}

# Severities that force a status regardless of score
SEVERITY_STATUS = {
    WarningSeverity.SUSPENSION: ComplianceStatus.SUSPENDED,
    WarningSeverity.BAN: ComplianceStatus.BANNED,
}

# (rejection rate above, penalty), checked highest first
REJECTION_PENALTIES = [
    (0.50, 20),
    (0.30, 10),
    (0.15, 5),
]

MAX_SCORE = 100


def status_for_score(score: int) -> ComplianceStatus:
    """Map a compliance score to its band"""
    if score >= 80:
        return ComplianceStatus.GOOD
    if score >= 60:
        return ComplianceStatus.WARNING
    if score >= 40:
        return ComplianceStatus.PROBATION
    if score >= 1:
        return ComplianceStatus.SUSPENDED
    return ComplianceStatus.BANNED


@dataclass
class LenderCompliance(StorageRecord):
    """Current compliance standing of a lender"""
    lender_id: str
    compliance_score: int = MAX_SCORE
    status: ComplianceStatus = ComplianceStatus.GOOD
    warning_count: int = 0
    payment_proofs_received: int = 0
    payment_proofs_approved: int = 0
    payment_proofs_rejected: int = 0
    highest_severity: Optional[WarningSeverity] = None
    last_warning_at: Optional[datetime] = None

    @property
    def rejection_rate(self) -> float:
        resolved = self.payment_proofs_approved + self.payment_proofs_rejected
        if not resolved:
            return 0.0
        return self.payment_proofs_rejected / resolved


@dataclass
class LenderWarning(StorageRecord):
    """Warning issued against a lender (append-only)"""
    lender_id: str
    warning_type: str
    severity: WarningSeverity
    title: str
    description: str
    issued_by: Optional[str]
    score_before: int
    score_after: int
    status_after: ComplianceStatus


class LenderComplianceEngine:
    """
    Maintains lender compliance scores and the warning ledger
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 min_proofs_for_rate: int = 5):
        self.storage = storage
        self.audit_trail = audit_trail
        self.min_proofs_for_rate = min_proofs_for_rate

        self.compliance_table = "lender_compliance"
        self.warnings_table = "lender_warnings"

    def get_compliance(self, lender_id: str) -> LenderCompliance:
        """Current standing; lenders with no record are in good standing"""
        data = self.storage.load(self.compliance_table, lender_id)
        if data:
            return self._compliance_from_dict(data)
        now = utc_now()
        return LenderCompliance(id=lender_id, created_at=now, updated_at=now, lender_id=lender_id)

    def get_warnings(self, lender_id: str) -> List[LenderWarning]:
        warnings = [
            self._warning_from_dict(data)
            for data in self.storage.find(self.warnings_table, {'lender_id': lender_id})
        ]
        warnings.sort(key=lambda w: w.created_at)
        return warnings

    def can_create_loans(self, lender_id: str) -> bool:
        return self.get_compliance(lender_id).status.can_lend

    def ensure_can_lend(self, lender_id: str) -> None:
        """
        Raises:
            LenderRestrictedError: If the lender is suspended or banned
        """
        compliance = self.get_compliance(lender_id)
        if not compliance.status.can_lend:
            logger.warning("Lender %s refused: status %s", lender_id, compliance.status.value)
            raise LenderRestrictedError(
                f"Lender {lender_id} is {compliance.status.value} and cannot create loans"
            )

    def issue_warning(self, lender_id: str, warning_type: str,
                      severity: WarningSeverity, title: str, description: str,
                      issued_by: Optional[str] = None) -> LenderWarning:
        """
        Issue a warning and recompute the lender's score and status

        Args:
            lender_id: Lender receiving the warning
            warning_type: Category, e.g. "late_disbursement"
            severity: Warning severity (drives the score deduction)
            title: Short title shown to the lender
            description: Full description
            issued_by: Admin issuing the warning

        Returns:
            Created LenderWarning with the score before and after

        Raises:
            ValidationError: If severity is unknown or title/type is empty
            InvalidStateError: If the lender is banned
        """
        try:
            severity = WarningSeverity(severity)
        except ValueError:
            raise ValidationError(f"Unknown warning severity: {severity}")
        if not warning_type or not warning_type.strip():
            raise ValidationError("Warning type is required")
        if not title or not title.strip():
            raise ValidationError("Warning title is required")

        with self.storage.atomic():
            compliance = self.get_compliance(lender_id)
            if compliance.status == ComplianceStatus.BANNED:
                logger.warning("Refused warning for banned lender %s", lender_id)
                raise InvalidStateError(f"Lender {lender_id} is banned; no further warnings can be issued")

            now = utc_now()
            score_before = compliance.compliance_score
            previous_status = compliance.status

            compliance.warning_count += 1
            compliance.last_warning_at = now
            if compliance.highest_severity is None or severity.rank > compliance.highest_severity.rank:
                compliance.highest_severity = severity

            weights = sum(SEVERITY_WEIGHTS[w.severity] for w in self.get_warnings(lender_id))
            self._recompute(compliance, weights + SEVERITY_WEIGHTS[severity])

            warning = LenderWarning(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                lender_id=lender_id,
                warning_type=warning_type.strip(),
                severity=severity,
                title=title.strip(),
                description=description or "",
                issued_by=issued_by,
                score_before=score_before,
                score_after=compliance.compliance_score,
                status_after=compliance.status
            )
            self.storage.insert(self.warnings_table, warning.id, warning.to_dict())
            self._save(compliance)

            self.audit_trail.log_event(
                event_type=AuditEventType.LENDER_WARNING_ISSUED,
                entity_type="lender",
                entity_id=lender_id,
                metadata={
                    "warning_id": warning.id,
                    "severity": severity.value,
                    "score_before": score_before,
                    "score_after": compliance.compliance_score
                },
                user_id=issued_by
            )
            self._audit_status_change(compliance, previous_status, issued_by)

        log_action(
            logger, "info", f"Warning issued to lender {lender_id}",
            user_id=issued_by, action="lender.warning_issued", resource=f"lender:{lender_id}",
            extra={"severity": severity.value, "score": compliance.compliance_score,
                   "status": compliance.status.value}
        )
        return warning

    def record_proof_received(self, lender_id: str) -> LenderCompliance:
        """Count a payment proof submitted to this lender"""
        with self.storage.atomic():
            compliance = self.get_compliance(lender_id)
            compliance.payment_proofs_received += 1
            self._save(compliance)
        return compliance

    def record_proof_outcome(self, lender_id: str, approved: bool) -> LenderCompliance:
        """Count a resolved payment proof and re-apply the rejection penalty"""
        with self.storage.atomic():
            compliance = self.get_compliance(lender_id)
            previous_status = compliance.status
            if approved:
                compliance.payment_proofs_approved += 1
            else:
                compliance.payment_proofs_rejected += 1

            weights = sum(SEVERITY_WEIGHTS[w.severity] for w in self.get_warnings(lender_id))
            self._recompute(compliance, weights)
            self._save(compliance)
            self._audit_status_change(compliance, previous_status, None)
        return compliance

    def proof_penalty(self, compliance: LenderCompliance) -> int:
        resolved = compliance.payment_proofs_approved + compliance.payment_proofs_rejected
        if resolved < self.min_proofs_for_rate:
            return 0
        rate = compliance.rejection_rate
        for threshold, penalty in REJECTION_PENALTIES:
            if rate > threshold:
                return penalty
        return 0

    def _recompute(self, compliance: LenderCompliance, warning_weights: int) -> None:
        score = max(0, MAX_SCORE - warning_weights - self.proof_penalty(compliance))

        status = status_for_score(score)
        forced = SEVERITY_STATUS.get(compliance.highest_severity)
        if forced and forced.rank > status.rank:
            status = forced
        if compliance.status == ComplianceStatus.BANNED:
            status = ComplianceStatus.BANNED

        compliance.compliance_score = score
        compliance.status = status
        compliance.touch()

    def _audit_status_change(self, compliance: LenderCompliance,
                             previous_status: ComplianceStatus, user_id: Optional[str]) -> None:
        if compliance.status == previous_status:
            return
        self.audit_trail.log_event(
            event_type=AuditEventType.COMPLIANCE_STATUS_CHANGED,
            entity_type="lender",
            entity_id=compliance.lender_id,
            metadata={
                "old_status": previous_status.value,
                "new_status": compliance.status.value,
                "score": compliance.compliance_score
            },
            user_id=user_id
        )
        log_action(
            logger, "warning", f"Lender {compliance.lender_id} is now {compliance.status.value}",
            action="lender.status_changed", resource=f"lender:{compliance.lender_id}",
            extra={"old_status": previous_status.value, "score": compliance.compliance_score}
        )

    def _save(self, compliance: LenderCompliance) -> None:
        self.storage.save(self.compliance_table, compliance.id, compliance.to_dict())

    def _compliance_from_dict(self, data: Dict) -> LenderCompliance:
        return LenderCompliance(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            lender_id=data['lender_id'],
            compliance_score=data['compliance_score'],
            status=ComplianceStatus(data['status']),
            warning_count=data['warning_count'],
            payment_proofs_received=data['payment_proofs_received'],
            payment_proofs_approved=data['payment_proofs_approved'],
            payment_proofs_rejected=data['payment_proofs_rejected'],
            highest_severity=WarningSeverity(data['highest_severity']) if data.get('highest_severity') else None,
            last_warning_at=parse_datetime(data.get('last_warning_at'))
        )

    def _warning_from_dict(self, data: Dict) -> LenderWarning:
        return LenderWarning(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            lender_id=data['lender_id'],
            warning_type=data['warning_type'],
            severity=WarningSeverity(data['severity']),
            title=data['title'],
            description=data['description'],
            issued_by=data.get('issued_by'),
            score_before=data['score_before'],
            score_after=data['score_after'],
            status_after=ComplianceStatus(data['status_after'])
        )
