"""
Tests for lender compliance

Warning ledger, score bands, severity-forced statuses and the payment proof
rejection penalty.
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_core.audit import AuditTrail, AuditEventType
from lending_core.config import LendingConfig
from lending_core.storage import InMemoryStorage
from lending_core.system import LendingSystem
from lending_core.compliance import (
    ComplianceStatus, WarningSeverity, LenderComplianceEngine, status_for_score
)
from lending_core.errors import ValidationError, InvalidStateError, LenderRestrictedError


@pytest.fixture
def system():
    lending = LendingSystem(settings=LendingConfig(storage_backend="memory"), storage=InMemoryStorage())
    yield lending
    lending.close()


def warn(system, severity, lender_id="lender-1"):
    return system.issue_warning(lender_id, "late_disbursement", severity,
                                f"{severity} issued", "Funds sent days after acceptance",
                                issued_by="admin-1")


def create_loan(system, lender_id="lender-1"):
    return system.create_loan(
        borrower_id="borrower-1", lender_id=lender_id, principal_minor=10000,
        base_rate_percent=Decimal('30'), extra_rate_per_installment=Decimal('2'),
        payment_type="installments", installment_count=3, start_date=date(2024, 1, 15)
    )


class TestScoreBands:
    """Test score to status mapping"""

    @pytest.mark.parametrize("score,status", [
        (100, ComplianceStatus.GOOD),
        (80, ComplianceStatus.GOOD),
        (79, ComplianceStatus.WARNING),
        (60, ComplianceStatus.WARNING),
        (59, ComplianceStatus.PROBATION),
        (40, ComplianceStatus.PROBATION),
        (39, ComplianceStatus.SUSPENDED),
        (1, ComplianceStatus.SUSPENDED),
        (0, ComplianceStatus.BANNED),
    ])
    def test_status_for_score(self, score, status):
        assert status_for_score(score) == status

    def test_new_lender_in_good_standing(self, system):
        compliance = system.get_lender_compliance("lender-new")
        assert compliance.compliance_score == 100
        assert compliance.status == ComplianceStatus.GOOD
        assert system.compliance_engine.can_create_loans("lender-new")


class TestWarnings:
    """Test warning issuance"""

    def test_warnings_accumulate_to_suspension(self, system):
        """Probation at 55, then a suspension drops the lender to 25"""
        warn(system, "final_warning")
        warn(system, "warning")
        warn(system, "warning")
        warning = warn(system, "notice")

        assert warning.score_after == 55
        compliance = system.get_lender_compliance("lender-1")
        assert compliance.status == ComplianceStatus.PROBATION
        assert compliance.warning_count == 4
        assert system.compliance_engine.can_create_loans("lender-1")

        suspension = warn(system, "suspension")
        assert suspension.score_before == 55
        assert suspension.score_after == 25
        assert suspension.status_after == ComplianceStatus.SUSPENDED
        assert not system.compliance_engine.can_create_loans("lender-1")

        with pytest.raises(LenderRestrictedError):
            create_loan(system)

    def test_suspension_forces_status(self, system):
        """A suspension suspends even while the score is high"""
        warning = warn(system, WarningSeverity.SUSPENSION)

        assert warning.score_after == 70
        assert warning.status_after == ComplianceStatus.SUSPENDED

    def test_ban_is_final(self, system):
        warn(system, "ban")
        compliance = system.get_lender_compliance("lender-1")

        assert compliance.status == ComplianceStatus.BANNED
        assert compliance.compliance_score == 0
        with pytest.raises(InvalidStateError):
            warn(system, "notice")

    def test_ledger_is_append_only(self, system):
        warn(system, "notice")
        warn(system, "warning")
        warnings = system.get_lender_warnings("lender-1")

        assert [w.severity for w in warnings] == [WarningSeverity.NOTICE, WarningSeverity.WARNING]
        assert [w.score_after for w in warnings] == [95, 85]

    def test_unknown_severity(self, system):
        with pytest.raises(ValidationError):
            warn(system, "reprimand")

    def test_title_required(self, system):
        with pytest.raises(ValidationError):
            system.issue_warning("lender-1", "late_disbursement", "notice", " ", "")

    def test_status_change_audited(self, system):
        warn(system, "suspension")
        events = system.audit_trail.get_events_by_type(AuditEventType.COMPLIANCE_STATUS_CHANGED)

        assert len(events) == 1
        assert events[0].metadata["new_status"] == "suspended"


class TestProofPenalty:
    """Test the payment proof rejection penalty"""

    def setup_method(self):
        storage = InMemoryStorage()
        self.engine = LenderComplianceEngine(storage, AuditTrail(storage), min_proofs_for_rate=5)

    def _resolve(self, approved, rejected):
        for _ in range(approved):
            self.engine.record_proof_outcome("lender-1", approved=True)
        for _ in range(rejected):
            self.engine.record_proof_outcome("lender-1", approved=False)
        return self.engine.get_compliance("lender-1")

    def test_below_minimum_sample(self):
        """Four rejections out of four carry no penalty yet"""
        assert self._resolve(0, 4).compliance_score == 100

    @pytest.mark.parametrize("approved,rejected,score", [
        (2, 3, 80),     # 60%
        (3, 2, 90),     # 40%
        (4, 1, 95),     # 20%
        (9, 1, 100),    # 10%
    ])
    def test_rejection_rate(self, approved, rejected, score):
        assert self._resolve(approved, rejected).compliance_score == score

    def test_penalty_recovers(self):
        """Later approvals lower the rate and lift the score"""
        self._resolve(2, 3)
        assert self._resolve(5, 0).compliance_score == 95

    def test_penalty_stacks_with_warnings(self, system):
        warn(system, "warning")
        for approved in (False, False, False, True, True):
            system.compliance_engine.record_proof_outcome("lender-1", approved=approved)

        compliance = system.get_lender_compliance("lender-1")
        assert compliance.compliance_score == 70
        assert compliance.status == ComplianceStatus.WARNING
