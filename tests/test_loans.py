"""
Tests for the loan lifecycle

Offer, acceptance, disbursement proof and confirmation, completion and the
exceptional exits. Every transition must leave a valid audit chain.
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_core.config import LendingConfig
from lending_core.storage import InMemoryStorage
from lending_core.system import LendingSystem
from lending_core.loans import LoanStatus, PaymentMethod
from lending_core.audit import AuditEventType
from lending_core.compliance import WarningSeverity
from lending_core.errors import (
    ValidationError, NotFoundError, InvalidStateError, LoanClosedError,
    ConflictError, ActiveLoanExists, LenderRestrictedError
)


START = date(2024, 1, 15)


@pytest.fixture
def system():
    lending = LendingSystem(settings=LendingConfig(storage_backend="memory"), storage=InMemoryStorage())
    yield lending
    lending.close()


def create_loan(system, borrower_id="borrower-1", lender_id="lender-1", **overrides):
    params = dict(
        principal_minor=10000,
        base_rate_percent=Decimal('30'),
        extra_rate_per_installment=Decimal('2'),
        payment_type="installments",
        installment_count=3,
        currency="USD",
        start_date=START
    )
    params.update(overrides)
    return system.create_loan(borrower_id=borrower_id, lender_id=lender_id, **params)


class TestLoanCreation:
    """Test loan origination"""

    def test_create_without_acceptance_is_active(self, system):
        """Tracked borrowers skip the offer; schedule exists immediately"""
        loan = create_loan(system)

        assert loan.status == LoanStatus.ACTIVE
        assert loan.total_amount_minor == 13400
        assert loan.interest_minor == 3400
        assert loan.total_interest_percent == Decimal('34')
        assert loan.end_date == date(2024, 4, 15)
        assert loan.activated_at is not None

        schedule = system.get_schedule(loan.id)
        assert [i.amount_due_minor for i in schedule] == [4467, 4467, 4466]
        assert system.get_balance(loan.id) == 13400

    def test_loan_persists(self, system):
        """Loaded loan equals the created one"""
        loan = create_loan(system, purpose="Stock for market stall")
        loaded = system.get_loan(loan.id)

        assert loaded.id == loan.id
        assert loaded.currency.code == "USD"
        assert loaded.base_rate_percent == Decimal('30')
        assert loaded.purpose == "Stock for market stall"
        assert loaded.status == LoanStatus.ACTIVE

    def test_create_with_acceptance_is_pending_offer(self, system):
        """No schedule exists until the borrower accepts"""
        loan = create_loan(system, requires_borrower_acceptance=True)

        assert loan.status == LoanStatus.PENDING_OFFER
        assert system.get_schedule(loan.id) == []

    def test_one_open_loan_per_borrower(self, system):
        """Second loan for the same borrower is rejected"""
        create_loan(system)
        with pytest.raises(ActiveLoanExists):
            create_loan(system, lender_id="lender-2")

    def test_pending_offer_blocks_new_loan(self, system):
        create_loan(system, requires_borrower_acceptance=True)
        with pytest.raises(ActiveLoanExists):
            create_loan(system)

    def test_new_loan_after_decline(self, system):
        """Declined offers are terminal and free the borrower"""
        loan = create_loan(system, requires_borrower_acceptance=True)
        system.decline_offer(loan.id, reason="Found cheaper credit")

        second = create_loan(system, lender_id="lender-2")
        assert second.status == LoanStatus.ACTIVE

    def test_other_borrowers_unaffected(self, system):
        create_loan(system, borrower_id="borrower-1")
        loan = create_loan(system, borrower_id="borrower-2")
        assert loan.borrower_id == "borrower-2"

    def test_self_lending_rejected(self, system):
        with pytest.raises(ValidationError):
            create_loan(system, borrower_id="same", lender_id="same")

    def test_unknown_currency(self, system):
        with pytest.raises(ValidationError):
            create_loan(system, currency="XYZ")

    def test_invalid_terms_create_nothing(self, system):
        """Rejected terms leave no loan behind"""
        with pytest.raises(ValidationError):
            create_loan(system, base_rate_percent=Decimal('150'))
        assert system.loan_manager.get_borrower_loans("borrower-1") == []

    def test_restricted_lender_cannot_lend(self, system):
        """Suspended lenders are refused before any write"""
        system.issue_warning("lender-1", "fraud_report", WarningSeverity.SUSPENSION,
                             "Suspended pending review", "")
        with pytest.raises(LenderRestrictedError):
            create_loan(system)
        assert system.loan_manager.get_borrower_loans("borrower-1") == []

    def test_unknown_loan(self, system):
        with pytest.raises(NotFoundError):
            system.get_loan("missing")


class TestOfferAcceptance:
    """Test offer acceptance and decline"""

    def test_accept_generates_schedule_from_acceptance_date(self, system):
        loan = create_loan(system, requires_borrower_acceptance=True)
        accepted = system.accept_offer(loan.id, accepted_on=date(2024, 3, 1), accepted_by="borrower-1")

        assert accepted.status == LoanStatus.PENDING_DISBURSEMENT
        assert accepted.start_date == date(2024, 3, 1)
        assert accepted.end_date == date(2024, 6, 1)
        assert accepted.accepted_at is not None

        schedule = system.get_schedule(loan.id)
        assert [i.due_date for i in schedule] == [date(2024, 4, 1), date(2024, 5, 1), date(2024, 6, 1)]

    def test_accept_twice(self, system):
        loan = create_loan(system, requires_borrower_acceptance=True)
        system.accept_offer(loan.id, accepted_on=START)
        with pytest.raises(InvalidStateError):
            system.accept_offer(loan.id, accepted_on=START)

    def test_decline_is_terminal(self, system):
        loan = create_loan(system, requires_borrower_acceptance=True)
        declined = system.decline_offer(loan.id, reason="No longer needed")

        assert declined.status == LoanStatus.DECLINED
        assert declined.decline_reason == "No longer needed"
        with pytest.raises(LoanClosedError):
            system.accept_offer(loan.id)


class TestDisbursement:
    """Test the lender proof / borrower confirmation handshake"""

    def _accepted_loan(self, system):
        loan = create_loan(system, requires_borrower_acceptance=True)
        return system.accept_offer(loan.id, accepted_on=START)

    def test_confirm_activates_loan(self, system):
        loan = self._accepted_loan(system)
        proof = system.submit_disbursement_proof(loan.id, 10000, "mobile_money", reference="MM-1234")

        assert proof.lender_proof_method == PaymentMethod.MOBILE_MONEY
        assert proof.lender_submitted_at is not None

        active = system.confirm_disbursement(loan.id, notes="Received in full")
        assert active.status == LoanStatus.ACTIVE
        assert active.activated_at is not None
        assert system.get_disbursement_proof(loan.id).borrower_confirmed_at is not None

    def test_confirm_requires_proof(self, system):
        """Borrower cannot confirm before the lender submits"""
        loan = self._accepted_loan(system)
        with pytest.raises(InvalidStateError):
            system.confirm_disbursement(loan.id)
        assert system.get_loan(loan.id).status == LoanStatus.PENDING_DISBURSEMENT

    def test_duplicate_proof(self, system):
        loan = self._accepted_loan(system)
        system.submit_disbursement_proof(loan.id, 10000, "cash")
        with pytest.raises(ConflictError):
            system.submit_disbursement_proof(loan.id, 10000, "cash")

    def test_proof_requires_accepted_offer(self, system):
        loan = create_loan(system, requires_borrower_acceptance=True)
        with pytest.raises(InvalidStateError):
            system.submit_disbursement_proof(loan.id, 10000, "cash")

    def test_proof_method_validated(self, system):
        loan = self._accepted_loan(system)
        with pytest.raises(ValidationError):
            system.submit_disbursement_proof(loan.id, 10000, "cheque")

    def test_disputed_disbursement_cannot_be_confirmed(self, system):
        loan = self._accepted_loan(system)
        system.submit_disbursement_proof(loan.id, 10000, "bank_transfer")
        proof = system.dispute_disbursement(loan.id, "Nothing arrived in my account")

        assert proof.borrower_disputed
        with pytest.raises(InvalidStateError):
            system.confirm_disbursement(loan.id)
        with pytest.raises(InvalidStateError):
            system.dispute_disbursement(loan.id, "Still nothing")

    def test_dispute_requires_reason(self, system):
        loan = self._accepted_loan(system)
        system.submit_disbursement_proof(loan.id, 10000, "cash")
        with pytest.raises(ValidationError):
            system.dispute_disbursement(loan.id, "  ")


class TestTerminalStates:
    """Test write-off and terminal state enforcement"""

    def test_write_off_active_loan(self, system):
        loan = create_loan(system)
        written_off = system.write_off_loan(loan.id, "Borrower emigrated", written_off_by="lender-1")

        assert written_off.status == LoanStatus.WRITTEN_OFF
        assert written_off.write_off_reason == "Borrower emigrated"

    def test_write_off_requires_reason(self, system):
        loan = create_loan(system)
        with pytest.raises(ValidationError):
            system.write_off_loan(loan.id, "")

    def test_terminal_loans_refuse_transitions(self, system):
        """A terminal loan never moves again"""
        loan = create_loan(system)
        system.write_off_loan(loan.id, "Uncollectible")

        with pytest.raises(LoanClosedError):
            system.write_off_loan(loan.id, "Again")
        with pytest.raises(LoanClosedError):
            system.record_payment(loan.id, 100)

    def test_completion_only_at_zero_balance(self, system):
        loan = create_loan(system)
        assert system.loan_manager.evaluate_completion(loan.id) is False
        assert system.get_loan(loan.id).status == LoanStatus.ACTIVE

    def test_completion_check_is_idempotent(self, system):
        """Re-checking a completed loan changes nothing and logs nothing"""
        loan = create_loan(system)
        system.record_payment(loan.id, 13400)
        completed = system.get_loan(loan.id)
        completions = system.audit_trail.get_events_by_type(AuditEventType.LOAN_COMPLETED)
        assert len(completions) == 1

        assert system.loan_manager.evaluate_completion(loan.id) is False

        again = system.get_loan(loan.id)
        assert again.status == LoanStatus.COMPLETED
        assert again.completed_at == completed.completed_at
        assert len(system.audit_trail.get_events_by_type(AuditEventType.LOAN_COMPLETED)) == 1

    def test_lifecycle_keeps_audit_chain_valid(self, system):
        loan = create_loan(system, requires_borrower_acceptance=True)
        system.accept_offer(loan.id, accepted_on=START)
        system.submit_disbursement_proof(loan.id, 10000, "cash")
        system.confirm_disbursement(loan.id)
        system.record_payment(loan.id, 13400)

        result = system.verify_audit_trail()
        assert result['valid']
        assert result['total_events'] >= 6
        assert "loan_completed" in result['details']['event_types']
