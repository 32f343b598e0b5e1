"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every state change in the lending engine is logged here.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface, StorageRecord, _to_json_value, parse_datetime, utc_now


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan lifecycle
    LOAN_CREATED = "loan_created"
    LOAN_OFFER_ACCEPTED = "loan_offer_accepted"
    LOAN_OFFER_DECLINED = "loan_offer_declined"
    LOAN_ACTIVATED = "loan_activated"
    LOAN_COMPLETED = "loan_completed"
    LOAN_DEFAULTED = "loan_defaulted"
    LOAN_WRITTEN_OFF = "loan_written_off"
    SCHEDULE_CREATED = "schedule_created"

    # Disbursement
    DISBURSEMENT_SUBMITTED = "disbursement_submitted"
    DISBURSEMENT_CONFIRMED = "disbursement_confirmed"
    DISBURSEMENT_DISPUTED = "disbursement_disputed"

    # Payments
    PAYMENT_RECORDED = "payment_recorded"
    OVERPAYMENT_RECORDED = "overpayment_recorded"
    PAYMENT_PROOF_SUBMITTED = "payment_proof_submitted"
    PAYMENT_PROOF_APPROVED = "payment_proof_approved"
    PAYMENT_PROOF_REJECTED = "payment_proof_rejected"

    # Risk
    RISK_FLAG_RAISED = "risk_flag_raised"
    RISK_FLAG_RESOLVED = "risk_flag_resolved"

    # Lender compliance
    LENDER_WARNING_ISSUED = "lender_warning_issued"
    COMPLIANCE_STATUS_CHANGED = "compliance_status_changed"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int  # Position in the chain, 1-based
    event_type: AuditEventType
    entity_type: str  # loan, installment, payment, risk_flag, lender, ...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        if self.metadata:
            self.metadata = _to_json_value(self.metadata)

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        # Deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = parse_datetime(data['created_at'])
        data['updated_at'] = parse_datetime(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._head: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()
        storage.add_rollback_listener(self._forget_head)

    def _forget_head(self) -> None:
        self._head = None

    def _chain_head(self) -> Dict[str, Any]:
        """Sequence and hash of the most recent stored event"""
        if self._head is None:
            events = self.storage.load_all(self.table_name)
            if events:
                latest = max(events, key=lambda e: e.get('sequence', 0))
                self._head = {'sequence': latest['sequence'], 'current_hash': latest['current_hash']}
            else:
                self._head = {'sequence': 0, 'current_hash': ""}
        return self._head

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        The chain head is cached and re-read from storage after a rollback,
        so an event rolled back with its enclosing atomic block never
        leaves a gap.

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of the actor who initiated the action

        Returns:
            Created AuditEvent
        """
        with self.storage.atomic(), self._lock:
            head = self._chain_head() if self.enabled else {'sequence': 0, 'current_hash': ""}
            now = utc_now()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=head['sequence'] + 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head['current_hash'],
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            if self.enabled:
                self.storage.insert(self.table_name, event.id, event.to_dict())
                self._head = {'sequence': event.sequence, 'current_hash': event.current_hash}

            return event

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Get audit events for one entity, oldest first"""
        events = [
            AuditEvent.from_dict(data) for data in self.storage.find(
                self.table_name, {'entity_type': entity_type, 'entity_id': entity_id}
            )
        ]
        events.sort(key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    def get_events_by_type(self, event_type: AuditEventType,
                           start_time: Optional[datetime] = None,
                           end_time: Optional[datetime] = None,
                           limit: Optional[int] = None) -> List[AuditEvent]:
        """Get audit events by type within an optional time range"""
        events = [e for e in self._load_events() if e.event_type == event_type]
        if start_time:
            events = [e for e in events if e.created_at >= start_time]
        if end_time:
            events = [e for e in events if e.created_at <= end_time]
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': [],
            'details': {}
        }

        events = self._load_events()
        if not events:
            return result

        result['total_events'] = len(events)

        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })

        previous_hash = ""
        for i, event in enumerate(events):
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        result['details'] = {
            'first_event_time': events[0].created_at.isoformat(),
            'last_event_time': events[-1].created_at.isoformat(),
            'event_types': sorted(set(e.event_type.value for e in events)),
            'entity_types': sorted(set(e.entity_type for e in events))
        }

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
