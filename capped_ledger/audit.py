"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Audit events are written inside the same atomic block as the mutation they
describe, so a rolled-back operation leaves no audit record.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface


class AuditEventType(Enum):
    """Types of audit events"""
    VAULT_INITIALIZED = "vault_initialized"
    DEPOSIT_ACCEPTED = "deposit_accepted"
    WITHDRAWAL_ACCEPTED = "withdrawal_accepted"


@dataclass
class AuditEvent:
    """
    Immutable audit event with hash chaining for tamper detection
    """
    id: str
    created_at: datetime
    event_type: AuditEventType
    entity_type: str  # "vault" or "account"
    entity_id: str
    sequence: int     # Position in the chain, starting at 1
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection

    The chain head (last sequence number and hash) lives in a single record
    next to the events and is rewritten with each event, so appending costs
    the same however long the chain is and a rollback restores both together.
    Not locked: callers serialize appends, as CappedVault does with its
    operation lock.
    """

    HEAD_KEY = "head"

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self.head_table = f"{table_name}_head"

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def chain_head(self) -> Dict[str, Any]:
        """Sequence and hash of the newest event; sequence 0 for an empty chain"""
        head = self.storage.load(self.head_table, self.HEAD_KEY)
        if head is None:
            return {'sequence': 0, 'hash': ""}
        return head

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """Log an audit event with hash chaining"""
        head = self.chain_head()

        event = AuditEvent(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc),
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            sequence=head['sequence'] + 1,
            previous_hash=head['hash'],
            current_hash="",  # Calculated below
            metadata=metadata or {}
        )
        event.current_hash = event.calculate_hash()

        with self.storage.atomic():
            self.storage.save(self.table_name, event.id, event.to_dict())
            self.storage.save(self.head_table, self.HEAD_KEY, {
                'sequence': event.sequence,
                'hash': event.current_hash
            })
        return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All audit events for one entity, oldest first"""
        return [
            e for e in self._load_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        """All audit events of one type, oldest first"""
        return [e for e in self._load_events() if e.event_type == event_type]

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        """All audit events, oldest first; limit keeps the most recent N"""
        events = self._load_events()
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
            'head_matches': True
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })

            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        # A dropped tail leaves the head pointing past the last stored event
        head = self.chain_head()
        expected = (events[-1].sequence, events[-1].current_hash) if events else (0, "")
        if (head['sequence'], head['hash']) != expected:
            result['valid'] = False
            result['head_matches'] = False

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
