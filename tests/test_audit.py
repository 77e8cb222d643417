"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection and integrity verification.
"""

from capped_ledger.storage import InMemoryStorage
from capped_ledger.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditTrail:
    """Test hash-chained audit logging"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def _log_deposit(self, account="alice", amount=5):
        return self.audit_trail.log_event(
            event_type=AuditEventType.DEPOSIT_ACCEPTED,
            entity_type="account",
            entity_id=account,
            metadata={"amount": amount, "balance": amount}
        )

    def test_first_event_starts_chain(self):
        event = self._log_deposit()

        assert event.sequence == 1
        assert event.previous_hash == ""
        assert event.verify_hash()
        assert self.audit_trail.count_events() == 1

    def test_events_are_chained(self):
        first = self._log_deposit()
        second = self._log_deposit(account="bob")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash

    def test_round_trip_through_storage(self):
        event = self._log_deposit()

        stored = AuditEvent.from_dict(self.storage.load("audit_events", event.id))

        assert stored.event_type == AuditEventType.DEPOSIT_ACCEPTED
        assert stored.current_hash == event.current_hash
        assert stored.verify_hash()

    def test_queries(self):
        self._log_deposit("alice")
        self._log_deposit("bob")
        self.audit_trail.log_event(
            event_type=AuditEventType.WITHDRAWAL_ACCEPTED,
            entity_type="account",
            entity_id="alice",
            metadata={"amount": 1, "balance": 4}
        )

        assert len(self.audit_trail.get_events_for_entity("account", "alice")) == 2
        assert len(self.audit_trail.get_events_by_type(AuditEventType.DEPOSIT_ACCEPTED)) == 2
        assert len(self.audit_trail.get_all_events()) == 3
        latest = self.audit_trail.get_all_events(limit=1)
        assert latest[0].event_type == AuditEventType.WITHDRAWAL_ACCEPTED

    def test_integrity_of_untouched_chain(self):
        for _ in range(5):
            self._log_deposit()

        result = self.audit_trail.verify_integrity()

        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_detects_modified_event(self):
        self._log_deposit()
        event = self._log_deposit(amount=7)

        data = self.storage.load("audit_events", event.id)
        data["metadata"]["amount"] = 7000
        self.storage.save("audit_events", event.id, data)

        result = self.audit_trail.verify_integrity()

        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_detects_rehashed_event(self):
        """Recomputing a forged event's hash breaks the link to its successor"""
        self._log_deposit()
        middle = self._log_deposit()
        last = self._log_deposit()

        forged = AuditEvent.from_dict(self.storage.load("audit_events", middle.id))
        forged.metadata["amount"] = 7000
        forged.current_hash = forged.calculate_hash()
        self.storage.save("audit_events", forged.id, forged.to_dict())

        result = self.audit_trail.verify_integrity()

        assert not result["valid"]
        assert result["hash_errors"] == []
        assert [b["event_id"] for b in result["chain_breaks"]] == [last.id]

    def test_chain_head_tracks_newest_event(self):
        assert self.audit_trail.chain_head() == {"sequence": 0, "hash": ""}

        self._log_deposit()
        newest = self._log_deposit()

        assert self.audit_trail.chain_head() == {
            "sequence": 2,
            "hash": newest.current_hash
        }

    def test_detects_head_past_last_event(self):
        """A chain missing its newest events no longer matches the head"""
        first = self._log_deposit()
        self.audit_trail.log_event(
            event_type=AuditEventType.DEPOSIT_ACCEPTED,
            entity_type="account",
            entity_id="bob",
            metadata={"amount": 1, "balance": 1}
        )

        truncated = InMemoryStorage()
        truncated.save("audit_events", first.id, self.storage.load("audit_events", first.id))
        truncated.save("audit_events_head", "head", self.audit_trail.chain_head())

        result = AuditTrail(truncated).verify_integrity()

        assert not result["valid"]
        assert not result["head_matches"]
        assert result["chain_breaks"] == []

    def test_rolled_back_event_is_not_a_parent(self):
        first = self._log_deposit()

        try:
            with self.storage.atomic():
                self._log_deposit()
                raise RuntimeError("operation failed")
        except RuntimeError:
            pass

        assert self.audit_trail.chain_head() == {"sequence": 1, "hash": first.current_hash}
        second = self._log_deposit()

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert self.audit_trail.verify_integrity()["valid"]
