"""
Event System Module

Publish/subscribe dispatcher for the two ledger events. Events are only
dispatched for operations that have committed.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Events emitted by the vault"""
    DEPOSIT_ACCEPTED = "deposit.accepted"
    WITHDRAWAL_ACCEPTED = "withdrawal.accepted"


@dataclass
class EventPayload:
    """Payload for domain events; ordered fields are (event_type, account, amount)"""
    event_type: DomainEvent
    account: str
    amount: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def fields(self) -> Tuple[str, int]:
        """Event fields in declaration order"""
        return (self.account, self.amount)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'account': self.account,
            'amount': self.amount,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Create from dictionary"""
        return cls(
            event_type=DomainEvent(data['event_type']),
            account=data['account'],
            amount=int(data['amount']),
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


def create_deposit_event(account: str, amount: int) -> EventPayload:
    """DepositAccepted(account, amount)"""
    return EventPayload(event_type=DomainEvent.DEPOSIT_ACCEPTED, account=account, amount=amount)


def create_withdrawal_event(account: str, amount: int) -> EventPayload:
    """WithdrawalAccepted(account, amount)"""
    return EventPayload(event_type=DomainEvent.WITHDRAWAL_ACCEPTED, account=account, amount=amount)


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher using publish/subscribe"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("capped_ledger.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
                self.logger.debug(f"Unsubscribed handler {_handler_name(handler)} from {event_type.value}")
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def unsubscribe_all(self, handler: Callable) -> None:
        """Unsubscribe a catch-all handler"""
        with self._lock:
            try:
                self._global_handlers.remove(handler)
                self.logger.debug(f"Unsubscribed global handler {_handler_name(handler)}")
            except ValueError:
                self.logger.warning(f"Global handler {_handler_name(handler)} was not subscribed")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.account}")

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # A subscriber failure never undoes a committed operation
                self.logger.error(f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}")

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
            self.logger.info("All event handlers cleared")

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


class EventLog:
    """Subscriber that keeps every published event, in order"""

    def __init__(self):
        self.events: List[EventPayload] = []

    def __call__(self, event: EventPayload) -> None:
        self.events.append(event)

    def of_type(self, event_type: DomainEvent) -> List[EventPayload]:
        return [e for e in self.events if e.event_type == event_type]
