"""
Capped Vault

Entry points for depositing into and withdrawing from the capped ledger.
Each operation is one atomic unit: guards run first, then ledger and counter
mutations, then (for withdrawals) the payout. Any failure rolls back every
mutation of the operation, and events are only dispatched once the outermost
operation has committed.
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, LedgerSettings, get_config
from .errors import InvalidConfig, LedgerError, TransferFailed
from .events import EventDispatcher, EventPayload, create_deposit_event, create_withdrawal_event
from .guards import check_amount, check_deposit, check_withdrawal
from .ledger import Ledger
from .logging_config import get_logger, log_action, setup_logging
from .stats import StatsRecorder
from .storage import StorageInterface, InMemoryStorage, create_storage
from .transfers import TransferExecutor, RecordingTransferExecutor, normalize_outcome


class CappedVault:
    """
    Custodial ledger with a global capacity and a per-withdrawal threshold

    The account argument of every operation is the caller's identity; a
    withdrawal can only ever debit the caller's own balance.
    """

    CONFIG_KEY = "config"

    def __init__(
        self,
        config: LedgerConfig,
        storage: Optional[StorageInterface] = None,
        transfer_executor: Optional[TransferExecutor] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        audit_trail: Optional[AuditTrail] = None
    ):
        if not isinstance(config, LedgerConfig):
            raise TypeError("CappedVault requires a LedgerConfig from initialize()")

        self.config = config
        self.storage = storage if storage is not None else InMemoryStorage()
        self.ledger = Ledger(self.storage)
        self.stats = StatsRecorder(self.storage)
        self.transfer_executor = transfer_executor or RecordingTransferExecutor()
        self.event_dispatcher = event_dispatcher or EventDispatcher()
        self.audit_trail = audit_trail
        self.config_table = "vault_config"
        self.logger = get_logger("capped_ledger.vault")

        # Serializes operations; re-entrant so a payout may call back in
        self._lock = threading.RLock()
        self._depth = 0
        self._pending_events: List[EventPayload] = []

        self._bind_config()

    @property
    def capacity(self) -> int:
        return self.config.capacity

    @property
    def withdrawal_threshold(self) -> int:
        return self.config.withdrawal_threshold

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def deposit(self, account: str, amount: int) -> int:
        """
        Explicit deposit into the caller's balance

        Args:
            account: Caller identity
            amount: Positive integer amount

        Returns:
            The caller's new balance

        Raises:
            AmountRejected: amount is not a positive integer
            DepositRejected: resulting total held value would exceed capacity
        """
        return self._accept_deposit(account, amount, source="deposit")

    def receive(self, account: str, amount: int) -> int:
        """
        Unsolicited inbound transfer, booked exactly like a deposit
        """
        return self._accept_deposit(account, amount, source="inbound_transfer")

    def withdraw(self, account: str, amount: int) -> int:
        """
        Withdraw from the caller's own balance and pay the amount out

        The debit and counter increment are applied before the payout, so a
        payout that calls back into the vault sees the reduced balance.

        Args:
            account: Caller identity
            amount: Positive integer amount

        Returns:
            The caller's new balance

        Raises:
            AmountRejected: amount is not a positive integer
            WithdrawalRejected: amount exceeds the threshold or the balance
            TransferFailed: the payout failed; nothing was changed
        """
        try:
            with self._operation():
                self._raise_if(check_amount(account, amount))
                balance = self.ledger.balance_of(account)
                self._raise_if(check_withdrawal(amount, balance, self.config.withdrawal_threshold, account))

                new_balance = self.ledger.debit(account, amount)
                self.stats.record_withdrawal()
                self._audit(AuditEventType.WITHDRAWAL_ACCEPTED, account, amount, new_balance)

                self._pay_out(account, amount)
                self._pending_events.append(create_withdrawal_event(account, amount))
        except LedgerError as e:
            self._log_rejection("withdraw", e)
            raise

        log_action(
            self.logger, "info", "Withdrawal accepted",
            account=account, action="withdraw", amount=amount,
            extra={"balance": new_balance, "total_held_value": self.total_held_value()}
        )
        return new_balance

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self.ledger.balance_of(account)

    def total_held_value(self) -> int:
        with self._lock:
            return self.ledger.total_held_value()

    def deposit_count(self) -> int:
        with self._lock:
            return self.stats.deposit_count()

    def withdrawal_count(self) -> int:
        with self._lock:
            return self.stats.withdrawal_count()

    def remaining_capacity(self) -> int:
        """Largest deposit that would currently be accepted"""
        with self._lock:
            return self.config.capacity - self.ledger.total_held_value()

    def balances(self) -> Dict[str, int]:
        with self._lock:
            return self.ledger.balances()

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Check ledger invariants and, when enabled, the audit chain
        """
        with self._lock:
            result = self.ledger.verify_integrity(self.config.capacity)
            result['deposit_count'] = self.stats.deposit_count()
            result['withdrawal_count'] = self.stats.withdrawal_count()

            if self.audit_trail is not None:
                audit = self.audit_trail.verify_integrity()
                result['audit'] = audit
                if not audit['valid']:
                    result['valid'] = False
                    result['errors'].append("audit chain is broken")

            return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self):
        """
        One atomic unit of work

        Nested operations (a payout re-entering the vault) become savepoints
        of the outer one. Events queued inside are dropped on failure and
        dispatched only when the outermost operation commits.
        """
        with self._lock:
            self._depth += 1
            mark = len(self._pending_events)
            try:
                with self.storage.atomic():
                    yield
            except BaseException:
                del self._pending_events[mark:]
                raise
            finally:
                self._depth -= 1

            if self._depth == 0:
                events, self._pending_events = self._pending_events, []
                for event in events:
                    self.event_dispatcher.publish(event)

    def _accept_deposit(self, account: str, amount: int, source: str) -> int:
        try:
            with self._operation():
                self._raise_if(check_amount(account, amount))
                proposed_total = self.ledger.total_held_value() + amount
                self._raise_if(check_deposit(proposed_total, self.config.capacity, account, amount))

                new_balance = self.ledger.credit(account, amount)
                self.stats.record_deposit()
                self._audit(AuditEventType.DEPOSIT_ACCEPTED, account, amount, new_balance, source=source)
                self._pending_events.append(create_deposit_event(account, amount))
        except LedgerError as e:
            self._log_rejection(source, e)
            raise

        log_action(
            self.logger, "info", "Deposit accepted",
            account=account, action=source, amount=amount,
            extra={"balance": new_balance, "total_held_value": self.total_held_value()}
        )
        return new_balance

    def _pay_out(self, account: str, amount: int) -> None:
        try:
            result = self.transfer_executor.pay_out(account, amount)
        except Exception as e:
            raise TransferFailed(e, account, amount) from e

        success, diagnostic = normalize_outcome(result)
        if not success:
            raise TransferFailed(diagnostic, account, amount)

    @staticmethod
    def _raise_if(error: Optional[LedgerError]) -> None:
        if error is not None:
            raise error

    def _audit(self, event_type: AuditEventType, account: str, amount: int,
               balance: int, **metadata: Any) -> None:
        if self.audit_trail is None:
            return
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="account",
            entity_id=account,
            metadata={"amount": amount, "balance": balance, **metadata}
        )

    def _log_rejection(self, action: str, error: LedgerError) -> None:
        level = "error" if isinstance(error, TransferFailed) else "warning"
        log_action(
            self.logger, level, f"{action} rejected: {error.message}",
            account=getattr(error, "account", None), action=action,
            amount=getattr(error, "amount", None), extra=error.to_dict()
        )

    def _bind_config(self) -> None:
        """
        Record the bounds on first use of a store; refuse a store that was
        created with different bounds
        """
        stored = self.storage.load(self.config_table, self.CONFIG_KEY)
        if stored is not None:
            if (stored['capacity'], stored['withdrawal_threshold']) != (
                    self.config.capacity, self.config.withdrawal_threshold):
                raise InvalidConfig(self.config.capacity, self.config.withdrawal_threshold)
            return

        with self.storage.atomic():
            self.storage.save(self.config_table, self.CONFIG_KEY, {
                'id': self.CONFIG_KEY,
                'capacity': self.config.capacity,
                'withdrawal_threshold': self.config.withdrawal_threshold
            })
            if self.audit_trail is not None:
                self.audit_trail.log_event(
                    event_type=AuditEventType.VAULT_INITIALIZED,
                    entity_type="vault",
                    entity_id=self.CONFIG_KEY,
                    metadata={
                        "capacity": self.config.capacity,
                        "withdrawal_threshold": self.config.withdrawal_threshold
                    }
                )

        log_action(
            self.logger, "info", "Vault initialized", action="initialize",
            extra={"capacity": self.config.capacity,
                   "withdrawal_threshold": self.config.withdrawal_threshold}
        )


def build_vault(
    settings: Optional[LedgerSettings] = None,
    transfer_executor: Optional[TransferExecutor] = None,
    event_dispatcher: Optional[EventDispatcher] = None,
    configure_logging: bool = True
) -> CappedVault:
    """
    Wire a vault from settings (environment by default)

    Raises:
        InvalidConfig: If the configured bounds are invalid
    """
    settings = settings or get_config()
    ledger_config = settings.to_ledger_config()

    if configure_logging:
        setup_logging(settings.log_level, log_format=settings.log_format, log_file=settings.log_file)

    storage = create_storage(settings.database_url)
    audit_trail = AuditTrail(storage) if settings.enable_audit_logging else None

    return CappedVault(
        ledger_config,
        storage=storage,
        transfer_executor=transfer_executor,
        event_dispatcher=event_dispatcher,
        audit_trail=audit_trail
    )
