"""
Operation counters for successful deposits and withdrawals.
"""

from .storage import StorageInterface


class StatsRecorder:
    """Monotonic deposit/withdrawal counters kept in storage"""

    DEPOSITS = "deposit_count"
    WITHDRAWALS = "withdrawal_count"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "ledger_stats"

    def record_deposit(self) -> int:
        return self._increment(self.DEPOSITS)

    def record_withdrawal(self) -> int:
        return self._increment(self.WITHDRAWALS)

    def deposit_count(self) -> int:
        return self._read(self.DEPOSITS)

    def withdrawal_count(self) -> int:
        return self._read(self.WITHDRAWALS)

    def _read(self, counter: str) -> int:
        record = self.storage.load(self.table_name, counter)
        if record is None:
            return 0
        return int(record['value'])

    def _increment(self, counter: str) -> int:
        value = self._read(counter) + 1
        self.storage.save(self.table_name, counter, {'id': counter, 'value': value})
        return value
