"""
Balance Ledger

Sole authority over stored value: maps account identifiers to non-negative
integer balances and keeps a running total of everything held. Accounts are
created implicitly on first credit and never removed.
"""

from typing import Any, Dict

from .storage import StorageInterface


class Ledger:
    """
    Account balances plus the cached total held value

    Callers are expected to run guards first; credit() and debit() only
    enforce the invariants that would corrupt the books if violated.
    """

    TOTALS_KEY = "total_held_value"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.balances_table = "balances"
        self.totals_table = "ledger_totals"

    def credit(self, account: str, amount: int) -> int:
        """
        Add amount to the account's balance

        Returns:
            The account's new balance
        """
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        with self.storage.atomic():
            new_balance = self.balance_of(account) + amount
            self._save_balance(account, new_balance)
            self._save_total(self.total_held_value() + amount)

        return new_balance

    def debit(self, account: str, amount: int) -> int:
        """
        Subtract amount from the account's balance

        Returns:
            The account's new balance

        Raises:
            ValueError: If the debit would drive the balance below zero
        """
        if amount <= 0:
            raise ValueError("Debit amount must be positive")

        with self.storage.atomic():
            balance = self.balance_of(account)
            if amount > balance:
                raise ValueError(f"Debit of {amount} exceeds balance {balance} of {account}")

            new_balance = balance - amount
            self._save_balance(account, new_balance)
            self._save_total(self.total_held_value() - amount)

        return new_balance

    def balance_of(self, account: str) -> int:
        """Current balance; zero for accounts never credited"""
        record = self.storage.load(self.balances_table, account)
        if record is None:
            return 0
        return int(record['balance'])

    def total_held_value(self) -> int:
        """Running sum of all balances"""
        record = self.storage.load(self.totals_table, self.TOTALS_KEY)
        if record is None:
            return 0
        return int(record['value'])

    def balances(self) -> Dict[str, int]:
        """All non-zero balances keyed by account"""
        result = {}
        for record in self.storage.load_all(self.balances_table):
            balance = int(record['balance'])
            if balance:
                result[record['account']] = balance
        return result

    def verify_integrity(self, capacity: int) -> Dict[str, Any]:
        """
        Check the ledger invariants against stored data

        Args:
            capacity: Ledger capacity the total must not exceed

        Returns:
            Dictionary with the outcome of each check
        """
        all_balances = {
            record['account']: int(record['balance'])
            for record in self.storage.load_all(self.balances_table)
        }
        total = self.total_held_value()
        balance_sum = sum(all_balances.values())
        negative = sorted(account for account, balance in all_balances.items() if balance < 0)

        result = {
            'valid': True,
            'total_held_value': total,
            'sum_of_balances': balance_sum,
            'capacity': capacity,
            'account_count': len(all_balances),
            'negative_balances': negative,
            'errors': []
        }

        if balance_sum != total:
            result['errors'].append("sum of balances does not match total held value")
        if total > capacity:
            result['errors'].append("total held value exceeds capacity")
        if negative:
            result['errors'].append("negative balances present")

        result['valid'] = not result['errors']
        return result

    def _save_balance(self, account: str, balance: int) -> None:
        self.storage.save(self.balances_table, account, {'account': account, 'balance': balance})

    def _save_total(self, value: int) -> None:
        self.storage.save(self.totals_table, self.TOTALS_KEY, {'id': self.TOTALS_KEY, 'value': value})
