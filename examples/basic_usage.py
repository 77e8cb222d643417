#!/usr/bin/env python3
"""
Example: A capped vault with a SQLite store

Walks through deposits, a rejected over-capacity deposit, a withdrawal,
a threshold rejection and a failed payout that rolls back.
"""

import tempfile
from pathlib import Path

from capped_ledger.config import LedgerSettings
from capped_ledger.errors import LedgerError
from capped_ledger.events import EventLog
from capped_ledger.transfers import CallbackTransferExecutor
from capped_ledger.vault import build_vault


def main():
    print("Capped Ledger - SQLite Example")
    print("=" * 40)

    with tempfile.TemporaryDirectory() as temp_dir:
        settings = LedgerSettings(
            capacity=10,
            withdrawal_threshold=1,
            database_url=f"sqlite:///{Path(temp_dir) / 'vault.db'}",
            log_format="text",
        )

        payout_ok = {"value": True}
        vault = build_vault(
            settings,
            transfer_executor=CallbackTransferExecutor(lambda account, amount: payout_ok["value"]),
        )
        events = EventLog()
        vault.event_dispatcher.subscribe_all(events)

        steps = [
            ("deposit", "alice", 5),
            ("deposit", "alice", 6),
            ("withdraw", "alice", 1),
            ("withdraw", "alice", 2),
        ]
        for operation, account, amount in steps:
            try:
                balance = getattr(vault, operation)(account, amount)
                print(f"{operation:>8} {amount:>3} by {account}: ok, balance={balance}")
            except LedgerError as e:
                print(f"{operation:>8} {amount:>3} by {account}: {e.code}")

        payout_ok["value"] = False
        try:
            vault.withdraw("alice", 1)
        except LedgerError as e:
            print(f"withdraw   1 by alice with failing payout: {e.code}")

        print()
        print(f"balance(alice)   = {vault.balance_of('alice')}")
        print(f"total held value = {vault.total_held_value()}")
        print(f"deposit count    = {vault.deposit_count()}")
        print(f"withdrawal count = {vault.withdrawal_count()}")
        print(f"events emitted   = {[e.event_type.value for e in events.events]}")
        print(f"integrity valid  = {vault.verify_integrity()['valid']}")

        vault.storage.close()


if __name__ == "__main__":
    main()
