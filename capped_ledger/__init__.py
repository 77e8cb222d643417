"""
Capped Custodial Ledger

Tracks per-account balances of a single value unit under a fixed global
capacity, with a fixed ceiling on each withdrawal. Every deposit and
withdrawal is atomic and audited.
"""

__version__ = "1.0.0"
