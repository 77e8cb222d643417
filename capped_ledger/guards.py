"""
Operation Guards

Pure validation functions run at the top of each vault operation. Each returns
None when the operation may proceed, or the LedgerError describing why it may
not; the caller raises it before touching any state.
"""

from typing import Any, Optional

from .errors import AmountRejected, DepositRejected, WithdrawalRejected, RejectionReason


def check_amount(account: str, amount: Any) -> Optional[AmountRejected]:
    """Amount must be a strictly positive integer"""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return AmountRejected(account, amount)
    return None


def check_deposit(
    proposed_total_held_value: int,
    capacity: int,
    account: str,
    amount: int
) -> Optional[DepositRejected]:
    """
    Capacity check on the total as it would be after the deposit

    The cap is inclusive: a total exactly equal to capacity is accepted.
    """
    if proposed_total_held_value > capacity:
        return DepositRejected(account, amount)
    return None


def check_withdrawal(
    amount: int,
    caller_balance: int,
    withdrawal_threshold: int,
    account: str
) -> Optional[WithdrawalRejected]:
    """
    Threshold and balance check for a withdrawal

    Both limits produce WithdrawalRejected; the reason names the threshold
    when both are exceeded.
    """
    if amount > withdrawal_threshold:
        return WithdrawalRejected(account, amount, RejectionReason.EXCEEDS_THRESHOLD)
    if amount > caller_balance:
        return WithdrawalRejected(account, amount, RejectionReason.INSUFFICIENT_BALANCE)
    return None
