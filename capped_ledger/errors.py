"""
Ledger Error Taxonomy

Every failure the vault can report is a distinct LedgerError subclass carrying
the account and amount involved, so callers can tell rejections apart without
parsing messages.
"""

from enum import Enum
from typing import Any, Dict, Optional


class RejectionReason(Enum):
    """Why a withdrawal was rejected"""
    EXCEEDS_THRESHOLD = "exceeds_threshold"
    INSUFFICIENT_BALANCE = "insufficient_balance"


class LedgerError(Exception):
    """Base class for all ledger failures"""

    code = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for logging"""
        return {"error": self.code, "message": self.message}


class InvalidConfig(LedgerError):
    """Zero, negative, non-integer or inverted capacity/threshold"""

    code = "invalid_config"

    def __init__(self, capacity: Any, threshold: Any):
        self.capacity = capacity
        self.threshold = threshold
        super().__init__(
            f"Invalid ledger configuration: capacity={capacity!r}, "
            f"withdrawal_threshold={threshold!r}"
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(capacity=self.capacity, threshold=self.threshold)
        return result


class _AccountAmountError(LedgerError):
    """Failure tied to one account and one amount"""

    def __init__(self, account: str, amount: Any, message: str):
        self.account = account
        self.amount = amount
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(account=self.account, amount=self.amount)
        return result


class AmountRejected(_AccountAmountError):
    """Amount supplied to deposit or withdraw is not a positive integer"""

    code = "amount_rejected"

    def __init__(self, account: str, amount: Any):
        super().__init__(account, amount, f"Amount must be a positive integer, got {amount!r}")


class DepositRejected(_AccountAmountError):
    """Deposit would push total held value above capacity"""

    code = "deposit_rejected"

    def __init__(self, account: str, amount: int):
        super().__init__(account, amount, f"Deposit of {amount} by {account} exceeds ledger capacity")


class WithdrawalRejected(_AccountAmountError):
    """Withdrawal exceeds the per-operation threshold or the caller's balance"""

    code = "withdrawal_rejected"

    def __init__(self, account: str, amount: int, reason: Optional[RejectionReason] = None):
        self.reason = reason
        detail = f" ({reason.value})" if reason else ""
        super().__init__(account, amount, f"Withdrawal of {amount} by {account} rejected{detail}")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["reason"] = self.reason.value if self.reason else None
        return result


class TransferFailed(LedgerError):
    """The outbound payment mechanism reported failure"""

    code = "transfer_failed"

    def __init__(self, diagnostic: Any, account: Optional[str] = None, amount: Optional[int] = None):
        self.diagnostic = diagnostic
        self.account = account
        self.amount = amount
        super().__init__(f"Payout failed: {diagnostic}")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(diagnostic=self.diagnostic, account=self.account, amount=self.amount)
        return result
