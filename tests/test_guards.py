"""
Tests for the amount, capacity and threshold guards
"""

import pytest

from capped_ledger.guards import check_amount, check_deposit, check_withdrawal
from capped_ledger.errors import (
    AmountRejected, DepositRejected, WithdrawalRejected, RejectionReason
)


class TestAmountGuard:
    """Test the positive-amount precondition"""

    def test_positive_amount_passes(self):
        assert check_amount("alice", 1) is None

    @pytest.mark.parametrize("amount", [0, -1, -100])
    def test_non_positive_amount(self, amount):
        error = check_amount("alice", amount)

        assert isinstance(error, AmountRejected)
        assert error.account == "alice"
        assert error.amount == amount

    @pytest.mark.parametrize("amount", [1.0, "5", None, True])
    def test_non_integer_amount(self, amount):
        assert isinstance(check_amount("alice", amount), AmountRejected)


class TestCapacityGuard:
    """Test the inclusive capacity check on the resulting total"""

    def test_below_capacity(self):
        assert check_deposit(9, 10, "alice", 4) is None

    def test_exactly_capacity(self):
        """The cap is inclusive"""
        assert check_deposit(10, 10, "alice", 10) is None

    def test_above_capacity(self):
        error = check_deposit(11, 10, "alice", 6)

        assert isinstance(error, DepositRejected)
        assert error.account == "alice"
        assert error.amount == 6


class TestThresholdGuard:
    """Test the per-withdrawal threshold and balance checks"""

    def test_within_limits(self):
        assert check_withdrawal(1, 5, 1, "alice") is None

    def test_exactly_threshold_and_balance(self):
        assert check_withdrawal(3, 3, 3, "alice") is None

    def test_exceeds_threshold(self):
        error = check_withdrawal(2, 100, 1, "alice")

        assert isinstance(error, WithdrawalRejected)
        assert error.reason == RejectionReason.EXCEEDS_THRESHOLD

    def test_exceeds_balance(self):
        error = check_withdrawal(3, 2, 5, "alice")

        assert isinstance(error, WithdrawalRejected)
        assert error.reason == RejectionReason.INSUFFICIENT_BALANCE

    def test_both_exceeded_reports_threshold(self):
        error = check_withdrawal(10, 2, 5, "alice")

        assert isinstance(error, WithdrawalRejected)
        assert error.reason == RejectionReason.EXCEEDS_THRESHOLD
        assert error.to_dict()["reason"] == "exceeds_threshold"
