"""
Payout Module

Outbound value transfer performed as the last step of a withdrawal, after the
ledger has already been debited. Executors report failure either by returning
an unsuccessful TransferResult or by raising; the vault turns both into
TransferFailed and rolls the withdrawal back.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple
import logging
import time

import httpx

logger = logging.getLogger("capped_ledger.transfers")


@dataclass
class TransferResult:
    """Outcome of a single payout"""
    success: bool
    diagnostic: Any = None
    reference: Optional[str] = None

    @classmethod
    def ok(cls, reference: Optional[str] = None) -> 'TransferResult':
        return cls(success=True, reference=reference)

    @classmethod
    def failed(cls, diagnostic: Any) -> 'TransferResult':
        return cls(success=False, diagnostic=diagnostic)


class TransferExecutor(ABC):
    """Performs the outbound payment for a withdrawal"""

    @abstractmethod
    def pay_out(self, account: str, amount: int) -> TransferResult:
        """Send amount to account"""
        pass


@dataclass
class Payout:
    """A payout that reached its destination"""
    account: str
    amount: int
    paid_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RecordingTransferExecutor(TransferExecutor):
    """
    Keeps every successful payout in memory

    Stands in for an external payee ledger: received_by() is what the
    account holder would observe outside the vault.
    """

    def __init__(self):
        self.payouts: List[Payout] = []

    def pay_out(self, account: str, amount: int) -> TransferResult:
        self.payouts.append(Payout(account=account, amount=amount))
        return TransferResult.ok(reference=f"payout-{len(self.payouts)}")

    def received_by(self, account: str) -> int:
        """Total value paid out to an account"""
        return sum(p.amount for p in self.payouts if p.account == account)

    @property
    def total_paid_out(self) -> int:
        return sum(p.amount for p in self.payouts)


class CallbackTransferExecutor(TransferExecutor):
    """
    Adapts a plain callable into an executor

    The callable may return a TransferResult, a bool, or None (treated as
    success). Exceptions propagate to the vault.
    """

    def __init__(self, callback: Callable[[str, int], Any]):
        self.callback = callback

    def pay_out(self, account: str, amount: int) -> TransferResult:
        outcome = self.callback(account, amount)
        if isinstance(outcome, TransferResult):
            return outcome
        if outcome is None or outcome is True:
            return TransferResult.ok()
        return TransferResult.failed(f"callback returned {outcome!r}")


class HttpTransferExecutor(TransferExecutor):
    """POSTs each payout to an external payments endpoint"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def pay_out(self, account: str, amount: int) -> TransferResult:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        start = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/payouts",
                json={"account": account, "amount": amount},
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"Payout request to {self.base_url} failed: {e}")
            return TransferResult.failed({"error": type(e).__name__, "detail": str(e)})

        latency_ms = (time.time() - start) * 1000
        logger.debug(f"Payout request returned {response.status_code} in {latency_ms:.1f}ms")

        if response.status_code >= 400:
            return TransferResult.failed({"status_code": response.status_code, "body": response.text})

        reference = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                reference = body.get("reference")

        return TransferResult.ok(reference=reference)

    def close(self) -> None:
        self._client.close()


def normalize_outcome(result: Any) -> Tuple[bool, Any]:
    """(success, diagnostic) for whatever an executor returned"""
    if isinstance(result, TransferResult):
        return result.success, result.diagnostic
    return False, f"executor returned {result!r}"
