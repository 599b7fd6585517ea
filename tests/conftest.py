"""
Pytest fixtures and test configuration for leadledger tests.
"""

import itertools
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest

from leadledger import MarketConfig, Marketplace
from leadledger.errors import GatewayError
from leadledger.payments import ChargeResult, RefundResult
from leadledger.storage import InMemoryMarketStorage, SQLiteMarketStorage
from leadledger.storage.memory import InMemoryTransaction

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class Clock:
    """Settable clock; call it to read the current time."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> datetime:
        self.now = self.now + delta
        return self.now


class FakeGateway:
    """In-process payment gateway.

    Honors idempotency keys like a real gateway and can be told to fail the
    next N charges or refunds.
    """

    def __init__(self):
        self.charges: Dict[str, ChargeResult] = {}
        self.charge_calls: List[Tuple[Decimal, Dict[str, Any], str]] = []
        self.refunds: Dict[str, RefundResult] = {}
        self.refund_calls: List[Tuple[str, Decimal, str, str]] = []
        self.fail_charges = 0
        self.fail_refunds = 0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def charge(self, amount, metadata, idempotency_key) -> ChargeResult:
        with self._lock:
            self.charge_calls.append((amount, dict(metadata), idempotency_key))
            if self.fail_charges:
                self.fail_charges -= 1
                raise GatewayError("card_declined", status_code=402)
            if idempotency_key not in self.charges:
                self.charges[idempotency_key] = ChargeResult(
                    charge_id=f"pi_{next(self._ids)}", amount=amount
                )
            return self.charges[idempotency_key]

    def refund(self, charge_id, amount, reason, idempotency_key) -> RefundResult:
        with self._lock:
            self.refund_calls.append((charge_id, amount, reason, idempotency_key))
            if self.fail_refunds:
                self.fail_refunds -= 1
                raise GatewayError("refund_failed", status_code=500)
            if idempotency_key not in self.refunds:
                self.refunds[idempotency_key] = RefundResult(
                    refund_id=f"re_{next(self._ids)}", amount=amount
                )
            return self.refunds[idempotency_key]

    def find_charge(self, idempotency_key) -> Optional[ChargeResult]:
        with self._lock:
            return self.charges.get(idempotency_key)

    @property
    def total_charged(self) -> Decimal:
        return sum((c.amount for c in self.charges.values()), Decimal("0.00"))


class RecordingNotifier:
    """Collects sent notifications; optionally raises on every send."""

    def __init__(self, fail: bool = False):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail = fail

    def send(self, recipient_id, event, payload) -> None:
        if self.fail:
            raise ConnectionError("notification service down")
        self.sent.append((recipient_id, event, payload))

    def events(self, recipient_id=None) -> List[str]:
        return [e for r, e, _ in self.sent if recipient_id is None or r == recipient_id]


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def config():
    return MarketConfig()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage():
    return InMemoryMarketStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    store = SQLiteMarketStorage(tmp_path / "ledger.db")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_storage(request, tmp_path):
    """Run a test against both storage backends."""
    if request.param == "memory":
        yield InMemoryMarketStorage()
    else:
        store = SQLiteMarketStorage(tmp_path / "ledger.db")
        yield store
        store.close()


@pytest.fixture
def payment_save_fails_once(monkeypatch):
    """The next Payment insert raises, as if the commit after a charge crashed."""
    original = InMemoryTransaction.save_payment
    armed = [True]

    def save_payment(self, payment):
        if armed:
            armed.pop()
            raise RuntimeError("disk I/O error")
        return original(self, payment)

    monkeypatch.setattr(InMemoryTransaction, "save_payment", save_payment)


@pytest.fixture
def market(storage, gateway, notifier, config, clock):
    return Marketplace(storage, gateway=gateway, notifier=notifier, config=config, clock=clock)


@pytest.fixture
def contractor(market):
    return market.register_contractor("user-1", contractor_id="con-1", initial_credits=5)


@pytest.fixture
def run_to_completion(market):
    """Post a job, unlock it, pick the contractor and mark it complete."""

    def _run(contractor_id, method="credit", final_amount="1000", **job_kwargs):
        job_kwargs.setdefault("budget", "1000")
        job = market.create_job("cust-1", "Replace boiler", **job_kwargs)
        market.grant_access(job.id, contractor_id, method)
        market.select_winner(job.id, "cust-1", contractor_id)
        market.confirm_work_start(job.id, "cust-1")
        return market.mark_completed(job.id, contractor_id, final_amount)

    return _run


@pytest.fixture
def completed_job(contractor, run_to_completion):
    return run_to_completion(contractor.id)


@pytest.fixture
def commission(market, completed_job):
    """PENDING commission on a 1000.00 credit-unlocked job."""
    return market.confirm_completion(completed_job.id, "cust-1").commission
