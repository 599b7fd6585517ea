"""Pytest configuration and fixtures for the API."""

import itertools
import os
import secrets
from decimal import Decimal

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)

from app.auth import create_access_token  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.database import get_marketplace  # noqa: E402
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from leadledger import Marketplace  # noqa: E402
from leadledger.payments import ChargeResult, RefundResult  # noqa: E402
from leadledger.storage import InMemoryMarketStorage  # noqa: E402


class FakeGateway:
    """Records charges and refunds; returns the same result for a repeated key."""

    def __init__(self):
        self.charges = {}
        self.refunds = {}
        self._ids = itertools.count(1)

    def charge(self, amount: Decimal, metadata, idempotency_key: str) -> ChargeResult:
        if idempotency_key not in self.charges:
            self.charges[idempotency_key] = ChargeResult(
                charge_id=f"pi_test_{next(self._ids)}", amount=amount
            )
        return self.charges[idempotency_key]

    def refund(self, charge_id: str, amount: Decimal, reason: str, idempotency_key: str):
        if idempotency_key not in self.refunds:
            self.refunds[idempotency_key] = RefundResult(
                refund_id=f"re_test_{next(self._ids)}", amount=amount
            )
        return self.refunds[idempotency_key]

    def find_charge(self, idempotency_key: str):
        return self.charges.get(idempotency_key)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def market(gateway):
    """In-memory marketplace wired into the app for one test."""
    market = Marketplace(InMemoryMarketStorage(), gateway=gateway)
    app.dependency_overrides[get_marketplace] = lambda: market
    yield market
    app.dependency_overrides.pop(get_marketplace, None)


@pytest.fixture
def client(market):
    """Create a test client with rate limiting off."""
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True


def make_headers(actor_id: str, role: str, **claims) -> dict:
    token = create_access_token(actor_id, role, get_settings(), **claims)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """Build auth headers for an arbitrary actor."""
    return make_headers


@pytest.fixture
def customer_headers():
    return make_headers("cust-1", "customer")


@pytest.fixture
def admin_headers():
    return make_headers("admin-1", "admin")


@pytest.fixture
def contractor(market):
    return market.register_contractor("user-c1", contractor_id="con-1", initial_credits=3)


@pytest.fixture
def contractor_headers(contractor):
    return make_headers(contractor.user_id, "contractor", contractor_id=contractor.id)


@pytest.fixture
def commission(market, contractor):
    """A PENDING commission from a credit-unlocked job confirmed at 1000.00."""
    job = market.create_job("cust-1", "Boiler service", budget="1000")
    market.grant_access(job.id, contractor.id, "credit")
    market.select_winner(job.id, "cust-1", contractor.id)
    market.confirm_work_start(job.id, "cust-1")
    market.mark_completed(job.id, contractor.id, "1000")
    return market.confirm_completion(job.id, "cust-1").commission
