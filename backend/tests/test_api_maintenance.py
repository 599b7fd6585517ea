"""Tests for the maintenance routes and service endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from app.database import get_marketplace
from app.main import app

from leadledger import Marketplace
from leadledger.storage import InMemoryMarketStorage


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def market(gateway, clock):
    """Marketplace on a controllable clock."""
    market = Marketplace(InMemoryMarketStorage(), gateway=gateway, clock=clock)
    app.dependency_overrides[get_marketplace] = lambda: market
    yield market
    app.dependency_overrides.pop(get_marketplace, None)


class TestServiceEndpoints:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "leadledger-backend"
        assert body["status"] == "ok"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body == {"status": "healthy", "database": "connected"}


class TestMaintenance:
    """Tests for scheduled maintenance endpoints."""

    def test_requires_admin(self, client, customer_headers):
        response = client.post("/maintenance/commissions/sweep", headers=customer_headers)
        assert response.status_code == 403

    def test_sweep_nothing_due(self, client, admin_headers, commission):
        body = client.post("/maintenance/commissions/sweep", headers=admin_headers).json()
        assert body["total"] == 0

    def test_sweep_marks_overdue_and_suspends(
        self, client, market, clock, admin_headers, commission
    ):
        clock.now += timedelta(days=8)

        body = client.post("/maintenance/commissions/sweep", headers=admin_headers).json()

        assert body["total"] == 1
        assert body["overdue"][0]["status"] == "overdue"
        contractor = market.credits.get_contractor(commission.contractor_id)
        assert contractor.status == "suspended"

    def test_reminders_inside_window(self, client, clock, admin_headers, commission):
        clock.now += timedelta(days=6)

        body = client.post("/maintenance/commissions/reminders", headers=admin_headers).json()

        assert body["total"] == 1
        assert body["reminders"][0]["commission_id"] == commission.id

    def test_weekly_reset_forced(self, client, market, admin_headers):
        market.register_contractor("user-w", contractor_id="con-w", weekly_credits_limit=5)

        body = client.post(
            "/maintenance/credits/reset-weekly", json={"force": True}, headers=admin_headers
        ).json()

        assert body["contractors_reset"] == 1
        assert body["credits_added"] == 5
        assert market.credits.balance("con-w") == 5

    def test_auto_confirm_stale(self, client, market, clock, contractor, admin_headers):
        job = market.create_job("cust-1", "Paint hallway", budget="400")
        market.grant_access(job.id, contractor.id, "credit")
        market.select_winner(job.id, "cust-1", contractor.id)
        market.confirm_work_start(job.id, "cust-1")
        market.mark_completed(job.id, contractor.id)
        clock.now += timedelta(days=8)

        body = client.post("/maintenance/jobs/auto-confirm", headers=admin_headers).json()

        assert body["total"] == 1
        assert body["with_commission"] == 1
        assert body["confirmed"][0]["commission"]["commission_amount"] == "20.00"
