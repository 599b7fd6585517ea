"""Tests for lead price resolution."""

from decimal import Decimal

import pytest

from leadledger.errors import ValidationError
from leadledger.pricing import JobSize, ServicePricing, resolve_lead_price


@pytest.fixture
def plumbing():
    return ServicePricing(
        service_id="plumbing",
        name="Plumbing",
        small_price="15",
        medium_price="30",
        large_price="55.5",
    )


class TestResolveLeadPrice:
    """Tests for the pure resolver."""

    def test_tier_price(self, plumbing):
        assert resolve_lead_price(JobSize.MEDIUM, plumbing) == Decimal("30.00")
        assert resolve_lead_price("large", plumbing) == Decimal("55.50")

    def test_override_wins(self, plumbing):
        assert resolve_lead_price(JobSize.MEDIUM, plumbing, override=Decimal("45")) == Decimal(
            "45.00"
        )

    def test_zero_override_falls_back_to_tier(self, plumbing):
        assert resolve_lead_price(JobSize.SMALL, plumbing, override=Decimal("0")) == Decimal(
            "15.00"
        )

    def test_no_pricing_is_free(self):
        assert resolve_lead_price(JobSize.SMALL, None) == Decimal("0.00")

    def test_missing_tier_is_free(self):
        pricing = ServicePricing(service_id="roofing", medium_price="40")
        assert resolve_lead_price(JobSize.LARGE, pricing) == Decimal("0.00")

    def test_rounds_half_up(self):
        pricing = ServicePricing(service_id="x", small_price="9.995")
        assert resolve_lead_price(JobSize.SMALL, pricing) == Decimal("10.00")

    def test_unknown_size_rejected(self, plumbing):
        with pytest.raises(ValueError):
            resolve_lead_price("huge", plumbing)


class TestServicePricing:
    def test_negative_price_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            ServicePricing(service_id="x", small_price="-1")

    def test_service_id_required(self):
        with pytest.raises(ValueError):
            ServicePricing(service_id="")

    def test_dict_round_trip(self, plumbing):
        assert ServicePricing.from_dict(plumbing.to_dict()) == plumbing


class TestMarketplacePricing:
    """Tests for price resolution through the marketplace."""

    def test_medium_job_uses_service_price(self, market, plumbing):
        market.set_service_pricing(plumbing)
        job = market.create_job("cust-1", "Fix leak", service_id="plumbing", job_size="medium")

        assert market.resolve_lead_price(job.id) == Decimal("30.00")

    def test_admin_override(self, market, plumbing):
        market.set_service_pricing(plumbing)
        job = market.create_job("cust-1", "Fix leak", service_id="plumbing", job_size="medium")

        market.override_lead_price(job.id, "45", actor_id="admin-1")

        assert market.resolve_lead_price(job.id) == Decimal("45.00")
        entry = market.audit_log(entity_type="job", entity_id=job.id)[-1]
        assert entry.action == "job.override_lead_price"
        assert entry.after == {"lead_price_override": "45.00"}

    def test_clear_override(self, market, plumbing):
        market.set_service_pricing(plumbing)
        job = market.create_job("cust-1", "Fix leak", service_id="plumbing", job_size="small")
        market.override_lead_price(job.id, "45", actor_id="admin-1")

        market.override_lead_price(job.id, None, actor_id="admin-1")

        assert market.resolve_lead_price(job.id) == Decimal("15.00")

    def test_negative_override_rejected(self, market):
        job = market.create_job("cust-1", "Fix leak")
        with pytest.raises(ValidationError):
            market.override_lead_price(job.id, "-5", actor_id="admin-1")

    @pytest.mark.parametrize("price", ["NaN", "Infinity", "sNaN"])
    def test_non_finite_override_rejected(self, market, price):
        job = market.create_job("cust-1", "Fix leak")
        with pytest.raises(ValidationError):
            market.override_lead_price(job.id, price, actor_id="admin-1")
        assert market.jobs.get_job(job.id).lead_price_override is None

    def test_job_without_service_is_free(self, market):
        job = market.create_job("cust-1", "Odd job")
        assert market.resolve_lead_price(job.id) == Decimal("0.00")
