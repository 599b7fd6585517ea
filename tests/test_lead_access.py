"""Tests for lead access: capacity, credits and paid unlocks."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from leadledger import Marketplace
from leadledger.access import AccessMethod
from leadledger.errors import (
    CapacityExceededError,
    ContractorNotFoundError,
    ContractorSuspendedError,
    GatewayError,
    InsufficientCreditsError,
    JobNotAvailableError,
    JobNotFoundError,
    ValidationError,
)
from leadledger.payments import PaymentPurpose


@pytest.fixture
def shared_market(any_storage, gateway, notifier, config, clock):
    """Marketplace over both storage backends."""
    return Marketplace(any_storage, gateway=gateway, notifier=notifier, config=config, clock=clock)


def priced_job(market, price="25", **kwargs):
    job = market.create_job("cust-1", "Garden wall", **kwargs)
    market.override_lead_price(job.id, price, actor_id="admin-1")
    return job


class TestCreditAccess:
    """Tests for unlocking with credits."""

    def test_grant_debits_one_credit(self, market, contractor, notifier):
        job = market.create_job("cust-1", "Garden wall")

        grant = market.grant_access(job.id, contractor.id, AccessMethod.CREDIT)

        assert grant.created is True
        assert grant.access.access_method == "credit"
        assert grant.access.credits_used == 1
        assert market.credits.balance(contractor.id) == 4
        assert market.check_access(job.id, contractor.id)
        assert "lead_access_granted" in notifier.events(contractor.id)

    def test_repeat_grant_is_idempotent(self, market, contractor):
        job = market.create_job("cust-1", "Garden wall")
        first = market.grant_access(job.id, contractor.id, "credit")

        second = market.grant_access(job.id, contractor.id, "credit")

        assert second.created is False
        assert second.access.id == first.access.id
        assert market.credits.balance(contractor.id) == 4

    def test_two_credits_two_jobs_then_insufficient(self, market):
        c = market.register_contractor("user-2", initial_credits=2)
        jobs = [market.create_job("cust-1", f"Job {i}") for i in range(3)]

        market.grant_access(jobs[0].id, c.id, "credit")
        market.grant_access(jobs[1].id, c.id, "credit")
        assert market.credits.balance(c.id) == 0

        with pytest.raises(InsufficientCreditsError):
            market.grant_access(jobs[2].id, c.id, "credit")
        assert not market.check_access(jobs[2].id, c.id)
        assert market.credits.reconcile(c.id)

    def test_failed_grant_leaves_no_trace(self, market):
        c = market.register_contractor("user-2")
        job = market.create_job("cust-1", "Garden wall")

        with pytest.raises(InsufficientCreditsError):
            market.grant_access(job.id, c.id, "credit")

        assert market.list_access(job.id) == []
        assert market.remaining_capacity(job.id) == 5


class TestAccessRules:
    """Tests for the checks shared by both methods."""

    def test_unknown_job(self, market, contractor):
        with pytest.raises(JobNotFoundError):
            market.grant_access("missing", contractor.id, "credit")

    def test_unknown_contractor(self, market):
        job = market.create_job("cust-1", "Garden wall")
        with pytest.raises(ContractorNotFoundError):
            market.grant_access(job.id, "nobody", "credit")

    def test_invalid_method(self, market, contractor):
        job = market.create_job("cust-1", "Garden wall")
        with pytest.raises(ValidationError):
            market.grant_access(job.id, contractor.id, "barter")

    def test_cancelled_job_not_available(self, market, contractor):
        job = market.create_job("cust-1", "Garden wall")
        market.cancel_job(job.id, "cust-1", "No longer needed")

        with pytest.raises(JobNotAvailableError):
            market.grant_access(job.id, contractor.id, "credit")

    def test_draft_job_can_be_unlocked(self, market, contractor):
        job = market.create_job("cust-1", "Garden wall", publish=False)
        assert market.grant_access(job.id, contractor.id, "credit").created

    def test_capacity_cap(self, market):
        job = market.create_job("cust-1", "Garden wall", max_contractors_per_job=2)
        contractors = [
            market.register_contractor(f"user-{i}", initial_credits=1) for i in range(3)
        ]
        market.grant_access(job.id, contractors[0].id, "credit")
        market.grant_access(job.id, contractors[1].id, "credit")

        with pytest.raises(CapacityExceededError):
            market.grant_access(job.id, contractors[2].id, "credit")

        assert market.remaining_capacity(job.id) == 0
        assert market.credits.balance(contractors[2].id) == 1

    def test_existing_access_survives_full_job(self, market):
        job = market.create_job("cust-1", "Garden wall", max_contractors_per_job=1)
        c = market.register_contractor("user-1", initial_credits=2)
        market.grant_access(job.id, c.id, "credit")

        assert market.grant_access(job.id, c.id, "credit").created is False

    def test_suspended_contractor_blocked(self, market, contractor, commission, clock):
        clock.advance(timedelta(days=8))
        market.sweep_overdue_commissions()
        job = market.create_job("cust-1", "Another job")

        with pytest.raises(ContractorSuspendedError):
            market.grant_access(job.id, contractor.id, "credit")


class TestPaymentAccess:
    """Tests for paid unlocks."""

    def test_paid_unlock_records_payment(self, market, contractor, gateway):
        job = priced_job(market)

        grant = market.grant_access(
            job.id, contractor.id, "payment", {"customer": "cus_1", "payment_method": "pm_1"}
        )

        assert grant.access.paid_amount == Decimal("25.00")
        assert grant.access.credits_used == 0
        amount, metadata, key = gateway.charge_calls[0]
        assert amount == Decimal("25.00")
        assert key == f"lead-access:{job.id}:{contractor.id}"
        assert metadata["purpose"] == "lead_access"
        payment = market.refunds.get_payment(grant.access.payment_id)
        assert payment.purpose == PaymentPurpose.LEAD_ACCESS.value
        assert payment.charge_id == gateway.charges[key].charge_id
        assert market.credits.balance(contractor.id) == 5

    def test_free_lead_skips_gateway(self, market, contractor, gateway):
        job = market.create_job("cust-1", "Garden wall")

        grant = market.grant_access(job.id, contractor.id, "payment")

        assert grant.access.paid_amount == Decimal("0.00")
        assert gateway.charge_calls == []

    def test_declined_charge_records_nothing(self, market, contractor, gateway):
        job = priced_job(market)
        gateway.fail_charges = 1

        with pytest.raises(GatewayError):
            market.grant_access(job.id, contractor.id, "payment")

        assert not market.check_access(job.id, contractor.id)

        # Retrying after the failure succeeds under the same key
        grant = market.grant_access(job.id, contractor.id, "payment")
        assert grant.created
        assert len(gateway.charges) == 1

    def test_no_gateway_configured(self, storage, contractor, clock):
        market = Marketplace(storage, clock=clock)
        job = priced_job(market)

        with pytest.raises(GatewayError):
            market.grant_access(job.id, contractor.id, "payment")

    def test_slot_lost_during_charge_is_refunded(self, market, gateway):
        job = priced_job(market, max_contractors_per_job=1)
        first = market.register_contractor("user-a", initial_credits=1)
        second = market.register_contractor("user-b")

        original_charge = gateway.charge

        def charge_then_lose_slot(amount, metadata, idempotency_key):
            result = original_charge(amount, metadata, idempotency_key)
            market.grant_access(job.id, first.id, "credit")
            return result

        gateway.charge = charge_then_lose_slot

        with pytest.raises(CapacityExceededError):
            market.grant_access(job.id, second.id, "payment")

        assert len(gateway.refund_calls) == 1
        charge_id, amount, _, key = gateway.refund_calls[0]
        assert amount == Decimal("25.00")
        assert key == f"capacity-release:{charge_id}"
        assert not market.check_access(job.id, second.id)

    def test_failed_commit_keeps_charge_for_retry(
        self, market, contractor, gateway, payment_save_fails_once
    ):
        job = priced_job(market)

        with pytest.raises(RuntimeError):
            market.grant_access(job.id, contractor.id, "payment")

        assert not market.check_access(job.id, contractor.id)
        assert gateway.refund_calls == []

        grant = market.grant_access(job.id, contractor.id, "payment")

        key = f"lead-access:{job.id}:{contractor.id}"
        assert grant.created
        assert len(gateway.charges) == 1
        payment = market.refunds.get_payment(grant.access.payment_id)
        assert payment.charge_id == gateway.charges[key].charge_id
        assert gateway.refund_calls == []

    def test_unrecorded_charge_refunded_when_retry_refused(
        self, market, contractor, gateway, payment_save_fails_once
    ):
        job = priced_job(market, max_contractors_per_job=1)
        other = market.register_contractor("user-b", initial_credits=1)

        with pytest.raises(RuntimeError):
            market.grant_access(job.id, contractor.id, "payment")
        market.grant_access(job.id, other.id, "credit")

        with pytest.raises(CapacityExceededError):
            market.grant_access(job.id, contractor.id, "payment")
        with pytest.raises(CapacityExceededError):
            market.grant_access(job.id, contractor.id, "payment")

        charge = gateway.charges[f"lead-access:{job.id}:{contractor.id}"]
        assert len(gateway.charge_calls) == 1
        assert list(gateway.refunds) == [f"capacity-release:{charge.charge_id}"]
        charge_id, amount, _, _ = gateway.refund_calls[0]
        assert charge_id == charge.charge_id
        assert amount == Decimal("25.00")

    def test_unrecorded_charge_refunded_when_job_cancelled(
        self, market, contractor, gateway, payment_save_fails_once
    ):
        job = priced_job(market)

        with pytest.raises(RuntimeError):
            market.grant_access(job.id, contractor.id, "payment")
        market.cancel_job(job.id, "cust-1", "No longer needed")

        with pytest.raises(JobNotAvailableError):
            market.grant_access(job.id, contractor.id, "payment")

        assert len(gateway.refunds) == 1

    def test_recorded_charge_kept_when_job_cancelled(self, market, contractor, gateway):
        job = priced_job(market)
        market.grant_access(job.id, contractor.id, "payment")
        market.cancel_job(job.id, "cust-1", "No longer needed")

        with pytest.raises(JobNotAvailableError):
            market.grant_access(job.id, contractor.id, "payment")

        assert gateway.refund_calls == []

    def test_refused_without_prior_charge_refunds_nothing(self, market, gateway):
        job = priced_job(market, max_contractors_per_job=1)
        first = market.register_contractor("user-a", initial_credits=1)
        second = market.register_contractor("user-b")
        market.grant_access(job.id, first.id, "credit")

        with pytest.raises(CapacityExceededError):
            market.grant_access(job.id, second.id, "payment")

        assert gateway.charge_calls == []
        assert gateway.refund_calls == []


class TestConcurrentAccess:
    """Capacity and uniqueness hold under concurrent requests."""

    def test_cap_one_two_concurrent_grants(self, shared_market):
        market = shared_market
        job = market.create_job("cust-1", "Garden wall", max_contractors_per_job=1)
        a = market.register_contractor("user-a", initial_credits=1)
        b = market.register_contractor("user-b", initial_credits=1)

        def attempt(contractor_id):
            try:
                return market.grant_access(job.id, contractor_id, "credit")
            except CapacityExceededError as e:
                return e

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, [a.id, b.id]))

        granted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, CapacityExceededError)]
        assert len(granted) == 1
        assert len(rejected) == 1
        assert len(market.list_access(job.id)) == 1
        assert market.credits.balance(a.id) + market.credits.balance(b.id) == 1

    def test_cap_never_exceeded(self, shared_market):
        market = shared_market
        job = market.create_job("cust-1", "Garden wall", max_contractors_per_job=3)
        contractors = [
            market.register_contractor(f"user-{i}", initial_credits=1) for i in range(10)
        ]

        def attempt(contractor_id):
            try:
                market.grant_access(job.id, contractor_id, "credit")
                return True
            except CapacityExceededError:
                return False

        with ThreadPoolExecutor(max_workers=10) as pool:
            outcomes = list(pool.map(attempt, [c.id for c in contractors]))

        assert outcomes.count(True) == 3
        assert len(market.list_access(job.id)) == 3
        assert sum(market.credits.balance(c.id) for c in contractors) == 7

    def test_same_contractor_concurrent_grants(self, shared_market):
        market = shared_market
        job = market.create_job("cust-1", "Garden wall")
        c = market.register_contractor("user-a", initial_credits=5)

        with ThreadPoolExecutor(max_workers=5) as pool:
            grants = list(pool.map(lambda _: market.grant_access(job.id, c.id, "credit"), range(5)))

        assert sum(1 for g in grants if g.created) == 1
        assert len(market.list_access(job.id)) == 1
        assert market.credits.balance(c.id) == 4

    def test_concurrent_paid_grants_keep_money_consistent(self, shared_market, gateway):
        market = shared_market
        job = priced_job(market, max_contractors_per_job=1)
        contractors = [market.register_contractor(f"user-{i}") for i in range(4)]

        def attempt(contractor_id):
            try:
                market.grant_access(job.id, contractor_id, "payment")
                return True
            except CapacityExceededError:
                return False

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(attempt, [c.id for c in contractors]))

        assert outcomes.count(True) == 1
        assert len(market.list_access(job.id)) == 1
        assert len(gateway.charges) - len(gateway.refunds) == 1
