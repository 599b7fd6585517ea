"""Tests for the job lifecycle state machine."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from leadledger import Marketplace
from leadledger.errors import (
    AlreadyConfirmedError,
    ConflictError,
    DuplicateApplicationError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from leadledger.jobs import TIMEOUT_ACTOR, Cancelled, Completed, InProgress, Open


class TestJobCreation:
    """Tests for creating and publishing jobs."""

    def test_create_posted_job(self, market, clock):
        job = market.create_job("cust-1", "Fit kitchen", budget="2500", job_size="large")

        assert job.status == "posted"
        assert job.posted_at == clock.now
        assert job.budget == Decimal("2500.00")
        assert job.max_contractors_per_job == 5
        transitions = market.jobs.get_transitions(job.id)
        assert len(transitions) == 1
        assert transitions[0].from_status is None
        assert transitions[0].to_status == "posted"

    def test_draft_then_publish(self, market):
        job = market.create_job("cust-1", "Fit kitchen", publish=False)
        assert isinstance(job.state, Open)
        assert job.status == "draft"

        published = market.publish_job(job.id, "cust-1")

        assert published.status == "posted"
        assert [t.to_status for t in market.jobs.get_transitions(job.id)] == ["draft", "posted"]

    def test_only_customer_can_publish(self, market):
        job = market.create_job("cust-1", "Fit kitchen", publish=False)
        with pytest.raises(UnauthorizedError):
            market.publish_job(job.id, "cust-2")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"title": ""},
            {"title": "x" * 201},
            {"title": "ok", "budget": "0"},
            {"title": "ok", "job_size": "huge"},
            {"title": "ok", "max_contractors_per_job": -1},
            {"title": "ok", "budget": "NaN"},
            {"title": "ok", "budget": "Infinity"},
        ],
    )
    def test_invalid_jobs_rejected(self, market, kwargs):
        title = kwargs.pop("title")
        with pytest.raises(ValidationError):
            market.create_job("cust-1", title, **kwargs)


class TestApplications:
    """Tests for applying to jobs."""

    def test_apply_requires_access(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        with pytest.raises(UnauthorizedError):
            market.apply(job.id, contractor.id, message="Hello")

    def test_apply_once(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        market.grant_access(job.id, contractor.id, "credit")

        application = market.apply(job.id, contractor.id, proposed_rate="900", message="Hi")

        assert application.status == "pending"
        assert application.proposed_rate == Decimal("900.00")
        with pytest.raises(DuplicateApplicationError):
            market.apply(job.id, contractor.id, message="Again")

    def test_accept_directly_uses_budget(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen", budget="750")
        market.grant_access(job.id, contractor.id, "credit")

        application = market.accept_directly(job.id, contractor.id)

        assert application.proposed_rate == Decimal("750.00")

    def test_accept_directly_needs_budget(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        market.grant_access(job.id, contractor.id, "credit")
        with pytest.raises(ValidationError):
            market.accept_directly(job.id, contractor.id)

    def test_cannot_apply_to_draft(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen", publish=False)
        market.grant_access(job.id, contractor.id, "credit")
        with pytest.raises(InvalidTransitionError):
            market.apply(job.id, contractor.id)


class TestWinnerSelection:
    """Tests for choosing the winning contractor."""

    def test_winner_needs_access(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        with pytest.raises(ConflictError):
            market.select_winner(job.id, "cust-1", contractor.id)

    def test_select_winner_accepts_application(self, market, contractor, notifier):
        job = market.create_job("cust-1", "Fit kitchen")
        market.grant_access(job.id, contractor.id, "credit")
        market.apply(job.id, contractor.id)

        job = market.select_winner(job.id, "cust-1", contractor.id)

        assert job.won_by_contractor_id == contractor.id
        assert isinstance(job.state, Open)
        assert job.state.winner_id == contractor.id
        assert market.jobs.list_applications(job.id)[0].status == "accepted"
        assert "winner_selected" in notifier.events(contractor.id)

    def test_reselecting_same_winner_is_noop(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        market.grant_access(job.id, contractor.id, "credit")
        first = market.select_winner(job.id, "cust-1", contractor.id)

        again = market.select_winner(job.id, "cust-1", contractor.id)

        assert again.winner_selected_at == first.winner_selected_at

    def test_different_winner_rejected(self, market, contractor):
        other = market.register_contractor("user-2", initial_credits=1)
        job = market.create_job("cust-1", "Fit kitchen")
        market.grant_access(job.id, contractor.id, "credit")
        market.grant_access(job.id, other.id, "credit")
        market.select_winner(job.id, "cust-1", contractor.id)

        with pytest.raises(InvalidTransitionError):
            market.select_winner(job.id, "cust-1", other.id)

    def test_selecting_on_draft_publishes(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen", publish=False)
        market.grant_access(job.id, contractor.id, "credit")

        job = market.select_winner(job.id, "cust-1", contractor.id)

        assert job.status == "posted"


class TestWorkFlow:
    """Tests for start, completion and confirmation."""

    def test_start_rejects_other_applications(self, market, contractor):
        other = market.register_contractor("user-2", initial_credits=1)
        job = market.create_job("cust-1", "Fit kitchen")
        for c in (contractor, other):
            market.grant_access(job.id, c.id, "credit")
            market.apply(job.id, c.id)
        market.select_winner(job.id, "cust-1", contractor.id)

        job = market.confirm_work_start(job.id, "cust-1")

        assert isinstance(job.state, InProgress)
        statuses = {a.contractor_id: a.status for a in market.jobs.list_applications(job.id)}
        assert statuses == {contractor.id: "accepted", other.id: "rejected"}

    def test_start_requires_winner(self, market):
        job = market.create_job("cust-1", "Fit kitchen")
        with pytest.raises(InvalidTransitionError):
            market.confirm_work_start(job.id, "cust-1")

    def test_only_winner_completes(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen", budget="100")
        market.grant_access(job.id, contractor.id, "credit")
        market.select_winner(job.id, "cust-1", contractor.id)
        market.confirm_work_start(job.id, "cust-1")

        with pytest.raises(UnauthorizedError):
            market.mark_completed(job.id, "someone-else", "100")

    def test_complete_defaults_to_budget(self, run_to_completion, contractor, market):
        job = run_to_completion(contractor.id, final_amount=None, budget="640")

        assert isinstance(job.state, Completed)
        assert job.final_amount == Decimal("640.00")
        assert market.credits.get_contractor(contractor.id).jobs_completed == 1

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", "sNaN"])
    def test_complete_rejects_non_finite_amount(self, market, contractor, amount):
        job = market.create_job("cust-1", "Boiler service", budget="300")
        market.grant_access(job.id, contractor.id, "credit")
        market.select_winner(job.id, "cust-1", contractor.id)
        market.confirm_work_start(job.id, "cust-1")

        with pytest.raises(ValidationError):
            market.mark_completed(job.id, contractor.id, amount)

        assert isinstance(market.jobs.get_job(job.id).state, InProgress)

    def test_complete_without_amount_or_budget(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        market.grant_access(job.id, contractor.id, "credit")
        market.select_winner(job.id, "cust-1", contractor.id)
        market.confirm_work_start(job.id, "cust-1")

        with pytest.raises(ValidationError):
            market.mark_completed(job.id, contractor.id)

    def test_confirm_credit_job_creates_commission(self, market, completed_job, clock):
        result = market.confirm_completion(completed_job.id, "cust-1")

        assert result.job.customer_confirmed is True
        assert result.job.commission_paid is True
        commission = result.commission
        assert commission.commission_amount == Decimal("50.00")
        assert commission.total_amount == Decimal("50.00")
        assert commission.due_date == clock.now + timedelta(days=7)
        assert result.job.state.commission_paid is True

    def test_confirm_paid_job_has_no_commission(self, market, run_to_completion, contractor):
        job = run_to_completion(contractor.id, method="payment")

        result = market.confirm_completion(job.id, "cust-1")

        assert result.commission is None
        assert result.job.commission_paid is False
        assert market.commissions.get_for_job(job.id) is None

    def test_confirm_twice(self, market, completed_job):
        market.confirm_completion(completed_job.id, "cust-1")
        with pytest.raises(AlreadyConfirmedError):
            market.confirm_completion(completed_job.id, "cust-1")

    def test_confirm_before_completion(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        with pytest.raises(InvalidTransitionError):
            market.confirm_completion(job.id, "cust-1")

    def test_transition_history(self, market, completed_job):
        market.confirm_completion(completed_job.id, "cust-1")

        transitions = market.jobs.get_transitions(completed_job.id)

        assert [t.to_status for t in transitions] == [
            "posted",
            "in_progress",
            "completed",
            "completed",
        ]
        assert transitions[-1].metadata["event"] == "completion_confirmed"


class TestCancellation:
    """Tests for cancelling jobs."""

    def test_customer_cancels(self, market, contractor):
        job = market.create_job("cust-1", "Fit kitchen")
        market.grant_access(job.id, contractor.id, "credit")
        market.apply(job.id, contractor.id)

        job = market.cancel_job(job.id, "cust-1", "Found someone else")

        assert isinstance(job.state, Cancelled)
        assert job.cancellation_reason == "Found someone else"
        assert market.jobs.list_applications(job.id)[0].status == "rejected"

    def test_admin_cancels_in_progress(self, market, contractor, notifier):
        job = market.create_job("cust-1", "Fit kitchen", budget="100")
        market.grant_access(job.id, contractor.id, "credit")
        market.select_winner(job.id, "cust-1", contractor.id)
        market.confirm_work_start(job.id, "cust-1")

        job = market.cancel_job(job.id, "admin-1", "Dispute", is_admin=True)

        assert job.status == "cancelled"
        assert "job_cancelled" in notifier.events(contractor.id)

    def test_stranger_cannot_cancel(self, market):
        job = market.create_job("cust-1", "Fit kitchen")
        with pytest.raises(UnauthorizedError):
            market.cancel_job(job.id, "cust-2", "Because")

    def test_reason_required(self, market):
        job = market.create_job("cust-1", "Fit kitchen")
        with pytest.raises(ValidationError):
            market.cancel_job(job.id, "cust-1", " ")

    def test_completed_job_cannot_be_cancelled(self, market, completed_job):
        with pytest.raises(InvalidTransitionError):
            market.cancel_job(completed_job.id, "cust-1", "Too late")


class TestAutoConfirm:
    """Tests for confirming stale completions."""

    def test_confirms_after_timeout(self, market, completed_job, clock):
        clock.advance(timedelta(days=6))
        assert market.auto_confirm_stale_completions() == []

        clock.advance(timedelta(days=1))
        results = market.auto_confirm_stale_completions()

        assert len(results) == 1
        assert results[0].commission is not None
        transitions = market.jobs.get_transitions(completed_job.id)
        assert transitions[-1].actor_id == TIMEOUT_ACTOR

    def test_skips_confirmed_jobs(self, market, completed_job, clock):
        market.confirm_completion(completed_job.id, "cust-1")
        clock.advance(timedelta(days=30))

        assert market.auto_confirm_stale_completions() == []


class TestConcurrentConfirmation:
    """Exactly one commission under racing confirmations."""

    def test_one_commission(self, any_storage, gateway, clock):
        market = Marketplace(any_storage, gateway=gateway, clock=clock)
        contractor = market.register_contractor("user-1", initial_credits=1)
        job = market.create_job("cust-1", "Fit kitchen", budget="1000")
        market.grant_access(job.id, contractor.id, "credit")
        market.select_winner(job.id, "cust-1", contractor.id)
        market.confirm_work_start(job.id, "cust-1")
        market.mark_completed(job.id, contractor.id, "1000")

        def attempt(_):
            try:
                return market.confirm_completion(job.id, "cust-1")
            except AlreadyConfirmedError as e:
                return e

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(attempt, range(4)))

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert len(market.commissions.list()) == 1
        assert market.jobs.get_job(job.id).commission_paid is True
