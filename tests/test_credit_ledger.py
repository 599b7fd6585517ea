"""Tests for the credit ledger."""

from datetime import timedelta

import pytest

from leadledger import Marketplace
from leadledger.credits import CreditLedger, CreditTransactionType
from leadledger.errors import ContractorNotFoundError, InsufficientCreditsError, ValidationError


@pytest.fixture
def ledger(any_storage, config, clock):
    return CreditLedger(any_storage, config=config, clock=clock)


class TestBalances:
    """Tests for debits, credits and reconciliation."""

    def test_initial_credits_are_ledgered(self, ledger):
        contractor = ledger.create_contractor("user-1", initial_credits=3)

        assert contractor.credits_balance == 3
        history = ledger.history(contractor.id)
        assert len(history) == 1
        assert history[0].type == "addition"
        assert ledger.reconcile(contractor.id)

    def test_debit_and_credit(self, ledger):
        contractor = ledger.create_contractor("user-1", initial_credits=3)

        ledger.debit(contractor.id, 2, "Lead access", job_id="job-1")
        ledger.credit(contractor.id, 4, "Top up")

        assert ledger.balance(contractor.id) == 5
        assert [t.signed_amount for t in ledger.history(contractor.id)] == [3, -2, 4]
        assert ledger.reconcile(contractor.id)

    def test_overdraw_rejected_without_change(self, ledger):
        contractor = ledger.create_contractor("user-1", initial_credits=1)

        with pytest.raises(InsufficientCreditsError) as exc:
            ledger.debit(contractor.id, 2, "Lead access")

        assert exc.value.details["balance"] == 1
        assert ledger.balance(contractor.id) == 1
        assert len(ledger.history(contractor.id)) == 1

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    def test_invalid_amounts(self, ledger, amount):
        contractor = ledger.create_contractor("user-1", initial_credits=1)
        with pytest.raises(ValidationError):
            ledger.debit(contractor.id, amount, "Lead access")

    def test_unknown_contractor(self, ledger):
        with pytest.raises(ContractorNotFoundError):
            ledger.balance("nobody")

    def test_negative_initial_credits_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.create_contractor("user-1", initial_credits=-1)


class TestAdjustments:
    """Tests for admin credit adjustments."""

    def test_adjust_writes_audit(self, market, contractor):
        market.adjust_credits(contractor.id, 3, "addition", "Promo", actor_id="admin-1")

        assert market.credits.balance(contractor.id) == 8
        entry = market.audit_log(entity_id=contractor.id)[-1]
        assert entry.action == "credits.adjust"
        assert entry.actor_id == "admin-1"
        assert entry.before == {"credits_balance": 5}
        assert entry.after == {"credits_balance": 8}
        assert entry.reason == "Promo"

    def test_deduction(self, market, contractor):
        row = market.adjust_credits(
            contractor.id, 2, CreditTransactionType.DEDUCTION, "Clawback", actor_id="admin-1"
        )

        assert row.signed_amount == -2
        assert market.credits.balance(contractor.id) == 3

    def test_reason_required(self, market, contractor):
        with pytest.raises(ValidationError, match="reason"):
            market.adjust_credits(contractor.id, 1, "addition", "  ", actor_id="admin-1")

    def test_invalid_type(self, market, contractor):
        with pytest.raises(ValidationError):
            market.adjust_credits(contractor.id, 1, "gift", "Promo", actor_id="admin-1")

    def test_deduction_beyond_balance(self, market, contractor):
        with pytest.raises(InsufficientCreditsError):
            market.adjust_credits(contractor.id, 6, "deduction", "Clawback", actor_id="admin-1")
        assert market.audit_log(entity_id=contractor.id) == []


class TestWeeklyReset:
    """Tests for the weekly credit reset."""

    def test_tops_up_to_limit(self, market, clock):
        c = market.register_contractor("user-1", weekly_credits_limit=5, initial_credits=2)

        summary = market.reset_weekly_credits()

        assert summary.contractors_reset == 1
        assert summary.credits_added == 3
        assert market.credits.balance(c.id) == 5
        assert market.credits.get_contractor(c.id).last_credit_reset == clock.now
        assert market.credits.reconcile(c.id)

    def test_trims_surplus_to_limit(self, market):
        c = market.register_contractor("user-1", weekly_credits_limit=5, initial_credits=8)

        summary = market.reset_weekly_credits()

        assert summary.credits_removed == 3
        assert market.credits.balance(c.id) == 5
        assert market.credits.history(c.id)[-1].signed_amount == -3

    def test_not_due_until_interval_elapses(self, market, clock):
        c = market.register_contractor("user-1", weekly_credits_limit=5)
        market.reset_weekly_credits()
        market.credits.debit(c.id, 4, "Lead access")

        clock.advance(timedelta(days=6))
        assert market.reset_weekly_credits().skipped == 1
        assert market.credits.balance(c.id) == 1

        clock.advance(timedelta(days=1))
        assert market.reset_weekly_credits().contractors_reset == 1
        assert market.credits.balance(c.id) == 5

    def test_force_resets_everyone(self, market):
        c = market.register_contractor("user-1", weekly_credits_limit=5)
        market.reset_weekly_credits()
        market.credits.debit(c.id, 1, "Lead access")

        summary = market.reset_weekly_credits(force=True)

        assert summary.contractors_reset == 1
        assert market.credits.balance(c.id) == 5

    def test_contractors_without_allowance_untouched(self, market, contractor):
        summary = market.reset_weekly_credits()

        assert summary.contractors_reset == 0
        assert summary.skipped == 0
        assert market.credits.balance(contractor.id) == 5

    def test_reset_is_audited(self, market):
        c = market.register_contractor("user-1", weekly_credits_limit=2)

        market.reset_weekly_credits()

        entry = market.audit_log(entity_id=c.id)[-1]
        assert entry.action == "credits.reset_weekly"
        assert entry.after == {"credits_balance": 2}

    def test_sqlite_backend(self, sqlite_storage, clock):
        market = Marketplace(sqlite_storage, clock=clock)
        c = market.register_contractor("user-1", weekly_credits_limit=3, initial_credits=1)

        market.reset_weekly_credits()

        assert market.credits.balance(c.id) == 3
        assert market.credits.reconcile(c.id)
