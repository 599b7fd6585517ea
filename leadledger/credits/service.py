"""Credit ledger.

Contractors hold an integer balance of lead credits. Every balance change
writes a ``CreditTransaction`` in the same storage transaction, so the
balance always equals the signed sum of the contractor's ledger rows and can
never go negative.

``debit_in`` / ``credit_in`` operate on a caller's open transaction (lead
access debits inside the same transaction that inserts the access row);
``CreditLedger`` wraps them for standalone use.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, List, Optional

from leadledger.audit import record_audit
from leadledger.config import MarketConfig
from leadledger.credits.models import (
    Contractor,
    ContractorStatus,
    CreditResetSummary,
    CreditTransaction,
    CreditTransactionType,
)
from leadledger.errors import ContractorNotFoundError, InsufficientCreditsError, ValidationError
from leadledger.logging_config import log_financial_event
from leadledger.utils import new_id, utc_now

if TYPE_CHECKING:
    from leadledger.storage.base import MarketStorage

logger = logging.getLogger(__name__)

WEEKLY_RESET_DESCRIPTION = "Weekly credit reset"


def _check_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Credit amount must be a positive integer", amount=amount)
    return amount


def _load_contractor(txn, contractor_id: str) -> Contractor:
    contractor = txn.get_contractor(contractor_id)
    if contractor is None:
        raise ContractorNotFoundError(contractor_id)
    return contractor


def debit_in(
    txn,
    contractor_id: str,
    amount: int,
    description: str,
    job_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditTransaction:
    """Deduct credits inside ``txn``.

    Raises:
        InsufficientCreditsError: If the balance is below ``amount``
    """
    _check_amount(amount)
    now = now or utc_now()
    contractor = _load_contractor(txn, contractor_id)
    if contractor.credits_balance < amount:
        raise InsufficientCreditsError(contractor_id, contractor.credits_balance, amount)

    contractor.credits_balance -= amount
    contractor.updated_at = now
    txn.update_contractor(contractor)
    row = CreditTransaction(
        id=new_id(),
        contractor_id=contractor_id,
        type=CreditTransactionType.DEDUCTION,
        amount=amount,
        description=description,
        job_id=job_id,
        actor_id=actor_id,
        created_at=now,
    )
    txn.save_credit_transaction(row)
    return row


def credit_in(
    txn,
    contractor_id: str,
    amount: int,
    description: str,
    job_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditTransaction:
    """Add credits inside ``txn``."""
    _check_amount(amount)
    now = now or utc_now()
    contractor = _load_contractor(txn, contractor_id)
    contractor.credits_balance += amount
    contractor.updated_at = now
    txn.update_contractor(contractor)
    row = CreditTransaction(
        id=new_id(),
        contractor_id=contractor_id,
        type=CreditTransactionType.ADDITION,
        amount=amount,
        description=description,
        job_id=job_id,
        actor_id=actor_id,
        created_at=now,
    )
    txn.save_credit_transaction(row)
    return row


class CreditLedger:
    """Contractor credit balances and their ledger."""

    def __init__(
        self,
        storage: "MarketStorage",
        config: Optional[MarketConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.config = config or MarketConfig()
        self._clock = clock

    # === Accounts ===

    def create_contractor(
        self,
        user_id: str,
        weekly_credits_limit: int = 0,
        initial_credits: int = 0,
        contractor_id: Optional[str] = None,
    ) -> Contractor:
        """Register a contractor. Initial credits are written as a ledger row."""
        if initial_credits < 0:
            raise ValidationError("Initial credits cannot be negative")
        now = self._clock()
        try:
            contractor = Contractor(
                id=contractor_id or new_id(),
                user_id=user_id,
                weekly_credits_limit=weekly_credits_limit,
                created_at=now,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e
        with self.storage.transaction() as txn:
            txn.save_contractor(contractor)
            if initial_credits:
                credit_in(txn, contractor.id, initial_credits, "Initial credits", now=now)
            contractor = txn.get_contractor(contractor.id)
        logger.info(f"Registered contractor {contractor.id} for user {user_id}")
        return contractor

    def get_contractor(self, contractor_id: str) -> Contractor:
        with self.storage.read() as txn:
            return _load_contractor(txn, contractor_id)

    # === Ledger operations ===

    def debit(
        self,
        contractor_id: str,
        amount: int,
        description: str,
        job_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> CreditTransaction:
        with self.storage.transaction() as txn:
            row = debit_in(
                txn, contractor_id, amount, description, job_id, actor_id, now=self._clock()
            )
        log_financial_event(
            "credits.debit", contractor=contractor_id, amount=amount, job=job_id
        )
        return row

    def credit(
        self,
        contractor_id: str,
        amount: int,
        reason: str,
        actor_id: Optional[str] = None,
    ) -> CreditTransaction:
        with self.storage.transaction() as txn:
            row = credit_in(txn, contractor_id, amount, reason, actor_id=actor_id, now=self._clock())
        log_financial_event("credits.credit", contractor=contractor_id, amount=amount)
        return row

    def adjust(
        self,
        contractor_id: str,
        amount: int,
        type,
        reason: str,
        actor_id: str,
    ) -> CreditTransaction:
        """Admin adjustment with a mandatory reason and an audit entry.

        Raises:
            ValidationError: Missing reason, bad amount or type
            InsufficientCreditsError: A deduction larger than the balance
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for credit adjustments")
        try:
            tx_type = CreditTransactionType(type)
        except ValueError as e:
            raise ValidationError(f"Invalid adjustment type: {type}") from e
        _check_amount(amount)

        now = self._clock()
        with self.storage.transaction() as txn:
            before = _load_contractor(txn, contractor_id).credits_balance
            description = f"Admin adjustment: {reason.strip()}"
            if tx_type == CreditTransactionType.ADDITION:
                row = credit_in(txn, contractor_id, amount, description, actor_id=actor_id, now=now)
            else:
                row = debit_in(txn, contractor_id, amount, description, actor_id=actor_id, now=now)
            after = before + row.signed_amount
            record_audit(
                txn,
                actor_id=actor_id,
                action="credits.adjust",
                entity_type="contractor",
                entity_id=contractor_id,
                before={"credits_balance": before},
                after={"credits_balance": after},
                reason=reason,
                now=now,
            )
        logger.info(f"Adjusted credits for {contractor_id}: {row.signed_amount:+d} by {actor_id}")
        log_financial_event(
            "credits.adjust",
            contractor=contractor_id,
            delta=row.signed_amount,
            balance=after,
            actor=actor_id,
        )
        return row

    def reset_weekly(
        self,
        now: Optional[datetime] = None,
        force: bool = False,
        actor_id: str = "system",
    ) -> CreditResetSummary:
        """Restore each eligible contractor's balance to their weekly limit.

        Eligible: ``weekly_credits_limit > 0`` and the last reset is at least
        ``credit_reset_interval`` ago (or never happened), unless ``force``.
        The signed change is written as one ledger row; a contractor already
        at the limit gets a new ``last_credit_reset`` and no row.
        """
        now = now or self._clock()
        summary = CreditResetSummary()
        interval = self.config.credit_reset_interval

        with self.storage.transaction() as txn:
            for contractor in txn.list_contractors():
                if contractor.weekly_credits_limit <= 0:
                    continue
                due = (
                    force
                    or contractor.last_credit_reset is None
                    or now - contractor.last_credit_reset >= interval
                )
                if not due:
                    summary.skipped += 1
                    continue

                before = contractor.credits_balance
                delta = contractor.weekly_credits_limit - before
                if delta > 0:
                    credit_in(txn, contractor.id, delta, WEEKLY_RESET_DESCRIPTION, actor_id=actor_id, now=now)
                    summary.credits_added += delta
                elif delta < 0:
                    debit_in(txn, contractor.id, -delta, WEEKLY_RESET_DESCRIPTION, actor_id=actor_id, now=now)
                    summary.credits_removed += -delta

                contractor = txn.get_contractor(contractor.id)
                contractor.last_credit_reset = now
                contractor.updated_at = now
                txn.update_contractor(contractor)
                record_audit(
                    txn,
                    actor_id=actor_id,
                    action="credits.reset_weekly",
                    entity_type="contractor",
                    entity_id=contractor.id,
                    before={"credits_balance": before},
                    after={"credits_balance": contractor.credits_balance},
                    reason="forced" if force else None,
                    now=now,
                )
                summary.contractors_reset += 1
                summary.contractor_ids.append(contractor.id)

        logger.info(
            f"Weekly credit reset: {summary.contractors_reset} reset, {summary.skipped} not due"
        )
        log_financial_event(
            "credits.reset_weekly",
            reset=summary.contractors_reset,
            added=summary.credits_added,
            removed=summary.credits_removed,
        )
        return summary

    # === Queries ===

    def balance(self, contractor_id: str) -> int:
        return self.get_contractor(contractor_id).credits_balance

    def history(self, contractor_id: str) -> List[CreditTransaction]:
        with self.storage.read() as txn:
            _load_contractor(txn, contractor_id)
            return txn.list_credit_transactions(contractor_id)

    def reconcile(self, contractor_id: str) -> bool:
        """True if the balance equals the signed sum of the ledger."""
        with self.storage.read() as txn:
            contractor = _load_contractor(txn, contractor_id)
            total = sum(t.signed_amount for t in txn.list_credit_transactions(contractor_id))
        if total != contractor.credits_balance:
            logger.error(
                f"Credit ledger mismatch for {contractor_id}: "
                f"balance {contractor.credits_balance}, ledger {total}"
            )
            return False
        return True

    def list_contractors(self, status: Optional[str] = None) -> List[Contractor]:
        if status is not None:
            status = ContractorStatus(status).value
        with self.storage.read() as txn:
            return txn.list_contractors(status=status)
