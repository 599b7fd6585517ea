"""Commission administration and scheduled jobs.

Commissions are created by settlement (see ``settlement.py``). This service
collects them (gateway payment), lets admins waive them or mark them paid
out of band, and runs the scheduled reminder and overdue sweeps. A
contractor with an overdue commission is suspended until it is settled.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from leadledger.audit import SYSTEM_ACTOR, record_audit
from leadledger.commission.models import (
    CommissionInvoice,
    CommissionPayment,
    CommissionStatus,
    CommissionSummary,
    SettlementMethod,
    SettlementRecord,
)
from leadledger.config import MarketConfig
from leadledger.credits.models import ContractorStatus
from leadledger.errors import (
    CommissionNotFoundError,
    GatewayError,
    InvalidCommissionStateError,
    ValidationError,
)
from leadledger.logging_config import log_financial_event
from leadledger.notifications import NotificationDispatcher, NotificationEvent
from leadledger.payments.models import Payment, PaymentPurpose
from leadledger.utils import new_id, utc_now

if TYPE_CHECKING:
    from leadledger.payments.gateway import PaymentGateway
    from leadledger.storage.base import MarketStorage

logger = logging.getLogger(__name__)


def commission_key(commission_id: str) -> str:
    return f"commission:{commission_id}"


def commission_release_key(charge_id: str) -> str:
    return f"commission-release:{charge_id}"


@dataclass
class Reminder:
    commission: CommissionPayment
    hours_remaining: int


def _load(txn, commission_id: str) -> CommissionPayment:
    commission = txn.get_commission(commission_id)
    if commission is None:
        raise CommissionNotFoundError(commission_id)
    return commission


class CommissionService:
    """Collection, administration and scheduled processing of commissions."""

    def __init__(
        self,
        storage: "MarketStorage",
        gateway: Optional["PaymentGateway"] = None,
        notifications: Optional[NotificationDispatcher] = None,
        config: Optional[MarketConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.gateway = gateway
        self.notifications = notifications or NotificationDispatcher()
        self.config = config or MarketConfig()
        self._clock = clock

    # === Queries ===

    def get(self, commission_id: str) -> CommissionPayment:
        with self.storage.read() as txn:
            return _load(txn, commission_id)

    def get_for_job(self, job_id: str) -> Optional[CommissionPayment]:
        with self.storage.read() as txn:
            return txn.get_commission_for_job(job_id)

    def get_invoice(self, commission_id: str) -> Optional[CommissionInvoice]:
        with self.storage.read() as txn:
            _load(txn, commission_id)
            return txn.get_invoice_for_commission(commission_id)

    def list_settlements(self, commission_id: str) -> List[SettlementRecord]:
        with self.storage.read() as txn:
            _load(txn, commission_id)
            return txn.list_settlements(commission_id)

    def list(
        self, status: Optional[str] = None, contractor_id: Optional[str] = None
    ) -> List[CommissionPayment]:
        if status is not None:
            try:
                status = CommissionStatus(status).value
            except ValueError as e:
                raise ValidationError(f"Invalid commission status: {status}") from e
        with self.storage.read() as txn:
            return txn.list_commissions(status=status, contractor_id=contractor_id)

    def summary(self) -> CommissionSummary:
        """Counts and total amounts per status."""
        summary = CommissionSummary(
            counts={s.value: 0 for s in CommissionStatus},
            totals={s.value: Decimal("0.00") for s in CommissionStatus},
        )
        for commission in self.list():
            summary.counts[commission.status] += 1
            summary.totals[commission.status] += commission.total_amount
        return summary

    # === Contractor suspension ===

    def _reactivate_if_clear(
        self, txn, commission: CommissionPayment, actor_id: str, now: datetime
    ) -> bool:
        """Lift a suspension caused by ``commission`` if nothing else is overdue."""
        contractor = txn.get_contractor(commission.contractor_id)
        if contractor is None or not contractor.is_suspended:
            return False
        if contractor.suspended_for_commission_id != commission.id:
            return False

        still_overdue = [
            c
            for c in txn.list_commissions(
                status=CommissionStatus.OVERDUE.value, contractor_id=contractor.id
            )
            if c.id != commission.id
        ]
        if still_overdue:
            contractor.suspended_for_commission_id = still_overdue[0].id
            contractor.updated_at = now
            txn.update_contractor(contractor)
            return False

        contractor.status = ContractorStatus.ACTIVE.value
        contractor.suspended_for_commission_id = None
        contractor.updated_at = now
        txn.update_contractor(contractor)
        record_audit(
            txn,
            actor_id=actor_id,
            action="contractor.reactivate",
            entity_type="contractor",
            entity_id=contractor.id,
            before={"status": ContractorStatus.SUSPENDED.value, "commission_id": commission.id},
            after={"status": ContractorStatus.ACTIVE.value},
            now=now,
        )
        logger.info(f"Reactivated contractor {contractor.id} after commission {commission.id}")
        return True

    def _after_reactivation(self, contractor_id: str, reactivated: bool) -> None:
        if reactivated:
            self.notifications.notify(contractor_id, NotificationEvent.ACCOUNT_REACTIVATED)

    # === Administrative actions ===

    def waive(self, commission_id: str, reason: str, actor_id: str) -> CommissionPayment:
        """Waive a PENDING or OVERDUE commission. WAIVED is terminal.

        Raises:
            ValidationError: No reason given
            CommissionNotFoundError
            InvalidCommissionStateError: Already PAID or WAIVED
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to waive a commission")
        now = self._clock()
        with self.storage.transaction() as txn:
            commission = _load(txn, commission_id)
            if not commission.can_transition_to(CommissionStatus.WAIVED):
                raise InvalidCommissionStateError(commission_id, commission.status, "waive")
            before = commission.to_dict()
            commission.status = CommissionStatus.WAIVED.value
            commission.waived_at = now
            commission.waive_reason = reason.strip()
            commission.updated_at = now
            txn.update_commission(commission)
            reactivated = self._reactivate_if_clear(txn, commission, actor_id, now)
            record_audit(
                txn,
                actor_id=actor_id,
                action="commission.waive",
                entity_type="commission",
                entity_id=commission_id,
                before={"status": before["status"]},
                after={"status": commission.status, "waived_at": now.isoformat()},
                reason=reason,
                now=now,
            )

        logger.info(f"Commission {commission_id} waived by {actor_id}: {reason}")
        log_financial_event(
            "commission.waive",
            commission=commission_id,
            job=commission.job_id,
            amount=commission.total_amount,
            actor=actor_id,
        )
        self.notifications.notify(
            commission.contractor_id,
            NotificationEvent.COMMISSION_WAIVED,
            commission_id=commission_id,
            job_id=commission.job_id,
        )
        self._after_reactivation(commission.contractor_id, reactivated)
        return commission

    def manual_override_paid(
        self, commission_id: str, reason: str, actor_id: str
    ) -> CommissionPayment:
        """Mark a commission PAID without a gateway charge (paid out of band)."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to mark a commission paid")
        now = self._clock()
        with self.storage.transaction() as txn:
            commission = _load(txn, commission_id)
            if not commission.can_transition_to(CommissionStatus.PAID):
                raise InvalidCommissionStateError(
                    commission_id, commission.status, "mark paid"
                )
            before_status = commission.status
            commission.status = CommissionStatus.PAID.value
            commission.paid_at = now
            commission.updated_at = now
            txn.update_commission(commission)
            txn.save_settlement(
                SettlementRecord(
                    id=new_id(),
                    commission_id=commission_id,
                    method=SettlementMethod.MANUAL_OVERRIDE,
                    amount=commission.total_amount,
                    reason=reason.strip(),
                    actor_id=actor_id,
                    created_at=now,
                )
            )
            reactivated = self._reactivate_if_clear(txn, commission, actor_id, now)
            record_audit(
                txn,
                actor_id=actor_id,
                action="commission.manual_override_paid",
                entity_type="commission",
                entity_id=commission_id,
                before={"status": before_status},
                after={"status": commission.status, "paid_at": now.isoformat()},
                reason=reason,
                now=now,
            )

        logger.info(f"Commission {commission_id} marked paid by {actor_id}: {reason}")
        log_financial_event(
            "commission.manual_paid",
            commission=commission_id,
            amount=commission.total_amount,
            actor=actor_id,
        )
        self.notifications.notify(
            commission.contractor_id,
            NotificationEvent.COMMISSION_PAID,
            commission_id=commission_id,
            job_id=commission.job_id,
        )
        self._after_reactivation(commission.contractor_id, reactivated)
        return commission

    def pay(
        self,
        commission_id: str,
        actor_id: str,
        payment_metadata: Optional[Dict[str, Any]] = None,
    ) -> CommissionPayment:
        """Collect a commission through the payment gateway.

        Retrying after a failure is safe: the charge uses the idempotency key
        ``commission:<id>``, and a commission already recorded as paid by
        that charge is returned unchanged.

        If the commission was settled some other way after a charge went
        through but before it was recorded, the retry refunds that charge.
        """
        key = commission_key(commission_id)
        with self.storage.read() as txn:
            commission = _load(txn, commission_id)
            recorded = txn.get_payment_by_key(key) is not None
        if commission.status == CommissionStatus.PAID.value and recorded:
            return commission
        if not commission.can_transition_to(CommissionStatus.PAID):
            if not recorded:
                self._release_unrecorded_charge(commission)
            raise InvalidCommissionStateError(commission_id, commission.status, "pay")
        if commission.total_amount <= 0:
            raise ValidationError("Commission has nothing to charge; waive it instead")
        if self.gateway is None:
            raise GatewayError("No payment gateway configured")

        charge = self.gateway.charge(
            commission.total_amount,
            metadata={
                **(payment_metadata or {}),
                "purpose": PaymentPurpose.COMMISSION.value,
                "commission_id": commission_id,
                "job_id": commission.job_id,
                "contractor_id": commission.contractor_id,
            },
            idempotency_key=key,
        )

        now = self._clock()
        state_error = None
        reactivated = False
        with self.storage.transaction() as txn:
            commission = _load(txn, commission_id)
            if txn.get_payment_by_key(key) is not None:
                return commission
            if not commission.can_transition_to(CommissionStatus.PAID):
                state_error = InvalidCommissionStateError(
                    commission_id, commission.status, "pay"
                )
            else:
                before_status = commission.status
                txn.save_payment(
                    Payment(
                        id=new_id(),
                        contractor_id=commission.contractor_id,
                        job_id=commission.job_id,
                        commission_id=commission_id,
                        purpose=PaymentPurpose.COMMISSION,
                        amount=commission.total_amount,
                        currency=self.config.currency,
                        charge_id=charge.charge_id,
                        idempotency_key=key,
                        created_at=now,
                    )
                )
                commission.status = CommissionStatus.PAID.value
                commission.paid_at = now
                commission.updated_at = now
                txn.update_commission(commission)
                txn.save_settlement(
                    SettlementRecord(
                        id=new_id(),
                        commission_id=commission_id,
                        method=SettlementMethod.GATEWAY,
                        amount=commission.total_amount,
                        charge_id=charge.charge_id,
                        actor_id=actor_id,
                        created_at=now,
                    )
                )
                reactivated = self._reactivate_if_clear(txn, commission, actor_id, now)
                record_audit(
                    txn,
                    actor_id=actor_id,
                    action="commission.pay",
                    entity_type="commission",
                    entity_id=commission_id,
                    before={"status": before_status},
                    after={"status": commission.status, "charge_id": charge.charge_id},
                    now=now,
                )

        if state_error is not None:
            # Settled another way while the charge was in flight
            self._release_charge(commission, charge.charge_id, charge.amount)
            raise state_error

        logger.info(f"Commission {commission_id} paid via gateway ({charge.charge_id})")
        log_financial_event(
            "commission.pay",
            commission=commission_id,
            amount=commission.total_amount,
            charge=charge.charge_id,
        )
        self.notifications.notify(
            commission.contractor_id,
            NotificationEvent.COMMISSION_PAID,
            commission_id=commission_id,
            job_id=commission.job_id,
        )
        self._after_reactivation(commission.contractor_id, reactivated)
        return commission

    def _release_charge(
        self, commission: CommissionPayment, charge_id: str, amount: Decimal
    ) -> None:
        self.gateway.refund(
            charge_id,
            amount,
            reason="Commission no longer payable",
            idempotency_key=commission_release_key(charge_id),
        )
        logger.info(f"Refunded charge {charge_id}: commission {commission.id} no longer payable")
        log_financial_event(
            "commission.release", commission=commission.id, charge=charge_id, amount=amount
        )

    def _release_unrecorded_charge(self, commission: CommissionPayment) -> None:
        """Refund a gateway charge for this commission that the ledger never recorded."""
        if self.gateway is None:
            return
        charge = self.gateway.find_charge(commission_key(commission.id))
        if charge is None:
            return
        logger.warning(
            f"Charge {charge.charge_id} for commission {commission.id} was never "
            "recorded; releasing it"
        )
        self._release_charge(commission, charge.charge_id, charge.amount)

    # === Scheduled jobs ===

    def sweep_overdue(self, now: Optional[datetime] = None) -> List[CommissionPayment]:
        """Mark PENDING commissions past their due date OVERDUE and suspend the contractors.

        Returns:
            The commissions that became overdue in this run.
        """
        now = now or self._clock()
        overdue: List[CommissionPayment] = []
        suspended: List[str] = []

        with self.storage.transaction() as txn:
            for commission in txn.list_commissions(status=CommissionStatus.PENDING.value):
                if commission.due_date >= now:
                    continue
                commission.status = CommissionStatus.OVERDUE.value
                commission.updated_at = now
                txn.update_commission(commission)
                record_audit(
                    txn,
                    actor_id=SYSTEM_ACTOR,
                    action="commission.overdue",
                    entity_type="commission",
                    entity_id=commission.id,
                    before={"status": CommissionStatus.PENDING.value},
                    after={"status": CommissionStatus.OVERDUE.value},
                    now=now,
                )
                overdue.append(commission)

                contractor = txn.get_contractor(commission.contractor_id)
                if contractor is not None and not contractor.is_suspended:
                    contractor.status = ContractorStatus.SUSPENDED.value
                    contractor.suspended_for_commission_id = commission.id
                    contractor.updated_at = now
                    txn.update_contractor(contractor)
                    record_audit(
                        txn,
                        actor_id=SYSTEM_ACTOR,
                        action="contractor.suspend",
                        entity_type="contractor",
                        entity_id=contractor.id,
                        before={"status": ContractorStatus.ACTIVE.value},
                        after={
                            "status": ContractorStatus.SUSPENDED.value,
                            "commission_id": commission.id,
                        },
                        reason="Commission overdue",
                        now=now,
                    )
                    suspended.append(contractor.id)

        for commission in overdue:
            log_financial_event(
                "commission.overdue",
                commission=commission.id,
                contractor=commission.contractor_id,
                amount=commission.total_amount,
            )
            self.notifications.notify(
                commission.contractor_id,
                NotificationEvent.COMMISSION_OVERDUE,
                commission_id=commission.id,
                job_id=commission.job_id,
                amount=str(commission.total_amount),
            )
        for contractor_id in suspended:
            self.notifications.notify(contractor_id, NotificationEvent.ACCOUNT_SUSPENDED)

        if overdue:
            logger.info(
                f"Overdue sweep: {len(overdue)} commissions overdue, "
                f"{len(suspended)} contractors suspended"
            )
        return overdue

    def send_reminders(self, now: Optional[datetime] = None) -> List[Reminder]:
        """Remind contractors of PENDING commissions approaching their due date.

        Reminders go out as each threshold in ``reminder_thresholds_hours`` is
        crossed inside the reminder window, at most once per threshold. If
        several thresholds were crossed since the last run, one reminder is
        sent.
        """
        now = now or self._clock()
        window_hours = self.config.reminder_window_hours
        thresholds = self.config.reminder_thresholds_hours
        reminders: List[Reminder] = []

        with self.storage.transaction() as txn:
            for commission in txn.list_commissions(status=CommissionStatus.PENDING.value):
                hours_left = (commission.due_date - now).total_seconds() / 3600
                if hours_left <= 0 or hours_left > window_hours:
                    continue
                crossed = sum(1 for t in thresholds if hours_left <= t)
                if crossed <= commission.reminders_sent:
                    continue
                commission.reminders_sent = crossed
                commission.last_reminder_at = now
                commission.updated_at = now
                txn.update_commission(commission)
                reminders.append(Reminder(commission=commission, hours_remaining=int(hours_left)))

        for reminder in reminders:
            commission = reminder.commission
            self.notifications.notify(
                commission.contractor_id,
                NotificationEvent.COMMISSION_REMINDER,
                commission_id=commission.id,
                job_id=commission.job_id,
                amount=str(commission.total_amount),
                hours_remaining=reminder.hours_remaining,
            )
        if reminders:
            logger.info(f"Sent {len(reminders)} commission reminders")
        return reminders
