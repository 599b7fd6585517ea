"""Refunds against recorded gateway payments."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, List, Optional

from leadledger.audit import record_audit
from leadledger.errors import (
    GatewayError,
    PaymentNotFoundError,
    RefundLimitExceededError,
    ValidationError,
)
from leadledger.logging_config import log_financial_event
from leadledger.notifications import NotificationDispatcher, NotificationEvent
from leadledger.payments.models import Payment, PaymentStatus, Refund
from leadledger.utils import new_id, quantize_money, to_decimal, utc_now

if TYPE_CHECKING:
    from leadledger.payments.gateway import PaymentGateway
    from leadledger.storage.base import MarketStorage

logger = logging.getLogger(__name__)


def refund_key(payment_id: str, amount: Decimal) -> str:
    return f"refund:{payment_id}:{amount}"


def _load(txn, payment_id: str) -> Payment:
    payment = txn.get_payment(payment_id)
    if payment is None:
        raise PaymentNotFoundError(payment_id)
    return payment


class RefundService:
    """Issues full or partial refunds of recorded payments."""

    def __init__(
        self,
        storage: "MarketStorage",
        gateway: Optional["PaymentGateway"] = None,
        notifications: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.gateway = gateway
        self.notifications = notifications or NotificationDispatcher()
        self._clock = clock

    def get_payment(self, payment_id: str) -> Payment:
        with self.storage.read() as txn:
            return _load(txn, payment_id)

    def list_refunds(self, payment_id: str) -> List[Refund]:
        with self.storage.read() as txn:
            _load(txn, payment_id)
            return txn.list_refunds(payment_id)

    def refund_payment(
        self,
        payment_id: str,
        amount,
        reason: str,
        actor_id: str,
        idempotency_key: Optional[str] = None,
    ) -> Refund:
        """Refund part or all of a payment through its original gateway charge.

        Args:
            payment_id: Local payment record
            amount: Positive amount, at most what remains unrefunded
            reason: Recorded on the refund and the audit entry
            actor_id: Admin issuing the refund
            idempotency_key: Defaults to ``refund:<payment_id>:<amount>``; a
                repeated key returns the refund already recorded

        Raises:
            ValidationError: Bad amount or missing reason
            PaymentNotFoundError
            RefundLimitExceededError: Amount exceeds the refundable balance
            GatewayError: The gateway refused; nothing was recorded
        """
        try:
            amount = to_decimal(amount)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if amount is None or amount <= 0:
            raise ValidationError("Refund amount must be positive")
        amount = quantize_money(amount)
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for refunds")
        key = idempotency_key or refund_key(payment_id, amount)

        with self.storage.transaction() as txn:
            existing = txn.get_refund_by_key(key)
            if existing is not None:
                return existing
            payment = _load(txn, payment_id)
            if amount > payment.refundable_amount:
                raise RefundLimitExceededError(
                    f"Refund of {amount} exceeds refundable {payment.refundable_amount}",
                    payment_id=payment_id,
                    refundable=str(payment.refundable_amount),
                )
        if self.gateway is None:
            raise GatewayError("No payment gateway configured")

        result = self.gateway.refund(payment.charge_id, amount, reason.strip(), key)

        now = self._clock()
        with self.storage.transaction() as txn:
            existing = txn.get_refund_by_key(key)
            if existing is not None:
                return existing
            payment = _load(txn, payment_id)
            if amount > payment.refundable_amount:
                # A concurrent refund used up the balance after our gateway call
                logger.error(
                    f"Gateway refund {result.refund_id} on payment {payment_id} exceeds the "
                    f"recorded refundable balance; reconcile manually"
                )
                raise RefundLimitExceededError(
                    f"Refund of {amount} exceeds refundable {payment.refundable_amount}",
                    payment_id=payment_id,
                    refund_id=result.refund_id,
                )
            before = {
                "status": payment.status,
                "refunded_amount": str(payment.refunded_amount),
            }
            payment.refunded_amount = payment.refunded_amount + amount
            if payment.refunded_amount >= payment.amount:
                payment.status = PaymentStatus.REFUNDED.value
            payment.updated_at = now
            txn.update_payment(payment)
            refund = Refund(
                id=new_id(),
                payment_id=payment_id,
                amount=amount,
                reason=reason.strip(),
                refund_id=result.refund_id,
                idempotency_key=key,
                actor_id=actor_id,
                created_at=now,
            )
            txn.save_refund(refund)
            record_audit(
                txn,
                actor_id=actor_id,
                action="payment.refund",
                entity_type="payment",
                entity_id=payment_id,
                before=before,
                after={
                    "status": payment.status,
                    "refunded_amount": str(payment.refunded_amount),
                },
                reason=reason,
                now=now,
            )

        full = payment.status == PaymentStatus.REFUNDED.value
        logger.info(f"Refunded {amount} of payment {payment_id} (full={full}) by {actor_id}")
        log_financial_event(
            "payment.refund", payment=payment_id, amount=amount, full=full, actor=actor_id
        )
        self.notifications.notify(
            payment.contractor_id,
            NotificationEvent.REFUND_ISSUED,
            payment_id=payment_id,
            amount=str(amount),
        )
        return refund
