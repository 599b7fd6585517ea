"""Payment gateway client.

``PaymentGateway`` is the narrow interface the engine charges and refunds
through. Every call carries an idempotency key; retrying with the same key
returns the original result instead of moving money twice. ``find_charge``
looks a charge up by that key, for attempts whose local record never landed.

``StripeGateway`` implements it with the ``stripe`` SDK.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import stripe

from leadledger.errors import GatewayError
from leadledger.payments.models import ChargeResult, RefundResult
from leadledger.utils import quantize_money

logger = logging.getLogger(__name__)

# Stripe caps metadata at 50 keys
_METADATA_LIMIT = 50

SETTLED_STATUSES = ("succeeded", "processing")


class PaymentGateway(Protocol):
    def charge(
        self, amount: Decimal, metadata: Dict[str, Any], idempotency_key: str
    ) -> ChargeResult: ...

    def refund(
        self, charge_id: str, amount: Decimal, reason: str, idempotency_key: str
    ) -> RefundResult: ...

    def find_charge(self, idempotency_key: str) -> Optional[ChargeResult]: ...


def to_minor_units(amount: Decimal) -> int:
    """Decimal pounds/dollars to integer pence/cents."""
    return int(quantize_money(amount) * 100)


def from_minor_units(value: int) -> Decimal:
    return quantize_money(Decimal(value) / 100)


def _gateway_error(action: str, e: "stripe.StripeError") -> GatewayError:
    message = e.user_message or str(e)
    logger.warning(f"Stripe {action} failed ({e.http_status}): {message}")
    return GatewayError(
        f"Payment gateway error: {message}",
        status_code=e.http_status,
        gateway_code=e.code,
    )


class StripeGateway:
    """Charges saved payment methods and refunds charges via Stripe.

    Charges are created as confirmed, off-session PaymentIntents against the
    customer and payment method named in ``metadata`` (``customer`` and
    ``payment_method`` keys); the remaining metadata, plus the idempotency
    key, is attached to the intent so ``find_charge`` can search for it.

    The key is passed on every request instead of being set on the ``stripe``
    module, so several gateways can live in one process.

    Args:
        api_key: Stripe secret key.
        currency: ISO currency code, lower-case.
    """

    def __init__(self, api_key: str, currency: str = "gbp"):
        if not api_key:
            raise ValueError("Stripe API key is required")
        self.currency = currency.lower()
        self._api_key = api_key

    def charge(
        self, amount: Decimal, metadata: Dict[str, Any], idempotency_key: str
    ) -> ChargeResult:
        if amount <= 0:
            raise ValueError("Charge amount must be positive")
        meta = dict(metadata)
        params: Dict[str, Any] = {}
        for field in ("customer", "payment_method"):
            value = meta.pop(field, None)
            if value:
                params[field] = value
        intent_metadata = {
            key: str(value)
            for key, value in list(meta.items())[: _METADATA_LIMIT - 1]
            if value is not None
        }
        intent_metadata["idempotency_key"] = idempotency_key

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._api_key,
                idempotency_key=idempotency_key,
                amount=to_minor_units(amount),
                currency=self.currency,
                confirm=True,
                off_session=True,
                metadata=intent_metadata,
                **params,
            )
        except stripe.StripeError as e:
            raise _gateway_error("charge", e) from e

        if intent.status not in SETTLED_STATUSES:
            raise GatewayError(
                f"Charge not completed (status={intent.status})",
                charge_id=intent.id,
            )
        logger.info(f"Charged {amount} {self.currency} ({intent.id})")
        return ChargeResult(
            charge_id=intent.id,
            amount=from_minor_units(intent.amount),
            status=intent.status,
        )

    def refund(
        self, charge_id: str, amount: Decimal, reason: str, idempotency_key: str
    ) -> RefundResult:
        if amount <= 0:
            raise ValueError("Refund amount must be positive")
        try:
            refund = stripe.Refund.create(
                api_key=self._api_key,
                idempotency_key=idempotency_key,
                payment_intent=charge_id,
                amount=to_minor_units(amount),
                metadata={"reason": reason},
            )
        except stripe.StripeError as e:
            raise _gateway_error("refund", e) from e
        logger.info(f"Refunded {amount} {self.currency} of {charge_id} ({refund.id})")
        return RefundResult(
            refund_id=refund.id,
            amount=from_minor_units(refund.amount),
            status=refund.status or "succeeded",
        )

    def find_charge(self, idempotency_key: str) -> Optional[ChargeResult]:
        """The settled charge created under ``idempotency_key``, if any.

        Stripe's search index trails writes by up to a minute, so a charge
        made moments ago may not be found yet.
        """
        escaped = idempotency_key.replace("'", "\\'")
        try:
            result = stripe.PaymentIntent.search(
                api_key=self._api_key,
                query=f"metadata['idempotency_key']:'{escaped}'",
            )
        except stripe.StripeError as e:
            raise _gateway_error("search", e) from e
        for intent in result.data:
            if intent.status in SETTLED_STATUSES:
                return ChargeResult(
                    charge_id=intent.id,
                    amount=from_minor_units(intent.amount),
                    status=intent.status,
                )
        return None
