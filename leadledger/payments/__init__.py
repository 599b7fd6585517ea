"""Payments subsystem: gateway client, payment records and refunds."""

from leadledger.payments.gateway import PaymentGateway, StripeGateway
from leadledger.payments.models import (
    ChargeResult,
    Payment,
    PaymentPurpose,
    PaymentStatus,
    Refund,
    RefundResult,
)
from leadledger.payments.service import RefundService, refund_key

__all__ = [
    "PaymentGateway",
    "StripeGateway",
    "ChargeResult",
    "RefundResult",
    "Payment",
    "PaymentPurpose",
    "PaymentStatus",
    "Refund",
    "RefundService",
    "refund_key",
]
