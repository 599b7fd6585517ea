"""Payment and refund records."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from leadledger.utils import (
    format_datetime,
    format_money,
    parse_datetime,
    quantize_money,
    to_decimal,
    utc_now,
)


class PaymentPurpose(str, Enum):
    LEAD_ACCESS = "lead_access"
    COMMISSION = "commission"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


@dataclass
class ChargeResult:
    charge_id: str
    amount: Optional[Decimal] = None
    status: str = "succeeded"


@dataclass
class RefundResult:
    refund_id: str
    amount: Optional[Decimal] = None
    status: str = "succeeded"


@dataclass
class Payment:
    """A gateway charge recorded locally.

    ``refunded_amount`` accumulates partial refunds. The payment stays
    COMPLETED until the full amount has been refunded.
    """

    id: str
    contractor_id: str
    purpose: str
    amount: Decimal
    charge_id: str
    idempotency_key: str
    job_id: Optional[str] = None
    commission_id: Optional[str] = None
    currency: str = "gbp"
    status: str = PaymentStatus.COMPLETED.value
    refunded_amount: Decimal = Decimal("0.00")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.purpose, PaymentPurpose):
            self.purpose = self.purpose.value
        if isinstance(self.status, PaymentStatus):
            self.status = self.status.value
        if self.purpose not in [p.value for p in PaymentPurpose]:
            raise ValueError(f"Invalid purpose: {self.purpose}")
        if self.status not in [s.value for s in PaymentStatus]:
            raise ValueError(f"Invalid status: {self.status}")
        amount = to_decimal(self.amount)
        if amount is None or amount <= 0:
            raise ValueError("Payment amount must be positive")
        self.amount = quantize_money(amount)
        self.refunded_amount = quantize_money(to_decimal(self.refunded_amount) or Decimal(0))
        if self.refunded_amount < 0 or self.refunded_amount > self.amount:
            raise ValueError("Refunded amount must be between 0 and the payment amount")
        if not self.charge_id:
            raise ValueError("Charge id is required")
        if not self.idempotency_key:
            raise ValueError("Idempotency key is required")
        self.currency = self.currency.lower()
        self.created_at = parse_datetime(self.created_at) or utc_now()
        self.updated_at = parse_datetime(self.updated_at) or self.created_at

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "contractor_id": self.contractor_id,
            "job_id": self.job_id,
            "commission_id": self.commission_id,
            "purpose": self.purpose,
            "amount": format_money(self.amount),
            "currency": self.currency,
            "status": self.status,
            "charge_id": self.charge_id,
            "idempotency_key": self.idempotency_key,
            "refunded_amount": format_money(self.refunded_amount),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Payment":
        return cls(
            id=data["id"],
            contractor_id=data["contractor_id"],
            job_id=data.get("job_id"),
            commission_id=data.get("commission_id"),
            purpose=data["purpose"],
            amount=data["amount"],
            currency=data.get("currency") or "gbp",
            status=data.get("status") or PaymentStatus.COMPLETED.value,
            charge_id=data["charge_id"],
            idempotency_key=data["idempotency_key"],
            refunded_amount=data.get("refunded_amount") or "0.00",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Refund:
    """A refund issued against a payment's gateway charge."""

    id: str
    payment_id: str
    amount: Decimal
    reason: str
    refund_id: str
    idempotency_key: str
    actor_id: str
    created_at: Optional[datetime] = None

    def __post_init__(self):
        amount = to_decimal(self.amount)
        if amount is None or amount <= 0:
            raise ValueError("Refund amount must be positive")
        self.amount = quantize_money(amount)
        if not self.reason:
            raise ValueError("Refund reason is required")
        self.created_at = parse_datetime(self.created_at) or utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "amount": format_money(self.amount),
            "reason": self.reason,
            "refund_id": self.refund_id,
            "idempotency_key": self.idempotency_key,
            "actor_id": self.actor_id,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Refund":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})
