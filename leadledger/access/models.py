"""Lead access models."""

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


class AccessMethod(str, Enum):
    """How the contractor paid to unlock the lead.

    CREDIT leads carry a commission obligation if the contractor wins the job;
    PAYMENT leads do not.
    """

    PAYMENT = "payment"
    CREDIT = "credit"


@dataclass
class JobAccess:
    """A contractor's unlocked lead on a job. Insert-only."""

    id: str
    job_id: str
    contractor_id: str
    access_method: str
    paid_amount: Optional[Decimal] = None
    credits_used: int = 0
    payment_id: Optional[str] = None
    accessed_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.access_method, AccessMethod):
            self.access_method = self.access_method.value
        if self.access_method not in [m.value for m in AccessMethod]:
            raise ValueError(f"Invalid access method: {self.access_method}")
        paid = to_decimal(self.paid_amount)
        if paid is not None and paid < 0:
            raise ValueError("Paid amount cannot be negative")
        self.paid_amount = quantize_money(paid) if paid is not None else None
        if self.credits_used < 0:
            raise ValueError("Credits used cannot be negative")
        if self.access_method == AccessMethod.CREDIT.value:
            if self.credits_used < 1:
                raise ValueError("Credit access must use at least one credit")
            if self.payment_id is not None:
                raise ValueError("Credit access cannot reference a payment")
        elif self.credits_used:
            raise ValueError("Payment access cannot use credits")
        self.accessed_at = parse_datetime(self.accessed_at) or utc_now()

    @property
    def is_credit(self) -> bool:
        return self.access_method == AccessMethod.CREDIT.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "contractor_id": self.contractor_id,
            "access_method": self.access_method,
            "paid_amount": format_money(self.paid_amount),
            "credits_used": self.credits_used,
            "payment_id": self.payment_id,
            "accessed_at": format_datetime(self.accessed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobAccess":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            contractor_id=data["contractor_id"],
            access_method=data["access_method"],
            paid_amount=data.get("paid_amount"),
            credits_used=int(data.get("credits_used") or 0),
            payment_id=data.get("payment_id"),
            accessed_at=data.get("accessed_at"),
        )


@dataclass
class AccessGrant:
    """Result of ``grant_access``: the access row and whether this call created it."""

    access: JobAccess
    created: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"access": self.access.to_dict(), "created": self.created}
