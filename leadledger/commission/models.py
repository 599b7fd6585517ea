"""Commission settlement models."""

from dataclasses import dataclass, field
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


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    WAIVED = "waived"


# PAID and WAIVED are terminal.
VALID_COMMISSION_TRANSITIONS: Dict[CommissionStatus, set] = {
    CommissionStatus.PENDING: {
        CommissionStatus.PAID,
        CommissionStatus.OVERDUE,
        CommissionStatus.WAIVED,
    },
    CommissionStatus.OVERDUE: {CommissionStatus.PAID, CommissionStatus.WAIVED},
    CommissionStatus.PAID: set(),
    CommissionStatus.WAIVED: set(),
}


class SettlementMethod(str, Enum):
    GATEWAY = "gateway"
    MANUAL_OVERRIDE = "manual_override"


def _money(value) -> Optional[Decimal]:
    value = to_decimal(value)
    return quantize_money(value) if value is not None else None


@dataclass
class CommissionPayment:
    """Commission owed by a contractor who won a job through a credit lead.

    Attributes:
        final_job_amount: The job's final amount at confirmation
        commission_rate: Percentage, e.g. Decimal("5.0")
        commission_amount: final_job_amount * rate / 100
        vat_amount: Always zero
        total_amount: commission_amount + vat_amount
        reminders_sent: Reminder thresholds already notified
    """

    id: str
    job_id: str
    contractor_id: str
    customer_id: str
    final_job_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    due_date: datetime
    vat_amount: Decimal = Decimal("0.00")
    total_amount: Optional[Decimal] = None
    status: str = CommissionStatus.PENDING.value
    paid_at: Optional[datetime] = None
    waived_at: Optional[datetime] = None
    waive_reason: Optional[str] = None
    reminders_sent: int = 0
    last_reminder_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, CommissionStatus):
            self.status = self.status.value
        if self.status not in [s.value for s in CommissionStatus]:
            raise ValueError(f"Invalid status: {self.status}")
        self.final_job_amount = _money(self.final_job_amount)
        self.commission_rate = to_decimal(self.commission_rate)
        self.commission_amount = _money(self.commission_amount)
        self.vat_amount = _money(self.vat_amount) or Decimal("0.00")
        if self.final_job_amount is None or self.final_job_amount <= 0:
            raise ValueError("Final job amount must be positive")
        if self.commission_amount is None or self.commission_amount < 0:
            raise ValueError("Commission amount cannot be negative")
        if self.total_amount is None:
            self.total_amount = self.commission_amount + self.vat_amount
        self.total_amount = _money(self.total_amount)
        self.due_date = parse_datetime(self.due_date)
        if self.due_date is None:
            raise ValueError("Due date is required")
        self.paid_at = parse_datetime(self.paid_at)
        self.waived_at = parse_datetime(self.waived_at)
        self.last_reminder_at = parse_datetime(self.last_reminder_at)
        self.created_at = parse_datetime(self.created_at) or utc_now()
        self.updated_at = parse_datetime(self.updated_at) or self.created_at

    @property
    def is_open(self) -> bool:
        """PENDING or OVERDUE: still collectable."""
        return self.status in (CommissionStatus.PENDING.value, CommissionStatus.OVERDUE.value)

    def can_transition_to(self, status) -> bool:
        return CommissionStatus(status) in VALID_COMMISSION_TRANSITIONS[
            CommissionStatus(self.status)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "contractor_id": self.contractor_id,
            "customer_id": self.customer_id,
            "final_job_amount": format_money(self.final_job_amount),
            "commission_rate": str(self.commission_rate),
            "commission_amount": format_money(self.commission_amount),
            "vat_amount": format_money(self.vat_amount),
            "total_amount": format_money(self.total_amount),
            "status": self.status,
            "due_date": format_datetime(self.due_date),
            "paid_at": format_datetime(self.paid_at),
            "waived_at": format_datetime(self.waived_at),
            "waive_reason": self.waive_reason,
            "reminders_sent": self.reminders_sent,
            "last_reminder_at": format_datetime(self.last_reminder_at),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommissionPayment":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            contractor_id=data["contractor_id"],
            customer_id=data["customer_id"],
            final_job_amount=data["final_job_amount"],
            commission_rate=data["commission_rate"],
            commission_amount=data["commission_amount"],
            vat_amount=data.get("vat_amount") or "0.00",
            total_amount=data.get("total_amount"),
            status=data.get("status") or CommissionStatus.PENDING.value,
            due_date=data["due_date"],
            paid_at=data.get("paid_at"),
            waived_at=data.get("waived_at"),
            waive_reason=data.get("waive_reason"),
            reminders_sent=int(data.get("reminders_sent") or 0),
            last_reminder_at=data.get("last_reminder_at"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


def make_invoice_number(contractor_id: str, now: datetime) -> str:
    return f"COMM-{now.strftime('%Y%m%d%H%M%S')}-{contractor_id[-6:]}"


@dataclass
class CommissionInvoice:
    """Invoice issued alongside a commission; amounts copied at creation."""

    id: str
    commission_id: str
    invoice_number: str
    contractor_id: str
    job_id: str
    amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    due_date: datetime
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.amount = _money(self.amount)
        self.vat_amount = _money(self.vat_amount)
        self.total_amount = _money(self.total_amount)
        self.due_date = parse_datetime(self.due_date)
        self.created_at = parse_datetime(self.created_at) or utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "commission_id": self.commission_id,
            "invoice_number": self.invoice_number,
            "contractor_id": self.contractor_id,
            "job_id": self.job_id,
            "amount": format_money(self.amount),
            "vat_amount": format_money(self.vat_amount),
            "total_amount": format_money(self.total_amount),
            "due_date": format_datetime(self.due_date),
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommissionInvoice":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


@dataclass
class SettlementRecord:
    """Ledger entry for a commission moving to PAID."""

    id: str
    commission_id: str
    method: str
    amount: Decimal
    actor_id: str
    charge_id: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.method, SettlementMethod):
            self.method = self.method.value
        if self.method not in [m.value for m in SettlementMethod]:
            raise ValueError(f"Invalid settlement method: {self.method}")
        if self.method == SettlementMethod.GATEWAY.value and not self.charge_id:
            raise ValueError("Gateway settlements require a charge id")
        if self.method == SettlementMethod.MANUAL_OVERRIDE.value and not self.reason:
            raise ValueError("Manual overrides require a reason")
        self.amount = _money(self.amount)
        self.created_at = parse_datetime(self.created_at) or utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "commission_id": self.commission_id,
            "method": self.method,
            "amount": format_money(self.amount),
            "charge_id": self.charge_id,
            "reason": self.reason,
            "actor_id": self.actor_id,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettlementRecord":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


@dataclass
class CommissionSummary:
    """Counts and totals of commissions grouped by status."""

    counts: Dict[str, int] = field(default_factory=dict)
    totals: Dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "totals": {k: format_money(v) for k, v in self.totals.items()},
        }
