"""Contractor and credit ledger models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from leadledger.utils import format_datetime, parse_datetime, utc_now


class ContractorStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class CreditTransactionType(str, Enum):
    ADDITION = "addition"
    DEDUCTION = "deduction"


@dataclass
class Contractor:
    """A contractor account as seen by the lead engine.

    Attributes:
        id: Contractor UUID
        user_id: Identity in the external auth service
        credits_balance: Current lead credits, never negative
        weekly_credits_limit: Balance restored by the weekly reset (0 = no allocation)
        last_credit_reset: When the weekly reset last ran for this contractor
        status: active / suspended (suspended contractors cannot unlock leads)
        suspended_for_commission_id: Overdue commission that caused the suspension
        jobs_completed: Count of jobs marked complete as winner
    """

    id: str
    user_id: str
    credits_balance: int = 0
    weekly_credits_limit: int = 0
    last_credit_reset: Optional[datetime] = None
    status: str = ContractorStatus.ACTIVE.value
    suspended_for_commission_id: Optional[str] = None
    jobs_completed: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, ContractorStatus):
            self.status = self.status.value
        if self.status not in [s.value for s in ContractorStatus]:
            raise ValueError(f"Invalid status: {self.status}")
        if self.credits_balance < 0:
            raise ValueError("Credits balance cannot be negative")
        if self.weekly_credits_limit < 0:
            raise ValueError("Weekly credits limit cannot be negative")
        if self.jobs_completed < 0:
            raise ValueError("Jobs completed cannot be negative")
        self.last_credit_reset = parse_datetime(self.last_credit_reset)
        self.created_at = parse_datetime(self.created_at) or utc_now()
        self.updated_at = parse_datetime(self.updated_at) or self.created_at

    @property
    def is_suspended(self) -> bool:
        return self.status == ContractorStatus.SUSPENDED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "credits_balance": self.credits_balance,
            "weekly_credits_limit": self.weekly_credits_limit,
            "last_credit_reset": format_datetime(self.last_credit_reset),
            "status": self.status,
            "suspended_for_commission_id": self.suspended_for_commission_id,
            "jobs_completed": self.jobs_completed,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contractor":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            credits_balance=int(data.get("credits_balance") or 0),
            weekly_credits_limit=int(data.get("weekly_credits_limit") or 0),
            last_credit_reset=data.get("last_credit_reset"),
            status=data.get("status") or ContractorStatus.ACTIVE.value,
            suspended_for_commission_id=data.get("suspended_for_commission_id"),
            jobs_completed=int(data.get("jobs_completed") or 0),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class CreditTransaction:
    """One append-only credit ledger row. ``amount`` is always positive."""

    id: str
    contractor_id: str
    type: str
    amount: int
    description: str
    job_id: Optional[str] = None
    actor_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.type, CreditTransactionType):
            self.type = self.type.value
        if self.type not in [t.value for t in CreditTransactionType]:
            raise ValueError(f"Invalid transaction type: {self.type}")
        if self.amount <= 0:
            raise ValueError("Credit transaction amount must be positive")
        if not self.description:
            raise ValueError("Description is required")
        self.created_at = parse_datetime(self.created_at) or utc_now()

    @property
    def signed_amount(self) -> int:
        if self.type == CreditTransactionType.DEDUCTION.value:
            return -self.amount
        return self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "contractor_id": self.contractor_id,
            "type": self.type,
            "amount": self.amount,
            "description": self.description,
            "job_id": self.job_id,
            "actor_id": self.actor_id,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreditTransaction":
        return cls(
            id=data["id"],
            contractor_id=data["contractor_id"],
            type=data["type"],
            amount=int(data["amount"]),
            description=data["description"],
            job_id=data.get("job_id"),
            actor_id=data.get("actor_id"),
            created_at=data.get("created_at"),
        )


@dataclass
class CreditResetSummary:
    """Result of a weekly credit reset run."""

    contractors_reset: int = 0
    credits_added: int = 0
    credits_removed: int = 0
    skipped: int = 0
    contractor_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contractors_reset": self.contractors_reset,
            "credits_added": self.credits_added,
            "credits_removed": self.credits_removed,
            "skipped": self.skipped,
            "contractor_ids": list(self.contractor_ids),
        }
