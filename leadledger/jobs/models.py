"""Job lifecycle data models.

A job is posted by a customer, unlocked by up to ``max_contractors_per_job``
contractors, awarded to one of them, worked, completed and confirmed.
Confirmation is what triggers commission settlement.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from leadledger.pricing import JobSize
from leadledger.utils import (
    format_datetime,
    format_money,
    parse_datetime,
    quantize_money,
    to_decimal,
    utc_now,
)


class JobStatus(str, Enum):
    """Job lifecycle status."""

    DRAFT = "draft"
    POSTED = "posted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# COMPLETED and CANCELLED are terminal.
VALID_JOB_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.DRAFT: {JobStatus.POSTED, JobStatus.CANCELLED},
    JobStatus.POSTED: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}


def can_transition(from_status, to_status) -> bool:
    return JobStatus(to_status) in VALID_JOB_TRANSITIONS[JobStatus(from_status)]


# === Explicit job states ===


@dataclass(frozen=True)
class Open:
    """DRAFT or POSTED: accepting lead access; a winner may be chosen."""

    job_id: str
    posted: bool
    winner_id: Optional[str] = None


@dataclass(frozen=True)
class InProgress:
    job_id: str
    winner_id: str
    start_date: datetime


@dataclass(frozen=True)
class Completed:
    job_id: str
    winner_id: str
    final_amount: Decimal
    completed_at: datetime
    customer_confirmed: bool
    commission_paid: bool


@dataclass(frozen=True)
class Cancelled:
    job_id: str
    reason: Optional[str]
    cancelled_at: Optional[datetime]


JobState = Union[Open, InProgress, Completed, Cancelled]


_JOB_DATETIME_FIELDS = (
    "created_at",
    "updated_at",
    "posted_at",
    "winner_selected_at",
    "start_date",
    "completed_at",
    "confirmed_at",
    "cancelled_at",
)


@dataclass
class Job:
    """A job posted by a customer.

    Attributes:
        id: Job UUID
        customer_id: Owner of the job
        title: Short summary
        description: Full details (visible to contractors holding access)
        service_id: Service category, used for lead pricing
        job_size: small / medium / large, selects the pricing tier
        budget: Customer's budget, the default final amount
        lead_price_override: Per-job lead price set by an admin
        max_contractors_per_job: Cap on JobAccess rows
        status: Current lifecycle status
        won_by_contractor_id: Selected winner
        final_amount: Agreed final value of the work
        customer_confirmed: Customer confirmed completion
        commission_paid: Commission settlement has run for this job
    """

    id: str
    customer_id: str
    title: str
    description: str = ""
    service_id: Optional[str] = None
    job_size: str = JobSize.MEDIUM.value
    budget: Optional[Decimal] = None
    lead_price_override: Optional[Decimal] = None
    max_contractors_per_job: int = 5
    status: str = JobStatus.DRAFT.value
    won_by_contractor_id: Optional[str] = None
    final_amount: Optional[Decimal] = None
    customer_confirmed: bool = False
    commission_paid: bool = False
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    posted_at: Optional[datetime] = None
    winner_selected_at: Optional[datetime] = None
    start_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, JobStatus):
            self.status = self.status.value
        if isinstance(self.job_size, JobSize):
            self.job_size = self.job_size.value
        for name in ("budget", "lead_price_override", "final_amount"):
            value = to_decimal(getattr(self, name))
            setattr(self, name, quantize_money(value) if value is not None else None)
        for name in _JOB_DATETIME_FIELDS:
            setattr(self, name, parse_datetime(getattr(self, name)))
        self.customer_confirmed = bool(self.customer_confirmed)
        self.commission_paid = bool(self.commission_paid)
        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at
        self.validate()

    def validate(self) -> None:
        """Reject invalid field values and flag combinations."""
        if not self.title or not self.title.strip():
            raise ValueError("Title is required")
        if len(self.title) > 200:
            raise ValueError("Title must be 200 characters or fewer")
        if not self.customer_id:
            raise ValueError("Customer id is required")
        if self.status not in [s.value for s in JobStatus]:
            raise ValueError(f"Invalid status: {self.status}")
        if self.job_size not in [s.value for s in JobSize]:
            raise ValueError(f"Invalid job size: {self.job_size}")
        if self.budget is not None and self.budget <= 0:
            raise ValueError("Budget must be positive")
        if self.lead_price_override is not None and self.lead_price_override < 0:
            raise ValueError("Lead price override cannot be negative")
        if self.max_contractors_per_job < 1:
            raise ValueError("Max contractors per job must be at least 1")

        status = JobStatus(self.status)
        if status == JobStatus.IN_PROGRESS:
            if not self.won_by_contractor_id:
                raise ValueError("An in-progress job must have a winner")
            if self.start_date is None:
                raise ValueError("An in-progress job must have a start date")
        if status == JobStatus.COMPLETED:
            if not self.won_by_contractor_id:
                raise ValueError("A completed job must have a winner")
            if self.final_amount is None or self.final_amount <= 0:
                raise ValueError("A completed job must have a positive final amount")
            if self.completed_at is None:
                raise ValueError("A completed job must have a completion time")
        if self.customer_confirmed and status != JobStatus.COMPLETED:
            raise ValueError("Only completed jobs can be customer-confirmed")
        if self.commission_paid and not self.customer_confirmed:
            raise ValueError("Commission cannot be settled before customer confirmation")

    @property
    def state(self) -> JobState:
        """The job's state as an explicit variant."""
        status = JobStatus(self.status)
        if status in (JobStatus.DRAFT, JobStatus.POSTED):
            return Open(
                job_id=self.id,
                posted=status == JobStatus.POSTED,
                winner_id=self.won_by_contractor_id,
            )
        if status == JobStatus.IN_PROGRESS:
            return InProgress(
                job_id=self.id, winner_id=self.won_by_contractor_id, start_date=self.start_date
            )
        if status == JobStatus.COMPLETED:
            return Completed(
                job_id=self.id,
                winner_id=self.won_by_contractor_id,
                final_amount=self.final_amount,
                completed_at=self.completed_at,
                customer_confirmed=self.customer_confirmed,
                commission_paid=self.commission_paid,
            )
        return Cancelled(
            job_id=self.id, reason=self.cancellation_reason, cancelled_at=self.cancelled_at
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "title": self.title,
            "description": self.description,
            "service_id": self.service_id,
            "job_size": self.job_size,
            "budget": format_money(self.budget),
            "lead_price_override": format_money(self.lead_price_override),
            "max_contractors_per_job": self.max_contractors_per_job,
            "status": self.status,
            "won_by_contractor_id": self.won_by_contractor_id,
            "final_amount": format_money(self.final_amount),
            "customer_confirmed": self.customer_confirmed,
            "commission_paid": self.commission_paid,
            "cancellation_reason": self.cancellation_reason,
        }
        for name in _JOB_DATETIME_FIELDS:
            data[name] = format_datetime(getattr(self, name))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            customer_id=data["customer_id"],
            title=data["title"],
            description=data.get("description") or "",
            service_id=data.get("service_id"),
            job_size=data.get("job_size") or JobSize.MEDIUM.value,
            budget=data.get("budget"),
            lead_price_override=data.get("lead_price_override"),
            max_contractors_per_job=int(data.get("max_contractors_per_job") or 5),
            status=data.get("status") or JobStatus.DRAFT.value,
            won_by_contractor_id=data.get("won_by_contractor_id"),
            final_amount=data.get("final_amount"),
            customer_confirmed=bool(data.get("customer_confirmed")),
            commission_paid=bool(data.get("commission_paid")),
            cancellation_reason=data.get("cancellation_reason"),
            **{name: data.get(name) for name in _JOB_DATETIME_FIELDS},
        )


@dataclass
class JobApplication:
    """A contractor's application (quote) for a job they have unlocked."""

    id: str
    job_id: str
    contractor_id: str
    status: str = ApplicationStatus.PENDING.value
    proposed_rate: Optional[Decimal] = None
    message: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, ApplicationStatus):
            self.status = self.status.value
        if self.status not in [s.value for s in ApplicationStatus]:
            raise ValueError(f"Invalid status: {self.status}")
        rate = to_decimal(self.proposed_rate)
        if rate is not None and rate <= 0:
            raise ValueError("Proposed rate must be positive")
        self.proposed_rate = quantize_money(rate) if rate is not None else None
        if len(self.message) > 2000:
            raise ValueError("Message must be 2000 characters or fewer")
        self.created_at = parse_datetime(self.created_at) or utc_now()
        self.updated_at = parse_datetime(self.updated_at) or self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "contractor_id": self.contractor_id,
            "status": self.status,
            "proposed_rate": format_money(self.proposed_rate),
            "message": self.message,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobApplication":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            contractor_id=data["contractor_id"],
            status=data.get("status") or ApplicationStatus.PENDING.value,
            proposed_rate=data.get("proposed_rate"),
            message=data.get("message") or "",
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class JobStateTransition:
    """Audit log entry for a job status change. ``from_status`` is None on creation."""

    id: str
    job_id: str
    to_status: str
    actor_id: str
    from_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = parse_datetime(self.created_at) or utc_now()
        self.metadata = dict(self.metadata or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "metadata": self.metadata,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobStateTransition":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor_id=data["actor_id"],
            metadata=data.get("metadata") or {},
            created_at=data.get("created_at"),
        )
