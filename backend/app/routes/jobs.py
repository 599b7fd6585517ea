"""Job routes.

Customers post jobs and run them through the lifecycle; contractors unlock
leads (credits or payment), apply, and mark work complete. Contractors see a
preview of a job until they have unlocked it.
"""

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Query, Request, Response, status
from pydantic import BaseModel, Field, field_validator

from leadledger.errors import UnauthorizedError
from leadledger.jobs import Job

from ..auth import ContractorActor, CurrentActor, CustomerActor
from ..database import Market
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("leadledger.api.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])

# Fields a contractor can see before unlocking a job
PREVIEW_FIELDS = (
    "id",
    "title",
    "service_id",
    "job_size",
    "budget",
    "max_contractors_per_job",
    "status",
    "posted_at",
)


# =============================================================================
# Request Models
# =============================================================================

JobSizeName = Literal["small", "medium", "large"]


class JobCreate(BaseModel):
    """Request to create a job."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    service_id: str | None = None
    job_size: JobSizeName = "medium"
    budget: Decimal | None = Field(None, gt=0)
    max_contractors_per_job: int | None = Field(None, ge=1)
    publish: bool = True

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be blank")
        return v


class AccessRequest(BaseModel):
    """Request to unlock a job's details."""

    method: Literal["credit", "payment"]
    # Stripe customer / saved payment method for PAYMENT access
    customer: str | None = None
    payment_method: str | None = None


class ApplicationCreate(BaseModel):
    """Request to apply to a job."""

    proposed_rate: Decimal | None = Field(None, gt=0)
    message: str = Field("", max_length=2000)


class WinnerSelect(BaseModel):
    contractor_id: str = Field(..., min_length=1)


class CompleteRequest(BaseModel):
    """Contractor's completion report."""

    final_amount: Decimal | None = Field(None, gt=0)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


# =============================================================================
# Helpers
# =============================================================================


def job_view(market, job: Job, actor) -> dict:
    """Full job for its customer, admins and unlocked contractors; a preview otherwise."""
    data = job.to_dict()
    if actor.is_admin or job.customer_id == actor.id:
        return data
    if actor.role == "contractor" and market.check_access(job.id, actor.contractor_id):
        return data
    preview = {key: data[key] for key in PREVIEW_FIELDS}
    preview["lead_price"] = str(market.resolve_lead_price(job.id))
    preview["locked"] = True
    return preview


def require_owner(job: Job, actor) -> None:
    if not actor.is_admin and job.customer_id != actor.id:
        raise UnauthorizedError(f"Job {job.id} belongs to another customer", job_id=job.id)


def payment_metadata(body: AccessRequest) -> dict:
    metadata = {}
    if body.customer:
        metadata["customer"] = body.customer
    if body.payment_method:
        metadata["payment_method"] = body.payment_method
    return metadata


# =============================================================================
# Routes
# =============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_job(request: Request, body: JobCreate, actor: CustomerActor, market: Market):
    job = market.create_job(
        actor.id,
        body.title,
        description=body.description,
        service_id=body.service_id,
        job_size=body.job_size,
        budget=body.budget,
        max_contractors_per_job=body.max_contractors_per_job,
        publish=body.publish,
    )
    return job.to_dict()


@router.get("")
def list_jobs(
    actor: CurrentActor,
    market: Market,
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """List jobs. Customers see their own; contractors see open listings as previews."""
    if actor.role == "customer":
        jobs = market.jobs.list_jobs(
            status=status_filter, customer_id=actor.id, limit=limit, offset=offset
        )
    else:
        jobs = market.jobs.list_jobs(
            status=status_filter or ("posted" if actor.role == "contractor" else None),
            limit=limit,
            offset=offset,
        )
    return {
        "jobs": [job_view(market, job, actor) for job in jobs],
        "limit": limit,
        "offset": offset,
    }


@router.get("/{job_id}")
def get_job(job_id: str, actor: CurrentActor, market: Market):
    return job_view(market, market.jobs.get_job(job_id), actor)


@router.post("/{job_id}/publish")
def publish_job(job_id: str, actor: CustomerActor, market: Market):
    return market.publish_job(job_id, actor.id).to_dict()


@router.get("/{job_id}/lead-price")
def lead_price(job_id: str, actor: CurrentActor, market: Market):
    return {
        "job_id": job_id,
        "lead_price": str(market.resolve_lead_price(job_id)),
        "remaining_capacity": market.remaining_capacity(job_id),
    }


@router.post("/{job_id}/access")
@limiter.limit("20/minute")
def unlock_job(
    request: Request,
    response: Response,
    job_id: str,
    body: AccessRequest,
    actor: ContractorActor,
    market: Market,
):
    """Unlock a job. 201 when access is new, 200 when the contractor already had it."""
    grant = market.grant_access(
        job_id, actor.contractor_id, body.method, payment_metadata(body)
    )
    response.status_code = status.HTTP_201_CREATED if grant.created else status.HTTP_200_OK
    return grant.to_dict()


@router.post("/{job_id}/applications", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def apply(
    request: Request, job_id: str, body: ApplicationCreate, actor: ContractorActor, market: Market
):
    application = market.apply(
        job_id, actor.contractor_id, proposed_rate=body.proposed_rate, message=body.message
    )
    return application.to_dict()


@router.post("/{job_id}/accept", status_code=status.HTTP_201_CREATED)
def accept_directly(job_id: str, actor: ContractorActor, market: Market):
    return market.accept_directly(job_id, actor.contractor_id).to_dict()


@router.get("/{job_id}/applications")
def list_applications(job_id: str, actor: CustomerActor, market: Market):
    require_owner(market.jobs.get_job(job_id), actor)
    applications = market.jobs.list_applications(job_id)
    return {"applications": [a.to_dict() for a in applications], "total": len(applications)}


@router.post("/{job_id}/winner")
def select_winner(job_id: str, body: WinnerSelect, actor: CustomerActor, market: Market):
    return market.select_winner(job_id, actor.id, body.contractor_id).to_dict()


@router.post("/{job_id}/start")
def confirm_work_start(job_id: str, actor: CustomerActor, market: Market):
    return market.confirm_work_start(job_id, actor.id).to_dict()


@router.post("/{job_id}/complete")
def mark_completed(job_id: str, body: CompleteRequest, actor: ContractorActor, market: Market):
    return market.mark_completed(job_id, actor.contractor_id, body.final_amount).to_dict()


@router.post("/{job_id}/confirm")
def confirm_completion(job_id: str, actor: CustomerActor, market: Market):
    result = market.confirm_completion(job_id, actor.id)
    if result.commission is not None:
        logger.info(f"Job {job_id} confirmed with commission {result.commission.id}")
    return result.to_dict()


@router.post("/{job_id}/cancel")
def cancel_job(job_id: str, body: CancelRequest, actor: CustomerActor, market: Market):
    return market.cancel_job(job_id, actor.id, body.reason, is_admin=actor.is_admin).to_dict()


@router.get("/{job_id}/transitions")
def list_transitions(job_id: str, actor: CurrentActor, market: Market):
    require_owner(market.jobs.get_job(job_id), actor)
    return {"transitions": [t.to_dict() for t in market.jobs.get_transitions(job_id)]}
