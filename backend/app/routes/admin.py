"""Admin routes.

Operator actions that move money or override state: commission waivers and
manual settlement, refunds, credit adjustments and lead pricing. Every one of
them is written to the audit log by the engine.
"""

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Query, Request, status
from pydantic import BaseModel, Field

from leadledger.commission import CommissionStatus
from leadledger.pricing import ServicePricing

from ..auth import AdminActor
from ..database import Market
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("leadledger.api.admin")
router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Request Models
# =============================================================================


class ReasonRequest(BaseModel):
    """Body for actions that require a recorded reason."""

    reason: str = Field(..., min_length=1, max_length=1000)


class RefundCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=1000)
    idempotency_key: str | None = Field(None, max_length=255)


class ContractorCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    weekly_credits_limit: int = Field(0, ge=0)
    initial_credits: int = Field(0, ge=0)
    contractor_id: str | None = None


class CreditAdjustment(BaseModel):
    amount: int = Field(..., gt=0)
    type: Literal["addition", "deduction"]
    reason: str = Field(..., min_length=1, max_length=1000)


class LeadPriceOverride(BaseModel):
    """A fixed lead price for one job; ``null`` clears the override."""

    price: Decimal | None = Field(None, ge=0)


class ServicePricingUpdate(BaseModel):
    name: str = ""
    small_price: Decimal | None = Field(None, ge=0)
    medium_price: Decimal | None = Field(None, ge=0)
    large_price: Decimal | None = Field(None, ge=0)


# =============================================================================
# Commission
# =============================================================================


@router.get("/commissions")
def list_commissions(
    admin: AdminActor,
    market: Market,
    status_filter: CommissionStatus | None = Query(None, alias="status"),
    contractor_id: str | None = None,
):
    commissions = market.commissions.list(
        status=status_filter.value if status_filter else None, contractor_id=contractor_id
    )
    return {"commissions": [c.to_dict() for c in commissions], "total": len(commissions)}


@router.get("/commissions/summary")
def commission_summary(admin: AdminActor, market: Market):
    return market.commission_summary().to_dict()


@router.get("/commissions/{commission_id}")
def get_commission(commission_id: str, admin: AdminActor, market: Market):
    invoice = market.commissions.get_invoice(commission_id)
    return {
        "commission": market.commissions.get(commission_id).to_dict(),
        "invoice": invoice.to_dict() if invoice else None,
        "settlements": [s.to_dict() for s in market.commissions.list_settlements(commission_id)],
    }


@router.post("/commissions/{commission_id}/waive")
def waive_commission(commission_id: str, body: ReasonRequest, admin: AdminActor, market: Market):
    commission = market.waive_commission(commission_id, body.reason, admin.id)
    logger.info(f"Admin {admin.id} waived commission {commission_id}")
    return commission.to_dict()


@router.post("/commissions/{commission_id}/mark-paid")
def mark_commission_paid(
    commission_id: str, body: ReasonRequest, admin: AdminActor, market: Market
):
    commission = market.manual_override_commission(commission_id, body.reason, admin.id)
    logger.info(f"Admin {admin.id} marked commission {commission_id} paid")
    return commission.to_dict()


@router.post("/commissions/{commission_id}/charge")
@limiter.limit("10/minute")
def charge_commission(request: Request, commission_id: str, admin: AdminActor, market: Market):
    """Collect a commission through the payment gateway."""
    return market.pay_commission(commission_id, admin.id).to_dict()


# =============================================================================
# Payments
# =============================================================================


@router.get("/payments/{payment_id}")
def get_payment(payment_id: str, admin: AdminActor, market: Market):
    return {
        "payment": market.refunds.get_payment(payment_id).to_dict(),
        "refunds": [r.to_dict() for r in market.refunds.list_refunds(payment_id)],
    }


@router.post("/payments/{payment_id}/refunds", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def refund_payment(
    request: Request, payment_id: str, body: RefundCreate, admin: AdminActor, market: Market
):
    refund = market.refund_payment(
        payment_id, body.amount, body.reason, admin.id, idempotency_key=body.idempotency_key
    )
    return refund.to_dict()


# =============================================================================
# Contractors & credits
# =============================================================================


@router.post("/contractors", status_code=status.HTTP_201_CREATED)
def register_contractor(body: ContractorCreate, admin: AdminActor, market: Market):
    contractor = market.register_contractor(
        body.user_id,
        weekly_credits_limit=body.weekly_credits_limit,
        initial_credits=body.initial_credits,
        contractor_id=body.contractor_id,
    )
    return contractor.to_dict()


@router.get("/contractors/{contractor_id}")
def get_contractor(contractor_id: str, admin: AdminActor, market: Market):
    return {
        "contractor": market.credits.get_contractor(contractor_id).to_dict(),
        "ledger_consistent": market.credits.reconcile(contractor_id),
    }


@router.get("/contractors/{contractor_id}/credits")
def credit_history(contractor_id: str, admin: AdminActor, market: Market):
    return {"transactions": [t.to_dict() for t in market.credits.history(contractor_id)]}


@router.post("/contractors/{contractor_id}/credits", status_code=status.HTTP_201_CREATED)
def adjust_credits(
    contractor_id: str, body: CreditAdjustment, admin: AdminActor, market: Market
):
    transaction = market.adjust_credits(
        contractor_id, body.amount, body.type, body.reason, admin.id
    )
    return transaction.to_dict()


# =============================================================================
# Pricing
# =============================================================================


@router.put("/pricing/{service_id}")
def set_service_pricing(
    service_id: str, body: ServicePricingUpdate, admin: AdminActor, market: Market
):
    pricing = market.set_service_pricing(
        ServicePricing(
            service_id=service_id,
            name=body.name,
            small_price=body.small_price,
            medium_price=body.medium_price,
            large_price=body.large_price,
        )
    )
    return pricing.to_dict()


@router.put("/jobs/{job_id}/lead-price")
def override_lead_price(
    job_id: str, body: LeadPriceOverride, admin: AdminActor, market: Market
):
    job = market.override_lead_price(job_id, body.price, admin.id)
    return {"job_id": job.id, "lead_price": str(market.resolve_lead_price(job.id))}


# =============================================================================
# Audit
# =============================================================================


@router.get("/audit")
def audit_log(
    admin: AdminActor,
    market: Market,
    entity_type: str | None = None,
    entity_id: str | None = None,
):
    entries = market.audit_log(entity_type=entity_type, entity_id=entity_id)
    return {"entries": [e.to_dict() for e in entries]}
