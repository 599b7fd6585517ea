"""Maintenance routes.

Scheduled tasks exposed for an external scheduler (cron, Railway jobs).
Each one is also available from the ``leadledger`` CLI:

- Overdue sweep: PENDING commissions past due become OVERDUE, contractor suspended
- Reminders: due-date reminders inside the reminder window
- Weekly reset: restore contractors' weekly credit allocation
- Auto-confirm: confirm completions the customer never confirmed
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..auth import AdminActor
from ..database import Market
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("leadledger.api.maintenance")
router = APIRouter(prefix="/maintenance", tags=["maintenance"])


class WeeklyResetRequest(BaseModel):
    """Reset even contractors whose interval has not elapsed."""

    force: bool = False


@router.post("/commissions/sweep")
@limiter.limit("10/minute")
def sweep_overdue(request: Request, admin: AdminActor, market: Market):
    overdue = market.sweep_overdue_commissions()
    logger.info(f"Overdue sweep by {admin.id}: {len(overdue)} commissions")
    return {
        "overdue": [c.to_dict() for c in overdue],
        "total": len(overdue),
        "checked_at": datetime.now(timezone.utc),
    }


@router.post("/commissions/reminders")
@limiter.limit("10/minute")
def send_reminders(request: Request, admin: AdminActor, market: Market):
    reminders = market.send_commission_reminders()
    return {
        "reminders": [
            {
                "commission_id": r.commission.id,
                "contractor_id": r.commission.contractor_id,
                "hours_remaining": r.hours_remaining,
            }
            for r in reminders
        ],
        "total": len(reminders),
    }


@router.post("/credits/reset-weekly")
@limiter.limit("10/minute")
def reset_weekly(
    request: Request, admin: AdminActor, market: Market, body: WeeklyResetRequest | None = None
):
    summary = market.reset_weekly_credits(force=bool(body and body.force))
    logger.info(f"Weekly credit reset by {admin.id}: {summary.contractors_reset} contractors")
    return summary.to_dict()


@router.post("/jobs/auto-confirm")
@limiter.limit("10/minute")
def auto_confirm(request: Request, admin: AdminActor, market: Market):
    results = market.auto_confirm_stale_completions()
    return {
        "confirmed": [r.to_dict() for r in results],
        "total": len(results),
        "with_commission": sum(1 for r in results if r.commission is not None),
    }
