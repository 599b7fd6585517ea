"""Commission settlement on customer confirmation.

``settle`` runs inside the transaction that confirms a job's completion.
Commission is owed only when the winner unlocked the lead with credits;
leads bought outright carry no commission.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from leadledger.commission.models import (
    CommissionInvoice,
    CommissionPayment,
    CommissionStatus,
    make_invoice_number,
)
from leadledger.config import MarketConfig
from leadledger.errors import CommissionAlreadySettledError, ValidationError
from leadledger.logging_config import log_financial_event
from leadledger.notifications import NotificationDispatcher, NotificationEvent
from leadledger.utils import new_id, quantize_money

if TYPE_CHECKING:
    from leadledger.jobs.models import Job

logger = logging.getLogger(__name__)


def calculate_commission(final_amount: Decimal, rate: Decimal) -> Decimal:
    """``final_amount * rate / 100``, rounded half up to the penny."""
    return quantize_money(final_amount * rate / Decimal(100))


def commission_owed(txn, job: "Job") -> bool:
    """True if the winner's access to this job was paid for with credits."""
    if not job.won_by_contractor_id:
        return False
    access = txn.get_access(job.id, job.won_by_contractor_id)
    return access is not None and access.is_credit


def settle(
    txn, job: "Job", now: datetime, config: Optional[MarketConfig] = None
) -> Optional[CommissionPayment]:
    """Create the job's commission (and invoice) if one is owed.

    Mutates ``job.commission_paid``; the caller persists the job in the same
    transaction.

    Returns:
        The new CommissionPayment, or None if no commission is owed.

    Raises:
        ValidationError: The job has no positive final amount
        CommissionAlreadySettledError: Settlement already ran for this job
    """
    config = config or MarketConfig()
    if job.final_amount is None or job.final_amount <= 0:
        raise ValidationError("Final amount must be positive to settle", job_id=job.id)
    if job.commission_paid or txn.get_commission_for_job(job.id) is not None:
        raise CommissionAlreadySettledError(job.id)

    if not commission_owed(txn, job):
        logger.info(f"No commission owed for job {job.id}: lead was not unlocked with credits")
        return None

    amount = calculate_commission(job.final_amount, config.commission_rate)
    vat = Decimal("0.00")
    due_date = now + config.commission_due_delta
    commission = CommissionPayment(
        id=new_id(),
        job_id=job.id,
        contractor_id=job.won_by_contractor_id,
        customer_id=job.customer_id,
        final_job_amount=job.final_amount,
        commission_rate=config.commission_rate,
        commission_amount=amount,
        vat_amount=vat,
        total_amount=amount + vat,
        status=CommissionStatus.PENDING,
        due_date=due_date,
        created_at=now,
    )
    txn.save_commission(commission)
    txn.save_invoice(
        CommissionInvoice(
            id=new_id(),
            commission_id=commission.id,
            invoice_number=make_invoice_number(commission.contractor_id, now),
            contractor_id=commission.contractor_id,
            job_id=job.id,
            amount=commission.commission_amount,
            vat_amount=commission.vat_amount,
            total_amount=commission.total_amount,
            due_date=due_date,
            created_at=now,
        )
    )
    job.commission_paid = True
    logger.info(
        f"Commission {commission.id} of {commission.total_amount} due {due_date.date()} "
        f"for job {job.id}"
    )
    return commission


def announce_commission(notifications: NotificationDispatcher, commission: CommissionPayment):
    """Tell the contractor about a new commission. Call after commit."""
    log_financial_event(
        "commission.create",
        commission=commission.id,
        job=commission.job_id,
        contractor=commission.contractor_id,
        amount=commission.total_amount,
    )
    notifications.notify(
        commission.contractor_id,
        NotificationEvent.COMMISSION_CREATED,
        commission_id=commission.id,
        job_id=commission.job_id,
        amount=str(commission.total_amount),
        due_date=commission.due_date.isoformat(),
    )
