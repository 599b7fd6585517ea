"""Lead access controller.

A contractor must unlock a job before seeing the customer's details or
applying. Each job admits at most ``max_contractors_per_job`` contractors.

Two ways to pay:

- CREDIT: lead credits are debited in the same transaction that inserts the
  access row, after the capacity check.
- PAYMENT: the job's lead price is charged through the gateway. The charge
  happens outside any transaction (idempotency key
  ``lead-access:<job>:<contractor>``); a second transaction re-checks
  capacity and records the payment and access. If the slot was taken in the
  meantime the charge is refunded and ``CapacityExceededError`` raised.
  When the recording commit itself fails the charge stays put so a retry
  can claim it; a retry that is refused instead finds the charge by its key
  and refunds it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from leadledger.access.models import AccessGrant, AccessMethod, JobAccess
from leadledger.config import MarketConfig
from leadledger.credits.service import debit_in
from leadledger.errors import (
    CapacityExceededError,
    ContractorNotFoundError,
    ContractorSuspendedError,
    GatewayError,
    InsufficientCreditsError,
    JobNotAvailableError,
    JobNotFoundError,
    ValidationError,
)
from leadledger.jobs.models import Job, JobStatus
from leadledger.logging_config import log_financial_event
from leadledger.notifications import NotificationDispatcher, NotificationEvent
from leadledger.payments.models import Payment, PaymentPurpose
from leadledger.pricing import resolve_lead_price
from leadledger.utils import new_id, utc_now

if TYPE_CHECKING:
    from leadledger.payments.gateway import PaymentGateway
    from leadledger.storage.base import MarketStorage

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def access_key(job_id: str, contractor_id: str) -> str:
    return f"lead-access:{job_id}:{contractor_id}"


def capacity_release_key(charge_id: str) -> str:
    return f"capacity-release:{charge_id}"


def price_for_job(txn, job: Job) -> Decimal:
    pricing = txn.get_service_pricing(job.service_id) if job.service_id else None
    return resolve_lead_price(job.job_size, pricing, job.lead_price_override)


@dataclass
class _Precheck:
    job: Job
    existing: Optional[JobAccess]


class LeadAccessController:
    """Grants and checks contractor access to job leads."""

    def __init__(
        self,
        storage: "MarketStorage",
        gateway: Optional["PaymentGateway"] = None,
        notifications: Optional[NotificationDispatcher] = None,
        config: Optional[MarketConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.gateway = gateway
        self.notifications = notifications or NotificationDispatcher()
        self.config = config or MarketConfig()
        self._clock = clock

    # === Checks shared by both methods ===

    def _precheck(self, txn, job_id: str, contractor_id: str) -> _Precheck:
        job = txn.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status == JobStatus.CANCELLED.value:
            raise JobNotAvailableError(job_id, job.status)
        contractor = txn.get_contractor(contractor_id)
        if contractor is None:
            raise ContractorNotFoundError(contractor_id)
        if contractor.is_suspended:
            raise ContractorSuspendedError(contractor_id)

        existing = txn.get_access(job_id, contractor_id)
        if existing is None and txn.count_access(job_id) >= job.max_contractors_per_job:
            raise CapacityExceededError(job_id, job.max_contractors_per_job)
        return _Precheck(job=job, existing=existing)

    # === Operations ===

    def resolve_lead_price(self, job_id: str) -> Decimal:
        with self.storage.read() as txn:
            job = txn.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return price_for_job(txn, job)

    def grant_access(
        self,
        job_id: str,
        contractor_id: str,
        method,
        payment_metadata: Optional[Dict[str, Any]] = None,
    ) -> AccessGrant:
        """Unlock a job for a contractor.

        Args:
            job_id: Job to unlock
            contractor_id: Contractor requesting access
            method: ``AccessMethod.CREDIT`` or ``AccessMethod.PAYMENT``
            payment_metadata: Extra gateway metadata (e.g. ``customer``, ``payment_method``)

        Returns:
            AccessGrant; ``created`` is False if the contractor already had access.

        Raises:
            JobNotFoundError, ContractorNotFoundError
            JobNotAvailableError: The job is cancelled
            ContractorSuspendedError: The contractor has an overdue commission
            CapacityExceededError: The job is fully subscribed
            InsufficientCreditsError: CREDIT with too few credits
            GatewayError: The charge failed; nothing was recorded
        """
        try:
            method = AccessMethod(method)
        except ValueError as e:
            raise ValidationError(f"Invalid access method: {method}") from e

        if method == AccessMethod.CREDIT:
            grant = self._grant_with_credits(job_id, contractor_id)
        else:
            grant = self._grant_with_payment(job_id, contractor_id, payment_metadata or {})

        if grant.created:
            access = grant.access
            logger.info(
                f"Contractor {contractor_id} unlocked job {job_id} via {access.access_method}"
            )
            log_financial_event(
                "access.grant",
                job=job_id,
                contractor=contractor_id,
                method=access.access_method,
                amount=access.paid_amount,
                credits=access.credits_used,
            )
            self.notifications.notify(
                contractor_id,
                NotificationEvent.LEAD_ACCESS_GRANTED,
                job_id=job_id,
                access_method=access.access_method,
            )
        return grant

    def _grant_with_credits(self, job_id: str, contractor_id: str) -> AccessGrant:
        now = self._clock()
        with self.storage.transaction() as txn:
            check = self._precheck(txn, job_id, contractor_id)
            if check.existing is not None:
                return AccessGrant(access=check.existing, created=False)
            credits = self.config.credits_per_lead
            debit_in(
                txn,
                contractor_id,
                credits,
                f"Lead access: {check.job.title}",
                job_id=job_id,
                actor_id=contractor_id,
                now=now,
            )
            access = JobAccess(
                id=new_id(),
                job_id=job_id,
                contractor_id=contractor_id,
                access_method=AccessMethod.CREDIT,
                credits_used=credits,
                accessed_at=now,
            )
            txn.save_access(access)
        return AccessGrant(access=access, created=True)

    def _grant_with_payment(
        self, job_id: str, contractor_id: str, metadata: Dict[str, Any]
    ) -> AccessGrant:
        now = self._clock()
        try:
            with self.storage.transaction() as txn:
                check = self._precheck(txn, job_id, contractor_id)
                if check.existing is not None:
                    return AccessGrant(access=check.existing, created=False)
                price = price_for_job(txn, check.job)
                if price <= 0:
                    access = JobAccess(
                        id=new_id(),
                        job_id=job_id,
                        contractor_id=contractor_id,
                        access_method=AccessMethod.PAYMENT,
                        paid_amount=ZERO,
                        accessed_at=now,
                    )
                    txn.save_access(access)
                    return AccessGrant(access=access, created=True)
        except (CapacityExceededError, JobNotAvailableError, ContractorSuspendedError):
            self._release_unrecorded_charge(job_id, contractor_id)
            raise

        if self.gateway is None:
            raise GatewayError("No payment gateway configured")

        key = access_key(job_id, contractor_id)
        charge = self.gateway.charge(
            price,
            metadata={
                **metadata,
                "purpose": PaymentPurpose.LEAD_ACCESS.value,
                "job_id": job_id,
                "contractor_id": contractor_id,
            },
            idempotency_key=key,
        )

        now = self._clock()
        release_error = None
        with self.storage.transaction() as txn:
            existing = txn.get_access(job_id, contractor_id)
            if existing is not None:
                # A retry of this same request already recorded the charge
                payment = txn.get_payment(existing.payment_id) if existing.payment_id else None
                if payment is not None and payment.charge_id == charge.charge_id:
                    return AccessGrant(access=existing, created=False)
                grant = AccessGrant(access=existing, created=False)
            else:
                grant = None
                job = txn.get_job(job_id)
                if job.status == JobStatus.CANCELLED.value:
                    release_error = JobNotAvailableError(job_id, job.status)
                elif txn.count_access(job_id) >= job.max_contractors_per_job:
                    release_error = CapacityExceededError(job_id, job.max_contractors_per_job)
                else:
                    payment = Payment(
                        id=new_id(),
                        contractor_id=contractor_id,
                        job_id=job_id,
                        purpose=PaymentPurpose.LEAD_ACCESS,
                        amount=price,
                        currency=self.config.currency,
                        charge_id=charge.charge_id,
                        idempotency_key=key,
                        created_at=now,
                    )
                    txn.save_payment(payment)
                    access = JobAccess(
                        id=new_id(),
                        job_id=job_id,
                        contractor_id=contractor_id,
                        access_method=AccessMethod.PAYMENT,
                        paid_amount=price,
                        payment_id=payment.id,
                        accessed_at=now,
                    )
                    txn.save_access(access)
                    return AccessGrant(access=access, created=True)

        # The charge is not backing any access row: give the money back.
        self._release_charge(charge.charge_id, price, job_id, contractor_id)
        if release_error is not None:
            raise release_error
        return grant

    def _release_charge(
        self, charge_id: str, amount: Decimal, job_id: str, contractor_id: str
    ) -> None:
        try:
            self.gateway.refund(
                charge_id,
                amount,
                reason="Lead no longer available",
                idempotency_key=capacity_release_key(charge_id),
            )
        except GatewayError:
            logger.error(
                f"Could not refund charge {charge_id} for job {job_id} / contractor "
                f"{contractor_id}; manual refund required"
            )
            raise
        logger.info(f"Refunded charge {charge_id}: access to job {job_id} not granted")
        log_financial_event(
            "access.release", job=job_id, contractor=contractor_id, charge=charge_id, amount=amount
        )

    def _release_unrecorded_charge(self, job_id: str, contractor_id: str) -> None:
        """Refund a charge from an earlier attempt that never reached the ledger.

        An attempt whose final commit failed leaves money at the gateway
        under the access key. When a retry is refused, that charge backs
        nothing and is handed back.
        """
        if self.gateway is None:
            return
        key = access_key(job_id, contractor_id)
        with self.storage.read() as txn:
            if txn.get_payment_by_key(key) is not None:
                return
        charge = self.gateway.find_charge(key)
        if charge is None:
            return
        logger.warning(
            f"Charge {charge.charge_id} for job {job_id} / contractor {contractor_id} "
            "was never recorded; releasing it"
        )
        self._release_charge(charge.charge_id, charge.amount, job_id, contractor_id)

    def check_access(self, job_id: str, contractor_id: str) -> bool:
        """True if the contractor holds access to the job. Read only."""
        with self.storage.read() as txn:
            return txn.get_access(job_id, contractor_id) is not None

    def get_access(self, job_id: str, contractor_id: str) -> Optional[JobAccess]:
        with self.storage.read() as txn:
            return txn.get_access(job_id, contractor_id)

    def list_access(self, job_id: str) -> List[JobAccess]:
        with self.storage.read() as txn:
            if txn.get_job(job_id) is None:
                raise JobNotFoundError(job_id)
            return txn.list_access(job_id=job_id)

    def remaining_capacity(self, job_id: str) -> int:
        with self.storage.read() as txn:
            job = txn.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return max(job.max_contractors_per_job - txn.count_access(job_id), 0)


__all__ = [
    "LeadAccessController",
    "access_key",
    "capacity_release_key",
    "price_for_job",
    "CapacityExceededError",
    "ContractorSuspendedError",
    "InsufficientCreditsError",
    "JobNotAvailableError",
]
