"""Marketplace facade.

Wires the services around one storage backend, payment gateway and notifier,
and exposes the engine's operations in one place. The services remain
available as attributes (``jobs``, ``access``, ``credits``, ``commissions``,
``refunds``) for anything not surfaced here.
"""

import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from leadledger.access import AccessGrant, JobAccess, LeadAccessController
from leadledger.audit import AuditEntry, record_audit
from leadledger.commission import CommissionPayment, CommissionService, CommissionSummary, Reminder
from leadledger.config import MarketConfig
from leadledger.credits import Contractor, CreditLedger, CreditResetSummary, CreditTransaction
from leadledger.errors import JobNotFoundError, ValidationError
from leadledger.jobs import CompletionResult, Job, JobApplication, JobService
from leadledger.logging_config import log_financial_event
from leadledger.notifications import NotificationDispatcher, Notifier
from leadledger.payments import PaymentGateway, Refund, RefundService
from leadledger.pricing import ServicePricing
from leadledger.storage import MarketStorage, SQLiteMarketStorage
from leadledger.utils import format_money, quantize_money, to_decimal, utc_now

logger = logging.getLogger(__name__)


class Marketplace:
    """The lead access and commission settlement engine.

    Args:
        storage: Transactional store
        gateway: Payment gateway; required for paid leads, commission
            collection and refunds
        notifier: Notification transport (defaults to logging only)
        config: Business parameters
        clock: Source of "now" (injected in tests)
    """

    def __init__(
        self,
        storage: MarketStorage,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[MarketConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.gateway = gateway
        self.config = config or MarketConfig()
        self.notifications = NotificationDispatcher(notifier)
        self._clock = clock

        self.credits = CreditLedger(storage, config=self.config, clock=clock)
        self.access = LeadAccessController(
            storage,
            gateway=gateway,
            notifications=self.notifications,
            config=self.config,
            clock=clock,
        )
        self.jobs = JobService(
            storage, notifications=self.notifications, config=self.config, clock=clock
        )
        self.commissions = CommissionService(
            storage,
            gateway=gateway,
            notifications=self.notifications,
            config=self.config,
            clock=clock,
        )
        self.refunds = RefundService(
            storage, gateway=gateway, notifications=self.notifications, clock=clock
        )

    @classmethod
    def open(
        cls,
        db_path: Optional[Union[str, Path]] = None,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[MarketConfig] = None,
    ) -> "Marketplace":
        """Open a marketplace backed by a SQLite database file."""
        return cls(
            SQLiteMarketStorage(db_path),
            gateway=gateway,
            notifier=notifier,
            config=config or MarketConfig.from_env(),
        )

    def close(self) -> None:
        self.storage.close()

    # === Pricing ===

    def set_service_pricing(self, pricing: ServicePricing) -> ServicePricing:
        with self.storage.transaction() as txn:
            txn.save_service_pricing(pricing)
        return pricing

    def resolve_lead_price(self, job_id: str) -> Decimal:
        return self.access.resolve_lead_price(job_id)

    def override_lead_price(
        self, job_id: str, price: Optional[Any], actor_id: str
    ) -> Job:
        """Set (or clear with None) a job's lead price override."""
        try:
            value = to_decimal(price)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if value is not None:
            if value < 0:
                raise ValidationError("Lead price cannot be negative")
            value = quantize_money(value)

        now = self._clock()
        with self.storage.transaction() as txn:
            job = txn.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            before = format_money(job.lead_price_override)
            job.lead_price_override = value
            job.updated_at = now
            txn.update_job(job)
            record_audit(
                txn,
                actor_id=actor_id,
                action="job.override_lead_price",
                entity_type="job",
                entity_id=job_id,
                before={"lead_price_override": before},
                after={"lead_price_override": format_money(value)},
                now=now,
            )
        log_financial_event("pricing.override", job=job_id, price=value, actor=actor_id)
        return job

    # === Lead access ===

    def grant_access(
        self,
        job_id: str,
        contractor_id: str,
        method,
        payment_metadata: Optional[Dict[str, Any]] = None,
    ) -> AccessGrant:
        return self.access.grant_access(job_id, contractor_id, method, payment_metadata)

    def check_access(self, job_id: str, contractor_id: str) -> bool:
        return self.access.check_access(job_id, contractor_id)

    def list_access(self, job_id: str) -> List[JobAccess]:
        return self.access.list_access(job_id)

    def remaining_capacity(self, job_id: str) -> int:
        return self.access.remaining_capacity(job_id)

    # === Job lifecycle ===

    def create_job(self, customer_id: str, title: str, **kwargs) -> Job:
        return self.jobs.create_job(customer_id, title, **kwargs)

    def publish_job(self, job_id: str, customer_id: str) -> Job:
        return self.jobs.publish_job(job_id, customer_id)

    def apply(self, job_id: str, contractor_id: str, **kwargs) -> JobApplication:
        return self.jobs.apply(job_id, contractor_id, **kwargs)

    def accept_directly(self, job_id: str, contractor_id: str) -> JobApplication:
        return self.jobs.accept_directly(job_id, contractor_id)

    def select_winner(self, job_id: str, customer_id: str, contractor_id: str) -> Job:
        return self.jobs.select_winner(job_id, customer_id, contractor_id)

    def confirm_work_start(self, job_id: str, customer_id: str) -> Job:
        return self.jobs.confirm_work_start(job_id, customer_id)

    def mark_completed(self, job_id: str, contractor_id: str, final_amount=None) -> Job:
        return self.jobs.mark_completed(job_id, contractor_id, final_amount)

    def confirm_completion(self, job_id: str, customer_id: str) -> CompletionResult:
        return self.jobs.confirm_completion(job_id, customer_id)

    def cancel_job(
        self, job_id: str, actor_id: str, reason: str, is_admin: bool = False
    ) -> Job:
        return self.jobs.cancel_job(job_id, actor_id, reason, is_admin=is_admin)

    def auto_confirm_stale_completions(
        self, now: Optional[datetime] = None
    ) -> List[CompletionResult]:
        return self.jobs.auto_confirm_stale_completions(now)

    # === Commission ===

    def waive_commission(self, commission_id: str, reason: str, actor_id: str) -> CommissionPayment:
        return self.commissions.waive(commission_id, reason, actor_id)

    def manual_override_commission(
        self, commission_id: str, reason: str, actor_id: str
    ) -> CommissionPayment:
        return self.commissions.manual_override_paid(commission_id, reason, actor_id)

    def pay_commission(
        self,
        commission_id: str,
        actor_id: str,
        payment_metadata: Optional[Dict[str, Any]] = None,
    ) -> CommissionPayment:
        return self.commissions.pay(commission_id, actor_id, payment_metadata)

    def sweep_overdue_commissions(self, now: Optional[datetime] = None) -> List[CommissionPayment]:
        return self.commissions.sweep_overdue(now)

    def send_commission_reminders(self, now: Optional[datetime] = None) -> List[Reminder]:
        return self.commissions.send_reminders(now)

    def commission_summary(self) -> CommissionSummary:
        return self.commissions.summary()

    # === Payments ===

    def refund_payment(
        self,
        payment_id: str,
        amount,
        reason: str,
        actor_id: str,
        idempotency_key: Optional[str] = None,
    ) -> Refund:
        return self.refunds.refund_payment(payment_id, amount, reason, actor_id, idempotency_key)

    # === Credits ===

    def register_contractor(
        self, user_id: str, weekly_credits_limit: int = 0, initial_credits: int = 0, **kwargs
    ) -> Contractor:
        return self.credits.create_contractor(
            user_id,
            weekly_credits_limit=weekly_credits_limit,
            initial_credits=initial_credits,
            **kwargs,
        )

    def adjust_credits(
        self, contractor_id: str, amount: int, type, reason: str, actor_id: str
    ) -> CreditTransaction:
        return self.credits.adjust(contractor_id, amount, type, reason, actor_id)

    def reset_weekly_credits(
        self, now: Optional[datetime] = None, force: bool = False
    ) -> CreditResetSummary:
        return self.credits.reset_weekly(now=now, force=force)

    # === Audit ===

    def audit_log(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None
    ) -> List[AuditEntry]:
        with self.storage.read() as txn:
            return txn.list_audit(entity_type=entity_type, entity_id=entity_id)
