"""Job lifecycle service.

Handles the job state machine:
- DRAFT -> POSTED (publish; also implied by selecting a winner)
- POSTED -> IN_PROGRESS (customer confirms the winner has started)
- IN_PROGRESS -> COMPLETED (winner marks the work done, with the final amount)
- DRAFT/POSTED/IN_PROGRESS -> CANCELLED

Customer confirmation of a COMPLETED job runs commission settlement in the
same transaction, exactly once. Completions left unconfirmed past the
timeout are confirmed by the system.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from leadledger.commission.models import CommissionPayment
from leadledger.commission.settlement import announce_commission, settle
from leadledger.config import MarketConfig
from leadledger.errors import (
    AlreadyConfirmedError,
    ApplicationNotFoundError,
    ConflictError,
    ContractorNotFoundError,
    DuplicateApplicationError,
    InvalidTransitionError,
    JobNotFoundError,
    MarketError,
    UnauthorizedError,
    ValidationError,
)
from leadledger.jobs.models import (
    ApplicationStatus,
    Job,
    JobApplication,
    JobStateTransition,
    JobStatus,
    can_transition,
)
from leadledger.notifications import NotificationDispatcher, NotificationEvent
from leadledger.pricing import JobSize
from leadledger.utils import new_id, quantize_money, to_decimal, utc_now

if TYPE_CHECKING:
    from leadledger.storage.base import MarketStorage

logger = logging.getLogger(__name__)

TIMEOUT_ACTOR = "system:timeout"
_PAGE_SIZE = 500


@dataclass
class CompletionResult:
    """Outcome of confirming a completed job."""

    job: Job
    commission: Optional[CommissionPayment] = None

    def to_dict(self) -> dict:
        return {
            "job": self.job.to_dict(),
            "commission": self.commission.to_dict() if self.commission else None,
        }


class JobService:
    """Service for job lifecycle operations."""

    def __init__(
        self,
        storage: "MarketStorage",
        notifications: Optional[NotificationDispatcher] = None,
        config: Optional[MarketConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.notifications = notifications or NotificationDispatcher()
        self.config = config or MarketConfig()
        self._clock = clock

    # === Helpers ===

    def _load(self, txn, job_id: str) -> Job:
        job = txn.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _require_customer(self, job: Job, customer_id: str) -> None:
        if job.customer_id != customer_id:
            raise UnauthorizedError(
                f"Only the customer who posted job {job.id} can do this", job_id=job.id
            )

    def _transition(
        self,
        txn,
        job: Job,
        to_status: JobStatus,
        actor_id: str,
        now: datetime,
        **metadata: Any,
    ) -> None:
        """Move ``job`` to ``to_status`` and write the transition record."""
        from_status = job.status
        if not can_transition(from_status, to_status):
            raise InvalidTransitionError(
                f"Cannot move job {job.id} from {from_status} to {to_status.value}",
                job_id=job.id,
                from_status=from_status,
                to_status=to_status.value,
            )
        job.status = to_status.value
        job.updated_at = now
        txn.save_transition(
            JobStateTransition(
                id=new_id(),
                job_id=job.id,
                from_status=from_status,
                to_status=to_status.value,
                actor_id=actor_id,
                metadata=metadata,
                created_at=now,
            )
        )

    # === Creation ===

    def create_job(
        self,
        customer_id: str,
        title: str,
        description: str = "",
        service_id: Optional[str] = None,
        job_size=JobSize.MEDIUM,
        budget=None,
        max_contractors_per_job: Optional[int] = None,
        publish: bool = True,
    ) -> Job:
        """Create a job as POSTED (or DRAFT with ``publish=False``).

        Raises:
            ValidationError: Invalid title, size, budget or cap
        """
        now = self._clock()
        status = JobStatus.POSTED if publish else JobStatus.DRAFT
        try:
            job = Job(
                id=new_id(),
                customer_id=customer_id,
                title=title,
                description=description,
                service_id=service_id,
                job_size=job_size,
                budget=budget,
                max_contractors_per_job=(
                    max_contractors_per_job or self.config.default_max_contractors_per_job
                ),
                status=status,
                created_at=now,
                posted_at=now if publish else None,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        with self.storage.transaction() as txn:
            txn.save_job(job)
            txn.save_transition(
                JobStateTransition(
                    id=new_id(),
                    job_id=job.id,
                    to_status=job.status,
                    actor_id=customer_id,
                    created_at=now,
                )
            )
        logger.info(f"Created job {job.id} ({job.status}) for customer {customer_id}")
        return job

    def publish_job(self, job_id: str, customer_id: str) -> Job:
        now = self._clock()
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
            self._require_customer(job, customer_id)
            self._transition(txn, job, JobStatus.POSTED, customer_id, now)
            job.posted_at = now
            txn.update_job(job)
        logger.info(f"Published job {job_id}")
        return job

    # === Applications ===

    def apply(
        self,
        job_id: str,
        contractor_id: str,
        proposed_rate=None,
        message: str = "",
    ) -> JobApplication:
        """Apply for a POSTED job. The contractor must hold lead access.

        Raises:
            InvalidTransitionError: Job is not POSTED
            UnauthorizedError: Contractor has not unlocked the job
            DuplicateApplicationError: Contractor already applied
        """
        now = self._clock()
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
            if job.status != JobStatus.POSTED.value:
                raise InvalidTransitionError(
                    f"Job {job_id} is not accepting applications (status={job.status})",
                    job_id=job_id,
                )
            if txn.get_contractor(contractor_id) is None:
                raise ContractorNotFoundError(contractor_id)
            if txn.get_access(job_id, contractor_id) is None:
                raise UnauthorizedError(
                    f"Contractor {contractor_id} has not unlocked job {job_id}", job_id=job_id
                )
            if txn.find_application(job_id, contractor_id) is not None:
                raise DuplicateApplicationError(
                    f"Contractor {contractor_id} already applied to job {job_id}",
                    job_id=job_id,
                )
            try:
                application = JobApplication(
                    id=new_id(),
                    job_id=job_id,
                    contractor_id=contractor_id,
                    proposed_rate=proposed_rate,
                    message=message or "",
                    created_at=now,
                )
            except ValueError as e:
                raise ValidationError(str(e)) from e
            txn.save_application(application)
        logger.info(f"Contractor {contractor_id} applied to job {job_id}")
        return application

    def accept_directly(self, job_id: str, contractor_id: str) -> JobApplication:
        """Apply at the job's posted budget."""
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
        if job.budget is None:
            raise ValidationError("Job has no budget to accept", job_id=job_id)
        return self.apply(
            job_id, contractor_id, proposed_rate=job.budget, message="Accepted at posted budget"
        )

    def list_applications(
        self, job_id: str, status: Optional[str] = None
    ) -> List[JobApplication]:
        with self.storage.read() as txn:
            self._load(txn, job_id)
            return txn.list_applications(job_id=job_id, status=status)

    def get_application(self, application_id: str) -> JobApplication:
        with self.storage.read() as txn:
            application = txn.get_application(application_id)
        if application is None:
            raise ApplicationNotFoundError(application_id)
        return application

    # === Lifecycle ===

    def select_winner(self, job_id: str, customer_id: str, contractor_id: str) -> Job:
        """Choose the contractor who gets the job.

        Selecting the same winner again is a no-op. A DRAFT job is published
        as part of the selection.

        Raises:
            UnauthorizedError: Caller is not the job's customer
            InvalidTransitionError: A different winner was already chosen, or
                the job is past the selection stage
            ConflictError: The contractor has not unlocked the job
        """
        now = self._clock()
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
            self._require_customer(job, customer_id)
            if job.won_by_contractor_id == contractor_id:
                return job
            if job.won_by_contractor_id is not None:
                raise InvalidTransitionError(
                    f"Job {job_id} already has a winner", job_id=job_id
                )
            if job.status not in (JobStatus.DRAFT.value, JobStatus.POSTED.value):
                raise InvalidTransitionError(
                    f"Cannot select a winner for job {job_id} in status {job.status}",
                    job_id=job_id,
                )
            if txn.get_access(job_id, contractor_id) is None:
                raise ConflictError(
                    f"Contractor {contractor_id} has not unlocked job {job_id}",
                    job_id=job_id,
                    contractor_id=contractor_id,
                )

            if job.status == JobStatus.DRAFT.value:
                self._transition(
                    txn, job, JobStatus.POSTED, customer_id, now, reason="winner_selected"
                )
                job.posted_at = now
            job.won_by_contractor_id = contractor_id
            job.winner_selected_at = now
            job.updated_at = now
            txn.update_job(job)

            application = txn.find_application(job_id, contractor_id)
            if application is not None and application.status != ApplicationStatus.ACCEPTED.value:
                application.status = ApplicationStatus.ACCEPTED.value
                application.updated_at = now
                txn.update_application(application)

        logger.info(f"Job {job_id}: winner {contractor_id} selected")
        self.notifications.notify(
            contractor_id, NotificationEvent.WINNER_SELECTED, job_id=job_id, title=job.title
        )
        return job

    def confirm_work_start(self, job_id: str, customer_id: str) -> Job:
        """POSTED -> IN_PROGRESS. Other pending applications are rejected."""
        now = self._clock()
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
            self._require_customer(job, customer_id)
            if not job.won_by_contractor_id:
                raise InvalidTransitionError(
                    f"Job {job_id} has no winner to start work", job_id=job_id
                )
            self._transition(txn, job, JobStatus.IN_PROGRESS, customer_id, now)
            job.start_date = now
            txn.update_job(job)
            rejected = self._reject_pending(txn, job_id, now, keep=job.won_by_contractor_id)

        logger.info(f"Job {job_id} started; {rejected} other applications rejected")
        self.notifications.notify(
            job.won_by_contractor_id, NotificationEvent.WORK_STARTED, job_id=job_id
        )
        return job

    def _reject_pending(
        self, txn, job_id: str, now: datetime, keep: Optional[str] = None
    ) -> int:
        count = 0
        for application in txn.list_applications(
            job_id=job_id, status=ApplicationStatus.PENDING.value
        ):
            if application.contractor_id == keep:
                continue
            application.status = ApplicationStatus.REJECTED.value
            application.updated_at = now
            txn.update_application(application)
            count += 1
        return count

    def mark_completed(
        self, job_id: str, contractor_id: str, final_amount=None
    ) -> Job:
        """IN_PROGRESS -> COMPLETED, by the winner.

        Args:
            final_amount: Agreed final value; defaults to the job budget.

        Raises:
            UnauthorizedError: Caller is not the winner
            ValidationError: No positive final amount available
            InvalidTransitionError: Job is not IN_PROGRESS
        """
        try:
            amount: Optional[Decimal] = to_decimal(final_amount)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        now = self._clock()
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
            if job.won_by_contractor_id != contractor_id:
                raise UnauthorizedError(
                    f"Only the winning contractor can complete job {job_id}", job_id=job_id
                )
            if amount is None:
                amount = job.budget
            if amount is None or amount <= 0:
                raise ValidationError(
                    "Final amount must be positive", job_id=job_id, final_amount=str(amount)
                )
            self._transition(
                txn, job, JobStatus.COMPLETED, contractor_id, now, final_amount=str(amount)
            )
            job.final_amount = quantize_money(amount)
            job.completed_at = now
            txn.update_job(job)

            contractor = txn.get_contractor(contractor_id)
            if contractor is not None:
                contractor.jobs_completed += 1
                contractor.updated_at = now
                txn.update_contractor(contractor)

        logger.info(f"Job {job_id} completed by {contractor_id} for {job.final_amount}")
        self.notifications.notify(
            job.customer_id,
            NotificationEvent.JOB_COMPLETED,
            job_id=job_id,
            final_amount=str(job.final_amount),
        )
        return job

    def _confirm(self, txn, job: Job, actor_id: str, now: datetime) -> Optional[CommissionPayment]:
        if job.customer_confirmed:
            raise AlreadyConfirmedError(job.id)
        if job.status != JobStatus.COMPLETED.value:
            raise InvalidTransitionError(
                f"Job {job.id} is not completed (status={job.status})", job_id=job.id
            )
        job.customer_confirmed = True
        job.confirmed_at = now
        job.updated_at = now
        commission = settle(txn, job, now, self.config)
        txn.update_job(job)
        txn.save_transition(
            JobStateTransition(
                id=new_id(),
                job_id=job.id,
                from_status=job.status,
                to_status=job.status,
                actor_id=actor_id,
                metadata={
                    "event": "completion_confirmed",
                    "commission_id": commission.id if commission else None,
                },
                created_at=now,
            )
        )
        return commission

    def confirm_completion(self, job_id: str, customer_id: str) -> CompletionResult:
        """Customer confirms the work; commission is settled in the same transaction.

        Raises:
            UnauthorizedError: Caller is not the job's customer
            AlreadyConfirmedError: Completion was already confirmed
            InvalidTransitionError: Job is not COMPLETED
        """
        now = self._clock()
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
            self._require_customer(job, customer_id)
            commission = self._confirm(txn, job, customer_id, now)

        logger.info(f"Job {job_id} confirmed by customer {customer_id}")
        if commission is not None:
            announce_commission(self.notifications, commission)
        return CompletionResult(job=job, commission=commission)

    def cancel_job(
        self, job_id: str, actor_id: str, reason: str, is_admin: bool = False
    ) -> Job:
        """Cancel a job that has not completed. Pending applications are rejected.

        Raises:
            ValidationError: No reason given
            UnauthorizedError: Caller is neither the customer nor an admin
            InvalidTransitionError: Job is COMPLETED or already CANCELLED
        """
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        now = self._clock()
        with self.storage.transaction() as txn:
            job = self._load(txn, job_id)
            if not is_admin:
                self._require_customer(job, actor_id)
            self._transition(txn, job, JobStatus.CANCELLED, actor_id, now, reason=reason)
            job.cancelled_at = now
            job.cancellation_reason = reason.strip()
            txn.update_job(job)
            self._reject_pending(txn, job_id, now)

        logger.info(f"Job {job_id} cancelled by {actor_id}: {reason}")
        self.notifications.notify(
            job.won_by_contractor_id, NotificationEvent.JOB_CANCELLED, job_id=job_id
        )
        return job

    def auto_confirm_stale_completions(
        self, now: Optional[datetime] = None
    ) -> List[CompletionResult]:
        """Confirm completions the customer has left unconfirmed past the timeout.

        Each job is confirmed in its own transaction; a job that fails is
        logged and skipped.
        """
        now = now or self._clock()
        cutoff = now - self.config.completion_confirmation_timeout

        candidates: List[str] = []
        offset = 0
        with self.storage.read() as txn:
            while True:
                page = txn.list_jobs(
                    status=JobStatus.COMPLETED.value, limit=_PAGE_SIZE, offset=offset
                )
                candidates.extend(
                    j.id
                    for j in page
                    if not j.customer_confirmed and j.completed_at and j.completed_at <= cutoff
                )
                if len(page) < _PAGE_SIZE:
                    break
                offset += _PAGE_SIZE

        results: List[CompletionResult] = []
        for job_id in candidates:
            try:
                with self.storage.transaction() as txn:
                    job = self._load(txn, job_id)
                    commission = self._confirm(txn, job, TIMEOUT_ACTOR, now)
            except MarketError as e:
                logger.warning(f"Auto-confirm skipped job {job_id}: {e}")
                continue
            logger.info(f"Job {job_id} auto-confirmed after timeout")
            if commission is not None:
                announce_commission(self.notifications, commission)
            results.append(CompletionResult(job=job, commission=commission))
        return results

    # === Queries ===

    def get_job(self, job_id: str) -> Job:
        with self.storage.read() as txn:
            return self._load(txn, job_id)

    def list_jobs(
        self,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        if status is not None:
            try:
                status = JobStatus(status).value
            except ValueError as e:
                raise ValidationError(f"Invalid job status: {status}") from e
        with self.storage.read() as txn:
            return txn.list_jobs(
                status=status,
                customer_id=customer_id,
                contractor_id=contractor_id,
                limit=limit,
                offset=offset,
            )

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        with self.storage.read() as txn:
            self._load(txn, job_id)
            return txn.get_transitions(job_id)
