"""Job lifecycle subsystem.

Models:
- Job: A job posted by a customer
- JobApplication: A contractor's application for a job
- JobStatus / ApplicationStatus: Lifecycle statuses
- JobStateTransition: Audit log entry for status changes
- Open / InProgress / Completed / Cancelled: explicit job states

Service:
- JobService: create, publish, apply, select winner, start, complete,
  confirm (with commission settlement), cancel, auto-confirm
"""

from leadledger.jobs.models import (
    VALID_JOB_TRANSITIONS,
    ApplicationStatus,
    Cancelled,
    Completed,
    InProgress,
    Job,
    JobApplication,
    JobState,
    JobStateTransition,
    JobStatus,
    Open,
)
from leadledger.jobs.service import (
    TIMEOUT_ACTOR,
    AlreadyConfirmedError,
    ApplicationNotFoundError,
    CompletionResult,
    DuplicateApplicationError,
    InvalidTransitionError,
    JobNotFoundError,
    JobService,
    UnauthorizedError,
)

__all__ = [
    # Models
    "Job",
    "JobApplication",
    "JobStatus",
    "ApplicationStatus",
    "JobStateTransition",
    "VALID_JOB_TRANSITIONS",
    "JobState",
    "Open",
    "InProgress",
    "Completed",
    "Cancelled",
    # Service
    "JobService",
    "CompletionResult",
    "TIMEOUT_ACTOR",
    "JobNotFoundError",
    "ApplicationNotFoundError",
    "InvalidTransitionError",
    "UnauthorizedError",
    "DuplicateApplicationError",
    "AlreadyConfirmedError",
]
