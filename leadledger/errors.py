"""Error taxonomy for leadledger.

Every failure raised by the engine belongs to one of six families so that
callers (route handlers, cron entry points) can map them without knowing the
individual cases:

- ValidationError: bad input, rejected before any state change
- NotFoundError: the referenced record does not exist
- ConflictError: the request is well-formed but the current state forbids it
- InsufficientResourceError: a balance is too low (caller may pick another method)
- ExternalServiceError: a collaborator (payment gateway) failed
- StorageBusyError: the store stayed locked too long; safe to retry

Service modules re-export the specific subclasses they raise.
"""

from typing import Optional


class MarketError(Exception):
    """Base class for all leadledger errors."""

    code = "market_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.details}


# === Validation ===


class ValidationError(MarketError, ValueError):
    """Input failed validation."""

    code = "validation_error"


# === Not found ===


class NotFoundError(MarketError):
    """A referenced record does not exist."""

    code = "not_found"


class JobNotFoundError(NotFoundError):
    code = "job_not_found"

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", job_id=job_id)


class ContractorNotFoundError(NotFoundError):
    code = "contractor_not_found"

    def __init__(self, contractor_id: str):
        super().__init__(f"Contractor {contractor_id} not found", contractor_id=contractor_id)


class ApplicationNotFoundError(NotFoundError):
    code = "application_not_found"

    def __init__(self, application_id: str):
        super().__init__(
            f"Application {application_id} not found", application_id=application_id
        )


class CommissionNotFoundError(NotFoundError):
    code = "commission_not_found"

    def __init__(self, commission_id: str):
        super().__init__(f"Commission {commission_id} not found", commission_id=commission_id)


class PaymentNotFoundError(NotFoundError):
    code = "payment_not_found"

    def __init__(self, payment_id: str):
        super().__init__(f"Payment {payment_id} not found", payment_id=payment_id)


# === Authorization ===


class UnauthorizedError(MarketError):
    """The actor may not perform this operation on this record."""

    code = "unauthorized"


# === Conflicts ===


class ConflictError(MarketError):
    """The current state forbids the requested operation."""

    code = "conflict"


class CapacityExceededError(ConflictError):
    code = "capacity_exceeded"

    def __init__(self, job_id: str, capacity: int):
        super().__init__(
            f"Job {job_id} is fully subscribed ({capacity} contractors)",
            job_id=job_id,
            capacity=capacity,
        )


class JobNotAvailableError(ConflictError):
    code = "job_not_available"

    def __init__(self, job_id: str, status: str):
        super().__init__(
            f"Job {job_id} is not available for lead access (status={status})",
            job_id=job_id,
            status=status,
        )


class ContractorSuspendedError(ConflictError):
    code = "contractor_suspended"

    def __init__(self, contractor_id: str):
        super().__init__(
            f"Contractor {contractor_id} is suspended", contractor_id=contractor_id
        )


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"


class AlreadyConfirmedError(ConflictError):
    code = "already_confirmed"

    def __init__(self, job_id: str):
        super().__init__(f"Completion of job {job_id} was already confirmed", job_id=job_id)


class CommissionAlreadySettledError(ConflictError):
    code = "commission_already_settled"

    def __init__(self, job_id: str):
        super().__init__(f"Commission for job {job_id} was already settled", job_id=job_id)


class InvalidCommissionStateError(ConflictError):
    code = "invalid_commission_state"

    def __init__(self, commission_id: str, status: str, action: str):
        super().__init__(
            f"Cannot {action} commission {commission_id} in status {status}",
            commission_id=commission_id,
            status=status,
        )


class DuplicateApplicationError(ConflictError):
    code = "duplicate_application"


class RefundLimitExceededError(ConflictError):
    code = "refund_limit_exceeded"


class DuplicateRecordError(ConflictError):
    """A storage uniqueness constraint was violated."""

    code = "duplicate_record"


# === Resources ===


class InsufficientResourceError(MarketError):
    """A balance is too low for the request."""

    code = "insufficient_resource"


class InsufficientCreditsError(InsufficientResourceError):
    code = "insufficient_credits"

    def __init__(self, contractor_id: str, balance: int, required: int):
        super().__init__(
            f"Insufficient credits: balance {balance}, required {required}",
            contractor_id=contractor_id,
            balance=balance,
            required=required,
        )


# === External collaborators ===


class ExternalServiceError(MarketError):
    """An external collaborator failed; dependent local state was not committed."""

    code = "external_service_error"


class GatewayError(ExternalServiceError):
    code = "gateway_error"

    def __init__(self, message: str, status_code: Optional[int] = None, **details):
        super().__init__(message, status_code=status_code, **details)
        self.status_code = status_code


# === Storage ===


class StorageBusyError(MarketError):
    """The store stayed locked past its busy timeout; nothing was written."""

    code = "storage_busy"
