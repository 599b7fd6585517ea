"""Lead access subsystem.

Models:
- JobAccess: A contractor's unlocked lead on a job
- AccessMethod: PAYMENT or CREDIT
- AccessGrant: Result of a grant (access row + whether it was created)

Service:
- LeadAccessController: grant_access, check_access, capacity queries
"""

from leadledger.access.models import AccessGrant, AccessMethod, JobAccess
from leadledger.access.service import (
    CapacityExceededError,
    ContractorSuspendedError,
    InsufficientCreditsError,
    JobNotAvailableError,
    LeadAccessController,
    access_key,
    capacity_release_key,
)

__all__ = [
    # Models
    "JobAccess",
    "AccessMethod",
    "AccessGrant",
    # Service
    "LeadAccessController",
    "access_key",
    "capacity_release_key",
    "CapacityExceededError",
    "ContractorSuspendedError",
    "InsufficientCreditsError",
    "JobNotAvailableError",
]
