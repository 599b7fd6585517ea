"""Credit ledger subsystem.

Models:
- Contractor: A contractor account with a credit balance
- CreditTransaction: Append-only ledger row
- CreditResetSummary: Result of a weekly reset run

Service:
- CreditLedger: debit, credit, adjust, weekly reset, reconcile
- debit_in / credit_in: the same operations inside a caller's transaction
"""

from leadledger.credits.models import (
    Contractor,
    ContractorStatus,
    CreditResetSummary,
    CreditTransaction,
    CreditTransactionType,
)
from leadledger.credits.service import (
    WEEKLY_RESET_DESCRIPTION,
    ContractorNotFoundError,
    CreditLedger,
    InsufficientCreditsError,
    credit_in,
    debit_in,
)

__all__ = [
    # Models
    "Contractor",
    "ContractorStatus",
    "CreditTransaction",
    "CreditTransactionType",
    "CreditResetSummary",
    # Service
    "CreditLedger",
    "credit_in",
    "debit_in",
    "WEEKLY_RESET_DESCRIPTION",
    "ContractorNotFoundError",
    "InsufficientCreditsError",
]
