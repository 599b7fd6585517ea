"""Commission settlement subsystem.

Models:
- CommissionPayment: Commission owed on a job won through a credit lead
- CommissionInvoice: Invoice issued with each commission
- SettlementRecord: How a commission came to be PAID
- CommissionStatus, VALID_COMMISSION_TRANSITIONS

Settlement:
- settle: Create the commission when the customer confirms completion

Service:
- CommissionService: pay, waive, manual override, reminders, overdue sweep
"""

from leadledger.commission.models import (
    VALID_COMMISSION_TRANSITIONS,
    CommissionInvoice,
    CommissionPayment,
    CommissionStatus,
    CommissionSummary,
    SettlementMethod,
    SettlementRecord,
)
from leadledger.commission.service import CommissionService, Reminder, commission_key
from leadledger.commission.settlement import (
    announce_commission,
    calculate_commission,
    commission_owed,
    settle,
)

__all__ = [
    # Models
    "CommissionPayment",
    "CommissionInvoice",
    "CommissionStatus",
    "CommissionSummary",
    "SettlementMethod",
    "SettlementRecord",
    "VALID_COMMISSION_TRANSITIONS",
    # Settlement
    "settle",
    "announce_commission",
    "calculate_commission",
    "commission_owed",
    # Service
    "CommissionService",
    "Reminder",
    "commission_key",
]
