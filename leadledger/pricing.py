"""Lead price resolution.

A job's lead price is what a contractor pays (by card) to unlock the
customer's details. A positive per-job override always wins; otherwise the
price comes from the service's tier for the job size. Jobs with no priced
tier are free to unlock.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from leadledger.utils import format_money, quantize_money, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class JobSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass
class ServicePricing:
    """Per-service lead prices for each job size. Unset tiers are free."""

    service_id: str
    name: str = ""
    small_price: Optional[Decimal] = None
    medium_price: Optional[Decimal] = None
    large_price: Optional[Decimal] = None

    def __post_init__(self):
        if not self.service_id:
            raise ValueError("Service id is required")
        for attr in ("small_price", "medium_price", "large_price"):
            value = to_decimal(getattr(self, attr))
            if value is not None:
                if value < 0:
                    raise ValueError(f"{attr} cannot be negative")
                value = quantize_money(value)
            setattr(self, attr, value)

    def price_for(self, job_size) -> Optional[Decimal]:
        size = JobSize(job_size)
        return {
            JobSize.SMALL: self.small_price,
            JobSize.MEDIUM: self.medium_price,
            JobSize.LARGE: self.large_price,
        }[size]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "name": self.name,
            "small_price": format_money(self.small_price),
            "medium_price": format_money(self.medium_price),
            "large_price": format_money(self.large_price),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServicePricing":
        return cls(
            service_id=data["service_id"],
            name=data.get("name") or "",
            small_price=data.get("small_price"),
            medium_price=data.get("medium_price"),
            large_price=data.get("large_price"),
        )


def resolve_lead_price(
    job_size,
    pricing: Optional[ServicePricing],
    override: Optional[Decimal] = None,
) -> Decimal:
    """Return the lead price for a job.

    Args:
        job_size: A ``JobSize`` (or its string value).
        pricing: The service's tier prices, or None when the job has no service.
        override: Per-job price set by an admin.

    Returns:
        The price, never negative. Zero means the lead is free.
    """
    override = to_decimal(override)
    if override is not None and override > 0:
        return quantize_money(override)

    if pricing is None:
        logger.debug("No service pricing configured; lead is free")
        return ZERO

    price = pricing.price_for(job_size)
    if price is None:
        logger.debug(
            f"Service {pricing.service_id} has no {JobSize(job_size).value} price; lead is free"
        )
        return ZERO
    return max(quantize_money(price), ZERO)
