"""Engine configuration.

Defaults match the platform's published terms: 5% commission due within
7 days, one credit per lead, weekly credit allocation, up to 5 contractors
per job. ``MarketConfig.from_env()`` reads ``LEADLEDGER_*`` overrides.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Tuple

from leadledger.utils import to_decimal

ENV_PREFIX = "LEADLEDGER_"


@dataclass
class MarketConfig:
    """Tunable business parameters for the lead and commission engine."""

    commission_rate: Decimal = Decimal("5.0")  # percent of final job value
    commission_due_days: int = 7
    default_max_contractors_per_job: int = 5
    credits_per_lead: int = 1
    credit_reset_interval_days: int = 7
    completion_confirmation_timeout_days: int = 7
    reminder_window_hours: int = 48
    reminder_thresholds_hours: Tuple[int, ...] = field(default=(36, 24, 12, 6, 2))
    currency: str = "gbp"

    def __post_init__(self):
        self.commission_rate = to_decimal(self.commission_rate)
        if self.commission_rate is None or not (0 <= self.commission_rate <= 100):
            raise ValueError("Commission rate must be between 0 and 100")
        if self.commission_due_days < 1:
            raise ValueError("Commission due days must be at least 1")
        if self.default_max_contractors_per_job < 1:
            raise ValueError("Max contractors per job must be at least 1")
        if self.credits_per_lead < 1:
            raise ValueError("Credits per lead must be at least 1")
        if self.credit_reset_interval_days < 1:
            raise ValueError("Credit reset interval must be at least 1 day")
        if self.completion_confirmation_timeout_days < 1:
            raise ValueError("Completion confirmation timeout must be at least 1 day")
        self.reminder_thresholds_hours = tuple(
            sorted({int(h) for h in self.reminder_thresholds_hours}, reverse=True)
        )
        if any(h <= 0 for h in self.reminder_thresholds_hours):
            raise ValueError("Reminder thresholds must be positive hours")
        self.currency = self.currency.lower()

    @property
    def commission_due_delta(self) -> timedelta:
        return timedelta(days=self.commission_due_days)

    @property
    def credit_reset_interval(self) -> timedelta:
        return timedelta(days=self.credit_reset_interval_days)

    @property
    def completion_confirmation_timeout(self) -> timedelta:
        return timedelta(days=self.completion_confirmation_timeout_days)

    @classmethod
    def from_env(cls, environ=None) -> "MarketConfig":
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        kwargs = {}

        def _get(name):
            return env.get(f"{ENV_PREFIX}{name}")

        if _get("COMMISSION_RATE"):
            kwargs["commission_rate"] = _get("COMMISSION_RATE")
        for name in (
            "commission_due_days",
            "default_max_contractors_per_job",
            "credits_per_lead",
            "credit_reset_interval_days",
            "completion_confirmation_timeout_days",
            "reminder_window_hours",
        ):
            raw = _get(name.upper())
            if raw:
                kwargs[name] = int(raw)
        if _get("REMINDER_THRESHOLDS_HOURS"):
            kwargs["reminder_thresholds_hours"] = tuple(
                int(h) for h in _get("REMINDER_THRESHOLDS_HOURS").split(",") if h.strip()
            )
        if _get("CURRENCY"):
            kwargs["currency"] = _get("CURRENCY")
        return cls(**kwargs)
