"""Shared helpers: time, ids, money and data directory resolution."""

import os
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

CENT = Decimal("0.01")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string (or pass through a datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a number or numeric string to Decimal; None stays None.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1"). NaN and
    infinities are rejected.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif value == "":
        return None
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Not a monetary value: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Not a monetary value: {value!r}")
    return result


def quantize_money(value: Decimal) -> Decimal:
    """Round to whole pence/cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def get_data_dir() -> Path:
    """Directory for the local database and logs.

    ``LEADLEDGER_DATA_DIR`` overrides the default ``~/.leadledger``.
    """
    override = os.environ.get("LEADLEDGER_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".leadledger"
