"""Notification dispatch.

The engine emits events (commission created, reminder, overdue, suspension,
winner selected, ...) to a ``Notifier``. Delivery is best-effort:
``NotificationDispatcher`` logs and swallows delivery failures, and is only
called after the state change has been committed.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    LEAD_ACCESS_GRANTED = "lead_access_granted"
    WINNER_SELECTED = "winner_selected"
    WORK_STARTED = "work_started"
    JOB_COMPLETED = "job_completed"
    JOB_CANCELLED = "job_cancelled"
    COMMISSION_CREATED = "commission_created"
    COMMISSION_REMINDER = "commission_reminder"
    COMMISSION_OVERDUE = "commission_overdue"
    COMMISSION_PAID = "commission_paid"
    COMMISSION_WAIVED = "commission_waived"
    ACCOUNT_SUSPENDED = "account_suspended"
    ACCOUNT_REACTIVATED = "account_reactivated"
    REFUND_ISSUED = "refund_issued"


class Notifier(Protocol):
    """Delivers one event to one recipient. May raise on failure."""

    def send(self, recipient_id: str, event: str, payload: Dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Writes notifications to the log. Default when no transport is configured."""

    def send(self, recipient_id: str, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notify {recipient_id}: {event} {payload}")


class WebhookNotifier:
    """POSTs events as JSON to a notification service.

    Args:
        url: Endpoint accepting ``{"recipient_id", "event", "payload"}``.
        token: Optional bearer token.
        client: httpx client (injected in tests).
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, recipient_id: str, event: str, payload: Dict[str, Any]) -> None:
        response = self._client.post(
            self.url,
            json={"recipient_id": recipient_id, "event": event, "payload": payload},
            headers=self._headers,
        )
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class NotificationDispatcher:
    """Best-effort wrapper around a ``Notifier``."""

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()

    def notify(self, recipient_id: Optional[str], event, **payload) -> bool:
        """Send an event. Returns False (and logs) instead of raising on failure."""
        if not recipient_id:
            return False
        event_name = event.value if isinstance(event, NotificationEvent) else str(event)
        try:
            self.notifier.send(recipient_id, event_name, payload)
            return True
        except Exception as e:
            logger.warning(f"Notification {event_name} to {recipient_id} failed: {e}")
            return False
