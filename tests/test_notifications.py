"""Tests for notification dispatch."""

import json

import httpx
import pytest

from leadledger.notifications import (
    LoggingNotifier,
    NotificationDispatcher,
    NotificationEvent,
    WebhookNotifier,
)


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    def test_sends_event_name(self, notifier):
        dispatcher = NotificationDispatcher(notifier)

        assert dispatcher.notify("con-1", NotificationEvent.COMMISSION_CREATED, amount="50.00")
        assert notifier.sent == [("con-1", "commission_created", {"amount": "50.00"})]

    def test_missing_recipient(self, notifier):
        dispatcher = NotificationDispatcher(notifier)

        assert dispatcher.notify(None, NotificationEvent.WINNER_SELECTED) is False
        assert notifier.sent == []

    def test_failure_is_swallowed(self, caplog):
        class Broken:
            def send(self, recipient_id, event, payload):
                raise ConnectionError("smtp down")

        dispatcher = NotificationDispatcher(Broken())

        assert dispatcher.notify("con-1", "custom_event") is False
        assert "custom_event" in caplog.text

    def test_defaults_to_logging(self):
        assert isinstance(NotificationDispatcher().notifier, LoggingNotifier)


class TestWebhookNotifier:
    """Tests for WebhookNotifier."""

    def test_posts_json(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202)

        notifier = WebhookNotifier(
            "https://notify.test/events",
            token="secret",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        notifier.send("con-1", "commission_reminder", {"hours_remaining": 24})

        request = seen[0]
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "recipient_id": "con-1",
            "event": "commission_reminder",
            "payload": {"hours_remaining": 24},
        }

    def test_http_error_raises(self):
        notifier = WebhookNotifier(
            "https://notify.test/events",
            client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500))),
        )

        with pytest.raises(httpx.HTTPStatusError):
            notifier.send("con-1", "commission_overdue", {})

    def test_dispatcher_swallows_webhook_failure(self):
        notifier = WebhookNotifier(
            "https://notify.test/events",
            client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(503))),
        )

        assert NotificationDispatcher(notifier).notify("con-1", "job_cancelled") is False
