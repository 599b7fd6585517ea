"""Tests for rate-limit keys and enforcement."""

from app.main import app
from app.rate_limit import get_actor_key, get_client_ip, limiter
from fastapi.testclient import TestClient
from starlette.requests import Request


def make_request(peer: str, headers: dict | None = None) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
            "client": (peer, 50000),
        }
    )


class TestClientIp:
    """Tests for get_client_ip."""

    def test_direct_peer(self):
        assert get_client_ip(make_request("203.0.113.7")) == "203.0.113.7"

    def test_forwarded_from_trusted_proxy(self):
        request = make_request("10.1.2.3", {"X-Forwarded-For": "198.51.100.9, 10.1.2.3"})
        assert get_client_ip(request) == "198.51.100.9"

    def test_forwarded_from_untrusted_peer_ignored(self):
        request = make_request("203.0.113.7", {"X-Forwarded-For": "198.51.100.9"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_empty_forwarded_header(self):
        request = make_request("127.0.0.1", {"X-Forwarded-For": " "})
        assert get_client_ip(request) == "127.0.0.1"


class TestActorKey:
    """Tests for get_actor_key."""

    def test_valid_token_keys_by_actor(self, headers_for):
        request = make_request("203.0.113.7", headers_for("user-9", "contractor"))
        assert get_actor_key(request) == "actor:user-9"

    def test_invalid_token_keys_by_ip(self):
        request = make_request("203.0.113.7", {"Authorization": "Bearer not-a-jwt"})
        assert get_actor_key(request) == "ip:203.0.113.7"

    def test_anonymous(self):
        assert get_actor_key(make_request("203.0.113.7")) == "ip:203.0.113.7"


class TestMaintenanceLimit:
    def test_sweep_limited_per_actor(self, market, headers_for):
        headers = headers_for("admin-rate-limit", "admin")
        limiter.reset()
        client = TestClient(app)

        codes = [
            client.post("/maintenance/commissions/sweep", headers=headers).status_code
            for _ in range(11)
        ]

        assert codes[:10] == [200] * 10
        assert codes[10] == 429
        limiter.reset()
