"""Rate limiting for the leadledger backend.

Authenticated requests are limited per actor (the token's ``sub``);
anonymous or invalid-token requests fall back to the client IP.
``X-Forwarded-For`` is honoured only when the direct peer is in
``Settings.trusted_proxy_cidrs``.
"""

import ipaddress
from functools import lru_cache

from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("leadledger.api.rate_limit")


@lru_cache
def trusted_networks(cidrs: tuple[str, ...]) -> tuple:
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr.strip(), strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return tuple(networks)


def is_trusted_proxy(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    networks = trusted_networks(tuple(get_settings().trusted_proxy_cidrs))
    return any(addr in network for network in networks)


def get_client_ip(request) -> str:
    """Client address; the first X-Forwarded-For hop when sent by a trusted proxy."""
    peer = get_remote_address(request)
    if not is_trusted_proxy(peer):
        return peer
    first_hop = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    return first_hop or peer


def get_actor_key(request) -> str:
    """Rate-limit key: ``actor:<sub>`` for valid bearer tokens, else ``ip:<addr>``."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        settings = get_settings()
        try:
            payload = jwt.decode(
                token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
            )
        except JWTError:
            payload = {}
        if payload.get("sub"):
            return f"actor:{payload['sub']}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(key_func=get_actor_key)
