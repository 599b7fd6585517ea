"""Marketplace wiring for the API.

One ``Marketplace`` per process, opened lazily from settings. Tests swap it
out with ``app.dependency_overrides[get_marketplace]``.
"""

from dataclasses import replace
from typing import Annotated

from fastapi import Depends

from leadledger import MarketConfig, Marketplace
from leadledger.payments import StripeGateway

from .config import Settings, get_settings
from .logging_config import get_logger

logger = get_logger("leadledger.api.database")

_marketplace: Marketplace | None = None


def build_marketplace(settings: Settings) -> Marketplace:
    """Open the SQLite-backed marketplace described by ``settings``."""
    config = replace(
        MarketConfig.from_env(),
        commission_rate=settings.commission_rate,
        currency=settings.currency,
    )
    gateway = None
    if settings.stripe_secret_key:
        gateway = StripeGateway(
            settings.stripe_secret_key,
            currency=settings.currency,
        )
    else:
        logger.warning("STRIPE_SECRET_KEY not set; paid lead access and commission charges are disabled")
    return Marketplace.open(db_path=settings.database_path, gateway=gateway, config=config)


def get_marketplace(settings: Annotated[Settings, Depends(get_settings)]) -> Marketplace:
    """FastAPI dependency for the shared marketplace."""
    global _marketplace
    if _marketplace is None:
        _marketplace = build_marketplace(settings)
    return _marketplace


def close_marketplace() -> None:
    global _marketplace
    if _marketplace is not None:
        _marketplace.close()
        _marketplace = None


# Type alias for dependency injection
Market = Annotated[Marketplace, Depends(get_marketplace)]
