"""Configuration settings for the leadledger backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Storage
    database_path: str | None = None  # Defaults to $LEADLEDGER_DATA_DIR/leadledger.db

    # JWT (tokens are issued by the external auth service)
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"

    # Stripe
    stripe_secret_key: str | None = None  # Paid leads and commission charges are off without it
    currency: str = "gbp"

    # Business
    commission_rate: float = 5.0

    # Rate limiting: X-Forwarded-For is honoured only from these networks
    trusted_proxy_cidrs: list[str] = [
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "::1/128",
    ]

    # App
    debug: bool = False
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
