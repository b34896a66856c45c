"""Configuration management for the red packet service.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, TypedDict

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

DEFAULT_JWT_SECRET = "dev-secret-CHANGE-ME-IN-PRODUCTION"


class AppConfig(TypedDict):
    """Typed representation of the application's configuration."""

    FLASK_SECRET_KEY: Optional[str]
    FLASK_ENV: str
    FLASK_DEBUG: bool
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_ISSUER: str
    SESSION_LIFETIME_HOURS: int
    REQUIRE_AUTH_TOKEN: bool
    CREDENTIAL_SCHEME: str
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    CLAIM_RATE_LIMIT: str
    FORCE_HTTPS: bool
    LOG_LEVEL: str
    DATABASE_URL: Optional[str]
    DB_HOST: str
    DB_PORT: int
    DB_USER: str
    DB_PASSWORD: Optional[str]
    DB_NAME: str
    REDIS_URL: Optional[str]
    STARTING_BALANCE: Decimal
    ENVELOPE_TTL_HOURS: int
    PASSPHRASE_LENGTH: int
    MAX_SHARE_COUNT: int
    ENVELOPE_LIST_LIMIT: int
    TRANSACTION_LIST_LIMIT: int
    MORSE_FREQUENCY_HZ: int
    AUDIO_SAMPLE_RATE: int
    APP_NAME: str
    APP_VERSION: str
    APP_HOST: str
    APP_PORT: int


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def _get_env_decimal(name: str, default: str) -> Decimal:
    """Return an environment variable as a two-place decimal amount."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        raw_value = default

    try:
        value = Decimal(raw_value.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Environment variable {name} must be a decimal amount (got {raw_value!r})") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"Environment variable {name} must be a non-negative amount (got {raw_value!r})")
    return value.quantize(Decimal("0.01"))


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    flask_env = os.getenv("FLASK_ENV", "development")

    return {
        # Flask Configuration
        "FLASK_SECRET_KEY": os.getenv("FLASK_SECRET_KEY"),
        "FLASK_ENV": flask_env,
        "FLASK_DEBUG": _get_env_bool("FLASK_DEBUG", False),
        # Session tokens
        "JWT_SECRET": os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET),
        "JWT_ALGORITHM": os.getenv("JWT_ALGORITHM", "HS256"),
        "JWT_ISSUER": os.getenv("JWT_ISSUER", "redpacket"),
        "SESSION_LIFETIME_HOURS": _get_env_int("SESSION_LIFETIME_HOURS", 24),
        "REQUIRE_AUTH_TOKEN": _get_env_bool("REQUIRE_AUTH_TOKEN", False),
        "CREDENTIAL_SCHEME": os.getenv("CREDENTIAL_SCHEME", "plaintext").strip().lower(),
        # Rate Limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "200/hour"),
        "CLAIM_RATE_LIMIT": os.getenv("CLAIM_RATE_LIMIT", "30 per minute"),
        "FORCE_HTTPS": _get_env_bool("FORCE_HTTPS", flask_env.lower() == "production"),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        # Database Configuration
        "DATABASE_URL": os.getenv("DATABASE_URL"),
        "DB_HOST": os.getenv("DB_HOST", "localhost"),
        "DB_PORT": _get_env_int("DB_PORT", 5432),
        "DB_USER": os.getenv("DB_USER", "redpacket"),
        "DB_PASSWORD": os.getenv("DB_PASSWORD"),
        "DB_NAME": os.getenv("DB_NAME", "redpacket"),
        # Redis is optional; claim locks fall back to in-process locks without it
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("REDIS_DSN"),
        # Game rules
        "STARTING_BALANCE": _get_env_decimal("STARTING_BALANCE", "100.00"),
        "ENVELOPE_TTL_HOURS": _get_env_int("ENVELOPE_TTL_HOURS", 24),
        "PASSPHRASE_LENGTH": _get_env_int("PASSPHRASE_LENGTH", 4),
        "MAX_SHARE_COUNT": _get_env_int("MAX_SHARE_COUNT", 100),
        "ENVELOPE_LIST_LIMIT": _get_env_int("ENVELOPE_LIST_LIMIT", 20),
        "TRANSACTION_LIST_LIMIT": _get_env_int("TRANSACTION_LIST_LIMIT", 50),
        # Audio rendering
        "MORSE_FREQUENCY_HZ": _get_env_int("MORSE_FREQUENCY_HZ", 700),
        "AUDIO_SAMPLE_RATE": _get_env_int("AUDIO_SAMPLE_RATE", 8000),
        # Application Settings
        "APP_NAME": os.getenv("APP_NAME", "RedPacket"),
        "APP_VERSION": os.getenv("APP_VERSION", "1.0.0"),
        "APP_HOST": os.getenv("APP_HOST", "0.0.0.0"),
        "APP_PORT": _get_env_int("APP_PORT", 5001),
    }


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    if config.get("CREDENTIAL_SCHEME", "plaintext") not in {"plaintext", "pbkdf2"}:
        raise ValueError(f"Unknown CREDENTIAL_SCHEME {config.get('CREDENTIAL_SCHEME')!r}")

    max_shares = config.get("MAX_SHARE_COUNT", 100)
    if not isinstance(max_shares, int) or max_shares < 1:
        raise ValueError("MAX_SHARE_COUNT must be a positive integer")

    if config.get("PASSPHRASE_LENGTH", 4) < 1:
        raise ValueError("PASSPHRASE_LENGTH must be a positive integer")

    # Check for insecure defaults in production
    if config.get("FLASK_ENV") == "production":
        if config.get("JWT_SECRET") == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET must be changed for production!")

        if not config.get("FLASK_SECRET_KEY"):
            raise ValueError("FLASK_SECRET_KEY must be set for production!")

        if not config.get("DATABASE_URL") and not config.get("DB_PASSWORD"):
            import warnings

            warnings.warn(
                "DATABASE_URL or DB_PASSWORD not set - database connectivity may fail!",
                stacklevel=2,
            )

        if config.get("CREDENTIAL_SCHEME", "plaintext") == "plaintext":
            import warnings

            warnings.warn("Plaintext credential storage is active in production!", stacklevel=2)

    return True
