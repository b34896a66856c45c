"""
Unit tests for configuration management.
"""

import os
import warnings
from decimal import Decimal
from unittest.mock import patch

import pytest

from redpacket.config import DEFAULT_JWT_SECRET, get_config, validate_config


class TestGetConfig:
    """Test configuration loading from environment variables."""

    def test_get_config_defaults(self):
        """Test that get_config returns default values when env vars not set."""
        config = get_config()

        assert config["FLASK_ENV"] == "testing"  # Set in conftest
        assert config["JWT_ALGORITHM"] == "HS256"
        assert config["APP_NAME"] == "RedPacket"
        assert config["STARTING_BALANCE"] == Decimal("100.00")
        assert config["ENVELOPE_TTL_HOURS"] == 24
        assert config["PASSPHRASE_LENGTH"] == 4
        assert config["MAX_SHARE_COUNT"] == 100
        assert config["TRANSACTION_LIST_LIMIT"] == 50
        assert config["REQUIRE_AUTH_TOKEN"] is False
        assert config["CREDENTIAL_SCHEME"] == "plaintext"
        assert config["FORCE_HTTPS"] is False

    def test_get_config_custom_values(self):
        """Test that get_config uses environment variables when provided."""
        with patch.dict(os.environ, {"APP_NAME": "CustomApp", "ENVELOPE_TTL_HOURS": "6", "CREDENTIAL_SCHEME": "PBKDF2"}):
            config = get_config()

            assert config["APP_NAME"] == "CustomApp"
            assert config["ENVELOPE_TTL_HOURS"] == 6
            assert config["CREDENTIAL_SCHEME"] == "pbkdf2"

    def test_get_config_boolean_parsing(self):
        """Test that boolean environment variables are parsed correctly."""
        with patch.dict(os.environ, {"FLASK_DEBUG": "1", "RATE_LIMIT_ENABLED": "true", "REQUIRE_AUTH_TOKEN": "yes"}):
            config = get_config()

            assert config["FLASK_DEBUG"] is True
            assert config["RATE_LIMIT_ENABLED"] is True
            assert config["REQUIRE_AUTH_TOKEN"] is True

    def test_get_config_integer_parsing(self):
        """Test that integer environment variables are parsed correctly."""
        with patch.dict(os.environ, {"MAX_SHARE_COUNT": "50", "SESSION_LIFETIME_HOURS": "12"}):
            config = get_config()

            assert config["MAX_SHARE_COUNT"] == 50
            assert config["SESSION_LIFETIME_HOURS"] == 12

    def test_get_config_invalid_integer_raises(self):
        """Invalid integer inputs should surface a helpful error."""
        with patch.dict(os.environ, {"APP_PORT": "not-a-number"}):
            with pytest.raises(ValueError, match="APP_PORT"):
                get_config()

    def test_get_config_decimal_parsing(self):
        with patch.dict(os.environ, {"STARTING_BALANCE": "12.345"}):
            assert get_config()["STARTING_BALANCE"] == Decimal("12.35")

    @pytest.mark.parametrize("raw", ["lots", "-1", "NaN"])
    def test_get_config_invalid_decimal_raises(self, raw):
        with patch.dict(os.environ, {"STARTING_BALANCE": raw}):
            with pytest.raises(ValueError, match="STARTING_BALANCE"):
                get_config()

    def test_redis_dsn_fallback(self):
        with patch.dict(os.environ, {"REDIS_DSN": "redis://cache:6379/1"}):
            assert get_config()["REDIS_URL"] == "redis://cache:6379/1"

    def test_force_https_defaults_on_in_production(self):
        with patch.dict(os.environ, {"FLASK_ENV": "production"}):
            assert get_config()["FORCE_HTTPS"] is True


class TestValidateConfig:
    """Test configuration validation for production."""

    def test_validate_config_development_passes(self):
        """Test that development config validation passes."""
        config = {
            "FLASK_ENV": "development",
            "JWT_SECRET": DEFAULT_JWT_SECRET,
            "FLASK_SECRET_KEY": None,
        }

        assert validate_config(config) is True

    def test_validate_config_production_fails_jwt_secret(self):
        """Test that production validation fails with default JWT secret."""
        config = {
            "FLASK_ENV": "production",
            "JWT_SECRET": DEFAULT_JWT_SECRET,
            "FLASK_SECRET_KEY": "some_secret",
        }

        with pytest.raises(ValueError, match="JWT_SECRET must be changed"):
            validate_config(config)

    def test_validate_config_production_fails_flask_secret(self):
        """Test that production validation fails without Flask secret."""
        config = {
            "FLASK_ENV": "production",
            "JWT_SECRET": "secure_jwt_secret",
            "FLASK_SECRET_KEY": None,
        }

        with pytest.raises(ValueError, match="FLASK_SECRET_KEY must be set"):
            validate_config(config)

    def test_validate_config_production_passes(self):
        """Test that production validation passes with secure values."""
        config = {
            "FLASK_ENV": "production",
            "JWT_SECRET": "secure_jwt_secret_with_sufficient_entropy",
            "FLASK_SECRET_KEY": "secure_flask_secret_key",
            "DATABASE_URL": "postgresql://u:p@db/redpacket",
            "CREDENTIAL_SCHEME": "pbkdf2",
        }

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert validate_config(config) is True

    def test_validate_config_warns_on_plaintext_in_production(self):
        config = {
            "FLASK_ENV": "production",
            "JWT_SECRET": "secure",
            "FLASK_SECRET_KEY": "secure",
            "DATABASE_URL": "postgresql://u:p@db/redpacket",
        }

        with pytest.warns(UserWarning, match="Plaintext"):
            validate_config(config)

    def test_validate_config_unknown_scheme(self):
        with pytest.raises(ValueError, match="CREDENTIAL_SCHEME"):
            validate_config({"CREDENTIAL_SCHEME": "md5"})

    def test_validate_config_share_count(self):
        with pytest.raises(ValueError, match="MAX_SHARE_COUNT"):
            validate_config({"MAX_SHARE_COUNT": 0})
