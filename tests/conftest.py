"""
Pytest configuration and shared fixtures for the red packet service tests.
"""

import os
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Set test environment before importing the package
os.environ["FLASK_ENV"] = "testing"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("REDIS_URL", None)
os.environ.pop("DATABASE_URL", None)

from redpacket import database  # noqa: E402
from redpacket.excerpts import Book, ExcerptProvider  # noqa: E402

TEST_EXCERPT = "天下大事必作于细"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def db_url(tmp_path):
    """File-backed SQLite so that worker threads share one database."""
    return f"sqlite:///{tmp_path / 'redpacket.db'}"


@pytest.fixture
def db(db_url):
    """Initialized database with all tables, torn down after the test."""
    database.init_database(db_url, create_tables=True)
    yield
    database.close_all()
    database._local_locks.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def excerpts():
    """Single-book corpus so puzzles are predictable."""
    books = [Book(name="道德经", author="老子", excerpts=(TEST_EXCERPT,))]
    return ExcerptProvider(books=books, rng=random.Random(7))


@pytest.fixture
def wallet(db):
    from redpacket.wallet import LocalWalletService

    return LocalWalletService()


@pytest.fixture
def accounts(wallet):
    from redpacket.accounts import AccountService
    from redpacket.credentials import PlaintextCredentialVerifier

    return AccountService(wallet, PlaintextCredentialVerifier(), starting_balance=Decimal("100.00"))


@pytest.fixture
def envelopes(wallet, excerpts, clock):
    from redpacket.envelopes import EnvelopeService

    return EnvelopeService(wallet, excerpts, rng=random.Random(42), clock=clock)


@pytest.fixture
def make_user(accounts):
    """Register a user and return its id."""

    def _make(nickname, password="secret"):
        user, _ = accounts.login(nickname, password)
        return user["id"]

    return _make


@pytest.fixture
def app_config(db_url):
    from redpacket.config import get_config

    cfg = get_config()
    cfg["DATABASE_URL"] = db_url
    cfg["RATE_LIMIT_ENABLED"] = False
    return cfg


@pytest.fixture
def app(app_config):
    """Create and configure a test Flask application instance."""
    from redpacket.factory import create_app

    flask_app = create_app(app_config)
    flask_app.config.update({"TESTING": True})

    yield flask_app

    database.close_all()
    database._local_locks.clear()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application."""
    return app.test_cli_runner()


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line("markers", "unit: fast tests of a single module")
    config.addinivalue_line("markers", "integration: tests that drive the HTTP API")
    config.addinivalue_line("markers", "slow: tests that take a long time to run")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add 'unit' marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add 'integration' marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
