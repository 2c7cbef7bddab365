"""Shared test fixtures and configuration.

Sets up fake environment variables so habitflow.config doesn't sys.exit(),
and provides common fixtures like temp DBs and a token issuer.
"""

import os

# Patch env vars BEFORE any habitflow imports
os.environ.setdefault("JWT_SECRET", "test-secret-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("VAPID_PUBLIC_KEY", "")
os.environ.setdefault("VAPID_PRIVATE_KEY", "")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_habitflow.db")


@pytest.fixture
def item_db(tmp_db_path):
    """Return an ItemDB instance backed by a temp file."""
    from habitflow.data.db import ItemDB
    return ItemDB(db_path=tmp_db_path)


@pytest.fixture
def subscription_db(tmp_db_path):
    """Return a SubscriptionDB instance sharing the temp file."""
    from habitflow.data.db import SubscriptionDB
    return SubscriptionDB(db_path=tmp_db_path)


@pytest.fixture
def issuer():
    """Return an ActionTokenIssuer with a fixed test secret."""
    from habitflow.core.tokens import ActionTokenIssuer
    return ActionTokenIssuer("test-secret-for-tests")
