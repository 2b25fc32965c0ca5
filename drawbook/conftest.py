# drawbook/conftest.py
import sys
import pytest
from pathlib import Path

# Add package root and its parent to PYTHONPATH
BACKEND_ROOT = Path(__file__).resolve().parent
for path in (BACKEND_ROOT, BACKEND_ROOT.parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture(scope="function")
def reset_db():
    """
    Fresh in-memory SQLite database per test.

    The engine uses StaticPool, so every session in the test sees the same
    connection and therefore the same tables.
    """
    from drawbook.core.database import init_engine, create_all_tables, drop_all_tables, dispose_engine

    init_engine("sqlite://")
    create_all_tables()
    yield
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def test_settings(monkeypatch):
    """Deterministic secrets and limits for tests."""
    from drawbook.core.config import settings

    monkeypatch.setattr(settings, "ENV", "test")
    monkeypatch.setattr(settings, "FREE_CREATION_LIMIT", 3)
    monkeypatch.setattr(settings, "ALLOW_USER_ID_HEADER", True)
    monkeypatch.setattr(settings, "STORAGE_SIGNING_KEY", "test-storage-key")
    monkeypatch.setattr(settings, "STORAGE_BASE_URL", "https://storage.test/sign")
    monkeypatch.setattr(settings, "SERVICE_API_KEY", "test-service-key")
    monkeypatch.setattr(settings, "LULU_API_KEY", "lulu-key")
    monkeypatch.setattr(settings, "LULU_API_SECRET", "lulu-secret")
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setattr(settings, "EBOOK_ENABLED", True)
    monkeypatch.setattr(settings, "SOFTCOVER_ENABLED", True)
    monkeypatch.setattr(settings, "HARDCOVER_ENABLED", True)
    return settings


@pytest.fixture
def db(reset_db, test_settings):
    """Database plus settings, the usual combination for service tests."""
    yield
