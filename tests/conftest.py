"""Pytest configuration and fixtures."""

import pytest

from db_setup import ContactStore
from reconciler import IdentityReconciler


@pytest.fixture
def store(tmp_path):
    """Create an isolated contact store backed by a temporary file."""
    store = ContactStore(str(tmp_path / "contacts.db"))
    store.init_db()
    return store


@pytest.fixture
def reconciler(store):
    return IdentityReconciler(store)


@pytest.fixture
def client(store):
    """Create a test FastAPI client wired to the isolated store."""
    from fastapi.testclient import TestClient
    from main import app, get_store

    app.dependency_overrides[get_store] = lambda: store

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()
