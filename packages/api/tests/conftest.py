# This project was developed with assistance from AI tools.
"""Shared fixtures.

The real app from ``admissions_api.main`` is a module singleton.
``_clean_overrides`` clears dependency_overrides after every test so the
caller and record store configured in one test never leak into the next.
TestClient is used without a context manager, so the lifespan (and its
real Salesforce client) never starts.
"""

import pytest
from fastapi.testclient import TestClient

from admissions_api.main import app as real_app
from admissions_api.middleware.auth import get_current_user
from admissions_api.schemas.auth import UserContext
from admissions_api.services.salesforce import get_record_store

from .fake_store import FakeRecordStore

STUDENT = UserContext(user_id="user-siswa", email="siswa@example.com")


@pytest.fixture(autouse=True)
def _clean_overrides():
    """Clear app dependency overrides after each test."""
    yield
    real_app.dependency_overrides.clear()


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def make_client(store):
    """Factory fixture: wire a caller (or no caller) and the fake store into the app."""

    def _make(user: UserContext | None = STUDENT) -> TestClient:
        if user is not None:
            real_app.dependency_overrides[get_current_user] = lambda: user
        real_app.dependency_overrides[get_record_store] = lambda: store
        return TestClient(real_app, raise_server_exceptions=False)

    return _make
