"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip Firebase initialisation when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from unittest.mock import patch

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from database import database
from fakes import FakeFirestore

RESTAURANT_ID = "rest-1"


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app)."""
    return TestClient(app)


@pytest.fixture
def fake_db():
    """In-memory Firestore behind database.get_db()."""
    db = FakeFirestore()
    with patch.object(database, "get_db", return_value=db):
        yield db


@pytest.fixture
def login():
    """
    Patch ID-token verification. Call with the claims the caller should carry;
    returns the Authorization header to send.
    """
    with patch("middleware.firebase_auth.verify_id_token") as verify:
        def _login(**claims):
            verify.return_value = {"uid": "user-1", "email": "owner@example.com", **claims}
            return {"Authorization": "Bearer test-token"}
        _login.verify = verify
        yield _login


@pytest.fixture
def restaurant_headers(login):
    return login(
        role="owner",
        type="restaurant",
        restaurantId=RESTAURANT_ID,
        tenantId=RESTAURANT_ID,
    )
