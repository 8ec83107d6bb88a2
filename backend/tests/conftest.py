"""
Pytest configuration and shared test helpers for backend tests.
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from server import app

COLLECTIONS = ("companies", "profiles", "properties", "social_accounts", "team_invitations", "audit_logs")


def make_db():
    """MagicMock database whose collections expose the motor coroutines the app awaits."""
    db = MagicMock()
    for name in COLLECTIONS:
        coll = MagicMock()
        coll.find_one = AsyncMock(return_value=None)
        coll.count_documents = AsyncMock(return_value=0)
        coll.insert_one = AsyncMock()
        coll.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
        coll.delete_one = AsyncMock()
        coll.find_one_and_update = AsyncMock(return_value=None)
        coll.find.return_value.sort.return_value.limit.return_value.to_list = AsyncMock(return_value=[])
        setattr(db, name, coll)
    # db["properties"] style access used by the live counter
    db.__getitem__.side_effect = lambda name: getattr(db, name)
    return db


def company_doc(**overrides):
    doc = {
        "id": "co-1",
        "name": "Harbour Lettings",
        "subscription_plan": None,
        "subscription_status": "none",
        "plan_override": None,
        "is_lifetime_access": False,
        "feature_flags": {},
        "property_count": 0,
        "team_member_count": 0,
        "social_account_count": 0,
    }
    doc.update(overrides)
    return doc


def auth_headers(user_id: str = "user-1") -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def mock_db():
    """Patch the shared database singleton for the duration of a test."""
    db = make_db()
    with patch("database.database.get_db", return_value=db):
        yield db


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Lifespan (MongoDB connect) is not run."""
    return TestClient(app)
