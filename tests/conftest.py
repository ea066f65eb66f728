"""
Shared fixtures.

The MongoDB database is replaced by a MagicMock whose collections are
tracked per name, so `db["item"]` always returns the same mock collection.
The identity provider and image CDN are MagicMocks as well.
"""

import os

# Must be cleared before `database` is imported so no real client is created
os.environ.pop("DATABASE_URL", None)

from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth_provider import AuthUser, IdentityProvider
from media import CloudinaryService
from session import SessionManager


class MockCollections:
    """Mock collections with default pymongo-like return values."""

    def __init__(self):
        self.collections = {}

    def get(self, name):
        if name not in self.collections:
            col = MagicMock(name=f"collection[{name}]")
            col.find_one.return_value = None
            col.find.return_value = []
            col.count_documents.return_value = 0
            col.insert_one.side_effect = lambda doc: MagicMock(inserted_id=doc.get("_id", ObjectId()))
            col.update_one.return_value = MagicMock(matched_count=1, modified_count=1)
            col.delete_one.return_value = MagicMock(deleted_count=1)
            self.collections[name] = col
        return self.collections[name]


@pytest.fixture
def db():
    tables = MockCollections()
    mock_db = MagicMock(name="db")
    mock_db.__getitem__.side_effect = tables.get
    mock_db.name = "barterx_test"
    return mock_db


@pytest.fixture
def auth():
    return MagicMock(spec=IdentityProvider)


@pytest.fixture
def media():
    mock = MagicMock(spec=CloudinaryService)
    mock.delete_image.return_value = {"success": True}
    return mock


@pytest.fixture
def auth_user():
    return AuthUser(uid="user-1", email="alice@example.com", id_token="token-1", display_name="Alice")


@pytest.fixture
def client(db, auth, media):
    import main

    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_auth] = lambda: auth
    main.app.dependency_overrides[main.get_media] = lambda: media
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
    main.sessions.clear()


@pytest.fixture
def auth_headers(auth_user, auth):
    """Register a signed-in session for auth_user and return its bearer header."""
    import main

    session = SessionManager(auth, profiles=MagicMock())
    session.user = auth_user
    session.user_data = {"id": auth_user.uid, "full_name": "Alice", "phone_number": "555-0100"}
    token = main.sessions.add(session)
    return {"Authorization": f"Bearer {token}"}
