"""Tests for the media upload router."""

import pytest
from fastapi.testclient import TestClient

from spg_chat.core.app_state import state
from spg_chat.db import get_db
from spg_chat.main import create_app
from spg_chat.storage.object_storage import ObjectStorageError


@pytest.fixture
def client(db, storage):
    app = create_app(testing=True)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    previous = state._storage
    state.storage = storage
    with TestClient(app) as c:
        yield c
    state.storage = previous
    app.dependency_overrides.clear()


def test_upload_media(client, storage):
    """PUT /media/{key} stores the body and returns the public URL."""
    r = client.put(
        "/media/SPG-AB12C/1700000000000-abcd1234.jpg",
        content=b"\xff\xd8\xff",
        headers={"Content-Type": "image/jpeg"},
    )
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["key"] == "SPG-AB12C/1700000000000-abcd1234.jpg"
    assert data["url"] == "https://cdn.test/chat-media/SPG-AB12C/1700000000000-abcd1234.jpg"

    stored = storage.get("SPG-AB12C/1700000000000-abcd1234.jpg")
    assert stored.data == b"\xff\xd8\xff"
    assert stored.content_type == "image/jpeg"


def test_upload_media_storage_failure(client, storage, monkeypatch):
    def boom(*args, **kwargs):
        raise ObjectStorageError("bucket unavailable")

    monkeypatch.setattr(storage, "upload", boom)
    r = client.put("/media/SPG-AB12C/1.jpg", content=b"x")
    assert r.status_code == 502
