#  SPDX-License-Identifier: AGPL-3.0-or-later

import os
import tempfile

# must be in place before the app modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["UPLOAD_TEMP_DIR"] = tempfile.mkdtemp(prefix="videotube-uploads-")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base, get_db
from main import app
from media import MediaStorage, get_media_storage, remove_local_file
from models import User

class FakeStorage(MediaStorage):
    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_uploads = False
        self.fail_deletes = False

    def upload(self, local_path):
        if not local_path:
            return None

        try:
            if self.fail_uploads:
                return None

            public_id = f"file{len(self.uploaded) + 1}"
            self.uploaded.append(public_id)
            return {
                "url": f"http://res.cloudinary.com/demo/image/upload/v1700000000/{public_id}.png",
                "public_id": public_id,
            }
        finally:
            remove_local_file(local_path)

    def delete(self, public_id):
        self.deleted.append(public_id)
        return not self.fail_deletes

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def storage():
    return FakeStorage()

@pytest.fixture
def client(session_factory, storage):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_media_storage] = lambda: storage

    # https so the secure session cookies are stored and sent back
    yield TestClient(app, base_url="https://testserver")

    app.dependency_overrides.clear()

@pytest.fixture
def fetch_user(session_factory):
    def _fetch(username):
        with session_factory() as db:
            return db.scalars(select(User).where(User.username == username)).first()

    return _fetch

def register_user(client, with_cover=False, **overrides):
    data = {
        "fullName": "Alice Liddell",
        "email": "alice@example.com",
        "username": "alice",
        "password": "wonderland",
    }
    data.update(overrides)

    files = {"avatar": ("avatar.png", b"\x89PNG avatar", "image/png")}
    if with_cover:
        files["coverImage"] = ("cover.png", b"\x89PNG cover", "image/png")

    return client.post("/api/v1/users/register", data=data, files=files)

def login_user(client, username="alice", password="wonderland"):
    return client.post("/api/v1/users/login", json={"username": username, "password": password})

@pytest.fixture
def logged_in(client):
    register_user(client)
    response = login_user(client)
    assert response.status_code == 200
    return response.json()["data"]
