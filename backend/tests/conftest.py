import io
import os
import uuid
from pathlib import PurePosixPath

import pytest
from PIL import Image

# `lms.main` builds a module-level app on import; keep it off the dev database.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient  # noqa: E402

from lms.config import Settings  # noqa: E402
from lms.main import create_app  # noqa: E402
from lms.media import build_public_name  # noqa: E402


class FakeMediaHost:
    """In-memory media host that records uploads and deletions."""

    def __init__(self, fail_deletes=False):
        self.uploads = []
        self.deleted = []
        self.delete_calls = 0
        self.fail_deletes = fail_deletes

    def upload(self, payload, filename, folder, content_type):
        ext = PurePosixPath(filename.lower()).suffix
        url = f"https://media.test/{folder}/{build_public_name('img', filename)}{ext}"
        self.uploads.append(url)
        return url

    def delete(self, public_id):
        self.delete_calls += 1
        if self.fail_deletes:
            raise RuntimeError("media host unavailable")
        self.deleted.append(public_id)


class RecordingCleanup:
    def __init__(self):
        self.submitted = []

    def submit(self, public_id, reason=""):
        self.submitted.append((public_id, reason))

    @property
    def public_ids(self):
        return [public_id for public_id, _ in self.submitted]


def png_bytes(size=(4, 4)):
    buf = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


def actor(user_id):
    return {"X-User-Id": user_id}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ENV="dev",
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        MEDIA_DEAD_LETTER_PATH=tmp_path / "dead_letter.jsonl",
        MEDIA_CLEANUP_BACKOFF_SECONDS=0,
        MEDIA_CLEANUP_MAX_ATTEMPTS=2,
        ALLOW_DEV_CORS=False,
    )


@pytest.fixture
def media_host():
    return FakeMediaHost()


@pytest.fixture
def cleanup():
    return RecordingCleanup()


@pytest.fixture
def app(settings, media_host, cleanup):
    application = create_app(settings, media_host=media_host, media_cleanup=cleanup)
    yield application
    application.state.db.dispose()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(client):
    def _make(role="STUDENT", email=None, **extra):
        body = {"email": email or f"{uuid.uuid4().hex[:10]}@example.com", "password": "secret123", "role": role}
        body.update(extra)
        r = client.post("/api/v1/users", json=body)
        assert r.status_code == 201, r.text
        return r.json()["data"]
    return _make


@pytest.fixture
def make_category(client):
    def _make(name=None, **extra):
        body = {"name": name or f"cat-{uuid.uuid4().hex[:8]}"}
        body.update(extra)
        r = client.post("/api/v1/categories", json=body)
        assert r.status_code == 201, r.text
        return r.json()["data"]
    return _make


@pytest.fixture
def make_course(client):
    def _make(instructor_id, title="Intro to Python", **extra):
        body = {"title": title}
        body.update(extra)
        r = client.post("/api/v1/courses", json=body, headers=actor(instructor_id))
        assert r.status_code == 201, r.text
        return r.json()["data"]
    return _make
