import json

import pytest

from conftest import FakeMediaHost, png_bytes
from lms.errors import BadRequestError
from lms.media import (
    AVATAR_FOLDER,
    THUMBNAIL_FOLDER,
    LocalMediaHost,
    MediaCleanupQueue,
    S3MediaHost,
    public_id_from_url,
    validate_image_upload,
)


class FakeS3Client:
    def __init__(self, keys=()):
        self.keys = list(keys)
        self.puts = []
        self.deleted = []

    def put_object(self, **kwargs):
        self.puts.append(kwargs)

    def list_objects_v2(self, Bucket, Prefix):
        matches = [{"Key": k} for k in self.keys if k.startswith(Prefix)]
        return {"Contents": matches} if matches else {}

    def delete_objects(self, Bucket, Delete):
        self.deleted.extend(o["Key"] for o in Delete["Objects"])


class FlakyHost:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0
        self.deleted = []

    def delete(self, public_id):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("timeout")
        self.deleted.append(public_id)


def test_public_id_drops_extension_and_keeps_folder():
    url = "https://cdn.example.com/v1/lms/thumbnails/thumbnail-intro-1700000000000.png"
    assert public_id_from_url(url, THUMBNAIL_FOLDER) == "lms/thumbnails/thumbnail-intro-1700000000000"
    assert public_id_from_url("/media/lms/avatars/avatar-me-1.webp", AVATAR_FOLDER) == "lms/avatars/avatar-me-1"


def test_validate_image_upload_accepts_png():
    assert validate_image_upload(png_bytes(), "cover.PNG", "image/png", 1024 * 1024) == ".png"


@pytest.mark.parametrize(
    "payload,filename,content_type",
    [
        (png_bytes(), "cover.gif", "image/gif"),
        (png_bytes(), "cover.png", "application/pdf"),
        (b"not an image at all", "cover.png", "image/png"),
        (png_bytes(), "../cover.png", "image/png"),
    ],
)
def test_validate_image_upload_rejects(payload, filename, content_type):
    with pytest.raises(BadRequestError):
        validate_image_upload(payload, filename, content_type, 1024 * 1024)


def test_validate_image_upload_enforces_size():
    with pytest.raises(BadRequestError, match="File size cannot exceed"):
        validate_image_upload(png_bytes((300, 300)), "big.png", "image/png", 100)


def test_s3_host_uploads_under_folder_and_deletes_by_public_id():
    client = FakeS3Client()
    host = S3MediaHost("lms-bucket", region="eu-west-1", client=client)
    url = host.upload(b"data", "intro.png", THUMBNAIL_FOLDER, "image/png")
    key = client.puts[0]["Key"]
    assert key.startswith("lms/thumbnails/thumbnail-intro-") and key.endswith(".png")
    assert url == f"https://lms-bucket.s3.eu-west-1.amazonaws.com/{key}"

    client.keys.append(key)
    host.delete(public_id_from_url(url, THUMBNAIL_FOLDER))
    assert client.deleted == [key]


def test_s3_host_delete_of_missing_object_is_noop():
    client = FakeS3Client()
    S3MediaHost("lms-bucket", client=client).delete("lms/avatars/gone")
    assert client.deleted == []


def test_local_host_roundtrip(tmp_path):
    host = LocalMediaHost(tmp_path)
    url = host.upload(png_bytes(), "me.png", AVATAR_FOLDER, "image/png")
    assert url.startswith("/media/lms/avatars/avatar-me-")
    stored = list((tmp_path / "lms" / "avatars").iterdir())
    assert len(stored) == 1

    host.delete(public_id_from_url(url, AVATAR_FOLDER))
    assert list((tmp_path / "lms" / "avatars").iterdir()) == []


def test_cleanup_queue_deletes(tmp_path):
    host = FakeMediaHost()
    q = MediaCleanupQueue(host, tmp_path / "dead.jsonl", max_attempts=3, backoff_seconds=0)
    q.submit("lms/thumbnails/a", reason="thumbnail_replaced")
    q.join()
    assert host.deleted == ["lms/thumbnails/a"]
    assert not (tmp_path / "dead.jsonl").exists()


def test_cleanup_queue_retries_transient_failures(tmp_path):
    host = FlakyHost(failures=2)
    q = MediaCleanupQueue(host, tmp_path / "dead.jsonl", max_attempts=3, backoff_seconds=0)
    q.submit("lms/avatars/b")
    q.join()
    assert host.calls == 3
    assert host.deleted == ["lms/avatars/b"]


def test_cleanup_queue_dead_letters_after_max_attempts(tmp_path):
    host = FakeMediaHost(fail_deletes=True)
    dead_letter = tmp_path / "dlq" / "dead.jsonl"
    q = MediaCleanupQueue(host, dead_letter, max_attempts=3, backoff_seconds=0)
    q.submit("lms/thumbnails/c", reason="course_deleted")
    q.join()
    assert host.delete_calls == 3
    records = [json.loads(line) for line in dead_letter.read_text().splitlines()]
    assert len(records) == 1
    assert records[0]["public_id"] == "lms/thumbnails/c"
    assert records[0]["reason"] == "course_deleted"
    assert records[0]["attempts"] == 3
    assert "media host unavailable" in records[0]["error"]


def test_local_host_delete_treats_glob_characters_literally(tmp_path):
    host = LocalMediaHost(tmp_path)
    host.upload(png_bytes(), "keep.png", THUMBNAIL_FOLDER, "image/png")
    folder = tmp_path / "lms" / "thumbnails"

    for url in ("https://cdn.example/any/*.png", "https://cdn.example/any/[a-z]*.png"):
        host.delete(public_id_from_url(url, THUMBNAIL_FOLDER))

    assert len(list(folder.iterdir())) == 1
