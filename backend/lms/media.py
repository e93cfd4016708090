"""Media host integration for course thumbnails and user avatars.

Images are uploaded to an object store and referenced by URL on the
owning record. The public id of an image is derived from its URL as
`{folder}/{filename-without-extension}`. Removing replaced or orphaned
images never happens inside a request: services hand the public id to a
`MediaCleanupQueue`, which retries with exponential backoff on its own
worker thread and writes exhausted jobs to a dead-letter JSONL file.
"""

from __future__ import annotations

import glob
import io
import json
import logging
import queue
import threading
import time
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol
from urllib.parse import urlparse

import boto3
from PIL import Image
from tenacity import Retrying, stop_after_attempt, wait_exponential

from .errors import BadRequestError

logger = logging.getLogger("lms.media")

THUMBNAIL_FOLDER = "lms/thumbnails"
AVATAR_FOLDER = "lms/avatars"
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}


class MediaHost(Protocol):
    def upload(self, payload: bytes, filename: str, folder: str, content_type: str) -> str:
        """Store `payload` and return its public URL."""
        ...

    def delete(self, public_id: str) -> None:
        ...


def public_id_from_url(url: str, folder: str) -> str:
    """Return `{folder}/{filename-without-extension}` for a stored media URL."""
    filename = PurePosixPath(urlparse(url).path).name
    return f"{folder}/{filename.split('.')[0]}"


def build_public_name(prefix: str, filename: str) -> str:
    """Name an upload `{prefix}-{original-stem}-{epoch-ms}`."""
    stem = PurePosixPath(filename).name.split(".")[0] or "image"
    return f"{prefix}-{stem}-{int(time.time() * 1000)}"


def validate_image_upload(payload: bytes, filename: str, content_type: Optional[str], max_bytes: int) -> str:
    """Check size, extension, MIME type and image content of an upload.

    Returns the lower-cased file extension. Raises `BadRequestError` on any
    violation.
    """
    if not filename or "/" in filename or "\\" in filename or len(filename) > 200:
        raise BadRequestError("Invalid filename")
    if len(payload) > max_bytes:
        raise BadRequestError(f"File size cannot exceed {max_bytes // (1024 * 1024)}MB")
    ext = PurePosixPath(filename.lower()).suffix
    if ext not in ALLOWED_EXTENSIONS or (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        raise BadRequestError("Invalid file type. Only JPG, JPEG, PNG, and WEBP files are allowed.")
    try:
        Image.open(io.BytesIO(payload)).verify()
    except Exception:
        raise BadRequestError("Uploaded file is not a valid image")
    return ext


class S3MediaHost:
    """Media host backed by an S3 bucket.

    Objects are stored under `{folder}/{public_name}{ext}` and served from
    `base_url` (the bucket's virtual-host URL unless a CDN URL is given).
    """

    def __init__(self, bucket: str, region: str = "us-east-1", base_url: str = "", client=None):
        self._bucket = bucket
        self._region = region
        self._base_url = (base_url or f"https://{bucket}.s3.{region}.amazonaws.com").rstrip("/")
        self._s3_client = client or boto3.client("s3", region_name=region)

    def upload(self, payload: bytes, filename: str, folder: str, content_type: str) -> str:
        ext = PurePosixPath(filename.lower()).suffix
        prefix = "thumbnail" if folder == THUMBNAIL_FOLDER else "avatar"
        key = f"{folder}/{build_public_name(prefix, filename)}{ext}"
        self._s3_client.put_object(Bucket=self._bucket, Key=key, Body=payload, ContentType=content_type)
        logger.info("media_uploaded %s", json.dumps({"bucket": self._bucket, "key": key}))
        return f"{self._base_url}/{key}"

    def delete(self, public_id: str) -> None:
        # the public id drops the extension, so match every object sharing the stem
        listing = self._s3_client.list_objects_v2(Bucket=self._bucket, Prefix=f"{public_id}.")
        keys = [{"Key": obj["Key"]} for obj in listing.get("Contents", [])]
        if keys:
            self._s3_client.delete_objects(Bucket=self._bucket, Delete={"Objects": keys})


class LocalMediaHost:
    """Development media host writing files under `root`.

    The application mounts `root` at `url_prefix` so returned URLs resolve.
    """

    def __init__(self, root: Path, url_prefix: str = "/media"):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def upload(self, payload: bytes, filename: str, folder: str, content_type: str) -> str:
        ext = PurePosixPath(filename.lower()).suffix
        prefix = "thumbnail" if folder == THUMBNAIL_FOLDER else "avatar"
        relative = f"{folder}/{build_public_name(prefix, filename)}{ext}"
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
        return f"{self.url_prefix}/{relative}"

    def delete(self, public_id: str) -> None:
        public = self.root / public_id
        for path in public.parent.glob(f"{glob.escape(public.name)}.*"):
            path.unlink()


class MediaCleanupQueue:
    """Background deletion of media that no record references any more."""

    def __init__(
        self,
        host: MediaHost,
        dead_letter_path: Path,
        max_attempts: int = 5,
        backoff_seconds: float = 0.5,
        max_backoff_seconds: float = 30.0,
    ):
        self._host = host
        self._dead_letter_path = Path(dead_letter_path)
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._max_backoff_seconds = max_backoff_seconds
        self._jobs: queue.Queue = queue.Queue()
        self._write_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def submit(self, public_id: str, reason: str = "") -> None:
        """Schedule deletion of `public_id`; returns immediately."""
        self._ensure_worker()
        self._jobs.put({"public_id": public_id, "reason": reason, "submitted_at": _now_iso()})

    def join(self) -> None:
        """Block until every submitted job has been processed."""
        self._jobs.join()

    def _ensure_worker(self) -> None:
        with self._start_lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name="lms-media-cleanup", daemon=True)
                self._worker.start()

    def _run(self) -> None:
        while True:
            job = self._jobs.get()
            try:
                self._process(job)
            finally:
                self._jobs.task_done()

    def _process(self, job: dict) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=self._max_backoff_seconds),
            reraise=True,
        )
        try:
            retrying(self._host.delete, job["public_id"])
        except Exception as exc:
            self._dead_letter(job, exc)
        else:
            logger.info("media_deleted %s", json.dumps({"public_id": job["public_id"], "reason": job["reason"]}))

    def _dead_letter(self, job: dict, exc: Exception) -> None:
        record = dict(job)
        record.update({"error": str(exc), "attempts": self._max_attempts, "failed_at": _now_iso()})
        with self._write_lock:
            self._dead_letter_path.parent.mkdir(parents=True, exist_ok=True)
            with self._dead_letter_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(record, ensure_ascii=True) + "\n")
        logger.error("media_cleanup_dead_letter %s", json.dumps(record, ensure_ascii=True))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
