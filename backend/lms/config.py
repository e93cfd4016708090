"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    LOG_LEVEL: str
    ALLOW_DEV_CORS: bool
    MAX_PAGE_LIMIT: int
    MEDIA_BUCKET: str
    MEDIA_REGION: str
    MEDIA_BASE_URL: str
    THUMBNAIL_MAX_BYTES: int
    AVATAR_MAX_BYTES: int
    MEDIA_CLEANUP_MAX_ATTEMPTS: int
    MEDIA_CLEANUP_BACKOFF_SECONDS: float
    MEDIA_DEAD_LETTER_PATH: Path

    def __init__(self, **overrides):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'lms.db'}")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.MAX_PAGE_LIMIT = int(os.getenv("MAX_PAGE_LIMIT", "100"))
        self.MEDIA_BUCKET = os.getenv("MEDIA_BUCKET", "")
        self.MEDIA_REGION = os.getenv("MEDIA_REGION", "us-east-1")
        self.MEDIA_BASE_URL = os.getenv("MEDIA_BASE_URL", "")
        self.THUMBNAIL_MAX_BYTES = int(os.getenv("THUMBNAIL_MAX_BYTES", str(5 * 1024 * 1024)))  # 5 MB default
        self.AVATAR_MAX_BYTES = int(os.getenv("AVATAR_MAX_BYTES", str(2 * 1024 * 1024)))  # 2 MB default
        self.MEDIA_CLEANUP_MAX_ATTEMPTS = int(os.getenv("MEDIA_CLEANUP_MAX_ATTEMPTS", "5"))
        self.MEDIA_CLEANUP_BACKOFF_SECONDS = float(os.getenv("MEDIA_CLEANUP_BACKOFF_SECONDS", "0.5"))
        self.MEDIA_DEAD_LETTER_PATH = Path(
            os.getenv("MEDIA_DEAD_LETTER_PATH", str(BASE / "data" / "media_dead_letter.jsonl"))
        ).expanduser()
        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"unknown setting: {key}")
            setattr(self, key, value)
        self._validate()

    def _validate(self):
        if self.MAX_PAGE_LIMIT < 1:
            raise RuntimeError("MAX_PAGE_LIMIT must be >= 1")
        if self.MEDIA_CLEANUP_MAX_ATTEMPTS < 1:
            raise RuntimeError("MEDIA_CLEANUP_MAX_ATTEMPTS must be >= 1")
        if self.ENV != "dev" and not self.MEDIA_BUCKET:
            raise RuntimeError("MEDIA_BUCKET must be set in non-dev environments")
