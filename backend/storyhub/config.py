# backend/storyhub/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storyhub.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storyhub.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Stories written per round-trip when repairing has_paid_chapters in bulk
    REPAIR_BATCH_SIZE = _env_int("REPAIR_BATCH_SIZE", 10)

    # Upper bound on explicit chapter id lists accepted by bulk admin edits
    BULK_MAX_CHAPTER_IDS = _env_int("BULK_MAX_CHAPTER_IDS", 5000)

    # Chapters written per UPDATE statement during bulk edits
    BULK_WRITE_CHUNK_SIZE = _env_int("BULK_WRITE_CHUNK_SIZE", 500)

    # Attempts for operations retried on lock/optimistic-version conflicts
    RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 3)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
