"""Shared test fixtures for the XTube backend."""

from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

from config import Settings
from database import JsonStore
from main import create_app

VIDEO_BYTES = bytes(i % 251 for i in range(1000))


@pytest.fixture(autouse=True)
def _fast_password_hashing(monkeypatch):
    """Keep bcrypt cheap so signup/login tests stay quick."""
    monkeypatch.setattr("auth.pwd_context", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        videos_dir=tmp_path / "videos",
        profile_pics_dir=tmp_path / "profile-pics",
        sync_interval_seconds=0,
        stream_chunk_size=64,
        max_upload_mb=1,
    )


@pytest.fixture()
def videos_dir(settings):
    settings.videos_dir.mkdir(parents=True)
    return settings.videos_dir


@pytest.fixture()
def add_video(videos_dir):
    """Create a video file, optionally with an explicit mtime (its upload time)."""

    def _add(name: str, content: bytes = VIDEO_BYTES, mtime: float | None = None):
        path = videos_dir / name
        path.write_bytes(content)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _add


@pytest.fixture()
def store(tmp_path):
    return JsonStore(tmp_path / "data" / "db.json")


@pytest.fixture()
def client(settings, videos_dir):
    with TestClient(create_app(settings)) as c:
        yield c
