"""Server configuration via environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


class Settings(BaseModel):
    """Runtime configuration resolved from environment."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    data_dir: Path
    videos_dir: Path
    profile_pics_dir: Path
    catalog_file: Optional[Path] = None
    session_secret: str = Field(default="xtube-secret")
    secure_cookies: bool = Field(default=False)
    sync_interval_seconds: int = Field(default=60)
    stream_chunk_size: int = Field(default=64 * 1024)
    max_upload_mb: int = Field(default=8)
    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(default_factory=list)

    @field_validator("sync_interval_seconds")
    @classmethod
    def validate_sync_interval(cls, value: int) -> int:
        if value < 0:
            raise ValueError("sync_interval_seconds must be >= 0")
        return value

    @field_validator("stream_chunk_size", "max_upload_mb", "port")
    @classmethod
    def validate_positive_ints(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Configuration values must be >= 1")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in VALID_LOG_LEVELS:
            allowed = ", ".join(sorted(VALID_LOG_LEVELS))
            raise ValueError(f"Invalid log level '{value}'. Allowed: {allowed}")
        return level

    @property
    def db_path(self) -> Path:
        return self.data_dir / "db.json"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables."""
        root = Path(os.getenv("RUNTIME_ROOT") or os.getcwd())
        catalog_file = os.getenv("CATALOG_FILE", "").strip()
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            data_dir=Path(os.getenv("DATA_DIR") or root / "data"),
            videos_dir=Path(os.getenv("VIDEOS_DIR") or root / "videos"),
            profile_pics_dir=Path(os.getenv("PROFILE_PICS_DIR") or root / "profile-pics"),
            catalog_file=Path(catalog_file) if catalog_file else None,
            session_secret=os.getenv("SESSION_SECRET", "xtube-secret"),
            secure_cookies=_env_flag("SECURE_COOKIES"),
            sync_interval_seconds=int(os.getenv("SYNC_INTERVAL_SECONDS", "60")),
            stream_chunk_size=int(os.getenv("STREAM_CHUNK_SIZE", str(64 * 1024))),
            max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "8")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()],
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, reading the environment on first access."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
