"""Simple configuration management.

This module defines a ``Settings`` class that reads configuration
values from environment variables and provides sensible defaults.
``.env`` support is implemented by loading files from the repository
root in a defined order.  You can override any value via environment
variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  Files are
# loaded in order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    PROJECT_NAME: str = "Receipt Capture"
    ENVIRONMENT: str = Field(default="development")

    # Recognition service
    RECOGNITION_API_URL: str = Field(default="http://localhost:8080")
    RECOGNITION_TIMEOUT_SECONDS: float = Field(default=60.0)
    # Multipart field the recognition service reads the image from
    RECOGNITION_UPLOAD_FIELD: str = Field(default="image")

    # Database
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./receipts.db")

    # Storage
    STORAGE_BACKEND: str = Field(default="minio")
    STORAGE_DIRECTORY: str = Field(default="./storage")
    MINIO_ENDPOINT: str = Field(default="localhost:9000")
    MINIO_ACCESS_KEY: str = Field(default="minioadmin")
    MINIO_SECRET_KEY: str = Field(default="minioadmin")
    MINIO_BUCKET_NAME: str = Field(default="receipts")
    MINIO_USE_SSL: bool = Field(default=False)

    # Camera
    # OpenCV has no notion of facing mode, so each facing is pinned to a device index.
    CAMERA_ENVIRONMENT_INDEX: int = Field(default=0)
    CAMERA_USER_INDEX: int = Field(default=1)
    CAMERA_MAX_DEVICES: int = Field(default=4)
    CAMERA_WIDTH: int = Field(default=1280)
    CAMERA_HEIGHT: int = Field(default=720)
    CAMERA_JPEG_QUALITY: int = Field(default=90)

    # Receipts
    DEFAULT_CATEGORY: str = Field(default="Other")
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB

    # Auth
    JWT_SECRET: Optional[str] = Field(default=None)
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_AUDIENCE: Optional[str] = Field(default=None)

    # Side-channel telemetry
    TELEMETRY_URL: Optional[str] = Field(default=None)
    TELEMETRY_TIMEOUT_SECONDS: float = Field(default=2.0)

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)

    @property
    def analyze_url(self) -> str:
        return self.RECOGNITION_API_URL.rstrip("/") + "/analyze-receipt"


# Instantiate global settings
settings = Settings()


def is_development() -> bool:
    return (settings.ENVIRONMENT or os.getenv("ENVIRONMENT") or "development").lower() == "development"
