"""Configuration for the coding API.

Settings are read from environment variables (a repo-root ``.env`` is loaded
by the app module) and fall back to defaults on missing or invalid values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_ANALYTICS_LIMIT = 100
DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:3000")


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_str_env(name: str) -> str:
    return (os.getenv(name) or "").strip()


@dataclass(frozen=True)
class BlobStoreConfig:
    """Configuration for S3-compatible document storage.

    Attributes:
        endpoint_url: Object store endpoint without trailing slash.
        access_key: Access key ID.
        secret_key: Secret access key.
        bucket: Bucket holding documents and summaries.
        region: Signing region.
        folder: Key prefix for every object written by this service.
    """

    endpoint_url: str = ""
    access_key: str = ""
    secret_key: str = ""
    bucket: str = "medextract"
    region: str = "us-east-1"
    folder: str = "medical-coder"

    @property
    def enabled(self) -> bool:
        """Uploads need an endpoint and a full credential pair."""
        return bool(self.endpoint_url and self.access_key and self.secret_key)

    @classmethod
    def from_env(cls) -> "BlobStoreConfig":
        """Create BlobStoreConfig from environment variables."""
        return cls(
            endpoint_url=_read_str_env("S3_ENDPOINT_URL").rstrip("/"),
            access_key=_read_str_env("S3_ACCESS_KEY"),
            secret_key=_read_str_env("S3_SECRET_KEY"),
            bucket=_read_str_env("S3_BUCKET_NAME") or cls.bucket,
            region=_read_str_env("S3_REGION") or cls.region,
        )


@dataclass(frozen=True)
class ExtractorConfig:
    """Configuration for the model-backed code extractor."""

    model: str = "gpt-4o"
    timeout: int = 60
    max_retries: int = 3

    @classmethod
    def from_env(cls) -> "ExtractorConfig":
        """Create ExtractorConfig from environment variables."""
        return cls(
            model=_read_str_env("OPENAI_MODEL") or cls.model,
            timeout=_read_int_env("OPENAI_TIMEOUT", cls.timeout),
            max_retries=_read_int_env("OPENAI_MAX_RETRIES", cls.max_retries),
        )


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the API service."""

    analytics_limit: int = DEFAULT_ANALYTICS_LIMIT
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS

    @staticmethod
    def from_env() -> "ApiConfig":
        """Create ApiConfig from environment variables."""
        raw_origins = _read_str_env("CORS_ALLOW_ORIGINS")
        origins = (
            tuple(o.strip() for o in raw_origins.split(",") if o.strip())
            if raw_origins
            else DEFAULT_CORS_ORIGINS
        )
        return ApiConfig(
            analytics_limit=_read_int_env("ANALYTICS_LIMIT", DEFAULT_ANALYTICS_LIMIT),
            cors_origins=origins,
        )
