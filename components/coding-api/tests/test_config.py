from __future__ import annotations

import pytest

from coding_api.config import ApiConfig, BlobStoreConfig, ExtractorConfig


class TestBlobStoreConfig:
    def test_defaults_without_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("S3_ENDPOINT_URL", "S3_ACCESS_KEY", "S3_SECRET_KEY"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv("S3_BUCKET_NAME", raising=False)

        config = BlobStoreConfig.from_env()

        assert config.enabled is False
        assert config.bucket == "medextract"
        assert config.folder == "medical-coder"

    def test_reads_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("S3_ENDPOINT_URL", "https://s3.example.com/")
        monkeypatch.setenv("S3_ACCESS_KEY", "key")
        monkeypatch.setenv("S3_SECRET_KEY", "secret")
        monkeypatch.setenv("S3_BUCKET_NAME", "charts")

        config = BlobStoreConfig.from_env()

        assert config.enabled is True
        assert config.endpoint_url == "https://s3.example.com"
        assert config.bucket == "charts"


class TestExtractorConfig:
    def test_invalid_numbers_fall_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_TIMEOUT", "soon")
        monkeypatch.setenv("OPENAI_MAX_RETRIES", "0")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")

        config = ExtractorConfig.from_env()

        assert config.timeout == 60
        assert config.max_retries == 3
        assert config.model == "gpt-4o-mini"


class TestApiConfig:
    def test_cors_origins_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("ANALYTICS_LIMIT", "25")

        config = ApiConfig.from_env()

        assert config.cors_origins == ("https://a.example", "https://b.example")
        assert config.analytics_limit == 25
