from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio
import pytest
from fastapi.testclient import TestClient

from coding_api.blob_store import BlobStore
from coding_api.config import BlobStoreConfig
from coding_api.dependencies import get_blob_store, get_code_extractor
from coding_api.extractor import CodeExtractionError, ExtractedCodes
from coding_api.main import app
from coding_api.storage import get_engine, reset_storage

STORAGE_ENDPOINT = "https://storage.example.com"

AI_PAYLOAD: dict[str, Any] = {
    "admit_dx": "D50.9",
    "pdx": "K44.9",
    "sdx": ["I10", "E78.5"],
    "cpt": "45378, 43235",
    "modifier": "PT",
}


@dataclass
class FakeS3Client:
    """Records calls made through the boto3 S3 client surface."""

    objects: dict[str, dict[str, Any]] = field(default_factory=dict)

    def put_object(
        self, *, Bucket: str, Key: str, Body: bytes, ContentType: str
    ) -> dict[str, Any]:
        self.objects[Key] = {
            "bucket": Bucket,
            "body": Body,
            "content_type": ContentType,
        }
        return {"ETag": '"fake"'}

    def generate_presigned_url(
        self, operation: str, Params: dict[str, str], ExpiresIn: int
    ) -> str:
        assert operation == "get_object"
        return f"{STORAGE_ENDPOINT}/signed/{Params['Key']}?expires={ExpiresIn}"


@dataclass
class FakeCodeExtractor:
    payload: dict[str, Any] = field(default_factory=lambda: dict(AI_PAYLOAD))
    tokens_used: int = 321
    fail: bool = False
    summary_delay: float = 0.0
    calls: list[tuple[str, str]] = field(default_factory=list)
    cancelled_summaries: list[str] = field(default_factory=list)

    async def extract_codes(self, hp_text: str, op_text: str) -> ExtractedCodes:
        self.calls.append((hp_text, op_text))
        if self.fail:
            raise CodeExtractionError("model unavailable")
        return ExtractedCodes(payload=dict(self.payload), tokens_used=self.tokens_used)

    async def _wait(self, name: str) -> None:
        if not self.summary_delay:
            return
        try:
            await anyio.sleep(self.summary_delay)
        except anyio.get_cancelled_exc_class():
            self.cancelled_summaries.append(name)
            raise

    async def summarize_history(self, text: str) -> dict[str, Any] | None:
        await self._wait("hp")
        return {"chief_complaint": "iron deficiency anemia"}

    async def summarize_operative(self, text: str) -> dict[str, Any] | None:
        await self._wait("op")
        return {"procedure_performed": ["colonoscopy", "EGD"]}


@pytest.fixture(autouse=True)
def allow_storage_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALLOW_STORAGE_RESET", "1")


@pytest.fixture(autouse=True)
def isolated_database(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("CODING_API_DB_URL", f"sqlite:///{tmp_path / 'coding.db'}")
    get_engine.cache_clear()


@pytest.fixture()
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture()
def blob_store(s3_client: FakeS3Client) -> BlobStore:
    config = BlobStoreConfig(
        endpoint_url=STORAGE_ENDPOINT,
        access_key="test-access",
        secret_key="test-secret",
    )
    return BlobStore(config, client=s3_client)


@pytest.fixture()
def extractor() -> FakeCodeExtractor:
    return FakeCodeExtractor()


@pytest.fixture()
def client(blob_store: BlobStore, extractor: FakeCodeExtractor) -> Iterator[TestClient]:
    reset_storage()
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_code_extractor] = lambda: extractor
    yield TestClient(app)
    app.dependency_overrides.clear()
