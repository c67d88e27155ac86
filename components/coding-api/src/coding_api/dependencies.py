"""FastAPI dependencies for shared resources."""

from __future__ import annotations

from functools import lru_cache

from .blob_store import BlobStore
from .config import BlobStoreConfig, ExtractorConfig
from .extractor import CodeExtractor, OpenAICodeExtractor
from .storage import Storage, get_engine


def get_storage() -> Storage:
    """Provide a storage instance for request handlers."""
    return Storage(get_engine())


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    """Provide the process-wide blob store."""
    return BlobStore(BlobStoreConfig.from_env())


@lru_cache(maxsize=1)
def get_code_extractor() -> CodeExtractor:
    """Provide the process-wide model-backed code extractor."""
    return OpenAICodeExtractor(ExtractorConfig.from_env())
