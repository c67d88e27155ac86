"""S3-compatible storage for source documents and AI summaries."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from coding_api.config import BlobStoreConfig

logger = logging.getLogger(__name__)

PRESIGNED_URL_TTL_SECONDS = 3600

_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
}
_CONTENT_TYPES = {"pdf": "application/pdf", "image": "image/jpeg", "text": "text/plain"}
_EXTENSIONS = {"pdf": ".pdf", "image": ".jpg", "text": ".txt"}


@dataclass(frozen=True)
class SourceFile:
    """Raw document payload sent by the client.

    Args:
        raw: Base64 content for images/PDFs, plain text for text files.
        type: One of ``pdf``, ``image`` or ``text``.
        filename: Original filename, used to pick MIME type and extension.
    """

    raw: str
    type: str
    filename: str | None = None


def mime_type_for(filename: str) -> str:
    """Return the MIME type for a filename, by extension.

    Examples:
        >>> mime_type_for("scan.PNG")
        'image/png'
        >>> mime_type_for("notes.docx")
        'application/octet-stream'
    """
    ext = filename.lower().rsplit(".", 1)[-1]
    return _MIME_TYPES.get(ext, "application/octet-stream")


def extension_for(filename: str) -> str:
    """Return the lower-cased extension (with dot) of a filename."""
    return "." + filename.rsplit(".", 1)[-1].lower()


def _decode_payload(source: SourceFile) -> bytes | None:
    if source.type == "text":
        return source.raw.encode("utf-8")
    try:
        return base64.b64decode(source.raw)
    except (binascii.Error, ValueError):
        logger.warning("Skipping %s file with invalid base64 content", source.type)
        return None


def _create_client(config: BlobStoreConfig) -> Any:
    return boto3.client(
        "s3",
        endpoint_url=config.endpoint_url,
        aws_access_key_id=config.access_key,
        aws_secret_access_key=config.secret_key,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        region_name=config.region,
    )


class BlobStore:
    """Upload helper and URL resolver for the document bucket.

    Uploads are skipped (returning None) when storage is not configured, and
    failures are logged rather than raised: a missing document never blocks
    coding or correction.
    """

    def __init__(self, config: BlobStoreConfig, client: Any | None = None) -> None:
        self.config = config
        if client is None and config.enabled:
            client = _create_client(config)
        self._client = client

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self._client is not None

    def full_key(self, key: str) -> str:
        return f"{self.config.folder}/{key}"

    def upload(self, data: bytes, key: str, content_type: str) -> str | None:
        """Upload bytes under the service folder.

        Returns:
            The full object key, or None when disabled or the upload failed.
        """
        if not self.enabled:
            logger.info("Blob upload skipped - storage not enabled")
            return None

        full_key = self.full_key(key)
        try:
            self._client.put_object(
                Bucket=self.config.bucket,
                Key=full_key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError):
            logger.exception("Blob upload failed for %s", full_key)
            return None
        logger.info("Uploaded to blob storage: %s", full_key)
        return full_key

    def upload_source_file(
        self,
        document_key: str,
        report_type: str,
        source: SourceFile,
        index: int | None = None,
    ) -> str | None:
        """Upload one raw document as ``<key>/<type>_document[_n]<ext>``."""
        if not source.raw:
            return None

        if source.type == "image" and source.filename:
            content_type = mime_type_for(source.filename)
            extension = extension_for(source.filename)
        else:
            content_type = _CONTENT_TYPES.get(source.type, "application/octet-stream")
            extension = _EXTENSIONS.get(source.type, ".bin")

        suffix = f"_{index + 1}" if index is not None else ""
        key = f"{document_key}/{report_type}_document{suffix}{extension}"
        data = _decode_payload(source)
        if data is None:
            return None
        return self.upload(data, key, content_type)

    def upload_source_files(
        self, document_key: str, report_type: str, sources: Sequence[SourceFile]
    ) -> list[str]:
        """Upload several raw documents; indices are added only for 2+ files."""
        if not sources:
            return []
        numbered = len(sources) > 1
        keys = [
            self.upload_source_file(
                document_key, report_type, source, index if numbered else None
            )
            for index, source in enumerate(sources)
        ]
        return [key for key in keys if key is not None]

    def upload_summary(
        self, document_key: str, report_type: str, summary: dict[str, Any] | None
    ) -> str | None:
        """Upload an AI summary as indented JSON."""
        if not summary:
            return None
        key = f"{document_key}/{report_type}_summary.json"
        data = json.dumps(summary, indent=2).encode("utf-8")
        return self.upload(data, key, "application/json")

    def public_url(self, key: str | None) -> str | None:
        """Return the path-style public URL of an object."""
        if not key:
            return None
        if not self.config.endpoint_url:
            logger.warning("Blob URL generation: no endpoint configured for key %s", key)
            return None
        return f"{self.config.endpoint_url}/{self.config.bucket}/{key}"

    def presigned_url(
        self, key: str | None, expires_in: int = PRESIGNED_URL_TTL_SECONDS
    ) -> str | None:
        """Return a time-limited GET URL, falling back to the public URL."""
        if not key or not self.enabled:
            return None
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.config.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError):
            logger.exception("Presigned URL generation failed for %s", key)
            return self.public_url(key)

    def document_links(
        self,
        hp_doc_keys: Iterable[str] | None,
        op_doc_keys: Iterable[str] | None,
        hp_summary_key: str | None,
        op_summary_key: str | None,
    ) -> dict[str, Any]:
        """Build the key/URL block attached to extraction responses."""
        hp_keys = [key for key in (hp_doc_keys or []) if key]
        op_keys = [key for key in (op_doc_keys or []) if key]
        hp_urls = [self.public_url(key) for key in hp_keys]
        op_urls = [self.public_url(key) for key in op_keys]
        return {
            "hp_doc_key": hp_keys[0] if hp_keys else None,
            "op_doc_key": op_keys[0] if op_keys else None,
            "hp_doc_keys": hp_keys,
            "op_doc_keys": op_keys,
            "hp_summary_key": hp_summary_key,
            "op_summary_key": op_summary_key,
            "hp_doc_url": hp_urls[0] if hp_urls else None,
            "op_doc_url": op_urls[0] if op_urls else None,
            "hp_doc_urls": [url for url in hp_urls if url],
            "op_doc_urls": [url for url in op_urls if url],
            "hp_summary_url": self.public_url(hp_summary_key),
            "op_summary_url": self.public_url(op_summary_key),
            "storage_endpoint": self.config.endpoint_url or None,
            "storage_bucket": self.config.bucket,
        }
