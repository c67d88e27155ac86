"""Submission of reviewer corrections and accuracy scoring."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from coding_evaluation.normalizer import normalize_coding_result
from coding_evaluation.reconciliation import reconcile
from coding_shared.models import AccuracyReport, CodingResult

from coding_api.storage import Extraction, Storage

logger = logging.getLogger(__name__)


class MissingInputError(ValueError):
    """Raised when a correction is submitted without a document key or codes."""


class ExtractionNotFoundError(LookupError):
    """Raised when no extraction exists for a document key."""


@dataclass(frozen=True)
class CorrectionOutcome:
    """Result of a correction submission."""

    extraction: Extraction
    corrected: CodingResult
    report: AccuracyReport


def submit_correction(
    storage: Storage,
    *,
    document_key: str | None,
    corrected: object | None,
    original: object | None = None,
    edit_reasons: dict[str, Any] | None = None,
    remarks: str | None = None,
) -> CorrectionOutcome:
    """Score a reviewer correction against the AI proposal and persist it.

    Args:
        storage: Persistence collaborator.
        document_key: Key of the extraction being corrected.
        corrected: Reviewer codes in any shape the normalizer accepts.
        original: AI codes to compare against. Defaults to the AI proposal
            stored with the extraction.
        edit_reasons: Mapping of field name to the reason code for the edit.
        remarks: Free-text reviewer remarks.

    Returns:
        The updated record, the normalized correction and its accuracy report.

    Raises:
        MissingInputError: If the document key or corrected codes are missing.
        ExtractionNotFoundError: If the document key is unknown.
    """
    key = (document_key or "").strip()
    if not key or corrected is None:
        raise MissingInputError("document_key and corrected data are required")

    extraction = storage.get_extraction(key)
    if extraction is None:
        raise ExtractionNotFoundError(key)

    ai_codes = normalize_coding_result(
        original if original is not None else extraction.ai_codes()
    )
    user_codes = normalize_coding_result(corrected)
    report = reconcile(ai_codes, user_codes)

    updated = storage.save_correction(
        document_key=key,
        corrected=user_codes,
        report=report,
        edit_reasons=edit_reasons,
        remarks=remarks,
    )
    if updated is None:
        raise ExtractionNotFoundError(key)

    logger.info(
        "Correction recorded document_key=%s accuracy=%.2f (%d/%d fields)",
        key,
        report.percentage,
        report.correct_fields,
        report.total_fields,
    )
    return CorrectionOutcome(extraction=updated, corrected=user_codes, report=report)
