"""Medical coding API: extraction, reviewer corrections and accuracy analytics."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Literal

import anyio
from anyio import to_thread
from coding_evaluation.normalizer import normalize_coding_result
from coding_evaluation.reconciliation import average_accuracy
from dotenv import find_dotenv, load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from coding_api.blob_store import BlobStore, SourceFile
from coding_api.config import ApiConfig
from coding_api.corrections import (
    ExtractionNotFoundError,
    MissingInputError,
    submit_correction,
)
from coding_api.dependencies import get_blob_store, get_code_extractor, get_storage
from coding_api.extractor import CodeExtractionError, CodeExtractor, ExtractedCodes
from coding_api.identifiers import extract_date_of_service, scrape_identifiers
from coding_api.storage import Extraction, Storage, generate_document_key, init_db

# Load .env from repo root (find_dotenv walks up to find it)
load_dotenv(find_dotenv())

log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_str, logging.INFO)
if not isinstance(log_level, int):
    log_level = logging.INFO

# Override uvicorn's default configuration so our level is used
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    force=True,
)
logging.getLogger("coding_api").setLevel(log_level)
logging.getLogger("uvicorn").setLevel(log_level)
logging.getLogger("uvicorn.access").setLevel(log_level)
logging.getLogger("uvicorn.error").setLevel(log_level)

logger = logging.getLogger(__name__)


def get_config() -> ApiConfig:
    """Get the current API configuration."""
    return ApiConfig.from_env()


@asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncIterator[None]:
    """Initialize app state for the lifespan scope."""
    init_db()
    blob_store = get_blob_store()
    if blob_store.enabled:
        logger.info(
            "Blob storage enabled: %s (bucket %s)",
            blob_store.config.endpoint_url,
            blob_store.config.bucket,
        )
    else:
        logger.info("Blob storage disabled - missing endpoint or credentials")
    yield
    logger.info("Shutdown complete")


app = FastAPI(title="Medical Coding API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_config().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SourceFilePayload(BaseModel):
    """Raw document uploaded alongside the report text."""

    raw: str
    type: Literal["pdf", "image", "text"] = "image"
    filename: str | None = None


class ExtractionRequest(BaseModel):
    """Request payload for code extraction."""

    hp_text: str | None = None
    op_text: str | None = None
    chart_number: str | None = None
    hp_files: List[SourceFilePayload] = Field(default_factory=list)
    op_files: List[SourceFilePayload] = Field(default_factory=list)
    hp_type: str | None = None
    op_type: str | None = None
    upload_documents: bool = True


class DocumentLinks(BaseModel):
    """Stored document keys and their URLs."""

    hp_doc_key: str | None = None
    op_doc_key: str | None = None
    hp_doc_keys: List[str] = []
    op_doc_keys: List[str] = []
    hp_summary_key: str | None = None
    op_summary_key: str | None = None
    hp_doc_url: str | None = None
    op_doc_url: str | None = None
    hp_doc_urls: List[str] = []
    op_doc_urls: List[str] = []
    hp_summary_url: str | None = None
    op_summary_url: str | None = None
    storage_endpoint: str | None = None
    storage_bucket: str


class ExtractedCodesResponse(BaseModel):
    """AI coding proposal returned after extraction."""

    document_key: str
    chart_number: str
    mr_number: str
    acct_number: str
    dos: str
    admit_dx: str
    pdx: str
    sdx: List[str]
    cpt: List[str]
    modifier: str
    tokens_used: int
    hp_file_type: str
    op_file_type: str
    hp_file_count: int
    op_file_count: int
    documents: DocumentLinks


class ReportSummaries(BaseModel):
    """AI summaries of the H&P and operative reports."""

    hp: dict[str, Any] | None = None
    op: dict[str, Any] | None = None


class ExtractionResponse(BaseModel):
    """Response payload for code extraction."""

    extracted: ExtractedCodesResponse
    ai_summary: ReportSummaries


class CorrectionRequest(BaseModel):
    """Payload for submitting reviewer corrections."""

    document_key: str | None = None
    chart_number: str | None = None
    original: dict[str, Any] | None = None
    corrected: dict[str, Any] | None = None
    edit_reasons: dict[str, Any] | None = None
    remarks: str | None = None


class AccuracyResponse(BaseModel):
    """Accuracy report for a correction."""

    percentage: float
    correct_fields: int
    total_fields: int
    details: dict[str, Any]
    field_scores: dict[str, Any]


class CorrectionResponse(BaseModel):
    """Response after recording a correction."""

    document_key: str
    chart_number: str | None
    status: str
    accuracy: AccuracyResponse


class ExtractionDetailResponse(BaseModel):
    """Stored extraction with AI proposal, correction and accuracy."""

    document_key: str
    chart_number: str | None
    mr_number: str | None
    acct_number: str | None
    dos: str | None
    hp_text: str | None
    op_text: str | None
    hp_file_type: str | None
    op_file_type: str | None
    hp_file_count: int
    op_file_count: int
    ai_admit_dx: str
    ai_pdx: str
    ai_sdx: List[str]
    ai_cpt: List[str]
    ai_modifier: str
    ai_summary_hp: dict[str, Any] | None
    ai_summary_op: dict[str, Any] | None
    user_admit_dx: str | None
    user_pdx: str | None
    user_sdx: List[str]
    user_cpt: List[str]
    user_modifier: str | None
    accuracy_percentage: float | None
    accuracy_details: dict[str, Any]
    edit_reasons: dict[str, Any]
    remarks: str | None
    status: str
    tokens_used: int
    created_at: datetime
    updated_at: datetime
    documents: DocumentLinks


class AnalyticsStatistics(BaseModel):
    """Aggregate accuracy statistics."""

    total_records: int
    average_accuracy: float
    completed_today: int


class AnalyticsResponse(BaseModel):
    """Response for the analytics view."""

    statistics: AnalyticsStatistics
    records: List[ExtractionDetailResponse]


class DocumentUrlResponse(BaseModel):
    """Presigned URL for a stored document."""

    url: str


def _file_type(explicit: str | None, file_count: int) -> str:
    if explicit:
        return explicit
    if file_count > 1:
        return "multi-image"
    if file_count == 1:
        return "image"
    return "text"


def _to_sources(files: List[SourceFilePayload]) -> list[SourceFile]:
    return [
        SourceFile(raw=item.raw, type=item.type, filename=item.filename)
        for item in files
    ]


async def _summarize_if_present(
    summarize: Callable[[str], Awaitable[dict[str, Any] | None]], text: str | None
) -> dict[str, Any] | None:
    if not text:
        return None
    return await summarize(text)


async def _run_model_calls(
    extractor: CodeExtractor, hp_text: str | None, op_text: str | None
) -> tuple[ExtractedCodes, dict[str, Any] | None, dict[str, Any] | None]:
    """Run code extraction and both report summaries concurrently.

    A failed code extraction cancels the summaries still in flight.

    Raises:
        CodeExtractionError: If the model returns no usable coding payload.
    """
    summaries: dict[str, dict[str, Any] | None] = {}
    extracted: list[ExtractedCodes] = []
    failures: list[CodeExtractionError] = []

    async with anyio.create_task_group() as task_group:

        async def _extract() -> None:
            try:
                extracted.append(
                    await extractor.extract_codes(hp_text or "", op_text or "")
                )
            except CodeExtractionError as exc:
                failures.append(exc)
                task_group.cancel_scope.cancel()

        async def _summarize(
            name: str,
            summarize: Callable[[str], Awaitable[dict[str, Any] | None]],
            text: str | None,
        ) -> None:
            summaries[name] = await _summarize_if_present(summarize, text)

        task_group.start_soon(_extract)
        task_group.start_soon(_summarize, "hp", extractor.summarize_history, hp_text)
        task_group.start_soon(_summarize, "op", extractor.summarize_operative, op_text)

    if failures:
        raise failures[0]
    return extracted[0], summaries.get("hp"), summaries.get("op")


def _links_for(extraction: Extraction, blob_store: BlobStore) -> DocumentLinks:
    return DocumentLinks(
        **blob_store.document_links(
            extraction.hp_doc_keys,
            extraction.op_doc_keys,
            extraction.hp_summary_key,
            extraction.op_summary_key,
        )
    )


def _extraction_to_response(
    extraction: Extraction, blob_store: BlobStore
) -> ExtractionDetailResponse:
    return ExtractionDetailResponse(
        document_key=extraction.document_key,
        chart_number=extraction.chart_number,
        mr_number=extraction.mr_number,
        acct_number=extraction.acct_number,
        dos=extraction.dos,
        hp_text=extraction.hp_text,
        op_text=extraction.op_text,
        hp_file_type=extraction.hp_file_type,
        op_file_type=extraction.op_file_type,
        hp_file_count=extraction.hp_file_count,
        op_file_count=extraction.op_file_count,
        ai_admit_dx=extraction.ai_admit_dx,
        ai_pdx=extraction.ai_pdx,
        ai_sdx=list(extraction.ai_sdx or []),
        ai_cpt=list(extraction.ai_cpt or []),
        ai_modifier=extraction.ai_modifier,
        ai_summary_hp=extraction.ai_summary_hp,
        ai_summary_op=extraction.ai_summary_op,
        user_admit_dx=extraction.user_admit_dx,
        user_pdx=extraction.user_pdx,
        user_sdx=list(extraction.user_sdx or []),
        user_cpt=list(extraction.user_cpt or []),
        user_modifier=extraction.user_modifier,
        accuracy_percentage=extraction.accuracy_percentage,
        accuracy_details=extraction.accuracy_details or {},
        edit_reasons=extraction.edit_reasons or {},
        remarks=extraction.remarks,
        status=extraction.status,
        tokens_used=extraction.tokens_used,
        created_at=extraction.created_at,
        updated_at=extraction.updated_at,
        documents=_links_for(extraction, blob_store),
    )


@app.get("/health")
def health(blob_store: BlobStore = Depends(get_blob_store)) -> dict[str, Any]:
    """Report service and blob storage status."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "storage_enabled": blob_store.enabled,
        "storage_endpoint": (
            "configured" if blob_store.config.endpoint_url else "not configured"
        ),
        "storage_bucket": blob_store.config.bucket,
    }


@app.post("/v1/extractions")
async def extract_codes(
    payload: ExtractionRequest,
    storage: Storage = Depends(get_storage),
    blob_store: BlobStore = Depends(get_blob_store),
    extractor: CodeExtractor = Depends(get_code_extractor),
) -> ExtractionResponse:
    """Extract ICD-10/CPT codes and summaries from H&P and operative reports."""
    if not payload.hp_text and not payload.op_text:
        raise HTTPException(
            status_code=400,
            detail="At least one of hp_text or op_text is required",
        )

    document_key = generate_document_key()
    logger.info("Starting extraction document_key=%s", document_key)

    hp_doc_keys: list[str] = []
    op_doc_keys: list[str] = []
    if payload.upload_documents:
        if payload.hp_files:
            hp_doc_keys = await to_thread.run_sync(
                blob_store.upload_source_files,
                document_key,
                "hp",
                _to_sources(payload.hp_files),
            )
        if payload.op_files:
            op_doc_keys = await to_thread.run_sync(
                blob_store.upload_source_files,
                document_key,
                "op",
                _to_sources(payload.op_files),
            )

    identifiers = scrape_identifiers(
        payload.hp_text, payload.op_text, payload.chart_number
    )

    try:
        extracted, hp_summary, op_summary = await _run_model_calls(
            extractor, payload.hp_text, payload.op_text
        )
    except CodeExtractionError:
        logger.exception("Code extraction failed document_key=%s", document_key)
        raise HTTPException(status_code=500, detail="Code extraction failed")

    ai_codes = normalize_coding_result(extracted.payload)
    dos = extract_date_of_service(payload.op_text)

    hp_summary_key = await to_thread.run_sync(
        blob_store.upload_summary, document_key, "hp", hp_summary
    )
    op_summary_key = await to_thread.run_sync(
        blob_store.upload_summary, document_key, "op", op_summary
    )

    hp_file_count = len(payload.hp_files)
    op_file_count = len(payload.op_files)
    hp_file_type = _file_type(payload.hp_type, hp_file_count)
    op_file_type = _file_type(payload.op_type, op_file_count)

    extraction = storage.create_extraction(
        document_key=document_key,
        ai_codes=ai_codes,
        chart_number=identifiers.chart_number,
        mr_number=identifiers.mr_number,
        acct_number=identifiers.acct_number,
        dos=dos,
        hp_text=payload.hp_text,
        op_text=payload.op_text,
        hp_file_type=hp_file_type,
        op_file_type=op_file_type,
        hp_file_count=hp_file_count,
        op_file_count=op_file_count,
        hp_doc_keys=hp_doc_keys,
        op_doc_keys=op_doc_keys,
        hp_summary_key=hp_summary_key,
        op_summary_key=op_summary_key,
        ai_summary_hp=hp_summary,
        ai_summary_op=op_summary,
        tokens_used=extracted.tokens_used,
    )
    logger.info(
        "Extraction stored document_key=%s hp_files=%d op_files=%d",
        document_key,
        len(hp_doc_keys),
        len(op_doc_keys),
    )

    return ExtractionResponse(
        extracted=ExtractedCodesResponse(
            document_key=document_key,
            chart_number=identifiers.chart_number,
            mr_number=identifiers.mr_number,
            acct_number=identifiers.acct_number,
            dos=dos,
            admit_dx=ai_codes.admit_diagnosis,
            pdx=ai_codes.principal_diagnosis,
            sdx=list(ai_codes.secondary_diagnoses),
            cpt=list(ai_codes.procedure_codes),
            modifier=ai_codes.modifier,
            tokens_used=extracted.tokens_used,
            hp_file_type=hp_file_type,
            op_file_type=op_file_type,
            hp_file_count=hp_file_count,
            op_file_count=op_file_count,
            documents=_links_for(extraction, blob_store),
        ),
        ai_summary=ReportSummaries(hp=hp_summary, op=op_summary),
    )


@app.post("/v1/corrections")
def submit_corrections(
    payload: CorrectionRequest,
    storage: Storage = Depends(get_storage),
) -> CorrectionResponse:
    """Record reviewer corrections and score them against the AI proposal."""
    try:
        outcome = submit_correction(
            storage,
            document_key=payload.document_key,
            corrected=payload.corrected,
            original=payload.original,
            edit_reasons=payload.edit_reasons,
            remarks=payload.remarks,
        )
    except MissingInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ExtractionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Extraction not found") from exc

    return CorrectionResponse(
        document_key=outcome.extraction.document_key,
        chart_number=payload.chart_number or outcome.extraction.chart_number,
        status=outcome.extraction.status,
        accuracy=AccuracyResponse(**outcome.report.to_dict()),
    )


@app.get("/v1/extractions/{document_key}")
def get_extraction(
    document_key: str,
    storage: Storage = Depends(get_storage),
    blob_store: BlobStore = Depends(get_blob_store),
) -> ExtractionDetailResponse:
    """Get a single extraction with document links."""
    extraction = storage.get_extraction(document_key)
    if extraction is None:
        raise HTTPException(status_code=404, detail="Extraction not found")
    return _extraction_to_response(extraction, blob_store)


@app.get("/v1/analytics")
def get_analytics(
    storage: Storage = Depends(get_storage),
    blob_store: BlobStore = Depends(get_blob_store),
    config: ApiConfig = Depends(get_config),
) -> AnalyticsResponse:
    """Summarize accuracy over the most recently completed extractions."""
    completed = storage.list_completed(limit=config.analytics_limit)
    today = datetime.now(timezone.utc).date()
    return AnalyticsResponse(
        statistics=AnalyticsStatistics(
            total_records=len(completed),
            average_accuracy=average_accuracy(
                record.accuracy_percentage for record in completed
            ),
            completed_today=sum(
                1 for record in completed if record.updated_at.date() == today
            ),
        ),
        records=[_extraction_to_response(record, blob_store) for record in completed],
    )


@app.get("/v1/documents/{document_key}/{filename}/url")
def get_document_url(
    document_key: str,
    filename: str,
    blob_store: BlobStore = Depends(get_blob_store),
) -> DocumentUrlResponse:
    """Get a presigned URL for a stored document or summary."""
    url = blob_store.presigned_url(blob_store.full_key(f"{document_key}/{filename}"))
    if not url:
        raise HTTPException(status_code=404, detail="File not found")
    return DocumentUrlResponse(url=url)
