"""Storage layer for the coding API."""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from coding_shared.models import AccuracyReport, CodingResult
from sqlalchemy import JSON, Column, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Field, Session, SQLModel, create_engine, select

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Extraction(SQLModel, table=True):
    """Coding extraction record with the reviewer's correction."""

    document_key: str = Field(primary_key=True)
    mr_number: str | None = Field(default=None, index=True)
    acct_number: str | None = Field(default=None, index=True)
    chart_number: str | None = None
    dos: str | None = None
    hp_text: str | None = None
    op_text: str | None = None
    hp_file_type: str | None = None
    op_file_type: str | None = None
    hp_file_count: int = Field(default=0)
    op_file_count: int = Field(default=0)
    hp_doc_keys: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    op_doc_keys: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    hp_summary_key: str | None = None
    op_summary_key: str | None = None
    ai_admit_dx: str = Field(default="")
    ai_pdx: str = Field(default="")
    ai_sdx: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    ai_cpt: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    ai_modifier: str = Field(default="")
    ai_summary_hp: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    ai_summary_op: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    tokens_used: int = Field(default=0)
    user_admit_dx: str | None = None
    user_pdx: str | None = None
    user_sdx: list[str] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    user_cpt: list[str] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    user_modifier: str | None = None
    accuracy_percentage: float | None = None
    accuracy_details: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    edit_reasons: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    remarks: str | None = None
    # pending, completed
    status: str = Field(default=STATUS_PENDING, index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, index=True)

    def ai_codes(self) -> dict[str, object]:
        """Return the stored AI proposal using the wire keys."""
        return {
            "admit_dx": self.ai_admit_dx,
            "pdx": self.ai_pdx,
            "sdx": list(self.ai_sdx or []),
            "cpt": list(self.ai_cpt or []),
            "modifier": self.ai_modifier,
        }


DEFAULT_DB_PATH = Path(__file__).resolve().parents[2] / ".data" / "coding_api.db"


def _database_url() -> str:
    return (
        os.getenv("DATABASE_URL")
        or os.getenv("CODING_API_DB_URL")
        or f"sqlite:///{DEFAULT_DB_PATH}"
    )


@lru_cache
def get_engine() -> Engine:
    """Create or return the cached database engine."""
    url = _database_url()
    if "DATABASE_URL" not in os.environ and "CODING_API_DB_URL" not in os.environ:
        DEFAULT_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def init_db() -> None:
    """Initialize the database tables."""
    _ = Extraction

    engine = get_engine()
    try:
        SQLModel.metadata.create_all(engine)
    except OperationalError:
        # Tables may already exist (e.g. parallel tests)
        pass
    _ensure_sqlite_extraction_columns(engine)


def _ensure_sqlite_extraction_columns(engine: Engine) -> None:
    """Add columns introduced after the first release to older SQLite files.

    SQLModel's `create_all()` does not add columns to existing tables.
    """
    if engine.dialect.name != "sqlite":
        return

    column_statements = [
        ("hp_file_type", "ALTER TABLE extraction ADD COLUMN hp_file_type TEXT NULL"),
        ("op_file_type", "ALTER TABLE extraction ADD COLUMN op_file_type TEXT NULL"),
        (
            "hp_file_count",
            "ALTER TABLE extraction ADD COLUMN hp_file_count "
            "INTEGER NOT NULL DEFAULT 0",
        ),
        (
            "op_file_count",
            "ALTER TABLE extraction ADD COLUMN op_file_count "
            "INTEGER NOT NULL DEFAULT 0",
        ),
        (
            "hp_doc_keys",
            "ALTER TABLE extraction ADD COLUMN hp_doc_keys TEXT NOT NULL DEFAULT '[]'",
        ),
        (
            "op_doc_keys",
            "ALTER TABLE extraction ADD COLUMN op_doc_keys TEXT NOT NULL DEFAULT '[]'",
        ),
        (
            "hp_summary_key",
            "ALTER TABLE extraction ADD COLUMN hp_summary_key TEXT NULL",
        ),
        (
            "op_summary_key",
            "ALTER TABLE extraction ADD COLUMN op_summary_key TEXT NULL",
        ),
        ("ai_summary_hp", "ALTER TABLE extraction ADD COLUMN ai_summary_hp TEXT NULL"),
        ("ai_summary_op", "ALTER TABLE extraction ADD COLUMN ai_summary_op TEXT NULL"),
        ("edit_reasons", "ALTER TABLE extraction ADD COLUMN edit_reasons TEXT NULL"),
    ]

    with engine.connect() as conn:
        try:
            rows = conn.execute(text("PRAGMA table_info(extraction)")).fetchall()
        except OperationalError:
            return

        # PRAGMA table_info: (cid, name, type, notnull, dflt_value, pk)
        existing = {row[1] for row in rows}
        migrations = [
            statement
            for column, statement in column_statements
            if column not in existing
        ]
        for statement in migrations:
            try:
                conn.execute(text(statement))
            except OperationalError:
                # If a concurrent process added the column first, ignore.
                continue
        conn.commit()


def reset_storage() -> None:
    """Clear all stored data (used for tests and demos)."""
    if os.getenv("ALLOW_STORAGE_RESET") != "1":
        raise RuntimeError(
            "reset_storage() requires ALLOW_STORAGE_RESET=1 environment variable. "
            "This function destroys all data and should only be used in tests."
        )
    _ = Extraction
    get_engine.cache_clear()
    engine = get_engine()
    try:
        SQLModel.metadata.drop_all(engine)
    except OperationalError:
        pass
    init_db()


def generate_document_key() -> str:
    """Generate a unique document key.

    Examples:
        >>> generate_document_key()  # doctest: +SKIP
        'doc-550e8400e29b41d4a716446655440000'
    """
    return f"doc-{uuid.uuid4().hex}"


def _norm_opt(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned if cleaned else None


class Storage:
    """Repository wrapper around SQLModel sessions."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the storage with a database engine."""
        self._engine = engine

    def create_extraction(
        self,
        *,
        document_key: str,
        ai_codes: CodingResult,
        chart_number: str | None = None,
        mr_number: str | None = None,
        acct_number: str | None = None,
        dos: str | None = None,
        hp_text: str | None = None,
        op_text: str | None = None,
        hp_file_type: str | None = None,
        op_file_type: str | None = None,
        hp_file_count: int = 0,
        op_file_count: int = 0,
        hp_doc_keys: list[str] | None = None,
        op_doc_keys: list[str] | None = None,
        hp_summary_key: str | None = None,
        op_summary_key: str | None = None,
        ai_summary_hp: dict[str, Any] | None = None,
        ai_summary_op: dict[str, Any] | None = None,
        tokens_used: int = 0,
    ) -> Extraction:
        """Persist a pending extraction and return it."""
        with Session(self._engine) as session:
            extraction = Extraction(
                document_key=document_key,
                chart_number=_norm_opt(chart_number),
                mr_number=_norm_opt(mr_number),
                acct_number=_norm_opt(acct_number),
                dos=_norm_opt(dos),
                hp_text=hp_text,
                op_text=op_text,
                hp_file_type=hp_file_type,
                op_file_type=op_file_type,
                hp_file_count=hp_file_count,
                op_file_count=op_file_count,
                hp_doc_keys=list(hp_doc_keys or []),
                op_doc_keys=list(op_doc_keys or []),
                hp_summary_key=hp_summary_key,
                op_summary_key=op_summary_key,
                ai_admit_dx=ai_codes.admit_diagnosis,
                ai_pdx=ai_codes.principal_diagnosis,
                ai_sdx=list(ai_codes.secondary_diagnoses),
                ai_cpt=list(ai_codes.procedure_codes),
                ai_modifier=ai_codes.modifier,
                ai_summary_hp=ai_summary_hp,
                ai_summary_op=ai_summary_op,
                tokens_used=tokens_used,
                status=STATUS_PENDING,
            )
            session.add(extraction)
            session.commit()
            session.refresh(extraction)
            return extraction

    def get_extraction(self, document_key: str) -> Extraction | None:
        """Fetch an extraction by document key."""
        with Session(self._engine) as session:
            return session.get(Extraction, document_key)

    def save_correction(
        self,
        *,
        document_key: str,
        corrected: CodingResult,
        report: AccuracyReport,
        edit_reasons: dict[str, Any] | None = None,
        remarks: str | None = None,
    ) -> Extraction | None:
        """Store the reviewer's codes and accuracy report, marking it completed.

        A resubmission overwrites the previously stored correction and report.
        """
        with Session(self._engine) as session:
            extraction = session.get(Extraction, document_key)
            if extraction is None:
                return None
            extraction.user_admit_dx = corrected.admit_diagnosis
            extraction.user_pdx = corrected.principal_diagnosis
            extraction.user_sdx = list(corrected.secondary_diagnoses)
            extraction.user_cpt = list(corrected.procedure_codes)
            extraction.user_modifier = corrected.modifier
            extraction.accuracy_percentage = report.percentage
            extraction.accuracy_details = report.to_dict()
            extraction.edit_reasons = dict(edit_reasons or {})
            extraction.remarks = remarks
            extraction.status = STATUS_COMPLETED
            extraction.updated_at = _utcnow()
            session.add(extraction)
            session.commit()
            session.refresh(extraction)
            return extraction

    def list_completed(self, limit: int = 100) -> list[Extraction]:
        """List completed extractions, most recently updated first."""
        with Session(self._engine) as session:
            statement = (
                select(Extraction)
                .where(cast(Any, Extraction.status) == STATUS_COMPLETED)
                .order_by(cast(Any, Extraction.updated_at).desc())
                .limit(limit)
            )
            return list(session.exec(statement))
