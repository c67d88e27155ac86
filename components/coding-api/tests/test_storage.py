from __future__ import annotations

import pytest
from sqlalchemy import text

from coding_api.storage import (
    Storage,
    generate_document_key,
    get_engine,
    init_db,
    reset_storage,
)
from coding_evaluation.reconciliation import reconcile
from coding_shared.models import build_coding_result, empty_coding_result


@pytest.fixture()
def storage() -> Storage:
    reset_storage()
    return Storage(get_engine())


def _create(storage: Storage, document_key: str) -> None:
    storage.create_extraction(
        document_key=document_key,
        ai_codes=build_coding_result(),
        chart_number=" V0049 ",
        mr_number="",
        hp_doc_keys=["medical-coder/k/hp_document.jpg"],
    )


class TestExtractionRecords:
    def test_create_extraction_is_pending(self, storage: Storage) -> None:
        _create(storage, "doc-1")

        extraction = storage.get_extraction("doc-1")

        assert extraction is not None
        assert extraction.status == "pending"
        assert extraction.chart_number == "V0049"
        assert extraction.mr_number is None
        assert extraction.ai_sdx == ["I10", "E78.5"]
        assert extraction.hp_doc_keys == ["medical-coder/k/hp_document.jpg"]
        assert extraction.user_sdx is None

    def test_ai_codes_uses_wire_keys(self, storage: Storage) -> None:
        _create(storage, "doc-1")
        extraction = storage.get_extraction("doc-1")

        assert extraction is not None
        assert extraction.ai_codes() == {
            "admit_dx": "D50.9",
            "pdx": "K44.9",
            "sdx": ["I10", "E78.5"],
            "cpt": ["45378", "43235"],
            "modifier": "PT",
        }

    def test_get_unknown_extraction(self, storage: Storage) -> None:
        assert storage.get_extraction("doc-missing") is None

    def test_generate_document_key_is_unique(self) -> None:
        first = generate_document_key()

        assert first.startswith("doc-")
        assert first != generate_document_key()


class TestCorrections:
    def test_save_correction_completes_record(self, storage: Storage) -> None:
        _create(storage, "doc-1")
        corrected = build_coding_result(procedure_codes=["45378"])
        report = reconcile(build_coding_result(), corrected)

        updated = storage.save_correction(
            document_key="doc-1",
            corrected=corrected,
            report=report,
            edit_reasons={"cpt": "not_documented"},
            remarks="EGD not performed",
        )

        assert updated is not None
        assert updated.status == "completed"
        assert updated.user_cpt == ["45378"]
        assert updated.accuracy_percentage == report.percentage
        assert updated.accuracy_details == report.to_dict()
        assert updated.edit_reasons == {"cpt": "not_documented"}
        assert updated.remarks == "EGD not performed"

    def test_save_correction_unknown_key(self, storage: Storage) -> None:
        corrected = empty_coding_result()

        assert (
            storage.save_correction(
                document_key="doc-missing",
                corrected=corrected,
                report=reconcile(corrected, corrected),
            )
            is None
        )

    def test_list_completed_newest_first(self, storage: Storage) -> None:
        for key in ("doc-1", "doc-2", "doc-3"):
            _create(storage, key)
        result = build_coding_result()
        for key in ("doc-2", "doc-1"):
            storage.save_correction(
                document_key=key,
                corrected=result,
                report=reconcile(result, result),
            )

        completed = storage.list_completed()

        assert [item.document_key for item in completed] == ["doc-1", "doc-2"]
        assert len(storage.list_completed(limit=1)) == 1


class TestMigrations:
    def test_init_db_adds_missing_columns(self) -> None:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("DROP TABLE IF EXISTS extraction"))
            conn.execute(
                text(
                    "CREATE TABLE extraction ("
                    "document_key TEXT PRIMARY KEY, ai_admit_dx TEXT, ai_pdx TEXT)"
                )
            )
            conn.commit()

        init_db()

        with engine.connect() as conn:
            rows = conn.execute(text("PRAGMA table_info(extraction)")).fetchall()
        columns = {row[1] for row in rows}
        assert {"hp_doc_keys", "edit_reasons", "ai_summary_op"} <= columns


class TestReset:
    def test_reset_requires_opt_in(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ALLOW_STORAGE_RESET")

        with pytest.raises(RuntimeError):
            reset_storage()
