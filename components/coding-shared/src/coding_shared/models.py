"""Shared coding data models for the evaluation engine and API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

SCALAR_FIELDS: Tuple[str, ...] = ("admit_dx", "pdx", "modifier")
LIST_FIELDS: Tuple[str, ...] = ("sdx", "cpt")
FIELD_ORDER: Tuple[str, ...] = ("admit_dx", "pdx", "sdx", "cpt", "modifier")


@dataclass(frozen=True)
class CodingResult:
    """Canonical ICD-10/CPT code set for a document.

    Args:
        admit_diagnosis: Admitting ICD-10 diagnosis, empty when absent.
        principal_diagnosis: Principal ICD-10 diagnosis, empty when absent.
        secondary_diagnoses: Secondary ICD-10 diagnoses in producer order.
        procedure_codes: CPT procedure codes in producer order.
        modifier: CPT modifier, empty when absent.

    Examples:
        >>> CodingResult(
        ...     admit_diagnosis="D50.9",
        ...     principal_diagnosis="K44.9",
        ...     secondary_diagnoses=("I10",),
        ...     procedure_codes=("45378",),
        ...     modifier="PT",
        ... ).to_dict()["cpt"]
        ['45378']

    Notes:
        Instances come out of the normalizer; absence is always an empty
        string or an empty tuple, never None.
    """

    admit_diagnosis: str = ""
    principal_diagnosis: str = ""
    secondary_diagnoses: Tuple[str, ...] = ()
    procedure_codes: Tuple[str, ...] = ()
    modifier: str = ""

    def is_empty(self) -> bool:
        """Return True when every field is absent."""
        return not any(
            [
                self.admit_diagnosis,
                self.principal_diagnosis,
                self.secondary_diagnoses,
                self.procedure_codes,
                self.modifier,
            ]
        )

    def to_dict(self) -> Dict[str, object]:
        """Serialize using the wire keys (admit_dx, pdx, sdx, cpt, modifier)."""
        return {
            "admit_dx": self.admit_diagnosis,
            "pdx": self.principal_diagnosis,
            "sdx": list(self.secondary_diagnoses),
            "cpt": list(self.procedure_codes),
            "modifier": self.modifier,
        }


@dataclass(frozen=True)
class FieldComparison:
    """Comparison of a scalar code field.

    Args:
        ai: Value proposed by the model.
        user: Value submitted by the reviewer.
        match: True when both are present and identical.
    """

    ai: str
    user: str
    match: bool

    def to_dict(self) -> Dict[str, object]:
        return {"ai": self.ai, "user": self.user, "match": self.match}


@dataclass(frozen=True)
class SetComparison:
    """Comparison of a list-valued code field treated as a set.

    Args:
        ai: Codes proposed by the model, as normalized.
        user: Codes submitted by the reviewer, as normalized.
        matches: Codes present on both sides, in model order.
        additions: Codes the reviewer added, in reviewer order.
        removals: Codes the reviewer rejected, in model order.
    """

    ai: Tuple[str, ...]
    user: Tuple[str, ...]
    matches: Tuple[str, ...]
    additions: Tuple[str, ...]
    removals: Tuple[str, ...]

    def to_dict(self) -> Dict[str, object]:
        return {
            "ai": list(self.ai),
            "user": list(self.user),
            "matches": list(self.matches),
            "additions": list(self.additions),
            "removals": list(self.removals),
        }


@dataclass(frozen=True)
class FieldScore:
    """Numerator/denominator contribution of a single field."""

    correct: int
    total: int

    def to_dict(self) -> Dict[str, int]:
        return {"correct": self.correct, "total": self.total}


@dataclass(frozen=True)
class AccuracyReport:
    """Agreement between an AI coding proposal and the corrected result.

    Args:
        percentage: Agreement in the range [0, 100], rounded to 2 decimals.
        correct_fields: Sum of per-field numerators.
        total_fields: Sum of per-field denominators.
        field_details: Per-field comparison keyed by wire field name.
        field_scores: Per-field numerator/denominator keyed by wire field name.
    """

    percentage: float
    correct_fields: int
    total_fields: int
    field_details: Dict[str, FieldComparison | SetComparison] = field(
        default_factory=dict
    )
    field_scores: Dict[str, FieldScore] = field(default_factory=dict)

    def details_dict(self) -> Dict[str, object]:
        """Serialize field details in a stable field order."""
        return {
            name: self.field_details[name].to_dict()
            for name in FIELD_ORDER
            if name in self.field_details
        }

    def to_dict(self) -> Dict[str, object]:
        """Serialize the report in a stable key order."""
        return {
            "percentage": self.percentage,
            "correct_fields": self.correct_fields,
            "total_fields": self.total_fields,
            "details": self.details_dict(),
            "field_scores": {
                name: self.field_scores[name].to_dict()
                for name in FIELD_ORDER
                if name in self.field_scores
            },
        }


def build_coding_result(
    *,
    admit_diagnosis: str = "D50.9",
    principal_diagnosis: str = "K44.9",
    secondary_diagnoses: Optional[Sequence[str]] = None,
    procedure_codes: Optional[Sequence[str]] = None,
    modifier: str = "PT",
) -> CodingResult:
    """Create a CodingResult instance with defaults for tests and examples."""
    return CodingResult(
        admit_diagnosis=admit_diagnosis,
        principal_diagnosis=principal_diagnosis,
        secondary_diagnoses=tuple(
            ["I10", "E78.5"] if secondary_diagnoses is None else secondary_diagnoses
        ),
        procedure_codes=tuple(
            ["45378", "43235"] if procedure_codes is None else procedure_codes
        ),
        modifier=modifier,
    )


def empty_coding_result() -> CodingResult:
    """Return a CodingResult with every field absent."""
    return CodingResult()
