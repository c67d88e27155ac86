"""Shared coding data models."""

from coding_shared.models import (
    AccuracyReport,
    CodingResult,
    FieldComparison,
    FieldScore,
    SetComparison,
)

__all__ = [
    "AccuracyReport",
    "CodingResult",
    "FieldComparison",
    "FieldScore",
    "SetComparison",
]
