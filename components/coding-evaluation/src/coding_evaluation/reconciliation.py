"""Reconciliation of AI coding proposals against reviewer corrections."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional, Sequence, Tuple

from coding_shared.models import (
    AccuracyReport,
    CodingResult,
    FieldComparison,
    FieldScore,
    SetComparison,
)

_CENT = Decimal("0.01")


def _unique(codes: Iterable[str]) -> Tuple[str, ...]:
    seen: set[str] = set()
    ordered: list[str] = []
    for code in codes:
        if code in seen:
            continue
        seen.add(code)
        ordered.append(code)
    return tuple(ordered)


def round_percentage(correct: int, total: int) -> float:
    """Return ``correct / total * 100`` rounded half-up to 2 decimals.

    Examples:
        >>> round_percentage(1, 3)
        33.33
        >>> round_percentage(2, 3)
        66.67
    """
    if total <= 0:
        raise ValueError("total must be positive")
    ratio = Decimal(correct * 100) / Decimal(total)
    return float(ratio.quantize(_CENT, rounding=ROUND_HALF_UP))


def compare_scalar(ai: str, user: str) -> Tuple[FieldComparison, FieldScore]:
    """Compare a scalar code field.

    A field absent on both sides is excluded from scoring: it contributes no
    denominator and is reported with ``match=False``.

    Examples:
        >>> compare_scalar("K44.9", "K44.9")[1]
        FieldScore(correct=1, total=1)
        >>> compare_scalar("", "")[1]
        FieldScore(correct=0, total=0)
    """
    if not ai and not user:
        return FieldComparison(ai=ai, user=user, match=False), FieldScore(0, 0)
    match = ai == user
    return (
        FieldComparison(ai=ai, user=user, match=match),
        FieldScore(correct=1 if match else 0, total=1),
    )


def compare_codes(
    ai: Sequence[str], user: Sequence[str]
) -> Tuple[SetComparison, FieldScore]:
    """Compare list-valued code fields as sets.

    Examples:
        >>> comparison, score = compare_codes(["I10", "E78.5"], ["E78.5", "Z79.01"])
        >>> comparison.matches, comparison.additions, comparison.removals
        (('E78.5',), ('Z79.01',), ('I10',))
        >>> score
        FieldScore(correct=1, total=3)
    """
    ai_codes = set(ai)
    user_codes = set(user)
    comparison = SetComparison(
        ai=tuple(ai),
        user=tuple(user),
        matches=_unique(code for code in ai if code in user_codes),
        additions=_unique(code for code in user if code not in ai_codes),
        removals=_unique(code for code in ai if code not in user_codes),
    )
    union_size = len(ai_codes | user_codes)
    return comparison, FieldScore(correct=len(comparison.matches), total=union_size)


def reconcile(ai: CodingResult, user: CodingResult) -> AccuracyReport:
    """Score agreement between an AI coding proposal and the corrected result.

    Scalar fields count once each unless absent on both sides. Set fields
    count once per distinct code in the union of both sides, with matches
    counted against the deduplicated intersection. When nothing is counted
    at all, agreement is vacuously perfect (100.0).

    Args:
        ai: Normalized AI proposal.
        user: Normalized reviewer correction.

    Returns:
        The accuracy report with per-field details and scores.

    Examples:
        >>> from coding_shared.models import CodingResult
        >>> reconcile(CodingResult(), CodingResult()).percentage
        100.0
        >>> reconcile(
        ...     CodingResult(admit_diagnosis="A"), CodingResult(admit_diagnosis="B")
        ... ).percentage
        0.0
    """
    details: Dict[str, FieldComparison | SetComparison] = {}
    scores: Dict[str, FieldScore] = {}

    details["admit_dx"], scores["admit_dx"] = compare_scalar(
        ai.admit_diagnosis, user.admit_diagnosis
    )
    details["pdx"], scores["pdx"] = compare_scalar(
        ai.principal_diagnosis, user.principal_diagnosis
    )
    details["sdx"], scores["sdx"] = compare_codes(
        ai.secondary_diagnoses, user.secondary_diagnoses
    )
    details["cpt"], scores["cpt"] = compare_codes(
        ai.procedure_codes, user.procedure_codes
    )
    details["modifier"], scores["modifier"] = compare_scalar(ai.modifier, user.modifier)

    correct = sum(score.correct for score in scores.values())
    total = sum(score.total for score in scores.values())
    percentage = round_percentage(correct, total) if total else 100.0

    return AccuracyReport(
        percentage=percentage,
        correct_fields=correct,
        total_fields=total,
        field_details=details,
        field_scores=scores,
    )


def average_accuracy(percentages: Iterable[Optional[float]]) -> float:
    """Average stored accuracy percentages.

    Args:
        percentages: Stored percentages; missing values count as 0.

    Returns:
        Mean rounded half-up to 2 decimals, or 0.0 when there are none.

    Examples:
        >>> average_accuracy([100.0, 50.0, None])
        50.0
        >>> average_accuracy([])
        0.0
    """
    values = [
        Decimal(str(value)) if value is not None else Decimal(0)
        for value in percentages
    ]
    if not values:
        return 0.0
    mean = sum(values, Decimal(0)) / Decimal(len(values))
    return float(mean.quantize(_CENT, rounding=ROUND_HALF_UP))
