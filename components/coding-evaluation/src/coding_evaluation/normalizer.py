"""Normalization of loosely shaped coding results."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Tuple

from coding_shared.models import CodingResult

# Wire key first, then the long attribute name.
_FIELD_ALIASES: dict[str, Tuple[str, ...]] = {
    "admit_diagnosis": ("admit_dx", "admit_diagnosis"),
    "principal_diagnosis": ("pdx", "principal_diagnosis"),
    "secondary_diagnoses": ("sdx", "secondary_diagnoses"),
    "procedure_codes": ("cpt", "procedure_codes"),
    "modifier": ("modifier",),
}


def _lookup(raw: object, names: Tuple[str, ...]) -> Any:
    for name in names:
        if isinstance(raw, Mapping):
            value = raw.get(name)
        else:
            value = getattr(raw, name, None)
        if value is not None:
            return value
    return None


def normalize_code(value: object) -> str:
    """Normalize a scalar code value.

    Args:
        value: Raw scalar value from a model response or reviewer payload.

    Returns:
        The trimmed code, integers rendered as text, or an empty string when
        absent or of any other type.

    Examples:
        >>> normalize_code("  K44.9 ")
        'K44.9'
        >>> normalize_code(59)
        '59'
        >>> normalize_code(None)
        ''
    """
    if isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return ""


def normalize_code_list(value: object) -> Tuple[str, ...]:
    """Normalize a list-valued code field.

    Accepts a list/tuple of codes or a comma-joined string. Order and
    duplicates are preserved; empty parts are dropped.

    Args:
        value: Raw list, string or other value.

    Returns:
        Tuple of trimmed codes.

    Examples:
        >>> normalize_code_list("45378, 43235 ,  ")
        ('45378', '43235')
        >>> normalize_code_list(["I10", "I10"])
        ('I10', 'I10')
        >>> normalize_code_list({"unexpected": "shape"})
        ()
    """
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        return ()
    codes = (normalize_code(part) for part in parts)
    return tuple(code for code in codes if code)


def normalize_coding_result(raw: object) -> CodingResult:
    """Canonicalize a raw coding result into a CodingResult.

    The raw value may be a mapping using the wire keys (``admit_dx``,
    ``pdx``, ``sdx``, ``cpt``, ``modifier``) or the long field names, or any
    object exposing those attributes. Normalization never fails: missing or
    unrecognized values default to their empty representation.

    Args:
        raw: AI proposal or reviewer correction in any supported shape.

    Returns:
        A frozen CodingResult.

    Examples:
        >>> result = normalize_coding_result({"pdx": " K44.9", "cpt": "45378, 43235"})
        >>> result.principal_diagnosis, result.procedure_codes
        ('K44.9', ('45378', '43235'))
    """
    if raw is None or isinstance(raw, (str, bytes, int, float, list, tuple)):
        return CodingResult()
    return CodingResult(
        admit_diagnosis=normalize_code(
            _lookup(raw, _FIELD_ALIASES["admit_diagnosis"])
        ),
        principal_diagnosis=normalize_code(
            _lookup(raw, _FIELD_ALIASES["principal_diagnosis"])
        ),
        secondary_diagnoses=normalize_code_list(
            _lookup(raw, _FIELD_ALIASES["secondary_diagnoses"])
        ),
        procedure_codes=normalize_code_list(
            _lookup(raw, _FIELD_ALIASES["procedure_codes"])
        ),
        modifier=normalize_code(_lookup(raw, _FIELD_ALIASES["modifier"])),
    )
