"""Regex scraping of chart identifiers and date of service from report text."""

from __future__ import annotations

import re
from dataclasses import dataclass

UNKNOWN_CHART_NUMBER = "UNKNOWN"

_CHART_PATTERN = re.compile(r"V\d+")
_MR_PATTERN = re.compile(r"MR[#:\s]*([A-Z]?\d+)", re.IGNORECASE)
_ACCT_PATTERN = re.compile(r"(?:Acct|Account)[#:\s]*([A-Z0-9-]+)", re.IGNORECASE)
_DOS_PATTERNS = (
    re.compile(r"Date of Service[:\s]+(\d{1,2}/\d{1,2}/\d{2,4})", re.IGNORECASE),
    re.compile(r"DOS[:\s]+(\d{1,2}/\d{1,2}/\d{2,4})", re.IGNORECASE),
)


@dataclass(frozen=True)
class ChartIdentifiers:
    """Identifiers scraped from an H&P/OP report pair."""

    chart_number: str
    mr_number: str
    acct_number: str


def scrape_identifiers(
    hp_text: str | None, op_text: str | None, chart_number: str | None = None
) -> ChartIdentifiers:
    """Find chart, MR and account numbers in the report text.

    The operative report is searched before the H&P. A chart number supplied
    by the caller wins over a scraped one.

    Examples:
        >>> ids = scrape_identifiers("MR# M000251535 Acct: ACC-2024-09162", "V0049")
        >>> ids.chart_number, ids.mr_number, ids.acct_number
        ('V0049', 'M000251535', 'ACC-2024-09162')
    """
    combined = (op_text or "") + (hp_text or "")

    chart = (chart_number or "").strip()
    if not chart:
        chart_match = _CHART_PATTERN.search(combined)
        chart = chart_match.group(0) if chart_match else UNKNOWN_CHART_NUMBER

    mr_match = _MR_PATTERN.search(combined)
    acct_match = _ACCT_PATTERN.search(combined)
    return ChartIdentifiers(
        chart_number=chart,
        mr_number=mr_match.group(1) if mr_match else "",
        acct_number=acct_match.group(1) if acct_match else "",
    )


def extract_date_of_service(text: str | None) -> str:
    """Return the date of service written in a report, or an empty string.

    Examples:
        >>> extract_date_of_service("Date of Service: 09/16/25")
        '09/16/25'
        >>> extract_date_of_service("no date here")
        ''
    """
    if not text:
        return ""
    for pattern in _DOS_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return ""
