"""
CSV export and table helpers for company result sets.

The export keeps the column layout users already know from the results table:
a 1-based ``NO`` column followed by the six company fields. Text fields are
always double-quoted with embedded quotes doubled, so any standard CSV reader
recovers the original values.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Union

from .companies import CompanyRecord

CSV_HEADERS = ("NO", "Company Name", "Website", "Linkedin URL", "Country", "State", "Industry")


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _row(index: int, company: CompanyRecord) -> List[str]:
    return [
        str(index),
        _quote(company.name),
        _quote(company.website),
        _quote(company.linkedin),
        _quote(company.country),
        _quote(company.state),
        _quote(company.industry),
    ]


def to_csv(records: Iterable[CompanyRecord]) -> str:
    lines = [",".join(CSV_HEADERS)]
    for index, company in enumerate(records, start=1):
        lines.append(",".join(_row(index, company)))
    return "\n".join(lines)


def to_rows(records: Iterable[CompanyRecord]) -> List[Dict[str, Union[int, str]]]:
    """Return the export columns as dictionaries, ready for a table widget."""
    rows: List[Dict[str, Union[int, str]]] = []
    for index, company in enumerate(records, start=1):
        values = (index, company.name, company.website, company.linkedin, company.country, company.state, company.industry)
        rows.append(dict(zip(CSV_HEADERS, values)))
    return rows


def export_filename(query: str, *, when: datetime | None = None) -> str:
    timestamp = (when or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
    safe_query = re.sub(r"[^a-zA-Z0-9-_ ]", "", query).strip()[:50].replace(" ", "_")
    return f"{timestamp}_{safe_query or 'companies'}.csv"
