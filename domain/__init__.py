"""
Domain models and export helpers for Beagle Search.

```python
from domain import CompanyRecord, to_csv

csv_text = to_csv([CompanyRecord(name="Acme Co")])
```
"""

from .companies import NOT_AVAILABLE, CompanyRecord, name_key  # noqa: F401
from .csv_export import CSV_HEADERS, export_filename, to_csv, to_rows  # noqa: F401

__all__ = [
    "NOT_AVAILABLE",
    "CompanyRecord",
    "name_key",
    "CSV_HEADERS",
    "export_filename",
    "to_csv",
    "to_rows",
]
