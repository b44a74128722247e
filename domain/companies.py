from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

NOT_AVAILABLE = "N/A"

COMPANY_FIELDS = ("name", "website", "linkedin", "country", "state", "industry")


@dataclass(frozen=True, slots=True)
class CompanyRecord:
    name: str
    website: str = NOT_AVAILABLE
    linkedin: str = NOT_AVAILABLE
    country: str = NOT_AVAILABLE
    state: str = NOT_AVAILABLE
    industry: str = NOT_AVAILABLE

    @property
    def key(self) -> str:
        """Identity used for deduplication: the case-insensitive name."""
        return name_key(self.name)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Optional["CompanyRecord"]:
        """Build a record from loose provider or storage data.

        Blank values become ``N/A``; a record without a usable name is dropped.
        """
        name = str(data.get("name") or "").strip()
        if not name:
            return None
        values = {field: _clean(data.get(field)) for field in COMPANY_FIELDS[1:]}
        return cls(name=name, **values)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def name_key(name: str) -> str:
    return name.strip().casefold()


def _clean(value: Any) -> str:
    if value is None:
        return NOT_AVAILABLE
    text = str(value).strip()
    return text or NOT_AVAILABLE
