"""Persistence for completed searches.

History is stored as one JSON blob (newest entry first) in a small key-value
store, so the orchestrator can be exercised against an in-memory store and the
apps can point at a data directory.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple
from uuid import uuid4

from domain.companies import CompanyRecord

logger = logging.getLogger(__name__)

HISTORY_KEY = "beagle_search_history"
MAX_HISTORY_ENTRIES = 50


class BlobStore(Protocol):
    def load(self, key: str) -> Optional[str]:
        ...

    def save(self, key: str, blob: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryBlobStore:
    """Dictionary-backed store, handy for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._blobs: Dict[str, str] = {}

    def load(self, key: str) -> Optional[str]:
        return self._blobs.get(key)

    def save(self, key: str, blob: str) -> None:
        self._blobs[key] = blob

    def delete(self, key: str) -> None:
        self._blobs.pop(key, None)


class FileBlobStore:
    """Stores each key as a UTF-8 JSON file under ``base_path``."""

    def __init__(self, base_path: Optional[Path] = None) -> None:
        self._base_path = Path(base_path or os.getenv("BEAGLE_DATA_DIR", "data"))

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _path_for(self, key: str) -> Path:
        safe_key = re.sub(r"[^a-zA-Z0-9-_]", "_", key)
        return self._base_path / f"{safe_key}.json"

    def load(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def save(self, key: str, blob: str) -> None:
        self._base_path.mkdir(parents=True, exist_ok=True)
        path = self._path_for(key)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(blob, encoding="utf-8")
        tmp_path.replace(path)
        logger.debug("Saved %d bytes to %s", len(blob), path)

    def delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """A finished search, as shown in the admin history view."""

    query: str
    results: Tuple[CompanyRecord, ...]
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "query": self.query,
            "results": [record.to_dict() for record in self.results],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        records = (CompanyRecord.from_mapping(item) for item in data.get("results") or [])
        return cls(
            id=str(data["id"]),
            timestamp=str(data.get("timestamp", "")),
            query=str(data.get("query", "")),
            results=tuple(record for record in records if record is not None),
        )


class SearchHistory:
    """Append-only, capped list of past searches kept in a ``BlobStore``."""

    def __init__(
        self,
        store: BlobStore,
        *,
        key: str = HISTORY_KEY,
        max_entries: int = MAX_HISTORY_ENTRIES,
    ) -> None:
        self._store = store
        self._key = key
        self._max_entries = max(1, max_entries)

    def entries(self) -> List[HistoryEntry]:
        blob = self._store.load(self._key)
        if not blob:
            return []
        try:
            raw_entries = json.loads(blob)
            return [HistoryEntry.from_dict(item) for item in raw_entries]
        except (json.JSONDecodeError, TypeError, KeyError, AttributeError) as exc:
            logger.error("Failed to parse search history under '%s': %s", self._key, exc)
            return []

    def append(self, query: str, results: Iterable[CompanyRecord]) -> HistoryEntry:
        entry = HistoryEntry(query=query, results=tuple(results))
        updated = [entry, *self.entries()][: self._max_entries]
        self._write(updated)
        logger.info("Saved search '%s' with %d companies to history.", query, len(entry.results))
        return entry

    def clear(self) -> None:
        self._store.delete(self._key)
        logger.info("Cleared search history.")

    def _write(self, entries: List[HistoryEntry]) -> None:
        serialized = json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False)
        self._store.save(self._key, serialized)
