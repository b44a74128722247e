"""
State models supporting a company search session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional, Set, Tuple

from domain.companies import CompanyRecord

if TYPE_CHECKING:
    from agents.store_history import HistoryEntry


class SearchPhase(str, Enum):
    SEARCHING = "searching"
    BATCH = "batch"
    COMPLETED = "completed"
    NO_RESULTS = "no_results"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self not in (SearchPhase.SEARCHING, SearchPhase.BATCH)


@dataclass(frozen=True, slots=True)
class SearchUpdate:
    """Snapshot published to consumers after every step of a search."""

    query: str
    batch: int
    status: str
    results: Tuple[CompanyRecord, ...]
    phase: SearchPhase = SearchPhase.SEARCHING
    new_count: int = 0
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.phase.terminal


@dataclass(slots=True)
class SearchSession:
    """Accumulated state for one query; lives only as long as the search."""

    query: str
    results: List[CompanyRecord] = field(default_factory=list)
    batch: int = 0
    failed_batches: List[int] = field(default_factory=list)
    error: Optional[Exception] = None
    cancelled: bool = False
    history_entry: Optional["HistoryEntry"] = None
    persisted: bool = False
    seen_keys: Set[str] = field(default_factory=set)

    def found_names(self) -> List[str]:
        return [record.name for record in self.results]

    def filter_new(self, records: Iterable[CompanyRecord]) -> List[CompanyRecord]:
        """Return records whose name is neither accumulated nor repeated earlier in ``records``."""
        fresh: List[CompanyRecord] = []
        batch_keys: Set[str] = set()
        for record in records:
            key = record.key
            if not key or key in self.seen_keys or key in batch_keys:
                continue
            batch_keys.add(key)
            fresh.append(record)
        return fresh

    def extend(self, records: Iterable[CompanyRecord]) -> int:
        added = 0
        for record in records:
            if record.key in self.seen_keys:
                continue
            self.seen_keys.add(record.key)
            self.results.append(record)
            added += 1
        return added

    def snapshot(
        self,
        status: str,
        *,
        phase: SearchPhase = SearchPhase.SEARCHING,
        new_count: int = 0,
        error: Optional[str] = None,
    ) -> SearchUpdate:
        return SearchUpdate(
            query=self.query,
            batch=self.batch,
            status=status,
            results=tuple(self.results),
            phase=phase,
            new_count=new_count,
            error=error,
        )
