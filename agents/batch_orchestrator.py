"""
Batch orchestration for company searches.

Runs up to ``MAX_BATCHES`` sequential provider calls for one query, merges the
results by case-insensitive company name and publishes a snapshot after every
step. A failed batch is logged and skipped; whatever has been found is kept
and saved to history exactly once when the search ends.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, List, Optional, Protocol, Sequence

from domain.companies import CompanyRecord
from search_state_manager import SearchPhase, SearchSession, SearchUpdate

from .store_history import SearchHistory

logger = logging.getLogger(__name__)

MAX_BATCHES = 10
WARMUP_BATCHES = 3
INTER_BATCH_DELAY_SECONDS = 1.5

STATUS_MESSAGES = (
    "Waking up the Pro Beagle...",
    "Analyzing market trends deeply...",
    "Extracting unique entities...",
    "Verifying website links...",
    "Scouring page 5 for rare matches...",
    "Still digging, quality takes time...",
    "Almost done, polishing results...",
    "Gathering the final batch...",
    "Final cross-check for duplicates...",
    "Done! Bringing back your records...",
)

NO_RESULTS_MESSAGE = "No companies found."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Showing all found results."


class CompanyProvider(Protocol):
    def fetch_batch(self, query: str, exclude_names: Sequence[str] = ()) -> List[CompanyRecord]:
        ...


class SearchError(RuntimeError):
    """Base class for session-level failures surfaced to the user."""


class NoResultsError(SearchError):
    """The very first batch came back empty."""


class SessionError(SearchError):
    """Something escaped the per-batch guard."""


def batch_status(batch: int) -> str:
    if 1 <= batch <= len(STATUS_MESSAGES):
        return STATUS_MESSAGES[batch - 1]
    return f"Scouring Batch {batch}..."


class BatchOrchestrator:
    """Drives repeated provider calls for a query until results run dry."""

    def __init__(
        self,
        *,
        provider: CompanyProvider,
        history: Optional[SearchHistory] = None,
        max_batches: int = MAX_BATCHES,
        inter_batch_delay: float = INTER_BATCH_DELAY_SECONDS,
    ) -> None:
        self._provider = provider
        self._history = history
        self._max_batches = max(1, max_batches)
        self._inter_batch_delay = max(0.0, inter_batch_delay)

    def run_search(
        self,
        query: str,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[SearchUpdate]:
        """Return a lazy stream of snapshots for ``query``.

        The stream yields a ``searching`` update before each provider call, a
        ``batch`` update after each batch that added records, and ends with one
        terminal update (``completed``, ``no_results``, ``cancelled`` or
        ``failed``). Closing the stream early still saves what was found.
        """
        if not query or not query.strip():
            raise ValueError("Query must be a non-empty string.")
        session = SearchSession(query=query.strip())
        return self._stream(session, cancel_event or threading.Event())

    def run_to_completion(
        self,
        query: str,
        *,
        cancel_event: Optional[threading.Event] = None,
        on_update: Optional[Callable[[SearchUpdate], None]] = None,
    ) -> SearchUpdate:
        final: Optional[SearchUpdate] = None
        for update in self.run_search(query, cancel_event=cancel_event):
            if on_update is not None:
                on_update(update)
            final = update
        assert final is not None
        return final

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _stream(self, session: SearchSession, cancel_event: threading.Event) -> Iterator[SearchUpdate]:
        logger.info("Starting company search for: %s", session.query)
        try:
            try:
                yield from self._run_batches(session, cancel_event)
            except Exception as exc:
                logger.exception("Search for '%s' failed unexpectedly.", session.query)
                session.error = SessionError(str(exc))
            self._persist(session)
            yield self._final_update(session)
        finally:
            self._persist(session)

    def _run_batches(self, session: SearchSession, cancel_event: threading.Event) -> Iterator[SearchUpdate]:
        for batch in range(1, self._max_batches + 1):
            if cancel_event.is_set():
                logger.info("Search cancelled before batch %d.", batch)
                session.cancelled = True
                return

            session.batch = batch
            status = batch_status(batch)
            yield session.snapshot(status)

            try:
                records = self._provider.fetch_batch(session.query, session.found_names())
            except Exception as exc:
                logger.warning("Batch %d failed, skipping but continuing: %s", batch, exc)
                session.failed_batches.append(batch)
                continue

            if not records:
                if batch == 1:
                    session.error = NoResultsError(NO_RESULTS_MESSAGE)
                logger.info("Batch %d returned no companies; stopping.", batch)
                return

            fresh = session.filter_new(records)
            if not fresh and batch > WARMUP_BATCHES:
                logger.info("Batch %d found nothing new; stopping.", batch)
                return

            added = session.extend(fresh)
            logger.info("Batch %d added %d companies (%d total).", batch, added, len(session.results))
            yield session.snapshot(status, phase=SearchPhase.BATCH, new_count=added)

            if batch < self._max_batches and cancel_event.wait(self._inter_batch_delay):
                logger.info("Search cancelled after batch %d.", batch)
                session.cancelled = True
                return

    def _final_update(self, session: SearchSession) -> SearchUpdate:
        if isinstance(session.error, NoResultsError):
            return session.snapshot(NO_RESULTS_MESSAGE, phase=SearchPhase.NO_RESULTS, error=NO_RESULTS_MESSAGE)
        if isinstance(session.error, SessionError):
            return session.snapshot(
                UNEXPECTED_ERROR_MESSAGE, phase=SearchPhase.FAILED, error=UNEXPECTED_ERROR_MESSAGE
            )
        found = len(session.results)
        if session.cancelled:
            return session.snapshot(f"Search stopped. Kept {found} companies.", phase=SearchPhase.CANCELLED)
        return session.snapshot(f"Found {found} companies.", phase=SearchPhase.COMPLETED)

    def _persist(self, session: SearchSession) -> None:
        if session.persisted or not session.results:
            return
        session.persisted = True
        if self._history is None:
            return
        try:
            session.history_entry = self._history.append(session.query, session.results)
        except Exception as exc:
            logger.exception("Failed to save search '%s' to history.", session.query)
            if session.error is None:
                session.error = SessionError(str(exc))
