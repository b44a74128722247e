import threading
import time

import pytest

from agents.batch_orchestrator import (
    INTER_BATCH_DELAY_SECONDS,
    MAX_BATCHES,
    NO_RESULTS_MESSAGE,
    STATUS_MESSAGES,
    UNEXPECTED_ERROR_MESSAGE,
    BatchOrchestrator,
    batch_status,
)
from agents.company_search_agent import PermanentProviderError, TransientProviderError
from agents.store_history import InMemoryBlobStore, SearchHistory
from domain.companies import CompanyRecord
from search_state_manager import SearchPhase

from conftest import ScriptedProvider, make_companies


def _orchestrator(provider, history=None, **kwargs):
    return BatchOrchestrator(provider=provider, history=history, inter_batch_delay=0, **kwargs)


def test_results_are_deduplicated_case_insensitively_in_discovery_order(history):
    provider = ScriptedProvider(
        [
            make_companies("Acme", "Globex"),
            make_companies("ACME", "Initech", "globex ", "Initech"),
            make_companies("Umbrella"),
        ]
    )
    final = _orchestrator(provider, history).run_to_completion("widgets")

    names = [record.name for record in final.results]
    assert names == ["Acme", "Globex", "Initech", "Umbrella"]
    assert len({record.key for record in final.results}) == len(final.results)
    assert final.phase is SearchPhase.COMPLETED


def test_record_positions_never_change_after_insertion():
    provider = ScriptedProvider([make_companies("A", "B"), make_companies("C"), make_companies("b", "D")])
    snapshots = [
        update.results
        for update in _orchestrator(provider).run_search("letters")
        if update.phase is SearchPhase.BATCH
    ]
    for earlier, later in zip(snapshots, snapshots[1:]):
        assert later[: len(earlier)] == earlier


def test_excluded_names_are_the_accumulated_names():
    provider = ScriptedProvider([make_companies("Acme"), make_companies("Globex")])
    _orchestrator(provider).run_to_completion("widgets")
    assert provider.calls[:3] == [[], ["Acme"], ["Acme", "Globex"]]


def test_never_more_than_max_batches_provider_calls():
    script = [make_companies(f"Company {i}") for i in range(25)]
    provider = ScriptedProvider(script)
    final = _orchestrator(provider).run_to_completion("everything")

    assert len(provider.calls) == MAX_BATCHES
    assert len(final.results) == MAX_BATCHES
    assert final.phase is SearchPhase.COMPLETED


def test_all_duplicate_batches_stop_at_batch_four():
    repeat = make_companies("Acme")
    provider = ScriptedProvider([make_companies("Acme"), make_companies("Globex"), make_companies("Initech")] + [repeat] * 7)
    final = _orchestrator(provider).run_to_completion("widgets")

    assert len(provider.calls) == 4
    assert final.batch == 4
    assert [record.name for record in final.results] == ["Acme", "Globex", "Initech"]


def test_duplicate_batch_during_warmup_does_not_stop():
    provider = ScriptedProvider([make_companies("Acme"), make_companies("acme"), make_companies("Globex")])
    final = _orchestrator(provider).run_to_completion("widgets")

    assert len(provider.calls) >= 3
    assert [record.name for record in final.results] == ["Acme", "Globex"]


def test_empty_first_batch_ends_with_no_results(history):
    provider = ScriptedProvider([[]])
    final = _orchestrator(provider, history).run_to_completion("nothing at all")

    assert final.phase is SearchPhase.NO_RESULTS
    assert final.error == NO_RESULTS_MESSAGE
    assert final.results == ()
    assert len(provider.calls) == 1
    assert history.entries() == []


def test_empty_later_batch_stops_quietly():
    provider = ScriptedProvider([make_companies("Acme"), []])
    final = _orchestrator(provider).run_to_completion("widgets")

    assert len(provider.calls) == 2
    assert final.phase is SearchPhase.COMPLETED
    assert final.error is None


def test_failed_batch_is_skipped_without_losing_other_results(history):
    provider = ScriptedProvider(
        [
            make_companies("A"),
            make_companies("B"),
            TransientProviderError(status_code=503, message="unavailable"),
            make_companies("C"),
            make_companies("D"),
            [],
        ]
    )
    final = _orchestrator(provider, history).run_to_completion("letters")

    assert [record.name for record in final.results] == ["A", "B", "C", "D"]
    assert final.phase is SearchPhase.COMPLETED
    assert len(provider.calls) == 6


def test_first_batch_failure_does_not_end_the_session():
    provider = ScriptedProvider([PermanentProviderError(status_code=400, message="bad"), make_companies("A"), []])
    final = _orchestrator(provider).run_to_completion("letters")

    assert [record.name for record in final.results] == ["A"]
    assert final.phase is SearchPhase.COMPLETED


def test_history_written_once_per_session(history):
    provider = ScriptedProvider([make_companies("A"), make_companies("B"), make_companies("C"), []])
    _orchestrator(provider, history).run_to_completion("letters")

    entries = history.entries()
    assert len(entries) == 1
    assert entries[0].query == "letters"
    assert [record.name for record in entries[0].results] == ["A", "B", "C"]


def test_cancel_before_start_makes_no_calls(history):
    provider = ScriptedProvider([make_companies("A")])
    cancel_event = threading.Event()
    cancel_event.set()
    final = _orchestrator(provider, history).run_to_completion("letters", cancel_event=cancel_event)

    assert provider.calls == []
    assert final.phase is SearchPhase.CANCELLED
    assert history.entries() == []


def test_cancel_mid_search_keeps_results(history):
    provider = ScriptedProvider([make_companies(f"Company {i}") for i in range(10)])
    cancel_event = threading.Event()

    def on_update(update):
        if update.phase is SearchPhase.BATCH and update.batch == 2:
            cancel_event.set()

    final = _orchestrator(provider, history).run_to_completion(
        "companies", cancel_event=cancel_event, on_update=on_update
    )

    assert len(provider.calls) == 2
    assert final.phase is SearchPhase.CANCELLED
    assert [record.name for record in final.results] == ["Company 0", "Company 1"]
    assert len(history.entries()) == 1


def test_closing_stream_early_still_saves_results(history):
    provider = ScriptedProvider([make_companies("A"), make_companies("B")])
    stream = _orchestrator(provider, history).run_search("letters")
    for update in stream:
        if update.phase is SearchPhase.BATCH:
            break
    stream.close()

    entries = history.entries()
    assert len(entries) == 1
    assert [record.name for record in entries[0].results] == ["A"]


def test_unexpected_error_keeps_results_and_reports_failure(history):
    # A malformed record blows up while merging, outside the per-batch guard.
    provider = ScriptedProvider([make_companies("A"), [object()]])
    final = _orchestrator(provider, history).run_to_completion("letters")

    assert final.phase is SearchPhase.FAILED
    assert final.error == UNEXPECTED_ERROR_MESSAGE
    assert [record.name for record in final.results] == ["A"]
    assert len(history.entries()) == 1


def test_progress_labels_come_before_each_call():
    provider = ScriptedProvider([make_companies("A"), []])
    updates = list(_orchestrator(provider).run_search("letters"))

    searching = [update for update in updates if update.phase is SearchPhase.SEARCHING]
    assert [update.status for update in searching] == list(STATUS_MESSAGES[:2])
    assert updates[-1].done


def test_batch_status_falls_back_past_known_labels():
    assert batch_status(1) == STATUS_MESSAGES[0]
    assert batch_status(len(STATUS_MESSAGES) + 1) == f"Scouring Batch {len(STATUS_MESSAGES) + 1}..."


@pytest.mark.parametrize("query", ["", "   ", "\n\t"])
def test_blank_query_is_rejected(query):
    provider = ScriptedProvider([])
    with pytest.raises(ValueError):
        _orchestrator(provider).run_search(query)
    assert provider.calls == []


def test_query_is_trimmed():
    provider = ScriptedProvider([[CompanyRecord(name="Acme")], []])
    final = _orchestrator(provider).run_to_completion("  widgets  ")
    assert final.query == "widgets"


def test_default_inter_batch_delay():
    assert INTER_BATCH_DELAY_SECONDS == 1.5


def test_cancel_interrupts_the_inter_batch_wait(history):
    provider = ScriptedProvider([make_companies(f"Company {i}") for i in range(10)])
    cancel_event = threading.Event()

    def on_update(update):
        if update.phase is SearchPhase.BATCH and update.batch == 1:
            cancel_event.set()

    orchestrator = BatchOrchestrator(provider=provider, history=history, inter_batch_delay=30)
    started = time.monotonic()
    final = orchestrator.run_to_completion("companies", cancel_event=cancel_event, on_update=on_update)

    assert time.monotonic() - started < 5
    assert final.phase is SearchPhase.CANCELLED
    assert len(provider.calls) == 1
    assert [record.name for record in final.results] == ["Company 0"]


def test_no_wait_after_the_last_batch():
    provider = ScriptedProvider([make_companies("A")])
    orchestrator = BatchOrchestrator(provider=provider, max_batches=1, inter_batch_delay=30)

    started = time.monotonic()
    final = orchestrator.run_to_completion("letters")

    assert time.monotonic() - started < 5
    assert final.phase is SearchPhase.COMPLETED


class FailingBlobStore(InMemoryBlobStore):
    def save(self, key, blob):
        raise ValueError("disk is read-only")


def test_history_save_failure_reports_failure_and_keeps_results():
    history = SearchHistory(FailingBlobStore())
    provider = ScriptedProvider([make_companies("A", "B"), []])

    final = _orchestrator(provider, history).run_to_completion("letters")

    assert final.phase is SearchPhase.FAILED
    assert final.error == UNEXPECTED_ERROR_MESSAGE
    assert [record.name for record in final.results] == ["A", "B"]
    assert history.entries() == []
