"""
Streamlit entry point for Beagle Search.

Provides a search box on top of `BatchOrchestrator`, refreshing the results
table after every batch, a stop control, CSV download, and a key-protected
sidebar for browsing and clearing saved searches.
"""

from __future__ import annotations

import hmac
import logging
import os
import threading
from contextlib import closing
from typing import List

import streamlit as st
from dotenv import load_dotenv

from agents import BatchOrchestrator, CompanySearchAgent, FileBlobStore, HistoryEntry, SearchHistory
from domain.companies import CompanyRecord
from domain.csv_export import export_filename, to_csv, to_rows
from search_state_manager import SearchPhase

# Ensure environment variables from .env are loaded before instantiating the agent.
load_dotenv()

LOGGER = logging.getLogger(__name__)


@st.cache_resource(show_spinner=False)
def _get_history() -> SearchHistory:
    """Create a singleton history store per Streamlit process."""
    return SearchHistory(FileBlobStore())


def _get_orchestrator() -> BatchOrchestrator:
    """Create one orchestrator per browser session; only the history store is shared."""
    if "orchestrator" not in st.session_state:
        agent = CompanySearchAgent(openai_model_name=os.getenv("BEAGLE_MODEL", "gpt-5-nano"))
        st.session_state.orchestrator = BatchOrchestrator(provider=agent, history=_get_history())
    return st.session_state.orchestrator


def _init_session_state() -> None:
    """Initialize keys stored in st.session_state."""
    defaults = {
        "results": [],
        "last_query": "",
        "status": "",
        "error": None,
        "cancel_event": None,
        "admin_authenticated": False,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def _check_admin_key(candidate: str) -> bool:
    expected = os.getenv("BEAGLE_ADMIN_KEY")
    if not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def _render_table(container, results: List[CompanyRecord]) -> None:
    if results:
        container.dataframe(to_rows(results), use_container_width=True, hide_index=True)
    else:
        container.empty()


def _render_history_entry(entry: HistoryEntry) -> None:
    label = f"{entry.query} · {entry.timestamp} · {len(entry.results)} companies"
    with st.expander(label, expanded=False):
        st.dataframe(to_rows(entry.results), use_container_width=True, hide_index=True)
        st.download_button(
            "Download CSV",
            data=to_csv(entry.results),
            file_name=export_filename(entry.query),
            mime="text/csv",
            key=f"history_download_{entry.id}",
        )


def _render_sidebar(history: SearchHistory) -> None:
    """Render the admin view: saved searches behind an access key."""
    with st.sidebar:
        st.header("Admin")
        if not st.session_state.admin_authenticated:
            with st.form("admin_login"):
                access_key = st.text_input("Access key", type="password")
                if st.form_submit_button("Unlock", use_container_width=True):
                    if _check_admin_key(access_key):
                        st.session_state.admin_authenticated = True
                        st.rerun()
                    else:
                        st.error("Invalid Access Key.")
            return

        if st.button("Lock", use_container_width=True):
            st.session_state.admin_authenticated = False
            st.rerun()

        st.divider()
        entries = history.entries()
        st.subheader(f"Search history ({len(entries)})")
        if not entries:
            st.caption("No saved searches yet.")
            return
        for entry in entries:
            _render_history_entry(entry)

        st.divider()
        confirm = st.checkbox("I want to clear all history")
        if st.button("Clear history", disabled=not confirm, use_container_width=True):
            history.clear()
            st.rerun()


def _run_search(orchestrator: BatchOrchestrator, query: str, status_box, table_box) -> None:
    cancel_event = threading.Event()
    st.session_state.cancel_event = cancel_event
    st.session_state.results = []
    st.session_state.error = None
    st.session_state.last_query = query.strip()

    with closing(orchestrator.run_search(query, cancel_event=cancel_event)) as stream:
        for update in stream:
            st.session_state.results = list(update.results)
            if update.phase is SearchPhase.SEARCHING:
                status_box.info(f"Batch {update.batch}: {update.status}")
            elif update.phase is SearchPhase.BATCH:
                _render_table(table_box, st.session_state.results)
            else:
                st.session_state.status = update.status
                st.session_state.error = update.error
    st.session_state.cancel_event = None


def main() -> None:
    st.set_page_config(
        page_title="Beagle Search",
        layout="wide",
    )

    st.title("BEAGLE SEARCH PRO")
    st.caption("Describe the companies you need and Beagle will fetch them batch by batch.")

    _init_session_state()
    history = _get_history()
    _render_sidebar(history)

    try:
        orchestrator = _get_orchestrator()
    except Exception as exc:  # pragma: no cover - surfaced to UI
        LOGGER.exception("Streamlit failed to initialize the search agent: %s", exc)
        st.error(
            "Failed to initialize the search agent. "
            "Verify API keys in your environment and restart the app.\n\n"
            f"Details: {exc}"
        )
        return

    with st.form("search_form"):
        query = st.text_input("What should Beagle find for you?", value=st.session_state.last_query)
        submitted = st.form_submit_button("Search")

    if st.button("Stop search"):
        # A click reruns the script, which closes the running search stream.
        cancel_event = st.session_state.cancel_event
        if cancel_event is not None:
            cancel_event.set()
        st.session_state.cancel_event = None
        st.session_state.status = f"Search stopped. Kept {len(st.session_state.results)} companies."

    status_box = st.empty()
    table_box = st.empty()

    if submitted and query.strip():
        _run_search(orchestrator, query, status_box, table_box)

    if st.session_state.error:
        status_box.warning(st.session_state.error)
    elif st.session_state.status:
        status_box.success(st.session_state.status)
    else:
        status_box.empty()

    results = st.session_state.results
    _render_table(table_box, results)
    if results:
        st.download_button(
            "Download CSV",
            data=to_csv(results),
            file_name=export_filename(st.session_state.last_query),
            mime="text/csv",
        )


if __name__ == "__main__":
    main()
