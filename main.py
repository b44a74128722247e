"""
Command line interface for Beagle Search.

Loads API keys from environment variables (via `.env`), wires the company
search agent to the batch orchestrator, and enters an interactive loop that
streams progress and writes each result set to a CSV file.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from agents import BatchOrchestrator, CompanySearchAgent, FileBlobStore, SearchHistory
from domain.csv_export import export_filename, to_csv
from search_state_manager import SearchPhase, SearchUpdate

# --- Logging configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _print_update(update: SearchUpdate) -> None:
    if update.phase is SearchPhase.SEARCHING:
        print(f"[batch {update.batch}] {update.status}")
    elif update.phase is SearchPhase.BATCH:
        print(f"    +{update.new_count} new, {len(update.results)} total")


def _write_export(update: SearchUpdate, export_dir: Path) -> Optional[Path]:
    if not update.results:
        return None
    export_dir.mkdir(parents=True, exist_ok=True)
    file_path = export_dir / export_filename(update.query)
    file_path.write_text(to_csv(update.results), encoding="utf-8")
    logger.info("Saved %d companies to %s", len(update.results), file_path)
    return file_path


def _print_history(history: SearchHistory) -> None:
    entries = history.entries()
    if not entries:
        print("No saved searches yet.\n")
        return
    for entry in entries:
        print(f"{entry.timestamp}  {entry.query}  ({len(entry.results)} companies)")
    print()


def _run_query(orchestrator: BatchOrchestrator, query: str, export_dir: Path) -> None:
    last: Optional[SearchUpdate] = None
    stream = orchestrator.run_search(query, cancel_event=threading.Event())
    try:
        for update in stream:
            _print_update(update)
            last = update
    except KeyboardInterrupt:
        logger.info("Search interrupted by user.")
        print("\nSearch stopped.")
    finally:
        stream.close()

    if last is None:
        return
    if last.error:
        print(last.error)
    elif last.done:
        print(last.status)
    file_path = _write_export(last, export_dir)
    if file_path:
        print(f"CSV saved to {file_path}\n")


def main() -> None:
    """Run the command line loop for company searches."""
    logger.info("Loading environment variables from .env file...")
    load_dotenv()

    try:
        agent = CompanySearchAgent(openai_model_name=os.getenv("BEAGLE_MODEL", "gpt-5-nano"))
    except Exception as exc:
        logger.exception("Failed to initialize the company search agent: %s", exc)
        return

    history = SearchHistory(FileBlobStore())
    orchestrator = BatchOrchestrator(provider=agent, history=history)
    export_dir = Path(os.getenv("BEAGLE_EXPORT_DIR", "exports"))

    print(
        "\nWelcome to Beagle Search!\n"
        "Describe the companies you are looking for and press Enter.\n"
        "Commands: 'history', 'clear', 'quit'.\n"
    )

    try:
        while True:
            try:
                query = input("> ").strip()
            except EOFError:
                logger.info("EOF received; exiting.")
                break

            if not query:
                continue
            command = query.lower()
            if command in {"quit", "exit", "q"}:
                logger.info("User requested exit.")
                break
            if command == "history":
                _print_history(history)
                continue
            if command == "clear":
                history.clear()
                print("History cleared.\n")
                continue

            try:
                logger.info("Processing query: %s", query)
                _run_query(orchestrator, query, export_dir)
            except Exception as exc:
                logger.exception("Error while processing query: %s", exc)
                print(f"An error occurred: {exc}\n")
    finally:
        agent.close()

    logger.info("Session ended. Goodbye!")
    print("Goodbye!")


if __name__ == "__main__":
    main()
