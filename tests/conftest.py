import pathlib
import sys
from typing import Iterable, List, Sequence, Union

# Ensure project root is on path so `import agents` succeeds when tests are
# run from a sub-directory.
ROOT_DIR = pathlib.Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest

from agents.store_history import InMemoryBlobStore, SearchHistory
from domain.companies import CompanyRecord


def make_companies(*names: str) -> List[CompanyRecord]:
    return [CompanyRecord(name=name, website=f"https://{name.lower().replace(' ', '')}.example") for name in names]


class ScriptedProvider:
    """Returns one scripted outcome per call; an exception outcome is raised."""

    def __init__(self, script: Iterable[Union[Sequence[CompanyRecord], BaseException]]) -> None:
        self._script = list(script)
        self.calls: List[List[str]] = []

    def fetch_batch(self, query: str, exclude_names: Sequence[str] = ()) -> List[CompanyRecord]:
        self.calls.append(list(exclude_names))
        if not self._script:
            return []
        outcome = self._script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)


@pytest.fixture
def history() -> SearchHistory:
    return SearchHistory(InMemoryBlobStore())
