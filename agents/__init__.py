"""
Agents package for the Beagle Search project.

This package groups the provider adapter, the batch orchestrator and the
search history store.  Import them directly from here to simplify access:

```python
from agents import BatchOrchestrator, CompanySearchAgent

orchestrator = BatchOrchestrator(provider=CompanySearchAgent())
final = orchestrator.run_to_completion("solar installers in Texas")
```
"""

from .batch_orchestrator import (  # noqa: F401
    BatchOrchestrator,
    NoResultsError,
    SearchError,
    SessionError,
)
from .company_search_agent import (  # noqa: F401
    CompanySearchAgent,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)
from .store_history import (  # noqa: F401
    FileBlobStore,
    HistoryEntry,
    InMemoryBlobStore,
    SearchHistory,
)

__all__ = [
    "BatchOrchestrator",
    "CompanySearchAgent",
    "FileBlobStore",
    "HistoryEntry",
    "InMemoryBlobStore",
    "NoResultsError",
    "PermanentProviderError",
    "ProviderError",
    "SearchError",
    "SearchHistory",
    "SessionError",
    "TransientProviderError",
]
