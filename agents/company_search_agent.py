"""
Company Search Agent (OpenAI + optional Tavily grounding)

- OpenAI model accessed through AutoGen's `OpenAIChatCompletionClient`.
- Structured output enforced with a pydantic schema (`CompanyBatch`).
- Transient provider failures (HTTP 429 and 5xx) retried with exponential backoff.
- Optional Tavily web search condensed into reference notes for the prompt.

Required env:
  - OPENAI_API_KEY (unless a model client is injected)
  - TAVILY_API_KEY (optional, enables web grounding)
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import openai
from autogen_core.models import ChatCompletionClient, ModelInfo, SystemMessage, UserMessage
from autogen_ext.models.openai import OpenAIChatCompletionClient
from pydantic import BaseModel, Field, ValidationError
from tavily import TavilyClient

from domain.companies import CompanyRecord

from .search_prompts import COMPANY_SEARCH_SYSTEM_PROMPT, company_search_prompt

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 2.0


class ProviderError(RuntimeError):
    """Raised when the model provider cannot deliver a usable batch."""

    retryable = False

    def __init__(self, *, status_code: Optional[int], message: str) -> None:
        prefix = f"Provider error {status_code}" if status_code is not None else "Provider error"
        super().__init__(f"{prefix}: {message}")
        self.status_code = status_code
        self.message = message


class TransientProviderError(ProviderError):
    """Rate limiting or a server-side failure; worth retrying."""

    retryable = True


class PermanentProviderError(ProviderError):
    """Bad request, auth failure, connection failure or a malformed response."""


def is_transient_status(status_code: Optional[int]) -> bool:
    return status_code is not None and (status_code == 429 or status_code >= 500)


class CompanyPayload(BaseModel):
    name: str = Field(..., description="Company name")
    website: str = Field(..., description="Website URL or N/A")
    linkedin: str = Field(..., description="LinkedIn company page URL or N/A")
    country: str = Field(..., description="Country or N/A")
    state: str = Field(..., description="State or region, or N/A")
    industry: str = Field(..., description="Industry or N/A")


class CompanyBatch(BaseModel):
    companies: List[CompanyPayload]


class CompanySearchAgent:
    """Fetches one batch of companies per call from an OpenAI-compatible model."""

    def __init__(
        self,
        *,
        openai_model_name: str = "gpt-5-nano",
        temperature: Optional[float] = None,
        model_client: Optional[ChatCompletionClient] = None,
        tavily_client: Optional[TavilyClient] = None,
        use_web_context: bool = True,
        tavily_max_results: int = 5,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if model_client is None:
            if not os.getenv("OPENAI_API_KEY"):
                raise EnvironmentError("OPENAI_API_KEY is not set.")
            logger.info("Initializing company search agent with OpenAI model '%s'", openai_model_name)
            model_client = self._build_openai_client(
                openai_model_name=openai_model_name,
                temperature=temperature,
            )
        self._model_client = model_client

        if tavily_client is None and use_web_context and os.getenv("TAVILY_API_KEY"):
            tavily_client = TavilyClient(api_key=os.environ["TAVILY_API_KEY"])
        self._tavily_client = tavily_client if use_web_context else None
        self._tavily_max_results = max(1, tavily_max_results)
        # (query, notes) for the search in progress only.
        self._web_context_slot: Optional[Tuple[str, str]] = None

        self._max_retries = max(0, max_retries)
        self._initial_backoff = initial_backoff
        self._sleep = sleep
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_lock = threading.Lock()

    def fetch_batch(self, query: str, exclude_names: Sequence[str] = ()) -> List[CompanyRecord]:
        """Ask the model for companies matching ``query`` that are not in ``exclude_names``.

        Returns an empty list when the model returns no data. Raises
        ``TransientProviderError`` once retries are exhausted and
        ``PermanentProviderError`` immediately for anything not worth retrying.
        """
        if not query or not query.strip():
            raise ValueError("Query must be a non-empty string.")

        cleaned_query = query.strip()
        names = [name for name in exclude_names if name and name.strip()]
        prompt = company_search_prompt(
            query=cleaned_query,
            exclude_names=names,
            web_context=self._web_context(cleaned_query, refresh=not names),
        )
        logger.info("Requesting company batch for '%s' (excluding %d names)", cleaned_query, len(names))
        records = self._with_retry(lambda: self._request_batch(prompt))
        logger.info("Provider returned %d companies.", len(records))
        return records

    def close(self) -> None:
        with self._loop_lock:
            self._close_loop()

    def _close_loop(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            close = getattr(self._model_client, "close", None)
            if callable(close):
                self._loop.run_until_complete(close())
            self._loop.close()
        self._loop = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _with_retry(self, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except ProviderError as exc:
                if not exc.retryable or attempt >= self._max_retries:
                    raise
                delay = self._initial_backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "API error (%s). Retry %d/%d in %.1fs.",
                    exc.status_code,
                    attempt,
                    self._max_retries,
                    delay,
                )
                self._sleep(delay)

    def _request_batch(self, prompt: str) -> List[CompanyRecord]:
        messages = [
            SystemMessage(content=COMPANY_SEARCH_SYSTEM_PROMPT),
            UserMessage(content=prompt, source="user"),
        ]
        try:
            result = self._run_async(self._model_client.create(messages, json_output=CompanyBatch))
        except openai.APIStatusError as exc:
            error_cls = TransientProviderError if is_transient_status(exc.status_code) else PermanentProviderError
            raise error_cls(status_code=exc.status_code, message=exc.message) from exc
        except openai.APIConnectionError as exc:
            raise PermanentProviderError(status_code=None, message=f"Connection failed: {exc}") from exc
        return self._parse_companies(result.content)

    def _parse_companies(self, content: Any) -> List[CompanyRecord]:
        if not isinstance(content, str):
            raise PermanentProviderError(status_code=None, message="Model returned a tool call instead of JSON.")
        text = self._strip_code_fence(content)
        if not text:
            logger.info("Provider returned no content; treating as an empty batch.")
            return []
        try:
            batch = CompanyBatch.model_validate_json(text)
        except ValidationError as exc:
            logger.debug("Unparseable provider payload: %s", text)
            raise PermanentProviderError(
                status_code=None,
                message=f"Response did not match the company schema ({exc.error_count()} errors).",
            ) from exc

        records: List[CompanyRecord] = []
        for payload in batch.companies:
            record = CompanyRecord.from_mapping(payload.model_dump())
            if record is not None:
                records.append(record)
        return records

    @staticmethod
    def _strip_code_fence(text: str) -> str:
        cleaned = text.strip()
        match = re.fullmatch(r"```(?:json)?\s*(.*?)\s*```", cleaned, flags=re.DOTALL)
        return match.group(1).strip() if match else cleaned

    def _web_context(self, query: str, *, refresh: bool) -> str:
        """Return web notes for ``query``, searching again when a new search starts."""
        if self._tavily_client is None:
            return ""
        slot = self._web_context_slot
        if not refresh and slot is not None and slot[0] == query:
            return slot[1]

        logger.info("Executing Tavily search for: %s", query)
        try:
            response = self._tavily_client.search(query=query, max_results=self._tavily_max_results)
        except Exception as exc:
            logger.warning("Tavily search failed; continuing without web context: %s", exc)
            return ""

        entries = response.get("results", []) if isinstance(response, dict) else []
        lines: List[str] = []
        for entry in entries[: self._tavily_max_results]:
            if not isinstance(entry, dict):
                continue
            title = entry.get("title") or entry.get("url") or "Result"
            summary = entry.get("content") or entry.get("snippet") or ""
            url = entry.get("url", "")
            citation = f" ({url})" if url else ""
            lines.append(f"- {title}: {summary}{citation}".strip())
        context = "\n".join(lines)
        self._web_context_slot = (query, context)
        return context

    def _run_async(self, coro: Any) -> Any:
        # One loop per agent; threads sharing the agent take turns on it.
        with self._loop_lock:
            if self._loop is None or self._loop.is_closed():
                self._loop = asyncio.new_event_loop()
            return self._loop.run_until_complete(coro)

    @staticmethod
    def _build_openai_client(
        *,
        openai_model_name: str,
        temperature: Optional[float],
    ) -> ChatCompletionClient:
        model_info: ModelInfo = {
            "vision": False,
            "function_calling": False,
            "json_output": True,
            "structured_output": True,
            "family": "openai",
        }
        client_kwargs: Dict[str, Any] = {
            "model": openai_model_name,
            "api_key": os.environ["OPENAI_API_KEY"],
            "base_url": os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1"),
            "include_name_in_message": False,
            "model_info": model_info,
            # The agent owns the retry schedule.
            "max_retries": 0,
        }
        if temperature is not None:
            client_kwargs["temperature"] = temperature
        return OpenAIChatCompletionClient(**client_kwargs)
