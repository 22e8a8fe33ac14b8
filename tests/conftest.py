"""Shared fixtures for the test suite."""
from __future__ import annotations

from typing import Any, Callable, Iterable, Sequence

import httpx
import pytest

from bookgen.llm.client import TextCompletionClient, TranscriptStore
from bookgen.llm.cost import CostTracker, ModelPricing
from bookgen.llm.rate_limit import RateLimiter
from bookgen.llm.retry import RetryPolicy

ENV_VARS = {
    "BOOKGEN_MODEL",
    "OPENAI_MODEL",
    "BOOKGEN_API_KEY",
    "OPENAI_API_KEY",
    "BOOKGEN_BASE_URL",
    "OPENAI_BASE_URL",
    "BOOKGEN_TIMEOUT",
    "BOOKGEN_TEMPERATURE",
    "BOOKGEN_MAX_TOKENS",
    "BOOKGEN_REQUESTS_PER_MINUTE",
    "BOOKGEN_CHAPTER_COUNT",
    "BOOKGEN_DIAGRAM_URL",
    "BOOKGEN_PDF_URL",
    "BOOKGEN_PDF_API_KEY",
    "BOOKGEN_JOB_CONCURRENCY",
}


@pytest.fixture(autouse=True)
def _clear_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure provider and pipeline environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def dummy_chat_model(monkeypatch: pytest.MonkeyPatch):
    """Patch the LangChain chat client used by the provider abstraction."""

    from bookgen.llm import providers

    class DummyChatModel:
        def __init__(self, **kwargs: Any) -> None:
            self.kwargs = kwargs
            self.invocations: list[tuple[tuple[Any, ...], dict[str, Any]]] = []
            self.error: Exception | None = None

        async def ainvoke(self, messages: Iterable[Any], **kwargs: Any) -> dict[str, Any]:
            self.invocations.append((tuple(messages), dict(kwargs)))
            if self.error is not None:
                raise self.error
            return {"content": "dummy reply " * 10}

    monkeypatch.setattr(providers, "ChatOpenAI", DummyChatModel)
    return DummyChatModel


class ScriptedBackend:
    """Completion backend that replays canned replies and records every request."""

    model = "stub-model"

    def __init__(self, replies: Sequence[Any] | Callable[[str], Any]) -> None:
        self._replies = replies if callable(replies) else list(replies)
        self.calls: list[dict[str, Any]] = []

    async def agenerate(self, prompt: str, *, max_tokens: int, temperature: float, top_p: float) -> Any:
        self.calls.append(
            {"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature, "top_p": top_p}
        )
        if callable(self._replies):
            reply = self._replies(prompt)
        else:
            reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def prompts_containing(self, needle: str) -> list[str]:
        return [call["prompt"] for call in self.calls if needle in call["prompt"]]


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def scripted_backend() -> Callable[..., ScriptedBackend]:
    return ScriptedBackend


@pytest.fixture
def make_client(tmp_path) -> Callable[..., TextCompletionClient]:
    """Build a completion client whose rate limiter and retries never really sleep."""

    def _factory(backend: Any, *, max_attempts: int = 3, transcripts: bool = True) -> TextCompletionClient:
        return TextCompletionClient(
            backend,
            rate_limiter=RateLimiter(1000, sleep=_no_sleep),
            retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=0.0, sleep=_no_sleep),
            transcripts=TranscriptStore(tmp_path / "history") if transcripts else None,
        )

    return _factory


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Async HTTP client routed through ``httpx.MockTransport``."""

    def _factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _factory


@pytest.fixture
def dummy_cost_tracker() -> CostTracker:
    """Provide a cost tracker with deterministic pricing for tests."""

    pricing = {
        "stub-model": ModelPricing(prompt_per_1k=0.001, completion_per_1k=0.002),
        "alt-model": ModelPricing(prompt_per_1k=0.01, completion_per_1k=0.02),
    }
    return CostTracker(pricing=pricing)
