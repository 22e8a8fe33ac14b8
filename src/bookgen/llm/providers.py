"""Completion backends: the protocol the client talks to and its LangChain implementation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, List, Protocol

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ..config import LLMConfig

try:  # pragma: no cover - import guard for optional dependency
    from langchain_openai import ChatOpenAI
except ImportError:  # pragma: no cover - gracefully degrade when dependency missing
    ChatOpenAI = None  # type: ignore[assignment]

__all__ = [
    "AUTHOR_SYSTEM_PROMPT",
    "CompletionBackend",
    "ProviderError",
    "ProviderDependencyError",
    "ChatBackendSettings",
    "LangChainChatProvider",
    "build_provider",
]

AUTHOR_SYSTEM_PROMPT = (
    "You are a patient, precise technical author. Explain ideas step by step with clear "
    "examples, follow the requested formatting exactly, and stay on the requested topic."
)


class ProviderError(RuntimeError):
    """The chat backend could not be built or a request to it failed."""


class ProviderDependencyError(ProviderError):
    """Raised when required dependencies are unavailable."""


class CompletionBackend(Protocol):
    """Anything able to turn a prompt into a raw backend response."""

    async def agenerate(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float,
        top_p: float,
    ) -> Any:  # pragma: no cover - interface
        ...


@dataclass(frozen=True, slots=True)
class ChatBackendSettings:
    """Connection settings for the chat model; sampling parameters travel per request."""

    model: str
    base_url: str | None = None
    api_key: str | None = None
    timeout: float | None = None
    system_prompt: str | None = AUTHOR_SYSTEM_PROMPT

    @classmethod
    def from_config(cls, config: LLMConfig, **overrides: Any) -> "ChatBackendSettings":
        values = {
            "model": config.model,
            "base_url": config.base_url,
            "api_key": config.resolve_api_key(),
            "timeout": config.timeout,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self.model}
        optional = {"base_url": self.base_url, "api_key": self.api_key, "timeout": self.timeout}
        kwargs.update({key: value for key, value in optional.items() if value is not None and value != ""})
        return kwargs


class LangChainChatProvider:
    """Async completion backend over ``langchain_openai.ChatOpenAI``.

    One chat client serves every pipeline stage; ``max_tokens``, ``temperature``
    and ``top_p`` are bound per request so the low-temperature outline call and
    the long chapter calls share a connection. The raw LangChain message is
    returned untouched and reply extraction happens in the completion client.
    """

    def __init__(self, settings: ChatBackendSettings):
        if ChatOpenAI is None:
            raise ProviderDependencyError(
                "langchain-openai must be installed to talk to a chat model"
            )
        self.settings = settings
        try:
            self._client = ChatOpenAI(**settings.client_kwargs())  # type: ignore[arg-type]
        except Exception as exc:  # pragma: no cover - passthrough
            raise ProviderError(f"Could not create chat model '{settings.model}': {exc}") from exc

    @property
    def model(self) -> str:
        return self.settings.model

    def messages_for(self, prompt: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = [HumanMessage(content=prompt)]
        if self.settings.system_prompt:
            messages.insert(0, SystemMessage(content=self.settings.system_prompt))
        return messages

    async def agenerate(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float,
        top_p: float,
    ) -> Any:
        try:
            return await self._client.ainvoke(
                self.messages_for(prompt),
                max_tokens=max_tokens,
                temperature=temperature,
                top_p=top_p,
            )
        except Exception as exc:
            raise ProviderError(f"Completion request to '{self.model}' failed: {exc}") from exc


def build_provider(
    config: LLMConfig | None = None,
    *,
    model: str | None = None,
    api_key: str | None = None,
    system_prompt: str | None = AUTHOR_SYSTEM_PROMPT,
) -> LangChainChatProvider:
    """Build the chat backend from ``LLMConfig``; explicit arguments win over it."""

    settings = ChatBackendSettings.from_config(config or LLMConfig(), model=model, api_key=api_key)
    return LangChainChatProvider(replace(settings, system_prompt=system_prompt))
