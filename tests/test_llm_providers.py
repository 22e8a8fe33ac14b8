from __future__ import annotations

import pytest

from bookgen.config import LLMConfig
from bookgen.llm.providers import (
    AUTHOR_SYSTEM_PROMPT,
    ChatBackendSettings,
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderError,
    build_provider,
)


def test_default_provider_uses_config_model_only(dummy_chat_model) -> None:
    provider = build_provider()

    assert isinstance(provider, LangChainChatProvider)
    assert provider.model == "gpt-4o-mini"
    assert provider._client.kwargs == {"model": "gpt-4o-mini"}
    assert provider.settings.system_prompt == AUTHOR_SYSTEM_PROMPT


def test_connection_settings_come_from_llm_config(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("BOOKGEN_MODEL", "env-model")
    monkeypatch.setenv("OPENAI_API_KEY", "secret")
    monkeypatch.setenv("BOOKGEN_BASE_URL", "https://example.test/v1")
    monkeypatch.setenv("BOOKGEN_TIMEOUT", "12.5")

    provider = build_provider(LLMConfig())

    assert provider._client.kwargs == {
        "model": "env-model",
        "base_url": "https://example.test/v1",
        "api_key": "secret",
        "timeout": 12.5,
    }


def test_explicit_arguments_override_config(dummy_chat_model) -> None:
    config = LLMConfig(model="config-model")

    provider = build_provider(config, model="explicit-model", api_key="explicit-key")

    assert provider.model == "explicit-model"
    assert provider._client.kwargs["api_key"] == "explicit-key"


def test_blank_optional_settings_are_not_forwarded() -> None:
    settings = ChatBackendSettings(model="m", base_url="", api_key=None, timeout=None)

    assert settings.client_kwargs() == {"model": "m"}


@pytest.mark.asyncio
async def test_agenerate_binds_sampling_per_request(dummy_chat_model) -> None:
    provider = build_provider(system_prompt="Be brief.")

    response = await provider.agenerate("Write about trees", max_tokens=1000, temperature=0.3, top_p=0.8)

    assert response["content"].startswith("dummy reply")
    messages, kwargs = provider._client.invocations[-1]
    assert [message.content for message in messages] == ["Be brief.", "Write about trees"]
    assert kwargs == {"max_tokens": 1000, "temperature": 0.3, "top_p": 0.8}


@pytest.mark.asyncio
async def test_agenerate_wraps_backend_errors(dummy_chat_model) -> None:
    provider = build_provider(system_prompt=None)
    provider._client.error = ConnectionError("socket closed")

    with pytest.raises(ProviderError, match="socket closed"):
        await provider.agenerate("hi", max_tokens=10, temperature=0.1, top_p=1.0)

    messages, _ = provider._client.invocations[-1]
    assert len(messages) == 1


def test_missing_dependency_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    from bookgen.llm import providers

    monkeypatch.setattr(providers, "ChatOpenAI", None)

    with pytest.raises(ProviderDependencyError):
        LangChainChatProvider(ChatBackendSettings(model="m"))
