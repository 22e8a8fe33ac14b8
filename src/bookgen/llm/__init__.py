"""Completion tooling for the bookgen pipeline."""

from .client import CompletionOptions, TextCompletionClient, TranscriptStore
from .cost import MODEL_PRICING, CostSnapshot, CostTracker, ModelPricing, TokenUsage
from .extraction import DEFAULT_STRATEGIES, ExtractionStrategy, RawResponse, extract_reply, strip_reasoning
from .providers import (
    CompletionBackend,
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderError,
    ChatBackendSettings,
    build_provider,
)
from .rate_limit import RateLimiter
from .retry import RETRYABLE_ERRORS, RetryPolicy

__all__ = [
    "CompletionOptions",
    "TextCompletionClient",
    "TranscriptStore",
    "MODEL_PRICING",
    "ModelPricing",
    "TokenUsage",
    "CostSnapshot",
    "CostTracker",
    "DEFAULT_STRATEGIES",
    "ExtractionStrategy",
    "RawResponse",
    "extract_reply",
    "strip_reasoning",
    "CompletionBackend",
    "LangChainChatProvider",
    "ProviderError",
    "ProviderDependencyError",
    "ChatBackendSettings",
    "build_provider",
    "RateLimiter",
    "RETRYABLE_ERRORS",
    "RetryPolicy",
]
