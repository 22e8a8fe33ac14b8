"""bookgen package: AI-assisted book generation with resumable checkpoints."""

from .book import (
    ChapterOutlineEntry,
    ChapterPipeline,
    GenerationRequest,
    JobQueue,
    PipelineState,
    build_pipeline,
)
from .config import (
    BookgenConfig,
    LLMConfig,
    OutlineConfig,
    RateLimitConfig,
    RenderConfig,
    RetryConfig,
    WritingConfig,
)
from .errors import (
    BookgenError,
    CorruptCheckpoint,
    DiagramRenderFailure,
    ExternalRenderFailure,
    GenerationCancelled,
    OutlineInvalid,
    RetriesExhausted,
    TooShortResponse,
    TransientBackendError,
)
from .llm import RateLimiter, RetryPolicy, TextCompletionClient
from .paths import BookPathConfig

__all__ = [
    "ChapterOutlineEntry",
    "ChapterPipeline",
    "GenerationRequest",
    "JobQueue",
    "PipelineState",
    "build_pipeline",
    "BookgenConfig",
    "LLMConfig",
    "OutlineConfig",
    "RateLimitConfig",
    "RenderConfig",
    "RetryConfig",
    "WritingConfig",
    "BookgenError",
    "CorruptCheckpoint",
    "DiagramRenderFailure",
    "ExternalRenderFailure",
    "GenerationCancelled",
    "OutlineInvalid",
    "RetriesExhausted",
    "TooShortResponse",
    "TransientBackendError",
    "RateLimiter",
    "RetryPolicy",
    "TextCompletionClient",
    "BookPathConfig",
]
