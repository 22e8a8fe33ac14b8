"""Dataclass-driven configuration for the bookgen pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable

from .paths import BookPathConfig

__all__ = [
    "LLMConfig",
    "RateLimitConfig",
    "RetryConfig",
    "OutlineConfig",
    "WritingConfig",
    "RenderConfig",
    "BookgenConfig",
]


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:  # pragma: no cover - malformed env value
        return default


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:  # pragma: no cover - malformed env value
        return default


@dataclass(slots=True)
class LLMConfig:
    """Configuration for the LangChain-backed completion backend."""

    model: str = field(default_factory=lambda: os.getenv("BOOKGEN_MODEL", "gpt-4o-mini"))
    base_url: str | None = field(
        default_factory=lambda: os.getenv("BOOKGEN_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    )
    temperature: float = field(default_factory=lambda: _env_float("BOOKGEN_TEMPERATURE", 0.7))
    top_p: float = 0.9
    max_tokens: int = field(default_factory=lambda: _env_int("BOOKGEN_MAX_TOKENS", 4000))
    timeout: float | None = field(default_factory=lambda: _env_float("BOOKGEN_TIMEOUT"))
    api_key_env: str = "BOOKGEN_API_KEY"
    fallback_api_key_envs: tuple[str, ...] = ("OPENAI_API_KEY",)

    def resolve_api_key(self, override: str | None = None) -> str | None:
        if override:
            return override
        env_candidates: Iterable[str | None] = (self.api_key_env, *self.fallback_api_key_envs)
        for name in env_candidates:
            if not name:
                continue
            value = os.getenv(name)
            if value:
                return value
        return None


@dataclass(slots=True)
class RateLimitConfig:
    """Sliding-window throttle applied to completion requests."""

    requests_per_minute: int = field(
        default_factory=lambda: _env_int("BOOKGEN_REQUESTS_PER_MINUTE", 15)
    )
    window_seconds: float = 60.0
    safety_margin_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")


@dataclass(slots=True)
class RetryConfig:
    """Retry budget shared by every completion call."""

    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    min_reply_chars: int = 50

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")


@dataclass(slots=True)
class OutlineConfig:
    """Outline generation and validation settings."""

    chapter_count: int = field(default_factory=lambda: _env_int("BOOKGEN_CHAPTER_COUNT", 10))
    min_subtopics: int = 3
    max_attempts: int = 5
    min_title_chars: int = 10
    max_tokens: int = 1000
    temperature: float = 0.3
    top_p: float = 0.8

    def __post_init__(self) -> None:
        if self.chapter_count < 1:
            raise ValueError("chapter_count must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass(slots=True)
class WritingConfig:
    """Chapter and conclusion generation settings."""

    chapter_min_chars: int = 1800
    chapter_max_tokens: int = 3500
    conclusion_min_chars: int = 1200
    conclusion_max_tokens: int = 2000
    temperature: float = 0.4
    summary_chars: int = 400
    side_artifacts: bool = True


@dataclass(slots=True)
class RenderConfig:
    """Endpoints for the external diagram and PDF rendering services."""

    diagram_url: str = field(
        default_factory=lambda: os.getenv("BOOKGEN_DIAGRAM_URL", "https://kroki.io/mermaid/svg")
    )
    pdf_url: str = field(
        default_factory=lambda: os.getenv("BOOKGEN_PDF_URL", "https://api.nutrient.io/build")
    )
    pdf_api_key: str | None = field(default_factory=lambda: os.getenv("BOOKGEN_PDF_API_KEY"))
    timeout: float = field(default_factory=lambda: _env_float("BOOKGEN_RENDER_TIMEOUT", 120.0))
    figure_scope: str = "chapter"

    def __post_init__(self) -> None:
        if self.figure_scope not in {"chapter", "global"}:
            raise ValueError("figure_scope must be 'chapter' or 'global'")


@dataclass(slots=True)
class BookgenConfig:
    """Primary configuration entry point for the book pipeline."""

    paths: BookPathConfig = field(default_factory=BookPathConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    outline: OutlineConfig = field(default_factory=OutlineConfig)
    writing: WritingConfig = field(default_factory=WritingConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    job_concurrency: int = field(default_factory=lambda: _env_int("BOOKGEN_JOB_CONCURRENCY", 1))

    def with_output_root(self, output_root: Path | str) -> "BookgenConfig":
        return replace(self, paths=self.paths.with_root(output_root))

    def with_chapter_count(self, chapter_count: int) -> "BookgenConfig":
        return replace(self, outline=replace(self.outline, chapter_count=chapter_count))

    def ensure_directories(self) -> "BookgenConfig":
        self.paths = self.paths.ensure()
        return self
