"""Rate-limited, retrying text completion client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from ..config import LLMConfig
from ..errors import TooShortResponse, TransientBackendError
from ..io import ArtifactIO
from .cost import CostTracker, usage_from_response
from .extraction import extract_reply, strip_reasoning
from .providers import CompletionBackend
from .rate_limit import RateLimiter
from .retry import RetryPolicy

__all__ = ["CompletionOptions", "TranscriptStore", "TextCompletionClient"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionOptions:
    """Per-call generation contract."""

    min_length: int = 0
    max_output_tokens: int = 4000
    temperature: float = 0.7
    top_p: float = 0.9
    persist_transcript: bool = False
    stage: str = "completion"

    @classmethod
    def from_config(cls, config: LLMConfig, **overrides: Any) -> "CompletionOptions":
        return cls(
            max_output_tokens=config.max_tokens,
            temperature=config.temperature,
            top_p=config.top_p,
            **overrides,
        )


class TranscriptStore:
    """Per-session JSON log of prompt/reply pairs."""

    def __init__(self, directory: Path, io: ArtifactIO | None = None) -> None:
        self.directory = Path(directory)
        self.io = io or ArtifactIO()

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"history-{session_id}.json"

    def load(self, session_id: str) -> List[Dict[str, str]]:
        path = self.path_for(session_id)
        if not path.exists():
            return []
        try:
            payload = self.io.read_json(path)
        except ValueError as exc:
            logger.warning("Ignoring unreadable transcript %s: %s", path, exc)
            return []
        return payload if isinstance(payload, list) else []

    def append(self, session_id: str, prompt: str, reply: str) -> Path:
        messages = self.load(session_id)
        messages.append({"role": "user", "content": prompt})
        messages.append({"role": "assistant", "content": reply})
        return self.io.write_json(self.path_for(session_id), messages)

    def clear(self, session_id: str) -> bool:
        return self.io.delete(self.path_for(session_id))


class TextCompletionClient:
    """Send prompts through the throttle and retry policy and return clean text.

    Every attempt waits on the rate limiter under the session's key, so
    retries count against the same request budget as first attempts. Replies
    shorter than ``min_reply_chars`` are treated as transient backend errors;
    replies that parse but miss the caller's ``min_length`` raise
    :class:`TooShortResponse`. Both are retried. Calls without options use
    ``defaults``, and ``token_ceiling`` caps every request's ``max_tokens``.
    """

    def __init__(
        self,
        backend: CompletionBackend,
        *,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        transcripts: TranscriptStore | None = None,
        cost_tracker: CostTracker | None = None,
        min_reply_chars: int = 50,
        model_name: str | None = None,
        defaults: CompletionOptions | None = None,
        token_ceiling: int | None = None,
    ) -> None:
        self.backend = backend
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.transcripts = transcripts
        self.cost_tracker = cost_tracker or CostTracker()
        self.min_reply_chars = min_reply_chars
        self.model_name = model_name or getattr(backend, "model", None) or "unknown"
        self.defaults = defaults or CompletionOptions()
        self.token_ceiling = token_ceiling

    async def complete(
        self,
        prompt: str,
        options: CompletionOptions | None = None,
        *,
        session_id: str = "default",
    ) -> str:
        opts = options or self.defaults
        max_tokens = opts.max_output_tokens
        if self.token_ceiling is not None:
            max_tokens = min(max_tokens, self.token_ceiling)

        async def _attempt(attempt_number: int) -> str:
            await self.rate_limiter.wait(session_id)
            logger.debug("%s attempt %d for session %s", opts.stage, attempt_number, session_id)
            response = await self.backend.agenerate(
                prompt,
                max_tokens=max_tokens,
                temperature=opts.temperature,
                top_p=opts.top_p,
            )
            self._record_usage(response, opts.stage)
            reply = strip_reasoning(extract_reply(response))
            if len(reply) < self.min_reply_chars:
                raise TransientBackendError(
                    f"Empty or truncated reply ({len(reply)} chars) from completion backend"
                )
            if opts.min_length and len(reply) < opts.min_length:
                raise TooShortResponse(len(reply), opts.min_length)
            return reply

        reply = await self.retry_policy.run(_attempt, label=opts.stage)
        if opts.persist_transcript and self.transcripts is not None:
            self.transcripts.append(session_id, prompt, reply)
        logger.info("%s reply received (%d chars)", opts.stage, len(reply))
        return reply

    def _record_usage(self, response: Any, stage: str) -> None:
        usage = usage_from_response(response)
        if usage is None:
            return
        prompt_tokens, completion_tokens = usage
        self.cost_tracker.record(self.model_name, prompt_tokens, completion_tokens, stage=stage)
