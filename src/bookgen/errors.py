"""Exception hierarchy shared by the bookgen pipeline."""

from __future__ import annotations

__all__ = [
    "BookgenError",
    "TransientBackendError",
    "TooShortResponse",
    "RetriesExhausted",
    "OutlineInvalid",
    "DiagramRenderFailure",
    "GenerationCancelled",
    "ExternalRenderFailure",
    "CorruptCheckpoint",
]


class BookgenError(RuntimeError):
    """Base error for every failure raised by the pipeline."""


class TransientBackendError(BookgenError):
    """Empty/short reply or transport error from the completion backend."""


class TooShortResponse(BookgenError):
    """Reply parsed fine but misses the caller's minimum-length contract."""

    def __init__(self, length: int, min_length: int) -> None:
        super().__init__(f"Response too short: {length} < {min_length}")
        self.length = length
        self.min_length = min_length


class RetriesExhausted(BookgenError):
    """Raised once the retry budget is spent; ``__cause__`` holds the last failure."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class OutlineInvalid(ValueError):
    """Parsed outline misses the chapter-count or subtopic contract."""


class DiagramRenderFailure(BookgenError):
    """The diagram service rejected a block or could not be reached."""


class GenerationCancelled(BookgenError):
    """The session's cancellation flag was observed between steps."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Generation cancelled for session '{session_id}'")
        self.session_id = session_id


class ExternalRenderFailure(BookgenError):
    """The PDF rendering service returned a non-2xx response."""

    def __init__(self, status_code: int | None, body: str) -> None:
        label = status_code if status_code is not None else "transport"
        super().__init__(f"PDF render error: {label} - {body}")
        self.status_code = status_code
        self.body = body


class CorruptCheckpoint(BookgenError):
    """Persisted checkpoint could not be decoded."""
