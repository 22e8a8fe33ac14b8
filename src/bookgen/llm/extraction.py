"""Reply extraction for the differently shaped responses completion backends return.

Each strategy looks for the reply text at one known location and answers
``None`` when the response does not have that shape. Strategies are tried in
order; when none matches the reply is treated as empty, which the completion
client turns into a retry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

__all__ = [
    "RawResponse",
    "ExtractionStrategy",
    "DEFAULT_STRATEGIES",
    "extract_reply",
    "strip_reasoning",
]

_MISSING = object()
REASONING_PATTERN = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)


class RawResponse:
    """Read-only view over an unknown backend payload.

    ``lookup`` walks a path of attribute names, mapping keys and sequence
    indices, returning ``None`` as soon as a step does not resolve.
    """

    def __init__(self, payload: Any) -> None:
        self.payload = payload

    def lookup(self, *path: str | int) -> Any:
        current = self.payload
        for step in path:
            current = _step(current, step)
            if current is _MISSING:
                return None
        return current


def _step(value: Any, step: str | int) -> Any:
    if value is None:
        return _MISSING
    if isinstance(step, int):
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            return value[step] if -len(value) <= step < len(value) else _MISSING
        return _MISSING
    if isinstance(value, Mapping):
        return value.get(step, _MISSING)
    return getattr(value, step, _MISSING)


@dataclass(frozen=True, slots=True)
class ExtractionStrategy:
    name: str
    extract: Callable[[RawResponse], str | None]


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    return None


def _plain_string(response: RawResponse) -> str | None:
    return _as_text(response.payload)


def _response_text_accessor(response: RawResponse) -> str | None:
    accessor = response.lookup("response", "text")
    if callable(accessor):
        return _as_text(accessor())
    return None


def _candidate_parts(response: RawResponse) -> str | None:
    return _as_text(response.lookup("candidates", 0, "content", "parts", 0, "text"))


def _output_array(response: RawResponse) -> str | None:
    output = response.lookup("output")
    if not isinstance(output, Sequence) or isinstance(output, (str, bytes)):
        return None
    pieces: list[str] = []
    for item in output:
        view = RawResponse(item)
        text = view.lookup("content") or view.lookup("text") or ""
        if isinstance(text, str):
            pieces.append(text)
    return "\n".join(pieces)


def _chat_choices(response: RawResponse) -> str | None:
    return _as_text(response.lookup("choices", 0, "message", "content"))


def _message_content(response: RawResponse) -> str | None:
    content = response.lookup("content")
    if isinstance(content, str):
        return content
    if isinstance(content, Sequence) and not isinstance(content, bytes):
        chunks: list[str] = []
        for part in content:
            if isinstance(part, str):
                chunks.append(part)
            elif isinstance(part, Mapping) and isinstance(part.get("text"), str):
                chunks.append(part["text"])
        return "".join(chunks)
    return None


def _text_field(response: RawResponse) -> str | None:
    text = response.lookup("text")
    if callable(text):
        text = text()
    return _as_text(text)


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    ExtractionStrategy("plain-string", _plain_string),
    ExtractionStrategy("response.text()", _response_text_accessor),
    ExtractionStrategy("candidates[0].content.parts[0].text", _candidate_parts),
    ExtractionStrategy("output[]", _output_array),
    ExtractionStrategy("choices[0].message.content", _chat_choices),
    ExtractionStrategy("message.content", _message_content),
    ExtractionStrategy("text", _text_field),
)


def extract_reply(
    payload: Any,
    strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES,
) -> str:
    """Return the first non-empty reply any strategy finds, else ``""``."""

    response = RawResponse(payload)
    for strategy in strategies:
        text = strategy.extract(response)
        if text and text.strip():
            return text.strip()
    return ""


def strip_reasoning(text: str) -> str:
    """Drop ``<think>`` blocks some reasoning models prepend to the reply."""

    return REASONING_PATTERN.sub("", text).strip()
