"""Math-notation normalisation with code and table protection."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Pattern, Sequence

__all__ = [
    "SpanVault",
    "MathRule",
    "MATH_RULES",
    "PROTECTED_PATTERNS",
    "MATH_SPAN_PATTERNS",
    "normalize_math",
]

TABLE_PATTERN = re.compile(r"(?:^\|.+\|[ \t]*\n\|[-:\s|]+\|[ \t]*\n(?:\|.*\|[ \t]*(?:\n|$))*)", re.MULTILINE)
FENCED_CODE_PATTERN = re.compile(r"```.*?```", re.DOTALL)
INLINE_CODE_PATTERN = re.compile(r"`[^`\n]+`")
DISPLAY_MATH_PATTERN = re.compile(r"\$\$.+?\$\$", re.DOTALL)
INLINE_MATH_PATTERN = re.compile(r"(?<![\\$])\$(?!\s)[^$\n]+?(?<!\s)\$(?!\$)")

PROTECTED_PATTERNS: tuple[Pattern[str], ...] = (FENCED_CODE_PATTERN, TABLE_PATTERN, INLINE_CODE_PATTERN)
MATH_SPAN_PATTERNS: tuple[Pattern[str], ...] = (DISPLAY_MATH_PATTERN, INLINE_MATH_PATTERN)


class SpanVault:
    """Swap matched spans for opaque tokens and put them back later."""

    def __init__(self, prefix: str = "PROTECTED") -> None:
        self.prefix = prefix
        self._spans: List[str] = []

    def token(self, index: int) -> str:
        return f"@@{self.prefix}{index}@@"

    def stash(self, text: str, patterns: Sequence[Pattern[str]]) -> str:
        for pattern in patterns:
            text = pattern.sub(self._store, text)
        return text

    def _store(self, match: re.Match[str]) -> str:
        self._spans.append(match.group(0))
        return self.token(len(self._spans) - 1)

    def restore(self, text: str, transform: Callable[[str], str] | None = None) -> str:
        # reverse order so spans stashed inside other spans come back too
        for index in range(len(self._spans) - 1, -1, -1):
            span = self._spans[index]
            text = text.replace(self.token(index), transform(span) if transform else span)
        return text


@dataclass(frozen=True, slots=True)
class MathRule:
    name: str
    pattern: Pattern[str]
    replacement: str

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


MATH_RULES: tuple[MathRule, ...] = (
    MathRule("display-brackets", re.compile(r"\\\[(.+?)\\\]", re.DOTALL), r"$$\1$$"),
    MathRule("inline-parens", re.compile(r"\\\((.+?)\\\)"), r"$\1$"),
    MathRule("wedge-power", re.compile(r"\\wedge\b\s*"), "^"),
    MathRule("escaped-caret", re.compile(r"\{\\\^\}"), "^"),
)


def normalize_math(text: str, rules: Sequence[MathRule] = MATH_RULES) -> str:
    """Fold LaTeX-ish delimiters into ``$``/``$$`` outside code spans and tables."""

    vault = SpanVault()
    working = vault.stash(text, PROTECTED_PATTERNS)
    for rule in rules:
        working = rule.apply(working)
    return vault.restore(working)
