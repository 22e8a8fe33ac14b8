"""Ordered text-normalisation rules for generated markdown."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence

__all__ = ["CleaningRule", "DEFAULT_RULES", "TextCleaner", "clean_text"]

@dataclass(frozen=True, slots=True)
class CleaningRule:
    name: str
    apply: Callable[[str], str]


def _sub(pattern: str, replacement: str, flags: int = 0) -> Callable[[str], str]:
    compiled = re.compile(pattern, flags)

    def _apply(text: str) -> str:
        return compiled.sub(replacement, text)

    return _apply


PREAMBLE_PATTERN = re.compile(
    r"\A\s*(?:hi|hello|hey|sure|here)\b.*?\n[ \t]*\n\s*",
    re.IGNORECASE | re.DOTALL,
)
MATH_SPAN_PATTERN = re.compile(r"\\\[.*?\\\]|\\\(.*?\\\)", re.DOTALL)
ESCAPED_BRACKET_PATTERN = re.compile(r"\\+([\[\](){}])")


def strip_preamble(text: str) -> str:
    """Remove greeting lines ("Sure, here is...") up to the first blank line."""

    previous = None
    while previous != text:
        previous = text
        text = PREAMBLE_PATTERN.sub("", text, count=1)
    return text


def unescape_brackets(text: str) -> str:
    """Drop stray backslashes before brackets outside ``\\[..\\]``/``\\(..\\)`` math."""

    pieces: list[str] = []
    cursor = 0
    for match in MATH_SPAN_PATTERN.finditer(text):
        pieces.append(ESCAPED_BRACKET_PATTERN.sub(r"\1", text[cursor : match.start()]))
        pieces.append(match.group(0))
        cursor = match.end()
    pieces.append(ESCAPED_BRACKET_PATTERN.sub(r"\1", text[cursor:]))
    return "".join(pieces)


DEFAULT_RULES: tuple[CleaningRule, ...] = (
    CleaningRule("preamble", strip_preamble),
    CleaningRule(
        "structural-html",
        _sub(r"</?(?:header|footer|figure|figcaption)\b[^>]*>", "", re.IGNORECASE),
    ),
    CleaningRule(
        "toc-label",
        _sub(r"^[ \t#*]*Table of Contents[ \t*:]*$", "", re.IGNORECASE | re.MULTILINE),
    ),
    CleaningRule("digit-word-split", _sub(r"\b(\d+)([A-Z][A-Za-z]+)", r"\1 \2")),
    CleaningRule("escaped-brackets", unescape_brackets),
    CleaningRule("separator-lines", _sub(r"^[ \t]*[-=_~][-=_~ \t]{4,}$", "", re.MULTILINE)),
    # lines holding only whitespace or asterisks count as blank here
    CleaningRule("blank-runs", _sub(r"\n(?:[ \t*]*\n){2,}", "\n\n")),
    CleaningRule("dashes", _sub("[\u2013\u2014]", "-")),
    CleaningRule(
        "line-ends",
        _sub(r"^(?:[ \t]*\*+)+[ \t]*$|(?:[ \t]+\*+)+[ \t]*$|[ \t]+$", "", re.MULTILINE),
    ),
    CleaningRule("escaped-dollar", _sub(r"\\+(\$)", r"\1")),
    CleaningRule("trim", str.strip),
)


class TextCleaner:
    """Apply the cleaning rules in order.

    Rules can expose matches for earlier rules (removing a "Table of Contents"
    label may leave a greeting at the top), so the pipeline is repeated until
    the text stops changing.
    """

    def __init__(self, rules: Sequence[CleaningRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def apply_once(self, text: str) -> str:
        for rule in self.rules:
            text = rule.apply(text)
        return text

    def clean(self, raw_text: str) -> str:
        text = raw_text.replace("\r\n", "\n")
        while True:
            cleaned = self.apply_once(text)
            if cleaned == text:
                return text
            text = cleaned


_DEFAULT_CLEANER = TextCleaner()


def clean_text(raw_text: str) -> str:
    return _DEFAULT_CLEANER.clean(raw_text)
