"""Outline parsing, validation and the regeneration loop."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Sequence

from ..config import OutlineConfig
from ..errors import OutlineInvalid, RetriesExhausted
from ..llm.client import CompletionOptions, TextCompletionClient
from .cleaning import TextCleaner
from .state import ChapterOutlineEntry

__all__ = [
    "OutlineParser",
    "OutlineResult",
    "OutlineAgent",
    "validate_outline",
    "is_valid_outline",
    "fallback_outline",
    "render_outline_section",
    "build_outline_prompt",
]

logger = logging.getLogger(__name__)

CHAPTER_PATTERN = re.compile(r"^(?:#+\s*)?(?:\*\*)?Chapter\s+\d+\s*:\s*(.+)$", re.IGNORECASE)
ENUMERATED_PATTERN = re.compile(r"^(?:\d+[.):]|\d+\s+)\s*(.+)$")
BULLET_PATTERN = re.compile(r"^\s*[-•*·]\s+(.+)$")
BULLET_START_PATTERN = re.compile(r"^\s*[-•*·]")
TITLE_TRAILING_PATTERN = re.compile(r"[:–—*]+\s*$")
TITLE_NUMBER_PATTERN = re.compile(r"^\d+\.\s*")
GENERIC_TITLE_PATTERN = re.compile(r"^(introduction|chapter|basics|overview|conclusion)$", re.IGNORECASE)
FILLER_SUBTOPIC_PATTERN = re.compile(r"^(subtopic|section|part)", re.IGNORECASE)
TOPIC_QUALIFIER_PATTERN = re.compile(r"\bin\s+.*$", re.IGNORECASE)

FALLBACK_TITLES: tuple[str, ...] = (
    "Foundational Framework: Core Concepts, Terminology, and Theoretical Underpinnings",
    "Methodological Mastery: Essential Principles, Standards, and Workflow Design",
    "System Architecture: Component Analysis, Data Flows, and Interaction Models",
    "Practical Implementation: Hands-On Techniques, Tools, and Development Workflows",
    "Advanced Paradigms: Complex Topics, Research Frontiers, and Emerging Trends",
    "Industry Validation: Comprehensive Case Studies and Real-World Application Analysis",
    "Strategic Deployment: Phased Implementation, Change Management, and Adoption Strategies",
    "Performance Optimization: Benchmarking, Tuning, and Efficiency Maximization",
    "Reliability Engineering: Troubleshooting, Debugging, and Failure Recovery",
    "Innovation Landscape: Future Directions, Disruptive Technologies, and Market Evolution",
    "Ecosystem Architecture: Integration Patterns, API Design, and Interoperability Standards",
    "Quality Assurance Framework: Testing Strategies, Validation Protocols, and CI/CD",
    "Security Engineering: Threat Modeling, Risk Assessment, and Defense-in-Depth",
    "Scalability and Resilience: Distributed Design, Load Balancing, and Fault Tolerance",
    "Transformational Change: Next-Gen Research, Emerging Paradigms, and Strategic Vision",
)
FALLBACK_SUBTOPICS: tuple[str, ...] = (
    "Understanding the core concept",
    "Practical applications",
    "Common challenges and how to address them",
)


class OutlineParser:
    """Turn cleaned outline text into chapter entries.

    A non-indented ``Chapter N: Title`` or enumerated line opens a chapter;
    indented bullets under it become subtopics. Titles that are too short or
    generic are skipped, entries with too few subtopics are dropped and the
    result is truncated to ``max_chapters``.
    """

    def __init__(
        self,
        max_chapters: int = 10,
        *,
        min_subtopics: int = 3,
        min_title_chars: int = 10,
        min_subtopic_chars: int = 5,
    ) -> None:
        self.max_chapters = max_chapters
        self.min_subtopics = min_subtopics
        self.min_title_chars = min_title_chars
        self.min_subtopic_chars = min_subtopic_chars

    @classmethod
    def from_config(cls, config: OutlineConfig) -> "OutlineParser":
        return cls(
            config.chapter_count,
            min_subtopics=config.min_subtopics,
            min_title_chars=config.min_title_chars,
        )

    def parse(self, text: str) -> List[ChapterOutlineEntry]:
        lines = [line.rstrip() for line in text.splitlines() if line.strip()]
        drafts: list[tuple[str, list[str]]] = []
        current: tuple[str, list[str]] | None = None

        index = 0
        while index < len(lines):
            line = lines[index]
            index += 1
            # drop-cap artefact: a lone capital on its own line followed by the rest of the title
            if re.fullmatch(r"[A-Z]", line) and index < len(lines):
                following = lines[index]
                if len(following) > 5 and not re.match(r"^\s*[-•*·\d]", following) and not following.startswith(" "):
                    line = line + following
                    index += 1

            match = CHAPTER_PATTERN.match(line)
            if match is None and not BULLET_START_PATTERN.match(line):
                match = ENUMERATED_PATTERN.match(line)
            if match:
                title = self._clean_title(match.group(1))
                if self._is_usable_title(title):
                    if current is not None:
                        drafts.append(current)
                    current = (title, [])
                continue

            bullet = BULLET_PATTERN.match(line)
            if current is not None and bullet:
                subtopic = bullet.group(1).strip()
                if len(subtopic) > self.min_subtopic_chars and not FILLER_SUBTOPIC_PATTERN.match(subtopic):
                    current[1].append(subtopic)

        if current is not None:
            drafts.append(current)

        entries = [
            ChapterOutlineEntry(title=title, subtopics=subtopics)
            for title, subtopics in drafts
            if len(subtopics) >= self.min_subtopics
        ]
        logger.debug("Parsed %d usable chapters out of %d candidates", len(entries), len(drafts))
        return entries[: self.max_chapters]

    def _clean_title(self, raw: str) -> str:
        title = raw.strip().strip("*").strip()
        title = TITLE_TRAILING_PATTERN.sub("", title).strip()
        return TITLE_NUMBER_PATTERN.sub("", title)

    def _is_usable_title(self, title: str) -> bool:
        return len(title) > self.min_title_chars and not GENERIC_TITLE_PATTERN.match(title)


def validate_outline(
    entries: Sequence[ChapterOutlineEntry],
    chapter_count: int,
    *,
    min_subtopics: int = 3,
) -> None:
    """Raise :class:`OutlineInvalid` unless the outline meets the acceptance rule."""

    if len(entries) != chapter_count:
        raise OutlineInvalid(f"expected {chapter_count} chapters, got {len(entries)}")
    for position, entry in enumerate(entries, start=1):
        if len(entry.subtopics) < min_subtopics:
            raise OutlineInvalid(
                f"chapter {position} has {len(entry.subtopics)} subtopics, needs {min_subtopics}"
            )


def is_valid_outline(
    entries: Sequence[ChapterOutlineEntry],
    chapter_count: int,
    *,
    min_subtopics: int = 3,
) -> bool:
    try:
        validate_outline(entries, chapter_count, min_subtopics=min_subtopics)
    except OutlineInvalid:
        return False
    return True


def fallback_outline(topic: str, chapter_count: int = 10) -> List[ChapterOutlineEntry]:
    """Deterministic outline used when generation never yields a valid one.

    Short single-word topics (a language or product name) are appended to
    every title as ``" in <topic>"``.
    """

    clean_topic = TOPIC_QUALIFIER_PATTERN.sub("", topic).strip()
    looks_like_name = 2 < len(clean_topic) < 20 and " " not in clean_topic
    suffix = f" in {clean_topic}" if looks_like_name else ""

    titles = list(FALLBACK_TITLES)
    extra = 1
    while len(titles) < chapter_count:
        titles.append(f"Applied Practice {extra}: Extended Exercises, Review, and Projects")
        extra += 1

    return [
        ChapterOutlineEntry(title=f"{title}{suffix}", subtopics=list(FALLBACK_SUBTOPICS))
        for title in titles[:chapter_count]
    ]


def render_outline_section(entries: Sequence[ChapterOutlineEntry]) -> str:
    """Markdown for the "Table of Contents" section that opens the book."""

    blocks = []
    for number, entry in enumerate(entries, start=1):
        subtopics = "\n".join(f"   - {subtopic}" for subtopic in entry.subtopics)
        blocks.append(f"{number}. {entry.title}\n{subtopics}")
    return "# Table of Contents\n\n" + "\n\n".join(blocks) + "\n"


def build_outline_prompt(topic: str, chapter_count: int) -> str:
    return (
        f'Create a detailed table of contents for a book about "{topic}".\n'
        "REQUIREMENTS (FOLLOW EXACTLY):\n"
        f"- Output EXACTLY {chapter_count} chapters\n"
        '- Use the format: "Chapter X: Title" on its own line\n'
        "- Follow each chapter title with 3-5 subtopics, each on its own line, "
        'indented with 3 spaces and a dash: "   - Subtopic"\n'
        "- NO extra text, NO explanations, NO markdown\n"
        "- Make titles descriptive and unique\n"
        "- Example format:\n"
        "Chapter 1: Getting Started\n"
        "   - Core Concepts\n"
        "   - Practical Steps\n"
        "   - Common Mistakes\n"
        f"[... continues to Chapter {chapter_count}]"
    )


@dataclass(frozen=True, slots=True)
class OutlineResult:
    entries: List[ChapterOutlineEntry]
    attempts: int
    used_fallback: bool


class OutlineAgent:
    """Regenerate the outline until it is accepted, falling back after the budget."""

    def __init__(
        self,
        client: TextCompletionClient,
        config: OutlineConfig | None = None,
        *,
        cleaner: TextCleaner | None = None,
    ) -> None:
        self.client = client
        self.config = config or OutlineConfig()
        self.cleaner = cleaner or TextCleaner()
        self.parser = OutlineParser.from_config(self.config)

    def completion_options(self) -> CompletionOptions:
        return CompletionOptions(
            max_output_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            persist_transcript=True,
            stage="outline",
        )

    async def run(self, topic: str, *, session_id: str) -> OutlineResult:
        prompt = build_outline_prompt(topic, self.config.chapter_count)
        options = self.completion_options()

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                raw = await self.client.complete(prompt, options, session_id=session_id)
            except RetriesExhausted as exc:
                logger.warning("Outline attempt %d failed: %s", attempt, exc)
                continue

            logger.debug("Raw outline (attempt %d): %s", attempt, raw[:500])
            entries = self.parser.parse(self.cleaner.clean(raw))
            try:
                validate_outline(
                    entries,
                    self.config.chapter_count,
                    min_subtopics=self.config.min_subtopics,
                )
            except OutlineInvalid as exc:
                logger.warning("Outline attempt %d rejected: %s", attempt, exc)
                continue

            logger.info("Outline accepted on attempt %d", attempt)
            return OutlineResult(entries=entries, attempts=attempt, used_fallback=False)

        logger.warning(
            "Outline generation failed after %d attempts; using fallback for %r",
            self.config.max_attempts,
            topic,
        )
        return OutlineResult(
            entries=fallback_outline(topic, self.config.chapter_count),
            attempts=self.config.max_attempts,
            used_fallback=True,
        )
