"""Prompt builders and post-processing for chapter and conclusion sections.

Chapters are generated strictly in outline order. Each prompt receives the
running context, a short summary of the previous chapter, so later chapters
can refer back to earlier material without resending full chapter text.

When side artifacts are enabled the chapter prompt also asks for a
``### Key Terms`` list and a ``### Quiz`` block. Both are lifted out of the
chapter body by :func:`extract_side_artifacts` and collected into trailing
Glossary and Quiz sections at assembly time.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Sequence, Tuple

from .state import ChapterOutlineEntry

logger = logging.getLogger(__name__)

__all__ = [
    "FIRST_CHAPTER_CONTEXT",
    "build_chapter_prompt",
    "build_conclusion_prompt",
    "summarise_for_context",
    "extract_side_artifacts",
    "format_chapter_section",
    "format_conclusion_section",
]

FIRST_CHAPTER_CONTEXT = "This is the first chapter; no earlier material has been covered yet."

CODE_FENCE_PATTERN = re.compile(r"```.*?```", re.DOTALL)
HEADING_LINE_PATTERN = re.compile(r"^#{1,6}\s.*$", re.MULTILINE)
SENTENCE_SPLIT_PATTERN = re.compile(r"(?<=[.!?])\s+")
SIDE_SECTION_TEMPLATE = r"^#{{2,4}}\s*{label}\s*:?\s*$"
NEXT_HEADING_PATTERN = re.compile(r"^#{1,4}\s", re.MULTILINE)
GLOSSARY_LINE_PATTERN = re.compile(r"^\s*[-*]\s+\*\*(.+?)\*\*\s*[:\-]\s*(.+)$")
QUIZ_QUESTION_PATTERN = re.compile(r"^\s*(\d+)[.)]\s+(.+)$")
QUIZ_ANSWER_PATTERN = re.compile(r"^\s*[-*]?\s*\**Answer\**\s*:\**\s*(.+)$", re.IGNORECASE)


def build_chapter_prompt(
    topic: str,
    chapter_number: int,
    entry: ChapterOutlineEntry,
    running_context: str,
    *,
    include_side_artifacts: bool = True,
) -> str:
    subtopic_list = "\n".join(f"- {subtopic}" for subtopic in entry.subtopics)
    context = running_context.strip() or FIRST_CHAPTER_CONTEXT
    lines = [
        f'Write Chapter {chapter_number}: "{entry.title}" for a book about "{topic}".',
        "",
        "PREVIOUSLY COVERED (build on this, do not repeat it):",
        context,
        "",
        "CRITICAL FORMATTING RULES:",
        f'- Start with EXACTLY ONE heading: "## {entry.title}"',
        "- Do NOT repeat the title as a second heading",
        "- Use ### for ALL subsections",
        "- ALL tables MUST use strict GitHub Markdown table syntax",
        "- NO trailing asterisks (*) on any lines",
        "- NO HTML tags like <header> or <footer>",
        "- 600+ words total",
        "",
        "MATH FORMATTING RULES:",
        "- Use LaTeX for ALL mathematical expressions.",
        "- Wrap inline math in single dollar signs, e.g. $E = mc^2$.",
        "- Wrap block math in double dollar signs, e.g. $$x = \\frac{-b \\pm \\sqrt{b^2 - 4ac}}{2a}$$",
        "- Do NOT escape the dollar signs and do NOT double LaTeX backslashes.",
        "",
        "DIAGRAMS (optional):",
        "- Put each diagram in a ```mermaid fenced block.",
        '- Follow the closing fence with one line "Figure: <short caption>".',
        "",
        "MANDATORY CONTENT STRUCTURE:",
        "1) Introduction: A brief overview of the chapter.",
        "2) KEY SECTIONS: create a ### subsection for EACH of the following subtopics:",
        subtopic_list,
        "",
        "3) Practical Application/Exercise: A real-world example or exercise.",
        "4) Further Reading: 2-3 references.",
    ]
    if include_side_artifacts:
        lines.extend(
            [
                '5) "### Key Terms": 3-6 lines formatted as "- **Term**: definition".',
                '6) "### Quiz": 3 numbered questions, each followed by a line "Answer: ...".',
            ]
        )
    lines.extend(["", "Output ONLY the chapter content."])
    return "\n".join(lines)


def build_conclusion_prompt(
    topic: str,
    entries: Sequence[ChapterOutlineEntry],
    running_context: str = "",
) -> str:
    titles = ", ".join(entry.title for entry in entries)
    lines = [
        f'Write a professional conclusion for a book about "{topic}".',
        f"Summarize these key topics: {titles}",
    ]
    if running_context.strip():
        lines.append(f"The final chapter ended with: {running_context.strip()}")
    lines.extend(
        [
            "Include 3-5 authoritative resources with descriptions.",
            "",
            "Use natural language and focus on summarizing the core concepts.",
            "300-350 words, formal tone.",
            "",
            "Output ONLY the conclusion content.",
        ]
    )
    return "\n".join(lines)


def summarise_for_context(text: str, limit: int = 400) -> str:
    """Collapse a chapter to its leading sentences, roughly ``limit`` characters long."""

    prose = CODE_FENCE_PATTERN.sub(" ", text)
    prose = HEADING_LINE_PATTERN.sub(" ", prose)
    collapsed = " ".join(prose.split())
    if len(collapsed) <= limit:
        return collapsed

    summary: list[str] = []
    total_length = 0
    for sentence in (s.strip() for s in SENTENCE_SPLIT_PATTERN.split(collapsed)):
        if not sentence:
            continue
        summary.append(sentence)
        total_length += len(sentence)
        if total_length >= limit:
            break
    result = " ".join(summary).strip()
    if len(result) > limit * 2:
        result = result[: limit * 2].rsplit(" ", 1)[0] + "..."
    return result


def _split_out_section(text: str, label: str) -> Tuple[str, str | None]:
    heading = re.compile(SIDE_SECTION_TEMPLATE.format(label=label), re.IGNORECASE | re.MULTILINE)
    match = heading.search(text)
    if match is None:
        return text, None
    following = NEXT_HEADING_PATTERN.search(text, match.end())
    end = following.start() if following else len(text)
    section = text[match.end() : end]
    remaining = (text[: match.start()].rstrip() + "\n\n" + text[end:].lstrip()).strip()
    return remaining, section


def _parse_glossary(section: str, chapter: int) -> List[Dict[str, Any]]:
    records = []
    for line in section.splitlines():
        match = GLOSSARY_LINE_PATTERN.match(line)
        if match:
            records.append(
                {"term": match.group(1).strip(), "definition": match.group(2).strip(), "chapter": chapter}
            )
    return records


def _parse_quiz(section: str, chapter: int) -> List[Dict[str, Any]]:
    records: list[Dict[str, Any]] = []
    for line in section.splitlines():
        answer = QUIZ_ANSWER_PATTERN.match(line)
        if answer and records:
            records[-1]["answer"] = answer.group(1).strip().strip("*").strip()
            continue
        question = QUIZ_QUESTION_PATTERN.match(line)
        if question:
            records.append({"question": question.group(2).strip(), "answer": "", "chapter": chapter})
    return records


def extract_side_artifacts(text: str, chapter: int) -> Tuple[str, Dict[str, List[Dict[str, Any]]]]:
    """Remove Key Terms and Quiz sections from *text* and return them as records."""

    body, glossary_section = _split_out_section(text, "Key Terms")
    body, quiz_section = _split_out_section(body, "Quiz")
    artifacts: Dict[str, List[Dict[str, Any]]] = {
        "glossary": _parse_glossary(glossary_section, chapter) if glossary_section else [],
        "quiz": _parse_quiz(quiz_section, chapter) if quiz_section else [],
    }
    if glossary_section is not None or quiz_section is not None:
        logger.debug(
            "Chapter %d side artifacts: %d terms, %d questions",
            chapter,
            len(artifacts["glossary"]),
            len(artifacts["quiz"]),
        )
    return body, artifacts


def format_chapter_section(chapter_number: int, title: str, body: str) -> str:
    return f"# Chapter {chapter_number}: {title}\n\n{body.strip()}\n"


def format_conclusion_section(body: str) -> str:
    return f"# Conclusion\n\n{body.strip()}\n"
