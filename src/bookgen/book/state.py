"""Data model shared by the book generation pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "FrozenBaseModel",
    "GenerationRequest",
    "ChapterOutlineEntry",
    "GeneratedSection",
    "RenderedDiagram",
    "PipelineStage",
    "PipelineState",
    "normalize_topic",
    "make_session_id",
    "sanitize_session_id",
]

REQUEST_PREFIX_PATTERN = re.compile(r"^(generate|create|write)( me)? (a book )?(about )?", re.IGNORECASE)
UNSAFE_ID_PATTERN = re.compile(r"[^A-Za-z0-9_-]+")
SESSION_TOPIC_CHARS = 50


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class ChapterOutlineEntry(FrozenBaseModel):
    """A single table-of-contents item."""

    title: str = Field(..., description="Chapter title without numbering.")
    subtopics: List[str] = Field(default_factory=list, description="Ordered subtopic lines.")


class RenderedDiagram(FrozenBaseModel):
    """Image produced for one diagram block, referenced by a placeholder token."""

    source_block_id: str
    encoded_image: str = Field(..., description="Base64 encoded image markup.")
    media_type: str = "image/svg+xml"
    caption: str = ""
    figure_number: str


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    topic: str
    session_id: str

    @classmethod
    def from_caller(cls, caller_id: str, raw_topic: str) -> "GenerationRequest":
        topic = normalize_topic(raw_topic)
        return cls(topic=topic, session_id=make_session_id(caller_id, topic))


@dataclass(frozen=True, slots=True)
class GeneratedSection:
    kind: Literal["outline", "chapter", "conclusion"]
    ordinal: int
    raw_text: str

    @property
    def name(self) -> str:
        if self.kind == "chapter":
            return f"chapter-{self.ordinal:02d}"
        return self.kind


class PipelineStage(str, Enum):
    NOT_STARTED = "not_started"
    OUTLINE_GENERATING = "outline_generating"
    OUTLINE_READY = "outline_ready"
    CHAPTER_GENERATING = "chapter_generating"
    CONCLUSION_GENERATING = "conclusion_generating"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PipelineState(BaseModel):
    """Checkpoint record persisted after every pipeline transition."""

    model_config = ConfigDict(extra="ignore")

    topic: str
    outline: List[ChapterOutlineEntry] = Field(default_factory=list)
    completed_chapter_count: int = Field(default=0, ge=0)
    generated_section_refs: List[str] = Field(default_factory=list)
    running_context: str = ""
    side_artifacts: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    outline_ready: bool = False
    conclusion_ready: bool = False
    stage: PipelineStage = PipelineStage.NOT_STARTED

    @property
    def chapters_remaining(self) -> int:
        return max(len(self.outline) - self.completed_chapter_count, 0)

    def next_chapter(self) -> ChapterOutlineEntry | None:
        if self.completed_chapter_count < len(self.outline):
            return self.outline[self.completed_chapter_count]
        return None

    def add_side_artifacts(self, artifacts: Dict[str, List[Dict[str, Any]]]) -> None:
        for channel, records in artifacts.items():
            if records:
                self.side_artifacts.setdefault(channel, []).extend(records)


def normalize_topic(raw_topic: str) -> str:
    """Strip request phrasing such as ``"write me a book about"`` from a topic."""

    topic = REQUEST_PREFIX_PATTERN.sub("", raw_topic.strip()).strip()
    return topic or raw_topic.strip()


def sanitize_session_id(session_id: str) -> str:
    cleaned = UNSAFE_ID_PATTERN.sub("_", session_id.strip()).strip("_")
    if not cleaned:
        raise ValueError("session id must contain at least one safe character")
    return cleaned


def make_session_id(caller_id: str, topic: str) -> str:
    slug = re.sub(r"\s+", "_", topic.strip()).lower()[:SESSION_TOPIC_CHARS]
    return sanitize_session_id(f"{caller_id}-{slug}")
