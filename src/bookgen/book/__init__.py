"""Book generation pipeline: outline, chapters, assembly and rendering."""

from .assembly import DocumentAssembler, PdfRenderer
from .cancellation import CancellationRegistry
from .checkpoint import CheckpointStore, FileCheckpointStore, InMemoryCheckpointStore
from .cleaning import TextCleaner, clean_text
from .diagrams import DiagramRenderer, FigureCounter
from .formatting import normalize_math
from .outline import (
    OutlineAgent,
    OutlineParser,
    OutlineResult,
    fallback_outline,
    is_valid_outline,
    render_outline_section,
    validate_outline,
)
from .pipeline import ChapterPipeline, build_pipeline
from .queue import Job, JobQueue
from .staging import StagingStore
from .state import (
    ChapterOutlineEntry,
    GeneratedSection,
    GenerationRequest,
    PipelineStage,
    PipelineState,
    RenderedDiagram,
    make_session_id,
    normalize_topic,
)

__all__ = [
    "DocumentAssembler",
    "PdfRenderer",
    "CancellationRegistry",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "TextCleaner",
    "clean_text",
    "DiagramRenderer",
    "FigureCounter",
    "normalize_math",
    "OutlineAgent",
    "OutlineParser",
    "OutlineResult",
    "fallback_outline",
    "is_valid_outline",
    "render_outline_section",
    "validate_outline",
    "ChapterPipeline",
    "build_pipeline",
    "Job",
    "JobQueue",
    "StagingStore",
    "ChapterOutlineEntry",
    "GeneratedSection",
    "GenerationRequest",
    "PipelineStage",
    "PipelineState",
    "RenderedDiagram",
    "make_session_id",
    "normalize_topic",
]
