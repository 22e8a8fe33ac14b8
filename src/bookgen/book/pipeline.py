"""LangGraph state machine driving outline, chapter, conclusion and assembly steps.

The graph mirrors the pipeline stages::

    load_checkpoint -> outline -> chapter (loops until every outline entry is
    written) -> conclusion -> assemble -> END

``load_checkpoint`` routes straight to the first unfinished step when a
checkpoint exists, so a resumed run never re-requests a chapter that was
already persisted. The checkpoint is saved after every completed step and is
only cleared once the PDF has been written. Cancellation is polled before each
step; cancelled and failed runs leave the last checkpoint in place.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypedDict

from langgraph.graph import END, START, StateGraph

from ..config import BookgenConfig
from ..errors import GenerationCancelled
from ..io import ArtifactIO
from ..llm.client import CompletionOptions, TextCompletionClient, TranscriptStore
from ..llm.providers import CompletionBackend, build_provider
from ..llm.rate_limit import RateLimiter
from ..llm.retry import RetryPolicy
from .assembly import DocumentAssembler, PdfRenderer
from .cancellation import CancellationRegistry
from .checkpoint import CheckpointStore, FileCheckpointStore
from .cleaning import TextCleaner
from .diagrams import DiagramRenderer
from .outline import FALLBACK_TITLES, OutlineAgent, render_outline_section
from .staging import StagingStore
from .state import GeneratedSection, GenerationRequest, PipelineStage, PipelineState
from .writing import (
    build_chapter_prompt,
    build_conclusion_prompt,
    extract_side_artifacts,
    format_chapter_section,
    format_conclusion_section,
    summarise_for_context,
)

__all__ = ["BookWorkflowState", "ChapterPipeline", "build_pipeline", "pdf_filename"]

logger = logging.getLogger(__name__)

PDF_TOPIC_CHARS = 30


class BookWorkflowState(TypedDict, total=False):
    session_id: str
    topic: str
    pipeline: PipelineState
    pdf_path: str


def pdf_filename(session_id: str, topic: str) -> str:
    safe_topic = re.sub(r"\s+", "_", topic[:PDF_TOPIC_CHARS].strip())
    safe_topic = re.sub(r"[^\w-]", "", safe_topic) or "book"
    return f"book_{session_id}_{safe_topic}.pdf"


@dataclass
class ChapterPipeline:
    """Generates one book per :class:`GenerationRequest`."""

    client: TextCompletionClient
    config: BookgenConfig = field(default_factory=BookgenConfig)
    checkpoints: CheckpointStore | None = None
    staging: StagingStore | None = None
    assembler: DocumentAssembler | None = None
    pdf_renderer: PdfRenderer | None = None
    cancellation: CancellationRegistry = field(default_factory=CancellationRegistry)
    cleaner: TextCleaner = field(default_factory=TextCleaner)
    io: ArtifactIO = field(default_factory=ArtifactIO)

    def __post_init__(self) -> None:
        paths = self.config.paths
        if self.checkpoints is None:
            self.checkpoints = FileCheckpointStore(paths.checkpoint_dir, self.io)
        if self.staging is None:
            self.staging = StagingStore(paths.staging_dir, self.io)
        if self.assembler is None:
            self.assembler = DocumentAssembler(DiagramRenderer(self.config.render), self.config.render)
        if self.pdf_renderer is None:
            self.pdf_renderer = PdfRenderer(self.config.render)
        self.outline_agent = OutlineAgent(self.client, self.config.outline, cleaner=self.cleaner)
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(BookWorkflowState)
        graph.add_node("load_checkpoint", self._node_load_checkpoint)
        graph.add_node("outline", self._node_outline)
        graph.add_node("chapter", self._node_chapter)
        graph.add_node("conclusion", self._node_conclusion)
        graph.add_node("assemble", self._node_assemble)

        routes = {
            "outline": "outline",
            "chapter": "chapter",
            "conclusion": "conclusion",
            "assemble": "assemble",
        }
        graph.add_edge(START, "load_checkpoint")
        graph.add_conditional_edges("load_checkpoint", self._route_next_step, routes)
        graph.add_conditional_edges("outline", self._route_next_step, routes)
        graph.add_conditional_edges("chapter", self._route_next_step, routes)
        graph.add_edge("conclusion", "assemble")
        graph.add_edge("assemble", END)
        return graph.compile()

    async def run(self, request: GenerationRequest) -> Path:
        """Run (or resume) the pipeline and return the path of the written PDF."""

        logger.info("Starting book %r for session %s", request.topic, request.session_id)
        initial_state: BookWorkflowState = {
            "session_id": request.session_id,
            "topic": request.topic,
        }
        # one graph step per chapter plus the fixed stages; resumed outlines may be longer than configured
        recursion_limit = max(self.config.outline.chapter_count, len(FALLBACK_TITLES)) + 10
        try:
            final_state = await self._graph.ainvoke(initial_state, config={"recursion_limit": recursion_limit})
        except GenerationCancelled:
            raise
        except Exception as exc:
            logger.error("Book generation failed for %s; checkpoint kept: %s", request.session_id, exc)
            raise
        pdf_path = Path(final_state["pdf_path"])
        logger.info(
            "Book completed for %s: %s (estimated cost $%.4f)",
            request.session_id,
            pdf_path,
            self.client.cost_tracker.total_cost,
        )
        return pdf_path

    async def generate(self, caller_id: str, raw_topic: str) -> Path:
        return await self.run(GenerationRequest.from_caller(caller_id, raw_topic))

    async def aclose(self) -> None:
        """Close the HTTP clients owned by the diagram and PDF renderers."""

        await self.assembler.diagram_renderer.close()
        await self.pdf_renderer.close()

    # graph nodes -----------------------------------------------------------------

    def _route_next_step(self, state: BookWorkflowState) -> str:
        pipeline = state["pipeline"]
        if not pipeline.outline_ready:
            return "outline"
        if pipeline.chapters_remaining > 0:
            return "chapter"
        if not pipeline.conclusion_ready:
            return "conclusion"
        return "assemble"

    async def _node_load_checkpoint(self, state: BookWorkflowState) -> BookWorkflowState:
        session_id = state["session_id"]
        pipeline = self.checkpoints.load(session_id)
        if pipeline is None:
            pipeline = PipelineState(topic=state["topic"])
            if self.client.transcripts is not None:
                self.client.transcripts.clear(session_id)
        else:
            logger.info(
                "Resuming %s from checkpoint: %d/%d chapters complete",
                session_id,
                pipeline.completed_chapter_count,
                len(pipeline.outline),
            )
        return {"pipeline": pipeline}

    async def _node_outline(self, state: BookWorkflowState) -> BookWorkflowState:
        session_id = state["session_id"]
        pipeline = state["pipeline"]
        self.cancellation.raise_if_cancelled(session_id)
        pipeline.stage = PipelineStage.OUTLINE_GENERATING
        logger.info("Generating outline for %r", pipeline.topic)

        result = await self.outline_agent.run(pipeline.topic, session_id=session_id)
        section = GeneratedSection("outline", 0, render_outline_section(result.entries))
        ref = self.staging.write(session_id, section)

        pipeline.outline = list(result.entries)
        pipeline.generated_section_refs = [ref]
        pipeline.outline_ready = True
        pipeline.stage = PipelineStage.OUTLINE_READY
        self.checkpoints.save(session_id, pipeline)
        return {"pipeline": pipeline}

    async def _node_chapter(self, state: BookWorkflowState) -> BookWorkflowState:
        session_id = state["session_id"]
        pipeline = state["pipeline"]
        self.cancellation.raise_if_cancelled(session_id)

        entry = pipeline.next_chapter()
        number = pipeline.completed_chapter_count + 1
        writing = self.config.writing
        pipeline.stage = PipelineStage.CHAPTER_GENERATING
        logger.info("Generating chapter %d/%d: %s", number, len(pipeline.outline), entry.title)

        prompt = build_chapter_prompt(
            pipeline.topic,
            number,
            entry,
            pipeline.running_context,
            include_side_artifacts=writing.side_artifacts,
        )
        options = CompletionOptions(
            min_length=writing.chapter_min_chars,
            max_output_tokens=writing.chapter_max_tokens,
            temperature=writing.temperature,
            top_p=self.config.llm.top_p,
            stage=f"chapter-{number}",
        )
        body = self.cleaner.clean(await self.client.complete(prompt, options, session_id=session_id))
        artifacts = {}
        if writing.side_artifacts:
            body, artifacts = extract_side_artifacts(body, number)

        section = GeneratedSection("chapter", number, format_chapter_section(number, entry.title, body))
        ref = self.staging.write(session_id, section)

        pipeline.generated_section_refs.append(ref)
        pipeline.completed_chapter_count = number
        pipeline.running_context = summarise_for_context(body, writing.summary_chars)
        pipeline.add_side_artifacts(artifacts)
        self.checkpoints.save(session_id, pipeline)
        return {"pipeline": pipeline}

    async def _node_conclusion(self, state: BookWorkflowState) -> BookWorkflowState:
        session_id = state["session_id"]
        pipeline = state["pipeline"]
        self.cancellation.raise_if_cancelled(session_id)
        writing = self.config.writing
        pipeline.stage = PipelineStage.CONCLUSION_GENERATING
        logger.info("Generating conclusion for %r", pipeline.topic)

        prompt = build_conclusion_prompt(pipeline.topic, pipeline.outline, pipeline.running_context)
        options = CompletionOptions(
            min_length=writing.conclusion_min_chars,
            max_output_tokens=writing.conclusion_max_tokens,
            temperature=writing.temperature,
            top_p=self.config.llm.top_p,
            stage="conclusion",
        )
        body = self.cleaner.clean(await self.client.complete(prompt, options, session_id=session_id))
        ref = self.staging.write(session_id, GeneratedSection("conclusion", 0, format_conclusion_section(body)))

        pipeline.generated_section_refs.append(ref)
        pipeline.conclusion_ready = True
        pipeline.stage = PipelineStage.ASSEMBLING
        self.checkpoints.save(session_id, pipeline)
        return {"pipeline": pipeline}

    async def _node_assemble(self, state: BookWorkflowState) -> BookWorkflowState:
        session_id = state["session_id"]
        pipeline = state["pipeline"]
        self.cancellation.raise_if_cancelled(session_id)
        pipeline.stage = PipelineStage.ASSEMBLING
        logger.info("Assembling %d sections for %s", len(pipeline.generated_section_refs), session_id)

        sections = self.staging.read_all(pipeline.generated_section_refs)
        document = await self.assembler.assemble(sections, pipeline.side_artifacts, title=pipeline.topic)
        pdf_bytes = await self.pdf_renderer.render(document)
        pdf_path = self.io.write_bytes(
            self.config.paths.pdf_dir / pdf_filename(session_id, pipeline.topic),
            pdf_bytes,
        )

        pipeline.stage = PipelineStage.COMPLETED
        self._cleanup(session_id, pipeline)
        return {"pipeline": pipeline, "pdf_path": str(pdf_path)}

    def _cleanup(self, session_id: str, pipeline: PipelineState) -> None:
        self.staging.delete(pipeline.generated_section_refs, session_id)
        self.checkpoints.clear(session_id)
        if self.client.transcripts is not None:
            self.client.transcripts.clear(session_id)
        self.client.rate_limiter.reset(session_id)
        # drop a cancel that arrived after the last step check
        self.cancellation.reset(session_id)


def build_pipeline(
    config: BookgenConfig | None = None,
    *,
    backend: CompletionBackend | None = None,
    cancellation: CancellationRegistry | None = None,
) -> ChapterPipeline:
    """Wire a pipeline from configuration, building the LangChain provider when needed."""

    config = config or BookgenConfig()
    paths = config.paths
    if backend is None:
        backend = build_provider(config.llm)
    client = TextCompletionClient(
        backend,
        rate_limiter=RateLimiter.from_config(config.rate_limit),
        retry_policy=RetryPolicy.from_config(config.retry),
        transcripts=TranscriptStore(paths.history_dir),
        min_reply_chars=config.retry.min_reply_chars,
        model_name=config.llm.model,
        defaults=CompletionOptions.from_config(config.llm),
        token_ceiling=config.llm.max_tokens,
    )
    return ChapterPipeline(
        client,
        config=config,
        cancellation=cancellation or CancellationRegistry(),
    )
