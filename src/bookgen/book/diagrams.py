"""Render fenced mermaid blocks through an external diagram service."""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import httpx

from ..config import RenderConfig
from ..errors import DiagramRenderFailure
from .state import RenderedDiagram

__all__ = [
    "DIAGRAM_BLOCK_PATTERN",
    "FigureCounter",
    "DiagramRenderer",
    "repair_diagram_source",
    "placeholder_token",
    "PLACEHOLDER_PATTERN",
]

logger = logging.getLogger(__name__)

DIAGRAM_BLOCK_PATTERN = re.compile(
    r"```mermaid[ \t]*\n(?P<source>.*?)\n[ \t]*```[ \t]*"
    r"(?:\n[ \t]*[*_]*Figure(?:\s+[\d.]+)?\s*:\s*(?P<caption>[^\n]*?)[*_]*[ \t]*(?=\n|$))?",
    re.DOTALL,
)
PLACEHOLDER_PATTERN = re.compile(r"@@DIAGRAM:(?P<block_id>[\w.-]+)@@")

# Node labels that contain parentheses must be quoted: A[Label (x)] -> A["Label (x)"]
UNQUOTED_SQUARE_LABEL = re.compile(r"(\b\w+)\[(?![(\[/\\\"])([^\]\"\n]*\([^\]\"\n]*)\]")
UNQUOTED_DIAMOND_LABEL = re.compile(r"(\b\w+)\{(?![{\"])([^}\"\n]*\([^}\"\n]*)\}")
DANGLING_EDGE = re.compile(r"[ \t]*(?:-->|---|==>|-\.->)(?:\|[^|\n]*\|)?[ \t]*$", re.MULTILINE)


def repair_diagram_source(source: str) -> str:
    """Apply deterministic fixes for syntax models commonly get wrong."""

    repaired = UNQUOTED_SQUARE_LABEL.sub(r'\1["\2"]', source)
    repaired = UNQUOTED_DIAMOND_LABEL.sub(r'\1{"\2"}', repaired)
    repaired = DANGLING_EDGE.sub("", repaired)
    return repaired.strip()


def placeholder_token(block_id: str) -> str:
    return f"@@DIAGRAM:{block_id}@@"


@dataclass(slots=True)
class FigureCounter:
    """Figure numbers for one document: ``N.k`` inside chapter N, ``k`` elsewhere."""

    _per_chapter: Dict[int, int] = field(default_factory=dict)
    _global: int = 0

    def next(self, chapter: int | None = None) -> str:
        if chapter is None:
            self._global += 1
            return str(self._global)
        count = self._per_chapter.get(chapter, 0) + 1
        self._per_chapter[chapter] = count
        return f"{chapter}.{count}"


class DiagramRenderer:
    """POST each diagram block to the rendering service and swap in placeholders.

    Failed blocks are dropped from the text and logged; they never fail the
    surrounding document.
    """

    def __init__(
        self,
        config: RenderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or RenderConfig()
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "DiagramRenderer":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def render_source(self, source: str) -> bytes:
        client = await self._get_client()
        try:
            response = await client.post(
                self.config.diagram_url,
                content=source.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DiagramRenderFailure(
                f"Diagram service returned {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.RequestError as exc:
            raise DiagramRenderFailure(f"Diagram service unreachable: {exc!r}") from exc
        return response.content

    async def render_all(
        self,
        text: str,
        *,
        chapter: int | None = None,
        counter: FigureCounter | None = None,
    ) -> Tuple[str, List[RenderedDiagram]]:
        counter = counter or FigureCounter()
        diagrams: list[RenderedDiagram] = []
        pieces: list[str] = []
        cursor = 0

        for match in DIAGRAM_BLOCK_PATTERN.finditer(text):
            pieces.append(text[cursor : match.start()])
            cursor = match.end()
            source = repair_diagram_source(match.group("source"))
            caption = (match.group("caption") or "").strip()
            try:
                image = await self.render_source(source)
            except DiagramRenderFailure as exc:
                logger.warning("Dropping diagram block (chapter %s): %s", chapter, exc)
                continue

            figure_number = counter.next(chapter)
            block_id = f"fig-{figure_number}"
            diagrams.append(
                RenderedDiagram(
                    source_block_id=block_id,
                    encoded_image=base64.b64encode(image).decode("ascii"),
                    caption=caption,
                    figure_number=figure_number,
                )
            )
            pieces.append(f"\n\n{placeholder_token(block_id)}\n\n")

        pieces.append(text[cursor:])
        return "".join(pieces), diagrams
