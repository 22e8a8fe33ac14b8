"""Combine generated sections into one HTML document and render it to PDF."""

from __future__ import annotations

import html
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Sequence

import httpx
import markdown

from ..config import RenderConfig
from ..errors import ExternalRenderFailure
from .diagrams import DiagramRenderer, FigureCounter, PLACEHOLDER_PATTERN
from .formatting import FENCED_CODE_PATTERN, INLINE_CODE_PATTERN, MATH_SPAN_PATTERNS, SpanVault, normalize_math
from .state import RenderedDiagram

__all__ = [
    "SECTION_BREAK",
    "MARKDOWN_EXTENSIONS",
    "DocumentAssembler",
    "PdfRenderer",
    "render_glossary_section",
    "render_quiz_sections",
    "build_pdf_instructions",
]

logger = logging.getLogger(__name__)

SECTION_BREAK = '<div class="chapter-break"></div>'
MARKDOWN_EXTENSIONS = ["tables", "fenced_code", "toc"]
CHAPTER_HEADING_PATTERN = re.compile(r"^#\s+Chapter\s+(\d+)\s*:", re.MULTILINE)
PLACEHOLDER_PARAGRAPH_PATTERN = re.compile(r"(?:<p>\s*)?@@DIAGRAM:(?P<block_id>[\w.-]+)@@(?:\s*</p>)?")
DISCLAIMER = "Caution: AI-generated content may contain errors"

HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <script>
    window.MathJax = {{
      tex: {{ inlineMath: [['$', '$'], ['\\\\(', '\\\\)']], displayMath: [['$$', '$$']] }},
      svg: {{ fontCache: 'none', scale: 0.95 }}
    }};
  </script>
  <script id="MathJax-script" async src="https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-mml-chtml.js"></script>
  <style>
    @page {{ margin: 90px 70px 80px 70px; size: A4; }}
    body {{ font-family: Georgia, serif; font-size: 14px; line-height: 1.8; color: #1f2937; text-align: justify; }}
    .cover-page {{ display: flex; flex-direction: column; justify-content: center; align-items: center;
      height: 100vh; page-break-after: always; text-align: center; }}
    .cover-title {{ font-size: 44px; font-weight: 700; margin-bottom: 0.3em; }}
    .cover-subtitle {{ font-size: 22px; font-weight: 300; margin-bottom: 2em; }}
    .cover-disclaimer {{ margin-top: 30px; font-size: 12px; color: #b91c1c; font-style: italic; }}
    .chapter-break {{ page-break-before: always; }}
    h1 {{ font-size: 28px; border-bottom: 3px solid #667eea; padding-bottom: 15px; }}
    h2 {{ font-size: 22px; border-bottom: 2px solid #e5e7eb; padding-bottom: 8px; }}
    h3 {{ font-size: 18px; color: #4b5563; }}
    pre {{ background: #1f2937; color: #e5e7eb; padding: 20px; border-radius: 8px; white-space: pre-wrap; }}
    code {{ font-family: 'Fira Code', 'Courier New', monospace; font-size: 13px; }}
    table {{ width: 100%; border-collapse: collapse; margin: 2em 0; }}
    th {{ background: #374151; color: white; padding: 12px; text-align: left; }}
    td {{ padding: 12px; border-bottom: 1px solid #e5e7eb; }}
    figure.diagram {{ text-align: center; margin: 2em 0; page-break-inside: avoid; }}
    figure.diagram img {{ max-width: 100%; }}
    figure.diagram figcaption {{ font-size: 12px; color: #6b7280; font-style: italic; }}
    .disclaimer-footer {{ margin-top: 4em; padding-top: 2em; border-top: 2px solid #e5e7eb;
      font-size: 12px; color: #6b7280; font-style: italic; text-align: center; }}
  </style>
</head>
<body>
  <div class="cover-page">
    <h1 class="cover-title">{title}</h1>
    <h2 class="cover-subtitle">A Guide Book</h2>
    <div class="cover-disclaimer">{disclaimer}</div>
    <div class="cover-meta">Generated {generated_on}</div>
  </div>
  <div class="chapter-content">
{body}
  </div>
  <div class="disclaimer-footer">This book was generated by AI for educational purposes. Please verify all information independently.</div>
</body>
</html>
"""


def render_glossary_section(records: Sequence[Mapping[str, Any]]) -> str | None:
    """Sorted, de-duplicated ``# Glossary`` section; ``None`` when there are no terms."""

    seen: Dict[str, Mapping[str, Any]] = {}
    for record in records:
        term = str(record.get("term", "")).strip()
        if term and term.lower() not in seen:
            seen[term.lower()] = record
    if not seen:
        return None
    lines = [
        f"- **{str(seen[key]['term']).strip()}**: {str(seen[key].get('definition', '')).strip()}"
        for key in sorted(seen)
    ]
    return "# Glossary\n\n" + "\n".join(lines) + "\n"


def render_quiz_sections(records: Sequence[Mapping[str, Any]]) -> List[str]:
    """``# Quiz`` followed by ``# Answer Key``; empty when there are no questions."""

    questions = [record for record in records if str(record.get("question", "")).strip()]
    if not questions:
        return []
    quiz_lines = []
    answer_lines = []
    for number, record in enumerate(questions, start=1):
        chapter = record.get("chapter")
        suffix = f" *(Chapter {chapter})*" if chapter else ""
        quiz_lines.append(f"{number}. {str(record['question']).strip()}{suffix}")
        answer = str(record.get("answer", "")).strip() or "See chapter text."
        answer_lines.append(f"{number}. {answer}")
    return [
        "# Quiz\n\n" + "\n".join(quiz_lines) + "\n",
        "# Answer Key\n\n" + "\n".join(answer_lines) + "\n",
    ]


def _figure_html(diagram: RenderedDiagram) -> str:
    caption_text = f"Figure {diagram.figure_number}"
    if diagram.caption:
        caption_text += f": {diagram.caption}"
    caption = html.escape(caption_text)
    return (
        f'<figure class="diagram" id="{diagram.source_block_id}">'
        f'<img src="data:{diagram.media_type};base64,{diagram.encoded_image}" alt="{caption}"/>'
        f"<figcaption>{caption}</figcaption></figure>"
    )


class DocumentAssembler:
    """Turn ordered section markdown plus side artifacts into the final HTML payload."""

    def __init__(
        self,
        diagram_renderer: DiagramRenderer | None = None,
        config: RenderConfig | None = None,
    ) -> None:
        self.config = config or RenderConfig()
        self.diagram_renderer = diagram_renderer or DiagramRenderer(self.config)

    def trailing_sections(self, side_artifacts: Mapping[str, Sequence[Mapping[str, Any]]]) -> List[str]:
        sections: list[str] = []
        glossary = render_glossary_section(side_artifacts.get("glossary", []))
        if glossary:
            sections.append(glossary)
        sections.extend(render_quiz_sections(side_artifacts.get("quiz", [])))
        return sections

    async def prepare_markdown(
        self,
        sections: Sequence[str],
        side_artifacts: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
    ) -> tuple[str, List[RenderedDiagram]]:
        """Normalise math and render diagrams section by section, then join with breaks."""

        ordered = [section for section in sections if section.strip()]
        ordered.extend(self.trailing_sections(side_artifacts or {}))

        counter = FigureCounter()
        diagrams: list[RenderedDiagram] = []
        prepared: list[str] = []
        for section in ordered:
            chapter = None
            if self.config.figure_scope == "chapter":
                heading = CHAPTER_HEADING_PATTERN.search(section)
                chapter = int(heading.group(1)) if heading else None
            text = normalize_math(section)
            text, rendered = await self.diagram_renderer.render_all(text, chapter=chapter, counter=counter)
            diagrams.extend(rendered)
            prepared.append(text.strip())

        combined = f"\n\n{SECTION_BREAK}\n\n".join(prepared)
        return combined, diagrams

    def markdown_to_html(self, text: str) -> str:
        code_vault = SpanVault("CODE")
        math_vault = SpanVault("MATH")
        working = code_vault.stash(text, (FENCED_CODE_PATTERN, INLINE_CODE_PATTERN))
        working = math_vault.stash(working, MATH_SPAN_PATTERNS)
        working = code_vault.restore(working)
        rendered = markdown.markdown(working, extensions=MARKDOWN_EXTENSIONS)
        return math_vault.restore(rendered, html.escape)

    def resolve_placeholders(self, body: str, diagrams: Sequence[RenderedDiagram]) -> str:
        by_id = {diagram.source_block_id: diagram for diagram in diagrams}

        def _replace(match: re.Match[str]) -> str:
            diagram = by_id.get(match.group("block_id"))
            if diagram is None:
                logger.warning("Unresolved diagram placeholder %s removed", match.group("block_id"))
                return ""
            return _figure_html(diagram)

        return PLACEHOLDER_PARAGRAPH_PATTERN.sub(_replace, body)

    async def assemble(
        self,
        sections: Sequence[str],
        side_artifacts: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
        *,
        title: str = "Generated Book",
    ) -> str:
        combined, diagrams = await self.prepare_markdown(sections, side_artifacts)
        body = self.resolve_placeholders(self.markdown_to_html(combined), diagrams)
        logger.info("Assembled %d sections with %d diagrams", len(sections), len(diagrams))
        return HTML_TEMPLATE.format(
            title=html.escape(title),
            disclaimer=DISCLAIMER,
            generated_on=datetime.now().strftime("%Y-%m-%d"),
            body=body,
        )


def build_pdf_instructions() -> Dict[str, Any]:
    footer = '<div style="font-size: 10px; text-align: center; width: 100%; color: #6b7280;">Page {pageNumber}</div>'
    header = '<div style="font-size: 10px; text-align: center; width: 100%; color: #6b7280;">Generated by bookgen</div>'
    return {
        "parts": [{"html": "index.html"}],
        "output": {
            "format": "pdf",
            "pdf": {
                "margin": {"top": "90px", "bottom": "80px", "left": "70px", "right": "70px"},
                "header": {"content": header, "spacing": "5mm"},
                "footer": {"content": footer, "spacing": "5mm"},
                "waitDelay": 3000,
                "printBackground": True,
                "preferCSSPageSize": True,
            },
        },
    }


class PdfRenderer:
    """Single best-effort call to the HTML-to-PDF service; failures are not retried."""

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

    async def render(self, document_html: str) -> bytes:
        client = await self._get_client()
        headers = {}
        if self.config.pdf_api_key:
            headers["Authorization"] = f"Bearer {self.config.pdf_api_key}"
        try:
            response = await client.post(
                self.config.pdf_url,
                headers=headers,
                data={"instructions": json.dumps(build_pdf_instructions())},
                files={"index.html": ("index.html", document_html.encode("utf-8"), "text/html")},
            )
        except httpx.RequestError as exc:
            logger.error("PDF service unreachable: %r", exc)
            raise ExternalRenderFailure(None, repr(exc)) from exc

        if not response.is_success:
            logger.error("PDF service returned %s", response.status_code)
            raise ExternalRenderFailure(response.status_code, response.text)
        logger.info("PDF rendered (%d bytes)", len(response.content))
        return response.content
