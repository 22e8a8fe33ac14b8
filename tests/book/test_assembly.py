from __future__ import annotations

import json

import httpx
import pytest

from bookgen.book.assembly import (
    SECTION_BREAK,
    DocumentAssembler,
    PdfRenderer,
    build_pdf_instructions,
    render_glossary_section,
    render_quiz_sections,
)
from bookgen.book.diagrams import DiagramRenderer
from bookgen.book.formatting import normalize_math
from bookgen.config import RenderConfig
from bookgen.errors import ExternalRenderFailure

SVG = b"<svg xmlns='http://www.w3.org/2000/svg'/>"


def _assembler(mock_http, *, figure_scope: str = "chapter") -> DocumentAssembler:
    config = RenderConfig(figure_scope=figure_scope)
    renderer = DiagramRenderer(config, client=mock_http(lambda request: httpx.Response(200, content=SVG)))
    return DocumentAssembler(renderer, config)


def test_glossary_is_sorted_and_deduplicated() -> None:
    section = render_glossary_section(
        [
            {"term": "Move", "definition": "Ownership transfer.", "chapter": 2},
            {"term": "borrow", "definition": "A reference.", "chapter": 1},
            {"term": "Borrow", "definition": "Duplicate entry.", "chapter": 3},
            {"term": "  ", "definition": "ignored"},
        ]
    )

    assert section == "# Glossary\n\n- **borrow**: A reference.\n- **Move**: Ownership transfer.\n"
    assert render_glossary_section([]) is None


def test_quiz_sections_with_answer_key() -> None:
    quiz, answers = render_quiz_sections(
        [
            {"question": "What is a borrow?", "answer": "A reference.", "chapter": 1},
            {"question": "Why move?", "answer": "", "chapter": 2},
        ]
    )

    assert quiz == "# Quiz\n\n1. What is a borrow? *(Chapter 1)*\n2. Why move? *(Chapter 2)*\n"
    assert answers == "# Answer Key\n\n1. A reference.\n2. See chapter text.\n"
    assert render_quiz_sections([{"question": " "}]) == []


def test_normalize_math_skips_code_and_tables() -> None:
    text = (
        "Inline \\(x^2\\) and block \\[y = x \\wedge 2\\]\n\n"
        "```latex\n\\(keep\\)\n```\n\n"
        "| a | b |\n|---|---|\n| \\(t\\) | 2 |\n"
    )

    normalized = normalize_math(text)

    assert "Inline $x^2$" in normalized
    assert "$$y = x ^2$$" in normalized
    assert "```latex\n\\(keep\\)\n```" in normalized
    assert "| \\(t\\) | 2 |" in normalized


def test_markdown_conversion_preserves_math_and_tables(mock_http) -> None:
    assembler = _assembler(mock_http)

    rendered = assembler.markdown_to_html(
        "Energy $E = mc^2$ and $$a_1 * b_1$$\n\n| a | b |\n|---|---|\n| 1 | 2 |\n\n`x_1 * y_1`"
    )

    assert "$E = mc^2$" in rendered
    assert "$$a_1 * b_1$$" in rendered
    assert "<em>" not in rendered
    assert "<table>" in rendered
    assert "<code>x_1 * y_1</code>" in rendered


def test_unknown_placeholders_are_removed(mock_http) -> None:
    assembler = _assembler(mock_http)

    assert assembler.resolve_placeholders("<p>@@DIAGRAM:fig-9@@</p><p>kept</p>", []) == "<p>kept</p>"


@pytest.mark.asyncio
async def test_assemble_builds_full_document(mock_http) -> None:
    assembler = _assembler(mock_http)
    sections = [
        "# Table of Contents\n\n1. Flows and Pipelines\n   - Sources\n",
        "# Chapter 1: Flows and Pipelines\n\nText.\n\n```mermaid\ngraph TD\nA --> B\n```\nFigure: Data flow\n",
        "# Conclusion\n\nDone.\n",
    ]
    artifacts = {
        "glossary": [{"term": "Pipeline", "definition": "Chained stages.", "chapter": 1}],
        "quiz": [{"question": "What is a source?", "answer": "Data origin.", "chapter": 1}],
    }

    document = await assembler.assemble(sections, artifacts, title="Flows <and> Pipelines")

    assert "<title>Flows &lt;and&gt; Pipelines</title>" in document
    assert "A Guide Book" in document
    assert "AI-generated content may contain errors" in document
    assert document.count(SECTION_BREAK) == 5
    assert '<figure class="diagram" id="fig-1.1">' in document
    assert "Figure 1.1: Data flow" in document
    assert "data:image/svg+xml;base64," in document
    assert "@@DIAGRAM" not in document
    assert "Glossary" in document and "Answer Key" in document
    assert document.index("Conclusion") < document.index("Glossary") < document.index("Answer Key")


@pytest.mark.asyncio
async def test_global_figure_numbering(mock_http) -> None:
    assembler = _assembler(mock_http, figure_scope="global")
    block = "```mermaid\ngraph TD\nA --> B\n```\n"

    _, diagrams = await assembler.prepare_markdown(
        [f"# Chapter 1: First Topic\n\n{block}", f"# Chapter 2: Second Topic\n\n{block}"]
    )

    assert [diagram.figure_number for diagram in diagrams] == ["1", "2"]


@pytest.mark.asyncio
async def test_pdf_renderer_sends_multipart_request(mock_http) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"%PDF-1.7 fake")

    config = RenderConfig(pdf_url="https://pdf.test/build", pdf_api_key="secret")
    renderer = PdfRenderer(config, client=mock_http(handler))

    payload = await renderer.render("<html><body>Book</body></html>")

    assert payload == b"%PDF-1.7 fake"
    request = seen[0]
    assert request.headers["authorization"] == "Bearer secret"
    assert request.headers["content-type"].startswith("multipart/form-data")
    body = request.content.decode("utf-8")
    assert 'name="instructions"' in body
    assert 'filename="index.html"' in body
    assert "<html><body>Book</body></html>" in body
    assert json.dumps(build_pdf_instructions()) in body


@pytest.mark.asyncio
async def test_pdf_service_error_surfaces_status_and_body(mock_http) -> None:
    renderer = PdfRenderer(client=mock_http(lambda request: httpx.Response(502, text="bad gateway")))

    with pytest.raises(ExternalRenderFailure) as excinfo:
        await renderer.render("<html></html>")

    assert excinfo.value.status_code == 502
    assert str(excinfo.value) == "PDF render error: 502 - bad gateway"


@pytest.mark.asyncio
async def test_pdf_transport_error_is_reported(mock_http) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    renderer = PdfRenderer(client=mock_http(handler))

    with pytest.raises(ExternalRenderFailure) as excinfo:
        await renderer.render("<html></html>")

    assert excinfo.value.status_code is None
    assert "PDF render error: transport" in str(excinfo.value)


@pytest.mark.asyncio
async def test_pdf_renderer_rejects_non_success_status(mock_http) -> None:
    redirect = httpx.Response(302, headers={"Location": "https://pdf.test/elsewhere"}, text="moved")
    renderer = PdfRenderer(client=mock_http(lambda request: redirect))

    with pytest.raises(ExternalRenderFailure) as excinfo:
        await renderer.render("<html></html>")

    assert excinfo.value.status_code == 302


@pytest.mark.asyncio
async def test_assemble_survives_one_failing_diagram(mock_http) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if b"broken" in request.content:
            return httpx.Response(400, text="syntax error")
        return httpx.Response(200, content=SVG)

    config = RenderConfig()
    assembler = DocumentAssembler(DiagramRenderer(config, client=mock_http(handler)), config)
    chapter = (
        "# Chapter 1: Flows and Pipelines\n\nBefore the figures.\n\n"
        "```mermaid\ngraph TD\nbroken --> \n```\nFigure: Broken flow\n\n"
        "Between the figures.\n\n"
        "```mermaid\ngraph TD\nA --> B\n```\nFigure: Working flow\n\n"
        "After the figures.\n"
    )

    document = await assembler.assemble([chapter], {}, title="Flows")

    assert "Before the figures." in document
    assert "Between the figures." in document
    assert "After the figures." in document
    assert "Broken flow" not in document
    assert "broken --&gt;" not in document and "broken -->" not in document
    assert '<figure class="diagram" id="fig-1.1">' in document
    assert "Figure 1.1: Working flow" in document
    assert "@@DIAGRAM" not in document
