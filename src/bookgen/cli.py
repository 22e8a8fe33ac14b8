"""Command line interface for the bookgen pipeline."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence

from dotenv import load_dotenv

from .book.checkpoint import FileCheckpointStore
from .book.outline import render_outline_section
from .book.pipeline import build_pipeline
from .book.queue import JobQueue
from .book.state import GenerationRequest
from .config import BookgenConfig
from .errors import ExternalRenderFailure, GenerationCancelled

__all__ = ["main", "build_parser"]

EXIT_FAILED = 1
EXIT_CANCELLED = 3
EXIT_EXTERNAL_SERVICE = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookgen",
        description="Generate a book from a topic: outline, chapters, conclusion and a rendered PDF.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root logging level.",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Optional .env file to load before reading configuration.",
    )
    subparsers = parser.add_subparsers(dest="command")

    for name, help_text in [
        ("generate", "Generate (or resume) a full book and write the PDF."),
        ("outline", "Generate and print only the table of contents."),
        ("clear-checkpoint", "Delete the saved checkpoint so the next run starts fresh."),
    ]:
        sub = subparsers.add_parser(
            name,
            help=help_text,
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
            allow_abbrev=False,
        )
        _register_shared_arguments(sub)
    return parser


def _register_shared_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("topic", help='Book topic, e.g. "write me a book about Rust".')
    parser.add_argument(
        "--caller",
        default="cli",
        help="Caller id used to derive the session id.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Output root for PDFs, staging files, transcripts and checkpoints.",
    )
    parser.add_argument(
        "--chapters",
        type=_positive_int,
        default=None,
        help="Exact number of chapters the outline must contain.",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Chat model identifier (defaults to BOOKGEN_MODEL or gpt-4o-mini).",
    )
    parser.add_argument(
        "--base-url",
        dest="base_url",
        default=None,
        help="Optional base URL for OpenAI-compatible providers.",
    )
    parser.add_argument(
        "--requests-per-minute",
        dest="requests_per_minute",
        type=_positive_int,
        default=None,
        help="Completion request budget per session and minute.",
    )
    parser.add_argument(
        "--no-side-artifacts",
        dest="side_artifacts",
        action="store_false",
        help="Skip Key Terms / Quiz extraction and the trailing Glossary and Quiz sections.",
    )


def _positive_int(token: str) -> int:
    try:
        value = int(token)
    except ValueError as exc:  # pragma: no cover - argparse formatting
        raise argparse.ArgumentTypeError(f"Invalid integer value: {token}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("Values must be positive integers")
    return value


def _build_config(args: argparse.Namespace) -> BookgenConfig:
    config = BookgenConfig()
    if args.output:
        config = config.with_output_root(Path(args.output))
    if args.chapters:
        config = config.with_chapter_count(args.chapters)
    if args.model:
        config.llm.model = args.model
    if args.base_url:
        config.llm.base_url = args.base_url
    if args.requests_per_minute:
        config.rate_limit.requests_per_minute = args.requests_per_minute
    config.writing.side_artifacts = args.side_artifacts
    return config


async def _run_generate(config: BookgenConfig, request: GenerationRequest) -> int:
    pipeline = build_pipeline(config)
    queue = JobQueue(pipeline.run, concurrency=config.job_concurrency, cancellation=pipeline.cancellation)
    job = queue.submit(request)
    try:
        pdf_path = await queue.result(job.job_id)
    finally:
        await pipeline.aclose()
    print(pdf_path)
    return 0


async def _run_outline(config: BookgenConfig, request: GenerationRequest) -> int:
    pipeline = build_pipeline(config)
    result = await pipeline.outline_agent.run(request.topic, session_id=request.session_id)
    print(render_outline_section(result.entries))
    if result.used_fallback:
        print("(fallback outline)", file=sys.stderr)
    return 0


async def _run_clear(config: BookgenConfig, request: GenerationRequest) -> int:
    FileCheckpointStore(config.paths.checkpoint_dir).clear(request.session_id)
    print(f"Cleared checkpoint for {request.session_id}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file or None)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command_map: dict[str, Callable[[BookgenConfig, GenerationRequest], object]] = {
        "generate": _run_generate,
        "outline": _run_outline,
        "clear-checkpoint": _run_clear,
    }
    runner = command_map.get(args.command)
    if runner is None:
        parser.print_help()
        return 0

    config = _build_config(args).ensure_directories()
    request = GenerationRequest.from_caller(args.caller, args.topic)

    try:
        return asyncio.run(runner(config, request))
    except GenerationCancelled as exc:
        print(f"Cancelled: {exc}", file=sys.stderr)
        return EXIT_CANCELLED
    except ExternalRenderFailure as exc:
        print(f"External service error: {exc}", file=sys.stderr)
        return EXIT_EXTERNAL_SERVICE
    except (RuntimeError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
