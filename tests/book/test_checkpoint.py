from __future__ import annotations

import pytest

from bookgen.book.cancellation import CancellationRegistry
from bookgen.book.checkpoint import FileCheckpointStore, InMemoryCheckpointStore
from bookgen.book.staging import StagingStore
from bookgen.book.state import ChapterOutlineEntry, GeneratedSection, PipelineStage, PipelineState
from bookgen.errors import GenerationCancelled


def _state() -> PipelineState:
    return PipelineState(
        topic="Rust",
        outline=[ChapterOutlineEntry(title="Ownership and Borrowing", subtopics=["a", "b", "c"])],
        completed_chapter_count=1,
        generated_section_refs=["/tmp/outline.md", "/tmp/chapter-01.md"],
        running_context="Ownership was covered.",
        side_artifacts={"glossary": [{"term": "Borrow", "definition": "A reference.", "chapter": 1}]},
        outline_ready=True,
        stage=PipelineStage.CHAPTER_GENERATING,
    )


def test_file_store_round_trip(tmp_path) -> None:
    store = FileCheckpointStore(tmp_path)

    store.save("alice-rust", _state())

    assert store.path_for("alice-rust").exists()
    assert not list(tmp_path.glob("*.tmp"))
    assert store.load("alice-rust") == _state()


def test_file_store_missing_and_cleared(tmp_path) -> None:
    store = FileCheckpointStore(tmp_path)

    assert store.load("nobody") is None

    store.save("alice-rust", _state())
    store.clear("alice-rust")
    assert store.load("alice-rust") is None
    store.clear("alice-rust")


@pytest.mark.parametrize("content", ["{not json", '{"outline": 5}', "[]"])
def test_corrupt_checkpoint_loads_as_none(tmp_path, content: str) -> None:
    store = FileCheckpointStore(tmp_path)
    store.path_for("alice-rust").write_text(content, encoding="utf-8")

    assert store.load("alice-rust") is None


def test_in_memory_store() -> None:
    store = InMemoryCheckpointStore()

    store.save("alice-rust", _state())
    assert "alice-rust" in store
    assert store.load("alice-rust") == _state()

    store.put_raw("alice-rust", "garbage")
    assert store.load("alice-rust") is None

    store.clear("alice-rust")
    assert "alice-rust" not in store


def test_staging_store_writes_reads_and_deletes(tmp_path) -> None:
    staging = StagingStore(tmp_path)
    refs = [
        staging.write("alice-rust", GeneratedSection("outline", 0, "# Table of Contents\n")),
        staging.write("alice-rust", GeneratedSection("chapter", 1, "# Chapter 1: Ownership\n")),
    ]

    assert refs[1].endswith("chapter-01.md")
    assert staging.read_all(refs) == ["# Table of Contents\n", "# Chapter 1: Ownership\n"]

    staging.delete(refs, session_id="alice-rust")
    assert not staging.session_dir("alice-rust").exists()


def test_cancellation_flag_is_consumed_once() -> None:
    registry = CancellationRegistry()
    registry.cancel("alice-rust")

    assert registry.is_cancelled("alice-rust")
    with pytest.raises(GenerationCancelled):
        registry.raise_if_cancelled("alice-rust")

    registry.raise_if_cancelled("alice-rust")
    assert not registry.is_cancelled("alice-rust")
