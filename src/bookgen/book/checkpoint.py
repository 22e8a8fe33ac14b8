"""Key-value persistence for pipeline checkpoints."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Protocol

from pydantic import ValidationError

from ..errors import CorruptCheckpoint
from ..io import ArtifactIO
from .state import PipelineState, sanitize_session_id

__all__ = ["CheckpointStore", "FileCheckpointStore", "InMemoryCheckpointStore"]

logger = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    """Storage contract used by the pipeline; missing and corrupt entries load as ``None``."""

    def load(self, session_id: str) -> PipelineState | None:  # pragma: no cover - interface
        ...

    def save(self, session_id: str, state: PipelineState) -> None:  # pragma: no cover - interface
        ...

    def clear(self, session_id: str) -> None:  # pragma: no cover - interface
        ...


class FileCheckpointStore:
    """One JSON file per session under ``directory``."""

    def __init__(self, directory: Path, io: ArtifactIO | None = None) -> None:
        self.directory = Path(directory)
        self.io = io or ArtifactIO()

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"{sanitize_session_id(session_id)}.json"

    def _decode(self, path: Path) -> PipelineState:
        try:
            payload = self.io.read_json(path)
            return PipelineState.model_validate(payload)
        except (OSError, ValueError, ValidationError) as exc:
            raise CorruptCheckpoint(f"Unreadable checkpoint {path}: {exc}") from exc

    def load(self, session_id: str) -> PipelineState | None:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        try:
            state = self._decode(path)
        except CorruptCheckpoint as exc:
            logger.warning("%s; starting fresh", exc)
            return None
        logger.info(
            "Loaded checkpoint for %s (%d/%d chapters done)",
            session_id,
            state.completed_chapter_count,
            len(state.outline),
        )
        return state

    def save(self, session_id: str, state: PipelineState) -> None:
        path = self.path_for(session_id)
        tmp_path = path.with_suffix(".json.tmp")
        self.io.write_json(tmp_path, state.model_dump(mode="json"))
        tmp_path.replace(path)
        logger.debug("Checkpoint saved for %s at stage %s", session_id, state.stage.value)

    def clear(self, session_id: str) -> None:
        if self.io.delete(self.path_for(session_id)):
            logger.debug("Checkpoint cleared for %s", session_id)


class InMemoryCheckpointStore:
    """Dict-backed store holding serialised snapshots, handy for tests and single-process runs."""

    def __init__(self) -> None:
        self._records: Dict[str, str] = {}

    def load(self, session_id: str) -> PipelineState | None:
        raw = self._records.get(sanitize_session_id(session_id))
        if raw is None:
            return None
        try:
            return PipelineState.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Corrupt in-memory checkpoint for %s: %s; starting fresh", session_id, exc)
            return None

    def save(self, session_id: str, state: PipelineState) -> None:
        self._records[sanitize_session_id(session_id)] = state.model_dump_json()

    def clear(self, session_id: str) -> None:
        self._records.pop(sanitize_session_id(session_id), None)

    def put_raw(self, session_id: str, raw: str) -> None:
        self._records[sanitize_session_id(session_id)] = raw

    def __contains__(self, session_id: str) -> bool:
        return sanitize_session_id(session_id) in self._records
