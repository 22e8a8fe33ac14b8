"""Staging area for generated sections awaiting assembly."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

from ..io import ArtifactIO
from .state import GeneratedSection, sanitize_session_id

__all__ = ["StagingStore"]

logger = logging.getLogger(__name__)


class StagingStore:
    """Writes each section to ``<root>/<session>/<name>.md`` and hands back the path as its reference."""

    def __init__(self, root: Path, io: ArtifactIO | None = None) -> None:
        self.root = Path(root)
        self.io = io or ArtifactIO()

    def session_dir(self, session_id: str) -> Path:
        return self.root / sanitize_session_id(session_id)

    def write(self, session_id: str, section: GeneratedSection) -> str:
        path = self.session_dir(session_id) / f"{section.name}.md"
        self.io.write_text(path, section.raw_text)
        logger.debug("Staged %s for %s (%d chars)", section.name, session_id, len(section.raw_text))
        return str(path)

    def read(self, ref: str) -> str:
        return self.io.read_text(Path(ref))

    def read_all(self, refs: Iterable[str]) -> List[str]:
        return [self.read(ref) for ref in refs]

    def delete(self, refs: Iterable[str], session_id: str | None = None) -> None:
        for ref in refs:
            self.io.delete(Path(ref))
        if session_id is not None:
            directory = self.session_dir(session_id)
            try:
                directory.rmdir()
            except OSError:
                logger.debug("Staging directory %s not removed", directory)
