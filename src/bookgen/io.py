"""I/O helpers for staging artefacts, transcripts and checkpoints."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ArtifactIO:
    """Simple filesystem-backed helper for text and JSON artefacts."""

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def read_text(self, path: Path) -> str:
        return Path(path).read_text(encoding=self.encoding)

    def write_text(self, path: Path, content: str) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding=self.encoding)
        return path

    def read_json(self, path: Path) -> Any:
        return json.loads(self.read_text(path))

    def write_json(self, path: Path, payload: Any) -> Path:
        return self.write_text(path, json.dumps(payload, ensure_ascii=False, indent=2))

    def write_bytes(self, path: Path, payload: bytes) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return path

    def delete(self, path: Path) -> bool:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Delete failed for %s: %s", path, exc)
            return False
        return True
