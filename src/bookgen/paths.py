"""Path helpers for the bookgen pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

__all__ = [
    "DEFAULT_OUTPUT_ROOT",
    "BookPathConfig",
]

DEFAULT_OUTPUT_ROOT = Path(os.getenv("BOOKGEN_OUTPUT_ROOT", "outputs")) / "bookgen"


def _normalise(path: Path | str) -> Path:
    return Path(path).expanduser()


@dataclass(slots=True)
class BookPathConfig:
    """Directory layout for rendered books and in-flight pipeline artefacts."""

    output_root: Path = DEFAULT_OUTPUT_ROOT
    create: bool = True

    @property
    def pdf_dir(self) -> Path:
        return _normalise(self.output_root) / "pdfs"

    @property
    def staging_dir(self) -> Path:
        return _normalise(self.output_root) / "staging"

    @property
    def history_dir(self) -> Path:
        return _normalise(self.output_root) / "history"

    @property
    def checkpoint_dir(self) -> Path:
        return _normalise(self.output_root) / "checkpoints"

    def with_root(self, output_root: Path | str) -> "BookPathConfig":
        return replace(self, output_root=_normalise(output_root))

    def ensure(self) -> "BookPathConfig":
        if self.create:
            for directory in (self.pdf_dir, self.staging_dir, self.history_dir, self.checkpoint_dir):
                directory.mkdir(parents=True, exist_ok=True)
        return self
