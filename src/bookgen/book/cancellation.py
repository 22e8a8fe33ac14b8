"""Session-scoped cancellation flags polled between pipeline steps."""

from __future__ import annotations

import logging
from typing import Set

from ..errors import GenerationCancelled
from .state import sanitize_session_id

__all__ = ["CancellationRegistry"]

logger = logging.getLogger(__name__)


class CancellationRegistry:
    def __init__(self) -> None:
        self._flags: Set[str] = set()

    def cancel(self, session_id: str) -> None:
        logger.info("Cancellation requested for %s", session_id)
        self._flags.add(sanitize_session_id(session_id))

    def reset(self, session_id: str) -> None:
        self._flags.discard(sanitize_session_id(session_id))

    def is_cancelled(self, session_id: str) -> bool:
        return sanitize_session_id(session_id) in self._flags

    def raise_if_cancelled(self, session_id: str) -> None:
        """Raise once for a pending flag; the flag is consumed so a later run can resume."""

        key = sanitize_session_id(session_id)
        if key in self._flags:
            self._flags.discard(key)
            logger.warning("Generation cancelled for %s; checkpoint kept", session_id)
            raise GenerationCancelled(session_id)
