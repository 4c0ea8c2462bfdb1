"""Pending input buffer shared by typed input and voice finalization."""

import structlog

from ..utils.text import join_with_space


logger = structlog.get_logger()


class TranscriptAccumulator:
    """
    Owns the pending-input text.

    Callers always go through ``read()`` at the point of use; nobody keeps
    a copy across an await or a timer.
    """

    def __init__(self, initial: str = ""):
        self._text = initial

    def append(self, text: str) -> str:
        """Append a finalized fragment, joined by a single space."""
        fragment = text.strip()
        if not fragment:
            return self._text
        self._text = join_with_space(self._text, fragment)
        logger.debug("Transcript appended", fragment=fragment, length=len(self._text))
        return self._text

    def set(self, text: str) -> None:
        """Replace the buffer, as typed input does."""
        self._text = text

    def read(self) -> str:
        return self._text

    def clear(self) -> None:
        self._text = ""

    def is_empty(self) -> bool:
        return not self._text.strip()

    def __len__(self) -> int:
        return len(self._text)
