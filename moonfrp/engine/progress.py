"""Single-line progress indicator for batch runs."""

from __future__ import annotations

import sys
from typing import Optional, TextIO


class ProgressLine:
    """Rewrites ``<label>: completed/total`` in place on a terminal stream.

    The stream is resolved at write time so redirected ``sys.stderr``
    (test runners, pipes) is honoured.
    """

    def __init__(
        self, stream: Optional[TextIO] = None, label: str = "Progress", enabled: bool = True
    ) -> None:
        self._stream = stream
        self.label = label
        self.enabled = enabled
        self._width = 0

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def update(self, completed: int, total: int) -> None:
        if not self.enabled:
            return
        text = f"{self.label}: {completed}/{total}"
        self._width = max(self._width, len(text))
        self.stream.write(f"\r{text}")
        self.stream.flush()

    def clear(self) -> None:
        """Blank the current line so other output can be printed cleanly."""
        if not self.enabled or not self._width:
            return
        self.stream.write("\r" + " " * self._width + "\r")
        self.stream.flush()

    def finish(self) -> None:
        if not self.enabled or not self._width:
            return
        self.stream.write("\n")
        self.stream.flush()
        self._width = 0
