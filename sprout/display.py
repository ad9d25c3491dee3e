"""Rolling terminal display for streamed build output.

A RollingDisplay keeps the last few lines of build output in a fixed-size
ring buffer and redraws them in place. One instance belongs to one grow
run and is handed to whichever backend executes the build. Several reader
threads may push concurrently; every push is atomic.
"""

from __future__ import annotations

import threading
from collections import deque
from types import TracebackType

from rich.console import Console, Group
from rich.live import Live
from rich.text import Text


DEFAULT_HEIGHT = 4
MAX_LINE_WIDTH = 76
INDENT = "      "

STDOUT_STYLE = "cyan"
STDERR_STYLE = "yellow"


def truncate(line: str, width: int = MAX_LINE_WIDTH) -> str:
    """Shorten a line to ``width`` characters, ending in '...'."""
    if len(line) <= width:
        return line
    return line[: width - 3] + "..."


class RollingDisplay:
    """Fixed-height, thread-safe view of the most recent output lines."""

    def __init__(
        self,
        console: Console | None = None,
        height: int = DEFAULT_HEIGHT,
    ) -> None:
        if height < 1:
            raise ValueError("height must be at least 1")
        self.console = console or Console()
        self.height = height
        self._lines: deque[tuple[str, str]] = deque(maxlen=height)
        self._lock = threading.Lock()
        self._live: Live | None = None

    def __enter__(self) -> RollingDisplay:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def push(self, line: str, style: str = STDOUT_STYLE) -> None:
        """Add a line and redraw. Blank lines are ignored."""
        line = line.strip()
        if not line:
            return
        with self._lock:
            self._lines.append((truncate(line), style))
            if self._live is None:
                self._live = Live(
                    self._renderable(),
                    console=self.console,
                    auto_refresh=False,
                    transient=False,
                )
                self._live.start(refresh=True)
            else:
                self._live.update(self._renderable(), refresh=True)

    def lines(self) -> list[str]:
        """Snapshot of the buffered lines, oldest first."""
        with self._lock:
            return [line for line, _ in self._lines]

    def close(self) -> None:
        """Stop redrawing and reset the buffer for the next build."""
        with self._lock:
            if self._live is not None:
                self._live.stop()
                self._live = None
            self._lines.clear()

    def _renderable(self) -> Group:
        rows = [Text(f"{INDENT}{line}", style=style) for line, style in self._lines]
        rows += [Text("") for _ in range(self.height - len(rows))]
        return Group(*rows)


__all__ = [
    "DEFAULT_HEIGHT",
    "MAX_LINE_WIDTH",
    "RollingDisplay",
    "STDERR_STYLE",
    "STDOUT_STYLE",
    "truncate",
]
