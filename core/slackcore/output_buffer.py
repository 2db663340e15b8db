"""Bounded output buffer with tail-relative scrolling.

The buffer keeps the most recent lines of a task's output. The scroll
position is an offset from the bottom: 0 follows the live tail, a positive
offset pins the view to older lines so that new output does not move it.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .streaming import Channel, OutputEvent

if TYPE_CHECKING:
    from collections.abc import Iterator

DEFAULT_CAPACITY = 5000


@dataclass(frozen=True, slots=True)
class OutputLine:
    """A captured line of output."""

    seq: int
    channel: Channel
    text: str


class OutputBuffer:
    """Capacity-bounded ring of OutputLine records.

    Example:
        buffer = OutputBuffer(capacity=3)
        for text in ["a", "b", "c", "d"]:
            buffer.append(text)
        [line.text for line in buffer.snapshot()]  # ["b", "c", "d"]
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """Initialize the buffer.

        Args:
            capacity: Maximum number of lines kept.

        Raises:
            ValueError: If capacity is not positive.
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._lines: deque[OutputLine] = deque(maxlen=capacity)
        self._capacity = capacity
        self._next_seq = 1
        self._offset = 0

    @property
    def capacity(self) -> int:
        """Maximum number of lines kept."""
        return self._capacity

    @property
    def scroll_offset(self) -> int:
        """Number of lines between the bottom of the view and the newest line."""
        return self._offset

    @property
    def is_tailing(self) -> bool:
        """Whether the view follows new output."""
        return self._offset == 0

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[OutputLine]:
        return iter(self._lines)

    def append(self, line: str | OutputEvent, channel: Channel = Channel.STDOUT) -> OutputLine:
        """Append a line, evicting the oldest one at capacity.

        Args:
            line: Text or an OutputEvent (whose channel wins over the argument).
            channel: Channel of a plain text line.

        Returns:
            The stored OutputLine.
        """
        if isinstance(line, OutputEvent):
            text, channel = line.text, line.channel
        else:
            text = line

        record = OutputLine(seq=self._next_seq, channel=channel, text=text)
        self._next_seq += 1
        self._lines.append(record)

        if self._offset > 0:
            # Keep a scrolled-up view anchored on the same lines.
            self._offset = min(self._offset + 1, self._max_offset())
        return record

    def snapshot(self, start: int | None = None, stop: int | None = None) -> list[OutputLine]:
        """Return a copy of the buffered lines, oldest first.

        Args:
            start: Optional start index (slice semantics).
            stop: Optional stop index (slice semantics).

        Returns:
            List of OutputLine records.
        """
        return list(self._lines)[start:stop]

    def window(self, height: int) -> list[OutputLine]:
        """Return the lines visible in a view of the given height.

        Args:
            height: Number of rows in the view.

        Returns:
            Up to height lines ending offset lines above the newest one.
        """
        if height <= 0:
            return []
        stop = len(self._lines) - self._offset
        start = max(0, stop - height)
        return self.snapshot(start, stop)

    def text(self) -> str:
        """Return the buffered output as newline-joined text."""
        return "\n".join(line.text for line in self._lines)

    def clear(self) -> None:
        """Drop all lines and return to live tailing."""
        self._lines.clear()
        self._offset = 0

    def scroll_up(self, lines: int = 1) -> None:
        """Move the view towards older lines."""
        self._offset = min(self._offset + max(lines, 0), self._max_offset())

    def scroll_down(self, lines: int = 1) -> None:
        """Move the view towards newer lines."""
        self._offset = max(self._offset - max(lines, 0), 0)

    def scroll_to_top(self) -> None:
        """Show the oldest buffered line."""
        self._offset = self._max_offset()

    def scroll_to_bottom(self) -> None:
        """Resume live tailing."""
        self._offset = 0

    def _max_offset(self) -> int:
        return max(len(self._lines) - 1, 0)
