from __future__ import annotations

from typing import List


class LineSplitter:
    """
    Reassembles complete lines from arbitrarily sized text chunks.

    Whatever follows the last newline of a chunk is held back as overflow and
    prepended to the next chunk. Overflow left over when the stream ends is
    never flushed.
    """

    def __init__(self) -> None:
        self.overflow = ""

    def feed(self, chunk: str) -> List[str]:
        lines = (self.overflow + chunk).split("\n")
        self.overflow = lines.pop()
        return lines
