"""Sentinel markers that delimit control blocks in model output.

Two block kinds exist: a tool call emitted by the model, and a tool result
written back by the client. Markers are literal and case-sensitive, never
nest and never overlap.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple


@dataclass(frozen=True)
class MarkerPair:
    """Start/end literals for one kind of control block."""
    kind: str
    start: str
    end: str

    def wrap(self, body: str) -> str:
        return f"{self.start}{body}{self.end}"

    def block_pattern(self) -> Pattern[str]:
        """Non-greedy pattern capturing the body of the first block."""
        return re.compile(re.escape(self.start) + r"(.*?)" + re.escape(self.end), re.DOTALL)


TOOL_CALL = MarkerPair("tool_call", "<@TOOL>", "</@TOOL>")
TOOL_RESULT = MarkerPair("tool_result", "<@TOOL-RESULT>", "</@TOOL-RESULT>")


@dataclass(frozen=True)
class MarkerGrammar:
    """The fixed set of marker pairs a StreamParser recognises."""
    pairs: Tuple[MarkerPair, ...] = (TOOL_CALL, TOOL_RESULT)

    def __post_init__(self):
        starts = [p.start for p in self.pairs]
        if len(set(starts)) != len(starts):
            raise ValueError("start markers must be distinct")
        if any(not p.start or not p.end for p in self.pairs):
            raise ValueError("markers must be non-empty")

    def find_start(self, text: str) -> Optional[Tuple[int, MarkerPair]]:
        """Return (offset, pair) of the textually earliest start marker."""
        best: Optional[Tuple[int, MarkerPair]] = None
        for pair in self.pairs:
            idx = text.find(pair.start)
            if idx != -1 and (best is None or idx < best[0]):
                best = (idx, pair)
        return best

    def pending_start_length(self, text: str) -> int:
        """Length of the longest suffix of text that could begin a start marker."""
        return max(partial_marker_length(text, p.start) for p in self.pairs)


def partial_marker_length(text: str, marker: str) -> int:
    """Length of the longest proper prefix of marker that text ends with."""
    for size in range(min(len(marker) - 1, len(text)), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


DEFAULT_GRAMMAR = MarkerGrammar()
