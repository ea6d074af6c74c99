"""Incremental marker-aware parser for streamed model output.

The model streams prose interleaved with control blocks such as

    Sure. <@TOOL>{"name": "ping", "arguments": ""}</@TOOL>

Prose is shown to the user as it arrives; control blocks are hidden. Since
the backend may split a marker across two fragments (``<@TO`` + ``OL>``),
the parser keeps a small tail of undecided text in its buffer until the
next fragment arrives or the stream ends.

Every consumed character is appended to the transcript, markers included,
so that the transcript equals the concatenation of all fed fragments.
"""

from enum import Enum
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from .markers import DEFAULT_GRAMMAR, MarkerGrammar, MarkerPair, partial_marker_length
from .logger import get_logger

log = get_logger("stream_parser")


class ParserState(Enum):
    PLAIN = "plain"
    IN_BLOCK = "in_block"


class StreamParser:
    """Splits one assistant turn into display units and a raw transcript.

    One instance per in-flight turn; discard it once the turn finishes.

    Args:
        grammar: Marker pairs to recognise.
        on_hidden: Optional observer called with every span swallowed as
            control-block content (markers included), in consumption order.
        on_display: Optional observer called with every display unit at the
            moment it is released. Together with on_hidden it sees the
            transcript in order, which the lists returned by feed() cannot
            show when prose and a block arrive in one fragment.
    """

    def __init__(
        self,
        grammar: MarkerGrammar = DEFAULT_GRAMMAR,
        on_hidden: Optional[Callable[[str], None]] = None,
        on_display: Optional[Callable[[str], None]] = None,
    ):
        self.grammar = grammar
        self.on_hidden = on_hidden
        self.on_display = on_display
        self._buffer = ""
        self._transcript: List[str] = []
        self._state = ParserState.PLAIN
        self._block: Optional[MarkerPair] = None
        self._finished = False

    @property
    def state(self) -> ParserState:
        return self._state

    @property
    def current_block(self) -> Optional[MarkerPair]:
        """Marker pair of the block being swallowed, if any."""
        return self._block

    @property
    def transcript(self) -> str:
        return "".join(self._transcript)

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, fragment: str) -> List[str]:
        """Consume one fragment and return the display units it releases."""
        if self._finished:
            raise RuntimeError("StreamParser already finished")
        if not fragment:
            return []
        self._buffer += fragment
        units: List[str] = []

        while self._buffer:
            if self._state is ParserState.PLAIN:
                if not self._step_plain(units):
                    break
            elif not self._step_in_block():
                break
        return units

    def finish(self) -> List[str]:
        """Flush the buffer at end of stream.

        In PLAIN the remainder is a final display unit. Inside a block
        (truncated stream) the remainder is kept as block content only.
        """
        if self._finished:
            return []
        self._finished = True
        rest, self._buffer = self._buffer, ""
        if not rest:
            return []
        if self._state is ParserState.IN_BLOCK:
            log.warning("Stream ended inside %s block (%d chars unterminated)",
                        self._block.kind if self._block else "?", len(rest))
            self._hide(rest)
            return []
        self._show(rest)
        return [rest]

    def iter_display_units(self, fragments: Iterable[str]) -> Iterator[str]:
        """Lazily parse a whole fragment sequence, flushing at the end."""
        for fragment in fragments:
            yield from self.feed(fragment)
        yield from self.finish()

    # ── state steps ──────────────────────────────────────────────

    def _step_plain(self, units: List[str]) -> bool:
        """Advance in PLAIN. Returns False when more input is needed."""
        found = self.grammar.find_start(self._buffer)
        if found is None:
            safe = len(self._buffer) - self.grammar.pending_start_length(self._buffer)
            if safe > 0:
                text = self._buffer[:safe]
                self._buffer = self._buffer[safe:]
                self._show(text)
                units.append(text)
            return False

        idx, pair = found
        if idx > 0:
            text = self._buffer[:idx]
            self._show(text)
            units.append(text)
        self._buffer = self._buffer[idx + len(pair.start):]
        self._hide(pair.start)
        self._state = ParserState.IN_BLOCK
        self._block = pair
        return True

    def _step_in_block(self) -> bool:
        """Advance in IN_BLOCK. Returns False when more input is needed."""
        end = self._block.end
        idx = self._buffer.find(end)
        if idx == -1:
            # Keep a tail that could be the start of a split end marker
            safe = len(self._buffer) - partial_marker_length(self._buffer, end)
            if safe > 0:
                self._hide(self._buffer[:safe])
                self._buffer = self._buffer[safe:]
            return False

        cut = idx + len(end)
        self._hide(self._buffer[:cut])
        self._buffer = self._buffer[cut:]
        self._state = ParserState.PLAIN
        self._block = None
        return True

    def _show(self, text: str) -> None:
        self._transcript.append(text)
        if self.on_display is not None:
            self.on_display(text)

    def _hide(self, text: str) -> None:
        self._transcript.append(text)
        if self.on_hidden is not None:
            self.on_hidden(text)


def parse_transcript(
    fragments: Iterable[str], grammar: MarkerGrammar = DEFAULT_GRAMMAR
) -> Tuple[List[str], str]:
    """Parse a complete fragment sequence; returns (display_units, transcript)."""
    parser = StreamParser(grammar)
    units = list(parser.iter_display_units(fragments))
    return units, parser.transcript
