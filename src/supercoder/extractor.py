"""Locate and decode the tool call in a finished assistant transcript."""

import json
from typing import Callable, Optional

from pydantic import BaseModel, ValidationError

from .markers import TOOL_CALL
from .logger import get_logger, truncate

log = get_logger("extractor")

_TOOL_CALL_RE = TOOL_CALL.block_pattern()


class ToolCallDecodeError(ValueError):
    """The tool-call block was found but its payload is unusable."""


class ToolCallDescription(BaseModel):
    """A tool invocation requested by the model.

    ``arguments`` is itself JSON text (or the empty string when the tool
    takes no arguments); it is handed to the dispatcher undecoded.
    """

    model_config = {"frozen": True}

    name: str
    arguments: str = ""

    def add_name(self, part: Optional[str]) -> "ToolCallDescription":
        """Return a copy with part appended to the name (streamed deltas)."""
        return self.model_copy(update={"name": self.name + (part or "")})

    def add_arguments(self, part: Optional[str]) -> "ToolCallDescription":
        """Return a copy with part appended to the arguments (streamed deltas)."""
        return self.model_copy(update={"arguments": self.arguments + (part or "")})

    def to_block(self) -> str:
        """Encode as a tool-call block, the inverse of extract_tool_call."""
        payload = json.dumps({"name": self.name, "arguments": self.arguments}, ensure_ascii=False)
        return TOOL_CALL.wrap(payload)


def find_tool_call_payload(transcript: str) -> Optional[str]:
    """Return the body of the first complete tool-call block, if any."""
    match = _TOOL_CALL_RE.search(transcript)
    if match is None:
        return None
    return match.group(1)


def decode_tool_call(payload: str) -> ToolCallDescription:
    """Decode a tool-call block body.

    Raises:
        ToolCallDecodeError: the payload is not a JSON object with a
            non-empty string ``name`` and a string ``arguments``.
    """
    try:
        call = ToolCallDescription.model_validate_json(payload.strip())
    except ValidationError as e:
        raise ToolCallDecodeError(f"invalid tool call: {e.errors()[0]['msg']}") from e
    if not call.name.strip():
        raise ToolCallDecodeError("invalid tool call: empty tool name")
    return call


def extract_tool_call(
    transcript: str,
    on_error: Optional[Callable[[ToolCallDecodeError], None]] = None,
) -> Optional[ToolCallDescription]:
    """Return the first tool call in transcript, or None.

    Only the leftmost block is honoured. A malformed block counts as no
    call; the problem is logged and passed to on_error rather than raised.
    """
    payload = find_tool_call_payload(transcript)
    if payload is None:
        return None
    try:
        return decode_tool_call(payload)
    except ToolCallDecodeError as e:
        log.warning("Ignoring tool call: %s payload=%s", e, truncate(payload))
        if on_error is not None:
            on_error(e)
        return None
