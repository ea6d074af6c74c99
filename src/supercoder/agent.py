"""Agent loop: stream a reply, dispatch its tool call, continue.

One call to ``AgentLoop.chat`` handles one user message. The loop keeps
exchanging with the backend while each reply ends with a tool call:

    SENDING -> RECEIVING -> EXTRACTING -> DISPATCHING -> SENDING ...

and stops in DONE (no tool call), CANCELLED (user interrupt) or FAILED
(backend error).
"""

import asyncio
from contextlib import ExitStack
from enum import Enum
from typing import Optional, Tuple

from .backend import Backend, BackendError
from .cancellation import CancellationController, KeyboardMonitor
from .config import AppConfig
from .extractor import ToolCallDescription, extract_tool_call
from .history import ConversationHistory
from .markers import DEFAULT_GRAMMAR, TOOL_RESULT
from .output import Output
from .stream_parser import StreamParser
from .tools import ToolDispatcher
from .logger import get_logger, log_exception, truncate

log = get_logger("agent")

# How often a stalled stream re-checks the cancel flag
CANCEL_POLL_INTERVAL = 0.3


class TurnState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    RECEIVING = "receiving"
    EXTRACTING = "extracting"
    DISPATCHING = "dispatching"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class AgentLoop:
    """Drives the conversation with the backend for one session.

    Owns the conversation history; nothing else writes to it.
    """

    def __init__(
        self,
        config: AppConfig,
        backend: Backend,
        dispatcher: ToolDispatcher,
        output: Output,
        system_prompt: str,
        cancellation: Optional[CancellationController] = None,
        handle_interrupts: bool = True,
    ):
        self.config = config
        self.backend = backend
        self.dispatcher = dispatcher
        self.output = output
        self.system_prompt = system_prompt
        self.cancellation = cancellation or CancellationController()
        self.handle_interrupts = handle_interrupts
        self.history = ConversationHistory()
        self.state = TurnState.IDLE
        self.dispatch_count = 0

    def reset(self) -> None:
        """Forget the conversation."""
        self.history.clear()
        self.state = TurnState.IDLE

    async def chat(self, message: str) -> TurnState:
        """Send a user message and run until the model stops calling tools.

        Returns the terminal state (DONE, CANCELLED or FAILED).
        """
        log.info("chat START turns=%d input=%s", len(self.history), truncate(message, 150))
        self.dispatch_count = 0
        pending = message

        while True:
            self.state = TurnState.SENDING
            if pending:
                self.history.append_user(pending)
            pending = ""

            transcript, cancelled, failed = await self._exchange()
            if failed:
                return self._finish(TurnState.FAILED)

            if transcript:
                self.history.append_assistant(transcript)
            if cancelled:
                self.output.notice("Streaming cancelled by user")
                return self._finish(TurnState.CANCELLED)

            self.state = TurnState.EXTRACTING
            call = self._extract(transcript)
            if call is None:
                return self._finish(TurnState.DONE)

            limit = self.config.max_tool_depth
            if limit is not None and self.dispatch_count >= limit:
                log.warning("Tool depth limit %d reached, not dispatching %s", limit, call.name)
                self.output.notice(f"Stopped after {limit} tool calls (max_tool_depth).")
                return self._finish(TurnState.DONE)

            self.state = TurnState.DISPATCHING
            await self._dispatch(call)

    def _finish(self, state: TurnState) -> TurnState:
        self.state = state
        log.info("chat END state=%s turns=%d dispatches=%d",
                 state.value, len(self.history), self.dispatch_count)
        return state

    async def _exchange(self) -> Tuple[str, bool, bool]:
        """Stream one assistant reply.

        Returns (transcript, cancelled, failed). On failure the partial
        transcript is dropped so the history only keeps finished turns.
        """
        self.cancellation.reset()
        hidden = self.output.present_control if self.config.debug else None
        parser = StreamParser(DEFAULT_GRAMMAR, on_hidden=hidden, on_display=self.output.present)
        cancelled = False

        try:
            async with self.backend.stream_completion(self.history.turns, self.system_prompt) as fragments:
                self.state = TurnState.RECEIVING
                cancelled = await self._receive(fragments, parser)
        except BackendError as e:
            log_exception(log, "stream failed", e)
            self.output.end_stream()
            self.output.error(f"Backend error: {e}")
            return "", False, True

        parser.finish()
        self.output.end_stream()
        return parser.transcript, cancelled, False

    async def _receive(self, fragments, parser: StreamParser) -> bool:
        """Feed fragments to the parser until exhausted or cancelled.

        Returns True if the user cancelled.
        """
        with self._interrupt_scope():
            aiter = fragments.__aiter__()
            pending_read: Optional[asyncio.Future] = None
            try:
                while True:
                    if self.cancellation.cancelled:
                        return True
                    if pending_read is None:
                        pending_read = asyncio.ensure_future(aiter.__anext__())
                    done, _ = await asyncio.wait({pending_read}, timeout=CANCEL_POLL_INTERVAL)
                    if not done:
                        continue
                    try:
                        fragment = pending_read.result()
                    except StopAsyncIteration:
                        pending_read = None
                        return False
                    pending_read = None

                    self.cancellation.arm()
                    if self.cancellation.cancelled:
                        return True
                    parser.feed(fragment)
            finally:
                if pending_read is not None and not pending_read.done():
                    pending_read.cancel()
                    try:
                        await pending_read
                    except (asyncio.CancelledError, StopAsyncIteration):
                        pass

    def _interrupt_scope(self) -> ExitStack:
        """Ctrl+C and Escape cancel the stream while the scope is active."""
        stack = ExitStack()
        if self.handle_interrupts:
            stack.enter_context(self.cancellation.interrupt_handler())
            stack.enter_context(KeyboardMonitor(self.cancellation))
        return stack

    def _extract(self, transcript: str) -> Optional[ToolCallDescription]:
        return extract_tool_call(
            transcript, on_error=lambda e: self.output.error(f"Error parsing tool call: {e}")
        )

    async def _dispatch(self, call: ToolCallDescription) -> None:
        self.dispatch_count += 1
        log.info("dispatch #%d %s args=%s", self.dispatch_count, call.name, truncate(call.arguments))
        self.output.notice(f"Calling {call.name} tool...")
        try:
            result = await self.dispatcher.execute(call.name, call.arguments)
        except Exception as e:
            log_exception(log, f"tool {call.name} raised", e)
            result = f"Error: {type(e).__name__}: {e}"

        self.history.append_assistant(f"Calling {call.name} tool...")
        self.history.append_user(TOOL_RESULT.wrap(result))

