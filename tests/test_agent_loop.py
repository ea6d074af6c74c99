"""Tests for the agent loop: streaming, tool dispatch, continuation, cancellation.

The backend, dispatcher and output are replaced by in-memory fakes so the
state machine can be driven deterministically.
"""

import asyncio
import os
import sys
from contextlib import asynccontextmanager

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from supercoder.agent import AgentLoop, TurnState
from supercoder.backend import BackendError
from supercoder.cancellation import CancellationController
from supercoder.config import AppConfig
from supercoder.history import Role
from supercoder.markers import TOOL_CALL, TOOL_RESULT


PING_CALL = TOOL_CALL.wrap('{"name":"ping","arguments":""}')


class FakeBackend:
    """Replays scripted fragment lists, one per request.

    A script entry may be a list of fragments or an exception to raise
    when the stream is opened. ``before_fragment`` is called with the
    index of each fragment just before it is yielded.
    """

    def __init__(self, *scripts, before_fragment=None):
        self.scripts = list(scripts)
        self.before_fragment = before_fragment
        self.requests = []
        self.closed = 0

    @asynccontextmanager
    async def stream_completion(self, history, system_prompt):
        self.requests.append((tuple(history), system_prompt))
        script = self.scripts.pop(0)
        if isinstance(script, Exception):
            raise script

        async def fragments():
            for i, fragment in enumerate(script):
                if isinstance(fragment, Exception):
                    raise fragment
                if self.before_fragment is not None:
                    self.before_fragment(i)
                yield fragment
                await asyncio.sleep(0)

        gen = fragments()
        try:
            yield gen
        finally:
            await gen.aclose()
            self.closed += 1


class FakeDispatcher:

    def __init__(self, result="pong", error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def execute(self, name, arguments):
        self.calls.append((name, arguments))
        if self.error is not None:
            raise self.error
        return self.result


class RecordingOutput:

    def __init__(self):
        self.presented = []
        self.control = []
        self.notices = []
        self.errors = []
        self.stream_ends = 0

    def present(self, text):
        self.presented.append(text)

    def present_control(self, text):
        self.control.append(text)

    def notice(self, text):
        self.notices.append(text)

    def error(self, text):
        self.errors.append(text)

    def end_stream(self):
        self.stream_ends += 1


def make_agent(backend, dispatcher=None, config=None, cancellation=None):
    output = RecordingOutput()
    agent = AgentLoop(
        config or AppConfig(api_key="test"),
        backend,
        dispatcher or FakeDispatcher(),
        output,
        "SYSTEM",
        cancellation=cancellation,
        handle_interrupts=False,
    )
    return agent, output


def roles(agent):
    return [turn.role for turn in agent.history]


# ============================================================
# Plain turns
# ============================================================

class TestPlainTurn:

    def test_no_tool_call(self):
        backend = FakeBackend(["Hello", ", world"])
        agent, output = make_agent(backend)

        state = asyncio.run(agent.chat("hi"))

        assert state is TurnState.DONE
        assert agent.state is TurnState.DONE
        assert "".join(output.presented) == "Hello, world"
        assert [(t.role, t.content) for t in agent.history] == [
            (Role.USER, "hi"),
            (Role.ASSISTANT, "Hello, world"),
        ]
        assert output.stream_ends == 1
        assert backend.closed == 1

    def test_system_prompt_and_history_sent(self):
        backend = FakeBackend(["one"], ["two"])
        agent, _ = make_agent(backend)

        asyncio.run(agent.chat("first"))
        asyncio.run(agent.chat("second"))

        history, system_prompt = backend.requests[1]
        assert system_prompt == "SYSTEM"
        assert [t.content for t in history] == ["first", "one", "second"]

    def test_empty_reply_not_recorded(self):
        agent, _ = make_agent(FakeBackend([]))
        assert asyncio.run(agent.chat("hi")) is TurnState.DONE
        assert roles(agent) == [Role.USER]

    def test_reset(self):
        agent, _ = make_agent(FakeBackend(["x"]))
        asyncio.run(agent.chat("hi"))
        agent.reset()
        assert len(agent.history) == 0
        assert agent.state is TurnState.IDLE


# ============================================================
# Tool dispatch and continuation
# ============================================================

class TestToolDispatch:

    def test_end_to_end_single_dispatch(self):
        backend = FakeBackend(["Sure. " + PING_CALL], ["All done."])
        dispatcher = FakeDispatcher(result="pong")
        agent, output = make_agent(backend, dispatcher)

        state = asyncio.run(agent.chat("ping it"))

        assert state is TurnState.DONE
        assert dispatcher.calls == [("ping", "")]
        assert agent.dispatch_count == 1
        assert output.presented == ["Sure. ", "All done."]
        assert [(t.role, t.content) for t in agent.history] == [
            (Role.USER, "ping it"),
            (Role.ASSISTANT, "Sure. " + PING_CALL),
            (Role.ASSISTANT, "Calling ping tool..."),
            (Role.USER, TOOL_RESULT.wrap("pong")),
            (Role.ASSISTANT, "All done."),
        ]
        assert "Calling ping tool..." in output.notices

    def test_continuation_adds_no_empty_user_turn(self):
        backend = FakeBackend([PING_CALL], ["ok"])
        agent, _ = make_agent(backend)
        asyncio.run(agent.chat("go"))

        history, _ = backend.requests[1]
        assert history[-1].content == TOOL_RESULT.wrap("pong")
        assert all(t.content for t in agent.history)

    def test_split_marker_across_fragments(self):
        backend = FakeBackend(["Sure. <@TO", 'OL>{"name":"ping",', '"arguments":""}</@TO', "OL>"], ["done"])
        dispatcher = FakeDispatcher()
        agent, output = make_agent(backend, dispatcher)

        asyncio.run(agent.chat("x"))

        assert dispatcher.calls == [("ping", "")]
        assert "".join(output.presented) == "Sure. done"

    def test_chained_dispatches(self):
        backend = FakeBackend([PING_CALL], [PING_CALL], ["finished"])
        dispatcher = FakeDispatcher()
        agent, _ = make_agent(backend, dispatcher)

        assert asyncio.run(agent.chat("x")) is TurnState.DONE
        assert len(dispatcher.calls) == 2
        assert len(backend.requests) == 3

    def test_only_first_call_dispatched(self):
        second = TOOL_CALL.wrap('{"name":"other","arguments":""}')
        backend = FakeBackend([PING_CALL + second], ["ok"])
        dispatcher = FakeDispatcher()
        agent, _ = make_agent(backend, dispatcher)

        asyncio.run(agent.chat("x"))
        assert dispatcher.calls == [("ping", "")]

    def test_dispatcher_exception_becomes_result_text(self):
        backend = FakeBackend([PING_CALL], ["recovered"])
        dispatcher = FakeDispatcher(error=RuntimeError("disk on fire"))
        agent, _ = make_agent(backend, dispatcher)

        assert asyncio.run(agent.chat("x")) is TurnState.DONE
        tool_turn = agent.history.turns[3]
        assert tool_turn.role is Role.USER
        assert tool_turn.content == TOOL_RESULT.wrap("Error: RuntimeError: disk on fire")

    def test_malformed_call_is_plain_turn(self):
        backend = FakeBackend(["Oops " + TOOL_CALL.wrap("{not json")])
        dispatcher = FakeDispatcher()
        agent, output = make_agent(backend, dispatcher)

        assert asyncio.run(agent.chat("x")) is TurnState.DONE
        assert dispatcher.calls == []
        assert len(output.errors) == 1
        assert output.errors[0].startswith("Error parsing tool call")

    def test_max_tool_depth(self):
        backend = FakeBackend([PING_CALL], [PING_CALL], [PING_CALL])
        dispatcher = FakeDispatcher()
        config = AppConfig(api_key="test", max_tool_depth=2)
        agent, output = make_agent(backend, dispatcher, config=config)

        assert asyncio.run(agent.chat("x")) is TurnState.DONE
        assert len(dispatcher.calls) == 2
        assert len(backend.requests) == 3
        assert any("Stopped after 2 tool calls" in n for n in output.notices)

    def test_debug_shows_control_blocks(self):
        backend = FakeBackend(["Hi " + PING_CALL], ["ok"])
        config = AppConfig(api_key="test", debug=True)
        agent, output = make_agent(backend, config=config)

        asyncio.run(agent.chat("x"))
        assert "".join(output.control) == PING_CALL

    def test_debug_output_keeps_stream_order(self):
        backend = FakeBackend(["Hi " + PING_CALL + " after"], ["ok"])
        config = AppConfig(api_key="test", debug=True)
        agent, output = make_agent(backend, config=config)
        events = []
        output.present = lambda t: events.append(t)
        output.present_control = lambda t: events.append(t)

        asyncio.run(agent.chat("x"))
        assert "".join(events) == "Hi " + PING_CALL + " after" + "ok"

    def test_control_blocks_hidden_without_debug(self):
        backend = FakeBackend(["Hi " + PING_CALL], ["ok"])
        agent, output = make_agent(backend)

        asyncio.run(agent.chat("x"))
        assert output.control == []


# ============================================================
# Failures and cancellation
# ============================================================

class TestFailures:

    def test_backend_error_on_open(self):
        backend = FakeBackend(BackendError("API error: HTTP 401"))
        agent, output = make_agent(backend)

        assert asyncio.run(agent.chat("hi")) is TurnState.FAILED
        assert roles(agent) == [Role.USER]
        assert output.errors == ["Backend error: API error: HTTP 401"]

    def test_backend_error_mid_stream_drops_partial(self):
        backend = FakeBackend(["partial ", BackendError("Stream failed")])
        agent, output = make_agent(backend)

        assert asyncio.run(agent.chat("hi")) is TurnState.FAILED
        assert output.presented == ["partial "]
        assert roles(agent) == [Role.USER]
        assert backend.closed == 1

    def test_history_kept_after_failed_continuation(self):
        backend = FakeBackend([PING_CALL], BackendError("boom"))
        agent, _ = make_agent(backend)

        assert asyncio.run(agent.chat("x")) is TurnState.FAILED
        assert roles(agent) == [Role.USER, Role.ASSISTANT, Role.ASSISTANT, Role.USER]


class TestCancellation:

    def test_cancel_after_n_fragments(self):
        controller = CancellationController()

        def before_fragment(i):
            if i == 2:
                controller.trigger("test")

        backend = FakeBackend(["one ", "two ", "three ", PING_CALL], before_fragment=before_fragment)
        dispatcher = FakeDispatcher()
        agent, output = make_agent(backend, dispatcher, cancellation=controller)

        state = asyncio.run(agent.chat("count"))

        assert state is TurnState.CANCELLED
        assert output.presented == ["one ", "two "]
        assert agent.history.last.content == "one two "
        assert agent.history.last.role is Role.ASSISTANT
        assert dispatcher.calls == []
        assert len(backend.requests) == 1
        assert backend.closed == 1
        assert "Streaming cancelled by user" in output.notices

    def test_cancel_after_complete_call_does_not_dispatch(self):
        controller = CancellationController()

        def before_fragment(i):
            if i == 1:
                controller.trigger("test")

        backend = FakeBackend([PING_CALL, "trailing"], before_fragment=before_fragment)
        dispatcher = FakeDispatcher()
        agent, _ = make_agent(backend, dispatcher, cancellation=controller)

        assert asyncio.run(agent.chat("x")) is TurnState.CANCELLED
        assert dispatcher.calls == []
        assert agent.history.last.content == PING_CALL

    def test_trigger_before_first_fragment_ignored(self):
        controller = CancellationController()

        def before_fragment(i):
            if i == 0:
                assert controller.trigger("early") is False

        backend = FakeBackend(["a", "b"], before_fragment=before_fragment)
        agent, output = make_agent(backend, cancellation=controller)

        assert asyncio.run(agent.chat("x")) is TurnState.DONE
        assert "".join(output.presented) == "ab"

    def test_flag_reset_between_requests(self):
        controller = CancellationController()
        backend = FakeBackend(["a", "b"], ["c"])
        agent, _ = make_agent(backend, cancellation=controller)

        backend.before_fragment = lambda i: controller.trigger("t") if i == 1 else None
        assert asyncio.run(agent.chat("x")) is TurnState.CANCELLED

        backend.before_fragment = None
        assert asyncio.run(agent.chat("y")) is TurnState.DONE
        assert not controller.cancelled
