"""SuperCoder: a terminal coding assistant that talks to an OpenAI-compatible API."""

__version__ = "0.1.0"

from .agent import AgentLoop, TurnState
from .backend import OpenAIChatBackend, BackendError
from .cancellation import CancellationController
from .config import AppConfig
from .extractor import ToolCallDescription, extract_tool_call
from .history import ConversationHistory, Role, Turn
from .markers import MarkerGrammar, MarkerPair, DEFAULT_GRAMMAR, TOOL_CALL, TOOL_RESULT
from .stream_parser import StreamParser, ParserState
from .prompts import get_system_prompt
from .tools import ToolRegistry, create_default_registry

__all__ = [
    "AgentLoop",
    "TurnState",
    "OpenAIChatBackend",
    "BackendError",
    "CancellationController",
    "AppConfig",
    "ToolCallDescription",
    "extract_tool_call",
    "ConversationHistory",
    "Role",
    "Turn",
    "MarkerGrammar",
    "MarkerPair",
    "DEFAULT_GRAMMAR",
    "TOOL_CALL",
    "TOOL_RESULT",
    "StreamParser",
    "ParserState",
    "get_system_prompt",
    "ToolRegistry",
    "create_default_registry",
]
