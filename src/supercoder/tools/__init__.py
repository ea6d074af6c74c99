"""Tool definitions and registry."""

from .registry import ToolRegistry, ToolDispatcher, Tool, ToolResult, decode_arguments
from .builtin import create_default_registry

__all__ = [
    "ToolRegistry",
    "ToolDispatcher",
    "Tool",
    "ToolResult",
    "decode_arguments",
    "create_default_registry",
]
