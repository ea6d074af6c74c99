"""Tool registry: the dispatcher the agent loop hands tool calls to."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol
from pydantic import BaseModel
import json
import inspect
import re
import traceback

from ..logger import get_logger, truncate

log = get_logger("tools")


class ToolDispatcher(Protocol):
    """Executes a named tool. Failures come back as text, never raised."""

    async def execute(self, name: str, arguments: str) -> str:
        ...


class ToolResult(BaseModel):
    """Result of a tool execution."""

    success: bool
    output: Any = None
    error: Optional[str] = None

    def to_message(self) -> str:
        """Convert result to a message string for the LLM."""
        if self.success:
            if isinstance(self.output, str):
                return self.output
            return json.dumps(self.output, indent=2, default=str)
        return f"Error: {self.error}"


@dataclass
class Tool:
    """Definition of a tool that can be called by the LLM."""

    name: str
    description: str
    parameters: Dict[str, str]
    function: Callable
    required_params: List[str] = field(default_factory=list)

    def describe(self) -> str:
        """One entry of the tool list in the system prompt."""
        lines = [f"- {self.name}: {self.description}"]
        if self.parameters:
            for param, desc in self.parameters.items():
                flag = "required" if param in self.required_params else "optional"
                lines.append(f"    {param} ({flag}): {desc}")
        else:
            lines.append("    (no arguments)")
        return "\n".join(lines)

    async def execute(self, **kwargs) -> ToolResult:
        """Execute the tool with given parameters."""
        missing = [p for p in self.required_params if p not in kwargs]
        if missing:
            return ToolResult(success=False, error=f"Missing required argument(s): {', '.join(missing)}")
        unknown = [k for k in kwargs if k not in self.parameters]
        if unknown:
            return ToolResult(success=False, error=f"Unknown argument(s): {', '.join(unknown)}")
        kwargs = {_snake_case(k): v for k, v in kwargs.items()}
        try:
            if inspect.iscoroutinefunction(self.function):
                result = await self.function(**kwargs)
            else:
                result = self.function(**kwargs)
            return ToolResult(success=True, output=result)
        except Exception as e:
            log.debug("Tool %s raised:\n%s", self.name, traceback.format_exc())
            return ToolResult(success=False, error=f"{type(e).__name__}: {e}")


def _snake_case(name: str) -> str:
    """fileName -> file_name; tool arguments are camelCase on the wire."""
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


def decode_arguments(arguments: str) -> Dict[str, Any]:
    """Decode the JSON-text arguments of a tool call; empty means none."""
    if not arguments or not arguments.strip():
        return {}
    value = json.loads(arguments)
    if not isinstance(value, dict):
        raise ValueError("arguments must encode a JSON object")
    return value


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self._tools[tool.name] = tool

    def register_function(
        self,
        name: str,
        description: str,
        parameters: Dict[str, str],
        required: List[str] = None,
    ) -> Callable:
        """Decorator to register a function as a tool."""
        def decorator(func: Callable) -> Callable:
            tool = Tool(
                name=name,
                description=description,
                parameters=parameters,
                function=func,
                required_params=required or [],
            )
            self.register(tool)
            return func
        return decorator

    def get(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> List[Tool]:
        """List all registered tools."""
        return list(self._tools.values())

    def describe(self) -> str:
        """Tool list for the system prompt."""
        return "\n".join(tool.describe() for tool in self._tools.values())

    async def run(self, name: str, arguments: str) -> ToolResult:
        """Execute a tool by name with JSON-text arguments."""
        tool = self.get(name)
        if not tool:
            return ToolResult(success=False, error=f"Tool '{name}' not found")
        try:
            kwargs = decode_arguments(arguments)
        except ValueError as e:
            return ToolResult(success=False, error=f"Invalid arguments for '{name}': {e}")
        return await tool.execute(**kwargs)

    async def execute(self, name: str, arguments: str) -> str:
        """Dispatch a tool call and return the result text for the model."""
        log.info("tool %s args=%s", name, truncate(arguments, 300))
        result = await self.run(name, arguments)
        if not result.success:
            log.warning("tool %s failed: %s", name, truncate(result.error or ""))
        return result.to_message()
