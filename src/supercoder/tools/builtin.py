"""The default tool set, bound to a workspace directory."""

from pathlib import Path
from typing import Optional

from ..config import parse_bool
from .registry import ToolRegistry
from .file_tools import resolve_path, read_file, write_file, edit_file, project_structure
from .search_tools import code_search
from .shell_tools import run_shell_command


def create_default_registry(workspace: Path) -> ToolRegistry:
    """Build a registry whose tools operate inside workspace."""
    registry = ToolRegistry()
    workspace = workspace.resolve()

    @registry.register_function(
        "file-read",
        "Read a file from the project.",
        {
            "fileName": "path relative to the project root",
            "startLine": "first line to return (1-based)",
            "endLine": "last line to return (inclusive)",
        },
        required=["fileName"],
    )
    async def _file_read(file_name: str, start_line: Optional[int] = None,
                         end_line: Optional[int] = None) -> str:
        return await read_file(resolve_path(workspace, file_name), start_line, end_line)

    @registry.register_function(
        "file-write",
        "Create or overwrite a file with the given content.",
        {"fileName": "path relative to the project root", "content": "full file content"},
        required=["fileName", "content"],
    )
    async def _file_write(file_name: str, content: str) -> str:
        return await write_file(resolve_path(workspace, file_name), content)

    @registry.register_function(
        "file-edit",
        "Replace one unique occurrence of oldString with newString in a file.",
        {
            "fileName": "path relative to the project root",
            "oldString": "exact text to replace, with enough context to be unique",
            "newString": "replacement text",
        },
        required=["fileName", "oldString", "newString"],
    )
    async def _file_edit(file_name: str, old_string: str, new_string: str) -> str:
        return await edit_file(resolve_path(workspace, file_name), old_string, new_string)

    @registry.register_function(
        "project-structure",
        "Show the directory tree of the project.",
        {},
    )
    def _project_structure() -> str:
        return project_structure(workspace)

    @registry.register_function(
        "code-search",
        "Search the project's files for a text or regex.",
        {
            "query": "text to search for",
            "filePattern": "glob for file names, e.g. *.py",
            "isRegex": "treat query as a regular expression",
        },
        required=["query"],
    )
    def _code_search(query: str, file_pattern: str = "*", is_regex: bool = False) -> str:
        return code_search(workspace, query, file_pattern=file_pattern, is_regex=parse_bool(is_regex))

    @registry.register_function(
        "command-execution",
        "Run a shell command in the project directory and return its output.",
        {"command": "shell command line", "timeout": "timeout in seconds (default 60)"},
        required=["command"],
    )
    async def _command_execution(command: str, timeout: float = 60.0) -> str:
        result = await run_shell_command(command, cwd=str(workspace), timeout=float(timeout))
        return result.to_message()

    return registry
