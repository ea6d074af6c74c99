"""File operation tools."""

import os
import aiofiles
from pathlib import Path
from typing import List, Optional

# Directories never worth showing to the model
SKIP_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
             "target", "build", "dist", ".idea", ".supercoder", ".mypy_cache", ".pytest_cache"}


def resolve_path(workspace: Path, file_name: str) -> Path:
    """Resolve file_name against the workspace; absolute paths pass through."""
    path = Path(file_name).expanduser()
    if not path.is_absolute():
        path = workspace / path
    return path


async def read_file(
    file_path: Path,
    start_line: Optional[int] = None,
    end_line: Optional[int] = None,
) -> str:
    """Read content from a file, optionally with line range.

    Args:
        file_path: Path to the file to read.
        start_line: Optional 1-based start line number.
        end_line: Optional 1-based end line number (inclusive).
    """
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    async with aiofiles.open(file_path, "r", encoding="utf-8", errors="replace") as f:
        content = await f.read()

    if start_line is not None or end_line is not None:
        lines = content.splitlines(keepends=True)
        start_idx = (int(start_line) - 1) if start_line else 0
        end_idx = int(end_line) if end_line else len(lines)
        content = "".join(lines[start_idx:end_idx])

    return content


async def write_file(file_path: Path, content: str) -> str:
    """Write content to a file, creating parent directories."""
    file_path.parent.mkdir(parents=True, exist_ok=True)

    async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
        await f.write(content)

    return f"Successfully wrote {len(content)} characters to {file_path}"


async def edit_file(file_path: Path, old_string: str, new_string: str) -> str:
    """Replace the single occurrence of old_string with new_string."""
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
        content = await f.read()

    count = content.count(old_string)
    if count == 0:
        raise ValueError(f"String not found in file: '{old_string[:100]}'")
    if count > 1:
        raise ValueError(
            f"String found {count} times. Please provide more context for unique match."
        )

    new_content = content.replace(old_string, new_string, 1)

    async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
        await f.write(new_content)

    return f"Successfully edited {file_path}"


def project_structure(root: Path, max_entries: int = 500) -> str:
    """Indented tree of the project, skipping VCS and build directories."""
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    lines: List[str] = [f"{root.name}/"]
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS and not d.startswith("."))
        rel = Path(current).relative_to(root)
        depth = 0 if rel == Path(".") else len(rel.parts)
        indent = "  " * (depth + 1)
        if depth:
            lines.append(f"{'  ' * depth}{rel.name}/")
        for name in sorted(files):
            if name.startswith("."):
                continue
            lines.append(f"{indent}{name}")
            if len(lines) >= max_entries:
                lines.append("... (truncated)")
                return "\n".join(lines)
    return "\n".join(lines)
