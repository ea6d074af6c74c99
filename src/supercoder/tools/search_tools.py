"""Lexical code search."""

import os
import re
from fnmatch import fnmatch
from pathlib import Path
from typing import List

from .file_tools import SKIP_DIRS


def code_search(
    root: Path,
    query: str,
    file_pattern: str = "*",
    is_regex: bool = False,
    case_sensitive: bool = False,
    max_results: int = 50,
) -> str:
    """Search file contents under root.

    Returns one ``path:line: text`` entry per matching line, paths relative
    to root, or ``(no matches)``.
    """
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    flags = 0 if case_sensitive else re.IGNORECASE
    pattern = re.compile(query if is_regex else re.escape(query), flags)

    results: List[str] = []
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS and not d.startswith("."))
        for file_name in sorted(files):
            if file_name.startswith(".") or not fnmatch(file_name, file_pattern):
                continue
            file_path = Path(current) / file_name
            try:
                with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                    for i, line in enumerate(f, 1):
                        if pattern.search(line):
                            rel = file_path.relative_to(root)
                            results.append(f"{rel}:{i}: {line.rstrip()[:200]}")
                            if len(results) >= max_results:
                                return "\n".join(results)
            except (PermissionError, OSError):
                continue

    return "\n".join(results) or "(no matches)"
