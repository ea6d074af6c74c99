"""System prompt: the tool-calling protocol plus agent instructions."""

import platform
import os
from pathlib import Path
from typing import List

from .markers import TOOL_CALL, TOOL_RESULT
from .logger import get_logger

_log = get_logger("prompts")

TOOL_PROTOCOL_PROMPT = f"""
# Tool calling
For each function call, return a json object with function name and arguments within {TOOL_CALL.start}{TOOL_CALL.end} XML tags:

{TOOL_CALL.start}
{{"name": <function-name>, "arguments": "<json-encoded-string-of-the-arguments>"}}
{TOOL_CALL.end}

The arguments value is ALWAYS a JSON-encoded string, when there is no arguments, use empty string "".

For example:
{TOOL_CALL.start}
{{"name": "file-read", "arguments": "{{\\"fileName\\": \\"example.txt\\"}}"}}
{TOOL_CALL.end}

{TOOL_CALL.start}
{{"name": "project-structure", "arguments": ""}}
{TOOL_CALL.end}

Emit at most one tool call per message and stop right after it.
The client will response with {TOOL_RESULT.start}[content]{TOOL_RESULT.end} XML tags to provide the result of the function call.
Use it to continue the conversation with the user.

# Safety
Please refuse to answer any unsafe or unethical requests.
Do not execute any command that could harm the system or access sensitive information.
When you want to execute some potentially unsafe command, please ask for user confirmation first before generating the tool call instruction.
"""

AGENT_PROMPT = """
# Agent Instructions
You are SuperCoder, a coding assistant working inside the user's project.
Explore the project with the tools before answering questions about it, read
files before editing them, and keep edits minimal. When the task is done,
answer the user without a tool call.
"""


def load_cursor_rules(workspace: Path) -> str:
    """Collect the project's Cursor rules (.cursorrules and .cursor/rules/*).

    Returns an empty string when the project has none.
    """
    sources: List[Path] = []
    legacy = workspace / ".cursorrules"
    if legacy.is_file():
        sources.append(legacy)
    rules_dir = workspace / ".cursor" / "rules"
    if rules_dir.is_dir():
        sources.extend(sorted(p for p in rules_dir.iterdir() if p.is_file()))

    parts = []
    for path in sources:
        try:
            content = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            _log.warning("Failed to read cursor rules %s: %s", path, e)
            continue
        if content:
            parts.append(content)
    if parts:
        _log.debug("Loaded %d cursor rule file(s) from %s", len(parts), workspace)
    return "\n\n".join(parts)


def get_system_prompt(workspace: Path, tool_list: str = "", use_cursor_rules: bool = False) -> str:
    """Build the fixed system instruction sent ahead of the history.

    Args:
        workspace: Project root, described to the model.
        tool_list: Rendered list of available tools.
        use_cursor_rules: Append the project's Cursor rules, if any.
    """
    if platform.system() == "Windows":
        shell = "PowerShell"
    else:
        shell = os.path.basename(os.environ.get("SHELL", "bash"))

    prompt = TOOL_PROTOCOL_PROMPT + AGENT_PROMPT
    prompt += (
        f"\n# Environment\nPlatform: {platform.system()} {platform.release()}\n"
        f"Shell: {shell}\nProject root: {workspace}\n"
    )
    if tool_list:
        prompt += f"\n# Available tools\n{tool_list}\n"
    if use_cursor_rules:
        rules = load_cursor_rules(workspace)
        if rules:
            prompt += f"\n# Project rules\n{rules}\n"
    return prompt
