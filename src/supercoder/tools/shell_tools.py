"""Shell command execution tool."""

import asyncio
from dataclasses import dataclass
from typing import Optional

MAX_OUTPUT_CHARS = 10000


@dataclass
class ShellResult:
    """Result of a shell command execution."""

    stdout: str
    stderr: str
    return_code: int
    timed_out: bool = False

    def to_message(self) -> str:
        parts = []
        if self.stdout:
            parts.append(self.stdout.rstrip())
        if self.stderr:
            parts.append(f"[stderr]\n{self.stderr.rstrip()}")
        parts.append(f"[exit code: {self.return_code}]")
        text = "\n".join(parts)
        if len(text) > MAX_OUTPUT_CHARS:
            text = text[:MAX_OUTPUT_CHARS] + f"\n... (truncated, {len(text)} chars total)"
        return text


async def run_shell_command(
    command: str,
    cwd: Optional[str] = None,
    timeout: float = 60.0,
) -> ShellResult:
    """Execute a shell command.

    Args:
        command: The command to execute.
        cwd: Working directory for the command.
        timeout: Timeout in seconds.
    """
    process = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return ShellResult(
            stdout="",
            stderr=f"Command timed out after {timeout} seconds",
            return_code=-1,
            timed_out=True,
        )

    return ShellResult(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        return_code=process.returncode or 0,
    )
