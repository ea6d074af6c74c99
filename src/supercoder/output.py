"""Terminal output sink for streamed assistant text."""

from typing import Optional, Protocol

from rich.console import Console
from rich.text import Text


class Output(Protocol):
    """Where the agent loop sends everything the user sees."""

    def present(self, text: str) -> None:
        """Show a display unit immediately. Called in stream order."""

    def present_control(self, text: str) -> None:
        """Show control-block text (debug mode only)."""

    def notice(self, text: str) -> None:
        ...

    def error(self, text: str) -> None:
        ...

    def end_stream(self) -> None:
        """Called once the assistant's streamed text is complete."""


class ConsoleOutput:
    """Rich console output: prose in blue, control blocks in red."""

    def __init__(self, console: Optional[Console] = None, debug: bool = False):
        self.console = console or Console(highlight=False)
        self.debug = debug
        self._line_open = False

    def present(self, text: str) -> None:
        self._write(Text(text, style="blue"))

    def present_control(self, text: str) -> None:
        if self.debug:
            self._write(Text(text, style="red"))

    def notice(self, text: str) -> None:
        self._close_line()
        self.console.print(Text(text, style="dim"))

    def error(self, text: str) -> None:
        self._close_line()
        self.console.print(Text(text, style="bold red"))

    def end_stream(self) -> None:
        self._close_line()

    def _write(self, text: Text) -> None:
        if not text.plain:
            return
        self.console.print(text, end="", soft_wrap=True)
        self.console.file.flush()
        self._line_open = not text.plain.endswith("\n")

    def _close_line(self) -> None:
        if self._line_open:
            self.console.print()
            self._line_open = False
