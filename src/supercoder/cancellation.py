"""Cooperative cancellation of a streaming turn.

A single flag is written from outside the main control flow (a SIGINT
handler or the keyboard monitor thread) and polled by the agent loop while
it consumes fragments. ``threading.Event`` gives the cross-thread
visibility; no lock is needed for one writer and one reader.
"""

import signal
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .logger import get_logger

log = get_logger("cancellation")


class CancellationController:
    """Cancel flag for the turn that is currently streaming.

    The flag only accepts a trigger while armed. The loop resets it at the
    start of every request and arms it once the first fragment has arrived,
    so an interrupt racing the stream setup is ignored.
    """

    def __init__(self):
        self._armed = threading.Event()
        self._cancelled = threading.Event()
        self.reason = ""

    @property
    def armed(self) -> bool:
        return self._armed.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def reset(self) -> None:
        """Disarm and clear the flag."""
        self._armed.clear()
        self._cancelled.clear()
        self.reason = ""

    def arm(self) -> None:
        self._armed.set()

    def trigger(self, reason: str = "user") -> bool:
        """Request cancellation. Returns False if ignored (not armed)."""
        if not self._armed.is_set():
            log.debug("Cancel request (%s) ignored: not armed", reason)
            return False
        if not self._cancelled.is_set():
            self.reason = reason
            self._cancelled.set()
            log.info("Cancellation requested: %s", reason)
        return True

    @contextmanager
    def interrupt_handler(self) -> Iterator["CancellationController"]:
        """Route Ctrl+C to this controller while the block runs.

        The first Ctrl+C cancels the stream; a second one while already
        cancelled raises KeyboardInterrupt. The previous handler is always
        restored. Outside the main thread this is a no-op.
        """
        if threading.current_thread() is not threading.main_thread():
            yield self
            return

        def _on_sigint(signum, frame):
            if self.cancelled:
                raise KeyboardInterrupt()
            self.trigger("ctrl-c")

        previous = signal.signal(signal.SIGINT, _on_sigint)
        try:
            yield self
        finally:
            signal.signal(signal.SIGINT, previous)


class KeyboardMonitor:
    """Watch for the Escape key during streaming and cancel the turn."""

    ESCAPE = "\x1b"

    def __init__(self, controller: CancellationController, poll_interval: float = 0.02):
        self.controller = controller
        self.poll_interval = poll_interval
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        """Start monitoring. Does nothing when stdin is not a terminal."""
        if self._thread and self._thread.is_alive():
            return
        if not sys.stdin.isatty():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._monitor_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=0.2)
            self._thread = None

    def __enter__(self) -> "KeyboardMonitor":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def _monitor_loop(self) -> None:
        if sys.platform == "win32":
            self._monitor_windows()
        else:
            self._monitor_unix()

    def _monitor_windows(self) -> None:
        import msvcrt

        while not self._stop_event.is_set():
            if msvcrt.kbhit() and msvcrt.getch() == b"\x1b":
                self.controller.trigger("escape")
            self._stop_event.wait(self.poll_interval)

    def _monitor_unix(self) -> None:
        import select
        import termios
        import tty

        try:
            old_settings = termios.tcgetattr(sys.stdin)
        except termios.error as e:
            log.debug("Keyboard monitor unavailable: %s", e)
            return
        try:
            tty.setcbreak(sys.stdin.fileno())
            while not self._stop_event.is_set():
                if select.select([sys.stdin], [], [], self.poll_interval)[0]:
                    if sys.stdin.read(1) == self.ESCAPE:
                        self.controller.trigger("escape")
        except (OSError, ValueError) as e:
            log.debug("Keyboard monitor stopped: %s", e)
        finally:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)
