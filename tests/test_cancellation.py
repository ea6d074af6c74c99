"""Tests for the cancellation flag and the SIGINT routing."""

import io
import os
import signal
import sys
import threading

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from supercoder.cancellation import CancellationController, KeyboardMonitor


class TestCancellationController:

    def test_starts_clear(self):
        controller = CancellationController()
        assert not controller.armed
        assert not controller.cancelled

    def test_trigger_ignored_until_armed(self):
        controller = CancellationController()
        assert controller.trigger() is False
        assert not controller.cancelled

        controller.arm()
        assert controller.trigger("escape") is True
        assert controller.cancelled
        assert controller.reason == "escape"

    def test_first_reason_wins(self):
        controller = CancellationController()
        controller.arm()
        controller.trigger("escape")
        controller.trigger("ctrl-c")
        assert controller.reason == "escape"

    def test_reset(self):
        controller = CancellationController()
        controller.arm()
        controller.trigger()
        controller.reset()
        assert not controller.armed
        assert not controller.cancelled
        assert controller.reason == ""

    def test_trigger_from_other_thread(self):
        controller = CancellationController()
        controller.arm()
        t = threading.Thread(target=controller.trigger, args=("thread",))
        t.start()
        t.join()
        assert controller.cancelled


@pytest.mark.skipif(sys.platform == "win32", reason="SIGINT delivery differs on Windows")
class TestInterruptHandler:

    def test_sigint_cancels_then_raises(self):
        controller = CancellationController()
        controller.arm()
        with controller.interrupt_handler():
            os.kill(os.getpid(), signal.SIGINT)
            assert controller.cancelled
            assert controller.reason == "ctrl-c"
            with pytest.raises(KeyboardInterrupt):
                os.kill(os.getpid(), signal.SIGINT)

    def test_previous_handler_restored(self):
        before = signal.getsignal(signal.SIGINT)
        with CancellationController().interrupt_handler():
            assert signal.getsignal(signal.SIGINT) is not before
        assert signal.getsignal(signal.SIGINT) is before

    def test_unarmed_sigint_is_ignored(self):
        controller = CancellationController()
        with controller.interrupt_handler():
            os.kill(os.getpid(), signal.SIGINT)
        assert not controller.cancelled


class TestKeyboardMonitor:

    def test_no_thread_without_tty(self, monkeypatch):
        monkeypatch.setattr(sys, "stdin", io.StringIO())
        monitor = KeyboardMonitor(CancellationController())
        with monitor:
            assert monitor._thread is None
