"""
Shared fakes for the input hook and cursor provider
"""

import pytest
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from macrox.macro.recorder import IInputHook, ICursorProvider


class FakeHook(IInputHook):
    """Records start/stop calls; emit() plays the role of the OS listener"""

    def __init__(self):
        self.callback = None
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0

    def start(self, callback):
        self.callback = callback
        self.running = True
        self.start_calls += 1

    def stop(self):
        self.running = False
        self.stop_calls += 1

    def is_running(self) -> bool:
        return self.running

    def emit(self, event):
        assert self.running, "event emitted while hook is stopped"
        return self.callback(event)


class FakeCursor(ICursorProvider):

    def __init__(self, position=(0, 0)):
        self.position = position

    def get_cursor_position(self):
        return self.position


@pytest.fixture
def hook():
    return FakeHook()


@pytest.fixture
def cursor():
    return FakeCursor((640, 360))
