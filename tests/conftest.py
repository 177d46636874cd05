"""Pytest configuration and fixtures for kubelog tests.

kubelog mutates process-wide state: stream ``write`` attributes, the
interpreter's exception hooks, the fatal-error observer registry, and the
default sink. The autouse fixture here snapshots and restores all of it
around every test so a failing test cannot leak a capture into the next.
"""

import sys
import threading

import pytest

from kubelog import capture, config, sink, uncaught
from tests.helpers import PlainStream, RecordingSink


@pytest.fixture(autouse=True)
def isolate_process_state():
    """Restore streams, hooks, observers and the default sink after a test.

    Yields:
        None.
    """
    saved_excepthook = sys.excepthook
    saved_threading_excepthook = threading.excepthook
    saved_observers = uncaught.observers.observers()
    uncaught.observers.clear()
    saved_sink = sink.set_sink(None)

    yield

    config.reset()
    for binding in list(capture._bindings.values()):
        capture.restore(binding.stream)
    uncaught.observers.clear()
    for observer in saved_observers:
        uncaught.observers.add(observer)
    sys.excepthook = saved_excepthook
    threading.excepthook = saved_threading_excepthook
    sink.set_sink(saved_sink)


@pytest.fixture
def recording_sink():
    """Provide a RecordingSink that is also the process default sink.

    Yields:
        RecordingSink: collects every write made through kubelog.
    """
    recorder = RecordingSink()
    sink.set_sink(recorder)
    yield recorder


@pytest.fixture
def plain_stream():
    """Provide a fresh PlainStream."""
    return PlainStream()
