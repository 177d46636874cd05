"""Test helpers for kubelog.

Provides a recording sink, a plain writable stream, and protocol compliance
checks shared by the test modules.

Example:
    from tests.helpers import RecordingSink

    def test_logs_one_line():
        sink = RecordingSink()
        new_logger("info", "svc", sink=sink).info("hi")
        assert sink.records()[0]["message"] == "hi"
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, Protocol


class RecordingSink:
    """WritableSink that keeps every write in memory.

    Attributes:
        writes: Texts passed to ``write`` in call order.
        flushes: Number of ``flush`` calls.
    """

    def __init__(self) -> None:
        self.writes: list[str] = []
        self.flushes = 0

    def write(self, text: str, callback: Callable[[], Any] | None = None) -> None:
        self.writes.append(text)
        if callback is not None:
            callback()

    def flush(self, callback: Callable[[], Any] | None = None) -> None:
        self.flushes += 1
        if callback is not None:
            callback()

    def records(self) -> list[dict[str, Any]]:
        """Parse every write as one JSON record."""
        return [json.loads(text) for text in self.writes]


class PlainStream:
    """Minimal stream whose ``write`` comes from the class."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.encoding = "utf-8"

    def write(self, text: str) -> int:
        self.chunks.append(text)
        return len(text)

    def flush(self) -> None:
        pass


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Args:
        instance: Object to check.
        protocol: Protocol decorated with ``@runtime_checkable``.

    Raises:
        AssertionError: Listing the missing members.
    """
    if isinstance(instance, protocol):
        return

    object_attrs = set(dir(object))
    protocol_methods = {
        attr for attr in set(dir(protocol)) - object_attrs if not attr.startswith("_")
    }
    missing = sorted(
        name
        for name in protocol_methods
        if not callable(getattr(instance, name, None))
    )
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


def assert_all_implement_protocol(
    instances: list[Any], protocol: type[Protocol]
) -> None:
    """Assert that every instance in a list implements a Protocol."""
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e
