"""The physical write target shared by every kubelog logger.

All loggers in a process write their records through one ``Sink``, the
default one bound to ``sys.stdout``. The sink writes through the stream's
*original* write entry point, so capturing ``sys.stdout`` with a logger that
also writes to ``sys.stdout`` never feeds records back into the capture.

Module-level ``write()`` and ``flush()`` give direct access to the default
sink, bypassing loggers and their filters.
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from kubelog.capture import original_write

Callback = Callable[[], Any]


@runtime_checkable
class WritableSink(Protocol):
    """Destination for formatted records."""

    def write(self, text: str, callback: Callback | None = None) -> None:
        """Write ``text``, then call ``callback``."""
        ...  # pragma: no cover

    def flush(self, callback: Callback | None = None) -> None:
        """Drain pending writes, then call ``callback``."""
        ...  # pragma: no cover


class Sink:
    """Writes record lines to one stream.

    Thread Safety:
        Writes and flushes are serialized by a lock, so records from
        different threads never interleave mid-line. Callbacks run after
        the lock is released.
    """

    def __init__(self, stream: Any = None) -> None:
        """Bind the sink to a stream.

        Args:
            stream: Text stream to write to. None binds ``sys.stdout`` as
                it is at construction time.
        """
        self.stream = sys.stdout if stream is None else stream
        self._lock = threading.Lock()

    def write(self, text: str, callback: Callback | None = None) -> None:
        """Write ``text`` exactly as given, then invoke ``callback``.

        Raises:
            OSError, ValueError: Propagated from the stream (closed file,
                broken pipe).
        """
        with self._lock:
            original_write(self.stream)(text)
        if callback is not None:
            callback()

    def flush(self, callback: Callback | None = None) -> None:
        """Flush the stream, then invoke ``callback``.

        Safe with nothing pending and on streams without ``flush``.
        """
        with self._lock:
            stream_flush = getattr(self.stream, "flush", None)
            if callable(stream_flush):
                stream_flush()
        if callback is not None:
            callback()

    def __repr__(self) -> str:
        return f"<Sink {self.stream!r}>"


class SinkHandler(logging.Handler):
    """logging.Handler writing formatted records to a sink.

    A logger's formatter is attached to this handler, which makes it the
    last step of the logger's pipeline.
    """

    def __init__(self, sink: WritableSink, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        """Format and write one record; failures go to ``handleError``."""
        try:
            self.sink.write(self.format(record))
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        self.sink.flush()


# =============================================================================
# Process-wide default
# =============================================================================

_default_sink: WritableSink | None = None
_default_lock = threading.Lock()


def get_sink() -> WritableSink:
    """Return the process-wide sink, creating it on first use."""
    global _default_sink

    if _default_sink is None:
        with _default_lock:
            if _default_sink is None:  # pragma: no branch
                _default_sink = Sink()
    return _default_sink


def set_sink(sink: WritableSink | None) -> WritableSink | None:
    """Replace the process-wide sink.

    Loggers built afterwards (and module-level ``write``/``flush``) use the
    new sink; loggers already built keep the one they were given.

    Args:
        sink: New default sink. None resets to lazy creation on
            ``sys.stdout``.

    Returns:
        The previous default sink, or None if none was created yet.
    """
    global _default_sink

    with _default_lock:
        previous = _default_sink
        _default_sink = sink
    return previous


def write(text: str, callback: Callback | None = None) -> None:
    """Write raw text to the default sink."""
    get_sink().write(text, callback)


def flush(callback: Callback | None = None) -> None:
    """Flush the default sink, then invoke ``callback``."""
    get_sink().flush(callback)
