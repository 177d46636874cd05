"""Kubelogger: a logging.Logger that writes tagged JSON records.

Each ``Kubelogger`` carries a fixed tag written as the ``type`` of every
record it emits, a level threshold, and the list of streams it is currently
capturing. Records go through the usual ``logging`` machinery (level check,
logger filters) and are formatted last by ``RecordFormatter`` on the
logger's ``SinkHandler``.

Example:
    import sys
    from kubelog import new_logger

    log = new_logger("info", "app")
    log.info("started")                 # {"time":..,"type":"app","message":"started"}
    log.info({"user": 7, "ok": True})   # message serialized as a JSON object

    # Route unstructured output through the same pipeline
    console = new_logger("info", "console").capture_writes(sys.stdout)
    print("hello")                       # becomes a "console" record
    console.close()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from kubelog.capture import capture as capture_stream
from kubelog.capture import restore as restore_stream
from kubelog.formatting import RecordFormatter
from kubelog.sink import SinkHandler, WritableSink, get_sink

#: Custom level below DEBUG, for very chatty output.
TRACE = 5

LEVELS: dict[str, int] = {
    "all": logging.NOTSET,
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}


def resolve_level(level: int | str) -> int:
    """Convert a level name or number to a numeric logging level.

    Args:
        level: A name from ``LEVELS`` (case-insensitive) or an int.

    Returns:
        Numeric level.

    Raises:
        ValueError: Unknown level name.

    Example:
        >>> resolve_level("warn")
        30
        >>> resolve_level(15)
        15
    """
    if isinstance(level, int):
        return level
    try:
        return LEVELS[str(level).strip().lower()]
    except KeyError:
        raise ValueError(f"unknown log level: {level!r}") from None


class Kubelogger(logging.Logger):
    """Logger emitting one-line JSON records through a shared sink.

    The logger is standalone: it is not registered with the ``logging``
    manager, has no parent, and does not propagate, so records never reach
    the root logger's handlers.

    Attributes:
        sink: Destination for formatted records (the process-wide sink
            unless one was injected).
        handler: The SinkHandler carrying the RecordFormatter.
    """

    def __init__(
        self,
        level: int | str = "info",
        tag: object = "console",
        *,
        sink: WritableSink | None = None,
    ) -> None:
        """Build a logger for one record tag.

        Args:
            level: Threshold, a name (``"debug"``, ``"info"``, ...) or int.
            tag: Record ``type``; converted with ``str()`` and fixed for the
                logger's lifetime.
            sink: Record destination. Defaults to the process-wide sink.

        Raises:
            ValueError: Unknown level name.
        """
        tag = str(tag)
        super().__init__(f"kubelog.{tag}", resolve_level(level))
        self.propagate = False
        self._tag = tag
        self._captured: list[Any] = []

        self.sink = sink if sink is not None else get_sink()
        self.handler = SinkHandler(self.sink)
        self.handler.setFormatter(RecordFormatter(tag))
        self.addHandler(self.handler)

    @property
    def tag(self) -> str:
        """Record ``type`` written on every line; fixed at construction."""
        return self._tag

    @property
    def captured_writes(self) -> list[Any]:
        """Streams this logger currently captures, in capture order."""
        return list(self._captured)

    def setLevel(self, level: int | str) -> None:
        """Set the threshold; accepts kubelog level names such as ``"warn"``.

        The logger is not registered with the ``logging`` manager, whose
        ``setLevel`` only clears the level caches of registered loggers, so
        this logger's own cache is cleared here.
        """
        super().setLevel(resolve_level(level))
        self._cache.clear()

    def loglevel(self, level: int | str | None = None) -> int:
        """Return the numeric threshold, first changing it if ``level`` is given.

        Example:
            >>> log = new_logger("info")
            >>> log.loglevel()
            20
            >>> log.loglevel("debug")
            10
        """
        if level is not None:
            self.setLevel(level)
        return self.level

    def trace(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log a message at TRACE level."""
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    def add_filter(
        self, fn: logging.Filter | Callable[[logging.LogRecord], Any]
    ) -> Kubelogger:
        """Add a logger filter.

        Filters run before the handler's RecordFormatter, so they see and
        may modify the raw ``record.msg`` but never the JSON line.

        Returns:
            self, for chaining.
        """
        self.addFilter(fn)
        return self

    def get_filters(self) -> list[Any]:
        """Return the transformation chain, ending with the record formatter."""
        return [*self.filters, self.handler.formatter]

    def flush(self, callback: Callable[[], Any] | None = None) -> None:
        """Flush this logger's sink, then invoke ``callback``."""
        self.sink.flush(callback)

    # -------------------------------------------------------------------------
    # Stream capture
    # -------------------------------------------------------------------------

    def capture_writes(self, stream: Any, level: int | str | None = None) -> Kubelogger:
        """Redirect writes on ``stream`` into this logger.

        Each write becomes one record with the written text as message. A
        capture by another logger is displaced and drops out of that
        logger's ``captured_writes``. Capturing ``sys.stderr`` also logs
        uncaught errors (see ``kubelog.uncaught``).

        Args:
            stream: Stream to capture, e.g. ``sys.stdout``.
            level: Level of the captured records. Defaults to the logger's
                threshold, or INFO when the threshold is unset.

        Returns:
            self, for chaining.
        """
        if level is None:
            record_level = self.level if self.level > logging.NOTSET else logging.INFO
        else:
            record_level = resolve_level(level)

        def on_write(text: str, callback: Callable[[], Any] | None) -> None:
            self.log(record_level, text)
            if callback is not None:
                self.sink.flush(callback)

        capture_stream(
            stream,
            on_write,
            on_release=self._forget,
            flush=self.sink.flush,
        )
        self._captured.append(stream)
        return self

    def restore_writes(self, stream: Any) -> Kubelogger:
        """Stop capturing ``stream``; a no-op for streams this logger does not own.

        Returns:
            self, for chaining.
        """
        if self._owns(stream):
            restore_stream(stream)
            self._forget(stream)
        return self

    def close(self, callback: Callable[[], Any] | None = None) -> None:
        """Restore every captured stream, flush the sink, then call ``callback``."""
        while self._captured:
            self.restore_writes(self._captured[0])
        self.sink.flush(callback)

    def _owns(self, stream: Any) -> bool:
        return any(s is stream for s in self._captured)

    def _forget(self, stream: Any) -> None:
        self._captured = [s for s in self._captured if s is not stream]

    def __repr__(self) -> str:
        level = logging.getLevelName(self.level)
        return f"<{type(self).__name__} {self._tag!r} ({level})>"


def new_logger(
    level: int | str = "info",
    tag: object = "console",
    *,
    sink: WritableSink | None = None,
) -> Kubelogger:
    """Create a Kubelogger. See ``Kubelogger.__init__`` for arguments."""
    return Kubelogger(level, tag, sink=sink)
