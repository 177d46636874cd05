"""Write interception for arbitrary output streams.

``capture()`` replaces a stream's ``write`` with a ``WriteCatcher`` shim
that forwards every write to a callback instead of the stream. Producers
keep calling ``sys.stdout.write``, ``print()`` or a ``StreamHandler`` as
usual and never notice the redirection.

Every capture is recorded as a ``CaptureBinding`` in a module registry
keyed by stream identity, so displacement and restoration are explicit
map operations:

- a stream has at most one active binding; capturing an already captured
  stream releases the old binding first (the newest capturer wins)
- ``restore()`` only ever undoes this module's own shim; a ``write`` that
  unrelated code installed on top of a capture is left untouched
- capturing the error-reporting stream also registers an
  ``UncaughtErrorCoordinator`` for the lifetime of the binding

Limitation:
    Bytes are decoded per call. Multi-byte characters split across two
    writes are not reassembled; console-style line writes never split them.

Example:
    >>> import io
    >>> out = io.StringIO()
    >>> seen = []
    >>> _ = capture(out, lambda text, cb: seen.append(text))
    >>> out.write("hello")
    5
    >>> restore(out)
    True
    >>> seen
    ['hello']
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from kubelog.uncaught import FlushFunction, UncaughtErrorCoordinator, WriteCallback

logger = logging.getLogger(__name__)

_MISSING: Any = object()

_bindings: dict[int, CaptureBinding] = {}
_lock = threading.RLock()

# Thread-local re-entrancy flag: set while a shim is forwarding a write
_local = threading.local()


@dataclass(eq=False)
class CaptureBinding:
    """One active redirection of a stream's writes.

    Attributes:
        stream: The captured stream.
        on_write: Callback receiving ``(text, callback)`` for each write.
        original_write: ``stream.write`` as it was before the capture.
        instance_write: The stream's own ``write`` instance attribute before
            the capture, or a sentinel when ``write`` came from the class.
        on_release: Called with the stream once the binding ends, whether
            by restore or displacement.
        coordinator: Uncaught-error coordinator for error-stream captures.
        catcher: The shim installed as ``stream.write``.
        released: True once the binding has ended.
    """

    stream: Any
    on_write: WriteCallback
    original_write: Any
    instance_write: Any = _MISSING
    on_release: Callable[[Any], Any] | None = None
    coordinator: UncaughtErrorCoordinator | None = None
    catcher: WriteCatcher | None = field(default=None, repr=False)
    released: bool = False


class WriteCatcher:
    """Callable installed in place of a stream's ``write``.

    Accepts ``str`` or bytes-like data. Anything else raises ``TypeError``
    before any forwarding happens. Returns the number of characters
    accepted, like ``TextIOBase.write``. Once its binding is released the
    shim passes writes unchanged to the original write.
    """

    def __init__(self, binding: CaptureBinding) -> None:
        self.binding = binding

    def __call__(self, data: Any, callback: Callable[[], Any] | None = None) -> Any:
        if self.binding.released:
            result = self.binding.original_write(data)
            if callback is not None:
                callback()
            return result

        if isinstance(data, str):
            text = data
        elif isinstance(data, bytes | bytearray | memoryview):
            encoding = getattr(self.binding.stream, "encoding", None) or "utf-8"
            text = bytes(data).decode(encoding, errors="replace")
        else:
            raise TypeError(
                "Invalid data, chunk must be a string or bytes-like object, "
                f"not {type(data).__name__}"
            )

        # A write issued while this thread is already forwarding one (for
        # example a logging error report on a captured stderr) goes straight
        # to the original stream.
        if getattr(_local, "forwarding", False):
            self.binding.original_write(text)
            if callback is not None:
                callback()
            return len(text)

        _local.forwarding = True
        try:
            self.binding.on_write(text, callback)
        finally:
            _local.forwarding = False
        return len(text)

    def restore(self) -> None:
        """Reinstate the stream's original ``write``. Idempotent."""
        _release(self.binding, reinstate=True)

    def __repr__(self) -> str:
        return f"<WriteCatcher for {self.binding.stream!r}>"


# =============================================================================
# Public operations
# =============================================================================


def is_error_stream(stream: Any) -> bool:
    """True for the process's error-reporting stream."""
    return stream is not None and (stream is sys.stderr or stream is sys.__stderr__)


def get_binding(stream: Any) -> CaptureBinding | None:
    """Return the live binding of ``stream``, or None.

    A binding whose shim is no longer the stream's ``write`` (unrelated
    code replaced it) is not live.
    """
    with _lock:
        binding = _bindings.get(id(stream))
        if binding is None or binding.stream is not stream:
            return None
        if getattr(stream, "write", None) is not binding.catcher:
            return None
        return binding


def is_captured(stream: Any) -> bool:
    """True while ``stream.write`` is a live shim installed by ``capture()``."""
    return get_binding(stream) is not None


def capture(
    stream: Any,
    on_write: WriteCallback,
    *,
    on_release: Callable[[Any], Any] | None = None,
    flush: FlushFunction | None = None,
    watch_errors: bool | None = None,
) -> CaptureBinding:
    """Redirect a stream's writes to ``on_write``.

    Any capture already installed on ``stream`` by this module is released
    first, silently and unconditionally.

    Business context: Containerized processes are scraped line by line from
    stdout. Libraries that print or write tracebacks to stderr produce
    unstructured lines the collector cannot attribute; capturing the stream
    turns each of those writes into a tagged JSON record without changing
    the producing code.

    Args:
        stream: Object with a settable ``write`` attribute (``sys.stdout``,
            ``io.StringIO``, ...).
        on_write: Receives ``(text, callback)`` for every write; bytes are
            already decoded to text.
        on_release: Called with ``stream`` when this capture ends, by
            ``restore()`` or by a later capture displacing it.
        flush: Flush function the uncaught-error coordinator calls before
            deciding an error's fate. Defaults to the default sink's flush.
        watch_errors: Install an uncaught-error coordinator for this
            capture. None (default) installs one only for the
            error-reporting stream.

    Returns:
        The new CaptureBinding.

    Raises:
        AttributeError: If ``stream.write`` cannot be assigned.

    Example:
        >>> binding = capture(sys.stdout, lambda text, cb: None)
        >>> binding.catcher is sys.stdout.write
        True
        >>> restore(sys.stdout)
        True
    """
    with _lock:
        _release_current(stream)

        binding = CaptureBinding(
            stream=stream,
            on_write=on_write,
            original_write=getattr(stream, "write", None),
            instance_write=getattr(stream, "__dict__", {}).get("write", _MISSING),
            on_release=on_release,
        )
        binding.catcher = WriteCatcher(binding)
        stream.write = binding.catcher
        _bindings[id(stream)] = binding

        if watch_errors is None:
            watch_errors = is_error_stream(stream)
        if watch_errors:
            if flush is None:
                from kubelog.sink import flush
            binding.coordinator = UncaughtErrorCoordinator(on_write, flush)
            binding.coordinator.install()

    logger.debug("captured writes of %r", stream)
    return binding


def restore(stream: Any) -> bool:
    """Undo this module's capture of ``stream``.

    When the stream's ``write`` is still our shim, the original entry point
    is reinstated. A binding whose shim was since replaced by unrelated
    code is discarded without touching the stream. Either way the binding's
    coordinator is deregistered and its ``on_release`` is called.

    Args:
        stream: Any object; streams never captured are ignored.

    Returns:
        True if a live capture was undone.
    """
    with _lock:
        binding = _bindings.get(id(stream))
        if binding is None or binding.stream is not stream:
            return False
        live = getattr(stream, "write", None) is binding.catcher
    _release(binding, reinstate=live)
    return live


def original_write(stream: Any) -> Callable[..., Any]:
    """Return the write entry point the stream would have without capture."""
    binding = get_binding(stream)
    if binding is not None:
        return binding.original_write
    return stream.write


class _BypassWriter:
    def __init__(self, stream: Any) -> None:
        self._stream = stream

    def write(self, text: str) -> int:
        original_write(self._stream)(text)
        return len(text)

    def flush(self) -> None:
        flush = getattr(self._stream, "flush", None)
        if callable(flush):
            flush()


def bypass(stream: Any) -> _BypassWriter:
    """File-like writer that writes to ``stream`` around any capture."""
    return _BypassWriter(stream)


# =============================================================================
# Internals
# =============================================================================


def _release_current(stream: Any) -> None:
    binding = _bindings.get(id(stream))
    if binding is None or binding.stream is not stream:
        return
    live = getattr(stream, "write", None) is binding.catcher
    logger.debug("displacing capture of %r", stream)
    _release(binding, reinstate=live)


def _release(binding: CaptureBinding, *, reinstate: bool) -> None:
    with _lock:
        if _bindings.get(id(binding.stream)) is binding:
            del _bindings[id(binding.stream)]
        if binding.released:
            return
        binding.released = True

        if reinstate:
            if binding.instance_write is _MISSING:
                try:
                    del binding.stream.write
                except AttributeError:
                    pass
            else:
                binding.stream.write = binding.instance_write
        if binding.coordinator is not None:
            binding.coordinator.uninstall()

    if binding.on_release is not None:
        binding.on_release(binding.stream)
