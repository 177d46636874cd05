"""Uncaught-error observers and the capture coordinator.

Python has exactly one ``sys.excepthook`` and one ``threading.excepthook``.
kubelog turns them into a process-wide, ordered list of fatal-error
observers so several independent parties can watch for uncaught errors,
and so a stderr capture can decide whether it is the last line of defence
before the interpreter's default "print the traceback and die" behavior.

Design Principles:
- Hooks are installed lazily with the first observer and removed with the
  last one, so an idle process keeps the interpreter's own hooks.
- An observer that raises is re-raising the fatal error: dispatch stops and
  the default fatal behavior runs with that error.
- The census rule deciding between re-raise and deferral is a pure function
  (``should_reraise``) so it can be tested without crashing anything.

Example:
    from kubelog import uncaught

    def notify(exc):
        alert_oncall(repr(exc))

    uncaught.observers.add(notify, once=True)
"""

from __future__ import annotations

import logging
import sys
import threading
import traceback
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

#: Observer count above which a leak warning is logged.
DEFAULT_MAX_OBSERVERS = 10

ErrorObserver = Callable[[BaseException], Any]
WriteCallback = Callable[[str, Callable[[], Any] | None], Any]
FlushFunction = Callable[[Callable[[], Any] | None], Any]


# =============================================================================
# Observer registry
# =============================================================================


@dataclass(eq=False)
class _Entry:
    callback: ErrorObserver
    once: bool = False


class ObserverRegistry:
    """Ordered list of fatal-error observers.

    Mirrors an event-emitter listener list: observers run in registration
    order, ``once`` observers are removed right before they are called, and
    registering the same callable twice yields two entries.

    Thread Safety:
        Mutations and snapshots are guarded by a re-entrant lock. Observers
        are called outside the lock so they may add or remove observers.
    """

    def __init__(
        self,
        max_observers: int = DEFAULT_MAX_OBSERVERS,
        on_change: Callable[[int], Any] | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            max_observers: Warn once when more observers than this are
                registered at the same time. 0 disables the warning.
            on_change: Called with the new observer count after every
                mutation. The process-wide registry uses it to install and
                remove the interpreter hooks.
        """
        self.max_observers = max_observers
        self._entries: list[_Entry] = []
        self._lock = threading.RLock()
        self._on_change = on_change
        self._warned = False

    def add(self, callback: ErrorObserver, *, once: bool = False) -> None:
        """Append an observer; ``once`` observers are dropped when called."""
        with self._lock:
            self._entries.append(_Entry(callback, once))
            count = len(self._entries)
            warn = bool(self.max_observers) and count > self.max_observers
            warn = warn and not self._warned
            if warn:
                self._warned = True
        if warn:
            logger.warning(
                "%d fatal-error observers registered (limit %d), "
                "observers are probably leaking",
                count,
                self.max_observers,
            )
        self._changed(count)

    def remove(self, callback: ErrorObserver) -> bool:
        """Remove the most recently added entry for ``callback``.

        Returns:
            True if an entry was removed, False if none matched.
        """
        with self._lock:
            for index in range(len(self._entries) - 1, -1, -1):
                if self._entries[index].callback == callback:
                    del self._entries[index]
                    break
            else:
                return False
            count = len(self._entries)
        self._changed(count)
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._warned = False
        self._changed(0)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def observers(self) -> list[ErrorObserver]:
        """Return a snapshot of the registered callbacks in call order."""
        with self._lock:
            return [entry.callback for entry in self._entries]

    def __contains__(self, callback: object) -> bool:
        with self._lock:
            return any(entry.callback == callback for entry in self._entries)

    def dispatch(self, exc: BaseException) -> bool:
        """Deliver a fatal error to every registered observer.

        The entry list is snapshotted first, so observers added during
        dispatch wait for the next error. An exception raised by an
        observer propagates to the caller and the remaining observers are
        not called.

        Args:
            exc: The uncaught exception.

        Returns:
            False if no observers were registered, True otherwise.

        Raises:
            BaseException: Whatever an observer raised.
        """
        with self._lock:
            snapshot = list(self._entries)
        if not snapshot:
            return False

        for entry in snapshot:
            if entry.once:
                with self._lock:
                    if entry not in self._entries:
                        continue
                    self._entries.remove(entry)
                    count = len(self._entries)
                self._changed(count)
            entry.callback(exc)
        return True

    def _changed(self, count: int) -> None:
        if self._on_change is not None:
            self._on_change(count)


# =============================================================================
# Interpreter hooks
# =============================================================================

_hook_lock = threading.RLock()
_previous_excepthook: Callable[..., Any] | None = None
_previous_threading_excepthook: Callable[..., Any] | None = None
_dispatch = threading.local()


def _sync_hooks(count: int) -> None:
    if count > 0:
        install_hooks()
    elif not getattr(_dispatch, "active", False):
        # Deferred to handle_uncaught while a dispatch is in progress.
        uninstall_hooks()


#: The process-wide registry consulted by the interpreter hooks.
observers = ObserverRegistry(on_change=_sync_hooks)


def install_hooks() -> None:
    """Route ``sys.excepthook`` and ``threading.excepthook`` to ``observers``.

    Idempotent. The hooks found in place are remembered and used for the
    default fatal behavior.
    """
    global _previous_excepthook, _previous_threading_excepthook

    with _hook_lock:
        if sys.excepthook is not _excepthook:
            _previous_excepthook = sys.excepthook
            sys.excepthook = _excepthook
        if threading.excepthook is not _threading_excepthook:
            _previous_threading_excepthook = threading.excepthook
            threading.excepthook = _threading_excepthook


def uninstall_hooks() -> None:
    """Reinstate the hooks that were in place before ``install_hooks``.

    Hooks that were replaced by other code after installation are left
    alone.
    """
    global _previous_excepthook, _previous_threading_excepthook

    with _hook_lock:
        if sys.excepthook is _excepthook:
            sys.excepthook = _previous_excepthook or sys.__excepthook__
        if threading.excepthook is _threading_excepthook:
            threading.excepthook = (
                _previous_threading_excepthook or threading.__excepthook__
            )
        _previous_excepthook = None
        _previous_threading_excepthook = None


def hooks_installed() -> bool:
    return (
        sys.excepthook is _excepthook
        and threading.excepthook is _threading_excepthook
    )


def _excepthook(
    exc_type: type[BaseException], exc_value: BaseException, exc_tb: Any
) -> None:
    if exc_value is None:
        exc_value = exc_type()
    handle_uncaught(exc_value)


def _threading_excepthook(args: Any) -> None:
    previous = _previous_threading_excepthook or threading.__excepthook__
    if args.exc_value is None or isinstance(args.exc_value, SystemExit):
        previous(args)
        return

    def fallback(exc: BaseException) -> None:
        if previous is not threading.__excepthook__:
            hook_args = [type(exc), exc, exc.__traceback__, args.thread]
            previous(threading.ExceptHookArgs(hook_args))
            return
        name = args.thread.name if args.thread is not None else threading.get_ident()
        _print_fatal(exc, header=f"Exception in thread {name}:\n")

    handle_uncaught(args.exc_value, fallback)


def handle_uncaught(
    exc: BaseException,
    fallback: Callable[[BaseException], Any] | None = None,
) -> None:
    """Handle an error that escaped all other handling.

    Delivers ``exc`` to the registered observers. With no observers, or
    when an observer re-raises, the default fatal behavior runs instead.

    Args:
        exc: The uncaught exception.
        fallback: Default fatal behavior. Defaults to ``default_fatal``.
    """
    if fallback is None:
        fallback = default_fatal
    nested = getattr(_dispatch, "active", False)
    _dispatch.active = True
    try:
        try:
            handled = observers.dispatch(exc)
        except BaseException as err:
            logger.debug("fatal-error observer re-raised %r", err)
            fallback(err)
            return
        if not handled:
            fallback(exc)
    finally:
        _dispatch.active = nested
        if not nested and observers.count() == 0:
            uninstall_hooks()


def default_fatal(exc: BaseException) -> None:
    """Apply the interpreter's default behavior for an uncaught error.

    Defers to a custom hook that was installed before kubelog's. Otherwise
    prints the traceback to the real stderr, bypassing any active capture
    so the report is not routed back through a logger that already
    recorded it.
    """
    previous = _previous_excepthook
    if previous is not None and previous is not sys.__excepthook__:
        previous(type(exc), exc, exc.__traceback__)
        return
    _print_fatal(exc)


def _print_fatal(exc: BaseException, header: str = "") -> None:
    from kubelog.capture import bypass

    if sys.stderr is None:
        return
    out = bypass(sys.stderr)
    if header:
        out.write(header)
    traceback.print_exception(type(exc), exc, exc.__traceback__, file=out)
    out.flush()


def rethrow(exc: BaseException) -> None:
    """Re-raise a fatal error, restoring the default "crash" outcome."""
    raise exc


# =============================================================================
# Coordinator
# =============================================================================


def should_reraise(had_prior: bool, observers_now: int) -> bool:
    """Decide whether a handled fatal error must be re-raised.

    Re-raise only when nothing else was watching at install time and
    nothing else is watching now; otherwise another observer may
    legitimately choose to keep the process alive.

    Args:
        had_prior: Whether other observers existed when the coordinator
            was installed.
        observers_now: Observers registered at decision time, the
            coordinator itself excluded.

    Returns:
        True if the error must be re-raised.

    Example:
        >>> should_reraise(False, 0)
        True
        >>> should_reraise(True, 0)
        False
        >>> should_reraise(False, 1)
        False
    """
    return not had_prior and observers_now == 0


def render_error(exc: BaseException) -> str:
    """Render an uncaught error for logging, traceback first if present."""
    if exc.__traceback__ is not None:
        lines = traceback.format_exception(type(exc), exc, exc.__traceback__)
    else:
        lines = traceback.format_exception_only(type(exc), exc)
    return "Uncaught exception: " + "".join(lines)


class CoordinatorState(Enum):
    """Registration state of an UncaughtErrorCoordinator."""

    DETACHED = "detached"  # Not registered
    REGISTERED = "registered"  # Waiting for a fatal error
    HANDLING = "handling"  # Error logged, waiting for the flush


class UncaughtErrorCoordinator:
    """Logs fatal errors for a stderr capture and decides their fate.

    One coordinator belongs to one capture of the error-reporting stream and
    owns exactly one once-observer entry in the registry while registered.

    On a fatal error the rendered error is written through the capture's
    ``on_write``, the sink is flushed, and only in the flush callback the
    census rule decides:

    - no prior observer and none left: ``rethrow`` the error
    - otherwise: re-register for the next fatal error and return, leaving
      the decision to the remaining observers

    If a later observer re-raises, this coordinator does not see that error
    again; the process is already on its way out.

    Business context: A crash report that only reaches stderr as a raw
    traceback is split into one collector entry per line. Logging it as a
    single record first keeps the failure searchable, while re-raising
    preserves the non-zero exit the orchestrator uses to restart the pod.
    """

    def __init__(
        self,
        on_write: WriteCallback,
        flush: FlushFunction,
        registry: ObserverRegistry | None = None,
    ) -> None:
        """Initialize a detached coordinator.

        Args:
            on_write: The capture's write callback, ``(text, callback)``.
            flush: Sink flush, ``flush(callback)``.
            registry: Observer registry. Defaults to the process-wide one.
        """
        self._on_write = on_write
        self._flush = flush
        self._registry = registry if registry is not None else observers
        self.had_prior = False
        self.state = CoordinatorState.DETACHED

    def install(self) -> None:
        """Register with the observer registry. Idempotent."""
        if self.state is not CoordinatorState.DETACHED:
            return
        self.had_prior = self._registry.count() > 0
        self.state = CoordinatorState.REGISTERED
        self._registry.add(self.handle, once=True)

    def uninstall(self) -> None:
        """Deregister; a decision still waiting on a flush is abandoned."""
        if self.state is CoordinatorState.DETACHED:
            return
        self.state = CoordinatorState.DETACHED
        self._registry.remove(self.handle)

    def handle(self, exc: BaseException) -> None:
        """Observer entry point for a fatal error."""
        if self.state is not CoordinatorState.REGISTERED:
            return
        self.state = CoordinatorState.HANDLING
        self._on_write(render_error(exc), None)
        self._flush(lambda: self._decide(exc))

    def _decide(self, exc: BaseException) -> None:
        if self.state is not CoordinatorState.HANDLING:
            return
        if should_reraise(self.had_prior, self._registry.count()):
            self.state = CoordinatorState.DETACHED
            rethrow(exc)
        else:
            self.state = CoordinatorState.REGISTERED
            self._registry.add(self.handle, once=True)
