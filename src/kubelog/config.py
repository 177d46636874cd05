"""Process-level configuration for kubelog.

Container deployments configure logging through the environment rather
than code. ``configure()`` builds one process logger from a
``LoggerConfig`` (by default read from ``KUBELOG_*`` variables) and
captures the configured standard streams:

    KUBELOG_LEVEL=debug        threshold of the process logger
    KUBELOG_TYPE=web           record tag
    KUBELOG_CAPTURE=stdout,stderr

Example:
    # At application startup
    from kubelog.config import configure
    log = configure()
    log.info("ready")

    # In test teardown
    from kubelog.config import reset
    reset()
"""

from __future__ import annotations

import os
import sys
import threading
from collections.abc import Mapping
from dataclasses import dataclass

from kubelog.logger import Kubelogger, resolve_level
from kubelog.sink import WritableSink

ENV_PREFIX = "KUBELOG_"
CAPTURE_NAMES = ("stdout", "stderr")


@dataclass
class LoggerConfig:
    """Settings for the process logger.

    Attributes:
        level: Threshold name or number (default ``"info"``).
        tag: Record ``type`` (default ``"console"``).
        capture_stdout: Redirect ``sys.stdout`` writes into the logger.
        capture_stderr: Redirect ``sys.stderr`` writes into the logger and
            log uncaught errors.
    """

    level: int | str = "info"
    tag: str = "console"
    capture_stdout: bool = False
    capture_stderr: bool = False

    def __post_init__(self) -> None:
        resolve_level(self.level)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX
    ) -> LoggerConfig:
        """Read a config from environment variables.

        Unset or empty variables keep the defaults.

        Args:
            environ: Mapping to read; defaults to ``os.environ``.
            prefix: Variable name prefix.

        Returns:
            LoggerConfig built from ``<prefix>LEVEL``, ``<prefix>TYPE`` and
            ``<prefix>CAPTURE``.

        Raises:
            ValueError: Unknown level or capture stream name.

        Example:
            >>> cfg = LoggerConfig.from_env({"KUBELOG_CAPTURE": "stderr"})
            >>> cfg.capture_stdout, cfg.capture_stderr
            (False, True)
        """
        env = os.environ if environ is None else environ
        captured = parse_capture(env.get(prefix + "CAPTURE", ""))
        return cls(
            level=env.get(prefix + "LEVEL") or "info",
            tag=env.get(prefix + "TYPE") or "console",
            capture_stdout="stdout" in captured,
            capture_stderr="stderr" in captured,
        )


def parse_capture(value: str) -> set[str]:
    """Parse a comma-separated list of stream names.

    ``all`` selects both streams; ``none`` or an empty string selects none.

    Raises:
        ValueError: A name other than stdout, stderr, all or none.
    """
    names: set[str] = set()
    for item in value.split(","):
        name = item.strip().lower()
        if not name or name == "none":
            continue
        if name == "all":
            names.update(CAPTURE_NAMES)
        elif name in CAPTURE_NAMES:
            names.add(name)
        else:
            raise ValueError(f"unknown capture stream: {item.strip()!r}")
    return names


# =============================================================================
# Process logger
# =============================================================================

_logger: Kubelogger | None = None
_config_lock = threading.Lock()


def configure(
    config: LoggerConfig | None = None,
    *,
    sink: WritableSink | None = None,
    force: bool = False,
) -> Kubelogger:
    """Build the process logger and capture the configured streams.

    Idempotent: later calls return the existing logger unless
    ``force=True``, which closes it (restoring its captures) and builds a
    new one.

    Business context: Deployments switch verbosity, record tag and stream
    capture per container through environment variables, so the same image
    runs as a quiet web tier or a chatty batch worker without code changes.

    Args:
        config: Settings; None reads ``LoggerConfig.from_env()``.
        sink: Record destination; defaults to the process-wide sink.
        force: Replace an existing process logger.

    Returns:
        The process logger.

    Raises:
        ValueError: Invalid configuration values.
    """
    global _logger

    with _config_lock:
        if _logger is not None and not force:
            return _logger
        if _logger is not None:
            _logger.close()
            _logger = None

        if config is None:
            config = LoggerConfig.from_env()
        logger = Kubelogger(config.level, config.tag, sink=sink)
        if config.capture_stdout:
            logger.capture_writes(sys.stdout)
        if config.capture_stderr:
            logger.capture_writes(sys.stderr)
        _logger = logger
        return logger


def get_configured_logger() -> Kubelogger | None:
    """Return the logger built by ``configure()``, or None before the first call."""
    return _logger


def reset() -> None:
    """Close the process logger and forget it (mainly for tests)."""
    global _logger

    with _config_lock:
        if _logger is not None:
            _logger.close()
        _logger = None
