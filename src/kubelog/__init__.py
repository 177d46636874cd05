"""kubelog: one-line JSON logging for containerized processes.

Every record is written to stdout as ``{"time", "type", "message"}`` JSON,
and writes to arbitrary streams (``sys.stdout``, ``sys.stderr``) can be
captured so unstructured output and uncaught errors end up in the same
format.

Example:
    import sys
    import kubelog

    log = kubelog.new_logger("info", "api")
    log.info("listening")
    log.info({"port": 8080})

    kubelog.new_logger("info", "stderr").capture_writes(sys.stderr)
"""

from kubelog.capture import capture as capture_stream
from kubelog.capture import is_captured
from kubelog.capture import restore as restore_stream
from kubelog.config import LoggerConfig, configure, reset
from kubelog.formatting import RecordFormatter, format_record, format_timestamp
from kubelog.logger import Kubelogger, new_logger, resolve_level
from kubelog.sink import (
    Sink,
    SinkHandler,
    WritableSink,
    flush,
    get_sink,
    set_sink,
    write,
)

__version__ = "0.1.0"

__all__ = [
    # Loggers
    "Kubelogger",
    "new_logger",
    "resolve_level",
    # Records
    "RecordFormatter",
    "format_record",
    "format_timestamp",
    # Sink
    "Sink",
    "SinkHandler",
    "WritableSink",
    "flush",
    "get_sink",
    "set_sink",
    "write",
    # Capture
    "capture_stream",
    "is_captured",
    "restore_stream",
    # Configuration
    "LoggerConfig",
    "configure",
    "reset",
]
