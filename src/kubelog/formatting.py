"""Record formatting for kubelog.

Every line kubelog emits is a single JSON object terminated by a newline:

    {"time":"2026-10-19T03:56:00.123Z","type":"stdout","message":"hello"}

The ``type`` tag is fixed per logger, so it is JSON-encoded once when the
logger is built and per-record formatting only concatenates strings. The
``message`` is whatever the producer logged (strings, dicts, lists, numbers)
passed through the JSON encoder. Values the encoder cannot handle are
replaced by a sentinel instead of raising, because a log call must never
fail on its payload.

Example:
    >>> format_record("2026-10-19T03:56:00.123Z", "svc", {"a": 1})
    '{"time":"2026-10-19T03:56:00.123Z","type":"svc","message":{"a":1}}\\n'
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

#: JSON literal substituted for payloads that cannot be serialized.
UNSERIALIZABLE = '"[unserializable object]"'


# =============================================================================
# Pure helpers
# =============================================================================


def format_timestamp(created: float | None = None) -> str:
    """Format a POSIX timestamp as a UTC ISO-8601 string.

    Uses millisecond precision and a ``Z`` suffix, the shape log collectors
    in container platforms parse without configuration.

    Args:
        created: Seconds since the epoch, typically ``LogRecord.created``.
            None formats the current time.

    Returns:
        Timestamp such as ``'2026-10-19T03:56:00.123Z'``.

    Example:
        >>> format_timestamp(0)
        '1970-01-01T00:00:00.000Z'
    """
    if created is None:
        moment = datetime.now(UTC)
    else:
        moment = datetime.fromtimestamp(created, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_type(tag: object) -> str:
    """Return the quoted JSON form of a record tag."""
    return json.dumps(str(tag), ensure_ascii=False)


def encode_message(message: Any) -> str:
    """Serialize a log payload as compact JSON.

    Any failure of the encoder (unsupported types such as sets or bytes,
    circular references, NaN/Infinity, nesting past the recursion limit)
    yields the ``UNSERIALIZABLE`` sentinel. The encoding error is never
    propagated to the caller.

    Args:
        message: Arbitrary value handed to a log method.

    Returns:
        JSON text for the ``message`` field.

    Example:
        >>> encode_message({"a": 1, "b": [1, 2]})
        '{"a":1,"b":[1,2]}'
        >>> loop = []
        >>> loop.append(loop)
        >>> encode_message(loop)
        '"[unserializable object]"'
    """
    try:
        return json.dumps(
            message, ensure_ascii=False, allow_nan=False, separators=(",", ":")
        )
    except Exception:
        return UNSERIALIZABLE


def format_envelope(time: str, type_json: str, message: Any) -> str:
    """Build a record line from a timestamp, a pre-encoded tag and a payload."""
    return (
        '{"time":"'
        + time
        + '","type":'
        + type_json
        + ',"message":'
        + encode_message(message)
        + "}\n"
    )


def format_record(time: str, tag: object, message: Any) -> str:
    """Build one newline-terminated JSON record.

    Args:
        time: ISO-8601 timestamp, inserted verbatim.
        tag: Record type. Converted with ``str()`` and JSON-quoted.
        message: Payload; serialized with ``encode_message``.

    Returns:
        ``'{"time":"<time>","type":"<tag>","message":<json>}\\n'``
    """
    return format_envelope(time, encode_type(tag), message)


# =============================================================================
# logging integration
# =============================================================================


class RecordFormatter(logging.Formatter):
    """Formatter producing kubelog JSON records.

    Installed on a logger's sink handler, so it runs after every logger and
    handler filter: the record envelope is always the final transformation
    and filters never see already-wrapped output.

    The payload is ``record.msg`` itself when the record has no ``%`` args,
    which lets ``logger.info({"user": 1})`` serialize as a JSON object
    rather than its ``repr``. With args the standard ``getMessage()``
    interpolation applies. Exception and stack info are appended to the
    message text.
    """

    def __init__(
        self,
        tag: object,
        timestamp: Callable[[float | None], str] = format_timestamp,
    ) -> None:
        """Initialize the formatter for one record tag.

        Args:
            tag: Record ``type`` for every line this formatter produces.
                Encoded once here.
            timestamp: Callable turning ``LogRecord.created`` into the
                ``time`` field. Defaults to ``format_timestamp``.
        """
        super().__init__()
        self._tag = str(tag)
        self._type_json = encode_type(self._tag)
        self._timestamp = timestamp

    @property
    def tag(self) -> str:
        """Record tag written in the ``type`` field."""
        return self._tag

    def payload(self, record: logging.LogRecord) -> Any:
        """Return the value to serialize as the record's ``message``."""
        message: Any = record.getMessage() if record.args else record.msg

        extra: list[str] = []
        if record.exc_info:
            extra.append(self.formatException(record.exc_info))
        elif record.exc_text:
            extra.append(record.exc_text)
        if record.stack_info:
            extra.append(self.formatStack(record.stack_info))
        if not extra:
            return message

        text = message if isinstance(message, str) else encode_message(message)
        return "\n".join([text.rstrip("\n"), *extra])

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as one JSON line (including the newline)."""
        return format_envelope(
            self._timestamp(record.created), self._type_json, self.payload(record)
        )
