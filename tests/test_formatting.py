"""Tests for record formatting (kubelog.formatting)."""

import json
import logging
import re
import sys

import pytest

from kubelog.formatting import (
    UNSERIALIZABLE,
    RecordFormatter,
    encode_message,
    encode_type,
    format_record,
    format_timestamp,
)

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def _record(msg, args=None, exc_info=None):
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, exc_info)


class TestFormatTimestamp:
    """Tests for format_timestamp."""

    def test_epoch(self):
        assert format_timestamp(0) == "1970-01-01T00:00:00.000Z"

    def test_milliseconds_kept(self):
        assert format_timestamp(1.5).endswith("01.500Z")

    def test_now_is_iso_8601(self):
        """Verifies the default timestamp is current UTC in ISO-8601 form.

        Arrangement:
        1. No argument means "now".

        Action:
        Formats the current time.

        Assertion Strategy:
        Validates shape via regex: date, 'T', time, millis, 'Z'.
        """
        assert TIMESTAMP_RE.match(format_timestamp())


class TestEncoding:
    """Tests for encode_type and encode_message."""

    def test_type_is_quoted_json(self):
        assert encode_type("stdout") == '"stdout"'

    def test_type_escapes_quotes(self):
        assert json.loads(encode_type('we"ird')) == 'we"ird'

    def test_type_converts_non_strings(self):
        assert encode_type(123) == '"123"'

    def test_message_is_compact(self):
        assert encode_message({"a": 1, "b": 2}) == '{"a":1,"b":2}'

    def test_message_keeps_unicode(self):
        assert encode_message("héllo") == '"héllo"'

    @pytest.mark.parametrize(
        "payload",
        [{1, 2}, b"raw", object(), float("nan"), float("inf")],
        ids=["set", "bytes", "object", "nan", "inf"],
    )
    def test_unsupported_values_use_sentinel(self, payload):
        assert encode_message(payload) == UNSERIALIZABLE

    def test_circular_reference_uses_sentinel(self):
        """Verifies circular structures never raise.

        Arrangement:
        1. Dict containing itself.
        2. json.dumps raises ValueError("Circular reference detected").

        Action:
        Encodes the cyclic dict.

        Assertion Strategy:
        Validates the sentinel is returned instead of an exception.

        Testing Principle:
        A log call must never fail because of its payload.
        """
        obj = {"a": 1, "b": 2}
        obj["r"] = obj
        assert encode_message(obj) == UNSERIALIZABLE

    def test_deep_nesting_uses_sentinel(self):
        nested = []
        for _ in range(100_000):
            nested = [nested]
        assert encode_message(nested) == UNSERIALIZABLE


class TestFormatRecord:
    """Tests for format_record."""

    @pytest.mark.parametrize("tag", ["svc", "STDOUT", 'quo"te', "日本", "a\\b", ""])
    @pytest.mark.parametrize(
        "payload",
        ["hello", "", 0, 1.25, None, True, [1, "two"], {"nested": {"k": [1]}}],
    )
    def test_parses_and_keeps_tag(self, tag, payload):
        """Verifies every tag/payload combination yields valid JSON.

        Arrangement:
        1. Tags with quotes, backslashes, unicode and the empty string.
        2. Scalar and container payloads.

        Action:
        Formats a record and parses it back.

        Assertion Strategy:
        Validates type and message survive the round trip and the line is
        newline-terminated with no embedded newline.
        """
        line = format_record("2026-10-19T03:56:00.123Z", tag, payload)

        assert line.endswith("}\n")
        assert "\n" not in line[:-1]
        parsed = json.loads(line)
        assert parsed["type"] == tag
        assert parsed["message"] == payload
        assert parsed["time"] == "2026-10-19T03:56:00.123Z"

    def test_field_order(self):
        line = format_record("T", "svc", "hello")
        assert line == '{"time":"T","type":"svc","message":"hello"}\n'

    def test_circular_payload(self):
        obj = {}
        obj["self"] = obj
        parsed = json.loads(format_record("T", "svc", obj))
        assert parsed["message"] == "[unserializable object]"

    def test_multiline_message_stays_one_line(self):
        line = format_record("T", "svc", "line one\nline two\n")
        assert line.count("\n") == 1
        assert json.loads(line)["message"] == "line one\nline two\n"


class TestRecordFormatter:
    """Tests for RecordFormatter."""

    def test_tag_is_fixed(self):
        formatter = RecordFormatter("svc")
        assert formatter.tag == "svc"
        with pytest.raises(AttributeError):
            formatter.tag = "other"

    def test_formats_string_message(self):
        parsed = json.loads(RecordFormatter("svc").format(_record("hello")))
        assert parsed["type"] == "svc"
        assert parsed["message"] == "hello"
        assert TIMESTAMP_RE.match(parsed["time"])

    def test_time_comes_from_record(self):
        record = _record("hello")
        record.created = 0
        parsed = json.loads(RecordFormatter("svc").format(record))
        assert parsed["time"] == "1970-01-01T00:00:00.000Z"

    def test_custom_timestamp(self):
        formatter = RecordFormatter("svc", timestamp=lambda created: "fixed")
        assert json.loads(formatter.format(_record("x")))["time"] == "fixed"

    def test_object_message_serialized_as_json(self):
        """Verifies dict messages are emitted as JSON objects, not repr strings.

        Arrangement:
        1. LogRecord whose msg is a dict and args is None.

        Action:
        Formats the record.

        Assertion Strategy:
        Validates the parsed message equals the original dict.
        """
        parsed = json.loads(RecordFormatter("svc").format(_record({"a": 1, "b": 2})))
        assert parsed["message"] == {"a": 1, "b": 2}

    def test_percent_args_are_interpolated(self):
        record = _record("port %d on %s", (8080, "eth0"))
        parsed = json.loads(RecordFormatter("svc").format(record))
        assert parsed["message"] == "port 8080 on eth0"

    def test_percent_without_args_is_literal(self):
        parsed = json.loads(RecordFormatter("svc").format(_record("100% done")))
        assert parsed["message"] == "100% done"

    def test_exception_appended_to_message(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record("failed", exc_info=sys.exc_info())

        parsed = json.loads(RecordFormatter("svc").format(record))

        assert parsed["message"].startswith("failed\nTraceback")
        assert "ValueError: boom" in parsed["message"]

    def test_exception_with_object_message(self):
        try:
            raise KeyError("k")
        except KeyError:
            record = _record({"op": "load"}, exc_info=sys.exc_info())

        message = json.loads(RecordFormatter("svc").format(record))["message"]

        assert message.startswith('{"op":"load"}\n')
        assert "KeyError" in message

    def test_stack_info_appended(self):
        record = _record("here")
        record.stack_info = "Stack (most recent call last):\n  fake frame"
        message = json.loads(RecordFormatter("svc").format(record))["message"]
        assert message == "here\nStack (most recent call last):\n  fake frame"
