"""Span stream decoder and indexer for OpenTelemetry-shaped span records."""

from __future__ import annotations

import gzip
import json
import re
import sys
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import IO, Any, Dict, List, Optional

ROOT_SPAN_ID = "0000000000000000"

_WHITESPACE = re.compile(r"\s*")
_TIMESTAMP = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>[Zz]|[+-]\d{2}:?\d{2})?$"
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Candidate keys per field, first present wins: Go stdouttrace, OTLP/JSON, flat.
_ID_PATHS = (("SpanContext", "SpanID"), ("span_id",), ("spanId",), ("id",))
_PARENT_PATHS = (
    ("Parent", "SpanID"),
    ("parent_span_id",),
    ("parentSpanId",),
    ("parentId",),
    ("parent",),
)
_TRACE_PATHS = (("SpanContext", "TraceID"), ("trace_id",), ("traceId",))
_NAME_PATHS = (("Name",), ("name",))
_KIND_PATHS = (("SpanKind",), ("kind",))
_START_PATHS = (
    ("StartTime",),
    ("start_time_unix_nano",),
    ("startTimeUnixNano",),
    ("startTime",),
    ("start",),
)
_END_PATHS = (
    ("EndTime",),
    ("end_time_unix_nano",),
    ("endTimeUnixNano",),
    ("endTime",),
    ("end",),
)
_ATTRIBUTE_PATHS = (("Attributes",), ("attributes",))
_STATUS_PATHS = (("Status",), ("status",))
_RESOURCE_PATHS = (("Resource",), ("resource", "attributes"), ("resource",))

_MISSING = object()


class MalformedRecordError(ValueError):
    """A span record could not be decoded; aborts the whole run."""

    def __init__(self, ordinal: int, cause: Any) -> None:
        self.ordinal = ordinal
        self.cause = cause
        super().__init__(f"malformed span record {ordinal}: {cause}")


class UnreadableInputError(ValueError):
    """The input could not be read as UTF-8 text (bad encoding, truncated gzip)."""

    def __init__(self, cause: Any) -> None:
        self.cause = cause
        super().__init__(f"unreadable span input: {cause}")


@dataclass(frozen=True)
class Span:
    """A single span record decoded from the input stream."""

    trace_id: str
    span_id: str
    parent_span_id: str
    name: str
    start_time_unix_nano: int
    end_time_unix_nano: int
    kind: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)
    status: Dict[str, Any] = field(default_factory=dict, compare=False)
    resource_attributes: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def duration_nano(self) -> int:
        return self.end_time_unix_nano - self.start_time_unix_nano


@dataclass
class SpanIndex:
    """Lookup tables built once from the decoded stream.

    ``spans`` maps span id to span (last write wins). ``children`` maps a
    parent id to every span naming it as parent, in arrival order.
    """

    spans: Dict[str, Span] = field(default_factory=dict)
    children: Dict[str, List[Span]] = field(default_factory=dict)

    def add(self, span: Span) -> None:
        if span.span_id in self.spans:
            warnings.warn(
                f"Duplicate span_id {span.span_id!r}, keeping last occurrence",
                stacklevel=3,
            )
        self.spans[span.span_id] = span
        self.children.setdefault(span.parent_span_id, []).append(span)

    def __len__(self) -> int:
        return len(self.spans)


def normalize_id(raw_id: Any) -> str:
    """Normalize a trace/span ID to a stripped, lowercase string."""
    if raw_id is None:
        return ""
    return str(raw_id).strip().lower()


def normalize_parent_id(raw_id: Any) -> str:
    """Normalize a parent ID, mapping empty and all-zero IDs to ROOT_SPAN_ID."""
    parent_id = normalize_id(raw_id)
    if not parent_id.strip("0"):
        return ROOT_SPAN_ID
    return parent_id


def flatten_attributes(attrs: Any) -> Dict[str, Any]:
    """Convert an attribute collection to a flat dict.

    Accepts OTLP lists (``{"key": ..., "value": {"string_value": ...}}``),
    Go stdouttrace lists (``{"Key": ..., "Value": {"Type": ..., "Value": ...}}``)
    and plain dicts, which are returned as a copy.
    """
    if not attrs:
        return {}
    if isinstance(attrs, dict):
        return dict(attrs)
    if not isinstance(attrs, list):
        return {}
    result: Dict[str, Any] = {}
    for attr in attrs:
        if not isinstance(attr, dict):
            continue
        key = attr.get("key", attr.get("Key", ""))
        value_obj = attr.get("value", attr.get("Value", {}))
        if not key or not isinstance(value_obj, dict):
            continue
        result[key] = _extract_value(value_obj)
    return result


def _extract_value(value_obj: Dict[str, Any]) -> Any:
    """Extract a typed value from an OTLP or stdouttrace attribute value."""
    if "Type" in value_obj:
        return value_obj.get("Value")
    for key in ("string_value", "stringValue", "bytes_value", "bytesValue"):
        if key in value_obj:
            return value_obj[key]
    for key in ("int_value", "intValue"):
        if key in value_obj:
            return int(value_obj[key])
    for key in ("double_value", "doubleValue"):
        if key in value_obj:
            return float(value_obj[key])
    for key in ("bool_value", "boolValue"):
        if key in value_obj:
            return bool(value_obj[key])
    for key in ("array_value", "arrayValue"):
        if key in value_obj:
            array_val = value_obj[key]
            if isinstance(array_val, dict) and "values" in array_val:
                return [_extract_value(v) for v in array_val["values"]]
            return []
    for key in ("kvlist_value", "kvlistValue"):
        if key in value_obj:
            kvlist_val = value_obj[key]
            if isinstance(kvlist_val, dict) and "values" in kvlist_val:
                return {
                    kv.get("key", ""): _extract_value(kv.get("value", {}))
                    for kv in kvlist_val["values"]
                }
            return {}
    return None


def parse_timestamp(value: Any) -> int:
    """Convert a timestamp to integer nanoseconds since the Unix epoch.

    Integers and digit strings are taken as unix nanoseconds. Strings are
    otherwise parsed as RFC 3339 / ISO-8601 with up to nanosecond precision;
    a missing UTC offset means UTC.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp {value!r}")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ValueError(f"invalid timestamp {value!r}")

    text = value.strip()
    if text.isdigit():
        return int(text)

    match = _TIMESTAMP.match(text)
    if match is None:
        raise ValueError(f"invalid timestamp {value!r}")

    base = datetime.strptime(match.group("base").replace(" ", "T"), "%Y-%m-%dT%H:%M:%S")
    dt = base.replace(tzinfo=_parse_offset(match.group("tz")))
    seconds = (dt - _EPOCH) // timedelta(seconds=1)
    frac = (match.group("frac") or "")[:9].ljust(9, "0")
    return seconds * 1_000_000_000 + int(frac)


def _parse_offset(tz: Optional[str]) -> timezone:
    if not tz or tz in ("Z", "z"):
        return timezone.utc
    sign = -1 if tz[0] == "-" else 1
    digits = tz[1:].replace(":", "")
    offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
    return timezone(sign * offset)


def _lookup(data: Dict[str, Any], paths: tuple) -> Any:
    for path in paths:
        value: Any = data
        for key in path:
            if not isinstance(value, dict) or key not in value:
                value = _MISSING
                break
            value = value[key]
        if value is not _MISSING:
            return value
    return _MISSING


def _require(data: Dict[str, Any], paths: tuple, field_name: str) -> Any:
    value = _lookup(data, paths)
    if value is _MISSING:
        raise ValueError(f"missing required field {field_name!r}")
    return value


def _optional(data: Dict[str, Any], paths: tuple, default: Any) -> Any:
    value = _lookup(data, paths)
    if value is _MISSING or value is None:
        return default
    return value


def parse_record(data: Any) -> Span:
    """Convert one decoded JSON object into a Span.

    Raises ValueError if the object is not a span record.
    """
    if not isinstance(data, dict):
        raise ValueError("record is not a JSON object")

    span_id = normalize_id(_require(data, _ID_PATHS, "span id"))
    if not span_id:
        raise ValueError("empty span id")
    parent_span_id = normalize_parent_id(_require(data, _PARENT_PATHS, "parent id"))
    name = _require(data, _NAME_PATHS, "name")
    if not isinstance(name, str):
        raise ValueError(f"name must be a string, got {type(name).__name__}")

    start = parse_timestamp(_require(data, _START_PATHS, "start time"))
    end = parse_timestamp(_require(data, _END_PATHS, "end time"))

    status = _optional(data, _STATUS_PATHS, {})
    if not isinstance(status, dict):
        status = {}

    return Span(
        trace_id=normalize_id(_optional(data, _TRACE_PATHS, "")),
        span_id=span_id,
        parent_span_id=parent_span_id,
        name=name,
        start_time_unix_nano=start,
        end_time_unix_nano=end,
        kind=str(_optional(data, _KIND_PATHS, "")),
        attributes=flatten_attributes(_optional(data, _ATTRIBUTE_PATHS, None)),
        status=status,
        resource_attributes=flatten_attributes(_optional(data, _RESOURCE_PATHS, None)),
    )


def parse_stream(stream: IO) -> List[Span]:
    """Decode every span record in a stream of whitespace-delimited JSON objects.

    The stream is drained completely before anything is returned. Raises
    UnreadableInputError if the stream is not valid UTF-8 or ends early, and
    MalformedRecordError with the 1-based record ordinal on the first record
    that fails to decode.
    """
    try:
        text = stream.read()
        if isinstance(text, bytes):
            text = text.decode("utf-8")
    except (UnicodeDecodeError, EOFError) as exc:
        raise UnreadableInputError(exc) from exc

    decoder = json.JSONDecoder()
    spans: List[Span] = []
    pos = _WHITESPACE.match(text, 0).end()
    ordinal = 0
    while pos < len(text):
        ordinal += 1
        try:
            data, pos = decoder.raw_decode(text, pos)
            spans.append(parse_record(data))
        except (json.JSONDecodeError, ValueError, TypeError) as exc:
            raise MalformedRecordError(ordinal, exc) from exc
        pos = _WHITESPACE.match(text, pos).end()
    return spans


def parse_file(path: str) -> List[Span]:
    """Decode a span file (plain or gzip-compressed).

    Supports:
    - Plain text ``.json`` / ``.jsonl`` files
    - Gzip-compressed ``.gz`` files
    - ``-`` for stdin
    """
    if path == "-":
        return parse_stream(sys.stdin)

    if path.endswith(".gz"):
        with gzip.open(path, "rt", encoding="utf-8") as f:
            return parse_stream(f)

    with open(path, encoding="utf-8") as f:
        return parse_stream(f)


def index_spans(spans: List[Span]) -> SpanIndex:
    """Build the id and parent-id lookup tables from decoded spans."""
    index = SpanIndex()
    for span in spans:
        index.add(span)
    return index
