"""Decoders for SignalFx datapoint uploads in the v1 and v2 formats."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from .conversions import (
    Datapoint,
    DatapointType,
    DatapointValueNotSetError,
    MetricType,
    ProtoDataPoint,
    from_mt,
    from_ts,
    new_protobuf_datapoint_with_type,
    value_to_value,
)
from .model import BodySendFormatV2

logger = logging.getLogger(__name__)

TOKEN_HEADER_NAME = "X-SF-Token"
SHA1_KEY = "sha1"
CALLER_KEY = "caller"
MAX_MESSAGE_SIZE = 32768
INVALID_JSON_FORMAT = "invalid JSON format"


@dataclass
class Request:
    """An incoming upload: its body and headers."""

    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    def header(self, name: str) -> str:
        """Return a header value, ignoring case, or an empty string."""
        wanted = name.lower()
        return next((v for k, v in self.headers.items() if k.lower() == wanted), "")


def get_token_log_format(request: Request) -> dict[str, str]:
    """Describe the request's token for logs without revealing all of it."""
    head = request.header(TOKEN_HEADER_NAME)
    if not head:
        return {}
    digest = hashlib.sha1(head.encode("utf-8")).digest()
    return {
        SHA1_KEY: base64.b64encode(digest).decode("ascii"),
        CALLER_KEY: head[: len(head) // 2],
    }


def _send(sink, points: list[Datapoint]) -> None:
    try:
        sink.add_datapoints(points)
    except Exception:
        logger.exception("unable to add datapoints")


def _decode_varint(buf: bytes) -> tuple[int, int]:
    value = 0
    for index, byte in enumerate(buf):
        value |= (byte & 0x7F) << (7 * index)
        if byte < 0x80:
            return value, index + 1
    return 0, 0


class ProtobufDecoderV1:
    """Reads a stream of length-prefixed v1 protobuf datapoints.

    ``parse_message`` turns the bytes of one message into a ProtoDataPoint.
    """

    def __init__(self, sink, type_getter, parse_message: Callable[[bytes], ProtoDataPoint]) -> None:
        self.sink = sink
        self.type_getter = type_getter
        self.parse_message = parse_message

    def read(self, request: Request) -> None:
        body = request.body
        pos = 0
        while pos < len(body):
            head = body[pos : pos + 4]
            if len(head) < 4:
                raise EOFError("EOF")
            size, used = _decode_varint(head)
            if used == 0:
                raise ValueError("invalid protobuf varint")
            if size > MAX_MESSAGE_SIZE:
                raise ValueError("protobuf structure too large")
            pos += used
            payload = body[pos : pos + size]
            if len(payload) < size:
                raise ValueError("unable to fully read protobuf message: unexpected EOF")
            pos += size
            msg = self.parse_message(payload)
            if msg.metric is None or msg.value is None:
                raise ValueError("invalid protocol buffer sent")
            mt = self.type_getter.get_metric_type_from_map(msg.metric)
            _send(self.sink, [new_protobuf_datapoint_with_type(msg, mt)])


def _parse_v1(obj: Any) -> tuple[str, str, float]:
    if obj is None:
        return "", "", 0.0
    if not isinstance(obj, dict):
        raise ValueError("datapoint must be a JSON object")
    fields: dict[str, Any] = {k.lower(): v for k, v in obj.items()}
    source = fields.get("source") or ""
    metric = fields.get("metric") or ""
    value = fields.get("value")
    if not isinstance(source, str) or not isinstance(metric, str):
        raise ValueError("source and metric must be strings")
    if value is None:
        value = 0.0
    elif isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("value must be a number")
    return source, metric, float(value)


class JSONDecoderV1:
    """Reads a stream of concatenated v1 JSON datapoint objects."""

    def __init__(self, sink, type_getter) -> None:
        self.sink = sink
        self.type_getter = type_getter

    def _objects(self, text: str) -> Iterable[Any]:
        decoder = json.JSONDecoder()
        pos = 0
        while True:
            while pos < len(text) and text[pos].isspace():
                pos += 1
            if pos >= len(text):
                return
            obj, pos = decoder.raw_decode(text, pos)
            yield obj

    def read(self, request: Request) -> None:
        text = request.body.decode("utf-8")
        for obj in self._objects(text):
            source, metric, value = _parse_v1(obj)
            if not metric:
                continue
            mt = from_mt(self.type_getter.get_metric_type_from_map(metric))
            dp = Datapoint(metric, {"sf_source": source}, value, mt, datetime.now(timezone.utc))
            _send(self.sink, [dp])


class ProtobufDecoderV2:
    """Reads a v2 protobuf upload message.

    ``parse_upload`` turns the request body into the message's datapoints.
    """

    def __init__(self, sink, parse_upload: Callable[[bytes], Iterable[ProtoDataPoint]]) -> None:
        self.sink = sink
        self.parse_upload = parse_upload

    def read(self, request: Request) -> None:
        dps = []
        for proto_dp in self.parse_upload(request.body):
            try:
                dps.append(new_protobuf_datapoint_with_type(proto_dp, MetricType.GAUGE))
            except DatapointValueNotSetError:
                continue
        if dps:
            self.sink.add_datapoints(dps)


def _require_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a string")
    return value


def _parse_body_v2(raw: Any) -> BodySendFormatV2 | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError("datapoint must be a JSON object")
    body = BodySendFormatV2()
    for key, value in raw.items():
        if value is None:
            continue
        if key == "metric":
            body.metric = _require_str(value, "metric")
        elif key == "timestamp":
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError("timestamp must be an integer")
            body.timestamp = value
        elif key == "value":
            body.value = float(value) if isinstance(value, int) and not isinstance(value, bool) else value
        elif key == "dimensions":
            if not isinstance(value, dict):
                raise ValueError("dimensions must be an object")
            body.dimensions = {k: _require_str(v, "dimension") for k, v in value.items()}
    return body


def _parse_v2(text: bytes) -> dict[str, list[BodySendFormatV2 | None]]:
    try:
        data = json.loads(text.decode("utf-8"))
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("top level must be an object")
        parsed = {}
        for metric_type, entries in data.items():
            if entries is None:
                parsed[metric_type] = []
                continue
            if not isinstance(entries, list):
                raise ValueError("datapoints must be a list")
            parsed[metric_type] = [_parse_body_v2(entry) for entry in entries]
        return parsed
    except (ValueError, OverflowError, UnicodeDecodeError):
        raise ValueError(INVALID_JSON_FORMAT) from None


class JSONDecoderV2:
    """Reads v2 JSON uploads keyed by metric type, counting dropped points."""

    def __init__(self, sink) -> None:
        self.sink = sink
        self._lock = threading.Lock()
        self.unknown_metric_type = 0
        self.invalid_value = 0

    def datapoints(self) -> list[Datapoint]:
        """Return counters of points dropped for each reason."""
        now = datetime.now(timezone.utc)
        with self._lock:
            counts = (("unknown_metric_type", self.unknown_metric_type), ("invalid_value", self.invalid_value))
        return [
            Datapoint(
                "dropped_points",
                {"protocol": "sfx_json_v2", "reason": reason},
                count,
                DatapointType.COUNT,
                now,
            )
            for reason, count in counts
        ]

    def read(self, request: Request) -> None:
        parsed = _parse_v2(request.body)
        dps = []
        for metric_type, entries in parsed.items():
            if not entries:
                continue
            mt = MetricType.__members__.get(metric_type.upper())
            if mt is None:
                logger.warning(
                    "Unknown metric type %s struct=%s %s",
                    metric_type,
                    entries[0],
                    get_token_log_format(request),
                )
                with self._lock:
                    self.unknown_metric_type += len(entries)
                continue
            for entry in entries:
                try:
                    if entry is None:
                        raise TypeError("unable to convert value: null datapoint")
                    value = value_to_value(entry.value)
                except TypeError as exc:
                    logger.warning(
                        "Unable to get value for datapoint struct=%s err=%s %s",
                        entry,
                        exc,
                        get_token_log_format(request),
                    )
                    with self._lock:
                        self.invalid_value += 1
                    continue
                dps.append(
                    Datapoint(
                        entry.metric,
                        dict(entry.dimensions or {}),
                        value,
                        from_mt(mt),
                        from_ts(entry.timestamp),
                    )
                )
        if dps:
            self.sink.add_datapoints(dps)