"""Decoding of Jaeger batches into spans."""

from __future__ import annotations

import ipaddress
import json
import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Any, Callable

from .model import Annotation, Endpoint, Span

JAEGER_V1 = "jaeger_thrift_v1"
CLIENT_KIND = "CLIENT"
SERVER_KIND = "SERVER"
PRODUCER_KIND = "PRODUCER"
CONSUMER_KIND = "CONSUMER"

_KINDS = {
    "client": CLIENT_KIND,
    "server": SERVER_KIND,
    "producer": PRODUCER_KIND,
    "consumer": CONSUMER_KIND,
}
_U64 = 0xFFFFFFFFFFFFFFFF


class TagType(IntEnum):
    STRING = 0
    DOUBLE = 1
    BOOL = 2
    LONG = 3
    BINARY = 4


class SpanRefType(IntEnum):
    CHILD_OF = 0
    FOLLOWS_FROM = 1


def _int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def _opt(value: Any, kind) -> Any:
    if isinstance(value, bool) and kind is not bool:
        return None
    if kind is float and isinstance(value, int):
        return float(value)
    return value if isinstance(value, kind) else None


def _enum(value: Any, enum, default):
    if isinstance(value, str):
        return enum.__members__.get(value, default)
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return enum(value)
        except ValueError:
            return default
    return default


@dataclass
class Tag:
    key: str = ""
    v_type: TagType = TagType.STRING
    v_str: str | None = None
    v_double: float | None = None
    v_bool: bool | None = None
    v_long: int | None = None
    v_binary: bytes | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Tag:
        binary = data.get("vBinary")
        return cls(
            key=data.get("key") if isinstance(data.get("key"), str) else "",
            v_type=_enum(data.get("vType"), TagType, TagType.STRING),
            v_str=_opt(data.get("vStr"), str),
            v_double=_opt(data.get("vDouble"), float),
            v_bool=_opt(data.get("vBool"), bool),
            v_long=_opt(data.get("vLong"), int),
            v_binary=binary.encode("utf-8") if isinstance(binary, str) else None,
        )


@dataclass
class Log:
    timestamp: int = 0
    fields: list[Tag] = field(default_factory=list)


@dataclass
class SpanRef:
    ref_type: SpanRefType = SpanRefType.CHILD_OF
    trace_id_low: int = 0
    trace_id_high: int = 0
    span_id: int = 0


@dataclass
class JaegerSpan:
    trace_id_low: int = 0
    trace_id_high: int = 0
    span_id: int = 0
    parent_span_id: int = 0
    operation_name: str = ""
    references: list[SpanRef] = field(default_factory=list)
    flags: int = 0
    start_time: int = 0
    duration: int = 0
    tags: list[Tag] = field(default_factory=list)
    logs: list[Log] = field(default_factory=list)


@dataclass
class Process:
    service_name: str = ""
    tags: list[Tag] = field(default_factory=list)


def _tags(items: Any) -> list[Tag]:
    return [Tag.from_dict(t) for t in items or [] if isinstance(t, dict)]


@dataclass
class Batch:
    process: Process = field(default_factory=Process)
    spans: list[JaegerSpan] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> Batch:
        """Build a batch from its JSON form; fields of the wrong type take defaults."""
        proc = data.get("process") or {}
        process = Process(
            service_name=proc.get("serviceName") if isinstance(proc.get("serviceName"), str) else "",
            tags=_tags(proc.get("tags")),
        )
        spans = []
        for s in data.get("spans") or []:
            refs = [
                SpanRef(
                    ref_type=_enum(r.get("refType"), SpanRefType, SpanRefType.CHILD_OF),
                    trace_id_low=_int(r.get("traceIdLow")),
                    trace_id_high=_int(r.get("traceIdHigh")),
                    span_id=_int(r.get("spanId")),
                )
                for r in s.get("references") or []
            ]
            logs = [
                Log(timestamp=_int(entry.get("timestamp")), fields=_tags(entry.get("fields")))
                for entry in s.get("logs") or []
            ]
            name = s.get("operationName")
            spans.append(
                JaegerSpan(
                    trace_id_low=_int(s.get("traceIdLow")),
                    trace_id_high=_int(s.get("traceIdHigh")),
                    span_id=_int(s.get("spanId")),
                    parent_span_id=_int(s.get("parentSpanId")),
                    operation_name=name if isinstance(name, str) else "",
                    references=refs,
                    flags=_int(s.get("flags")),
                    start_time=_int(s.get("startTime")),
                    duration=_int(s.get("duration")),
                    tags=_tags(s.get("tags")),
                    logs=logs,
                )
            )
        return cls(process=process, spans=spans)


def pad_id(id_: str) -> str:
    """Left-pad an id with zeros to 16 or 32 hex digits."""
    if len(id_) < 16:
        return id_.rjust(16, "0")
    if 16 < len(id_) < 32:
        return id_.rjust(32, "0")
    return id_


def _hex(value: int) -> str:
    return format(value & _U64, "x")


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def tag_value_to_string(tag: Tag) -> str:
    """Render a tag value as text; unknown types give an empty string."""
    if tag.v_type == TagType.STRING:
        return tag.v_str or ""
    if tag.v_type == TagType.DOUBLE:
        return _format_float(tag.v_double or 0.0)
    if tag.v_type == TagType.BOOL:
        return "true" if tag.v_bool else "false"
    if tag.v_type == TagType.LONG:
        return str(tag.v_long or 0)
    return ""


def materialize_with_json(log_fields: list[Tag]) -> str:
    """Return the lone ``event`` field's value, or all fields as a JSON object."""
    fields = {f.key: tag_value_to_string(f) for f in log_fields}
    if len(fields) == 1 and "event" in fields:
        return fields["event"]
    text = json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


def _peer_ipv4(tag: Tag) -> str:
    if tag.v_type == TagType.STRING:
        try:
            ip = ipaddress.ip_address(tag.v_str or "")
        except ValueError:
            return ""
        if ip.version == 4:
            return str(ip)
        mapped = ip.ipv4_mapped
        return str(mapped) if mapped is not None else "<nil>"
    if tag.v_type == TagType.LONG:
        return str(ipaddress.IPv4Address((tag.v_long or 0) & 0xFFFFFFFF))
    return ""


def _peer_port(tag: Tag) -> int:
    if tag.v_type == TagType.STRING:
        text = tag.v_str or ""
        if text.isdigit() and text.isascii() and int(text) <= 0xFFFF:
            return int(text)
    elif tag.v_type == TagType.LONG:
        value = (tag.v_long or 0) & 0xFFFFFFFF
        return value - 2**32 if value >= 2**31 else value
    return 0


def _process_tags(span: JaegerSpan):
    kind = None
    remote = None
    tags: dict[str, str] = {}

    def ensure_remote() -> Endpoint:
        nonlocal remote
        if remote is None:
            remote = Endpoint()
        return remote

    for tag in span.tags:
        if tag.key == "peer.ipv4":
            ip = _peer_ipv4(tag)
            if ip:
                ensure_remote().ipv4 = ip
        elif tag.key == "peer.ipv6":
            if tag.v_str is not None:
                ensure_remote().ipv6 = tag.v_str
        elif tag.key == "peer.port":
            port = _peer_port(tag)
            if port:
                ensure_remote().port = port
        elif tag.key == "peer.service":
            ensure_remote().service_name = tag.v_str
        elif tag.key == "span.kind":
            kind = _KINDS.get(tag.v_str or "")
        else:
            value = tag_value_to_string(tag)
            if value:
                tags[tag.key] = value
    return kind, remote, tags


def _preferred_parent(refs: list[SpanRef]) -> int:
    preferred = refs[0]
    if preferred.ref_type != SpanRefType.CHILD_OF:
        preferred = next((r for r in refs if r.ref_type == SpanRefType.CHILD_OF), preferred)
    return preferred.span_id


def convert_jaeger_span(t_span: JaegerSpan, t_process: Process) -> Span:
    """Convert one Jaeger span, merging in the process's tags."""
    parent_id = None
    if t_span.parent_span_id != 0:
        parent_id = pad_id(_hex(t_span.parent_span_id))
    elif t_span.references:
        parent_id = pad_id(_hex(_preferred_parent(t_span.references)))

    local = Endpoint(service_name=t_process.service_name)
    kind, remote, tags = _process_tags(t_span)
    for tag in t_process.tags:
        if tag.key == "ip" and tag.v_str is not None:
            local.ipv4 = tag.v_str
        else:
            tags[tag.key] = tag_value_to_string(tag)

    trace_id = pad_id(_hex(t_span.trace_id_low))
    if t_span.trace_id_high != 0:
        trace_id = pad_id(_hex(t_span.trace_id_high) + trace_id)

    return Span(
        trace_id=trace_id,
        id=pad_id(_hex(t_span.span_id)),
        parent_id=parent_id,
        name=t_span.operation_name,
        kind=kind,
        timestamp=t_span.start_time,
        duration=t_span.duration,
        debug=True if t_span.flags & 2 else None,
        local_endpoint=local,
        remote_endpoint=remote,
        annotations=[
            Annotation(timestamp=entry.timestamp, value=materialize_with_json(entry.fields))
            for entry in t_span.logs
        ],
        tags=tags,
    )


def convert_jaeger_batch(batch: Batch) -> list[Span]:
    """Convert every span of a batch."""
    return [convert_jaeger_span(s, batch.process) for s in batch.spans]


class JaegerThriftTraceDecoderV1:
    """Reads a Jaeger batch from a request; ``parse`` turns the body into a Batch."""

    def __init__(self, sink, parse: Callable[[bytes], Batch]) -> None:
        self.sink = sink
        self.parse = parse

    def read(self, request) -> Any:
        body = request.body
        if not isinstance(body, (bytes, bytearray)):
            try:
                body = body.read()
            except Exception:
                raise OSError("could not read request body") from None
        try:
            batch = self.parse(bytes(body))
        except Exception:
            raise ValueError("invalid Jaeger format") from None
        return self.sink.add_spans(convert_jaeger_batch(batch))