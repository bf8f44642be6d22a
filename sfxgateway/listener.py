"""Request handling pieces of the SignalFx listener: error tracking, metric creation and trace sinks."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .conversions import (
    Datapoint,
    DatapointType,
    MetricCreationResponse,
    MetricCreationStruct,
    MetricType,
)
from .obfuscation import SpanTagObfuscation, SpanTagRemoval
from .processdebug import ProcessDebug
from .rules import TagMatchRuleConfig
from .tagreplace import TagReplace

logger = logging.getLogger(__name__)

INVALID_CREATION_REQUEST = b'{msg:"Invalid creation request"}'
INVALID_METRIC_TYPE = b'{msg:"Invalid metric type"}'
UNABLE_TO_MARSHAL = b'{msg:"Unable to marshal json!"}'
OK_BODY = b'"OK"'


def _default_json_marshal(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


@dataclass
class ListenerConfig:
    """Optional parameters of the listener; every field has a default."""

    listen_addr: str = "127.0.0.1:12345"
    health_check: str = "/healthz"
    timeout: float = 30.0
    json_marshal: Callable[[Any], bytes] = _default_json_marshal
    span_name_replacement_rules: list[str] = field(default_factory=list)
    span_name_replacement_break_after_match: bool = True
    remove_span_tags: list[TagMatchRuleConfig] = field(default_factory=list)
    obfuscate_span_tags: list[TagMatchRuleConfig] = field(default_factory=list)


class ErrorTrackerHandler:
    """Serves a reader, answering 400 with the error text and counting failures."""

    def __init__(self, reader) -> None:
        self.reader = reader
        self.total_errors = 0
        self._lock = threading.Lock()

    def datapoints(self) -> list[Datapoint]:
        """Return the cumulative count of failed requests."""
        with self._lock:
            total = self.total_errors
        return [
            Datapoint("total_errors", {}, total, DatapointType.COUNTER, datetime.now(timezone.utc))
        ]

    def serve(self, request) -> tuple[int, bytes]:
        """Read the request; return the HTTP status and response body."""
        try:
            self.reader.read(request)
        except Exception as exc:
            with self._lock:
                self.total_errors += 1
            return 400, str(exc).encode("utf-8")
        return 200, OK_BODY


class MetricHandler:
    """Records metric type declarations and answers lookups of them."""

    def __init__(self, json_marshal: Callable[[Any], bytes] | None = None) -> None:
        self.json_marshal = json_marshal or _default_json_marshal
        self._lock = threading.Lock()
        self._metric_types: dict[str, MetricType] = {}

    @staticmethod
    def _decode(body: bytes) -> list[MetricCreationStruct]:
        text = body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else body
        data, _ = json.JSONDecoder().raw_decode(text.lstrip())
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError("metric creation request must be a list")
        return [MetricCreationStruct.from_dict(entry) for entry in data]

    def serve(self, body) -> tuple[int, bytes]:
        """Handle a creation request body; return the HTTP status and response body."""
        try:
            declarations = self._decode(body)
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("Invalid metric creation request: %s", exc)
            return 400, INVALID_CREATION_REQUEST
        responses = []
        with self._lock:
            for declaration in declarations:
                metric_type = MetricType.__members__.get(declaration.metric_type)
                if metric_type is None:
                    return 400, INVALID_METRIC_TYPE
                self._metric_types[declaration.metric_name] = metric_type
                responses.append(MetricCreationResponse(code=409))
        try:
            to_write = self.json_marshal([r.to_dict() for r in responses])
        except Exception as exc:
            logger.error("Unable to marshal json: %s", exc)
            return 400, UNABLE_TO_MARSHAL
        return 200, to_write

    def get_metric_type_from_map(self, metric_name: str) -> MetricType:
        """Return the declared type of a metric, GAUGE when undeclared."""
        with self._lock:
            return self._metric_types.get(metric_name, MetricType.GAUGE)


def create_trace_sink(sink, conf: ListenerConfig):
    """Wrap ``sink`` in the span processors the configuration asks for.

    Spans pass through debug processing, name replacement, obfuscation and
    removal, in that order, before reaching ``sink``.
    """
    if conf.remove_span_tags:
        try:
            sink = SpanTagRemoval(conf.remove_span_tags, sink)
        except ValueError as exc:
            raise ValueError(
                f"cannot parse span tag removal rules {conf.remove_span_tags}: {exc}"
            ) from exc
    if conf.obfuscate_span_tags:
        try:
            sink = SpanTagObfuscation(conf.obfuscate_span_tags, sink)
        except ValueError as exc:
            raise ValueError(
                f"cannot parse span tag obfuscation rules {conf.obfuscate_span_tags}: {exc}"
            ) from exc
    if conf.span_name_replacement_rules:
        try:
            sink = TagReplace(
                conf.span_name_replacement_rules,
                conf.span_name_replacement_break_after_match,
                sink,
            )
        except ValueError as exc:
            raise ValueError(
                f"cannot parse tag replacement rules {conf.span_name_replacement_rules}: {exc}"
            ) from exc
    return ProcessDebug(sink)