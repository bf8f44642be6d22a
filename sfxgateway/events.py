"""Decoders for SignalFx v2 event uploads."""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable

from .conversions import (
    Event,
    EventCategory,
    PropertyValueNotSetError,
    ProtoEvent,
    from_ts,
    new_protobuf_event,
)
from .decoders import Request


class ProtobufEventDecoderV2:
    """Reads a v2 protobuf event upload.

    ``parse_upload`` turns the request body into the message's events.
    """

    def __init__(self, sink, parse_upload: Callable[[bytes], Iterable[ProtoEvent]]) -> None:
        self.sink = sink
        self.parse_upload = parse_upload

    def read(self, request: Request) -> None:
        events = []
        for proto_event in self.parse_upload(request.body):
            try:
                events.append(new_protobuf_event(proto_event))
            except PropertyValueNotSetError:
                continue
        if events:
            self.sink.add_events(events)


def _string_map(value: Any, what: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        raise ValueError(f"{what} must be an object of strings")
    return dict(value)


def _parse_event(raw: Any) -> Event:
    if not isinstance(raw, dict):
        raise ValueError("event must be a JSON object")
    event_type = raw.get("eventType") or ""
    if not isinstance(event_type, str):
        raise ValueError("eventType must be a string")
    category_name = raw.get("category")
    if category_name is None:
        category_name = "USER_DEFINED"
    if not isinstance(category_name, str):
        raise ValueError("category must be a string")
    category = EventCategory.__members__.get(category_name, EventCategory.USER_DEFINED)
    properties = raw.get("properties")
    if properties is None:
        properties = {}
    elif not isinstance(properties, dict):
        raise ValueError("properties must be an object")
    timestamp = raw.get("timestamp")
    if timestamp is None:
        timestamp = 0
    elif isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise ValueError("timestamp must be an integer")
    return Event(
        event_type=event_type,
        category=category,
        dimensions=_string_map(raw.get("dimensions"), "dimensions"),
        properties=dict(properties),
        timestamp=from_ts(timestamp),
    )


class JSONEventDecoderV2:
    """Reads a v2 JSON list of events and hands them all to the sink."""

    def __init__(self, sink) -> None:
        self.sink = sink

    def read(self, request: Request) -> None:
        try:
            data = json.loads(request.body.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError(f"invalid JSON: {exc}") from None
        if data is None:
            data = []
        if not isinstance(data, list):
            raise ValueError("events must be a JSON list")
        self.sink.add_events([_parse_event(raw) for raw in data])