"""Span, annotation and wire-format records shared by the span processors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Endpoint:
    """The network context of a node in a trace."""

    service_name: str | None = None
    ipv4: str | None = None
    ipv6: str | None = None
    port: int | None = None


@dataclass
class Annotation:
    """An event with a timestamp that explains latency."""

    timestamp: int | None = None
    value: str | None = None


@dataclass
class Span:
    """A single operation within a trace."""

    trace_id: str = ""
    id: str = ""
    parent_id: str | None = None
    name: str | None = None
    kind: str | None = None
    timestamp: int | None = None
    duration: int | None = None
    debug: bool | None = None
    shared: bool | None = None
    local_endpoint: Endpoint | None = None
    remote_endpoint: Endpoint | None = None
    annotations: list[Annotation] | None = None
    tags: dict[str, str] | None = None


def get_pointer_to_int64(p: float | None) -> int | None:
    """Truncate an optional float towards zero, keeping None as None."""
    if p is None:
        return None
    return int(p)


@dataclass
class InputAnnotation:
    """An annotation as received, possibly tied to an endpoint."""

    endpoint: Endpoint | None = None
    timestamp: float | None = None
    value: str | None = None

    def to_v2(self) -> Annotation:
        """Return the annotation without its endpoint."""
        return Annotation(timestamp=get_pointer_to_int64(self.timestamp), value=self.value)


@dataclass
class BinaryAnnotation:
    """A keyed annotation carrying an arbitrary value."""

    endpoint: Endpoint | None = None
    key: str | None = None
    value: Any = None


def _format_map(mapping: dict[str, str] | None) -> str:
    items = sorted((mapping or {}).items())
    return "map[" + " ".join(f"{k}:{v}" for k, v in items) + "]"


@dataclass
class BodySendFormatV2:
    """A datapoint in the v2 JSON sending format."""

    metric: str = ""
    timestamp: int = 0
    value: Any = None
    dimensions: dict[str, str] | None = None

    def __str__(self) -> str:
        return (
            f"DP[metric={self.metric}|time={self.timestamp}"
            f"|val={self.value}|dimensions={_format_map(self.dimensions)}]"
        )


@dataclass
class EventSendFormatV2:
    """An event in the v2 JSON sending format."""

    event_type: str = ""
    category: str | None = None
    dimensions: dict[str, str] | None = None
    properties: dict[str, Any] | None = None
    timestamp: int | None = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False)