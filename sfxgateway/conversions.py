"""Conversion of SignalFx wire structures into datapoints and events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Union

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INT64_MIN = -(2**63)
_INT64_LIMIT = 2**63

Value = Union[int, float, str]


class MetricType(IntEnum):
    """Metric types as they appear on the wire."""

    GAUGE = 0
    COUNTER = 1
    ENUM = 2
    CUMULATIVE_COUNTER = 3


class DatapointType(IntEnum):
    """Metric types of a decoded datapoint."""

    GAUGE = 0
    COUNT = 1
    ENUM = 2
    COUNTER = 3
    RATE = 4
    TIMESTAMP = 5


class EventCategory(IntEnum):
    """Categories an event may belong to."""

    USER_DEFINED = 1000000
    ALERT = 100000
    AUDIT = 200000
    JOB = 300000
    COLLECTD = 400000
    SERVICE_DISCOVERY = 500000
    EXCEPTION = 700000
    AGENT = 2000000


class DatapointValueNotSetError(ValueError):
    """Raised when a wire datapoint carries no value."""

    def __init__(self) -> None:
        super().__init__("datapoint value not set")


class PropertyValueNotSetError(ValueError):
    """Raised when an event property carries no value."""

    def __init__(self) -> None:
        super().__init__("property value not set")


@dataclass
class Datapoint:
    """A decoded metric measurement."""

    metric: str
    dimensions: dict[str, str]
    value: Value
    metric_type: DatapointType
    timestamp: datetime


@dataclass
class Event:
    """A decoded event."""

    event_type: str
    category: EventCategory
    dimensions: dict[str, str]
    properties: dict[str, Any]
    timestamp: datetime


@dataclass
class Datum:
    """A wire value: at most one of the fields is expected to be set."""

    str_value: str | None = None
    double_value: float | None = None
    int_value: int | None = None


@dataclass
class Dimension:
    """A key/value pair on a wire datapoint or event."""

    key: str = ""
    value: str = ""


@dataclass
class ProtoDataPoint:
    """A datapoint as carried by the protocol buffer format."""

    source: str | None = None
    metric: str | None = None
    timestamp: int | None = None
    value: Datum | None = None
    metric_type: MetricType | None = None
    dimensions: list[Dimension] = field(default_factory=list)


@dataclass
class PropertyValue:
    """A wire property value: at most one of the fields is expected to be set."""

    str_value: str | None = None
    double_value: float | None = None
    int_value: int | None = None
    bool_value: bool | None = None


@dataclass
class Property:
    """A named property of a wire event."""

    key: str = ""
    value: PropertyValue | None = None


@dataclass
class ProtoEvent:
    """An event as carried by the protocol buffer format."""

    event_type: str = ""
    category: int | None = None
    dimensions: list[Dimension] = field(default_factory=list)
    properties: list[Property] = field(default_factory=list)
    timestamp: int | None = None


@dataclass
class MetricCreationStruct:
    """A metric declaration sent to the metric creation endpoint."""

    metric_name: str = ""
    metric_type: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MetricCreationStruct:
        """Build from the ``sf_metric``/``sf_metricType`` JSON object."""
        if not isinstance(data, dict):
            raise ValueError("metric creation entry must be an object")
        name = data.get("sf_metric") or ""
        kind = data.get("sf_metricType") or ""
        if not isinstance(name, str) or not isinstance(kind, str):
            raise ValueError("metric creation fields must be strings")
        return cls(metric_name=name, metric_type=kind)

    def to_dict(self) -> dict[str, str]:
        return {"sf_metric": self.metric_name, "sf_metricType": self.metric_type}


@dataclass
class MetricCreationResponse:
    """A response entry of the metric creation endpoint."""

    code: int = 0
    error: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object, leaving out empty fields."""
        out: dict[str, Any] = {}
        if self.code:
            out["code"] = self.code
        if self.error:
            out["error"] = self.error
        if self.message:
            out["message"] = self.message
        return out


def new_datum_value(val: Datum) -> Value:
    """Return the value of a datum, preferring double, then int, then string."""
    if val.double_value is not None:
        return float(val.double_value)
    if val.int_value is not None:
        return int(val.int_value)
    return val.str_value if val.str_value is not None else ""


def value_to_value(v: Any) -> Value:
    """Convert a v2 JSON value; integral floats within int64 range become ints."""
    if isinstance(v, bool):
        raise TypeError(f"unable to convert value: {v!r}")
    if isinstance(v, float):
        if v.is_integer() and _INT64_MIN <= v < _INT64_LIMIT:
            return int(v)
        return v
    if isinstance(v, (int, str)):
        return v
    raise TypeError(f"unable to convert value: {v!r}")


_FROM_MT = {
    MetricType.CUMULATIVE_COUNTER: DatapointType.COUNTER,
    MetricType.GAUGE: DatapointType.GAUGE,
    MetricType.COUNTER: DatapointType.COUNT,
}


def from_mt(mt: int) -> DatapointType:
    """Map a wire metric type to a datapoint type, raising ValueError if unknown."""
    try:
        return _FROM_MT[mt]
    except KeyError:
        raise ValueError(f"Unknown metric type: {mt}") from None


def from_ts(ts: int) -> datetime:
    """Positive values are epoch milliseconds; others are offsets from now."""
    if ts > 0:
        return _EPOCH + timedelta(milliseconds=ts)
    return datetime.now(timezone.utc) - timedelta(milliseconds=ts)


def new_protobuf_datapoint_with_type(dp: ProtoDataPoint, m_type: MetricType) -> Datapoint:
    """Build a datapoint, using the datapoint's own type when it has one."""
    if dp.value is None:
        raise DatapointValueNotSetError()
    mt = dp.metric_type if dp.metric_type is not None else m_type
    dims: dict[str, str] = {}
    if dp.source:
        dims["sf_source"] = dp.source
    dims.update((dim.key, dim.value) for dim in dp.dimensions)
    return Datapoint(
        metric=dp.metric or "",
        dimensions=dims,
        value=new_datum_value(dp.value),
        metric_type=from_mt(mt),
        timestamp=from_ts(dp.timestamp or 0),
    )


def property_as_raw_type(p: PropertyValue | None) -> Any:
    """Return the set value of a property, or None."""
    if p is None:
        return None
    for candidate in (p.bool_value, p.double_value, p.str_value, p.int_value):
        if candidate is not None:
            return candidate
    return None


def _property_value(pval: PropertyValue | None) -> Any:
    if pval is not None:
        for candidate in (pval.str_value, pval.bool_value, pval.double_value, pval.int_value):
            if candidate is not None:
                return candidate
    raise PropertyValueNotSetError()


def _event_category(category: int | None) -> EventCategory:
    if category is None:
        return EventCategory.USER_DEFINED
    try:
        return EventCategory(category)
    except ValueError:
        return EventCategory.USER_DEFINED


def new_protobuf_event(e: ProtoEvent) -> Event:
    """Build an event, raising PropertyValueNotSetError for an empty property."""
    dims = {dim.key: dim.value for dim in e.dimensions}
    props = {prop.key: _property_value(prop.value) for prop in e.properties}
    return Event(
        event_type=e.event_type,
        category=_event_category(e.category),
        dimensions=dims,
        properties=props,
        timestamp=from_ts(e.timestamp or 0),
    )