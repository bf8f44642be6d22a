import json

import pytest

from sfxgateway.conversions import DatapointType, MetricType
from sfxgateway.listener import (
    ErrorTrackerHandler,
    ListenerConfig,
    MetricHandler,
    create_trace_sink,
)
from sfxgateway.model import Endpoint, Span
from sfxgateway.rules import TagMatchRuleConfig


class RecordingSink:
    def __init__(self):
        self.spans = []

    def add_spans(self, spans):
        self.spans.extend(spans)

    def add_datapoints(self, points):
        return None

    def add_events(self, events):
        return None


class FailingReader:
    def read(self, request):
        raise ValueError("bad body")


class OkReader:
    def __init__(self):
        self.seen = []

    def read(self, request):
        self.seen.append(request)


def test_error_tracker_reports_error_text():
    handler = ErrorTrackerHandler(FailingReader())
    status, body = handler.serve(object())
    assert status == 400
    assert body == b"bad body"
    assert handler.total_errors == 1


def test_error_tracker_ok():
    reader = OkReader()
    handler = ErrorTrackerHandler(reader)
    status, body = handler.serve("req")
    assert (status, body) == (200, b'"OK"')
    assert reader.seen == ["req"]
    assert handler.total_errors == 0


def test_error_tracker_datapoints_count_failures():
    handler = ErrorTrackerHandler(FailingReader())
    handler.serve(None)
    handler.serve(None)
    [dp] = handler.datapoints()
    assert dp.metric == "total_errors"
    assert dp.value == 2
    assert dp.metric_type == DatapointType.COUNTER


def test_metric_handler_records_types():
    handler = MetricHandler()
    body = json.dumps([{"sf_metric": "m1", "sf_metricType": "COUNTER"}]).encode()
    status, out = handler.serve(body)
    assert status == 200
    assert json.loads(out) == [{"code": 409}]
    assert handler.get_metric_type_from_map("m1") == MetricType.COUNTER


def test_metric_handler_unknown_metric_is_gauge():
    handler = MetricHandler()
    assert handler.get_metric_type_from_map("nothing") == MetricType.GAUGE


def test_metric_handler_invalid_type():
    handler = MetricHandler()
    body = json.dumps([{"sf_metric": "m1", "sf_metricType": "NOPE"}]).encode()
    assert handler.serve(body) == (400, b'{msg:"Invalid metric type"}')
    assert handler.get_metric_type_from_map("m1") == MetricType.GAUGE


@pytest.mark.parametrize("body", [b"", b"not json", b'{"a": 1}'])
def test_metric_handler_invalid_request(body):
    handler = MetricHandler()
    assert handler.serve(body) == (400, b'{msg:"Invalid creation request"}')


def test_metric_handler_marshal_failure():
    def broken(value):
        raise RuntimeError("nope")

    handler = MetricHandler(broken)
    body = json.dumps([{"sf_metric": "m", "sf_metricType": "GAUGE"}]).encode()
    assert handler.serve(body) == (400, b'{msg:"Unable to marshal json!"}')


def test_metric_handler_custom_marshal_receives_responses():
    seen = []

    def marshal(value):
        seen.append(value)
        return b"x"

    handler = MetricHandler(marshal)
    body = json.dumps(
        [
            {"sf_metric": "a", "sf_metricType": "GAUGE"},
            {"sf_metric": "b", "sf_metricType": "CUMULATIVE_COUNTER"},
        ]
    ).encode()
    assert handler.serve(body) == (200, b"x")
    assert seen == [[{"code": 409}, {"code": 409}]]
    assert handler.get_metric_type_from_map("b") == MetricType.CUMULATIVE_COUNTER


def test_trace_sink_default_processes_debug():
    end = RecordingSink()
    sink = create_trace_sink(end, ListenerConfig())
    span = Span(debug=True)
    sink.add_spans([span])
    assert end.spans == [span]
    assert span.tags == {"sampling.priority": "1"}


def test_trace_sink_applies_all_processors():
    end = RecordingSink()
    conf = ListenerConfig(
        span_name_replacement_rules=[r"^/doc/(?P<docId>.*)$"],
        remove_span_tags=[TagMatchRuleConfig(service="svc", tags=["drop"])],
        obfuscate_span_tags=[TagMatchRuleConfig(service="svc", tags=["hide"])],
    )
    sink = create_trace_sink(end, conf)
    span = Span(
        name="/doc/42",
        local_endpoint=Endpoint(service_name="svc"),
        tags={"drop": "x", "hide": "y", "keep": "z"},
    )
    sink.add_spans([span])
    assert span.name == "/doc/{docId}"
    assert span.tags == {"hide": "<obfuscated>", "keep": "z", "docId": "42"}
    assert end.spans == [span]


def test_trace_sink_bad_removal_rule():
    conf = ListenerConfig(remove_span_tags=[TagMatchRuleConfig()])
    with pytest.raises(ValueError, match="cannot parse span tag removal rules"):
        create_trace_sink(RecordingSink(), conf)


def test_trace_sink_bad_replacement_rule():
    conf = ListenerConfig(span_name_replacement_rules=[r"^/doc/(.*)$"])
    with pytest.raises(ValueError, match="cannot parse tag replacement rules"):
        create_trace_sink(RecordingSink(), conf)


def test_listener_config_defaults():
    conf = ListenerConfig()
    assert conf.listen_addr == "127.0.0.1:12345"
    assert conf.health_check == "/healthz"
    assert conf.span_name_replacement_break_after_match is True
    assert conf.json_marshal([{"code": 409}]) == b'[{"code":409}]'