from datetime import datetime, timezone

import pytest

from sfxgateway.conversions import (
    DatapointType,
    Datum,
    MetricType,
    ProtoDataPoint,
)
from sfxgateway.decoders import (
    CALLER_KEY,
    SHA1_KEY,
    TOKEN_HEADER_NAME,
    JSONDecoderV1,
    JSONDecoderV2,
    ProtobufDecoderV1,
    ProtobufDecoderV2,
    Request,
    get_token_log_format,
)


class RecordingSink:
    def __init__(self, fail=False):
        self.points = []
        self.calls = 0
        self.fail = fail

    def add_datapoints(self, points):
        self.calls += 1
        if self.fail:
            raise RuntimeError("sink down")
        self.points.extend(points)


class FixedTypes:
    def __init__(self, types=None):
        self.types = types or {}

    def get_metric_type_from_map(self, name):
        return self.types.get(name, MetricType.GAUGE)


def varint(n):
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def parse_name(payload):
    return ProtoDataPoint(metric=payload.decode(), value=Datum(int_value=len(payload)))


def test_token_log_format():
    header_value = "FIRST_HALF"
    request = Request(headers={TOKEN_HEADER_NAME: header_value})
    assert get_token_log_format(request) == {SHA1_KEY: "dg7tp+xlWq6sb2Aj6lyRvaIYaXY=", CALLER_KEY: "FIRST"}
    assert get_token_log_format(Request(headers={TOKEN_HEADER_NAME: ""})) == {}


def test_request_header_ignores_case():
    header_value = "token"
    request = Request(body="x", headers={"x-sf-token": header_value})
    assert request.header(TOKEN_HEADER_NAME) == "token"
    assert request.body == b"x"
    assert get_token_log_format(request)[CALLER_KEY] == "to"


def test_protobuf_v1_reads_stream():
    sink = RecordingSink()
    decoder = ProtobufDecoderV1(sink, FixedTypes({"bbbbb": MetricType.COUNTER}), parse_name)
    body = varint(4) + b"aaaa" + varint(5) + b"bbbbb"
    decoder.read(Request(body=body))
    assert [(p.metric, p.value, p.metric_type) for p in sink.points] == [
        ("aaaa", 4, DatapointType.GAUGE),
        ("bbbbb", 5, DatapointType.COUNT),
    ]
    assert sink.calls == 2


def test_protobuf_v1_empty_body():
    sink = RecordingSink()
    ProtobufDecoderV1(sink, FixedTypes(), parse_name).read(Request())
    assert sink.calls == 0


def test_protobuf_v1_errors():
    decoder = ProtobufDecoderV1(RecordingSink(), FixedTypes(), parse_name)
    with pytest.raises(ValueError, match="too large"):
        decoder.read(Request(body=varint(40000) + b"abcd"))
    with pytest.raises(ValueError, match="varint"):
        decoder.read(Request(body=b"\xff\xff\xff\xff"))
    with pytest.raises(ValueError, match="unable to fully read"):
        decoder.read(Request(body=b"\x05abc"))
    with pytest.raises(EOFError):
        decoder.read(Request(body=b"\x01a"))


def test_protobuf_v1_invalid_message():
    decoder = ProtobufDecoderV1(RecordingSink(), FixedTypes(), lambda payload: ProtoDataPoint(metric="m"))
    with pytest.raises(ValueError, match="invalid protocol buffer"):
        decoder.read(Request(body=varint(4) + b"abcd"))


def test_protobuf_v1_sink_errors_are_logged():
    sink = RecordingSink(fail=True)
    ProtobufDecoderV1(sink, FixedTypes(), parse_name).read(Request(body=varint(4) + b"abcd"))
    assert sink.calls == 1


def test_json_v1_reads_stream():
    sink = RecordingSink()
    body = '{"source":"s","metric":"m","value":3} {"metric":"","value":1}\n{"metric":"c","value":2.5}'
    JSONDecoderV1(sink, FixedTypes({"c": MetricType.CUMULATIVE_COUNTER})).read(Request(body=body))
    assert [(p.metric, p.dimensions, p.value, p.metric_type) for p in sink.points] == [
        ("m", {"sf_source": "s"}, 3.0, DatapointType.GAUGE),
        ("c", {"sf_source": ""}, 2.5, DatapointType.COUNTER),
    ]
    assert type(sink.points[0].value) is float


def test_json_v1_invalid():
    decoder = JSONDecoderV1(RecordingSink(), FixedTypes())
    with pytest.raises(ValueError):
        decoder.read(Request(body='{"metric": "m", '))
    with pytest.raises(ValueError):
        decoder.read(Request(body='{"metric": "m", "value": "x"}'))


def test_protobuf_v2_skips_missing_values():
    sink = RecordingSink()
    points = [ProtoDataPoint(metric="a", value=Datum(str_value="x")), ProtoDataPoint(metric="b")]
    ProtobufDecoderV2(sink, lambda body: points).read(Request(body=b"ignored"))
    assert [(p.metric, p.value, p.metric_type) for p in sink.points] == [("a", "x", DatapointType.GAUGE)]


def test_protobuf_v2_nothing_to_send():
    sink = RecordingSink()
    ProtobufDecoderV2(sink, lambda body: [ProtoDataPoint(metric="b")]).read(Request())
    assert sink.calls == 0


def test_protobuf_v2_sink_error_propagates():
    points = [ProtoDataPoint(metric="a", value=Datum(int_value=1))]
    with pytest.raises(RuntimeError, match="sink down"):
        ProtobufDecoderV2(RecordingSink(fail=True), lambda body: points).read(Request())


def test_json_v2_decodes_and_counts_drops():
    sink = RecordingSink()
    decoder = JSONDecoderV2(sink)
    body = (
        '{"gauge":[{"metric":"a","value":1,"timestamp":1000,"dimensions":{"k":"v"}}],'
        '"unknown":[{"metric":"b","value":1},{"metric":"b2","value":2}],'
        '"cumulative_counter":[{"metric":"c","value":{"x":1}},{"metric":"d","value":1.5,"timestamp":2000}]}'
    )
    decoder.read(Request(body=body))
    assert [(p.metric, p.dimensions, p.value, p.metric_type, p.timestamp) for p in sink.points] == [
        ("a", {"k": "v"}, 1, DatapointType.GAUGE, datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)),
        ("d", {}, 1.5, DatapointType.COUNTER, datetime(1970, 1, 1, 0, 0, 2, tzinfo=timezone.utc)),
    ]
    counters = {p.dimensions["reason"]: p.value for p in decoder.datapoints()}
    assert counters == {"unknown_metric_type": 2, "invalid_value": 1}
    assert all(p.metric == "dropped_points" and p.metric_type is DatapointType.COUNT for p in decoder.datapoints())


def test_json_v2_invalid_format():
    decoder = JSONDecoderV2(RecordingSink())
    with pytest.raises(ValueError, match="invalid JSON format"):
        decoder.read(Request(body="not json"))
    with pytest.raises(ValueError, match="invalid JSON format"):
        decoder.read(Request(body='{"gauge": [{"metric": 3}]}'))


def test_json_v2_empty_does_not_call_sink():
    sink = RecordingSink()
    JSONDecoderV2(sink).read(Request(body='{"gauge": []}'))
    assert sink.calls == 0