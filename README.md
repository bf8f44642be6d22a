# sfxgateway

Building blocks for a SignalFx-compatible ingest gateway: readers for the
v1/v2 datapoint and event upload formats and for Jaeger trace batches, and
sinks that rework spans on their way to a downstream sink. It has no
dependencies beyond the standard library.

## Install

    pip install .

For running the tests:

    pip install ".[test]"
    pytest

## Sinks

A sink is any object with `add_datapoints(points)`, `add_events(events)` and
`add_spans(spans)`. The span processors below are sinks themselves: they pass
datapoints and events straight through to the next sink, change spans in
place, and then hand the spans on.

- `sfxgateway.obfuscation.SpanTagObfuscation(rule_configs, next_sink)`
  replaces the listed tags of matching spans with `"<obfuscated>"` (only tags
  that are present).
- `sfxgateway.obfuscation.SpanTagRemoval(rule_configs, next_sink)` deletes the
  listed tags from matching spans.
- `sfxgateway.processdebug.ProcessDebug(next_sink)` sets the
  `sampling.priority` tag to `"1"` on spans whose `debug` is true, and sets
  `debug = True` on spans already tagged `sampling.priority: "1"`.
- `sfxgateway.tagreplace.TagReplace(rule_strings, exit_early, next_sink)`
  matches each regular expression against span names; every group must be
  named. Captured text goes into a tag of the group's name and is replaced in
  the name by `{group}`. With `exit_early` only the first matching rule is
  applied.

Rules for obfuscation and removal come from `sfxgateway.rules`:
`TagMatchRuleConfig(service=None, operation=None, tags=[...])`. A missing
service or operation means `*`. In patterns only `*` is special; every other
character is literal, and the whole name must match (`get_glob`, `Glob.match`).
`get_rules` raises `ValueError` when a rule has no tags or an empty tag;
`TagReplace` raises `ValueError` for an invalid regex or one with unnamed or no
groups.

    from sfxgateway.model import Endpoint, Span
    from sfxgateway.rules import TagMatchRuleConfig
    from sfxgateway.obfuscation import SpanTagObfuscation

    class Collect:
        def add_datapoints(self, points): ...
        def add_events(self, events): ...
        def add_spans(self, spans):
            self.spans = spans

    end = Collect()
    sink = SpanTagObfuscation(
        [TagMatchRuleConfig(service="some*service", tags=["PII"])], end
    )
    span = Span(name="op", local_endpoint=Endpoint(service_name="some-test-service"),
                tags={"PII": "val"})
    sink.add_spans([span])
    assert span.tags == {"PII": "<obfuscated>"}

`sfxgateway.listener.create_trace_sink(sink, conf)` chains these from a
`ListenerConfig`: spans pass through `ProcessDebug`, then `TagReplace`
(`span_name_replacement_rules`, `span_name_replacement_break_after_match`),
then `SpanTagObfuscation` (`obfuscate_span_tags`), then `SpanTagRemoval`
(`remove_span_tags`), each only when configured, before reaching `sink`.

## Readers

Readers take a `sfxgateway.decoders.Request(body, headers)` in `read(request)`,
send what they decode to their sink, and raise on malformed input.

- `decoders.JSONDecoderV1(sink, type_getter)`: concatenated v1 JSON objects
  (`source`, `metric`, `value`); the metric type comes from
  `type_getter.get_metric_type_from_map(metric)`.
- `decoders.ProtobufDecoderV1(sink, type_getter, parse_message)`: a stream of
  varint length-prefixed messages (at most 32768 bytes each).
- `decoders.JSONDecoderV2(sink)`: v2 JSON keyed by metric type (`gauge`,
  `counter`, `cumulative_counter`, ...). Points of an unknown type or with an
  unusable value are dropped and counted; `datapoints()` reports the counts as
  `dropped_points`.
- `decoders.ProtobufDecoderV2(sink, parse_upload)`.
- `events.JSONEventDecoderV2(sink)` and
  `events.ProtobufEventDecoderV2(sink, parse_upload)`.
- `jaeger.JaegerThriftTraceDecoderV1(sink, parse)`: converts a `jaeger.Batch`
  to `model.Span` objects (ids padded to 16 or 32 hex digits, `peer.*` tags
  turned into the remote endpoint, `span.kind` into the kind, logs into
  annotations). `Batch.from_dict` builds a batch from its JSON form.

`decoders.get_token_log_format(request)` returns the SHA-1 (base64) of the
`X-SF-Token` header and its first half, for logging.

`sfxgateway.conversions` holds the datapoint and event records and the value
conversions they use (`value_to_value`, `new_protobuf_datapoint_with_type`,
`new_protobuf_event`, `from_ts`, `from_mt`, ...).

## Request handling

- `listener.ErrorTrackerHandler(reader).serve(request)` returns
  `(200, b'"OK"')`, or `(400, error text)` and counts the failure
  (`datapoints()` reports `total_errors`).
- `listener.MetricHandler().serve(body)` records a JSON list of
  `{"sf_metric": ..., "sf_metricType": ...}` declarations and returns the HTTP
  status and body; `get_metric_type_from_map(name)` answers with the declared
  type, `GAUGE` when undeclared.

## What it does not do

There is no server: nothing listens on a socket, routes paths, checks content
types or unzips request bodies; `ListenerConfig.listen_addr`, `health_check`
and `timeout` are only stored. Nor does the package parse protobuf or Thrift
bytes itself: the protobuf and Jaeger readers take a parsing function
(`parse_message`, `parse_upload`, `parse`) that you supply.