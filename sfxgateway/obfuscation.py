"""Span processors that obfuscate or remove tags on matching spans."""

from __future__ import annotations

from typing import Iterator

from .rules import Rule, get_rules

OBFUSCATED = "<obfuscated>"


def _matching_rules(rules: list[Rule], span) -> Iterator[Rule]:
    service = ""
    if span.local_endpoint is not None and span.local_endpoint.service_name is not None:
        service = span.local_endpoint.service_name
    name = span.name if span.name is not None else ""
    return (rule for rule in rules if rule.applies_to(service, name))


class SpanTagObfuscation:
    """Replaces the configured tags of matching spans with OBFUSCATED.

    Spans are modified in place.
    """

    def __init__(self, rule_configs, next_sink) -> None:
        self.rules = get_rules(rule_configs)
        self.next_sink = next_sink

    def add_datapoints(self, points):
        return self.next_sink.add_datapoints(points)

    def add_events(self, events):
        return self.next_sink.add_events(events)

    def add_spans(self, spans):
        for span in spans:
            for rule in _matching_rules(self.rules, span):
                if span.tags is None:
                    continue
                for tag in rule.tags:
                    if tag in span.tags:
                        span.tags[tag] = OBFUSCATED
        return self.next_sink.add_spans(spans)


class SpanTagRemoval:
    """Deletes the configured tags from matching spans.

    Spans are modified in place.
    """

    def __init__(self, rule_configs, next_sink) -> None:
        self.rules = get_rules(rule_configs)
        self.next_sink = next_sink

    def add_datapoints(self, points):
        return self.next_sink.add_datapoints(points)

    def add_events(self, events):
        return self.next_sink.add_events(events)

    def add_spans(self, spans):
        for span in spans:
            for rule in _matching_rules(self.rules, span):
                if span.tags is None:
                    continue
                for tag in rule.tags:
                    span.tags.pop(tag, None)
        return self.next_sink.add_spans(spans)