"""Rewrites span names with named regex groups, moving the captured parts to tags."""

from __future__ import annotations

import re


class TagReplace:
    """Applies each rule to span names, replacing captures with ``{name}``.

    Spans are modified in place. With ``exit_early`` only the first matching
    rule is applied to a span.
    """

    def __init__(self, rule_strings, exit_early, next_sink) -> None:
        self.rules = [self._compile(rule) for rule in rule_strings]
        self.exit_early = exit_early
        self.next_sink = next_sink

    @staticmethod
    def _compile(rule: str) -> re.Pattern:
        try:
            pattern = re.compile(rule)
        except re.error as exc:
            raise ValueError(f"invalid regex '{rule}': {exc}") from exc
        if pattern.groups < 1:
            raise ValueError(f"regex contains no named parenthesized subexpressions '{rule}'")
        if len(pattern.groupindex) < pattern.groups:
            raise ValueError(f"regex contains a non named parenthesized subexpression '{rule}'")
        return pattern

    def add_datapoints(self, points):
        return self.next_sink.add_datapoints(points)

    def add_events(self, events):
        return self.next_sink.add_events(events)

    def _apply(self, span, pattern: re.Pattern) -> bool:
        old_name = span.name
        match = pattern.search(old_name)
        if match is None:
            return False
        if span.tags is None:
            span.tags = {}
        names = {index: name for name, index in pattern.groupindex.items()}
        pieces = []
        position = 0
        for index in range(1, pattern.groups + 1):
            name = names[index]
            span.tags[name] = match.group(index) or ""
            if match.start(index) < 0:
                continue
            pieces.extend((old_name[position:match.start(index)], "{", name, "}"))
            position = match.end(index)
        pieces.append(old_name[position:])
        span.name = "".join(pieces)
        return True

    def add_spans(self, spans):
        for span in spans:
            if span.name is None:
                continue
            for pattern in self.rules:
                if self._apply(span, pattern) and self.exit_early:
                    break
        return self.next_sink.add_spans(spans)