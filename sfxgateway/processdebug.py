"""Keeps a span's debug flag and its sampling priority tag in agreement."""

from __future__ import annotations

SAMPLING_PRIORITY_TAG = "sampling.priority"


class ProcessDebug:
    """Sets ``sampling.priority`` on debug spans and ``debug`` on prioritised spans."""

    def __init__(self, next_sink) -> None:
        self.next_sink = next_sink

    def add_datapoints(self, points):
        return self.next_sink.add_datapoints(points)

    def add_events(self, events):
        return self.next_sink.add_events(events)

    def add_spans(self, spans):
        for span in spans:
            if span.debug:
                if span.tags is None:
                    span.tags = {}
                span.tags[SAMPLING_PRIORITY_TAG] = "1"
            elif span.tags is not None and span.tags.get(SAMPLING_PRIORITY_TAG) == "1":
                span.debug = True
        return self.next_sink.add_spans(spans)