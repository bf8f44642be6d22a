"""Readers for SignalFx datapoint, event and Jaeger trace uploads, and span processing sinks."""

__version__ = "0.1.0"