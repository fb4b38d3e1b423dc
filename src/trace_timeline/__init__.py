"""Render OpenTelemetry span streams as nested HTML timelines."""

__version__ = "0.1.0"
