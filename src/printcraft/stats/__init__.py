"""Operational metrics."""

from .metrics_exporter import MetricsExporter, format_prometheus

__all__ = ["MetricsExporter", "format_prometheus"]
