"""Prometheus metrics module."""
from .collector import MetricsCollector, configure_metrics, get_metrics

__all__ = ["MetricsCollector", "configure_metrics", "get_metrics"]
