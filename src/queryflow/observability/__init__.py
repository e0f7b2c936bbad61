"""Observability module for queryflow."""

from queryflow.observability.logging import configure_logging, get_logger
from queryflow.observability.metrics import get_metrics_collector

__all__ = ["configure_logging", "get_logger", "get_metrics_collector"]
