"""Prometheus metrics for monitoring live query subscriptions."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Info, generate_latest

from queryflow.core.config import get_settings

# Create a custom registry
REGISTRY = CollectorRegistry()


# Info metric
APP_INFO = Info(
    "queryflow",
    "queryflow library info",
    registry=REGISTRY,
)

# Subscription metrics
SUBSCRIPTIONS_ACTIVE = Gauge(
    "queryflow_subscriptions_active",
    "Live query subscriptions currently registered",
    registry=REGISTRY,
)

LISTENER_REGISTRATIONS_TOTAL = Counter(
    "queryflow_listener_registrations_total",
    "Change listeners registered with live queries",
    registry=REGISTRY,
)

SUBSCRIPTIONS_TERMINATED_TOTAL = Counter(
    "queryflow_subscriptions_terminated_total",
    "Subscriptions that reached their terminal state",
    ["reason"],
    registry=REGISTRY,
)

# Change metrics
CHANGES_TOTAL = Counter(
    "queryflow_changes_total",
    "Change notifications received from live queries",
    ["outcome"],
    registry=REGISTRY,
)

# Mapping metrics
ROWS_MAPPED_TOTAL = Counter(
    "queryflow_rows_mapped_total",
    "Result rows passed through a row factory",
    ["outcome"],
    registry=REGISTRY,
)


class MetricsCollector:
    """
    Collects and exposes metrics.

    Every recording method is a no-op when metrics are disabled in settings.
    """

    def __init__(self, enabled: bool | None = None) -> None:
        self._enabled = enabled
        self._initialized = False

    @property
    def enabled(self) -> bool:
        """Check if metrics recording is enabled."""
        if self._enabled is None:
            return get_settings().observability.metrics_enabled
        return self._enabled

    def initialize(self, version: str) -> None:
        """Initialize metrics with library info."""
        if self._initialized:
            return

        APP_INFO.info({
            "version": version,
            "name": "queryflow",
        })
        self._initialized = True

    # Subscription metrics

    def record_subscription_opened(self) -> None:
        """Record a listener registration."""
        if not self.enabled:
            return
        LISTENER_REGISTRATIONS_TOTAL.inc()
        SUBSCRIPTIONS_ACTIVE.inc()

    def record_subscription_closed(self, reason: str) -> None:
        """Record a listener deregistration."""
        if not self.enabled:
            return
        SUBSCRIPTIONS_ACTIVE.dec()
        SUBSCRIPTIONS_TERMINATED_TOTAL.labels(reason=reason).inc()

    # Change metrics

    def record_change(self, outcome: str) -> None:
        """Record a change notification (delivered, dropped, error, ignored)."""
        if not self.enabled:
            return
        CHANGES_TOTAL.labels(outcome=outcome).inc()

    # Mapping metrics

    def record_rows(self, kept: int, skipped: int) -> None:
        """Record the outcome of mapping one result set."""
        if not self.enabled:
            return
        if kept:
            ROWS_MAPPED_TOTAL.labels(outcome="kept").inc(kept)
        if skipped:
            ROWS_MAPPED_TOTAL.labels(outcome="skipped").inc(skipped)

    def get_metrics(self) -> bytes:
        """Generate metrics in Prometheus format."""
        return generate_latest(REGISTRY)


# Global metrics collector instance
_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector."""
    global _collector
    if _collector is None:
        from queryflow import __version__

        _collector = MetricsCollector()
        _collector.initialize(version=__version__)
    return _collector
