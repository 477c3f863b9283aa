"""Prometheus metrics for relay observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- relay_webhooks_received_total: Counter of deliveries by event type and outcome
- relay_work_units_total: Counter of background work units by kind and outcome
- relay_work_unit_duration_seconds: Histogram of background work unit time
- relay_queue_depth: Gauge of units waiting in the work queue

The MetricsEventEmitter plugs into the event emission system so the work
queue's completed/failed/dropped events update the counters without the
queue knowing about Prometheus.

Source:
- src/relay/events/models.py (RelayEvent, EventType)
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.relay.events.emitter import EventEmitter
from src.relay.events.models import EventType, RelayEvent


logger = logging.getLogger(__name__)


# A work unit is at most a handful of API calls, each bounded by the
# HTTP client timeout
DEFAULT_DURATION_BUCKETS = (
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
    180.0,
)


_OUTCOME_LABELS = {
    EventType.WORK_COMPLETED: "completed",
    EventType.WORK_FAILED: "failed",
    EventType.WORK_DROPPED: "dropped",
}


class RelayMetrics:
    """Container for all relay Prometheus metrics.

    Supports custom registries for testing.

    Metrics:
        webhooks_received_total: Counter of accepted and rejected deliveries.
            Labels: event_type, outcome

        work_units_total: Counter of background work units.
            Labels: kind, outcome (completed/failed/dropped)

        work_unit_duration_seconds: Histogram of work unit run time.
            Labels: kind

        queue_depth: Gauge of units waiting in the work queue.

    Example:
        >>> metrics = RelayMetrics(registry=CollectorRegistry())
        >>> metrics.record_webhook("workflow_run", "queued")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize relay metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.webhooks_received_total = Counter(
            "relay_webhooks_received_total",
            "Total number of webhook deliveries received",
            labelnames=["event_type", "outcome"],
            registry=self.registry,
        )

        self.work_units_total = Counter(
            "relay_work_units_total",
            "Total number of background work units by outcome",
            labelnames=["kind", "outcome"],
            registry=self.registry,
        )

        self.work_unit_duration_seconds = Histogram(
            "relay_work_unit_duration_seconds",
            "Time spent running background work units in seconds",
            labelnames=["kind"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.queue_depth = Gauge(
            "relay_queue_depth",
            "Current number of work units waiting in the queue",
            registry=self.registry,
        )

    def record_webhook(self, event_type: str, outcome: str) -> None:
        """Record a webhook delivery.

        Args:
            event_type: A bounded label: a handled event type, "other", or
                        "unauthenticated" before the signature is checked.
            outcome: The dispatch outcome or rejection reason.
        """
        self.webhooks_received_total.labels(
            event_type=event_type,
            outcome=outcome,
        ).inc()

    def record_work_unit(self, kind: str, outcome: str) -> None:
        self.work_units_total.labels(kind=kind, outcome=outcome).inc()

    def record_work_duration(self, kind: str, duration_seconds: float) -> None:
        self.work_unit_duration_seconds.labels(kind=kind).observe(duration_seconds)

    def set_queue_depth(self, depth: int) -> None:
        self.queue_depth.set(max(0, depth))


_default_metrics: Optional[RelayMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> RelayMetrics:
    """Metrics bound to ``registry``, or the process-wide default set.

    Metric names can only be registered once per registry, so the default
    registry gets a single shared instance while every explicit registry
    gets a fresh one.
    """
    global _default_metrics

    if registry is not None:
        return RelayMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = RelayMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Text exposition of ``registry`` (default: the global one)."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    Every event increments relay_work_units_total with its outcome. Events
    carrying ``duration_seconds`` in their details also feed the duration
    histogram.

    Attributes:
        metrics: The RelayMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[RelayMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> RelayMetrics:
        return self._metrics

    async def emit(self, event: RelayEvent) -> None:
        try:
            outcome = _OUTCOME_LABELS.get(event.event_type)
            if outcome is None:
                return
            self._metrics.record_work_unit(event.kind, outcome)

            duration = event.details.get("duration_seconds")
            if duration is not None and event.event_type != EventType.WORK_DROPPED:
                self._metrics.record_work_duration(event.kind, float(duration))
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "kind": event.kind,
                    "error": str(e),
                },
            )
