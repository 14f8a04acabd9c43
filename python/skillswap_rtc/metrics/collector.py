"""
Prometheus metrics for the signaling service and call client.

Provides metrics for monitoring:
- Signaling requests by action and outcome
- Open rooms and how they closed
- Candidate traffic per role
- Push subscribers
- Client call setup time and poll failures
"""

import logging
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger("skillswap.metrics")


# Server metrics
SIGNALING_REQUESTS_TOTAL = Counter(
    'skillswap_signaling_requests_total',
    'Signaling API requests',
    ['action', 'outcome']  # outcome: 'ok' or error code
)
SIGNALING_LATENCY = Histogram(
    'skillswap_signaling_latency_seconds',
    'Signaling API handler latency',
    ['action'],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
)
ROOMS_ACTIVE = Gauge(
    'skillswap_rooms_active',
    'Signaling rooms not yet ended'
)
ROOMS_CLOSED_TOTAL = Counter(
    'skillswap_rooms_closed_total',
    'Signaling rooms closed',
    ['reason']  # 'ended', 'expired'
)
CANDIDATES_TOTAL = Counter(
    'skillswap_candidates_total',
    'ICE candidates posted to the mailbox',
    ['role']
)
PUSH_SUBSCRIBERS = Gauge(
    'skillswap_push_subscribers',
    'Open WebSocket room subscriptions'
)

# Client metrics
CALL_SETUP_SECONDS = Histogram(
    'skillswap_call_setup_seconds',
    'Time from call start to transport connected',
    buckets=[0.5, 1, 2, 5, 10, 20, 30, 60]
)
CALLS_TOTAL = Counter(
    'skillswap_calls_total',
    'Calls handled by the negotiation coordinator',
    ['role', 'outcome']  # outcome: 'connected', 'media_unavailable', 'failed', 'hangup'
)
POLL_ERRORS_TOTAL = Counter(
    'skillswap_poll_errors_total',
    'Swallowed signaling errors in the poll loop'
)


class MetricsCollector:
    """
    Centralized metrics collector.

    Wraps the module-level metrics with intent-named methods and starts
    the Prometheus HTTP exporter on demand.
    """

    def __init__(self, port: Optional[int] = None, host: str = "0.0.0.0"):
        """
        Initialize metrics collector.

        Args:
            port: Port for Prometheus HTTP server (None disables the exporter)
            host: Host to bind to
        """
        self.port = port
        self.host = host
        self._started = False

    def start(self) -> bool:
        """
        Start the Prometheus HTTP server.

        Returns:
            True if the exporter is running
        """
        if self._started:
            return True

        if self.port is None:
            logger.debug("Metrics port not configured, exporter disabled")
            return False

        try:
            start_http_server(self.port, addr=self.host)
            self._started = True
            logger.info(f"Prometheus metrics server started on {self.host}:{self.port}")
            return True
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    # Server
    def request_handled(self, action: str, outcome: str, latency: float) -> None:
        SIGNALING_REQUESTS_TOTAL.labels(action=action, outcome=outcome).inc()
        SIGNALING_LATENCY.labels(action=action).observe(latency)

    def room_opened(self) -> None:
        ROOMS_ACTIVE.inc()

    def room_closed(self, reason: str) -> None:
        ROOMS_ACTIVE.dec()
        ROOMS_CLOSED_TOTAL.labels(reason=reason).inc()

    def candidate_added(self, role: str) -> None:
        CANDIDATES_TOTAL.labels(role=role).inc()

    def subscriber_change(self, delta: int) -> None:
        """Record push subscription change (+1 or -1)."""
        PUSH_SUBSCRIBERS.inc(delta)

    # Client
    def call_connected(self, role: str, setup_seconds: float) -> None:
        CALLS_TOTAL.labels(role=role, outcome="connected").inc()
        CALL_SETUP_SECONDS.observe(setup_seconds)

    def call_finished(self, role: str, outcome: str) -> None:
        CALLS_TOTAL.labels(role=role, outcome=outcome).inc()

    def poll_error(self) -> None:
        POLL_ERRORS_TOTAL.inc()

    @property
    def is_running(self) -> bool:
        return self._started


# Global instance
_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def configure_metrics(port: Optional[int], host: str = "0.0.0.0") -> MetricsCollector:
    """Point the global collector at an exporter port."""
    metrics = get_metrics()
    metrics.port = port
    metrics.host = host
    return metrics
