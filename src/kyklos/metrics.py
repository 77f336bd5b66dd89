"""
Prometheus metrics for the Kyklos operator.
"""

import logging
import threading
from typing import Dict, Optional, Set, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from .config import health_status

LOG = logging.getLogger(__name__)

InstanceKey = Tuple[str, str]


class MetricsCollector:
    """Per-instance scaling metrics.

    Every labelled series is remembered against the instance that created it
    so that ``forget()`` can drop all of them when the instance is deleted.
    Safe to use from several reconciliations at once.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics collector.

        Args:
            registry: Prometheus registry to use, defaults to global registry
        """
        self.registry = registry or REGISTRY
        self._lock = threading.Lock()
        self._series: Dict[InstanceKey, Set[Tuple[str, Tuple[str, ...]]]] = {}

        self.scale_operations = Counter(
            'kyklos_scale_operations_total',
            'Total number of scaling operations performed by Kyklos',
            ['namespace', 'name', 'direction', 'window'],
            registry=self.registry
        )

        self.effective_replicas = Gauge(
            'kyklos_effective_replicas',
            'Current effective replica count computed by Kyklos',
            ['namespace', 'name'],
            registry=self.registry
        )

        self.window_transitions = Counter(
            'kyklos_window_transitions_total',
            'Total number of window transitions',
            ['namespace', 'name', 'from_window', 'to_window'],
            registry=self.registry
        )

        self.reconcile_duration = Histogram(
            'kyklos_reconcile_duration_seconds',
            'Time taken for reconciliation in seconds',
            ['namespace', 'name', 'result'],
            registry=self.registry
        )

        self.operator_health = Gauge(
            'kyklos_operator_health',
            'Operator health',
            ['component'],
            registry=self.registry
        )

        LOG.info("Metrics collector initialized")

    def _track(self, metric_name: str, labels: Tuple[str, ...]):
        with self._lock:
            self._series.setdefault((labels[0], labels[1]), set()).add((metric_name, labels))

    # ========================================================================
    # Recording
    # ========================================================================

    def record_scale(self, namespace: str, name: str, direction: str, window: str):
        labels = (namespace, name, direction, window)
        self.scale_operations.labels(*labels).inc()
        self._track('scale_operations', labels)

    def set_effective_replicas(self, namespace: str, name: str, replicas: int):
        labels = (namespace, name)
        self.effective_replicas.labels(*labels).set(replicas)
        self._track('effective_replicas', labels)

    def record_window_transition(self, namespace: str, name: str, from_window: str, to_window: str):
        labels = (namespace, name, from_window, to_window)
        self.window_transitions.labels(*labels).inc()
        self._track('window_transitions', labels)

    def observe_reconcile(self, namespace: str, name: str, result: str, seconds: float):
        labels = (namespace, name, result)
        self.reconcile_duration.labels(*labels).observe(seconds)
        self._track('reconcile_duration', labels)

    def update_health_metrics(self):
        """Update health metrics based on current health status"""
        for component, status in health_status.items():
            self.operator_health.labels(component=component).set(1 if status else 0)

    # ========================================================================
    # Cleanup
    # ========================================================================

    def forget(self, namespace: str, name: str):
        """Remove every series recorded for one instance"""
        with self._lock:
            series = self._series.pop((namespace, name), set())

        for metric_name, labels in series:
            metric = getattr(self, metric_name)
            try:
                metric.remove(*labels)
            except KeyError:
                pass

        if series:
            LOG.debug(f"Removed {len(series)} metric series for {namespace}/{name}")

    def tracked_series(self, namespace: str, name: str) -> int:
        with self._lock:
            return len(self._series.get((namespace, name), ()))

# ============================================================================
# Metrics Server Management
# ============================================================================

def start_metrics_server(port: int = 8000, registry: Optional[CollectorRegistry] = None):
    """Start the Prometheus metrics server"""
    start_http_server(port, registry=registry or REGISTRY)
    LOG.info(f"Metrics server listening on port {port}")
