"""
Shared metrics configuration for the Bazaar Access Layer.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "authorization":
            self._setup_authorization_metrics()

    def _setup_authorization_metrics(self):
        """Set up authorization-specific metrics."""
        self._metrics["authorization_decisions_total"] = Counter(
            "authorization_decisions_total",
            "Total authorization decisions",
            ["decision"],
            registry=self.registry
        )

        self._metrics["authorization_evaluation_duration_seconds"] = Histogram(
            "authorization_evaluation_duration_seconds",
            "Authorization evaluation duration in seconds",
            registry=self.registry
        )

        self._metrics["authorization_bypass_total"] = Counter(
            "authorization_bypass_total",
            "Requests allowed through the administrator bypass",
            registry=self.registry
        )

        self._metrics["rule_lookups_total"] = Counter(
            "rule_lookups_total",
            "Rule store lookups performed during evaluation",
            ["scope", "found"],
            registry=self.registry
        )

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_decision(self, allowed: bool, duration: float):
        """Record an evaluator decision."""
        if "authorization_decisions_total" not in self._metrics:
            return
        decision = "allow" if allowed else "deny"
        self._metrics["authorization_decisions_total"].labels(decision=decision).inc()
        self._metrics["authorization_evaluation_duration_seconds"].observe(duration)

    def record_rule_lookup(self, scope: str, found: bool):
        """Record a single rule store lookup."""
        self.increment_counter("rule_lookups_total", scope=scope, found=str(found).lower())

    def record_bypass(self):
        """Record an administrator bypass."""
        if "authorization_bypass_total" in self._metrics:
            self._metrics["authorization_bypass_total"].inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            with self._lock:
                self._metrics[metric_name].labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
