"""Prometheus metrics for upstream SLURM REST API calls."""

import prometheus_client
from prometheus_client.core import CollectorRegistry

SUCCESS = "success"
REQUEST_ERROR = "request_error"
UNREACHABLE = "unreachable"
NON_SUCCESS = "non_success"
DECODE_ERROR = "decode_error"


class ProxyMetrics:
    """Counters and timings for calls made to slurmrestd.

    Metrics live in a private registry (not the global one) so several
    app instances, e.g. in tests, never collide on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.upstream_requests = prometheus_client.Counter(
            "slurm_view_upstream_requests",
            "Requests made to the SLURM REST API by outcome",
            labelnames=["resource", "outcome"],
            registry=self.registry,
        )
        self.upstream_duration = prometheus_client.Histogram(
            "slurm_view_upstream_request_duration_seconds",
            "Duration of requests made to the SLURM REST API",
            labelnames=["resource"],
            registry=self.registry,
        )

    def observe(self, resource: str, outcome: str, duration: float | None = None) -> None:
        """Record one upstream call.

        Args:
            resource: Short resource name (e.g. "jobs").
            outcome: One of the outcome constants in this module.
            duration: Seconds spent on the call, if known.
        """
        self.upstream_requests.labels(resource=resource, outcome=outcome).inc()
        if duration is not None:
            self.upstream_duration.labels(resource=resource).observe(duration)

    def render(self) -> bytes:
        """Render the registry in the Prometheus exposition format."""
        return prometheus_client.generate_latest(self.registry)
