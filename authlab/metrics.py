"""Prometheus meters shared by the authentication, API and audit layers.

All meters live in a private :class:`CollectorRegistry` owned by one
:class:`Metrics` instance, so separately built applications (and tests) never
collide on metric names.
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# Duration buckets in seconds for audited operations
AUDIT_DURATION_BUCKETS = (
    0.001, 0.0025, 0.005, 0.01, 0.025, 0.05,
    0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)


class Metrics:
    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.logins_total = Counter(
            "auth_logins",
            "Total number of login attempts by result.",
            labelnames=("result",),
            registry=self.registry,
        )
        self.successful_logins = self.logins_total.labels(result="success")
        self.failed_logins = self.logins_total.labels(result="failure")

        self.secure_requests_total = Counter(
            "api_requests_secure",
            "Total number of requests to secured API endpoints.",
            labelnames=("endpoint",),
            registry=self.registry,
        )

        # Labelled by operation and outcome only; request URI, user agent
        # and client address stay out of the label set.
        self.audit_events_total = Counter(
            "app_audit_events",
            "Counts the total number of audited events.",
            labelnames=("method", "outcome"),
            registry=self.registry,
        )
        self.audit_events_duration = Histogram(
            "app_audit_events_duration_seconds",
            "Records the duration of audited events.",
            labelnames=("method", "outcome"),
            buckets=AUDIT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def sample(self, name: str, labels: Optional[dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 when it has never been recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def exposition(self) -> tuple[bytes, str]:
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
