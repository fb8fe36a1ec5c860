"""Prometheus collectors for the RADIUS gateway."""

from __future__ import annotations

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

NAMESPACE = "radius_gateway"


def _get_existing(fullname: str):
    # Re-importing this module (e.g. under test reloads) must not register twice
    reg = getattr(REGISTRY, "_names_to_collectors", {})
    if isinstance(reg, dict):
        return reg.get(fullname)
    return None


def safe_counter(name: str, documentation: str, labelnames: list[str] | None = None):
    existing = _get_existing(f"{NAMESPACE}_{name}")
    if existing is not None:
        return existing
    return Counter(name, documentation, labelnames or [], namespace=NAMESPACE)


def safe_histogram(name: str, documentation: str, buckets: list[float]):
    existing = _get_existing(f"{NAMESPACE}_{name}")
    if existing is not None:
        return existing
    return Histogram(name, documentation, buckets=tuple(buckets), namespace=NAMESPACE)


def safe_gauge(name: str, documentation: str):
    existing = _get_existing(f"{NAMESPACE}_{name}")
    if existing is not None:
        return existing
    return Gauge(name, documentation, namespace=NAMESPACE)


# Dispatcher
radius_requests_total = safe_counter(
    "requests_total",
    "RADIUS datagrams handled, by outcome",
    ["outcome"],
)
radius_auth_latency_seconds = safe_histogram(
    "auth_latency_seconds",
    "Latency of authentication backend calls",
    buckets=[0.01, 0.05, 0.1, 0.2, 0.5, 1, 2, 5, 10],
)
radius_inflight_requests = safe_gauge(
    "inflight_requests",
    "Datagrams currently being processed",
)

# Okta backend
okta_authn_requests = safe_counter(
    "okta_authn_requests_total", "Okta AuthN API requests"
)
okta_authn_latency = safe_histogram(
    "okta_authn_latency_seconds",
    "Latency for Okta AuthN requests",
    buckets=[0.05, 0.1, 0.2, 0.5, 1, 2, 5],
)
okta_cache_hits = safe_counter("okta_cache_hits_total", "Okta result cache hits")
okta_circuit_open = safe_gauge(
    "okta_circuit_open",
    "Circuit breaker open state for Okta backend (1=open,0=closed)",
)
