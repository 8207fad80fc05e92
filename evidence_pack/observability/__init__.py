"""Observability for evidence pack builds (Prometheus metrics)."""

from .metrics import (
    MetricsRegistry,
    build_latency_histogram,
    cache_lookups,
    observe_provider,
    provider_circuit_gauge,
    provider_failures,
    provider_latency_histogram,
    publish_circuit_state,
    publish_weights,
    record_cache_lookup,
    record_provider_failure,
    reranker_weight_gauge,
    track_latency,
)

__all__ = [
    "MetricsRegistry",
    "build_latency_histogram",
    "cache_lookups",
    "observe_provider",
    "provider_circuit_gauge",
    "provider_failures",
    "provider_latency_histogram",
    "publish_circuit_state",
    "publish_weights",
    "record_cache_lookup",
    "record_provider_failure",
    "reranker_weight_gauge",
    "track_latency",
]
