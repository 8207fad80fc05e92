"""
Prometheus Metrics Collection for evidence pack builds

Tracks per-stage build latency, per-provider latency and failures, provider
cache effectiveness and the live reranker weights.
"""

import time
from contextlib import contextmanager
from typing import Generator, Mapping

from prometheus_client import Histogram, Counter, Gauge, REGISTRY, generate_latest


# Buckets for in-process stages and provider calls (1ms to 10s)
LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


build_latency_histogram = Histogram(
    'evidence_build_latency_seconds',
    'Evidence pack build stage latency in seconds',
    labelnames=['stage'],
    buckets=LATENCY_BUCKETS
)

provider_latency_histogram = Histogram(
    'evidence_provider_latency_seconds',
    'Evidence provider query latency in seconds',
    labelnames=['provider'],
    buckets=LATENCY_BUCKETS
)

provider_failures = Counter(
    'evidence_provider_failures_total',
    'Total number of failed or skipped provider queries',
    labelnames=['provider', 'reason']
)

cache_lookups = Counter(
    'evidence_cache_lookups_total',
    'Provider cache lookups by result',
    labelnames=['provider', 'result']
)

reranker_weight_gauge = Gauge(
    'evidence_reranker_weight',
    'Current live reranker weight',
    labelnames=['key']
)

provider_circuit_gauge = Gauge(
    'evidence_provider_circuit_state',
    'Provider circuit state (0 closed, 1 half open, 2 open)',
    labelnames=['provider']
)

CIRCUIT_STATE_VALUES = {'closed': 0, 'half_open': 1, 'open': 2}


class MetricsRegistry:
    """
    Singleton registry for Prometheus metrics export.

    Provides centralized access to metrics and export functionality.
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern - ensures only one registry instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def export(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            str: Prometheus-formatted metrics text
        """
        return generate_latest(REGISTRY).decode('utf-8')


@contextmanager
def track_latency(stage: str) -> Generator[None, None, None]:
    """
    Context manager for automatic build stage latency tracking.

    Args:
        stage: Build stage (extract, providers, rank, allocate, total)

    Example:
        >>> with track_latency("rank"):
        ...     ranked = reranker.rank(evidence, weights)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        build_latency_histogram.labels(stage=stage).observe(time.perf_counter() - start)


def observe_provider(provider: str, seconds: float) -> None:
    """Record one provider query duration."""
    provider_latency_histogram.labels(provider=provider).observe(seconds)


def record_provider_failure(provider: str, reason: str) -> None:
    """Count a provider failure (error, timeout, circuit_open)."""
    provider_failures.labels(provider=provider, reason=reason).inc()


def record_cache_lookup(provider: str, hit: bool) -> None:
    """Count a provider cache lookup."""
    cache_lookups.labels(provider=provider, result="hit" if hit else "miss").inc()


def publish_weights(weights: Mapping[str, float]) -> None:
    """Mirror the live reranker weights into the weight gauge."""
    for key, value in weights.items():
        reranker_weight_gauge.labels(key=key).set(value)


def publish_circuit_state(provider: str, state: str) -> None:
    """Mirror a provider circuit state into the circuit gauge."""
    provider_circuit_gauge.labels(provider=provider).set(CIRCUIT_STATE_VALUES[state])
