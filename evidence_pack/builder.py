"""Evidence pack pipeline.

extract -> provider fan-out (cached, timed out, circuit-broken) -> merge ->
rerank -> budget trim -> EvidencePack with build telemetry.

Provider failures never abort a build. A failing, slow or circuit-open
provider contributes no evidence and is recorded in the telemetry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from .budget import AllocationResult, BudgetAllocator
from .caching import EvidenceCache, fingerprint
from .config import ProviderConfig, get_provider_config
from .observability.metrics import (
    observe_provider,
    record_cache_lookup,
    record_provider_failure,
    track_latency,
)
from .providers.base import EvidenceProvider, ProviderQueryOptions, dedupe_by_location
from .reranker import Reranker
from .resilience import ProviderCircuit, ProviderCircuits
from .signals import SignalExtractor
from .types import (
    BudgetRatios,
    ContextInput,
    Evidence,
    EvidencePack,
    EvidenceTelemetry,
    RerankerWeights,
    Signal,
)

logger = logging.getLogger(__name__)


class PackBuilder:
    """Runs the evidence pipeline for one input.

    The builder holds no weights of its own; callers pass the snapshot to
    rank with, so a concurrent weight update never affects a running build.
    """

    def __init__(
        self,
        providers: Sequence[EvidenceProvider],
        extractor: Optional[SignalExtractor] = None,
        cache: Optional[EvidenceCache] = None,
        reranker: Optional[Reranker] = None,
        allocator: Optional[BudgetAllocator] = None,
        config: Optional[ProviderConfig] = None,
        cache_enabled: bool = True,
    ) -> None:
        self.config = config or get_provider_config()
        if self.config.provider_timeout <= 0:
            raise ValueError(f"provider_timeout must be positive, got {self.config.provider_timeout}")

        self.providers = list(providers)
        self.extractor = extractor or SignalExtractor()
        self.cache = cache if cache is not None else EvidenceCache()
        self.cache_enabled = cache_enabled
        self.reranker = reranker or Reranker()
        self.allocator = allocator or BudgetAllocator()
        self.circuits = ProviderCircuits(
            {provider.type for provider in self.providers},
            failure_threshold=self.config.circuit_failure_threshold,
            recovery_timeout=self.config.circuit_recovery_timeout,
        )

    def circuit_for(self, provider: EvidenceProvider) -> ProviderCircuit:
        return self.circuits[provider.type]

    def query_options(self) -> ProviderQueryOptions:
        return ProviderQueryOptions(
            max_results=self.config.max_results,
            include_patterns=list(self.config.include_patterns),
            exclude_patterns=list(self.config.exclude_patterns),
            context_lines=self.config.context_lines,
        )

    async def build(
        self,
        context: ContextInput,
        weights: RerankerWeights,
        token_budget: Optional[int] = None,
        ratios: Optional[BudgetRatios] = None,
        intent: Optional[str] = None,
        base_weights: Optional[RerankerWeights] = None,
    ) -> EvidencePack:
        """Build an evidence pack.

        Args:
            context: Raw input
            weights: Weight snapshot used for ranking
            token_budget: Budget override (default: allocator default)
            ratios: Optional per-provider budget shares
            intent: Task intent recorded in the telemetry
            base_weights: Weights before intent modifiers (default: weights)

        Returns:
            EvidencePack with ranked, budget-trimmed evidence
        """
        start = time.perf_counter()
        telemetry = EvidenceTelemetry(
            weights=weights.to_dict(),
            base_weights=(base_weights or weights).to_dict(),
            intent=intent,
        )

        with track_latency("total"):
            with track_latency("extract"):
                signals = self.extractor.extract(context)
            telemetry.signal_count = len(signals)

            options = self.query_options()
            with track_latency("providers"):
                results = await asyncio.gather(
                    *(self._run_provider(p, signals, options, telemetry) for p in self.providers)
                )

            merged: List[Evidence] = [item for _, items in results for item in items]
            telemetry.evidence_before_budget = len(merged)

            with track_latency("rank"):
                ranked = dedupe_by_location(self.reranker.rank(merged, weights))

            with track_latency("allocate"):
                allocation = self.allocator.allocate(ranked, token_budget, ratios)

        telemetry.evidence_after_budget = len(allocation.pack)
        telemetry.tokens_used = allocation.tokens_used
        telemetry.tokens_saved = allocation.tokens_saved
        telemetry.token_budget = allocation.token_budget
        telemetry.build_time_ms = (time.perf_counter() - start) * 1000

        return EvidencePack(
            evidence=tuple(allocation.pack),
            summary=self._summarize(context, allocation),
            telemetry=telemetry,
        )

    async def _run_provider(
        self,
        provider: EvidenceProvider,
        signals: List[Signal],
        options: ProviderQueryOptions,
        telemetry: EvidenceTelemetry,
    ) -> Tuple[str, List[Evidence]]:
        name = provider.type.value
        started = time.perf_counter()

        def finish(items: List[Evidence], error: Optional[str] = None) -> Tuple[str, List[Evidence]]:
            elapsed = time.perf_counter() - started
            telemetry.provider_timings[name] = elapsed * 1000
            telemetry.provider_counts[name] = len(items)
            observe_provider(name, elapsed)
            if error is not None:
                telemetry.provider_errors[name] = error
                record_provider_failure(name, error)
            return name, items

        key = fingerprint(signals, provider.type, options.cache_key())
        if self.cache_enabled:
            cached = self.cache.get(key)
            record_cache_lookup(name, cached is not None)
            if cached is not None:
                logger.debug(f"Cache hit for {name} provider ({len(cached)} items)")
                telemetry.cache_hits.append(name)
                return finish(cached)

        circuit = self.circuit_for(provider)
        if not circuit.allow():
            logger.debug(f"Skipping {name} provider, circuit open")
            return finish([], "circuit_open")

        try:
            items = await asyncio.wait_for(
                self._query_if_available(provider, signals, options),
                self.config.provider_timeout,
            )
        except asyncio.TimeoutError:
            circuit.record_failure()
            logger.warning(f"{provider.name} provider timed out after {self.config.provider_timeout}s")
            return finish([], "timeout")
        except Exception as e:
            circuit.record_failure()
            logger.warning(f"{provider.name} provider failed: {e}")
            return finish([], "error")

        circuit.record_success()
        if items is None:
            return finish([])

        if self.cache_enabled:
            self.cache.set(key, items)
        logger.debug(f"{provider.name} provider returned {len(items)} items")
        return finish(items)

    @staticmethod
    async def _query_if_available(
        provider: EvidenceProvider,
        signals: List[Signal],
        options: ProviderQueryOptions,
    ) -> Optional[List[Evidence]]:
        # None marks an unavailable provider so nothing is cached for it
        if not await provider.is_available():
            return None
        return list(await provider.query(signals, options))

    @staticmethod
    def _summarize(context: ContextInput, allocation: AllocationResult) -> str:
        files = list(dict.fromkeys(item.path for item in allocation.pack))
        parts = [
            f"{len(allocation.pack)} evidence items from {len(files)} files "
            f"({allocation.tokens_used}/{allocation.token_budget} tokens)"
        ]
        if allocation.tokens_by_provider:
            mix = ", ".join(f"{p}: {t}" for p, t in sorted(allocation.tokens_by_provider.items()))
            parts.append(f"tokens by provider: {mix}")
        if context.git_diff is not None and context.git_diff.files:
            counts: Dict[str, int] = {}
            for diff_file in context.git_diff.files:
                counts[diff_file.type] = counts.get(diff_file.type, 0) + 1
            changes = ", ".join(f"{n} {t}" for t, n in sorted(counts.items()))
            parts.append(f"working tree changes: {changes}")
        if allocation.dropped:
            parts.append(f"{len(allocation.dropped)} items dropped by budget")
        return "; ".join(parts)
