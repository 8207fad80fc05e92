"""EvidencePackSystem: owns the live weights, cache and providers.

Weights are a frozen RerankerWeights replaced whole under a lock. Every build
reads one snapshot at its start, so an optimizer run or manual update during
a build never changes the weights that build ranks with.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from .budget import BudgetAllocator
from .caching import EvidenceCache
from .config import EvidenceConfig, get_config
from .builder import PackBuilder
from .observability.metrics import publish_weights
from .providers.base import EvidenceProvider
from .providers.diff import DiffProvider
from .providers.lsp import LspProvider
from .providers.search import SearchProvider
from .signals import SignalExtractor
from .types import BudgetRatios, ContextInput, EvidencePack, RerankerWeights

logger = logging.getLogger(__name__)


def coerce_input(context: Union[ContextInput, Mapping[str, Any]]) -> ContextInput:
    if isinstance(context, ContextInput):
        return context
    return ContextInput.from_dict(context)


class EvidencePackSystem:
    """Façade over one PackBuilder plus the live reranker weights.

    Example:
        >>> system = EvidencePackSystem()
        >>> system.set_lsp_hub(hub)
        >>> pack = await system.build({"userMessage": "Fix handleClick in Button.tsx"})
        >>> system.update_weights(diff=120)
    """

    def __init__(
        self,
        config: Optional[EvidenceConfig] = None,
        providers: Optional[Sequence[EvidenceProvider]] = None,
        cache: Optional[EvidenceCache] = None,
        weights: Optional[RerankerWeights] = None,
    ) -> None:
        self.config = config or get_config()

        if providers is None:
            providers = [
                DiffProvider(
                    include_patterns=self.config.providers.include_patterns,
                    exclude_patterns=self.config.providers.exclude_patterns,
                ),
                LspProvider(config=self.config.providers),
                SearchProvider(config=self.config.providers),
            ]
        self.providers = list(providers)

        self.cache = cache if cache is not None else EvidenceCache(config=self.config.cache)
        self.builder = PackBuilder(
            providers=self.providers,
            extractor=SignalExtractor(self.config.extractor),
            cache=self.cache,
            allocator=BudgetAllocator(config=self.config.budget),
            config=self.config.providers,
            cache_enabled=self.config.cache.enabled,
        )

        self._weights_lock = Lock()
        self._weights = (weights or RerankerWeights()).clamped()
        publish_weights(self._weights.to_dict())

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def get_weights(self) -> RerankerWeights:
        """Return the current weights snapshot."""
        with self._weights_lock:
            return self._weights

    def update_weights(self, weights: Optional[RerankerWeights] = None, **changes: float) -> RerankerWeights:
        """Replace the live weights.

        Pass a full RerankerWeights, keyword changes applied to the current
        weights, or both (changes applied on top of the given weights). The
        result is always clamped into bounds.
        """
        with self._weights_lock:
            base = weights if weights is not None else self._weights
            new = base.with_updates(**changes) if changes else base.clamped()
            old = self._weights
            self._weights = new

        if new != old:
            deltas = {k: round(v - getattr(old, k), 4) for k, v in new.to_dict().items() if v != getattr(old, k)}
            logger.debug(f"Reranker weights updated: {deltas}")
        publish_weights(new.to_dict())
        return new

    def reset_weights(self) -> RerankerWeights:
        return self.update_weights(RerankerWeights())

    # ------------------------------------------------------------------
    # External services
    # ------------------------------------------------------------------

    def _providers_of(self, kind: type) -> list:
        return [p for p in self.providers if isinstance(p, kind)]

    def set_lsp_hub(self, hub: Any) -> None:
        """Bind an LSP hub to every LSP provider. Cached results are dropped."""
        for provider in self._providers_of(LspProvider):
            provider.set_lsp_hub(hub)
        self.cache.clear()

    def set_git_service(self, service: Any, snapshot_hash: Optional[str] = None) -> None:
        """Bind a git snapshot service to every diff provider. Cached results are dropped."""
        for provider in self._providers_of(DiffProvider):
            provider.set_git_service(service, snapshot_hash)
        self.cache.clear()

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_metrics(self) -> Dict[str, Any]:
        return self.cache.get_metrics()

    def get_circuit_states(self) -> Dict[str, str]:
        """Circuit state per provider type (closed, open or half_open)."""
        return self.builder.circuits.states()

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def build(
        self,
        context: Union[ContextInput, Mapping[str, Any]],
        token_budget: Optional[int] = None,
        weights: Optional[RerankerWeights] = None,
        budget_ratios: Optional[BudgetRatios] = None,
        intent: Optional[str] = None,
        base_weights: Optional[RerankerWeights] = None,
    ) -> EvidencePack:
        """Build an evidence pack.

        Args:
            context: ContextInput or its camelCase dict form
            token_budget: Budget override
            weights: Per-build weights override (the live weights are not changed)
            budget_ratios: Optional per-provider budget shares
            intent: Task intent recorded in the telemetry
            base_weights: Weights the override was derived from (default: the build weights)

        Returns:
            EvidencePack
        """
        snapshot = weights.clamped() if weights is not None else self.get_weights()
        return await self.builder.build(
            coerce_input(context),
            snapshot,
            token_budget,
            budget_ratios,
            intent=intent,
            base_weights=base_weights,
        )
