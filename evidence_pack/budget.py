"""Token budget allocation over ranked evidence."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .config import BudgetConfig, get_budget_config
from .providers.base import estimate_tokens
from .types import BudgetRatios, Evidence, ProviderType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationResult:
    """Evidence that fits the budget plus diagnostics.

    ``tokens_saved`` is the token cost of the dropped evidence.
    """

    pack: List[Evidence]
    tokens_saved: int
    tokens_used: int
    token_budget: int
    dropped: List[Evidence] = field(default_factory=list)
    tokens_by_provider: Dict[str, int] = field(default_factory=dict)

    @property
    def tokens_remaining(self) -> int:
        return self.token_budget - self.tokens_used


class BudgetAllocator:
    """Selects ranked evidence that fits a token budget.

    Two passes over the rank order:

    1. Reserve: each provider type with a minimum share takes its best items
       up to that share, so a low-scoring provider is not starved.
    2. Fill: remaining items are taken in rank order while they fit the
       remaining budget and their provider's maximum share. An item that does
       not fit is skipped and the walk continues.

    The result keeps rank order and its token sum never exceeds the budget.
    Insufficient budget is not an error; fewer items are returned.
    """

    def __init__(self, default_budget: Optional[int] = None, config: Optional[BudgetConfig] = None) -> None:
        """Initialize the allocator.

        Raises:
            ValueError: If the default budget is negative or chars_per_token < 1
        """
        config = config or get_budget_config()
        self.default_budget = config.token_budget if default_budget is None else default_budget
        self.chars_per_token = config.chars_per_token
        if self.default_budget < 0:
            raise ValueError(f"token budget must be non-negative, got {self.default_budget}")
        if self.chars_per_token < 1:
            raise ValueError(f"chars_per_token must be at least 1, got {self.chars_per_token}")

    def estimated_tokens(self, item: Evidence) -> int:
        if item.tokens > 0:
            return item.tokens
        return estimate_tokens(item.content, self.chars_per_token)

    def allocate(
        self,
        ranked: Sequence[Evidence],
        token_budget: Optional[int] = None,
        ratios: Optional[BudgetRatios] = None,
    ) -> AllocationResult:
        budget = self.default_budget if token_budget is None else token_budget
        if budget < 0:
            logger.warning(f"Negative token budget {budget}, treating as 0")
            budget = 0

        costs = [self.estimated_tokens(item) for item in ranked]
        selected = [False] * len(ranked)
        used = 0
        by_provider: Dict[ProviderType, int] = {}

        def provider_cap(provider: ProviderType) -> int:
            if ratios is None:
                return budget
            return math.floor(ratios.maximum_for(provider) * budget)

        # Pass 1: reserve minimum shares
        if ratios is not None:
            for provider, share in ratios.minimums.items():
                reserve = math.floor(share * budget)
                taken = 0
                for index, item in enumerate(ranked):
                    if selected[index] or item.provider != provider:
                        continue
                    cost = costs[index]
                    if taken + cost > reserve or used + cost > budget:
                        continue
                    selected[index] = True
                    taken += cost
                    used += cost
                    by_provider[provider] = by_provider.get(provider, 0) + cost

        # Pass 2: fill in rank order
        for index, item in enumerate(ranked):
            if selected[index]:
                continue
            cost = costs[index]
            if used + cost > budget:
                continue
            if by_provider.get(item.provider, 0) + cost > provider_cap(item.provider):
                continue
            selected[index] = True
            used += cost
            by_provider[item.provider] = by_provider.get(item.provider, 0) + cost

        pack = [item for index, item in enumerate(ranked) if selected[index]]
        dropped = [item for index, item in enumerate(ranked) if not selected[index]]
        saved = sum(cost for index, cost in enumerate(costs) if not selected[index])

        if dropped:
            logger.debug(f"Budget {budget}: kept {len(pack)} items ({used} tokens), dropped {len(dropped)}")

        return AllocationResult(
            pack=pack,
            tokens_saved=saved,
            tokens_used=used,
            token_budget=budget,
            dropped=dropped,
            tokens_by_provider={p.value: t for p, t in by_provider.items()},
        )
