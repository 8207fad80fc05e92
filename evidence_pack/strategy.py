"""
Intent-aware provider strategies.

A priori adjustments per task intent:
- debug: stack frames and recent changes matter most
- refactor: definitions and every reference of the symbol
- implement: definitions plus the files the user is working in
- explain: definitions and references, less diff and stack noise
- test: references (call sites) and the working set
- review: the diff itself

The table is static configuration; nothing here reads telemetry.
"""

from typing import Dict, Optional, Union

from .intent import TaskIntent
from .types import BudgetRatios, IntentStrategy, ProviderType, RerankerWeights, WEIGHT_KEYS


STRATEGIES: Dict[TaskIntent, IntentStrategy] = {
    TaskIntent.DEBUG: IntentStrategy(
        intent=TaskIntent.DEBUG.value,
        weight_multipliers={"stack_frame": 1.5, "diff": 1.2, "keyword": 1.1},
        decay_multiplier=1.0,
        budget_ratios=BudgetRatios(
            minimums={ProviderType.SEARCH: 0.2},
            maximums={ProviderType.DIFF: 0.6},
        ),
        description="Favor stack frames and recent changes",
    ),
    TaskIntent.REFACTOR: IntentStrategy(
        intent=TaskIntent.REFACTOR.value,
        weight_multipliers={"definition": 1.5, "reference": 1.5, "keyword": 0.8},
        budget_ratios=BudgetRatios(minimums={ProviderType.LSP: 0.3}),
        description="Favor symbol definitions and all references",
    ),
    TaskIntent.IMPLEMENT: IntentStrategy(
        intent=TaskIntent.IMPLEMENT.value,
        weight_multipliers={"definition": 1.3, "working_set": 1.3, "diff": 1.1},
        description="Favor definitions and the active working set",
    ),
    TaskIntent.EXPLAIN: IntentStrategy(
        intent=TaskIntent.EXPLAIN.value,
        weight_multipliers={"definition": 1.4, "reference": 1.2, "diff": 0.7, "stack_frame": 0.5},
        decay_multiplier=0.9,
        budget_ratios=BudgetRatios(maximums={ProviderType.DIFF: 0.3}),
        description="Favor definitions over changes and stack noise",
    ),
    TaskIntent.TEST: IntentStrategy(
        intent=TaskIntent.TEST.value,
        weight_multipliers={"working_set": 1.2, "definition": 1.2, "reference": 1.3},
        description="Favor call sites and the files under test",
    ),
    TaskIntent.REVIEW: IntentStrategy(
        intent=TaskIntent.REVIEW.value,
        weight_multipliers={"diff": 1.6, "working_set": 1.1},
        budget_ratios=BudgetRatios(minimums={ProviderType.DIFF: 0.4}),
        description="Favor the pending diff",
    ),
    TaskIntent.GENERAL: IntentStrategy(
        intent=TaskIntent.GENERAL.value,
        description="No adjustment",
    ),
}


class IntentAwareProviderStrategy:
    """Looks up and applies the strategy for an intent.

    Example:
        >>> strategy = IntentAwareProviderStrategy()
        >>> weights = strategy.apply_weight_modifiers(RerankerWeights(), "debug")
        >>> weights.stack_frame
        120.0
    """

    def __init__(self, strategies: Optional[Dict[TaskIntent, IntentStrategy]] = None):
        self._strategies = dict(strategies or STRATEGIES)

    def get_strategy(self, intent: Union[TaskIntent, str]) -> IntentStrategy:
        """Strategy for an intent; unknown intents get the general strategy."""
        try:
            key = TaskIntent(intent)
        except ValueError:
            key = TaskIntent.GENERAL
        return self._strategies.get(key) or STRATEGIES[TaskIntent.GENERAL]

    def apply_weight_modifiers(self, weights: RerankerWeights, intent: Union[TaskIntent, str]) -> RerankerWeights:
        """Return new weights with the intent's multipliers applied and re-clamped."""
        strategy = self.get_strategy(intent)
        changes = {
            key: getattr(weights, key) * strategy.weight_multipliers.get(key, 1.0)
            for key in WEIGHT_KEYS
        }
        changes["stack_depth_decay"] = weights.stack_depth_decay * strategy.decay_multiplier
        return weights.with_updates(**changes)

    def get_budget_ratios(self, intent: Union[TaskIntent, str]) -> Optional[BudgetRatios]:
        return self.get_strategy(intent).budget_ratios

    def is_neutral(self, intent: Union[TaskIntent, str]) -> bool:
        """Whether applying the intent's strategy changes nothing."""
        strategy = self.get_strategy(intent)
        return (
            all(m == 1.0 for m in strategy.weight_multipliers.values())
            and strategy.decay_multiplier == 1.0
            and strategy.budget_ratios is None
        )
