"""
Weight optimizer driven by build telemetry.

Compares successful and failed sessions and nudges each reranker weight in
the direction of its provider's contribution. Steps are bounded per run
(max_delta) and every weight stays inside [1, 200]; stack_depth_decay is
never adjusted here.

A provider's contribution to one session is approximated by its normalized
latency, min(1, ms / latency_norm_ms): a provider that did real work for a
session took measurable time. For each weight key:

    gradient = mean(contribution | success) - mean(contribution | failure)
    delta    = clamp(gradient * learning_rate * weight, -max_delta, max_delta)
    weight'  = clamp(weight + delta, 1, 200)
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Deque, Dict, List, Optional, Sequence

import numpy as np

from .config import OptimizerConfig, get_optimizer_config
from .types import (
    MAX_WEIGHT,
    MIN_WEIGHT,
    WEIGHT_KEYS,
    OptimizationResult,
    Outcome,
    ProviderType,
    RerankerWeights,
    TelemetryRecord,
)

logger = logging.getLogger(__name__)


# Which provider's timing stands in for each weight key
WEIGHT_PROVIDERS: Dict[str, ProviderType] = {
    "diff": ProviderType.DIFF,
    "definition": ProviderType.LSP,
    "reference": ProviderType.LSP,
    "keyword": ProviderType.SEARCH,
    "stack_frame": ProviderType.SEARCH,
    "working_set": ProviderType.SEARCH,
}


@dataclass
class OutcomeEntry:
    """One labeled outcome in the optimizer history."""

    task_type: str
    weights: RerankerWeights
    success: bool
    timestamp: float


class WeightOptimizer:
    """Bounded gradient-style reranker weight optimizer.

    Args:
        config: Optimizer settings (default: global config)

    Example:
        >>> optimizer = WeightOptimizer()
        >>> result = optimizer.optimize(system.get_weights(), telemetry.get_records())
        >>> if result.improvement > 0:
        ...     system.update_weights(result.weights)
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or get_optimizer_config()
        if self.config.learning_rate < 0:
            raise ValueError("learning_rate must be non-negative")
        if self.config.max_delta < 0:
            raise ValueError("max_delta must be non-negative")
        if self.config.latency_norm_ms <= 0:
            raise ValueError("latency_norm_ms must be positive")
        if self.config.history_size < 1:
            raise ValueError("history_size must be at least 1")

        self._history: Deque[OutcomeEntry] = deque(maxlen=self.config.history_size)
        self._lock = Lock()

    # ------------------------------------------------------------------
    # Telemetry-driven optimization
    # ------------------------------------------------------------------

    def optimize(self, current: RerankerWeights, records: Sequence[TelemetryRecord]) -> OptimizationResult:
        """Compute new weights from labeled telemetry records.

        Only success and failure records count as samples. With fewer than
        min_samples the current weights are returned unchanged with zero
        improvement.
        """
        successes = [r for r in records if r.outcome == Outcome.SUCCESS]
        failures = [r for r in records if r.outcome == Outcome.FAILURE]
        sample_count = len(successes) + len(failures)

        if sample_count < self.config.min_samples:
            logger.debug(f"Optimizer skipped: {sample_count} samples < {self.config.min_samples}")
            return OptimizationResult(
                weights=current,
                improvement=0.0,
                sample_count=sample_count,
                converged=False,
            )

        values = current.to_dict()
        gradients: Dict[str, float] = {}
        for key in WEIGHT_KEYS:
            provider = WEIGHT_PROVIDERS[key]
            gradient = self._group_contribution(successes, provider) - self._group_contribution(failures, provider)
            gradients[key] = gradient

            delta = gradient * self.config.learning_rate * values[key]
            delta = max(-self.config.max_delta, min(self.config.max_delta, delta))
            values[key] = max(MIN_WEIGHT, min(MAX_WEIGHT, values[key] + delta))

        values["stack_depth_decay"] = max(0.0, min(1.0, current.stack_depth_decay))
        new_weights = RerankerWeights(**values)

        improvement = float(np.mean([abs(g) for g in gradients.values()]))
        converged = improvement < self.config.convergence_threshold

        logger.debug(
            f"Optimizer gradients: {', '.join(f'{k}={v:+.3f}' for k, v in gradients.items())} "
            f"(improvement={improvement:.4f}, samples={sample_count})"
        )
        return OptimizationResult(
            weights=new_weights,
            improvement=improvement,
            sample_count=sample_count,
            converged=converged,
            gradients=gradients,
        )

    def _contribution(self, record: TelemetryRecord, provider: ProviderType) -> float:
        ms = record.data.provider_timings.get(provider.value)
        if ms is None or ms <= 0:
            return 0.0
        return min(1.0, ms / self.config.latency_norm_ms)

    def _group_contribution(self, group: Sequence[TelemetryRecord], provider: ProviderType) -> float:
        # An empty group contributes 0
        if not group:
            return 0.0
        return float(np.mean([self._contribution(r, provider) for r in group]))

    # ------------------------------------------------------------------
    # Outcome history
    # ------------------------------------------------------------------

    def record_outcome(self, task_type: str, weights: RerankerWeights, success: bool) -> None:
        """Remember which weights a task type used and whether it succeeded."""
        with self._lock:
            self._history.append(OutcomeEntry(
                task_type=task_type,
                weights=weights,
                success=success,
                timestamp=time.time(),
            ))

    def get_recommended_weights(self, task_type: str) -> Optional[RerankerWeights]:
        """Average of the weights used by successful sessions of a task type.

        Returns:
            Averaged weights, or None when there is no successful history
        """
        with self._lock:
            matching = [e.weights for e in self._history if e.task_type == task_type and e.success]
        if not matching:
            return None

        fields = list(WEIGHT_KEYS) + ["stack_depth_decay"]
        matrix = np.array([[getattr(w, f) for f in fields] for w in matching], dtype=float)
        means = matrix.mean(axis=0)
        return RerankerWeights(**{f: float(v) for f, v in zip(fields, means)}).clamped()

    def get_history_stats(self) -> Dict[str, Dict[str, float]]:
        """Per task type: total outcomes, successes and success rate."""
        with self._lock:
            entries: List[OutcomeEntry] = list(self._history)

        stats: Dict[str, Dict[str, float]] = {}
        for entry in entries:
            bucket = stats.setdefault(entry.task_type, {"total": 0, "successes": 0, "success_rate": 0.0})
            bucket["total"] += 1
            if entry.success:
                bucket["successes"] += 1
        for bucket in stats.values():
            bucket["success_rate"] = bucket["successes"] / bucket["total"]
        return stats

    def history_size(self) -> int:
        return len(self._history)
