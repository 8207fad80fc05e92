"""AdaptiveEvidenceSystem: intent-aware builds plus the learning loop.

build() classifies the task, applies the intent strategy to a snapshot of
the live weights, builds the pack and records telemetry under a new session
id. feedback() labels the session and, every auto_optimize_threshold
sessions, runs the optimizer. optimize() only touches the live weights when
the run reports a positive improvement.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Mapping, Optional, Set, Union

from .config import AdaptiveConfig, get_adaptive_config
from .intent import ClassificationContext, TaskIntent, TaskIntentClassifier
from .optimizer import WeightOptimizer
from .strategy import IntentAwareProviderStrategy
from .system import EvidencePackSystem, coerce_input
from .telemetry import EvidenceTelemetryService
from .types import ContextInput, EvidencePack, OptimizationResult, Outcome, RerankerWeights

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdaptiveBuildResult:
    pack: EvidencePack
    intent: str
    confidence: float
    strategy_applied: bool
    session_id: str


class AdaptiveEvidenceSystem:
    """Top-level façade composing classifier, strategy, system, telemetry and optimizer.

    Example:
        >>> adaptive = AdaptiveEvidenceSystem()
        >>> result = await adaptive.build({"userMessage": "Fix handleClick in Button.tsx"})
        >>> prompt_context = result.pack.evidence
        >>> adaptive.feedback(result.session_id, success=True)
    """

    def __init__(
        self,
        system: Optional[EvidencePackSystem] = None,
        telemetry: Optional[EvidenceTelemetryService] = None,
        classifier: Optional[TaskIntentClassifier] = None,
        strategy: Optional[IntentAwareProviderStrategy] = None,
        optimizer: Optional[WeightOptimizer] = None,
        config: Optional[AdaptiveConfig] = None,
    ) -> None:
        self.config = config or get_adaptive_config()
        if self.config.auto_optimize_threshold < 1:
            raise ValueError("auto_optimize_threshold must be at least 1")

        self.system = system or EvidencePackSystem()
        self.telemetry = telemetry or EvidenceTelemetryService()
        self.classifier = classifier or TaskIntentClassifier()
        self.strategy = strategy or IntentAwareProviderStrategy()
        self.optimizer = optimizer or WeightOptimizer()

        self._lock = Lock()
        self._sessions_since_optimize = 0
        self._last_intent: Optional[str] = None
        self._consumed: Set[str] = set()

    @property
    def sessions_since_last_optimize(self) -> int:
        return self._sessions_since_optimize

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def build(
        self,
        context: Union[ContextInput, Mapping[str, Any]],
        token_budget: Optional[int] = None,
        force_intent: Optional[Union[TaskIntent, str]] = None,
        classification_context: Optional[ClassificationContext] = None,
    ) -> AdaptiveBuildResult:
        """Build an intent-aware evidence pack.

        Args:
            context: ContextInput or its camelCase dict form
            token_budget: Budget override
            force_intent: Skip classification and use this intent
            classification_context: Hints for the classifier (default: derived from the input)

        Raises:
            ValueError: If force_intent is not a known intent
        """
        context = coerce_input(context)
        session_id = uuid.uuid4().hex

        if force_intent is not None:
            intent = TaskIntent(force_intent).value
            confidence = 1.0
        else:
            hints = classification_context or ClassificationContext(
                has_errors=bool(context.errors),
                has_diff=bool(context.git_diff and context.git_diff.files),
                working_set_size=len(context.working_set),
                previous_intent=self._last_intent,
            )
            classification = self.classifier.classify_with_context(
                context.user_message if isinstance(context.user_message, str) else "", hints
            )
            intent, confidence = classification.intent, classification.confidence

        base = self.system.get_weights()
        if self.config.use_recommended_weights:
            recommended = self.optimizer.get_recommended_weights(intent)
            if recommended is not None:
                base = recommended

        # Applied to a snapshot; the live weights never accumulate modifiers
        weights = self.strategy.apply_weight_modifiers(base, intent)
        ratios = self.strategy.get_budget_ratios(intent)
        strategy_applied = not self.strategy.is_neutral(intent)

        pack = await self.system.build(
            context,
            token_budget=token_budget,
            weights=weights,
            budget_ratios=ratios,
            intent=intent,
            base_weights=base,
        )
        self.telemetry.record(session_id, pack.telemetry)

        with self._lock:
            self._sessions_since_optimize += 1
            self._last_intent = intent

        logger.debug(
            f"Session {session_id}: intent={intent} ({confidence:.2f}), "
            f"{len(pack.evidence)} evidence items, {pack.telemetry.tokens_used} tokens"
        )
        return AdaptiveBuildResult(
            pack=pack,
            intent=intent,
            confidence=confidence,
            strategy_applied=strategy_applied,
            session_id=session_id,
        )

    # ------------------------------------------------------------------
    # Learning loop
    # ------------------------------------------------------------------

    def feedback(self, session_id: str, success: bool) -> bool:
        """Label a session outcome and feed the optimizer history.

        The optimizer history receives the weights the build started from,
        before intent modifiers, and only for the first success or failure
        label of a session. Relabeling updates the telemetry record alone.

        Returns:
            False if the session is unknown (never built or already evicted)
        """
        previous = self.telemetry.get_record(session_id)
        outcome = Outcome.SUCCESS if success else Outcome.FAILURE
        if previous is None or not self.telemetry.mark_outcome(session_id, outcome):
            logger.warning(f"Feedback for unknown session {session_id}")
            return False

        if previous.outcome in (None, Outcome.ABANDONED):
            data = previous.data
            recorded = data.base_weights or data.weights
            weights = RerankerWeights.from_dict(recorded) if recorded else self.system.get_weights()
            self.optimizer.record_outcome(data.intent or TaskIntent.GENERAL.value, weights, success)
        else:
            logger.debug(f"Session {session_id} already labeled {previous.outcome.value}, history unchanged")

        if self._sessions_since_optimize >= self.config.auto_optimize_threshold:
            self.optimize()
        return True

    def abandon(self, session_id: str) -> bool:
        """Mark a session abandoned. Abandoned sessions are not optimizer samples."""
        return self.telemetry.mark_outcome(session_id, Outcome.ABANDONED)

    def optimize(self) -> OptimizationResult:
        """Run the optimizer over labeled records not used by a previous applied run.

        New weights are applied, the session counter reset and the records
        marked as used only when the run reports improvement > 0.
        """
        records = self.telemetry.get_records(with_outcome_only=True)
        with self._lock:
            # Forget ids that have left the ring buffer
            self._consumed &= {r.session_id for r in records}
            fresh = [r for r in records if r.session_id not in self._consumed]

        result = self.optimizer.optimize(self.system.get_weights(), fresh)
        if result.improvement > 0:
            self.system.update_weights(result.weights)
            with self._lock:
                self._sessions_since_optimize = 0
                self._consumed.update(
                    r.session_id for r in fresh if r.outcome in (Outcome.SUCCESS, Outcome.FAILURE)
                )
            logger.info(
                f"Applied optimized weights from {result.sample_count} samples "
                f"(improvement={result.improvement:.4f}, converged={result.converged})"
            )
        return result

    # ------------------------------------------------------------------
    # Passthroughs
    # ------------------------------------------------------------------

    def get_weights(self) -> RerankerWeights:
        return self.system.get_weights()

    def set_lsp_hub(self, hub: Any) -> None:
        self.system.set_lsp_hub(hub)

    def set_git_service(self, service: Any, snapshot_hash: Optional[str] = None) -> None:
        self.system.set_git_service(service, snapshot_hash)

    def get_stats(self) -> Dict[str, Any]:
        stats = self.telemetry.get_stats()
        stats["sessions_since_last_optimize"] = self._sessions_since_optimize
        stats["weights"] = self.system.get_weights().to_dict()
        stats["intent_history"] = self.optimizer.get_history_stats()
        stats["cache"] = self.system.get_cache_metrics()
        stats["circuits"] = self.system.get_circuit_states()
        return stats
