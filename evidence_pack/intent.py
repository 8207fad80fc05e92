"""Rule-based task intent classification.

Maps a user message to a coarse task intent so the strategy layer can bias
reranker weights and budget shares before retrieval. Deterministic, no
learning.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .types import ClassificationResult


class TaskIntent(str, Enum):
    """Coarse task categories."""

    DEBUG = "debug"
    REFACTOR = "refactor"
    IMPLEMENT = "implement"
    EXPLAIN = "explain"
    TEST = "test"
    REVIEW = "review"
    GENERAL = "general"


DEFAULT_INTENT = TaskIntent.GENERAL
DEFAULT_CONFIDENCE = 0.3
EXTRA_TRIGGER_BONUS = 0.05
MAX_CONFIDENCE = 0.99

# Context boosts
ERROR_DEBUG_BOOST = 0.3
DIFF_REVIEW_BOOST = 0.15
PREVIOUS_INTENT_BOOST = 0.1


@dataclass(frozen=True)
class ClassificationContext:
    """Session hints that shift the classification."""

    has_errors: bool = False
    has_diff: bool = False
    working_set_size: int = 0
    previous_intent: Optional[str] = None


class TaskIntentClassifier:
    """Classifies a task description into a TaskIntent.

    Each intent has weighted regex triggers. An intent scores its strongest
    matching trigger plus a small bonus per additional trigger; the highest
    score wins (ties go to the intent listed first). Text that matches
    nothing is "general" at confidence 0.3.

    Example:
        >>> classifier = TaskIntentClassifier()
        >>> classifier.classify("Fix the crash in the login handler").intent
        'debug'
        >>> classifier.classify("rename getUser to fetchUser everywhere").intent
        'refactor'
    """

    # Ordered: earlier intents win ties
    TRIGGERS: List[Tuple[TaskIntent, List[Tuple[re.Pattern, float]]]] = [
        (TaskIntent.DEBUG, [
            (re.compile(r"\b(fix|fixes|fixing|bug|bugs|broken|crash(es|ed|ing)?)\b", re.I), 0.85),
            (re.compile(r"\b(error|exception|traceback|stack\s*trace|panic|segfault)\b", re.I), 0.8),
            (re.compile(r"\b(debug|debugging|troubleshoot|diagnose)\b", re.I), 0.9),
            (re.compile(r"\b(fails?|failing|failed|not\s+working|doesn'?t\s+work|wrong\s+result)\b", re.I), 0.75),
            (re.compile(r"\b(undefined|null\s*pointer|NaN|regression|hang(s|ing)?)\b", re.I), 0.65),
        ]),
        (TaskIntent.REFACTOR, [
            (re.compile(r"\b(refactor|refactoring|restructure|reorganize)\b", re.I), 0.95),
            (re.compile(r"\b(rename|extract\s+(method|function|class)|inline|move\s+\w+\s+to)\b", re.I), 0.85),
            (re.compile(r"\b(clean\s*up|simplify|deduplicate|dry\s+up|decouple)\b", re.I), 0.8),
            (re.compile(r"\b(split|merge)\s+(this|the|into)\b", re.I), 0.65),
        ]),
        (TaskIntent.IMPLEMENT, [
            (re.compile(r"\b(implement|implementing)\b", re.I), 0.9),
            (re.compile(r"^(add|create|build|make|write|introduce)\b", re.I), 0.85),
            (re.compile(r"\b(add|create|build|support\s+for|new\s+(feature|endpoint|command|option))\b", re.I), 0.7),
            (re.compile(r"\b(feature|endpoint|integration|scaffold)\b", re.I), 0.6),
        ]),
        (TaskIntent.EXPLAIN, [
            (re.compile(r"\b(explain|explanation|walk\s+me\s+through|describe)\b", re.I), 0.9),
            (re.compile(r"\b(how\s+does|what\s+does|why\s+does|what\s+is|where\s+is)\b", re.I), 0.8),
            (re.compile(r"\b(understand|overview|purpose\s+of|meaning\s+of)\b", re.I), 0.75),
        ]),
        (TaskIntent.TEST, [
            (re.compile(r"\b(unit\s+tests?|integration\s+tests?|test\s+cases?|test\s+coverage)\b", re.I), 0.9),
            (re.compile(r"\b(write|add|update)\s+(a\s+)?tests?\b", re.I), 0.9),
            (re.compile(r"\b(pytest|jest|vitest|mocha|mock|fixture|assertion)s?\b", re.I), 0.75),
            (re.compile(r"\b(tests?|spec|coverage)\b", re.I), 0.55),
        ]),
        (TaskIntent.REVIEW, [
            (re.compile(r"\b(review|code\s+review|pull\s+request|PR)\b", re.I), 0.9),
            (re.compile(r"\b(diff|changes|changeset|what\s+changed|my\s+changes)\b", re.I), 0.7),
            (re.compile(r"\b(look\s+over|sanity\s+check|double[-\s]check|audit)\b", re.I), 0.75),
        ]),
    ]

    def classify(self, text: str) -> ClassificationResult:
        """Classify text without session context."""
        return self._select(self.get_all_scores(text))

    def classify_with_context(self, text: str, context: Optional[ClassificationContext]) -> ClassificationResult:
        """Classify text, boosting intents suggested by the session state.

        Errors in the input boost debug, a pending diff boosts review, and
        the previous intent gets a small continuity boost when the text
        already points at it.
        """
        scores = self.get_all_scores(text)
        if context is None:
            return self._select(scores)

        if context.has_errors:
            scores[TaskIntent.DEBUG.value] += ERROR_DEBUG_BOOST
        if context.has_diff:
            scores[TaskIntent.REVIEW.value] += DIFF_REVIEW_BOOST
        previous = context.previous_intent
        if previous in scores and previous != DEFAULT_INTENT.value and scores[previous] > 0:
            scores[previous] += PREVIOUS_INTENT_BOOST

        capped = {intent: min(MAX_CONFIDENCE, score) for intent, score in scores.items()}
        return self._select(capped)

    def get_all_scores(self, text: str) -> Dict[str, float]:
        """Score every intent (general is always 0 here)."""
        text = (text or "").strip()
        scores = {intent.value: 0.0 for intent in TaskIntent}
        if not text:
            return scores

        for intent, triggers in self.TRIGGERS:
            weights = sorted((w for pattern, w in triggers if pattern.search(text)), reverse=True)
            if weights:
                score = weights[0] + EXTRA_TRIGGER_BONUS * (len(weights) - 1)
                scores[intent.value] = min(MAX_CONFIDENCE, score)
        return scores

    @staticmethod
    def _select(scores: Dict[str, float]) -> ClassificationResult:
        best_intent = DEFAULT_INTENT.value
        best_score = 0.0
        for intent in TaskIntent:
            score = scores.get(intent.value, 0.0)
            if score > best_score:
                best_intent, best_score = intent.value, score

        if best_score == 0.0:
            return ClassificationResult(intent=DEFAULT_INTENT.value, confidence=DEFAULT_CONFIDENCE, scores=scores)
        return ClassificationResult(intent=best_intent, confidence=round(best_score, 4), scores=scores)
