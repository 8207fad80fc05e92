"""Weighted reranking of merged provider evidence.

Each item's score is the weight of its semantic category times the item's
intrinsic relevance, attenuated by ``stack_depth_decay ** depth`` for
evidence derived from a stack frame:

    score = weight[category] * relevance * decay ** depth

Categories are resolved in order: stack-derived items use ``stack_frame``,
diff items ``diff``, LSP items ``definition`` or ``reference``, working-set
excerpts ``working_set`` and any other search hit ``keyword``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .types import Evidence, ProviderType, RerankerWeights


def weight_category(evidence: Evidence) -> str:
    """Name of the RerankerWeights field that applies to an evidence item."""
    if evidence.stack_depth is not None:
        return "stack_frame"
    if evidence.provider == ProviderType.DIFF:
        return "diff"
    if evidence.provider == ProviderType.LSP:
        return "reference" if evidence.metadata.get("symbol_kind") == "reference" else "definition"
    if evidence.metadata.get("working_set"):
        return "working_set"
    return "keyword"


class Reranker:
    """Scores and orders evidence by the current weight vector.

    Sorting is stable, so items with equal scores keep the order they were
    merged in (diff, then LSP, then search).

    Example:
        >>> ranked = Reranker().rank(evidence, RerankerWeights())
        >>> [e.score for e in ranked]  # non-increasing
    """

    def score(self, evidence: Evidence, weights: RerankerWeights) -> float:
        category = weight_category(evidence)
        value = getattr(weights, category) * max(0.0, evidence.relevance)
        depth = evidence.stack_depth
        if depth is not None and depth > 0:
            value *= weights.stack_depth_decay ** depth
        return value

    def rank(self, evidence: Sequence[Evidence], weights: RerankerWeights) -> List[Evidence]:
        """Return scored copies of the evidence, highest score first."""
        scored = [item.with_score(self.score(item, weights)) for item in evidence]
        scored.sort(key=lambda e: e.score, reverse=True)
        return scored

    def score_breakdown(self, evidence: Evidence, weights: RerankerWeights) -> Dict[str, Any]:
        """Explain one item's score (for diagnostics and logging)."""
        category = weight_category(evidence)
        depth = evidence.stack_depth or 0
        return {
            "category": category,
            "weight": getattr(weights, category),
            "relevance": evidence.relevance,
            "depth": depth,
            "decay": weights.stack_depth_decay ** depth,
            "score": self.score(evidence, weights),
        }
