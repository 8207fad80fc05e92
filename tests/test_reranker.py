"""
Tests for weighted reranking.

Test Coverage:
- Category resolution per provider and metadata
- Score formula with stack depth decay
- Ordering: non-increasing scores, stable ties
"""

import unittest

import pytest

from evidence_pack.reranker import Reranker, weight_category
from evidence_pack.types import Evidence, ProviderType, RerankerWeights


def make_evidence(id, provider=ProviderType.SEARCH, relevance=1.0, **metadata):
    return Evidence(
        id=id,
        provider=provider,
        path=f"src/{id}.ts",
        range=(1, 10),
        content="code",
        tokens=10,
        relevance=relevance,
        metadata=metadata,
    )


@pytest.mark.unit
class TestWeightCategory(unittest.TestCase):
    """Which weight applies to which evidence."""

    def test_categories(self):
        self.assertEqual(weight_category(make_evidence("d", ProviderType.DIFF)), "diff")
        self.assertEqual(
            weight_category(make_evidence("l", ProviderType.LSP, symbol_kind="definition")), "definition"
        )
        self.assertEqual(
            weight_category(make_evidence("r", ProviderType.LSP, symbol_kind="reference")), "reference"
        )
        self.assertEqual(weight_category(make_evidence("w", working_set=True)), "working_set")
        self.assertEqual(weight_category(make_evidence("k")), "keyword")

    def test_stack_depth_takes_precedence(self):
        """Stack-derived evidence uses stack_frame whatever its provider."""
        self.assertEqual(weight_category(make_evidence("s", stack_depth=2)), "stack_frame")
        self.assertEqual(
            weight_category(make_evidence("s", ProviderType.LSP, stack_depth=0, symbol_kind="definition")),
            "stack_frame",
        )


@pytest.mark.unit
class TestReranker(unittest.TestCase):
    """Scores and ordering."""

    def setUp(self):
        self.reranker = Reranker()
        self.weights = RerankerWeights()

    def test_default_weight_order(self):
        """With equal relevance: diff > stack_frame > definition > working_set > reference > keyword."""
        items = [
            make_evidence("k"),
            make_evidence("r", ProviderType.LSP, symbol_kind="reference"),
            make_evidence("w", working_set=True),
            make_evidence("l", ProviderType.LSP, symbol_kind="definition"),
            make_evidence("s", stack_depth=0),
            make_evidence("d", ProviderType.DIFF),
        ]
        ranked = self.reranker.rank(items, self.weights)
        self.assertEqual([e.id for e in ranked], ["d", "s", "l", "w", "r", "k"])

    def test_score_formula(self):
        """score = weight * relevance * decay ** depth."""
        item = make_evidence("s", relevance=0.5, stack_depth=2)
        expected = 80.0 * 0.5 * 0.9 ** 2
        self.assertAlmostEqual(self.reranker.score(item, self.weights), expected)

    def test_deeper_frames_score_lower(self):
        """Frame evidence decays with depth."""
        ranked = self.reranker.rank(
            [make_evidence(f"f{d}", stack_depth=d) for d in (3, 0, 1)],
            self.weights,
        )
        self.assertEqual([e.id for e in ranked], ["f0", "f1", "f3"])

    def test_scores_non_increasing(self):
        """Output scores never increase down the list."""
        items = [make_evidence(str(i), relevance=(i * 37 % 11) / 10) for i in range(30)]
        ranked = self.reranker.rank(items, self.weights)
        scores = [e.score for e in ranked]
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_ties_keep_input_order(self):
        """Equal scores keep merge order."""
        items = [make_evidence(name) for name in ("a", "b", "c")]
        ranked = self.reranker.rank(items, self.weights)
        self.assertEqual([e.id for e in ranked], ["a", "b", "c"])

    def test_rank_returns_scored_copies(self):
        """Inputs are not mutated; outputs carry the score."""
        item = make_evidence("d", ProviderType.DIFF)
        ranked = self.reranker.rank([item], self.weights)
        self.assertEqual(item.score, 0.0)
        self.assertAlmostEqual(ranked[0].score, 100.0)

    def test_negative_relevance_scores_zero(self):
        item = make_evidence("x", relevance=-3.0)
        self.assertEqual(self.reranker.score(item, self.weights), 0.0)

    def test_weights_change_order(self):
        """Raising keyword above diff flips their order."""
        weights = self.weights.with_updates(keyword=150.0)
        ranked = self.reranker.rank(
            [make_evidence("d", ProviderType.DIFF), make_evidence("k")],
            weights,
        )
        self.assertEqual([e.id for e in ranked], ["k", "d"])

    def test_score_breakdown(self):
        item = make_evidence("s", stack_depth=1)
        breakdown = self.reranker.score_breakdown(item, self.weights)
        self.assertEqual(breakdown["category"], "stack_frame")
        self.assertEqual(breakdown["depth"], 1)
        self.assertAlmostEqual(breakdown["score"], 72.0)
