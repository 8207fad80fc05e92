"""Tests for token budget allocation."""

import unittest

import pytest

from evidence_pack.budget import BudgetAllocator
from evidence_pack.config import BudgetConfig
from evidence_pack.types import BudgetRatios, Evidence, ProviderType


def make_evidence(id, tokens, provider=ProviderType.SEARCH, content="code"):
    return Evidence(
        id=str(id),
        provider=provider,
        path=f"src/{id}.ts",
        range=(1, 10),
        content=content,
        tokens=tokens,
    )


def make_allocator(budget=8000):
    return BudgetAllocator(config=BudgetConfig(token_budget=budget, chars_per_token=4))


@pytest.mark.unit
class TestBudgetAllocator(unittest.TestCase):
    """Greedy selection in rank order."""

    def test_many_items_small_budget(self):
        """100 items of 150 tokens with budget 1000 keep 6 items and save 14100 tokens."""
        ranked = [make_evidence(i, 150) for i in range(100)]
        result = make_allocator().allocate(ranked, token_budget=1000)

        self.assertEqual(len(result.pack), 6)
        self.assertEqual(result.tokens_used, 900)
        self.assertEqual(result.tokens_saved, 14100)
        self.assertEqual(result.tokens_remaining, 100)
        self.assertEqual([e.id for e in result.pack], [str(i) for i in range(6)])

    def test_skips_items_that_do_not_fit(self):
        """An oversized item is skipped and smaller later items still fill the budget."""
        ranked = [make_evidence("a", 60), make_evidence("b", 500), make_evidence("c", 30)]
        result = make_allocator().allocate(ranked, token_budget=100)

        self.assertEqual([e.id for e in result.pack], ["a", "c"])
        self.assertEqual(result.tokens_saved, 500)
        self.assertEqual([e.id for e in result.dropped], ["b"])

    def test_total_never_exceeds_budget(self):
        ranked = [make_evidence(i, (i * 53) % 97 + 1) for i in range(60)]
        for budget in (0, 1, 50, 333, 1000, 5000):
            result = make_allocator().allocate(ranked, token_budget=budget)
            self.assertLessEqual(sum(e.tokens for e in result.pack), budget)
            self.assertEqual(result.tokens_used + result.tokens_saved, sum(e.tokens for e in ranked))

    def test_default_budget(self):
        """Without a per-call budget the configured default applies."""
        result = make_allocator(budget=300).allocate([make_evidence(i, 100) for i in range(5)])
        self.assertEqual(len(result.pack), 3)
        self.assertEqual(result.token_budget, 300)

    def test_zero_and_negative_budget(self):
        """Zero budget returns nothing; a negative budget is treated as zero."""
        ranked = [make_evidence("a", 10)]
        self.assertEqual(make_allocator().allocate(ranked, token_budget=0).pack, [])
        result = make_allocator().allocate(ranked, token_budget=-5)
        self.assertEqual(result.pack, [])
        self.assertEqual(result.token_budget, 0)

    def test_tokens_estimated_from_content(self):
        """Items without a token count are costed at ceil(chars / 4)."""
        item = make_evidence("a", 0, content="x" * 41)
        allocator = make_allocator()
        self.assertEqual(allocator.estimated_tokens(item), 11)
        self.assertEqual(allocator.allocate([item], token_budget=10).pack, [])

    def test_invalid_configuration(self):
        with self.assertRaises(ValueError):
            BudgetAllocator(default_budget=-1, config=BudgetConfig())
        with self.assertRaises(ValueError):
            BudgetAllocator(config=BudgetConfig(token_budget=100, chars_per_token=0))


@pytest.mark.unit
class TestBudgetRatios(unittest.TestCase):
    """Per-provider minimum and maximum shares."""

    def test_minimum_share_reserved_for_low_ranked_provider(self):
        """A provider ranked last still gets its reserved share."""
        ranked = [make_evidence(f"d{i}", 100, ProviderType.DIFF) for i in range(10)]
        ranked += [make_evidence(f"s{i}", 100, ProviderType.SEARCH) for i in range(3)]
        ratios = BudgetRatios(minimums={ProviderType.SEARCH: 0.2})

        result = make_allocator().allocate(ranked, token_budget=1000, ratios=ratios)

        self.assertEqual(result.tokens_by_provider["search"], 200)
        self.assertEqual(result.tokens_by_provider["diff"], 800)
        # Rank order is preserved in the output
        self.assertEqual([e.id for e in result.pack][-2:], ["s0", "s1"])

    def test_maximum_share_caps_provider(self):
        """A provider never exceeds floor(max share x budget)."""
        ranked = [make_evidence(f"d{i}", 100, ProviderType.DIFF) for i in range(10)]
        ranked += [make_evidence(f"s{i}", 100, ProviderType.SEARCH) for i in range(10)]
        ratios = BudgetRatios(maximums={ProviderType.DIFF: 0.3})

        result = make_allocator().allocate(ranked, token_budget=1000, ratios=ratios)

        self.assertEqual(result.tokens_by_provider["diff"], 300)
        self.assertEqual(result.tokens_by_provider["search"], 700)

    def test_ratio_validation(self):
        with self.assertRaises(ValueError):
            BudgetRatios(minimums={ProviderType.DIFF: 0.7, ProviderType.LSP: 0.5})
        with self.assertRaises(ValueError):
            BudgetRatios(maximums={ProviderType.DIFF: 1.5})
        with self.assertRaises(ValueError):
            BudgetRatios(minimums={ProviderType.DIFF: 0.5}, maximums={ProviderType.DIFF: 0.2})
