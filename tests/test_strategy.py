"""Tests for intent-aware weight and budget strategies."""

import unittest

import pytest

from evidence_pack.intent import TaskIntent
from evidence_pack.strategy import STRATEGIES, IntentAwareProviderStrategy
from evidence_pack.types import MAX_WEIGHT, MIN_WEIGHT, WEIGHT_KEYS, ProviderType, RerankerWeights


@pytest.mark.unit
class TestIntentAwareProviderStrategy(unittest.TestCase):
    """Strategy lookup and application."""

    def setUp(self):
        self.strategy = IntentAwareProviderStrategy()

    def test_every_intent_has_a_strategy(self):
        for intent in TaskIntent:
            self.assertIn(intent, STRATEGIES)
            self.assertEqual(self.strategy.get_strategy(intent).intent, intent.value)

    def test_debug_modifiers(self):
        weights = self.strategy.apply_weight_modifiers(RerankerWeights(), "debug")
        self.assertAlmostEqual(weights.stack_frame, 120.0)
        self.assertAlmostEqual(weights.diff, 120.0)
        self.assertAlmostEqual(weights.keyword, 11.0)
        self.assertAlmostEqual(weights.reference, 30.0)

    def test_explain_reduces_decay(self):
        weights = self.strategy.apply_weight_modifiers(RerankerWeights(), TaskIntent.EXPLAIN)
        self.assertAlmostEqual(weights.stack_depth_decay, 0.81)

    def test_input_weights_unchanged(self):
        base = RerankerWeights()
        self.strategy.apply_weight_modifiers(base, "review")
        self.assertEqual(base, RerankerWeights())

    def test_results_stay_in_bounds(self):
        """For every intent and extreme inputs the result is within bounds."""
        extremes = [
            RerankerWeights(**{k: MAX_WEIGHT for k in WEIGHT_KEYS}, stack_depth_decay=1.0),
            RerankerWeights(**{k: MIN_WEIGHT for k in WEIGHT_KEYS}, stack_depth_decay=0.0),
            RerankerWeights(),
        ]
        for intent in TaskIntent:
            for base in extremes:
                weights = self.strategy.apply_weight_modifiers(base, intent)
                for key in WEIGHT_KEYS:
                    self.assertGreaterEqual(getattr(weights, key), MIN_WEIGHT)
                    self.assertLessEqual(getattr(weights, key), MAX_WEIGHT)
                self.assertGreaterEqual(weights.stack_depth_decay, 0.0)
                self.assertLessEqual(weights.stack_depth_decay, 1.0)

    def test_general_is_neutral(self):
        self.assertTrue(self.strategy.is_neutral("general"))
        self.assertFalse(self.strategy.is_neutral("debug"))
        self.assertEqual(self.strategy.apply_weight_modifiers(RerankerWeights(), "general"), RerankerWeights())

    def test_unknown_intent_falls_back_to_general(self):
        self.assertEqual(self.strategy.get_strategy("poetry").intent, "general")
        self.assertIsNone(self.strategy.get_budget_ratios("poetry"))

    def test_budget_ratios(self):
        debug = self.strategy.get_budget_ratios("debug")
        self.assertEqual(debug.minimum_for(ProviderType.SEARCH), 0.2)
        self.assertEqual(debug.maximum_for(ProviderType.DIFF), 0.6)
        self.assertEqual(self.strategy.get_budget_ratios("review").minimum_for(ProviderType.DIFF), 0.4)
        self.assertIsNone(self.strategy.get_budget_ratios("implement"))
