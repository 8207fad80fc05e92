"""
Tests for the telemetry-driven weight optimizer.

Test Coverage:
- Minimum sample guard
- Gradient direction from success/failure contributions
- Step and weight bounds
- Outcome history and recommended weights
"""

import unittest

import pytest

from evidence_pack.config import OptimizerConfig
from evidence_pack.optimizer import WeightOptimizer
from evidence_pack.types import (
    MAX_WEIGHT,
    MIN_WEIGHT,
    WEIGHT_KEYS,
    EvidenceTelemetry,
    Outcome,
    RerankerWeights,
    TelemetryRecord,
)


def make_optimizer(**overrides):
    config = OptimizerConfig(
        learning_rate=overrides.get("learning_rate", 0.1),
        max_delta=overrides.get("max_delta", 20.0),
        min_samples=overrides.get("min_samples", 10),
        latency_norm_ms=overrides.get("latency_norm_ms", 1000.0),
        convergence_threshold=overrides.get("convergence_threshold", 0.01),
        history_size=overrides.get("history_size", 1000),
    )
    return WeightOptimizer(config)


def make_record(session_id, outcome, timings=None):
    return TelemetryRecord(
        session_id=session_id,
        timestamp=0.0,
        data=EvidenceTelemetry(provider_timings=dict(timings or {})),
        outcome=outcome,
    )


@pytest.mark.unit
class TestOptimize(unittest.TestCase):
    """optimize() over labeled records."""

    def test_too_few_samples_returns_current(self):
        """5 records with min_samples 10: no change, zero improvement."""
        optimizer = make_optimizer(min_samples=10)
        records = [make_record(f"s{i}", Outcome.SUCCESS, {"diff": 500}) for i in range(5)]
        current = RerankerWeights()

        result = optimizer.optimize(current, records)

        self.assertEqual(result.improvement, 0)
        self.assertEqual(result.sample_count, 5)
        self.assertFalse(result.converged)
        self.assertEqual(result.weights, current)

    def test_unlabeled_and_abandoned_records_are_not_samples(self):
        optimizer = make_optimizer(min_samples=2)
        records = [
            make_record("a", None),
            make_record("b", Outcome.ABANDONED),
            make_record("c", Outcome.SUCCESS),
        ]
        self.assertEqual(optimizer.optimize(RerankerWeights(), records).sample_count, 1)

    def test_failing_diff_sessions_do_not_raise_diff(self):
        """Failures concentrated on diff evidence give a non-positive diff gradient."""
        optimizer = make_optimizer(min_samples=10)
        current = RerankerWeights(diff=50.0)
        records = [make_record(f"f{i}", Outcome.FAILURE, {"diff": 800.0}) for i in range(10)]

        result = optimizer.optimize(current, records)

        self.assertLessEqual(result.gradients["diff"], 0)
        self.assertLessEqual(result.weights.diff, 50.0)

    def test_gradient_follows_success_contribution(self):
        """Providers busier in successful sessions gain weight; others lose it."""
        optimizer = make_optimizer(min_samples=4)
        records = [
            make_record("s1", Outcome.SUCCESS, {"lsp": 1000.0, "search": 0.0}),
            make_record("s2", Outcome.SUCCESS, {"lsp": 1000.0}),
            make_record("f1", Outcome.FAILURE, {"search": 1000.0}),
            make_record("f2", Outcome.FAILURE, {"search": 1000.0}),
        ]

        result = optimizer.optimize(RerankerWeights(), records)

        self.assertAlmostEqual(result.gradients["definition"], 1.0)
        self.assertAlmostEqual(result.gradients["keyword"], -1.0)
        self.assertAlmostEqual(result.gradients["diff"], 0.0)
        # 60 + 1.0 * 0.1 * 60
        self.assertAlmostEqual(result.weights.definition, 66.0)
        self.assertAlmostEqual(result.weights.keyword, 9.0)
        self.assertAlmostEqual(result.weights.diff, 100.0)
        self.assertGreater(result.improvement, 0)
        self.assertFalse(result.converged)

    def test_step_capped_by_max_delta(self):
        optimizer = make_optimizer(min_samples=2, learning_rate=10.0, max_delta=5.0)
        records = [
            make_record("s", Outcome.SUCCESS, {"diff": 1000.0}),
            make_record("f", Outcome.FAILURE, {}),
        ]
        result = optimizer.optimize(RerankerWeights(), records)
        self.assertAlmostEqual(result.weights.diff, 105.0)

    def test_weights_stay_in_bounds(self):
        optimizer = make_optimizer(min_samples=2, learning_rate=100.0, max_delta=1000.0)
        up = [make_record("s", Outcome.SUCCESS, {"diff": 1000, "lsp": 1000, "search": 1000}),
              make_record("f", Outcome.FAILURE, {})]
        down = [make_record("s", Outcome.SUCCESS, {}),
                make_record("f", Outcome.FAILURE, {"diff": 1000, "lsp": 1000, "search": 1000})]

        for records in (up, down):
            weights = optimizer.optimize(RerankerWeights(), records).weights
            for key in WEIGHT_KEYS:
                self.assertGreaterEqual(getattr(weights, key), MIN_WEIGHT)
                self.assertLessEqual(getattr(weights, key), MAX_WEIGHT)

    def test_decay_untouched(self):
        optimizer = make_optimizer(min_samples=2)
        records = [make_record("s", Outcome.SUCCESS, {"diff": 10}), make_record("f", Outcome.FAILURE)]
        result = optimizer.optimize(RerankerWeights(stack_depth_decay=0.7), records)
        self.assertEqual(result.weights.stack_depth_decay, 0.7)

    def test_converged_when_groups_match(self):
        optimizer = make_optimizer(min_samples=2)
        records = [
            make_record("s", Outcome.SUCCESS, {"diff": 100}),
            make_record("f", Outcome.FAILURE, {"diff": 100}),
        ]
        result = optimizer.optimize(RerankerWeights(), records)
        self.assertEqual(result.improvement, 0.0)
        self.assertTrue(result.converged)

    def test_invalid_config(self):
        with self.assertRaises(ValueError):
            make_optimizer(latency_norm_ms=0)
        with self.assertRaises(ValueError):
            make_optimizer(max_delta=-1)


@pytest.mark.unit
class TestOutcomeHistory(unittest.TestCase):
    """Per task type history and recommended weights."""

    def test_recommended_weights_average_successes(self):
        optimizer = make_optimizer()
        optimizer.record_outcome("debug", RerankerWeights(diff=100.0), True)
        optimizer.record_outcome("debug", RerankerWeights(diff=140.0), True)
        optimizer.record_outcome("debug", RerankerWeights(diff=10.0), False)

        recommended = optimizer.get_recommended_weights("debug")
        self.assertAlmostEqual(recommended.diff, 120.0)
        self.assertIsNone(optimizer.get_recommended_weights("review"))

    def test_history_stats(self):
        optimizer = make_optimizer()
        optimizer.record_outcome("debug", RerankerWeights(), True)
        optimizer.record_outcome("debug", RerankerWeights(), False)
        optimizer.record_outcome("test", RerankerWeights(), True)

        stats = optimizer.get_history_stats()
        self.assertEqual(stats["debug"]["total"], 2)
        self.assertAlmostEqual(stats["debug"]["success_rate"], 0.5)
        self.assertEqual(stats["test"]["successes"], 1)

    def test_history_capacity(self):
        optimizer = make_optimizer(history_size=3)
        for _ in range(5):
            optimizer.record_outcome("debug", RerankerWeights(), True)
        self.assertEqual(optimizer.history_size(), 3)
