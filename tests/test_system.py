"""Tests for EvidencePackSystem: live weights, service binding and builds."""

import unittest

import pytest
from unittest.mock import MagicMock

from evidence_pack.caching import EvidenceCache
from evidence_pack.config import (
    BudgetConfig,
    CacheConfig,
    EvidenceConfig,
    ExtractorConfig,
    ProviderConfig,
)
from evidence_pack.providers import DiffProvider, LspProvider
from evidence_pack.providers.base import EvidenceProvider
from evidence_pack.system import EvidencePackSystem
from evidence_pack.types import Evidence, ProviderType, RerankerWeights


def make_config():
    return EvidenceConfig(
        extractor=ExtractorConfig(min_confidence=0.3, max_signals_per_type=20, max_stack_frames=10, custom_patterns=[]),
        providers=ProviderConfig(workspace_root=".", provider_timeout=1.0, include_patterns=[], exclude_patterns=[]),
        cache=CacheConfig(enabled=True, max_size=16, ttl_seconds=0),
        budget=BudgetConfig(token_budget=1000, chars_per_token=4),
    )


class KeywordProvider(EvidenceProvider):
    """Returns one keyword hit; optionally runs a hook during the query."""

    type = ProviderType.SEARCH
    name = "Keyword"

    def __init__(self, on_query=None):
        self.on_query = on_query

    async def is_available(self):
        return True

    async def query(self, signals, options=None):
        if self.on_query is not None:
            self.on_query()
        return [Evidence(
            id="k1",
            provider=ProviderType.SEARCH,
            path="src/a.ts",
            range=(1, 5),
            content="code",
            tokens=1,
        )]


@pytest.mark.unit
class TestWeights(unittest.TestCase):
    """Live weight management."""

    def setUp(self):
        self.system = EvidencePackSystem(config=make_config(), providers=[KeywordProvider()])

    def test_defaults(self):
        self.assertEqual(self.system.get_weights(), RerankerWeights())

    def test_update_with_keywords_is_clamped(self):
        weights = self.system.update_weights(diff=500, keyword=-3)
        self.assertEqual(weights.diff, 200.0)
        self.assertEqual(weights.keyword, 1.0)
        self.assertEqual(self.system.get_weights(), weights)

    def test_update_with_full_weights(self):
        new = RerankerWeights(diff=120.0, stack_depth_decay=0.5)
        self.system.update_weights(new)
        self.assertEqual(self.system.get_weights().diff, 120.0)
        self.assertEqual(self.system.get_weights().stack_depth_decay, 0.5)

    def test_decay_clamped_to_unit_interval(self):
        self.assertEqual(self.system.update_weights(stack_depth_decay=1.7).stack_depth_decay, 1.0)

    def test_unknown_key_rejected(self):
        with self.assertRaises(ValueError):
            self.system.update_weights(bogus=1.0)

    def test_reset(self):
        self.system.update_weights(diff=150)
        self.assertEqual(self.system.reset_weights(), RerankerWeights())

    def test_initial_weights_clamped(self):
        system = EvidencePackSystem(
            config=make_config(),
            providers=[KeywordProvider()],
            weights=RerankerWeights(diff=999.0),
        )
        self.assertEqual(system.get_weights().diff, 200.0)


@pytest.mark.unit
class TestServiceBinding(unittest.TestCase):
    """Runtime binding of LSP and git services."""

    def test_default_providers(self):
        system = EvidencePackSystem(config=make_config())
        types = [p.type for p in system.providers]
        self.assertEqual(types, [ProviderType.DIFF, ProviderType.LSP, ProviderType.SEARCH])

    def test_set_lsp_hub_binds_and_clears_cache(self):
        cache = EvidenceCache(max_size=8, ttl_seconds=0)
        lsp = LspProvider(config=make_config().providers)
        system = EvidencePackSystem(config=make_config(), providers=[lsp], cache=cache)
        cache.set("stale", [])

        hub = MagicMock()
        system.set_lsp_hub(hub)

        self.assertIs(lsp._lsp_hub, hub)
        self.assertEqual(len(cache), 0)

    def test_set_git_service_binds_and_clears_cache(self):
        cache = EvidenceCache(max_size=8, ttl_seconds=0)
        diff = DiffProvider()
        system = EvidencePackSystem(config=make_config(), providers=[diff], cache=cache)
        cache.set("stale", [])

        service = MagicMock()
        system.set_git_service(service, "abc123")

        self.assertIs(diff._git_service, service)
        self.assertEqual(diff._snapshot_hash, "abc123")
        self.assertEqual(len(cache), 0)


@pytest.mark.asyncio
class TestSystemBuild:
    """Builds through the façade."""

    async def test_build_accepts_camel_case_dict(self):
        system = EvidencePackSystem(config=make_config(), providers=[KeywordProvider()])
        pack = await system.build({
            "userMessage": "Fix handleClick",
            "workingSet": ["src/a.ts"],
        })
        assert [e.path for e in pack.evidence] == ["src/a.ts"]
        assert pack.telemetry.signal_count == 2

    async def test_weight_update_during_build_does_not_affect_it(self):
        """A build ranks with the weights it read at its start."""
        system = None

        def bump():
            system.update_weights(keyword=200.0)

        system = EvidencePackSystem(config=make_config(), providers=[KeywordProvider(on_query=bump)])
        pack = await system.build({"userMessage": "Fix handleClick"})

        assert pack.telemetry.weights["keyword"] == 10.0
        assert pack.evidence[0].score == pytest.approx(10.0)
        assert system.get_weights().keyword == 200.0

    async def test_weights_override_leaves_live_weights(self):
        system = EvidencePackSystem(config=make_config(), providers=[KeywordProvider()])
        pack = await system.build({"userMessage": "x"}, weights=RerankerWeights(keyword=50.0))

        assert pack.evidence[0].score == pytest.approx(50.0)
        assert system.get_weights().keyword == 10.0

    async def test_cache_metrics_exposed(self):
        system = EvidencePackSystem(config=make_config(), providers=[KeywordProvider()])
        await system.build({"userMessage": "Fix handleClick"})
        await system.build({"userMessage": "Fix handleClick"})

        assert system.get_cache_metrics()["hits"] == 1
        system.clear_cache()
        assert system.get_cache_metrics()["size"] == 0
