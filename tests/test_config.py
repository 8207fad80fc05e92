"""
Unit tests for evidence-pack configuration.

Tests environment overrides, defaults and the global singleton.
"""
import pytest

from evidence_pack.config import (
    AdaptiveConfig,
    CacheConfig,
    EvidenceConfig,
    ExtractorConfig,
    ProviderConfig,
    TelemetryConfig,
    get_config,
    get_provider_config,
    reset_config,
)


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


class TestDefaults:
    """Defaults when no environment variables are set."""

    def test_extractor_defaults(self, monkeypatch):
        for key in ("EVPACK_MIN_CONFIDENCE", "EVPACK_MAX_SIGNALS_PER_TYPE", "EVPACK_CUSTOM_PATTERNS"):
            monkeypatch.delenv(key, raising=False)
        config = ExtractorConfig()
        assert config.min_confidence == 0.3
        assert config.max_signals_per_type == 20
        assert config.custom_patterns == []

    def test_provider_defaults(self, monkeypatch, tmp_path):
        monkeypatch.delenv("EVPACK_WORKSPACE_ROOT", raising=False)
        monkeypatch.delenv("EVPACK_PROVIDER_TIMEOUT", raising=False)
        monkeypatch.chdir(tmp_path)
        config = ProviderConfig()
        assert config.workspace_root == str(tmp_path.resolve())
        assert config.provider_timeout == 5.0
        assert config.reference_timeout == 5.0
        assert config.definition_timeout == 3.0

    def test_adaptive_defaults(self, monkeypatch):
        monkeypatch.delenv("EVPACK_AUTO_OPTIMIZE_THRESHOLD", raising=False)
        assert AdaptiveConfig().auto_optimize_threshold == 50


class TestEnvironmentOverrides:
    """EVPACK_* variables override defaults."""

    def test_numeric_and_bool_overrides(self, monkeypatch):
        monkeypatch.setenv("EVPACK_CACHE_MAX_SIZE", "12")
        monkeypatch.setenv("EVPACK_CACHE_ENABLED", "no")
        monkeypatch.setenv("EVPACK_CACHE_TTL", "1.5")
        config = CacheConfig()
        assert config.max_size == 12
        assert config.enabled is False
        assert config.ttl_seconds == 1.5

    def test_list_overrides(self, monkeypatch):
        monkeypatch.setenv("EVPACK_EXCLUDE_PATTERNS", "node_modules/**, *.min.js ,")
        assert ProviderConfig().exclude_patterns == ["node_modules/**", "*.min.js"]

    def test_custom_patterns(self, monkeypatch):
        monkeypatch.setenv("EVPACK_CUSTOM_PATTERNS", r"JIRA-\d+")
        assert ExtractorConfig().custom_patterns == [r"JIRA-\d+"]

    def test_telemetry_path(self, monkeypatch, tmp_path):
        monkeypatch.setenv("EVPACK_TELEMETRY_PATH", str(tmp_path / "t.json"))
        assert TelemetryConfig().persist_path == str(tmp_path / "t.json")


class TestSingleton:
    """get_config / reset_config."""

    def test_singleton(self):
        assert get_config() is get_config()
        assert isinstance(get_config(), EvidenceConfig)
        assert get_provider_config() is get_config().providers

    def test_reset_picks_up_environment(self, monkeypatch):
        monkeypatch.setenv("EVPACK_MAX_RESULTS", "7")
        reset_config()
        assert get_provider_config().max_results == 7
