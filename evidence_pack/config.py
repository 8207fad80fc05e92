"""Centralized evidence-pack configuration.

All extraction, provider, cache, budget, telemetry and learning settings in
one place. Override via environment variables or a .env file.

=== CONFIGURATION SECTIONS ===

1. Extraction (EVPACK_MIN_CONFIDENCE, EVPACK_MAX_SIGNALS_PER_TYPE, ...)
   - Signal confidence floor, per-type signal cap, stack frame cap
   - EVPACK_CUSTOM_PATTERNS: comma separated regexes treated as symbols

2. Providers (EVPACK_WORKSPACE_ROOT, EVPACK_PROVIDER_TIMEOUT, ...)
   - Workspace root for text search and file excerpts
   - Per-provider and per-LSP-query timeouts (seconds)
   - Circuit breaker thresholds for failing providers

3. Cache (EVPACK_CACHE_*)
   - LRU capacity and TTL for provider responses

4. Budget (EVPACK_TOKEN_BUDGET, EVPACK_CHARS_PER_TOKEN)

5. Telemetry (EVPACK_TELEMETRY_*)
   - Ring buffer capacity and optional JSON mirror on disk

6. Learning (EVPACK_OPTIMIZER_*, EVPACK_AUTO_OPTIMIZE_THRESHOLD)
   - Gradient step size, per-step cap, minimum samples, auto-optimize cadence
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


def _get_env(key: str, default: str) -> str:
    """Get environment variable with default."""
    return os.getenv(key, default)


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable with default."""
    return int(os.getenv(key, str(default)))


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable with default."""
    return float(os.getenv(key, str(default)))


def _get_env_bool(key: str, default: bool) -> bool:
    """Get boolean environment variable with default."""
    val = os.getenv(key, str(default)).lower()
    return val in ("true", "1", "yes", "on")


def _get_env_list(key: str, default: str = "") -> List[str]:
    """Get comma separated environment variable as a list of non-empty items."""
    raw = os.getenv(key, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ============================================================================
# SIGNAL EXTRACTION
# ============================================================================

@dataclass
class ExtractorConfig:
    """Signal extraction configuration.

    Environment Variables:
        EVPACK_MIN_CONFIDENCE: Drop signals below this confidence (default: 0.3)
        EVPACK_MAX_SIGNALS_PER_TYPE: Output cap is this value x 4 types (default: 20)
        EVPACK_MAX_STACK_FRAMES: Frames parsed per error (default: 10)
        EVPACK_CUSTOM_PATTERNS: Comma separated regexes matched in the user message
    """

    min_confidence: float = field(default_factory=lambda: _get_env_float("EVPACK_MIN_CONFIDENCE", 0.3))
    max_signals_per_type: int = field(default_factory=lambda: _get_env_int("EVPACK_MAX_SIGNALS_PER_TYPE", 20))
    max_stack_frames: int = field(default_factory=lambda: _get_env_int("EVPACK_MAX_STACK_FRAMES", 10))
    custom_patterns: List[str] = field(default_factory=lambda: _get_env_list("EVPACK_CUSTOM_PATTERNS"))


# ============================================================================
# PROVIDERS
# ============================================================================

@dataclass
class ProviderConfig:
    """Evidence provider configuration.

    Timeouts are in seconds. The LSP provider runs one definition and one
    reference query per signal concurrently, each under its own timeout capped
    at provider_timeout; the whole provider call is additionally bounded by
    provider_timeout inside the pack builder.

    Environment Variables:
        EVPACK_WORKSPACE_ROOT: Root directory searched by the text search provider
        EVPACK_PROVIDER_TIMEOUT: Whole-provider timeout (default: 5.0)
        EVPACK_LSP_DEFINITION_TIMEOUT: Per definition query (default: 3.0)
        EVPACK_LSP_REFERENCE_TIMEOUT: Per reference query (default: 5.0)
        EVPACK_MAX_RESULTS: Evidence items per provider (default: 50)
        EVPACK_MAX_RESULTS_PER_SIGNAL: Search hits per signal (default: 10)
        EVPACK_CONTEXT_LINES: Lines of context around matches (default: 3)
        EVPACK_INCLUDE_PATTERNS / EVPACK_EXCLUDE_PATTERNS: Comma separated globs
        EVPACK_CIRCUIT_FAILURES: Consecutive failures before skipping a provider (default: 3)
        EVPACK_CIRCUIT_RECOVERY: Seconds before a skipped provider is retried (default: 60)
    """

    workspace_root: str = field(default_factory=lambda: _get_env("EVPACK_WORKSPACE_ROOT", os.getcwd()))
    provider_timeout: float = field(default_factory=lambda: _get_env_float("EVPACK_PROVIDER_TIMEOUT", 5.0))
    definition_timeout: float = field(default_factory=lambda: _get_env_float("EVPACK_LSP_DEFINITION_TIMEOUT", 3.0))
    reference_timeout: float = field(default_factory=lambda: _get_env_float("EVPACK_LSP_REFERENCE_TIMEOUT", 5.0))
    max_results: int = field(default_factory=lambda: _get_env_int("EVPACK_MAX_RESULTS", 50))
    max_results_per_signal: int = field(default_factory=lambda: _get_env_int("EVPACK_MAX_RESULTS_PER_SIGNAL", 10))
    context_lines: int = field(default_factory=lambda: _get_env_int("EVPACK_CONTEXT_LINES", 3))
    include_patterns: List[str] = field(default_factory=lambda: _get_env_list("EVPACK_INCLUDE_PATTERNS"))
    exclude_patterns: List[str] = field(default_factory=lambda: _get_env_list("EVPACK_EXCLUDE_PATTERNS"))
    circuit_failure_threshold: int = field(default_factory=lambda: _get_env_int("EVPACK_CIRCUIT_FAILURES", 3))
    circuit_recovery_timeout: float = field(default_factory=lambda: _get_env_float("EVPACK_CIRCUIT_RECOVERY", 60.0))


# ============================================================================
# CACHE
# ============================================================================

@dataclass
class CacheConfig:
    """Provider response cache configuration.

    Environment Variables:
        EVPACK_CACHE_ENABLED: Enable provider response caching (default: true)
        EVPACK_CACHE_MAX_SIZE: LRU capacity in entries (default: 256)
        EVPACK_CACHE_TTL: Entry lifetime in seconds, 0 disables expiry (default: 300)
    """

    enabled: bool = field(default_factory=lambda: _get_env_bool("EVPACK_CACHE_ENABLED", True))
    max_size: int = field(default_factory=lambda: _get_env_int("EVPACK_CACHE_MAX_SIZE", 256))
    ttl_seconds: float = field(default_factory=lambda: _get_env_float("EVPACK_CACHE_TTL", 300.0))


# ============================================================================
# BUDGET
# ============================================================================

@dataclass
class BudgetConfig:
    """Token budget configuration.

    Environment Variables:
        EVPACK_TOKEN_BUDGET: Default pack budget in tokens (default: 8000)
        EVPACK_CHARS_PER_TOKEN: Characters per estimated token (default: 4)
    """

    token_budget: int = field(default_factory=lambda: _get_env_int("EVPACK_TOKEN_BUDGET", 8000))
    chars_per_token: int = field(default_factory=lambda: _get_env_int("EVPACK_CHARS_PER_TOKEN", 4))


# ============================================================================
# TELEMETRY
# ============================================================================

@dataclass
class TelemetryConfig:
    """Build telemetry configuration.

    Environment Variables:
        EVPACK_TELEMETRY_MAX_RECORDS: Ring buffer capacity (default: 1000)
        EVPACK_TELEMETRY_PATH: JSON mirror path, empty disables persistence
        EVPACK_TELEMETRY_AUTO_PERSIST: Write the mirror after each change (default: true)
    """

    max_records: int = field(default_factory=lambda: _get_env_int("EVPACK_TELEMETRY_MAX_RECORDS", 1000))
    persist_path: str = field(default_factory=lambda: _get_env("EVPACK_TELEMETRY_PATH", ""))
    auto_persist: bool = field(default_factory=lambda: _get_env_bool("EVPACK_TELEMETRY_AUTO_PERSIST", True))


# ============================================================================
# LEARNING
# ============================================================================

@dataclass
class OptimizerConfig:
    """Weight optimizer configuration.

    Environment Variables:
        EVPACK_OPTIMIZER_LEARNING_RATE: Gradient step scale (default: 0.1)
        EVPACK_OPTIMIZER_MAX_DELTA: Largest change per weight per run (default: 20)
        EVPACK_OPTIMIZER_MIN_SAMPLES: Labeled records required (default: 10)
        EVPACK_OPTIMIZER_LATENCY_NORM_MS: Latency mapped to contribution 1.0 (default: 1000)
        EVPACK_OPTIMIZER_CONVERGENCE: Improvement below this is converged (default: 0.01)
        EVPACK_OPTIMIZER_HISTORY: Outcome history capacity (default: 1000)
    """

    learning_rate: float = field(default_factory=lambda: _get_env_float("EVPACK_OPTIMIZER_LEARNING_RATE", 0.1))
    max_delta: float = field(default_factory=lambda: _get_env_float("EVPACK_OPTIMIZER_MAX_DELTA", 20.0))
    min_samples: int = field(default_factory=lambda: _get_env_int("EVPACK_OPTIMIZER_MIN_SAMPLES", 10))
    latency_norm_ms: float = field(default_factory=lambda: _get_env_float("EVPACK_OPTIMIZER_LATENCY_NORM_MS", 1000.0))
    convergence_threshold: float = field(default_factory=lambda: _get_env_float("EVPACK_OPTIMIZER_CONVERGENCE", 0.01))
    history_size: int = field(default_factory=lambda: _get_env_int("EVPACK_OPTIMIZER_HISTORY", 1000))


@dataclass
class AdaptiveConfig:
    """Adaptive loop configuration.

    Environment Variables:
        EVPACK_AUTO_OPTIMIZE_THRESHOLD: Sessions between automatic optimizer runs (default: 50)
        EVPACK_USE_RECOMMENDED_WEIGHTS: Start builds from per-intent learned weights (default: false)
    """

    auto_optimize_threshold: int = field(default_factory=lambda: _get_env_int("EVPACK_AUTO_OPTIMIZE_THRESHOLD", 50))
    use_recommended_weights: bool = field(default_factory=lambda: _get_env_bool("EVPACK_USE_RECOMMENDED_WEIGHTS", False))


@dataclass
class EvidenceConfig:
    """Master evidence-pack configuration."""

    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)


# Global singleton
_config: Optional[EvidenceConfig] = None


def get_config() -> EvidenceConfig:
    """Get the global evidence-pack configuration singleton."""
    global _config
    if _config is None:
        _config = EvidenceConfig()
    return _config


def reset_config() -> None:
    """Reset configuration (for testing)."""
    global _config
    _config = None


# Convenience accessors
def get_extractor_config() -> ExtractorConfig:
    """Get signal extraction configuration."""
    return get_config().extractor


def get_provider_config() -> ProviderConfig:
    """Get evidence provider configuration."""
    return get_config().providers


def get_cache_config() -> CacheConfig:
    """Get provider cache configuration."""
    return get_config().cache


def get_budget_config() -> BudgetConfig:
    """Get token budget configuration."""
    return get_config().budget


def get_telemetry_config() -> TelemetryConfig:
    """Get telemetry configuration."""
    return get_config().telemetry


def get_optimizer_config() -> OptimizerConfig:
    """Get weight optimizer configuration."""
    return get_config().optimizer


def get_adaptive_config() -> AdaptiveConfig:
    """Get adaptive loop configuration."""
    return get_config().adaptive
