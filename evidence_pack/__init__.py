"""Evidence pack assembly for coding-assistant prompts.

Turns a user message, recent errors, the working set and the git diff into a
token-bounded, ranked bundle of code context, and learns its ranking weights
from task outcomes.

Components:
- signals.py: heuristic signal extraction (symbols, paths, stack frames)
- providers/: diff, LSP and text search evidence sources
- caching.py: LRU + TTL provider response cache
- reranker.py / budget.py: weighted ranking and token budget allocation
- builder.py / system.py: the pipeline and its weights-owning façade
- telemetry.py / optimizer.py: build telemetry and the weight optimizer
- intent.py / strategy.py: task intent classification and per-intent biases
- adaptive.py: the top-level façade with feedback and optimize

Quick Start:
    >>> from evidence_pack import AdaptiveEvidenceSystem
    >>> adaptive = AdaptiveEvidenceSystem()
    >>> result = await adaptive.build({
    ...     "userMessage": "Fix handleClick in Button.tsx",
    ...     "errors": [{"message": "TypeError: x is not a function",
    ...                 "stack": "at foo (src/a.ts:10:3)"}],
    ... })
    >>> result.pack.summary
    >>> adaptive.feedback(result.session_id, success=True)
"""

from .adaptive import AdaptiveBuildResult, AdaptiveEvidenceSystem
from .budget import AllocationResult, BudgetAllocator
from .builder import PackBuilder
from .caching import EvidenceCache, fingerprint
from .intent import ClassificationContext, TaskIntent, TaskIntentClassifier
from .optimizer import WeightOptimizer
from .reranker import Reranker
from .signals import SignalExtractor
from .strategy import IntentAwareProviderStrategy
from .system import EvidencePackSystem
from .telemetry import EvidenceTelemetryService
from .types import (
    BudgetRatios,
    ClassificationResult,
    ContextInput,
    DiffFile,
    ErrorInfo,
    Evidence,
    EvidencePack,
    EvidenceTelemetry,
    GitDiffInfo,
    IntentStrategy,
    OptimizationResult,
    Outcome,
    PersistResult,
    ProviderType,
    RerankerWeights,
    Signal,
    SignalSource,
    SignalType,
    TelemetryRecord,
)

__version__ = "0.1.0"

__all__ = [
    "AdaptiveBuildResult",
    "AdaptiveEvidenceSystem",
    "AllocationResult",
    "BudgetAllocator",
    "BudgetRatios",
    "ClassificationContext",
    "ClassificationResult",
    "ContextInput",
    "DiffFile",
    "ErrorInfo",
    "Evidence",
    "EvidenceCache",
    "EvidencePack",
    "EvidencePackSystem",
    "EvidenceTelemetry",
    "EvidenceTelemetryService",
    "GitDiffInfo",
    "IntentAwareProviderStrategy",
    "IntentStrategy",
    "OptimizationResult",
    "Outcome",
    "PackBuilder",
    "PersistResult",
    "ProviderType",
    "Reranker",
    "RerankerWeights",
    "Signal",
    "SignalExtractor",
    "SignalSource",
    "SignalType",
    "TaskIntent",
    "TaskIntentClassifier",
    "TelemetryRecord",
    "WeightOptimizer",
    "fingerprint",
]
