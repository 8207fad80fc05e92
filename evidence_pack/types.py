"""Core data types for evidence pack assembly.

Signals flow from the extractor into providers, providers return Evidence,
the reranker scores it and the budget allocator trims it into an EvidencePack.
Weights are frozen so a build can hold a consistent snapshot while the
optimizer or a manual update replaces the live instance.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class SignalType(str, Enum):
    """Kinds of retrieval hints extracted from raw input."""

    SYMBOL = "symbol"
    PATH = "path"
    ERROR_TOKEN = "error_token"
    STACK_FRAME = "stack_frame"


class SignalSource(str, Enum):
    """Where a signal was found."""

    USER_MESSAGE = "user_message"
    ERROR_OUTPUT = "error_output"
    WORKING_SET = "working_set"
    GIT_DIFF = "git_diff"


class ProviderType(str, Enum):
    """Evidence sources."""

    DIFF = "diff"
    SEARCH = "search"
    LSP = "lsp"


class Outcome(str, Enum):
    """Task outcome attached to a telemetry record."""

    SUCCESS = "success"
    FAILURE = "failure"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Signal:
    """A typed, confidence-scored retrieval hint."""

    type: SignalType
    value: str
    source: SignalSource
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> Tuple[str, str]:
        """Deduplication key."""
        return (self.type.value, self.value)


@dataclass(frozen=True)
class Evidence:
    """One retrieved context item.

    ``range`` is a 1-based inclusive line span. ``relevance`` is the
    provider's intrinsic relevance signal; ``score`` stays 0 until the
    reranker returns a scored copy.
    """

    id: str
    provider: ProviderType
    path: str
    range: Tuple[int, int]
    content: str
    tokens: int
    relevance: float = 1.0
    matched_signals: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    score: float = 0.0

    @property
    def location_key(self) -> str:
        return f"{self.path}:{self.range[0]}-{self.range[1]}"

    @property
    def stack_depth(self) -> Optional[int]:
        depth = self.metadata.get("stack_depth")
        return int(depth) if depth is not None else None

    def with_score(self, score: float) -> "Evidence":
        return replace(self, score=score)


# Weight keys adjusted by the reranker, strategy and optimizer.
WEIGHT_KEYS: Tuple[str, ...] = (
    "diff",
    "definition",
    "reference",
    "keyword",
    "stack_frame",
    "working_set",
)

MIN_WEIGHT = 1.0
MAX_WEIGHT = 200.0


def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return low
    return max(low, min(high, value))


@dataclass(frozen=True)
class RerankerWeights:
    """Per-category reranker weights plus stack depth decay.

    Provider weights live in [1, 200], ``stack_depth_decay`` in [0, 1].
    Instances are immutable; every change produces a new, clamped instance.
    """

    diff: float = 100.0
    definition: float = 60.0
    reference: float = 30.0
    keyword: float = 10.0
    stack_frame: float = 80.0
    working_set: float = 50.0
    stack_depth_decay: float = 0.9

    def clamped(self) -> "RerankerWeights":
        """Return a copy with every field forced into its bounds."""
        values = {key: _clamp(float(getattr(self, key)), MIN_WEIGHT, MAX_WEIGHT) for key in WEIGHT_KEYS}
        values["stack_depth_decay"] = _clamp(float(self.stack_depth_decay), 0.0, 1.0)
        return RerankerWeights(**values)

    def with_updates(self, **changes: float) -> "RerankerWeights":
        """Return a clamped copy with the given fields replaced.

        Raises:
            ValueError: If a field name is unknown
        """
        unknown = set(changes) - set(WEIGHT_KEYS) - {"stack_depth_decay"}
        if unknown:
            raise ValueError(f"Unknown weight keys: {sorted(unknown)}")
        return replace(self, **changes).clamped()

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RerankerWeights":
        """Build weights from a mapping, ignoring unknown keys."""
        fields = set(WEIGHT_KEYS) | {"stack_depth_decay"}
        known = {key: float(value) for key, value in data.items() if key in fields}
        return cls(**known).clamped()


@dataclass(frozen=True)
class BudgetRatios:
    """Per-provider minimum and maximum shares of a token budget.

    Shares are fractions of the budget. Minimums are reserved first so a
    provider cannot be starved; maximums cap how much one provider may take.
    """

    minimums: Dict[ProviderType, float] = field(default_factory=dict)
    maximums: Dict[ProviderType, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name, shares in (("minimum", self.minimums), ("maximum", self.maximums)):
            for provider, share in shares.items():
                if not 0.0 <= share <= 1.0:
                    raise ValueError(f"{name} share for {provider} must be in [0, 1], got {share}")
        if sum(self.minimums.values()) > 1.0 + 1e-9:
            raise ValueError("Sum of minimum shares must not exceed 1.0")
        for provider, low in self.minimums.items():
            high = self.maximums.get(provider)
            if high is not None and low > high:
                raise ValueError(f"Minimum share for {provider} exceeds its maximum")

    def minimum_for(self, provider: ProviderType) -> float:
        return self.minimums.get(provider, 0.0)

    def maximum_for(self, provider: ProviderType) -> float:
        return self.maximums.get(provider, 1.0)


# ============================================================================
# INPUT
# ============================================================================

def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _list_field(data: Mapping[str, Any], camel: str, snake: Optional[str] = None) -> List[Any]:
    value = data.get(camel, data.get(snake)) if snake else data.get(camel)
    return value if isinstance(value, list) else []


@dataclass
class ErrorInfo:
    message: str
    stack: Optional[str] = None
    code: Optional[str] = None


@dataclass
class DiffFile:
    path: str
    type: str = "modified"


@dataclass
class GitDiffInfo:
    files: List[DiffFile] = field(default_factory=list)


@dataclass
class ContextInput:
    """Raw input from the calling session layer."""

    user_message: Optional[str] = None
    errors: List[ErrorInfo] = field(default_factory=list)
    working_set: List[str] = field(default_factory=list)
    git_diff: Optional[GitDiffInfo] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContextInput":
        """Build input from the camelCase shape used by the session layer.

        Snake_case keys are accepted too. Malformed entries and fields of the
        wrong type are skipped.
        """
        errors = []
        for raw in _list_field(data, "errors"):
            if isinstance(raw, Mapping) and isinstance(raw.get("message"), str):
                code = raw.get("code")
                errors.append(ErrorInfo(
                    message=raw["message"],
                    stack=_str_or_none(raw.get("stack")),
                    code=str(code) if isinstance(code, (str, int)) and not isinstance(code, bool) else None,
                ))
            elif isinstance(raw, str):
                errors.append(ErrorInfo(message=raw))

        git_diff = None
        raw_diff = data.get("gitDiff", data.get("git_diff"))
        if isinstance(raw_diff, Mapping):
            raw_files = raw_diff.get("files")
            files = [
                DiffFile(path=f["path"], type=_str_or_none(f.get("type")) or "modified")
                for f in (raw_files if isinstance(raw_files, list) else [])
                if isinstance(f, Mapping) and isinstance(f.get("path"), str) and f["path"]
            ]
            git_diff = GitDiffInfo(files=files)

        working_set = _list_field(data, "workingSet", "working_set")
        return cls(
            user_message=_str_or_none(data.get("userMessage", data.get("user_message"))),
            errors=errors,
            working_set=[p for p in working_set if isinstance(p, str) and p],
            git_diff=git_diff,
        )


# ============================================================================
# OUTPUT
# ============================================================================

@dataclass
class EvidenceTelemetry:
    """Timing and count data for one build."""

    provider_timings: Dict[str, float] = field(default_factory=dict)
    provider_counts: Dict[str, int] = field(default_factory=dict)
    provider_errors: Dict[str, str] = field(default_factory=dict)
    cache_hits: List[str] = field(default_factory=list)
    signal_count: int = 0
    evidence_before_budget: int = 0
    evidence_after_budget: int = 0
    tokens_used: int = 0
    tokens_saved: int = 0
    token_budget: int = 0
    build_time_ms: float = 0.0
    intent: Optional[str] = None
    weights: Dict[str, float] = field(default_factory=dict)
    # Live weights the build started from, before any intent strategy
    base_weights: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EvidenceTelemetry":
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        return cls(**known)


@dataclass(frozen=True)
class EvidencePack:
    """Ranked, budget-trimmed evidence handed to prompt assembly."""

    evidence: Tuple[Evidence, ...]
    summary: str
    telemetry: EvidenceTelemetry

    @property
    def total_tokens(self) -> int:
        return sum(item.tokens for item in self.evidence)

    @property
    def files(self) -> List[str]:
        """Distinct paths in rank order."""
        seen: Dict[str, None] = {}
        for item in self.evidence:
            seen.setdefault(item.path, None)
        return list(seen)


@dataclass
class TelemetryRecord:
    """One build's telemetry. ``outcome`` is set later via mark_outcome."""

    session_id: str
    timestamp: float
    data: EvidenceTelemetry
    outcome: Optional[Outcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "data": self.data.to_dict(),
            "outcome": self.outcome.value if self.outcome else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TelemetryRecord":
        outcome = data.get("outcome")
        return cls(
            session_id=str(data["session_id"]),
            timestamp=float(data["timestamp"]),
            data=EvidenceTelemetry.from_dict(data.get("data") or {}),
            outcome=Outcome(outcome) if outcome else None,
        )


@dataclass(frozen=True)
class ClassificationResult:
    intent: str
    confidence: float
    scores: Dict[str, float] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class IntentStrategy:
    """A priori weight and budget adjustments for one task intent."""

    intent: str
    weight_multipliers: Dict[str, float] = field(default_factory=dict)
    decay_multiplier: float = 1.0
    budget_ratios: Optional[BudgetRatios] = None
    description: str = ""


@dataclass(frozen=True)
class OptimizationResult:
    """Outcome of one optimizer run. Not stored."""

    weights: RerankerWeights
    improvement: float
    sample_count: int
    converged: bool
    gradients: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class PersistResult:
    """Result of a telemetry save/load. Callers log and discard failures."""

    ok: bool
    path: Optional[str] = None
    record_count: int = 0
    error: Optional[str] = None
