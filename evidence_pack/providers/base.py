"""Evidence provider interface and shared helpers."""

from __future__ import annotations

import asyncio
import fnmatch
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Iterable, List, Optional, Sequence, TypeVar, Union

from ..types import Evidence, ProviderType, Signal

T = TypeVar("T")

# Conservative estimate used for provider-side token accounting
CHARS_PER_TOKEN = 4


@dataclass
class ProviderQueryOptions:
    """Per-query limits and filters passed to every provider."""

    max_results: Optional[int] = None
    max_tokens: Optional[int] = None
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    context_lines: Optional[int] = None

    def cache_key(self) -> dict:
        return {
            "max_results": self.max_results,
            "max_tokens": self.max_tokens,
            "include": sorted(self.include_patterns),
            "exclude": sorted(self.exclude_patterns),
            "context_lines": self.context_lines,
        }


class EvidenceProvider(ABC):
    """One evidence source.

    Providers turn signals into evidence. They may do I/O and may fail; the
    pack builder catches failures per provider so one broken source never
    aborts a build.
    """

    type: ProviderType
    name: str

    @abstractmethod
    async def query(
        self,
        signals: Sequence[Signal],
        options: Optional[ProviderQueryOptions] = None,
    ) -> List[Evidence]:
        """Return evidence for the given signals."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the provider can currently answer queries."""


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    """Resolve a collaborator result that may be sync or async."""
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        return await value
    return value


def new_evidence_id() -> str:
    return uuid.uuid4().hex[:12]


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Estimate token count as ceil(chars / chars_per_token)."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def matches_patterns(path: str, patterns: Iterable[str]) -> bool:
    """Check a path against glob patterns.

    A pattern with wildcards is matched with fnmatch against the full path
    and the basename. A plain pattern matches as a substring.
    """
    normalized = normalize_path(path).lower()
    basename = normalized.rsplit("/", 1)[-1]
    for pattern in patterns:
        pat = normalize_path(pattern).lower()
        if not pat:
            continue
        if any(ch in pat for ch in "*?["):
            if fnmatch.fnmatchcase(normalized, pat) or fnmatch.fnmatchcase(basename, pat):
                return True
            # "dir/**" should also match "dir" nested anywhere
            if pat.endswith("/**") and f"/{pat[:-3]}/" in f"/{normalized}":
                return True
        elif pat in normalized:
            return True
    return False


def passes_filters(path: str, include: Sequence[str], exclude: Sequence[str]) -> bool:
    if include and not matches_patterns(path, include):
        return False
    if exclude and matches_patterns(path, exclude):
        return False
    return True


def path_matches(candidate: str, signal_value: str) -> bool:
    """Whether a path signal refers to a candidate path.

    Matches on equality or when one path ends with the other on a segment
    boundary, so "index.ts" matches "src/index.ts".
    """
    a = normalize_path(candidate).lstrip("./")
    b = normalize_path(signal_value).lstrip("./")
    if not a or not b:
        return False
    if a == b:
        return True
    return a.endswith("/" + b) or b.endswith("/" + a)


def apply_token_budget(
    evidence: Sequence[Evidence],
    max_tokens: int,
    keep_first: bool = False,
) -> List[Evidence]:
    """Keep evidence in order until the token budget is reached.

    Args:
        evidence: Ordered evidence
        max_tokens: Budget in tokens
        keep_first: Always return at least one item, even if over budget
    """
    result: List[Evidence] = []
    total = 0
    for item in evidence:
        if total + item.tokens <= max_tokens:
            result.append(item)
            total += item.tokens
        elif keep_first and not result:
            result.append(item)
            break
    return result


def dedupe_by_location(evidence: Iterable[Evidence]) -> List[Evidence]:
    """Drop evidence whose path and range were already seen, keeping the first."""
    seen = set()
    result = []
    for item in evidence:
        if item.location_key not in seen:
            seen.add(item.location_key)
            result.append(item)
    return result


def merge_patterns(base: Sequence[str], override: Optional[Sequence[str]]) -> List[str]:
    if not override:
        return list(base)
    return list(dict.fromkeys([*base, *override]))


def resolve_path(path: str, workspace_root: Optional[str]) -> Path:
    candidate = Path(path)
    if candidate.is_absolute() or not workspace_root:
        return candidate
    return Path(workspace_root) / candidate


def relative_to_root(path: str, workspace_root: Optional[str]) -> str:
    """Express a path relative to the workspace root when it lies inside it."""
    if not workspace_root or not Path(path).is_absolute():
        return normalize_path(path)
    try:
        return Path(path).resolve().relative_to(Path(workspace_root).resolve()).as_posix()
    except (ValueError, OSError):
        return normalize_path(path)


def read_lines(path: Path, start: int, end: int) -> Optional[str]:
    """Read 1-based inclusive lines from a text file, or None if unreadable."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            lines = f.read().splitlines()
    except OSError:
        return None
    if start > len(lines):
        return None
    return "\n".join(lines[max(0, start - 1):end])


def read_attr(obj: Any, *names: str, default: Any = None) -> Any:
    """Read the first present key or attribute among names."""
    for name in names:
        if isinstance(obj, dict):
            if name in obj and obj[name] is not None:
                return obj[name]
        else:
            value = getattr(obj, name, None)
            if value is not None:
                return value
    return default
