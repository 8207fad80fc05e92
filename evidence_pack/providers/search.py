"""Text search evidence provider.

Searches the workspace for symbol and error-token signals and resolves
working-set files and stack frame locations into excerpts. The search
itself goes through a ``SearchBackend`` so tests and hosts can swap in
their own (ripgrep wrapper, editor index, ...).
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import ProviderConfig, get_provider_config
from ..types import Evidence, ProviderType, Signal, SignalSource, SignalType
from .base import (
    EvidenceProvider,
    ProviderQueryOptions,
    apply_token_budget,
    estimate_tokens,
    maybe_await,
    merge_patterns,
    new_evidence_id,
    passes_filters,
    read_lines,
    resolve_path,
)

logger = logging.getLogger(__name__)

MIN_SYMBOL_LENGTH = 2
MIN_TOKEN_LENGTH = 3
WORKING_SET_HEAD_LINES = 40

SKIP_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    ".tox", ".mypy_cache", ".pytest_cache", "dist", "build", ".next",
    "target", ".idea", ".vscode",
})
MAX_FILE_BYTES = 1_000_000


@dataclass
class SearchRequest:
    pattern: str
    case_sensitive: bool = True
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    context_lines: int = 3
    max_results: int = 10


@dataclass
class SearchMatch:
    """One matching line. ``line`` is 1-based."""

    file: str
    line: int
    content: str
    before: List[str] = field(default_factory=list)
    after: List[str] = field(default_factory=list)


class FileSystemSearchBackend:
    """Regex search over the files under a workspace root.

    Skips VCS, vendor and build directories, binary files and files larger
    than MAX_FILE_BYTES. Runs in a worker thread so it never blocks the
    event loop.
    """

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    async def is_available(self) -> bool:
        return self.root.is_dir()

    async def search(self, request: SearchRequest) -> List[SearchMatch]:
        return await asyncio.to_thread(self._search, request)

    async def read(self, path: str, start: int, end: int) -> Optional[str]:
        return await asyncio.to_thread(read_lines, resolve_path(path, str(self.root)), start, end)

    def _search(self, request: SearchRequest) -> List[SearchMatch]:
        flags = 0 if request.case_sensitive else re.IGNORECASE
        regex = re.compile(request.pattern, flags)
        matches: List[SearchMatch] = []

        for rel_path in self._iter_files(request.include_patterns, request.exclude_patterns):
            try:
                with open(self.root / rel_path, "r", encoding="utf-8") as f:
                    lines = f.read().splitlines()
            except (OSError, UnicodeDecodeError):
                continue

            for index, text in enumerate(lines):
                if not regex.search(text):
                    continue
                lo = max(0, index - request.context_lines)
                hi = index + 1 + request.context_lines
                matches.append(SearchMatch(
                    file=rel_path,
                    line=index + 1,
                    content=text,
                    before=lines[lo:index],
                    after=lines[index + 1:hi],
                ))
                if len(matches) >= request.max_results:
                    return matches
        return matches

    def _iter_files(self, include: Sequence[str], exclude: Sequence[str]):
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for filename in sorted(filenames):
                full = Path(dirpath) / filename
                try:
                    if full.stat().st_size > MAX_FILE_BYTES:
                        continue
                except OSError:
                    continue
                rel_path = full.relative_to(self.root).as_posix()
                if passes_filters(rel_path, include, exclude):
                    yield rel_path


@dataclass
class _MatchRange:
    start_line: int
    end_line: int
    matches: List[SearchMatch]


def merge_match_ranges(matches: Sequence[SearchMatch], context_lines: int) -> List[_MatchRange]:
    """Merge matches whose context windows overlap or touch into line ranges."""
    ranges: List[_MatchRange] = []
    for match in sorted(matches, key=lambda m: m.line):
        start = max(1, match.line - context_lines)
        end = match.line + context_lines
        if ranges and start <= ranges[-1].end_line + 1:
            ranges[-1].end_line = max(ranges[-1].end_line, end)
            ranges[-1].matches.append(match)
        else:
            ranges.append(_MatchRange(start, end, [match]))
    return ranges


def range_content(match_range: _MatchRange) -> str:
    """Rebuild the text of a merged range from the match contexts."""
    by_line: Dict[int, str] = {}
    for match in match_range.matches:
        for offset, text in enumerate(match.before):
            by_line.setdefault(match.line - len(match.before) + offset, text)
        by_line[match.line] = match.content
        for offset, text in enumerate(match.after):
            by_line.setdefault(match.line + 1 + offset, text)
    return "\n".join(by_line[n] for n in sorted(by_line))


class SearchProvider(EvidenceProvider):
    """Evidence from workspace text search.

    Symbols are searched word-bounded and case-sensitive, error tokens
    case-insensitive. Working-set files and stack frame locations are
    resolved to excerpts directly.
    """

    type = ProviderType.SEARCH
    name = "Code Search"

    def __init__(
        self,
        backend: Any = None,
        workspace_root: Optional[str] = None,
        include_patterns: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
        max_results_per_signal: Optional[int] = None,
        context_lines: Optional[int] = None,
        config: Optional[ProviderConfig] = None,
    ) -> None:
        config = config or get_provider_config()
        root = workspace_root if workspace_root is not None else config.workspace_root
        self.backend = backend if backend is not None else FileSystemSearchBackend(root)
        self.include_patterns = list(include_patterns if include_patterns is not None else config.include_patterns)
        self.exclude_patterns = list(exclude_patterns if exclude_patterns is not None else config.exclude_patterns)
        self.max_results_per_signal = (
            max_results_per_signal if max_results_per_signal is not None else config.max_results_per_signal
        )
        self.context_lines = context_lines if context_lines is not None else config.context_lines

    async def is_available(self) -> bool:
        check = getattr(self.backend, "is_available", None)
        if not callable(check):
            return True
        try:
            return bool(await maybe_await(check()))
        except Exception as e:
            logger.debug(f"Search backend availability check failed: {e}")
            return False

    async def query(
        self,
        signals: Sequence[Signal],
        options: Optional[ProviderQueryOptions] = None,
    ) -> List[Evidence]:
        options = options or ProviderQueryOptions()
        include = merge_patterns(self.include_patterns, options.include_patterns)
        exclude = merge_patterns(self.exclude_patterns, options.exclude_patterns)
        context_lines = options.context_lines if options.context_lines is not None else self.context_lines

        by_location: Dict[Tuple[str, int, int], Evidence] = {}
        for signal in self._searchable(signals):
            request = SearchRequest(
                pattern=self._pattern_for(signal),
                case_sensitive=signal.type == SignalType.SYMBOL,
                include_patterns=include,
                exclude_patterns=exclude,
                context_lines=context_lines,
                max_results=self.max_results_per_signal,
            )
            matches = await maybe_await(self.backend.search(request))
            for item in self._to_evidence(matches or [], signal, context_lines):
                key = (item.path, item.range[0], item.range[1])
                existing = by_location.get(key)
                by_location[key] = item if existing is None else self._merge(existing, item)

        evidence = list(by_location.values())
        evidence.extend(await self._location_evidence(signals, include, exclude, context_lines))
        evidence.sort(key=lambda e: e.relevance, reverse=True)

        if options.max_results is not None:
            evidence = evidence[: options.max_results]
        if options.max_tokens is not None:
            evidence = apply_token_budget(evidence, options.max_tokens, keep_first=True)

        logger.debug(f"Search provider produced {len(evidence)} evidence items")
        return evidence

    @staticmethod
    def _searchable(signals: Sequence[Signal]) -> List[Signal]:
        result = []
        for signal in signals:
            if signal.type == SignalType.SYMBOL and len(signal.value) >= MIN_SYMBOL_LENGTH:
                result.append(signal)
            elif signal.type == SignalType.ERROR_TOKEN and len(signal.value) >= MIN_TOKEN_LENGTH:
                result.append(signal)
        return result

    @staticmethod
    def _pattern_for(signal: Signal) -> str:
        escaped = re.escape(signal.value)
        if signal.type == SignalType.SYMBOL:
            return rf"\b{escaped}\b"
        return escaped

    @staticmethod
    def _relevance(match_count: int, confidence: float) -> float:
        return math.log2(match_count + 1) * confidence

    def _to_evidence(self, matches: Sequence[SearchMatch], signal: Signal, context_lines: int) -> List[Evidence]:
        by_file: Dict[str, List[SearchMatch]] = {}
        for match in matches:
            by_file.setdefault(match.file, []).append(match)

        evidence = []
        for path, file_matches in by_file.items():
            for match_range in merge_match_ranges(file_matches, context_lines):
                content = range_content(match_range)
                match_count = len(match_range.matches)
                evidence.append(Evidence(
                    id=new_evidence_id(),
                    provider=ProviderType.SEARCH,
                    path=path,
                    range=(match_range.start_line, match_range.end_line),
                    content=content,
                    tokens=estimate_tokens(content),
                    relevance=self._relevance(match_count, signal.confidence),
                    matched_signals=(f"{signal.type.value}:{signal.value}",),
                    metadata={"match_count": match_count, "confidence": signal.confidence},
                ))
        return evidence

    def _merge(self, existing: Evidence, item: Evidence) -> Evidence:
        """Combine two hits on the same range: union of signals, summed match counts."""
        signals = tuple(dict.fromkeys(existing.matched_signals + item.matched_signals))
        match_count = existing.metadata.get("match_count", 1) + item.metadata.get("match_count", 1)
        confidence = max(existing.metadata.get("confidence", 0.0), item.metadata.get("confidence", 0.0))
        relevance = max(existing.relevance, item.relevance, self._relevance(match_count, confidence))
        return Evidence(
            id=existing.id,
            provider=existing.provider,
            path=existing.path,
            range=existing.range,
            content=existing.content,
            tokens=existing.tokens,
            relevance=relevance,
            matched_signals=signals,
            metadata={**existing.metadata, "match_count": match_count, "confidence": confidence},
        )

    async def _location_evidence(
        self,
        signals: Sequence[Signal],
        include: Sequence[str],
        exclude: Sequence[str],
        context_lines: int,
    ) -> List[Evidence]:
        """Excerpts for working-set files (file head) and stack frames (window around the line)."""
        read = getattr(self.backend, "read", None)
        if not callable(read):
            return []

        evidence = []
        for signal in signals:
            if signal.type == SignalType.PATH and signal.source == SignalSource.WORKING_SET:
                path = signal.value
                start, end = 1, WORKING_SET_HEAD_LINES
                metadata: Dict[str, Any] = {"working_set": True}
            elif signal.type == SignalType.STACK_FRAME and signal.metadata.get("path"):
                path = signal.metadata["path"]
                line = int(signal.metadata.get("line") or 1)
                start, end = max(1, line - context_lines), line + context_lines
                metadata = {"stack_depth": int(signal.metadata.get("depth") or 0), "line": line}
            else:
                continue

            if not passes_filters(path, include, exclude):
                continue
            content = await maybe_await(read(path, start, end))
            if not content:
                continue

            line_count = content.count("\n") + 1
            evidence.append(Evidence(
                id=new_evidence_id(),
                provider=ProviderType.SEARCH,
                path=path,
                range=(start, start + line_count - 1),
                content=content,
                tokens=estimate_tokens(content),
                relevance=signal.confidence,
                matched_signals=(f"{signal.type.value}:{signal.value}",),
                metadata=metadata,
            ))
        return evidence
