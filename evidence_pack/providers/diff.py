"""Git diff evidence provider.

Changed files are usually the most relevant context for a task in progress,
so diff evidence carries the highest default weight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from ..types import Evidence, ProviderType, Signal, SignalType
from .base import (
    EvidenceProvider,
    ProviderQueryOptions,
    apply_token_budget,
    estimate_tokens,
    maybe_await,
    merge_patterns,
    new_evidence_id,
    passes_filters,
    path_matches,
    read_attr,
)

logger = logging.getLogger(__name__)


@dataclass
class GitFileDiff:
    """One changed file as reported by the git service."""

    path: str
    type: str = "modified"  # added | modified | deleted | renamed
    before_content: Optional[str] = None
    after_content: Optional[str] = None
    old_path: Optional[str] = None
    diff: Optional[str] = None

    @classmethod
    def coerce(cls, raw: Any) -> Optional["GitFileDiff"]:
        """Accept a GitFileDiff, a mapping or any object with matching attributes."""
        if isinstance(raw, cls):
            return raw
        path = read_attr(raw, "path")
        if not path:
            return None
        return cls(
            path=str(path),
            type=str(read_attr(raw, "type", default="modified")),
            before_content=read_attr(raw, "before_content", "beforeContent"),
            after_content=read_attr(raw, "after_content", "afterContent"),
            old_path=read_attr(raw, "old_path", "oldPath"),
            diff=read_attr(raw, "diff"),
        )

    @property
    def text(self) -> str:
        return self.diff or self.after_content or self.before_content or ""

    @property
    def line_count(self) -> int:
        return max(1, self.text.count("\n") + 1)


class DiffProvider(EvidenceProvider):
    """Evidence from files changed since a git snapshot.

    The git service is duck-typed: ``patch(snapshot_hash)`` and
    ``diff_full(snapshot_hash)``, either sync or async, raising on failure.
    ``diff_full`` returns GitFileDiff-like records.

    Example:
        >>> provider = DiffProvider(git_service=service, snapshot_hash="abc123")
        >>> evidence = await provider.query(signals, ProviderQueryOptions(max_results=10))
    """

    type = ProviderType.DIFF
    name = "Git Diff"

    def __init__(
        self,
        git_service: Any = None,
        snapshot_hash: Optional[str] = None,
        include_patterns: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
    ) -> None:
        self._git_service = git_service
        self._snapshot_hash = snapshot_hash
        self._include_patterns = list(include_patterns or [])
        self._exclude_patterns = list(exclude_patterns or [])

    def set_git_service(self, git_service: Any, snapshot_hash: Optional[str] = None) -> None:
        self._git_service = git_service
        if snapshot_hash is not None:
            self._snapshot_hash = snapshot_hash

    def set_snapshot_hash(self, snapshot_hash: Optional[str]) -> None:
        self._snapshot_hash = snapshot_hash

    async def is_available(self) -> bool:
        if self._git_service is None or not self._snapshot_hash:
            return False
        try:
            patch = await maybe_await(self._git_service.patch(self._snapshot_hash))
        except Exception as e:
            logger.debug(f"Git patch check failed: {e}")
            return False
        return patch is not None

    async def query(
        self,
        signals: Sequence[Signal],
        options: Optional[ProviderQueryOptions] = None,
    ) -> List[Evidence]:
        """Return evidence for changed files relevant to the signals.

        With no path, symbol or error-token signals every changed file is
        returned. Otherwise a file is kept when a path signal names its path
        (or its pre-rename path) or a symbol/error token occurs in its content.
        """
        if self._git_service is None or not self._snapshot_hash:
            return []

        options = options or ProviderQueryOptions()
        raw_diffs = await maybe_await(self._git_service.diff_full(self._snapshot_hash))
        diffs = [d for d in (GitFileDiff.coerce(raw) for raw in raw_diffs or []) if d]
        if not diffs:
            return []

        include = merge_patterns(self._include_patterns, options.include_patterns)
        exclude = merge_patterns(self._exclude_patterns, options.exclude_patterns)

        path_signals = [s for s in signals if s.type == SignalType.PATH]
        content_signals = [s for s in signals if s.type in (SignalType.SYMBOL, SignalType.ERROR_TOKEN)]
        unfiltered = not path_signals and not content_signals

        evidence: List[Evidence] = []
        for file_diff in diffs:
            if not passes_filters(file_diff.path, include, exclude):
                continue

            if unfiltered:
                matched: List[Signal] = []
            else:
                matched = self._match_signals(file_diff, path_signals, content_signals)
                if not matched:
                    continue

            evidence.append(self._to_evidence(file_diff, matched))

        # Strongest matches first; unfiltered diffs keep git order
        evidence.sort(key=lambda e: e.relevance, reverse=True)

        if options.max_results is not None:
            evidence = evidence[: options.max_results]
        if options.max_tokens is not None:
            evidence = apply_token_budget(evidence, options.max_tokens)

        logger.debug(f"Diff provider matched {len(evidence)} of {len(diffs)} changed files")
        return evidence

    @staticmethod
    def _match_signals(
        file_diff: GitFileDiff,
        path_signals: Sequence[Signal],
        content_signals: Sequence[Signal],
    ) -> List[Signal]:
        matched = []
        for signal in path_signals:
            if path_matches(file_diff.path, signal.value) or (
                file_diff.old_path and path_matches(file_diff.old_path, signal.value)
            ):
                matched.append(signal)

        haystacks = [t for t in (file_diff.diff, file_diff.after_content, file_diff.before_content) if t]
        for signal in content_signals:
            if signal.type == SignalType.ERROR_TOKEN:
                needle = signal.value.lower()
                found = any(needle in text.lower() for text in haystacks)
            else:
                found = any(signal.value in text for text in haystacks)
            if found:
                matched.append(signal)
        return matched

    def _to_evidence(self, file_diff: GitFileDiff, matched: Sequence[Signal]) -> Evidence:
        content = file_diff.text
        metadata = {"change_type": file_diff.type}
        if file_diff.old_path:
            metadata["old_path"] = file_diff.old_path
        return Evidence(
            id=new_evidence_id(),
            provider=ProviderType.DIFF,
            path=file_diff.path,
            range=(1, file_diff.line_count),
            content=content,
            tokens=estimate_tokens(content),
            relevance=max((s.confidence for s in matched), default=1.0),
            matched_signals=tuple(f"{s.type.value}:{s.value}" for s in matched),
            metadata=metadata,
        )
