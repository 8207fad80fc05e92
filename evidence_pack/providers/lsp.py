"""LSP evidence provider.

Wraps an injected LSP hub and turns definition and reference locations for
positioned signals (stack frames, symbols with a known location) into
evidence. Degrades to no evidence when no hub is bound.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence
from urllib.parse import unquote, urlparse

from ..config import ProviderConfig, get_provider_config
from ..types import Evidence, ProviderType, Signal, SignalType
from .base import (
    EvidenceProvider,
    ProviderQueryOptions,
    apply_token_budget,
    dedupe_by_location,
    estimate_tokens,
    maybe_await,
    merge_patterns,
    new_evidence_id,
    passes_filters,
    read_attr,
    read_lines,
    relative_to_root,
    resolve_path,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LINES = 5


def uri_to_path(uri: str) -> Optional[str]:
    """Convert a file:// URI or plain path to a filesystem path."""
    if not uri:
        return None
    if uri.startswith("file://"):
        return unquote(urlparse(uri).path) or None
    return uri


class LspProvider(EvidenceProvider):
    """Evidence from LSP definitions and references.

    The hub is duck-typed and may be sync or async:
    ``definition(path, line, character)``,
    ``references(path, line, character, include_declaration)`` and optionally
    ``is_initialized()``. Positions are 0-based as in the LSP protocol.
    """

    type = ProviderType.LSP
    name = "LSP Analysis"

    def __init__(
        self,
        lsp_hub: Any = None,
        workspace_root: Optional[str] = None,
        definition_timeout: Optional[float] = None,
        reference_timeout: Optional[float] = None,
        config: Optional[ProviderConfig] = None,
    ) -> None:
        config = config or get_provider_config()
        self._lsp_hub = lsp_hub
        self.workspace_root = workspace_root if workspace_root is not None else config.workspace_root
        # A query may never outlive the whole provider call
        self.definition_timeout = min(
            definition_timeout if definition_timeout is not None else config.definition_timeout,
            config.provider_timeout,
        )
        self.reference_timeout = min(
            reference_timeout if reference_timeout is not None else config.reference_timeout,
            config.provider_timeout,
        )
        self._include_patterns = list(config.include_patterns)
        self._exclude_patterns = list(config.exclude_patterns)

    def set_lsp_hub(self, hub: Any) -> None:
        """Bind (or unbind with None) the LSP hub at runtime."""
        self._lsp_hub = hub

    async def is_available(self) -> bool:
        if self._lsp_hub is None:
            return False
        is_initialized = getattr(self._lsp_hub, "is_initialized", None)
        if callable(is_initialized):
            return bool(await maybe_await(is_initialized()))
        return True

    async def query(
        self,
        signals: Sequence[Signal],
        options: Optional[ProviderQueryOptions] = None,
    ) -> List[Evidence]:
        """Query definitions and references for every positioned signal.

        All queries run concurrently, each under its own timeout, so the
        provider call takes as long as its slowest query rather than their
        sum. A single failing or timed out query is skipped. If every query
        fails the last error is raised so the caller can count the failure.
        """
        if self._lsp_hub is None:
            return []

        options = options or ProviderQueryOptions()
        max_results = options.max_results if options.max_results is not None else 50
        relevant = [
            s for s in signals
            if s.type in (SignalType.SYMBOL, SignalType.STACK_FRAME) and self._position(s) is not None
        ][:max_results]
        if not relevant:
            return []

        jobs = [
            (signal, kind, timeout)
            for signal in relevant
            for kind, timeout in (("definition", self.definition_timeout), ("reference", self.reference_timeout))
        ]
        results = await asyncio.gather(
            *(self._timed_call(kind, self._position(signal), timeout) for signal, kind, timeout in jobs),
            return_exceptions=True,
        )

        evidence: List[Evidence] = []
        successes = 0
        last_error: Optional[BaseException] = None
        for (signal, kind, timeout), result in zip(jobs, results):
            if isinstance(result, asyncio.TimeoutError):
                logger.debug(f"LSP {kind} query for {signal.value} timed out after {timeout}s")
                last_error = result
                continue
            if isinstance(result, Exception):
                logger.debug(f"LSP {kind} query for {signal.value} failed: {result}")
                last_error = result
                continue
            if isinstance(result, BaseException):
                raise result
            successes += 1
            evidence.extend(await self._locations_to_evidence(result or [], signal, kind, options))

        if successes == 0 and last_error is not None:
            raise last_error

        evidence = dedupe_by_location(evidence)[:max_results]
        if options.max_tokens is not None:
            evidence = apply_token_budget(evidence, options.max_tokens)
        return evidence

    async def _timed_call(self, kind: str, position: tuple, timeout: float) -> Any:
        path, line, character = position
        return await asyncio.wait_for(self._call(kind, path, line, character), timeout)

    async def _call(self, kind: str, path: str, line: int, character: int) -> Any:
        if kind == "definition":
            return await maybe_await(self._lsp_hub.definition(path, line, character))
        return await maybe_await(self._lsp_hub.references(path, line, character, False))

    def _position(self, signal: Signal) -> Optional[tuple]:
        """Resolve a signal to (path, 0-based line, 0-based character)."""
        path = signal.metadata.get("path")
        line = signal.metadata.get("line")
        if not path or not isinstance(line, int):
            return None
        column = signal.metadata.get("column") or signal.metadata.get("character")
        character = max(0, int(column) - 1) if column else 0
        return str(resolve_path(path, self.workspace_root)), max(0, line - 1), character

    async def _locations_to_evidence(
        self,
        locations: Sequence[Any],
        signal: Signal,
        kind: str,
        options: ProviderQueryOptions,
    ) -> List[Evidence]:
        include = merge_patterns(self._include_patterns, options.include_patterns)
        exclude = merge_patterns(self._exclude_patterns, options.exclude_patterns)
        context_lines = options.context_lines if options.context_lines is not None else DEFAULT_CONTEXT_LINES

        evidence = []
        for location in locations:
            raw_path = uri_to_path(read_attr(location, "uri", "path", default=""))
            if not raw_path:
                continue
            path = relative_to_root(raw_path, self.workspace_root)
            if not passes_filters(path, include, exclude):
                continue

            loc_range = read_attr(location, "range", default={})
            start = read_attr(read_attr(loc_range, "start", default={}), "line", default=0)
            end = read_attr(read_attr(loc_range, "end", default={}), "line", default=start)
            start_line = max(1, int(start) + 1 - context_lines)
            end_line = int(end) + 1 + context_lines

            content = await asyncio.to_thread(
                read_lines, resolve_path(raw_path, self.workspace_root), start_line, end_line
            )
            if content is None:
                content = f"[LSP {kind}: {signal.value}]"

            metadata = {"symbol_kind": kind}
            depth = signal.metadata.get("depth")
            if depth is not None:
                metadata["stack_depth"] = depth

            evidence.append(Evidence(
                id=new_evidence_id(),
                provider=ProviderType.LSP,
                path=path,
                range=(start_line, end_line),
                content=content,
                tokens=estimate_tokens(content),
                relevance=signal.confidence,
                matched_signals=(f"{signal.type.value}:{signal.value}",),
                metadata=metadata,
            ))
        return evidence
