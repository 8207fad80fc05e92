"""Evidence providers: git diff, LSP and text search."""

from .base import EvidenceProvider, ProviderQueryOptions, estimate_tokens
from .diff import DiffProvider, GitFileDiff
from .lsp import LspProvider
from .search import FileSystemSearchBackend, SearchMatch, SearchProvider, SearchRequest

__all__ = [
    "EvidenceProvider",
    "ProviderQueryOptions",
    "estimate_tokens",
    "DiffProvider",
    "GitFileDiff",
    "LspProvider",
    "FileSystemSearchBackend",
    "SearchMatch",
    "SearchProvider",
    "SearchRequest",
]
