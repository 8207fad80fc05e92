"""Heuristic signal extraction from user text, errors, working set and diff.

The extractor is a pure function of its input. Malformed input simply yields
fewer signals; nothing here raises once the extractor is constructed.

Stack trace dialects and identifier shapes are kept in ordered tables so new
dialects can be added without touching the extraction algorithm.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from .config import ExtractorConfig, get_extractor_config
from .types import ContextInput, ErrorInfo, Signal, SignalSource, SignalType

logger = logging.getLogger(__name__)


# Confidence levels by origin
SYMBOL_CONFIDENCE = 0.6
MESSAGE_PATH_CONFIDENCE = 0.8
CUSTOM_PATTERN_CONFIDENCE = 0.5
ERROR_TOKEN_CONFIDENCE = 0.7
ERROR_MESSAGE_PATH_CONFIDENCE = 0.9
STACK_PATH_CONFIDENCE = 0.85
EXPLICIT_PATH_CONFIDENCE = 1.0

# Four signal types share the output cap
SIGNAL_TYPE_COUNT = len(SignalType)

SOURCE_EXTENSIONS = (
    "tsx", "ts", "jsx", "js", "mjs", "cjs", "py", "pyi", "rb", "go", "rs",
    "java", "kt", "kts", "scala", "swift", "cpp", "cc", "cxx", "hpp", "hh",
    "h", "c", "cs", "php", "lua", "sh", "bash", "vue", "svelte", "css",
    "scss", "less", "html", "json", "yaml", "yml", "toml", "md", "sql",
)

PATH_PATTERN: Pattern[str] = re.compile(
    r"(?<![\w./\\-])"
    r"(/?(?:[\w.-]+/)*[\w-][\w.-]*\.(?:" + "|".join(SOURCE_EXTENSIONS) + r"))"
    r"(?![\w/])"
)

# Identifier shapes searched in the user message
SYMBOL_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"\b[a-z]+(?:[A-Z][a-z0-9]*)+\b"), "camelCase"),
    (re.compile(r"\b[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)+\b"), "PascalCase"),
    (re.compile(r"\b[a-z][a-z0-9]*(?:_[a-z0-9]+)+\b"), "snake_case"),
]

IDENTIFIER_PATTERN: Pattern[str] = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\b")

STOP_WORDS = frozenset({
    "the", "and", "for", "not", "are", "but", "was", "were", "has", "have",
    "had", "can", "cannot", "could", "should", "would", "will", "with",
    "from", "this", "that", "these", "those", "into", "onto", "than", "then",
    "there", "their", "which", "while", "when", "what", "where", "who",
    "why", "how", "all", "any", "its", "may", "must", "been", "being", "does",
    "did", "doing", "done", "also", "only", "just", "very", "each", "other",
    "some", "such", "you", "your", "our", "out", "off", "over", "under",
    "again", "once", "here", "more", "most", "own", "same", "too", "yet",
    "error", "errors", "line", "column", "file", "unknown", "undefined",
    "null", "none", "true", "false", "failed", "expected", "got", "value",
})


@dataclass(frozen=True)
class StackDialect:
    """One stack trace format.

    ``innermost_last`` is set for formats that list the failing frame last
    (Python tracebacks), so depth is counted from the end.
    """

    name: str
    pattern: Pattern[str]
    innermost_last: bool = False


STACK_DIALECTS: List[StackDialect] = [
    StackDialect(
        name="v8",
        pattern=re.compile(
            r"\bat\s+(?:(?P<func>[^\s(]+)\s+)?\(?(?P<path>[^\s()]+?):(?P<line>\d+):(?P<col>\d+)\)?"
        ),
    ),
    StackDialect(
        name="python",
        pattern=re.compile(r'File "(?P<path>[^"]+)", line (?P<line>\d+)(?:, in (?P<func>\S+))?'),
        innermost_last=True,
    ),
    StackDialect(
        name="bare",
        pattern=re.compile(r"(?P<path>[\w./\\-]*[\w-]\.[A-Za-z]\w*):(?P<line>\d+)(?::(?P<col>\d+))?"),
    ),
]


@dataclass(frozen=True)
class StackFrame:
    path: str
    line: int
    column: Optional[int]
    function: Optional[str]
    depth: int


def frame_confidence(depth: int) -> float:
    """Linear decay with stack depth, floored at 0.1."""
    return max(0.1, 1.0 - depth * 0.1)


def parse_stack(
    text: str,
    dialects: Sequence[StackDialect] = STACK_DIALECTS,
    max_frames: Optional[int] = None,
) -> List[StackFrame]:
    """Parse frames using the first dialect that yields any frame.

    Frames are returned innermost first with ``depth`` starting at 0.
    """
    if not text:
        return []

    for dialect in dialects:
        matches = list(dialect.pattern.finditer(text))
        if not matches:
            continue
        if dialect.innermost_last:
            matches.reverse()

        frames: List[StackFrame] = []
        for match in matches:
            groups = match.groupdict()
            col = groups.get("col")
            frames.append(StackFrame(
                path=groups["path"],
                line=int(groups["line"]),
                column=int(col) if col else None,
                function=groups.get("func"),
                depth=len(frames),
            ))
            if max_frames is not None and len(frames) >= max_frames:
                break
        logger.debug(f"Parsed {len(frames)} frames with {dialect.name} dialect")
        return frames

    return []


def find_paths(text: str) -> List[str]:
    """Return source file paths mentioned in text, in order, without duplicates."""
    if not text:
        return []
    found: Dict[str, None] = {}
    for match in PATH_PATTERN.finditer(text):
        found.setdefault(match.group(1), None)
    return list(found)


def _string_list(value) -> List[str]:
    # A bare string is not a list of paths
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


class SignalExtractor:
    """Turns raw context input into deduplicated, confidence-scored signals.

    Example:
        >>> extractor = SignalExtractor()
        >>> signals = extractor.extract(ContextInput(user_message="Fix handleClick in Button.tsx"))
        >>> [(s.type.value, s.value, s.confidence) for s in signals]
        [('path', 'Button.tsx', 0.8), ('symbol', 'handleClick', 0.6)]
    """

    def __init__(
        self,
        config: Optional[ExtractorConfig] = None,
        dialects: Optional[Sequence[StackDialect]] = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            config: Extraction settings (default: global config)
            dialects: Ordered stack trace dialects (default: STACK_DIALECTS)

        Raises:
            ValueError: If a custom pattern is not a valid regex or a limit is negative
        """
        self.config = config or get_extractor_config()
        if not 0.0 <= self.config.min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {self.config.min_confidence}")
        if self.config.max_signals_per_type < 0:
            raise ValueError("max_signals_per_type must be non-negative")

        self.dialects = list(dialects) if dialects is not None else list(STACK_DIALECTS)

        self._custom_patterns: List[Pattern[str]] = []
        for raw in self.config.custom_patterns:
            try:
                self._custom_patterns.append(re.compile(raw))
            except re.error as e:
                raise ValueError(f"Invalid custom pattern {raw!r}: {e}") from e

    @property
    def max_signals(self) -> int:
        return self.config.max_signals_per_type * SIGNAL_TYPE_COUNT

    def extract(self, context: ContextInput) -> List[Signal]:
        """Extract signals from all parts of the input.

        Args:
            context: Raw input from the session layer

        Returns:
            Signals unique by (type, value), highest confidence first
        """
        signals: List[Signal] = []

        if isinstance(context.user_message, str) and context.user_message:
            signals.extend(self._from_user_message(context.user_message))

        for error in context.errors if isinstance(context.errors, (list, tuple)) else []:
            if isinstance(error, ErrorInfo):
                signals.extend(self._from_error(error))

        for path in _string_list(context.working_set):
            if path:
                signals.append(Signal(
                    type=SignalType.PATH,
                    value=path,
                    source=SignalSource.WORKING_SET,
                    confidence=EXPLICIT_PATH_CONFIDENCE,
                ))

        if context.git_diff is not None:
            for diff_file in context.git_diff.files:
                if isinstance(diff_file.path, str) and diff_file.path:
                    signals.append(Signal(
                        type=SignalType.PATH,
                        value=diff_file.path,
                        source=SignalSource.GIT_DIFF,
                        confidence=EXPLICIT_PATH_CONFIDENCE,
                        metadata={"change_type": diff_file.type},
                    ))

        result = self.postprocess(signals)
        logger.debug(f"Extracted {len(result)} signals from {len(signals)} candidates")
        return result

    def postprocess(self, signals: Iterable[Signal]) -> List[Signal]:
        """Deduplicate, filter by confidence and cap the signal list."""
        best: Dict[Tuple[str, str], Signal] = {}
        for signal in signals:
            existing = best.get(signal.key)
            if existing is None or signal.confidence > existing.confidence:
                best[signal.key] = signal

        kept = [s for s in best.values() if s.confidence >= self.config.min_confidence]
        kept.sort(key=lambda s: s.confidence, reverse=True)
        return kept[: self.max_signals]

    def _from_user_message(self, text: str) -> List[Signal]:
        signals = []

        for pattern, _shape in SYMBOL_PATTERNS:
            for match in pattern.finditer(text):
                signals.append(Signal(
                    type=SignalType.SYMBOL,
                    value=match.group(0),
                    source=SignalSource.USER_MESSAGE,
                    confidence=SYMBOL_CONFIDENCE,
                ))

        for path in find_paths(text):
            signals.append(Signal(
                type=SignalType.PATH,
                value=path,
                source=SignalSource.USER_MESSAGE,
                confidence=MESSAGE_PATH_CONFIDENCE,
            ))

        for pattern in self._custom_patterns:
            for match in pattern.finditer(text):
                value = match.group(1) if pattern.groups else match.group(0)
                if value:
                    signals.append(Signal(
                        type=SignalType.SYMBOL,
                        value=value,
                        source=SignalSource.USER_MESSAGE,
                        confidence=CUSTOM_PATTERN_CONFIDENCE,
                        metadata={"pattern": pattern.pattern},
                    ))

        return signals

    def _from_error(self, error: ErrorInfo) -> List[Signal]:
        signals = []
        message = error.message if isinstance(error.message, str) else ""
        stack = error.stack if isinstance(error.stack, str) else ""

        frames = parse_stack(stack or message, self.dialects, self.config.max_stack_frames)
        for frame in frames:
            signals.append(Signal(
                type=SignalType.STACK_FRAME,
                value=f"{frame.path}:{frame.line}",
                source=SignalSource.ERROR_OUTPUT,
                confidence=frame_confidence(frame.depth),
                metadata={
                    "path": frame.path,
                    "line": frame.line,
                    "column": frame.column,
                    "function": frame.function,
                    "depth": frame.depth,
                },
            ))

        for token in self._keyword_tokens(message):
            signals.append(Signal(
                type=SignalType.ERROR_TOKEN,
                value=token,
                source=SignalSource.ERROR_OUTPUT,
                confidence=ERROR_TOKEN_CONFIDENCE,
            ))

        if isinstance(error.code, str) and error.code:
            signals.append(Signal(
                type=SignalType.ERROR_TOKEN,
                value=str(error.code),
                source=SignalSource.ERROR_OUTPUT,
                confidence=ERROR_TOKEN_CONFIDENCE,
                metadata={"code": True},
            ))

        for path in find_paths(message):
            signals.append(Signal(
                type=SignalType.PATH,
                value=path,
                source=SignalSource.ERROR_OUTPUT,
                confidence=ERROR_MESSAGE_PATH_CONFIDENCE,
            ))

        stack_paths = [frame.path for frame in frames] + find_paths(stack)
        for path in dict.fromkeys(stack_paths):
            signals.append(Signal(
                type=SignalType.PATH,
                value=path,
                source=SignalSource.ERROR_OUTPUT,
                confidence=STACK_PATH_CONFIDENCE,
            ))

        return signals

    @staticmethod
    def _keyword_tokens(message: str) -> List[str]:
        # Skip anything that is part of a path
        stripped = PATH_PATTERN.sub(" ", message)
        tokens: Dict[str, None] = {}
        for match in IDENTIFIER_PATTERN.finditer(stripped):
            token = match.group(0)
            if len(token) > 2 and token.lower() not in STOP_WORDS and not token.isdigit():
                tokens.setdefault(token, None)
        return list(tokens)
