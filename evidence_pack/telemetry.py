"""
Evidence build telemetry.

One record per build, capped in a ring buffer, with the task outcome
attached later through mark_outcome(). Records can be mirrored to a JSON
file; loading is best-effort and writes happen on a background thread so
recording never blocks a build or feedback call.
"""

import json
import logging
import os
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from threading import Lock
from typing import Any, Deque, Dict, List, Optional, Union

import numpy as np

from .config import TelemetryConfig, get_telemetry_config
from .types import EvidenceTelemetry, Outcome, PersistResult, TelemetryRecord

logger = logging.getLogger(__name__)


class EvidenceTelemetryService:
    """Ring buffer of build telemetry records.

    Thread-safe: record(), mark_outcome() and get_stats() may be called from
    any thread. The oldest record is evicted when max_records is exceeded.

    Args:
        config: Telemetry settings (default: global config)
        max_records: Override for the ring buffer capacity
        persist_path: Override for the JSON mirror path (None = config, "" = off)

    Example:
        >>> telemetry = EvidenceTelemetryService(max_records=1000)
        >>> telemetry.record("session-1", pack.telemetry)
        >>> telemetry.mark_outcome("session-1", "success")
        >>> telemetry.get_stats()["success_rate"]
        1.0
    """

    def __init__(
        self,
        config: Optional[TelemetryConfig] = None,
        max_records: Optional[int] = None,
        persist_path: Optional[Union[str, Path]] = None,
        auto_persist: Optional[bool] = None,
    ):
        config = config or get_telemetry_config()
        self.max_records = config.max_records if max_records is None else max_records
        if self.max_records < 1:
            raise ValueError(f"max_records must be at least 1, got {self.max_records}")

        path = config.persist_path if persist_path is None else persist_path
        self.persist_path: Optional[Path] = Path(path) if path else None
        self.auto_persist = config.auto_persist if auto_persist is None else auto_persist

        self._records: Deque[TelemetryRecord] = deque(maxlen=self.max_records)
        self._lock = Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None
        self._closed = False

        if self.persist_path is not None:
            result = self.load()
            if result.ok:
                logger.info(f"Loaded {result.record_count} telemetry records from {result.path}")
            elif self.persist_path.exists():
                logger.warning(f"Ignoring telemetry file {result.path}: {result.error}")

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, session_id: str, data: EvidenceTelemetry) -> TelemetryRecord:
        """Append one build's telemetry, evicting the oldest record if full."""
        record = TelemetryRecord(session_id=session_id, timestamp=time.time(), data=data)
        with self._lock:
            self._records.append(record)
        self._schedule_persist()
        return replace(record)

    def mark_outcome(self, session_id: str, outcome: Union[Outcome, str]) -> bool:
        """Set the outcome of a recorded session.

        Returns:
            True if the session was found, False if unknown or already evicted

        Raises:
            ValueError: If outcome is not success, failure or abandoned
        """
        outcome = Outcome(outcome)
        with self._lock:
            record = self._find(session_id)
            if record is None:
                return False
            record.outcome = outcome
        self._schedule_persist()
        return True

    def get_record(self, session_id: str) -> Optional[TelemetryRecord]:
        with self._lock:
            record = self._find(session_id)
            return replace(record) if record is not None else None

    def get_records(self, with_outcome_only: bool = False) -> List[TelemetryRecord]:
        """Copies of the buffered records, oldest first."""
        with self._lock:
            return [
                replace(r) for r in self._records
                if not with_outcome_only or r.outcome is not None
            ]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        self._schedule_persist()

    def _find(self, session_id: str) -> Optional[TelemetryRecord]:
        for record in reversed(self._records):
            if record.session_id == session_id:
                return record
        return None

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate statistics over the buffered records."""
        records = self.get_records()

        outcomes = {o.value: 0 for o in Outcome}
        for record in records:
            if record.outcome is not None:
                outcomes[record.outcome.value] += 1
        decided = outcomes[Outcome.SUCCESS.value] + outcomes[Outcome.FAILURE.value]

        stats: Dict[str, Any] = {
            "total_records": len(records),
            "max_records": self.max_records,
            "with_outcome": sum(outcomes.values()),
            "outcomes": outcomes,
            "success_rate": outcomes[Outcome.SUCCESS.value] / decided if decided else 0.0,
            "avg_build_time_ms": 0.0,
            "p95_build_time_ms": 0.0,
            "avg_tokens_saved": 0.0,
            "avg_provider_timings_ms": {},
            "provider_errors": {},
        }
        if not records:
            return stats

        build_times = np.array([r.data.build_time_ms for r in records], dtype=float)
        stats["avg_build_time_ms"] = float(np.mean(build_times))
        stats["p95_build_time_ms"] = float(np.percentile(build_times, 95))
        stats["avg_tokens_saved"] = float(np.mean([r.data.tokens_saved for r in records]))

        timings: Dict[str, List[float]] = {}
        errors: Dict[str, int] = {}
        for record in records:
            for provider, ms in record.data.provider_timings.items():
                timings.setdefault(provider, []).append(ms)
            for provider in record.data.provider_errors:
                errors[provider] = errors.get(provider, 0) + 1
        stats["avg_provider_timings_ms"] = {p: float(np.mean(v)) for p, v in timings.items()}
        stats["provider_errors"] = errors
        return stats

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Optional[Union[str, Path]] = None) -> PersistResult:
        """Write all records as a JSON array. Never raises."""
        target = Path(path) if path else self.persist_path
        if target is None:
            return PersistResult(ok=False, error="no persist path configured")

        with self._lock:
            payload = [r.to_dict() for r in self._records]

        tmp = target.with_name(target.name + ".tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(payload, f)
            os.replace(tmp, target)
        except (OSError, TypeError, ValueError) as e:
            return PersistResult(ok=False, path=str(target), error=str(e))
        return PersistResult(ok=True, path=str(target), record_count=len(payload))

    def load(self, path: Optional[Union[str, Path]] = None) -> PersistResult:
        """Replace the buffer with records from a JSON file. Never raises.

        A missing or corrupt file leaves the buffer untouched.
        """
        source = Path(path) if path else self.persist_path
        if source is None:
            return PersistResult(ok=False, error="no persist path configured")

        try:
            with open(source, "r") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError("expected a JSON array of records")
            records = [TelemetryRecord.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            return PersistResult(ok=False, path=str(source), error=str(e))

        with self._lock:
            self._records.clear()
            self._records.extend(records)
            count = len(self._records)
        return PersistResult(ok=True, path=str(source), record_count=count)

    def _schedule_persist(self) -> None:
        if not self.auto_persist or self.persist_path is None or self._closed:
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="evpack-telemetry")
        self._pending = self._executor.submit(self._persist_in_background)

    def _persist_in_background(self) -> None:
        result = self.save()
        if not result.ok:
            logger.warning(f"Telemetry persistence to {result.path} failed: {result.error}")

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued background writes to finish."""
        pending = self._pending
        if pending is not None:
            pending.result(timeout=timeout)

    def close(self) -> None:
        """Flush pending writes and stop the background worker."""
        self.flush()
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
