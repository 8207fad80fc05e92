"""Per-provider circuit breaking.

A provider that keeps failing (LSP server gone, git errors, slow searches)
is skipped for a recovery period instead of costing a timeout on every build.
Once the period has passed a single trial query is let through: success
closes the circuit, failure opens it for another period.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from threading import Lock
from typing import Dict, Iterable

from .observability.metrics import publish_circuit_state
from .types import ProviderType

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ProviderCircuit:
    """Failure tracking for one provider type.

    Example:
        >>> circuit = ProviderCircuit(ProviderType.LSP, failure_threshold=3, recovery_timeout=60)
        >>> if circuit.allow():
        ...     circuit.record_failure()
    """

    def __init__(self, provider: ProviderType, failure_threshold: int = 3, recovery_timeout: float = 60.0) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if recovery_timeout < 0:
            raise ValueError("recovery_timeout must be non-negative")

        self.provider = provider
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._trial_started = 0.0
        publish_circuit_state(provider.value, self._state.value)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def allow(self) -> bool:
        """Whether a query may run now.

        While half-open only one trial query is allowed until its result is
        recorded. A trial whose result never arrives (a cancelled build)
        expires after another recovery period.
        """
        with self._lock:
            self._refresh()
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.HALF_OPEN:
                now = time.monotonic()
                if not self._trial_in_flight or now - self._trial_started >= self.recovery_timeout:
                    self._trial_in_flight = True
                    self._trial_started = now
                    return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._trial_in_flight = False
            if self._state is not CircuitState.CLOSED:
                logger.info(f"{self.provider.value} provider recovered, circuit closed")
                self._set_state(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._trial_in_flight = False
            if self._state is CircuitState.HALF_OPEN or (
                self._state is CircuitState.CLOSED and self._consecutive_failures >= self.failure_threshold
            ):
                self._opened_at = time.monotonic()
                logger.warning(
                    f"Circuit opened for {self.provider.value} provider after "
                    f"{self._consecutive_failures} consecutive failures, "
                    f"retrying in {self.recovery_timeout:.0f}s"
                )
                self._set_state(CircuitState.OPEN)

    def _refresh(self) -> None:
        if self._state is CircuitState.OPEN and time.monotonic() - self._opened_at >= self.recovery_timeout:
            self._trial_in_flight = False
            self._set_state(CircuitState.HALF_OPEN)

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        publish_circuit_state(self.provider.value, state.value)


class ProviderCircuits:
    """One circuit per provider type, sharing the same thresholds."""

    def __init__(
        self,
        providers: Iterable[ProviderType],
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._circuits: Dict[ProviderType, ProviderCircuit] = {
            provider: ProviderCircuit(provider, failure_threshold, recovery_timeout)
            for provider in providers
        }

    def __getitem__(self, provider: ProviderType) -> ProviderCircuit:
        return self._circuits[provider]

    def states(self) -> Dict[str, str]:
        return {provider.value: circuit.state.value for provider, circuit in self._circuits.items()}
