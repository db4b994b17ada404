"""Circuit breaker guarding calls to the MH reception API.

CLOSED counts failures inside a sliding window and opens at the threshold.
OPEN rejects calls until ``recovery_timeout`` has elapsed since the last
failure. HALF_OPEN lets exactly one trial call through; its outcome closes or
re-opens the circuit.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from facturador.config import BreakerSettings
from facturador.services.exceptions import CircuitOpenError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CERRADO"
    OPEN = "ABIERTO"
    HALF_OPEN = "SEMI_ABIERTO"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        window: float = 60.0,
        failure_exceptions: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.window = window
        self.failure_exceptions = failure_exceptions
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._last_failure: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    def _prune(self, now: float) -> None:
        while self._failures and now - self._failures[0] > self.window:
            self._failures.popleft()

    def _acquire(self) -> bool:
        """Decide whether a call may proceed. Returns True for the half-open trial."""
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.OPEN:
                last = self._last_failure if self._last_failure is not None else now
                elapsed = now - last
                if elapsed < self.recovery_timeout:
                    raise CircuitOpenError(self.name, self.recovery_timeout - elapsed)
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuito %s: SEMI_ABIERTO", self.name)
            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.name, 0.0)
                self._trial_in_flight = True
                return True
            return False

    def _on_success(self, trial: bool) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
                logger.info("Circuito %s: CERRADO (recuperado)", self.name)
            self._state = CircuitState.CLOSED
            self._failures.clear()

    def _abandon(self, trial: bool) -> None:
        # Interrupted trial: the next caller after it may try again
        if not trial:
            return
        with self._lock:
            self._trial_in_flight = False
            self._state = CircuitState.OPEN
            logger.info("Circuito %s: prueba de recuperación interrumpida", self.name)

    def _on_failure(self, trial: bool) -> None:
        with self._lock:
            now = self._clock()
            self._last_failure = now
            if trial:
                self._trial_in_flight = False
                self._state = CircuitState.OPEN
                logger.warning("Circuito %s: ABIERTO (falló la prueba de recuperación)", self.name)
                return
            self._prune(now)
            self._failures.append(now)
            if len(self._failures) >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuito %s: ABIERTO (%d/%d fallos)",
                    self.name,
                    len(self._failures),
                    self.failure_threshold,
                )

    def call(self, func: Callable[[], T]) -> T:
        """Run *func* through the breaker. Raises CircuitOpenError without calling it when open."""
        trial = self._acquire()
        try:
            result = func()
        except self.failure_exceptions:
            self._on_failure(trial)
            raise
        except Exception:
            # The dependency answered; the error belongs to the caller
            self._on_success(trial)
            raise
        except BaseException:
            self._abandon(trial)
            raise
        self._on_success(trial)
        return result

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            self._prune(self._clock())
            return {
                "state": self._state.value,
                "failures": len(self._failures),
                "last_failure": self._last_failure,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
                "window": self.window,
            }


class CircuitBreakerRegistry:
    """One breaker per dependency name, created on first use and kept for the process lifetime."""

    def __init__(
        self,
        settings: BreakerSettings | None = None,
        *,
        failure_exceptions: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or BreakerSettings()
        self._failure_exceptions = failure_exceptions
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    failure_threshold=self.settings.failure_threshold,
                    recovery_timeout=self.settings.recovery_timeout,
                    window=self.settings.window,
                    failure_exceptions=self._failure_exceptions,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: b.snapshot() for name, b in breakers.items()}
