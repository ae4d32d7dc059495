"""Circuit breaker for respawn cycles that make no progress.

CLOSED -> HALF_OPEN after ``half_open_after`` consecutive no-progress cycles
(a "stuck" warning, automation keeps going). HALF_OPEN -> OPEN after
``open_after`` more. OPEN halts automation until ``reset()``.
"""

from respawn_console.app.models.respawn import CircuitBreakerState, CircuitState, utcnow


class CircuitBreaker:
    def __init__(self, half_open_after: int = 2, open_after: int = 1) -> None:
        self.half_open_after = half_open_after
        self.open_after = open_after
        self._state = CircuitBreakerState()

    @property
    def state(self) -> CircuitBreakerState:
        return self._state.model_copy()

    @property
    def is_open(self) -> bool:
        return self._state.state == CircuitState.OPEN

    def configure(self, half_open_after: int, open_after: int) -> None:
        self.half_open_after = half_open_after
        self.open_after = open_after

    def record_cycle(self, progress: bool) -> CircuitBreakerState:
        """Classify a finished cycle and return the resulting state."""
        current = self._state
        if current.state == CircuitState.OPEN:
            return self.state

        if progress:
            if current.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED, "progress resumed")
            current.consecutive_no_progress = 0
            return self.state

        current.consecutive_no_progress += 1
        misses = current.consecutive_no_progress
        if current.state == CircuitState.CLOSED and misses >= self.half_open_after:
            self._transition(CircuitState.HALF_OPEN, f"{misses} cycles without progress")
        elif current.state == CircuitState.HALF_OPEN and misses >= self.half_open_after + self.open_after:
            self._transition(CircuitState.OPEN, f"{misses} cycles without progress")
        return self.state

    def reset(self) -> CircuitBreakerState:
        """Return to CLOSED. Does not resume automation."""
        self._state = CircuitBreakerState(last_transition_at=utcnow(), reason="manual reset")
        return self.state

    def _transition(self, state: CircuitState, reason: str) -> None:
        self._state.state = state
        self._state.reason = reason
        self._state.last_transition_at = utcnow()
