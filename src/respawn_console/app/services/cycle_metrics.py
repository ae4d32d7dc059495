"""Per-cycle metrics and adaptive idle timing for a respawn controller.

A cycle starts when idle is confirmed and ends when the step delay after the
update (or kickstart) classifies it, or when the controller stops mid-cycle.
"""

from collections import deque

from respawn_console.app.config import ADAPTIVE_TIMING_MIN_SAMPLES, ADAPTIVE_TIMING_SAMPLES, CYCLE_METRICS_LIMIT
from respawn_console.app.models.automation import AutomationConfig
from respawn_console.app.models.metrics import AggregateMetrics, CycleMetrics, CycleOutcome, TimingHistory
from respawn_console.app.models.respawn import utcnow

OUTCOME_COUNTERS = {
    CycleOutcome.SUCCESS: "successful_cycles",
    CycleOutcome.NO_PROGRESS: "no_progress_cycles",
    CycleOutcome.BLOCKED: "blocked_cycles",
    CycleOutcome.ERROR: "error_cycles",
    CycleOutcome.CANCELLED: "cancelled_cycles",
}


def percentile(values: list[int], fraction: float) -> int:
    ordered = sorted(values)
    return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]


class CycleMetricsTracker:
    """Tracks the cycle in progress and aggregates over finished ones."""

    def __init__(self, session_id: str, limit: int = CYCLE_METRICS_LIMIT) -> None:
        self.session_id = session_id
        self._current: CycleMetrics | None = None
        self._recent: deque[CycleMetrics] = deque(maxlen=limit)
        self._aggregate = AggregateMetrics()

    @property
    def current(self) -> CycleMetrics | None:
        return self._current.model_copy(deep=True) if self._current else None

    @property
    def aggregate(self) -> AggregateMetrics:
        return self._aggregate.model_copy()

    def start_cycle(self, cycle_number: int, idle_reason: str, idle_detection_ms: int, idle_timeout_ms: int) -> None:
        self._current = CycleMetrics(
            cycle_id=f"{self.session_id}:{cycle_number}",
            session_id=self.session_id,
            cycle_number=cycle_number,
            idle_reason=idle_reason,
            idle_detection_ms=idle_detection_ms,
            idle_timeout_ms_used=idle_timeout_ms,
        )

    def record_step(self, step: str) -> None:
        if self._current is not None:
            self._current.steps_completed.append(step)

    def mark_clear_skipped(self) -> None:
        if self._current is not None:
            self._current.clear_skipped = True

    def record_stuck_recovery(self) -> None:
        self._aggregate.stuck_recoveries += 1
        self._aggregate.last_updated_at = utcnow()

    def complete_cycle(self, outcome: CycleOutcome, error_message: str | None = None) -> CycleMetrics | None:
        """Close the cycle in progress. Returns None when there is none."""
        if self._current is None:
            return None
        metrics = self._current
        self._current = None

        metrics.completed_at = utcnow()
        metrics.duration_ms = int((metrics.completed_at - metrics.started_at).total_seconds() * 1000)
        metrics.outcome = outcome
        metrics.error_message = error_message
        self._recent.append(metrics)
        self._update_aggregate(outcome)
        return metrics.model_copy(deep=True)

    def recent(self, limit: int = 20) -> list[CycleMetrics]:
        """Finished cycles, newest first."""
        return [m.model_copy(deep=True) for m in reversed(self._recent)][:limit]

    def _update_aggregate(self, outcome: CycleOutcome) -> None:
        agg = self._aggregate
        agg.total_cycles += 1
        counter = OUTCOME_COUNTERS[outcome]
        setattr(agg, counter, getattr(agg, counter) + 1)

        durations = [m.duration_ms for m in self._recent]
        idle_times = [m.idle_detection_ms for m in self._recent]
        agg.avg_cycle_duration_ms = round(sum(durations) / len(durations))
        agg.avg_idle_detection_ms = round(sum(idle_times) / len(idle_times))
        agg.p90_cycle_duration_ms = percentile(durations, 0.9)
        agg.success_rate = round(agg.successful_cycles / agg.total_cycles * 100)
        agg.last_updated_at = utcnow()


class AdaptiveTiming:
    """Learns the idle silence window from recent cycles.

    Once enough cycles have finished, the window is the 75th percentile of
    the silence observed at idle confirmation plus 20%, clamped to the
    config's bounds. Before that the config's ``idle_timeout_ms`` applies.
    """

    BUFFER = 1.2

    def __init__(self, samples: int = ADAPTIVE_TIMING_SAMPLES) -> None:
        self._idle_detection_ms: deque[int] = deque(maxlen=samples)
        self._cycle_duration_ms: deque[int] = deque(maxlen=samples)

    @property
    def sample_count(self) -> int:
        return len(self._idle_detection_ms)

    def record(self, idle_detection_ms: int, cycle_duration_ms: int) -> None:
        self._idle_detection_ms.append(idle_detection_ms)
        self._cycle_duration_ms.append(cycle_duration_ms)

    def window_ms(self, config: AutomationConfig) -> int:
        if self.sample_count < ADAPTIVE_TIMING_MIN_SAMPLES:
            return config.idle_timeout_ms
        learned = round(percentile(list(self._idle_detection_ms), 0.75) * self.BUFFER)
        return max(config.adaptive_min_confirm_ms, min(config.adaptive_max_confirm_ms, learned))

    def history(self, config: AutomationConfig) -> TimingHistory:
        return TimingHistory(
            recent_idle_detection_ms=list(self._idle_detection_ms),
            recent_cycle_duration_ms=list(self._cycle_duration_ms),
            sample_count=self.sample_count,
            adaptive_idle_timeout_ms=self.window_ms(config),
            enabled=config.adaptive_timing_enabled,
        )
