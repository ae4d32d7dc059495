"""Cycle metrics, adaptive timing and health score models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from respawn_console.app.models.detection import utcnow


class CycleOutcome(str, Enum):
    SUCCESS = "success"
    NO_PROGRESS = "no_progress"
    BLOCKED = "blocked"
    ERROR = "error"
    CANCELLED = "cancelled"


class CycleMetrics(BaseModel):
    """One respawn cycle, from the confirmed idle reading to its classification."""
    cycle_id: str
    session_id: str
    cycle_number: int
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration_ms: int = 0
    idle_reason: str = Field(..., description="What confirmed idle: hook, ai or heuristic")
    idle_detection_ms: int = Field(default=0, description="Silence observed when idle was confirmed")
    idle_timeout_ms_used: int
    steps_completed: list[str] = Field(default_factory=list)
    clear_skipped: bool = False
    outcome: CycleOutcome | None = None
    error_message: str | None = None


class AggregateMetrics(BaseModel):
    total_cycles: int = 0
    successful_cycles: int = 0
    no_progress_cycles: int = 0
    blocked_cycles: int = 0
    error_cycles: int = 0
    cancelled_cycles: int = 0
    stuck_recoveries: int = Field(default=0, description="Bounded waits that ran out without an acknowledgement")
    avg_cycle_duration_ms: int = 0
    avg_idle_detection_ms: int = 0
    p90_cycle_duration_ms: int = 0
    success_rate: int = Field(default=100, description="Percent of cycles that made progress")
    last_updated_at: datetime = Field(default_factory=utcnow)


class TimingHistory(BaseModel):
    recent_idle_detection_ms: list[int] = Field(default_factory=list)
    recent_cycle_duration_ms: list[int] = Field(default_factory=list)
    sample_count: int = 0
    adaptive_idle_timeout_ms: int
    enabled: bool = False


class HealthStatus(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class HealthComponents(BaseModel):
    cycle_success: int = 100
    circuit_breaker: int = 100
    ai_checker: int = 100
    stuck_recovery: int = 100


class HealthScore(BaseModel):
    """0-100 summary of how well automation is going for a session."""
    score: int = Field(..., ge=0, le=100)
    status: HealthStatus
    components: HealthComponents
    summary: str
    recommendations: list[str] = Field(default_factory=list)
    calculated_at: datetime = Field(default_factory=utcnow)


class RespawnMetrics(BaseModel):
    """Metrics view returned by the control surface."""
    session_id: str
    aggregate: AggregateMetrics
    current: CycleMetrics | None = None
    recent: list[CycleMetrics] = Field(default_factory=list, description="Newest first")
    timing: TimingHistory | None = None
    health: HealthScore
