"""Respawn controller models: controller state, breaker, timers, action log."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from respawn_console.app.models.automation import AutomationConfig
from respawn_console.app.models.detection import DetectionSnapshot, utcnow
from respawn_console.app.models.metrics import AggregateMetrics, HealthScore


class RespawnState(str, Enum):
    """Controller states. Values appear verbatim in lifecycle events."""
    STOPPED = "stopped"
    WATCHING = "watching"
    CONFIRMING_IDLE = "confirming_idle"
    AI_CHECKING = "ai_checking"
    SENDING_UPDATE = "sending_update"
    WAITING_UPDATE = "waiting_update"
    SENDING_CLEAR = "sending_clear"
    WAITING_CLEAR = "waiting_clear"
    SENDING_INIT = "sending_init"
    WAITING_INIT = "waiting_init"
    MONITORING_INIT = "monitoring_init"
    SENDING_KICKSTART = "sending_kickstart"
    WAITING_KICKSTART = "waiting_kickstart"


SENDING_STATES = frozenset({
    RespawnState.SENDING_UPDATE,
    RespawnState.SENDING_CLEAR,
    RespawnState.SENDING_INIT,
    RespawnState.SENDING_KICKSTART,
})

WAITING_STATES = frozenset({
    RespawnState.WAITING_UPDATE,
    RespawnState.WAITING_CLEAR,
    RespawnState.WAITING_INIT,
    RespawnState.MONITORING_INIT,
    RespawnState.WAITING_KICKSTART,
})


class StopReason(str, Enum):
    """Why a controller stopped."""
    MANUAL = "manual"
    DURATION_ELAPSED = "duration_elapsed"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    EXIT_SIGNAL = "exit_signal"
    STATUS_BLOCKED = "status_blocked"
    ERROR = "error"


BLOCKING_REASONS = frozenset({
    StopReason.CIRCUIT_BREAKER_OPEN,
    StopReason.EXIT_SIGNAL,
    StopReason.STATUS_BLOCKED,
})


class ControllerState(BaseModel):
    """Ephemeral per-session controller state, rebuilt on every enable."""
    session_id: str
    state: RespawnState = RespawnState.WATCHING
    cycle_count: int = Field(default=0, description="Completed update/kickstart cycles")
    started_at: datetime = Field(default_factory=utcnow)
    ends_at: datetime | None = Field(default=None, description="End of a timed run")
    stop_reason: StopReason | None = None


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    HALF_OPEN = "HALF_OPEN"
    OPEN = "OPEN"


class CircuitBreakerState(BaseModel):
    state: CircuitState = CircuitState.CLOSED
    reason: str | None = None
    consecutive_no_progress: int = 0
    last_transition_at: datetime | None = None


class Timer(BaseModel):
    """A named countdown owned by one session."""
    id: str
    session_id: str
    name: str
    started_at: datetime
    ends_at: datetime
    duration_ms: int
    reason: str


class ActionType(str, Enum):
    COMMAND = "command"
    HOOK = "hook"
    AI_CHECK = "ai-check"
    PLAN_CHECK = "plan-check"
    TRANSCRIPT = "transcript"
    # Offered by callers but never stored
    STATE = "state"
    TIMER = "timer"
    DETECTION = "detection"


class ActionLogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    type: ActionType
    detail: str
    verdict: str | None = Field(default=None, description="Outcome for verdict-carrying entry types")


class RespawnStatus(BaseModel):
    """Snapshot of a session's automation returned by the control surface."""
    session_id: str
    enabled: bool
    controller: ControllerState | None = None
    config: AutomationConfig
    detection: DetectionSnapshot | None = None
    circuit_breaker: CircuitBreakerState
    timers: list[Timer] = Field(default_factory=list)
    metrics: AggregateMetrics | None = Field(default=None, description="Cycle aggregates since the last enable")
    health: HealthScore | None = None


class HookEventRequest(BaseModel):
    """Hook delivery from the agent's lifecycle hooks."""
    event: str = Field(..., description="idle_prompt, permission_prompt, elicitation_dialog or stop")
    session_id: str
    data: dict[str, Any] | None = None

    @field_validator("data")
    @classmethod
    def _check_transcript_path(cls, data: dict[str, Any] | None) -> dict[str, Any] | None:
        if data and "transcript_path" in data and not isinstance(data["transcript_path"], (str, type(None))):
            raise ValueError("transcript_path must be a string")
        return data
