"""Detection models: idle confidence snapshots and AI check state."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HookSignal(str, Enum):
    """Authoritative idle signal delivered by the agent's own lifecycle hooks."""
    NONE = "none"
    IDLE_PROMPT = "idle_prompt"
    STOP = "stop"


class HookEventType(str, Enum):
    """Hook event names accepted from the agent."""
    IDLE_PROMPT = "idle_prompt"
    PERMISSION_PROMPT = "permission_prompt"
    ELICITATION_DIALOG = "elicitation_dialog"
    STOP = "stop"


class DetectionSource(str, Enum):
    HOOK = "hook"
    HEURISTIC = "heuristic"
    AI = "ai"


class AiCheckStatus(str, Enum):
    READY = "ready"
    CHECKING = "checking"
    COOLDOWN = "cooldown"
    DISABLED = "disabled"


class AiVerdict(str, Enum):
    IDLE = "IDLE"
    WORKING = "WORKING"


class AiCheckState(BaseModel):
    """State of the on-demand AI idle confirmation for one session."""
    status: AiCheckStatus = AiCheckStatus.READY
    last_verdict: AiVerdict | None = None
    last_check_time: datetime | None = None
    cooldown_ends_at: datetime | None = None
    disabled_reason: str | None = None
    consecutive_errors: int = 0


class AgentStatusBlock(BaseModel):
    """Status block the agent may print at the end of a turn."""
    status: str | None = Field(default=None, description="IN_PROGRESS, COMPLETE or BLOCKED")
    exit_signal: bool = False
    tasks_completed: int | None = None
    files_modified: int | None = None
    recommendation: str | None = None


class DetectionSnapshot(BaseModel):
    """One idle/working reading for a session."""
    confidence_level: int = Field(default=0, ge=0, le=100, description="0 = working, 100 = certainly idle")
    status_text: str | None = Field(default=None, description="Advisory status string")
    hook_signal: HookSignal = HookSignal.NONE
    source: DetectionSource = DetectionSource.HEURISTIC
    ai_check: AiCheckState = Field(default_factory=AiCheckState)
    working_detected: bool = False
    prompt_detected: bool = False
    completion_detected: bool = False
    plan_prompt_detected: bool = False
    silence_ms: int = 0
    token_count: int | None = None
    status_block: AgentStatusBlock | None = None
