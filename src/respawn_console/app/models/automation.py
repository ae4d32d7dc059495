"""Automation config models.

An automation config describes how the respawn controller drives one
session: which prompts it sends, whether a clear/init step precedes the
update, how patient idle detection is, and the tunable policy constants
for confidence bands and the circuit breaker.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from respawn_console.app.config import (
    DEFAULT_AI_CHECK_MODEL,
    DEFAULT_INIT_PROMPT,
    DEFAULT_UPDATE_PROMPT,
)


class AutomationConfig(BaseModel):
    """Per-session automation config. Always replaced as a whole unit."""

    model_config = ConfigDict(extra="forbid")

    update_prompt: str = Field(default=DEFAULT_UPDATE_PROMPT, min_length=1, max_length=10000, description="Text sent to nudge the agent forward")
    send_clear: bool = Field(default=True, description="Send a context clear before the update")
    send_init: bool = Field(default=True, description="Send the init prompt before the update")
    init_prompt: str = Field(default=DEFAULT_INIT_PROMPT, min_length=1, max_length=10000, description="Text sent in the init step")
    kickstart_prompt: str | None = Field(default=None, max_length=10000, description="Prompt used when the loop has produced nothing yet")

    auto_accept_prompts: bool = Field(default=True, description="Auto-confirm plan/permission prompts")
    auto_accept_delay_ms: int = Field(default=8000, ge=100, le=60000, description="Quiet time before auto-accepting a prompt")

    idle_timeout_ms: int = Field(default=10000, ge=100, le=600000, description="Silence needed before idle confidence saturates")
    inter_step_delay_ms: int = Field(default=1000, ge=10, le=60000, description="Pacing between scripted steps")
    no_output_timeout_ms: int = Field(default=30000, ge=100, le=600000, description="Silence that counts as idle on its own")
    init_monitor_timeout_ms: int = Field(default=15000, ge=100, le=600000, description="Bound on waiting for init to be acknowledged")

    adaptive_timing_enabled: bool = Field(default=False, description="Learn the idle silence window from recent cycles")
    adaptive_min_confirm_ms: int = Field(default=1000, ge=100, le=60000, description="Lower bound of the learned window")
    adaptive_max_confirm_ms: int = Field(default=60000, ge=100, le=600000, description="Upper bound of the learned window")

    duration_minutes: int | None = Field(default=None, ge=1, le=10080, description="Stop automation after N minutes")

    ai_idle_check_enabled: bool = Field(default=True, description="Confirm ambiguous idle readings with an AI check")
    ai_idle_check_model: str = Field(default=DEFAULT_AI_CHECK_MODEL, max_length=100)
    ai_idle_check_max_context: int = Field(default=16000, ge=1000, le=500000, description="Max chars of context sent to the checker")
    ai_idle_check_timeout_ms: int = Field(default=90000, ge=100, le=300000)
    ai_idle_check_cooldown_ms: int = Field(default=180000, ge=100, le=600000, description="Cooldown after a WORKING verdict")
    ai_idle_check_idle_cooldown_ms: int = Field(default=30000, ge=100, le=600000, description="Cooldown after an IDLE verdict")
    ai_idle_check_error_cooldown_ms: int = Field(default=30000, ge=100, le=600000, description="Cooldown after a failed check")
    ai_idle_check_max_errors: int = Field(default=3, ge=1, le=20, description="Consecutive failures before the checker stays disabled")

    confirm_threshold: int = Field(default=50, ge=1, le=100, description="Confidence that moves watching to confirming_idle")
    conclusive_threshold: int = Field(default=85, ge=1, le=100, description="Confidence that skips the AI check")

    circuit_breaker_half_open_after: int = Field(default=2, ge=1, le=50, description="No-progress cycles before HALF_OPEN")
    circuit_breaker_open_after: int = Field(default=1, ge=1, le=50, description="Further no-progress cycles before OPEN")

    skip_clear_when_low_context: bool = Field(default=False, description="Skip the clear step while context usage is low")
    skip_clear_threshold_percent: int = Field(default=50, ge=0, le=100)
    max_context_tokens: int = Field(default=200000, ge=1000, le=2000000)

    @model_validator(mode="after")
    def _check_bands(self) -> "AutomationConfig":
        if self.conclusive_threshold <= self.confirm_threshold:
            raise ValueError("conclusive_threshold must be greater than confirm_threshold")
        if self.adaptive_min_confirm_ms > self.adaptive_max_confirm_ms:
            raise ValueError("adaptive_min_confirm_ms must not exceed adaptive_max_confirm_ms")
        return self


class RespawnEnableRequest(BaseModel):
    """Request to enable automation on a session."""
    config: AutomationConfig | None = Field(default=None, description="Config to store before enabling")
    duration_minutes: int | None = Field(default=None, ge=1, le=10080, description="Timed run length")
    preset_id: str | None = Field(default=None, description="Apply this preset instead of an explicit config")
