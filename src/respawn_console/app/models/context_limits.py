"""Token-threshold watcher settings (auto-compact / auto-clear)."""

from pydantic import BaseModel, Field

MIN_AUTO_THRESHOLD = 1000
MAX_AUTO_THRESHOLD = 500_000


class ContextLimits(BaseModel):
    """Per-session auto-compact and auto-clear settings."""
    auto_compact_enabled: bool = False
    auto_compact_threshold: int = Field(default=110_000, ge=MIN_AUTO_THRESHOLD, le=MAX_AUTO_THRESHOLD)
    auto_compact_prompt: str = Field(default="", max_length=2000, description="Appended to /compact")
    auto_clear_enabled: bool = False
    auto_clear_threshold: int = Field(default=140_000, ge=MIN_AUTO_THRESHOLD, le=MAX_AUTO_THRESHOLD)


class ContextLimitsStatus(ContextLimits):
    """Settings plus live watcher state."""
    is_compacting: bool = False
    is_clearing: bool = False
    last_token_count: int | None = None
