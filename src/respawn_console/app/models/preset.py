"""Preset models.

A preset is a named AutomationConfig (plus an optional timed-run length)
that can be copied onto any session. Built-in presets ship with the app and
are immutable; custom presets are saved by the user.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from respawn_console.app.models.automation import AutomationConfig


class BuiltInPreset(BaseModel):
    """A preset bundled with the app. Cannot be deleted."""
    kind: Literal["builtin"] = "builtin"
    id: str = Field(..., description="Stable preset ID")
    name: str = Field(..., description="Display name")
    description: str = Field(default="")
    config: AutomationConfig
    duration_minutes: int | None = Field(default=None)


class CustomPreset(BaseModel):
    """A user-defined preset persisted on disk."""
    kind: Literal["custom"] = "custom"
    id: str = Field(..., description="Unique preset ID")
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    description: str = Field(default="", max_length=500)
    config: AutomationConfig
    duration_minutes: int | None = Field(default=None, ge=1, le=10080)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


Preset = Annotated[Union[BuiltInPreset, CustomPreset], Field(discriminator="kind")]


class PresetCreate(BaseModel):
    """Request to save a custom preset."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    config: AutomationConfig
    duration_minutes: int | None = Field(default=None, ge=1, le=10080)


BUILTIN_PRESETS: list[BuiltInPreset] = [
    BuiltInPreset(
        id="solo-work",
        name="Solo",
        description="Agent working alone: fast respawn cycles with context reset",
        config=AutomationConfig(
            idle_timeout_ms=3000,
            update_prompt="summarize your progress so far before the context reset.",
            inter_step_delay_ms=2000,
            send_clear=True,
            send_init=True,
            kickstart_prompt="continue working. Pick up where you left off based on the context above.",
            auto_accept_prompts=True,
        ),
        duration_minutes=60,
    ),
    BuiltInPreset(
        id="subagent-workflow",
        name="Subagents",
        description="Lead session with subagents: longer idle tolerance",
        config=AutomationConfig(
            idle_timeout_ms=45000,
            update_prompt=(
                "check on your running subagents and summarize their results before the context reset. "
                "If all subagents have finished, note what was completed and what remains."
            ),
            inter_step_delay_ms=3000,
            send_clear=True,
            send_init=True,
            kickstart_prompt=(
                "check on your running subagents and continue coordinating their work. If all subagents "
                "have finished, summarize their results and proceed with the next step."
            ),
            auto_accept_prompts=True,
        ),
        duration_minutes=240,
    ),
    BuiltInPreset(
        id="team-lead",
        name="Team",
        description="Leading an agent team: tolerates long silences",
        config=AutomationConfig(
            idle_timeout_ms=90000,
            update_prompt="review the task list and teammate progress. Summarize the current state before the context reset.",
            inter_step_delay_ms=5000,
            send_clear=True,
            send_init=True,
            kickstart_prompt=(
                "check on your teammates by reviewing the task list and any messages in your inbox. Assign new "
                "tasks if teammates are idle, or continue coordinating the team effort."
            ),
            auto_accept_prompts=True,
            no_output_timeout_ms=180000,
        ),
        duration_minutes=480,
    ),
    BuiltInPreset(
        id="ralph-todo",
        name="Ralph/Todo",
        description="Task list loop: works through todos with progress tracking",
        config=AutomationConfig(
            idle_timeout_ms=8000,
            update_prompt=(
                "update CLAUDE.md with discoveries and progress notes, mark completed tasks in @fix_plan.md, "
                "write a brief summary so the next cycle can continue seamlessly."
            ),
            inter_step_delay_ms=3000,
            send_clear=True,
            send_init=True,
            kickstart_prompt=(
                "read @fix_plan.md for task status, continue on the next uncompleted task. When ALL tasks are "
                "complete, output <promise>COMPLETE</promise>."
            ),
            auto_accept_prompts=True,
        ),
        duration_minutes=480,
    ),
]
