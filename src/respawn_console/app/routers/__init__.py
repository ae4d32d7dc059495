"""API routers."""

from . import context_limits, events, hooks, logs, presets, respawn

__all__ = ["context_limits", "events", "hooks", "logs", "presets", "respawn"]
