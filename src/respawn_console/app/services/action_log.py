"""Bounded per-session history of interesting automation actions."""

from collections import deque

from respawn_console.app.config import ACTION_LOG_LIMIT
from respawn_console.app.models.respawn import ActionLogEntry, ActionType
from respawn_console.app.services.event_bus import EventBus, event_bus as default_event_bus

# Always worth keeping
ALWAYS_KEPT = frozenset({ActionType.COMMAND, ActionType.HOOK})
# Kept only when they carry a verdict
VERDICT_KEPT = frozenset({ActionType.AI_CHECK, ActionType.PLAN_CHECK, ActionType.TRANSCRIPT})


def is_interesting(entry: ActionLogEntry) -> bool:
    if entry.type in ALWAYS_KEPT:
        return True
    return entry.type in VERDICT_KEPT and bool(entry.verdict)


class ActionLog:
    """Ring buffer of action entries per session. Filtering happens on insert."""

    def __init__(self, events: EventBus | None = None, limit: int = ACTION_LOG_LIMIT) -> None:
        self._events = events or default_event_bus
        self._limit = limit
        self._entries: dict[str, deque[ActionLogEntry]] = {}

    def append(self, session_id: str, entry: ActionLogEntry) -> bool:
        """Store an entry if it passes the allow-list. Returns whether it was kept."""
        if not is_interesting(entry):
            return False
        buffer = self._entries.setdefault(session_id, deque(maxlen=self._limit))
        buffer.append(entry)
        self._events.emit("respawn:actionLog", session_id, action=entry.model_dump(mode="json"))
        return True

    def list(self, session_id: str) -> list[ActionLogEntry]:
        """Entries newest first."""
        return list(reversed(self._entries.get(session_id, ())))

    def clear(self, session_id: str) -> None:
        self._entries.pop(session_id, None)
