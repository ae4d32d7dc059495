"""Token-threshold watchers: auto-compact and auto-clear.

Configured per session next to respawn automation but independent of the
respawn state machine. An APScheduler interval job polls every watched
session's token count; above a threshold it sends ``/compact [prompt]`` or
``/clear``. Compact and clear never run at the same time, and each has a
cooldown after it fires.
"""

import time
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from respawn_console.app.errors import SessionUnavailableError
from respawn_console.app.models.context_limits import ContextLimits, ContextLimitsStatus
from respawn_console.app.services.event_bus import EventBus, event_bus as default_event_bus
from respawn_console.app.services.logging_service import get_logger
from respawn_console.app.services.session_port import SessionPort

logger = get_logger(__name__)

CHECK_INTERVAL_SECONDS = 5
COMPACT_COOLDOWN_SECONDS = 10
CLEAR_COOLDOWN_SECONDS = 5
JOB_ID = "context-limits-check"


class ContextLimitsService:
    """Watches token counts and triggers /compact or /clear."""

    def __init__(
        self,
        port: SessionPort,
        events: EventBus | None = None,
        is_busy: Callable[[str], bool] | None = None,
    ) -> None:
        self._port = port
        self._events = events or default_event_bus
        self._is_busy = is_busy
        self._scheduler = AsyncIOScheduler()
        self._started = False
        self._limits: dict[str, ContextLimits] = {}
        self._compacting_until: dict[str, float] = {}
        self._clearing_until: dict[str, float] = {}
        self._last_tokens: dict[str, int] = {}

    def start(self) -> None:
        if self._started:
            return
        self._scheduler.add_job(
            self.check_all,
            trigger=IntervalTrigger(seconds=CHECK_INTERVAL_SECONDS),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._started = True
        logger.info("Context limit watcher started")

    def shutdown(self) -> None:
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False

    def get(self, session_id: str) -> ContextLimitsStatus:
        limits = self._limits.get(session_id, ContextLimits())
        now = time.monotonic()
        return ContextLimitsStatus(
            **limits.model_dump(),
            is_compacting=self._compacting_until.get(session_id, 0) > now,
            is_clearing=self._clearing_until.get(session_id, 0) > now,
            last_token_count=self._last_tokens.get(session_id),
        )

    def set(self, session_id: str, limits: ContextLimits) -> ContextLimitsStatus:
        if limits.auto_compact_enabled or limits.auto_clear_enabled:
            self._limits[session_id] = limits
        else:
            self._limits.pop(session_id, None)
        logger.info(
            f"[{session_id}] Context limits: compact={limits.auto_compact_enabled}@{limits.auto_compact_threshold}, "
            f"clear={limits.auto_clear_enabled}@{limits.auto_clear_threshold}"
        )
        return self.get(session_id)

    def remove(self, session_id: str) -> None:
        self._limits.pop(session_id, None)
        self._compacting_until.pop(session_id, None)
        self._clearing_until.pop(session_id, None)
        self._last_tokens.pop(session_id, None)

    async def check_all(self) -> None:
        for session_id in list(self._limits):
            try:
                await self.check(session_id)
            except SessionUnavailableError as e:
                logger.info(f"[{session_id}] Session gone, dropping context limits: {e}")
                self.remove(session_id)

    async def check(self, session_id: str) -> str | None:
        """Run one threshold check. Returns "compact", "clear" or None."""
        limits = self._limits.get(session_id)
        if limits is None:
            return None
        now = time.monotonic()
        if self._compacting_until.get(session_id, 0) > now or self._clearing_until.get(session_id, 0) > now:
            return None
        if self._is_busy is not None and self._is_busy(session_id):
            return None

        tokens = await self._port.get_token_count(session_id)
        if tokens is None:
            return None
        self._last_tokens[session_id] = tokens

        if limits.auto_compact_enabled and tokens >= limits.auto_compact_threshold:
            command = f"/compact {limits.auto_compact_prompt}" if limits.auto_compact_prompt else "/compact"
            await self._port.send_input(session_id, command)
            self._compacting_until[session_id] = now + COMPACT_COOLDOWN_SECONDS
            logger.info(f"[{session_id}] Auto-compact: {tokens} tokens >= {limits.auto_compact_threshold}")
            self._events.emit(
                "session:autoCompact", session_id,
                tokens=tokens, threshold=limits.auto_compact_threshold, prompt=limits.auto_compact_prompt or None,
            )
            return "compact"

        if limits.auto_clear_enabled and tokens >= limits.auto_clear_threshold:
            await self._port.send_input(session_id, "/clear")
            self._clearing_until[session_id] = now + CLEAR_COOLDOWN_SECONDS
            logger.info(f"[{session_id}] Auto-clear: {tokens} tokens >= {limits.auto_clear_threshold}")
            self._events.emit("session:autoClear", session_id, tokens=tokens, threshold=limits.auto_clear_threshold)
            return "clear"

        return None
