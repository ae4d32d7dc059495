"""Named, cancellable per-session countdown timers.

Uses APScheduler one-shot date jobs. Each session has at most one timer per
name; starting a timer under an existing name replaces it. Expiry calls the
continuation registered for the session exactly once.
"""

import uuid
from datetime import timedelta
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from respawn_console.app.models.respawn import Timer, utcnow
from respawn_console.app.services.event_bus import EventBus, event_bus as default_event_bus
from respawn_console.app.services.logging_service import get_logger

logger = get_logger(__name__)

ExpireCallback = Callable[[Timer], None]


class TimerManager:
    """Owns every countdown for every session."""

    def __init__(self, events: EventBus | None = None) -> None:
        self._events = events or default_event_bus
        self._scheduler = AsyncIOScheduler()
        self._started = False
        self._timers: dict[str, dict[str, Timer]] = {}  # session_id -> name -> timer
        self._callbacks: dict[str, ExpireCallback] = {}

    def _ensure_started(self) -> None:
        # AsyncIOScheduler binds to the running loop on start
        if not self._started:
            self._scheduler.start()
            self._started = True

    def shutdown(self) -> None:
        """Drop all timers and stop the scheduler."""
        self._timers.clear()
        self._callbacks.clear()
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Timer scheduler shut down")

    @staticmethod
    def _job_id(session_id: str, name: str) -> str:
        return f"{session_id}:{name}"

    def on_expire(self, session_id: str, callback: ExpireCallback | None) -> None:
        """Register (or clear, with None) the expiry continuation for a session."""
        if callback is None:
            self._callbacks.pop(session_id, None)
        else:
            self._callbacks[session_id] = callback

    def start(self, session_id: str, name: str, duration_ms: int, reason: str) -> Timer:
        """Start a timer. An existing timer with the same name is cancelled first."""
        self._ensure_started()
        if name in self._timers.get(session_id, {}):
            self.cancel(session_id, name)

        now = utcnow()
        timer = Timer(
            id=uuid.uuid4().hex[:12],
            session_id=session_id,
            name=name,
            started_at=now,
            ends_at=now + timedelta(milliseconds=duration_ms),
            duration_ms=duration_ms,
            reason=reason,
        )
        self._timers.setdefault(session_id, {})[name] = timer
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=timer.ends_at),
            id=self._job_id(session_id, name),
            args=[session_id, name, timer.id],
            replace_existing=True,
            misfire_grace_time=None,
        )
        self._events.emit("respawn:timerStarted", session_id, timer=timer.model_dump(mode="json"))
        return timer

    def cancel(self, session_id: str, name: str) -> bool:
        """Cancel a timer. Returns False if no such timer was running."""
        timer = self._timers.get(session_id, {}).pop(name, None)
        if timer is None:
            return False
        self._remove_job(session_id, name)
        self._events.emit("respawn:timerCancelled", session_id, timer=timer.model_dump(mode="json"))
        return True

    def cancel_all(self, session_id: str) -> int:
        """Cancel every timer of a session. Returns how many were cancelled."""
        names = list(self._timers.get(session_id, {}))
        for name in names:
            self.cancel(session_id, name)
        self._timers.pop(session_id, None)
        return len(names)

    def get(self, session_id: str, name: str) -> Timer | None:
        return self._timers.get(session_id, {}).get(name)

    def list(self, session_id: str) -> list[Timer]:
        return sorted(self._timers.get(session_id, {}).values(), key=lambda t: t.ends_at)

    async def expire(self, session_id: str, name: str) -> bool:
        """Complete a running timer now instead of waiting for it."""
        timer = self.get(session_id, name)
        if timer is None:
            return False
        self._remove_job(session_id, name)
        await self._fire(session_id, name, timer.id)
        return True

    def _remove_job(self, session_id: str, name: str) -> None:
        if not self._started:
            return
        try:
            self._scheduler.remove_job(self._job_id(session_id, name))
        except JobLookupError:
            pass  # Already fired

    async def _fire(self, session_id: str, name: str, timer_id: str) -> None:
        """Called by APScheduler when a timer's date is reached."""
        timer = self._timers.get(session_id, {}).get(name)
        if timer is None or timer.id != timer_id:
            # Superseded or cancelled after the job was queued
            return
        del self._timers[session_id][name]
        self._events.emit("respawn:timerCompleted", session_id, timer=timer.model_dump(mode="json"))
        callback = self._callbacks.get(session_id)
        if callback is not None:
            callback(timer)
