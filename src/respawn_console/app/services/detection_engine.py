"""Idle detection for one session.

Three signal sources, highest wins with no blending:

1. Hook signal (``idle_prompt`` / ``stop``) delivered since the last
   evaluation: confidence 100, authoritative.
2. AI confirmation: only for ambiguous readings and only when the checker
   is ready. Failures degrade to heuristics and never raise.
3. Heuristic scoring of the recent output window.
"""

import asyncio
import os
import time
from pathlib import Path

from respawn_console.app.models.automation import AutomationConfig
from respawn_console.app.models.detection import (
    AiCheckState,
    AiCheckStatus,
    AiVerdict,
    DetectionSnapshot,
    DetectionSource,
    HookSignal,
)
from respawn_console.app.models.respawn import utcnow
from respawn_console.app.services.ai_idle_checker import AiIdleChecker
from respawn_console.app.services.event_bus import EventBus
from respawn_console.app.services.logging_service import get_logger
from respawn_console.app.services.output_patterns import fingerprint, score_output, strip_ansi
from respawn_console.app.services.session_port import SessionPort
from respawn_console.app.services.status_parser import parse_status_block
from respawn_console.app.services.timer_manager import TimerManager

logger = get_logger(__name__)

AI_COOLDOWN_TIMER = "ai-cooldown"

# Worst case UTF-8 width, so a tail read always covers ``limit`` characters
_MAX_BYTES_PER_CHAR = 4


def read_tail(path: Path, limit: int) -> str:
    """Last ``limit`` characters of a text file, without reading all of it."""
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        size = f.tell()
        f.seek(max(0, size - limit * _MAX_BYTES_PER_CHAR))
        data = f.read()
    return data.decode("utf-8", errors="replace")[-limit:]


class DetectionEngine:
    """Computes DetectionSnapshots for one session."""

    def __init__(
        self,
        session_id: str,
        config: AutomationConfig,
        port: SessionPort,
        timers: TimerManager,
        events: EventBus,
        checker: AiIdleChecker | None = None,
    ) -> None:
        self.session_id = session_id
        self.config = config
        self._port = port
        self._timers = timers
        self._events = events
        self._checker = checker

        self._pending_hook = HookSignal.NONE
        self._transcript_path: str | None = None
        self._last_fingerprint: str | None = None
        self._last_change = time.monotonic()
        self._last_output = ""
        self._generation = 0
        self._ai = AiCheckState()
        if not config.ai_idle_check_enabled or checker is None:
            self._ai.status = AiCheckStatus.DISABLED
            self._ai.disabled_reason = "AI idle check not enabled"
        self._snapshot = DetectionSnapshot(ai_check=self._ai.model_copy())
        self.last_context_source = "terminal"
        # Learned silence window, set by the controller when adaptive timing is on
        self.adaptive_idle_timeout_ms: int | None = None

    # ==================== State ====================

    @property
    def snapshot(self) -> DetectionSnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def output_fingerprint(self) -> str | None:
        return self._last_fingerprint

    @property
    def last_output(self) -> str:
        return self._last_output

    @property
    def ai_state(self) -> AiCheckState:
        return self._ai.model_copy()

    @property
    def idle_timeout_ms(self) -> int:
        return self.adaptive_idle_timeout_ms or self.config.idle_timeout_ms

    def update_config(self, config: AutomationConfig) -> None:
        self.config = config
        if not config.ai_idle_check_enabled:
            self._ai.status = AiCheckStatus.DISABLED
            self._ai.disabled_reason = "AI idle check not enabled"
        elif self._ai.disabled_reason == "AI idle check not enabled" and self._checker is not None:
            self._ai.status = AiCheckStatus.READY
            self._ai.disabled_reason = None

    def record_hook(self, signal: HookSignal, transcript_path: str | None = None) -> None:
        """Store an authoritative idle signal for the next evaluation."""
        if signal != HookSignal.NONE:
            self._pending_hook = signal
        if isinstance(transcript_path, str) and transcript_path:
            self._transcript_path = transcript_path

    def has_pending_hook(self) -> bool:
        return self._pending_hook != HookSignal.NONE

    # ==================== Evaluation ====================

    async def evaluate(self) -> DetectionSnapshot:
        """Read the session and produce a fresh snapshot.

        Raises SessionUnavailableError if the session is gone.
        """
        output = await self._port.read_recent_output(self.session_id)
        now = time.monotonic()
        current = fingerprint(output)
        if current != self._last_fingerprint:
            self._last_fingerprint = current
            self._last_change = now
            self._last_output = output
        silence_ms = int((now - self._last_change) * 1000)

        score = score_output(
            output,
            silence_ms=silence_ms,
            idle_timeout_ms=self.idle_timeout_ms,
            no_output_timeout_ms=self.config.no_output_timeout_ms,
        )
        snapshot = DetectionSnapshot(
            confidence_level=score.confidence,
            status_text=score.status_text,
            source=DetectionSource.HEURISTIC,
            ai_check=self._ai.model_copy(),
            working_detected=score.working,
            prompt_detected=score.prompt,
            completion_detected=score.completion,
            plan_prompt_detected=score.plan_prompt,
            silence_ms=silence_ms,
            status_block=parse_status_block(strip_ansi(output)),
        )

        if self._pending_hook != HookSignal.NONE:
            snapshot.confidence_level = 100
            snapshot.hook_signal = self._pending_hook
            snapshot.source = DetectionSource.HOOK
            snapshot.status_text = f"hook: {self._pending_hook.value}"
            self._pending_hook = HookSignal.NONE

        self._publish(snapshot)
        return snapshot

    def is_conclusive(self, snapshot: DetectionSnapshot) -> bool:
        return snapshot.source == DetectionSource.HOOK or snapshot.confidence_level >= self.config.conclusive_threshold

    def is_ambiguous(self, snapshot: DetectionSnapshot) -> bool:
        return (
            snapshot.source == DetectionSource.HEURISTIC
            and self.config.confirm_threshold <= snapshot.confidence_level < self.config.conclusive_threshold
        )

    def ai_available(self) -> bool:
        return self._checker is not None and self._ai.status == AiCheckStatus.READY

    # ==================== AI confirmation ====================

    def invalidate(self) -> None:
        """Make any in-flight AI check's result stale."""
        self._generation += 1
        if self._ai.status == AiCheckStatus.CHECKING:
            self._ai.status = AiCheckStatus.READY

    def begin_check(self) -> int:
        """Mark a check as in flight and return its generation."""
        self._generation += 1
        self._ai.status = AiCheckStatus.CHECKING
        self._events.emit("respawn:aiCheckStarted", self.session_id)
        return self._generation

    async def confirm(self, snapshot: DetectionSnapshot, generation: int | None = None) -> DetectionSnapshot:
        """Ask the AI checker about an ambiguous snapshot.

        Never raises for checker failures: the returned snapshot keeps the
        heuristic confidence and shows the checker as disabled. If the check
        was invalidated while running, the input snapshot is returned as-is.
        """
        if generation is None:
            generation = self.begin_check()
        logger.info(f"[{self.session_id}] AI idle check started (confidence {snapshot.confidence_level})")

        if self._checker is None:
            return self.fail_check(generation, snapshot, "no idle checker configured")
        started = time.monotonic()
        try:
            context = await self._build_context()
            verdict = await asyncio.wait_for(
                self._checker.check(context, self.config.ai_idle_check_model),
                timeout=self.config.ai_idle_check_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            return self.fail_check(generation, snapshot, f"timed out after {self.config.ai_idle_check_timeout_ms}ms")
        except Exception as e:
            return self.fail_check(generation, snapshot, str(e) or type(e).__name__)

        if generation != self._generation:
            logger.info(f"[{self.session_id}] Discarding stale AI verdict {verdict.value}")
            return snapshot

        elapsed_ms = int((time.monotonic() - started) * 1000)
        cooldown_ms = (
            self.config.ai_idle_check_cooldown_ms
            if verdict == AiVerdict.WORKING
            else self.config.ai_idle_check_idle_cooldown_ms
        )
        timer = self._timers.start(self.session_id, AI_COOLDOWN_TIMER, cooldown_ms, reason="ai-cooldown")
        self._ai.status = AiCheckStatus.COOLDOWN
        self._ai.last_verdict = verdict
        self._ai.last_check_time = utcnow()
        self._ai.cooldown_ends_at = timer.ends_at
        self._ai.consecutive_errors = 0
        self._ai.disabled_reason = None

        logger.info(f"[{self.session_id}] AI idle check verdict {verdict.value} ({elapsed_ms}ms), cooldown {cooldown_ms}ms")
        self._events.emit("respawn:aiCheckCompleted", self.session_id, verdict=verdict.value, durationMs=elapsed_ms)
        self._events.emit("respawn:aiCheckCooldown", self.session_id, endsAt=timer.ends_at.isoformat())

        result = snapshot.model_copy(update={
            "source": DetectionSource.AI,
            "ai_check": self._ai.model_copy(),
            "status_text": f"AI verdict: {verdict.value}",
        })
        if verdict == AiVerdict.IDLE:
            result.confidence_level = 100
        self._publish(result)
        return result

    def end_cooldown(self) -> None:
        """Called when the ai-cooldown timer expires."""
        if self._ai.consecutive_errors >= self.config.ai_idle_check_max_errors:
            return
        if self._ai.status in (AiCheckStatus.COOLDOWN, AiCheckStatus.DISABLED) and self.config.ai_idle_check_enabled:
            self._ai.status = AiCheckStatus.READY
            self._ai.cooldown_ends_at = None
            self._ai.disabled_reason = None
            logger.debug(f"[{self.session_id}] AI idle check ready")

    def fail_check(self, generation: int, snapshot: DetectionSnapshot, error: str) -> DetectionSnapshot:
        if generation != self._generation:
            return snapshot

        self._ai.consecutive_errors += 1
        self._ai.status = AiCheckStatus.DISABLED
        self._ai.last_check_time = utcnow()
        if self._ai.consecutive_errors >= self.config.ai_idle_check_max_errors:
            self._ai.disabled_reason = f"{self._ai.consecutive_errors} consecutive errors, last: {error}"
            self._ai.cooldown_ends_at = None
            self._timers.cancel(self.session_id, AI_COOLDOWN_TIMER)
            logger.warning(f"[{self.session_id}] AI idle check disabled: {self._ai.disabled_reason}")
        else:
            self._ai.disabled_reason = error
            timer = self._timers.start(
                self.session_id, AI_COOLDOWN_TIMER, self.config.ai_idle_check_error_cooldown_ms, reason="ai-cooldown"
            )
            self._ai.cooldown_ends_at = timer.ends_at
            logger.warning(f"[{self.session_id}] AI idle check failed: {error}")
        self._events.emit("respawn:aiCheckFailed", self.session_id, error=error)

        result = snapshot.model_copy(update={"ai_check": self._ai.model_copy()})
        self._publish(result)
        return result

    async def _build_context(self) -> str:
        limit = self.config.ai_idle_check_max_context
        if self._transcript_path:
            try:
                text = await asyncio.to_thread(read_tail, Path(self._transcript_path), limit)
                self.last_context_source = "transcript"
                return text
            except OSError as e:
                logger.debug(f"[{self.session_id}] Transcript unreadable, using terminal output: {e}")
        self.last_context_source = "terminal"
        return strip_ansi(self._last_output)[-limit:]

    def _publish(self, snapshot: DetectionSnapshot) -> None:
        previous = self._snapshot
        self._snapshot = snapshot
        if (
            previous.confidence_level != snapshot.confidence_level
            or previous.status_text != snapshot.status_text
            or previous.ai_check != snapshot.ai_check
        ):
            self._events.emit("respawn:detectionUpdate", self.session_id, detection=snapshot.model_dump(mode="json"))
