"""Respawn controller: the per-session automation state machine.

Each controller is an actor. Hooks, timer expiries, AI check results and
control commands are posted to its inbox; a single consumer task feeds them
one at a time to ``dispatch()``, so two transitions for the same session
never run concurrently. When the inbox is quiet the read times out and the
actor treats it as a detection tick.

Steady-state cycle::

    watching -> confirming_idle [-> ai_checking] -> sending_update -> waiting_update -> watching

with optional clear/init steps before the update, and a kickstart prompt in
place of the first update when one is configured.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from respawn_console.app.config import DEFAULT_CLEAR_COMMAND, DETECTION_POLL_MAX_MS
from respawn_console.app.errors import SessionUnavailableError
from respawn_console.app.models.automation import AutomationConfig
from respawn_console.app.models.detection import (
    AgentStatusBlock,
    AiVerdict,
    DetectionSnapshot,
    DetectionSource,
    HookEventType,
    HookSignal,
)
from respawn_console.app.models.metrics import CycleOutcome, HealthScore
from respawn_console.app.models.respawn import (
    BLOCKING_REASONS,
    ActionLogEntry,
    ActionType,
    ControllerState,
    RespawnState,
    StopReason,
    Timer,
    utcnow,
)
from respawn_console.app.services.action_log import ActionLog
from respawn_console.app.services.ai_idle_checker import AiIdleChecker
from respawn_console.app.services.circuit_breaker import CircuitBreaker
from respawn_console.app.services.cycle_metrics import AdaptiveTiming, CycleMetricsTracker
from respawn_console.app.services.detection_engine import AI_COOLDOWN_TIMER, DetectionEngine
from respawn_console.app.services.event_bus import EventBus
from respawn_console.app.services.health_score import calculate_health
from respawn_console.app.services.logging_service import close_session_log, get_logger, set_session_context
from respawn_console.app.services.output_patterns import fingerprint
from respawn_console.app.services.session_port import SessionPort
from respawn_console.app.services.timer_manager import TimerManager

logger = get_logger(__name__)

# Timer names
RUN_DURATION_TIMER = "run-duration"
STEP_DELAY_TIMER = "step-delay"
INIT_MONITOR_TIMER = "init-monitor"
AUTO_ACCEPT_TIMER = "auto-accept"

# How long stop() waits for the actor to drain before cancelling it
STOP_GRACE_SECONDS = 5.0

NEXT_WAITING_STATE = {
    RespawnState.SENDING_UPDATE: RespawnState.WAITING_UPDATE,
    RespawnState.SENDING_CLEAR: RespawnState.WAITING_CLEAR,
    RespawnState.SENDING_INIT: RespawnState.WAITING_INIT,
    RespawnState.SENDING_KICKSTART: RespawnState.WAITING_KICKSTART,
}

STEP_NAMES = {
    RespawnState.SENDING_UPDATE: "update",
    RespawnState.SENDING_CLEAR: "clear",
    RespawnState.SENDING_INIT: "init",
    RespawnState.SENDING_KICKSTART: "kickstart",
}

DETECTING_STATES = frozenset({
    RespawnState.WATCHING,
    RespawnState.CONFIRMING_IDLE,
    RespawnState.MONITORING_INIT,
})

HOOK_SIGNALS = {
    HookEventType.IDLE_PROMPT: HookSignal.IDLE_PROMPT,
    HookEventType.STOP: HookSignal.STOP,
}


# ==================== Inbox messages ====================

@dataclass
class Tick:
    """Inbox was quiet for one poll interval."""


@dataclass
class HookReceived:
    event: HookEventType
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class TimerFired:
    timer: Timer


@dataclass
class AiCheckDone:
    generation: int
    snapshot: DetectionSnapshot


@dataclass
class Control:
    command: str  # "stop" or "update_config"
    reason: StopReason = StopReason.MANUAL
    details: str | None = None
    config: AutomationConfig | None = None


ControllerMessage = Union[Tick, HookReceived, TimerFired, AiCheckDone, Control]


class RespawnController:
    """Drives one session through respawn cycles until stopped."""

    def __init__(
        self,
        session_id: str,
        config: AutomationConfig,
        port: SessionPort,
        timers: TimerManager,
        events: EventBus,
        action_log: ActionLog,
        breaker: CircuitBreaker,
        checker: AiIdleChecker | None = None,
        duration_minutes: int | None = None,
        on_stopped: Callable[["RespawnController"], None] | None = None,
        metrics: CycleMetricsTracker | None = None,
    ) -> None:
        self.session_id = session_id
        self.config = config
        self.port = port
        self.timers = timers
        self.events = events
        self.action_log = action_log
        self.breaker = breaker
        self.duration_minutes = duration_minutes if duration_minutes is not None else config.duration_minutes
        self._on_stopped = on_stopped

        self.engine = DetectionEngine(session_id, config, port, timers, events, checker)
        self.state = ControllerState(session_id=session_id, state=RespawnState.STOPPED)
        self.metrics = metrics or CycleMetricsTracker(session_id)
        self.timing = AdaptiveTiming()

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._ai_task: asyncio.Task | None = None
        self._baseline: str | None = None
        self._auto_accept_baseline: str | None = None
        self._elicitation_pending = False
        self._ignored_status_block: AgentStatusBlock | None = None
        self._first_evaluation = True

    # ==================== Lifecycle ====================

    @property
    def is_running(self) -> bool:
        return self.state.state != RespawnState.STOPPED

    def health(self) -> HealthScore:
        return calculate_health(self.metrics.aggregate, self.breaker.state, self.engine.ai_state)

    def start(self, run_loop: bool = True) -> ControllerState:
        """Enter ``watching``. With ``run_loop`` the actor task is started too."""
        self.timers.cancel_all(self.session_id)
        self.timers.on_expire(self.session_id, self._on_timer_expired)
        self.breaker.configure(self.config.circuit_breaker_half_open_after, self.config.circuit_breaker_open_after)

        self.state = ControllerState(session_id=self.session_id, state=RespawnState.WATCHING)
        if self.duration_minutes:
            timer = self.timers.start(
                self.session_id, RUN_DURATION_TIMER, self.duration_minutes * 60_000, reason="duration"
            )
            self.state.ends_at = timer.ends_at

        duration = f", timed run {self.duration_minutes}m" if self.duration_minutes else ""
        logger.info(f"[{self.session_id}] Respawn started{duration}")
        self.events.emit("respawn:started", self.session_id, status=self.state.model_dump(mode="json"))
        self.events.emit("respawn:stateChanged", self.session_id, state=self.state.state.value, previous=None)

        if run_loop:
            self._task = asyncio.create_task(self._run())
            self._task.add_done_callback(self._on_task_done)
        return self.state

    async def stop(self, reason: StopReason = StopReason.MANUAL, details: str | None = None) -> None:
        """Stop automation. Queued behind messages already in the inbox."""
        message = Control(command="stop", reason=reason, details=details)
        if self._task is None or self._task.done() or self._task is asyncio.current_task():
            await self.dispatch(message)
            return

        self.post(message)
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=STOP_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.session_id}] Controller did not stop in {STOP_GRACE_SECONDS}s, cancelling")
            self._task.cancel()
            await self._stop(reason, details)

    async def update_config(self, config: AutomationConfig) -> None:
        """Swap the config between two dispatches."""
        message = Control(command="update_config", config=config)
        if self._task is None or self._task.done():
            await self.dispatch(message)
        else:
            self.post(message)

    def post(self, message: ControllerMessage) -> None:
        self._inbox.put_nowait(message)

    def deliver_hook(self, event: HookEventType, data: dict[str, Any] | None = None) -> None:
        self.post(HookReceived(event=event, data=data or {}))

    async def _run(self) -> None:
        set_session_context(self.session_id)
        while self.is_running:
            timeout = min(self.config.idle_timeout_ms, DETECTION_POLL_MAX_MS) / 1000
            try:
                message = await asyncio.wait_for(self._inbox.get(), timeout=timeout)
            except asyncio.TimeoutError:
                message = Tick()
            await self.dispatch(message)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[{self.session_id}] Controller task crashed: {error}")

    def _on_timer_expired(self, timer: Timer) -> None:
        self.post(TimerFired(timer=timer))

    # ==================== Reducer ====================

    async def dispatch(self, message: ControllerMessage) -> None:
        """Apply one message to the state machine."""
        if not self.is_running:
            return
        try:
            if isinstance(message, Control):
                await self._on_control(message)
            elif isinstance(message, TimerFired):
                await self._on_timer(message.timer)
            elif isinstance(message, HookReceived):
                await self._on_hook(message)
            elif isinstance(message, AiCheckDone):
                await self._on_ai_result(message)
            elif isinstance(message, Tick):
                if self.state.state in DETECTING_STATES:
                    await self._evaluate()
        except SessionUnavailableError as e:
            logger.warning(f"[{self.session_id}] Session unavailable: {e}")
            await self._stop(StopReason.EXIT_SIGNAL, str(e))
        except Exception as e:
            logger.exception(f"[{self.session_id}] Respawn controller error in {self.state.state.value}")
            self.events.emit("respawn:error", self.session_id, error=str(e))
            await self._stop(StopReason.ERROR, str(e))

    async def _on_control(self, message: Control) -> None:
        if message.command == "stop":
            await self._stop(message.reason, message.details)
        elif message.command == "update_config" and message.config is not None:
            self.config = message.config
            self.engine.update_config(message.config)
            self.breaker.configure(message.config.circuit_breaker_half_open_after, message.config.circuit_breaker_open_after)
            self._apply_adaptive_timing()
            logger.info(f"[{self.session_id}] Respawn config updated")

    async def _on_timer(self, timer: Timer) -> None:
        current = self.state.state
        if timer.name == RUN_DURATION_TIMER:
            logger.info(f"[{self.session_id}] Timed run of {self.duration_minutes}m elapsed")
            await self._stop(StopReason.DURATION_ELAPSED, f"ran for {self.duration_minutes} minutes")
        elif timer.name == AI_COOLDOWN_TIMER:
            self.engine.end_cooldown()
            if current == RespawnState.CONFIRMING_IDLE and self.engine.snapshot.ai_check.last_verdict == AiVerdict.WORKING:
                await self._set_state(RespawnState.WATCHING)
        elif timer.name == AUTO_ACCEPT_TIMER:
            await self._auto_accept()
        elif timer.name == STEP_DELAY_TIMER:
            if current in (RespawnState.WAITING_UPDATE, RespawnState.WAITING_KICKSTART):
                await self._complete_cycle()
            elif current == RespawnState.WAITING_CLEAR:
                if self.config.send_init:
                    await self._send_step(RespawnState.SENDING_INIT)
                else:
                    await self._send_step(RespawnState.SENDING_UPDATE)
            elif current == RespawnState.WAITING_INIT:
                await self._set_state(RespawnState.MONITORING_INIT)
                self.timers.start(
                    self.session_id, INIT_MONITOR_TIMER, self.config.init_monitor_timeout_ms, reason="init-monitor"
                )
        elif timer.name == INIT_MONITOR_TIMER:
            if current == RespawnState.MONITORING_INIT:
                logger.info(f"[{self.session_id}] Init monitor timed out, continuing with update")
                self.metrics.record_stuck_recovery()
                await self._send_step(RespawnState.SENDING_UPDATE)

    async def _on_hook(self, message: HookReceived) -> None:
        event = message.event
        self.action_log.append(self.session_id, ActionLogEntry(type=ActionType.HOOK, detail=event.value))
        transcript_path = message.data.get("transcript_path")
        if not isinstance(transcript_path, str):
            transcript_path = None

        if event in HOOK_SIGNALS:
            self.engine.record_hook(HOOK_SIGNALS[event], transcript_path)
            if self.state.state == RespawnState.AI_CHECKING:
                logger.info(f"[{self.session_id}] Hook {event.value} during AI check, discarding check")
                self._cancel_ai_check()
                await self._set_state(RespawnState.CONFIRMING_IDLE)
            if self.state.state in DETECTING_STATES:
                await self._evaluate()
        elif event == HookEventType.ELICITATION_DIALOG:
            self._elicitation_pending = True
            self.timers.cancel(self.session_id, AUTO_ACCEPT_TIMER)
        elif event == HookEventType.PERMISSION_PROMPT:
            if transcript_path:
                self.engine.record_hook(HookSignal.NONE, transcript_path)
            if self.state.state in (RespawnState.WATCHING, RespawnState.CONFIRMING_IDLE):
                self._arm_auto_accept()

    async def _on_ai_result(self, message: AiCheckDone) -> None:
        if self.state.state != RespawnState.AI_CHECKING or message.generation != self.engine.generation:
            logger.info(f"[{self.session_id}] Ignoring stale AI check result (generation {message.generation})")
            return
        self._ai_task = None
        snapshot = message.snapshot

        if snapshot.source != DetectionSource.AI:
            # Checker failed; stay on heuristics
            self.action_log.append(self.session_id, ActionLogEntry(
                type=ActionType.AI_CHECK,
                detail=snapshot.ai_check.disabled_reason or "AI check failed",
                verdict="ERROR",
            ))
            await self._set_state(RespawnState.CONFIRMING_IDLE)
            return

        verdict = snapshot.ai_check.last_verdict
        self.action_log.append(self.session_id, ActionLogEntry(
            type=ActionType.AI_CHECK, detail=f"confidence {snapshot.confidence_level}", verdict=verdict.value,
        ))
        if self.engine.last_context_source == "transcript":
            self.action_log.append(self.session_id, ActionLogEntry(
                type=ActionType.TRANSCRIPT, detail="AI check read the agent transcript", verdict=verdict.value,
            ))

        if verdict == AiVerdict.IDLE:
            await self._begin_action()
        else:
            await self._set_state(RespawnState.CONFIRMING_IDLE)

    # ==================== Detection ====================

    async def _evaluate(self) -> None:
        snapshot = await self.engine.evaluate()
        if self._check_agent_status(snapshot):
            await self._stop_for_agent_status(snapshot.status_block)
            return
        if snapshot.working_detected:
            self._elicitation_pending = False

        current = self.state.state
        if current == RespawnState.MONITORING_INIT:
            if self.engine.is_conclusive(snapshot):
                self.timers.cancel(self.session_id, INIT_MONITOR_TIMER)
                await self._send_step(RespawnState.SENDING_UPDATE)
            return

        if snapshot.plan_prompt_detected and self.config.auto_accept_prompts and snapshot.source != DetectionSource.HOOK:
            # Leave the selection menu to auto-accept
            self._arm_auto_accept(plan_prompt=True)
            return

        if current == RespawnState.WATCHING:
            if snapshot.confidence_level < self.config.confirm_threshold:
                return
            await self._set_state(RespawnState.CONFIRMING_IDLE)
        await self._confirm(snapshot)

    async def _confirm(self, snapshot: DetectionSnapshot) -> None:
        if snapshot.confidence_level < self.config.confirm_threshold:
            await self._set_state(RespawnState.WATCHING)
        elif self.engine.is_conclusive(snapshot):
            await self._begin_action()
        elif self.engine.is_ambiguous(snapshot) and self.engine.ai_available():
            await self._start_ai_check(snapshot)

    def _check_agent_status(self, snapshot: DetectionSnapshot) -> bool:
        block = snapshot.status_block
        if self._first_evaluation:
            # A block already on screen at enable time was seen by the user
            self._first_evaluation = False
            self._ignored_status_block = block
            return False
        if block is None or block == self._ignored_status_block:
            return False
        return block.exit_signal or block.status == "BLOCKED"

    async def _stop_for_agent_status(self, block: AgentStatusBlock) -> None:
        if block.exit_signal:
            await self._stop(StopReason.EXIT_SIGNAL, "agent reported EXIT_SIGNAL: true")
        else:
            await self._stop(StopReason.STATUS_BLOCKED, block.recommendation or "agent reported STATUS: BLOCKED")

    async def _start_ai_check(self, snapshot: DetectionSnapshot) -> None:
        await self._set_state(RespawnState.AI_CHECKING)
        generation = self.engine.begin_check()
        self._ai_task = asyncio.create_task(self._run_ai_check(snapshot, generation))

    async def _run_ai_check(self, snapshot: DetectionSnapshot, generation: int) -> None:
        """Run one AI check and always report back, so ai_checking cannot stall."""
        set_session_context(self.session_id)
        result = snapshot
        try:
            result = await self.engine.confirm(snapshot, generation)
        except Exception as e:
            logger.exception(f"[{self.session_id}] AI idle check crashed")
            result = self.engine.fail_check(generation, snapshot, str(e) or type(e).__name__)
        finally:
            self.post(AiCheckDone(generation=generation, snapshot=result))

    def _cancel_ai_check(self) -> None:
        self.engine.invalidate()
        if self._ai_task is not None and not self._ai_task.done():
            self._ai_task.cancel()
        self._ai_task = None

    # ==================== Actions ====================

    async def _begin_action(self) -> None:
        """Route a confirmed idle reading to the next scripted step."""
        if self.breaker.is_open:
            await self._stop(StopReason.CIRCUIT_BREAKER_OPEN, self.breaker.state.reason)
            return
        self.timers.cancel(self.session_id, AUTO_ACCEPT_TIMER)
        snapshot = self.engine.snapshot
        self.metrics.start_cycle(
            self.state.cycle_count + 1,
            idle_reason=snapshot.source.value,
            idle_detection_ms=snapshot.silence_ms,
            idle_timeout_ms=self.engine.idle_timeout_ms,
        )
        self.events.emit("respawn:cycleStarted", self.session_id, cycleNumber=self.state.cycle_count + 1)

        if self.state.cycle_count == 0 and self.config.kickstart_prompt:
            await self._send_step(RespawnState.SENDING_KICKSTART)
        elif self.config.send_clear and not await self._should_skip_clear():
            await self._send_step(RespawnState.SENDING_CLEAR)
        elif self.config.send_init:
            await self._send_step(RespawnState.SENDING_INIT)
        else:
            await self._send_step(RespawnState.SENDING_UPDATE)

    async def _should_skip_clear(self) -> bool:
        if not self.config.skip_clear_when_low_context:
            return False
        tokens = await self.port.get_token_count(self.session_id)
        if not tokens:
            return False
        percent = tokens / self.config.max_context_tokens * 100
        if percent < self.config.skip_clear_threshold_percent:
            logger.info(f"[{self.session_id}] Skipping clear, context at {percent:.0f}%")
            self.metrics.mark_clear_skipped()
            return True
        return False

    def _step_text(self, sending: RespawnState) -> str:
        if sending == RespawnState.SENDING_CLEAR:
            return DEFAULT_CLEAR_COMMAND
        if sending == RespawnState.SENDING_INIT:
            return self.config.init_prompt
        if sending == RespawnState.SENDING_KICKSTART:
            return self.config.kickstart_prompt or self.config.update_prompt
        return self.config.update_prompt

    async def _send_step(self, sending: RespawnState) -> None:
        """Enter a sending state, send its input once, then wait."""
        await self._set_state(sending)
        step = STEP_NAMES[sending]
        text = self._step_text(sending)

        await self.port.send_input(self.session_id, text)
        self.metrics.record_step(step)
        self.action_log.append(self.session_id, ActionLogEntry(type=ActionType.COMMAND, detail=f"{step}: {text[:200]}"))
        self.events.emit("respawn:stepSent", self.session_id, step=step, input=text)
        logger.info(f"[{self.session_id}] Sent {step} ({len(text)} chars)")

        waiting = NEXT_WAITING_STATE[sending]
        await self._set_state(waiting)
        if waiting in (RespawnState.WAITING_UPDATE, RespawnState.WAITING_KICKSTART):
            self.state.cycle_count += 1
            self._baseline = fingerprint(await self.port.read_recent_output(self.session_id))
        self.timers.start(self.session_id, STEP_DELAY_TIMER, self.config.inter_step_delay_ms, reason=f"{step}-delay")

    async def _complete_cycle(self) -> None:
        """Classify the cycle that just finished and consult the breaker."""
        output = await self.port.read_recent_output(self.session_id)
        progress = fingerprint(output) != self._baseline
        before = self.breaker.state.state
        after = self.breaker.record_cycle(progress)
        logger.info(
            f"[{self.session_id}] Cycle {self.state.cycle_count} finished, "
            f"progress={progress}, breaker={after.state.value}"
        )
        if after.state != before:
            self.events.emit("respawn:circuitBreakerUpdate", self.session_id, circuitBreaker=after.model_dump(mode="json"))

        completed = self.metrics.complete_cycle(CycleOutcome.SUCCESS if progress else CycleOutcome.NO_PROGRESS)
        if completed is not None:
            self.timing.record(completed.idle_detection_ms, completed.duration_ms)
            self._apply_adaptive_timing()
            self.events.emit("respawn:cycleCompleted", self.session_id, cycle=completed.model_dump(mode="json"))

        if self.breaker.is_open:
            await self._stop(StopReason.CIRCUIT_BREAKER_OPEN, after.reason)
        else:
            await self._set_state(RespawnState.WATCHING)

    def _apply_adaptive_timing(self) -> None:
        window = self.timing.window_ms(self.config) if self.config.adaptive_timing_enabled else None
        if window != self.engine.adaptive_idle_timeout_ms:
            logger.debug(f"[{self.session_id}] Idle window now {window or self.config.idle_timeout_ms}ms")
        self.engine.adaptive_idle_timeout_ms = window

    def _arm_auto_accept(self, plan_prompt: bool = False) -> None:
        if not self.config.auto_accept_prompts or self._elicitation_pending:
            return
        if self.timers.get(self.session_id, AUTO_ACCEPT_TIMER) is not None:
            return
        if plan_prompt:
            self.action_log.append(self.session_id, ActionLogEntry(
                type=ActionType.PLAN_CHECK, detail="selection menu on screen", verdict="PLAN_MODE",
            ))
        self._auto_accept_baseline = self.engine.output_fingerprint
        self.timers.start(self.session_id, AUTO_ACCEPT_TIMER, self.config.auto_accept_delay_ms, reason="auto-accept")

    async def _auto_accept(self) -> None:
        if self.state.state not in (RespawnState.WATCHING, RespawnState.CONFIRMING_IDLE) or self._elicitation_pending:
            return
        output = await self.port.read_recent_output(self.session_id)
        if fingerprint(output) != self._auto_accept_baseline:
            logger.debug(f"[{self.session_id}] Output changed, skipping auto-accept")
            return
        await self.port.send_input(self.session_id, "", submit=True)
        self.action_log.append(self.session_id, ActionLogEntry(type=ActionType.COMMAND, detail="auto-accept: Enter"))
        self.events.emit("respawn:autoAcceptSent", self.session_id)
        logger.info(f"[{self.session_id}] Auto-accepted prompt")

    # ==================== Transitions ====================

    async def _set_state(self, new_state: RespawnState) -> None:
        previous = self.state.state
        if previous == new_state:
            return
        self.state.state = new_state
        logger.debug(f"[{self.session_id}] {previous.value} -> {new_state.value}")
        self.events.emit("respawn:stateChanged", self.session_id, state=new_state.value, previous=previous.value)

    async def _stop(self, reason: StopReason, details: str | None = None) -> None:
        if not self.is_running:
            return
        self.timers.cancel_all(self.session_id)
        self.timers.on_expire(self.session_id, None)
        self._cancel_ai_check()
        if reason in BLOCKING_REASONS:
            outcome = CycleOutcome.BLOCKED
        elif reason == StopReason.ERROR:
            outcome = CycleOutcome.ERROR
        else:
            outcome = CycleOutcome.CANCELLED
        self.metrics.complete_cycle(outcome, details)

        previous = self.state.state
        self.state.state = RespawnState.STOPPED
        self.state.stop_reason = reason
        self.events.emit("respawn:stateChanged", self.session_id, state=RespawnState.STOPPED.value, previous=previous.value)
        if reason in BLOCKING_REASONS:
            logger.warning(f"[{self.session_id}] Respawn blocked: {reason.value} ({details})")
            self.events.emit("respawn:blocked", self.session_id, reason=reason.value, details=details)
        self.events.emit("respawn:stopped", self.session_id, reason=reason.value, stoppedAt=utcnow().isoformat())
        logger.info(f"[{self.session_id}] Respawn stopped: {reason.value}")
        close_session_log(self.session_id)

        if self._on_stopped is not None:
            self._on_stopped(self)
