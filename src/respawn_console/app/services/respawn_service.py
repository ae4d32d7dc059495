"""Respawn service: the registry of respawn controllers and the control surface.

Owns one controller per enabled session, the per-session circuit breakers
(which outlive controllers so an OPEN breaker keeps blocking re-enable),
the shared timer manager and the action log.
"""

from typing import Any

from respawn_console.app.errors import CircuitOpenError, ControllerNotFoundError, SessionUnavailableError
from respawn_console.app.models.automation import AutomationConfig
from respawn_console.app.models.detection import HookEventType
from respawn_console.app.models.metrics import HealthScore, RespawnMetrics
from respawn_console.app.models.respawn import (
    SENDING_STATES,
    WAITING_STATES,
    ActionLogEntry,
    ActionType,
    CircuitBreakerState,
    RespawnStatus,
    StopReason,
    Timer,
)
from respawn_console.app.services.action_log import ActionLog
from respawn_console.app.services.ai_idle_checker import AiIdleChecker, ClaudeCliIdleChecker
from respawn_console.app.services.circuit_breaker import CircuitBreaker
from respawn_console.app.services.config_store import ConfigStore, config_store as default_config_store
from respawn_console.app.services.cycle_metrics import CycleMetricsTracker
from respawn_console.app.services.event_bus import EventBus, event_bus as default_event_bus
from respawn_console.app.services.health_score import calculate_health
from respawn_console.app.services.logging_service import get_logger
from respawn_console.app.services.respawn_controller import RespawnController
from respawn_console.app.services.session_port import SessionPort, TmuxSessionPort
from respawn_console.app.services.timer_manager import TimerManager

logger = get_logger(__name__)


class RespawnService:
    """Enables, stops and reconfigures respawn automation per session."""

    def __init__(
        self,
        port: SessionPort | None = None,
        store: ConfigStore | None = None,
        events: EventBus | None = None,
        checker: AiIdleChecker | None = None,
        run_loops: bool = True,
    ) -> None:
        self.port = port or TmuxSessionPort()
        self.store = store or default_config_store
        self.events = events or default_event_bus
        self.checker = checker if checker is not None else ClaudeCliIdleChecker()
        self.timers = TimerManager(self.events)
        self.action_log = ActionLog(self.events)
        self._run_loops = run_loops
        self._controllers: dict[str, RespawnController] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        # Metrics of the latest run stay readable after it stops
        self._metrics: dict[str, CycleMetricsTracker] = {}

    # ==================== Registry ====================

    def get_controller(self, session_id: str) -> RespawnController | None:
        return self._controllers.get(session_id)

    def breaker(self, session_id: str) -> CircuitBreaker:
        if session_id not in self._breakers:
            self._breakers[session_id] = CircuitBreaker()
        return self._breakers[session_id]

    def list_enabled(self) -> list[str]:
        return list(self._controllers)

    def is_busy(self, session_id: str) -> bool:
        """Whether a controller is mid-step and owns the session's input."""
        controller = self._controllers.get(session_id)
        if controller is None or not controller.is_running:
            return False
        return controller.state.state in SENDING_STATES or controller.state.state in WAITING_STATES

    def _controller_stopped(self, controller: RespawnController) -> None:
        if self._controllers.get(controller.session_id) is controller:
            del self._controllers[controller.session_id]

    # ==================== Control surface ====================

    async def enable(
        self,
        session_id: str,
        config: AutomationConfig | dict[str, Any] | None = None,
        duration_minutes: int | None = None,
        preset_id: str | None = None,
    ) -> RespawnStatus:
        """Start automation on a session.

        Uses the preset's config when ``preset_id`` is given, otherwise stores
        ``config`` if given, otherwise the session's stored config.
        """
        breaker = self.breaker(session_id)
        if breaker.is_open:
            raise CircuitOpenError(
                f"Circuit breaker for {session_id} is OPEN ({breaker.state.reason}); reset it before enabling"
            )

        if preset_id:
            stored, preset_duration = self.store.apply_preset(session_id, preset_id)
            if duration_minutes is None:
                duration_minutes = preset_duration
        elif config is not None:
            stored = self.store.put(session_id, config)
        else:
            stored = self.store.get(session_id)

        if not await self.port.is_alive(session_id):
            raise SessionUnavailableError(f"Session {session_id} is not running")

        existing = self._controllers.get(session_id)
        if existing is not None and existing.is_running:
            await existing.stop(StopReason.MANUAL, "re-enabled")

        tracker = self._metrics[session_id] = CycleMetricsTracker(session_id)
        controller = RespawnController(
            session_id=session_id,
            config=stored,
            port=self.port,
            timers=self.timers,
            events=self.events,
            action_log=self.action_log,
            breaker=breaker,
            checker=self.checker,
            duration_minutes=duration_minutes,
            on_stopped=self._controller_stopped,
            metrics=tracker,
        )
        self._controllers[session_id] = controller
        controller.start(run_loop=self._run_loops)
        return self.status(session_id)

    async def stop(self, session_id: str, reason: StopReason = StopReason.MANUAL, details: str | None = None) -> None:
        controller = self._controllers.get(session_id)
        if controller is None:
            raise ControllerNotFoundError(f"Respawn is not enabled for {session_id}")
        await controller.stop(reason, details)

    async def update_config(self, session_id: str, config: AutomationConfig | dict[str, Any]) -> AutomationConfig:
        """Replace the stored config; a running controller picks it up between steps."""
        stored = self.store.put(session_id, config)
        controller = self._controllers.get(session_id)
        if controller is not None:
            await controller.update_config(stored)
        self.events.emit("respawn:configUpdated", session_id, config=stored.model_dump(mode="json"))
        return stored

    def reset_circuit_breaker(self, session_id: str) -> CircuitBreakerState:
        """Close the breaker. Automation stays as it is."""
        state = self.breaker(session_id).reset()
        logger.info(f"[{session_id}] Circuit breaker reset")
        self.events.emit("respawn:circuitBreakerUpdate", session_id, circuitBreaker=state.model_dump(mode="json"))
        return state

    def status(self, session_id: str) -> RespawnStatus:
        controller = self._controllers.get(session_id)
        tracker = self._metrics.get(session_id)
        return RespawnStatus(
            session_id=session_id,
            enabled=controller is not None and controller.is_running,
            controller=controller.state.model_copy() if controller else None,
            config=controller.config if controller else self.store.get(session_id),
            detection=controller.engine.snapshot if controller else None,
            circuit_breaker=self.breaker(session_id).state,
            timers=self.timers.list(session_id),
            metrics=tracker.aggregate if tracker else None,
            health=self._health(session_id) if tracker else None,
        )

    def metrics(self, session_id: str, limit: int = 20) -> RespawnMetrics:
        """Cycle metrics of the current or most recent run."""
        tracker = self._metrics.get(session_id)
        if tracker is None:
            raise ControllerNotFoundError(f"Respawn has not run for {session_id}")
        controller = self._controllers.get(session_id)
        return RespawnMetrics(
            session_id=session_id,
            aggregate=tracker.aggregate,
            current=tracker.current,
            recent=tracker.recent(limit),
            timing=controller.timing.history(controller.config) if controller else None,
            health=self._health(session_id),
        )

    def _health(self, session_id: str) -> HealthScore:
        controller = self._controllers.get(session_id)
        if controller is not None:
            return controller.health()
        return calculate_health(self._metrics[session_id].aggregate, self.breaker(session_id).state, None)

    def list_actions(self, session_id: str) -> list[ActionLogEntry]:
        return self.action_log.list(session_id)

    def list_timers(self, session_id: str) -> list[Timer]:
        return self.timers.list(session_id)

    # ==================== Collaborator input ====================

    def handle_hook(self, session_id: str, event: str, data: dict[str, Any] | None = None) -> bool:
        """Route a hook event. Returns True if a running controller received it.

        Raises ValueError for unknown event names.
        """
        hook = HookEventType(event)
        controller = self._controllers.get(session_id)
        if controller is None or not controller.is_running:
            self.action_log.append(session_id, ActionLogEntry(type=ActionType.HOOK, detail=hook.value))
            return False
        controller.deliver_hook(hook, data)
        return True

    async def handle_session_exit(self, session_id: str) -> None:
        controller = self._controllers.get(session_id)
        if controller is not None:
            await controller.stop(StopReason.EXIT_SIGNAL, "session exited")

    async def shutdown(self) -> None:
        for controller in list(self._controllers.values()):
            await controller.stop(StopReason.MANUAL, "server shutdown")
        self.timers.shutdown()
