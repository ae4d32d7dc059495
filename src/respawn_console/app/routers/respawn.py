"""Respawn automation API routes."""

from fastapi import APIRouter, HTTPException, Query, Request

from respawn_console.app.errors import (
    CircuitOpenError,
    ControllerNotFoundError,
    InvalidConfigError,
    PresetNotFoundError,
    SessionUnavailableError,
)
from respawn_console.app.models.automation import AutomationConfig, RespawnEnableRequest
from respawn_console.app.models.metrics import RespawnMetrics
from respawn_console.app.models.respawn import ActionLogEntry, CircuitBreakerState, RespawnStatus, Timer
from respawn_console.app.services.respawn_service import RespawnService

router = APIRouter(prefix="/sessions/{session_id}/respawn", tags=["respawn"])


def _service(request: Request) -> RespawnService:
    return request.app.state.respawn_service


@router.get("", response_model=RespawnStatus)
async def get_status(request: Request, session_id: str) -> RespawnStatus:
    """Get automation status for a session."""
    return _service(request).status(session_id)


@router.post("/enable", response_model=RespawnStatus)
async def enable(request: Request, session_id: str, body: RespawnEnableRequest | None = None) -> RespawnStatus:
    """Enable automation, optionally with a new config or a preset."""
    body = body or RespawnEnableRequest()
    try:
        return await _service(request).enable(
            session_id,
            config=body.config,
            duration_minutes=body.duration_minutes,
            preset_id=body.preset_id,
        )
    except CircuitOpenError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PresetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/stop", response_model=RespawnStatus)
async def stop(request: Request, session_id: str) -> RespawnStatus:
    """Stop automation for a session."""
    service = _service(request)
    try:
        await service.stop(session_id)
    except ControllerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return service.status(session_id)


@router.get("/config", response_model=AutomationConfig)
async def get_config(request: Request, session_id: str) -> AutomationConfig:
    """Get the stored automation config."""
    return _service(request).store.get(session_id)


@router.put("/config", response_model=AutomationConfig)
async def update_config(request: Request, session_id: str, body: AutomationConfig) -> AutomationConfig:
    """Replace the automation config as a whole."""
    try:
        return await _service(request).update_config(session_id, body)
    except InvalidConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/config")
async def reset_config(request: Request, session_id: str) -> dict:
    """Forget the stored config so defaults apply again."""
    service = _service(request)
    if service.get_controller(session_id) is not None:
        raise HTTPException(status_code=409, detail="Stop automation before resetting its config")
    if not service.store.clear(session_id):
        raise HTTPException(status_code=404, detail=f"No stored config for {session_id}")
    return {"status": "deleted"}


@router.post("/circuit-breaker/reset", response_model=CircuitBreakerState)
async def reset_circuit_breaker(request: Request, session_id: str) -> CircuitBreakerState:
    """Close the circuit breaker. Does not re-enable automation."""
    return _service(request).reset_circuit_breaker(session_id)


@router.get("/actions", response_model=list[ActionLogEntry])
async def list_actions(request: Request, session_id: str) -> list[ActionLogEntry]:
    """Recent interesting automation actions, newest first."""
    return _service(request).list_actions(session_id)


@router.get("/metrics", response_model=RespawnMetrics)
async def get_metrics(
    request: Request, session_id: str, limit: int = Query(default=20, ge=1, le=100, description="Recent cycles to include")
) -> RespawnMetrics:
    """Cycle metrics, adaptive timing and health of the current or last run."""
    try:
        return _service(request).metrics(session_id, limit=limit)
    except ControllerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/timers", response_model=list[Timer])
async def list_timers(request: Request, session_id: str) -> list[Timer]:
    """Running timers for a session."""
    return _service(request).list_timers(session_id)
