"""Auto-compact / auto-clear settings API routes."""

from fastapi import APIRouter, Request

from respawn_console.app.models.context_limits import ContextLimits, ContextLimitsStatus

router = APIRouter(prefix="/sessions/{session_id}/context-limits", tags=["context-limits"])


@router.get("", response_model=ContextLimitsStatus)
async def get_context_limits(request: Request, session_id: str) -> ContextLimitsStatus:
    """Get token-threshold watcher settings for a session."""
    return request.app.state.context_limits_service.get(session_id)


@router.put("", response_model=ContextLimitsStatus)
async def update_context_limits(request: Request, session_id: str, body: ContextLimits) -> ContextLimitsStatus:
    """Replace token-threshold watcher settings for a session."""
    return request.app.state.context_limits_service.set(session_id, body)
