"""Log viewing API routes."""

from typing import Optional

from fastapi import APIRouter, Query

from respawn_console.app.services.logging_service import read_server_logs, read_session_logs

router = APIRouter(prefix="/logs", tags=["logs"])

LEVEL_QUERY = Query(default=None, description="Only lines at this level (DEBUG, INFO, WARNING, ERROR)")


@router.get("/server")
async def get_server_logs(
    tail: int = Query(default=100, ge=1, le=10000, description="Number of trailing lines"),
    level: Optional[str] = LEVEL_QUERY,
) -> dict:
    """Recent server log lines (startup, routing, anything outside a session)."""
    lines = read_server_logs(tail=tail, level=level)
    return {"lines": lines, "count": len(lines)}


@router.get("/sessions/{session_id}")
async def get_session_logs(
    session_id: str,
    tail: Optional[int] = Query(default=None, ge=1, le=10000, description="Number of trailing lines"),
    level: Optional[str] = LEVEL_QUERY,
) -> dict:
    """Controller log of one session: transitions, sends, checks, stop reasons."""
    lines = read_session_logs(session_id, tail=tail, level=level)
    return {"session_id": session_id, "lines": lines, "count": len(lines)}
