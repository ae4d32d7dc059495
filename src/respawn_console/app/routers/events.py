"""Lifecycle event stream (SSE)."""

from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Query, Request

from respawn_console.app.utils.sse import sse_response

router = APIRouter(prefix="/events", tags=["events"])


@router.get("")
async def stream_events(
    request: Request,
    session_id: Optional[str] = Query(default=None, description="Only events for this session"),
):
    """Stream respawn lifecycle events as server-sent events."""
    events = request.app.state.respawn_service.events

    async def generator() -> AsyncGenerator[tuple[str, dict], None]:
        queue = events.subscribe()
        try:
            while True:
                event, payload = await queue.get()
                if session_id and payload.get("sessionId") != session_id:
                    continue
                yield event, payload
        finally:
            events.unsubscribe(queue)

    return await sse_response(generator())
