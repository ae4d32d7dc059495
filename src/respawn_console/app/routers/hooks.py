"""Hook event API route.

The agent's lifecycle hooks POST here (idle_prompt, permission_prompt,
elicitation_dialog, stop).
"""

from fastapi import APIRouter, HTTPException, Request

from respawn_console.app.models.respawn import HookEventRequest

router = APIRouter(prefix="/hook-event", tags=["hooks"])


@router.post("")
async def receive_hook_event(request: Request, body: HookEventRequest) -> dict:
    """Deliver a hook event to the session's respawn controller."""
    service = request.app.state.respawn_service
    try:
        delivered = service.handle_hook(body.session_id, body.event, body.data)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown hook event: {body.event}")
    return {"ok": True, "delivered": delivered}
