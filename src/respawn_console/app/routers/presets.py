"""Automation preset API routes."""

from fastapi import APIRouter, HTTPException, Request

from respawn_console.app.errors import InvalidConfigError, PresetNotFoundError, PresetPermissionError
from respawn_console.app.models.automation import AutomationConfig
from respawn_console.app.models.preset import CustomPreset, Preset, PresetCreate

router = APIRouter(prefix="/presets", tags=["presets"])


@router.get("", response_model=list[Preset])
async def list_presets(request: Request):
    """List built-in presets followed by custom presets."""
    return request.app.state.respawn_service.store.list_presets()


@router.post("", response_model=CustomPreset, status_code=201)
async def create_preset(request: Request, body: PresetCreate) -> CustomPreset:
    """Save a config as a custom preset."""
    try:
        return request.app.state.respawn_service.store.save_preset(
            body.config, body.name, duration_minutes=body.duration_minutes, description=body.description
        )
    except InvalidConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{preset_id}", response_model=Preset)
async def get_preset(request: Request, preset_id: str):
    """Get a preset by ID."""
    try:
        return request.app.state.respawn_service.store.get_preset(preset_id)
    except PresetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{preset_id}")
async def delete_preset(request: Request, preset_id: str) -> dict:
    """Delete a custom preset. Built-in presets are rejected."""
    try:
        request.app.state.respawn_service.store.delete_preset(preset_id)
    except PresetPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except PresetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "deleted"}


@router.post("/{preset_id}/apply/{session_id}", response_model=AutomationConfig)
async def apply_preset(request: Request, preset_id: str, session_id: str) -> AutomationConfig:
    """Copy a preset's config onto a session without enabling automation."""
    service = request.app.state.respawn_service
    try:
        preset = service.store.get_preset(preset_id)
    except PresetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return await service.update_config(session_id, preset.config.model_copy(deep=True))
