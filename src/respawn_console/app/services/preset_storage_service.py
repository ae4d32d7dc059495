"""Preset storage service.

Built-in presets live in code. Custom presets are stored as JSON files in
~/.respawn-console/presets/.
"""

import uuid
from pathlib import Path

from respawn_console.app.config import PRESETS_DIR, ensure_directories
from respawn_console.app.errors import PresetNotFoundError, PresetPermissionError
from respawn_console.app.models.preset import BUILTIN_PRESETS, BuiltInPreset, CustomPreset, PresetCreate
from respawn_console.app.services.logging_service import get_logger
from respawn_console.app.utils.paths import is_safe_filename

logger = get_logger(__name__)


class PresetStorageService:
    """Handles custom preset persistence and the built-in preset library."""

    def __init__(self) -> None:
        ensure_directories()
        self._builtins = {preset.id: preset for preset in BUILTIN_PRESETS}

    def _preset_file(self, preset_id: str) -> Path | None:
        """Path of a custom preset, or None for IDs that are not a plain file name."""
        if not is_safe_filename(preset_id):
            return None
        return PRESETS_DIR / f"{preset_id}.json"

    def save_preset(self, preset: CustomPreset) -> None:
        """Save a custom preset to disk."""
        self._preset_file(preset.id).write_text(
            preset.model_dump_json(indent=2), encoding="utf-8"
        )

    def load_preset(self, preset_id: str) -> BuiltInPreset | CustomPreset | None:
        """Load a preset by ID. Built-ins win over files."""
        if preset_id in self._builtins:
            return self._builtins[preset_id]
        f = self._preset_file(preset_id)
        if f is None or not f.exists():
            return None
        try:
            return CustomPreset.model_validate_json(f.read_text(encoding="utf-8"))
        except (IOError, ValueError) as e:
            logger.warning(f"Unreadable preset file {f.name}: {e}")
            return None

    def list_presets(self) -> list[BuiltInPreset | CustomPreset]:
        """Built-ins first, then custom presets oldest first."""
        custom = []
        if PRESETS_DIR.exists():
            for f in PRESETS_DIR.glob("*.json"):
                try:
                    custom.append(CustomPreset.model_validate_json(f.read_text(encoding="utf-8")))
                except (IOError, ValueError) as e:
                    logger.warning(f"Skipping unreadable preset file {f.name}: {e}")
        custom.sort(key=lambda p: p.created_at)
        return [*self._builtins.values(), *custom]

    def create_preset(self, request: PresetCreate) -> CustomPreset:
        """Create a new custom preset."""
        preset = CustomPreset(
            id=f"custom-{uuid.uuid4().hex[:8]}",
            name=request.name,
            description=request.description,
            config=request.config.model_copy(deep=True),
            duration_minutes=request.duration_minutes,
        )
        self.save_preset(preset)
        logger.info(f"Saved preset {preset.id} ({preset.name})")
        return preset

    def delete_preset(self, preset_id: str) -> None:
        """Delete a custom preset. Built-ins cannot be deleted."""
        if preset_id in self._builtins:
            raise PresetPermissionError(f"Built-in preset {preset_id} cannot be deleted")
        f = self._preset_file(preset_id)
        if f is None or not f.exists():
            raise PresetNotFoundError(f"Preset {preset_id} not found")
        f.unlink()
        logger.info(f"Deleted preset {preset_id}")


# Singleton instance
preset_storage_service = PresetStorageService()
