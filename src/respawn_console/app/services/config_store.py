"""Per-session automation config store.

Configs are stored as JSON files in ~/.respawn-console/respawn-configs/ and
always replaced as a whole. Anything that fails validation is rejected with
InvalidConfigError before it can reach a controller.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from respawn_console.app.config import RESPAWN_CONFIGS_DIR, ensure_directories
from respawn_console.app.errors import InvalidConfigError, PresetNotFoundError
from respawn_console.app.models.automation import AutomationConfig
from respawn_console.app.models.preset import BuiltInPreset, CustomPreset, PresetCreate
from respawn_console.app.services.logging_service import get_logger
from respawn_console.app.services.preset_storage_service import PresetStorageService, preset_storage_service
from respawn_console.app.utils.paths import safe_filename

logger = get_logger(__name__)


def validate_config(config: AutomationConfig | dict[str, Any]) -> AutomationConfig:
    """Return a validated, independent AutomationConfig."""
    if isinstance(config, AutomationConfig):
        config = config.model_dump()
    try:
        return AutomationConfig.model_validate(config)
    except ValidationError as e:
        raise InvalidConfigError(str(e)) from e


class ConfigStore:
    """Automation configs per session, plus preset operations."""

    def __init__(self, presets: PresetStorageService | None = None) -> None:
        ensure_directories()
        self._presets = presets or preset_storage_service

    def _config_file(self, session_id: str) -> Path:
        return RESPAWN_CONFIGS_DIR / f"{safe_filename(session_id)}.json"

    def get(self, session_id: str) -> AutomationConfig:
        """Stored config for a session, or defaults."""
        f = self._config_file(session_id)
        if not f.exists():
            return AutomationConfig()
        try:
            return AutomationConfig.model_validate(json.loads(f.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, IOError, ValueError) as e:
            logger.warning(f"[{session_id}] Stored respawn config unreadable, using defaults: {e}")
            return AutomationConfig()

    def put(self, session_id: str, config: AutomationConfig | dict[str, Any]) -> AutomationConfig:
        """Replace a session's config as a whole."""
        validated = validate_config(config)
        self._config_file(session_id).write_text(validated.model_dump_json(indent=2), encoding="utf-8")
        return validated

    def clear(self, session_id: str) -> bool:
        f = self._config_file(session_id)
        if not f.exists():
            return False
        f.unlink()
        return True

    # ==================== Presets ====================

    def list_presets(self) -> list[BuiltInPreset | CustomPreset]:
        return self._presets.list_presets()

    def get_preset(self, preset_id: str) -> BuiltInPreset | CustomPreset:
        preset = self._presets.load_preset(preset_id)
        if preset is None:
            raise PresetNotFoundError(f"Preset {preset_id} not found")
        return preset

    def save_preset(
        self,
        config: AutomationConfig | dict[str, Any],
        name: str,
        duration_minutes: int | None = None,
        description: str = "",
    ) -> CustomPreset:
        try:
            request = PresetCreate(
                name=name,
                description=description,
                config=validate_config(config),
                duration_minutes=duration_minutes,
            )
        except ValidationError as e:
            raise InvalidConfigError(str(e)) from e
        return self._presets.create_preset(request)

    def delete_preset(self, preset_id: str) -> None:
        self._presets.delete_preset(preset_id)

    def apply_preset(self, session_id: str, preset_id: str) -> tuple[AutomationConfig, int | None]:
        """Copy a preset's config onto a session. Returns the config and the preset's run length."""
        preset = self.get_preset(preset_id)
        config = self.put(session_id, preset.config.model_copy(deep=True))
        logger.info(f"[{session_id}] Applied preset {preset.id} ({preset.name})")
        return config, preset.duration_minutes


# Singleton instance
config_store = ConfigStore()
