"""Configuration and constants."""

import os
from pathlib import Path

# Base storage directory
APP_HOME = Path(os.environ.get("RESPAWN_CONSOLE_HOME", Path.home() / ".respawn-console"))

# Sub-directories
RESPAWN_CONFIGS_DIR = APP_HOME / "respawn-configs"
PRESETS_DIR = APP_HOME / "presets"
LOGS_DIR = APP_HOME / "logs"

# Defaults for a session's automation config (mirrors the CLI agent's own defaults)
DEFAULT_UPDATE_PROMPT = "update all the docs and CLAUDE.md"
DEFAULT_INIT_PROMPT = "/init"
DEFAULT_CLEAR_COMMAND = "/clear"
DEFAULT_AI_CHECK_MODEL = "claude-opus-4-5-20251101"

# Executable used for the AI idle confirmation check
CLAUDE_CLI = os.environ.get("RESPAWN_CLAUDE_CLI", "claude")

# tmux executable used by the session adapter
TMUX_BIN = os.environ.get("RESPAWN_TMUX_BIN", "tmux")

# Number of terminal lines captured for detection
RECENT_OUTPUT_LINES = 200

# Action log ring buffer size per session
ACTION_LOG_LIMIT = 30

# Finished cycles kept in memory per session
CYCLE_METRICS_LIMIT = 100

# Adaptive timing: rolling window size and samples needed before it adjusts
ADAPTIVE_TIMING_SAMPLES = 20
ADAPTIVE_TIMING_MIN_SAMPLES = 5

# Upper bound on the detection poll interval
DETECTION_POLL_MAX_MS = 1000

# API settings
API_PREFIX = "/api"


def ensure_directories() -> None:
    """Create required directories if they don't exist."""
    for directory in [APP_HOME, RESPAWN_CONFIGS_DIR, PRESETS_DIR, LOGS_DIR]:
        directory.mkdir(parents=True, exist_ok=True)
