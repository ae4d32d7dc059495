"""Logging for the server and for each automated session.

Every respawn controller runs its actor task (and its AI check tasks) with
the session ID stored in a context variable. Records emitted under that
context go to the session's own file; everything else goes to server.log.

    ~/.respawn-console/logs/
    ├── server.log
    └── sessions/
        └── {session_id}.log
"""

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

from respawn_console.app.config import LOGS_DIR
from respawn_console.app.utils.paths import safe_filename

_current_session_id: ContextVar[Optional[str]] = ContextVar("respawn_session_id", default=None)

SESSION_LOGS_DIR = LOGS_DIR / "sessions"
SERVER_LOG_FILE = LOGS_DIR / "server.log"

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "%(levelname)-7s | %(name)s - %(message)s"

# Loggers that are chatty at INFO
QUIET_LOGGERS = ("uvicorn.access", "sse_starlette.sse", "apscheduler", "tzlocal")


def session_log_path(session_id: str) -> Path:
    return SESSION_LOGS_DIR / f"{safe_filename(session_id)}.log"


class SessionFileHandler(logging.Handler):
    """Routes each record to server.log or to the current session's file."""

    def __init__(self):
        super().__init__()
        SESSION_LOGS_DIR.mkdir(parents=True, exist_ok=True)
        self._formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)
        self._server = self._open(SERVER_LOG_FILE)
        self._sessions: dict[str, logging.FileHandler] = {}

    def _open(self, path: Path) -> logging.FileHandler:
        handler = logging.FileHandler(path, encoding="utf-8", delay=True)
        handler.setFormatter(self._formatter)
        return handler

    def emit(self, record: logging.LogRecord) -> None:
        session_id = _current_session_id.get()
        try:
            if session_id is None:
                self._server.emit(record)
                return
            handler = self._sessions.get(session_id)
            if handler is None:
                handler = self._sessions[session_id] = self._open(session_log_path(session_id))
            handler.emit(record)
        except Exception:
            self.handleError(record)

    def close_session(self, session_id: str) -> None:
        """Release a session's file once its controller has stopped."""
        handler = self._sessions.pop(session_id, None)
        if handler is not None:
            handler.close()

    def close(self) -> None:
        self._server.close()
        for handler in self._sessions.values():
            handler.close()
        self._sessions.clear()
        super().close()


_file_handler: Optional[SessionFileHandler] = None


def set_session_context(session_id: Optional[str]) -> None:
    """Attribute log records from the current task to ``session_id``."""
    _current_session_id.set(session_id)


def close_session_log(session_id: str) -> None:
    if _file_handler is not None:
        _file_handler.close_session(session_id)


def setup_logging(level: int = logging.INFO) -> None:
    """Install the console and file handlers on the root logger.

    Safe to call again: previous handlers are replaced.
    """
    global _file_handler

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    # Terminal output carries spinner glyphs, so the console stream must be UTF-8
    try:
        stream = open(sys.stdout.fileno(), mode="w", encoding="utf-8", errors="replace", closefd=False)
    except (AttributeError, OSError):
        stream = sys.stdout
    console = logging.StreamHandler(stream)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    _file_handler = SessionFileHandler()
    root.addHandler(_file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging initialized. Logs dir: {LOGS_DIR}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _read_lines(path: Path, tail: Optional[int], level: Optional[str]) -> list[str]:
    if not path.exists():
        return []
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    if level:
        marker = f"| {level.upper()}"
        lines = [line for line in lines if marker in line]
    if tail:
        lines = lines[-tail:]
    return lines


def read_session_logs(session_id: str, tail: Optional[int] = None, level: Optional[str] = None) -> list[str]:
    """Lines from a session's controller log, optionally filtered by level."""
    return _read_lines(session_log_path(session_id), tail, level)


def read_server_logs(tail: Optional[int] = 100, level: Optional[str] = None) -> list[str]:
    """Lines from server.log, optionally filtered by level."""
    return _read_lines(SERVER_LOG_FILE, tail, level)
