"""Narrow interface to the terminal session running the agent.

The controller only reads recent output, sends input and asks for the
token count. Sends are atomic per session: whoever holds the session's
lock writes the whole text plus Enter before anyone else may write.
"""

import asyncio
from abc import ABC, abstractmethod

from respawn_console.app.config import RECENT_OUTPUT_LINES, TMUX_BIN
from respawn_console.app.errors import SessionUnavailableError
from respawn_console.app.services.logging_service import get_logger
from respawn_console.app.services.output_patterns import extract_token_count

logger = get_logger(__name__)


class SessionPort(ABC):
    """What the respawn controller needs from a terminal session."""

    @abstractmethod
    async def read_recent_output(self, session_id: str, lines: int = RECENT_OUTPUT_LINES) -> str:
        """Return the last ``lines`` lines of the session's output."""

    @abstractmethod
    async def send_input(self, session_id: str, text: str, submit: bool = True) -> bool:
        """Type ``text`` (and press Enter when ``submit``). Raises SessionUnavailableError."""

    @abstractmethod
    async def get_token_count(self, session_id: str) -> int | None:
        """Current context size in tokens, if known."""

    @abstractmethod
    async def is_alive(self, session_id: str) -> bool:
        """Whether the session still exists."""


class TmuxSessionPort(SessionPort):
    """SessionPort backed by tmux sessions named after the session ID."""

    def __init__(self, tmux_bin: str = TMUX_BIN) -> None:
        self.tmux_bin = tmux_bin
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def _tmux(self, *args: str) -> tuple[int, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.tmux_bin, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise SessionUnavailableError(f"Cannot run {self.tmux_bin}: {e}") from e
        stdout, _ = await process.communicate()
        return process.returncode, stdout.decode("utf-8", errors="replace")

    async def read_recent_output(self, session_id: str, lines: int = RECENT_OUTPUT_LINES) -> str:
        code, output = await self._tmux("capture-pane", "-p", "-J", "-t", session_id, "-S", f"-{lines}")
        if code != 0:
            raise SessionUnavailableError(f"Session {session_id} is not available: {output.strip()}")
        return output

    async def send_input(self, session_id: str, text: str, submit: bool = True) -> bool:
        async with self._lock(session_id):
            if text:
                code, output = await self._tmux("send-keys", "-t", session_id, "-l", text)
                if code != 0:
                    raise SessionUnavailableError(f"Session {session_id} is not available: {output.strip()}")
            if submit:
                code, output = await self._tmux("send-keys", "-t", session_id, "Enter")
                if code != 0:
                    raise SessionUnavailableError(f"Session {session_id} is not available: {output.strip()}")
        logger.debug(f"[{session_id}] Sent input ({len(text)} chars, submit={submit})")
        return True

    async def get_token_count(self, session_id: str) -> int | None:
        return extract_token_count(await self.read_recent_output(session_id, lines=20))

    async def is_alive(self, session_id: str) -> bool:
        code, _ = await self._tmux("has-session", "-t", session_id)
        return code == 0
