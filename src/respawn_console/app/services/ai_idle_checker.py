"""AI confirmation of ambiguous idle readings.

Spawns a fresh, non-interactive CLI agent (``claude -p``) that reads the
session's recent output and answers IDLE or WORKING on its first line.
"""

import asyncio
import re
from abc import ABC, abstractmethod

from respawn_console.app.config import CLAUDE_CLI
from respawn_console.app.errors import AiCheckError
from respawn_console.app.models.detection import AiVerdict
from respawn_console.app.services.logging_service import get_logger

logger = get_logger(__name__)

VERDICT_PATTERN = re.compile(r"^\s*(IDLE|WORKING)\b", re.IGNORECASE)

AI_IDLE_CHECK_PROMPT = """Analyze this output from a running Claude Code session. Determine whether the agent has FINISHED its turn and is waiting for input, or is still WORKING.

The agent is IDLE when:
- Its last response is complete and the input prompt is waiting
- A summary such as "Worked for 2m 3s" follows the final message
- Nothing is being generated, no tool is running

The agent is WORKING when:
- A spinner or progress verb ("Thinking", "Running", "Reading") is at the bottom
- A tool call or subagent is still running
- Output stops mid-sentence or mid-code-block (network lag or a long tool call)

Session output (most recent at bottom):
---
{CONTEXT}
---

Answer with EXACTLY one of these on the first line: IDLE or WORKING
Then optionally explain briefly why."""


def parse_verdict(output: str) -> AiVerdict:
    """Read the verdict from the first non-empty line of the checker output."""
    for line in output.splitlines():
        if not line.strip():
            continue
        match = VERDICT_PATTERN.match(line)
        if not match:
            raise AiCheckError(f"Unparseable verdict: {line.strip()[:80]!r}")
        return AiVerdict(match.group(1).upper())
    raise AiCheckError("Empty response from idle checker")


class AiIdleChecker(ABC):
    """Something that can tell whether the agent behind some output is idle."""

    @abstractmethod
    async def check(self, context: str, model: str) -> AiVerdict:
        """Return the verdict. Raises AiCheckError on any failure."""


class ClaudeCliIdleChecker(AiIdleChecker):
    def __init__(self, executable: str = CLAUDE_CLI) -> None:
        self.executable = executable

    async def check(self, context: str, model: str) -> AiVerdict:
        prompt = AI_IDLE_CHECK_PROMPT.replace("{CONTEXT}", context)
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable, "-p", "--model", model,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AiCheckError(f"Failed to start {self.executable}: {e}") from e

        try:
            stdout, stderr = await process.communicate(prompt.encode("utf-8"))
        except asyncio.CancelledError:
            # Timed out or superseded: don't leave the checker running
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:200]
            raise AiCheckError(f"{self.executable} exited with {process.returncode}: {detail}")

        verdict = parse_verdict(stdout.decode("utf-8", errors="replace"))
        logger.debug(f"AI idle check verdict: {verdict.value}")
        return verdict
