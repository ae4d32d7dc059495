"""Parse the status block an agent prints at the end of a loop iteration.

    ---RALPH_STATUS---
    STATUS: IN_PROGRESS
    TASKS_COMPLETED_THIS_LOOP: 2
    FILES_MODIFIED: 3
    EXIT_SIGNAL: false
    RECOMMENDATION: continue with the parser
    ---END_RALPH_STATUS---
"""

import re

from respawn_console.app.models.detection import AgentStatusBlock

BLOCK_PATTERN = re.compile(r"^---RALPH_STATUS---\s*$(.*?)^---END_RALPH_STATUS---\s*$", re.DOTALL | re.MULTILINE)
STATUS_PATTERN = re.compile(r"^STATUS:\s*(IN_PROGRESS|COMPLETE|BLOCKED)\s*$", re.IGNORECASE)
TASKS_PATTERN = re.compile(r"^TASKS_COMPLETED_THIS_LOOP:\s*(\d+)\s*$", re.IGNORECASE)
FILES_PATTERN = re.compile(r"^FILES_MODIFIED:\s*(\d+)\s*$", re.IGNORECASE)
EXIT_SIGNAL_PATTERN = re.compile(r"^EXIT_SIGNAL:\s*(true|false)\s*$", re.IGNORECASE)
RECOMMENDATION_PATTERN = re.compile(r"^RECOMMENDATION:\s*(.+)$", re.IGNORECASE)


def parse_status_block(output: str) -> AgentStatusBlock | None:
    """Return the most recent complete status block in ``output``, if any."""
    blocks = BLOCK_PATTERN.findall(output)
    if not blocks:
        return None

    result = AgentStatusBlock()
    for line in blocks[-1].splitlines():
        line = line.strip()
        if not line:
            continue

        match = STATUS_PATTERN.match(line)
        if match:
            result.status = match.group(1).upper()
            continue
        match = TASKS_PATTERN.match(line)
        if match:
            result.tasks_completed = int(match.group(1))
            continue
        match = FILES_PATTERN.match(line)
        if match:
            result.files_modified = int(match.group(1))
            continue
        match = EXIT_SIGNAL_PATTERN.match(line)
        if match:
            result.exit_signal = match.group(1).lower() == "true"
            continue
        match = RECOMMENDATION_PATTERN.match(line)
        if match:
            result.recommendation = match.group(1).strip()

    return result
