"""Terminal output patterns and heuristic idle scoring.

Pure functions over the recent output window of a session. The detection
engine turns the score into a DetectionSnapshot.
"""

import hashlib
import re
from dataclasses import dataclass

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")

# "Worked for 2m 46s", not "wait for 5s"
COMPLETION_PATTERN = re.compile(r"\bWorked\s+for\s+\d+[hms](\s*\d+[hms])*", re.IGNORECASE)

TOKEN_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*([kKmM])?\s+tokens\b")

# Numbered selection menu with the selector on an option
PLAN_SELECTOR_PATTERN = re.compile(r"^\s*[❯>]\s*1\.\s+\S", re.MULTILINE)
PLAN_OPTION_PATTERN = re.compile(r"^\s*2\.\s+\S", re.MULTILINE)

PROMPT_PATTERNS = ("❯", "⏵")

WORKING_PATTERNS = (
    "Thinking", "Writing", "Reading", "Running", "Searching", "Editing",
    "Creating", "Deleting", "Analyzing", "Executing", "Synthesizing", "Brewing",
    "Compiling", "Building", "Installing", "Fetching", "Downloading",
    "Processing", "Generating", "Loading", "Starting", "Updating", "Checking",
    "Validating", "Testing", "Formatting", "Linting",
    # Spinners
    "⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏",
    "◐", "◓", "◑", "◒",
    "⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷",
)

# Lines at the bottom of the window that count as "current" activity
TAIL_LINES = 6

WORKING_CONFIDENCE = 5
SILENCE_WEIGHT = 60
PROMPT_WEIGHT = 20
COMPLETION_WEIGHT = 20


@dataclass
class HeuristicScore:
    confidence: int
    status_text: str
    working: bool
    prompt: bool
    completion: bool
    plan_prompt: bool


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_PATTERN.sub("", text)


def tail(text: str, lines: int = TAIL_LINES) -> str:
    non_empty = [line for line in text.splitlines() if line.strip()]
    return "\n".join(non_empty[-lines:])


def has_working_pattern(window: str) -> bool:
    return any(pattern in window for pattern in WORKING_PATTERNS)


def has_prompt(window: str) -> bool:
    return any(pattern in window for pattern in PROMPT_PATTERNS)


def is_completion_message(text: str) -> bool:
    return bool(COMPLETION_PATTERN.search(text))


def is_plan_prompt(window: str) -> bool:
    return bool(PLAN_SELECTOR_PATTERN.search(window) and PLAN_OPTION_PATTERN.search(window))


def extract_token_count(text: str) -> int | None:
    """Last "123.4k tokens" style count in the text, if any."""
    matches = TOKEN_PATTERN.findall(text)
    if not matches:
        return None
    value, suffix = matches[-1]
    count = float(value)
    if suffix.lower() == "k":
        count *= 1000
    elif suffix.lower() == "m":
        count *= 1_000_000
    return round(count)


def fingerprint(text: str) -> str:
    """Stable digest of the visible output, used to detect change."""
    return hashlib.sha1(strip_ansi(text).rstrip().encode("utf-8")).hexdigest()


def score_output(
    output: str,
    silence_ms: int,
    idle_timeout_ms: int,
    no_output_timeout_ms: int,
) -> HeuristicScore:
    """Score how idle the agent looks, 0..100."""
    clean = strip_ansi(output)
    window = tail(clean)
    working = has_working_pattern(window) and silence_ms < idle_timeout_ms
    prompt = has_prompt(window)
    completion = is_completion_message(window)
    plan_prompt = is_plan_prompt(window)

    if silence_ms >= no_output_timeout_ms:
        return HeuristicScore(100, f"no output for {silence_ms // 1000}s", working, prompt, completion, plan_prompt)

    if working:
        return HeuristicScore(WORKING_CONFIDENCE, "working", True, prompt, completion, plan_prompt)

    confidence = int(SILENCE_WEIGHT * min(1.0, silence_ms / max(idle_timeout_ms, 1)))
    reasons = [f"silent {silence_ms // 1000}s"]
    if prompt:
        confidence += PROMPT_WEIGHT
        reasons.append("prompt visible")
    if completion:
        confidence += COMPLETION_WEIGHT
        reasons.append("completion message")

    return HeuristicScore(min(confidence, 100), ", ".join(reasons), False, prompt, completion, plan_prompt)
