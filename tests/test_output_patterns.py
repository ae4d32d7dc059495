"""Tests for terminal pattern helpers, heuristic scoring and status block parsing."""

from __future__ import annotations


class TestPatterns:
    def test_strip_ansi(self):
        from respawn_console.app.services.output_patterns import strip_ansi

        assert strip_ansi("\x1b[32m❯\x1b[0m ready") == "❯ ready"

    def test_completion_requires_worked_for(self):
        from respawn_console.app.services.output_patterns import is_completion_message

        assert is_completion_message("✻ Worked for 2m 46s")
        assert is_completion_message("worked for 1h 2m 3s")
        assert not is_completion_message("wait for 5s")
        assert not is_completion_message("run for 2m")

    def test_extract_token_count(self):
        from respawn_console.app.services.output_patterns import extract_token_count

        assert extract_token_count("context: 123.4k tokens") == 123400
        assert extract_token_count("1.5M tokens used") == 1500000
        assert extract_token_count("812 tokens") == 812
        assert extract_token_count("no counts here") is None

    def test_extract_token_count_uses_last_match(self):
        from respawn_console.app.services.output_patterns import extract_token_count

        assert extract_token_count("10k tokens\n...\n42k tokens") == 42000

    def test_plan_prompt(self):
        from respawn_console.app.services.output_patterns import is_plan_prompt

        menu = "Would you like to proceed?\n❯ 1. Yes\n  2. No, keep planning\n"
        assert is_plan_prompt(menu)
        assert not is_plan_prompt("❯ ")
        assert not is_plan_prompt("1. first step\n2. second step")

    def test_fingerprint_ignores_ansi_and_trailing_space(self):
        from respawn_console.app.services.output_patterns import fingerprint

        assert fingerprint("\x1b[1mhello\x1b[0m\n\n") == fingerprint("hello")
        assert fingerprint("hello") != fingerprint("hello world")


class TestScoreOutput:
    def _score(self, output: str, silence_ms: int, idle_timeout_ms: int = 10000, no_output_timeout_ms: int = 30000):
        from respawn_console.app.services.output_patterns import score_output

        return score_output(output, silence_ms, idle_timeout_ms, no_output_timeout_ms)

    def test_working_spinner_is_low(self):
        score = self._score("⠋ Thinking… (esc to interrupt)", silence_ms=500)
        assert score.working is True
        assert score.confidence < 50

    def test_stale_working_word_does_not_count_once_silent(self):
        score = self._score("Reading file.py\n❯ ", silence_ms=20000)
        assert score.working is False
        assert score.confidence >= 50

    def test_silence_and_prompt_is_ambiguous(self):
        score = self._score("done.\n❯ ", silence_ms=10000)
        assert score.confidence == 80
        assert score.prompt is True

    def test_completion_message_saturates(self):
        score = self._score("✻ Worked for 1m 12s\n❯ ", silence_ms=10000)
        assert score.confidence == 100
        assert score.completion is True

    def test_no_output_timeout_is_conclusive(self):
        score = self._score("⠋ Thinking", silence_ms=30000)
        assert score.confidence == 100

    def test_fresh_output_scores_low(self):
        score = self._score("partial answer", silence_ms=0)
        assert score.confidence == 0


class TestStatusParser:
    BLOCK = (
        "some output\n"
        "---RALPH_STATUS---\n"
        "STATUS: {status}\n"
        "TASKS_COMPLETED_THIS_LOOP: 2\n"
        "FILES_MODIFIED: 5\n"
        "EXIT_SIGNAL: {exit}\n"
        "RECOMMENDATION: fix the flaky test\n"
        "---END_RALPH_STATUS---\n"
    )

    def test_parses_fields(self):
        from respawn_console.app.services.status_parser import parse_status_block

        block = parse_status_block(self.BLOCK.format(status="IN_PROGRESS", exit="false"))
        assert block is not None
        assert block.status == "IN_PROGRESS"
        assert block.tasks_completed == 2
        assert block.files_modified == 5
        assert block.exit_signal is False
        assert block.recommendation == "fix the flaky test"

    def test_exit_signal_and_blocked(self):
        from respawn_console.app.services.status_parser import parse_status_block

        assert parse_status_block(self.BLOCK.format(status="COMPLETE", exit="true")).exit_signal is True
        assert parse_status_block(self.BLOCK.format(status="blocked", exit="false")).status == "BLOCKED"

    def test_last_block_wins(self):
        from respawn_console.app.services.status_parser import parse_status_block

        text = self.BLOCK.format(status="BLOCKED", exit="false") + self.BLOCK.format(status="COMPLETE", exit="false")
        assert parse_status_block(text).status == "COMPLETE"

    def test_incomplete_block_ignored(self):
        from respawn_console.app.services.status_parser import parse_status_block

        assert parse_status_block("---RALPH_STATUS---\nSTATUS: BLOCKED\n") is None
        assert parse_status_block("nothing") is None
