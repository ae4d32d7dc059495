"""Tests for DetectionEngine: hook override, AI confirmation and its failure modes."""

from __future__ import annotations

import asyncio

from fakes import EventRecorder, FakeSessionPort, StubIdleChecker


def _make_engine(checker=None, output="❯ ", **config):
    from respawn_console.app.models.automation import AutomationConfig
    from respawn_console.app.services.detection_engine import DetectionEngine
    from respawn_console.app.services.event_bus import EventBus
    from respawn_console.app.services.timer_manager import TimerManager

    bus = EventBus()
    recorder = EventRecorder(bus)
    timers = TimerManager(bus)
    port = FakeSessionPort(output=output)
    engine = DetectionEngine("s1", AutomationConfig(**config), port, timers, bus, checker)
    return engine, port, timers, recorder


def _ambiguous():
    from respawn_console.app.models.detection import DetectionSnapshot
    return DetectionSnapshot(confidence_level=50, status_text="silent 5s")


class TestEvaluate:
    def test_fresh_output_is_not_idle(self):
        async def _run():
            engine, _, timers, _ = _make_engine(output="⠋ Thinking… (esc to interrupt)")
            snapshot = await engine.evaluate()
            assert snapshot.working_detected is True
            assert snapshot.confidence_level < 50
            assert not engine.is_conclusive(snapshot)
            timers.shutdown()
        asyncio.run(_run())

    def test_hook_overrides_heuristics_once(self):
        from respawn_console.app.models.detection import DetectionSource, HookSignal

        async def _run():
            engine, _, timers, _ = _make_engine(output="⠋ Thinking")
            engine.record_hook(HookSignal.STOP)
            assert engine.has_pending_hook()
            snapshot = await engine.evaluate()
            assert snapshot.confidence_level == 100
            assert snapshot.source == DetectionSource.HOOK
            assert snapshot.hook_signal == HookSignal.STOP
            assert engine.is_conclusive(snapshot)
            # Consumed by the evaluation
            assert not engine.has_pending_hook()
            again = await engine.evaluate()
            assert again.source == DetectionSource.HEURISTIC
            assert again.confidence_level < 100
            timers.shutdown()
        asyncio.run(_run())

    def test_status_block_parsed(self):
        async def _run():
            output = "---RALPH_STATUS---\nSTATUS: BLOCKED\nEXIT_SIGNAL: false\n---END_RALPH_STATUS---\n❯ "
            engine, _, timers, _ = _make_engine(output=output)
            snapshot = await engine.evaluate()
            assert snapshot.status_block.status == "BLOCKED"
            timers.shutdown()
        asyncio.run(_run())

    def test_detection_update_emitted_on_change_only(self):
        async def _run():
            engine, _, timers, recorder = _make_engine(output="⠋ Thinking")
            await engine.evaluate()
            await engine.evaluate()
            assert len(recorder.named("respawn:detectionUpdate")) == 1
            timers.shutdown()
        asyncio.run(_run())

    def test_confidence_bands(self):
        from respawn_console.app.models.detection import DetectionSnapshot, DetectionSource

        engine, _, timers, _ = _make_engine()
        assert engine.is_ambiguous(DetectionSnapshot(confidence_level=50))
        assert engine.is_ambiguous(DetectionSnapshot(confidence_level=84))
        assert not engine.is_ambiguous(DetectionSnapshot(confidence_level=85))
        assert not engine.is_ambiguous(DetectionSnapshot(confidence_level=49))
        assert engine.is_conclusive(DetectionSnapshot(confidence_level=85))
        # A WORKING verdict from the checker never counts as conclusive
        assert not engine.is_conclusive(DetectionSnapshot(confidence_level=60, source=DetectionSource.AI))
        timers.shutdown()


class TestAiConfirmation:
    def test_disabled_without_config_flag(self):
        from respawn_console.app.models.detection import AiCheckStatus

        engine, _, timers, _ = _make_engine(StubIdleChecker(), ai_idle_check_enabled=False)
        assert not engine.ai_available()
        assert engine.snapshot.ai_check.status == AiCheckStatus.DISABLED
        timers.shutdown()

    def test_disabled_without_checker(self):
        engine, _, timers, _ = _make_engine(None)
        assert not engine.ai_available()
        timers.shutdown()

    def test_idle_verdict_confirms(self):
        from respawn_console.app.models.detection import AiCheckStatus, AiVerdict, DetectionSource
        from respawn_console.app.services.detection_engine import AI_COOLDOWN_TIMER

        async def _run():
            engine, _, timers, recorder = _make_engine(StubIdleChecker("IDLE"), ai_idle_check_idle_cooldown_ms=30000)
            assert engine.ai_available()
            result = await engine.confirm(_ambiguous())
            assert result.confidence_level == 100
            assert result.source == DetectionSource.AI
            assert result.ai_check.last_verdict == AiVerdict.IDLE
            assert result.ai_check.status == AiCheckStatus.COOLDOWN
            assert timers.get("s1", AI_COOLDOWN_TIMER).duration_ms == 30000
            assert not engine.ai_available()
            assert recorder.named("respawn:aiCheckCompleted")[0]["verdict"] == "IDLE"
            assert len(recorder.named("respawn:aiCheckCooldown")) == 1
            timers.shutdown()
        asyncio.run(_run())

    def test_working_verdict_keeps_confidence_and_uses_long_cooldown(self):
        from respawn_console.app.models.detection import AiCheckStatus, AiVerdict
        from respawn_console.app.services.detection_engine import AI_COOLDOWN_TIMER

        async def _run():
            engine, _, timers, _ = _make_engine(StubIdleChecker("WORKING"), ai_idle_check_cooldown_ms=180000)
            result = await engine.confirm(_ambiguous())
            assert result.confidence_level == 50
            assert result.ai_check.last_verdict == AiVerdict.WORKING
            assert not engine.is_conclusive(result)
            assert timers.get("s1", AI_COOLDOWN_TIMER).duration_ms == 180000

            engine.end_cooldown()
            assert engine.ai_available()
            assert engine._ai.status == AiCheckStatus.READY
            timers.shutdown()
        asyncio.run(_run())

    def test_checker_error_degrades_to_heuristics(self):
        from respawn_console.app.models.detection import AiCheckStatus, DetectionSource
        from respawn_console.app.services.detection_engine import AI_COOLDOWN_TIMER

        async def _run():
            engine, _, timers, recorder = _make_engine(
                StubIdleChecker(error=RuntimeError("model unavailable")), ai_idle_check_error_cooldown_ms=30000
            )
            result = await engine.confirm(_ambiguous())
            assert result.confidence_level == 50
            assert result.source == DetectionSource.HEURISTIC
            assert result.ai_check.status == AiCheckStatus.DISABLED
            assert result.ai_check.disabled_reason == "model unavailable"
            assert result.ai_check.consecutive_errors == 1
            assert timers.get("s1", AI_COOLDOWN_TIMER).duration_ms == 30000
            assert recorder.named("respawn:aiCheckFailed")[0]["error"] == "model unavailable"

            # Error cooldown ends and the checker is usable again
            engine.end_cooldown()
            assert engine.ai_available()
            timers.shutdown()
        asyncio.run(_run())

    def test_checker_timeout(self):
        from respawn_console.app.models.detection import AiCheckStatus

        async def _run():
            engine, _, timers, _ = _make_engine(StubIdleChecker(delay=1.0), ai_idle_check_timeout_ms=100)
            result = await engine.confirm(_ambiguous())
            assert result.confidence_level == 50
            assert result.ai_check.status == AiCheckStatus.DISABLED
            assert "timed out" in result.ai_check.disabled_reason
            timers.shutdown()
        asyncio.run(_run())

    def test_max_errors_disables_until_success_is_impossible(self):
        from respawn_console.app.services.detection_engine import AI_COOLDOWN_TIMER

        async def _run():
            engine, _, timers, _ = _make_engine(StubIdleChecker(error=RuntimeError("boom")), ai_idle_check_max_errors=2)
            await engine.confirm(_ambiguous())
            engine.end_cooldown()
            result = await engine.confirm(_ambiguous())
            assert result.ai_check.consecutive_errors == 2
            assert result.ai_check.disabled_reason.startswith("2 consecutive errors")
            assert timers.get("s1", AI_COOLDOWN_TIMER) is None
            # Stays disabled for the rest of the run
            engine.end_cooldown()
            assert not engine.ai_available()
            timers.shutdown()
        asyncio.run(_run())

    def test_success_resets_error_count(self):
        async def _run():
            checker = StubIdleChecker(error=RuntimeError("boom"))
            engine, _, timers, _ = _make_engine(checker)
            await engine.confirm(_ambiguous())
            engine.end_cooldown()
            checker.error = None
            result = await engine.confirm(_ambiguous())
            assert result.ai_check.consecutive_errors == 0
            assert result.ai_check.disabled_reason is None
            timers.shutdown()
        asyncio.run(_run())

    def test_invalidated_check_result_is_discarded(self):
        from respawn_console.app.models.detection import AiCheckStatus, DetectionSource
        from respawn_console.app.services.detection_engine import AI_COOLDOWN_TIMER

        async def _run():
            checker = StubIdleChecker("IDLE")
            checker.release = asyncio.Event()
            engine, _, timers, recorder = _make_engine(checker)
            snapshot = _ambiguous()
            generation = engine.begin_check()
            task = asyncio.create_task(engine.confirm(snapshot, generation))
            await asyncio.sleep(0)
            assert engine.snapshot.ai_check.status != AiCheckStatus.COOLDOWN

            engine.invalidate()
            checker.release.set()
            result = await task
            assert result is snapshot
            assert result.source == DetectionSource.HEURISTIC
            assert timers.get("s1", AI_COOLDOWN_TIMER) is None
            assert recorder.named("respawn:aiCheckCompleted") == []
            assert engine.ai_available()
            timers.shutdown()
        asyncio.run(_run())

    def test_transcript_used_as_context_when_available(self, tmp_path):
        from respawn_console.app.models.detection import HookSignal

        async def _run():
            transcript = tmp_path / "transcript.jsonl"
            transcript.write_text('{"role": "assistant", "content": "All done."}\n', encoding="utf-8")
            engine, _, timers, _ = _make_engine(StubIdleChecker("IDLE"))
            engine.record_hook(HookSignal.NONE, str(transcript))
            assert not engine.has_pending_hook()
            await engine.confirm(_ambiguous())
            assert engine.last_context_source == "transcript"
            timers.shutdown()
        asyncio.run(_run())

    def test_missing_transcript_falls_back_to_terminal(self, tmp_path):
        from respawn_console.app.models.detection import HookSignal

        async def _run():
            engine, _, timers, _ = _make_engine(StubIdleChecker("IDLE"))
            engine.record_hook(HookSignal.NONE, str(tmp_path / "missing.jsonl"))
            await engine.confirm(_ambiguous())
            assert engine.last_context_source == "terminal"
            timers.shutdown()
        asyncio.run(_run())

    def test_non_string_transcript_path_ignored(self):
        from respawn_console.app.models.detection import AiVerdict, HookSignal

        async def _run():
            checker = StubIdleChecker("IDLE")
            engine, _, timers, _ = _make_engine(checker)
            engine.record_hook(HookSignal.NONE, 123)
            engine.record_hook(HookSignal.STOP, {"path": "/tmp/t.jsonl"})
            result = await engine.confirm(_ambiguous())
            assert checker.calls == 1
            assert result.ai_check.last_verdict == AiVerdict.IDLE
            assert engine.last_context_source == "terminal"
            timers.shutdown()
        asyncio.run(_run())

    def test_transcript_context_is_its_tail(self, tmp_path):
        from respawn_console.app.models.detection import HookSignal

        async def _run():
            seen = []

            class RecordingChecker(StubIdleChecker):
                async def check(self, context, model):
                    seen.append(context)
                    return await super().check(context, model)

            transcript = tmp_path / "transcript.jsonl"
            transcript.write_text("old line\n" * 2000 + "final answer\n", encoding="utf-8")
            engine, _, timers, _ = _make_engine(RecordingChecker("IDLE"), ai_idle_check_max_context=1000)
            engine.record_hook(HookSignal.NONE, str(transcript))
            await engine.confirm(_ambiguous())
            assert len(seen[0]) == 1000
            assert seen[0].endswith("final answer\n")
            timers.shutdown()
        asyncio.run(_run())

    def test_checker_sees_capped_context(self):
        async def _run():
            seen = []

            class RecordingChecker(StubIdleChecker):
                async def check(self, context, model):
                    seen.append((context, model))
                    return await super().check(context, model)

            engine, _, timers, _ = _make_engine(
                RecordingChecker("IDLE"), output="x" * 5000, ai_idle_check_max_context=1000, ai_idle_check_model="m1"
            )
            await engine.evaluate()
            await engine.confirm(_ambiguous())
            context, model = seen[0]
            assert len(context) == 1000
            assert model == "m1"
            timers.shutdown()
        asyncio.run(_run())


class TestVerdictParsing:
    def test_parse_verdict(self):
        import pytest
        from respawn_console.app.errors import AiCheckError
        from respawn_console.app.models.detection import AiVerdict
        from respawn_console.app.services.ai_idle_checker import parse_verdict

        assert parse_verdict("IDLE\nThe prompt is waiting for input.") == AiVerdict.IDLE
        assert parse_verdict("\n  working - spinner still visible") == AiVerdict.WORKING
        with pytest.raises(AiCheckError):
            parse_verdict("I am not sure\nIDLE")
        with pytest.raises(AiCheckError):
            parse_verdict("   \n")


class TestReadTail:
    def test_short_file_read_whole(self, tmp_path):
        from respawn_console.app.services.detection_engine import read_tail

        path = tmp_path / "t.jsonl"
        path.write_text("hello\n", encoding="utf-8")
        assert read_tail(path, 100) == "hello\n"

    def test_last_characters_of_multibyte_text(self, tmp_path):
        from respawn_console.app.services.detection_engine import read_tail

        path = tmp_path / "t.jsonl"
        path.write_text("a" * 500 + "⏺ Ünïcödé done ✓", encoding="utf-8")
        assert read_tail(path, 16) == "⏺ Ünïcödé done ✓"
        assert read_tail(path, 3) == "e ✓"
