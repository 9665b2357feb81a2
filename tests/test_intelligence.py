"""
Tests for the ScriptIntelligence facade: gated execution, learning from
outcomes, suggestions, stats and guarded history clearing.
"""

import pytest

from scriptwise.errors import ConfirmationRequired
from scriptwise.executor import ExecutionResult
from scriptwise.failure_analyzer import Confidence, ErrorType
from scriptwise.intelligence import ScriptIntelligence, get_intelligence, reset_intelligence
from scriptwise.skills import NullSkillProvider


PLAY = 'tell application "Music" to play'
EMPTY_TRASH = 'tell application "Finder" to empty the trash'


class TestRun:

    @pytest.mark.unit
    def test_safe_script_runs_and_is_logged(self, intel, fake_executor, store):
        outcome = intel.run("play music", PLAY)
        assert outcome.executed and outcome.success
        assert fake_executor.calls == [(PLAY, 30_000)]
        assert outcome.record.success_count == 1
        assert store.by_target("Music")[0].result == "ok"
        assert outcome.analysis is None

    @pytest.mark.unit
    def test_critical_script_refused_without_confirmation(self, intel, fake_executor, store):
        outcome = intel.run("clean up", EMPTY_TRASH)
        assert not outcome.executed
        assert outcome.gate.allowed is False
        assert "BLOCKED" in outcome.gate.message
        assert fake_executor.calls == []
        assert len(store) == 0

    @pytest.mark.unit
    def test_confirmed_script_runs(self, intel, fake_executor):
        outcome = intel.run("clean up", EMPTY_TRASH, confirmed=True)
        assert outcome.executed
        assert outcome.gate.verdict.requires_confirmation is True
        assert len(fake_executor.calls) == 1

    @pytest.mark.unit
    def test_failure_is_analyzed(self, store, failing_executor):
        intel = ScriptIntelligence(store=store, executor=failing_executor, skills=NullSkillProvider())
        outcome = intel.run("play music", PLAY)
        assert outcome.executed and not outcome.success
        assert outcome.analysis.error_type == ErrorType.APP_NOT_RUNNING
        assert "activate" in outcome.analysis.fixed_script
        assert outcome.smart_message
        assert outcome.record.success is False
        assert outcome.record.success_count == 0

    @pytest.mark.unit
    def test_learn_false_skips_store(self, intel, store):
        outcome = intel.run("play", PLAY, learn=False)
        assert outcome.record is None
        assert len(store) == 0

    @pytest.mark.unit
    def test_to_dict(self, intel):
        data = intel.run("play", PLAY).to_dict()
        assert data["executed"] is True
        assert data["success"] is True
        assert data["gate"]["allowed"] is True
        assert data["execution"]["exitCode"] == 0
        assert data["patternId"]


class TestSuggest:

    @pytest.mark.unit
    def test_high_confidence_pattern(self, intel):
        for _ in range(3):
            intel.record("play music", PLAY, True)
        suggestion = intel.suggest("Music", "play music")
        assert suggestion.based_on == "pattern"
        assert suggestion.confidence == Confidence.HIGH
        assert suggestion.suggestion == PLAY
        assert suggestion.related_patterns == [PLAY]

    @pytest.mark.unit
    def test_medium_confidence_pattern(self, intel):
        intel.record("play music", PLAY, True)
        suggestion = intel.suggest("Music", "play music")
        assert suggestion.confidence == Confidence.MEDIUM
        assert suggestion.based_on == "pattern"

    @pytest.mark.unit
    def test_skill_example_fallback(self, intel):
        suggestion = intel.suggest("Music", "add track to playlist")
        assert suggestion.based_on == "skill"
        assert suggestion.confidence == Confidence.MEDIUM
        assert "duplicate" in suggestion.suggestion
        assert "Tracks, not songs" in suggestion.warnings

    @pytest.mark.unit
    def test_generic_template(self, intel):
        suggestion = intel.suggest("Safari", "open a tab")
        assert suggestion.based_on == "generic"
        assert suggestion.confidence == Confidence.LOW
        assert suggestion.suggestion.startswith('tell application "Safari"')
        assert any("No specific patterns" in w for w in suggestion.warnings)


class TestHistory:

    @pytest.mark.unit
    def test_stats_adds_skills_and_truncates(self, intel):
        long_script = PLAY + "\n-- " + "x" * 300
        intel.record("play", long_script, True)
        stats = intel.stats()
        assert stats["availableSkills"] == ["music"]
        assert stats["totalRecords"] == 1
        assert stats["topRecords"][0]["script"].endswith("...")
        assert len(stats["topRecords"][0]["script"]) == 203

    @pytest.mark.unit
    def test_clear_requires_confirmation(self, intel, store):
        intel.record("play", PLAY, True)
        with pytest.raises(ConfirmationRequired):
            intel.clear_history()
        assert len(store) == 1
        intel.clear_history(confirm=True)
        assert len(store) == 0

    @pytest.mark.unit
    def test_workflow_patterns(self, intel):
        intel.record("play music", PLAY, True)
        result = intel.workflow_patterns("play music", target="Music")
        assert result["patterns"][0]["script"] == PLAY
        assert result["skillExamples"]
        assert result["context"].startswith("## Relevant Working Examples")
        assert "Important Notes for Music" in result["context"]

    @pytest.mark.unit
    def test_workflow_without_target_has_no_context(self, intel):
        result = intel.workflow_patterns("play music")
        assert result["skillExamples"] == []
        assert result["context"] == ""

    @pytest.mark.unit
    def test_skill_guide(self, intel):
        guide = intel.skill_guide("Music.app")
        assert guide["available"] is True
        assert guide["skill"].startswith("# Music.app")
        assert guide["quickReference"]["troubleshooting"] == ["-600: activate first"]

    @pytest.mark.unit
    def test_skill_guide_unknown_app(self, intel):
        guide = intel.skill_guide("Finder")
        assert guide == {"target": "Finder", "available": False, "skill": None, "quickReference": None}

    @pytest.mark.unit
    def test_analyze_returns_both_paths(self, intel):
        script = 'tell application "Music" to add track "A" to playlist "B"'
        result = intel.analyze(script, 'Music doesn\'t understand the "add" message.')
        assert result["analysis"]["errorType"] == "command_not_understood"
        assert "Music.app Issue" in result["smartMessage"]


class TestSingleton:

    @pytest.mark.unit
    def test_get_intelligence_is_shared(self):
        reset_intelligence()
        try:
            assert get_intelligence() is get_intelligence()
        finally:
            reset_intelligence()
