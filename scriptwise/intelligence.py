"""
Script Intelligence — facade over the Scriptwise subsystems.

Wires the risk classifier, pattern store, failure analyzer, executor and skill
provider into one object. Entry points (API, CLI) talk only to this class.

Flow for ``run``:
    classify -> gate -> execute -> log outcome -> (failure) analyze + smart message

Usage:
    from scriptwise.intelligence import get_intelligence

    intel = get_intelligence()
    outcome = intel.run("play music", 'tell application "Music" to play')
    outcome.success             # True / False
    outcome.analysis            # FailureAnalysis when the script failed
    suggestion = intel.suggest("Music", "play my liked songs")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from scriptwise.config import DEFAULT_TIMEOUT_MS, get_logger
from scriptwise.errors import ConfirmationRequired
from scriptwise.executor import ExecutionResult, Executor, OsascriptExecutor
from scriptwise.failure_analyzer import Confidence, FailureAnalysis, FailureAnalyzer
from scriptwise.pattern_store import ExecutionRecord, PatternStore
from scriptwise.risk_classifier import GateDecision, SafetyVerdict, check_gate, classify
from scriptwise.skills import NullSkillProvider, SkillProvider, get_skill_provider

logger = get_logger("scriptwise.intelligence")

STATS_SCRIPT_PREVIEW = 200
RELATED_PREVIEW = 100
HIGH_CONFIDENCE_SUCCESSES = 3
MAX_GOTCHA_WARNINGS = 3


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RunOutcome:
    """Everything that happened to one submitted script."""
    intent: str
    script: str
    gate: GateDecision
    execution: Optional[ExecutionResult] = None
    record: Optional[ExecutionRecord] = None
    analysis: Optional[FailureAnalysis] = None
    smart_message: str = ""

    @property
    def executed(self) -> bool:
        return self.execution is not None

    @property
    def success(self) -> bool:
        return self.execution is not None and self.execution.success

    def to_dict(self) -> dict:
        return {
            "intent": self.intent,
            "executed": self.executed,
            "success": self.success,
            "gate": self.gate.to_dict(),
            "execution": self.execution.to_dict() if self.execution else None,
            "patternId": self.record.id if self.record else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "smartMessage": self.smart_message,
        }


@dataclass
class Suggestion:
    suggestion: str
    based_on: str = "generic"  # pattern | skill | generic
    confidence: Confidence = Confidence.LOW
    related_patterns: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "suggestion": self.suggestion,
            "basedOn": self.based_on,
            "confidence": self.confidence.value,
            "relatedPatterns": list(self.related_patterns),
            "warnings": list(self.warnings),
        }


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class ScriptIntelligence:
    """Single entry point composing classification, memory and diagnosis."""

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        executor: Optional[Executor] = None,
        skills: Optional[SkillProvider] = None,
        data_dir: Optional[Path] = None,
    ) -> None:
        self.store = store if store is not None else PatternStore(data_dir=data_dir)
        self.executor = executor or OsascriptExecutor()
        self.skills = skills or NullSkillProvider()
        self.analyzer = FailureAnalyzer(self.store)

    # ── Safety ──

    def classify(self, script: str) -> SafetyVerdict:
        return classify(script)

    # ── Execution ──

    def run(
        self,
        intent: str,
        script: str,
        confirmed: bool = False,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        learn: bool = True,
    ) -> RunOutcome:
        """Gate, execute and remember one script.

        A refused script is neither executed nor logged. Executor launch
        failures propagate as ``ExecutionError``.
        """
        decision = check_gate(classify(script), confirmed=confirmed)
        outcome = RunOutcome(intent=intent, script=script, gate=decision)
        if not decision.allowed:
            return outcome

        result = self.executor.execute(script, timeout_ms)
        outcome.execution = result

        if learn:
            output = result.stdout if result.success else result.error_message
            outcome.record = self.store.log(intent, script, result.success, output)

        if not result.success:
            outcome.analysis = self.analyzer.analyze(script, result.error_message)
            outcome.smart_message = self.analyzer.smart_message(script, result.error_message)
            logger.info(
                "Script failed (%s): %s",
                outcome.analysis.error_type.value, _preview(result.error_message, 80),
            )
        return outcome

    # ── Memory ──

    def record(self, intent: str, script: str, success: bool, result: str = "") -> ExecutionRecord:
        return self.store.log(intent, script, success, result)

    def find_similar(
        self,
        intent: str,
        target: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 5,
        only_successful: bool = True,
    ) -> List[ExecutionRecord]:
        return self.store.find_similar(
            intent, target=target, action=action, limit=limit, only_successful=only_successful,
        )

    def by_target(self, target: str) -> List[ExecutionRecord]:
        return self.store.by_target(target)

    def workflow_patterns(
        self,
        intent: str,
        target: Optional[str] = None,
        action: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Successful scripts similar to *intent*, plus skill examples and a briefing for *target*."""
        patterns = self.store.find_similar(intent, target=target, action=action, limit=5)
        examples: List[str] = []
        context = ""
        if target:
            examples = self.skills.examples_for(target, intent)
            context = self.skills.context_for(target, intent)
        return {
            "patterns": [
                {
                    "script": p.script,
                    "intent": p.intent,
                    "successCount": p.success_count,
                    "targets": list(p.targets),
                }
                for p in patterns
            ],
            "skillExamples": examples,
            "context": context,
        }

    def skill_guide(self, target: str) -> Dict[str, Any]:
        """Raw skill notes for *target* with their quick reference."""
        skill = self.skills.get_skill(target)
        ref = self.skills.quick_reference(target)
        return {
            "target": target,
            "available": skill is not None,
            "skill": skill,
            "quickReference": ref.to_dict() if ref is not None else None,
        }

    def stats(self) -> Dict[str, Any]:
        data = self.store.stats().to_dict()
        data["topRecords"] = [
            {
                "script": _preview(r["script"], STATS_SCRIPT_PREVIEW),
                "successCount": r["successCount"],
                "targets": r["targets"],
            }
            for r in data["topRecords"]
        ]
        data["availableSkills"] = self.skills.list_skills()
        return data

    def clear_history(self, confirm: bool = False) -> None:
        """Wipe the pattern store. Refuses unless *confirm* is set."""
        if not confirm:
            raise ConfirmationRequired("clear_history")
        self.store.clear()
        logger.info("Execution history cleared by request")

    # ── Diagnosis ──

    def analyze(self, script: str, error_message: str) -> Dict[str, Any]:
        """Both diagnosis paths side by side.

        ``analysis`` is the generic taxonomy result; ``smartMessage`` may come
        from an app-specific heuristic and can disagree with it.
        """
        return {
            "analysis": self.analyzer.analyze(script, error_message).to_dict(),
            "smartMessage": self.analyzer.smart_message(script, error_message),
        }

    def suggest(self, target: str, intent: str) -> Suggestion:
        """Best starting script for *intent* against *target*."""
        result = Suggestion(suggestion="")

        patterns = self.store.find_similar(intent, target=target, limit=3, only_successful=True)
        if patterns:
            best = patterns[0]
            if best.success_count >= HIGH_CONFIDENCE_SUCCESSES:
                result.suggestion = best.script
                result.based_on = "pattern"
                result.confidence = Confidence.HIGH
                result.related_patterns = [_preview(p.script, RELATED_PREVIEW) for p in patterns]
            elif best.success_count >= 1:
                result.suggestion = best.script
                result.based_on = "pattern"
                result.confidence = Confidence.MEDIUM

        if not result.suggestion:
            examples = self.skills.examples_for(target, intent)
            if examples:
                result.suggestion = examples[0]
                result.based_on = "skill"
                result.confidence = Confidence.MEDIUM

        ref = self.skills.quick_reference(target)
        if ref is not None:
            result.warnings.extend(ref.gotchas[:MAX_GOTCHA_WARNINGS])

        if not result.suggestion:
            result.suggestion = f'tell application "{target}"\n    -- Your commands here\nend tell'
            result.warnings.append(
                f'No specific patterns found for "{intent}" with {target}. Check the app dictionary.'
            )
        return result


# ---------------------------------------------------------------------------
# Module-level convenience
# ---------------------------------------------------------------------------

_intelligence: Optional[ScriptIntelligence] = None


def get_intelligence() -> ScriptIntelligence:
    """Get or create the shared ScriptIntelligence instance."""
    global _intelligence
    if _intelligence is None:
        _intelligence = ScriptIntelligence(skills=get_skill_provider())
    return _intelligence


def reset_intelligence() -> None:
    global _intelligence
    _intelligence = None
