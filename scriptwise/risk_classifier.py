"""
Risk Classifier — Scriptwise

Pure classification of AppleScript source into a risk verdict. Every entry
of the hazard table is evaluated against the script (no short-circuit), one
warning is collected per matching entry, and the verdict carries the highest
risk level seen.

Usage:
    from scriptwise.risk_classifier import classify, check_gate

    verdict = classify('tell application "Finder" to empty the trash')
    verdict.risk                   # RiskLevel.CRITICAL
    verdict.requires_confirmation  # True

    decision = check_gate(verdict, confirmed=False)
    decision.allowed               # False
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Pattern, Tuple

from scriptwise.config import get_logger

logger = get_logger("scriptwise.risk")


# ---------------------------------------------------------------------------
# Risk levels
# ---------------------------------------------------------------------------

class RiskLevel(str, Enum):
    """Ordered risk levels: none < low < medium < high < critical."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @property
    def is_safe(self) -> bool:
        return self in (RiskLevel.NONE, RiskLevel.LOW)

    @property
    def needs_confirmation(self) -> bool:
        return self in (RiskLevel.HIGH, RiskLevel.CRITICAL)


_RISK_ORDER: Tuple[RiskLevel, ...] = (
    RiskLevel.NONE,
    RiskLevel.LOW,
    RiskLevel.MEDIUM,
    RiskLevel.HIGH,
    RiskLevel.CRITICAL,
)


def max_risk(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    return a if a.rank >= b.rank else b


# ---------------------------------------------------------------------------
# Hazard table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HazardRule:
    """One row of the hazard table: matcher, tag, explanation."""
    tag: str
    matcher: Pattern[str]
    risk: RiskLevel
    warning: str

    def matches(self, script: str) -> bool:
        return self.matcher.search(script) is not None


def _rule(tag: str, pattern: str, risk: RiskLevel, warning: str) -> HazardRule:
    return HazardRule(tag=tag, matcher=re.compile(pattern, re.IGNORECASE), risk=risk, warning=warning)


HAZARD_RULES: Tuple[HazardRule, ...] = (
    # File deletion
    _rule(
        "bulk_delete_files",
        r"\bdelete\s+(every|all)\s+(file|folder|item|document)",
        RiskLevel.CRITICAL,
        "BULK DELETE: This will delete multiple files/folders. This action may be irreversible.",
    ),
    _rule(
        "delete_file",
        r"\bdelete\s+(file|folder|item|document)",
        RiskLevel.HIGH,
        "DELETE: This will delete a file or folder. Items go to Trash but verify before running.",
    ),
    _rule(
        "empty_trash",
        r"\bempty\s+(the\s+)?trash",
        RiskLevel.CRITICAL,
        "EMPTY TRASH: This permanently deletes all items in Trash. This cannot be undone.",
    ),
    # Moving / copying in bulk
    _rule(
        "bulk_move",
        r"\bmove\s+(every|all)\s+(file|folder|item)",
        RiskLevel.HIGH,
        "BULK MOVE: This will move multiple files/folders. Verify the destination.",
    ),
    _rule(
        "bulk_duplicate",
        r"\bduplicate\s+(every|all)\s+(file|folder|item)",
        RiskLevel.MEDIUM,
        "BULK DUPLICATE: This will create copies of multiple items. May use significant disk space.",
    ),
    # System
    _rule(
        "system_power",
        r"\b(shutdown|restart|sleep)\b",
        RiskLevel.HIGH,
        "SYSTEM POWER: This will shutdown, restart, or sleep your Mac.",
    ),
    _rule(
        "shell_script",
        r"\bdo\s+shell\s+script\b",
        RiskLevel.HIGH,
        "SHELL COMMAND: This executes a shell command. Review carefully for dangerous "
        "operations like rm, sudo, etc.",
    ),
    _rule(
        "destructive_shell",
        r"\bdo\s+shell\s+script\s+\"[^\"]*\b(rm|sudo|chmod|chown|mkfs|dd|format)\b",
        RiskLevel.CRITICAL,
        "DANGEROUS SHELL COMMAND: Contains potentially destructive shell commands (rm, sudo, etc.).",
    ),
    # Input injection
    _rule(
        "keystroke",
        r"\bkeystroke\b",
        RiskLevel.MEDIUM,
        "KEYSTROKE: This simulates keyboard input. Ensure the target app is correct.",
    ),
    _rule(
        "key_code",
        r"\bkey\s+code\b",
        RiskLevel.MEDIUM,
        "KEY CODE: This simulates key presses. Verify target application focus.",
    ),
    # Messaging
    _rule(
        "bulk_email",
        r"\bsend\s+(every|all)\s+(message|mail|email)",
        RiskLevel.CRITICAL,
        "BULK EMAIL: This will send multiple emails. Verify recipients and content.",
    ),
    _rule(
        "send_email",
        r"\bsend\b.*\boutgoing\s+message\b",
        RiskLevel.MEDIUM,
        "SEND EMAIL: This will send an email. Verify recipient and content.",
    ),
    # Calendar / reminders / notes / contacts
    _rule(
        "bulk_delete_calendar",
        r"\bdelete\s+(every|all)\s+(event|reminder|calendar)",
        RiskLevel.CRITICAL,
        "BULK DELETE CALENDAR: This will delete multiple calendar events or reminders.",
    ),
    _rule(
        "bulk_delete_records",
        r"\bdelete\s+(every|all)\s+(note|contact)",
        RiskLevel.CRITICAL,
        "BULK DELETE: This will delete multiple notes or contacts.",
    ),
    # Process termination
    _rule(
        "quit_all_apps",
        r"\bquit\s+(every|all)\s+application",
        RiskLevel.HIGH,
        "QUIT ALL APPS: This will quit multiple applications. Unsaved work may be lost.",
    ),
)


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SafetyVerdict:
    """Result of classifying one script. Derived purely from the script text."""
    risk: RiskLevel = RiskLevel.NONE
    warnings: Tuple[str, ...] = ()
    matched: Tuple[str, ...] = ()

    @property
    def safe(self) -> bool:
        return self.risk.is_safe

    @property
    def requires_confirmation(self) -> bool:
        return self.risk.needs_confirmation

    def to_dict(self) -> dict:
        return {
            "safe": self.safe,
            "risk": self.risk.value,
            "warnings": list(self.warnings),
            "requiresConfirmation": self.requires_confirmation,
        }


def classify(script: str, rules: Tuple[HazardRule, ...] = HAZARD_RULES) -> SafetyVerdict:
    """Classify *script* against the hazard table.

    Total and deterministic: non-string input is treated as empty text.
    """
    if not isinstance(script, str):
        script = ""

    risk = RiskLevel.NONE
    warnings: List[str] = []
    matched: List[str] = []

    for rule in rules:
        if rule.matches(script):
            warnings.append(rule.warning)
            matched.append(rule.tag)
            risk = max_risk(risk, rule.risk)

    if matched:
        logger.debug("Classified script as %s (matched: %s)", risk.value, ", ".join(matched))
    return SafetyVerdict(risk=risk, warnings=tuple(warnings), matched=tuple(matched))


# ---------------------------------------------------------------------------
# Confirmation gate
# ---------------------------------------------------------------------------

@dataclass
class GateDecision:
    """Whether a classified script may run, and why not when it may not."""
    allowed: bool
    verdict: SafetyVerdict
    message: str = ""
    confirmed: bool = False

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "confirmed": self.confirmed,
            "message": self.message,
            "safetyAnalysis": self.verdict.to_dict(),
        }


def check_gate(verdict: SafetyVerdict, confirmed: bool = False) -> GateDecision:
    """Apply the confirmation gate to a verdict.

    High and critical scripts are refused unless *confirmed*. Confirmation
    lets the script through but leaves the verdict untouched.
    """
    if not verdict.requires_confirmation or confirmed:
        return GateDecision(allowed=True, verdict=verdict, confirmed=confirmed)

    bullets = "\n".join(f"• {w}" for w in verdict.warnings)
    if verdict.risk == RiskLevel.CRITICAL:
        message = (
            f"BLOCKED: This script contains critical-risk operations:\n\n{bullets}\n\n"
            "If you really want to run this, resubmit with confirmed=true"
        )
    else:
        message = (
            f"WARNING: This script contains high-risk operations:\n\n{bullets}\n\n"
            "To proceed, resubmit with confirmed=true"
        )
    logger.info("Execution refused pending confirmation (risk=%s)", verdict.risk.value)
    return GateDecision(
        allowed=False,
        verdict=verdict,
        message=message,
        confirmed=False,
    )
