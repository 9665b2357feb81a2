"""
Failure Analyzer — Scriptwise

Maps raw osascript error text to a fixed error taxonomy, explains the root
cause, proposes fixes and, where the fix is mechanical, rewrites the script.

The taxonomy is an ordered table: the first entry whose matcher fires wins.
A secondary, Music-specific heuristic table runs first inside
``smart_message`` only; ``analyze`` always takes the generic path.

Usage:
    from scriptwise.failure_analyzer import FailureAnalyzer

    analyzer = FailureAnalyzer(store)
    analysis = analyzer.analyze(script, "execution error: Music got an error: (-600)")
    analysis.error_type    # ErrorType.APP_NOT_RUNNING
    analysis.fixed_script  # script with "activate" injected
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Match, Optional, Pattern, Tuple

from scriptwise.config import get_logger
from scriptwise.pattern_store import PatternStore, extract_targets

logger = get_logger("scriptwise.analyzer")


class ErrorType(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    APP_NOT_RUNNING = "app_not_running"
    SYNTAX_ERROR = "syntax_error"
    OBJECT_NOT_FOUND = "object_not_found"
    PROPERTY_NOT_FOUND = "property_not_found"
    COMMAND_NOT_UNDERSTOOD = "command_not_understood"
    TIMEOUT = "timeout"
    TYPE_MISMATCH = "type_mismatch"
    INDEX_OUT_OF_BOUNDS = "index_out_of_bounds"
    MISSING_VALUE = "missing_value"
    USER_CANCELLED = "user_cancelled"
    UNKNOWN = "unknown"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class FailureAnalysis:
    error_type: ErrorType = ErrorType.UNKNOWN
    root_cause: str = ""
    suggestions: List[str] = field(default_factory=list)
    related_successful_pattern: Optional[str] = None
    fixed_script: Optional[str] = None
    confidence: Confidence = Confidence.LOW

    def to_dict(self) -> dict:
        return {
            "errorType": self.error_type.value,
            "rootCause": self.root_cause,
            "suggestions": list(self.suggestions),
            "relatedSuccessfulPattern": self.related_successful_pattern,
            "fixedScript": self.fixed_script,
            "confidence": self.confidence.value,
        }


def first_target(script: str) -> Optional[str]:
    targets = extract_targets(script)
    return targets[0] if targets else None


# ---------------------------------------------------------------------------
# Generators for the taxonomy table
# ---------------------------------------------------------------------------

CauseFn = Callable[[Match, str], str]
SuggestFn = Callable[[Match, str], List[str]]
FixFn = Callable[[Match, str], Optional[str]]

_APOS = "['’]"


def _permission_cause(match: Match, script: str) -> str:
    return f"Automation permission denied for {first_target(script) or 'the target application'}."


def _permission_suggestions(match: Match, script: str) -> List[str]:
    app = first_target(script) or "the app"
    return [
        "Open System Settings → Privacy & Security → Automation",
        f"Enable permissions for your terminal or automation client to control {app}",
        "If using System Events, also check Accessibility permissions",
        "You may need to restart your terminal after changing permissions",
    ]


def _not_running_cause(match: Match, script: str) -> str:
    return f"{first_target(script) or 'The application'} is not running."


def _not_running_suggestions(match: Match, script: str) -> List[str]:
    app = first_target(script) or "the application"
    return [
        f"Launch {app} before running this script",
        'Add "activate" at the start of your tell block to launch the app',
        'Use "launch" instead of "activate" for background operations',
    ]


_TELL_BLOCK_RE = re.compile(r'(tell\s+application\s+"[^"]+")[ \t]*\r?\n', re.IGNORECASE)
_TELL_ONE_LINER_RE = re.compile(r'(tell\s+application\s+"[^"]+")\s+to\s+([^\r\n]+)', re.IGNORECASE)


def inject_activate(script: str) -> Optional[str]:
    """Put an ``activate`` step first inside the first tell block of *script*."""
    block = _TELL_BLOCK_RE.search(script)
    one_liner = _TELL_ONE_LINER_RE.search(script)
    if block and (one_liner is None or block.start() <= one_liner.start()):
        head = block.group(1)
        return f"{script[:block.start()]}{head}\n\tactivate\n{script[block.end():]}"
    if one_liner:
        head, command = one_liner.group(1), one_liner.group(2).strip()
        replacement = f"{head}\n\tactivate\n\t{command}\nend tell"
        return f"{script[:one_liner.start()]}{replacement}{script[one_liner.end():]}"
    return None


def _not_running_fix(match: Match, script: str) -> Optional[str]:
    return inject_activate(script)


def _property_cause(match: Match, script: str) -> str:
    prop = re.search(r'property\s+"?([\w ]+?)"?(?:\s+of|\.|$)', match.string, re.IGNORECASE)
    name = prop.group(1) if prop else "the requested property"
    return f'{first_target(script) or "The object"} has no property "{name}".'


def _property_suggestions(match: Match, script: str) -> List[str]:
    return [
        f"Check the {first_target(script) or 'app'} dictionary for the exact property name",
        'Get "properties of" the object to see what it exposes',
        "Property names are often two words (e.g. \"player state\", \"current track\")",
    ]


def _missing_value_cause(match: Match, script: str) -> str:
    return "A required value was not provided or the application returned missing value."


def _missing_value_suggestions(match: Match, script: str) -> List[str]:
    return [
        'Test the result first: if x is not missing value then ...',
        "The application returned no data for this request",
        "Optional parameters may need explicit values",
    ]


def _object_cause(match: Match, script: str) -> str:
    found = re.search(rf"can{_APOS}t get ([^.]+)", match.string, re.IGNORECASE)
    obj = found.group(1) if found else "the requested object"
    return f"{obj} doesn't exist or couldn't be found."


def _object_suggestions(match: Match, script: str) -> List[str]:
    return [
        'Check if the object exists before accessing it (use "exists" test)',
        'The collection might be empty - try checking "count of" first',
        'Use "first" instead of index 1 for more flexible access',
        "If referencing by name, ensure the name matches exactly",
    ]


def _command_cause(match: Match, script: str) -> str:
    found = re.search(rf'doesn{_APOS}t understand the "?([^"]+?)"? message', match.string, re.IGNORECASE)
    command = found.group(1) if found else "that"
    return f'{first_target(script) or "The app"} doesn\'t have a "{command}" command.'


def _command_suggestions(match: Match, script: str) -> List[str]:
    return [
        f"Check the {first_target(script) or 'app'} dictionary for available commands",
        'Some commands need to be inside a specific context (e.g., "tell window 1")',
        "The command might be named differently - check for similar commands",
        "Some operations need System Events instead of the app directly",
    ]


def _syntax_cause(match: Match, script: str) -> str:
    return f"Syntax error: {match.string[:100] or 'invalid AppleScript syntax'}"


def _syntax_suggestions(match: Match, script: str) -> List[str]:
    return [
        'Check for missing "end tell", "end if", or "end repeat"',
        "Verify quotation marks are balanced and properly escaped",
        "AppleScript uses & for concatenation, not +",
        'Make sure "of" clauses are in the right order (property of object of container)',
    ]


def _type_cause(match: Match, script: str) -> str:
    found = re.search(rf'can{_APOS}t make (.+?) into type ([^.]+)', match.string, re.IGNORECASE)
    if found:
        return f"Can't convert {found.group(1)} to {found.group(2)}."
    return "Type conversion failed."


def _type_suggestions(match: Match, script: str) -> List[str]:
    return [
        'Use explicit coercion: "text" as string, number as integer',
        'Some objects need specific conversion: "x as list" or "x as text"',
        "Check if you're comparing compatible types",
    ]


def _static(text: str) -> CauseFn:
    return lambda match, script: text


def _static_list(*items: str) -> SuggestFn:
    return lambda match, script: list(items)


# ---------------------------------------------------------------------------
# Taxonomy table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorRule:
    """One taxonomy entry: matchers, tag and explanation generators."""
    error_type: ErrorType
    matchers: Tuple[Pattern[str], ...]
    cause: CauseFn
    suggestions: SuggestFn
    fix: Optional[FixFn] = None

    def match(self, error_message: str) -> Optional[Match]:
        for matcher in self.matchers:
            found = matcher.search(error_message)
            if found:
                return found
        return None


def _patterns(*sources: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(s, re.IGNORECASE) for s in sources)


ERROR_RULES: Tuple[ErrorRule, ...] = (
    ErrorRule(
        ErrorType.PERMISSION_DENIED,
        _patterns(r"not allowed", r"permission", r"access.*denied", r"not authorized", r"-1743\b"),
        _permission_cause,
        _permission_suggestions,
    ),
    ErrorRule(
        ErrorType.APP_NOT_RUNNING,
        _patterns(rf"application isn{_APOS}t running", r"not running", r"connection.*invalid", r"-600\b"),
        _not_running_cause,
        _not_running_suggestions,
        _not_running_fix,
    ),
    ErrorRule(
        ErrorType.PROPERTY_NOT_FOUND,
        _patterns(r"unknown property", r"no such property", rf"can{_APOS}t get property"),
        _property_cause,
        _property_suggestions,
    ),
    ErrorRule(
        ErrorType.MISSING_VALUE,
        _patterns(r"missing value"),
        _missing_value_cause,
        _missing_value_suggestions,
    ),
    ErrorRule(
        ErrorType.OBJECT_NOT_FOUND,
        _patterns(rf"can{_APOS}t get", rf"doesn{_APOS}t exist", r"missing", r"-1728\b"),
        _object_cause,
        _object_suggestions,
    ),
    ErrorRule(
        ErrorType.COMMAND_NOT_UNDERSTOOD,
        _patterns(rf"doesn{_APOS}t understand", r"expected.*but found", r"-1708\b"),
        _command_cause,
        _command_suggestions,
    ),
    ErrorRule(
        ErrorType.SYNTAX_ERROR,
        _patterns(r"syntax error", r"expected.*but found", r"-2740\b", r"-2741\b"),
        _syntax_cause,
        _syntax_suggestions,
    ),
    ErrorRule(
        ErrorType.TYPE_MISMATCH,
        _patterns(rf"can{_APOS}t make.*into", r"type mismatch", r"-1700\b"),
        _type_cause,
        _type_suggestions,
    ),
    ErrorRule(
        ErrorType.INDEX_OUT_OF_BOUNDS,
        _patterns(r"invalid index", r"-1719\b"),
        _static("The index is out of range - the collection is smaller than expected."),
        _static_list(
            'Check "count of" before accessing by index',
            'Use "first", "last", or "every" instead of numeric indices',
            "Remember AppleScript uses 1-based indexing, not 0-based",
        ),
    ),
    ErrorRule(
        ErrorType.TIMEOUT,
        _patterns(r"timed out", r"-1712\b"),
        _static("The operation took too long and timed out."),
        _static_list(
            "Increase the timeout parameter",
            "The app might be busy or unresponsive - check its state",
            "Break complex operations into smaller steps",
            "Some dialogs block until user interaction - check for open dialogs",
        ),
    ),
    ErrorRule(
        ErrorType.USER_CANCELLED,
        _patterns(r"user cancel", r"-128\b"),
        _static("The operation was cancelled by the user."),
        _static_list(
            "This is usually expected - user dismissed a dialog or pressed Escape",
            "Add error handling: try...on error...end try",
        ),
    ),
)


# ---------------------------------------------------------------------------
# App-specific heuristics
# ---------------------------------------------------------------------------

@dataclass
class AppIssue:
    """Outcome of an app-specific heuristic."""
    app: str
    issue: str
    fix: str
    corrected_script: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "app": self.app,
            "issue": self.issue,
            "fix": self.fix,
            "correctedScript": self.corrected_script,
        }


@dataclass(frozen=True)
class AppHeuristic:
    tag: str
    applies: Callable[[str, str], bool]  # (lower_error, lower_script)
    issue: str
    fix: str
    correct: Optional[Callable[[str], str]] = None


def _music_add_to_duplicate(script: str) -> str:
    return re.sub(r"add\s+(.+?)\s+to\s+playlist", r"duplicate \1 to playlist", script, flags=re.IGNORECASE)


def _music_search_context(script: str) -> str:
    return re.sub(
        r'search\s+(?:for\s+)?"([^"]+)"',
        r'search library playlist 1 for "\1"',
        script,
        flags=re.IGNORECASE,
    )


def _music_song_to_track(script: str) -> str:
    fixed = re.sub(r"\bsong\b", "track", script, flags=re.IGNORECASE)
    return re.sub(r"\bsongs\b", "tracks", fixed, flags=re.IGNORECASE)


def _cant(verb: str, error: str) -> bool:
    return f"can't {verb}" in error or f"can’t {verb}" in error


MUSIC_HEURISTICS: Tuple[AppHeuristic, ...] = (
    AppHeuristic(
        "add_vs_duplicate",
        lambda err, src: ("doesn't understand" in err or "doesn’t understand" in err) and "add" in src,
        'Music.app uses "duplicate" not "add" to add tracks to playlists',
        'Replace "add" with "duplicate...to"',
        _music_add_to_duplicate,
    ),
    AppHeuristic(
        "playlist_with_tracks",
        lambda err, src: _cant("make", err) and "playlist" in src,
        "You can't create a playlist with tracks in one step. "
        "Create the playlist first, then duplicate tracks to it.",
        "Split into: 1) make new playlist, 2) duplicate tracks to it",
    ),
    AppHeuristic(
        "search_context",
        lambda err, src: _cant("get", err) and "search" in src,
        'Music.app search requires searching "entire library" or "library playlist 1"',
        'Use: search library playlist 1 for "term"',
        _music_search_context,
    ),
    AppHeuristic(
        "songs_vs_tracks",
        lambda err, src: "song" in src and "track" not in src,
        'Music.app uses "tracks" not "songs" as the object type',
        'Replace "song" with "track"',
        _music_song_to_track,
    ),
    AppHeuristic(
        "no_current_track",
        lambda err, src: _cant("get", err) and "current track" in src,
        "There might not be a current track if nothing is playing",
        "Check player state first: if player state is playing then...",
    ),
)

APP_HEURISTICS: Dict[str, Tuple[AppHeuristic, ...]] = {
    "music": MUSIC_HEURISTICS,
}


def analyze_app_failure(script: str, error_message: str) -> Optional[AppIssue]:
    """Run the app-specific heuristics; the first one that applies wins."""
    lower_script = (script or "").lower()
    lower_error = (error_message or "").lower()
    for app, heuristics in APP_HEURISTICS.items():
        if app not in lower_script:
            continue
        for heuristic in heuristics:
            if heuristic.applies(lower_error, lower_script):
                return AppIssue(
                    app=app,
                    issue=heuristic.issue,
                    fix=heuristic.fix,
                    corrected_script=heuristic.correct(script) if heuristic.correct else None,
                )
    return None


# ---------------------------------------------------------------------------
# FailureAnalyzer
# ---------------------------------------------------------------------------

def _coerce_inputs(script: Any, error_message: Any) -> Tuple[str, str]:
    script = script if isinstance(script, str) else ""
    error_message = error_message if isinstance(error_message, str) else str(error_message or "")
    return script, error_message


class FailureAnalyzer:
    """
    Diagnoses failed scripts.

    The pattern store is optional; when present it supplies a previously
    successful script for the same target as context.
    """

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        rules: Tuple[ErrorRule, ...] = ERROR_RULES,
    ) -> None:
        self.store = store
        self.rules = rules

    def _related_success(self, target: Optional[str]) -> Optional[str]:
        if not target or self.store is None:
            return None
        try:
            for record in self.store.by_target(target):
                if record.success:
                    return record.script
        except Exception as exc:
            logger.warning("Could not look up patterns for %s: %s", target, exc)
        return None

    def analyze(self, script: str, error_message: str) -> FailureAnalysis:
        """Classify *error_message* against the taxonomy. Never raises."""
        script, error_message = _coerce_inputs(script, error_message)
        target = first_target(script)
        related = self._related_success(target)

        for rule in self.rules:
            match = rule.match(error_message)
            if match is None:
                continue
            try:
                fixed = rule.fix(match, script) if rule.fix else None
                analysis = FailureAnalysis(
                    error_type=rule.error_type,
                    root_cause=rule.cause(match, script),
                    suggestions=rule.suggestions(match, script),
                    related_successful_pattern=related,
                    fixed_script=fixed,
                    confidence=Confidence.HIGH,
                )
            except Exception as exc:
                logger.warning("Rule %s failed on %r: %s", rule.error_type.value, error_message[:80], exc)
                continue
            logger.debug("Failure classified as %s", rule.error_type.value)
            return analysis

        return FailureAnalysis(
            error_type=ErrorType.UNKNOWN,
            root_cause=error_message,
            suggestions=[
                "Check the app dictionary for correct syntax",
                "Verify the app is running and accessible",
                "Try simplifying the script to isolate the issue",
                f"Look at successful patterns for {target}" if target
                else "Check for similar successful patterns",
            ],
            related_successful_pattern=related,
            fixed_script=None,
            confidence=Confidence.LOW,
        )

    def smart_message(self, script: str, error_message: str) -> str:
        """Human-facing markdown explanation of a failure. Never raises."""
        script, error_message = _coerce_inputs(script, error_message)
        app_issue = analyze_app_failure(script, error_message)
        if app_issue:
            message = f"**{app_issue.app.title()}.app Issue**: {app_issue.issue}\n\n**Fix**: {app_issue.fix}"
            if app_issue.corrected_script:
                message += f"\n\n**Corrected Script**:\n```applescript\n{app_issue.corrected_script}\n```"
            return message

        analysis = self.analyze(script, error_message)
        message = f"**{analysis.root_cause}**\n\n"
        if analysis.suggestions:
            message += "**How to fix:**\n"
            message += "".join(f"• {s}\n" for s in analysis.suggestions)
        if analysis.fixed_script:
            message += f"\n**Auto-corrected script:**\n```applescript\n{analysis.fixed_script}\n```"
        if analysis.related_successful_pattern:
            message += (
                "\n**Here's a similar script that worked:**\n"
                f"```applescript\n{analysis.related_successful_pattern}\n```"
            )
        return message
