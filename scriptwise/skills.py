"""
Skill provider — per-application markdown notes with working examples.

A skill file lives at ``<skills dir>/<app>.md`` where ``<app>`` is the
target name lower-cased, with a trailing ``.app`` removed and spaces turned
into dashes (``System Events`` -> ``system-events.md``). Files are plain
markdown: fenced ``applescript`` blocks are examples, a "Gotchas" section
lists pitfalls, a ``| Goal | Script |`` table lists common patterns and a
"Troubleshooting" table maps problems to fixes.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from scriptwise.config import SKILLS_DIR, get_logger

logger = get_logger("scriptwise.skills")

MAX_EXAMPLES = 3
CONTEXT_CHARS = 200
MAX_CONTEXT_PATTERNS = 5

_CODE_BLOCK_RE = re.compile(r"```applescript[ \t]*\r?\n(.*?)```", re.DOTALL)
_GOTCHAS_RE = re.compile(r"^## [^\n]*Gotchas(.*?)(?=^## |\Z)", re.IGNORECASE | re.DOTALL | re.MULTILINE)
_TROUBLE_RE = re.compile(r"^## [^\n]*Troubleshooting(.*?)(?=^## |\Z)", re.IGNORECASE | re.DOTALL | re.MULTILINE)
_PATTERN_TABLE_RE = re.compile(r"^\| *Goal *\| *Script *\|.*?(?=^[^|]|\Z)", re.IGNORECASE | re.DOTALL | re.MULTILINE)


def normalize_app_name(app_name: str) -> str:
    name = (app_name or "").strip().lower()
    name = re.sub(r"\.app$", "", name)
    return re.sub(r"\s+", "-", name)


@dataclass
class QuickReference:
    gotchas: List[str] = field(default_factory=list)
    common_patterns: List[str] = field(default_factory=list)
    troubleshooting: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "gotchas": list(self.gotchas),
            "commonPatterns": list(self.common_patterns),
            "troubleshooting": list(self.troubleshooting),
        }


class SkillProvider(Protocol):
    def get_skill(self, target: str) -> Optional[str]:
        ...

    def examples_for(self, target: str, intent: str) -> List[str]:
        ...

    def quick_reference(self, target: str) -> Optional[QuickReference]:
        ...

    def list_skills(self) -> List[str]:
        ...

    def context_for(self, target: str, intent: str) -> str:
        ...


class NullSkillProvider:
    """Provider with no skills; keeps callers free of ``None`` checks."""

    def get_skill(self, target: str) -> Optional[str]:
        return None

    def examples_for(self, target: str, intent: str) -> List[str]:
        return []

    def quick_reference(self, target: str) -> Optional[QuickReference]:
        return None

    def list_skills(self) -> List[str]:
        return []

    def context_for(self, target: str, intent: str) -> str:
        return ""


def _table_rows(text: str) -> List[List[str]]:
    rows = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("|"):
            continue
        cells = [c.strip() for c in line.strip("|").split("|")]
        if all(set(c) <= set("-: ") for c in cells):
            continue
        rows.append(cells)
    return rows[1:]  # header


class MarkdownSkillProvider:
    """Reads skill files from a directory, caching contents per app."""

    def __init__(self, skills_dir: Optional[Path] = None) -> None:
        self.skills_dir = Path(skills_dir) if skills_dir else SKILLS_DIR
        self._cache: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def get_skill(self, target: str) -> Optional[str]:
        """Raw markdown for *target*, or None when there is no skill file."""
        name = normalize_app_name(target)
        if not name:
            return None
        with self._lock:
            if name in self._cache:
                return self._cache[name]
            path = self.skills_dir / f"{name}.md"
            content: Optional[str] = None
            if path.is_file():
                try:
                    content = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    logger.warning("Could not read skill file %s: %s", path, exc)
            self._cache[name] = content
            return content

    def has_skill(self, target: str) -> bool:
        return normalize_app_name(target) in self.list_skills()

    def list_skills(self) -> List[str]:
        if not self.skills_dir.is_dir():
            return []
        return sorted(p.stem for p in self.skills_dir.glob("*.md"))

    def examples_for(self, target: str, intent: str) -> List[str]:
        """Up to three code examples whose text or lead-in mentions the intent's words."""
        skill = self.get_skill(target)
        if not skill:
            return []

        keywords = [w for w in (intent or "").lower().split() if len(w) > 2]
        if not keywords:
            return []

        scored = []
        for position, match in enumerate(_CODE_BLOCK_RE.finditer(skill)):
            code = match.group(1).strip()
            if not code:
                continue
            code_lower = code.lower()
            context = skill[max(0, match.start() - CONTEXT_CHARS):match.start()].lower()
            score = sum(1 for k in keywords if k in code_lower)
            score += sum(1 for k in keywords if k in context)
            if score > 0:
                scored.append((score, position, code))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [code for _, _, code in scored[:MAX_EXAMPLES]]

    def gotchas(self, target: str) -> Optional[str]:
        skill = self.get_skill(target)
        if not skill:
            return None
        found = _GOTCHAS_RE.search(skill)
        return found.group(0).strip() if found else None

    def quick_reference(self, target: str) -> Optional[QuickReference]:
        skill = self.get_skill(target)
        if not skill:
            return None

        ref = QuickReference()
        section = _GOTCHAS_RE.search(skill)
        if section:
            for line in section.group(1).splitlines():
                if line.startswith("### ") or re.match(r"^\d+\.", line):
                    ref.gotchas.append(re.sub(r"^(#+|\d+\.)\s*", "", line).strip())

        table = _PATTERN_TABLE_RE.search(skill)
        if table:
            for cells in _table_rows(table.group(0)):
                if len(cells) >= 2 and cells[0] and cells[1]:
                    ref.common_patterns.append(f"{cells[0]}: {cells[1]}")

        trouble = _TROUBLE_RE.search(skill)
        if trouble:
            for cells in _table_rows(trouble.group(1)):
                if len(cells) >= 3 and cells[0] and cells[2]:
                    ref.troubleshooting.append(f"{cells[0]}: {cells[2]}")

        return ref

    def context_for(self, target: str, intent: str) -> str:
        """Markdown briefing for *target*: matching examples, its gotchas and quick patterns."""
        parts: List[str] = []

        examples = self.examples_for(target, intent)
        if examples:
            parts.append("## Relevant Working Examples\n")
            for number, example in enumerate(examples, 1):
                parts.append(f"### Example {number}\n```applescript\n{example}\n```\n")

        notes = self.gotchas(target)
        if notes:
            parts.append(f"\n## Important Notes for {target}\n{notes}\n")

        ref = self.quick_reference(target)
        if ref is not None and ref.common_patterns:
            parts.append("\n## Quick Patterns\n")
            parts.extend(f"- {p}\n" for p in ref.common_patterns[:MAX_CONTEXT_PATTERNS])

        return "".join(parts)

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()


_provider: Optional[MarkdownSkillProvider] = None


def get_skill_provider(skills_dir: Optional[Path] = None) -> MarkdownSkillProvider:
    global _provider
    if _provider is None:
        _provider = MarkdownSkillProvider(skills_dir)
    return _provider
