"""
Pattern Store — Scriptwise Execution Memory

Remembers every script execution and what came of it. One record exists per
script fingerprint (whitespace collapsed, case folded); re-logging the same
script updates that record in place. Records are indexed by target, action,
category and keyword for similarity retrieval.

Data persisted to: ~/.scriptwise/
    learned-patterns.json  — flat array of execution records
    patterns-index.json    — byTarget / byAction / byCategory / byKeyword maps

Usage:
    from scriptwise.pattern_store import get_pattern_store

    store = get_pattern_store()
    record = store.log("play music", 'tell application "Music" to play', True, "")
    similar = store.find_similar("start playing music", target="Music")
    stats = store.stats()
"""

from __future__ import annotations

import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from scriptwise.config import get_logger
from scriptwise.persistence import (
    JsonFileBackend,
    PersistenceBackend,
    empty_index,
)

logger = get_logger("scriptwise.patterns")

TOP_RECORDS_LIMIT = 10
KEYWORD_WEIGHT = 10


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class Category(str, Enum):
    MEDIA = "media"
    FILES = "files"
    COMMUNICATION = "communication"
    PRODUCTIVITY = "productivity"
    SYSTEM = "system"
    OTHER = "other"


# (category, target names, action verbs) checked in this order, first match wins
CATEGORY_RULES = (
    (Category.MEDIA, {"music", "tv", "podcasts", "photos"}, set()),
    (Category.FILES, {"finder"}, {"move", "copy", "delete"}),
    (Category.COMMUNICATION, {"mail", "messages", "contacts"}, set()),
    (Category.PRODUCTIVITY, {"calendar", "reminders", "notes"}, set()),
    (Category.SYSTEM, {"system events", "system preferences"}, set()),
)


# ---------------------------------------------------------------------------
# Feature extraction
# ---------------------------------------------------------------------------

STOP_WORDS = frozenset({
    "the", "a", "an", "to", "from", "in", "on", "at", "of", "for", "with", "and",
    "or", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "may", "might", "must",
    "shall", "can", "need", "dare", "ought", "used", "it", "its", "this", "that",
    "these", "those", "i", "me", "my", "mine", "we", "us", "our", "ours", "you",
    "your", "yours", "he", "him", "his", "she", "her", "hers", "they", "them",
    "their", "theirs",
})

ACTION_PATTERNS = tuple(
    re.compile(rf"\b({words})\b", re.IGNORECASE)
    for words in (
        "create|make|new",
        "delete|remove|trash",
        "get|read|fetch|retrieve",
        "set|update|modify|change",
        "play|pause|stop|resume",
        "open|close|quit|activate",
        "move|copy|duplicate",
        "send|email|message",
        "add|append|insert",
        "search|find|locate",
        "list|show|display",
        "save|export|write",
    )
)

_TARGET_RE = re.compile(r'tell\s+application\s+"([^"]+)"', re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def _dedupe(items: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def extract_targets(script: str) -> List[str]:
    """Every ``tell application "X"`` reference, nested ones included, in order of appearance."""
    return [name for name in _TARGET_RE.findall(script or "") if name]


def extract_actions(script: str) -> List[str]:
    """Recognized verbs in *script*, lower-cased and deduplicated."""
    found: List[str] = []
    for pattern in ACTION_PATTERNS:
        found.extend(m.lower() for m in pattern.findall(script or ""))
    return _dedupe(found)


def extract_keywords(text: str) -> List[str]:
    """Lower-case alphanumeric tokens longer than two characters, minus stop words."""
    cleaned = _NON_ALNUM_RE.sub(" ", (text or "").lower())
    return _dedupe(
        word for word in cleaned.split()
        if len(word) > 2 and word not in STOP_WORDS
    )


def categorize(targets: Iterable[str], actions: Iterable[str]) -> Category:
    target_set = {t.lower() for t in targets}
    action_set = set(actions)
    for category, names, verbs in CATEGORY_RULES:
        if target_set & names or action_set & verbs:
            return category
    return Category.OTHER


def fingerprint(script: str) -> str:
    """Dedup key: whitespace collapsed, trimmed and case folded."""
    return _WHITESPACE_RE.sub(" ", script or "").strip().lower()


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ExecutionRecord:
    """One remembered script and the outcome of its latest execution."""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=_now_iso)
    intent: str = ""
    targets: List[str] = field(default_factory=list)
    script: str = ""
    success: bool = False
    result: str = ""
    category: Category = Category.OTHER
    actions: List[str] = field(default_factory=list)
    success_count: int = 0
    keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "intent": self.intent,
            "targets": list(self.targets),
            "script": self.script,
            "success": self.success,
            "result": self.result,
            "category": self.category.value,
            "actions": list(self.actions),
            "successCount": self.success_count,
            "keywords": list(self.keywords),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionRecord":
        try:
            category = Category(data.get("category", "other"))
        except ValueError:
            category = Category.OTHER
        return cls(
            id=data["id"],
            timestamp=data.get("timestamp") or _now_iso(),
            intent=data.get("intent", ""),
            targets=list(data.get("targets", [])),
            script=data.get("script", ""),
            success=bool(data.get("success", False)),
            result=data.get("result", ""),
            category=category,
            actions=list(data.get("actions", [])),
            success_count=int(data.get("successCount", 0)),
            keywords=list(data.get("keywords", [])),
        )

    def copy(self) -> "ExecutionRecord":
        return ExecutionRecord.from_dict(self.to_dict())


@dataclass
class PatternIndex:
    """Four append-only multi-maps from a facet value to record ids."""
    by_target: Dict[str, List[str]] = field(default_factory=dict)
    by_action: Dict[str, List[str]] = field(default_factory=dict)
    by_category: Dict[str, List[str]] = field(default_factory=dict)
    by_keyword: Dict[str, List[str]] = field(default_factory=dict)

    @staticmethod
    def _add(bucket_map: Dict[str, List[str]], key: str, record_id: str) -> None:
        ids = bucket_map.setdefault(key, [])
        if record_id not in ids:
            ids.append(record_id)

    def add_record(self, record: ExecutionRecord) -> None:
        for target in record.targets:
            self._add(self.by_target, target.lower(), record.id)
        for action in record.actions:
            self._add(self.by_action, action, record.id)
        self._add(self.by_category, record.category.value, record.id)
        for keyword in record.keywords:
            self._add(self.by_keyword, keyword, record.id)

    def all_ids(self) -> Set[str]:
        ids: Set[str] = set()
        for bucket_map in (self.by_target, self.by_action, self.by_category, self.by_keyword):
            for bucket in bucket_map.values():
                ids.update(bucket)
        return ids

    def to_dict(self) -> dict:
        return {
            "byTarget": {k: list(v) for k, v in self.by_target.items()},
            "byAction": {k: list(v) for k, v in self.by_action.items()},
            "byCategory": {k: list(v) for k, v in self.by_category.items()},
            "byKeyword": {k: list(v) for k, v in self.by_keyword.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PatternIndex":
        data = data or empty_index()
        return cls(
            by_target={k: list(v) for k, v in data.get("byTarget", {}).items()},
            by_action={k: list(v) for k, v in data.get("byAction", {}).items()},
            by_category={k: list(v) for k, v in data.get("byCategory", {}).items()},
            by_keyword={k: list(v) for k, v in data.get("byKeyword", {}).items()},
        )


@dataclass
class PatternStats:
    total_records: int = 0
    successful_records: int = 0
    count_by_target: Dict[str, int] = field(default_factory=dict)
    count_by_category: Dict[str, int] = field(default_factory=dict)
    top_records: List[ExecutionRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalRecords": self.total_records,
            "successfulRecords": self.successful_records,
            "countByTarget": dict(self.count_by_target),
            "countByCategory": dict(self.count_by_category),
            "topRecords": [r.to_dict() for r in self.top_records],
        }


# ---------------------------------------------------------------------------
# PatternStore
# ---------------------------------------------------------------------------

class PatternStore:
    """
    Durable, indexed history of script executions.

    The cache is loaded lazily on first access and kept for the life of the
    instance. Every mutation runs under one lock and is followed by a full
    write of records and index through the backend.
    """

    def __init__(
        self,
        backend: Optional[PersistenceBackend] = None,
        data_dir: Optional[Path] = None,
    ) -> None:
        self._backend = backend or JsonFileBackend(data_dir)
        self._lock = threading.RLock()
        self._records: Optional[Dict[str, ExecutionRecord]] = None
        self._index = PatternIndex()
        self._fingerprints: Dict[str, str] = {}

    @property
    def backend(self) -> PersistenceBackend:
        return self._backend

    # ── Persistence ──

    def _ensure_loaded(self) -> Dict[str, ExecutionRecord]:
        with self._lock:
            if self._records is None:
                self._load()
            return self._records

    def _load(self) -> None:
        records: Dict[str, ExecutionRecord] = {}
        loaded = self._backend.load_records()
        if loaded.ok:
            for data in loaded.value:
                record = ExecutionRecord.from_dict(data)
                records[record.id] = record
            if loaded.skipped:
                logger.warning("Dropped %d invalid record(s), kept %d", loaded.skipped, len(records))
        elif loaded.error.endswith("missing"):
            logger.debug("No pattern history yet (%s)", loaded.error)
        else:
            logger.warning("Pattern history unusable, starting empty: %s", loaded.error)

        index_loaded = self._backend.load_index()
        if index_loaded.ok:
            index = PatternIndex.from_dict(index_loaded.value)
        else:
            if records and not index_loaded.error.endswith("missing"):
                logger.warning("Pattern index unusable: %s", index_loaded.error)
            index = PatternIndex()

        self._records = records
        self._index = index
        self._fingerprints = {}
        for record in records.values():
            self._fingerprints.setdefault(fingerprint(record.script), record.id)

        if not self._index_is_consistent():
            logger.info("Index mismatch detected, rebuilding pattern index.")
            self._rebuild_index()

        logger.debug("Loaded %d execution records from %s", len(records), self._backend.describe())

    def _index_is_consistent(self) -> bool:
        indexed = self._index.all_ids()
        return indexed == set(self._records)

    def _rebuild_index(self) -> None:
        self._index = PatternIndex()
        for record in self._records.values():
            self._index.add_record(record)

    def _persist(self) -> None:
        self._backend.save(
            [r.to_dict() for r in self._records.values()],
            self._index.to_dict(),
        )

    # ── Write ──

    def log(self, intent: str, script: str, success: bool, result: str = "") -> ExecutionRecord:
        """Record one execution outcome and return a copy of the stored record."""
        targets = extract_targets(script)
        actions = extract_actions(script)
        keywords = extract_keywords(f"{intent} {script}")
        category = categorize(targets, actions)
        key = fingerprint(script)

        with self._lock:
            records = self._ensure_loaded()
            existing_id = self._fingerprints.get(key)
            existing = records.get(existing_id) if existing_id else None

            if existing is not None:
                existing.timestamp = _now_iso()
                existing.success = bool(success)
                existing.result = result or ""
                if success:
                    existing.success_count += 1
                record = existing
                logger.info(
                    "Updated pattern %s (success=%s, count=%d)",
                    record.id[:8], record.success, record.success_count,
                )
            else:
                record = ExecutionRecord(
                    intent=intent or "",
                    targets=targets,
                    script=script,
                    success=bool(success),
                    result=result or "",
                    category=category,
                    actions=actions,
                    success_count=1 if success else 0,
                    keywords=keywords,
                )
                while record.id in records:
                    record.id = uuid.uuid4().hex
                records[record.id] = record
                self._fingerprints[key] = record.id
                self._index.add_record(record)
                logger.info(
                    "New pattern %s (%s, targets=%s)",
                    record.id[:8], record.category.value, ", ".join(targets) or "-",
                )

            self._persist()
            return record.copy()

    def clear(self) -> None:
        """Drop every record and index entry. Unguarded: callers must confirm first."""
        with self._lock:
            self._records = {}
            self._index = PatternIndex()
            self._fingerprints = {}
            self._persist()
        logger.info("Pattern store cleared")

    # ── Read ──

    def _bucket(self, bucket_map: Dict[str, List[str]], key: Optional[str]) -> Set[str]:
        if not key:
            return set()
        return set(bucket_map.get(key.lower(), []))

    def find_similar(
        self,
        intent: str,
        target: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 5,
        only_successful: bool = True,
    ) -> List[ExecutionRecord]:
        """Rank remembered records against *intent*, optionally narrowed by target/action."""
        if limit <= 0:
            return []

        intent_keywords = set(extract_keywords(intent))
        with self._lock:
            records = self._ensure_loaded()
            index = self._index

            if target:
                candidates = self._bucket(index.by_target, target)
                if action:
                    candidates &= self._bucket(index.by_action, action)
            elif action:
                candidates = self._bucket(index.by_action, action)
            else:
                candidates = set()
                for keyword in intent_keywords:
                    candidates |= self._bucket(index.by_keyword, keyword)

            if not candidates:
                candidates = set(records)

            scored = []
            for record_id in candidates:
                record = records.get(record_id)
                if record is None:
                    continue
                if only_successful and not record.success:
                    continue
                overlap = len(intent_keywords.intersection(record.keywords))
                score = overlap * KEYWORD_WEIGHT + record.success_count
                scored.append((score, record))

            scored.sort(key=lambda pair: (-pair[0], pair[1].id))
            results = [record.copy() for _, record in scored[:limit]]

        logger.debug(
            "find_similar(%r, target=%s, action=%s) -> %d of %d candidates",
            intent, target, action, len(results), len(candidates),
        )
        return results

    def best_pattern(self, target: str, action: str) -> Optional[ExecutionRecord]:
        """The top successful record for *target* and *action*, if any."""
        found = self.find_similar("", target=target, action=action, limit=1, only_successful=True)
        return found[0] if found else None

    def by_target(self, target: str) -> List[ExecutionRecord]:
        """All records referencing *target*, most successful first."""
        with self._lock:
            records = self._ensure_loaded()
            ids = self._index.by_target.get((target or "").lower(), [])
            found = [records[i] for i in ids if i in records]
            found.sort(key=lambda r: -r.success_count)
            return [r.copy() for r in found]

    def get(self, record_id: str) -> Optional[ExecutionRecord]:
        with self._lock:
            record = self._ensure_loaded().get(record_id)
            return record.copy() if record else None

    def stats(self) -> PatternStats:
        with self._lock:
            records = list(self._ensure_loaded().values())

            by_target: Dict[str, int] = {}
            by_category: Dict[str, int] = {}
            successful = 0
            for record in records:
                if record.success:
                    successful += 1
                for target in record.targets:
                    by_target[target] = by_target.get(target, 0) + 1
                by_category[record.category.value] = by_category.get(record.category.value, 0) + 1

            top = sorted(
                (r for r in records if r.success),
                key=lambda r: -r.success_count,
            )[:TOP_RECORDS_LIMIT]

            return PatternStats(
                total_records=len(records),
                successful_records=successful,
                count_by_target=by_target,
                count_by_category=by_category,
                top_records=[r.copy() for r in top],
            )

    def index_snapshot(self) -> Dict[str, Any]:
        """A detached copy of the index maps, keyed like the on-disk document."""
        with self._lock:
            self._ensure_loaded()
            return self._index.to_dict()

    def __len__(self) -> int:
        return len(self._ensure_loaded())


# ---------------------------------------------------------------------------
# Module-level convenience
# ---------------------------------------------------------------------------

_store: Optional[PatternStore] = None


def get_pattern_store(data_dir: Optional[Path] = None) -> PatternStore:
    """Get or create the shared PatternStore instance."""
    global _store
    if _store is None:
        _store = PatternStore(data_dir=data_dir)
    return _store


def reset_pattern_store() -> None:
    global _store
    _store = None
