"""
Persistence backends for the pattern store.

Two JSON documents make up the durable state: a flat array of execution
records and an index document holding four named maps (target, action,
category and keyword to record ids). Raw JSON is validated with pydantic
models before it reaches the store; a load never raises and reports its
outcome as a ``LoadResult``.

Backends:
    JsonFileBackend  — two files under a data directory, atomic swaps
    InMemoryBackend  — process-local, for tests and ephemeral use
"""

from __future__ import annotations

import copy
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from scriptwise.config import DATA_DIR, INDEX_FILENAME, PATTERNS_FILENAME, get_logger
from scriptwise.errors import PersistenceError

logger = get_logger("scriptwise.persistence")

T = TypeVar("T")

INDEX_FACETS = ("byTarget", "byAction", "byCategory", "byKeyword")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class RecordSchema(BaseModel):
    """On-disk shape of one execution record."""
    id: str
    timestamp: str
    intent: str = ""
    targets: List[str] = Field(default_factory=list)
    script: str
    success: bool
    result: str = ""
    category: str = "other"
    actions: List[str] = Field(default_factory=list)
    successCount: int = Field(default=0, ge=0)
    keywords: List[str] = Field(default_factory=list)


class IndexSchema(BaseModel):
    """On-disk shape of the pattern index."""
    byTarget: Dict[str, List[str]] = Field(default_factory=dict)
    byAction: Dict[str, List[str]] = Field(default_factory=dict)
    byCategory: Dict[str, List[str]] = Field(default_factory=dict)
    byKeyword: Dict[str, List[str]] = Field(default_factory=dict)


@dataclass
class LoadResult(Generic[T]):
    """Typed outcome of reading a document: a value, or the reason there is none."""
    ok: bool
    value: Optional[T] = None
    error: str = ""
    skipped: int = 0

    @classmethod
    def success(cls, value: T, skipped: int = 0) -> "LoadResult[T]":
        return cls(ok=True, value=value, skipped=skipped)

    @classmethod
    def failure(cls, error: str) -> "LoadResult[T]":
        return cls(ok=False, error=error)


def empty_index() -> Dict[str, Dict[str, List[str]]]:
    return {facet: {} for facet in INDEX_FACETS}


def validate_records(raw: Any) -> LoadResult[List[Dict[str, Any]]]:
    """
    Validate a decoded records document one record at a time.

    Invalid entries are logged and dropped; the valid ones are kept. Only a
    document that is not an array at all fails as a whole.
    """
    if not isinstance(raw, list):
        return LoadResult.failure(f"expected a JSON array of records, got {type(raw).__name__}")
    records: List[Dict[str, Any]] = []
    skipped = 0
    for position, item in enumerate(raw):
        try:
            records.append(RecordSchema.model_validate(item).model_dump())
        except ValidationError as exc:
            skipped += 1
            logger.warning(
                "Skipping invalid record #%d: %d validation error(s)",
                position, exc.error_count(),
            )
    return LoadResult.success(records, skipped=skipped)


def validate_index(raw: Any) -> LoadResult[Dict[str, Dict[str, List[str]]]]:
    """Validate a decoded index document."""
    if not isinstance(raw, dict):
        return LoadResult.failure(f"expected a JSON object for the index, got {type(raw).__name__}")
    try:
        index = IndexSchema.model_validate(raw).model_dump()
    except ValidationError as exc:
        return LoadResult.failure(f"invalid index: {exc.error_count()} validation error(s)")
    return LoadResult.success(index)


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def _read_json(path: Path) -> LoadResult[Any]:
    """Read and decode *path* without raising."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return LoadResult.success(json.load(fh))
    except FileNotFoundError:
        return LoadResult.failure("missing")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return LoadResult.failure(f"corrupt: {exc}")
    except OSError as exc:
        return LoadResult.failure(f"unreadable: {exc}")


def _quarantine(path: Path) -> Optional[Path]:
    """Move an undecodable document aside as ``<name>.corrupt`` so a later save cannot destroy it."""
    target = path.with_suffix(path.suffix + ".corrupt")
    try:
        os.replace(str(path), str(target))
    except OSError as exc:
        logger.error("Could not move corrupt file %s aside: %s", path, exc)
        return None
    logger.warning("Moved corrupt file %s to %s", path.name, target.name)
    return target


def _save_json(path: Path, data: Any) -> None:
    """Atomically write *data* as pretty-printed JSON to *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, default=str)
        os.replace(str(tmp), str(path))
    except Exception:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class PersistenceBackend(ABC):
    """Storage interface used by the pattern store."""

    @abstractmethod
    def load_records(self) -> LoadResult[List[Dict[str, Any]]]:
        """Return the stored record dicts."""

    @abstractmethod
    def load_index(self) -> LoadResult[Dict[str, Dict[str, List[str]]]]:
        """Return the stored index maps."""

    @abstractmethod
    def save(self, records: List[Dict[str, Any]], index: Dict[str, Dict[str, List[str]]]) -> None:
        """Persist the full record set and the full index. Raises PersistenceError."""

    def describe(self) -> str:
        return type(self).__name__


class JsonFileBackend(PersistenceBackend):
    """Two JSON documents under a per-user data directory."""

    def __init__(self, data_dir: Optional[Path] = None) -> None:
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR
        self.records_path = self.data_dir / PATTERNS_FILENAME
        self.index_path = self.data_dir / INDEX_FILENAME

    def load_records(self) -> LoadResult[List[Dict[str, Any]]]:
        raw = _read_json(self.records_path)
        if not raw.ok:
            if raw.error.startswith("corrupt"):
                _quarantine(self.records_path)
            return LoadResult.failure(f"{self.records_path.name}: {raw.error}")
        result = validate_records(raw.value)
        if not result.ok:
            _quarantine(self.records_path)
            return LoadResult.failure(f"{self.records_path.name}: {result.error}")
        return result

    def load_index(self) -> LoadResult[Dict[str, Dict[str, List[str]]]]:
        raw = _read_json(self.index_path)
        if not raw.ok:
            return LoadResult.failure(f"{self.index_path.name}: {raw.error}")
        result = validate_index(raw.value)
        if not result.ok:
            return LoadResult.failure(f"{self.index_path.name}: {result.error}")
        return result

    def save(self, records: List[Dict[str, Any]], index: Dict[str, Dict[str, List[str]]]) -> None:
        try:
            _save_json(self.records_path, records)
            _save_json(self.index_path, index)
        except OSError as exc:
            logger.error("Failed to write pattern data to %s: %s", self.data_dir, exc)
            raise PersistenceError(f"Failed to write pattern data: {exc}", path=str(self.data_dir)) from exc

    def describe(self) -> str:
        return f"JsonFileBackend({self.data_dir})"


class InMemoryBackend(PersistenceBackend):
    """Keeps deep copies of the last saved state in process memory."""

    def __init__(
        self,
        records: Optional[List[Dict[str, Any]]] = None,
        index: Optional[Dict[str, Dict[str, List[str]]]] = None,
    ) -> None:
        self._records: Optional[List[Dict[str, Any]]] = copy.deepcopy(records)
        self._index: Optional[Dict[str, Dict[str, List[str]]]] = copy.deepcopy(index)
        self.save_count = 0

    def load_records(self) -> LoadResult[List[Dict[str, Any]]]:
        if self._records is None:
            return LoadResult.failure("missing")
        return validate_records(copy.deepcopy(self._records))

    def load_index(self) -> LoadResult[Dict[str, Dict[str, List[str]]]]:
        if self._index is None:
            return LoadResult.failure("missing")
        return validate_index(copy.deepcopy(self._index))

    def save(self, records: List[Dict[str, Any]], index: Dict[str, Dict[str, List[str]]]) -> None:
        self._records = copy.deepcopy(records)
        self._index = copy.deepcopy(index)
        self.save_count += 1
