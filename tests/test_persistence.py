"""
Tests for persistence backends and schema validation.
"""

import json
import os

import pytest

from scriptwise.errors import PersistenceError
from scriptwise.persistence import (
    InMemoryBackend,
    JsonFileBackend,
    LoadResult,
    _save_json,
    empty_index,
    validate_index,
    validate_records,
)


def _record(**overrides):
    data = {
        "id": "r1",
        "timestamp": "2026-01-01T00:00:00+00:00",
        "intent": "play",
        "targets": ["Music"],
        "script": 'tell application "Music" to play',
        "success": True,
        "result": "",
        "category": "media",
        "actions": ["play"],
        "successCount": 1,
        "keywords": ["play", "music"],
    }
    data.update(overrides)
    return data


class TestValidation:

    @pytest.mark.unit
    def test_valid_records(self):
        result = validate_records([_record()])
        assert result.ok
        assert result.value[0]["successCount"] == 1

    @pytest.mark.unit
    def test_records_must_be_a_list(self):
        result = validate_records({"id": "r1"})
        assert not result.ok
        assert "array" in result.error

    @pytest.mark.unit
    def test_negative_success_count_skipped(self):
        result = validate_records([_record(successCount=-1)])
        assert result.ok
        assert result.value == []
        assert result.skipped == 1

    @pytest.mark.unit
    def test_missing_required_field_skipped(self):
        data = _record()
        del data["script"]
        result = validate_records([data])
        assert result.value == []
        assert result.skipped == 1

    @pytest.mark.unit
    def test_invalid_record_does_not_discard_valid_ones(self):
        result = validate_records([
            _record(id="r1"),
            _record(id="r2", successCount=-1),
            _record(id="r3"),
        ])
        assert result.ok
        assert [r["id"] for r in result.value] == ["r1", "r3"]
        assert result.skipped == 1

    @pytest.mark.unit
    def test_index_defaults_missing_facets(self):
        result = validate_index({"byTarget": {"music": ["r1"]}})
        assert result.ok
        assert result.value["byKeyword"] == {}
        assert set(result.value) == set(empty_index())

    @pytest.mark.unit
    def test_index_wrong_shape_rejected(self):
        assert not validate_index({"byTarget": {"music": "r1"}}).ok
        assert not validate_index([]).ok

    @pytest.mark.unit
    def test_load_result_helpers(self):
        assert LoadResult.success(3).value == 3
        failed = LoadResult.failure("nope")
        assert failed.ok is False and failed.error == "nope"


class TestJsonFileBackend:

    @pytest.mark.unit
    def test_missing_files(self, tmp_path):
        backend = JsonFileBackend(tmp_path)
        records = backend.load_records()
        assert not records.ok
        assert records.error == "learned-patterns.json: missing"
        assert backend.load_index().error == "patterns-index.json: missing"

    @pytest.mark.unit
    def test_save_and_load(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "nested")
        index = empty_index()
        index["byTarget"]["music"] = ["r1"]
        backend.save([_record()], index)

        assert backend.load_records().value[0]["id"] == "r1"
        assert backend.load_index().value["byTarget"] == {"music": ["r1"]}
        assert not list((tmp_path / "nested").glob("*.tmp"))

    @pytest.mark.unit
    def test_corrupt_json_reported_and_moved_aside(self, tmp_path):
        (tmp_path / "learned-patterns.json").write_text("[{", encoding="utf-8")
        result = JsonFileBackend(tmp_path).load_records()
        assert not result.ok
        assert "corrupt" in result.error
        assert not (tmp_path / "learned-patterns.json").exists()
        assert (tmp_path / "learned-patterns.json.corrupt").read_text(encoding="utf-8") == "[{"

    @pytest.mark.unit
    def test_non_array_document_moved_aside(self, tmp_path):
        (tmp_path / "learned-patterns.json").write_text('{"id": "r1"}', encoding="utf-8")
        result = JsonFileBackend(tmp_path).load_records()
        assert not result.ok
        assert (tmp_path / "learned-patterns.json.corrupt").exists()

    @pytest.mark.unit
    def test_partially_invalid_document_kept_in_place(self, tmp_path):
        path = tmp_path / "learned-patterns.json"
        path.write_text(json.dumps([_record(), _record(id="bad", successCount=-1)]), encoding="utf-8")
        result = JsonFileBackend(tmp_path).load_records()
        assert [r["id"] for r in result.value] == ["r1"]
        assert path.exists()
        assert not (tmp_path / "learned-patterns.json.corrupt").exists()

    @pytest.mark.unit
    def test_save_failure_raises_persistence_error(self, tmp_path, monkeypatch):
        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", boom)
        backend = JsonFileBackend(tmp_path)
        with pytest.raises(PersistenceError):
            backend.save([], empty_index())
        assert not list(tmp_path.glob("*.tmp"))

    @pytest.mark.unit
    def test_save_json_is_pretty_printed(self, tmp_path):
        path = tmp_path / "doc.json"
        _save_json(path, {"a": [1]})
        text = path.read_text(encoding="utf-8")
        assert json.loads(text) == {"a": [1]}
        assert "\n" in text


class TestInMemoryBackend:

    @pytest.mark.unit
    def test_missing_until_saved(self):
        backend = InMemoryBackend()
        assert backend.load_records().error == "missing"
        backend.save([_record()], empty_index())
        assert backend.load_records().ok
        assert backend.save_count == 1

    @pytest.mark.unit
    def test_returns_detached_copies(self):
        backend = InMemoryBackend(records=[_record()], index=empty_index())
        loaded = backend.load_records().value
        loaded[0]["successCount"] = 50
        assert backend.load_records().value[0]["successCount"] == 1
