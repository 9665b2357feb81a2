"""
Tests for the FastAPI endpoints.

The app state is pointed at a facade with an in-memory store and a fake
scripting engine before each test; the lifespan keeps an injected facade.
"""

import pytest
from fastapi.testclient import TestClient

from scriptwise.api import app, state
from scriptwise.errors import ExecutionError


PLAY = 'tell application "Music" to play'


@pytest.fixture
def client(intel):
    original = state.intel
    state.intel = intel
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    state.intel = original


class TestHealth:

    @pytest.mark.integration
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["subsystems"]["intelligence"] == "ready"
        assert data["subsystems"]["store"] == "InMemoryBackend"

    @pytest.mark.integration
    def test_uninitialized_returns_503(self):
        original = state.intel
        state.intel = None
        try:
            resp = TestClient(app).post("/classify", json={"script": PLAY})
            assert resp.status_code == 503
        finally:
            state.intel = original


class TestClassifyExecute:

    @pytest.mark.integration
    def test_classify(self, client):
        resp = client.post("/classify", json={"script": 'tell application "Finder" to empty the trash'})
        assert resp.status_code == 200
        assert resp.json()["risk"] == "critical"
        assert resp.json()["requiresConfirmation"] is True

    @pytest.mark.integration
    def test_execute_safe(self, client, fake_executor):
        resp = client.post("/execute", json={"script": PLAY, "intent": "play music"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["executed"] is True
        assert data["success"] is True
        assert len(fake_executor.calls) == 1

    @pytest.mark.integration
    def test_execute_blocked(self, client, fake_executor):
        resp = client.post("/execute", json={"script": 'tell application "Finder" to empty the trash'})
        assert resp.status_code == 200
        data = resp.json()
        assert data["executed"] is False
        assert data["gate"]["allowed"] is False
        assert fake_executor.calls == []

    @pytest.mark.integration
    def test_execute_empty_script_rejected(self, client):
        assert client.post("/execute", json={"script": ""}).status_code == 422

    @pytest.mark.integration
    def test_execute_engine_missing(self, client, intel, monkeypatch):
        def boom(script, timeout_ms=None):
            raise ExecutionError("Scripting engine not found: osascript")

        monkeypatch.setattr(intel.executor, "execute", boom)
        resp = client.post("/execute", json={"script": PLAY})
        assert resp.status_code == 503


class TestPatterns:

    @pytest.mark.integration
    def test_log_then_query(self, client):
        resp = client.post("/patterns/log", json={"intent": "play music", "script": PLAY, "success": True})
        assert resp.status_code == 200
        assert resp.json()["data"]["successCount"] == 1

        similar = client.post("/patterns/similar", json={"intent": "play music", "target": "Music"}).json()
        assert similar[0]["script"] == PLAY

        by_target = client.get("/patterns/target/Music").json()
        assert by_target[0]["successCount"] == 1

        stats = client.get("/patterns/stats").json()
        assert stats["totalRecords"] == 1

    @pytest.mark.integration
    def test_similar_limit_validated(self, client):
        resp = client.post("/patterns/similar", json={"intent": "x", "limit": -1})
        assert resp.status_code == 422

    @pytest.mark.integration
    def test_workflow(self, client):
        client.post("/patterns/log", json={"intent": "play music", "script": PLAY, "success": True})
        resp = client.get("/patterns/workflow", params={"intent": "play music", "target": "Music"})
        assert resp.status_code == 200
        assert resp.json()["patterns"][0]["script"] == PLAY
        assert "Quick Patterns" in resp.json()["context"]

    @pytest.mark.integration
    def test_skill_guide(self, client):
        data = client.get("/skills/Music").json()
        assert data["available"] is True
        assert data["quickReference"]["commonPatterns"] == ["Play: play", "Pause: pause"]
        assert client.get("/skills/Finder").json()["available"] is False

    @pytest.mark.integration
    def test_clear_requires_confirm(self, client, store):
        client.post("/patterns/log", json={"script": PLAY, "success": True})
        resp = client.post("/patterns/clear", json={})
        assert resp.status_code == 409
        assert len(store) == 1

        resp = client.post("/patterns/clear", json={"confirm": True})
        assert resp.status_code == 200
        assert len(store) == 0


class TestDiagnosis:

    @pytest.mark.integration
    def test_analyze(self, client):
        resp = client.post("/analyze", json={"script": PLAY, "error": "Error -600"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["analysis"]["errorType"] == "app_not_running"
        assert "activate" in data["analysis"]["fixedScript"]
        assert data["smartMessage"]

    @pytest.mark.integration
    def test_suggest(self, client):
        resp = client.post("/suggest", json={"target": "Safari", "intent": "open a tab"})
        assert resp.status_code == 200
        assert resp.json()["basedOn"] == "generic"
