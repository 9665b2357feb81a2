"""
Shared fixtures for the Scriptwise test suite.

Every fixture works against temp directories or in-memory backends, and the
scripting engine is replaced by a fake, so the suite runs on any platform.
"""

import os
import tempfile

# Keep the module-level defaults away from the real ~/.scriptwise
os.environ.setdefault("SCRIPTWISE_DATA_DIR", tempfile.mkdtemp(prefix="scriptwise-tests-"))

import pytest

from scriptwise.executor import ExecutionResult
from scriptwise.intelligence import ScriptIntelligence
from scriptwise.pattern_store import PatternStore
from scriptwise.persistence import InMemoryBackend
from scriptwise.skills import MarkdownSkillProvider


MUSIC_SKILL = """# Music.app

## Playback

Start playback of the current library:

```applescript
tell application "Music"
    play
end tell
```

## Playlists

Add a track to a playlist by duplicating it:

```applescript
tell application "Music"
    duplicate (first track whose name is "Song") to playlist "Favourites"
end tell
```

## Common Patterns

| Goal | Script |
|------|--------|
| Play | play |
| Pause | pause |

## Gotchas

### Tracks, not songs
### Use duplicate instead of add
1. There is no current track when nothing is playing

## Troubleshooting

| Problem | Cause | Fix |
|---------|-------|-----|
| -600 | Music not running | activate first |
"""


# ---------------------------------------------------------------------------
# Fake scripting engine
# ---------------------------------------------------------------------------

class FakeExecutor:
    """Stands in for osascript. Returns ``result`` and remembers each call."""

    def __init__(self, result=None):
        self.result = result or ExecutionResult(stdout="ok", exit_code=0)
        self.calls = []

    def execute(self, script, timeout_ms=None):
        self.calls.append((script, timeout_ms))
        return self.result


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_backend():
    return InMemoryBackend()


@pytest.fixture
def store(memory_backend):
    """Fresh PatternStore backed by process memory."""
    return PatternStore(backend=memory_backend)


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "scriptwise"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture
def file_store(data_dir):
    """PatternStore writing JSON files under a temp directory."""
    return PatternStore(data_dir=data_dir)


# ---------------------------------------------------------------------------
# Collaborator fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def failing_executor():
    return FakeExecutor(ExecutionResult(
        stderr="execution error: Music got an error: Application isn't running. (-600)",
        exit_code=1,
    ))


@pytest.fixture
def skills_dir(tmp_path):
    d = tmp_path / "skills"
    d.mkdir(parents=True, exist_ok=True)
    (d / "music.md").write_text(MUSIC_SKILL, encoding="utf-8")
    return d


@pytest.fixture
def skills(skills_dir):
    return MarkdownSkillProvider(skills_dir)


@pytest.fixture
def intel(store, fake_executor, skills):
    """Facade wired to in-memory storage, a fake engine and sample skills."""
    return ScriptIntelligence(store=store, executor=fake_executor, skills=skills)


@pytest.fixture
def executor_factory():
    """Build a FakeExecutor returning a given ExecutionResult."""
    return FakeExecutor
