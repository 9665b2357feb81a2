"""
Tests for the command-line interface. The shared facade is replaced with the
test fixture so no real data directory or osascript is touched.
"""

import json

import pytest

from scriptwise import cli


PLAY = 'tell application "Music" to play'


@pytest.fixture(autouse=True)
def _use_test_facade(intel, monkeypatch):
    monkeypatch.setattr(cli, "get_intelligence", lambda: intel)


def _run(capsys, *argv):
    cli.main(list(argv))
    return capsys.readouterr()


class TestCli:

    @pytest.mark.unit
    def test_classify(self, capsys):
        out = _run(capsys, "classify", 'tell application "Finder" to empty the trash').out
        assert json.loads(out)["risk"] == "critical"

    @pytest.mark.unit
    def test_classify_from_file(self, capsys, tmp_path):
        path = tmp_path / "play.applescript"
        path.write_text(PLAY, encoding="utf-8")
        out = _run(capsys, "classify", "--file", str(path)).out
        assert json.loads(out)["risk"] == "none"

    @pytest.mark.unit
    def test_run_success(self, capsys, fake_executor):
        out = _run(capsys, "run", "--intent", "play music", PLAY).out
        assert json.loads(out)["success"] is True
        assert len(fake_executor.calls) == 1

    @pytest.mark.unit
    def test_run_blocked_exits_2(self, capsys, fake_executor):
        with pytest.raises(SystemExit) as exc:
            cli.main(["run", 'tell application "Finder" to empty the trash'])
        assert exc.value.code == 2
        assert "BLOCKED" in capsys.readouterr().err
        assert fake_executor.calls == []

    @pytest.mark.unit
    def test_log_similar_target_stats(self, capsys):
        _run(capsys, "log", "--intent", "play music", "--success", PLAY)
        similar = json.loads(_run(capsys, "similar", "play music", "--target", "Music").out)
        assert similar[0]["script"] == PLAY
        target = json.loads(_run(capsys, "target", "Music").out)
        assert len(target) == 1
        stats = json.loads(_run(capsys, "stats").out)
        assert stats["totalRecords"] == 1

    @pytest.mark.unit
    def test_log_requires_outcome(self):
        with pytest.raises(SystemExit):
            cli.main(["log", PLAY])

    @pytest.mark.unit
    def test_analyze_message(self, capsys):
        out = _run(capsys, "analyze", "--error", "Error -600", "--message", PLAY).out
        assert "Music is not running." in out

    @pytest.mark.unit
    def test_suggest(self, capsys):
        out = _run(capsys, "suggest", "Safari", "open a tab").out
        assert json.loads(out)["basedOn"] == "generic"

    @pytest.mark.unit
    def test_skill_json_and_raw(self, capsys):
        guide = json.loads(_run(capsys, "skill", "Music").out)
        assert guide["available"] is True
        assert _run(capsys, "skill", "Music", "--raw").out.startswith("# Music.app")

    @pytest.mark.unit
    def test_skill_raw_missing_exits_1(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["skill", "Finder", "--raw"])
        assert exc.value.code == 1
        assert "No skill file" in capsys.readouterr().err

    @pytest.mark.unit
    def test_clear_needs_yes(self, capsys, store):
        _run(capsys, "log", "--success", PLAY)
        with pytest.raises(SystemExit) as exc:
            cli.main(["clear"])
        assert exc.value.code == 2
        assert len(store) == 1
        out = _run(capsys, "clear", "--yes").out
        assert json.loads(out) == {"cleared": True}
        assert len(store) == 0

    @pytest.mark.unit
    def test_no_command_prints_help(self):
        with pytest.raises(SystemExit) as exc:
            cli.main([])
        assert exc.value.code == 1
