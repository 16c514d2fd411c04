import asyncio
import json
from typer.testing import CliRunner

from captionvault import cli
from captionvault.core import config, storage

runner = CliRunner()

def _setup(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "STORE_PATH", str(tmp_path / "archive.db"))
    monkeypatch.setattr(config, "EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setattr(config, "ALIASES_PATH", "")
    monkeypatch.chdir(tmp_path)
    (tmp_path / "standup.json").write_text(json.dumps({
        "meetingTitle": "Standup",
        "transcriptArray": [{"Time": "09:00", "Name": "Ann", "Text": "Morning"},
                            {"Time": "09:01", "Name": "Raj", "Text": "Hi"}],
    }), encoding="utf-8")

def test_import_list_export_clear(tmp_path, monkeypatch):
    _setup(tmp_path, monkeypatch)
    result = runner.invoke(cli.app, ["import", "standup.json"])
    assert result.exit_code == 0, result.output
    assert "Archived standup.json: 2 captions" in result.output

    listed = runner.invoke(cli.app, ["list-sessions"])
    assert listed.exit_code == 0
    assert "Standup" in listed.output

    index = asyncio.run(storage.open_store().get(["session_index"]))["session_index"]
    sid = index[0]["id"]
    exported = runner.invoke(cli.app, ["export", sid, "--format", "md"])
    assert exported.exit_code == 0, exported.output
    written = list((tmp_path / "exports").rglob("*.md"))
    assert len(written) == 1
    assert "**Ann** (09:00):" in written[0].read_text(encoding="utf-8")

    cleared = runner.invoke(cli.app, ["clear", "--yes"])
    assert "Deleted 1 session(s)" in cleared.output

def test_unknown_session_exits_nonzero(tmp_path, monkeypatch):
    _setup(tmp_path, monkeypatch)
    result = runner.invoke(cli.app, ["view", "session_nope"])
    assert result.exit_code == 1
    assert "not found" in result.output

def test_no_matching_files(tmp_path, monkeypatch):
    _setup(tmp_path, monkeypatch)
    result = runner.invoke(cli.app, ["import", "*.txt"])
    assert result.exit_code == 1

def test_unusable_store_path_exits_cleanly(tmp_path, monkeypatch):
    _setup(tmp_path, monkeypatch)
    (tmp_path / "blocker").write_text("not a directory", encoding="utf-8")
    monkeypatch.setattr(storage, "STORE_PATH", str(tmp_path / "blocker" / "archive.db"))
    result = runner.invoke(cli.app, ["list-sessions"])
    assert result.exit_code == 1
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert "Cannot open store" in result.output
