"""Tests for the on-disk session store."""

import json

from claude_watch.store import STORE_VERSION, PersistedSession, PersistedTool, SessionStore


def _session(session_id="s1", **overrides):
    values = dict(
        session_id=session_id,
        transcript_path=f"/p/{session_id}.jsonl",
        cwd="/work",
        pid=100,
        ppid=99,
        tty="/dev/ttys002",
        pid_start_time="Mon Jan 5 10:00:00 2026",
    )
    values.update(overrides)
    return PersistedSession(**values)


class TestSessionStore:
    def test_missing_file_loads_empty(self, tmp_path):
        assert SessionStore(tmp_path / "sessions.json").load() == []

    def test_save_then_load(self, tmp_path):
        store = SessionStore(tmp_path / "nested" / "sessions.json")
        tool = PersistedTool(name="Bash", input={"command": "ls"}, result="ok", timestamp=1.0, duration_ms=3.0)
        store.save([_session(recent_tools=[tool]), _session("s2", pid_start_time=None)])

        loaded = store.load()

        assert [s.session_id for s in loaded] == ["s1", "s2"]
        assert loaded[0].recent_tools[0].input == {"command": "ls"}
        assert loaded[1].pid_start_time is None

    def test_document_uses_camel_case(self, tmp_path):
        path = tmp_path / "sessions.json"
        SessionStore(path).save([_session()])

        raw = json.loads(path.read_text(encoding="utf-8"))

        assert raw["version"] == STORE_VERSION
        assert raw["sessions"][0]["sessionId"] == "s1"
        assert raw["sessions"][0]["pidStartTime"] == "Mon Jan 5 10:00:00 2026"

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = SessionStore(tmp_path / "sessions.json")
        store.save([_session()])
        store.save([])

        assert [p.name for p in tmp_path.iterdir()] == ["sessions.json"]
        assert store.load() == []

    def test_version_mismatch_discards_file(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({"version": STORE_VERSION + 1, "sessions": []}), encoding="utf-8")

        assert SessionStore(path).load() == []
        assert not path.exists()

    def test_invalid_document_discards_file(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text(
            json.dumps({"version": STORE_VERSION, "sessions": [{"sessionId": "s1"}]}),
            encoding="utf-8",
        )

        assert SessionStore(path).load() == []
        assert not path.exists()

    def test_corrupt_json_discards_file(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("{", encoding="utf-8")

        assert SessionStore(path).load() == []
        assert not path.exists()

    def test_clear_missing_file(self, tmp_path):
        SessionStore(tmp_path / "sessions.json").clear()
