"""Tests for transcript parsing."""

import json

from claude_watch.transcript import (
    SessionStatus,
    is_transcript_file,
    parse_transcript,
)

SESSION_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


def _write(path, entries):
    lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _user(text, **extra):
    return {
        "type": "user",
        "sessionId": SESSION_ID,
        "cwd": "/work/app",
        "timestamp": "2026-01-05T10:00:00.000Z",
        "message": {"role": "user", "content": text},
        **extra,
    }


def _assistant(content, stop_reason="end_turn", usage=None):
    message = {"role": "assistant", "model": "claude-sonnet-4", "content": content, "stop_reason": stop_reason}
    if usage is not None:
        message["usage"] = usage
    return {"type": "assistant", "sessionId": SESSION_ID, "message": message}


def _todo_write(*statuses):
    return {
        "type": "tool_use",
        "name": "TodoWrite",
        "input": {
            "todos": [
                {"content": f"task {i}", "status": status, "activeForm": f"doing {i}"}
                for i, status in enumerate(statuses)
            ]
        },
    }


class TestFileNames:
    def test_transcript_names(self):
        assert is_transcript_file(f"{SESSION_ID}.jsonl")
        assert is_transcript_file("agent-1234abcd.jsonl")
        assert not is_transcript_file("notes.jsonl")
        assert not is_transcript_file(f"{SESSION_ID}.json")


class TestStatus:
    """Status derivation from the last turn."""

    def test_open_turn_is_working(self, tmp_path):
        path = _write(tmp_path / f"{SESSION_ID}.jsonl", [_user("fix the bug")])

        state = parse_transcript(path)

        assert state.status is SessionStatus.WORKING
        assert state.last_user_prompt == "fix the bug"
        assert state.cwd == "/work/app"

    def test_pending_tool_use_is_working(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [
                _user("list files"),
                _assistant([{"type": "tool_use", "name": "Bash", "input": {}}], stop_reason="tool_use"),
            ],
        )
        assert parse_transcript(path).status is SessionStatus.WORKING

    def test_finished_turn_is_done(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [_user("hi"), _assistant([{"type": "text", "text": "hello"}])],
        )
        assert parse_transcript(path).status is SessionStatus.DONE

    def test_unfinished_todos_pause(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [
                _user("plan it"),
                _assistant([_todo_write("completed", "in_progress")], stop_reason="tool_use"),
                _user([{"type": "tool_result", "content": "ok"}]),
                _assistant([{"type": "text", "text": "Stopping here."}]),
            ],
        )

        state = parse_transcript(path)

        assert state.status is SessionStatus.PAUSED
        assert state.has_in_progress_todos
        assert [t.active_form for t in state.todos] == ["doing 0", "doing 1"]
        # Tool results are not prompts.
        assert state.last_user_prompt == "plan it"

    def test_interrupt_ends_turn(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [
                _user("long task"),
                _assistant([{"type": "tool_use", "name": "Bash", "input": {}}], stop_reason="tool_use"),
                _user([{"type": "text", "text": "[Request interrupted by user]"}]),
            ],
        )
        state = parse_transcript(path)

        assert state.status is SessionStatus.DONE
        assert state.last_user_prompt == "long task"

    def test_no_messages_is_done(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [{"type": "system", "sessionId": SESSION_ID, "cwd": "/work/app"}],
        )
        assert parse_transcript(path).status is SessionStatus.DONE


class TestContent:
    def test_summary_model_and_usage(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [
                {"type": "summary", "summary": "Fixing login"},
                _user("go"),
                _assistant(
                    [{"type": "text", "text": "a"}],
                    usage={"input_tokens": 10, "output_tokens": 5, "cache_read_input_tokens": 100},
                ),
                _user("again"),
                _assistant(
                    [{"type": "text", "text": "b"}],
                    usage={"input_tokens": 20, "output_tokens": 7, "cache_creation_input_tokens": 3},
                ),
            ],
        )

        state = parse_transcript(path)

        assert state.summary == "Fixing login"
        assert state.model == "claude-sonnet-4"
        assert state.message_count == 4
        assert state.token_usage.output_tokens == 12
        assert state.token_usage.context_tokens == 23
        assert state.to_dict()["context_tokens"] == 23

    def test_skips_corrupt_lines(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            ["{not json", _user("still parsed"), '{"type": 5}'],
        )
        assert parse_transcript(path).last_user_prompt == "still parsed"

    def test_meta_and_command_messages_are_not_prompts(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [
                _user("real prompt"),
                _user("<command-name>/clear</command-name>"),
                _user("caveat", isMeta=True),
            ],
        )
        assert parse_transcript(path).last_user_prompt == "real prompt"

    def test_created_from_first_timestamp(self, tmp_path):
        path = _write(tmp_path / f"{SESSION_ID}.jsonl", [_user("x")])
        state = parse_transcript(path)
        assert state.created == 1767607200.0


class TestUnparseable:
    def test_missing_file(self, tmp_path):
        assert parse_transcript(tmp_path / "gone.jsonl") is None

    def test_no_session_id(self, tmp_path):
        path = _write(tmp_path / f"{SESSION_ID}.jsonl", [{"type": "summary", "summary": "x"}])
        assert parse_transcript(path) is None


class TestAgents:
    def test_agent_file_takes_stem_and_parent(self, tmp_path):
        path = _write(
            tmp_path / "agent-1a2b3c4d.jsonl",
            [_user("subtask", isSidechain=True, agentId="1a2b3c4d")],
        )

        state = parse_transcript(path)

        assert state.is_agent
        assert state.session_id == "agent-1a2b3c4d"
        assert state.parent_session_id == SESSION_ID

    def test_sidechain_in_uuid_file_uses_agent_id(self, tmp_path):
        path = _write(
            tmp_path / f"{SESSION_ID}.jsonl",
            [_user("subtask", isSidechain=True, agentId="99ff")],
        )

        state = parse_transcript(path)

        assert state.session_id == "agent-99ff"
        assert state.parent_session_id == SESSION_ID
