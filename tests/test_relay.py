import io
import json
import socket
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from dkod.hooks import resolve_socket_path
from dkod.relay import (
    build_wire_event,
    hook_command,
    log_hook_error,
    rfc3339_utc,
    truncate_tool_input,
)
from dkod.wire import (
    PreCompact,
    PromptSubmitted,
    SessionEnd,
    SessionStart,
    ToolEnd,
    ToolStart,
    TurnStop,
    event_from_json,
)

HASH = "deadbeefcafe"


@pytest.fixture
def sandbox(tmp_path, monkeypatch):
    """Point temp, runtime and PATH lookups at an isolated directory."""
    empty_bin = tmp_path / "bin"
    empty_bin.mkdir()
    monkeypatch.setenv("PATH", str(empty_bin))
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
    monkeypatch.setenv("TMPDIR", str(tmp_path))
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    return tmp_path


def test_rfc3339_formats_milliseconds():
    moment = datetime(2026, 5, 3, 12, 0, 1, 123456, tzinfo=timezone.utc)
    assert rfc3339_utc(moment) == "2026-05-03T12:00:01.123Z"


def test_rfc3339_converts_offsets_and_naive():
    offset = timezone(timedelta(hours=2))
    assert rfc3339_utc(datetime(2026, 5, 3, 14, 0, 0, tzinfo=offset)) == (
        "2026-05-03T12:00:00.000Z"
    )
    assert rfc3339_utc(datetime(2026, 5, 3, 12, 0, 0)) == "2026-05-03T12:00:00.000Z"


def test_rfc3339_epoch_and_clamp():
    assert rfc3339_utc(0) == "1970-01-01T00:00:00.000Z"
    assert rfc3339_utc(datetime(1960, 1, 1, tzinfo=timezone.utc)) == (
        "1970-01-01T00:00:00.000Z"
    )


def test_rfc3339_now_has_expected_shape():
    text = rfc3339_utc()
    assert len(text) == 24
    assert text.endswith("Z")
    assert text[10] == "T"


def test_truncate_tool_input_keeps_small_values():
    value = {"file_path": "x.rs"}
    assert truncate_tool_input(value, 4096) == value


def test_truncate_tool_input_truncates_large_values():
    value = {"file_path": "x.rs", "content": "a" * 10_000}
    out = truncate_tool_input(value, 4096)
    assert isinstance(out, str)
    assert out.startswith("[truncated ")
    assert len(out) < 5000


def test_truncate_respects_utf8_boundary():
    value = "é" * 10
    out = truncate_tool_input(value, 4)
    # Serialised form is '"' + 20 bytes + '"' = 22 bytes; 4 bytes keep '"é'.
    assert out == '[truncated 22 bytes] "é'


def test_truncate_unserialisable_becomes_none():
    assert truncate_tool_input({"x": object()}) is None


def test_build_wire_event_session_start():
    payload = {
        "session_id": "abc",
        "cwd": "/x",
        "transcript_path": "/x/t.jsonl",
        "source": "startup",
    }
    event = build_wire_event("SessionStart", payload)
    assert isinstance(event, SessionStart)
    assert event.session_id == "abc"
    assert event.cwd == "/x"
    assert event.transcript_path == "/x/t.jsonl"
    assert event.source == "startup"
    assert event.model is None


def test_build_wire_event_unknown_event_returns_none():
    assert build_wire_event("NotARealEvent", {}) is None


def test_build_wire_event_post_tool_failure_carries_error():
    payload = {
        "session_id": "s",
        "cwd": "/x",
        "tool_name": "Edit",
        "tool_use_id": "tu1",
        "error": "permission denied",
    }
    event = build_wire_event("PostToolUseFailure", payload)
    assert isinstance(event, ToolEnd)
    assert event.status == "failure"
    assert event.error == "permission denied"


def test_build_wire_event_post_tool_success():
    payload = {"tool_name": "Read", "tool_use_id": "tu2", "duration_ms": 17, "error": "x"}
    event = build_wire_event("PostToolUse", payload)
    assert isinstance(event, ToolEnd)
    assert event.status == "success"
    assert event.duration_ms == 17
    assert event.error is None


def test_build_wire_event_bad_duration_defaults_to_zero():
    event = build_wire_event("PostToolUse", {"duration_ms": -5})
    assert event.duration_ms == 0


def test_build_wire_event_pre_tool_use_truncates_input():
    event = build_wire_event(
        "PreToolUse",
        {"tool_name": "Write", "tool_use_id": "t", "tool_input": {"c": "b" * 9000}},
    )
    assert isinstance(event, ToolStart)
    assert event.tool_input.startswith("[truncated ")


def test_build_wire_event_other_kinds():
    prompt = build_wire_event("UserPromptSubmit", {"prompt": "hi"})
    assert isinstance(prompt, PromptSubmitted)
    assert prompt.prompt == "hi"
    compact = build_wire_event("PreCompact", {})
    assert isinstance(compact, PreCompact)
    assert compact.trigger == "manual"
    assert isinstance(build_wire_event("Stop", {}), TurnStop)
    end = build_wire_event("SessionEnd", {"reason": "logout", "transcript_path": "/t"})
    assert isinstance(end, SessionEnd)
    assert (end.reason, end.transcript_path) == ("logout", "/t")


def test_build_wire_event_tolerates_non_object_payload():
    event = build_wire_event("SessionStart", [1, 2])
    assert event.session_id == ""
    assert event.transcript_path == ""


def test_log_hook_error_appends(sandbox):
    log_hook_error(HASH, "first")
    log_hook_error(HASH, "second")
    lines = (sandbox / f"dkod-hook-{HASH}.log").read_text().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith(" first")
    assert lines[1].endswith(" second")


def test_hook_unknown_event_is_logged(sandbox):
    assert hook_command(HASH, "NotARealEvent", "") is None
    body = (sandbox / f"dkod-hook-{HASH}.log").read_text()
    assert "unknown hook event: NotARealEvent" in body


def test_hook_with_no_socket_does_not_raise(sandbox):
    payload = json.dumps(
        {
            "session_id": "00000000-0000-0000-0000-000000000000",
            "transcript_path": "/tmp/never.jsonl",
            "cwd": str(sandbox),
            "hook_event_name": "SessionStart",
            "source": "startup",
        }
    )
    assert hook_command(HASH, "SessionStart", payload) is None
    body = (sandbox / f"dkod-hook-{HASH}.log").read_text()
    assert "hook error (SessionStart)" in body


def test_hook_with_malformed_repo_hash_touches_nothing(sandbox):
    before = sorted(p.name for p in sandbox.iterdir())
    assert hook_command("../../etc/passwd", "SessionStart", "{}") is None
    assert sorted(p.name for p in sandbox.iterdir()) == before


def test_hook_with_bad_json_is_logged(sandbox):
    hook_command(HASH, "Stop", io.StringIO("{not json"))
    body = (sandbox / f"dkod-hook-{HASH}.log").read_text()
    assert "parse hook input JSON" in body


def test_hook_sends_event_to_running_server(sandbox):
    socket_path = resolve_socket_path(HASH)
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(str(socket_path))
    listener.listen(1)
    listener.settimeout(5)
    try:
        payload = json.dumps(
            {"session_id": "sid-9", "cwd": "/w", "transcript_path": "/w/t.jsonl"}
        )
        hook_command(HASH, "SessionStart", payload)
        conn, _ = listener.accept()
        with conn:
            conn.settimeout(5)
            chunks = []
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
    finally:
        listener.close()
    data = b"".join(chunks).decode("utf-8")
    assert data.endswith("\n")
    event = event_from_json(data)
    assert isinstance(event, SessionStart)
    assert event.session_id == "sid-9"
    assert event.transcript_path == "/w/t.jsonl"
    assert not (sandbox / f"dkod-hook-{HASH}.log").exists()