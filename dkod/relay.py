"""Hook-side relay: turn a Claude Code hook invocation into a wire event.

Claude Code runs ``dkod capture-hook <repo_hash> <event>`` with the hook's
JSON payload on stdin. The payload is mapped to a
:class:`~dkod.wire.WireEvent` and sent as one NDJSON line to the per-repo
capture server, which is started in the background if it is not yet running.
Hook handling never raises, so a failure here never breaks the agent.
"""

from __future__ import annotations

import json
import shutil
import socket
import subprocess
import sys
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Optional, Union

from dkod.hooks import is_valid_repo_hash, resolve_socket_path
from dkod.wire import (
    PreCompact,
    PromptSubmitted,
    SessionEnd,
    SessionStart,
    ToolEnd,
    ToolStart,
    TurnStop,
    WireEvent,
)

__all__ = [
    "TOOL_INPUT_LIMIT",
    "rfc3339_utc",
    "truncate_tool_input",
    "build_wire_event",
    "log_hook_error",
    "hook_command",
]

TOOL_INPUT_LIMIT = 4096

_SOCKET_WAIT_SECONDS = 0.8
_SOCKET_POLL_SECONDS = 0.02
_WRITE_TIMEOUT_SECONDS = 1.0
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def rfc3339_utc(moment: Union[datetime, float, None] = None) -> str:
    """Format ``moment`` as an RFC 3339 UTC string with millisecond precision.

    ``moment`` may be a datetime (naive values are taken as UTC), epoch
    seconds, or None for now. Instants before the epoch clamp to the epoch.
    """
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif isinstance(moment, (int, float)):
        moment = datetime.fromtimestamp(max(0.0, float(moment)), timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    if moment < _EPOCH:
        moment = _EPOCH
    millis = moment.microsecond // 1000
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{millis:03d}Z"


def truncate_tool_input(value: Any, limit: int = TOOL_INPUT_LIMIT) -> Any:
    """Return ``value`` if its compact JSON fits in ``limit`` bytes.

    Otherwise return a string ``"[truncated N bytes] <prefix>"`` holding the
    longest UTF-8 prefix of the serialised form within ``limit`` bytes.
    Values that cannot be serialised become None.
    """
    try:
        text = json.dumps(
            value, separators=(",", ":"), ensure_ascii=False, sort_keys=True
        )
    except (TypeError, ValueError):
        return None
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return value
    prefix = encoded[: max(0, limit)].decode("utf-8", errors="ignore")
    return f"[truncated {len(encoded)} bytes] {prefix}"


def _get(payload: Any, key: str) -> Any:
    return payload.get(key) if isinstance(payload, dict) else None


def _opt_str(payload: Any, key: str) -> Optional[str]:
    value = _get(payload, key)
    return value if isinstance(value, str) else None


def _str(payload: Any, key: str, default: str = "") -> str:
    value = _opt_str(payload, key)
    return default if value is None else value


def _uint(payload: Any, key: str) -> int:
    value = _get(payload, key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def build_wire_event(event_name: str, payload: Any) -> Optional[WireEvent]:
    """Map a hook event name and its JSON payload to a wire event.

    Returns None for event names that are not translated.
    """
    common = {
        "v": 1,
        "session_id": _str(payload, "session_id"),
        "ts": rfc3339_utc(),
        "cwd": _str(payload, "cwd"),
    }
    if event_name == "SessionStart":
        return SessionStart(
            **common,
            transcript_path=_str(payload, "transcript_path"),
            model=_opt_str(payload, "model"),
            agent_type=_opt_str(payload, "agent_type"),
            source=_opt_str(payload, "source"),
        )
    if event_name == "UserPromptSubmit":
        return PromptSubmitted(
            **common,
            prompt=_str(payload, "prompt"),
            permission_mode=_opt_str(payload, "permission_mode"),
        )
    if event_name == "PreToolUse":
        return ToolStart(
            **common,
            tool_name=_str(payload, "tool_name"),
            tool_input=truncate_tool_input(_get(payload, "tool_input")),
            tool_use_id=_str(payload, "tool_use_id"),
        )
    if event_name in ("PostToolUse", "PostToolUseFailure"):
        failed = event_name == "PostToolUseFailure"
        return ToolEnd(
            **common,
            tool_name=_str(payload, "tool_name"),
            tool_use_id=_str(payload, "tool_use_id"),
            status="failure" if failed else "success",
            duration_ms=_uint(payload, "duration_ms"),
            error=_opt_str(payload, "error") if failed else None,
        )
    if event_name == "PreCompact":
        return PreCompact(**common, trigger=_str(payload, "trigger", "manual"))
    if event_name == "Stop":
        return TurnStop(**common)
    if event_name == "SessionEnd":
        return SessionEnd(
            **common,
            reason=_str(payload, "reason"),
            transcript_path=_str(payload, "transcript_path"),
        )
    return None


def _temp_dir() -> Path:
    return Path(tempfile.gettempdir())


def log_hook_error(repo_hash: str, message: str) -> None:
    """Append a timestamped line to ``<tmp>/dkod-hook-<repo_hash>.log``. Never raises."""
    path = _temp_dir() / f"dkod-hook-{repo_hash}.log"
    try:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"{rfc3339_utc()} {message}\n")
    except OSError:
        pass


def _read_payload(stdin: Union[str, IO[str], None]) -> Any:
    if isinstance(stdin, str):
        text = stdin
    else:
        source = sys.stdin if stdin is None else stdin
        try:
            text = source.read()
        except (OSError, ValueError):
            text = ""
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ValueError(f"parse hook input JSON from stdin: {exc}") from exc


def _lazy_spawn_server(payload: Any, repo_hash: str) -> None:
    cwd = _str(payload, "cwd", ".") or "."
    executable = shutil.which("dkod")
    if executable is None:
        raise RuntimeError("resolve dkod binary path: dkod not found on PATH")
    log_path = _temp_dir() / f"dkod-server-{repo_hash}.log"
    try:
        with log_path.open("ab") as log_file:
            subprocess.Popen(
                [executable, "capture", "claude-code", "--", "--detached"],
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=log_file,
                start_new_session=True,
            )
    except OSError as exc:
        raise RuntimeError(f"spawn detached capture server: {exc}") from exc


def _wait_for_socket(path: Path, budget: float) -> None:
    deadline = time.monotonic() + budget
    while time.monotonic() < deadline:
        if path.exists():
            return
        time.sleep(_SOCKET_POLL_SECONDS)
    raise TimeoutError(f"server socket did not appear within {int(budget * 1000)}ms")


def _connect(path: Path) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(str(path))
    except OSError:
        sock.close()
        raise
    return sock


def _relay(repo_hash: str, event_name: str, stdin: Union[str, IO[str], None]) -> None:
    payload = _read_payload(stdin)
    event = build_wire_event(event_name, payload)
    if event is None:
        log_hook_error(repo_hash, f"unknown hook event: {event_name}")
        return

    socket_path = resolve_socket_path(repo_hash)
    try:
        sock = _connect(socket_path)
    except OSError:
        _lazy_spawn_server(payload, repo_hash)
        _wait_for_socket(socket_path, _SOCKET_WAIT_SECONDS)
        try:
            sock = _connect(socket_path)
        except OSError as exc:
            raise ConnectionError(f"connect after spawn {socket_path}: {exc}") from exc

    with sock:
        sock.settimeout(_WRITE_TIMEOUT_SECONDS)
        sock.sendall((event.to_json() + "\n").encode("utf-8"))


def hook_command(
    repo_hash: str, event_name: str, stdin: Union[str, IO[str], None] = None
) -> None:
    """Handle one hook invocation; never raises.

    ``stdin`` is the hook payload as text or a readable stream (defaults to
    the process's stdin). A malformed ``repo_hash`` is ignored without
    touching the filesystem; other failures are appended to the hook log.
    """
    if not is_valid_repo_hash(repo_hash):
        return
    try:
        _relay(repo_hash, event_name, stdin)
    except Exception as exc:  # the hook must never break the agent
        log_hook_error(repo_hash, f"hook error ({event_name}): {exc}")