"""Wire protocol between the hook script and the capture server.

The hook speaks NDJSON, one :class:`WireEvent` per line, tagged by ``kind``.
:class:`SessionTracker` is a pure state machine that consumes those events
and reports when a session has finished, either cleanly via ``session_end``
or through the orphan watchdog after a period of silence.
"""

from __future__ import annotations

import dataclasses
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ClassVar, Optional

__all__ = [
    "WireEvent",
    "SessionStart",
    "PromptSubmitted",
    "ToolStart",
    "ToolEnd",
    "PreCompact",
    "TurnStop",
    "SessionEnd",
    "EndReason",
    "FinishedSession",
    "SessionTracker",
    "event_from_dict",
    "event_from_json",
]

_OPTIONAL_STR = "optional_str"
_REQUIRED_STR = "str"
_UINT = "uint"
_ANY = "any"


@dataclass(frozen=True, kw_only=True)
class WireEvent:
    """Common envelope carried by every wire event."""

    KIND: ClassVar[str] = ""
    _FIELD_KINDS: ClassVar[dict[str, str]] = {
        "v": _UINT,
        "session_id": _REQUIRED_STR,
        "ts": _REQUIRED_STR,
        "cwd": _REQUIRED_STR,
    }

    v: int
    session_id: str
    ts: str
    cwd: str

    @property
    def kind(self) -> str:
        return self.KIND

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a dict with ``kind`` first; unset optionals are omitted."""
        out: dict[str, Any] = {"kind": self.KIND}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None and self._field_kinds().get(f.name) == _OPTIONAL_STR:
                continue
            out[f.name] = value
        return out

    def to_json(self) -> str:
        """Serialise to one compact JSON line (no trailing newline)."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def _field_kinds(cls) -> dict[str, str]:
        kinds: dict[str, str] = {}
        for klass in reversed(cls.__mro__):
            kinds.update(klass.__dict__.get("_FIELD_KINDS", {}))
        return kinds


@dataclass(frozen=True, kw_only=True)
class SessionStart(WireEvent):
    KIND: ClassVar[str] = "session_start"
    _FIELD_KINDS: ClassVar[dict[str, str]] = {
        "transcript_path": _REQUIRED_STR,
        "model": _OPTIONAL_STR,
        "agent_type": _OPTIONAL_STR,
        "source": _OPTIONAL_STR,
    }

    transcript_path: str
    model: Optional[str] = None
    agent_type: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class PromptSubmitted(WireEvent):
    KIND: ClassVar[str] = "prompt_submitted"
    _FIELD_KINDS: ClassVar[dict[str, str]] = {
        "prompt": _REQUIRED_STR,
        "permission_mode": _OPTIONAL_STR,
    }

    prompt: str
    permission_mode: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class ToolStart(WireEvent):
    KIND: ClassVar[str] = "tool_start"
    _FIELD_KINDS: ClassVar[dict[str, str]] = {
        "tool_name": _REQUIRED_STR,
        "tool_input": _ANY,
        "tool_use_id": _REQUIRED_STR,
    }

    tool_name: str
    tool_input: Any
    tool_use_id: str


@dataclass(frozen=True, kw_only=True)
class ToolEnd(WireEvent):
    KIND: ClassVar[str] = "tool_end"
    _FIELD_KINDS: ClassVar[dict[str, str]] = {
        "tool_name": _REQUIRED_STR,
        "tool_use_id": _REQUIRED_STR,
        "status": _REQUIRED_STR,
        "duration_ms": _UINT,
        "error": _OPTIONAL_STR,
    }

    tool_name: str
    tool_use_id: str
    status: str  # "success" | "failure"
    duration_ms: int
    error: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class PreCompact(WireEvent):
    KIND: ClassVar[str] = "pre_compact"
    _FIELD_KINDS: ClassVar[dict[str, str]] = {"trigger": _REQUIRED_STR}

    trigger: str  # "manual" | "auto"


@dataclass(frozen=True, kw_only=True)
class TurnStop(WireEvent):
    KIND: ClassVar[str] = "turn_stop"


@dataclass(frozen=True, kw_only=True)
class SessionEnd(WireEvent):
    KIND: ClassVar[str] = "session_end"
    _FIELD_KINDS: ClassVar[dict[str, str]] = {
        "reason": _REQUIRED_STR,
        "transcript_path": _REQUIRED_STR,
    }

    reason: str
    transcript_path: str


_EVENT_TYPES: dict[str, type[WireEvent]] = {
    cls.KIND: cls
    for cls in (
        SessionStart,
        PromptSubmitted,
        ToolStart,
        ToolEnd,
        PreCompact,
        TurnStop,
        SessionEnd,
    )
}


def _check_value(kind: str, name: str, value: Any) -> None:
    if kind == _REQUIRED_STR and not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    if kind == _OPTIONAL_STR and value is not None and not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string or null")
    if kind == _UINT and (
        isinstance(value, bool) or not isinstance(value, int) or value < 0
    ):
        raise ValueError(f"field {name!r} must be a non-negative integer")


def event_from_dict(data: Any) -> WireEvent:
    """Build a :class:`WireEvent` from a decoded JSON object.

    Raises :class:`ValueError` on an unknown ``kind``, a missing required
    field or a field of the wrong type. Unknown fields are ignored.
    """
    if not isinstance(data, dict):
        raise ValueError("wire event must be a JSON object")
    kind = data.get("kind")
    if not isinstance(kind, str):
        raise ValueError("wire event is missing its 'kind' tag")
    cls = _EVENT_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"unknown wire event kind: {kind!r}")

    kinds = cls._field_kinds()
    values: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        field_kind = kinds[f.name]
        if f.name not in data:
            if field_kind == _OPTIONAL_STR:
                continue
            if field_kind == _ANY:
                values[f.name] = None
                continue
            raise ValueError(f"{kind}: missing field {f.name!r}")
        value = data[f.name]
        _check_value(field_kind, f.name, value)
        values[f.name] = value
    return cls(**values)


def event_from_json(line: str) -> WireEvent:
    """Parse one NDJSON line into a :class:`WireEvent`."""
    return event_from_dict(json.loads(line))


@dataclass(frozen=True)
class EndReason:
    """Why a session was reported finished: a clean end or an orphan sweep."""

    is_orphan: bool
    reason: str = ""

    @classmethod
    def clean(cls, reason: str) -> "EndReason":
        return cls(is_orphan=False, reason=reason)

    @classmethod
    def orphan(cls) -> "EndReason":
        return cls(is_orphan=True)


@dataclass(frozen=True)
class FinishedSession:
    """A session that ended; ``transcript_path`` is None if never announced."""

    session_id: str
    transcript_path: Optional[Path]
    cwd: Path
    end_reason: EndReason


@dataclass
class _InFlight:
    transcript_path: Optional[Path]
    cwd: Path
    last_event_at: float


def _path_or_none(raw: str) -> Optional[Path]:
    return Path(raw) if raw else None


@dataclass
class SessionTracker:
    """Tracks in-flight sessions keyed by ``session_id``. Performs no I/O."""

    clock: Callable[[], float] = time.monotonic
    _sessions: dict[str, _InFlight] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def apply(self, event: WireEvent) -> Optional[FinishedSession]:
        """Apply an event; return the finished session on ``session_end``.

        Events for an unseen session register a tentative entry so the
        orphan watchdog can still sweep it later.
        """
        now = self.clock()
        if isinstance(event, SessionStart):
            self._sessions[event.session_id] = _InFlight(
                transcript_path=_path_or_none(event.transcript_path),
                cwd=Path(event.cwd),
                last_event_at=now,
            )
            return None

        if isinstance(event, SessionEnd):
            removed = self._sessions.pop(event.session_id, None)
            if removed is not None:
                path = _path_or_none(event.transcript_path) or removed.transcript_path
                cwd = removed.cwd
            else:
                path = _path_or_none(event.transcript_path)
                cwd = Path(event.cwd)
            return FinishedSession(
                session_id=event.session_id,
                transcript_path=path,
                cwd=cwd,
                end_reason=EndReason.clean(event.reason),
            )

        state = self._sessions.get(event.session_id)
        if state is not None:
            state.last_event_at = now
        else:
            self._sessions[event.session_id] = _InFlight(
                transcript_path=None,
                cwd=Path(event.cwd),
                last_event_at=now,
            )
        return None

    def sweep_orphans(self, grace: float) -> list[FinishedSession]:
        """Remove sessions silent for at least ``grace`` seconds."""
        return self.sweep_orphans_at(self.clock(), grace)

    def sweep_orphans_at(self, now: float, grace: float) -> list[FinishedSession]:
        """Like :meth:`sweep_orphans` with an explicit clock reading."""
        stale = sorted(
            session_id
            for session_id, state in self._sessions.items()
            if max(0.0, now - state.last_event_at) >= grace
        )
        finished = []
        for session_id in stale:
            state = self._sessions.pop(session_id)
            finished.append(
                FinishedSession(
                    session_id=session_id,
                    transcript_path=state.transcript_path,
                    cwd=state.cwd,
                    end_reason=EndReason.orphan(),
                )
            )
        return finished