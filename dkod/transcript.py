"""Parse Claude Code session transcripts into :class:`Session` objects.

A transcript is a JSONL file, one record per line. ``user`` and ``assistant``
records become messages; every other record type is ignored. Nothing here
redacts or writes anywhere: callers compose those steps.
"""

from __future__ import annotations

import enum
import json
import logging
import re
import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Union

from dkod.ansi import strip_ansi, strip_ansi_in_json

__all__ = [
    "MessageKind",
    "Message",
    "Session",
    "parse_transcript",
    "summarize_prompt",
]

log = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 120

_EDIT_PATH_KEYS = {
    "Edit": "file_path",
    "Write": "file_path",
    "MultiEdit": "file_path",
    "NotebookEdit": "notebook_path",
}

_RFC3339_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class MessageKind(enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    REASONING = "reasoning"
    TOOL = "tool"


@dataclass
class Message:
    """One entry of a session. Tool messages use ``name``/``input``/``output``."""

    kind: MessageKind
    content: str = ""
    name: str = ""
    input: Any = None
    output: str = ""

    @staticmethod
    def user(content: str) -> "Message":
        return Message(MessageKind.USER, content=content)

    @staticmethod
    def assistant(content: str) -> "Message":
        return Message(MessageKind.ASSISTANT, content=content)

    @staticmethod
    def reasoning(content: str) -> "Message":
        return Message(MessageKind.REASONING, content=content)

    @staticmethod
    def tool(name: str, input: Any, output: str) -> "Message":
        return Message(MessageKind.TOOL, name=name, input=input, output=output)


def _new_uuid7() -> str:
    millis = time.time_ns() // 1_000_000
    value = (millis & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= secrets.randbits(12) << 64
    value |= 0b10 << 62
    value |= secrets.randbits(62)
    return str(uuid.UUID(int=value))


@dataclass
class Session:
    """A captured agent session."""

    id: str = field(default_factory=_new_uuid7)
    agent: str = "claude_code"
    created_at: int = 0
    duration_ms: int = 0
    prompt_summary: str = ""
    messages: list[Message] = field(default_factory=list)
    commits: list[str] = field(default_factory=list)
    files_touched: list[str] = field(default_factory=list)

    @staticmethod
    def new_id() -> str:
        """Return a fresh time-ordered (version 7) UUID string."""
        return _new_uuid7()


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _get_str(obj: Any, key: str) -> Optional[str]:
    value = _get(obj, key)
    return value if isinstance(value, str) else None


def _parse_rfc3339_to_millis(text: str) -> Optional[int]:
    match = _RFC3339_RE.match(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, frac, offset = match.groups()
    try:
        if offset in ("Z", "z"):
            tz = timezone.utc
        else:
            sign = 1 if offset[0] == "+" else -1
            hours, minutes = int(offset[1:3]), int(offset[4:6])
            tz = timezone(sign * timedelta(hours=hours, minutes=minutes))
        moment = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), tzinfo=tz,
        )
    except ValueError:
        return None
    millis_part = int((frac or "0")[:3].ljust(3, "0"))
    delta = moment - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + millis_part


def summarize_prompt(text: str) -> str:
    """Reduce a prompt to its first line, trimmed, at most 120 characters."""
    first_line = re.split(r"[\n\r]", text, maxsplit=1)[0].strip()
    return first_line[:SUMMARY_MAX_CHARS]


def _tool_result_to_string(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = (_get_str(part, "text") for part in content)
        return "\n".join(part for part in parts if part is not None)
    return ""


def _extract_edit_path(name: str, tool_input: Any) -> Optional[str]:
    key = _EDIT_PATH_KEYS.get(name)
    return _get_str(tool_input, key) if key else None


class _TranscriptBuilder:
    def __init__(self) -> None:
        self.session = Session()
        self.tool_index: dict[str, int] = {}
        self.files_seen: set[str] = set()
        self.first_user_text: Optional[str] = None

    def _add_user_text(self, text: str) -> None:
        if self.first_user_text is None:
            self.first_user_text = text
        self.session.messages.append(Message.user(text))

    def handle_user(self, record: dict) -> None:
        content = _get(_get(record, "message"), "content")
        if isinstance(content, str):
            self._add_user_text(content)
            return
        if not isinstance(content, list):
            return
        for block in content:
            block_type = _get_str(block, "type") or ""
            if block_type == "text":
                text = _get_str(block, "text")
                if text is not None:
                    self._add_user_text(text)
            elif block_type == "tool_result":
                tool_id = _get_str(block, "tool_use_id") or ""
                output = strip_ansi(_tool_result_to_string(_get(block, "content")))
                idx = self.tool_index.get(tool_id)
                if idx is not None:
                    target = self.session.messages[idx]
                    if target.kind is MessageKind.TOOL:
                        target.output = output

    def handle_assistant(self, record: dict) -> None:
        blocks = _get(_get(record, "message"), "content")
        if not isinstance(blocks, list):
            return
        for block in blocks:
            block_type = _get_str(block, "type") or ""
            if block_type == "text":
                text = _get_str(block, "text")
                if text is not None:
                    self.session.messages.append(Message.assistant(text))
            elif block_type == "thinking":
                thought = _get_str(block, "thinking")
                if thought is not None and thought.strip():
                    self.session.messages.append(Message.reasoning(thought))
            elif block_type == "tool_use":
                self._add_tool_use(block)

    def _add_tool_use(self, block: dict) -> None:
        name = _get_str(block, "name") or ""
        tool_id = _get_str(block, "id") or ""
        tool_input = strip_ansi_in_json(_get(block, "input"))
        path = _extract_edit_path(name, tool_input)
        if path is not None and path not in self.files_seen:
            self.files_seen.add(path)
            self.session.files_touched.append(path)
        self.tool_index_update(tool_id, len(self.session.messages))
        self.session.messages.append(Message.tool(name, tool_input, ""))

    def tool_index_update(self, tool_id: str, idx: int) -> None:
        if tool_id:
            self.tool_index[tool_id] = idx


def parse_transcript(path: Union[str, Path]) -> Session:
    """Read a Claude Code JSONL transcript at ``path`` into a :class:`Session`.

    Malformed lines are logged and skipped. ``thinking`` blocks become
    reasoning messages. Raises :class:`OSError` if the file cannot be opened.
    """
    path = Path(path)
    builder = _TranscriptBuilder()
    first_ms: Optional[int] = None
    last_ms: Optional[int] = None

    with path.open("rb") as handle:
        for lineno, raw in enumerate(handle, start=1):
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                log.warning("claude-code: read error at line %d: %s", lineno, exc)
                continue
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                log.warning(
                    "claude-code: skipping malformed JSON at line %d: %s", lineno, exc
                )
                continue

            record_type = _get_str(record, "type") or ""
            before = len(builder.session.messages)
            if record_type == "user":
                builder.handle_user(record)
            elif record_type == "assistant":
                builder.handle_assistant(record)

            if len(builder.session.messages) <= before:
                continue
            stamp = _get_str(record, "timestamp")
            if stamp is None:
                continue
            millis = _parse_rfc3339_to_millis(stamp)
            if millis is None:
                log.warning(
                    "claude-code: malformed timestamp %r at line %d; "
                    "skipping for created_at/duration",
                    stamp,
                    lineno,
                )
                continue
            if first_ms is None:
                first_ms = millis
            last_ms = millis

    session = builder.session
    if builder.first_user_text is not None:
        session.prompt_summary = summarize_prompt(builder.first_user_text)
    if first_ms is not None:
        session.created_at = first_ms // 1000
        if last_ms is not None:
            session.duration_ms = max(0, last_ms - first_ms)
    return session