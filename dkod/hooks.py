"""Install and remove dkod's Claude Code hook entries.

Hook entries live in ``<repo>/.claude/settings.local.json``. Every entry dkod
writes carries a ``_dkod: true`` sentinel so it can later be replaced or
removed without disturbing the user's own hooks.
"""

from __future__ import annotations

import enum
import hashlib
import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional, Union

from dkod.refspec import GitError

__all__ = [
    "DKOD_SENTINEL_KEY",
    "HOOK_EVENTS",
    "InitInstallOutcome",
    "compute_repo_hash",
    "is_valid_repo_hash",
    "resolve_repo_root",
    "resolve_socket_path",
    "global_hooks_disabled",
    "hook_entry",
    "install_hooks",
    "uninstall_hooks",
    "install_hooks_at_init",
]

PathLike = Union[str, Path]

DKOD_SENTINEL_KEY = "_dkod"

# Hook event name and timeout in seconds. Order is kept stable so the
# settings file diffs cleanly across installs.
HOOK_EVENTS: tuple[tuple[str, int], ...] = (
    ("SessionStart", 1),
    ("UserPromptSubmit", 1),
    ("PreToolUse", 1),
    ("PostToolUse", 1),
    ("PostToolUseFailure", 1),
    ("PreCompact", 1),
    ("Stop", 1),
    ("SessionEnd", 2),
)

_SETTINGS_LOCAL = Path(".claude") / "settings.local.json"
_HEX_DIGITS = frozenset("0123456789abcdef")


class InitInstallOutcome(enum.Enum):
    """Result of installing hooks at ``dkod init`` time."""

    INSTALLED = "installed"
    SKIPPED_DISABLED_GLOBALLY = "skipped_disabled_globally"


def compute_repo_hash(repo_root: PathLike) -> str:
    """Return the first 12 hex characters of the SHA-256 of the repo root path."""
    data = str(repo_root).encode("utf-8", errors="replace")
    return hashlib.sha256(data).hexdigest()[:12]


def is_valid_repo_hash(value: str) -> bool:
    """Return True only for exactly 12 lowercase hexadecimal characters."""
    return len(value) == 12 and all(ch in _HEX_DIGITS for ch in value)


def _run_git(cwd: PathLike, *args: str) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", "-C", str(cwd), *args], capture_output=True, check=False
        )
    except OSError as exc:
        raise GitError(f"invoke `git {' '.join(args)}`: {exc}") from exc


def resolve_repo_root(cwd: PathLike) -> Path:
    """Return the canonical working-tree root of the repository containing ``cwd``.

    Works from any subdirectory. Raises :class:`GitError` outside a repository
    or for a bare repository.
    """
    top = _run_git(cwd, "rev-parse", "--show-toplevel")
    output = top.stdout.decode("utf-8", errors="replace").strip()
    if top.returncode != 0 or not output:
        probe = _run_git(cwd, "rev-parse", "--git-dir")
        if probe.returncode != 0:
            raise GitError("not a git repo (run `git init` first)")
        raise GitError(
            "dkod requires a git working directory (bare repos aren't supported)"
        )
    root = Path(output)
    try:
        return root.resolve(strict=True)
    except OSError:
        return root


def resolve_socket_path(repo_hash: str) -> Path:
    """Return the per-repo socket path.

    macOS uses ``$TMPDIR``; Linux uses ``$XDG_RUNTIME_DIR/dkod/`` (created if
    missing). Other platforms raise :class:`RuntimeError`.
    """
    if sys.platform == "darwin":
        base = os.environ.get("TMPDIR") or "/tmp"
        return Path(base) / f"dkod-{repo_hash}.sock"
    if sys.platform.startswith("linux"):
        base = os.environ.get("XDG_RUNTIME_DIR") or "/tmp/dkod"
        directory = Path(base) / "dkod"
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{repo_hash}.sock"
    raise RuntimeError(
        "dkod capture claude-code is only supported on macOS and Linux"
    )


def _home_dir(home: Optional[PathLike]) -> Optional[Path]:
    if home is not None:
        return Path(home)
    env_home = os.environ.get("HOME")
    return Path(env_home) if env_home else None


def global_hooks_disabled(home: Optional[PathLike] = None) -> bool:
    """Return True if ``<home>/.claude/settings.json`` sets ``disableAllHooks``.

    ``home`` defaults to ``$HOME``. A missing or malformed file counts as
    not disabled.
    """
    base = _home_dir(home)
    if base is None:
        return False
    path = base / ".claude" / "settings.json"
    if not path.exists():
        return False
    body = path.read_text(encoding="utf-8")
    try:
        data = json.loads(body)
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("disableAllHooks") is True


def hook_entry(repo_hash: str, event: str, timeout: int) -> dict[str, Any]:
    """Build the entry dkod places under ``hooks[<event>]``."""
    return {
        "matcher": "*",
        DKOD_SENTINEL_KEY: True,
        "hooks": [
            {
                "type": "command",
                "command": f"dkod capture-hook {repo_hash} {event}",
                "timeout": timeout,
            }
        ],
    }


def _is_dkod_entry(entry: Any) -> bool:
    return isinstance(entry, dict) and entry.get(DKOD_SENTINEL_KEY) is True


def _dump(root: Any) -> str:
    return json.dumps(root, indent=2, sort_keys=True, ensure_ascii=False)


def install_hooks(repo_root: PathLike, repo_hash: str) -> None:
    """Merge dkod hook entries into ``.claude/settings.local.json``.

    Prior dkod entries are replaced; all other content is preserved. Raises
    :class:`ValueError` if the file is not valid JSON of the expected shape.
    """
    path = Path(repo_root) / _SETTINGS_LOCAL
    path.parent.mkdir(parents=True, exist_ok=True)

    root: Any = {}
    if path.exists():
        body = path.read_text(encoding="utf-8")
        if body.strip():
            try:
                root = json.loads(body)
            except ValueError as exc:
                raise ValueError(f"parse .claude/settings.local.json: {exc}") from exc

    if not isinstance(root, dict):
        raise ValueError(".claude/settings.local.json is not a JSON object")
    hooks = root.setdefault("hooks", {})
    if not isinstance(hooks, dict):
        raise ValueError(".claude/settings.local.json: hooks must be an object")

    for event, timeout in HOOK_EVENTS:
        entries = hooks.setdefault(event, [])
        if not isinstance(entries, list):
            raise ValueError(f"hooks.{event} must be an array")
        entries[:] = [entry for entry in entries if not _is_dkod_entry(entry)]
        entries.append(hook_entry(repo_hash, event, timeout))

    path.write_text(_dump(root), encoding="utf-8")


def uninstall_hooks(repo_root: PathLike) -> None:
    """Remove only dkod's hook entries, pruning event arrays left empty.

    A missing, empty or unreadable settings file is left untouched.
    """
    path = Path(repo_root) / _SETTINGS_LOCAL
    if not path.exists():
        return
    try:
        body = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return
    if not body.strip():
        return
    try:
        root = json.loads(body)
    except ValueError:
        return

    changed = False
    hooks = root.get("hooks") if isinstance(root, dict) else None
    if isinstance(hooks, dict):
        for entries in hooks.values():
            if isinstance(entries, list):
                kept = [entry for entry in entries if not _is_dkod_entry(entry)]
                if len(kept) != len(entries):
                    entries[:] = kept
                    changed = True
        for event in [name for name, value in hooks.items() if value == []]:
            del hooks[event]
        if not hooks:
            del root["hooks"]
            changed = True

    if changed:
        path.write_text(_dump(root), encoding="utf-8")


def install_hooks_at_init(
    cwd: PathLike, home: Optional[PathLike] = None
) -> InitInstallOutcome:
    """Install hooks at the repo root containing ``cwd`` unless globally disabled."""
    if global_hooks_disabled(home):
        return InitInstallOutcome.SKIPPED_DISABLED_GLOBALLY
    repo_root = resolve_repo_root(cwd)
    install_hooks(repo_root, compute_repo_hash(repo_root))
    return InitInstallOutcome.INSTALLED