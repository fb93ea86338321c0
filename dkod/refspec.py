"""Wire ``refs/dkod/*`` into every remote's fetch refspecs.

Once a remote carries the refspec, a plain ``git fetch`` pulls session refs
alongside the usual heads.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Union

__all__ = [
    "DKOD_FETCH_REFSPEC",
    "GitError",
    "list_remotes",
    "remote_has_dkod_refspec",
    "add_fetch_refspec",
    "ensure_dkod_refspec",
]

DKOD_FETCH_REFSPEC = "+refs/dkod/*:refs/dkod/*"

PathLike = Union[str, Path]


class GitError(RuntimeError):
    """A git invocation could not be run or failed."""


def _git(cwd: PathLike, *args: str) -> subprocess.CompletedProcess:
    command = ["git", "-C", str(cwd), *args]
    try:
        return subprocess.run(command, capture_output=True, check=False)
    except OSError as exc:
        raise GitError(f"invoke `git {' '.join(args)}`: {exc}") from exc


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def list_remotes(cwd: PathLike) -> list[str]:
    """Return the names of the remotes configured in the repository at ``cwd``."""
    result = _git(cwd, "remote")
    if result.returncode != 0:
        raise GitError(f"`git remote` failed: {_text(result.stderr).strip()}")
    return [name.strip() for name in _text(result.stdout).splitlines() if name.strip()]


def remote_has_dkod_refspec(cwd: PathLike, remote: str) -> bool:
    """Return True if ``remote`` already has exactly the dkod fetch refspec."""
    key = f"remote.{remote}.fetch"
    result = _git(cwd, "config", "--get-all", key)
    # Exit code 1 means the key is not set; anything else non-zero is a failure.
    if result.returncode not in (0, 1):
        raise GitError(
            f"`git config --get-all {key}` failed: {_text(result.stderr).strip()}"
        )
    return any(
        line.strip() == DKOD_FETCH_REFSPEC for line in _text(result.stdout).splitlines()
    )


def add_fetch_refspec(cwd: PathLike, remote: str) -> None:
    """Append the dkod fetch refspec to ``remote`` (does not check for duplicates)."""
    key = f"remote.{remote}.fetch"
    result = _git(cwd, "config", "--add", key, DKOD_FETCH_REFSPEC)
    if result.returncode != 0:
        raise GitError(
            f"`git config --add {key} {DKOD_FETCH_REFSPEC}` exited with {result.returncode}"
        )


def ensure_dkod_refspec(cwd: PathLike) -> list[str]:
    """Add the dkod refspec to every remote lacking it; return the remotes changed."""
    changed = []
    for remote in list_remotes(cwd):
        if not remote_has_dkod_refspec(cwd, remote):
            add_fetch_refspec(cwd, remote)
            changed.append(remote)
    return changed