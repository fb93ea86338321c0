"""Async UNIX-socket server that receives NDJSON wire events.

Each connection carries one :class:`~dkod.wire.WireEvent` per line. Events
drive a :class:`~dkod.wire.SessionTracker`; every finished session, whether
it ended cleanly or was swept as an orphan, is handed to ``on_finished``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Union

from dkod.wire import FinishedSession, SessionTracker, event_from_json

__all__ = ["run_server"]

log = logging.getLogger(__name__)

_TICK_SECONDS = 1.0
_LINE_LIMIT = 16 * 1024 * 1024


def _deliver(on_finished: Callable[[FinishedSession], None], finished: FinishedSession) -> None:
    try:
        on_finished(finished)
    except Exception:  # a failing callback must not take the server down
        log.exception("claude-code: on_finished failed for %s", finished.session_id)


async def run_server(
    socket_path: Union[str, Path],
    orphan_grace: float,
    idle_timeout: Optional[float],
    on_finished: Callable[[FinishedSession], None],
) -> None:
    """Serve wire events on ``socket_path`` until idle shutdown or cancellation.

    ``orphan_grace`` is how many seconds of silence make a session an orphan.
    With ``idle_timeout`` set, the server returns once no event has arrived
    for that many seconds and no session is in flight; with ``None`` it runs
    until the task is cancelled. Raises :class:`OSError` if binding fails.

    Orphans registered only through non-``session_start`` events carry a
    ``transcript_path`` of ``None``; callers must treat that as "no
    transcript was ever announced".
    """
    path = Path(socket_path)
    if path.exists() or path.is_symlink():
        try:
            path.unlink()
        except OSError:
            pass

    tracker = SessionTracker()
    last_event = [time.monotonic()]

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                try:
                    raw = await reader.readline()
                except (asyncio.LimitOverrunError, ValueError, OSError) as exc:
                    log.warning("claude-code: read error: %s", exc)
                    break
                if not raw:
                    break
                try:
                    line = raw.decode("utf-8")
                except UnicodeDecodeError as exc:
                    log.warning("claude-code: read error: %s", exc)
                    break
                if not line.strip():
                    continue
                last_event[0] = time.monotonic()
                try:
                    event = event_from_json(line)
                except ValueError as exc:
                    log.warning("claude-code: bad NDJSON line: %s", exc)
                    continue
                finished = tracker.apply(event)
                if finished is not None:
                    _deliver(on_finished, finished)
        finally:
            writer.close()

    try:
        server = await asyncio.start_unix_server(handle, path=str(path), limit=_LINE_LIMIT)
    except OSError as exc:
        raise OSError(exc.errno, f"bind unix socket {path}: {exc.strerror or exc}") from exc

    try:
        os.chmod(path, 0o600)
    except OSError:
        pass

    async def watchdog() -> None:
        while True:
            for finished in tracker.sweep_orphans(orphan_grace):
                _deliver(on_finished, finished)
            if idle_timeout is not None:
                idle = max(0.0, time.monotonic() - last_event[0])
                if idle >= idle_timeout and len(tracker) == 0:
                    log.info("claude-code: idle timeout (%ds), shutting down", int(idle))
                    return
            await asyncio.sleep(_TICK_SECONDS)

    watchdog_task = asyncio.create_task(watchdog())
    try:
        await watchdog_task
    finally:
        watchdog_task.cancel()
        server.close()