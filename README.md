# dkod

`dkod` holds the building blocks for recording what Claude Code did in a git
repository: the prompts, replies, reasoning, tool calls and edited files of a
session.

Python 3.10 or later; no third-party dependencies. The socket parts work on
macOS and Linux, and the git helpers need `git` on your `PATH`.

## Modules

- `dkod.ansi`: `strip_ansi(text)` removes CSI (`ESC [ ... letter`) and OSC
  (`ESC ] ... BEL`) escape sequences; `strip_ansi_in_json(value)` returns a
  copy of a JSON-like value with every string leaf stripped.
- `dkod.wire`: the NDJSON wire events `SessionStart`, `PromptSubmitted`,
  `ToolStart`, `ToolEnd`, `PreCompact`, `TurnStop` and `SessionEnd` (all
  `WireEvent`s, with `to_dict()` and `to_json()`), parsed back with
  `event_from_dict` / `event_from_json` (which raise `ValueError` on a bad
  event). `SessionTracker` is a state machine without I/O: `apply(event)`
  returns a `FinishedSession` on `session_end`, and
  `sweep_orphans(grace)` / `sweep_orphans_at(now, grace)` return sessions that
  have been silent for at least `grace` seconds, with `EndReason.orphan()`.
  An orphan that never saw `session_start` has `transcript_path` of `None`.
- `dkod.transcript`: `parse_transcript(path)` reads a Claude Code JSONL
  transcript into a `Session` of `Message`s (`MessageKind.USER`, `ASSISTANT`,
  `REASONING`, `TOOL`). Tool results are attached to their tool calls with
  ANSI stripped, whitespace-only thinking blocks are dropped, files from
  `Edit`/`Write`/`MultiEdit`/`NotebookEdit` go into `files_touched`, and
  `created_at` / `duration_ms` come from the timestamps of message-producing
  lines. Malformed lines are logged and skipped. `summarize_prompt(text)` gives
  the first line of the first prompt, trimmed, at most 120 characters.
  `Session.new_id()` returns a version 7 UUID string.
- `dkod.server`: `run_server(socket_path, orphan_grace, idle_timeout,
  on_finished)` is a coroutine that listens on a UNIX socket (mode 0600) for
  NDJSON wire events and calls `on_finished` for every finished session,
  clean or orphaned. With `idle_timeout` it returns once nothing has arrived
  for that long and no session is in flight; with `None` it runs until
  cancelled.
- `dkod.refspec`: `ensure_dkod_refspec(cwd)` adds `+refs/dkod/*:refs/dkod/*`
  to the fetch refspecs of every remote that lacks it and returns the names
  of the remotes it changed. Also `list_remotes`, `remote_has_dkod_refspec`
  and `add_fetch_refspec`; failures raise `GitError`.
- `dkod.hooks`: `install_hooks(repo_root, repo_hash)` merges dkod's entries
  (marked `"_dkod": true`) into `.claude/settings.local.json`, replacing
  earlier dkod entries and keeping everything else; `uninstall_hooks`
  removes them again and prunes emptied event lists.
  `install_hooks_at_init(cwd, home)` resolves the repository root from any
  subdirectory and installs there, or returns
  `InitInstallOutcome.SKIPPED_DISABLED_GLOBALLY` when
  `<home>/.claude/settings.json` has `"disableAllHooks": true`. Also
  `compute_repo_hash` (12 hex characters of SHA-256 of the root path),
  `is_valid_repo_hash`, `resolve_repo_root`, `resolve_socket_path` and
  `global_hooks_disabled`.
- `dkod.relay`: `build_wire_event(event_name, payload)` maps a hook payload to
  a wire event (or `None` for an unknown name), truncating large tool input
  with `truncate_tool_input`. `hook_command(repo_hash, event_name, stdin)`
  sends the event to the per-repo socket and never raises: a malformed hash
  is ignored, other failures go to `dkod-hook-<hash>.log` in the temporary
  directory. `rfc3339_utc` formats times as `YYYY-MM-DDTHH:MM:SS.mmmZ`.

## Examples

```python
from dkod.ansi import strip_ansi

strip_ansi("\x1b[1;33mhello\x1b[0m \x1b]0;title\x07world")  # 'hello world'
```

```python
from dkod.transcript import parse_transcript

session = parse_transcript("transcript.jsonl")
print(session.prompt_summary, session.files_touched)
for message in session.messages:
    print(message.kind, message.content or message.output)
```

```python
from dkod.wire import SessionTracker, event_from_json

tracker = SessionTracker()
for line in ndjson_lines:
    finished = tracker.apply(event_from_json(line))
    if finished is not None:
        print("done:", finished.session_id, finished.end_reason)

for orphan in tracker.sweep_orphans(60.0):
    print("went quiet:", orphan.session_id)
```

```python
from pathlib import Path

from dkod.hooks import install_hooks_at_init
from dkod.refspec import ensure_dkod_refspec

repo = Path.cwd()
ensure_dkod_refspec(repo)
print(install_hooks_at_init(repo, Path.home()))
```

```python
import asyncio

from dkod.server import run_server


def on_finished(finished):
    print(finished.session_id, finished.transcript_path)


asyncio.run(run_server("/tmp/dkod.sock", 60.0, None, on_finished))
```

## What this package does not do

- It installs no command. The hook entries it writes run
  `dkod capture-hook <hash> <Event>`, and when no server is listening
  `hook_command` tries to start `dkod capture claude-code -- --detached` from
  a `dkod` executable on `PATH`; neither command is provided here.
- It does not store sessions. A parsed `Session` is not written to git refs,
  and there is nothing to list or show stored sessions.
- It does not redact secrets and reads no configuration file.
- Only Claude Code transcripts are parsed; other agents are not captured.

## Tests

Install the `test` extra (pytest, pytest-asyncio) and run `pytest`.