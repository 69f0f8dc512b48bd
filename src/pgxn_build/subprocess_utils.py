"""Subprocess helpers with timeouts, cancellation, and process-group cleanup."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Mapping, Sequence

POLL_INTERVAL = 0.1


class CancelToken:
    """Thread-safe flag used to cancel in-flight builds."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True)
class CommandResult:
    """Captured output from a command invocation."""

    command: list[str]
    returncode: int | None
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False
    cancelled: bool = False

    @property
    def signal(self) -> int | None:
        """Return the terminating signal number on POSIX, if any."""
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def _popen_group_kwargs() -> dict[str, object]:
    """Return Popen kwargs that put the child in its own process group."""
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
    return {"start_new_session": True}


def kill_process_tree(process: subprocess.Popen) -> None:
    """Kill a process and every child sharing its process group."""
    if process.poll() is not None:
        return
    if os.name == "nt":
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.kill()


def run_command(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
    poll_interval: float = POLL_INTERVAL,
) -> CommandResult:
    """Run a command to completion, capturing stdout and stderr separately.

    The child runs in its own process group so that a timeout or a
    cancellation kills its descendants too. ``OSError`` from spawning the
    process propagates to the caller.
    """
    cmd_list = [str(item) for item in command]
    start = perf_counter()
    process = subprocess.Popen(
        cmd_list,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        **_popen_group_kwargs(),
    )
    deadline = start + timeout if timeout is not None else None
    timed_out = False
    cancelled = False
    try:
        while True:
            wait = poll_interval
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - perf_counter()))
            try:
                raw_stdout, raw_stderr = process.communicate(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.cancelled:
                cancelled = True
            elif deadline is not None and perf_counter() >= deadline:
                timed_out = True
            else:
                continue
            kill_process_tree(process)
            raw_stdout, raw_stderr = process.communicate()
            break
    except BaseException:
        kill_process_tree(process)
        process.communicate()
        raise
    return CommandResult(
        command=cmd_list,
        returncode=process.returncode,
        stdout=_decode(raw_stdout),
        stderr=_decode(raw_stderr),
        duration=perf_counter() - start,
        timed_out=timed_out,
        cancelled=cancelled,
    )
