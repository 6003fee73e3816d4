"""Shell and console utilities.

Provides a thin wrapper around subprocess for running the expanded step
commands, plus output formatting helpers.
"""

from __future__ import annotations

import os
import signal
import subprocess
from collections.abc import Mapping
from pathlib import Path


def run_shell(
    command: str,
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    capture: bool = False,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command line through the shell.

    Child processes get their own session so a Ctrl-C aimed at pubflow does
    not kill a step mid-flight; the orchestrator decides what to stop.

    Args:
        command: Command line, passed to the shell verbatim.
        cwd: Working directory for the command.
        env: Complete environment for the child. None inherits ours.
        capture: If True, capture stdout and stderr instead of streaming
                 them to the terminal.
        timeout: Seconds before the child is killed.

    Returns:
        CompletedProcess with returncode (and output when captured).

    Raises:
        subprocess.TimeoutExpired: If the command exceeds timeout. The whole
            session is killed first, so no child of the shell survives.
            Output read before the kill is kept on the exception.
        OSError: If the process cannot be started.
    """
    pipe = subprocess.PIPE if capture else None
    with subprocess.Popen(
        command,
        shell=True,
        cwd=str(cwd),
        env=dict(env) if env is not None else None,
        stdout=pipe,
        stderr=pipe,
        text=True,
        start_new_session=True,
    ) as proc:
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_session(proc)
            stdout, stderr = proc.communicate()
            raise subprocess.TimeoutExpired(
                command, timeout or 0, output=stdout, stderr=stderr
            ) from None
        except BaseException:
            _kill_session(proc)
            raise
    return subprocess.CompletedProcess(command, proc.returncode, stdout, stderr)


def _kill_session(proc: subprocess.Popen[str]) -> None:
    # The shell leads its own session; its process group holds every child
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate major phases of the publish run in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}", flush=True)
