# step_runner.py
from __future__ import annotations

import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Mapping, Optional

from .errors import ErrorKind
from .model import StepResult

# keep the tail of very chatty steps only
MAX_OUTPUT_CHARS = 64 * 1024

TIMEOUT_EXIT_CODE = 124

# POSIX shells: 126 = found but not executable, 127 = command not found
_SHELL_LAUNCH_FAILURES = {126, 127}


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _tail(text: str | bytes | None) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-MAX_OUTPUT_CHARS:]


def run_step(
    name: str,
    command: str,
    *,
    cwd: str | Path = ".",
    env: Optional[Mapping[str, str]] = None,
    timeout: float | None = None,
) -> StepResult:
    """
    Run one shell command and capture combined stdout/stderr.

    Never raises for a nonzero exit: the outcome is carried by
    StepResult.exit_code and StepResult.error.
    """
    started = time.monotonic()
    workdir = Path(cwd).resolve()
    if not workdir.is_dir():
        return StepResult(
            step=name,
            exit_code=-1,
            output=f"working directory not found: {workdir}",
            error=ErrorKind.EXECUTION_ENVIRONMENT,
        )

    full_env = os.environ.copy()
    full_env.update(env or {})

    try:
        # own process group, so a timeout can take down the whole command tree
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(workdir),
            env=full_env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    except OSError as e:
        return StepResult(
            step=name,
            exit_code=-1,
            output=f"could not launch command: {e}",
            duration=time.monotonic() - started,
            error=ErrorKind.EXECUTION_ENVIRONMENT,
        )

    with proc:
        try:
            stdout, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            stdout, _ = proc.communicate()
            return StepResult(
                step=name,
                exit_code=TIMEOUT_EXIT_CODE,
                output=_tail(stdout) + f"\ntimed out after {timeout}s",
                duration=time.monotonic() - started,
                error=ErrorKind.TIMEOUT,
            )
        except BaseException:
            _kill_group(proc)
            raise

    error = None
    if proc.returncode in _SHELL_LAUNCH_FAILURES:
        error = ErrorKind.EXECUTION_ENVIRONMENT
    elif proc.returncode != 0:
        error = ErrorKind.COMMAND_FAILURE

    return StepResult(
        step=name,
        exit_code=proc.returncode,
        output=_tail(stdout),
        duration=time.monotonic() - started,
        error=error,
    )
