"""Console output formatting utilities for relayci."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional

from ..model import JobRun, JobStatus, StepResult, Trigger
from ..scheduler import PipelineResult, Plan


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including passing step output and cache errors
            stream: Output stream (defaults to sys.stdout at print time)
        """
        self.debug = debug
        self._stream = stream
        # jobs report from worker threads
        self._lock = threading.Lock()

    @property
    def stream(self):
        return self._stream or sys.stdout

    def _print(self, *lines: str, err: bool = False) -> None:
        out = sys.stderr if err else self.stream
        with self._lock:
            for line in lines:
                print(line, file=out)

    def print_run_started(self, workflow: str, trigger: Trigger, job_count: int) -> None:
        """Print run start information."""
        self._print(
            "",
            "RUN STARTED",
            f"Workflow: {workflow}",
            f"Branch: {trigger.branch}",
            f"Commit: {trigger.commit}",
            f"Jobs: {job_count}",
            "",
        )

    def print_plan(self, plan: Plan) -> None:
        """Print which jobs will run and which are skipped up front."""
        lines = ["PLAN"]
        for run in plan:
            if run.status is JobStatus.SKIPPED:
                lines.append(f"  {run.name} (skipped: {run.skip_reason})")
            else:
                needs = ", ".join(run.job.needs)
                lines.append(f"  {run.name}" + (f" (needs {needs})" if needs else ""))
        self._print(*lines)

    def print_step(self, run: JobRun, result: StepResult) -> None:
        """Print a finished step; output is shown for failures or in debug mode."""
        if result.ok:
            status = "ok"
        elif result.best_effort:
            status = f"failed, ignored (exit={result.exit_code})"
        else:
            status = f"FAILED (exit={result.exit_code}, {result.error.value if result.error else 'error'})"
        lines = [f"[{run.name}] {result.step}: {status} in {result.duration:.1f}s"]
        if result.output and (self.debug or not result.ok):
            lines.extend(f"    {line}" for line in result.output.rstrip().splitlines())
        self._print(*lines)

    def print_job(self, run: JobRun) -> None:
        """Print a job reaching a terminal state."""
        if run.status is JobStatus.SKIPPED:
            self._print(f"JOB SKIPPED: {run.name} ({run.skip_reason})")
        elif run.status is JobStatus.SUCCEEDED:
            self._print(f"JOB SUCCEEDED: {run.name} ({run.duration or 0:.1f}s)")
        else:
            self._print(f"JOB FAILED: {run.name}")

    def print_results(self, result: PipelineResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for name, run in result.runs.items():
            suffix = " (best-effort)" if run.job.best_effort else ""
            lines.append(f"  {name}: {run.status.value.upper()}{suffix}")
        self._print(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[Iterable[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Print structured error message to stderr."""
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._print(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
