# executor.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Optional

from . import settings
from .cache import CacheStore, fingerprint
from .errors import CacheError, ErrorKind
from .model import Job, JobRun, JobStatus, Step, StepResult, Trigger
from .step_runner import run_step

StepCallback = Callable[[JobRun, StepResult], None]


def trigger_env(job: Job, trigger: Trigger) -> Dict[str, str]:
    """Variables every step sees on top of the inherited environment."""
    env = {
        "CI": "true",
        "RELAYCI_JOB": job.name,
        "RELAYCI_BRANCH": trigger.branch,
        "RELAYCI_COMMIT": trigger.commit,
    }
    env.update({k: str(v) for k, v in job.env.items()})
    return env


class JobExecutor:
    """
    Runs the steps of one job, in order, around the cache store.

    - restore before a step that declares a read-key
    - save after a successful step that declares a write-key
    - stop at the first failing step unless it is best-effort
    """

    def __init__(
        self,
        cache: CacheStore,
        *,
        workspace: str | Path = ".",
        arch: str = settings.ARCH,
        default_timeout: float | None = settings.STEP_TIMEOUT,
        on_step: Optional[StepCallback] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.cache = cache
        self.workspace = Path(workspace).resolve()
        self.arch = arch
        self.default_timeout = default_timeout
        self.on_step = on_step
        self._log = log or (lambda _msg: None)

    def execute(self, job: Job, trigger: Trigger, run: JobRun | None = None) -> JobRun:
        run = run or JobRun(job=job)
        run.transition(JobStatus.RUNNING)
        env = trigger_env(job, trigger)

        failed = False
        for step in job.steps:
            try:
                result = self._run_one(job, step, env)
            except OSError as e:
                result = StepResult(
                    step=step.name,
                    exit_code=-1,
                    output=str(e),
                    error=ErrorKind.EXECUTION_ENVIRONMENT,
                    best_effort=step.best_effort,
                )
            run.record(result)
            if self.on_step is not None:
                self.on_step(run, result)

            if not result.ok and not step.best_effort:
                failed = True
                break

        run.transition(JobStatus.FAILED if failed else JobStatus.SUCCEEDED)
        return run

    # -----------------------------------------------------------------

    def _run_one(self, job: Job, step: Step, env: Dict[str, str]) -> StepResult:
        cwd = (self.workspace / (step.cwd or ".")).resolve()
        notes = []

        if step.restore is not None:
            notes.append(self._restore(job, step, cwd))

        if step.run:
            timeout = step.timeout if step.timeout is not None else self.default_timeout
            result = run_step(step.name, step.run, cwd=cwd, env=env, timeout=timeout)
        else:
            result = StepResult(step=step.name, exit_code=0)

        if step.save is not None and result.ok:
            notes.append(self._save(job, step, cwd))

        if notes:
            result.output = "\n".join(n for n in [*notes, result.output] if n)
        result.best_effort = step.best_effort
        return result

    def _restore(self, job: Job, step: Step, cwd: Path) -> str:
        key = step.restore.prefix
        try:
            key = fingerprint(step.restore, root=cwd, arch=self.arch)
            entry = self.cache.restore(key, root=cwd)
        except (CacheError, OSError, EOFError) as e:
            self._log(f"[{job.name}] cache restore failed, continuing: {e}")
            return f"cache: miss ({key})"
        if entry is None:
            return f"cache: miss ({key})"
        return f"cache: hit ({key}, {len(entry.blobs)} files)"

    def _save(self, job: Job, step: Step, cwd: Path) -> str:
        key = step.save.prefix
        try:
            key = fingerprint(step.save, root=cwd, arch=self.arch)
            blobs = self.cache.collect(step.cache_paths, root=cwd)
            self.cache.put(key, blobs)
        except (CacheError, OSError) as e:
            self._log(f"[{job.name}] cache save failed, continuing: {e}")
            return f"cache: not saved ({key})"
        return f"cache: saved ({key}, {len(blobs)} files)"
