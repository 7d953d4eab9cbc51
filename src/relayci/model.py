# model.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Union

from .errors import ErrorKind


# ---------------------------------------------------------------------
# Branch filters
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class AllBranches:
    """Run on every branch."""

    def matches(self, branch: str) -> bool:
        return True

    def describe(self) -> str:
        return "all branches"


@dataclass(frozen=True)
class OnlyBranches:
    """Run only when the trigger branch is one of `names`."""
    names: frozenset[str]

    def matches(self, branch: str) -> bool:
        return branch in self.names

    def describe(self) -> str:
        return "only " + ", ".join(sorted(self.names))


@dataclass(frozen=True)
class IgnoreBranches:
    """Run on every branch except `names`."""
    names: frozenset[str]

    def matches(self, branch: str) -> bool:
        return branch not in self.names

    def describe(self) -> str:
        return "ignore " + ", ".join(sorted(self.names))


Filter = Union[AllBranches, OnlyBranches, IgnoreBranches]


# ---------------------------------------------------------------------
# Definitions (immutable)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CacheKey:
    """
    Recipe for a content fingerprint: `<prefix>-<arch>-<sha256(files)>`.

    Rendered when the step runs, so lock files produced by earlier steps
    are part of the key.
    """
    prefix: str
    files: tuple[str, ...] = ()
    include_arch: bool = True


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str | None
    cwd: str | None = None
    best_effort: bool = False
    timeout: float | None = None
    restore: CacheKey | None = None
    save: CacheKey | None = None
    cache_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class Job:
    """A CI job: ordered steps + dependencies + branch filter."""
    name: str
    steps: tuple[Step, ...]
    needs: tuple[str, ...] = ()
    branches: Filter = field(default_factory=AllBranches)
    env: Dict[str, str] = field(default_factory=dict, hash=False)
    best_effort: bool = False
    # skipped (not failed) dependencies count as satisfied
    tolerate_skipped: bool = False


@dataclass(frozen=True)
class Trigger:
    branch: str
    commit: str = "HEAD"


# ---------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.SKIPPED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
}


@dataclass
class StepResult:
    step: str
    exit_code: int
    output: str = ""
    duration: float = 0.0
    error: Optional[ErrorKind] = None
    best_effort: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None


@dataclass
class CacheEntry:
    key: str
    blobs: Dict[str, bytes]
    created_at: float = field(default_factory=time.time)


@dataclass(eq=False)
class JobRun:
    """
    One execution of a Job for a Trigger.

    Pending -> Running -> {Succeeded | Failed}
    Pending -> Skipped
    """
    job: Job
    status: JobStatus = JobStatus.PENDING
    started_at: float | None = None
    finished_at: float | None = None
    results: List[StepResult] = field(default_factory=list)
    skip_reason: str | None = None
    _cond: threading.Condition = field(default_factory=threading.Condition, repr=False)

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def transition(self, new: JobStatus, *, reason: str | None = None) -> None:
        with self._cond:
            if new not in _TRANSITIONS.get(self.status, set()):
                raise ValueError(
                    f"Job '{self.name}': illegal transition {self.status.value} -> {new.value}"
                )
            now = time.time()
            if new is JobStatus.RUNNING:
                self.started_at = now
            elif new is JobStatus.SKIPPED:
                self.skip_reason = reason
            if new.terminal:
                self.finished_at = now
            self.status = new
            self._cond.notify_all()

    def record(self, result: StepResult) -> None:
        with self._cond:
            self.results.append(result)
            self._cond.notify_all()

    def subscribe(self) -> Iterator[StepResult]:
        """
        Stream StepResults as they are recorded.

        Already-recorded results are replayed first; iteration ends once the
        run is terminal and every result has been yielded.
        """
        i = 0
        while True:
            with self._cond:
                while i >= len(self.results) and not self.status.terminal:
                    self._cond.wait()
                if i >= len(self.results):
                    return
                result = self.results[i]
            i += 1
            yield result
