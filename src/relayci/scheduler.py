# scheduler.py
from __future__ import annotations

import traceback
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from . import settings
from .errors import ErrorKind, GraphError
from .executor import JobExecutor
from .model import Job, JobRun, JobStatus, StepResult, Trigger

JobCallback = Callable[[JobRun], None]


# ----------------------------------------------------------------------
# Graph
# ----------------------------------------------------------------------

@dataclass
class JobGraph:
    """Index-based adjacency over jobs (edges point dependency -> dependent)."""
    jobs: List[Job]
    index: Dict[str, int]
    needs: List[List[int]]
    dependents: List[List[int]]

    def __len__(self) -> int:
        return len(self.jobs)


def build_graph(jobs: List[Job]) -> JobGraph:
    """
    Build a graph from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: names of jobs that must finish BEFORE this job
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise GraphError(f"Duplicate job names found: {dupes}", duplicates=dupes)

    index = {name: i for i, name in enumerate(names)}
    needs: List[List[int]] = [[] for _ in jobs]
    dependents: List[List[int]] = [[] for _ in jobs]

    for i, job in enumerate(jobs):
        for dep in job.needs:
            if dep not in index:
                raise GraphError(
                    f"Job '{job.name}' needs missing job '{dep}'",
                    known=sorted(index),
                )
            d = index[dep]
            if d in needs[i]:
                continue
            needs[i].append(d)
            dependents[d].append(i)

    return JobGraph(jobs=jobs, index=index, needs=needs, dependents=dependents)


def topo_order(graph: JobGraph) -> List[int]:
    """Kahn's algorithm; ties keep declaration order. Raises GraphError on a cycle."""
    indeg = [len(n) for n in graph.needs]
    q = deque(i for i, d in enumerate(indeg) if d == 0)
    order: List[int] = []

    while q:
        node = q.popleft()
        order.append(node)
        for child in graph.dependents[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                q.append(child)

    if len(order) != len(graph):
        stuck = sorted(graph.jobs[i].name for i, d in enumerate(indeg) if d > 0)
        raise GraphError(f"Job graph has a cycle. Stuck jobs: {stuck}", stuck=stuck)

    return order


def _blocked_by(dep: JobRun, job: Job) -> Optional[str]:
    """Reason `job` cannot run given a terminal dependency, or None."""
    if dep.status is JobStatus.FAILED:
        return f"dependency '{dep.name}' failed"
    if dep.status is JobStatus.SKIPPED and not job.tolerate_skipped:
        return f"dependency '{dep.name}' skipped"
    return None


# ----------------------------------------------------------------------
# Plan / result
# ----------------------------------------------------------------------

@dataclass
class Plan:
    trigger: Trigger
    graph: JobGraph
    order: List[int]
    runs: List[JobRun]

    def __iter__(self) -> Iterator[JobRun]:
        for i in self.order:
            yield self.runs[i]

    def run_for(self, name: str) -> JobRun:
        return self.runs[self.graph.index[name]]

    def selected(self) -> List[JobRun]:
        return [r for r in self if r.status is JobStatus.PENDING]

    def skipped(self) -> List[JobRun]:
        return [r for r in self if r.status is JobStatus.SKIPPED]


@dataclass
class PipelineResult:
    trigger: Trigger
    runs: Dict[str, JobRun] = field(default_factory=dict)

    def statuses(self) -> Dict[str, JobStatus]:
        return {name: run.status for name, run in self.runs.items()}

    @property
    def succeeded(self) -> bool:
        for run in self.runs.values():
            if run.status is JobStatus.SKIPPED or run.job.best_effort:
                continue
            if run.status is not JobStatus.SUCCEEDED:
                return False
        return True

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class WorkflowScheduler:
    """
    Plans and runs a job graph for one trigger.

    - jobs start only after every dependency is terminal
    - independent jobs run in parallel up to max_workers
    - failed/skipped dependencies skip dependents without using a worker
    """

    def __init__(
        self,
        executor: JobExecutor,
        *,
        max_workers: int = settings.WORKERS,
        on_job: Optional[JobCallback] = None,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.executor = executor
        self.max_workers = max_workers
        self.on_job = on_job

    def plan(self, jobs: List[Job], trigger: Trigger) -> Plan:
        graph = build_graph(jobs)
        order = topo_order(graph)
        runs = [JobRun(job=j) for j in graph.jobs]

        for i in order:
            job = graph.jobs[i]
            if not job.branches.matches(trigger.branch):
                runs[i].transition(
                    JobStatus.SKIPPED,
                    reason=f"branch '{trigger.branch}' not in filter ({job.branches.describe()})",
                )
                continue
            for d in graph.needs[i]:
                reason = _blocked_by(runs[d], job)
                if reason:
                    runs[i].transition(JobStatus.SKIPPED, reason=reason)
                    break

        return Plan(trigger=trigger, graph=graph, order=order, runs=runs)

    def execute(self, plan: Plan) -> PipelineResult:
        graph, runs = plan.graph, plan.runs

        for run in plan.skipped():
            self._notify(run)

        remaining = [
            sum(1 for d in graph.needs[i] if not runs[d].status.terminal)
            for i in range(len(graph))
        ]
        ready = deque(
            i for i in plan.order
            if runs[i].status is JobStatus.PENDING and remaining[i] == 0
        )

        def settle(i: int) -> None:
            # runs[i] just became terminal: release or skip its dependents
            for child in graph.dependents[i]:
                if runs[child].status is not JobStatus.PENDING:
                    continue
                remaining[child] -= 1
                reason = _blocked_by(runs[i], graph.jobs[child])
                if reason:
                    runs[child].transition(JobStatus.SKIPPED, reason=reason)
                    self._notify(runs[child])
                    settle(child)
                elif remaining[child] == 0:
                    ready.append(child)

        in_flight: Dict[Future, int] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while ready or in_flight:
                while ready:
                    i = ready.popleft()
                    fut = pool.submit(self._run_job, runs[i], plan.trigger)
                    in_flight[fut] = i

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    i = in_flight.pop(fut)
                    fut.result()
                    self._notify(runs[i])
                    settle(i)

        return PipelineResult(
            trigger=plan.trigger,
            runs={runs[i].name: runs[i] for i in plan.order},
        )

    def run(self, jobs: List[Job], trigger: Trigger) -> PipelineResult:
        return self.execute(self.plan(jobs, trigger))

    # ------------------------------------------------------------------

    def _run_job(self, run: JobRun, trigger: Trigger) -> JobRun:
        try:
            return self.executor.execute(run.job, trigger, run)
        except Exception:
            # keep the graph moving: an executor crash fails this run only
            if run.status is not JobStatus.RUNNING:
                raise
            run.record(
                StepResult(
                    step="<executor>",
                    exit_code=-1,
                    output=traceback.format_exc(),
                    error=ErrorKind.EXECUTION_ENVIRONMENT,
                )
            )
            run.transition(JobStatus.FAILED)
            return run

    def _notify(self, run: JobRun) -> None:
        if self.on_job is not None:
            self.on_job(run)
