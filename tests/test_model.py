"""Tests for data models."""

import threading

import pytest

from relayci.dsl import ignore, job, only, sh
from relayci.errors import CIError, ErrorKind, GraphError
from relayci.model import AllBranches, JobRun, JobStatus, StepResult


class TestFilters:
    """Tests for branch filters."""

    def test_all_branches(self):
        assert AllBranches().matches("anything")

    def test_only(self):
        f = only("develop", "release")
        assert f.matches("develop")
        assert f.matches("release")
        assert not f.matches("master")

    def test_ignore(self):
        f = ignore("gh-pages")
        assert not f.matches("gh-pages")
        assert f.matches("develop")


class TestJobRun:
    """Tests for the JobRun state machine."""

    def _run(self):
        return JobRun(job=job("j", sh("s", "true")))

    def test_happy_path(self):
        run = self._run()
        assert run.status is JobStatus.PENDING

        run.transition(JobStatus.RUNNING)
        assert run.started_at is not None
        assert run.finished_at is None

        run.transition(JobStatus.SUCCEEDED)
        assert run.finished_at is not None
        assert run.duration >= 0

    def test_skip_bypasses_running(self):
        run = self._run()
        run.transition(JobStatus.SKIPPED, reason="filtered")
        assert run.status is JobStatus.SKIPPED
        assert run.skip_reason == "filtered"
        assert run.started_at is None

    @pytest.mark.parametrize(
        "path",
        [
            [JobStatus.SUCCEEDED],
            [JobStatus.RUNNING, JobStatus.SKIPPED],
            [JobStatus.RUNNING, JobStatus.FAILED, JobStatus.RUNNING],
            [JobStatus.SKIPPED, JobStatus.RUNNING],
        ],
    )
    def test_illegal_transitions(self, path):
        run = self._run()
        with pytest.raises(ValueError):
            for status in path:
                run.transition(status)

    def test_terminal_states(self):
        assert JobStatus.SUCCEEDED.terminal
        assert JobStatus.FAILED.terminal
        assert JobStatus.SKIPPED.terminal
        assert not JobStatus.PENDING.terminal
        assert not JobStatus.RUNNING.terminal

    def test_subscribe_replays_finished_run(self):
        run = self._run()
        run.transition(JobStatus.RUNNING)
        run.record(StepResult(step="a", exit_code=0))
        run.record(StepResult(step="b", exit_code=1, error=ErrorKind.COMMAND_FAILURE))
        run.transition(JobStatus.FAILED)

        assert [r.step for r in run.subscribe()] == ["a", "b"]

    def test_subscribe_streams_live_results(self):
        run = self._run()
        run.transition(JobStatus.RUNNING)
        seen = []

        consumer = threading.Thread(target=lambda: seen.extend(r.step for r in run.subscribe()))
        consumer.start()

        run.record(StepResult(step="one", exit_code=0))
        run.record(StepResult(step="two", exit_code=0))
        run.transition(JobStatus.SUCCEEDED)
        consumer.join(timeout=5)

        assert not consumer.is_alive()
        assert seen == ["one", "two"]


class TestStepResult:
    def test_ok(self):
        assert StepResult(step="s", exit_code=0).ok
        assert not StepResult(step="s", exit_code=2, error=ErrorKind.COMMAND_FAILURE).ok
        assert not StepResult(step="s", exit_code=0, error=ErrorKind.EXECUTION_ENVIRONMENT).ok


class TestErrors:
    def test_ci_error_str(self):
        err = CIError(kind=ErrorKind.TIMEOUT, message="too slow", job="test", step="build", details={"after": 5})
        text = str(err)
        assert text.startswith("timeout: too slow")
        assert "job=test" in text
        assert "step=build" in text
        assert "after=5" in text

    def test_graph_error_kind(self):
        err = GraphError("cycle", stuck=["a", "b"])
        assert err.kind is ErrorKind.GRAPH
        assert err.details == {"stuck": ["a", "b"]}
