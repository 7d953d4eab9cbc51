"""Tests for the command line interface."""

import textwrap

import pytest
from click.testing import CliRunner

from relayci.cli import cli

WORKFLOW = """
from relayci import job, only, sh, wf

def workflow():
    return wf(
        job("test", sh("build", "true"), sh("unit tests", "{test_cmd}")),
        job("deploy-dev", sh("deploy", "echo dev"), needs=["test"], branches=only("develop")),
        job("deploy-master", sh("deploy", "echo prod"), needs=["test"], branches=only("master")),
    )
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    def write(test_cmd="true", body=None):
        path = tmp_path / "relayci_workflow.py"
        path.write_text(textwrap.dedent(body) if body else WORKFLOW.format(test_cmd=test_cmd))
        return path

    return write


def invoke(*args):
    return CliRunner().invoke(
        cli,
        ["run", "--branch", args[0], "--commit", "abc", "--cache-dir", ".cache", "--workers", "2", *args[1:]],
    )


class TestRun:

    def test_develop_succeeds(self, project):
        project()
        result = invoke("develop")
        assert result.exit_code == 0, result.output
        assert "deploy-dev: SUCCEEDED" in result.output
        assert "deploy-master: SKIPPED" in result.output

    def test_job_failure_exits_1(self, project):
        project(test_cmd="echo boom; exit 1")
        result = invoke("develop")
        assert result.exit_code == 1
        assert "test: FAILED" in result.output
        assert "deploy-dev: SKIPPED" in result.output
        assert "boom" in result.output

    def test_cycle_exits_2(self, project):
        project(body="""
            from relayci import job, sh, wf
            JOBS = wf(
                job("a", sh("x", "true"), needs=["b"]),
                job("b", sh("x", "true"), needs=["a"]),
            )
        """)
        result = invoke("develop")
        assert result.exit_code == 2

    def test_broken_workflow_exits_2(self, project):
        project(body="JOBS = 42\n")
        result = invoke("develop")
        assert result.exit_code == 2

    def test_missing_workflow_exits_2(self, project):
        result = invoke("develop", "--workflow", "nope.py")
        assert result.exit_code == 2


class TestPlan:

    def test_plan_lists_skips(self, project):
        project()
        result = CliRunner().invoke(cli, ["plan", "--branch", "feature-x", "--commit", "abc"])
        assert result.exit_code == 0, result.output
        assert "deploy-dev (skipped: branch 'feature-x' not in filter (only develop))" in result.output
        assert "deploy-master (skipped:" in result.output
