"""Shared fixtures."""

import pytest

from relayci.cache import CacheStore
from relayci.dsl import job, only, sh
from relayci.executor import JobExecutor
from relayci.scheduler import WorkflowScheduler


@pytest.fixture
def cache(tmp_path):
    return CacheStore(tmp_path / "cache")


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def executor(cache, workspace):
    return JobExecutor(cache, workspace=workspace, arch="test-arch", default_timeout=30)


@pytest.fixture
def scheduler(executor):
    return WorkflowScheduler(executor, max_workers=4)


def deploy_graph(test_steps=None):
    """test -> deploy-dev (develop only), test -> deploy-master (master only)."""
    test_steps = test_steps or [sh("build", "true"), sh("unit tests", "true")]
    return [
        job("test", *test_steps),
        job("deploy-dev", sh("deploy", "echo dev"), needs=["test"], branches=only("develop")),
        job("deploy-master", sh("deploy", "echo prod"), needs=["test"], branches=only("master")),
    ]


@pytest.fixture
def make_deploy_graph():
    return deploy_graph
