# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from relayci import settings
from relayci.cache import CacheStore
from relayci.errors import GraphError
from relayci.executor import JobExecutor
from relayci.git_facts.git import trigger_from_git
from relayci.loader import load_workflow
from relayci.model import Trigger
from relayci.scheduler import WorkflowScheduler
from relayci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "relayci_workflow.py"

# exit codes
EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_CONFIG_ERROR = 2


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory: relayci_workflow.py first, then *_workflow.py."""
    current_dir = Path(".")
    default_workflow = current_dir / DEFAULT_WORKFLOW
    workflow_files = [default_workflow] if default_workflow.exists() else []
    for path in sorted(current_dir.glob("*_workflow.py")):
        if path != default_workflow:
            workflow_files.append(path)
    return workflow_files


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  relayci run --workflow my_workflow.py",
            )
            sys.exit(EXIT_CONFIG_ERROR)
        return workflow_path

    workflow_files = find_workflow_files()

    if not workflow_files:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion="Create relayci_workflow.py or pass --workflow explicitly.",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    if len(workflow_files) > 1 and workflow_files[0].name != DEFAULT_WORKFLOW:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  relayci run --workflow ci_workflow.py",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    return workflow_files[0]


def resolve_trigger(branch: str | None, commit: str | None) -> Trigger:
    """Use --branch/--commit when given, the local git checkout otherwise."""
    console = get_console()
    if branch is not None and commit is not None:
        return Trigger(branch=branch, commit=commit)
    try:
        return trigger_from_git(branch=branch, commit=commit)
    except (subprocess.CalledProcessError, FileNotFoundError):
        if branch is not None:
            console.print_debug("git unavailable, using commit=HEAD")
            return Trigger(branch=branch, commit="HEAD")
        console.print_error(
            "Could not determine branch",
            "No --branch given and the current directory is not a usable git checkout.",
            suggestion="Pass the trigger explicitly:\n  relayci run --branch develop --commit <sha>",
        )
        sys.exit(EXIT_CONFIG_ERROR)


def _load(workflow: str | None):
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except (OSError, TypeError, ValueError, SyntaxError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        sys.exit(EXIT_CONFIG_ERROR)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show step output and cache errors)",
)
@click.pass_context
def cli(ctx, debug):
    """relayci: run a CI job graph locally."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--branch", default=None, help="Trigger branch (defaults to the current git branch)")
@click.option("--commit", default=None, help="Trigger commit (defaults to git HEAD)")
@click.option("--workers", default=settings.WORKERS, show_default=True, type=click.IntRange(min=1), help="Number of parallel jobs")
@click.option("--cache-dir", default=settings.CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--cache-keep", default=settings.CACHE_KEEP, show_default=True, type=click.IntRange(min=0), help="Cache entries to keep after the run")
@click.option("--workspace", default=".", show_default=True, help="Directory steps run in")
@click.option("--timeout", default=settings.STEP_TIMEOUT, show_default=True, type=float, help="Default per-step timeout in seconds")
@click.option("--arch", default=settings.ARCH, show_default=True, help="Architecture tag used in cache keys")
def run(workflow, branch, commit, workers, cache_dir, cache_keep, workspace, timeout, arch):
    """Run a workflow for a branch/commit trigger."""
    console = get_console()
    workflow_path, jobs = _load(workflow)
    trigger = resolve_trigger(branch, commit)

    cache = CacheStore(cache_dir, log=console.print_debug)
    executor = JobExecutor(
        cache,
        workspace=workspace,
        arch=arch,
        default_timeout=timeout,
        on_step=console.print_step,
        log=console.print_debug,
    )
    scheduler = WorkflowScheduler(executor, max_workers=workers, on_job=console.print_job)

    try:
        plan = scheduler.plan(jobs, trigger)
    except GraphError as e:
        console.print_error("Invalid workflow graph", str(e))
        sys.exit(EXIT_CONFIG_ERROR)

    console.print_run_started(workflow_path.name, trigger, len(jobs))
    console.print_plan(plan)

    try:
        result = scheduler.execute(plan)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)

    removed = cache.prune(keep=cache_keep)
    if removed:
        console.print_debug(f"cache: pruned {len(removed)} entries")

    console.print_results(result)
    sys.exit(result.exit_code)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--branch", default=None, help="Trigger branch (defaults to the current git branch)")
@click.option("--commit", default=None, help="Trigger commit (defaults to git HEAD)")
def plan(workflow, branch, commit):
    """Show which jobs would run for a trigger, without running anything."""
    console = get_console()
    _workflow_path, jobs = _load(workflow)
    trigger = resolve_trigger(branch, commit)

    executor = JobExecutor(CacheStore(settings.CACHE_DIR))
    try:
        planned = WorkflowScheduler(executor, max_workers=1).plan(jobs, trigger)
    except GraphError as e:
        console.print_error("Invalid workflow graph", str(e))
        sys.exit(EXIT_CONFIG_ERROR)

    console.print_plan(planned)


if __name__ == "__main__":
    cli()
