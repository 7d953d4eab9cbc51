# git.py
# Small wrapper around the Git CLI used as the trigger source.
# The rest of the codebase never calls subprocess("git ...") directly.

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Optional

from ..model import Trigger


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """
    Name of the checked-out branch.

    On a detached HEAD, CI hosts usually export the branch; fall back to
    RELAYCI_BRANCH and then to "HEAD".
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if name == "HEAD":
        return os.environ.get("RELAYCI_BRANCH", "HEAD")
    return name


def trigger_from_git(
    branch: Optional[str] = None,
    commit: Optional[str] = None,
    cwd: Optional[str | Path] = None,
) -> Trigger:
    """Build a Trigger, filling whatever was not given from the checkout."""
    if branch is None:
        branch = current_branch(cwd=cwd)
    if commit is None:
        commit = head_sha(cwd=cwd)
    return Trigger(branch=branch, commit=commit)
