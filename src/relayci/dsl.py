# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .model import AllBranches, CacheKey, Filter, IgnoreBranches, Job, OnlyBranches, Step


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    best_effort: bool = False,
    timeout: float | None = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, best_effort=best_effort, timeout=timeout)


def cache_key(prefix: str, *files: str, arch: bool = True) -> CacheKey:
    """cache_key("v1-cargo-cache", "Cargo.lock") -> v1-cargo-cache-<arch>-<sha256>"""
    return CacheKey(prefix=prefix, files=tuple(files), include_arch=arch)


def restore_cache(key: CacheKey, *, name: str | None = None, cwd: str | None = None) -> Step:
    return Step(name=name or f"Restore cache {key.prefix}", run=None, cwd=cwd, restore=key)


def save_cache(
    key: CacheKey,
    paths: Iterable[str],
    *,
    name: str | None = None,
    cwd: str | None = None,
) -> Step:
    paths = tuple(paths)
    if not paths:
        raise ValueError(f"save_cache({key.prefix!r}) needs at least one path")
    return Step(
        name=name or f"Save cache {key.prefix}",
        run=None,
        cwd=cwd,
        save=key,
        cache_paths=paths,
    )


# ---------------------------------------------------------------------
# Branch filters
# ---------------------------------------------------------------------

def only(*branches: str) -> OnlyBranches:
    return OnlyBranches(frozenset(branches))


def ignore(*branches: str) -> IgnoreBranches:
    return IgnoreBranches(frozenset(branches))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    branches: Filter | str | Iterable[str] | None = None,
    env: Optional[Dict[str, str]] = None,
    best_effort: bool = False,
    tolerate_skipped: bool = False,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        branches=_as_filter(branches),
        # force values to str for env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        best_effort=best_effort,
        tolerate_skipped=tolerate_skipped,
    )


def _as_filter(branches: Filter | str | Iterable[str] | None) -> Filter:
    if branches is None:
        return AllBranches()
    if isinstance(branches, (AllBranches, OnlyBranches, IgnoreBranches)):
        return branches
    if isinstance(branches, str):
        return only(branches)
    return only(*branches)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job) -> List[Job]:
    """
    Workflow definition helper.

        from relayci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)


workflow = wf
