from __future__ import annotations
import os
import platform


def _default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def _default_arch() -> str:
    return f"{platform.system().lower()}-{platform.machine().lower()}"


CACHE_DIR = os.environ.get("RELAYCI_CACHE_DIR", ".relayci/cache")
CACHE_KEEP = int(os.environ.get("RELAYCI_CACHE_KEEP", "5"))
WORKERS = int(os.environ.get("RELAYCI_WORKERS", str(_default_workers())))
STEP_TIMEOUT = float(os.environ.get("RELAYCI_STEP_TIMEOUT", "3600"))
ARCH = os.environ.get("RELAYCI_ARCH") or _default_arch()
