# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ErrorKind(str, Enum):
    """Failure classes reported by steps, the cache and the planner."""

    COMMAND_FAILURE = "command_failure"
    """Command ran and exited nonzero. Recorded, never raised."""

    EXECUTION_ENVIRONMENT = "execution_environment"
    """Command could not be launched (missing cwd, not found, not executable)."""

    TIMEOUT = "timeout"
    """Command exceeded its deadline."""

    GRAPH = "graph"
    """Cyclic or unresolvable job graph."""

    CACHE = "cache"
    """Cache store unavailable. Degrades to a miss."""


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: ErrorKind
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind.value}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class GraphError(CIError):
    """Invalid workflow graph. Fatal at plan time, no JobRuns are created."""

    def __init__(self, message: str, **details):
        super().__init__(kind=ErrorKind.GRAPH, message=message, details=details)


class CacheError(CIError):
    """Cache store failure. Callers log it and carry on as if it were a miss."""

    def __init__(self, message: str, key: str | None = None, **details):
        if key is not None:
            details["key"] = key
        super().__init__(kind=ErrorKind.CACHE, message=message, details=details)
