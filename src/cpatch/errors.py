"""Error hierarchy shared by the indexing, assembly, and patching stages."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

__all__ = [
    "ConfigError",
    "CpatchError",
    "IndexBuildError",
    "ResolutionMiss",
    "TaskCancelledError",
    "TaskInFlightError",
    "WorkspaceWriteError",
]


class CpatchError(RuntimeError):
    """Base error for every failure raised by the pipeline."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigError(CpatchError):
    """Raised when a config value has the wrong type or an unknown choice."""


class IndexBuildError(CpatchError):
    """Raised when a workspace file cannot be read while indexing."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"Cannot index {path}: {reason}", details={"path": str(path)})
        self.path = str(path)


class ResolutionMiss(CpatchError):
    """Raised when a symbol or declaration cannot be located in its file."""


class WorkspaceWriteError(CpatchError):
    """Raised when a workspace file cannot be created or replaced."""


class TaskInFlightError(CpatchError):
    """Raised when a task is submitted while another one is still running."""


class TaskCancelledError(CpatchError):
    """Raised at a blocking boundary once cancellation has been requested."""
