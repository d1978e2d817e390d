"""Engine-backed phases of a task."""

from __future__ import annotations

from enum import Enum


class PhaseName(str, Enum):
    """Enumeration of the completion-engine calls made per task."""

    FILTER = "filter"
    GENERATE = "generate"


__all__ = ["PhaseName"]
