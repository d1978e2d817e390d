"""Workspace file access and edit application."""

from .workspace import Workspace
from .patch import PatchAction, PatchApplier, PatchOutcome, PatchResult, UnmatchedElementPolicy

__all__ = [
    "PatchAction",
    "PatchApplier",
    "PatchOutcome",
    "PatchResult",
    "UnmatchedElementPolicy",
    "Workspace",
]
