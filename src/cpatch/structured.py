"""Typed payloads exchanged with the completion engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class UpdateMode(str, Enum):
    """How a :class:`FileEdit` is applied to its target file."""

    UPDATE_FILE = "update_file"
    UPDATE_ELEMENT = "update_element"
    CREATE_ELEMENT = "create_element"


@dataclass(slots=True)
class RelevantSymbolRef:
    """Engine answer naming one indexed symbol that matters for the task."""

    file: str
    kind: Literal["Class", "Function"]
    name: str
    description: str
    parent_signature: str


@dataclass(slots=True)
class FilterResponse:
    """Response envelope for the symbol filter call."""

    nodes: list[RelevantSymbolRef]


@dataclass(slots=True)
class FileEdit:
    """One file change proposed by the code generation call.

    ``code`` always holds complete text: the whole file for ``update_file``
    and the whole new or changed declaration for the element modes.
    """

    file_name: str
    description: str
    code: str
    user_message: str
    update_mode: UpdateMode | None = None
    parent_signature: str | None = None
    target_file: str | None = None

    @property
    def mode(self) -> UpdateMode:
        return self.update_mode or UpdateMode.UPDATE_FILE

    @property
    def target_path(self) -> str:
        """Return the path the edit resolves against."""
        if self.target_file and self.target_file.strip():
            return self.target_file.strip()
        return self.file_name.strip()

    @property
    def parent(self) -> str:
        return (self.parent_signature or "").strip()


@dataclass(slots=True)
class EditBatch:
    """Ordered edits returned by one code generation call."""

    files: list[FileEdit]


__all__ = [
    "EditBatch",
    "FileEdit",
    "FilterResponse",
    "RelevantSymbolRef",
    "UpdateMode",
]
