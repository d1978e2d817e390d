"""Apply engine-proposed file edits onto the workspace."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

import libcst as cst

from ..cancellation import CancellationToken
from ..code_index.declarations import Declaration, SourceOutline, first_declaration
from ..errors import ResolutionMiss, TaskCancelledError, WorkspaceWriteError
from ..structured import FileEdit, UpdateMode
from .workspace import Workspace

__all__ = [
    "PatchAction",
    "PatchApplier",
    "PatchOutcome",
    "PatchResult",
    "UnmatchedElementPolicy",
]

TELEMETRY_LOGGER = logging.getLogger("cpatch.telemetry")
LOGGER = logging.getLogger(__name__)


class UnmatchedElementPolicy(str, Enum):
    """What ``update_element`` does when nothing matches and no parent is named."""

    ERROR = "error"
    APPEND = "append"
    REPLACE_FILE = "replace_file"


class PatchAction(str, Enum):
    CREATED_FILE = "created_file"
    REPLACED_FILE = "replaced_file"
    REPLACED_ELEMENT = "replaced_element"
    REPLACED_MEMBER = "replaced_member"
    APPENDED_MEMBER = "appended_member"
    APPENDED_TO_FILE = "appended_to_file"


@dataclass(slots=True)
class PatchResult:
    """Outcome of applying one edit to the workspace."""

    path: str
    absolute_path: Path
    mode: UpdateMode
    action: PatchAction
    content: str

    @property
    def created(self) -> bool:
        return self.action is PatchAction.CREATED_FILE


@dataclass(slots=True)
class PatchOutcome:
    """Per-edit record for a batch: a result or the error that stopped it."""

    edit: FileEdit
    result: Optional[PatchResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_patch_event(event: str, **fields: Any) -> None:
    """Log structured telemetry events when applying edits."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


class PatchApplier:
    """Resolve each edit's target file and apply it with its update mode."""

    def __init__(
        self,
        workspace: Workspace,
        *,
        unmatched_element_policy: UnmatchedElementPolicy | str = UnmatchedElementPolicy.ERROR,
    ) -> None:
        self._workspace = workspace
        self._policy = UnmatchedElementPolicy(unmatched_element_policy)

    @property
    def unmatched_element_policy(self) -> UnmatchedElementPolicy:
        return self._policy

    def apply(self, edit: FileEdit, *, cancel: Optional[CancellationToken] = None) -> PatchResult:
        """Apply one edit and commit it to disk before returning."""
        relative = self._workspace.relative_path(edit.target_path)
        if relative is None:
            raise WorkspaceWriteError(
                f"Edit target {edit.target_path!r} is outside the workspace.",
                details={"target": edit.target_path},
            )

        try:
            current = self._workspace.read_text(relative)
        except (OSError, UnicodeDecodeError) as error:
            raise WorkspaceWriteError(f"Cannot read {relative}: {error}", details={"path": relative}) from error

        mode = edit.mode
        if current is None:
            content, action = edit.code, PatchAction.CREATED_FILE
        else:
            content, action = self._render(edit, mode, relative, current)

        if cancel is not None:
            cancel.raise_if_cancelled(f"writing {relative}")
        if action is PatchAction.CREATED_FILE:
            absolute = self._workspace.create_file(relative, content)
        else:
            absolute = self._workspace.write_text(relative, content)

        _emit_patch_event(
            "edit_applied",
            path=relative,
            mode=mode,
            action=action,
            chars=len(content),
            renamed_from=edit.file_name if edit.target_file else None,
        )
        return PatchResult(path=relative, absolute_path=absolute, mode=mode, action=action, content=content)

    def apply_all(
        self,
        edits: Iterable[FileEdit],
        *,
        on_applied: Optional[Callable[[PatchResult], None]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> list[PatchOutcome]:
        """Apply edits in order; a failed edit does not stop the ones after it."""
        outcomes: list[PatchOutcome] = []
        for edit in edits:
            try:
                result = self.apply(edit, cancel=cancel)
            except TaskCancelledError:
                raise
            except (WorkspaceWriteError, ResolutionMiss) as error:
                LOGGER.warning("Edit for %s not applied: %s", edit.target_path, error)
                _emit_patch_event("edit_failed", path=edit.target_path, mode=edit.mode, error=str(error))
                outcomes.append(PatchOutcome(edit=edit, error=error))
                continue
            outcomes.append(PatchOutcome(edit=edit, result=result))
            if on_applied is not None:
                on_applied(result)
        return outcomes

    def _render(
        self,
        edit: FileEdit,
        mode: UpdateMode,
        relative: str,
        current: str,
    ) -> tuple[str, PatchAction]:
        if mode is UpdateMode.UPDATE_FILE:
            return edit.code, PatchAction.REPLACED_FILE

        outline = SourceOutline(current)
        parent_signature = edit.parent

        if mode is UpdateMode.CREATE_ELEMENT:
            if parent_signature:
                parent = outline.find(parent_signature)
                if parent is not None:
                    return _append_member(outline, parent, edit.code, relative)
                LOGGER.info("Parent %r not found in %s; appending to end of file", parent_signature, relative)
            return outline.append(edit.code), PatchAction.APPENDED_TO_FILE

        declaration = first_declaration(edit.code)
        if declaration is not None:
            match = outline.find(declaration.signature)
            if match is not None:
                return outline.replace(match, edit.code), PatchAction.REPLACED_ELEMENT

        if parent_signature:
            parent = outline.find(parent_signature)
            if parent is None:
                LOGGER.info("Parent %r not found in %s; appending to end of file", parent_signature, relative)
                return outline.append(edit.code), PatchAction.APPENDED_TO_FILE
            if declaration is not None:
                member = outline.find_member(parent_signature, declaration.signature)
                if member is not None:
                    try:
                        return outline.replace_member(parent, member, edit.code), PatchAction.REPLACED_MEMBER
                    except cst.ParserSyntaxError as error:
                        LOGGER.debug("Replacement for %s does not parse: %s", member.signature, error)
            return _append_member(outline, parent, edit.code, relative)

        signature = declaration.signature if declaration is not None else None
        if self._policy is UnmatchedElementPolicy.APPEND:
            return outline.append(edit.code), PatchAction.APPENDED_TO_FILE
        if self._policy is UnmatchedElementPolicy.REPLACE_FILE:
            LOGGER.warning("No match for %r in %s; replacing the whole file", signature, relative)
            return edit.code, PatchAction.REPLACED_FILE
        raise ResolutionMiss(
            f"No declaration matching {signature!r} in {relative} and no parent_signature to insert under.",
            details={"path": relative, "signature": signature},
        )


def _append_member(
    outline: SourceOutline,
    parent: Declaration,
    code: str,
    relative: str,
) -> tuple[str, PatchAction]:
    try:
        return outline.append_member(parent, code), PatchAction.APPENDED_MEMBER
    except (cst.ParserSyntaxError, ResolutionMiss) as error:
        LOGGER.warning(
            "Cannot nest code under %r in %s (%s); appending to end of file", parent.signature, relative, error
        )
        return outline.append(code), PatchAction.APPENDED_TO_FILE
