"""File system access for the workspace being edited."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import List, Optional

from ..errors import WorkspaceWriteError

__all__ = ["Workspace"]

LOGGER = logging.getLogger(__name__)


class Workspace:
    """Root-anchored view of the files a task may read and write.

    Paths handed to the public methods are workspace-relative posix strings;
    :meth:`relative_path` converts absolute or ``./`` prefixed inputs first.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def relative_path(self, path: str | Path) -> Optional[str]:
        """Return ``path`` relative to the root, or ``None`` when it points outside."""
        raw = str(path).strip().replace("\\", "/")
        if not raw:
            return None
        candidate = Path(raw)
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(self._root)
            except (OSError, ValueError):
                root_prefix = self._root.as_posix().rstrip("/") + "/"
                if not raw.startswith(root_prefix):
                    return None
                candidate = Path(raw[len(root_prefix) :])
        parts: list[str] = []
        for part in PurePosixPath(candidate.as_posix()).parts:
            if part in ("", "."):
                continue
            if part == "..":
                if not parts:
                    return None
                parts.pop()
                continue
            parts.append(part)
        if not parts:
            return None
        return "/".join(parts)

    def absolute(self, relative: str) -> Path:
        return self._root / relative

    def exists(self, relative: str) -> bool:
        return self.absolute(relative).is_file()

    def list_children(self, relative: str = "") -> List[Path]:
        """Return the entries of a directory sorted by name."""
        directory = self.absolute(relative) if relative else self._root
        try:
            return sorted(directory.iterdir(), key=lambda entry: entry.name)
        except OSError as error:
            LOGGER.debug("Cannot list %s: %s", directory, error)
            return []

    def read_text(self, relative: str) -> Optional[str]:
        """Return the file text, or ``None`` when the file does not exist."""
        target = self.absolute(relative)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")

    def write_text(self, relative: str, content: str) -> Path:
        """Atomically replace (or create) a file with ``content``."""
        target = self.absolute(relative)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            mode = target.stat().st_mode if target.exists() else None
            handle = tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                newline="",
                dir=target.parent,
                prefix=f".{target.name}.",
                suffix=".tmp",
                delete=False,
            )
            temp_path = Path(handle.name)
            try:
                with handle:
                    handle.write(content)
                    handle.flush()
                    os.fsync(handle.fileno())
                if mode is not None:
                    os.chmod(temp_path, mode)
                os.replace(temp_path, target)
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise
        except OSError as error:
            raise WorkspaceWriteError(
                f"Failed to write {relative}: {error}", details={"path": relative}
            ) from error
        LOGGER.debug("Wrote %d character(s) to %s", len(content), relative)
        return target

    def create_file(self, relative: str, content: str) -> Path:
        """Create a new file; refuses to overwrite an existing one."""
        if self.absolute(relative).exists():
            raise WorkspaceWriteError(f"File already exists: {relative}", details={"path": relative})
        return self.write_text(relative, content)
