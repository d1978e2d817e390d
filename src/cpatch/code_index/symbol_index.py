"""Flat listing of top-level Python declarations across a workspace."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

from ..cancellation import CancellationToken
from ..errors import IndexBuildError
from ..tools.workspace import Workspace
from .declarations import SourceOutline, SymbolKind, name_of

__all__ = [
    "DEFAULT_EXCLUDED_DIRS",
    "DEFAULT_MAX_CONTEXT_LENGTH",
    "FileSymbols",
    "Symbol",
    "SymbolIndex",
    "SymbolIndexBuilder",
    "extract_symbols",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT_LENGTH = 250_000
DEFAULT_EXCLUDED_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "__pycache__",
        ".mypy_cache",
        ".ruff_cache",
        ".pytest_cache",
        ".idea",
        ".vscode",
        "node_modules",
        "build",
        "dist",
        "out",
        ".venv",
        "venv",
        "env",
        ".env",
        ".tox",
    }
)
SOURCE_SUFFIX = ".py"


@dataclass(frozen=True)
class Symbol:
    """A top-level declaration recorded by the index."""

    file: str
    kind: SymbolKind
    signature: str

    @property
    def name(self) -> str:
        return name_of(self.signature)

    def render(self) -> str:
        return f"    {self.kind.value}: {self.signature}"


@dataclass(slots=True)
class FileSymbols:
    """Index entry for one source file."""

    file: str
    symbols: List[Symbol] = field(default_factory=list)

    def render(self) -> str:
        lines = [f"File: {self.file}"]
        lines.extend(symbol.render() for symbol in self.symbols)
        return "\n".join(lines) + "\n"


@dataclass(slots=True)
class SymbolIndex:
    """Ordered per-file symbol listing plus its serialized text."""

    entries: List[FileSymbols] = field(default_factory=list)
    truncated: bool = False
    max_length: int = DEFAULT_MAX_CONTEXT_LENGTH
    _length: int = field(default=0, init=False, repr=False)

    @property
    def files(self) -> List[str]:
        return [entry.file for entry in self.entries]

    @property
    def length(self) -> int:
        return self._length

    def symbols(self) -> Iterator[Symbol]:
        for entry in self.entries:
            yield from entry.symbols

    def try_add(self, entry: FileSymbols) -> bool:
        """Append ``entry`` if its whole block fits under the cap."""
        block = entry.render()
        if self._length + len(block) > self.max_length:
            self.truncated = True
            return False
        self.entries.append(entry)
        self._length += len(block)
        return True

    def render(self) -> str:
        return "".join(entry.render() for entry in self.entries)


def extract_symbols(file: str, source: str) -> List[Symbol]:
    """Return the top-level declarations of ``source`` in declaration order."""
    outline = SourceOutline(source)
    return [
        Symbol(file=file, kind=declaration.kind, signature=declaration.signature)
        for declaration in outline.declarations
    ]


class SymbolIndexBuilder:
    """Walk a workspace and list its top-level declarations under a size cap."""

    def __init__(
        self,
        *,
        excluded_dirs: Optional[Iterable[str]] = None,
        max_context_length: int = DEFAULT_MAX_CONTEXT_LENGTH,
    ) -> None:
        self._excluded_dirs = frozenset(excluded_dirs) if excluded_dirs is not None else DEFAULT_EXCLUDED_DIRS
        self._max_context_length = max_context_length

    @property
    def excluded_dirs(self) -> frozenset[str]:
        return self._excluded_dirs

    def build(
        self,
        workspace: Workspace,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> SymbolIndex:
        index = SymbolIndex(max_length=self._max_context_length)
        for relative in self._iter_source_files(workspace, ""):
            if cancel is not None:
                cancel.raise_if_cancelled("indexing")
            try:
                symbols = self._index_file(workspace, relative)
            except IndexBuildError as error:
                LOGGER.debug("%s", error)
                continue
            if not index.try_add(FileSymbols(file=relative, symbols=symbols)):
                LOGGER.info(
                    "Symbol index truncated at %d file(s), %d character(s)",
                    len(index.entries),
                    index.length,
                )
                break
        return index

    def _index_file(self, workspace: Workspace, relative: str) -> List[Symbol]:
        try:
            source = workspace.read_text(relative)
        except (OSError, UnicodeDecodeError) as error:
            raise IndexBuildError(relative, str(error)) from error
        if source is None:
            raise IndexBuildError(relative, "file disappeared")
        return extract_symbols(relative, source)

    def _iter_source_files(self, workspace: Workspace, relative_dir: str) -> Iterator[str]:
        """Pre-order walk yielding workspace-relative source paths."""
        for child in workspace.list_children(relative_dir):
            relative = f"{relative_dir}/{child.name}" if relative_dir else child.name
            if child.is_dir():
                if child.name in self._excluded_dirs or child.is_symlink():
                    continue
                yield from self._iter_source_files(workspace, relative)
            elif child.suffix == SOURCE_SUFFIX and child.is_file():
                yield relative
