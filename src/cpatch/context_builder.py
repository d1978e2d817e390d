"""Assemble the source of engine-selected symbols into a bounded context."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .cancellation import CancellationToken
from .code_index.declarations import Declaration, SourceOutline, SymbolKind, lookup_signature
from .code_index.symbol_index import DEFAULT_MAX_CONTEXT_LENGTH
from .errors import ResolutionMiss
from .structured import RelevantSymbolRef
from .tools.workspace import Workspace

__all__ = ["AssembledContext", "ContextAssembler", "ContextBlock"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ContextBlock:
    """Source text of one resolved symbol."""

    file: str
    kind: SymbolKind
    name: str
    source_text: str

    def render(self) -> str:
        return f"File: {self.file}\n{self.kind.value}: {self.name}\nContent:\n{self.source_text}\n-----\n"


@dataclass(slots=True)
class AssembledContext:
    """Ordered context blocks and their rendered text, capped at ``max_length``."""

    blocks: List[ContextBlock] = field(default_factory=list)
    truncated: bool = False
    max_length: int = DEFAULT_MAX_CONTEXT_LENGTH
    _text: str = field(default="", init=False, repr=False)

    @property
    def length(self) -> int:
        return len(self._text)

    def add(self, block: ContextBlock) -> bool:
        """Append ``block``; when it overflows, keep only what fits and report ``False``."""
        rendered = block.render()
        remaining = self.max_length - len(self._text)
        if len(rendered) <= remaining:
            self.blocks.append(block)
            self._text += rendered
            return True
        self.truncated = True
        if remaining > 0:
            self.blocks.append(block)
            self._text += rendered[:remaining]
        return False

    def render(self) -> str:
        return self._text


class ContextAssembler:
    """Resolve symbol refs against the workspace and collect their source."""

    def __init__(self, workspace: Workspace, *, max_context_length: int = DEFAULT_MAX_CONTEXT_LENGTH) -> None:
        self._workspace = workspace
        self._max_context_length = max_context_length

    def assemble(
        self,
        refs: Iterable[RelevantSymbolRef],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> AssembledContext:
        context = AssembledContext(max_length=self._max_context_length)
        outlines: dict[str, SourceOutline] = {}
        for ref in refs:
            if cancel is not None:
                cancel.raise_if_cancelled("context assembly")
            try:
                relative, declaration = self._resolve(ref, outlines)
            except ResolutionMiss as miss:
                LOGGER.debug("Skipping context ref: %s", miss)
                continue
            block = ContextBlock(
                file=relative,
                kind=declaration.kind,
                name=ref.name.strip(),
                source_text=declaration.text,
            )
            if not context.add(block):
                LOGGER.info("Context truncated at %d character(s)", context.length)
                break
        return context

    def _resolve(
        self,
        ref: RelevantSymbolRef,
        outlines: dict[str, SourceOutline],
    ) -> tuple[str, Declaration]:
        relative = self._workspace.relative_path(ref.file)
        if relative is None:
            raise ResolutionMiss(f"{ref.file!r} is outside the workspace")
        outline = outlines.get(relative)
        if outline is None:
            try:
                source = self._workspace.read_text(relative)
            except (OSError, UnicodeDecodeError) as error:
                raise ResolutionMiss(f"cannot read {relative}: {error}") from error
            if source is None:
                raise ResolutionMiss(f"{relative} does not exist")
            outline = SourceOutline(source)
            outlines[relative] = outline

        try:
            signature = lookup_signature(ref.kind, ref.name)
        except ValueError as error:
            raise ResolutionMiss(str(error)) from error

        declaration = outline.find(signature)
        parent = ref.parent_signature.strip()
        if declaration is None and parent:
            declaration = outline.find_member(parent, signature)
        if declaration is None:
            raise ResolutionMiss(f"{signature!r} not found in {relative}")
        return relative, declaration
