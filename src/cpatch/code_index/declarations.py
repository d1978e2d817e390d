"""Top-level declaration outlines for Python sources.

libcst only supplies statement boundaries. Matching stays textual: the
signature of a declaration is its header line cut at the first ``(`` (or the
trailing ``:`` when there is no parameter list), so ``def foo(x, y):`` gives
``def foo`` and ``class Bar(Base):`` gives ``class Bar``. The heuristic only
understands single-line headers, which is also what the engine is prompted to
produce.
"""

from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence

import libcst as cst

from ..errors import ResolutionMiss

__all__ = [
    "Declaration",
    "SourceOutline",
    "SymbolKind",
    "first_declaration",
    "header_line",
    "lookup_signature",
    "name_of",
    "normalise_signature",
    "signature_of",
]

LOGGER = logging.getLogger(__name__)

_DEFAULT_BODY_INDENT = "    "
_BOM = "\ufeff"


class SymbolKind(str, Enum):
    """Declaration kinds recognised by the index."""

    CLASS = "Class"
    FUNCTION = "Function"

    @property
    def keyword(self) -> str:
        return "class" if self is SymbolKind.CLASS else "def"

    @classmethod
    def parse(cls, value: str) -> "SymbolKind":
        """Accept kind labels the engine tends to echo back."""
        lowered = value.strip().lower()
        if lowered in {"class", "cls"}:
            return cls.CLASS
        if lowered in {"function", "def", "method", "func"}:
            return cls.FUNCTION
        raise ValueError(f"Unknown symbol kind: {value!r}")


_HEADER_PREFIXES = (
    ("class ", SymbolKind.CLASS),
    ("def ", SymbolKind.FUNCTION),
    ("async def ", SymbolKind.FUNCTION),
)


def header_line(text: str) -> str:
    """Return the first line of ``text`` that is not blank, a comment, or part of a decorator."""
    depth = 0
    for line in text.splitlines():
        stripped = line.lstrip(_BOM).strip()
        if depth > 0:
            depth = max(depth + _bracket_delta(stripped), 0)
            continue
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("@"):
            depth = max(_bracket_delta(stripped), 0)
            continue
        return stripped
    return ""


def _bracket_delta(line: str) -> int:
    code = line.split("#", 1)[0]
    opened = sum(code.count(char) for char in "([{")
    closed = sum(code.count(char) for char in ")]}")
    return opened - closed


def _kind_of_header(header: str) -> Optional[SymbolKind]:
    for prefix, kind in _HEADER_PREFIXES:
        if header.startswith(prefix):
            return kind
    return None


def _classify(text: str) -> Optional[tuple[str, SymbolKind]]:
    header = header_line(text)
    kind = _kind_of_header(header)
    if kind is None:
        return None
    signature = header.split("(", 1)[0].split(":", 1)[0]
    return " ".join(signature.split()), kind


def _classify_node(node: cst.CSTNode) -> Optional[tuple[str, SymbolKind]]:
    """Signature of a parsed declaration, independent of its decorators."""
    if isinstance(node, cst.ClassDef):
        return f"class {node.name.value}", SymbolKind.CLASS
    if isinstance(node, cst.FunctionDef):
        prefix = "async def" if node.asynchronous is not None else "def"
        return f"{prefix} {node.name.value}", SymbolKind.FUNCTION
    return None


def signature_of(text: str) -> Optional[str]:
    """Return the declaration signature for ``text`` or ``None`` when it is not one."""
    classified = _classify(text)
    return classified[0] if classified else None


def normalise_signature(signature: str) -> str:
    """Canonical comparison key: whitespace collapsed, ``async`` dropped, case kept."""
    collapsed = " ".join(signature.split())
    if collapsed.startswith("async "):
        collapsed = collapsed[len("async ") :]
    return collapsed


def name_of(signature: str) -> str:
    parts = normalise_signature(signature).split(" ", 1)
    return parts[1] if len(parts) == 2 else ""


def lookup_signature(kind: SymbolKind | str, name: str) -> str:
    """Compose the ``"<keyword> <name>"`` key used to find a symbol by kind and name."""
    resolved = kind if isinstance(kind, SymbolKind) else SymbolKind.parse(kind)
    return f"{resolved.keyword} {name.strip()}"


@dataclass(slots=True)
class Declaration:
    """A top-level (or member) declaration and its character span."""

    signature: str
    kind: SymbolKind
    text: str
    start: int
    end: int
    node: Optional[cst.BaseStatement] = None

    @property
    def name(self) -> str:
        return name_of(self.signature)

    @property
    def key(self) -> str:
        return normalise_signature(self.signature)


@dataclass(slots=True)
class _Block:
    start: int
    end: int
    node: Optional[cst.BaseStatement] = None


class SourceOutline:
    """Top-level declarations of one source file plus splice helpers."""

    def __init__(self, source: str) -> None:
        self.source = source
        self._module: Optional[cst.Module] = None
        offset = len(_BOM) if source.startswith(_BOM) else 0
        body = source[offset:]
        blocks: Optional[List[_Block]] = None
        try:
            self._module = cst.parse_module(body)
        except cst.ParserSyntaxError as error:
            LOGGER.debug("Falling back to indentation outline: %s", error)
        if self._module is not None:
            blocks = _blocks_from_module(self._module, body)
        if blocks is None:
            blocks = list(_blocks_from_indentation(body))
        self.declarations: List[Declaration] = []
        for block in blocks:
            block.start += offset
            block.end += offset
            text = source[block.start : block.end]
            classified = _classify_node(block.node) if block.node is not None else _classify(text)
            if classified is None:
                continue
            signature, kind = classified
            self.declarations.append(
                Declaration(
                    signature=signature,
                    kind=kind,
                    text=text,
                    start=block.start,
                    end=block.end,
                    node=block.node,
                )
            )

    @property
    def parsed(self) -> bool:
        return self._module is not None

    def find(self, signature: str) -> Optional[Declaration]:
        """Return the first top-level declaration whose signature matches."""
        return _first_match(self.declarations, signature)

    def members(self, parent: Declaration) -> List[Declaration]:
        """Return the declarations nested directly inside ``parent``."""
        node = parent.node
        if self._module is None or node is None:
            return []
        body = getattr(node, "body", None)
        if not isinstance(body, cst.IndentedBlock):
            return []
        members: List[Declaration] = []
        for statement in body.body:
            classified = _classify_node(statement)
            if classified is None:
                continue
            text = self._module.code_for_node(statement.with_changes(leading_lines=()))
            signature, kind = classified
            members.append(
                Declaration(signature=signature, kind=kind, text=text, start=-1, end=-1, node=statement)
            )
        return members

    def find_member(self, parent_signature: str, signature: str) -> Optional[Declaration]:
        parent = self.find(parent_signature)
        if parent is None:
            return None
        return _first_match(self.members(parent), signature)

    def replace(self, declaration: Declaration, code: str) -> str:
        """Return the source with ``declaration`` swapped for ``code``."""
        replacement = _match_trailing_newline(code, declaration.text)
        return f"{self.source[: declaration.start]}{replacement}{self.source[declaration.end :]}"

    def append(self, code: str) -> str:
        """Return the source with ``code`` added as a new top-level block."""
        snippet = code.strip("\n")
        base = self.source.rstrip()
        if not base:
            return f"{snippet}\n"
        return f"{base}\n\n\n{snippet}\n"

    def append_member(self, parent: Declaration, code: str) -> str:
        """Return the source with ``code`` added as the last member of ``parent``.

        A one-line body such as ``class C: pass`` is expanded into an indented
        block first; that path raises ``cst.ParserSyntaxError`` when ``code``
        does not parse. A one-line parent in a file libcst cannot parse raises
        ``ResolutionMiss``.
        """
        if parent.node is not None and isinstance(getattr(parent.node, "body", None), cst.SimpleStatementSuite):
            return self._expand_and_append(parent, code)
        if parent.node is None and _is_one_line(parent.text):
            raise ResolutionMiss(f"Cannot add a member to one-line {parent.signature!r} in an unparsable file.")
        indent = _body_indent(parent.text)
        snippet = textwrap.indent(textwrap.dedent(code).strip("\n"), indent)
        head = self.source[: parent.end]
        tail = self.source[parent.end :]
        newline = "\n" if head.endswith("\n") else ""
        return f"{head.rstrip()}\n\n{snippet}{newline}{tail}"

    def _expand_and_append(self, parent: Declaration, code: str) -> str:
        suite = parent.node.body
        statements = list(cst.parse_module(textwrap.dedent(code).strip("\n") + "\n").body)
        if statements:
            statements[0] = statements[0].with_changes(leading_lines=(cst.EmptyLine(indent=False),))
        block = cst.IndentedBlock(
            header=suite.trailing_whitespace,
            body=[cst.SimpleStatementLine(body=suite.body), *statements],
        )
        updated = parent.node.with_changes(body=block, leading_lines=())
        rendered = _match_trailing_newline(self._module.code_for_node(updated), parent.text)
        return f"{self.source[: parent.start]}{rendered}{self.source[parent.end :]}"

    def replace_member(self, parent: Declaration, member: Declaration, code: str) -> str:
        """Return the source with ``member`` of ``parent`` swapped for ``code``.

        Raises ``cst.ParserSyntaxError`` when ``code`` does not parse.
        """
        if self._module is None or parent.node is None or member.node is None:
            raise ValueError("Member replacement requires a parsed module.")
        replacement_module = cst.parse_module(textwrap.dedent(code).strip("\n") + "\n")
        statements = list(replacement_module.body)
        if statements:
            statements[0] = statements[0].with_changes(leading_lines=member.node.leading_lines)
        body = parent.node.body
        new_statements: List[cst.BaseStatement] = []
        for statement in body.body:
            if statement is member.node:
                new_statements.extend(statements)
            else:
                new_statements.append(statement)
        updated = parent.node.with_changes(body=body.with_changes(body=new_statements))
        rendered = self._module.code_for_node(updated.with_changes(leading_lines=()))
        rendered = _match_trailing_newline(rendered, parent.text)
        return f"{self.source[: parent.start]}{rendered}{self.source[parent.end :]}"


def first_declaration(code: str) -> Optional[Declaration]:
    """Return the first declaration found in a code fragment."""
    outline = SourceOutline(textwrap.dedent(code))
    return outline.declarations[0] if outline.declarations else None


def _first_match(declarations: Sequence[Declaration], signature: str) -> Optional[Declaration]:
    key = normalise_signature(signature)
    for declaration in declarations:
        if declaration.key == key:
            return declaration
    return None


def _match_trailing_newline(code: str, original: str) -> str:
    if original.endswith("\n"):
        return code if code.endswith("\n") else f"{code}\n"
    return code.rstrip("\n")


def _is_one_line(text: str) -> bool:
    lines = [line for line in text.splitlines() if line.strip()]
    header = header_line(text)
    return bool(lines) and lines[-1].strip() == header


def _body_indent(text: str) -> str:
    seen_header = False
    for line in text.splitlines():
        stripped = line.strip()
        if not seen_header:
            if stripped and not stripped.startswith("@") and not stripped.startswith("#"):
                seen_header = True
            continue
        if stripped and line[0] in " \t":
            return line[: len(line) - len(line.lstrip())]
    return _DEFAULT_BODY_INDENT


def _blocks_from_module(module: cst.Module, source: str) -> Optional[List[_Block]]:
    """Tile ``source`` with one span per top-level statement.

    Leading comments and blank lines stay outside each span. Returns ``None``
    when the rendered pieces do not add up to the source.
    """
    cursor = sum(len(module.code_for_node(line)) for line in module.header)
    blocks: List[_Block] = []
    for statement in module.body:
        full = module.code_for_node(statement)
        leading = "".join(module.code_for_node(line) for line in statement.leading_lines)
        start = cursor + len(leading)
        end = min(cursor + len(full), len(source))
        blocks.append(_Block(start=start, end=end, node=statement))
        cursor += len(full)
    cursor += sum(len(module.code_for_node(line)) for line in module.footer)
    if cursor not in (len(source), len(source) + 1):
        LOGGER.debug("Statement spans drifted (%d vs %d characters)", cursor, len(source))
        return None
    return blocks


def _blocks_from_indentation(source: str) -> Iterator[_Block]:
    """Approximate top-level blocks for sources libcst cannot parse."""
    lines = source.splitlines(keepends=True)
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))

    starts: List[int] = []
    in_decorators = False
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or line[0] in " \t":
            continue
        if stripped.startswith("#") or stripped[0] in ")]}":
            continue
        if in_decorators and not stripped.startswith("@"):
            in_decorators = False
            continue
        starts.append(index)
        in_decorators = stripped.startswith("@")

    for position, first in enumerate(starts):
        limit = starts[position + 1] if position + 1 < len(starts) else len(lines)
        last = limit - 1
        while last > first:
            candidate = lines[last]
            if candidate.strip() and not (candidate[0] == "#"):
                break
            last -= 1
        yield _Block(start=offsets[first], end=offsets[last + 1])
