"""Workspace symbol index used to pick context for a task."""

from .declarations import Declaration, SourceOutline, SymbolKind, lookup_signature, signature_of
from .symbol_index import (
    DEFAULT_EXCLUDED_DIRS,
    DEFAULT_MAX_CONTEXT_LENGTH,
    FileSymbols,
    Symbol,
    SymbolIndex,
    SymbolIndexBuilder,
    extract_symbols,
)

__all__ = [
    "DEFAULT_EXCLUDED_DIRS",
    "DEFAULT_MAX_CONTEXT_LENGTH",
    "Declaration",
    "FileSymbols",
    "SourceOutline",
    "Symbol",
    "SymbolIndex",
    "SymbolIndexBuilder",
    "SymbolKind",
    "extract_symbols",
    "lookup_signature",
    "signature_of",
]
