"""Symbol model, symbol table and read-only query API."""

from cxxindex.graph.schema import (
    Access,
    InheritanceEdge,
    MacroExpansion,
    RefKind,
    Scope,
    ScopeKind,
    SourceLocation,
    Symbol,
    SymbolKind,
)

__all__ = [
    "Access",
    "InheritanceEdge",
    "MacroExpansion",
    "RefKind",
    "Scope",
    "ScopeKind",
    "SourceLocation",
    "Symbol",
    "SymbolKind",
]
