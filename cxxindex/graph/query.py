"""Read-only query API over a sealed symbol table.

All lookups are exact and case-sensitive on qualified names. Results are
returned in a stable order (symbol id, or discovery order for locations).
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Set, Union

import networkx as nx

from cxxindex.graph.schema import (
    ClassInfo,
    InheritanceEdge,
    MacroExpansion,
    RefKind,
    ResolvedReference,
    SourceLocation,
    Symbol,
    SymbolKind,
    VariableInfo,
)
from cxxindex.graph.symbol_table import SymbolTable
from cxxindex.runtime.diagnostics import Diagnostic, DiagnosticKind

logger = logging.getLogger("cxxindex.graph.query")

SymbolRef = Union[Symbol, int]


class TableNotSealedError(RuntimeError):
    """Raised when a query is attempted before resolution has finished."""


class SymbolQuery:
    """Query facade over a resolved, sealed ``SymbolTable``.

    Args:
        table: The sealed table.

    Raises:
        TableNotSealedError: If ``table`` has not been sealed.
    """

    def __init__(self, table: SymbolTable) -> None:
        if not table.sealed:
            raise TableNotSealedError("Symbol table must be resolved and sealed before querying")
        self.table = table
        self.graph: nx.DiGraph = table.hierarchy if table.hierarchy is not None else nx.DiGraph()

    def _symbol(self, symbol: SymbolRef) -> Symbol:
        return self.table.get(symbol) if isinstance(symbol, int) else symbol

    def _symbols(self, ids: Any) -> List[Symbol]:
        return [self.table.get(i) for i in sorted(set(ids))]

    # -- core lookups -------------------------------------------------------

    def lookup(self, qualified_name: str, kind: Optional[SymbolKind] = None) -> List[Symbol]:
        """Return every symbol with this qualified name.

        Overloads come back as separate symbols. A leading ``::`` is
        ignored.

        Args:
            qualified_name: Exact qualified name, e.g. ``Utils::Helper::help``.
            kind: Optional kind filter.

        Returns:
            List[Symbol]: Matching symbols ordered by id; empty if none.
        """
        if qualified_name.startswith("::"):
            qualified_name = qualified_name[2:]
        symbols = self.table.by_qualified_name(qualified_name)
        if kind is not None:
            symbols = [s for s in symbols if s.kind == kind]
        return symbols

    def locations_of(self, symbol: SymbolRef) -> List[SourceLocation]:
        """Declaration and definition sites in discovery order."""
        return list(self._symbol(symbol).locations)

    def overrides_of(self, method: SymbolRef, transitive: bool = False) -> List[Symbol]:
        """Methods in derived classes that resolve to ``method``.

        Args:
            method: A virtual method symbol (or id).
            transitive: Also include methods overriding those overriders.

        Returns:
            List[Symbol]: Overriding methods ordered by id.
        """
        root = self._symbol(method).id
        found: Set[int] = set(self.table.overriders.get(root, ()))
        if transitive:
            pending = list(found)
            while pending:
                for child in self.table.overriders.get(pending.pop(), ()):
                    if child not in found:
                        found.add(child)
                        pending.append(child)
        return self._symbols(found)

    def overridden_by(self, method: SymbolRef) -> Optional[Symbol]:
        """The base method ``method`` overrides, if any."""
        base = self.table.overridden.get(self._symbol(method).id)
        return self.table.get(base) if base is not None else None

    def macro_expansions_in(self, file: str) -> List[MacroExpansion]:
        """Top-level macro expansion sites of a file in source order."""
        return sorted(self.table.expansions.get(file, ()), key=lambda e: e.location)

    def write_sites_of(self, variable: SymbolRef) -> List[SourceLocation]:
        """Write sites of a global variable: initializer first, then body writes.

        Returns:
            List[SourceLocation]: Empty for symbols that are not variables.
        """
        payload = self._symbol(variable).payload
        if not isinstance(payload, VariableInfo):
            return []
        return list(payload.write_sites)

    # -- browsing -----------------------------------------------------------

    def find_by_name(self, name: str, kind: Optional[SymbolKind] = None) -> List[Symbol]:
        """Symbols whose unqualified name is ``name``."""
        symbols = self.table.by_short_name(name)
        if kind is not None:
            symbols = [s for s in symbols if s.kind == kind]
        return symbols

    def symbols_in_file(self, file: str) -> List[Symbol]:
        """Symbols declared or defined in ``file``."""
        return [s for s in self.table if any(loc.file == file for loc in s.locations)]

    def members_of(self, cls: SymbolRef) -> List[Symbol]:
        """Members declared in a class body, in declaration order."""
        info = self._symbol(cls).payload
        if not isinstance(info, ClassInfo):
            return []
        members: List[Symbol] = []
        for qualified_name in info.members:
            for symbol in self.table.by_qualified_name(qualified_name):
                if symbol not in members:
                    members.append(symbol)
        return members

    def base_classes_of(self, cls: SymbolRef) -> List[Symbol]:
        """Direct bases in the effective hierarchy."""
        node = self._symbol(cls).id
        if node not in self.graph:
            return []
        return [self.table.get(i) for i in self.graph.successors(node)]

    def derived_classes_of(self, cls: SymbolRef, transitive: bool = False) -> List[Symbol]:
        """Classes deriving from ``cls`` in the effective hierarchy."""
        node = self._symbol(cls).id
        if node not in self.graph:
            return []
        if transitive:
            return self._symbols(nx.ancestors(self.graph, node))
        return self._symbols(self.graph.predecessors(node))

    def unresolved_bases_of(self, cls: SymbolRef) -> List[str]:
        """Base names of ``cls`` that did not resolve to an indexed class."""
        return list(self.table.unresolved_bases.get(self._symbol(cls).id, ()))

    def inheritance_edges(self, include_dropped: bool = False) -> List[InheritanceEdge]:
        """Inheritance edges; edges dropped for cycles only on request."""
        return [e for e in self.table.edges if include_dropped or e.effective]

    # -- references ---------------------------------------------------------

    def references_to(self, symbol: SymbolRef, kind: Optional[RefKind] = None) -> List[ResolvedReference]:
        target = self._symbol(symbol).id
        return [
            r
            for r in self.table.resolved_references
            if r.target == target and (kind is None or r.kind == kind)
        ]

    def callers_of(self, function: SymbolRef) -> List[Symbol]:
        """Functions whose bodies call ``function``."""
        return self._symbols(r.source for r in self.references_to(function, RefKind.CALL))

    def callees_of(self, function: SymbolRef) -> List[Symbol]:
        """Symbols called from the body of ``function``."""
        source = self._symbol(function).id
        return self._symbols(
            r.target
            for r in self.table.resolved_references
            if r.source == source and r.kind == RefKind.CALL
        )

    def includes_of(self, unit_id: str) -> List[str]:
        """``#include`` targets of a unit as written."""
        return list(self.table.includes.get(unit_id, ()))

    # -- diagnostics --------------------------------------------------------

    def unresolved_overrides(self) -> List[Symbol]:
        return [self.table.get(i) for i in self.table.unresolved_overrides]

    def diagnostics(self, kind: Optional[DiagnosticKind] = None) -> List[Diagnostic]:
        if kind is not None:
            return self.table.diagnostics.of_kind(kind)
        return self.table.diagnostics.to_list()

    def stats(self) -> Dict[str, Any]:
        """Summary counts for reporting."""
        kinds = Counter(s.kind.value for s in self.table)
        return {
            "symbols": len(self.table),
            "kinds": dict(sorted(kinds.items())),
            "files": len({loc.file for s in self.table for loc in s.locations}),
            "inheritance_edges": sum(1 for e in self.table.edges if e.effective),
            "overrides": len(self.table.overridden),
            "references": len(self.table.resolved_references),
            "macro_expansions": sum(len(v) for v in self.table.expansions.values()),
            "diagnostics": len(self.table.diagnostics),
        }
