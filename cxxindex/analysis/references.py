"""Resolution of raw body references against the merged symbol table."""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, Iterator, List, Optional, Set, Tuple

import networkx as nx

from cxxindex.analysis.hierarchy import resolve_class
from cxxindex.graph.schema import (
    CLASS_KINDS,
    FunctionInfo,
    RefKind,
    Reference,
    ResolvedReference,
    Symbol,
    SymbolKind,
    VariableInfo,
    qualify,
    scope_chain,
)
from cxxindex.graph.symbol_table import SymbolTable

logger = logging.getLogger("cxxindex.analysis.references")

# Preferred target kinds for plain uses, most specific first.
_USE_PREFERENCE = (
    SymbolKind.VARIABLE,
    SymbolKind.FIELD,
    SymbolKind.ENUMERATOR,
    SymbolKind.FUNCTION,
    SymbolKind.TYPEDEF,
    SymbolKind.CLASS,
    SymbolKind.STRUCT,
    SymbolKind.UNION,
    SymbolKind.ENUM,
    SymbolKind.NAMESPACE,
)
_WRITE_KINDS = (SymbolKind.VARIABLE, SymbolKind.FIELD)
_MEMBER_KINDS = (SymbolKind.FIELD, SymbolKind.VARIABLE, SymbolKind.FUNCTION)


class ReferenceResolver:
    """Binds each raw reference to the symbol it names.

    Unqualified names are looked up from the reference's scope outwards;
    inside a class scope the effective base classes are searched before the
    enclosing namespaces. Member accesses are looked up in the receiver's
    class and its bases. References that cannot be bound are dropped.
    """

    def __init__(self, table: SymbolTable) -> None:
        self.table = table
        self.graph: nx.DiGraph = table.hierarchy if table.hierarchy is not None else nx.DiGraph()
        self._sources: Dict[Tuple[str, Tuple[str, ...]], Optional[Symbol]] = {}

    def resolve(self) -> List[ResolvedReference]:
        """Resolve every reference in ``table.references``.

        Returns:
            List[ResolvedReference]: Resolved references, deduplicated, in
            reference order. Also stored on ``table.resolved_references``.
        """
        logger.info("Resolving %d references", len(self.table.references))
        resolved: List[ResolvedReference] = []
        seen: Set[ResolvedReference] = set()
        dropped = 0
        for ref in self.table.references:
            source = self._source(ref.context)
            target = self._target(ref)
            if source is None or target is None:
                dropped += 1
                logger.debug("Dropping unresolved reference to %s at %s", ref.name, ref.location)
                continue
            record = ResolvedReference(source.id, target.id, ref.kind, ref.location)
            if record in seen:
                continue
            seen.add(record)
            resolved.append(record)
            if ref.kind == RefKind.WRITE and isinstance(target.payload, VariableInfo):
                if ref.location not in target.payload.write_sites:
                    target.payload.write_sites.append(ref.location)

        self.table.resolved_references = resolved
        logger.info("Resolved %d references (%d dropped)", len(resolved), dropped)
        return resolved

    def _source(self, context: Tuple[str, Tuple[str, ...]]) -> Optional[Symbol]:
        if context not in self._sources:
            qualified_name, params = context
            self._sources[context] = next(
                (
                    s
                    for s in self.table.by_qualified_name(qualified_name)
                    if isinstance(s.payload, FunctionInfo) and s.payload.params == params
                ),
                None,
            )
        return self._sources[context]

    def _target(self, ref: Reference) -> Optional[Symbol]:
        if ref.is_member:
            if not ref.receiver_type:
                return None
            cls = resolve_class(self.table, ref.receiver_type, ref.scope)
            if cls is None:
                return None
            for owner in self._class_and_bases(cls.qualified_name):
                found = self._pick(ref, self.table.by_qualified_name(qualify(owner, ref.name)), _MEMBER_KINDS)
                if found is not None:
                    return found
            return None

        name = ref.name
        if name.startswith("::"):
            return self._pick(ref, self.table.by_qualified_name(name[2:]))

        for prefix in scope_chain(ref.scope):
            owners = self._class_and_bases(prefix) if self._is_class(prefix) else iter([prefix])
            for owner in owners:
                found = self._pick(ref, self.table.by_qualified_name(qualify(owner, name)))
                if found is not None:
                    return found
        return None

    def _pick(
        self,
        ref: Reference,
        candidates: List[Symbol],
        allowed: Tuple[SymbolKind, ...] = _USE_PREFERENCE,
    ) -> Optional[Symbol]:
        candidates = [s for s in candidates if s.kind in allowed]
        if not candidates:
            return None
        if ref.kind == RefKind.CALL:
            functions = [
                s
                for s in candidates
                if isinstance(s.payload, FunctionInfo)
                and (ref.arg_count is None or s.payload.accepts(ref.arg_count))
            ]
            if functions:
                return functions[0]
            # Constructor calls and function-style casts name the class.
            return next((s for s in candidates if s.kind in CLASS_KINDS or s.kind == SymbolKind.TYPEDEF), None)
        if ref.kind == RefKind.WRITE:
            return next((s for s in candidates if s.kind in _WRITE_KINDS), None)
        for kind in _USE_PREFERENCE:
            for symbol in candidates:
                if symbol.kind == kind:
                    return symbol
        return None

    def _is_class(self, qualified_name: str) -> bool:
        return bool(qualified_name) and any(
            s.kind in CLASS_KINDS for s in self.table.by_qualified_name(qualified_name)
        )

    def _class_and_bases(self, qualified_name: str) -> Iterator[str]:
        """Yield a class and its effective bases, nearest first."""
        yield qualified_name
        starts = [s.id for s in self.table.by_qualified_name(qualified_name) if s.id in self.graph]
        queue = deque(starts)
        seen: Set[int] = set(starts)
        while queue:
            node = queue.popleft()
            for base in self.graph.successors(node):
                if base in seen:
                    continue
                seen.add(base)
                queue.append(base)
                yield self.graph.nodes[base]["qualified_name"]


def resolve_references(table: SymbolTable) -> List[ResolvedReference]:
    """Convenience wrapper around ``ReferenceResolver``."""
    return ReferenceResolver(table).resolve()
