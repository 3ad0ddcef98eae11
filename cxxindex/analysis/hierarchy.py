"""Inheritance graph construction, cycle removal and override resolution."""

from __future__ import annotations

import logging
import re
from collections import defaultdict, deque
from typing import Dict, List, Optional, Set, Tuple

import networkx as nx

from cxxindex.graph.schema import (
    CLASS_KINDS,
    ClassInfo,
    FunctionInfo,
    InheritanceEdge,
    Symbol,
    SymbolKind,
    TypedefInfo,
    qualify,
    scope_chain,
)
from cxxindex.graph.symbol_table import SymbolTable
from cxxindex.runtime.diagnostics import DiagnosticKind, Severity

logger = logging.getLogger("cxxindex.analysis.hierarchy")

_CLASS_KEY_WORDS = re.compile(r"\b(?:struct|class|union|const|volatile|typename)\b")
_TEMPLATE_ARGS = re.compile(r"<.*>")
_MAX_ALIAS_HOPS = 16

_IN_PROGRESS = 1
_DONE = 2


def resolve_class(table: SymbolTable, name: str, scope: str) -> Optional[Symbol]:
    """Find the class a name denotes when looked up from ``scope``.

    The lookup walks enclosing scopes innermost first; a leading ``::``
    restricts it to the global scope. Typedef names are followed to the
    class they alias.

    Args:
        table: Merged symbol table.
        name: Class name as written, possibly qualified.
        scope: Qualified name of the scope the lookup starts from.

    Returns:
        The class symbol (the defined one if several match), or None.
    """
    return _resolve_class(table, name, scope, 0)


def _resolve_class(table: SymbolTable, name: str, scope: str, hops: int) -> Optional[Symbol]:
    name = _TEMPLATE_ARGS.sub("", name).strip()
    if name.startswith("::"):
        prefixes = [""]
        name = name[2:]
    else:
        prefixes = scope_chain(scope)

    for prefix in prefixes:
        candidates = table.by_qualified_name(qualify(prefix, name))
        classes = [s for s in candidates if s.kind in CLASS_KINDS]
        if classes:
            return next((s for s in classes if s.is_defined), classes[0])
        alias = next((s for s in candidates if s.kind == SymbolKind.TYPEDEF), None)
        if alias is not None and hops < _MAX_ALIAS_HOPS:
            return _follow_alias(table, alias, hops + 1)
    return None


def _follow_alias(table: SymbolTable, alias: Symbol, hops: int) -> Optional[Symbol]:
    info = alias.payload
    if not isinstance(info, TypedefInfo):
        return None
    if info.target:
        found = _resolve_class(table, info.target, alias.scope, hops)
        if found is not None:
            return found
    words = _CLASS_KEY_WORDS.sub(" ", info.aliased_type).split()
    if len(words) != 1 or words[0] == alias.name:
        return None
    return _resolve_class(table, words[0], alias.scope, hops)


def method_key(method: Symbol) -> Tuple[str, Tuple[str, ...]]:
    """Name and parameter text used to match an override with a base method.

    Destructors match each other regardless of the class name.
    """
    name = method.name
    if name.startswith("~"):
        name = "~"
    params = method.payload.params if isinstance(method.payload, FunctionInfo) else ()
    return name, tuple(params)


class HierarchyResolver:
    """Resolves base classes and virtual overrides over a merged table.

    The resolver fills ``table.edges``, ``table.hierarchy`` and the override
    maps. Cyclic inheritance is reported once per cycle; every edge on a
    cycle is kept in ``edges`` as non-effective and left out of the graph.
    """

    def __init__(self, table: SymbolTable, implicit_overrides: bool = True) -> None:
        """Initialize the resolver.

        Args:
            table: Merged, not yet sealed symbol table.
            implicit_overrides: Whether methods matching a base virtual
                without ``override`` are recorded as overrides.
        """
        self.table = table
        self.implicit_overrides = implicit_overrides
        self._methods: Dict[str, List[Symbol]] = defaultdict(list)

    def resolve(self) -> nx.DiGraph:
        """Run base resolution, cycle removal and override matching.

        Returns:
            nx.DiGraph: Effective inheritance graph, edges derived -> base.
        """
        logger.info("Resolving class hierarchy")
        graph, edges = self._build_graph()
        dropped = self._break_cycles(graph)
        self.table.edges = [
            InheritanceEdge(e.derived, e.base, e.access, e.is_virtual, False)
            if (e.derived, e.base) in dropped
            else e
            for e in edges
        ]
        self.table.hierarchy = graph
        logger.info(
            "Hierarchy has %d classes and %d effective edges (%d dropped)",
            graph.number_of_nodes(),
            graph.number_of_edges(),
            len(dropped),
        )

        self._resolve_overrides(graph)
        return graph

    # -- bases --------------------------------------------------------------

    def _build_graph(self) -> Tuple[nx.DiGraph, List[InheritanceEdge]]:
        graph = nx.DiGraph()
        edges: List[InheritanceEdge] = []
        classes = self.table.of_kind(*CLASS_KINDS)
        for cls in classes:
            graph.add_node(cls.id, qualified_name=cls.qualified_name)

        for cls in classes:
            info = cls.payload
            if not isinstance(info, ClassInfo):
                continue
            unresolved: List[str] = []
            for base in info.bases:
                target = resolve_class(self.table, base.name, cls.scope)
                if target is None:
                    unresolved.append(base.name)
                    continue
                if graph.has_edge(cls.id, target.id):
                    continue
                edge = InheritanceEdge(cls.id, target.id, base.access, base.is_virtual)
                edges.append(edge)
                graph.add_edge(cls.id, target.id, access=base.access, is_virtual=base.is_virtual)
            if unresolved:
                self.table.unresolved_bases[cls.id] = unresolved
                logger.debug("Unresolved bases of %s: %s", cls.qualified_name, unresolved)
        return graph, edges

    def _find_cycles(self, graph: nx.DiGraph) -> List[List[int]]:
        """Depth-first search with an in-progress marker; one cycle per back edge."""
        state: Dict[int, int] = {}
        cycles: List[List[int]] = []
        for root in sorted(graph.nodes):
            if root in state:
                continue
            state[root] = _IN_PROGRESS
            path = [root]
            stack = [iter(list(graph.successors(root)))]
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    stack.pop()
                    state[path.pop()] = _DONE
                    continue
                seen = state.get(child)
                if seen == _IN_PROGRESS:
                    cycles.append(path[path.index(child):])
                elif seen is None:
                    state[child] = _IN_PROGRESS
                    path.append(child)
                    stack.append(iter(list(graph.successors(child))))
        return cycles

    def _break_cycles(self, graph: nx.DiGraph) -> Set[Tuple[int, int]]:
        """Report cycles and remove every edge that lies on one.

        Returns:
            Set of removed ``(derived, base)`` pairs.
        """
        dropped: Set[Tuple[int, int]] = set()
        for cycle in self._find_cycles(graph):
            names = [self.table.get(i).qualified_name for i in cycle]
            first = self.table.get(cycle[0])
            where = (first.definitions or first.locations or [None])[0]
            self.table.diagnostics.report(
                DiagnosticKind.CYCLIC_INHERITANCE,
                "Cyclic inheritance: " + " -> ".join([*names, names[0]]),
                where,
            )
            for position, node in enumerate(cycle):
                dropped.add((node, cycle[(position + 1) % len(cycle)]))

        # Cycles sharing an edge with a reported one are not found again by
        # the search, so remove whatever strongly connected part remains.
        for component in nx.strongly_connected_components(graph):
            if len(component) > 1:
                for u, v in graph.subgraph(component).edges():
                    dropped.add((u, v))
        for node in graph.nodes:
            if graph.has_edge(node, node):
                dropped.add((node, node))

        graph.remove_edges_from(list(dropped))
        return dropped

    # -- overrides ----------------------------------------------------------

    def _resolve_overrides(self, graph: nx.DiGraph) -> None:
        for method in self.table.of_kind(SymbolKind.FUNCTION):
            info = method.payload
            if isinstance(info, FunctionInfo) and info.owning_class:
                self._methods[info.owning_class].append(method)

        processed: Set[str] = set()
        implicit = 0
        # Bases before derived classes so inherited virtuality is known.
        for class_id in reversed(list(nx.topological_sort(graph))):
            qualified_name = graph.nodes[class_id]["qualified_name"]
            if qualified_name in processed:
                continue
            processed.add(qualified_name)
            for method in self._methods.get(qualified_name, ()):
                info = method.payload
                base_method = self._find_overridden(graph, class_id, method)
                if base_method is None:
                    if info.is_override:
                        self._unresolved_override(method)
                    continue
                if not info.is_override:
                    if not self.implicit_overrides:
                        continue
                    self.table.implicit_overrides.add(method.id)
                    implicit += 1
                info.is_virtual = True
                self.table.overridden[method.id] = base_method.id
                self.table.overriders[base_method.id].append(method.id)

        logger.info(
            "Resolved %d overrides (%d implicit, %d unresolved)",
            len(self.table.overridden),
            implicit,
            len(self.table.unresolved_overrides),
        )

    def _find_overridden(self, graph: nx.DiGraph, class_id: int, method: Symbol) -> Optional[Symbol]:
        """Breadth-first search of the bases for a virtual with the same key."""
        key = method_key(method)
        queue = deque(graph.successors(class_id))
        seen: Set[int] = set()
        while queue:
            base_id = queue.popleft()
            if base_id in seen:
                continue
            seen.add(base_id)
            base_name = graph.nodes[base_id]["qualified_name"]
            for candidate in self._methods.get(base_name, ()):
                if method_key(candidate) == key and self._is_virtual(candidate):
                    return candidate
            queue.extend(graph.successors(base_id))
        return None

    def _is_virtual(self, method: Symbol) -> bool:
        info = method.payload
        return isinstance(info, FunctionInfo) and (
            info.is_virtual or info.is_pure or method.id in self.table.overridden
        )

    def _unresolved_override(self, method: Symbol) -> None:
        self.table.unresolved_overrides.append(method.id)
        where = (method.definitions or method.locations or [None])[0]
        self.table.diagnostics.report(
            DiagnosticKind.UNRESOLVED_OVERRIDE,
            f"{method.signature} is marked override but overrides no base virtual",
            where,
            severity=Severity.WARNING,
        )


def resolve_hierarchy(table: SymbolTable, implicit_overrides: bool = True) -> nx.DiGraph:
    """Convenience wrapper around ``HierarchyResolver``."""
    return HierarchyResolver(table, implicit_overrides).resolve()
