"""Symbol table: per-unit collection and cross-unit merge.

The same class serves as the unit-local table filled by the parser and as
the shared table that unit results are merged into. Symbols live in an arena
(``symbols``) and are addressed by index; every other record refers to them
by id or by qualified name, never by object reference across tables.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import defaultdict
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Set, Tuple

from cxxindex.graph.schema import (
    ClassInfo,
    EnumInfo,
    FieldInfo,
    FunctionInfo,
    InheritanceEdge,
    MacroExpansion,
    MacroInfo,
    Reference,
    ResolvedReference,
    Scope,
    ScopeKind,
    Symbol,
    SymbolKind,
    TypedefInfo,
    VariableInfo,
)
from cxxindex.runtime.diagnostics import DiagnosticKind, DiagnosticSink

if TYPE_CHECKING:
    import networkx as nx

    from cxxindex.parsers.base import UnitResult

logger = logging.getLogger("cxxindex.graph.symbol_table")

# Declaration specifiers that never take part in type comparison.
_STORAGE_WORDS = frozenset(
    {"extern", "static", "inline", "virtual", "explicit", "constexpr", "consteval",
     "thread_local", "register", "friend", "mutable"}
)

# ``struct X;`` followed by ``class X {...}`` names the same entity.
_INTERCHANGEABLE = {SymbolKind.STRUCT: SymbolKind.CLASS, SymbolKind.CLASS: SymbolKind.STRUCT}


class SealedTableError(RuntimeError):
    """Raised when a sealed table is modified."""


def _normalize_type(text: str) -> str:
    return " ".join(w for w in text.split() if w not in _STORAGE_WORDS)


def _overload_key(symbol: Symbol) -> Tuple[str, ...]:
    """Discriminator for entities that may share a qualified name."""
    if isinstance(symbol.payload, FunctionInfo):
        return symbol.payload.params
    if isinstance(symbol.payload, MacroInfo):
        return (",".join(symbol.payload.params), symbol.payload.body_text)
    return ()


def _conflict(existing: Symbol, new: Symbol) -> Optional[str]:
    """Describe why two same-key declarations cannot be one entity."""
    if existing.kind != new.kind and _INTERCHANGEABLE.get(existing.kind) != new.kind:
        return f"declared as {existing.kind.value} and as {new.kind.value}"
    old, cur = existing.payload, new.payload
    if isinstance(old, FunctionInfo) and isinstance(cur, FunctionInfo):
        if old.return_type and cur.return_type and (
            _normalize_type(old.return_type) != _normalize_type(cur.return_type)
        ):
            return f"return type '{old.return_type}' vs '{cur.return_type}'"
    elif isinstance(old, (VariableInfo, FieldInfo)) and isinstance(cur, (VariableInfo, FieldInfo)):
        if _normalize_type(old.type_text) != _normalize_type(cur.type_text):
            return f"type '{old.type_text}' vs '{cur.type_text}'"
    elif isinstance(old, TypedefInfo) and isinstance(cur, TypedefInfo):
        if old.aliased_type != cur.aliased_type:
            return f"aliased type '{old.aliased_type}' vs '{cur.aliased_type}'"
    elif isinstance(old, ClassInfo) and isinstance(cur, ClassInfo):
        if existing.is_defined and new.is_defined and old.bases != cur.bases:
            return "defined with different base classes"
    elif isinstance(old, EnumInfo) and isinstance(cur, EnumInfo):
        if existing.is_defined and new.is_defined and old.enumerators != cur.enumerators:
            return "defined with different enumerators"
    return None


def _absorb(existing: Symbol, new: Symbol) -> None:
    """Fold a compatible redeclaration into ``existing``."""
    for location in new.locations:
        existing.add_location(location, location in new.definitions)
    old, cur = existing.payload, new.payload
    if isinstance(old, FunctionInfo) and isinstance(cur, FunctionInfo):
        old.is_virtual |= cur.is_virtual
        old.is_override |= cur.is_override
        old.is_pure |= cur.is_pure
        old.is_static |= cur.is_static
        old.is_final |= cur.is_final
        old.is_const |= cur.is_const
        old.optional_params = max(old.optional_params, cur.optional_params)
        old.return_type = old.return_type or cur.return_type
        old.owning_class = old.owning_class or cur.owning_class
        old.access = old.access or cur.access
    elif isinstance(old, VariableInfo) and isinstance(cur, VariableInfo):
        for site in cur.write_sites:
            if site not in old.write_sites:
                old.write_sites.append(site)
        old.owning_class = old.owning_class or cur.owning_class
    elif isinstance(old, ClassInfo) and isinstance(cur, ClassInfo):
        if not old.bases:
            old.bases = list(cur.bases)
        for member in cur.members:
            if member not in old.members:
                old.members.append(member)
        if new.kind == SymbolKind.CLASS and new.is_defined:
            existing.kind = SymbolKind.CLASS
    elif isinstance(old, EnumInfo) and isinstance(cur, EnumInfo):
        if not old.enumerators:
            old.enumerators = list(cur.enumerators)
        old.is_scoped |= cur.is_scoped
        old.underlying_type = old.underlying_type or cur.underlying_type
    elif isinstance(old, TypedefInfo) and isinstance(cur, TypedefInfo):
        old.target = old.target or cur.target


class SymbolTable:
    """Arena of symbols plus the scope, edge and reference records around them.

    Attributes:
        symbols: Symbol arena; ``symbols[i].id == i``.
        scopes: Scope records keyed by qualified name.
        expansions: Macro expansion sites keyed by file.
        includes: ``#include`` targets keyed by unit.
        references: Raw body references awaiting resolution.
        resolved_references: Resolved references (after resolution).
        edges: Inheritance edges (after resolution), including dropped ones.
        hierarchy: Effective inheritance graph (after resolution).
        overridden: Method id -> id of the base method it overrides.
        overriders: Base method id -> ids of methods overriding it directly.
        implicit_overrides: Ids of overriding methods not marked ``override``.
        unresolved_overrides: Ids of ``override`` methods without a match.
        unresolved_bases: Class id -> base names that did not resolve.
        diagnostics: Ordered diagnostics of every merged unit and pass.
    """

    def __init__(self) -> None:
        self.symbols: List[Symbol] = []
        self.scopes: Dict[str, Scope] = {"": Scope(ScopeKind.GLOBAL, "", "")}
        self.expansions: Dict[str, List[MacroExpansion]] = defaultdict(list)
        self.includes: Dict[str, List[str]] = {}
        self.references: List[Reference] = []
        self.resolved_references: List[ResolvedReference] = []
        self.edges: List[InheritanceEdge] = []
        self.hierarchy: Optional["nx.DiGraph"] = None
        self.overridden: Dict[int, int] = {}
        self.overriders: Dict[int, List[int]] = defaultdict(list)
        self.implicit_overrides: Set[int] = set()
        self.unresolved_overrides: List[int] = []
        self.unresolved_bases: Dict[int, List[str]] = {}
        self.diagnostics = DiagnosticSink()

        self._by_key: Dict[Tuple[str, str], List[int]] = defaultdict(list)
        self._by_name: Dict[str, List[int]] = defaultdict(list)
        self._by_short_name: Dict[str, List[int]] = defaultdict(list)
        self._merged_units: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._sealed = False

    # Unit tables travel back from worker processes; locks do not pickle.
    def __getstate__(self) -> Dict[str, object]:
        state = self.__dict__.copy()
        del state["_lock"]
        return state

    def __setstate__(self, state: Dict[str, object]) -> None:
        self.__dict__.update(state)
        self._lock = threading.RLock()

    # -- building -----------------------------------------------------------

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        """Make the table read-only."""
        self._sealed = True
        logger.debug("Symbol table sealed with %d symbols", len(self.symbols))

    def _check_writable(self) -> None:
        if self._sealed:
            raise SealedTableError("Symbol table is sealed")

    def add_symbol(self, symbol: Symbol, *, report_conflicts: bool = True) -> Symbol:
        """Add a declaration, folding it into an existing compatible symbol.

        A declaration with the same name family, qualified name and (for
        functions) parameter text as an existing symbol only contributes its
        locations and flags. An incompatible one is kept as a separate symbol
        and reported as an ODR conflict.

        Args:
            symbol: New declaration; its ``id`` is assigned here when it is
                added as a new symbol.
            report_conflicts: Whether to report an ODR conflict.

        Returns:
            The symbol now representing the declaration.
        """
        with self._lock:
            self._check_writable()
            key = (symbol.family, symbol.qualified_name)
            overload = _overload_key(symbol)
            same_key = [
                self.symbols[i]
                for i in self._by_key.get(key, ())
                if _overload_key(self.symbols[i]) == overload
            ]
            reasons: List[str] = []
            for existing in same_key:
                reason = _conflict(existing, symbol)
                if reason is None:
                    _absorb(existing, symbol)
                    return existing
                reasons.append(reason)

            if reasons and report_conflicts:
                where = symbol.locations[0] if symbol.locations else None
                self.diagnostics.report(
                    DiagnosticKind.ODR_CONFLICT,
                    f"Conflicting declarations of {symbol.signature}: {reasons[0]}",
                    where,
                )
            return self._append(symbol)

    def _append(self, symbol: Symbol) -> Symbol:
        symbol.id = len(self.symbols)
        self.symbols.append(symbol)
        self._by_key[(symbol.family, symbol.qualified_name)].append(symbol.id)
        self._by_name[symbol.qualified_name].append(symbol.id)
        self._by_short_name[symbol.name].append(symbol.id)
        return symbol

    def add_scope(self, scope: Scope) -> Scope:
        """Merge a scope record by qualified name."""
        with self._lock:
            self._check_writable()
            existing = self.scopes.get(scope.qualified_name)
            if existing is None:
                existing = replace(scope, children=[])
                self.scopes[scope.qualified_name] = existing
            for child in scope.children:
                existing.add_child(child)
            if scope.parent is not None and scope.parent in self.scopes:
                self.scopes[scope.parent].add_child(scope.qualified_name)
            return existing

    def merge(self, unit: "UnitResult") -> bool:
        """Merge one unit's result into this table.

        Merges are serialized; merging a unit that was already merged with
        identical content is a no-op.

        Args:
            unit: Result of one unit's pipeline.

        Returns:
            False if the unit was skipped as already merged.

        Raises:
            SealedTableError: If the table has been sealed.
        """
        with self._lock:
            self._check_writable()
            if unit.digest and self._merged_units.get(unit.unit_id) == unit.digest:
                logger.debug("Unit %s already merged; skipping", unit.unit_id)
                return False
            self._merged_units[unit.unit_id] = unit.digest

            local = unit.table
            for qualified_name in _parents_first(local.scopes):
                self.add_scope(local.scopes[qualified_name])

            self.diagnostics.extend(unit.diagnostics)
            self.diagnostics.extend(local.diagnostics.to_list())

            added_now: Set[int] = set()
            for symbol in local.symbols:
                key = (symbol.family, symbol.qualified_name)
                overload = _overload_key(symbol)
                # Conflicts inside one unit were already reported locally.
                seen_here = any(
                    i in added_now and _overload_key(self.symbols[i]) == overload
                    for i in self._by_key.get(key, ())
                )
                merged = self.add_symbol(_copy_symbol(symbol), report_conflicts=not seen_here)
                added_now.add(merged.id)

            for expansion in unit.expansions:
                sites = self.expansions[expansion.location.file]
                if expansion not in sites:
                    sites.append(expansion)
            self.includes[unit.unit_id] = list(unit.includes)
            self.references.extend(unit.references)

            logger.debug(
                "Merged unit %s: %d symbols, %d references, %d expansions",
                unit.unit_id,
                len(local.symbols),
                len(unit.references),
                len(unit.expansions),
            )
            return True

    # -- access -------------------------------------------------------------

    def get(self, symbol_id: int) -> Symbol:
        return self.symbols[symbol_id]

    def by_qualified_name(self, qualified_name: str) -> List[Symbol]:
        return [self.symbols[i] for i in self._by_name.get(qualified_name, ())]

    def by_short_name(self, name: str) -> List[Symbol]:
        return [self.symbols[i] for i in self._by_short_name.get(name, ())]

    def of_kind(self, *kinds: SymbolKind) -> List[Symbol]:
        return [s for s in self.symbols if s.kind in kinds]

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self.symbols)

    def __len__(self) -> int:
        return len(self.symbols)

    def __contains__(self, qualified_name: object) -> bool:
        return qualified_name in self._by_name


def _copy_symbol(symbol: Symbol) -> Symbol:
    return replace(
        symbol,
        locations=list(symbol.locations),
        definitions=list(symbol.definitions),
        payload=copy.deepcopy(symbol.payload),
        id=-1,
    )


def _parents_first(scopes: Dict[str, Scope]) -> List[str]:
    return sorted(scopes, key=lambda name: (name.count("::") + bool(name), name))
