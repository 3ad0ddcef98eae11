"""Scope stack used by the declaration parser to qualify names."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from cxxindex.graph.schema import Scope, ScopeKind, qualify, scope_chain

logger = logging.getLogger("cxxindex.parsers.cpp.scopes")


class ScopeManager:
    """Stack of active scope frames over a registry of scope records.

    Scope records are keyed by qualified name. Entering a scope that was
    seen before (a reopened namespace, or a class named by an out-of-class
    member definition) reuses the existing record. Anonymous scopes push a
    frame but add no qualification.

    Args:
        scopes: Registry to record scopes into; a fresh one is created when
            omitted. The global scope is always present under ``""``.
    """

    def __init__(self, scopes: Optional[Dict[str, Scope]] = None) -> None:
        self.scopes: Dict[str, Scope] = scopes if scopes is not None else {}
        if "" not in self.scopes:
            self.scopes[""] = Scope(ScopeKind.GLOBAL, "", "")
        self._stack: List[Scope] = [self.scopes[""]]

    @property
    def current(self) -> Scope:
        return self._stack[-1]

    @property
    def depth(self) -> int:
        return len(self._stack) - 1

    def current_qualified_name(self) -> str:
        return self.current.qualified_name

    def enter(self, kind: ScopeKind, name: str) -> Scope:
        """Push a child scope of the current scope.

        Args:
            kind: Kind of the new scope.
            name: Unqualified name, or "" for an anonymous scope.

        Returns:
            The (possibly pre-existing) scope record.
        """
        parent = self.current
        if not name:
            # Anonymous scopes qualify nothing; the frame still balances exit().
            frame = Scope(kind, "", parent.qualified_name, parent.parent)
            self._stack.append(frame)
            return frame
        return self._push(kind, name, qualify(parent.qualified_name, name), parent)

    def enter_qualified(self, kind: ScopeKind, qualified_name: str) -> Scope:
        """Push a scope by its full qualified name.

        Used for out-of-class definitions (``void Foo::bar() {}``) and nested
        namespace definitions; missing intermediate records are created as
        namespaces.
        """
        parts = [p for p in qualified_name.split("::") if p]
        prefix = ""
        parent = self.scopes[""]
        for part in parts[:-1]:
            prefix = qualify(prefix, part)
            if prefix not in self.scopes:
                self._register(ScopeKind.NAMESPACE, part, prefix, parent)
            parent = self.scopes[prefix]
        return self._push(kind, parts[-1] if parts else "", qualified_name, parent)

    def exit(self) -> Scope:
        """Pop the innermost scope; the global scope is never popped."""
        if len(self._stack) == 1:
            raise IndexError("Cannot exit the global scope")
        return self._stack.pop()

    def resolve_scope(self, name: str) -> Optional[str]:
        """Find the scope a possibly qualified name refers to.

        The name is tried relative to each enclosing scope, innermost
        first, the way unqualified lookup proceeds.

        Returns:
            The qualified name of the matching scope record, or None.
        """
        if name.startswith("::"):
            name = name[2:]
            return name if name in self.scopes else None
        for prefix in scope_chain(self.current_qualified_name()):
            candidate = qualify(prefix, name)
            if candidate in self.scopes:
                return candidate
        return None

    def _push(self, kind: ScopeKind, name: str, qualified_name: str, parent: Scope) -> Scope:
        scope = self.scopes.get(qualified_name)
        if scope is None:
            scope = self._register(kind, name, qualified_name, parent)
        else:
            logger.debug("Reopening scope %s", qualified_name)
        self._stack.append(scope)
        return scope

    def _register(self, kind: ScopeKind, name: str, qualified_name: str, parent: Scope) -> Scope:
        scope = Scope(kind, name, qualified_name, parent.qualified_name)
        self.scopes[qualified_name] = scope
        parent_record = self.scopes.get(parent.qualified_name)
        if parent_record is not None:
            parent_record.add_child(qualified_name)
        return scope
