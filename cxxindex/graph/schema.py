"""Canonical symbol model for the C/C++ index.

This module defines a single source of truth for symbol, scope and edge
records. Parsers produce these records per translation unit, the symbol
table merges them across units, and the analysis passes annotate the merged
table before it is published to the query API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class SymbolKind(str, Enum):
    """Symbol kind constants."""

    FUNCTION = "function"
    VARIABLE = "variable"
    FIELD = "field"
    STRUCT = "struct"
    CLASS = "class"
    UNION = "union"
    ENUM = "enum"
    ENUMERATOR = "enumerator"
    TYPEDEF = "typedef"
    NAMESPACE = "namespace"
    MACRO = "macro"


# Kinds that live in the C tag namespace (``struct X`` vs plain ``X``).
TAG_KINDS = frozenset(
    {SymbolKind.STRUCT, SymbolKind.CLASS, SymbolKind.UNION, SymbolKind.ENUM}
)
CLASS_KINDS = frozenset({SymbolKind.STRUCT, SymbolKind.CLASS, SymbolKind.UNION})


class ScopeKind(str, Enum):
    """Scope kind constants."""

    GLOBAL = "global"
    NAMESPACE = "namespace"
    CLASS = "class"
    FUNCTION = "function"
    ENUM = "enum"


class Access(str, Enum):
    """Member and base-class access specifiers."""

    PUBLIC = "public"
    PROTECTED = "protected"
    PRIVATE = "private"


class RefKind(str, Enum):
    """How a function body refers to a name."""

    CALL = "call"
    WRITE = "write"
    USE = "use"


@dataclass(frozen=True, order=True)
class SourceLocation:
    """A position in a translation unit (1-based line and column)."""

    file: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


def qualify(prefix: str, name: str) -> str:
    """Join a qualification prefix and a name with ``::``."""
    if not prefix:
        return name
    if not name:
        return prefix
    return f"{prefix}::{name}"


def split_qualified(qualified_name: str) -> Tuple[str, str]:
    """Split ``A::B::c`` into ``("A::B", "c")``."""
    head, sep, tail = qualified_name.rpartition("::")
    if not sep:
        return "", qualified_name
    return head, tail


def scope_chain(qualified_name: str) -> List[str]:
    """Enclosing scopes innermost first: ``A::B`` -> ``["A::B", "A", ""]``."""
    chain: List[str] = []
    current = qualified_name
    while current:
        chain.append(current)
        current = split_qualified(current)[0]
    chain.append("")
    return chain


# ---------------------------------------------------------------------------
# Kind-specific payloads
# ---------------------------------------------------------------------------


@dataclass
class FunctionInfo:
    """Payload for functions and methods."""

    params: Tuple[str, ...] = ()
    return_type: str = ""
    is_virtual: bool = False
    is_override: bool = False
    is_pure: bool = False
    is_static: bool = False
    is_const: bool = False
    is_final: bool = False
    is_variadic: bool = False
    optional_params: int = 0
    owning_class: Optional[str] = None
    access: Optional[Access] = None

    def accepts(self, arg_count: int) -> bool:
        """Return whether a call with ``arg_count`` arguments can bind here."""
        required = len(self.params) - self.optional_params
        if arg_count < required:
            return False
        return self.is_variadic or arg_count <= len(self.params)


@dataclass
class VariableInfo:
    """Payload for namespace-scope variables and static data members."""

    type_text: str = ""
    is_global: bool = True
    owning_class: Optional[str] = None
    write_sites: List[SourceLocation] = field(default_factory=list)


@dataclass
class FieldInfo:
    """Payload for non-static data members."""

    type_text: str = ""
    owning_class: str = ""
    access: Optional[Access] = None


@dataclass(frozen=True)
class BaseSpec:
    """A base class as written in a class head."""

    name: str
    access: Access = Access.PUBLIC
    is_virtual: bool = False


@dataclass
class ClassInfo:
    """Payload for struct, class and union symbols."""

    bases: List[BaseSpec] = field(default_factory=list)
    members: List[str] = field(default_factory=list)
    is_anonymous: bool = False


@dataclass
class EnumInfo:
    """Payload for enums; enumerators are ``(name, value)`` pairs."""

    enumerators: List[Tuple[str, Optional[int]]] = field(default_factory=list)
    is_scoped: bool = False
    underlying_type: Optional[str] = None


@dataclass
class EnumeratorInfo:
    value: Optional[int] = None
    value_text: Optional[str] = None
    enum: str = ""


@dataclass
class TypedefInfo:
    aliased_type: str = ""
    target: Optional[str] = None


@dataclass
class MacroInfo:
    params: Tuple[str, ...] = ()
    body_text: str = ""
    is_function_like: bool = False


Payload = Union[
    FunctionInfo,
    VariableInfo,
    FieldInfo,
    ClassInfo,
    EnumInfo,
    EnumeratorInfo,
    TypedefInfo,
    MacroInfo,
    None,
]


# ---------------------------------------------------------------------------
# Symbols and scopes
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Symbol:
    """A named entity of the indexed corpus.

    Symbols compare by identity so they can be collected in sets; within a
    table ``id`` is the arena index.

    Attributes:
        qualified_name: Name prefixed by its namespace/class chain.
        kind: Symbol kind.
        scope: Qualified name of the declaring scope ("" for global).
        locations: Every declaration/definition site, in discovery order.
        definitions: Subset of ``locations`` that carry a definition.
        payload: Kind-specific payload.
        id: Arena index assigned by the owning table.
    """

    qualified_name: str
    kind: SymbolKind
    scope: str = ""
    locations: List[SourceLocation] = field(default_factory=list)
    definitions: List[SourceLocation] = field(default_factory=list)
    payload: Payload = None
    id: int = -1

    @property
    def name(self) -> str:
        """Unqualified name."""
        return split_qualified(self.qualified_name)[1]

    @property
    def is_defined(self) -> bool:
        return bool(self.definitions)

    @property
    def family(self) -> str:
        """Name family used for uniqueness: tag, ordinary or macro."""
        if self.kind in TAG_KINDS:
            return "tag"
        if self.kind == SymbolKind.MACRO:
            return "macro"
        return "ordinary"

    @property
    def signature(self) -> str:
        """Human-readable signature, e.g. ``add(int,int)``."""
        if isinstance(self.payload, FunctionInfo):
            return f"{self.qualified_name}({','.join(self.payload.params)})"
        if isinstance(self.payload, MacroInfo) and self.payload.is_function_like:
            return f"{self.qualified_name}({','.join(self.payload.params)})"
        return self.qualified_name

    def add_location(self, location: SourceLocation, is_definition: bool = False) -> None:
        if location not in self.locations:
            self.locations.append(location)
        if is_definition and location not in self.definitions:
            self.definitions.append(location)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready mapping."""
        payload: Dict[str, Any] = {}
        if self.payload is not None:
            for key, value in vars(self.payload).items():
                payload[key] = _to_plain(value)
        return {
            "id": self.id,
            "qualified_name": self.qualified_name,
            "kind": self.kind.value,
            "scope": self.scope,
            "signature": self.signature,
            "locations": [str(loc) for loc in self.locations],
            "definitions": [str(loc) for loc in self.definitions],
            "payload": payload,
        }

    def __repr__(self) -> str:
        return f"Symbol({self.kind.value} {self.signature})"


def _to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, SourceLocation):
        return str(value)
    if isinstance(value, BaseSpec):
        return {
            "name": value.name,
            "access": value.access.value,
            "is_virtual": value.is_virtual,
        }
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    return value


@dataclass
class Scope:
    """A lexical scope frame.

    ``parent`` is the parent's qualified name rather than an object reference
    so scopes from different units can be merged by name.
    """

    kind: ScopeKind
    name: str
    qualified_name: str
    parent: Optional[str] = None
    children: List[str] = field(default_factory=list)

    def add_child(self, qualified_name: str) -> None:
        if qualified_name not in self.children:
            self.children.append(qualified_name)


@dataclass(frozen=True)
class InheritanceEdge:
    """Derived -> base relationship between two class symbol ids."""

    derived: int
    base: int
    access: Access = Access.PUBLIC
    is_virtual: bool = False
    effective: bool = True


@dataclass(frozen=True)
class MacroExpansion:
    """A top-level macro invocation site."""

    location: SourceLocation
    macro_name: str
    expanded_text: str
    enclosing: Optional[str] = None


@dataclass(frozen=True)
class Reference:
    """An unresolved name reference found in a function body.

    Attributes:
        name: Name as written (possibly qualified).
        kind: Call, write or plain use.
        location: Location of the name token.
        context: ``(qualified_name, params)`` of the enclosing function.
        scope: Qualified name used as the lookup origin.
        receiver_type: Declared type of the object for member access.
        is_member: Whether the name followed ``.`` or ``->``.
        arg_count: Number of call arguments for calls.
    """

    name: str
    kind: RefKind
    location: SourceLocation
    context: Tuple[str, Tuple[str, ...]]
    scope: str = ""
    receiver_type: Optional[str] = None
    is_member: bool = False
    arg_count: Optional[int] = None


@dataclass(frozen=True)
class ResolvedReference:
    source: int
    target: int
    kind: RefKind
    location: SourceLocation
