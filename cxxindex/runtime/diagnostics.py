"""Diagnostic records collected while lexing, parsing and resolving.

The engine never prints diagnostics. Every stage appends
``(severity, kind, location, message)`` records to a ``DiagnosticSink`` and
the caller decides how to present them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from cxxindex.graph.schema import SourceLocation

logger = logging.getLogger("cxxindex.runtime.diagnostics")


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class DiagnosticKind(str, Enum):
    """Diagnostic taxonomy."""

    LEXICAL_ERROR = "LexicalError"
    SYNTAX_ERROR = "SyntaxError"
    MACRO_EXPANSION_OVERFLOW = "MacroExpansionOverflow"
    ODR_CONFLICT = "OdrConflict"
    CYCLIC_INHERITANCE = "CyclicInheritance"
    UNRESOLVED_OVERRIDE = "UnresolvedOverride"
    PREPROCESSOR_ERROR = "PreprocessorError"
    INVALID_UNIT = "InvalidUnit"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    kind: DiagnosticKind
    location: Optional[SourceLocation]
    message: str

    def __str__(self) -> str:
        where = f"{self.location}: " if self.location else ""
        return f"{where}{self.severity.value}: [{self.kind.value}] {self.message}"


class DiagnosticSink:
    """Ordered, append-only diagnostic collector."""

    def __init__(self) -> None:
        self._items: List[Diagnostic] = []

    def report(
        self,
        kind: DiagnosticKind,
        message: str,
        location: Optional[SourceLocation] = None,
        severity: Severity = Severity.ERROR,
    ) -> Diagnostic:
        diagnostic = Diagnostic(severity, kind, location, message)
        self._items.append(diagnostic)
        logger.debug("%s", diagnostic)
        return diagnostic

    def extend(self, diagnostics: List[Diagnostic]) -> None:
        self._items.extend(diagnostics)

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self._items if d.kind == kind]

    def to_list(self) -> List[Diagnostic]:
        return list(self._items)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)
