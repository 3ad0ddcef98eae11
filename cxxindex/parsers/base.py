"""Base code parser interface, per-unit result container and error hierarchy.

Every stage of a translation unit's pipeline recovers from malformed input
locally: errors are raised as ``RecoverableError`` subclasses inside a stage,
caught at the stage's resynchronisation point and turned into diagnostics.
Only ``InvalidUnitError`` escapes, and only for the unit it concerns.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from cxxindex.graph.schema import MacroExpansion, Reference, SourceLocation
from cxxindex.runtime.diagnostics import Diagnostic, DiagnosticKind, Severity

if TYPE_CHECKING:
    from cxxindex.graph.symbol_table import SymbolTable

logger = logging.getLogger("cxxindex.parsers.base")


# =============================================================================
# Custom Exception Hierarchy
# =============================================================================

class RecoverableError(Exception):
    """Base class for recoverable input errors.

    These errors indicate malformed input that can be handled by skipping
    the offending fragment and continuing with the rest of the unit.
    """

    kind = DiagnosticKind.SYNTAX_ERROR

    def __init__(self, message: str, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    def to_diagnostic(self, severity: Severity = Severity.ERROR) -> Diagnostic:
        return Diagnostic(severity, self.kind, self.location, self.message)


class LexicalError(RecoverableError):
    """Unterminated literal/comment or invalid character.

    The lexer resumes at the next line boundary.
    """

    kind = DiagnosticKind.LEXICAL_ERROR


class DeclarationSyntaxError(RecoverableError):
    """Token run the declaration parser cannot classify.

    The parser resumes at the next top-level ``;``, ``{`` or ``}``.
    """

    kind = DiagnosticKind.SYNTAX_ERROR


class MacroExpansionOverflow(RecoverableError):
    """Macro expansion exceeded the configured depth bound.

    The invoking token is left unexpanded.
    """

    kind = DiagnosticKind.MACRO_EXPANSION_OVERFLOW


class PreprocessorError(RecoverableError):
    """Malformed directive, unbalanced conditional or bad macro arguments."""

    kind = DiagnosticKind.PREPROCESSOR_ERROR


class ConstantExpressionError(RecoverableError):
    """Integer constant expression could not be evaluated."""

    kind = DiagnosticKind.PREPROCESSOR_ERROR


class InvalidUnitError(ValueError):
    """Malformed input at the interface boundary (e.g. empty unit id).

    Fails the call for that unit only.
    """


# =============================================================================
# Per-unit result
# =============================================================================

@dataclass
class UnitResult:
    """Immutable-by-convention output of one translation unit's pipeline.

    Attributes:
        unit_id: Identifier (file path) of the unit.
        table: Unit-local symbol table (symbols and scopes).
        references: Raw references found in function bodies.
        expansions: Top-level macro expansion sites, in source order.
        includes: ``#include`` targets as written, in source order.
        diagnostics: Lexical, preprocessor and syntax diagnostics. ODR
            conflicts found inside the unit stay on ``table.diagnostics``.
        digest: Content digest of the source text; identifies re-merges.
    """

    unit_id: str
    table: "SymbolTable"
    references: List[Reference] = field(default_factory=list)
    expansions: List[MacroExpansion] = field(default_factory=list)
    includes: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    digest: str = ""

    def summary(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "symbols": len(self.table),
            "references": len(self.references),
            "expansions": len(self.expansions),
            "includes": len(self.includes),
            "diagnostics": len(self.diagnostics),
        }


class BaseCodeParser(ABC):
    """Base class for translation-unit parsers.

    Implementations must be pure with respect to their inputs so they can
    run in worker processes: no shared mutable state between units.
    """

    NAME: str = "base"
    LANGUAGE: str = "base"

    @staticmethod
    def validate_unit(unit_id: Any, text: Any) -> None:
        """Reject malformed input at the interface boundary.

        Raises:
            InvalidUnitError: If the unit id is empty or the text is not a str.
        """
        if not isinstance(unit_id, str) or not unit_id.strip():
            raise InvalidUnitError(f"Invalid unit identifier: {unit_id!r}")
        if not isinstance(text, str):
            raise InvalidUnitError(
                f"Source text for {unit_id} must be str, got {type(text).__name__}"
            )

    @abstractmethod
    def parse_unit(self, unit_id: str, text: str) -> UnitResult:
        """Run the full per-unit pipeline.

        Args:
            unit_id: Unit identifier (file path).
            text: Fully resolved source text.

        Returns:
            UnitResult for the unit.
        """
