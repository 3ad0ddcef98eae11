"""C/C++ translation-unit parser.

Runs the per-unit pipeline: lexer, preprocessor, declaration parser and body
scanner, producing a ``UnitResult`` with a unit-local symbol table. The
parser holds no state between units, so one instance can be cached per
worker process.
"""

from __future__ import annotations

import hashlib
import logging
from typing import List, Optional

from cxxindex.config.schema import IndexerConfig
from cxxindex.graph.schema import MacroExpansion, MacroInfo, Symbol, SymbolKind
from cxxindex.graph.symbol_table import SymbolTable
from cxxindex.parsers.base import BaseCodeParser, UnitResult
from cxxindex.parsers.cpp.body_scanner import scan_bodies
from cxxindex.parsers.cpp.declarations import DeclarationParser, FunctionBody
from cxxindex.parsers.cpp.lexer import Lexer
from cxxindex.parsers.cpp.preprocessor import MacroDefinition, MacroTable, Preprocessor

logger = logging.getLogger("cxxindex.parsers.cpp.code_parser")


class CppCodeParser(BaseCodeParser):
    """Parser for C and C++ translation units.

    Args:
        config: Indexer configuration; predefined macros and limits are
            taken from it.
    """

    NAME = "cpp"
    LANGUAGE = "c/c++"

    def __init__(self, config: Optional[IndexerConfig] = None) -> None:
        self.config = config or IndexerConfig()
        self._predefined = MacroTable()
        for signature, body in self.config.predefined_macros.items():
            self._predefined.define_from_signature(signature, body)

    def parse_unit(self, unit_id: str, text: str) -> UnitResult:
        """Run lexing, preprocessing, declaration parsing and body scanning.

        Args:
            unit_id: Unit identifier (file path) recorded in locations.
            text: Fully resolved source text.

        Returns:
            UnitResult for the unit.

        Raises:
            InvalidUnitError: If the unit id or text is malformed.
        """
        self.validate_unit(unit_id, text)
        logger.debug("Parsing unit %s (%d chars)", unit_id, len(text))

        lexer = Lexer(text, unit_id)
        preprocessor = Preprocessor(
            self._predefined.copy(),
            max_depth=self.config.max_expansion_depth,
            record_expansions=self.config.record_expansions,
        )
        tokens = preprocessor.run(lexer.tokens())

        table = SymbolTable()
        for macro in preprocessor.definitions:
            table.add_symbol(_macro_symbol(macro))

        parser = DeclarationParser(tokens, table)
        parser.parse()

        references = scan_bodies(parser.bodies) if self.config.record_references else []
        expansions = _attach_enclosing(preprocessor.expansions, parser.bodies)

        result = UnitResult(
            unit_id=unit_id,
            table=table,
            references=references,
            expansions=expansions,
            includes=list(preprocessor.includes),
            diagnostics=[*lexer.diagnostics, *preprocessor.diagnostics, *parser.diagnostics],
            digest=hashlib.sha1(text.encode("utf-8")).hexdigest(),
        )
        logger.debug("Parsed unit %s: %s", unit_id, result.summary())
        return result


def _macro_symbol(macro: MacroDefinition) -> Symbol:
    locations = [macro.location] if macro.location is not None else []
    return Symbol(
        macro.name,
        SymbolKind.MACRO,
        "",
        list(locations),
        list(locations),
        MacroInfo(
            params=macro.params,
            body_text=macro.body_text,
            is_function_like=macro.is_function_like,
        ),
    )


def _attach_enclosing(
    expansions: List[MacroExpansion], bodies: List[FunctionBody]
) -> List[MacroExpansion]:
    result: List[MacroExpansion] = []
    for expansion in expansions:
        enclosing = next(
            (b.symbol.qualified_name for b in bodies if b.contains(expansion.location)),
            None,
        )
        result.append(
            MacroExpansion(expansion.location, expansion.macro_name, expansion.expanded_text, enclosing)
        )
    return result
