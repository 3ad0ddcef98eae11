"""Tests for the per-unit parsing pipeline."""

from __future__ import annotations

import pickle

import pytest

from cxxindex.config.schema import IndexerConfig
from cxxindex.graph.schema import SymbolKind
from cxxindex.parsers.base import InvalidUnitError
from cxxindex.parsers.cpp.code_parser import CppCodeParser
from cxxindex.runtime.diagnostics import DiagnosticKind

SOURCE = (
    "#include \"util.h\"\n"
    "#define TWICE(x) ((x)*2)\n"
    "int f(int a) { return TWICE(a); }\n"
    "int g = TWICE(4);\n"
)


def test_unit_result_collects_every_stage() -> None:
    result = CppCodeParser().parse_unit("main.c", SOURCE)

    macro = result.table.by_qualified_name("TWICE")[0]
    assert macro.kind == SymbolKind.MACRO
    assert macro.payload.params == ("x",)
    assert macro.payload.is_function_like
    assert result.includes == ["util.h"]
    assert [(e.macro_name, e.expanded_text, e.enclosing) for e in result.expansions] == [
        ("TWICE", "((a)*2)", "f"),
        ("TWICE", "((4)*2)", None),
    ]
    assert result.expansions[0].location.line == 3
    assert result.diagnostics == []
    assert len(result.digest) == 40
    assert result.summary()["expansions"] == 2


def test_expansion_recording_can_be_disabled() -> None:
    parser = CppCodeParser(IndexerConfig(record_expansions=False))

    result = parser.parse_unit("main.c", SOURCE)

    assert result.expansions == []
    assert "f" in result.table


def test_predefined_macros_apply_to_every_unit() -> None:
    parser = CppCodeParser(IndexerConfig(predefined_macros={"SIZE": "16", "ID(x)": "x"}))

    first = parser.parse_unit("a.c", "int buf[SIZE];\nint ID(value);\n")
    second = parser.parse_unit("b.c", "#undef SIZE\nint other[SIZE];\n")

    assert first.table.by_qualified_name("buf")[0].payload.type_text == "int[16]"
    assert "value" in first.table
    assert second.table.by_qualified_name("other")[0].payload.type_text == "int[SIZE]"


def test_lexical_errors_do_not_stop_the_unit() -> None:
    result = CppCodeParser().parse_unit("bad.c", "int a;\n@oops\nint b;\n")

    assert [d.kind for d in result.diagnostics] == [DiagnosticKind.LEXICAL_ERROR]
    assert "b" in result.table


@pytest.mark.parametrize("unit_id, text", [("", "int a;"), ("  ", "int a;"), ("a.c", None), (None, "")])
def test_invalid_units_are_rejected(unit_id: object, text: object) -> None:
    with pytest.raises(InvalidUnitError):
        CppCodeParser().parse_unit(unit_id, text)  # type: ignore[arg-type]


def test_unit_result_survives_pickling() -> None:
    """Results travel back from worker processes."""

    result = CppCodeParser().parse_unit("main.c", SOURCE)

    restored = pickle.loads(pickle.dumps(result))

    assert restored.unit_id == "main.c"
    assert [s.qualified_name for s in restored.table] == [s.qualified_name for s in result.table]
    assert restored.references == result.references
    assert restored.table.add_symbol(restored.table.get(0)) is restored.table.get(0)
