"""Tests for the indexing orchestrator and its worker pool."""

from __future__ import annotations

from typing import List

import pytest

from cxxindex.graph.symbol_table import SealedTableError
from cxxindex.parsers.base import InvalidUnitError, UnitResult
from cxxindex.runtime import pool as pool_module
from cxxindex.runtime.diagnostics import DiagnosticKind
from cxxindex.runtime.indexer import Indexer
from cxxindex.runtime.pool import UnitParserPool, clear_parser_cache

UNITS = {
    "shapes.h": (
        "struct Shape { virtual double area() const = 0; virtual ~Shape(); };\n"
        "extern int shape_count;\n"
    ),
    "circle.cpp": (
        "struct Circle : Shape {\n"
        "    double r;\n"
        "    double area() const override { return r * r * 3; }\n"
        "};\n"
        "int shape_count = 0;\n"
        "void track() { shape_count++; }\n"
    ),
    "square.cpp": (
        "#define SIDE(s) ((s).w)\n"
        "struct Square : Shape { double w; double area() const { return w * w; } };\n"
        "double side(Square q) { return SIDE(q); }\n"
    ),
}


def _snapshot(indexer: Indexer) -> list:
    query = indexer.finalize()
    return [
        [s.to_dict() for s in query.table],
        [(r.source, r.target, r.kind, r.location) for r in query.table.resolved_references],
        sorted(query.table.overridden.items()),
        [str(d) for d in query.diagnostics()],
    ]


def test_index_units_merges_in_submission_order() -> None:
    indexer = Indexer()

    assert indexer.index_units(UNITS) == 3
    query = indexer.finalize()

    (count,) = query.lookup("shape_count")
    assert [loc.file for loc in count.locations] == ["shapes.h", "circle.cpp"]
    assert [(loc.file, loc.line) for loc in query.write_sites_of(count)] == [
        ("circle.cpp", 5),
        ("circle.cpp", 6),
    ]
    (area,) = query.lookup("Shape::area")
    assert [s.qualified_name for s in query.overrides_of(area)] == ["Circle::area", "Square::area"]
    assert query.table.implicit_overrides == {query.lookup("Square::area")[0].id}
    assert [e.macro_name for e in query.macro_expansions_in("square.cpp")] == ["SIDE"]
    assert query.diagnostics() == []


def test_invalid_units_become_diagnostics() -> None:
    indexer = Indexer()

    merged = indexer.index_units([("", "int a;"), ("ok.c", "int b;"), ("none.c", None)])

    assert merged == 1
    invalid = [d for d in indexer.diagnostics if d.kind == DiagnosticKind.INVALID_UNIT]
    assert len(invalid) == 2
    assert "b" in indexer.table


def test_index_unit_raises_for_invalid_input() -> None:
    indexer = Indexer()

    with pytest.raises(InvalidUnitError):
        indexer.index_unit("", "int a;")
    result = indexer.index_unit("a.c", "int a;")
    assert isinstance(result, UnitResult)
    assert "a" in indexer.table


def test_repeated_unit_is_merged_once() -> None:
    indexer = Indexer()
    seen: List[str] = []

    merged = indexer.index_units(
        [("a.c", "int x = 1;"), ("a.c", "int x = 1;")], progress=lambda r: seen.append(r.unit_id)
    )

    assert merged == 1
    assert seen == ["a.c", "a.c"]
    assert len(indexer.table.by_qualified_name("x")) == 1


def test_cancel_stops_merging() -> None:
    indexer = Indexer()
    seen: List[str] = []

    def progress(result: UnitResult) -> None:
        seen.append(result.unit_id)
        indexer.cancel()

    merged = indexer.index_units(UNITS, progress=progress)

    assert indexer.cancelled
    assert merged == 1
    assert seen == ["shapes.h"]
    assert "Circle" not in indexer.table


def test_finalize_is_idempotent_and_seals() -> None:
    indexer = Indexer()
    indexer.index_unit("a.c", "int a;")

    query = indexer.finalize()

    assert indexer.finalize() is query
    assert indexer.table.sealed
    with pytest.raises(SealedTableError):
        indexer.index_unit("b.c", "int b;")
    with pytest.raises(SealedTableError):
        indexer.index_units({"b.c": "int b;"})


def test_config_controls_passes() -> None:
    indexer = Indexer({"record_references": False, "implicit_overrides": False})
    indexer.index_units(UNITS)

    query = indexer.finalize()

    assert query.table.resolved_references == []
    (area,) = query.lookup("Shape::area")
    assert [s.qualified_name for s in query.overrides_of(area)] == ["Circle::area"]


def test_parallel_indexing_matches_in_process() -> None:
    sequential = Indexer()
    sequential.index_units(UNITS)

    parallel = Indexer({"max_workers": 2})
    assert parallel.index_units(list(UNITS.items()) + [("", "bad")]) == 3

    expected = _snapshot(sequential)
    actual = _snapshot(parallel)
    assert actual[:3] == expected[:3]
    assert actual[3] == expected[3] + [str(d) for d in parallel.diagnostics if d.kind == DiagnosticKind.INVALID_UNIT]


def test_in_process_pool_returns_completed_futures() -> None:
    clear_parser_cache()
    with UnitParserPool() as pool:
        assert pool.in_process
        futures = pool.submit_batch([("a.c", "int a;"), ("", "int b;")])

    (first_id, first), (_, second) = futures
    assert first_id == "a.c"
    assert first.done() and "a" in first.result().table
    assert isinstance(second.exception(), InvalidUnitError)
    assert len(pool_module._CODE_PARSER_CACHE) == 1

    clear_parser_cache()
    assert pool_module._CODE_PARSER_CACHE == {}
