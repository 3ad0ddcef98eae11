"""Tests for binding body references to symbols."""

from __future__ import annotations

from typing import List, Tuple

from cxxindex.analysis.hierarchy import resolve_hierarchy
from cxxindex.analysis.references import ReferenceResolver, resolve_references
from cxxindex.graph.schema import RefKind, SymbolKind
from cxxindex.graph.symbol_table import SymbolTable
from cxxindex.parsers.cpp.code_parser import CppCodeParser


def _resolved(text: str) -> Tuple[SymbolTable, List[Tuple[str, str, RefKind]]]:
    table = SymbolTable()
    table.merge(CppCodeParser().parse_unit("refs.cpp", text))
    resolve_hierarchy(table)
    records = resolve_references(table)
    assert table.resolved_references == records
    return table, [
        (table.get(r.source).signature, table.get(r.target).qualified_name, r.kind)
        for r in records
    ]


def test_inherited_members_and_globals_from_method_body() -> None:
    table, refs = _resolved(
        "int counter;\n"
        "struct Base { int size; void helper(int a, int b); };\n"
        "struct Box : Base { void grow(int by); };\n"
        "void Box::grow(int by) { size += by; this->size++; counter = size; helper(1, 2); missing(); }\n"
    )

    assert refs == [
        ("Box::grow(int)", "Base::size", RefKind.WRITE),
        ("Box::grow(int)", "Base::size", RefKind.WRITE),
        ("Box::grow(int)", "counter", RefKind.WRITE),
        ("Box::grow(int)", "Base::size", RefKind.USE),
        ("Box::grow(int)", "Base::helper", RefKind.CALL),
    ]
    counter = table.by_qualified_name("counter")[0]
    assert [site.line for site in counter.payload.write_sites] == [4]


def test_calls_pick_overload_by_argument_count() -> None:
    table, _ = _resolved(
        "int f(int a);\n"
        "int f(int a, int b);\n"
        "int v(const char *fmt, ...);\n"
        "void g() { f(1); f(1, 2); v(\"x\", 1, 2, 3); }\n"
    )

    calls = [
        table.get(r.target).signature
        for r in table.resolved_references
        if r.kind == RefKind.CALL
    ]
    assert calls == ["f(int)", "f(int,int)", "v(const char*)"]


def test_lookup_walks_enclosing_scopes() -> None:
    table, refs = _resolved(
        "enum Color { RED, GREEN };\n"
        "int value;\n"
        "namespace n {\n"
        "int value;\n"
        "void h() { value = RED; ::value = 1; }\n"
        "}\n"
    )

    assert refs == [
        ("n::h()", "n::value", RefKind.WRITE),
        ("n::h()", "RED", RefKind.USE),
        ("n::h()", "value", RefKind.WRITE),
    ]
    assert table.get(table.resolved_references[1].target).kind == SymbolKind.ENUMERATOR
    assert [s.line for s in table.by_qualified_name("n::value")[0].payload.write_sites] == [5]
    assert [s.line for s in table.by_qualified_name("value")[0].payload.write_sites] == [5]


def test_member_access_through_local_and_constructor_call() -> None:
    _, refs = _resolved(
        "struct Base { void helper(int a, int b); };\n"
        "struct Point { int x; };\n"
        "void m() { Base b; b.helper(1, 2); Point(); }\n"
    )

    assert refs == [
        ("m()", "Base", RefKind.USE),
        ("m()", "Base::helper", RefKind.CALL),
        ("m()", "Point", RefKind.CALL),
    ]


def test_unresolvable_references_are_dropped() -> None:
    table, refs = _resolved(
        "struct Box { int size; };\n"
        "void f(Unknown *u) { u->size = 1; nowhere = 2; std::printf(\"x\"); }\n"
    )

    assert refs == []
    assert len(table.references) == 3


def test_resolver_without_hierarchy_uses_declared_class_only() -> None:
    table = SymbolTable()
    table.merge(
        CppCodeParser().parse_unit(
            "refs.cpp",
            "struct Base { int size; };\n"
            "struct Box : Base { int own; void f(); };\n"
            "void Box::f() { own = 1; size = 2; }\n",
        )
    )

    records = ReferenceResolver(table).resolve()

    assert [table.get(r.target).qualified_name for r in records] == ["Box::own"]
