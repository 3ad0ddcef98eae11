"""Tests for inheritance resolution, cycle removal and override matching."""

from __future__ import annotations

from cxxindex.analysis.hierarchy import HierarchyResolver, method_key, resolve_class, resolve_hierarchy
from cxxindex.graph.schema import SourceLocation, Symbol, SymbolKind
from cxxindex.graph.symbol_table import SymbolTable
from cxxindex.parsers.cpp.code_parser import CppCodeParser
from cxxindex.runtime.diagnostics import DiagnosticKind, Severity


def _table(*sources: str) -> SymbolTable:
    table = SymbolTable()
    parser = CppCodeParser()
    for number, text in enumerate(sources):
        table.merge(parser.parse_unit(f"unit{number}.cpp", text))
    return table


def _symbol(table: SymbolTable, qualified_name: str, kind: SymbolKind = SymbolKind.FUNCTION) -> Symbol:
    matches = [s for s in table.by_qualified_name(qualified_name) if s.kind == kind]
    assert len(matches) == 1, matches
    return matches[0]


def _edge_names(table: SymbolTable, effective: bool = True):
    return [
        (table.get(e.derived).qualified_name, table.get(e.base).qualified_name)
        for e in table.edges
        if e.effective == effective
    ]


def test_explicit_overrides_and_pure_virtuals() -> None:
    table = _table(
        "struct Base {\n"
        "    virtual void method();\n"
        "    virtual void another_method() = 0;\n"
        "    virtual ~Base();\n"
        "    void plain();\n"
        "};\n",
        "struct Derived : Base {\n"
        "    void method() override;\n"
        "    void another_method() override;\n"
        "    ~Derived() override;\n"
        "    void plain();\n"
        "};\n",
    )

    graph = resolve_hierarchy(table)

    derived = _symbol(table, "Derived", SymbolKind.STRUCT)
    base = _symbol(table, "Base", SymbolKind.STRUCT)
    assert list(graph.edges) == [(derived.id, base.id)]
    assert _edge_names(table) == [("Derived", "Base")]
    for name in ("method", "another_method"):
        method = _symbol(table, f"Derived::{name}")
        assert table.overridden[method.id] == _symbol(table, f"Base::{name}").id
    assert table.overridden[_symbol(table, "Derived::~Derived").id] == _symbol(table, "Base::~Base").id
    assert _symbol(table, "Derived::plain").id not in table.overridden
    assert table.implicit_overrides == set()
    assert len(table.diagnostics) == 0


def test_cycle_is_reported_once_and_its_edges_dropped() -> None:
    table = _table("struct A : B {};\nstruct B : A {};\n")

    graph = resolve_hierarchy(table)

    cycles = table.diagnostics.of_kind(DiagnosticKind.CYCLIC_INHERITANCE)
    assert len(cycles) == 1
    assert cycles[0].location == SourceLocation("unit0.cpp", 1, 8)
    assert graph.number_of_edges() == 0
    assert _edge_names(table) == []
    assert sorted(_edge_names(table, effective=False)) == [("A", "B"), ("B", "A")]


def test_cycle_removal_keeps_edges_off_the_cycle() -> None:
    table = _table(
        "struct Ok {};\n"
        "struct X : Y, Ok {};\n"
        "struct Y : Z {};\n"
        "struct Z : X {};\n"
    )

    resolve_hierarchy(table)

    cycles = table.diagnostics.of_kind(DiagnosticKind.CYCLIC_INHERITANCE)
    assert [d.message for d in cycles] == ["Cyclic inheritance: X -> Y -> Z -> X"]
    assert _edge_names(table) == [("X", "Ok")]
    assert len(_edge_names(table, effective=False)) == 3


def test_implicit_overrides_form_a_chain() -> None:
    source = (
        "struct B { virtual void run(); };\n"
        "struct M : B { void run(); };\n"
        "struct L : M { void run(); };\n"
    )
    table = _table(source)

    resolve_hierarchy(table)

    b_run, m_run, l_run = (_symbol(table, f"{c}::run") for c in "BML")
    assert table.overriders[b_run.id] == [m_run.id]
    assert table.overridden[l_run.id] == m_run.id
    assert table.implicit_overrides == {m_run.id, l_run.id}
    assert m_run.payload.is_virtual


def test_implicit_overrides_can_be_disabled() -> None:
    table = _table(
        "struct B { virtual void run(); };\n"
        "struct M : B { void run(); };\n"
        "struct L : M { void run(); };\n"
    )

    HierarchyResolver(table, implicit_overrides=False).resolve()

    assert table.overridden == {}
    assert table.implicit_overrides == set()
    assert not _symbol(table, "M::run").payload.is_virtual


def test_override_without_base_virtual_is_a_warning() -> None:
    table = _table(
        "struct B { void f(); };\n"
        "struct D : B { void f() override; void g() override; };\n"
    )

    resolve_hierarchy(table)

    warnings = table.diagnostics.of_kind(DiagnosticKind.UNRESOLVED_OVERRIDE)
    assert [d.severity for d in warnings] == [Severity.WARNING, Severity.WARNING]
    assert table.unresolved_overrides == [_symbol(table, "D::f").id, _symbol(table, "D::g").id]
    assert table.overridden == {}


def test_override_through_virtual_diamond() -> None:
    table = _table(
        "struct A { virtual void f(int); };\n"
        "struct B : virtual A {};\n"
        "struct C : virtual A {};\n"
        "struct D : B, C { void f(int) override; };\n"
    )

    graph = resolve_hierarchy(table)

    assert graph.number_of_edges() == 4
    assert table.overridden[_symbol(table, "D::f").id] == _symbol(table, "A::f").id
    virtual_edges = [e for e in table.edges if e.is_virtual]
    assert len(virtual_edges) == 2


def test_parameter_types_must_match() -> None:
    table = _table(
        "struct A { virtual void f(int); };\n"
        "struct D : A { void f(double); void f(int) const; };\n"
    )

    resolve_hierarchy(table)

    overriders = [table.get(i).signature for i in table.overriders[_symbol(table, "A::f").id]]
    assert overriders == ["D::f(int)"]


def test_base_named_through_typedef() -> None:
    table = _table(
        "struct Impl { virtual void run(); };\n"
        "typedef Impl Alias;\n"
        "struct User : Alias { void run() override; };\n"
    )

    resolve_hierarchy(table)

    assert _edge_names(table) == [("User", "Impl")]
    assert _symbol(table, "User::run").id in table.overridden


def test_unresolved_and_namespaced_bases() -> None:
    table = _table(
        "class Err : public std::exception {};\n"
        "namespace ns { struct Base {}; struct Derived : Base {}; }\n"
    )

    resolve_hierarchy(table)

    err = _symbol(table, "Err", SymbolKind.CLASS)
    assert table.unresolved_bases == {err.id: ["std::exception"]}
    assert _edge_names(table) == [("ns::Derived", "ns::Base")]
    assert len(table.diagnostics) == 0


def test_resolve_class_lookup_rules() -> None:
    table = _table(
        "struct Node;\n"
        "struct Node { int v; };\n"
        "namespace outer { struct Node {}; namespace inner { typedef struct Node Ref; } }\n"
    )

    node = resolve_class(table, "Node", "")
    assert node is not None and node.qualified_name == "Node" and node.is_defined
    assert resolve_class(table, "Node", "outer::inner").qualified_name == "outer::Node"
    assert resolve_class(table, "::Node", "outer::inner").qualified_name == "Node"
    assert resolve_class(table, "Ref", "outer::inner").qualified_name == "outer::Node"
    assert resolve_class(table, "Node<int>", "").qualified_name == "Node"
    assert resolve_class(table, "Missing", "outer") is None


def test_method_key_ignores_destructor_class_name() -> None:
    table = _table("struct A { virtual ~A(); void f(int, char); };\n")

    assert method_key(_symbol(table, "A::~A")) == ("~", ())
    assert method_key(_symbol(table, "A::f")) == ("f", ("int", "char"))
