"""Tests for the declaration parser and scope tracking."""

from __future__ import annotations

from cxxindex.graph.schema import (
    Access,
    BaseSpec,
    ScopeKind,
    SourceLocation,
    Symbol,
    SymbolKind,
)
from cxxindex.parsers.base import UnitResult
from cxxindex.parsers.cpp.code_parser import CppCodeParser
from cxxindex.parsers.cpp.scopes import ScopeManager
from cxxindex.runtime.diagnostics import DiagnosticKind


def _parse(text: str, unit_id: str = "unit.cpp") -> UnitResult:
    return CppCodeParser().parse_unit(unit_id, text)


def _one(result: UnitResult, qualified_name: str) -> Symbol:
    symbols = result.table.by_qualified_name(qualified_name)
    assert len(symbols) == 1, symbols
    return symbols[0]


def test_truncated_class_reports_one_syntax_error() -> None:
    """A class missing its closing brace yields exactly one SyntaxError."""

    result = _parse(
        "int before = 1;\n"
        "void helper(void);\n"
        "class Broken {\n"
        "public:\n"
        "    int kept;\n"
        "    void method();\n"
    )

    assert [d.kind for d in result.diagnostics] == [DiagnosticKind.SYNTAX_ERROR]
    assert _one(result, "before").kind == SymbolKind.VARIABLE
    assert _one(result, "helper").payload.params == ()
    assert _one(result, "Broken").kind == SymbolKind.CLASS
    assert _one(result, "Broken::kept").kind == SymbolKind.FIELD
    assert _one(result, "Broken::method").payload.access == Access.PUBLIC


def test_recovery_resumes_after_statement_boundary() -> None:
    result = _parse("int ok1;\nint = 5;\nint ok2;\n")

    assert [d.kind for d in result.diagnostics] == [DiagnosticKind.SYNTAX_ERROR]
    assert result.diagnostics[0].location.line == 2
    assert "ok1" in result.table
    assert "ok2" in result.table


def test_nested_and_reopened_namespaces() -> None:
    result = _parse(
        "namespace a { namespace b { int f(int); } }\n"
        "namespace a::b { int g(); }\n"
        "int a::b::f(int x) { return x; }\n"
    )

    assert result.diagnostics == []
    assert _one(result, "a").kind == SymbolKind.NAMESPACE
    assert _one(result, "a::b").kind == SymbolKind.NAMESPACE
    f = _one(result, "a::b::f")
    assert f.scope == "a::b"
    assert [loc.line for loc in f.locations] == [1, 3]
    assert f.definitions == [SourceLocation("unit.cpp", 3, 11)]
    assert "a::b::g" in result.table
    assert result.table.scopes["a::b"].kind == ScopeKind.NAMESPACE
    assert result.table.scopes["a"].children == ["a::b"]


def test_overloads_are_kept_apart_and_redeclarations_merge() -> None:
    result = _parse(
        "class Calc {\n"
        "public:\n"
        "    int add(int a, int b);\n"
        "    double add(double a, double b);\n"
        "};\n"
        "int Calc::add(int a, int b) { return a + b; }\n"
    )

    overloads = result.table.by_qualified_name("Calc::add")
    assert sorted(s.signature for s in overloads) == [
        "Calc::add(double,double)",
        "Calc::add(int,int)",
    ]
    int_add = next(s for s in overloads if s.payload.params == ("int", "int"))
    assert [loc.line for loc in int_add.locations] == [3, 6]
    assert int_add.is_defined
    assert int_add.payload.owning_class == "Calc"
    assert result.table.diagnostics.to_list() == []
    assert _one(result, "Calc").payload.members == ["Calc::add"]


def test_class_members_and_bases() -> None:
    result = _parse(
        "struct Shape {\n"
        "    Shape();\n"
        "    virtual ~Shape();\n"
        "    virtual double area() const = 0;\n"
        "protected:\n"
        "    int sides;\n"
        "    static int count;\n"
        "};\n"
        "class Square : public Shape, private virtual Other {\n"
        "    double area() const override;\n"
        "};\n"
        "int Shape::count = 0;\n"
    )

    assert result.diagnostics == []
    ctor = _one(result, "Shape::Shape")
    assert ctor.payload.return_type == ""
    dtor = _one(result, "Shape::~Shape")
    assert dtor.payload.is_virtual
    area = _one(result, "Shape::area")
    assert area.payload.is_pure and area.payload.is_const
    sides = _one(result, "Shape::sides")
    assert sides.kind == SymbolKind.FIELD
    assert sides.payload.access == Access.PROTECTED
    count = _one(result, "Shape::count")
    assert count.kind == SymbolKind.VARIABLE
    assert count.payload.owning_class == "Shape"
    assert count.payload.write_sites == [SourceLocation("unit.cpp", 12, 12)]

    square = _one(result, "Square")
    assert square.payload.bases == [
        BaseSpec("Shape", Access.PUBLIC, False),
        BaseSpec("Other", Access.PRIVATE, True),
    ]
    override = _one(result, "Square::area")
    assert override.payload.is_override
    assert override.payload.access == Access.PRIVATE


def test_enums_with_explicit_values_and_scoped_enums() -> None:
    result = _parse(
        "enum Flags { A = 1, B = A << 2, C, D = 'x' };\n"
        "enum class Mode : unsigned char { Off, On };\n"
    )

    assert _one(result, "Flags").payload.enumerators == [
        ("A", 1),
        ("B", 4),
        ("C", 5),
        ("D", 120),
    ]
    assert _one(result, "B").payload.value_text == "A<<2"
    mode = _one(result, "Mode")
    assert mode.payload.is_scoped
    assert mode.payload.underlying_type == "unsigned char"
    assert _one(result, "Mode::On").payload.value == 1
    assert "On" not in result.table


def test_typedefs_and_aliases() -> None:
    result = _parse(
        "typedef struct { int width; int height; } Rectangle;\n"
        "typedef unsigned long size_type, *size_ptr;\n"
        "using Callback = void (*)(int);\n"
        "typedef int (*BinaryOp)(int, int);\n"
    )

    assert result.diagnostics == []
    rect_struct = result.table.by_qualified_name("Rectangle")
    assert sorted(s.kind.value for s in rect_struct) == ["struct", "typedef"]
    struct = next(s for s in rect_struct if s.kind == SymbolKind.STRUCT)
    assert struct.payload.is_anonymous
    assert struct.payload.members == ["Rectangle::width", "Rectangle::height"]
    alias = next(s for s in rect_struct if s.kind == SymbolKind.TYPEDEF)
    assert alias.payload.aliased_type == "struct {...}"
    assert alias.payload.target == "Rectangle"
    assert _one(result, "size_type").payload.aliased_type == "unsigned long"
    assert _one(result, "size_ptr").payload.aliased_type == "unsigned long*"
    assert _one(result, "Callback").kind == SymbolKind.TYPEDEF
    assert _one(result, "BinaryOp").kind == SymbolKind.TYPEDEF


def test_anonymous_union_members_belong_to_enclosing_class() -> None:
    result = _parse("struct Value {\n    union { int i; float f; };\n    int tag;\n};\n")

    assert result.diagnostics == []
    assert _one(result, "Value").payload.members == ["Value::i", "Value::f", "Value::tag"]


def test_variables_functions_and_initializers() -> None:
    result = _parse(
        "extern int declared;\n"
        "static const char *name = \"x\", *other;\n"
        "int (*handler)(int);\n"
        "int f(int a, int b = -5, ...);\n"
        "int g(5);\n"
    )

    assert result.diagnostics == []
    declared = _one(result, "declared")
    assert not declared.is_defined
    assert declared.payload.write_sites == []
    name = _one(result, "name")
    assert name.payload.type_text == "const char*"
    assert len(name.payload.write_sites) == 1
    assert _one(result, "other").payload.write_sites == []
    assert _one(result, "handler").kind == SymbolKind.VARIABLE
    f = _one(result, "f")
    assert f.payload.optional_params == 1
    assert f.payload.is_variadic
    assert f.payload.accepts(1) and f.payload.accepts(7)
    assert not f.payload.accepts(0)
    assert _one(result, "g").kind == SymbolKind.VARIABLE


def test_extern_c_and_template_headers() -> None:
    result = _parse(
        'extern "C" {\n    int c_api(void);\n}\n'
        "template <typename T, int N>\n"
        "struct Array { T items[N]; };\n"
    )

    assert result.diagnostics == []
    assert "c_api" in result.table
    assert "Array::items" in result.table


def test_scope_manager_resolves_innermost_first() -> None:
    scopes = ScopeManager()
    scopes.enter(ScopeKind.NAMESPACE, "outer")
    scopes.enter(ScopeKind.NAMESPACE, "inner")
    scopes.exit()
    scopes.enter(ScopeKind.CLASS, "inner")

    assert scopes.current_qualified_name() == "outer::inner"
    assert scopes.resolve_scope("inner") == "outer::inner"
    assert scopes.resolve_scope("::outer") == "outer"
    assert scopes.resolve_scope("missing") is None

    anonymous = scopes.enter(ScopeKind.NAMESPACE, "")
    assert anonymous.qualified_name == "outer::inner"
    assert scopes.depth == 3
    scopes.exit()
    scopes.exit()
    scopes.exit()
    assert scopes.current_qualified_name() == ""
