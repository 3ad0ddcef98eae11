"""Tests for macro expansion and directive processing."""

from __future__ import annotations

from typing import List, Optional, Tuple

import pytest

from cxxindex.parsers.base import MacroExpansionOverflow
from cxxindex.parsers.cpp.const_expr import evaluate
from cxxindex.parsers.cpp.lexer import Lexer, Token, TokenKind, join_tokens, tokenize
from cxxindex.parsers.cpp.preprocessor import (
    MacroTable,
    Preprocessor,
    expand_invocation,
    expand_tokens,
)
from cxxindex.runtime.diagnostics import DiagnosticKind, Severity


def _preprocess(
    text: str, macros: Optional[MacroTable] = None, max_depth: int = 64
) -> Tuple[Preprocessor, List[Token]]:
    preprocessor = Preprocessor(macros, max_depth=max_depth)
    tokens = preprocessor.run(Lexer(text, "t.c").tokens())
    return preprocessor, tokens


def test_function_like_macro_expansion() -> None:
    """M(x) = (x)*(x) applied to 5 yields (5)*(5), which evaluates to 25."""

    pp, tokens = _preprocess("#define M(x) (x)*(x)\nM(5)")

    assert join_tokens(tokens) == "(5)*(5)"
    assert evaluate(tokens) == 25
    assert pp.diagnostics == []
    assert len(pp.expansions) == 1
    assert pp.expansions[0].macro_name == "M"
    assert pp.expansions[0].expanded_text == "(5)*(5)"


def test_expanded_tokens_carry_invocation_location() -> None:
    _, tokens = _preprocess("#define ONE 1\n\nint a = ONE;")

    one = tokens[3]
    assert one.text == "1"
    assert one.expanded_from == "ONE"
    assert (one.location.line, one.location.column) == (3, 9)


def test_object_like_and_nested_macros() -> None:
    _, tokens = _preprocess("#define A B\n#define B 7\nint a = A;")

    assert join_tokens(tokens) == "int a=7;"


def test_self_referential_macro_stops() -> None:
    pp, tokens = _preprocess("#define X X + 1\nX")

    assert join_tokens(tokens) == "X+1"
    assert pp.diagnostics == []


def test_mutually_recursive_macros_stop() -> None:
    _, tokens = _preprocess("#define A B\n#define B A\nA")

    assert join_tokens(tokens) == "A"


def test_depth_bound_leaves_token_unexpanded() -> None:
    source = "#define A B\n#define B C\n#define C 1\nA"

    pp, tokens = _preprocess(source, max_depth=2)
    assert join_tokens(tokens) == "A"
    assert [d.kind for d in pp.diagnostics] == [DiagnosticKind.MACRO_EXPANSION_OVERFLOW]

    pp, tokens = _preprocess(source, max_depth=3)
    assert join_tokens(tokens) == "1"
    assert pp.diagnostics == []


def test_expand_invocation_raises_on_overflow() -> None:
    macros = MacroTable()
    macros.define("A", None, "B")
    macros.define("B", None, "A2")
    macros.define("A2", None, "0")

    with pytest.raises(MacroExpansionOverflow):
        expand_invocation(tokenize("A"), 0, macros, max_depth=1)


def test_function_like_name_without_arguments_is_not_expanded() -> None:
    _, tokens = _preprocess("#define F(x) x\nint F;")

    assert join_tokens(tokens) == "int F;"


def test_object_like_macro_with_parenthesized_body() -> None:
    """A space before '(' makes the parenthesis part of the body."""

    _, tokens = _preprocess("#define P (1)\nP")

    assert join_tokens(tokens) == "(1)"


def test_stringify_and_paste() -> None:
    _, tokens = _preprocess(
        "#define S(x) #x\n#define CAT(a, b) a ## b\nS(hello world) CAT(foo, bar)"
    )

    assert tokens[0].text == '"hello world"'
    assert tokens[0].kind == TokenKind.LITERAL
    assert tokens[1].text == "foobar"
    assert tokens[1].kind == TokenKind.IDENTIFIER


def test_variadic_macro() -> None:
    _, tokens = _preprocess("#define V(fmt, ...) f(fmt, __VA_ARGS__)\nV(1, 2, 3)")

    assert join_tokens(tokens) == "f(1,2,3)"


def test_argument_count_mismatch_is_reported() -> None:
    pp, tokens = _preprocess("#define TWO(a, b) a\nTWO(1)")

    assert join_tokens(tokens) == "TWO(1)"
    assert [d.kind for d in pp.diagnostics] == [DiagnosticKind.PREPROCESSOR_ERROR]


def test_conditionals_select_active_regions() -> None:
    source = "\n".join(
        [
            "#define FEATURE 1",
            "#if FEATURE && !defined(OTHER)",
            "int yes;",
            "#else",
            "int no;",
            "#endif",
            "#ifdef OTHER",
            "int other;",
            "#elif FEATURE > 0",
            "int elif_taken;",
            "#endif",
            "#ifndef FEATURE",
            "int hidden;",
            "#endif",
        ]
    )

    pp, tokens = _preprocess(source)

    assert join_tokens(tokens) == "int yes;int elif_taken;"
    assert pp.diagnostics == []


def test_inactive_regions_ignore_directives() -> None:
    pp, tokens = _preprocess("#if 0\n#error hidden\n#define Z 1\n#endif\nZ")

    assert join_tokens(tokens) == "Z"
    assert pp.diagnostics == []


def test_error_and_warning_directives() -> None:
    pp, _ = _preprocess("#error stop here\n#warning careful")

    assert [(d.kind, d.severity) for d in pp.diagnostics] == [
        (DiagnosticKind.PREPROCESSOR_ERROR, Severity.ERROR),
        (DiagnosticKind.PREPROCESSOR_ERROR, Severity.INFO),
    ]
    assert pp.diagnostics[0].message == "#error stop here"


def test_unterminated_conditional_is_reported() -> None:
    pp, tokens = _preprocess("#ifdef X\nint a;")

    assert tokens == []
    assert [d.kind for d in pp.diagnostics] == [DiagnosticKind.PREPROCESSOR_ERROR]


def test_undef_and_includes() -> None:
    pp, tokens = _preprocess(
        '#include "local.h"\n#include <sys/types.h>\n#define A 1\n#undef A\nA'
    )

    assert join_tokens(tokens) == "A"
    assert pp.includes == ["local.h", "sys/types.h"]
    assert [m.name for m in pp.definitions] == ["A"]


def test_predefined_macros_from_signatures() -> None:
    macros = MacroTable()
    macro = macros.define_from_signature("MAX(a, b)", "((a) > (b) ? (a) : (b))")
    macros.define_from_signature("LIMIT", "10")

    assert macro.is_function_like
    assert macro.params == ("a", "b")
    assert join_tokens(expand_tokens(tokenize("MAX(LIMIT, 3)"), macros)) == "((10)>(3)?(10):(3))"
    assert evaluate(expand_tokens(tokenize("MAX(LIMIT, 3)"), macros)) == 10


def test_object_like_macro_naming_function_like_macro_takes_following_arguments() -> None:
    macros = MacroTable()
    macros.define("F", ["x"], "(x+1)")
    macros.define("G", None, "F")

    assert join_tokens(expand_tokens(tokenize("G(2)"), macros)) == "(2+1)"
    assert join_tokens(expand_tokens(tokenize("G"), macros)) == "F"

    pp, tokens = _preprocess("#define F(x) (x+1)\n#define G F\nint v = G(2);")

    assert join_tokens(tokens) == "int v=(2+1);"
    assert [(e.macro_name, e.expanded_text) for e in pp.expansions] == [("G", "(2+1)")]
    assert {t.expanded_from for t in tokens[3:8]} == {"G"}


def test_trailing_call_chains_through_several_macros() -> None:
    _, tokens = _preprocess(
        "#define CALL(f) f\n#define TWICE(x) ((x)*2)\nint v = CALL(TWICE)(3) + 1;"
    )

    assert join_tokens(tokens) == "int v=((3)*2)+1;"


def test_self_named_trailing_call_stays_unexpanded() -> None:
    _, tokens = _preprocess("#define f(x) f\nf(1)(2)")

    assert join_tokens(tokens) == "f(2)"


@pytest.mark.parametrize("wrapped", ["foo", "ID(foo)", "ID(ID(foo))", "ID(ID(ID(foo)))"])
def test_self_reference_survives_argument_rescans(wrapped: str) -> None:
    macros = MacroTable()
    macros.define("foo", None, "foo+1")
    macros.define("ID", ["x"], "x")

    assert join_tokens(expand_tokens(tokenize(wrapped), macros)) == "foo+1"


def test_blocked_self_reference_is_marked_on_the_token() -> None:
    macros = MacroTable()
    macros.define("foo", None, "foo+1")

    first = expand_tokens(tokenize("foo"), macros)

    assert first[0].hidden == frozenset({"foo"})
    assert join_tokens(expand_tokens(first, macros)) == "foo+1"
