"""Tests for integer constant expression evaluation."""

from __future__ import annotations

import pytest

from cxxindex.parsers.base import ConstantExpressionError
from cxxindex.parsers.cpp.const_expr import evaluate, evaluate_or_none, parse_integer_literal
from cxxindex.parsers.cpp.lexer import tokenize


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("-7 / 2", -3),
        ("-7 % 2", -1),
        ("1 << 4 | 1", 17),
        ("3 > 2 && 2 > 3", 0),
        ("0 || !0", 1),
        ("1 ? 10 : 20", 10),
        ("~0", -1),
        ("0x1F + 010 + 0b11", 31 + 8 + 3),
        ("'A' + 1", 66),
        ("10u + 2L", 12),
    ],
)
def test_evaluate(expression: str, expected: int) -> None:
    assert evaluate(tokenize(expression)) == expected


def test_identifiers_use_resolver() -> None:
    values = {"RED": 0, "GREEN": 1}

    assert evaluate(tokenize("GREEN + 1"), values.get) == 2
    assert evaluate(tokenize("UNKNOWN"), lambda _name: 0) == 0
    with pytest.raises(ConstantExpressionError):
        evaluate(tokenize("UNKNOWN"))


@pytest.mark.parametrize("expression", ["", "1 +", "(1", "1 / 0", "1.5", "1 2"])
def test_malformed_expressions(expression: str) -> None:
    with pytest.raises(ConstantExpressionError):
        evaluate(tokenize(expression))
    assert evaluate_or_none(tokenize(expression)) is None


def test_character_literal_escapes() -> None:
    assert parse_integer_literal("'\\n'") == 10
    assert parse_integer_literal("'\\x41'") == 65
    assert parse_integer_literal("1'000") == 1000
