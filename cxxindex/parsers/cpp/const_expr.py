"""Integer constant expression evaluation.

Used for ``#if``/``#elif`` conditions and explicit enumerator values. The
evaluator is a precedence-climbing parser over already-expanded tokens with
an operator table, so nothing is ever handed to ``eval``.
"""

from __future__ import annotations

import operator
import re
from typing import Callable, Dict, List, Optional, Sequence

from cxxindex.parsers.base import ConstantExpressionError
from cxxindex.parsers.cpp.lexer import Token, TokenKind

Resolver = Callable[[str], Optional[int]]


def _c_div(left: int, right: int) -> int:
    if right == 0:
        raise ZeroDivisionError
    quotient = abs(left) // abs(right)
    return quotient if (left >= 0) == (right >= 0) else -quotient


def _c_mod(left: int, right: int) -> int:
    return left - right * _c_div(left, right)


_BINARY: Dict[str, Callable[[int, int], int]] = {
    "*": operator.mul,
    "/": _c_div,
    "%": _c_mod,
    "+": operator.add,
    "-": operator.sub,
    "<<": operator.lshift,
    ">>": operator.rshift,
    "<": lambda a, b: int(a < b),
    ">": lambda a, b: int(a > b),
    "<=": lambda a, b: int(a <= b),
    ">=": lambda a, b: int(a >= b),
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "&": operator.and_,
    "^": operator.xor,
    "|": operator.or_,
}

_PRECEDENCE: Dict[str, int] = {
    "||": 1,
    "&&": 2,
    "|": 3,
    "^": 4,
    "&": 5,
    "==": 6, "!=": 6,
    "<": 7, ">": 7, "<=": 7, ">=": 7,
    "<<": 8, ">>": 8,
    "+": 9, "-": 9,
    "*": 10, "/": 10, "%": 10,
}

_UNARY: Dict[str, Callable[[int], int]] = {
    "-": operator.neg,
    "+": operator.pos,
    "~": operator.invert,
    "!": lambda v: int(not v),
}

_INT_RE = re.compile(r"^(0[xX][0-9a-fA-F']+|0[bB][01']+|0[0-7']*|[1-9][0-9']*)[uUlLzZ]*$")
_CHAR_ESCAPES = {"n": 10, "t": 9, "r": 13, "0": 0, "\\": 92, "'": 39, '"': 34, "a": 7, "b": 8, "f": 12, "v": 11}


def parse_integer_literal(text: str) -> int:
    """Parse a C integer or character literal.

    Raises:
        ConstantExpressionError: For floating or malformed literals.
    """
    if text.endswith("'") and "'" in text[:-1]:
        body = text[text.index("'") + 1:-1]
        if body.startswith("\\"):
            escape = body[1:]
            if escape in _CHAR_ESCAPES:
                return _CHAR_ESCAPES[escape]
            if escape.startswith("x"):
                return int(escape[1:], 16)
            if escape.isdigit():
                return int(escape, 8)
        if len(body) == 1:
            return ord(body)
        raise ConstantExpressionError(f"Unsupported character literal {text}")

    match = _INT_RE.match(text)
    if not match:
        raise ConstantExpressionError(f"Not an integer literal: {text}")
    digits = match.group(1).replace("'", "")
    if digits[:2] in ("0x", "0X"):
        return int(digits, 16)
    if digits[:2] in ("0b", "0B"):
        return int(digits[2:], 2)
    if len(digits) > 1 and digits.startswith("0"):
        return int(digits, 8)
    return int(digits)


class _Evaluator:
    def __init__(self, tokens: Sequence[Token], resolve: Resolver) -> None:
        self.tokens = [t for t in tokens if t.kind != TokenKind.COMMENT]
        self.pos = 0
        self.resolve = resolve

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise ConstantExpressionError("Unexpected end of constant expression")
        self.pos += 1
        return token

    def _expect(self, text: str) -> None:
        token = self._next()
        if token.text != text:
            raise ConstantExpressionError(
                f"Expected '{text}' but found '{token.text}'", token.location
            )

    def run(self) -> int:
        value = self.conditional()
        token = self._peek()
        if token is not None:
            raise ConstantExpressionError(
                f"Unexpected token '{token.text}' in constant expression",
                token.location,
            )
        return value

    def conditional(self) -> int:
        condition = self.binary(1)
        token = self._peek()
        if token is not None and token.text == "?":
            self.pos += 1
            when_true = self.conditional()
            self._expect(":")
            when_false = self.conditional()
            return when_true if condition else when_false
        return condition

    def binary(self, min_prec: int) -> int:
        left = self.unary()
        while True:
            token = self._peek()
            if token is None or token.kind != TokenKind.PUNCTUATOR:
                return left
            prec = _PRECEDENCE.get(token.text)
            if prec is None or prec < min_prec:
                return left
            self.pos += 1
            right = self.binary(prec + 1)
            if token.text == "&&":
                left = int(bool(left) and bool(right))
            elif token.text == "||":
                left = int(bool(left) or bool(right))
            else:
                try:
                    left = _BINARY[token.text](left, right)
                except (ZeroDivisionError, ValueError) as exc:
                    raise ConstantExpressionError(
                        f"Invalid operation '{token.text}' in constant expression",
                        token.location,
                    ) from exc

    def unary(self) -> int:
        token = self._next()
        if token.text in _UNARY and token.kind == TokenKind.PUNCTUATOR:
            return _UNARY[token.text](self.unary())
        if token.text == "(":
            value = self.conditional()
            self._expect(")")
            return value
        if token.kind == TokenKind.LITERAL:
            return parse_integer_literal(token.text)
        if token.text in ("true", "false"):
            return int(token.text == "true")
        if token.kind in (TokenKind.IDENTIFIER, TokenKind.KEYWORD):
            value = self.resolve(token.text)
            if value is None:
                raise ConstantExpressionError(
                    f"'{token.text}' is not a constant", token.location
                )
            return value
        raise ConstantExpressionError(
            f"Unexpected token '{token.text}' in constant expression",
            token.location,
        )


def evaluate(tokens: Sequence[Token], resolve: Optional[Resolver] = None) -> int:
    """Evaluate an integer constant expression.

    Args:
        tokens: Expression tokens (macro-expanded by the caller).
        resolve: Maps a remaining identifier to its value, or None when it
            is not a known constant. Defaults to rejecting every identifier.

    Returns:
        The expression's value.

    Raises:
        ConstantExpressionError: If the expression is malformed or refers to
            an unknown name.
    """
    if not tokens:
        raise ConstantExpressionError("Empty constant expression")
    evaluator = _Evaluator(tokens, resolve or (lambda _name: None))
    return evaluator.run()


def evaluate_or_none(tokens: Sequence[Token], resolve: Optional[Resolver] = None) -> Optional[int]:
    try:
        return evaluate(tokens, resolve)
    except ConstantExpressionError:
        return None


__all__: List[str] = ["evaluate", "evaluate_or_none", "parse_integer_literal"]
