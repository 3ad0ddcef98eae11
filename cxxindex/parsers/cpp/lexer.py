"""Tokenization of C and C++ source text.

The lexer turns raw text into a lazy stream of ``Token`` records. Comments and
whitespace are consumed without being emitted; preprocessor directive lines
are folded into a single ``DIRECTIVE`` token whose ``parts`` carry the
directive's own tokens so the preprocessor never has to re-lex them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import FrozenSet, Iterable, Iterator, List, Optional, Tuple

from cxxindex.graph.schema import SourceLocation
from cxxindex.parsers.base import LexicalError
from cxxindex.runtime.diagnostics import Diagnostic

logger = logging.getLogger("cxxindex.parsers.cpp.lexer")


class TokenKind(str, Enum):
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    PUNCTUATOR = "punctuator"
    LITERAL = "literal"
    COMMENT = "comment"
    DIRECTIVE = "directive"


@dataclass(frozen=True)
class Token:
    """A lexical token.

    Attributes:
        kind: Token class.
        text: Raw token text.
        location: Where the token starts. Tokens produced by macro expansion
            carry the location of the invocation.
        expanded_from: Name of the macro whose expansion produced the token.
        parts: For ``DIRECTIVE`` tokens, the tokens following the ``#``.
        hidden: Macro names this token may no longer invoke. Set when the
            token names a macro that was already being expanded, and kept
            through every later rescan.
    """

    kind: TokenKind
    text: str
    location: SourceLocation
    expanded_from: Optional[str] = None
    parts: Tuple["Token", ...] = ()
    hidden: FrozenSet[str] = field(default=frozenset(), compare=False)

    @property
    def is_word(self) -> bool:
        return self.kind in (TokenKind.IDENTIFIER, TokenKind.KEYWORD, TokenKind.LITERAL)

    def relocated(self, location: SourceLocation, macro: str) -> "Token":
        return replace(self, location=location, expanded_from=macro)

    def __repr__(self) -> str:
        return f"Token({self.kind.value}, {self.text!r}, {self.location})"


KEYWORDS = frozenset(
    {
        "alignas", "alignof", "asm", "auto", "bool", "break", "case", "catch",
        "char", "char8_t", "char16_t", "char32_t", "class", "concept", "const",
        "consteval", "constexpr", "constinit", "const_cast", "continue",
        "co_await", "co_return", "co_yield", "decltype", "default", "delete",
        "do", "double", "dynamic_cast", "else", "enum", "explicit", "export",
        "extern", "false", "float", "for", "friend", "goto", "if", "inline",
        "int", "long", "mutable", "namespace", "new", "noexcept", "nullptr",
        "operator", "private", "protected", "public", "register",
        "reinterpret_cast", "requires", "restrict", "return", "short",
        "signed", "sizeof", "static", "static_assert", "static_cast", "struct",
        "switch", "template", "this", "thread_local", "throw", "true", "try",
        "typedef", "typeid", "typename", "union", "unsigned", "using",
        "virtual", "void", "volatile", "wchar_t", "while",
        "_Alignas", "_Alignof", "_Atomic", "_Bool", "_Complex", "_Generic",
        "_Noreturn", "_Static_assert", "_Thread_local",
    }
)

# Longest first so the alternation below is a longest-match scan.
PUNCTUATORS = sorted(
    [
        "...", "<<=", ">>=", "->*", "<=>",
        "::", "->", "++", "--", "<<", ">>", "<=", ">=", "==", "!=", "&&",
        "||", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "##", ".*",
        "{", "}", "[", "]", "(", ")", "<", ">", ";", ":", ",", ".", "?",
        "+", "-", "*", "/", "%", "^", "&", "|", "~", "!", "=", "#",
    ],
    key=len,
    reverse=True,
)

_PREFIX = r"(?:u8|u|U|L)?"

TOKEN_RE = re.compile(
    r"""
    (?P<splice>\\\r?\n)                                   # line continuation
    |(?P<newline>\r?\n)
    |(?P<ws>[ \t\f\v\r]+)
    |(?P<line_comment>//[^\n]*)
    |(?P<block_comment>/\*.*?\*/)
    |(?P<open_comment>/\*)                                # unterminated
    |(?P<raw_string>"""
    + _PREFIX
    + r"""R"(?P<delim>[^\s()\\]{0,16})\(.*?\)(?P=delim)")
    |(?P<string>"""
    + _PREFIX
    + r""""(?:\\.|[^"\\\n])*")
    |(?P<char>"""
    + _PREFIX
    + r"""'(?:\\.|[^'\\\n])+')
    |(?P<open_quote>"""
    + _PREFIX
    + r"""["'])                                          # unterminated
    |(?P<number>\.?\d(?:[eEpP][+-]|[\w.'])*)
    |(?P<identifier>[^\W\d]\w*)
    |(?P<punct>"""
    + "|".join(re.escape(p) for p in PUNCTUATORS)
    + r""")
    """,
    re.VERBOSE | re.DOTALL,
)

_LITERAL_GROUPS = {"raw_string", "string", "char", "number"}


class Lexer:
    """Lazy, restartable tokenizer for one unit.

    Usage:
        lexer = Lexer(text, "basic.c")
        for token in lexer.tokens():
            ...
        lexer.diagnostics  # LexicalError records of the last pass

    Args:
        text: Source text.
        file: File name recorded in token locations.
        start_line: Line number of the first line of ``text``.
    """

    def __init__(self, text: str, file: str, start_line: int = 1) -> None:
        self.text = text
        self.file = file
        self.start_line = start_line
        self.diagnostics: List[Diagnostic] = []

    def tokens(self) -> Iterator[Token]:
        """Return a fresh token generator; each call restarts from the top."""
        return self._scan()

    def _loc(self, line: int, column: int) -> SourceLocation:
        return SourceLocation(self.file, line, column)

    def _scan(self) -> Iterator[Token]:
        self.diagnostics = []
        text = self.text
        end = len(text)
        pos = 0
        line = self.start_line
        line_start = 0
        at_line_start = True
        directive: Optional[List[Token]] = None
        directive_loc: Optional[SourceLocation] = None

        while pos < end:
            column = pos - line_start + 1
            try:
                match = self._match(pos, line, column)
            except LexicalError as exc:
                self.diagnostics.append(exc.to_diagnostic())
                logger.debug("Lexical error in %s: %s", self.file, exc.message)
                # Resume at the next line boundary; the newline itself is
                # scanned normally so directives still terminate.
                newline = text.find("\n", pos)
                pos = end if newline < 0 else newline
                continue

            group = match.lastgroup
            value = match.group(group)
            start_line, start_col = line, column

            newlines = value.count("\n")
            if newlines:
                line += newlines
                line_start = match.start() + value.rfind("\n") + 1
            pos = match.end()

            if group == "newline":
                at_line_start = True
                if directive is not None:
                    yield self._directive(directive, directive_loc)
                    directive = None
                continue
            if group in ("ws", "splice", "line_comment", "block_comment"):
                continue

            location = self._loc(start_line, start_col)
            if group == "identifier":
                kind = TokenKind.KEYWORD if value in KEYWORDS else TokenKind.IDENTIFIER
            elif group in _LITERAL_GROUPS:
                kind = TokenKind.LITERAL
            else:
                kind = TokenKind.PUNCTUATOR

            if at_line_start and directive is None and value == "#":
                directive = []
                directive_loc = location
                at_line_start = False
                continue
            at_line_start = False

            token = Token(kind, value, location)
            if directive is not None:
                directive.append(token)
            else:
                yield token

        if directive is not None:
            yield self._directive(directive, directive_loc)

    def _match(self, pos: int, line: int, column: int) -> "re.Match[str]":
        match = TOKEN_RE.match(self.text, pos)
        location = self._loc(line, column)
        if match is None:
            raise LexicalError(
                f"Invalid character {self.text[pos]!r}", location
            )
        group = match.lastgroup
        if group == "open_comment":
            raise LexicalError("Unterminated block comment", location)
        if group == "open_quote":
            what = "character" if match.group(group).endswith("'") else "string"
            raise LexicalError(f"Unterminated {what} literal", location)
        return match

    @staticmethod
    def _directive(parts: List[Token], location: SourceLocation) -> Token:
        text = "#" + join_tokens(parts)
        return Token(TokenKind.DIRECTIVE, text, location, parts=tuple(parts))


def tokenize(text: str, file: str = "<string>") -> List[Token]:
    """Tokenize ``text`` eagerly, discarding diagnostics."""
    return list(Lexer(text, file).tokens())


def join_tokens(tokens: Iterable[Token]) -> str:
    """Render tokens as text, spacing only between word-like tokens.

    ``( ( 5 ) * ( 5 ) )`` renders as ``((5)*(5))`` while ``unsigned int``
    keeps its separating space.
    """
    out: List[str] = []
    previous: Optional[Token] = None
    for token in tokens:
        if previous is not None and previous.is_word and token.is_word:
            out.append(" ")
        out.append(token.text)
        previous = token
    return "".join(out)
