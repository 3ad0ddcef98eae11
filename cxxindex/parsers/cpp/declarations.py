"""Scope-aware recursive-descent declaration parser.

The parser recognizes declarations and definitions in an expanded token
stream without building an expression AST. Function bodies are treated as
opaque token spans and handed back as ``FunctionBody`` records for the body
scanner. Anything the grammar cannot classify produces one syntax
diagnostic and parsing resumes at the next top-level ``;``, ``{`` block or
``}``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from cxxindex.graph.schema import (
    Access,
    BaseSpec,
    ClassInfo,
    EnumInfo,
    EnumeratorInfo,
    FieldInfo,
    FunctionInfo,
    ScopeKind,
    SourceLocation,
    Symbol,
    SymbolKind,
    TypedefInfo,
    VariableInfo,
    qualify,
    split_qualified,
)
from cxxindex.graph.symbol_table import SymbolTable
from cxxindex.parsers.base import DeclarationSyntaxError, RecoverableError
from cxxindex.parsers.cpp.const_expr import evaluate_or_none
from cxxindex.parsers.cpp.lexer import Token, TokenKind, join_tokens
from cxxindex.parsers.cpp.scopes import ScopeManager
from cxxindex.runtime.diagnostics import Diagnostic

logger = logging.getLogger("cxxindex.parsers.cpp.declarations")

STORAGE_SPECIFIERS = frozenset(
    {
        "static", "extern", "inline", "virtual", "explicit", "constexpr",
        "consteval", "constinit", "thread_local", "_Thread_local", "register",
        "mutable", "_Noreturn", "__inline", "__inline__", "__forceinline",
    }
)
CV_QUALIFIERS = frozenset(
    {"const", "volatile", "restrict", "__restrict", "__restrict__", "_Atomic"}
)
BUILTIN_TYPES = frozenset(
    {
        "void", "char", "char8_t", "char16_t", "char32_t", "wchar_t", "short",
        "int", "long", "float", "double", "signed", "unsigned", "bool", "_Bool",
        "_Complex", "auto", "__int128",
    }
)
CLASS_KEYS = {
    "struct": SymbolKind.STRUCT,
    "class": SymbolKind.CLASS,
    "union": SymbolKind.UNION,
}
ACCESS_LABELS = {
    "public": Access.PUBLIC,
    "protected": Access.PROTECTED,
    "private": Access.PRIVATE,
}
# Identifiers followed by a parenthesized group that carries no declaration.
ATTRIBUTE_CALLS = frozenset(
    {"__attribute__", "__declspec", "alignas", "_Alignas", "__asm__", "__asm"}
)
_INITIALIZER_WORDS = frozenset({"this", "nullptr", "true", "false", "new", "sizeof"})
_OPENERS = {"(": ")", "[": "]", "{": "}"}


@dataclass
class FunctionBody:
    """Opaque body span of a function definition.

    Attributes:
        symbol: The function's symbol in the unit table.
        scope: Qualified name lookups in the body start from.
        owning_class: Class of a method, else None.
        params: ``(name, type)`` of each named parameter.
        tokens: Tokens between the braces.
        start: Location of the opening brace.
        end: Location of the closing brace (last token when unterminated).
    """

    symbol: Symbol
    scope: str
    owning_class: Optional[str]
    params: List[Tuple[str, str]]
    tokens: List[Token]
    start: SourceLocation
    end: SourceLocation

    def contains(self, location: SourceLocation) -> bool:
        return location.file == self.start.file and self.start <= location <= self.end


@dataclass
class _Specifiers:
    type_tokens: List[Token] = field(default_factory=list)
    flags: Set[str] = field(default_factory=set)
    has_type: bool = False
    tag: Optional[Symbol] = None
    # (kind, name, name token, payload) of an elaborated ``struct X`` reference
    tag_ref: Optional[Tuple[SymbolKind, str, Token, object]] = None


@dataclass
class _Declarator:
    name: str = ""
    name_token: Optional[Token] = None
    ptr_tokens: List[Token] = field(default_factory=list)
    suffix_tokens: List[Token] = field(default_factory=list)
    is_function: bool = False
    params: Tuple[str, ...] = ()
    param_decls: List[Tuple[str, str]] = field(default_factory=list)
    optional_params: int = 0
    is_variadic: bool = False
    is_const: bool = False
    is_override: bool = False
    is_final: bool = False
    is_pure: bool = False
    is_defaulted: bool = False
    trailing_return: Optional[str] = None
    body: Optional[Tuple[int, int]] = None
    has_initializer: bool = False


@dataclass
class _ClassContext:
    symbol: Symbol
    access: Access


def _is_type_word(token: Token) -> bool:
    return token.kind == TokenKind.IDENTIFIER or token.text in BUILTIN_TYPES


def split_parameter(tokens: Sequence[Token]) -> Tuple[str, Optional[str], bool]:
    """Split one parameter into type text, name and whether it has a default.

    ``const char* name = "x"`` -> ``("const char*", "name", True)``;
    ``int (*cb)(int)`` -> ``("int(*)(int)", "cb", False)``.
    """
    tokens = list(tokens)
    has_default = False
    depth = 0
    for index, token in enumerate(tokens):
        if token.text in _OPENERS:
            depth += 1
        elif token.text in (")", "]", "}"):
            depth -= 1
        elif token.text == "=" and depth == 0:
            tokens = tokens[:index]
            has_default = True
            break

    name_index: Optional[int] = None
    for index, token in enumerate(tokens):
        if token.kind != TokenKind.IDENTIFIER:
            continue
        following = tokens[index + 1].text if index + 1 < len(tokens) else ""
        if following not in ("", "[", ")"):
            continue
        if index and tokens[index - 1].text == "::":
            continue
        if any(_is_type_word(t) for t in tokens[:index]):
            name_index = index

    kept = [
        t for i, t in enumerate(tokens)
        if i != name_index and t.text != "register"
    ]
    name = tokens[name_index].text if name_index is not None else None
    return join_tokens(kept), name, has_default


class DeclarationParser:
    """Parses one unit's expanded tokens into a unit-local symbol table.

    Usage:
        parser = DeclarationParser(tokens, table)
        parser.parse()
        parser.bodies       # function body spans for the body scanner
        parser.diagnostics  # SyntaxError records

    Args:
        tokens: Expanded tokens with directives removed.
        table: Unit-local symbol table to declare into.
        scopes: Scope manager; defaults to one over ``table.scopes``.
    """

    def __init__(
        self,
        tokens: Sequence[Token],
        table: SymbolTable,
        scopes: Optional[ScopeManager] = None,
    ) -> None:
        self.tokens: List[Token] = list(tokens)
        self.table = table
        self.scopes = scopes or ScopeManager(table.scopes)
        self.pos = 0
        self.diagnostics: List[Diagnostic] = []
        self.bodies: List[FunctionBody] = []
        self._classes: List[_ClassContext] = []
        self._constants: Dict[str, int] = {}
        self._eof_reported = False

    def parse(self) -> SymbolTable:
        self._parse_items(closing=False)
        logger.debug(
            "Parsed %d tokens into %d symbols (%d bodies, %d diagnostics)",
            len(self.tokens),
            len(self.table),
            len(self.bodies),
            len(self.diagnostics),
        )
        return self.table

    # -- token helpers ------------------------------------------------------

    def _at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def _peek(self, offset: int = 0) -> Optional[Token]:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def _peek_text(self, offset: int = 0) -> str:
        token = self._peek(offset)
        return token.text if token is not None else ""

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise self._error("Unexpected end of input")
        self.pos += 1
        return token

    def _expect(self, text: str) -> Token:
        token = self._peek()
        if token is None or token.text != text:
            found = token.text if token is not None else "end of input"
            raise self._error(f"Expected '{text}' but found '{found}'", token)
        self.pos += 1
        return token

    def _error(self, message: str, token: Optional[Token] = None) -> DeclarationSyntaxError:
        if token is None:
            token = self._peek() or (self.tokens[-1] if self.tokens else None)
        return DeclarationSyntaxError(message, token.location if token else None)

    def _report(self, error: RecoverableError) -> None:
        # Everything that fails because input ran out is one diagnostic.
        if self._at_end():
            if self._eof_reported:
                return
            self._eof_reported = True
        self.diagnostics.append(error.to_diagnostic())
        logger.debug("Syntax error at %s: %s", error.location, error.message)

    def _skip_group(self) -> int:
        """Skip a balanced bracket group starting at the current token.

        Returns:
            Index of the closing token, or ``len(tokens)`` when unterminated.
        """
        open_token = self._advance()
        closer = _OPENERS[open_token.text]
        depth = 1
        while not self._at_end():
            text = self.tokens[self.pos].text
            if text == open_token.text:
                depth += 1
            elif text == closer:
                depth -= 1
                if depth == 0:
                    close = self.pos
                    self.pos += 1
                    return close
            self.pos += 1
        self._report(self._error(f"Unterminated '{open_token.text}'", open_token))
        return len(self.tokens)

    def _skip_angles(self) -> None:
        depth = 0
        while not self._at_end():
            text = self._peek_text()
            if text in ("(", "["):
                self._skip_group()
                continue
            self.pos += 1
            if text == "<":
                depth += 1
            elif text == ">":
                depth -= 1
            elif text == ">>":
                depth -= 2
            if depth <= 0:
                return
        raise self._error("Unterminated template argument list")

    def _skip_attributes(self) -> bool:
        skipped = False
        while True:
            text = self._peek_text()
            if text == "[" and self._peek_text(1) == "[":
                self._skip_group()
            elif text in ATTRIBUTE_CALLS and self._peek_text(1) == "(":
                self.pos += 1
                self._skip_group()
            elif text == "__extension__":
                self.pos += 1
            else:
                return skipped
            skipped = True

    def _skip_to_boundary(self) -> None:
        """Skip to just past the next top-level ``;`` or ``{}`` block."""
        depth = 0
        while not self._at_end():
            text = self._peek_text()
            if text in ("(", "["):
                depth += 1
            elif text in (")", "]"):
                depth = max(0, depth - 1)
            elif text == ";" and depth == 0:
                self.pos += 1
                return
            elif text == "{":
                self._skip_group()
                if self._peek_text() == ";":
                    self.pos += 1
                return
            elif text == "}":
                return
            self.pos += 1

    # -- items --------------------------------------------------------------

    def _parse_items(self, closing: bool) -> bool:
        """Parse declarations until ``}`` (not consumed) or end of input.

        Returns:
            True if a closing brace was reached.
        """
        while not self._at_end():
            token = self.tokens[self.pos]
            if token.text == "}":
                if closing:
                    return True
                self._report(self._error("Unmatched '}'", token))
                self.pos += 1
                continue
            start = self.pos
            try:
                self._parse_item()
            except DeclarationSyntaxError as exc:
                self._report(exc)
                self.pos = max(self.pos, start)
                self._skip_to_boundary()
                if self.pos == start:
                    self.pos += 1
        return False

    def _parse_item(self) -> None:
        token = self.tokens[self.pos]
        text = token.text
        if text == ";":
            self.pos += 1
        elif text == "namespace" or (text == "inline" and self._peek_text(1) == "namespace"):
            self._parse_namespace()
        elif text == "extern" and self._peek(1) is not None and self._peek_text(1).startswith('"'):
            self._parse_linkage_block()
        elif text == "template":
            self.pos += 1
            if self._peek_text() == "<":
                self._skip_angles()
            if self._at_end():
                raise self._error("Expected declaration after template header")
            self._parse_item()
        elif text == "using":
            self._parse_using()
        elif text == "typedef":
            self._parse_typedef()
        elif text in ("static_assert", "_Static_assert", "friend", "asm", "__asm__"):
            self._skip_to_boundary()
        elif text in ACCESS_LABELS and self._peek_text(1) == ":" and self._classes:
            self._classes[-1].access = ACCESS_LABELS[text]
            self.pos += 2
        else:
            self._parse_declaration()

    def _parse_namespace(self) -> None:
        if self._peek_text() == "inline":
            self.pos += 1
        keyword = self._expect("namespace")
        self._skip_attributes()
        names: List[Token] = []
        while self._peek() is not None and self._peek().kind == TokenKind.IDENTIFIER:
            names.append(self._advance())
            if self._peek_text() != "::":
                break
            self.pos += 1
            if self._peek_text() == "inline":
                self.pos += 1
        self._skip_attributes()
        if self._peek_text() == "=":
            self._skip_to_boundary()
            return
        self._expect("{")

        for name_token in names:
            parent = self.scopes.current_qualified_name()
            scope = self.scopes.enter(ScopeKind.NAMESPACE, name_token.text)
            location = name_token.location
            self._add(
                Symbol(scope.qualified_name, SymbolKind.NAMESPACE, parent, [location], [location])
            )
        if not names:
            self.scopes.enter(ScopeKind.NAMESPACE, "")
        try:
            closed = self._parse_items(closing=True)
        finally:
            for _ in range(max(1, len(names))):
                self.scopes.exit()
        if closed:
            self.pos += 1
        else:
            label = "::".join(t.text for t in names) or "(anonymous)"
            self._report(self._error(f"Unterminated namespace {label}", keyword))

    def _parse_linkage_block(self) -> None:
        self.pos += 2
        if self._peek_text() != "{":
            self._parse_item()
            return
        opening = self._advance()
        if self._parse_items(closing=True):
            self.pos += 1
        else:
            self._report(self._error("Unterminated linkage specification", opening))

    def _parse_using(self) -> None:
        self._expect("using")
        token = self._peek()
        if token is None or token.kind != TokenKind.IDENTIFIER:
            self._skip_to_boundary()
            return
        save = self.pos
        self.pos += 1
        self._skip_attributes()
        if self._peek_text() != "=":
            # using-declaration (``using Base::f;``)
            self.pos = save
            self._skip_to_boundary()
            return
        self.pos += 1
        start = self.pos
        depth = 0
        while not self._at_end() and not (self._peek_text() == ";" and depth == 0):
            text = self._peek_text()
            if text in ("(", "[", "{", "<"):
                depth += 1
            elif text in (")", "]", "}", ">"):
                depth -= 1
            self.pos += 1
        aliased = join_tokens(self.tokens[start:self.pos])
        self._expect(";")
        self._declare_typedef(token, token.text, aliased, None)

    def _parse_typedef(self) -> None:
        self._expect("typedef")
        specs = self._parse_specifiers(typedef=True)
        target = specs.tag.qualified_name if specs.tag is not None else None
        if target is None and specs.tag_ref is not None:
            target = self._resolve_declared_name(specs.tag_ref[1])[1]
        while True:
            decl = self._parse_declarator(specs, in_typedef=True)
            if decl.is_function:
                aliased = (
                    self._type_text(specs, decl.ptr_tokens)
                    + "(" + ",".join(decl.params) + ")"
                )
            else:
                aliased = self._type_text(specs, decl.ptr_tokens, decl.suffix_tokens)
            self._declare_typedef(decl.name_token, decl.name, aliased, target)
            if self._peek_text() == ",":
                self.pos += 1
                continue
            self._expect(";")
            return

    def _declare_typedef(self, token: Token, name: str, aliased: str, target: Optional[str]) -> None:
        scope, qualified = self._resolve_declared_name(name)
        location = token.location
        self._add(
            Symbol(
                qualified,
                SymbolKind.TYPEDEF,
                scope,
                [location],
                [location],
                TypedefInfo(aliased_type=aliased, target=target),
            )
        )
        self._add_member(qualified)

    # -- declarations -------------------------------------------------------

    def _parse_declaration(self) -> None:
        specs = self._parse_specifiers()
        if self._peek_text() == ";":
            self.pos += 1
            if specs.tag_ref is not None:
                self._declare_tag_reference(specs.tag_ref)
            return
        if self._at_end():
            raise self._error("Unexpected end of input in declaration")
        while True:
            decl = self._parse_declarator(specs)
            if decl.is_function:
                self._declare_function(specs, decl)
            else:
                self._declare_variable(specs, decl)
            if decl.body is not None:
                return
            text = self._peek_text()
            if text == ",":
                self.pos += 1
                continue
            if text == ";":
                self.pos += 1
                return
            raise self._error(f"Expected ';' after declaration of {decl.name}")

    def _parse_specifiers(self, typedef: bool = False) -> _Specifiers:
        specs = _Specifiers()
        while not self._at_end():
            if self._skip_attributes():
                continue
            token = self.tokens[self.pos]
            text = token.text
            if text in STORAGE_SPECIFIERS:
                specs.flags.add(text)
                self.pos += 1
            elif text in CV_QUALIFIERS:
                specs.type_tokens.append(token)
                self.pos += 1
            elif text in BUILTIN_TYPES:
                specs.type_tokens.append(token)
                specs.has_type = True
                self.pos += 1
            elif text in CLASS_KEYS or text == "enum":
                if specs.has_type:
                    break
                self._parse_tag_specifier(specs, typedef)
                specs.has_type = True
            elif text in ("decltype", "typeof", "__typeof__") and self._peek_text(1) == "(":
                start = self.pos
                self.pos += 1
                self._skip_group()
                specs.type_tokens.extend(self.tokens[start:self.pos])
                specs.has_type = True
            elif text == "typename":
                self.pos += 1
            elif not specs.has_type and (token.kind == TokenKind.IDENTIFIER or text == "::"):
                if self._starts_declarator():
                    break
                start = self.pos
                self._parse_qualified_name()
                specs.type_tokens.extend(self.tokens[start:self.pos])
                specs.has_type = True
            else:
                break
        return specs

    def _starts_declarator(self) -> bool:
        """Whether a name at the current position is a constructor-like declarator."""
        save = self.pos
        try:
            self._parse_qualified_name()
            return self._peek_text() == "("
        except DeclarationSyntaxError:
            return False
        finally:
            self.pos = save

    def _parse_qualified_name(self) -> Tuple[str, Token]:
        """Parse ``[::] A [<...>] :: B ... :: (name | ~name | operator op)``.

        Template arguments are consumed but left out of the returned name.

        Returns:
            (name text, token that carries the last component's location)
        """
        parts: List[str] = []
        prefix = ""
        if self._peek_text() == "::":
            prefix = "::"
            self.pos += 1
        while True:
            if self._peek_text() == "template":
                self.pos += 1
            token = self._peek()
            if token is None:
                raise self._error("Expected a name")
            if token.text == "~" and self._peek(1) is not None and self._peek(1).kind == TokenKind.IDENTIFIER:
                self.pos += 2
                parts.append("~" + self.tokens[self.pos - 1].text)
                last = token
            elif token.text == "operator":
                parts.append(self._parse_operator_name())
                last = token
                break
            elif token.kind == TokenKind.IDENTIFIER:
                self.pos += 1
                parts.append(token.text)
                last = token
                if self._peek_text() == "<":
                    self._skip_angles()
            else:
                raise self._error(f"Expected a name but found '{token.text}'", token)
            following = self._peek(1)
            if (
                self._peek_text() == "::"
                and following is not None
                and (following.kind == TokenKind.IDENTIFIER or following.text in ("~", "operator", "template"))
            ):
                self.pos += 1
                continue
            break
        return prefix + "::".join(parts), last

    def _parse_operator_name(self) -> str:
        self._expect("operator")
        token = self._advance()
        text = token.text
        if text in ("(", "[") and self._peek_text() == _OPENERS[text]:
            self.pos += 1
            return f"operator{text}{_OPENERS[text]}"
        if text in ("new", "delete"):
            if self._peek_text() == "[" and self._peek_text(1) == "]":
                self.pos += 2
                return f"operator {text}[]"
            return f"operator {text}"
        if token.kind == TokenKind.PUNCTUATOR:
            return f"operator{text}"
        if text == '""' and self._peek() is not None:
            return f'operator""{self._advance().text}'
        # conversion function: ``operator const char*``
        start = self.pos - 1
        while not self._at_end() and self._peek_text() != "(":
            self.pos += 1
        return "operator " + join_tokens(self.tokens[start:self.pos])

    def _parse_ptr_operators(self) -> List[Token]:
        tokens: List[Token] = []
        while not self._at_end():
            if self._skip_attributes():
                continue
            token = self.tokens[self.pos]
            if token.text in ("*", "&", "&&", "^") or (tokens and token.text in CV_QUALIFIERS):
                tokens.append(token)
                self.pos += 1
            else:
                break
        return tokens

    # -- tags ---------------------------------------------------------------

    def _parse_tag_specifier(self, specs: _Specifiers, typedef: bool) -> None:
        key = self._advance()
        if key.text == "enum":
            self._parse_enum(specs, key, typedef)
            return
        kind = CLASS_KEYS[key.text]
        self._skip_attributes()
        name: Optional[str] = None
        name_token: Optional[Token] = None
        start = self.pos
        if self._peek() is not None and (self._peek().kind == TokenKind.IDENTIFIER or self._peek_text() == "::"):
            name, name_token = self._parse_qualified_name()
        name_tokens = self.tokens[start:self.pos]
        if self._peek_text() == "final":
            self.pos += 1
        self._skip_attributes()

        if self._peek_text() not in (":", "{"):
            if name is None:
                raise self._error(f"Expected a name after '{key.text}'", key)
            specs.type_tokens.extend([key, *name_tokens])
            specs.tag_ref = (kind, name, name_token, ClassInfo())
            return

        bases = self._parse_base_clause(kind) if self._peek_text() == ":" else []
        if self._peek_text() != "{":
            raise self._error(f"Expected class body for {name or key.text}")

        anonymous = name is None
        if anonymous and typedef:
            name = self._typedef_name_ahead()
        if name is None:
            specs.type_tokens.extend([key, Token(TokenKind.LITERAL, "{...}", key.location)])
            if self._current_class() is not None:
                # Anonymous struct/union members belong to the enclosing class.
                opening = self._advance()
                self.scopes.enter(ScopeKind.CLASS, "")
                try:
                    closed = self._parse_items(closing=True)
                finally:
                    self.scopes.exit()
                if closed:
                    self.pos += 1
                else:
                    self._report(self._error(f"Unterminated anonymous {key.text}", opening))
            else:
                self._skip_group()
            return

        if anonymous:
            specs.type_tokens.extend([key, Token(TokenKind.LITERAL, "{...}", key.location)])
        else:
            specs.type_tokens.extend([key, *name_tokens])
        specs.tag = self._define_class(kind, name, name_token or key, bases, anonymous)

    def _typedef_name_ahead(self) -> Optional[str]:
        """Name given by ``typedef struct {...} Name;`` to its anonymous tag."""
        depth = 0
        index = self.pos
        while index < len(self.tokens):
            text = self.tokens[index].text
            if text == "{":
                depth += 1
            elif text == "}":
                depth -= 1
                if depth == 0:
                    break
            index += 1
        index += 1
        while index < len(self.tokens) and self.tokens[index].text in ("*", "&", *CV_QUALIFIERS):
            index += 1
        if index < len(self.tokens) and self.tokens[index].kind == TokenKind.IDENTIFIER:
            return self.tokens[index].text
        return None

    def _parse_base_clause(self, kind: SymbolKind) -> List[BaseSpec]:
        self._expect(":")
        default = Access.PRIVATE if kind == SymbolKind.CLASS else Access.PUBLIC
        bases: List[BaseSpec] = []
        while True:
            access = default
            is_virtual = False
            self._skip_attributes()
            while self._peek_text() in ACCESS_LABELS or self._peek_text() == "virtual":
                text = self._advance().text
                if text == "virtual":
                    is_virtual = True
                else:
                    access = ACCESS_LABELS[text]
            name, _ = self._parse_qualified_name()
            if self._peek_text() == "...":
                self.pos += 1
            bases.append(BaseSpec(name, access, is_virtual))
            if self._peek_text() != ",":
                return bases
            self.pos += 1

    def _define_class(
        self,
        kind: SymbolKind,
        name: str,
        name_token: Token,
        bases: List[BaseSpec],
        anonymous: bool,
    ) -> Symbol:
        scope, qualified = self._resolve_declared_name(name)
        location = name_token.location
        symbol = self._add(
            Symbol(
                qualified,
                kind,
                scope,
                [location],
                [location],
                ClassInfo(bases=list(bases), is_anonymous=anonymous),
            )
        )
        self._add_member(symbol.qualified_name)

        opening = self._expect("{")
        self.scopes.enter_qualified(ScopeKind.CLASS, symbol.qualified_name)
        default = Access.PRIVATE if kind == SymbolKind.CLASS else Access.PUBLIC
        self._classes.append(_ClassContext(symbol, default))
        try:
            closed = self._parse_items(closing=True)
        finally:
            self._classes.pop()
            self.scopes.exit()
        if closed:
            self.pos += 1
        else:
            self._report(self._error(f"Unterminated body of {kind.value} {qualified}", opening))
        return symbol

    def _declare_tag_reference(self, tag_ref: Tuple[SymbolKind, str, Token, object]) -> None:
        kind, name, token, payload = tag_ref
        scope, qualified = self._resolve_declared_name(name)
        self._add(Symbol(qualified, kind, scope, [token.location], [], payload))
        self._add_member(qualified)

    def _parse_enum(self, specs: _Specifiers, key: Token, typedef: bool) -> None:
        scoped = False
        if self._peek_text() in ("class", "struct"):
            scoped = True
            self.pos += 1
        self._skip_attributes()
        name: Optional[str] = None
        name_token: Optional[Token] = None
        start = self.pos
        if self._peek() is not None and self._peek().kind == TokenKind.IDENTIFIER:
            name, name_token = self._parse_qualified_name()
        name_tokens = self.tokens[start:self.pos]
        underlying: Optional[str] = None
        if self._peek_text() == ":":
            self.pos += 1
            base_start = self.pos
            while not self._at_end() and self._peek_text() not in ("{", ";", ",", ")"):
                self.pos += 1
            underlying = join_tokens(self.tokens[base_start:self.pos])

        if self._peek_text() != "{":
            if name is None:
                raise self._error("Expected a name after 'enum'", key)
            specs.type_tokens.extend([key, *name_tokens])
            specs.tag_ref = (
                SymbolKind.ENUM,
                name,
                name_token,
                EnumInfo(is_scoped=scoped, underlying_type=underlying),
            )
            return

        anonymous = name is None
        if anonymous and typedef:
            name = self._typedef_name_ahead()
        if anonymous:
            specs.type_tokens.extend([key, Token(TokenKind.LITERAL, "{...}", key.location)])
        else:
            specs.type_tokens.extend([key, *name_tokens])

        enum_scope, qualified = (
            self._resolve_declared_name(name) if name is not None else (self.scopes.current_qualified_name(), None)
        )
        owner = qualified if (scoped and qualified) else enum_scope
        enumerators = self._parse_enumerators(owner, qualified or "", scoped)

        if qualified is not None:
            location = (name_token or key).location
            info = EnumInfo(
                enumerators=[(n, v) for n, v, _ in enumerators],
                is_scoped=scoped,
                underlying_type=underlying,
            )
            specs.tag = self._add(Symbol(qualified, SymbolKind.ENUM, enum_scope, [location], [location], info))
            self._add_member(qualified)
            self.scopes.enter_qualified(ScopeKind.ENUM, qualified)
            self.scopes.exit()
        for _, _, symbol in enumerators:
            self._add(symbol)
            if not scoped:
                self._add_member(symbol.qualified_name)

    def _parse_enumerators(
        self, owner: str, enum: str, scoped: bool
    ) -> List[Tuple[str, Optional[int], Symbol]]:
        opening = self._expect("{")
        result: List[Tuple[str, Optional[int], Symbol]] = []
        next_value: Optional[int] = 0
        while True:
            token = self._peek()
            if token is None:
                self._report(self._error("Unterminated enumerator list", opening))
                return result
            if token.text == "}":
                self.pos += 1
                return result
            if token.kind != TokenKind.IDENTIFIER:
                self._report(self._error(f"Unexpected '{token.text}' in enumerator list", token))
                self._skip_enumerator()
                continue
            self.pos += 1
            self._skip_attributes()
            value = next_value
            value_text: Optional[str] = None
            if self._peek_text() == "=":
                self.pos += 1
                start = self.pos
                self._skip_enumerator(consume_comma=False)
                expression = self.tokens[start:self.pos]
                value_text = join_tokens(expression)
                value = evaluate_or_none(expression, self._constants.get)
            qualified = qualify(owner, token.text)
            if value is not None:
                self._constants[token.text] = value
                self._constants[qualified] = value
            location = token.location
            result.append(
                (
                    token.text,
                    value,
                    Symbol(
                        qualified,
                        SymbolKind.ENUMERATOR,
                        owner,
                        [location],
                        [location],
                        EnumeratorInfo(value=value, value_text=value_text, enum=enum),
                    ),
                )
            )
            next_value = value + 1 if value is not None else None
            if self._peek_text() == ",":
                self.pos += 1
            elif self._peek_text() != "}" and not self._at_end():
                self._report(self._error(f"Expected ',' after enumerator {token.text}"))
                self._skip_enumerator()

    def _skip_enumerator(self, consume_comma: bool = True) -> None:
        while not self._at_end():
            text = self._peek_text()
            if text in _OPENERS:
                self._skip_group()
                continue
            if text == "}":
                return
            if text == ",":
                if consume_comma:
                    self.pos += 1
                return
            self.pos += 1

    # -- declarators --------------------------------------------------------

    def _parse_declarator(self, specs: _Specifiers, in_typedef: bool = False) -> _Declarator:
        decl = _Declarator(ptr_tokens=self._parse_ptr_operators())

        if self._peek_text() == "(" and self._peek_text(1) in ("*", "&", "&&", "^"):
            return self._parse_nested_declarator(decl)

        token = self._peek()
        if token is None or not (
            token.kind == TokenKind.IDENTIFIER or token.text in ("::", "~", "operator")
        ):
            found = token.text if token is not None else "end of input"
            raise self._error(f"Expected a declarator name but found '{found}'", token)
        decl.name, decl.name_token = self._parse_qualified_name()
        self._skip_attributes()

        if self._peek_text() == "(" and (in_typedef or self._is_parameter_list()):
            self._parse_function_declarator(decl, in_typedef)
        else:
            self._parse_variable_tail(decl)
        return decl

    def _parse_nested_declarator(self, decl: _Declarator) -> _Declarator:
        # ``(*name)(params)`` or ``(&name)[N]``
        opening = self._expect("(")
        inner = self._parse_ptr_operators()
        decl.name, decl.name_token = self._parse_qualified_name()
        self._expect(")")
        suffix: List[Token] = [opening, *inner, Token(TokenKind.PUNCTUATOR, ")", opening.location)]
        if self._peek_text() == "(":
            start = self.pos
            self._skip_group()
            group = self.tokens[start:self.pos]
            params, _, _, _ = self._split_parameters(group[1:-1])
            text = "(" + ",".join(params) + ")"
            suffix.extend([Token(TokenKind.PUNCTUATOR, text, opening.location)])
        decl.suffix_tokens = suffix
        self._parse_variable_tail(decl)
        return decl

    def _is_parameter_list(self) -> bool:
        """Tell ``f(int a)`` from a direct initializer such as ``x(5)``."""
        depth = 0
        index = self.pos + 1
        in_default = False
        while index < len(self.tokens):
            token = self.tokens[index]
            if token.text in _OPENERS:
                depth += 1
            elif token.text in (")", "]", "}"):
                if depth == 0:
                    return True
                depth -= 1
            elif depth == 0 and token.text == "=":
                in_default = True
            elif depth == 0 and token.text == ",":
                in_default = False
            elif depth == 0 and not in_default and (
                token.kind == TokenKind.LITERAL or token.text in _INITIALIZER_WORDS
            ):
                return False
            index += 1
        return True

    def _split_parameters(self, tokens: Sequence[Token]) -> Tuple[Tuple[str, ...], List[Tuple[str, str]], int, bool]:
        groups: List[List[Token]] = [[]]
        depth = 0
        angle = 0
        previous: Optional[Token] = None
        for token in tokens:
            text = token.text
            if text in _OPENERS:
                depth += 1
            elif text in (")", "]", "}"):
                depth -= 1
            elif text == "<" and previous is not None and previous.kind == TokenKind.IDENTIFIER:
                angle += 1
            elif text == ">" and angle:
                angle -= 1
            elif text == ">>" and angle:
                angle = max(0, angle - 2)
            elif text == "," and depth == 0 and angle == 0:
                groups.append([])
                previous = token
                continue
            groups[-1].append(token)
            previous = token

        if len(groups) == 1 and [t.text for t in groups[0]] in ([], ["void"]):
            return (), [], 0, False
        types: List[str] = []
        named: List[Tuple[str, str]] = []
        optional = 0
        variadic = False
        for group in groups:
            if [t.text for t in group] == ["..."]:
                variadic = True
                continue
            type_text, name, has_default = split_parameter(group)
            types.append(type_text)
            if name:
                named.append((name, type_text))
            if has_default:
                optional += 1
        return tuple(types), named, optional, variadic

    def _parse_function_declarator(self, decl: _Declarator, in_typedef: bool) -> None:
        decl.is_function = True
        start = self.pos
        close = self._skip_group()
        inner = self.tokens[start + 1:close]
        decl.params, decl.param_decls, decl.optional_params, decl.is_variadic = self._split_parameters(inner)

        while not self._at_end():
            if self._skip_attributes():
                continue
            text = self._peek_text()
            if text == "const":
                decl.is_const = True
                self.pos += 1
            elif text in ("volatile", "&", "&&"):
                self.pos += 1
            elif text in ("noexcept", "throw"):
                self.pos += 1
                if self._peek_text() == "(":
                    self._skip_group()
            elif text == "override":
                decl.is_override = True
                self.pos += 1
            elif text == "final":
                decl.is_final = True
                self.pos += 1
            elif text == "->":
                self.pos += 1
                ret_start = self.pos
                while not self._at_end() and self._peek_text() not in ("{", ";", "=", ",", "override", "final"):
                    if self._peek_text() in _OPENERS:
                        self._skip_group()
                    else:
                        self.pos += 1
                decl.trailing_return = join_tokens(self.tokens[ret_start:self.pos])
            else:
                break
        if in_typedef:
            return

        if self._peek_text() == "=":
            following = self._peek_text(1)
            if following == "0":
                decl.is_pure = True
                self.pos += 2
            elif following in ("default", "delete"):
                decl.is_defaulted = True
                self.pos += 2
            else:
                raise self._error(f"Unexpected '= {following}' after function declarator")
            return

        is_try = self._peek_text() == "try"
        if is_try:
            self.pos += 1
        if self._peek_text() == ":":
            self._skip_member_initializers()
        if self._peek_text() == "{":
            opening = self.pos
            close = self._skip_group()
            decl.body = (opening, close)
            while is_try and self._peek_text() == "catch":
                self.pos += 1
                self._skip_group()
                if self._peek_text() == "{":
                    self._skip_group()

    def _skip_member_initializers(self) -> None:
        self._expect(":")
        while not self._at_end():
            self._parse_qualified_name()
            if self._peek_text() not in ("(", "{"):
                raise self._error("Malformed member initializer")
            self._skip_group()
            if self._peek_text() == "...":
                self.pos += 1
            if self._peek_text() != ",":
                return
            self.pos += 1

    def _parse_variable_tail(self, decl: _Declarator) -> None:
        while self._peek_text() == "[":
            start = self.pos
            self._skip_group()
            decl.suffix_tokens.extend(self.tokens[start:self.pos])
        self._skip_attributes()
        text = self._peek_text()
        if text == ":" and self._current_class() is not None:
            # bit-field width
            self.pos += 1
            self._skip_initializer()
        elif text == "=":
            decl.has_initializer = True
            self.pos += 1
            self._skip_initializer()
        elif text in ("{", "("):
            decl.has_initializer = True
            self._skip_group()

    def _skip_initializer(self) -> None:
        while not self._at_end():
            text = self._peek_text()
            if text in _OPENERS:
                self._skip_group()
            elif text in (",", ";", "}"):
                return
            else:
                self.pos += 1

    # -- declaring ----------------------------------------------------------

    def _current_class(self) -> Optional[_ClassContext]:
        if not self._classes:
            return None
        context = self._classes[-1]
        if context.symbol.qualified_name != self.scopes.current_qualified_name():
            return None
        return context

    def _add(self, symbol: Symbol) -> Symbol:
        return self.table.add_symbol(symbol)

    def _add_member(self, qualified_name: str) -> None:
        context = self._current_class()
        if context is None or not isinstance(context.symbol.payload, ClassInfo):
            return
        members = context.symbol.payload.members
        if qualified_name not in members and qualified_name != context.symbol.qualified_name:
            members.append(qualified_name)

    def _resolve_declared_name(self, name: str) -> Tuple[str, str]:
        """Map a declarator name to ``(declaring scope, qualified name)``."""
        head, tail = split_qualified(name)
        if not head:
            if name.startswith("::"):
                return "", name[2:]
            scope = self.scopes.current_qualified_name()
            return scope, qualify(scope, tail)
        owner = self.scopes.resolve_scope(head)
        if owner is None:
            owner = head[2:] if head.startswith("::") else qualify(self.scopes.current_qualified_name(), head)
        return owner, qualify(owner, tail)

    def _type_text(self, specs: _Specifiers, ptr_tokens: Sequence[Token], suffix: Sequence[Token] = ()) -> str:
        return join_tokens([*specs.type_tokens, *ptr_tokens, *suffix])

    def _owning_class(self, scope: str) -> Optional[str]:
        context = self._current_class()
        if context is not None:
            return context.symbol.qualified_name
        record = self.scopes.scopes.get(scope)
        if record is not None and record.kind == ScopeKind.CLASS:
            return scope
        return None

    def _declare_function(self, specs: _Specifiers, decl: _Declarator) -> None:
        scope, qualified = self._resolve_declared_name(decl.name)
        context = self._current_class()
        owning_class = self._owning_class(scope)
        short = split_qualified(qualified)[1]
        is_structor = owning_class is not None and (
            short == split_qualified(owning_class)[1] or short.startswith("~")
        )
        if decl.trailing_return is not None:
            return_type = decl.trailing_return
        elif is_structor or not specs.has_type:
            return_type = join_tokens(decl.ptr_tokens)
        else:
            return_type = self._type_text(specs, decl.ptr_tokens)

        info = FunctionInfo(
            params=decl.params,
            return_type=return_type,
            is_virtual="virtual" in specs.flags,
            is_override=decl.is_override,
            is_pure=decl.is_pure,
            is_static="static" in specs.flags,
            is_const=decl.is_const,
            is_final=decl.is_final,
            is_variadic=decl.is_variadic,
            optional_params=decl.optional_params,
            owning_class=owning_class,
            access=context.access if context is not None else None,
        )
        location = decl.name_token.location
        defined = decl.body is not None or decl.is_defaulted
        symbol = self._add(
            Symbol(qualified, SymbolKind.FUNCTION, scope, [location], [location] if defined else [], info)
        )
        self._add_member(symbol.qualified_name)

        if decl.body is not None:
            opening, close = decl.body
            end = self.tokens[close] if close < len(self.tokens) else self.tokens[-1]
            self.bodies.append(
                FunctionBody(
                    symbol=symbol,
                    scope=owning_class or scope,
                    owning_class=owning_class,
                    params=list(decl.param_decls),
                    tokens=self.tokens[opening + 1:close],
                    start=self.tokens[opening].location,
                    end=end.location,
                )
            )

    def _declare_variable(self, specs: _Specifiers, decl: _Declarator) -> None:
        scope, qualified = self._resolve_declared_name(decl.name)
        type_text = self._type_text(specs, decl.ptr_tokens, decl.suffix_tokens)
        location = decl.name_token.location
        context = self._current_class()

        if context is not None and "static" not in specs.flags:
            self._add(
                Symbol(
                    qualified,
                    SymbolKind.FIELD,
                    scope,
                    [location],
                    [location],
                    FieldInfo(type_text, context.symbol.qualified_name, context.access),
                )
            )
            self._add_member(qualified)
            return

        if context is not None:
            defined = bool(specs.flags & {"inline", "constexpr"})
        else:
            defined = "extern" not in specs.flags or decl.has_initializer
        info = VariableInfo(
            type_text=type_text,
            is_global=True,
            owning_class=self._owning_class(scope),
            write_sites=[location] if decl.has_initializer else [],
        )
        symbol = self._add(
            Symbol(qualified, SymbolKind.VARIABLE, scope, [location], [location] if defined else [], info)
        )
        self._add_member(symbol.qualified_name)
