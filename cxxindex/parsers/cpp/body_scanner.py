"""Reference extraction from opaque function bodies.

The scanner walks a body's tokens once, keeps track of local declarations
(parameters included) so that locals never produce references, and records
every other name as a call, a write or a plain use.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from cxxindex.graph.schema import Reference, RefKind
from cxxindex.parsers.cpp.declarations import (
    BUILTIN_TYPES,
    CLASS_KEYS,
    CV_QUALIFIERS,
    STORAGE_SPECIFIERS,
    FunctionBody,
)
from cxxindex.parsers.cpp.lexer import Token, TokenKind, join_tokens

logger = logging.getLogger("cxxindex.parsers.cpp.body_scanner")

ASSIGNMENT_OPERATORS = frozenset(
    {"=", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "<<=", ">>="}
)
_DECLARATOR_FOLLOW = frozenset({"=", ";", ",", "[", "(", "{", ":"})
_CONTROL_HEADS = frozenset({"for", "if", "while", "switch"})
_TYPE_NOISE = re.compile(r"\b(?:const|volatile|struct|class|union|enum|typename)\b|[*&]|\[.*?\]")
_TEMPLATE_ARGS = re.compile(r"<.*>")


def base_type_name(type_text: str) -> Optional[str]:
    """Reduce a declared type to the class name member lookups start from.

    ``const Derived&`` -> ``Derived``; builtin and compound types -> None.
    """
    text = _TYPE_NOISE.sub(" ", _TEMPLATE_ARGS.sub("", type_text))
    words = text.split()
    if len(words) != 1 or words[0] in BUILTIN_TYPES:
        return None
    return words[0]


class BodyScanner:
    """Collects raw references from one function body.

    Args:
        body: Body span produced by the declaration parser.
    """

    def __init__(self, body: FunctionBody) -> None:
        self.body = body
        self.tokens: List[Token] = body.tokens
        payload = body.symbol.payload
        params = getattr(payload, "params", ())
        self.context: Tuple[str, Tuple[str, ...]] = (body.symbol.qualified_name, tuple(params))
        self._locals: Dict[str, List[str]] = {}
        self._blocks: List[List[str]] = [[]]
        for name, type_text in body.params:
            self._declare_local(name, type_text)

    def scan(self) -> List[Reference]:
        refs: List[Reference] = []
        tokens = self.tokens
        index = 0
        statement_start = True
        declaring: Optional[str] = None
        declaring_depth = 0
        depth = 0
        while index < len(tokens):
            token = tokens[index]
            text = token.text

            if statement_start:
                statement_start = False
                match = self._match_declaration(index)
                if match is not None:
                    name_index, type_text, type_ref = match
                    if type_ref is not None:
                        refs.append(self._reference(type_ref[0], RefKind.USE, type_ref[1]))
                    self._declare_local(tokens[name_index].text, type_text)
                    declaring, declaring_depth = type_text, depth
                    index = name_index + 1
                    continue

            if text in ("{", "}", ";"):
                statement_start = True
                if text == ";":
                    declaring = None
                elif text == "{":
                    self._blocks.append([])
                elif len(self._blocks) > 1:
                    for name in self._blocks.pop():
                        self._locals[name].pop()
                        if not self._locals[name]:
                            del self._locals[name]
                index += 1
            elif text == "(":
                depth += 1
                if index and tokens[index - 1].text in _CONTROL_HEADS:
                    statement_start = True
                index += 1
            elif text == ")":
                depth -= 1
                index += 1
            elif text in ("else", "do"):
                statement_start = True
                index += 1
            elif text == "," and declaring is not None and depth == declaring_depth:
                index = self._extra_declarator(index + 1, declaring)
            elif token.kind == TokenKind.IDENTIFIER or (
                text == "::" and index + 1 < len(tokens) and tokens[index + 1].kind == TokenKind.IDENTIFIER
            ):
                index = self._name(index, refs)
            else:
                index += 1

        logger.debug("Scanned body of %s: %d references", self.context[0], len(refs))
        return refs

    # -- locals -------------------------------------------------------------

    def _declare_local(self, name: str, type_text: str) -> None:
        self._locals.setdefault(name, []).append(type_text)
        self._blocks[-1].append(name)

    def _local_type(self, name: str) -> Optional[str]:
        types = self._locals.get(name)
        return types[-1] if types else None

    def _skip_template(self, index: int) -> Optional[int]:
        depth = 0
        while index < len(self.tokens):
            text = self.tokens[index].text
            if text in (";", "{", "}"):
                return None
            if text == "<":
                depth += 1
            elif text == ">":
                depth -= 1
            elif text == ">>":
                depth -= 2
            index += 1
            if depth <= 0:
                return index
        return None

    def _qualified_end(self, index: int) -> Optional[int]:
        """Index after ``[::] A [<...>] :: B ...`` starting at ``index``."""
        tokens = self.tokens
        if index < len(tokens) and tokens[index].text == "::":
            index += 1
        while index < len(tokens) and tokens[index].kind == TokenKind.IDENTIFIER:
            index += 1
            if index < len(tokens) and tokens[index].text == "<":
                end = self._skip_template(index)
                if end is None:
                    return None
                index = end
            if (
                index + 1 < len(tokens)
                and tokens[index].text == "::"
                and tokens[index + 1].kind == TokenKind.IDENTIFIER
            ):
                index += 1
                continue
            return index
        return None

    def _match_declaration(
        self, index: int
    ) -> Optional[Tuple[int, str, Optional[Tuple[str, Token]]]]:
        """Recognize ``[specifiers] type [ptr] name`` at a statement start.

        Returns:
            (name index, type text, (type name, token) for user types) or None.
        """
        tokens = self.tokens
        n = len(tokens)
        j = index
        while j < n and (tokens[j].text in STORAGE_SPECIFIERS or tokens[j].text in CV_QUALIFIERS):
            j += 1
        if j >= n:
            return None
        type_ref: Optional[Tuple[str, Token]] = None
        first = tokens[j]
        if first.text in CLASS_KEYS or first.text == "enum":
            end = self._qualified_end(j + 1)
            if end is None:
                return None
            type_ref = (_strip_template_text(tokens[j + 1:end]), tokens[j + 1])
            j = end
        elif first.text in BUILTIN_TYPES:
            while j < n and (tokens[j].text in BUILTIN_TYPES or tokens[j].text in CV_QUALIFIERS):
                j += 1
        elif first.kind == TokenKind.IDENTIFIER or first.text == "::":
            if first.kind == TokenKind.IDENTIFIER and first.text in self._locals:
                return None
            end = self._qualified_end(j)
            if end is None:
                return None
            type_ref = (_strip_template_text(tokens[j:end]), first)
            j = end
        else:
            return None

        while j < n and (tokens[j].text in CV_QUALIFIERS or tokens[j].text in ("*", "&", "&&")):
            j += 1
        if j + 1 >= n or tokens[j].kind != TokenKind.IDENTIFIER:
            return None
        if tokens[j + 1].text not in _DECLARATOR_FOLLOW:
            return None
        type_text = join_tokens(t for t in tokens[index:j] if t.text not in STORAGE_SPECIFIERS)
        return j, type_text, type_ref

    def _extra_declarator(self, index: int, type_text: str) -> int:
        """Handle ``int a = 1, *b;``; returns the index to resume at."""
        tokens = self.tokens
        j = index
        while j < len(tokens) and tokens[j].text in ("*", "&", "&&"):
            j += 1
        if (
            j + 1 < len(tokens)
            and tokens[j].kind == TokenKind.IDENTIFIER
            and tokens[j + 1].text in _DECLARATOR_FOLLOW
        ):
            self._declare_local(tokens[j].text, type_text)
            return j + 1
        return index

    # -- references ---------------------------------------------------------

    def _reference(
        self,
        name: str,
        kind: RefKind,
        token: Token,
        receiver_type: Optional[str] = None,
        is_member: bool = False,
        arg_count: Optional[int] = None,
    ) -> Reference:
        return Reference(
            name=name,
            kind=kind,
            location=token.location,
            context=self.context,
            scope=self.body.scope,
            receiver_type=receiver_type,
            is_member=is_member,
            arg_count=arg_count,
        )

    def _count_arguments(self, index: int) -> int:
        tokens = self.tokens
        depth = 0
        count = 0
        has_tokens = False
        for token in tokens[index:]:
            text = token.text
            if text in ("(", "[", "{"):
                depth += 1
                if depth == 1:
                    continue
            elif text in (")", "]", "}"):
                depth -= 1
                if depth == 0:
                    break
            elif text == "," and depth == 1:
                count += 1
                continue
            has_tokens = True
        return count + 1 if has_tokens else 0

    def _name(self, index: int, refs: List[Reference]) -> int:
        tokens = self.tokens
        start = index
        parts: List[str] = []
        prefix = ""
        if tokens[index].text == "::":
            prefix = "::"
            index += 1
        name_token = tokens[index]
        while True:
            parts.append(tokens[index].text)
            index += 1
            if (
                index + 1 < len(tokens)
                and tokens[index].text == "::"
                and tokens[index + 1].kind == TokenKind.IDENTIFIER
            ):
                index += 1
                continue
            break
        name = prefix + "::".join(parts)

        previous = tokens[start - 1].text if start else ""
        following = tokens[index].text if index < len(tokens) else ""
        is_member = previous in (".", "->")
        receiver_type: Optional[str] = None

        if is_member:
            receiver = tokens[start - 2] if start >= 2 else None
            if receiver is None or (previous == "." and receiver.text in ("{", ",")):
                return index  # designated initializer
            if receiver.text == "this":
                receiver_type = self.body.owning_class
            elif receiver.kind == TokenKind.IDENTIFIER:
                local_type = self._local_type(receiver.text)
                if local_type is not None:
                    receiver_type = base_type_name(local_type)
        elif len(parts) == 1 and not prefix:
            if name in self._locals:
                return index
            if following == ":" and previous in ("", "{", "}", ";"):
                return index  # label

        if following == "(":
            kind = RefKind.CALL
            arg_count: Optional[int] = self._count_arguments(index)
        else:
            arg_count = None
            if following in ASSIGNMENT_OPERATORS or following in ("++", "--") or (
                previous in ("++", "--") and not is_member
            ):
                kind = RefKind.WRITE
            else:
                kind = RefKind.USE
        refs.append(self._reference(name, kind, name_token, receiver_type, is_member, arg_count))
        return index


def _strip_template_text(tokens: List[Token]) -> str:
    out: List[str] = []
    depth = 0
    for token in tokens:
        if token.text == "<":
            depth += 1
        elif token.text == ">":
            depth -= 1
        elif token.text == ">>":
            depth -= 2
        elif depth == 0:
            out.append(token.text)
    return "".join(out)


def scan_bodies(bodies: List[FunctionBody]) -> List[Reference]:
    """Scan every body of a unit, in source order."""
    refs: List[Reference] = []
    for body in bodies:
        refs.extend(BodyScanner(body).scan())
    return refs
