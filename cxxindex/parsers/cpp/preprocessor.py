"""Macro table, macro expansion and directive processing for one unit.

Expansion is modelled as a pure function over token sequences: the set of
macro names currently being expanded is threaded through the recursion as an
explicit argument, so a given invocation always expands the same way and no
global expansion state exists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from cxxindex.graph.schema import MacroExpansion, SourceLocation
from cxxindex.parsers.base import (
    ConstantExpressionError,
    MacroExpansionOverflow,
    PreprocessorError,
    RecoverableError,
)
from cxxindex.parsers.cpp.const_expr import evaluate
from cxxindex.parsers.cpp.lexer import Token, TokenKind, join_tokens, tokenize
from cxxindex.runtime.diagnostics import Diagnostic, Severity

logger = logging.getLogger("cxxindex.parsers.cpp.preprocessor")

VA_ARGS = "__VA_ARGS__"
DEFAULT_MAX_DEPTH = 64


@dataclass(frozen=True)
class MacroDefinition:
    """A ``#define`` (or predefined) macro.

    Attributes:
        name: Macro name.
        params: Parameter names; empty for object-like macros. The variadic
            parameter, if any, is last (``__VA_ARGS__`` unless named).
        body: Replacement token sequence.
        is_function_like: Whether the macro takes an argument list.
        is_variadic: Whether the last parameter collects trailing arguments.
        location: Where the macro was defined.
    """

    name: str
    params: Tuple[str, ...] = ()
    body: Tuple[Token, ...] = ()
    is_function_like: bool = False
    is_variadic: bool = False
    location: Optional[SourceLocation] = None

    @property
    def body_text(self) -> str:
        return join_tokens(self.body)


class MacroTable:
    """Macro definitions visible at the current point of one unit.

    Later definitions replace earlier ones, matching textual preprocessing.
    """

    def __init__(self) -> None:
        self._macros: Dict[str, MacroDefinition] = {}

    def define(
        self,
        name: str,
        params: Optional[Sequence[str]] = None,
        body: Union[str, Sequence[Token]] = (),
        *,
        variadic: bool = False,
        location: Optional[SourceLocation] = None,
    ) -> MacroDefinition:
        """Register a macro, overwriting any previous definition.

        Args:
            name: Macro name.
            params: Parameter names, or None for an object-like macro.
            body: Replacement tokens, or replacement text to be tokenized.
            variadic: Whether the last parameter is variadic.
            location: Definition site.

        Returns:
            The stored definition.
        """
        if isinstance(body, str):
            body = tokenize(body, location.file if location else "<predefined>")
        macro = MacroDefinition(
            name=name,
            params=tuple(params or ()),
            body=tuple(body),
            is_function_like=params is not None,
            is_variadic=variadic,
            location=location,
        )
        previous = self._macros.get(name)
        if previous is not None and previous.body_text != macro.body_text:
            logger.debug("Macro %s redefined at %s", name, location)
        self._macros[name] = macro
        return macro

    def define_from_signature(self, signature: str, body: str) -> MacroDefinition:
        """Define from a ``NAME`` or ``NAME(a, b)`` signature string."""
        name, paren, rest = signature.partition("(")
        name = name.strip()
        if not paren:
            return self.define(name, None, body)
        raw_params = [p.strip() for p in rest.rstrip(") ").split(",") if p.strip()]
        variadic = bool(raw_params) and raw_params[-1].endswith("...")
        if variadic:
            raw_params[-1] = raw_params[-1][:-3].strip() or VA_ARGS
        return self.define(name, raw_params, body, variadic=variadic)

    def undefine(self, name: str) -> bool:
        """Remove a macro; returns whether it was defined."""
        return self._macros.pop(name, None) is not None

    def get(self, name: str) -> Optional[MacroDefinition]:
        return self._macros.get(name)

    def names(self) -> List[str]:
        return sorted(self._macros)

    def copy(self) -> "MacroTable":
        clone = MacroTable()
        clone._macros = dict(self._macros)
        return clone

    def __contains__(self, name: object) -> bool:
        return name in self._macros

    def __len__(self) -> int:
        return len(self._macros)


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


def _collect_arguments(
    tokens: Sequence[Token], open_index: int
) -> Tuple[List[List[Token]], List[Token], int]:
    """Split a parenthesized argument list at top-level commas.

    Returns:
        (arguments, separating commas, index after the closing paren)
    """
    args: List[List[Token]] = [[]]
    commas: List[Token] = []
    depth = 0
    index = open_index + 1
    while index < len(tokens):
        token = tokens[index]
        if token.text == "(":
            depth += 1
        elif token.text == ")":
            if depth == 0:
                return args, commas, index + 1
            depth -= 1
        elif token.text == "," and depth == 0:
            args.append([])
            commas.append(token)
            index += 1
            continue
        args[-1].append(token)
        index += 1
    raise PreprocessorError(
        "Unterminated macro argument list", tokens[open_index].location
    )


def _stringify(tokens: Sequence[Token], location: SourceLocation) -> Token:
    parts: List[str] = []
    previous: Optional[Token] = None
    for token in tokens:
        if previous is not None and (
            (previous.is_word and token.is_word) or previous.text == ","
        ):
            parts.append(" ")
        text = token.text
        if token.kind == TokenKind.LITERAL and text[-1:] in ('"', "'"):
            text = text.replace("\\", "\\\\").replace('"', '\\"')
        parts.append(text)
        previous = token
    return Token(TokenKind.LITERAL, '"' + "".join(parts) + '"', location)


def _paste(left: Token, right: Token) -> List[Token]:
    pasted = tokenize(left.text + right.text, left.location.file)
    if len(pasted) == 1:
        return [Token(pasted[0].kind, pasted[0].text, left.location)]
    return [left, right]


def _substitute(
    macro: MacroDefinition,
    args: List[List[Token]],
    macros: MacroTable,
    max_depth: int,
    visited: FrozenSet[str],
    depth: int,
) -> List[Token]:
    index_of = {name: i for i, name in enumerate(macro.params)}
    body = macro.body
    pieces: List[Optional[Token]] = []  # None marks a '##' paste point
    j = 0
    while j < len(body):
        token = body[j]
        if (
            macro.is_function_like
            and token.text == "#"
            and j + 1 < len(body)
            and body[j + 1].text in index_of
        ):
            pieces.append(_stringify(args[index_of[body[j + 1].text]], token.location))
            j += 2
            continue
        if token.text == "##":
            pieces.append(None)
            j += 1
            continue
        if token.kind in (TokenKind.IDENTIFIER, TokenKind.KEYWORD) and token.text in index_of:
            arg = args[index_of[token.text]]
            next_is_paste = j + 1 < len(body) and body[j + 1].text == "##"
            prev_is_paste = bool(pieces) and pieces[-1] is None
            if next_is_paste or prev_is_paste:
                pieces.extend(arg)
            else:
                pieces.extend(expand_tokens(arg, macros, max_depth, visited, depth))
            j += 1
            continue
        pieces.append(token)
        j += 1

    result: List[Token] = []
    k = 0
    while k < len(pieces):
        piece = pieces[k]
        if piece is None:
            right = pieces[k + 1] if k + 1 < len(pieces) else None
            if result and right is not None:
                result.extend(_paste(result.pop(), right))
                k += 2
            else:
                k += 1
            continue
        result.append(piece)
        k += 1
    return result


def _paint(token: Token, macros: MacroTable, visited: FrozenSet[str]) -> Token:
    """Mark a token naming a macro under expansion so no rescan expands it."""
    if token.text in visited and token.text in macros and token.text not in token.hidden:
        return replace(token, hidden=token.hidden | {token.text})
    return token


def _pending_call(token: Token, macros: MacroTable, visited: FrozenSet[str]) -> bool:
    if token.kind not in (TokenKind.IDENTIFIER, TokenKind.KEYWORD):
        return False
    macro = macros.get(token.text)
    return (
        macro is not None
        and macro.is_function_like
        and macro.name not in visited
        and macro.name not in token.hidden
    )


def expand_invocation(
    tokens: Sequence[Token],
    index: int,
    macros: MacroTable,
    max_depth: int = DEFAULT_MAX_DEPTH,
    visited: FrozenSet[str] = frozenset(),
    depth: int = 0,
) -> Optional[Tuple[List[Token], int]]:
    """Expand the macro invocation starting at ``tokens[index]``.

    Args:
        tokens: Token sequence containing the invocation.
        index: Position of the macro name.
        macros: Visible macro definitions.
        max_depth: Nesting bound for macro-within-macro expansion.
        visited: Names of macros currently being expanded; these stay
            unexpanded (self-reference).
        depth: Current nesting level.

    Returns:
        ``(expanded tokens, index after the invocation)``, or None when the
        token is not an expandable invocation.

    Raises:
        MacroExpansionOverflow: If expansion nests deeper than ``max_depth``.
        PreprocessorError: On unterminated or mismatched argument lists.
    """
    token = tokens[index]
    if token.kind not in (TokenKind.IDENTIFIER, TokenKind.KEYWORD):
        return None
    macro = macros.get(token.text)
    if macro is None or macro.name in visited or macro.name in token.hidden:
        return None

    args: List[List[Token]] = []
    end = index + 1
    if macro.is_function_like:
        if end >= len(tokens) or tokens[end].text != "(":
            return None
        args, commas, end = _collect_arguments(tokens, end)
        nparams = len(macro.params)
        if nparams == 0 and args == [[]]:
            args = []
        if macro.is_variadic:
            if len(args) < nparams - 1:
                raise PreprocessorError(
                    f"Macro {macro.name} expects at least {nparams - 1} arguments, "
                    f"got {len(args)}",
                    token.location,
                )
            fixed = args[: nparams - 1]
            variadic: List[Token] = []
            for extra_index, extra in enumerate(args[nparams - 1:]):
                if extra_index:
                    variadic.append(commas[nparams - 2 + extra_index])
                variadic.extend(extra)
            args = fixed + [variadic]
        elif nparams == 1 and not args:
            args = [[]]
        elif len(args) != nparams:
            raise PreprocessorError(
                f"Macro {macro.name} expects {nparams} arguments, got {len(args)}",
                token.location,
            )

    if depth >= max_depth:
        raise MacroExpansionOverflow(
            f"Expansion of {macro.name} exceeds depth bound {max_depth}",
            token.location,
        )

    inner = visited | {macro.name}
    body = _substitute(macro, args, macros, max_depth, visited, depth + 1)
    expanded = expand_tokens(body, macros, max_depth, inner, depth + 1)

    # A trailing function-like macro name takes its arguments from the tokens
    # after the invocation.
    if (
        expanded
        and end < len(tokens)
        and tokens[end].text == "("
        and _pending_call(expanded[-1], macros, visited)
    ):
        spliced = [expanded[-1], *tokens[end:]]
        follow = expand_invocation(spliced, 0, macros, max_depth, visited, depth)
        if follow is not None:
            expanded = expanded[:-1] + follow[0]
            end += follow[1] - 1
    return [t.relocated(token.location, macro.name) for t in expanded], end


def expand_tokens(
    tokens: Sequence[Token],
    macros: MacroTable,
    max_depth: int = DEFAULT_MAX_DEPTH,
    visited: FrozenSet[str] = frozenset(),
    depth: int = 0,
) -> List[Token]:
    """Rewrite every macro invocation in ``tokens``.

    Pure with respect to its arguments; see ``expand_invocation`` for the
    failure modes.
    """
    out: List[Token] = []
    index = 0
    while index < len(tokens):
        result = expand_invocation(tokens, index, macros, max_depth, visited, depth)
        if result is None:
            out.append(_paint(tokens[index], macros, visited))
            index += 1
        else:
            out.extend(result[0])
            index = result[1]
    return out


# ---------------------------------------------------------------------------
# Directive processing
# ---------------------------------------------------------------------------


@dataclass
class _Conditional:
    active: bool
    taken: bool
    parent_active: bool
    location: SourceLocation
    else_seen: bool = False


class Preprocessor:
    """Drives directives and expansion over one unit's token stream.

    Attributes:
        macros: The unit's macro table (mutated by ``#define``/``#undef``).
        diagnostics: Preprocessor and expansion diagnostics.
        expansions: Top-level expansion sites in source order.
        includes: ``#include`` targets as written.
        definitions: Every macro defined by the unit, in order.
    """

    def __init__(
        self,
        macros: Optional[MacroTable] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        record_expansions: bool = True,
    ) -> None:
        self.macros = macros if macros is not None else MacroTable()
        self.max_depth = max_depth
        self.record_expansions = record_expansions
        self.diagnostics: List[Diagnostic] = []
        self.expansions: List[MacroExpansion] = []
        self.includes: List[str] = []
        self.definitions: List[MacroDefinition] = []
        self._stack: List[_Conditional] = []

    @property
    def _active(self) -> bool:
        return not self._stack or self._stack[-1].active

    def run(self, tokens: Iterable[Token]) -> List[Token]:
        """Process directives and expand macros.

        Args:
            tokens: Lexer output, including ``DIRECTIVE`` tokens.

        Returns:
            Expanded tokens of the active regions, directives removed.
        """
        out: List[Token] = []
        pending: List[Token] = []
        for token in tokens:
            if token.kind == TokenKind.DIRECTIVE:
                if pending:
                    out.extend(self._expand_run(pending))
                    pending = []
                self._directive(token)
            elif self._active:
                pending.append(token)
        if pending:
            out.extend(self._expand_run(pending))
        for frame in self._stack:
            self._report(PreprocessorError("Unterminated conditional directive", frame.location))
        self._stack = []
        return out

    def _report(self, error: RecoverableError, severity: Severity = Severity.ERROR) -> None:
        self.diagnostics.append(error.to_diagnostic(severity))
        logger.debug("Preprocessor diagnostic: %s", error.message)

    def _expand_run(self, tokens: List[Token]) -> List[Token]:
        out: List[Token] = []
        index = 0
        while index < len(tokens):
            token = tokens[index]
            try:
                result = expand_invocation(tokens, index, self.macros, self.max_depth)
            except MacroExpansionOverflow as exc:
                self._report(exc)
                result = None
            except PreprocessorError as exc:
                self._report(exc)
                result = None
            if result is None:
                out.append(token)
                index += 1
                continue
            expanded, index = result
            if self.record_expansions:
                self.expansions.append(
                    MacroExpansion(token.location, token.text, join_tokens(expanded))
                )
            out.extend(expanded)
        return out

    # -- directives ---------------------------------------------------------

    def _directive(self, token: Token) -> None:
        parts = token.parts
        if not parts:
            return
        name = parts[0].text
        args = list(parts[1:])

        if name in ("if", "ifdef", "ifndef"):
            self._push(name, args, token.location)
            return
        if name in ("elif", "elifdef", "elifndef", "else", "endif"):
            self._branch(name, args, token.location)
            return
        if not self._active:
            return

        try:
            if name == "define":
                self._define(args, token.location)
            elif name == "undef":
                if not args:
                    raise PreprocessorError("#undef without a macro name", token.location)
                self.macros.undefine(args[0].text)
            elif name in ("include", "include_next", "import"):
                self._include(args, token.location)
            elif name == "error":
                raise PreprocessorError(f"#error {join_tokens(args)}".strip(), token.location)
            elif name == "warning":
                self._report(
                    PreprocessorError(f"#warning {join_tokens(args)}".strip(), token.location),
                    Severity.INFO,
                )
            elif name in ("pragma", "line", "ident", "sccs"):
                logger.debug("Ignoring #%s at %s", name, token.location)
            elif parts[0].kind == TokenKind.LITERAL:
                logger.debug("Ignoring line marker at %s", token.location)
            else:
                self._report(
                    PreprocessorError(f"Unknown directive #{name}", token.location),
                    Severity.WARNING,
                )
        except PreprocessorError as exc:
            self._report(exc)

    def _define(self, args: List[Token], location: SourceLocation) -> None:
        if not args or args[0].kind not in (TokenKind.IDENTIFIER, TokenKind.KEYWORD):
            raise PreprocessorError("#define without a macro name", location)
        name_token = args[0]
        rest = args[1:]
        params: Optional[List[str]] = None
        variadic = False
        if rest and rest[0].text == "(" and _adjacent(name_token, rest[0]):
            params = []
            index = 1
            expecting_name = True
            while True:
                if index >= len(rest):
                    raise PreprocessorError(
                        f"Unterminated parameter list for macro {name_token.text}",
                        location,
                    )
                token = rest[index]
                index += 1
                if token.text == ")":
                    break
                if token.text == "...":
                    params.append(VA_ARGS)
                    variadic = True
                elif token.text == "," and not expecting_name:
                    expecting_name = True
                    continue
                elif token.kind in (TokenKind.IDENTIFIER, TokenKind.KEYWORD) and expecting_name:
                    params.append(token.text)
                    if index < len(rest) and rest[index].text == "...":
                        variadic = True
                        index += 1
                else:
                    raise PreprocessorError(
                        f"Malformed parameter list for macro {name_token.text}",
                        token.location,
                    )
                expecting_name = False
            rest = rest[index:]
        macro = self.macros.define(
            name_token.text, params, rest, variadic=variadic, location=name_token.location
        )
        self.definitions.append(macro)

    def _include(self, args: List[Token], location: SourceLocation) -> None:
        if args and args[0].kind == TokenKind.IDENTIFIER:
            args = expand_tokens(args, self.macros, self.max_depth)
        if not args:
            raise PreprocessorError("#include without a target", location)
        first = args[0]
        if first.kind == TokenKind.LITERAL and first.text.startswith('"'):
            self.includes.append(first.text.strip('"'))
        elif first.text == "<":
            inner: List[str] = []
            for token in args[1:]:
                if token.text == ">":
                    break
                inner.append(token.text)
            self.includes.append("".join(inner))
        else:
            raise PreprocessorError(f"Malformed #include {join_tokens(args)}", location)

    # -- conditionals -------------------------------------------------------

    def _push(self, name: str, args: List[Token], location: SourceLocation) -> None:
        parent_active = self._active
        value = parent_active and self._condition(name, args, location)
        self._stack.append(
            _Conditional(
                active=value,
                taken=value or not parent_active,
                parent_active=parent_active,
                location=location,
            )
        )

    def _branch(self, name: str, args: List[Token], location: SourceLocation) -> None:
        if not self._stack:
            self._report(PreprocessorError(f"#{name} without #if", location))
            return
        frame = self._stack[-1]
        if name == "endif":
            self._stack.pop()
            return
        if frame.else_seen:
            self._report(PreprocessorError(f"#{name} after #else", location))
            frame.active = False
            return
        if name == "else":
            frame.else_seen = True
            frame.active = frame.parent_active and not frame.taken
            frame.taken = True
            return
        if frame.taken:
            frame.active = False
            return
        kind = {"elif": "if", "elifdef": "ifdef", "elifndef": "ifndef"}[name]
        frame.active = self._condition(kind, args, location)
        frame.taken = frame.active

    def _condition(self, kind: str, args: List[Token], location: SourceLocation) -> bool:
        if kind in ("ifdef", "ifndef"):
            if not args:
                self._report(PreprocessorError(f"#{kind} without a macro name", location))
                return False
            defined = args[0].text in self.macros
            return defined if kind == "ifdef" else not defined
        try:
            tokens = self._replace_defined(args)
            tokens = expand_tokens(tokens, self.macros, self.max_depth)
            return bool(evaluate(tokens, lambda _name: 0))
        except (ConstantExpressionError, PreprocessorError, MacroExpansionOverflow) as exc:
            self._report(exc)
            return False

    def _replace_defined(self, args: List[Token]) -> List[Token]:
        out: List[Token] = []
        index = 0
        while index < len(args):
            token = args[index]
            if token.text in ("defined", "__has_include", "__has_include_next"):
                is_defined = token.text == "defined"
                index += 1
                if index < len(args) and args[index].text == "(":
                    close = index
                    while close < len(args) and args[close].text != ")":
                        close += 1
                    inner = args[index + 1:close]
                    index = close + 1
                elif index < len(args):
                    inner = [args[index]]
                    index += 1
                else:
                    raise PreprocessorError("'defined' without a macro name", token.location)
                value = bool(inner) and is_defined and inner[0].text in self.macros
                out.append(Token(TokenKind.LITERAL, "1" if value else "0", token.location))
                continue
            out.append(token)
            index += 1
        return out


def _adjacent(left: Token, right: Token) -> bool:
    return (
        left.location.line == right.location.line
        and left.location.column + len(left.text) == right.location.column
    )
