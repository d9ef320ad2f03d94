"""Directive extraction: ``@nudo:*`` annotations attached to functions.

A function's directive block is the run of ``#`` comment lines directly
above its ``def`` (or its first decorator) plus its docstring. Comment
blocks that belong to no function may carry file-scoped mocks.

Grammar, one directive per line::

    @nudo:case    ["label"] (arg, ...)
    @nudo:skip    ["label"] (arg, ...)     skipped case
    @nudo:skip    [type]                   whole function skipped
    @nudo:sample  ["label"] (arg, ...)
    @nudo:mock    name.path = expr
    @nudo:pure
    @nudo:returns expr
"""

from __future__ import annotations

import ast
import io
import re
import tokenize
from dataclasses import dataclass, field
from enum import Enum

from nudo.errors import Diagnostic, ParseError, error, warning
from nudo.lexer import Lexer
from nudo.source import Span
from nudo.tokens import CLOSERS, OPENERS, Token, TokenKind


class DirectiveKind(Enum):
    CASE = "case"
    MOCK = "mock"
    PURE = "pure"
    SKIP = "skip"
    SAMPLE = "sample"
    RETURNS = "returns"


TAG_PATTERN = re.compile(r"@nudo:(case|mock|pure|skip|sample|returns)\b")

_ANY_TAG = re.compile(r"@nudo:(\w*)")
_DOCSTRING_END = re.compile(r"""\s*(\"\"\"|''')\s*$""")


@dataclass(frozen=True)
class ArgumentExpr:
    """Unevaluated text of one argument, with its location."""

    text: str
    span: Span


@dataclass(frozen=True)
class Directive:
    kind: DirectiveKind
    span: Span
    name: str | None = None
    # None means "no argument list" (mock, pure, returns, function-level skip)
    arguments: tuple[ArgumentExpr, ...] | None = None
    payload: ArgumentExpr | None = None

    @property
    def is_case_like(self) -> bool:
        """True for directives that describe one input scenario."""
        return self.arguments is not None

    @property
    def skips_function(self) -> bool:
        return self.kind == DirectiveKind.SKIP and self.arguments is None


@dataclass
class FunctionDirectives:
    name: str
    node: ast.FunctionDef
    span: Span
    directives: list[Directive] = field(default_factory=list)

    def of_kind(self, kind: DirectiveKind) -> list[Directive]:
        return [d for d in self.directives if d.kind == kind]

    @property
    def is_pure(self) -> bool:
        return any(d.kind == DirectiveKind.PURE for d in self.directives)


@dataclass
class DirectiveSet:
    """All directives of one file."""

    functions: list[FunctionDirectives] = field(default_factory=list)
    file_mocks: list[Directive] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


# ── Extraction ──────────────────────────────────────────────────


def extract_directives(
    tree: ast.Module, source: str, filename: str = "<string>",
) -> DirectiveSet:
    """Collect directive blocks for every top-level function in *tree*."""
    result = DirectiveSet()
    lines = source.splitlines()
    comments = _comment_lines(source)
    claimed: set[int] = set()

    for stmt in tree.body:
        if not isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        block = _leading_block(stmt, comments)
        block.extend(_docstring_lines(stmt))
        claimed.update(block)

        directives: list[Directive] = []
        for lineno in block:
            directives.extend(_parse_line(lines[lineno - 1], lineno, filename, result))
        if not directives:
            continue

        span = Span(
            filename, stmt.lineno, stmt.col_offset + 1,
            stmt.lineno, stmt.col_offset + len("def ") + len(stmt.name),
        )
        if isinstance(stmt, ast.AsyncFunctionDef):
            result.diagnostics.append(warning(
                "W101", f"async function '{stmt.name}' is not analyzed", span,
            ))
            continue
        result.functions.append(FunctionDirectives(stmt.name, stmt, span, directives))

    for lineno in sorted(comments):
        if lineno in claimed:
            continue
        for directive in _parse_line(lines[lineno - 1], lineno, filename, result):
            if directive.kind == DirectiveKind.MOCK:
                result.file_mocks.append(directive)
            else:
                result.diagnostics.append(warning(
                    "W102",
                    f"@nudo:{directive.kind.value} outside a function's directive "
                    "block is ignored",
                    directive.span,
                ))

    return result


def _comment_lines(source: str) -> set[int]:
    """Line numbers whose only content is a comment."""
    found: set[int] = set()
    readline = io.StringIO(source).readline
    try:
        for tok in tokenize.generate_tokens(readline):
            if tok.type == tokenize.COMMENT and not tok.line[: tok.start[1]].strip():
                found.add(tok.start[0])
    except (tokenize.TokenError, SyntaxError):
        pass
    return found


def _leading_block(stmt: ast.stmt, comments: set[int]) -> list[int]:
    first = min([stmt.lineno] + [d.lineno for d in getattr(stmt, "decorator_list", [])])
    block = []
    lineno = first - 1
    while lineno in comments:
        block.append(lineno)
        lineno -= 1
    block.reverse()
    return block


def _docstring_lines(stmt: ast.FunctionDef | ast.AsyncFunctionDef) -> list[int]:
    if not stmt.body:
        return []
    first = stmt.body[0]
    if (
        isinstance(first, ast.Expr)
        and isinstance(first.value, ast.Constant)
        and isinstance(first.value.value, str)
    ):
        return list(range(first.lineno, (first.end_lineno or first.lineno) + 1))
    return []


def _parse_line(
    text: str, lineno: int, filename: str, result: DirectiveSet,
) -> list[Directive]:
    directives = []
    matches = list(_ANY_TAG.finditer(text))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        body = text[match.end():end]
        doc_end = _DOCSTRING_END.search(body)
        if doc_end:
            body = body[: doc_end.start()]
        body = body.rstrip()
        tag_span = Span(filename, lineno, match.start() + 1, lineno, match.end() + len(body))
        try:
            kind = DirectiveKind(match.group(1))
        except ValueError:
            result.diagnostics.append(error(
                "E100", f"unknown directive '@nudo:{match.group(1)}'", tag_span,
            ))
            continue
        try:
            directives.append(
                DirectiveParser(kind, body, tag_span, col=match.end() + 1).parse()
            )
        except ParseError as e:
            result.diagnostics.extend(e.diagnostics)
    return directives


# ── Parsing ─────────────────────────────────────────────────────


class DirectiveParser:
    """Parses the text after one ``@nudo:<kind>`` tag."""

    def __init__(self, kind: DirectiveKind, text: str, span: Span, *, col: int) -> None:
        self.kind = kind
        self.text = text
        self.span = span
        self.base_col = col
        self.tokens = Lexer(text, span.file, line=span.start_line, col=col).lex()
        self.pos = 0

    def parse(self) -> Directive:
        match self.kind:
            case DirectiveKind.CASE | DirectiveKind.SAMPLE:
                label = self._optional_label()
                args = self._argument_list()
                self._expect_end()
                return Directive(self.kind, self.span, label, args)
            case DirectiveKind.SKIP:
                if self._at(TokenKind.STRING) or self._at(TokenKind.LPAREN):
                    label = self._optional_label()
                    args = self._argument_list()
                    self._expect_end()
                    return Directive(self.kind, self.span, label, args)
                payload = self._rest() if not self._at(TokenKind.EOF) else None
                return Directive(self.kind, self.span, payload=payload)
            case DirectiveKind.MOCK:
                name = self._dotted_name()
                self._expect(TokenKind.ASSIGN, "expected '=' after mocked symbol name")
                if self._at(TokenKind.EOF):
                    self._fail("expected a substitute after '='")
                return Directive(self.kind, self.span, name, payload=self._rest())
            case DirectiveKind.PURE:
                self._expect_end()
                return Directive(self.kind, self.span)
            case DirectiveKind.RETURNS:
                if self._at(TokenKind.EOF):
                    self._fail("@nudo:returns needs an expected type or value")
                return Directive(self.kind, self.span, payload=self._rest(unwrap=True))

    # ── Token helpers ─────────────────────────────────────────────

    def _current(self) -> Token:
        return self.tokens[self.pos]

    def _at(self, kind: TokenKind) -> bool:
        return self._current().kind == kind

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != TokenKind.EOF:
            self.pos += 1
        return tok

    def _fail(self, message: str, tok: Token | None = None) -> None:
        span = (tok or self._current()).span if self._current().kind != TokenKind.EOF else self.span
        raise ParseError([error("E100", message, span)])

    def _expect(self, kind: TokenKind, message: str) -> Token:
        if not self._at(kind):
            self._fail(message)
        return self._advance()

    def _expect_end(self) -> None:
        if not self._at(TokenKind.EOF):
            self._fail(f"unexpected '{self._current().value}' after @nudo:{self.kind.value}")

    def _slice(self, first: Token, last: Token) -> ArgumentExpr:
        start = first.span.start_col
        end = last.span.end_col
        text = self.text[start - self.base_col : end - self.base_col + 1]
        return ArgumentExpr(text, Span(self.span.file, first.span.start_line, start,
                                       first.span.start_line, end))

    # ── Grammar ───────────────────────────────────────────────────

    def _optional_label(self) -> str | None:
        if self._at(TokenKind.STRING):
            return self._advance().value
        return None

    def _dotted_name(self) -> str:
        parts = [self._expect(TokenKind.IDENTIFIER, "expected a symbol name to mock").value]
        while self._at(TokenKind.DOT):
            self._advance()
            parts.append(self._expect(TokenKind.IDENTIFIER, "expected a name after '.'").value)
        return ".".join(parts)

    def _argument_list(self) -> tuple[ArgumentExpr, ...]:
        """Parse ``( arg, ... )`` and split it at top-level commas."""
        self._expect(TokenKind.LPAREN, f"expected '(' to open the @nudo:{self.kind.value} arguments")
        args: list[ArgumentExpr] = []
        stack: list[TokenKind] = []
        group: list[Token] = []
        while True:
            tok = self._current()
            if tok.kind == TokenKind.EOF:
                self._fail("unbalanced parentheses in argument list")
            if not stack and tok.kind == TokenKind.RPAREN:
                self._advance()
                break
            if not stack and tok.kind == TokenKind.COMMA:
                if not group:
                    self._fail("empty argument in argument list", tok)
                args.append(self._slice(group[0], group[-1]))
                group = []
                self._advance()
                continue
            if tok.kind in OPENERS:
                stack.append(OPENERS[tok.kind])
            elif tok.kind in CLOSERS:
                if not stack or stack.pop() != tok.kind:
                    self._fail(f"unbalanced '{tok.value}' in argument list", tok)
            group.append(self._advance())
        if group:
            args.append(self._slice(group[0], group[-1]))
        return tuple(args)

    def _rest(self, *, unwrap: bool = False) -> ArgumentExpr:
        """Everything up to the end of the line as one expression."""
        first = self.pos
        last = len(self.tokens) - 2  # token before EOF
        self._check_balanced(first, last)
        if unwrap and self._wraps(first, last):
            first += 1
            last -= 1
            if first > last:
                self._fail("@nudo:returns needs an expected type or value")
        self.pos = len(self.tokens) - 1
        return self._slice(self.tokens[first], self.tokens[last])

    def _check_balanced(self, first: int, last: int) -> None:
        stack: list[TokenKind] = []
        for tok in self.tokens[first : last + 1]:
            if tok.kind in OPENERS:
                stack.append(OPENERS[tok.kind])
            elif tok.kind in CLOSERS:
                if not stack or stack.pop() != tok.kind:
                    self._fail(f"unbalanced '{tok.value}'", tok)
        if stack:
            self._fail("unbalanced brackets", self.tokens[last])

    def _wraps(self, first: int, last: int) -> bool:
        """True if tokens[first] is '(' and its partner is tokens[last]."""
        if self.tokens[first].kind != TokenKind.LPAREN or self.tokens[last].kind != TokenKind.RPAREN:
            return False
        depth = 0
        for i in range(first, last + 1):
            kind = self.tokens[i].kind
            if kind in OPENERS:
                depth += 1
            elif kind in CLOSERS:
                depth -= 1
                if depth == 0 and i != last:
                    return False
        return True
