"""Argument evaluation: directive argument text to case values.

Literals become :class:`~nudo.values.Concrete`; ``T.<name>`` placeholders
and constructors become :class:`~nudo.values.Symbolic`. Evaluation is total:
malformed text degrades to ``Symbolic(unknown)`` with an E110 diagnostic.
"""

from __future__ import annotations

from nudo.directives import ArgumentExpr
from nudo.errors import Diagnostic, ParseError, error
from nudo.lexer import Lexer
from nudo.source import Span
from nudo.tokens import Token, TokenKind
from nudo.types import (
    BOOLEAN,
    NEVER,
    NULL,
    NUMBER,
    STRING,
    UNDEFINED,
    UNKNOWN,
    ArrayType,
    FunctionType,
    Literal,
    Throws,
    TupleType,
    TypeExpr,
    object_type,
    union,
)
from nudo.values import Concrete, Symbolic, Value, value_type

# T.<name> placeholders that take no arguments
PLACEHOLDERS: dict[str, TypeExpr] = {
    "number": NUMBER,
    "string": STRING,
    "boolean": BOOLEAN,
    "null": NULL,
    "undefined": UNDEFINED,
    "unknown": UNKNOWN,
    "never": NEVER,
    # Python spellings
    "int": NUMBER,
    "float": NUMBER,
    "str": STRING,
    "bool": BOOLEAN,
    "none": NULL,
}

CONSTRUCTORS = ("union", "literal", "array", "tuple", "object", "fn", "throws")

_KEYWORDS: dict[str, object] = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "None": None,
}


class _EvalError(Exception):
    def __init__(self, message: str, span: Span) -> None:
        super().__init__(message)
        self.message = message
        self.span = span


class ArgumentEvaluator:
    """Evaluates :class:`ArgumentExpr` text into values."""

    def evaluate(self, expr: ArgumentExpr) -> tuple[Value, list[Diagnostic]]:
        try:
            tokens = Lexer(
                expr.text, expr.span.file,
                line=expr.span.start_line, col=expr.span.start_col, code="E110",
            ).lex()
        except ParseError as e:
            return Symbolic(UNKNOWN), e.diagnostics

        parser = _ValueParser(tokens, expr.span)
        try:
            value = parser.parse()
        except _EvalError as e:
            parser.diagnostics.append(error("E110", e.message, e.span))
            return Symbolic(UNKNOWN), parser.diagnostics
        return value, parser.diagnostics

    def evaluate_all(
        self, exprs: tuple[ArgumentExpr, ...],
    ) -> tuple[list[Value], list[Diagnostic]]:
        values: list[Value] = []
        diagnostics: list[Diagnostic] = []
        for expr in exprs:
            value, diags = self.evaluate(expr)
            values.append(value)
            diagnostics.extend(diags)
        return values, diagnostics


class _ValueParser:
    """Recursive descent over the tokens of one argument."""

    def __init__(self, tokens: list[Token], span: Span) -> None:
        self.tokens = tokens
        self.span = span
        self.pos = 0
        self.diagnostics: list[Diagnostic] = []

    def parse(self) -> Value:
        if self._at(TokenKind.EOF):
            raise _EvalError("empty argument", self.span)
        value = self._value()
        if not self._at(TokenKind.EOF):
            tok = self._current()
            raise _EvalError(f"unexpected '{tok.value}' after argument", tok.span)
        return value

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

    def _expect(self, kind: TokenKind, what: str) -> Token:
        if not self._at(kind):
            tok = self._current()
            found = f"'{tok.value}'" if tok.kind != TokenKind.EOF else "end of argument"
            raise _EvalError(f"expected {what}, found {found}", tok.span)
        return self._advance()

    # ── Values ────────────────────────────────────────────────────

    def _value(self) -> Value:
        tok = self._current()
        match tok.kind:
            case TokenKind.NUMBER:
                return Concrete(self._number(self._advance()))
            case TokenKind.MINUS:
                self._advance()
                num = self._expect(TokenKind.NUMBER, "a number after '-'")
                return Concrete(-self._number(num))
            case TokenKind.STRING:
                return Concrete(self._advance().value)
            case TokenKind.LBRACKET:
                self._advance()
                return _container(self._items(TokenKind.RBRACKET))
            case TokenKind.LPAREN:
                return self._parenthesized()
            case TokenKind.LBRACE:
                return self._object()
            case TokenKind.IDENTIFIER:
                return self._name()
        raise _EvalError(f"unexpected '{tok.value}' in argument", tok.span)

    @staticmethod
    def _number(tok: Token) -> int | float:
        text = tok.value.replace("_", "")
        try:
            if any(c in text for c in ".eE"):
                return float(text)
            return int(text)
        except ValueError:
            raise _EvalError(f"invalid number '{tok.value}'", tok.span) from None

    def _items(self, closer: TokenKind) -> list[Value]:
        """Comma-separated values up to *closer* (consumed). Trailing comma ok."""
        items: list[Value] = []
        while not self._at(closer):
            items.append(self._value())
            if self._at(TokenKind.COMMA):
                self._advance()
            elif not self._at(closer):
                tok = self._current()
                raise _EvalError(f"expected ',' or closing bracket, found '{tok.value}'",
                                 tok.span)
        self._advance()
        return items

    def _parenthesized(self) -> Value:
        self._advance()
        if self._at(TokenKind.RPAREN):
            self._advance()
            return Concrete([])
        first = self._value()
        if self._at(TokenKind.RPAREN):
            self._advance()
            return first
        self._expect(TokenKind.COMMA, "',' or ')'")
        return _container([first, *self._items(TokenKind.RPAREN)])

    def _object(self) -> Value:
        self._advance()
        fields: dict[str, Value] = {}
        while not self._at(TokenKind.RBRACE):
            key_tok = self._current()
            if key_tok.kind not in (TokenKind.IDENTIFIER, TokenKind.STRING):
                raise _EvalError("expected an object key", key_tok.span)
            self._advance()
            self._expect(TokenKind.COLON, "':' after object key")
            fields[key_tok.value] = self._value()
            if self._at(TokenKind.COMMA):
                self._advance()
            elif not self._at(TokenKind.RBRACE):
                tok = self._current()
                raise _EvalError(f"expected ',' or '}}', found '{tok.value}'", tok.span)
        self._advance()
        if all(isinstance(v, Concrete) for v in fields.values()):
            return Concrete({k: v.literal for k, v in fields.items()})
        return Symbolic(object_type({k: value_type(v) for k, v in fields.items()}))

    def _name(self) -> Value:
        tok = self._advance()
        if tok.value in _KEYWORDS:
            return Concrete(_KEYWORDS[tok.value])
        if tok.value == "undefined":
            return Symbolic(UNDEFINED)
        if tok.value != "T":
            raise _EvalError(f"unknown name '{tok.value}'", tok.span)
        self._expect(TokenKind.DOT, "'.' after 'T'")
        name_tok = self._expect(TokenKind.IDENTIFIER, "a type name after 'T.'")
        return self._constructor(name_tok)

    # ── Symbolic constructors ─────────────────────────────────────

    def _constructor(self, name_tok: Token) -> Value:
        name = name_tok.value
        if name in PLACEHOLDERS:
            if self._at(TokenKind.LPAREN):
                raise _EvalError(f"T.{name} takes no arguments", self._current().span)
            return Symbolic(PLACEHOLDERS[name])
        if name == "throws":
            if not self._at(TokenKind.LPAREN):
                return Symbolic(Throws())
            self._advance()
            exc = self._expect(TokenKind.STRING, "an exception name")
            self._expect(TokenKind.RPAREN, "')'")
            return Symbolic(Throws(exc.value))
        if name not in CONSTRUCTORS:
            self.diagnostics.append(
                error("E110", f"unknown symbolic constructor 'T.{name}'", name_tok.span)
            )
            if self._at(TokenKind.LPAREN):
                self._advance()
                self._items(TokenKind.RPAREN)
            return Symbolic(UNKNOWN)

        self._expect(TokenKind.LPAREN, f"'(' after T.{name}")
        if name == "fn":
            return self._function_type()
        if name == "tuple":
            return self._tuple_type()
        args = self._items(TokenKind.RPAREN)
        if name == "union":
            return Symbolic(union(*(value_type(a) for a in args)))
        if len(args) != 1:
            raise _EvalError(f"T.{name} takes exactly one argument", name_tok.span)
        arg = args[0]
        if name == "literal":
            if not isinstance(arg, Concrete) or isinstance(arg.literal, (list, dict)):
                raise _EvalError("T.literal needs a number, string or boolean",
                                 name_tok.span)
            if arg.literal is None:
                return Symbolic(NULL)
            return Symbolic(Literal(arg.literal))
        if name == "array":
            return Symbolic(ArrayType(value_type(arg)))
        # object
        ty = value_type(arg)
        if isinstance(arg, Concrete) and not isinstance(arg.literal, dict):
            raise _EvalError("T.object needs an object literal", name_tok.span)
        return Symbolic(ty)

    def _function_type(self) -> Value:
        self._expect(TokenKind.LBRACKET, "'[' with parameter types")
        params = self._items(TokenKind.RBRACKET)
        returns: TypeExpr = UNKNOWN
        if self._at(TokenKind.COMMA):
            self._advance()
            if not self._at(TokenKind.RPAREN):
                returns = value_type(self._value())
        self._expect(TokenKind.RPAREN, "')'")
        return Symbolic(FunctionType(tuple(value_type(p) for p in params), returns))

    def _tuple_type(self) -> Value:
        self._expect(TokenKind.LBRACKET, "'[' with element types")
        elements = self._items(TokenKind.RBRACKET)
        self._expect(TokenKind.RPAREN, "')'")
        return Symbolic(TupleType(tuple(value_type(e) for e in elements)))


def _container(items: list[Value]) -> Value:
    if all(isinstance(v, Concrete) for v in items):
        return Concrete([v.literal for v in items])
    return Symbolic(ArrayType(union(*(value_type(v) for v in items))))
