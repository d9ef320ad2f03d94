"""Lexer for directive text.

Tokenizes the text following an ``@nudo:`` tag (a single comment or
docstring line) into literals, identifiers and punctuation. Columns are
reported relative to the analyzed file so diagnostics point at the comment.
"""

from __future__ import annotations

from nudo.errors import Diagnostic, ParseError, error
from nudo.source import Span
from nudo.tokens import PUNCTUATION, Token, TokenKind

_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "\\": "\\",
    '"': '"',
    "'": "'",
}


class Lexer:
    """Tokenizes one line of directive text."""

    def __init__(
        self,
        source: str,
        filename: str = "<directive>",
        *,
        line: int = 1,
        col: int = 1,
        code: str = "E100",
    ) -> None:
        self.source = source
        self.filename = filename
        self.pos = 0
        self.line = line
        self.col = col
        self.code = code
        self.tokens: list[Token] = []
        self.diagnostics: list[Diagnostic] = []

    def lex(self) -> list[Token]:
        """Tokenize the entire text and return the token list."""
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch in (" ", "\t"):
                self._advance()
            elif ch in ('"', "'"):
                self._lex_string(ch)
            elif ch.isdigit() or (ch == "." and self._peek(1).isdigit()):
                self._lex_number()
            elif ch.isalpha() or ch == "_":
                self._lex_identifier()
            elif ch in PUNCTUATION:
                start_col = self.col
                self._advance()
                self._emit(PUNCTUATION[ch], ch, start_col)
            else:
                self._error(f"unexpected character {ch!r}", self.col)
                self._advance()

        self._emit(TokenKind.EOF, "", self.col)

        if self.diagnostics:
            raise ParseError(self.diagnostics)
        return self.tokens

    # ── Helpers ───────────────────────────────────────────────────

    def _peek(self, offset: int = 0) -> str:
        idx = self.pos + offset
        if idx < len(self.source):
            return self.source[idx]
        return "\0"

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        self.col += 1
        return ch

    def _emit(self, kind: TokenKind, value: str, start_col: int) -> Token:
        end_col = max(start_col, self.col - 1)
        span = Span(self.filename, self.line, start_col, self.line, end_col)
        tok = Token(kind, value, span)
        self.tokens.append(tok)
        return tok

    def _error(self, message: str, col: int) -> None:
        span = Span.point(self.filename, self.line, col)
        self.diagnostics.append(error(self.code, message, span))

    # ── Literals ──────────────────────────────────────────────────

    def _lex_string(self, quote: str) -> None:
        start_col = self.col
        self._advance()  # skip opening quote
        text = []
        while self.pos < len(self.source) and self.source[self.pos] != quote:
            if self.source[self.pos] == "\\":
                self._advance()
                if self.pos >= len(self.source):
                    break
                esc = self._advance()
                text.append(_ESCAPES.get(esc, esc))
            else:
                text.append(self._advance())

        if self.pos >= len(self.source):
            self._error("unterminated string literal", start_col)
            return
        self._advance()  # skip closing quote
        self._emit(TokenKind.STRING, "".join(text), start_col)

    def _lex_number(self) -> None:
        start_col = self.col
        text = []
        while self.pos < len(self.source) and (
            self.source[self.pos].isdigit() or self.source[self.pos] == "_"
        ):
            text.append(self._advance())

        if self._peek() == "." and self._peek(1).isdigit():
            text.append(self._advance())
            while self.pos < len(self.source) and self.source[self.pos].isdigit():
                text.append(self._advance())

        if self._peek() in ("e", "E"):
            sign = self._peek(1)
            if sign.isdigit() or (sign in "+-" and self._peek(2).isdigit()):
                text.append(self._advance())
                if sign in "+-":
                    text.append(self._advance())
                while self.pos < len(self.source) and self.source[self.pos].isdigit():
                    text.append(self._advance())

        self._emit(TokenKind.NUMBER, "".join(text), start_col)

    def _lex_identifier(self) -> None:
        start_col = self.col
        text = []
        while self.pos < len(self.source) and (
            self.source[self.pos].isalnum() or self.source[self.pos] == "_"
        ):
            text.append(self._advance())
        self._emit(TokenKind.IDENTIFIER, "".join(text), start_col)
