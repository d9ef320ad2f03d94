"""Diagnostics: severity, failure taxonomy, collection and Rust-style rendering.

Diagnostic codes:

    E100  malformed directive            E101  Python syntax error in file
    E110  malformed argument expression  E200  type mismatch (symbolic)
    E210  uncaught exception (concrete)  E220  case timed out
    E400  @nudo:returns contradicted
    W101  async function not analyzed    W102  directive outside a function
    W230  case may raise                 W300  unmocked external symbol
    W310  missing object field           W500  no successful cases
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from nudo.source import SourceText, Span


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


class FailureKind(Enum):
    """Why a case produced no type."""

    TYPE_MISMATCH = "type-mismatch"
    THROWN = "thrown"
    TIMEOUT = "timeout"


FAILURE_CODES: dict[FailureKind, str] = {
    FailureKind.TYPE_MISMATCH: "E200",
    FailureKind.THROWN: "E210",
    FailureKind.TIMEOUT: "E220",
}


# ANSI color codes
_COLORS = {
    Severity.ERROR: "\033[1;31m",    # bold red
    Severity.WARNING: "\033[1;33m",  # bold yellow
}
_BOLD = "\033[1m"
_BLUE = "\033[1;34m"
_RESET = "\033[0m"


@dataclass
class Diagnostic:
    """A single diagnostic message anchored at a source location."""

    severity: Severity
    code: str
    message: str
    span: Span
    related_case: str | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


def error(code: str, message: str, span: Span, *, case: str | None = None) -> Diagnostic:
    return Diagnostic(Severity.ERROR, code, message, span, related_case=case)


def warning(code: str, message: str, span: Span, *, case: str | None = None) -> Diagnostic:
    return Diagnostic(Severity.WARNING, code, message, span, related_case=case)


class ParseError(Exception):
    """Malformed directive or argument text, carrying its diagnostics."""

    def __init__(self, diagnostics: list[Diagnostic]) -> None:
        self.diagnostics = diagnostics
        messages = [d.message for d in diagnostics]
        super().__init__(f"{len(diagnostics)} error(s): {'; '.join(messages)}")


class DiagnosticCollector:
    """Accumulates diagnostics from every stage of an analysis run.

    Nothing is deduplicated: each entry is independently actionable.
    Workers may push concurrently; ordering is only fixed by :meth:`sorted`.
    """

    def __init__(self) -> None:
        self._items: list[Diagnostic] = []
        self._lock = threading.Lock()

    def add(self, diag: Diagnostic) -> None:
        with self._lock:
            self._items.append(diag)

    def extend(self, diags: list[Diagnostic]) -> None:
        with self._lock:
            self._items.extend(diags)

    def __len__(self) -> int:
        return len(self._items)

    def sorted(self) -> list[Diagnostic]:
        """All diagnostics ordered by (line, column), stable for ties."""
        with self._lock:
            return sorted(self._items, key=lambda d: d.span.sort_key)


class DiagnosticRenderer:
    """Renders diagnostics in Rust-style format with colors."""

    def __init__(self, *, color: bool = True) -> None:
        self.color = color
        self._file_cache: dict[str, list[str]] = {}

    def _c(self, code: str) -> str:
        return code if self.color else ""

    def add_source(self, source: SourceText) -> None:
        """Use in-memory text for *source.filename* instead of reading disk."""
        self._file_cache[source.filename] = source.lines

    def _get_source_line(self, filename: str, line_num: int) -> str | None:
        """Load and cache source file, return the 1-indexed line."""
        if filename not in self._file_cache:
            try:
                path = Path(filename)
                if path.is_file():
                    self._file_cache[filename] = path.read_text().splitlines()
                else:
                    self._file_cache[filename] = []
            except OSError:
                self._file_cache[filename] = []
        lines = self._file_cache[filename]
        if 1 <= line_num <= len(lines):
            return lines[line_num - 1]
        return None

    def render(self, diag: Diagnostic) -> str:
        lines: list[str] = []
        sev = diag.severity
        color = _COLORS[sev]

        # Header: error[E200]: message
        lines.append(
            f"{self._c(color)}{sev.value}[{diag.code}]{self._c(_RESET)}"
            f"{self._c(_BOLD)}: {diag.message}{self._c(_RESET)}"
        )

        span = diag.span
        lines.append(f"  {self._c(_BLUE)}-->{self._c(_RESET)} {span}")
        gutter = f"{span.start_line:>4}"
        lines.append(f"  {self._c(_BLUE)}   |{self._c(_RESET)}")

        source_line = self._get_source_line(span.file, span.start_line)
        if source_line is not None:
            lines.append(
                f"  {self._c(_BLUE)}{gutter} |{self._c(_RESET)} {source_line}"
            )
            if span.start_line == span.end_line:
                caret_len = max(1, span.end_col - span.start_col + 1)
                padding = " " * (span.start_col - 1)
                carets = "^" * caret_len
                lines.append(
                    f"  {self._c(_BLUE)}   |{self._c(_RESET)} "
                    f"{padding}{self._c(color)}{carets}{self._c(_RESET)}"
                )

        if diag.related_case:
            lines.append(
                f"  {self._c(_BLUE)}={self._c(_RESET)} case: {diag.related_case}"
            )
        for note in diag.notes:
            lines.append(f"  {self._c(_BLUE)}={self._c(_RESET)} note: {note}")

        return "\n".join(lines)
