"""nudo language server, pygls-based, for annotated Python files.

Publishes diagnostics on open and change, shows inferred signatures on
hover and lists annotated functions as document symbols.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lsprotocol import types as lsp
from pygls.lsp.server import LanguageServer
from pygls.uris import to_fs_path

from nudo import __version__
from nudo.analyzer import AnalysisResult, analyze
from nudo.config import NudoConfig, resolve_config
from nudo.errors import Diagnostic, Severity
from nudo.source import Span

logger = logging.getLogger(__name__)

# ── Conversion helpers ────────────────────────────────────────────

_SEVERITY_MAP = {
    Severity.ERROR: lsp.DiagnosticSeverity.Error,
    Severity.WARNING: lsp.DiagnosticSeverity.Warning,
}


def span_to_range(span: Span) -> lsp.Range:
    """Convert a 1-indexed Span to a 0-indexed LSP Range."""
    return lsp.Range(
        start=lsp.Position(line=span.start_line - 1, character=span.start_col - 1),
        end=lsp.Position(line=span.end_line - 1, character=span.end_col),
    )


def to_lsp_diagnostic(d: Diagnostic) -> lsp.Diagnostic:
    message = f"[{d.code}] {d.message}"
    if d.notes:
        message += "\n" + "\n".join(d.notes)
    return lsp.Diagnostic(
        range=span_to_range(d.span),
        severity=_SEVERITY_MAP[d.severity],
        source="nudo",
        code=d.code,
        message=message,
    )


# ── Per-document state ────────────────────────────────────────────


@dataclass
class DocumentState:
    """Cached analysis results for a single open document."""

    source: str = ""
    result: AnalysisResult | None = None
    diagnostics: list[lsp.Diagnostic] = field(default_factory=list)


# ── Server ────────────────────────────────────────────────────────

server = LanguageServer(
    "nudo-lsp", __version__,
    text_document_sync_kind=lsp.TextDocumentSyncKind.Full,
)
_state: dict[str, DocumentState] = {}
_config: NudoConfig | None = None


def _analyze(uri: str, source: str, config: NudoConfig | None = None) -> DocumentState:
    """Analyze one document, cache and return its state."""
    ds = DocumentState(source=source)
    path = to_fs_path(uri) if uri.startswith("file:") else None
    result = analyze(source, filename=uri, config=config or _config or NudoConfig(), path=path)
    ds.result = result
    ds.diagnostics = [to_lsp_diagnostic(d) for d in result.diagnostics]
    logger.debug("%s: %d diagnostic(s)", uri, len(ds.diagnostics))
    _state[uri] = ds
    return ds


def _get_word_at(source: str, line: int, character: int) -> str:
    """Extract the identifier at the given 0-indexed position."""
    lines = source.splitlines()
    if line < 0 or line >= len(lines):
        return ""
    text = lines[line]
    if character < 0 or character > len(text):
        return ""
    if character == len(text) or not (text[character].isalnum() or text[character] == "_"):
        # cursor right after the word
        if character == 0 or not (text[character - 1].isalnum() or text[character - 1] == "_"):
            return ""
        character -= 1

    start = character
    while start > 0 and (text[start - 1].isalnum() or text[start - 1] == "_"):
        start -= 1
    end = character
    while end < len(text) and (text[end].isalnum() or text[end] == "_"):
        end += 1
    return text[start:end]


def hover_text(ds: DocumentState, line: int, character: int) -> str | None:
    if ds.result is None:
        return None
    word = _get_word_at(ds.source, line, character)
    sig = ds.result.signatures.get(word)
    if sig is None:
        return None
    text = f"```python\ndef {sig.render(with_name=True)}\n```"
    if sig.source_case_count:
        text += f"\n\ninferred from {sig.source_case_count} case(s)"
    return text


# ── LSP Feature Handlers ─────────────────────────────────────────


def _publish(uri: str, ds: DocumentState) -> None:
    server.text_document_publish_diagnostics(lsp.PublishDiagnosticsParams(
        uri=uri,
        diagnostics=ds.diagnostics,
    ))


@server.feature(lsp.INITIALIZED)
def initialized(params: lsp.InitializedParams) -> None:
    global _config
    _config = resolve_config()


@server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
def did_open(params: lsp.DidOpenTextDocumentParams) -> None:
    uri = params.text_document.uri
    _publish(uri, _analyze(uri, params.text_document.text))


@server.feature(lsp.TEXT_DOCUMENT_DID_CHANGE)
def did_change(params: lsp.DidChangeTextDocumentParams) -> None:
    uri = params.text_document.uri
    # Full sync: take last content change
    source = params.content_changes[-1].text if params.content_changes else ""
    _publish(uri, _analyze(uri, source))


@server.feature(lsp.TEXT_DOCUMENT_DID_CLOSE)
def did_close(params: lsp.DidCloseTextDocumentParams) -> None:
    _state.pop(params.text_document.uri, None)


@server.feature(lsp.TEXT_DOCUMENT_HOVER)
def hover(params: lsp.HoverParams) -> lsp.Hover | None:
    ds = _state.get(params.text_document.uri)
    if ds is None:
        return None
    text = hover_text(ds, params.position.line, params.position.character)
    if text is None:
        return None
    return lsp.Hover(contents=lsp.MarkupContent(kind=lsp.MarkupKind.Markdown, value=text))


@server.feature(lsp.TEXT_DOCUMENT_DOCUMENT_SYMBOL)
def document_symbol(params: lsp.DocumentSymbolParams) -> list[lsp.DocumentSymbol]:
    ds = _state.get(params.text_document.uri)
    if ds is None or ds.result is None:
        return []
    return [
        lsp.DocumentSymbol(
            name=report.name,
            kind=lsp.SymbolKind.Function,
            range=span_to_range(report.span),
            selection_range=span_to_range(report.span),
            detail=ds.result.signatures[report.name].render(),
        )
        for report in ds.result.functions
    ]


# ── Entry point ──────────────────────────────────────────────────


def main() -> None:
    """Start the nudo language server on stdio."""
    server.start_io()
