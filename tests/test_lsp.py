"""Tests for the nudo LSP server."""

from __future__ import annotations

from lsprotocol import types as lsp

from nudo.config import AnalysisConfig, NudoConfig
from nudo.errors import Severity, error, warning
from nudo.lsp import (
    _SEVERITY_MAP,
    DocumentState,
    _analyze,
    _get_word_at,
    _state,
    hover_text,
    span_to_range,
    to_lsp_diagnostic,
)
from nudo.source import Span
from tests.helpers import SUBTRACT

CONFIG = NudoConfig(AnalysisConfig(timeout=20.0, jobs=2))


class TestSpanConversion:
    def test_span_to_range_basic(self):
        r = span_to_range(Span("test.py", 1, 1, 1, 5))
        assert r.start.line == 0
        assert r.start.character == 0
        assert r.end.line == 0
        assert r.end.character == 5

    def test_span_to_range_multiline(self):
        r = span_to_range(Span("test.py", 5, 3, 7, 10))
        assert r.start.line == 4
        assert r.start.character == 2
        assert r.end.line == 6
        assert r.end.character == 10


class TestDiagnosticConversion:
    def test_severity_map(self):
        assert _SEVERITY_MAP[Severity.ERROR] == lsp.DiagnosticSeverity.Error
        assert _SEVERITY_MAP[Severity.WARNING] == lsp.DiagnosticSeverity.Warning

    def test_error(self):
        d = error("E200", "type mismatch in case 'bad'", Span("m.py", 2, 3, 2, 9))
        d.notes.append("at m.py:5:12")
        converted = to_lsp_diagnostic(d)
        assert converted.severity == lsp.DiagnosticSeverity.Error
        assert converted.source == "nudo"
        assert converted.code == "E200"
        assert converted.message == "[E200] type mismatch in case 'bad'\nat m.py:5:12"
        assert converted.range.start.line == 1

    def test_warning(self):
        d = warning("W300", "unmocked external symbol 'fetch'", Span("m.py", 1, 1, 1, 1))
        assert to_lsp_diagnostic(d).severity == lsp.DiagnosticSeverity.Warning


class TestWordAt:
    def test_middle_of_word(self):
        assert _get_word_at("def subtract(a, b):", 0, 6) == "subtract"

    def test_after_word(self):
        assert _get_word_at("x = subtract", 0, 12) == "subtract"

    def test_on_space(self):
        assert _get_word_at("a   b", 0, 2) == ""

    def test_out_of_range(self):
        assert _get_word_at("abc", 3, 0) == ""
        assert _get_word_at("abc", 0, 10) == ""


class TestAnalyze:
    URI = "file:///calc.py"

    def test_caches_state(self):
        ds = _analyze(self.URI, SUBTRACT, CONFIG)
        try:
            assert _state[self.URI] is ds
            assert ds.diagnostics == []
            assert "subtract" in ds.result.signatures
        finally:
            _state.pop(self.URI, None)

    def test_publishes_errors(self):
        source = '# @nudo:case (T.string)\ndef neg(x):\n    return -x\n'
        ds = _analyze(self.URI, source, CONFIG)
        _state.pop(self.URI, None)
        codes = [d.code for d in ds.diagnostics]
        assert codes == ["E200", "W500"]
        assert ds.diagnostics[0].range.start.line == 0

    def test_hover(self):
        ds = _analyze(self.URI, SUBTRACT, CONFIG)
        _state.pop(self.URI, None)
        text = hover_text(ds, 3, 6)
        assert text == (
            "```python\ndef subtract(a: number, b: number) -> number\n```"
            "\n\ninferred from 3 case(s)"
        )

    def test_hover_elsewhere(self):
        ds = _analyze(self.URI, SUBTRACT, CONFIG)
        _state.pop(self.URI, None)
        assert hover_text(ds, 4, 12) is None

    def test_hover_without_result(self):
        assert hover_text(DocumentState(source="def f(): pass"), 0, 4) is None
