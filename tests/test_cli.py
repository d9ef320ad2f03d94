"""Tests for the nudo CLI and diagnostic rendering."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from nudo import __version__
from nudo.cli import main
from nudo.errors import (
    Diagnostic,
    DiagnosticCollector,
    DiagnosticRenderer,
    ParseError,
    Severity,
    error,
    warning,
)
from nudo.source import SourceText, Span
from tests.helpers import SUBTRACT

BROKEN = '''\
# @nudo:case "bad" (T.string)
def neg(x):
    return -x
'''


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def calc(tmp_path):
    (tmp_path / "nudo.toml").write_text("[analysis]\ntimeout = 20\njobs = 2\n")
    path = tmp_path / "calc.py"
    path.write_text(SUBTRACT)
    return path


# --- CLI tests ---


class TestCLI:
    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "infer" in result.output
        assert "check" in result.output
        assert "lsp" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert f"nudo, version {__version__}" in result.output

    def test_lsp_help(self, runner):
        result = runner.invoke(main, ["lsp", "--help"])
        assert result.exit_code == 0
        assert "language server" in result.output


class TestInfer:
    def test_text(self, runner, calc):
        result = runner.invoke(main, ["infer", str(calc)])
        assert result.exit_code == 0
        assert f"{calc}:" in result.output
        assert "  subtract(a: number, b: number) -> number" in result.output

    def test_locations(self, runner, calc):
        result = runner.invoke(main, ["infer", "--locations", str(calc)])
        assert f"[{calc}:4:1]" in result.output

    def test_no_annotated_functions(self, runner, tmp_path):
        path = tmp_path / "plain.py"
        path.write_text("def f(x):\n    return x\n")
        result = runner.invoke(main, ["infer", str(path)])
        assert result.exit_code == 0
        assert "(no annotated functions)" in result.output

    def test_json(self, runner, calc):
        result = runner.invoke(main, ["infer", "--format", "json", str(calc)])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0]["file"] == str(calc)
        sig = data[0]["signatures"][0]
        assert sig["name"] == "subtract"
        assert [p["display"] for p in sig["params"]] == ["number", "number"]
        assert sig["returns"]["display"] == "number"
        assert data[0]["diagnostics"] == []

    def test_errors_exit_nonzero(self, runner, tmp_path):
        path = tmp_path / "neg.py"
        path.write_text(BROKEN)
        result = runner.invoke(main, ["infer", str(path)])
        assert result.exit_code == 1
        assert "error[E200]" in result.output
        assert "neg(x: unknown) -> unknown" in result.output

    def test_json_diagnostics(self, runner, tmp_path):
        path = tmp_path / "neg.py"
        path.write_text(BROKEN)
        result = runner.invoke(main, ["infer", "--format", "json", str(path)])
        assert result.exit_code == 1
        diags = json.loads(result.output)[0]["diagnostics"]
        assert diags[0]["code"] == "E200"
        assert diags[0]["line"] == 1
        assert diags[0]["case"] == "bad"

    def test_emit_stubs(self, runner, calc):
        result = runner.invoke(main, ["infer", "--emit-stubs", str(calc)])
        assert result.exit_code == 0
        stub = calc.with_suffix(".pyi")
        assert "def subtract(a: float, b: float) -> float: ..." in stub.read_text()
        assert f"wrote {stub}" in result.output

    def test_emit_stubs_out_dir(self, runner, calc, tmp_path):
        out = tmp_path / "stubs"
        result = runner.invoke(main, ["infer", "--emit-stubs", "--out", str(out), str(calc)])
        assert result.exit_code == 0
        assert (out / "calc.pyi").exists()

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(main, ["infer", str(tmp_path / "absent.py")])
        assert result.exit_code != 0

    def test_invalid_config(self, runner, calc, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text("[analysis]\ntimeout = \"soon\"\n")
        result = runner.invoke(main, ["infer", "--config", str(bad), str(calc)])
        assert result.exit_code == 1
        assert "invalid nudo.toml" in result.output


class TestCheck:
    def test_project(self, runner, tmp_project):
        result = runner.invoke(main, ["check", str(tmp_project)])
        assert result.exit_code == 0
        assert "[nudo] Analysis complete: 0 error(s), 0 warning(s)" in result.output

    def test_errors_reported_as_warnings(self, runner, tmp_project):
        (tmp_project / "src" / "neg.py").write_text(BROKEN)
        result = runner.invoke(main, ["check", str(tmp_project)])
        assert result.exit_code == 0
        assert "[nudo] src/neg.py:1:3 error: type mismatch in case 'bad'" in result.output
        assert "[nudo] Analysis complete: 1 error(s), 1 warning(s)" in result.output

    def test_fail_on_error(self, runner, tmp_project):
        (tmp_project / "src" / "neg.py").write_text(BROKEN)
        result = runner.invoke(main, ["check", "--fail-on-error", str(tmp_project)])
        assert result.exit_code == 1
        assert "Analysis complete" not in result.output

    def test_invalid_config(self, runner, tmp_project):
        (tmp_project / "nudo.toml").write_text("[build]\nexclude = 3\n")
        result = runner.invoke(main, ["check", str(tmp_project)])
        assert result.exit_code == 1
        assert "error: invalid nudo.toml" in result.output


# --- Error rendering tests ---


class TestDiagnostics:
    def test_render_error(self):
        diag = error("E200", "type mismatch in case 'bad'", Span("calc.py", 1, 3, 1, 12), case="bad")
        diag.notes.append("at calc.py:5:12")
        renderer = DiagnosticRenderer(color=False)
        renderer.add_source(SourceText("# @nudo:case (T.string)\n", "calc.py"))
        output = renderer.render(diag)

        assert "error[E200]: type mismatch in case 'bad'" in output
        assert "--> calc.py:1:3" in output
        assert "   1 | # @nudo:case (T.string)" in output
        assert "|   ^^^^^^^^^^" in output
        assert "= case: bad" in output
        assert "= note: at calc.py:5:12" in output

    def test_render_warning(self):
        diag = warning("W300", "unmocked external symbol 'fetch'", Span("m.py", 5, 1, 5, 10))
        output = DiagnosticRenderer(color=False).render(diag)
        assert "warning[W300]" in output
        assert "unmocked external symbol 'fetch'" in output

    def test_render_without_source(self):
        diag = error("E101", "syntax error: bad", Span("missing.py", 3, 1, 3, 1))
        output = DiagnosticRenderer(color=False).render(diag)
        assert "missing.py:3:1" in output
        assert "^" not in output

    def test_parse_error(self):
        span = Span("m.py", 1, 1, 1, 1)
        err = ParseError([error("E100", "first", span), error("E100", "second", span)])
        assert len(err.diagnostics) == 2
        assert "2 error(s)" in str(err)

    def test_severity(self):
        diag = Diagnostic(Severity.WARNING, "W230", "may raise", Span("m.py", 1, 1, 1, 1))
        assert not diag.is_error


class TestCollector:
    def test_sorted_by_location(self):
        collector = DiagnosticCollector()
        collector.add(warning("W500", "late", Span("m.py", 9, 1, 9, 1)))
        collector.add(error("E200", "early", Span("m.py", 2, 5, 2, 5)))
        collector.add(error("E210", "earliest", Span("m.py", 2, 1, 2, 1)))
        assert [d.code for d in collector.sorted()] == ["E210", "E200", "W500"]
        assert len(collector) == 3

    def test_no_deduplication(self):
        collector = DiagnosticCollector()
        diag = warning("W300", "unmocked external symbol 'x'", Span("m.py", 1, 1, 1, 1))
        collector.extend([diag, diag])
        assert len(collector.sorted()) == 2


# --- Source tests ---


class TestSource:
    def test_line_at(self):
        text = SourceText("line one\nline two\n", "m.py")
        assert text.line_at(1) == "line one"
        assert text.line_at(0) == ""
        assert text.line_at(99) == ""

    def test_span_text(self):
        text = SourceText("hello world\n")
        assert text.span_text(Span("<string>", 1, 7, 1, 11)) == "world"

    def test_span_str(self):
        assert str(Span("file.py", 10, 5, 10, 20)) == "file.py:10:5"
