"""Shared test helpers for the nudo test suite."""

from __future__ import annotations

import ast
import textwrap

from nudo.analyzer import AnalysisResult, analyze
from nudo.config import AnalysisConfig
from nudo.directives import ArgumentExpr, DirectiveSet, extract_directives
from nudo.errors import Diagnostic
from nudo.evaluator import ArgumentEvaluator
from nudo.interpreter import Interpreter, ModuleContext, SymbolicOutcome
from nudo.mocks import MockRegistry
from nudo.source import Span
from nudo.types import TypeExpr
from nudo.values import Value

SUBTRACT = textwrap.dedent('''\
    # @nudo:case "positive numbers" (5, 3)
    # @nudo:case "negative result" (1, 10)
    # @nudo:case "symbolic" (T.number, T.number)
    def subtract(a, b):
        return a - b
''')

def run_analysis(source: str, config: AnalysisConfig | None = None) -> AnalysisResult:
    """Analyze dedented source as ``<test>``."""
    return analyze(textwrap.dedent(source), filename="<test>", config=config)


def extract(source: str) -> DirectiveSet:
    source = textwrap.dedent(source)
    return extract_directives(ast.parse(source), source, "<test>")


def evaluate(text: str) -> tuple[Value, list[Diagnostic]]:
    """Evaluate one argument as if it started at column 1 of line 1."""
    span = Span("<test>", 1, 1, 1, len(text))
    return ArgumentEvaluator().evaluate(ArgumentExpr(text, span))


def run_symbolic(
    source: str,
    function: str,
    args: list[TypeExpr],
    mocks: MockRegistry | None = None,
) -> tuple[SymbolicOutcome, list[Diagnostic]]:
    """Run *function* from *source* through the symbolic interpreter."""
    source = textwrap.dedent(source)
    module = ModuleContext.from_tree(ast.parse(source), "<test>", source)
    interp = Interpreter(module, mocks or MockRegistry(), case="test")
    outcome = interp.run(function, args)
    return outcome, interp.diagnostics


def codes(diagnostics: list[Diagnostic]) -> list[str]:
    return [d.code for d in diagnostics]


def assert_no_errors(result: AnalysisResult) -> None:
    errors = [d for d in result.diagnostics if d.is_error]
    assert not errors, f"Unexpected errors: {[f'{d.code}: {d.message}' for d in errors]}"


def signature(result: AnalysisResult, name: str) -> str:
    """Rendered ``(params) -> ret`` of one inferred signature."""
    return result.signatures[name].render()
