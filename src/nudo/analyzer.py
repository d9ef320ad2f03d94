"""Entry point: analyze one Python source file."""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path

from nudo.config import AnalysisConfig, NudoConfig
from nudo.directives import FunctionDirectives, extract_directives
from nudo.errors import Diagnostic, DiagnosticCollector, error
from nudo.evaluator import ArgumentEvaluator
from nudo.executor import Case, CaseExecutor, CaseResult, CaseStatus, Skipped, plan_cases
from nudo.interpreter import ModuleContext
from nudo.merger import InferredSignature, declared_signature, merge_signature
from nudo.mocks import MockRegistry
from nudo.source import Span
from nudo.types import TypeExpr
from nudo.values import value_type

logger = logging.getLogger(__name__)


@dataclass
class FunctionReport:
    """Case listing for one analyzed function."""

    name: str
    span: Span
    cases: list[CaseResult] = field(default_factory=list)
    pure: bool = False
    skipped: bool = False

    def count(self, status: CaseStatus) -> int:
        return sum(1 for c in self.cases if c.status == status)


@dataclass
class AnalysisResult:
    filename: str
    signatures: dict[str, InferredSignature] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    functions: list[FunctionReport] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.is_error)

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if not d.is_error)


def analyze(
    source: str,
    *,
    filename: str = "<string>",
    config: AnalysisConfig | NudoConfig | None = None,
    path: str | Path | None = None,
) -> AnalysisResult:
    """Infer signatures for every function in *source* that carries directives.

    *path* is the file on disk, if there is one. Its directory goes on the
    import path of concrete cases, so sibling modules can be imported.

    Never raises for problems in the analyzed code: they are reported as
    diagnostics, sorted by location.
    """
    if isinstance(config, NudoConfig):
        config = config.analysis
    config = config or AnalysisConfig()
    collector = DiagnosticCollector()
    result = AnalysisResult(filename)

    try:
        tree = ast.parse(source, filename)
    except SyntaxError as e:
        span = Span.point(filename, e.lineno or 1, e.offset or 1)
        collector.add(error("E101", f"syntax error: {e.msg}", span))
        result.diagnostics = collector.sorted()
        return result

    found = extract_directives(tree, source, filename)
    collector.extend(found.diagnostics)
    logger.debug("%s: %d annotated function(s)", filename, len(found.functions))

    module = ModuleContext.from_tree(tree, filename, source)
    if path is not None:
        module.directory = str(Path(path).resolve().parent)
    evaluator = ArgumentEvaluator()
    file_mocks = MockRegistry()
    for directive in found.file_mocks:
        value, diags = evaluator.evaluate(directive.payload)
        collector.extend(diags)
        file_mocks.register(directive.name, value, directive.span)

    for fn in found.functions:
        report, signature = _analyze_function(
            fn, module, source, file_mocks, evaluator, config, collector,
        )
        result.functions.append(report)
        result.signatures[fn.name] = signature

    result.diagnostics = collector.sorted()
    return result


def _analyze_function(
    fn: FunctionDirectives,
    module: ModuleContext,
    source: str,
    file_mocks: MockRegistry,
    evaluator: ArgumentEvaluator,
    config: AnalysisConfig,
    collector: DiagnosticCollector,
) -> tuple[FunctionReport, InferredSignature]:
    report = FunctionReport(fn.name, fn.span, pure=fn.is_pure)
    cases, diags = plan_cases(fn, evaluator, config)
    collector.extend(diags)

    function_skip = next((d for d in fn.directives if d.skips_function), None)
    if function_skip is not None:
        declared: TypeExpr | None = None
        if function_skip.payload is not None:
            value, diags = evaluator.evaluate(function_skip.payload)
            collector.extend(diags)
            declared = value_type(value)
        report.skipped = True
        report.cases = [_skip(case) for case in cases]
        logger.debug("%s: skipped", fn.name)
        return report, declared_signature(fn, declared)

    executor = CaseExecutor(module, source, fn, file_mocks, config)
    results = executor.execute_all(cases)
    for case_result in results:
        collector.extend(case_result.diagnostics)
    report.cases = results

    signature, diags = merge_signature(fn, results)
    collector.extend(diags)
    logger.debug("%s: %s from %d case(s)", fn.name, signature.render(), signature.source_case_count)
    return report, signature


def _skip(case: Case) -> CaseResult:
    result = CaseResult(case.directive, case.label, case.arguments)
    result.transition(CaseStatus.SKIPPED)
    result.outcome = Skipped()
    return result
