"""Case planning and execution.

Cases come from ``case``, ``skip`` and ``sample`` directives. Each case
runs concretely in the sandbox when all its arguments are concrete, or
through the symbolic interpreter when any argument is a type placeholder.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from nudo.config import AnalysisConfig
from nudo.directives import Directive, DirectiveKind, FunctionDirectives
from nudo.errors import FAILURE_CODES, Diagnostic, FailureKind, error, warning
from nudo.evaluator import ArgumentEvaluator
from nudo.interpreter import ArityError, Interpreter, ModuleContext, bind
from nudo.mocks import MockEntry, MockRegistry
from nudo.ops import SymbolicTypeError
from nudo.sampling import Unsampleable, expand, representative
from nudo.sandbox import SandboxError, SandboxTimeout, build_request, run_in_sandbox
from nudo.source import SourceText
from nudo.types import (
    UNKNOWN,
    FunctionType,
    Throws,
    TypeExpr,
    infer_value_type,
    is_assignable,
    type_from_data,
    type_name,
    widen,
)
from nudo.values import Concrete, Symbolic, Value, is_symbolic, render_value, value_type

logger = logging.getLogger(__name__)


class CaseStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


_TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.PENDING: frozenset({CaseStatus.RUNNING, CaseStatus.SKIPPED}),
    CaseStatus.RUNNING: frozenset({CaseStatus.COMPLETED, CaseStatus.FAILED}),
}


@dataclass(frozen=True)
class Success:
    return_type: TypeExpr
    param_types: tuple[TypeExpr, ...]


@dataclass(frozen=True)
class Failure:
    reason: FailureKind
    message: str


@dataclass(frozen=True)
class Skipped:
    pass


Outcome = Success | Failure | Skipped


@dataclass
class Case:
    """One planned execution of a function."""

    label: str
    directive: Directive
    arguments: list[Value]
    mocks: list[MockEntry] = field(default_factory=list)
    expected: Value | None = None
    skipped: bool = False

    @property
    def mode(self) -> str:
        return "symbolic" if is_symbolic(self.arguments) else "concrete"


@dataclass
class CaseResult:
    directive: Directive
    label: str
    arguments: list[Value]
    outcome: Outcome | None = None
    status: CaseStatus = CaseStatus.PENDING
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def transition(self, status: CaseStatus) -> None:
        if status not in _TRANSITIONS.get(self.status, frozenset()):
            raise RuntimeError(
                f"illegal case transition {self.status.value} -> {status.value} "
                f"for '{self.label}'"
            )
        logger.debug("case '%s': %s -> %s", self.label, self.status.value, status.value)
        self.status = status


# ── Planning ────────────────────────────────────────────────────


def plan_cases(
    fn: FunctionDirectives,
    evaluator: ArgumentEvaluator,
    config: AnalysisConfig,
) -> tuple[list[Case], list[Diagnostic]]:
    """Turn a function's directives into cases.

    A ``mock`` applies to the case-like directives after it. A ``returns``
    applies to the case-like directive before it, or to every case without
    its own when it comes first. ``sample`` directives are expanded into
    concrete cases named ``label#N``.
    """
    diagnostics: list[Diagnostic] = []
    cases: list[Case] = []
    mocks: list[MockEntry] = []
    shared_expected: Value | None = None
    last: list[Case] = []
    count = 0

    for directive in fn.directives:
        match directive.kind:
            case DirectiveKind.MOCK:
                value, diags = evaluator.evaluate(directive.payload)
                diagnostics.extend(diags)
                mocks.append(MockEntry(directive.name, value, directive.span))
            case DirectiveKind.RETURNS:
                value, diags = evaluator.evaluate(directive.payload)
                diagnostics.extend(diags)
                if not last:
                    shared_expected = value
                for case in last:
                    case.expected = value
            case DirectiveKind.PURE:
                pass
            case DirectiveKind.SKIP if directive.skips_function:
                pass
            case DirectiveKind.CASE | DirectiveKind.SKIP | DirectiveKind.SAMPLE:
                count += 1
                label = directive.name or f"case {count}"
                values, diags = evaluator.evaluate_all(directive.arguments)
                diagnostics.extend(diags)
                last = _expand_case(directive, label, values, list(mocks), config)
                cases.extend(last)

    for case in cases:
        if case.expected is None:
            case.expected = shared_expected
    return cases, diagnostics


def _expand_case(
    directive: Directive,
    label: str,
    values: list[Value],
    mocks: list[MockEntry],
    config: AnalysisConfig,
) -> list[Case]:
    skipped = directive.kind == DirectiveKind.SKIP
    if directive.kind != DirectiveKind.SAMPLE or not is_symbolic(values):
        return [Case(label, directive, values, mocks, skipped=skipped)]
    try:
        drawn = expand(values, sample_count=config.sample_count, max_samples=config.max_samples)
    except Unsampleable as e:
        logger.debug("sample '%s' runs symbolically: %s", label, e)
        return [Case(label, directive, values, mocks)]
    return [
        Case(f"{label}#{i}", directive, [Concrete(v) for v in args], mocks)
        for i, args in enumerate(drawn, start=1)
    ]


def expects_throw(expected: Value | None) -> bool:
    if isinstance(expected, Concrete):
        return expected.literal == "throws"
    return isinstance(expected, Symbolic) and isinstance(expected.type, Throws)


def expected_type(expected: Value) -> TypeExpr:
    if isinstance(expected, Concrete) and expected.literal == "throws":
        return Throws()
    return value_type(expected)


# ── Execution ───────────────────────────────────────────────────


class CaseExecutor:
    """Runs the cases of one function."""

    def __init__(
        self,
        module: ModuleContext,
        source: str,
        fn: FunctionDirectives,
        file_mocks: MockRegistry,
        config: AnalysisConfig,
    ) -> None:
        self.module = module
        self.source = source
        self.text = SourceText(source, module.filename)
        self.fn = fn
        self.file_mocks = file_mocks
        self.config = config

    def execute_all(self, cases: list[Case]) -> list[CaseResult]:
        """Run *cases* concurrently; results keep the order of *cases*."""
        if self.config.jobs <= 1 or len(cases) <= 1:
            return [self.execute(case) for case in cases]
        with ThreadPoolExecutor(max_workers=self.config.jobs) as pool:
            return list(pool.map(self.execute, cases))

    def execute(self, case: Case) -> CaseResult:
        result = CaseResult(case.directive, case.label, case.arguments)
        if case.skipped:
            result.transition(CaseStatus.SKIPPED)
            result.outcome = Skipped()
            return result

        result.transition(CaseStatus.RUNNING)
        logger.debug("running %s case '%s' of %s(%s)", case.mode, case.label, self.fn.name,
                     ", ".join(render_value(v) for v in case.arguments))

        registry = self.file_mocks.child(case.label)
        for entry in case.mocks:
            registry.register(entry.symbol_name, entry.substitute, entry.span)

        try:
            bind(self.fn.node, [value_type(v) for v in case.arguments], {}, lambda _: UNKNOWN)
        except ArityError as e:
            self._fail(result, case, FailureKind.THROWN, f"case '{case.label}' raised TypeError: {e}")
            return result

        if case.mode == "symbolic":
            self._run_symbolic(result, case, registry)
        else:
            self._run_concrete(result, case, registry)

        if isinstance(result.outcome, Success) and case.expected is not None:
            self._validate(result, case)
        return result

    def _fail(
        self, result: CaseResult, case: Case, reason: FailureKind, message: str,
        notes: list[str] | None = None,
    ) -> None:
        diag = error(FAILURE_CODES[reason], message, case.directive.span, case=case.label)
        diag.notes.extend(notes or [])
        result.diagnostics.append(diag)
        result.outcome = Failure(reason, message)
        result.transition(CaseStatus.FAILED)

    def _succeed(self, result: CaseResult, outcome: Success) -> None:
        result.outcome = outcome
        result.transition(CaseStatus.COMPLETED)

    def _thrown(self, result: CaseResult, case: Case, exception: str, message: str,
                params: tuple[TypeExpr, ...]) -> None:
        if expects_throw(case.expected):
            self._succeed(result, Success(Throws(exception), params))
            return
        detail = f"{exception}: {message}" if message else exception
        self._fail(result, case, FailureKind.THROWN, f"case '{case.label}' raised {detail}")

    # ── Symbolic mode ───────────────────────────────────────────

    def _run_symbolic(self, result: CaseResult, case: Case, registry: MockRegistry) -> None:
        interp = Interpreter(
            self.module,
            registry,
            case=case.label,
            recursion_limit=self.config.recursion_limit,
            fixpoint_iterations=self.config.fixpoint_iterations,
        )
        try:
            outcome = interp.run(self.fn.name, [value_type(v) for v in case.arguments])
        except SymbolicTypeError as e:
            result.diagnostics.extend(interp.diagnostics)
            notes = []
            if e.span is not None:
                notes.append(f"at {e.span}: {self.text.span_text(e.span).strip()}")
            self._fail(result, case, FailureKind.TYPE_MISMATCH,
                       f"type mismatch in case '{case.label}': {e.message}", notes)
            return
        except Exception as e:
            # an interpreter defect fails this case only
            logger.debug("symbolic case '%s' of %s failed", case.label, self.fn.name, exc_info=True)
            result.diagnostics.extend(interp.diagnostics)
            self._fail(result, case, FailureKind.THROWN,
                       f"case '{case.label}' could not be interpreted",
                       [f"{type(e).__name__}: {e}"])
            return
        result.diagnostics.extend(interp.diagnostics)

        if outcome.always_raises:
            self._thrown(result, case, outcome.raises[0], "raised on every path",
                         outcome.param_types)
            return
        for name in dict.fromkeys(outcome.raises):
            result.diagnostics.append(warning(
                "W230", f"case '{case.label}' may raise {name}", case.directive.span,
                case=case.label,
            ))
        self._succeed(result, Success(outcome.return_type, outcome.param_types))

    # ── Concrete mode ───────────────────────────────────────────

    def _run_concrete(self, result: CaseResult, case: Case, registry: MockRegistry) -> None:
        args = [v.literal for v in case.arguments]
        request = build_request(
            self.source, self.module.filename, self.fn.name, args,
            [_mock_payload(entry) for entry in registry.entries().values()],
            directory=self.module.directory,
        )
        try:
            reply = run_in_sandbox(request, timeout=self.config.timeout)
        except SandboxTimeout:
            self._fail(result, case, FailureKind.TIMEOUT,
                       f"case '{case.label}' timed out after {self.config.timeout:g}s")
            return
        except SandboxError as e:
            self._fail(result, case, FailureKind.THROWN, f"case '{case.label}' crashed: {e}")
            return

        if reply["status"] == "raised":
            params = tuple(infer_value_type(a) for a in args)
            self._thrown(result, case, reply["exception"], reply.get("message", ""), params)
            return
        self._succeed(result, Success(
            type_from_data(reply["returns"]),
            tuple(type_from_data(p) for p in reply["params"]),
        ))

    # ── Returns validation ──────────────────────────────────────

    def _validate(self, result: CaseResult, case: Case) -> None:
        actual = result.outcome.return_type
        expected = expected_type(case.expected)
        if case.mode == "symbolic":
            expected = widen(expected)
        if is_assignable(actual, expected):
            return
        diag = error(
            "E400", "case outcome does not match declared @nudo:returns",
            case.directive.span, case=case.label,
        )
        diag.notes.append(f"expected {type_name(expected)}, got {type_name(actual)}")
        result.diagnostics.append(diag)


def _mock_payload(entry: MockEntry) -> dict[str, Any]:
    """Sandbox form of a mock: concrete values as-is, types as a sample."""
    if isinstance(entry.substitute, Concrete):
        return {"name": entry.symbol_name, "value": entry.substitute_value, "callable": False}
    ty = entry.substitute_type
    try:
        if isinstance(ty, FunctionType):
            return {"name": entry.symbol_name, "value": representative(ty.returns), "callable": True}
        return {"name": entry.symbol_name, "value": representative(ty), "callable": False}
    except Unsampleable:
        return {"name": entry.symbol_name, "value": None, "callable": False}
