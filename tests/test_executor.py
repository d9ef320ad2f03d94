"""Tests for case planning and execution."""

from __future__ import annotations

import ast
import textwrap

import pytest

from nudo.config import AnalysisConfig
from nudo.errors import FailureKind
from nudo.evaluator import ArgumentEvaluator
from nudo.executor import (
    CaseExecutor,
    CaseResult,
    CaseStatus,
    Failure,
    Skipped,
    Success,
    _mock_payload,
    plan_cases,
)
from nudo.interpreter import Interpreter, ModuleContext
from nudo.mocks import MockEntry, MockRegistry
from nudo.types import NUMBER, STRING, FunctionType, Literal, Throws
from nudo.values import Concrete, Symbolic
from tests.helpers import SUBTRACT, codes, extract


def plan(source: str, config: AnalysisConfig | None = None):
    fn = extract(source).functions[0]
    cases, diags = plan_cases(fn, ArgumentEvaluator(), config or AnalysisConfig())
    assert not diags
    return cases


def run_cases(source: str, config: AnalysisConfig) -> list[CaseResult]:
    source = textwrap.dedent(source)
    tree = ast.parse(source)
    fn = extract(source).functions[0]
    cases, _ = plan_cases(fn, ArgumentEvaluator(), config)
    module = ModuleContext.from_tree(tree, "<test>", source)
    return CaseExecutor(module, source, fn, MockRegistry(), config).execute_all(cases)


class TestPlanning:
    def test_labels_and_modes(self):
        cases = plan(SUBTRACT)
        assert [c.label for c in cases] == ["positive numbers", "negative result", "symbolic"]
        assert [c.mode for c in cases] == ["concrete", "concrete", "symbolic"]

    def test_unlabeled_cases_are_numbered(self):
        cases = plan("""
        # @nudo:case (1)
        # @nudo:case (2)
        def f(x):
            return x
        """)
        assert [c.label for c in cases] == ["case 1", "case 2"]

    def test_mock_applies_to_following_cases(self):
        cases = plan("""
        # @nudo:case (1)
        # @nudo:mock now = 5
        # @nudo:case (2)
        def f(x):
            return x + now
        """)
        assert cases[0].mocks == []
        assert [m.symbol_name for m in cases[1].mocks] == ["now"]

    def test_returns_association(self):
        cases = plan("""
        # @nudo:returns T.number
        # @nudo:case "a" (1)
        # @nudo:case "b" (2)
        # @nudo:returns "x"
        def f(x):
            return x
        """)
        assert cases[0].expected == Symbolic(NUMBER)
        assert cases[1].expected == Concrete("x")

    def test_sample_expansion(self):
        cases = plan("""
        # @nudo:sample "flag" (T.boolean)
        def f(x):
            return x
        """)
        assert [c.label for c in cases] == ["flag#1", "flag#2"]
        assert [c.arguments for c in cases] == [[Concrete(True)], [Concrete(False)]]

    def test_sample_respects_sample_count(self):
        cases = plan("""
        # @nudo:sample (T.number)
        def f(x):
            return x
        """, AnalysisConfig(sample_count=2))
        assert len(cases) == 2

    def test_unsampleable_runs_symbolically(self):
        cases = plan("""
        # @nudo:sample (T.fn([], T.number))
        def f(g):
            return g()
        """)
        assert len(cases) == 1
        assert cases[0].mode == "symbolic"

    def test_skipped_case(self):
        cases = plan("""
        # @nudo:skip "later" (1)
        def f(x):
            return x
        """)
        assert cases[0].skipped

    def test_function_skip_is_not_a_case(self):
        cases = plan("""
        # @nudo:skip
        # @nudo:case (1)
        def f(x):
            return x
        """)
        assert len(cases) == 1


class TestTransitions:
    def result(self) -> CaseResult:
        case = plan(SUBTRACT)[0]
        return CaseResult(case.directive, case.label, case.arguments)

    def test_normal_path(self):
        result = self.result()
        result.transition(CaseStatus.RUNNING)
        result.transition(CaseStatus.COMPLETED)
        assert result.status == CaseStatus.COMPLETED

    def test_cannot_complete_without_running(self):
        with pytest.raises(RuntimeError):
            self.result().transition(CaseStatus.COMPLETED)

    def test_skipped_is_final(self):
        result = self.result()
        result.transition(CaseStatus.SKIPPED)
        with pytest.raises(RuntimeError):
            result.transition(CaseStatus.RUNNING)

    def test_finished_is_final(self):
        result = self.result()
        result.transition(CaseStatus.RUNNING)
        result.transition(CaseStatus.FAILED)
        with pytest.raises(RuntimeError):
            result.transition(CaseStatus.COMPLETED)


class TestExecution:
    def test_subtract(self, config):
        results = run_cases(SUBTRACT, config)
        assert [r.label for r in results] == ["positive numbers", "negative result", "symbolic"]
        assert [r.status for r in results] == [CaseStatus.COMPLETED] * 3
        assert results[0].outcome == Success(Literal(2), (Literal(5), Literal(3)))
        assert results[1].outcome == Success(Literal(-9), (Literal(1), Literal(10)))
        assert results[2].outcome == Success(NUMBER, (NUMBER, NUMBER))

    def test_type_mismatch(self, config):
        results = run_cases("""
        # @nudo:case "bad" (T.string, 1)
        def subtract(a, b):
            return a - b
        """, config)
        assert results[0].status == CaseStatus.FAILED
        assert results[0].outcome.reason == FailureKind.TYPE_MISMATCH
        diag = results[0].diagnostics[0]
        assert diag.code == "E200"
        assert diag.related_case == "bad"
        assert diag.message.startswith("type mismatch in case 'bad'")

    def test_interpreter_defect_fails_only_that_case(self, config, monkeypatch):
        def broken(self, name, args):
            raise RuntimeError("boom")

        monkeypatch.setattr(Interpreter, "run", broken)
        results = run_cases(SUBTRACT, config)
        assert [r.status for r in results] == [
            CaseStatus.COMPLETED, CaseStatus.COMPLETED, CaseStatus.FAILED,
        ]
        assert results[2].outcome == Failure(
            FailureKind.THROWN, "case 'symbolic' could not be interpreted",
        )
        diag = results[2].diagnostics[0]
        assert diag.code == "E210"
        assert diag.notes == ["RuntimeError: boom"]

    def test_type_mismatch_note_quotes_source(self, config):
        results = run_cases("""
        # @nudo:case (T.string)
        def neg(x):
            return -x
        """, config)
        assert results[0].diagnostics[0].notes == ["at <test>:4:12: -x"]

    def test_type_mismatch_note_after_non_ascii(self, config):
        results = run_cases("""
        # @nudo:case (T.number)
        def f(x):
            return ("é", x - "a")
        """, config)
        assert results[0].diagnostics[0].notes == ['at <test>:4:18: x - "a"']

    def test_arity_failure(self, config):
        results = run_cases("""
        # @nudo:case (1, 2, 3)
        def subtract(a, b):
            return a - b
        """, config)
        assert results[0].outcome == Failure(
            FailureKind.THROWN,
            "case 'case 1' raised TypeError: subtract() takes 2 positional arguments but 3 were given",
        )

    def test_default_fills_missing_argument(self, config):
        results = run_cases("""
        # @nudo:case (1)
        def f(a, b=2):
            return a + b
        """, config)
        assert results[0].outcome == Success(Literal(3), (Literal(1), Literal(2)))

    def test_concrete_raise(self, config):
        results = run_cases("""
        # @nudo:case (-1)
        def check(x):
            if x < 0:
                raise ValueError("negative")
            return x
        """, config)
        assert results[0].outcome.reason == FailureKind.THROWN
        assert codes(results[0].diagnostics) == ["E210"]
        assert "raised ValueError: negative" in results[0].diagnostics[0].message

    def test_expected_throw(self, config):
        results = run_cases("""
        # @nudo:case (-1)
        # @nudo:returns "throws"
        def check(x):
            if x < 0:
                raise ValueError("negative")
            return x
        """, config)
        assert results[0].status == CaseStatus.COMPLETED
        assert results[0].outcome.return_type == Throws("ValueError")
        assert results[0].diagnostics == []

    def test_symbolic_expected_throw(self, config):
        results = run_cases("""
        # @nudo:case (T.number)
        # @nudo:returns T.throws("ValueError")
        def fail(x):
            raise ValueError("always")
        """, config)
        assert results[0].outcome == Success(Throws("ValueError"), (NUMBER,))

    def test_may_raise_warning(self, config):
        results = run_cases("""
        # @nudo:case "sym" (T.number)
        def check(x):
            if x < 0:
                raise ValueError("negative")
            return x
        """, config)
        assert results[0].status == CaseStatus.COMPLETED
        assert codes(results[0].diagnostics) == ["W230"]
        assert results[0].diagnostics[0].message == "case 'sym' may raise ValueError"

    def test_timeout(self):
        results = run_cases("""
        # @nudo:case ()
        def spin():
            while True:
                pass
        """, AnalysisConfig(timeout=1, jobs=1))
        assert results[0].outcome.reason == FailureKind.TIMEOUT
        assert codes(results[0].diagnostics) == ["E220"]

    def test_returns_mismatch_keeps_outcome(self, config):
        results = run_cases("""
        # @nudo:case (5, 3)
        # @nudo:returns "x"
        def subtract(a, b):
            return a - b
        """, config)
        assert results[0].outcome == Success(Literal(2), (Literal(5), Literal(3)))
        diag = results[0].diagnostics[0]
        assert diag.code == "E400"
        assert diag.notes == ['expected "x", got 2']

    def test_symbolic_returns_compares_widened(self, config):
        results = run_cases("""
        # @nudo:case (T.number, T.number)
        # @nudo:returns 2
        def subtract(a, b):
            return a - b
        """, config)
        assert results[0].diagnostics == []

    def test_skipped(self, config):
        results = run_cases("""
        # @nudo:skip (1)
        def f(x):
            return x
        """, config)
        assert results[0].status == CaseStatus.SKIPPED
        assert results[0].outcome == Skipped()

    def test_case_mock_is_installed(self, config):
        results = run_cases("""
        # @nudo:mock fetch = "ok"
        # @nudo:case (1)
        def load(x):
            return fetch(x)
        """, config)
        assert results[0].outcome.return_type == Literal("ok")


class TestMockPayload:
    def test_concrete(self):
        entry = MockEntry("rate", Concrete(3))
        assert _mock_payload(entry) == {"name": "rate", "value": 3, "callable": False}

    def test_function_returns_representative(self):
        entry = MockEntry("fetch", Symbolic(FunctionType((NUMBER,), STRING)))
        assert _mock_payload(entry) == {"name": "fetch", "value": "", "callable": True}

    def test_unsampleable(self):
        entry = MockEntry("cb", Symbolic(FunctionType((), FunctionType((), NUMBER))))
        assert _mock_payload(entry)["value"] is None
