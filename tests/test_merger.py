"""Tests for merging case outcomes into signatures."""

from __future__ import annotations

from nudo.executor import CaseResult, Failure, Skipped, Success
from nudo.errors import FailureKind
from nudo.merger import InferredSignature, declared_signature, merge_signature, merge_types
from nudo.types import (
    NEVER,
    NULL,
    NUMBER,
    STRING,
    UNDEFINED,
    UNKNOWN,
    ArrayType,
    Literal,
    Throws,
    TupleType,
    object_type,
    union,
)
from tests.helpers import SUBTRACT, extract

PURE = """
# @nudo:pure
# @nudo:case (1)
def f(x):
    return x
"""


def results_for(fn, outcomes):
    directive = fn.directives[-1]
    return [
        CaseResult(directive, f"case {i}", [], outcome=outcome)
        for i, outcome in enumerate(outcomes, start=1)
    ]


class TestMergeTypes:
    def test_literals_widen(self):
        assert merge_types([Literal(5), Literal(3)]) == NUMBER

    def test_pure_keeps_literals(self):
        assert merge_types([Literal(5), Literal(3)], pure=True) == union(Literal(5), Literal(3))

    def test_order_independent(self):
        types = [Literal(1), NULL, ArrayType(STRING), object_type({"a": Literal("x")})]
        assert merge_types(types) == merge_types(list(reversed(types)))

    def test_idempotent(self):
        merged = merge_types([
            object_type({"id": Literal(1)}),
            object_type({"id": Literal(2), "nick": Literal("x")}),
        ])
        assert merge_types([merged]) == merged

    def test_objects_merge_field_wise(self):
        merged = merge_types([
            object_type({"id": Literal(1)}),
            object_type({"id": Literal(2), "nick": Literal("x")}),
        ])
        assert merged == object_type({"id": NUMBER, "nick": union(STRING, UNDEFINED)})

    def test_arrays_merge_element_wise(self):
        merged = merge_types([ArrayType(Literal(1)), ArrayType(STRING)])
        assert merged == ArrayType(union(NUMBER, STRING))

    def test_tuples_merge_position_wise(self):
        merged = merge_types([TupleType((Literal(1), NULL)), TupleType((STRING, Literal("x")))])
        assert merged == TupleType((union(NUMBER, STRING), union(NULL, STRING)))

    def test_tuples_of_different_length_stay_apart(self):
        merged = merge_types([TupleType((NUMBER,)), TupleType((NUMBER, NUMBER))])
        assert merged == union(TupleType((NUMBER,)), TupleType((NUMBER, NUMBER)))
        assert merge_types([merged]) == merged

    def test_widening_is_deep(self):
        assert merge_types([ArrayType(Literal("a"))]) == ArrayType(STRING)

    def test_mixed_kinds_union(self):
        assert merge_types([NULL, Literal(1)]) == union(NULL, NUMBER)

    def test_single_member_collapses(self):
        assert merge_types([NUMBER, Literal(4)]) == NUMBER

    def test_nothing_is_never(self):
        assert merge_types([]) == NEVER


class TestMergeSignature:
    def test_subtract(self):
        fn = extract(SUBTRACT).functions[0]
        results = results_for(fn, [
            Success(Literal(2), (Literal(5), Literal(3))),
            Success(Literal(-9), (Literal(1), Literal(10))),
            Success(NUMBER, (NUMBER, NUMBER)),
        ])
        sig, diags = merge_signature(fn, results)
        assert diags == []
        assert sig.render() == "(a: number, b: number) -> number"
        assert sig.source_case_count == 3

    def test_failures_and_skips_ignored(self):
        fn = extract(SUBTRACT).functions[0]
        results = results_for(fn, [
            Success(Literal(2), (Literal(5), Literal(3))),
            Failure(FailureKind.TYPE_MISMATCH, "bad"),
            Skipped(),
        ])
        sig, _ = merge_signature(fn, results)
        assert sig.render() == "(a: number, b: number) -> number"
        assert sig.source_case_count == 1

    def test_no_successes(self):
        fn = extract(SUBTRACT).functions[0]
        sig, diags = merge_signature(fn, results_for(fn, [Failure(FailureKind.THROWN, "x")]))
        assert sig.param_types == [UNKNOWN, UNKNOWN]
        assert sig.return_type == UNKNOWN
        assert [d.code for d in diags] == ["W500"]

    def test_throws_do_not_contribute_returns(self):
        fn = extract(SUBTRACT).functions[0]
        sig, _ = merge_signature(fn, results_for(fn, [
            Success(Throws("ValueError"), (Literal(-1), Literal(0))),
            Success(Literal("ok"), (Literal(1), Literal(2))),
        ]))
        assert sig.return_type == STRING
        assert sig.param_types == [NUMBER, NUMBER]

    def test_only_throws_is_never(self):
        fn = extract(SUBTRACT).functions[0]
        sig, _ = merge_signature(fn, results_for(fn, [Success(Throws(), (NUMBER, NUMBER))]))
        assert sig.return_type == NEVER

    def test_pure_function(self):
        fn = extract(PURE).functions[0]
        sig, _ = merge_signature(fn, results_for(fn, [
            Success(Literal(1), (Literal(1),)),
            Success(Literal(2), (Literal(2),)),
        ]))
        assert sig.render() == "(x: 1 | 2) -> 1 | 2"


class TestSignature:
    def test_render_with_name(self):
        sig = InferredSignature("f", ["x"], [NUMBER], STRING, 1)
        assert sig.render(with_name=True) == "f(x: number) -> string"

    def test_to_dict(self):
        data = InferredSignature("f", ["x"], [NUMBER], NULL, 2).to_dict()
        assert data["name"] == "f"
        assert data["params"] == [
            {"name": "x", "type": {"kind": "primitive", "name": "number"}, "display": "number"}
        ]
        assert data["returns"]["display"] == "null"
        assert data["cases"] == 2

    def test_declared(self):
        fn = extract(SUBTRACT).functions[0]
        sig = declared_signature(fn, STRING)
        assert sig.render() == "(a: unknown, b: unknown) -> string"
        assert declared_signature(fn, None).return_type == UNKNOWN
