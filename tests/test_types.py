"""Tests for type expressions, union normalization and assignability."""

from __future__ import annotations

from nudo.types import (
    BOOLEAN,
    NEVER,
    NULL,
    NUMBER,
    STRING,
    UNDEFINED,
    UNKNOWN,
    ArrayType,
    FunctionType,
    Literal,
    Throws,
    TupleType,
    Union,
    infer_value_type,
    is_assignable,
    is_optional,
    object_type,
    strip_undefined,
    type_from_data,
    type_name,
    type_to_data,
    union,
    widen,
)


class TestUnion:
    def test_single_member_collapses(self):
        assert union(NUMBER) == NUMBER

    def test_empty_is_never(self):
        assert union() == NEVER

    def test_never_is_identity(self):
        assert union(NUMBER, NEVER) == NUMBER

    def test_unknown_absorbs(self):
        assert union(NUMBER, STRING, UNKNOWN) == UNKNOWN

    def test_flattens_nested(self):
        inner = union(NUMBER, STRING)
        assert union(inner, NULL) == Union(frozenset({NUMBER, STRING, NULL}))

    def test_deduplicates(self):
        assert union(NUMBER, NUMBER) == NUMBER

    def test_literal_absorbed_by_primitive(self):
        assert union(Literal(5), NUMBER) == NUMBER

    def test_true_false_folds_to_boolean(self):
        assert union(Literal(True), Literal(False)) == BOOLEAN

    def test_order_independent(self):
        assert union(NUMBER, STRING, NULL) == union(NULL, STRING, NUMBER)

    def test_bool_literal_is_not_number_literal(self):
        assert Literal(True) != Literal(1)
        assert Literal(True).primitive == "boolean"
        assert Literal(1).primitive == "number"


class TestWiden:
    def test_literal(self):
        assert widen(Literal(5)) == NUMBER
        assert widen(Literal("a")) == STRING

    def test_union_of_literals(self):
        assert widen(union(Literal(5), Literal(3))) == NUMBER

    def test_nested(self):
        ty = object_type({"xs": ArrayType(Literal("a")), "n": Literal(1)})
        assert widen(ty) == object_type({"xs": ArrayType(STRING), "n": NUMBER})

    def test_primitive_unchanged(self):
        assert widen(NULL) == NULL

    def test_tuple_positions(self):
        assert widen(TupleType((Literal(1), Literal("a")))) == TupleType((NUMBER, STRING))


class TestTypeName:
    def test_primitives(self):
        assert type_name(NUMBER) == "number"
        assert type_name(UNKNOWN) == "unknown"
        assert type_name(NEVER) == "never"

    def test_literals(self):
        assert type_name(Literal(5)) == "5"
        assert type_name(Literal("a")) == '"a"'
        assert type_name(Literal(True)) == "true"

    def test_union_sorted(self):
        assert type_name(union(STRING, NUMBER)) == "number | string"

    def test_array_of_union(self):
        assert type_name(ArrayType(union(NUMBER, STRING))) == "(number | string)[]"

    def test_object_optional_field(self):
        ty = object_type({"b": union(NUMBER, UNDEFINED), "a": STRING})
        assert type_name(ty) == "{ a: string, b?: number }"

    def test_function(self):
        assert type_name(FunctionType((NUMBER,), STRING)) == "(number) -> string"

    def test_throws(self):
        assert type_name(Throws("ValueError")) == "throws ValueError"

    def test_tuple(self):
        assert type_name(TupleType((NUMBER, STRING))) == "tuple[number, string]"
        assert type_name(TupleType()) == "tuple[]"


class TestOptional:
    def test_is_optional(self):
        assert is_optional(union(NUMBER, UNDEFINED))
        assert not is_optional(NUMBER)

    def test_strip_undefined(self):
        assert strip_undefined(union(NUMBER, UNDEFINED)) == NUMBER


class TestAssignable:
    def test_literal_to_primitive(self):
        assert is_assignable(Literal(5), NUMBER)

    def test_primitive_mismatch(self):
        assert not is_assignable(STRING, NUMBER)

    def test_unknown_both_ways(self):
        assert is_assignable(UNKNOWN, NUMBER)
        assert is_assignable(STRING, UNKNOWN)

    def test_union_actual(self):
        assert is_assignable(union(Literal(1), Literal(2)), NUMBER)
        assert not is_assignable(union(NUMBER, STRING), NUMBER)

    def test_union_expected(self):
        assert is_assignable(NULL, union(NUMBER, NULL))

    def test_object_missing_optional(self):
        expected = object_type({"a": NUMBER, "b": union(STRING, UNDEFINED)})
        assert is_assignable(object_type({"a": Literal(1)}), expected)
        assert not is_assignable(object_type({"b": STRING}), expected)

    def test_throws(self):
        assert is_assignable(Throws("ValueError"), Throws())
        assert not is_assignable(Throws("KeyError"), Throws("ValueError"))

    def test_tuple_positions(self):
        assert is_assignable(TupleType((Literal(1), STRING)), TupleType((NUMBER, STRING)))
        assert not is_assignable(TupleType((STRING, NUMBER)), TupleType((NUMBER, STRING)))
        assert not is_assignable(TupleType((NUMBER,)), TupleType((NUMBER, NUMBER)))

    def test_tuple_to_array(self):
        assert is_assignable(TupleType((Literal(1), Literal(2))), ArrayType(NUMBER))
        assert not is_assignable(TupleType((NUMBER, STRING)), ArrayType(NUMBER))


class TestInferValueType:
    def test_scalars(self):
        assert infer_value_type(None) == NULL
        assert infer_value_type(3) == Literal(3)
        assert infer_value_type("x") == Literal("x")

    def test_list(self):
        assert infer_value_type([1, "x"]) == ArrayType(union(Literal(1), Literal("x")))

    def test_empty_list(self):
        assert infer_value_type([]) == ArrayType(NEVER)

    def test_dict(self):
        assert infer_value_type({"a": 1}) == object_type({"a": Literal(1)})

    def test_non_string_keys(self):
        assert infer_value_type({1: "a"}) == UNKNOWN

    def test_tuple_is_positional(self):
        assert infer_value_type((1, "x")) == TupleType((Literal(1), Literal("x")))

    def test_set_is_array(self):
        assert infer_value_type({1}) == ArrayType(Literal(1))


class TestSerialization:
    def test_nested_round_trip(self):
        ty = object_type({
            "tags": ArrayType(STRING),
            "score": union(NUMBER, NULL),
            "cb": FunctionType((NUMBER,), Literal("ok")),
            "pair": TupleType((NUMBER, ArrayType(STRING))),
        })
        assert type_from_data(type_to_data(ty)) == ty

    def test_unknown_kind_decodes_to_unknown(self):
        assert type_from_data({"kind": "mystery"}) == UNKNOWN
