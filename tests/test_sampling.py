"""Tests for sample generation."""

from __future__ import annotations

import pytest

from nudo.sampling import NUMBER_SAMPLES, Unsampleable, expand, representative, samples
from nudo.types import (
    BOOLEAN,
    NEVER,
    NULL,
    NUMBER,
    STRING,
    UNDEFINED,
    ArrayType,
    FunctionType,
    Literal,
    TupleType,
    object_type,
    union,
)
from nudo.values import Concrete, Symbolic


class TestSamples:
    def test_number(self):
        assert samples(NUMBER, 3) == list(NUMBER_SAMPLES[:3])

    def test_string_count(self):
        assert len(samples(STRING, 4)) == 4
        assert all(isinstance(s, str) for s in samples(STRING, 4))

    def test_string_beyond_table(self):
        assert len(set(samples(STRING, 8))) == 8

    def test_boolean(self):
        assert samples(BOOLEAN, 5) == [True, False]

    def test_literal(self):
        assert samples(Literal("on"), 3) == ["on"]

    def test_null(self):
        assert samples(NULL, 3) == [None]

    def test_union_one_per_member(self):
        assert sorted(samples(union(NUMBER, NULL), 3), key=repr) == [0, None]

    def test_array(self):
        assert samples(ArrayType(STRING), 3) == [[""]]

    def test_empty_array(self):
        assert samples(ArrayType(NEVER), 3) == [[]]

    def test_tuple_one_value_per_position(self):
        assert samples(TupleType((NUMBER, Literal("on"))), 3) == [[0, "on"]]

    def test_object_omits_optional(self):
        ty = object_type({"id": NUMBER, "nick": union(STRING, UNDEFINED)})
        assert samples(ty, 2) == [{"id": 0}]

    def test_function_unsampleable(self):
        with pytest.raises(Unsampleable):
            samples(FunctionType((), NUMBER), 3)

    def test_representative(self):
        assert representative(NUMBER) == 0


class TestExpand:
    def test_cross_product(self):
        drawn = expand([Symbolic(NUMBER), Symbolic(BOOLEAN)], sample_count=2, max_samples=32)
        assert drawn == [[0, True], [0, False], [1, True], [1, False]]

    def test_concrete_values_fixed(self):
        drawn = expand([Concrete("x"), Symbolic(NUMBER)], sample_count=2, max_samples=32)
        assert drawn == [["x", 0], ["x", 1]]

    def test_capped(self):
        drawn = expand([Symbolic(NUMBER)] * 3, sample_count=3, max_samples=5)
        assert len(drawn) == 5

    def test_unsampleable_propagates(self):
        with pytest.raises(Unsampleable):
            expand([Symbolic(FunctionType((), NUMBER))], sample_count=2, max_samples=8)
