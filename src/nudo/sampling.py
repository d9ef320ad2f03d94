"""Representative values for symbolic types, used by ``@nudo:sample``."""

from __future__ import annotations

import itertools
import string
from typing import Any

from nudo.types import (
    ArrayType,
    Literal,
    NeverType,
    ObjectType,
    Primitive,
    TupleType,
    TypeExpr,
    Union,
    UnknownType,
    is_optional,
    members_of,
    type_name,
)
from nudo.values import Concrete, Value

NUMBER_SAMPLES: tuple[Any, ...] = (0, 1, -1, 2, 0.5, 100, -2.5)
STRING_SAMPLES: tuple[str, ...] = ("", "a", "abc", "Hello, world", " ")
BOOLEAN_SAMPLES: tuple[bool, ...] = (True, False)


class Unsampleable(Exception):
    """The type has no JSON-representable values (functions, never)."""


def samples(ty: TypeExpr, count: int) -> list[Any]:
    """Up to *count* representative values of *ty*.

    A union draws one value per member, whatever *count* is.
    """
    if isinstance(ty, Literal):
        return [ty.value]
    if isinstance(ty, Primitive):
        match ty.name:
            case "number":
                return list(NUMBER_SAMPLES[: max(count, 1)])
            case "string":
                extra = [string.ascii_lowercase[:n] for n in range(4, count + 1)]
                return list(STRING_SAMPLES[: max(count, 1)]) + extra[: max(0, count - len(STRING_SAMPLES))]
            case "boolean":
                return list(BOOLEAN_SAMPLES[: max(count, 1)])
            case _:
                return [None]
    if isinstance(ty, Union):
        return [representative(m) for m in members_of(ty)]
    if isinstance(ty, ArrayType):
        if isinstance(ty.element, NeverType):
            return [[]]
        return [[representative(ty.element)]]
    if isinstance(ty, TupleType):
        # sent as JSON, so tuples arrive as lists
        return [[representative(e) for e in ty.elements]]
    if isinstance(ty, ObjectType):
        obj = {}
        for key, field_type in ty.fields:
            # optional fields are left out
            if not is_optional(field_type):
                obj[key] = representative(field_type)
        return [obj]
    if isinstance(ty, UnknownType):
        return [None]
    raise Unsampleable(f"cannot sample values of type {type_name(ty)}")


def representative(ty: TypeExpr) -> Any:
    """The first sample of *ty*."""
    return samples(ty, 1)[0]


def expand(values: list[Value], *, sample_count: int, max_samples: int) -> list[list[Any]]:
    """Concrete argument lists drawn from *values*.

    Concrete values are used as-is; symbolic ones contribute their samples.
    The cross product is cut off after *max_samples* combinations.
    Raises :class:`Unsampleable` if any value cannot be sampled.
    """
    pools = []
    for value in values:
        if isinstance(value, Concrete):
            pools.append([value.literal])
        else:
            pools.append(samples(value.type, sample_count))
    return [list(combo) for combo in itertools.islice(itertools.product(*pools), max_samples)]
