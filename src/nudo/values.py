"""Case argument values: concrete literals or symbolic type placeholders."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from nudo.types import TypeExpr, infer_value_type, type_name


@dataclass(frozen=True)
class Concrete:
    """A JSON-like Python value passed to the function as-is."""

    literal: Any


@dataclass(frozen=True)
class Symbolic:
    """A type placeholder; forces type-level execution of the case."""

    type: TypeExpr


Value = Concrete | Symbolic


def value_type(value: Value) -> TypeExpr:
    if isinstance(value, Symbolic):
        return value.type
    return infer_value_type(value.literal)


def is_symbolic(values: tuple[Value, ...] | list[Value]) -> bool:
    return any(isinstance(v, Symbolic) for v in values)


def render_value(value: Value) -> str:
    if isinstance(value, Symbolic):
        return type_name(value.type)
    try:
        return json.dumps(value.literal)
    except (TypeError, ValueError):
        return repr(value.literal)
