"""Structural type expressions for the nudo inference engine.

Type expressions are immutable value types: they compare structurally, hash,
and can be shared freely between cases and threads. Unions are only ever
built through :func:`union`, which keeps them flat, deduplicated and
collapsed, so no code downstream has to re-check those invariants.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

# ── Type expressions ────────────────────────────────────────────

LiteralValue = int | float | str | bool

PRIMITIVE_NAMES = ("number", "string", "boolean", "null", "undefined")


@dataclass(frozen=True)
class Primitive:
    name: str


@dataclass(frozen=True)
class Literal:
    """A single concrete value. Widens to its primitive on merge."""

    value: LiteralValue
    primitive: str = field(init=False)

    def __post_init__(self) -> None:
        # bool must be tested before int: True == 1 but they are different types
        object.__setattr__(self, "primitive", literal_primitive(self.value))


@dataclass(frozen=True)
class Union:
    members: frozenset[TypeExpr]


@dataclass(frozen=True)
class ObjectType:
    fields: tuple[tuple[str, TypeExpr], ...] = ()

    def field_type(self, name: str) -> TypeExpr | None:
        for key, ty in self.fields:
            if key == name:
                return ty
        return None

    def as_dict(self) -> dict[str, TypeExpr]:
        return dict(self.fields)


@dataclass(frozen=True)
class ArrayType:
    element: TypeExpr


@dataclass(frozen=True)
class TupleType:
    """Fixed-length sequence with a type per position."""

    elements: tuple[TypeExpr, ...] = ()

    @property
    def element(self) -> TypeExpr:
        # the tuple seen as a homogeneous sequence
        return union(*self.elements)


@dataclass(frozen=True)
class FunctionType:
    params: tuple[TypeExpr, ...] = ()
    returns: TypeExpr = None  # type: ignore[assignment]


@dataclass(frozen=True)
class UnknownType:
    """Top type. Absorbs every other member of a union."""


@dataclass(frozen=True)
class NeverType:
    """Bottom type. Identity element of union."""


@dataclass(frozen=True)
class Throws:
    """Marker for a case whose asserted outcome is a raised exception."""

    exception: str | None = None


TypeExpr = (
    Primitive | Literal | Union | ObjectType | ArrayType | TupleType
    | FunctionType | UnknownType | NeverType | Throws
)


# ── Built-in type constants ─────────────────────────────────────

NUMBER = Primitive("number")
STRING = Primitive("string")
BOOLEAN = Primitive("boolean")
NULL = Primitive("null")
UNDEFINED = Primitive("undefined")
UNKNOWN = UnknownType()
NEVER = NeverType()

PRIMITIVES: dict[str, Primitive] = {
    "number": NUMBER,
    "string": STRING,
    "boolean": BOOLEAN,
    "null": NULL,
    "undefined": UNDEFINED,
}


def literal_primitive(value: Any) -> str:
    """Primitive name of a literal value. Raises TypeError for non-literals."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    raise TypeError(f"not a literal value: {value!r}")


# ── Constructors ────────────────────────────────────────────────


def object_type(fields: dict[str, TypeExpr]) -> ObjectType:
    """Build an ObjectType with fields in canonical (sorted) order."""
    return ObjectType(tuple(sorted(fields.items())))


def union(*members: TypeExpr) -> TypeExpr:
    """Normalize *members* into a single type.

    Flattens nested unions, drops Never, lets Unknown absorb everything,
    drops literals whose primitive is also present, folds ``true | false``
    into ``boolean``, and collapses a single survivor to itself.
    """
    flat: set[TypeExpr] = set()
    for m in members:
        if isinstance(m, Union):
            flat.update(m.members)
        elif isinstance(m, NeverType):
            continue
        else:
            flat.add(m)

    if any(isinstance(m, UnknownType) for m in flat):
        return UNKNOWN

    if Literal(True) in flat and Literal(False) in flat:
        flat.discard(Literal(True))
        flat.discard(Literal(False))
        flat.add(BOOLEAN)

    present = {m.name for m in flat if isinstance(m, Primitive)}
    flat = {
        m for m in flat
        if not (isinstance(m, Literal) and m.primitive in present)
    }

    if not flat:
        return NEVER
    if len(flat) == 1:
        return next(iter(flat))
    return Union(frozenset(flat))


def members_of(ty: TypeExpr) -> tuple[TypeExpr, ...]:
    """The members of a union, or the type itself, in display order."""
    if isinstance(ty, Union):
        return tuple(sorted(ty.members, key=type_name))
    return (ty,)


def widen(ty: TypeExpr) -> TypeExpr:
    """Replace literal types with their primitive, recursively."""
    if isinstance(ty, Literal):
        return PRIMITIVES[ty.primitive]
    if isinstance(ty, Union):
        return union(*(widen(m) for m in ty.members))
    if isinstance(ty, ArrayType):
        return ArrayType(widen(ty.element))
    if isinstance(ty, TupleType):
        return TupleType(tuple(widen(e) for e in ty.elements))
    if isinstance(ty, ObjectType):
        return ObjectType(tuple((k, widen(v)) for k, v in ty.fields))
    return ty


def is_optional(ty: TypeExpr) -> bool:
    """True if *ty* admits the absent marker (``undefined``)."""
    return ty == UNDEFINED or (isinstance(ty, Union) and UNDEFINED in ty.members)


def strip_undefined(ty: TypeExpr) -> TypeExpr:
    if isinstance(ty, Union):
        return union(*(m for m in ty.members if m != UNDEFINED))
    return ty


# ── Runtime values ──────────────────────────────────────────────


def infer_value_type(value: Any) -> TypeExpr:
    """Structural type of a Python runtime value.

    Scalars become literals, ``None`` is ``null``, sequences become arrays
    of the union of their element types, tuples become tuple types,
    string-keyed dicts become objects.
    """
    if value is None:
        return NULL
    if isinstance(value, (bool, int, float, str)):
        return Literal(value)
    if isinstance(value, tuple):
        return TupleType(tuple(infer_value_type(v) for v in value))
    if isinstance(value, (list, set, frozenset)):
        return ArrayType(union(*(infer_value_type(v) for v in value)))
    if isinstance(value, dict):
        if all(isinstance(k, str) for k in value):
            return object_type({k: infer_value_type(v) for k, v in value.items()})
        return UNKNOWN
    if callable(value):
        return FunctionType((), UNKNOWN)
    return UNKNOWN


# ── Type utilities ──────────────────────────────────────────────


def type_name(ty: TypeExpr) -> str:
    """Human-readable name for diagnostics and listings."""
    if isinstance(ty, Primitive):
        return ty.name
    if isinstance(ty, Literal):
        return json.dumps(ty.value)
    if isinstance(ty, Union):
        parts = []
        for m in sorted(ty.members, key=type_name):
            name = type_name(m)
            parts.append(f"({name})" if isinstance(m, FunctionType) else name)
        return " | ".join(parts)
    if isinstance(ty, ObjectType):
        if not ty.fields:
            return "{}"
        entries = []
        for key, value in ty.fields:
            if is_optional(value) and value != UNDEFINED:
                entries.append(f"{key}?: {type_name(strip_undefined(value))}")
            else:
                entries.append(f"{key}: {type_name(value)}")
        return "{ " + ", ".join(entries) + " }"
    if isinstance(ty, ArrayType):
        inner = type_name(ty.element)
        if isinstance(ty.element, (Union, FunctionType)):
            inner = f"({inner})"
        return f"{inner}[]"
    if isinstance(ty, TupleType):
        return f"tuple[{', '.join(type_name(e) for e in ty.elements)}]"
    if isinstance(ty, FunctionType):
        params = ", ".join(type_name(p) for p in ty.params)
        return f"({params}) -> {type_name(ty.returns)}"
    if isinstance(ty, UnknownType):
        return "unknown"
    if isinstance(ty, NeverType):
        return "never"
    if isinstance(ty, Throws):
        return f"throws {ty.exception}" if ty.exception else "throws"
    return str(ty)


def is_assignable(actual: TypeExpr, expected: TypeExpr) -> bool:
    """Check whether *actual* fits where *expected* is declared.

    Unknown is compatible in both directions so that a degraded result
    never produces a false contradiction.
    """
    if isinstance(expected, UnknownType) or isinstance(actual, UnknownType):
        return True
    if isinstance(actual, NeverType):
        return True
    if actual == expected:
        return True
    if isinstance(actual, Union):
        return all(is_assignable(m, expected) for m in actual.members)
    if isinstance(expected, Union):
        return any(is_assignable(actual, m) for m in expected.members)
    if isinstance(actual, Literal) and isinstance(expected, Primitive):
        return actual.primitive == expected.name
    if isinstance(actual, ArrayType) and isinstance(expected, ArrayType):
        return is_assignable(actual.element, expected.element)
    if isinstance(actual, TupleType) and isinstance(expected, TupleType):
        return len(actual.elements) == len(expected.elements) and all(
            is_assignable(a, e) for a, e in zip(actual.elements, expected.elements)
        )
    if isinstance(actual, TupleType) and isinstance(expected, ArrayType):
        return all(is_assignable(a, expected.element) for a in actual.elements)
    if isinstance(actual, ObjectType) and isinstance(expected, ObjectType):
        for key, want in expected.fields:
            got = actual.field_type(key)
            if got is None:
                if not is_optional(want):
                    return False
            elif not is_assignable(got, want):
                return False
        return True
    if isinstance(actual, FunctionType) and isinstance(expected, FunctionType):
        if len(actual.params) != len(expected.params):
            return False
        return is_assignable(actual.returns, expected.returns)
    if isinstance(actual, Throws) and isinstance(expected, Throws):
        return expected.exception is None or expected.exception == actual.exception
    return False


# ── Serialization ───────────────────────────────────────────────


def type_to_data(ty: TypeExpr) -> dict[str, Any]:
    """Encode a type expression as JSON-compatible data."""
    if isinstance(ty, Primitive):
        return {"kind": "primitive", "name": ty.name}
    if isinstance(ty, Literal):
        return {"kind": "literal", "value": ty.value}
    if isinstance(ty, Union):
        return {"kind": "union", "members": [type_to_data(m) for m in members_of(ty)]}
    if isinstance(ty, ObjectType):
        return {"kind": "object", "fields": {k: type_to_data(v) for k, v in ty.fields}}
    if isinstance(ty, ArrayType):
        return {"kind": "array", "element": type_to_data(ty.element)}
    if isinstance(ty, TupleType):
        return {"kind": "tuple", "elements": [type_to_data(e) for e in ty.elements]}
    if isinstance(ty, FunctionType):
        return {
            "kind": "function",
            "params": [type_to_data(p) for p in ty.params],
            "returns": type_to_data(ty.returns),
        }
    if isinstance(ty, NeverType):
        return {"kind": "never"}
    if isinstance(ty, Throws):
        return {"kind": "throws", "exception": ty.exception}
    return {"kind": "unknown"}


def type_from_data(data: dict[str, Any]) -> TypeExpr:
    """Decode data produced by :func:`type_to_data`."""
    kind = data.get("kind")
    if kind == "primitive":
        return PRIMITIVES.get(data["name"], UNKNOWN)
    if kind == "literal":
        return Literal(data["value"])
    if kind == "union":
        return union(*(type_from_data(m) for m in data["members"]))
    if kind == "object":
        return object_type({k: type_from_data(v) for k, v in data["fields"].items()})
    if kind == "array":
        return ArrayType(type_from_data(data["element"]))
    if kind == "tuple":
        return TupleType(tuple(type_from_data(e) for e in data["elements"]))
    if kind == "function":
        return FunctionType(
            tuple(type_from_data(p) for p in data["params"]),
            type_from_data(data["returns"]),
        )
    if kind == "never":
        return NEVER
    if kind == "throws":
        return Throws(data.get("exception"))
    return UNKNOWN
