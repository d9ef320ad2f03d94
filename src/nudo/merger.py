"""Merging per-case outcomes into one inferred signature."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from nudo.directives import FunctionDirectives
from nudo.errors import Diagnostic, warning
from nudo.executor import CaseResult, Success
from nudo.interpreter import parameter_names
from nudo.types import (
    NEVER,
    UNDEFINED,
    UNKNOWN,
    ArrayType,
    ObjectType,
    Throws,
    TupleType,
    TypeExpr,
    members_of,
    object_type,
    type_name,
    type_to_data,
    union,
    widen,
)


@dataclass
class InferredSignature:
    function_name: str
    param_names: list[str]
    param_types: list[TypeExpr]
    return_type: TypeExpr
    source_case_count: int

    def render(self, *, with_name: bool = False) -> str:
        params = ", ".join(
            f"{name}: {type_name(ty)}" for name, ty in zip(self.param_names, self.param_types)
        )
        text = f"({params}) -> {type_name(self.return_type)}"
        return f"{self.function_name}{text}" if with_name else text

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.function_name,
            "params": [
                {"name": name, "type": type_to_data(ty), "display": type_name(ty)}
                for name, ty in zip(self.param_names, self.param_types)
            ],
            "returns": {"type": type_to_data(self.return_type),
                        "display": type_name(self.return_type)},
            "cases": self.source_case_count,
        }


def merge_types(types: Iterable[TypeExpr], *, pure: bool = False) -> TypeExpr:
    """Combine contributions into one type.

    Literals widen unless *pure*. All object members merge into one object
    field by field, all array members into one array, and tuples of equal
    length position by position. The result does not depend on the order of
    *types*, and merging a merged type changes nothing.
    """
    flat = [m for ty in types for m in members_of(ty if pure else widen(ty))]
    objects = [m for m in flat if isinstance(m, ObjectType)]
    arrays = [m for m in flat if isinstance(m, ArrayType)]
    tuples: dict[int, list[TupleType]] = {}
    for m in flat:
        if isinstance(m, TupleType):
            tuples.setdefault(len(m.elements), []).append(m)
    merged = [m for m in flat if not isinstance(m, (ObjectType, ArrayType, TupleType))]
    if objects:
        merged.append(_merge_objects(objects, pure))
    if arrays:
        merged.append(ArrayType(merge_types((a.element for a in arrays), pure=pure)))
    for group in tuples.values():
        columns = zip(*(t.elements for t in group))
        merged.append(TupleType(tuple(merge_types(column, pure=pure) for column in columns)))
    return union(*merged)


def _merge_objects(objects: list[ObjectType], pure: bool) -> ObjectType:
    keys = sorted({key for obj in objects for key, _ in obj.fields})
    fields = {}
    for key in keys:
        present = [t for obj in objects if (t := obj.field_type(key)) is not None]
        merged = merge_types(present, pure=pure)
        if len(present) < len(objects):
            merged = union(merged, UNDEFINED)
        fields[key] = merged
    return object_type(fields)


def merge_signature(
    fn: FunctionDirectives, results: list[CaseResult],
) -> tuple[InferredSignature, list[Diagnostic]]:
    """Build the signature of *fn* from its successful cases.

    Failed and skipped cases contribute nothing. With no successes every
    position is ``unknown`` and a W500 warning is returned.
    """
    names = parameter_names(fn.node)
    successes = [r.outcome for r in results if isinstance(r.outcome, Success)]
    if not successes:
        diag = warning("W500", f"no successful cases for '{fn.name}'; signature is unknown",
                       fn.span)
        return InferredSignature(fn.name, names, [UNKNOWN] * len(names), UNKNOWN, 0), [diag]

    pure = fn.is_pure
    params = [
        merge_types((s.param_types[i] for s in successes if i < len(s.param_types)), pure=pure)
        for i in range(len(names))
    ]
    # a case that asserted a throw does not contribute a return value
    returns = [s.return_type for s in successes if not isinstance(s.return_type, Throws)]
    return_type = merge_types(returns, pure=pure) if returns else NEVER
    return InferredSignature(fn.name, names, params, return_type, len(successes)), []


def declared_signature(fn: FunctionDirectives, declared: TypeExpr | None) -> InferredSignature:
    """Signature of a function skipped as a whole."""
    names = parameter_names(fn.node)
    return InferredSignature(
        fn.name, names, [UNKNOWN] * len(names),
        declared if declared is not None else UNKNOWN, 0,
    )
