"""Stub (.pyi) emission from inferred signatures."""

from __future__ import annotations

from nudo.analyzer import AnalysisResult
from nudo.types import (
    ArrayType,
    FunctionType,
    Literal,
    NeverType,
    ObjectType,
    Primitive,
    Throws,
    TupleType,
    TypeExpr,
    Union,
    UnknownType,
    members_of,
    strip_undefined,
    union,
)

_PRIMITIVES = {
    "number": "float",
    "string": "str",
    "boolean": "bool",
    "null": "None",
    "undefined": "None",
}


def annotation(ty: TypeExpr, imports: set[str]) -> str:
    """Python annotation text for *ty*; typing names used go into *imports*."""
    if isinstance(ty, Primitive):
        return _PRIMITIVES[ty.name]
    if isinstance(ty, Literal):
        imports.add("Literal")
        return f"Literal[{ty.value!r}]"
    if isinstance(ty, Union):
        parts = list(dict.fromkeys(annotation(m, imports) for m in members_of(ty)))
        # None reads best last
        parts.sort(key=lambda p: p == "None")
        return " | ".join(parts)
    if isinstance(ty, ArrayType):
        if isinstance(ty.element, NeverType):
            imports.add("Any")
            return "list[Any]"
        return f"list[{annotation(ty.element, imports)}]"
    if isinstance(ty, TupleType):
        if not ty.elements:
            return "tuple[()]"
        return f"tuple[{', '.join(annotation(e, imports) for e in ty.elements)}]"
    if isinstance(ty, ObjectType):
        values = union(*(strip_undefined(t) for _, t in ty.fields))
        if not ty.fields or isinstance(values, NeverType):
            imports.add("Any")
            return "dict[str, Any]"
        return f"dict[str, {annotation(values, imports)}]"
    if isinstance(ty, FunctionType):
        imports.add("Callable")
        params = ", ".join(annotation(p, imports) for p in ty.params)
        return f"Callable[[{params}], {annotation(ty.returns, imports)}]"
    if isinstance(ty, (NeverType, Throws)):
        imports.add("NoReturn")
        return "NoReturn"
    if isinstance(ty, UnknownType):
        imports.add("Any")
        return "Any"
    imports.add("Any")
    return "Any"


def generate_stub(result: AnalysisResult) -> str:
    """Render one ``def`` declaration per inferred signature."""
    imports: set[str] = set()
    defs = []
    for name, sig in result.signatures.items():
        params = ", ".join(
            f"{p}: {annotation(t, imports)}" for p, t in zip(sig.param_names, sig.param_types)
        )
        defs.append(f"def {name}({params}) -> {annotation(sig.return_type, imports)}: ...")

    lines = [f"# Generated by nudo from {result.filename}"]
    if imports:
        lines.append(f"from typing import {', '.join(sorted(imports))}")
    lines.append("")
    lines.extend(defs)
    return "\n".join(lines) + "\n"
