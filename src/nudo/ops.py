"""Operator typing for symbolic execution.

Every operator is total over every operand type: a combination either has
a result type here or raises :class:`SymbolicTypeError`. Operand kinds:

    number   number literals, plus booleans (``True + 1`` is ``2``)
    string   string literals and ``string``
    array    ``T[]`` and ``tuple[...]``
    object   ``{ ... }``
    null / undefined / function   never valid arithmetic operands

Arithmetic:

    +        number + number, string + string, array + array
             (a tuple only concatenates with a tuple)
    *        number * number, string * number, array * number (either side)
    %        number % number, string % anything (formatting)
    - / // ** & | ^ << >>   number only

Comparison:

    == != is is not      any operands, boolean
    < > <= >=            number/number, string/string, array/array
    in, not in           right side string, array or object; a string
                         right side needs a string left side

Unary ``- + ~`` take numbers only; ``not`` takes anything.

``unknown`` in any operand gives ``unknown`` (``boolean`` for comparisons);
``never`` gives ``never``. Unions are distributed member by member and
every member pair must be valid. Two literal operands fold to a literal
result; anything else widens to the primitive.
"""

from __future__ import annotations

import operator
from typing import Any, Callable

from nudo.source import Span
from nudo.types import (
    BOOLEAN,
    NEVER,
    NUMBER,
    STRING,
    UNKNOWN,
    ArrayType,
    FunctionType,
    Literal,
    NeverType,
    ObjectType,
    Primitive,
    TupleType,
    TypeExpr,
    Union,
    UnknownType,
    infer_value_type,
    members_of,
    type_name,
    union,
)


class SymbolicTypeError(Exception):
    """An operation is undefined for its operand types."""

    def __init__(self, message: str, span: Span | None = None) -> None:
        super().__init__(message)
        self.message = message
        # where in the analyzed source the operation failed
        self.span = span


_BINARY: dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "//": operator.floordiv,
    "%": operator.mod,
    "**": operator.pow,
    "&": operator.and_,
    "|": operator.or_,
    "^": operator.xor,
    "<<": operator.lshift,
    ">>": operator.rshift,
}

_COMPARE: dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}

_NUMERIC_ONLY = frozenset({"-", "/", "//", "**", "&", "|", "^", "<<", ">>"})

# Folding is skipped above these sizes
_MAX_EXPONENT = 64
_MAX_REPEAT = 1024


def kind_of(ty: TypeExpr) -> str:
    """Operand kind of a non-union type."""
    if isinstance(ty, Literal):
        return ty.primitive
    if isinstance(ty, Primitive):
        return ty.name
    if isinstance(ty, (ArrayType, TupleType)):
        return "array"
    if isinstance(ty, ObjectType):
        return "object"
    if isinstance(ty, FunctionType):
        return "function"
    return "other"


def _numeric(kind: str) -> bool:
    return kind in ("number", "boolean")


def _distribute(
    left: TypeExpr, right: TypeExpr, rule: Callable[[TypeExpr, TypeExpr], TypeExpr],
) -> TypeExpr:
    results = [rule(lm, rm) for lm in members_of(left) for rm in members_of(right)]
    return union(*results)


def _mismatch(op: str, left: TypeExpr, right: TypeExpr) -> SymbolicTypeError:
    return SymbolicTypeError(
        f"unsupported operand types for {op}: '{type_name(left)}' and '{type_name(right)}'"
    )


def _fold(fn: Callable[[Any, Any], Any], left: Literal, right: Literal) -> TypeExpr | None:
    try:
        result = fn(left.value, right.value)
    except (ArithmeticError, ValueError, TypeError):
        return None
    if isinstance(result, complex):
        return None
    return infer_value_type(result)


# ── Binary arithmetic ───────────────────────────────────────────


def binary(op: str, left: TypeExpr, right: TypeExpr) -> TypeExpr:
    """Result type of ``left <op> right``."""
    if op not in _BINARY:
        raise SymbolicTypeError(f"unsupported operator {op}")
    if isinstance(left, UnknownType) or isinstance(right, UnknownType):
        return UNKNOWN
    if isinstance(left, NeverType) or isinstance(right, NeverType):
        return NEVER
    if isinstance(left, Union) or isinstance(right, Union):
        return _distribute(left, right, lambda lm, rm: binary(op, lm, rm))

    lk, rk = kind_of(left), kind_of(right)
    result = _binary_kind(op, lk, rk, left, right)
    if result is None:
        raise _mismatch(op, left, right)

    if isinstance(left, Literal) and isinstance(right, Literal) and _foldable(op, left, right):
        folded = _fold(_BINARY[op], left, right)
        if folded is not None:
            return folded
    return result


def _binary_kind(
    op: str, lk: str, rk: str, left: TypeExpr, right: TypeExpr,
) -> TypeExpr | None:
    if _numeric(lk) and _numeric(rk):
        if op in ("&", "|", "^") and lk == rk == "boolean":
            return BOOLEAN
        return NUMBER
    if op in _NUMERIC_ONLY:
        return None
    if op == "+":
        if lk == rk == "string":
            return STRING
        if isinstance(left, TupleType) and isinstance(right, TupleType):
            return TupleType(left.elements + right.elements)
        if isinstance(left, TupleType) or isinstance(right, TupleType):
            return None
        if lk == rk == "array":
            return ArrayType(union(left.element, right.element))
        return None
    if op == "*":
        if lk == "string" and _numeric(rk) or rk == "string" and _numeric(lk):
            return STRING
        if lk == "array" and _numeric(rk):
            return _repeated(left)
        if rk == "array" and _numeric(lk):
            return _repeated(right)
        return None
    if op == "%":
        if lk == "string":
            return STRING
        return None
    return None


def _repeated(ty: TypeExpr) -> TypeExpr:
    # the result length depends on the count
    return ArrayType(ty.element) if isinstance(ty, TupleType) else ty


def _foldable(op: str, left: Literal, right: Literal) -> bool:
    if op == "**":
        return _numeric(right.primitive) and abs(right.value) <= _MAX_EXPONENT
    if op == "*" and "string" in (left.primitive, right.primitive):
        count = right.value if left.primitive == "string" else left.value
        return isinstance(count, int) and count <= _MAX_REPEAT
    if op == "<<":
        return abs(right.value) <= _MAX_EXPONENT
    return True


# ── Comparison ──────────────────────────────────────────────────


def compare(op: str, left: TypeExpr, right: TypeExpr) -> TypeExpr:
    """Result type of ``left <op> right`` for comparison operators."""
    if isinstance(left, NeverType) or isinstance(right, NeverType):
        return NEVER
    if isinstance(left, UnknownType) or isinstance(right, UnknownType):
        return BOOLEAN
    if isinstance(left, Union) or isinstance(right, Union):
        return _distribute(left, right, lambda lm, rm: compare(op, lm, rm))

    lk, rk = kind_of(left), kind_of(right)
    if op in ("==", "!=", "is", "is not"):
        if op in _COMPARE and isinstance(left, Literal) and isinstance(right, Literal):
            return _fold(_COMPARE[op], left, right) or BOOLEAN
        return BOOLEAN
    if op in ("in", "not in"):
        if rk == "string" and lk != "string":
            raise _mismatch(op, left, right)
        if rk not in ("string", "array", "object"):
            raise SymbolicTypeError(f"argument of type '{type_name(right)}' is not iterable")
        if isinstance(left, Literal) and isinstance(right, Literal):
            found = left.value in right.value
            return Literal(found if op == "in" else not found)
        return BOOLEAN
    if op not in _COMPARE:
        raise SymbolicTypeError(f"unsupported operator {op}")
    if (_numeric(lk) and _numeric(rk)) or (lk == rk and lk in ("string", "array")):
        if isinstance(left, Literal) and isinstance(right, Literal):
            return _fold(_COMPARE[op], left, right) or BOOLEAN
        return BOOLEAN
    raise _mismatch(op, left, right)


# ── Unary ───────────────────────────────────────────────────────


def unary(op: str, operand: TypeExpr) -> TypeExpr:
    """Result type of a unary operator (``-``, ``+``, ``~``, ``not``)."""
    if op == "not":
        truth = truthiness(operand)
        return BOOLEAN if truth is None else Literal(not truth)
    if isinstance(operand, UnknownType):
        return UNKNOWN
    if isinstance(operand, NeverType):
        return NEVER
    if isinstance(operand, Union):
        return union(*(unary(op, m) for m in operand.members))
    if not _numeric(kind_of(operand)):
        raise SymbolicTypeError(f"bad operand type for unary {op}: '{type_name(operand)}'")
    if isinstance(operand, Literal):
        value = operand.value
        if op == "-":
            return Literal(-value)
        if op == "+":
            return Literal(+value)
        if op == "~" and isinstance(value, int):
            return Literal(~value)
        raise SymbolicTypeError(f"bad operand type for unary {op}: '{type_name(operand)}'")
    return NUMBER


# ── Truthiness ──────────────────────────────────────────────────


def truthiness(ty: TypeExpr) -> bool | None:
    """Statically known truth value of *ty*, or None if it depends on the value."""
    if isinstance(ty, Literal):
        return bool(ty.value)
    if isinstance(ty, Primitive) and ty.name in ("null", "undefined"):
        return False
    if isinstance(ty, TupleType):
        return bool(ty.elements)
    if isinstance(ty, FunctionType):
        return True
    if isinstance(ty, Union):
        values = {truthiness(m) for m in ty.members}
        if len(values) == 1:
            return values.pop()
    return None


def may_be_truthy(ty: TypeExpr) -> bool:
    return truthiness(ty) is not False


def may_be_falsy(ty: TypeExpr) -> bool:
    return truthiness(ty) is not True
