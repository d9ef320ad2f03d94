"""Symbolic interpreter: runs Python function bodies over types.

A tree walk over the function's ``ast`` with one handler per node kind.
Values are :mod:`nudo.types` expressions plus a few references that only
exist during interpretation (same-file functions, builtins, bound methods,
closures and external symbols). Control flow forks the environment at
branches and merges it back by union; loops run their body once and widen
what the body changed.

Recursion is solved per (function, argument types) by iterating from
``never`` until the return type stops growing. ``recursion_limit`` bounds
the call depth independently; past it a call yields ``unknown``.
"""

from __future__ import annotations

import ast
import builtins
from dataclasses import dataclass, field
from typing import Any, Callable

from nudo.errors import Diagnostic, warning
from nudo.mocks import MockRegistry
from nudo.ops import (
    SymbolicTypeError,
    binary,
    compare,
    kind_of,
    may_be_falsy,
    may_be_truthy,
    truthiness,
    unary,
)
from nudo.source import Span
from nudo.types import (
    BOOLEAN,
    NEVER,
    NULL,
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
    members_of,
    object_type,
    type_name,
    union,
    widen,
)

_TYPE_CLASSES = (
    Primitive, Literal, Union, ObjectType, ArrayType, TupleType,
    FunctionType, UnknownType, NeverType,
)

_BINOPS: dict[type, str] = {
    ast.Add: "+", ast.Sub: "-", ast.Mult: "*", ast.Div: "/",
    ast.FloorDiv: "//", ast.Mod: "%", ast.Pow: "**",
    ast.BitAnd: "&", ast.BitOr: "|", ast.BitXor: "^",
    ast.LShift: "<<", ast.RShift: ">>", ast.MatMult: "@",
}

_CMPOPS: dict[type, str] = {
    ast.Eq: "==", ast.NotEq: "!=", ast.Lt: "<", ast.LtE: "<=",
    ast.Gt: ">", ast.GtE: ">=", ast.Is: "is", ast.IsNot: "is not",
    ast.In: "in", ast.NotIn: "not in",
}

_UNARYOPS: dict[type, str] = {
    ast.USub: "-", ast.UAdd: "+", ast.Invert: "~", ast.Not: "not",
}

MODELED_BUILTINS = frozenset({
    "abs", "all", "any", "bool", "callable", "chr", "dict", "divmod",
    "enumerate", "filter", "float", "format", "hasattr", "hash", "id",
    "int", "isinstance", "iter", "len", "list", "map", "max", "min",
    "next", "ord", "pow", "print", "range", "repr", "reversed", "round",
    "set", "sorted", "str", "sum", "tuple", "type", "zip",
})

# isinstance() class name -> operand kinds it accepts
_ISINSTANCE: dict[str, tuple[str, ...]] = {
    "int": ("number", "boolean"),
    "float": ("number",),
    "complex": ("number",),
    "bool": ("boolean",),
    "str": ("string",),
    "list": ("array",),
    "tuple": ("array",),
    "set": ("array",),
    "dict": ("object",),
}

_ISINSTANCE_UNKNOWN: dict[str, TypeExpr] = {
    "int": NUMBER,
    "float": NUMBER,
    "complex": NUMBER,
    "bool": BOOLEAN,
    "str": STRING,
}

_STRING_RESULTS: dict[str, TypeExpr] = {
    **dict.fromkeys((
        "upper", "lower", "strip", "lstrip", "rstrip", "title", "capitalize",
        "casefold", "swapcase", "replace", "format", "join", "zfill", "center",
        "ljust", "rjust", "removeprefix", "removesuffix", "expandtabs",
    ), STRING),
    **dict.fromkeys(("split", "rsplit", "splitlines", "partition", "rpartition"),
                    ArrayType(STRING)),
    **dict.fromkeys((
        "startswith", "endswith", "isdigit", "isalpha", "isalnum", "isspace",
        "isupper", "islower", "istitle", "isdecimal", "isnumeric", "isidentifier",
    ), BOOLEAN),
    **dict.fromkeys(("find", "rfind", "index", "rindex", "count"), NUMBER),
}

_FOLDABLE_STRING_METHODS = frozenset({
    "upper", "lower", "strip", "lstrip", "rstrip", "title", "capitalize",
    "casefold", "swapcase", "isdigit", "isalpha", "isalnum", "isspace",
})


# ── Interpretation-time references ──────────────────────────────


@dataclass(frozen=True)
class External:
    """A symbol defined outside the file, as written and as imported."""

    written: str
    path: str

    def child(self, attr: str) -> External:
        return External(f"{self.written}.{attr}", f"{self.path}.{attr}")


@dataclass(frozen=True)
class FunctionRef:
    name: str


@dataclass(frozen=True)
class BuiltinRef:
    name: str


@dataclass(frozen=True)
class MethodRef:
    receiver: TypeExpr
    name: str
    # variable holding the receiver, updated by mutating methods
    target: str | None = None


@dataclass(eq=False)
class Closure:
    node: ast.Lambda | ast.FunctionDef
    env: dict[str, Any]


class ArityError(Exception):
    """Arguments do not fit the function's parameters."""


class _Unreachable(Exception):
    """The current path cannot continue (a callee raised on every path)."""


# ── Module context and frames ───────────────────────────────────


@dataclass
class ModuleContext:
    """Top-level definitions of the analyzed file."""

    filename: str
    functions: dict[str, ast.FunctionDef] = field(default_factory=dict)
    constants: dict[str, ast.expr] = field(default_factory=dict)
    classes: set[str] = field(default_factory=set)
    imports: dict[str, str] = field(default_factory=dict)
    lines: list[str] = field(default_factory=list)
    # directory of the file on disk, importable in concrete mode
    directory: str | None = None

    @classmethod
    def from_tree(
        cls, tree: ast.Module, filename: str = "<string>", source: str = "",
    ) -> ModuleContext:
        lines = source.replace("\r\n", "\n").replace("\r", "\n").split("\n") if source else []
        ctx = cls(filename, lines=lines)
        for stmt in tree.body:
            if isinstance(stmt, ast.FunctionDef):
                ctx.functions[stmt.name] = stmt
            elif isinstance(stmt, (ast.ClassDef, ast.AsyncFunctionDef)):
                ctx.classes.add(stmt.name)
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name):
                        ctx.constants[target.id] = stmt.value
            elif isinstance(stmt, ast.AnnAssign) and stmt.value is not None:
                if isinstance(stmt.target, ast.Name):
                    ctx.constants[stmt.target.id] = stmt.value
            elif isinstance(stmt, (ast.Import, ast.ImportFrom)):
                ctx.imports.update(import_bindings(stmt))
        return ctx

    def column(self, line: int, offset: int) -> int:
        """1-based character column of an ``ast`` byte *offset* on *line*."""
        if not 1 <= line <= len(self.lines):
            return offset + 1
        prefix = self.lines[line - 1].encode("utf-8")[:offset]
        return len(prefix.decode("utf-8", errors="ignore")) + 1


def import_bindings(stmt: ast.Import | ast.ImportFrom) -> dict[str, str]:
    """Local name -> dotted path for an import statement."""
    bound = {}
    if isinstance(stmt, ast.Import):
        for alias in stmt.names:
            if alias.asname:
                bound[alias.asname] = alias.name
            else:
                root = alias.name.split(".")[0]
                bound[root] = root
    else:
        module = "." * stmt.level + (stmt.module or "")
        for alias in stmt.names:
            bound[alias.asname or alias.name] = f"{module}.{alias.name}".lstrip(".")
    return bound


@dataclass
class Frame:
    """Per-call interpreter state."""

    function: str
    depth: int
    returns: list[TypeExpr] = field(default_factory=list)
    raises: list[str] = field(default_factory=list)
    try_depth: int = 0
    handling: str | None = None


@dataclass
class _Flow:
    """Outcome of executing statements.

    ``env`` is the state when control falls off the end, or None if every
    path returned, raised or jumped.
    """

    env: dict[str, Any] | None
    breaks: list[dict[str, Any]] = field(default_factory=list)
    continues: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class CallResult:
    returns: TypeExpr
    raises: tuple[str, ...] = ()
    returned: bool = True


@dataclass(frozen=True)
class SymbolicOutcome:
    """Result of running one case symbolically."""

    return_type: TypeExpr
    param_types: tuple[TypeExpr, ...]
    raises: tuple[str, ...]
    returned: bool

    @property
    def always_raises(self) -> bool:
        return not self.returned and bool(self.raises)


# ── Parameter binding ───────────────────────────────────────────


def parameter_names(node: ast.FunctionDef | ast.Lambda) -> list[str]:
    return [p.arg for p in node.args.posonlyargs + node.args.args]


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def bind(
    node: ast.FunctionDef | ast.Lambda,
    args: list[Any],
    kwargs: dict[str, Any],
    default: Callable[[ast.expr], Any],
    pack: Callable[[list[Any]], Any] = list,
    pack_kwargs: Callable[[dict[str, Any]], Any] = dict,
) -> dict[str, Any]:
    """Map call arguments onto *node*'s parameters, the way Python does.

    Missing parameters with defaults get ``default(expr)``; surplus
    positional arguments go to ``*args`` through *pack*, surplus keywords
    to ``**kwargs`` through *pack_kwargs*. Raises
    :class:`ArityError` with Python's own wording otherwise.
    """
    spec = node.args
    fname = getattr(node, "name", "<lambda>")
    names = parameter_names(node)
    env: dict[str, Any] = {}

    if len(args) > len(names) and spec.vararg is None:
        raise ArityError(
            f"{fname}() takes {_plural(len(names), 'positional argument')} "
            f"but {len(args)} were given"
        )
    for name, value in zip(names, args):
        env[name] = value

    kwonly = [a.arg for a in spec.kwonlyargs]
    extra_kwargs = {}
    for key, value in kwargs.items():
        if key in env:
            raise ArityError(f"{fname}() got multiple values for argument '{key}'")
        if key in names or key in kwonly:
            env[key] = value
        elif spec.kwarg is not None:
            extra_kwargs[key] = value
        else:
            raise ArityError(f"{fname}() got an unexpected keyword argument '{key}'")

    defaults = dict(zip(names[len(names) - len(spec.defaults):], spec.defaults))
    missing = [n for n in names if n not in env and n not in defaults]
    if missing:
        quoted = [f"'{m}'" for m in missing]
        listed = quoted[0] if len(quoted) == 1 else ", ".join(quoted[:-1]) + " and " + quoted[-1]
        raise ArityError(
            f"{fname}() missing {len(missing)} required positional "
            f"argument{'s' if len(missing) > 1 else ''}: {listed}"
        )
    for name in names:
        if name not in env:
            env[name] = default(defaults[name])

    for arg, expr in zip(spec.kwonlyargs, spec.kw_defaults):
        if arg.arg in env:
            continue
        if expr is None:
            raise ArityError(f"{fname}() missing 1 required keyword-only argument: '{arg.arg}'")
        env[arg.arg] = default(expr)

    if spec.vararg is not None:
        env[spec.vararg.arg] = pack(list(args[len(names):]))
    if spec.kwarg is not None:
        env[spec.kwarg.arg] = pack_kwargs(extra_kwargs)
    return env


# ── Interpreter ─────────────────────────────────────────────────


class Interpreter:
    """Runs one case of one function at the type level.

    One instance per case: warnings are deduplicated per instance, and
    nothing is shared with other cases.
    """

    def __init__(
        self,
        module: ModuleContext,
        mocks: MockRegistry,
        *,
        case: str | None = None,
        recursion_limit: int = 16,
        fixpoint_iterations: int = 8,
    ) -> None:
        self.module = module
        self.mocks = mocks
        self.case = case
        self.recursion_limit = recursion_limit
        self.fixpoint_iterations = fixpoint_iterations
        self.diagnostics: list[Diagnostic] = []
        self._reported: set[tuple[Any, ...]] = set()
        self._stack: list[Frame] = []
        self._in_progress: dict[tuple[Any, ...], TypeExpr] = {}
        self._recursive_hits: set[tuple[Any, ...]] = set()
        self._constants: dict[str, TypeExpr] = {}

    # ── Public API ──────────────────────────────────────────────

    def run(self, function_name: str, args: list[TypeExpr]) -> SymbolicOutcome:
        """Execute *function_name* with argument types *args*.

        Raises :class:`ArityError` if the arguments do not fit and
        :class:`SymbolicTypeError` on an operation undefined for its types.
        """
        node = self.module.functions[function_name]
        env = bind(node, list(args), {}, self._default, pack=self._pack, pack_kwargs=self._as_type)
        params = tuple(self._force(env[n], node) for n in parameter_names(node))
        result = self._call_user(function_name, node, env, depth=0)
        return SymbolicOutcome(result.returns, params, result.raises, result.returned)

    # ── Helpers ─────────────────────────────────────────────────

    @property
    def frame(self) -> Frame:
        return self._stack[-1]

    def _span(self, node: ast.AST) -> Span:
        line = getattr(node, "lineno", 1)
        col = self.module.column(line, getattr(node, "col_offset", 0))
        end_line = getattr(node, "end_lineno", None) or line
        end_offset = getattr(node, "end_col_offset", None)
        end_col = self.module.column(end_line, end_offset) - 1 if end_offset else col
        return Span(self.module.filename, line, col, end_line, end_col)

    def _warn(self, code: str, message: str, node: ast.AST, key: Any = None) -> None:
        span = self._span(node)
        dedupe = (code, key) if key is not None else (code, message, span.sort_key)
        if dedupe in self._reported:
            return
        self._reported.add(dedupe)
        self.diagnostics.append(warning(code, message, span, case=self.case))

    def _default(self, expr: ast.expr) -> TypeExpr:
        return self._force(self._eval(expr, {}), expr)

    def _pack(self, values: list[Any]) -> TypeExpr:
        return TupleType(tuple(self._as_type(v) for v in values))

    def _record_raise(self, name: str) -> None:
        if not self._stack:
            return
        frame = self.frame
        if frame.try_depth == 0:
            frame.raises.append(name)

    def _as_type(self, value: Any) -> TypeExpr:
        """Type of *value* without resolving external symbols."""
        if isinstance(value, _TYPE_CLASSES):
            return value
        if isinstance(value, FunctionRef):
            node = self.module.functions[value.name]
            return FunctionType(tuple(UNKNOWN for _ in parameter_names(node)), UNKNOWN)
        if isinstance(value, Closure):
            return FunctionType(tuple(UNKNOWN for _ in parameter_names(value.node)), UNKNOWN)
        if isinstance(value, (BuiltinRef, MethodRef)):
            return FunctionType((), UNKNOWN)
        if isinstance(value, dict):
            return object_type({k: self._as_type(v) for k, v in value.items()})
        return UNKNOWN

    def _force(self, value: Any, node: ast.AST) -> TypeExpr:
        """Type of *value*, resolving external symbols through the mocks."""
        if isinstance(value, External):
            entry = self._resolve_mock(value)
            if entry is not None:
                return entry.substitute_type
            self._unmocked(value, node)
            return UNKNOWN
        return self._as_type(value)

    def _resolve_mock(self, ref: External):
        entry = self.mocks.resolve(ref.written)
        if entry is None and ref.path != ref.written:
            entry = self.mocks.resolve(ref.path)
        return entry

    def _unmocked(self, ref: External, node: ast.AST) -> None:
        self._warn("W300", f"unmocked external symbol '{ref.written}'", node, key=ref.written)

    # ── Calls into same-file functions ──────────────────────────

    def _call_user(
        self, name: str, node: ast.FunctionDef, env: dict[str, Any], depth: int,
    ) -> CallResult:
        key = (name, tuple(env.items()))
        if key in self._in_progress:
            self._recursive_hits.add(key)
            return CallResult(self._in_progress[key])
        if depth > self.recursion_limit:
            return CallResult(UNKNOWN)

        approx: TypeExpr = NEVER
        result = CallResult(UNKNOWN)
        for _ in range(self.fixpoint_iterations):
            self._in_progress[key] = approx
            self._recursive_hits.discard(key)
            frame = self._execute(name, node.body, env, depth)
            returned = union(*frame.returns)
            recursive = key in self._recursive_hits
            if recursive:
                returned = union(approx, returned)
            result = CallResult(returned, tuple(frame.raises), bool(frame.returns))
            if not recursive or returned == approx:
                break
            approx = returned
        else:
            result = CallResult(UNKNOWN, result.raises, result.returned)
        del self._in_progress[key]
        return result

    def _execute(self, name: str, body: list[ast.stmt], env: dict[str, Any], depth: int) -> Frame:
        frame = Frame(name, depth)
        self._stack.append(frame)
        try:
            flow = self._exec_block(body, dict(env))
            if flow.env is not None:
                frame.returns.append(NULL)
        finally:
            self._stack.pop()
        return frame

    def _next_depth(self) -> int:
        return self.frame.depth + 1 if self._stack else 0

    def _in_recursion(self, name: str) -> bool:
        return any(key[0] == name for key in self._in_progress)

    # ── Statements ──────────────────────────────────────────────

    def _exec_block(self, stmts: list[ast.stmt], env: dict[str, Any]) -> _Flow:
        breaks: list[dict[str, Any]] = []
        continues: list[dict[str, Any]] = []
        for stmt in stmts:
            try:
                flow = self._exec_stmt(stmt, env)
            except _Unreachable:
                return _Flow(None, breaks, continues)
            breaks.extend(flow.breaks)
            continues.extend(flow.continues)
            if flow.env is None:
                return _Flow(None, breaks, continues)
            env = flow.env
        return _Flow(env, breaks, continues)

    def _exec_stmt(self, stmt: ast.stmt, env: dict[str, Any]) -> _Flow:
        if isinstance(stmt, ast.Return):
            value = NULL if stmt.value is None else self._eval_type(stmt.value, env)
            self.frame.returns.append(value)
            return _Flow(None)
        if isinstance(stmt, ast.Assign):
            self._exec_assign(stmt, env)
            return _Flow(env)
        if isinstance(stmt, ast.AugAssign):
            current = self._eval_type(stmt.target, env)
            value = self._eval_type(stmt.value, env)
            op = _BINOPS[type(stmt.op)]
            try:
                result = binary(op, current, value)
            except SymbolicTypeError as e:
                e.span = e.span or self._span(stmt)
                raise
            self._assign(stmt.target, result, env)
            return _Flow(env)
        if isinstance(stmt, ast.AnnAssign):
            if stmt.value is not None:
                self._assign(stmt.target, self._eval(stmt.value, env), env)
            return _Flow(env)
        if isinstance(stmt, ast.Expr):
            self._eval(stmt.value, env)
            return _Flow(env)
        if isinstance(stmt, ast.If):
            return self._exec_if(stmt, env)
        if isinstance(stmt, ast.For):
            return self._exec_for(stmt, env)
        if isinstance(stmt, ast.While):
            return self._exec_while(stmt, env)
        if isinstance(stmt, ast.Raise):
            if stmt.exc is None:
                self._record_raise(self.frame.handling or "Exception")
            else:
                self._record_raise(exception_name(stmt.exc) or "Exception")
            return _Flow(None)
        if isinstance(stmt, ast.Try):
            return self._exec_try(stmt, env)
        if isinstance(stmt, ast.Assert):
            truth = truthiness(self._eval_type(stmt.test, env))
            passed, _ = self._narrow(stmt.test, env)
            if passed is None or truth is False:
                self._record_raise("AssertionError")
                return _Flow(None)
            return _Flow(passed)
        if isinstance(stmt, ast.Break):
            return _Flow(None, breaks=[dict(env)])
        if isinstance(stmt, ast.Continue):
            return _Flow(None, continues=[dict(env)])
        if isinstance(stmt, ast.FunctionDef):
            env[stmt.name] = Closure(stmt, env)
            return _Flow(env)
        if isinstance(stmt, (ast.AsyncFunctionDef, ast.ClassDef)):
            env[stmt.name] = UNKNOWN
            return _Flow(env)
        if isinstance(stmt, ast.With):
            for item in stmt.items:
                self._eval(item.context_expr, env)
                if item.optional_vars is not None:
                    self._assign(item.optional_vars, UNKNOWN, env)
            return self._exec_block(stmt.body, env)
        if isinstance(stmt, ast.Match):
            return self._exec_match(stmt, env)
        if isinstance(stmt, ast.Delete):
            for target in stmt.targets:
                if isinstance(target, ast.Name):
                    env.pop(target.id, None)
            return _Flow(env)
        if isinstance(stmt, (ast.Import, ast.ImportFrom)):
            for local, path in import_bindings(stmt).items():
                env[local] = External(local, path)
            return _Flow(env)
        # pass, global, nonlocal and anything not modeled
        return _Flow(env)

    def _exec_assign(self, stmt: ast.Assign, env: dict[str, Any]) -> None:
        value_node = stmt.value
        for target in stmt.targets:
            if (
                isinstance(target, (ast.Tuple, ast.List))
                and isinstance(value_node, (ast.Tuple, ast.List))
                and len(target.elts) == len(value_node.elts)
                and not any(isinstance(e, ast.Starred) for e in target.elts + value_node.elts)
            ):
                values = [self._eval(v, env) for v in value_node.elts]
                for sub, value in zip(target.elts, values):
                    self._assign(sub, value, env)
                return
        value = self._eval(value_node, env)
        for target in stmt.targets:
            self._assign(target, value, env)

    def _assign(self, target: ast.expr, value: Any, env: dict[str, Any]) -> None:
        if isinstance(target, ast.Name):
            env[target.id] = value
        elif isinstance(target, (ast.Tuple, ast.List)):
            self._unpack(target, self._force(value, target), env)
        elif isinstance(target, ast.Subscript):
            self._assign_item(target, self._force(value, target), env)
        elif isinstance(target, ast.Attribute):
            self._eval(target.value, env)
        elif isinstance(target, ast.Starred):
            self._assign(target.value, ArrayType(self._force(value, target)), env)

    def _unpack(self, target: ast.Tuple | ast.List, value: TypeExpr, env: dict[str, Any]) -> None:
        """Assign the items of *value* to the targets of ``a, *b, c = ...``."""
        targets = target.elts
        starred = [i for i, sub in enumerate(targets) if isinstance(sub, ast.Starred)]
        value = _same_shape(value)
        if not isinstance(value, TupleType):
            element = self._element_type(value, target)
            for sub in targets:
                if isinstance(sub, ast.Starred):
                    self._assign(sub.value, ArrayType(element), env)
                else:
                    self._assign(sub, element, env)
            return

        count = len(value.elements)
        if not starred:
            if count > len(targets):
                raise SymbolicTypeError(
                    f"too many values to unpack (expected {len(targets)})", self._span(target),
                )
            if count < len(targets):
                raise SymbolicTypeError(
                    f"not enough values to unpack (expected {len(targets)}, got {count})",
                    self._span(target),
                )
            for sub, ty in zip(targets, value.elements):
                self._assign(sub, ty, env)
            return

        star = starred[0]
        after = len(targets) - star - 1
        if count < len(targets) - 1:
            raise SymbolicTypeError(
                f"not enough values to unpack (expected at least {len(targets) - 1}, got {count})",
                self._span(target),
            )
        for sub, ty in zip(targets[:star], value.elements):
            self._assign(sub, ty, env)
        middle = value.elements[star:count - after]
        self._assign(targets[star].value, ArrayType(union(*middle)), env)
        for sub, ty in zip(targets[star + 1:], value.elements[count - after:]):
            self._assign(sub, ty, env)

    def _assign_item(self, target: ast.Subscript, value: TypeExpr, env: dict[str, Any]) -> None:
        container = self._eval_type(target.value, env)
        key = self._eval_type(target.slice, env)
        if isinstance(container, TupleType):
            raise SymbolicTypeError(
                "'tuple' object does not support item assignment", self._span(target),
            )
        if not isinstance(target.value, ast.Name):
            return
        name = target.value.id
        if isinstance(container, ObjectType):
            if isinstance(key, Literal) and isinstance(key.value, str):
                fields = container.as_dict()
                fields[key.value] = value
                env[name] = object_type(fields)
        elif isinstance(container, ArrayType):
            env[name] = ArrayType(union(container.element, value))

    def _exec_if(self, stmt: ast.If, env: dict[str, Any]) -> _Flow:
        truth = truthiness(self._eval_type(stmt.test, env))
        then_env, else_env = self._narrow(stmt.test, env)
        if truth is False:
            then_env = None
        elif truth is True:
            else_env = None
        flows = []
        if then_env is not None:
            flows.append(self._exec_block(stmt.body, then_env))
        if else_env is not None:
            flows.append(self._exec_block(stmt.orelse, else_env))
        return self._join(flows)

    def _exec_for(self, stmt: ast.For, env: dict[str, Any]) -> _Flow:
        element = self._element_type(self._eval_type(stmt.iter, env), stmt.iter)
        starts = [dict(env)]
        breaks: list[dict[str, Any]] = []
        if not isinstance(element, NeverType):
            body_env = dict(env)
            self._assign(stmt.target, widen(element), body_env)
            body = self._exec_block(stmt.body, body_env)
            breaks = body.breaks
            starts.extend(([body.env] if body.env is not None else []) + body.continues)
        return self._finish_loop(stmt, env, starts, breaks)

    def _exec_while(self, stmt: ast.While, env: dict[str, Any]) -> _Flow:
        truth = truthiness(self._eval_type(stmt.test, env))
        enter, leave = self._narrow(stmt.test, env)
        if truth is False:
            enter = None
        starts = [leave] if leave is not None and truth is not True else []
        breaks: list[dict[str, Any]] = []
        if enter is not None:
            body = self._exec_block(stmt.body, enter)
            breaks = body.breaks
            if truth is not True:
                starts.extend(([body.env] if body.env is not None else []) + body.continues)
        return self._finish_loop(stmt, env, starts, breaks)

    def _finish_loop(
        self,
        stmt: ast.For | ast.While,
        before: dict[str, Any],
        normal: list[dict[str, Any]],
        breaks: list[dict[str, Any]],
    ) -> _Flow:
        flows = []
        if normal:
            exit_env = self._widen_changed(before, self._merge(normal))
            flows.append(self._exec_block(stmt.orelse, exit_env))
        for env in breaks:
            flows.append(_Flow(self._widen_changed(before, env)))
        return self._join(flows)

    def _widen_changed(self, before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
        """Widen literals in variables a loop body changed."""
        result = dict(after)
        for name, value in after.items():
            if name not in before or before[name] != value:
                if isinstance(value, _TYPE_CLASSES):
                    result[name] = widen(value)
        return result

    def _exec_try(self, stmt: ast.Try, env: dict[str, Any]) -> _Flow:
        frame = self.frame
        catching = bool(stmt.handlers)
        if catching:
            frame.try_depth += 1
        try:
            body = self._exec_block(stmt.body, dict(env))
        finally:
            if catching:
                frame.try_depth -= 1

        flows = [_Flow(None, body.breaks, body.continues)]
        if body.env is not None:
            flows.append(self._exec_block(stmt.orelse, body.env))

        # anything assigned in the body may or may not have happened
        entry = self._merge([env] + ([body.env] if body.env is not None else []))
        for handler in stmt.handlers:
            handler_env = dict(entry)
            if handler.name:
                handler_env[handler.name] = UNKNOWN
            previous = frame.handling
            frame.handling = exception_name(handler.type) or "Exception"
            try:
                flows.append(self._exec_block(handler.body, handler_env))
            finally:
                frame.handling = previous

        result = self._join(flows)
        if not stmt.finalbody:
            return result
        final = self._exec_block(stmt.finalbody, result.env if result.env is not None else dict(entry))
        if result.env is None:
            return _Flow(None, result.breaks + final.breaks, result.continues + final.continues)
        return _Flow(final.env, result.breaks + final.breaks, result.continues + final.continues)

    def _exec_match(self, stmt: ast.Match, env: dict[str, Any]) -> _Flow:
        subject = self._eval_type(stmt.subject, env)
        flows = []
        exhaustive = False
        for case in stmt.cases:
            case_env = dict(env)
            self._bind_pattern(case.pattern, subject, case_env)
            if case.guard is not None:
                self._eval(case.guard, case_env)
            flows.append(self._exec_block(case.body, case_env))
            if case.guard is None and _irrefutable(case.pattern):
                exhaustive = True
                break
        if not exhaustive:
            flows.append(_Flow(dict(env)))
        return self._join(flows)

    def _bind_pattern(self, pattern: ast.pattern, subject: TypeExpr, env: dict[str, Any]) -> None:
        if isinstance(pattern, ast.MatchAs):
            if pattern.pattern is not None:
                self._bind_pattern(pattern.pattern, subject, env)
            if pattern.name:
                env[pattern.name] = subject
        elif isinstance(pattern, ast.MatchOr):
            for sub in pattern.patterns:
                self._bind_pattern(sub, subject, env)
        elif isinstance(pattern, ast.MatchSequence):
            shaped = _same_shape(subject)
            if (
                isinstance(shaped, TupleType)
                and len(shaped.elements) == len(pattern.patterns)
                and not any(isinstance(p, ast.MatchStar) for p in pattern.patterns)
            ):
                for sub, ty in zip(pattern.patterns, shaped.elements):
                    self._bind_pattern(sub, ty, env)
                return
            element = self._element_type(subject, pattern) if not isinstance(subject, UnknownType) else UNKNOWN
            for sub in pattern.patterns:
                self._bind_pattern(sub, element, env)
        elif isinstance(pattern, ast.MatchStar):
            if pattern.name:
                env[pattern.name] = ArrayType(UNKNOWN)
        elif isinstance(pattern, ast.MatchMapping):
            for key, sub in zip(pattern.keys, pattern.patterns):
                field_type = UNKNOWN
                if isinstance(subject, ObjectType) and isinstance(key, ast.Constant):
                    field_type = subject.field_type(str(key.value)) or UNKNOWN
                self._bind_pattern(sub, field_type, env)
            if pattern.rest:
                env[pattern.rest] = subject
        elif isinstance(pattern, ast.MatchClass):
            for sub in pattern.patterns + pattern.kwd_patterns:
                self._bind_pattern(sub, UNKNOWN, env)

    # ── Environments ────────────────────────────────────────────

    def _merge(self, envs: list[dict[str, Any]]) -> dict[str, Any]:
        if len(envs) == 1:
            return dict(envs[0])
        merged: dict[str, Any] = {}
        names: list[str] = []
        for env in envs:
            names.extend(n for n in env if n not in names)
        for name in names:
            values = [env[name] for env in envs if name in env]
            first = values[0]
            if all(v is first or v == first for v in values):
                merged[name] = first
            else:
                merged[name] = union(*(self._as_type(v) for v in values))
        return merged

    def _join(self, flows: list[_Flow]) -> _Flow:
        envs = [f.env for f in flows if f.env is not None]
        breaks = [b for f in flows for b in f.breaks]
        continues = [c for f in flows for c in f.continues]
        return _Flow(self._merge(envs) if envs else None, breaks, continues)

    # ── Narrowing ───────────────────────────────────────────────

    def _narrow(
        self, test: ast.expr, env: dict[str, Any],
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        """Environments for the true and false outcomes of *test*.

        None marks an outcome that cannot happen.
        """
        if isinstance(test, ast.UnaryOp) and isinstance(test.op, ast.Not):
            when_true, when_false = self._narrow(test.operand, env)
            return when_false, when_true

        if isinstance(test, ast.BoolOp):
            conjunction = isinstance(test.op, ast.And)
            current: dict[str, Any] | None = dict(env)
            for value in test.values:
                if current is None:
                    break
                when_true, when_false = self._narrow(value, current)
                current = when_true if conjunction else when_false
            if conjunction:
                return current, dict(env)
            return dict(env), current

        if isinstance(test, ast.Name):
            ty = env.get(test.id)
            if isinstance(ty, _TYPE_CLASSES):
                return (
                    _refine(env, test.id, _filter(ty, may_be_truthy, truthy=True)),
                    _refine(env, test.id, _filter(ty, may_be_falsy, truthy=False)),
                )

        if (
            isinstance(test, ast.Compare)
            and len(test.ops) == 1
            and isinstance(test.left, ast.Name)
            and isinstance(test.comparators[0], ast.Constant)
            and test.comparators[0].value is None
            and isinstance(test.ops[0], (ast.Is, ast.IsNot, ast.Eq, ast.NotEq))
        ):
            ty = env.get(test.left.id)
            if isinstance(ty, _TYPE_CLASSES):
                is_none = _refine(env, test.left.id, _none_part(ty))
                not_none = _refine(env, test.left.id, _without_none(ty))
                if isinstance(test.ops[0], (ast.Is, ast.Eq)):
                    return is_none, not_none
                return not_none, is_none

        if (
            isinstance(test, ast.Call)
            and isinstance(test.func, ast.Name)
            and test.func.id == "isinstance"
            and test.func.id not in env
            and len(test.args) == 2
            and isinstance(test.args[0], ast.Name)
        ):
            classes = _class_names(test.args[1])
            ty = env.get(test.args[0].id)
            if classes and isinstance(ty, _TYPE_CLASSES):
                name = test.args[0].id
                return (
                    _refine(env, name, _isinstance_part(ty, classes, True)),
                    _refine(env, name, _isinstance_part(ty, classes, False)),
                )

        return dict(env), dict(env)

    # ── Expressions ─────────────────────────────────────────────

    def _eval_type(self, node: ast.expr, env: dict[str, Any]) -> TypeExpr:
        return self._force(self._eval(node, env), node)

    def _eval(self, node: ast.expr, env: dict[str, Any]) -> Any:
        try:
            return self._eval_node(node, env)
        except SymbolicTypeError as e:
            if e.span is None:
                e.span = self._span(node)
            raise

    def _eval_node(self, node: ast.expr, env: dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return _constant_type(node.value)
        if isinstance(node, ast.Name):
            return self._lookup(node.id, env, node)
        if isinstance(node, ast.BinOp):
            left = self._eval_type(node.left, env)
            right = self._eval_type(node.right, env)
            return binary(_BINOPS[type(node.op)], left, right)
        if isinstance(node, ast.UnaryOp):
            return unary(_UNARYOPS[type(node.op)], self._eval_type(node.operand, env))
        if isinstance(node, ast.BoolOp):
            return self._eval_boolop(node, env)
        if isinstance(node, ast.Compare):
            return self._eval_compare(node, env)
        if isinstance(node, ast.IfExp):
            return self._eval_ifexp(node, env)
        if isinstance(node, ast.Call):
            return self._eval_call(node, env)
        if isinstance(node, ast.Attribute):
            return self._eval_attribute(node, env)
        if isinstance(node, ast.Subscript):
            return self._eval_subscript(node, env)
        if isinstance(node, ast.Tuple):
            return self._eval_tuple(node.elts, env)
        if isinstance(node, (ast.List, ast.Set)):
            return self._eval_sequence(node.elts, env)
        if isinstance(node, ast.Dict):
            return self._eval_dict(node, env)
        if isinstance(node, ast.JoinedStr):
            for value in node.values:
                if isinstance(value, ast.FormattedValue):
                    self._eval_type(value.value, env)
            return STRING
        if isinstance(node, (ast.ListComp, ast.SetComp, ast.GeneratorExp, ast.DictComp)):
            return self._eval_comprehension(node, env)
        if isinstance(node, ast.Lambda):
            return Closure(node, dict(env))
        if isinstance(node, ast.NamedExpr):
            value = self._eval(node.value, env)
            env[node.target.id] = value
            return value
        if isinstance(node, ast.Starred):
            return self._eval(node.value, env)
        # await, yield and anything not modeled
        return UNKNOWN

    def _lookup(self, name: str, env: dict[str, Any], node: ast.AST) -> Any:
        if name in env:
            return env[name]
        if self.mocks.resolve(name) is not None:
            return External(name, name)
        if name in self.module.functions:
            return FunctionRef(name)
        if name in self.module.classes:
            return FunctionType((), UNKNOWN)
        if name in self.module.constants:
            return self._constant(name)
        if name in MODELED_BUILTINS or _is_exception_class(name):
            return BuiltinRef(name)
        if name in self.module.imports:
            return External(name, self.module.imports[name])
        return External(name, name)

    def _constant(self, name: str) -> TypeExpr:
        if name not in self._constants:
            self._constants[name] = UNKNOWN
            expr = self.module.constants[name]
            self._constants[name] = self._force(self._eval(expr, {}), expr)
        return self._constants[name]

    def _eval_boolop(self, node: ast.BoolOp, env: dict[str, Any]) -> TypeExpr:
        conjunction = isinstance(node.op, ast.And)
        results: list[TypeExpr] = []
        current = env
        last = len(node.values) - 1
        for i, value in enumerate(node.values):
            ty = self._eval_type(value, current)
            if i == last:
                results.append(ty)
                break
            truth = truthiness(ty)
            if conjunction:
                if truth is False:
                    results.append(ty)
                    break
                if truth is None:
                    results.append(_filter(ty, may_be_falsy, truthy=False))
                narrowed, _ = self._narrow(value, current)
            else:
                if truth is True:
                    results.append(ty)
                    break
                if truth is None:
                    results.append(_filter(ty, may_be_truthy, truthy=True))
                _, narrowed = self._narrow(value, current)
            if narrowed is None:
                break
            current = narrowed
        return union(*results)

    def _eval_compare(self, node: ast.Compare, env: dict[str, Any]) -> TypeExpr:
        left = self._eval_type(node.left, env)
        results = []
        for op, comparator in zip(node.ops, node.comparators):
            right = self._eval_type(comparator, env)
            results.append(compare(_CMPOPS[type(op)], left, right))
            left = right
        combined = union(*results)
        if len(results) > 1 and not isinstance(combined, (Literal, NeverType)):
            return BOOLEAN
        return combined

    def _eval_ifexp(self, node: ast.IfExp, env: dict[str, Any]) -> TypeExpr:
        truth = truthiness(self._eval_type(node.test, env))
        then_env, else_env = self._narrow(node.test, env)
        results = []
        if then_env is not None and truth is not False:
            results.append(self._eval_type(node.body, then_env))
        if else_env is not None and truth is not True:
            results.append(self._eval_type(node.orelse, else_env))
        return union(*results)

    def _eval_sequence(self, elts: list[ast.expr], env: dict[str, Any]) -> TypeExpr:
        members = []
        for elt in elts:
            if isinstance(elt, ast.Starred):
                members.append(self._element_type(self._eval_type(elt.value, env), elt))
            else:
                members.append(self._eval_type(elt, env))
        return ArrayType(union(*members))

    def _eval_tuple(self, elts: list[ast.expr], env: dict[str, Any]) -> TypeExpr:
        elements: list[TypeExpr] = []
        for elt in elts:
            if not isinstance(elt, ast.Starred):
                elements.append(self._eval_type(elt, env))
                continue
            spread = _same_shape(self._eval_type(elt.value, env))
            if not isinstance(spread, TupleType):
                # unknown length from here on
                return ArrayType(union(*elements, *self._spread_rest(elts, elt, spread, env)))
            elements.extend(spread.elements)
        return TupleType(tuple(elements))

    def _spread_rest(
        self, elts: list[ast.expr], first: ast.Starred, spread: TypeExpr, env: dict[str, Any],
    ) -> list[TypeExpr]:
        rest = [self._element_type(spread, first)]
        for elt in elts[elts.index(first) + 1:]:
            if isinstance(elt, ast.Starred):
                rest.append(self._element_type(self._eval_type(elt.value, env), elt))
            else:
                rest.append(self._eval_type(elt, env))
        return rest

    def _eval_dict(self, node: ast.Dict, env: dict[str, Any]) -> TypeExpr:
        fields: dict[str, TypeExpr] = {}
        structural = True
        for key, value in zip(node.keys, node.values):
            value_type = self._eval_type(value, env)
            if key is None:
                if isinstance(value_type, ObjectType):
                    fields.update(value_type.as_dict())
                else:
                    structural = False
                continue
            key_type = self._eval_type(key, env)
            if isinstance(key_type, Literal) and isinstance(key_type.value, str):
                fields[key_type.value] = value_type
            else:
                structural = False
        return object_type(fields) if structural else UNKNOWN

    def _eval_comprehension(self, node: ast.expr, env: dict[str, Any]) -> TypeExpr:
        inner = dict(env)
        for gen in node.generators:
            element = self._element_type(self._eval_type(gen.iter, inner), gen.iter)
            self._assign(gen.target, element, inner)
            for cond in gen.ifs:
                self._eval(cond, inner)
                narrowed, _ = self._narrow(cond, inner)
                if narrowed is None:
                    return ArrayType(NEVER)
                inner = narrowed
        if isinstance(node, ast.DictComp):
            self._eval_type(node.key, inner)
            self._eval_type(node.value, inner)
            return UNKNOWN
        return ArrayType(self._eval_type(node.elt, inner))

    # ── Attributes and subscripts ───────────────────────────────

    def _eval_attribute(self, node: ast.Attribute, env: dict[str, Any]) -> Any:
        value = self._eval(node.value, env)
        if isinstance(value, External):
            return value.child(node.attr)
        if not isinstance(value, _TYPE_CLASSES):
            return UNKNOWN
        target = node.value.id if isinstance(node.value, ast.Name) else None
        return self._attribute(value, node.attr, target, node)

    def _attribute(self, ty: TypeExpr, attr: str, target: str | None, node: ast.AST) -> Any:
        if isinstance(ty, (UnknownType, NeverType)):
            return ty
        if isinstance(ty, Union):
            results = [self._attribute(m, attr, target, node) for m in ty.members]
            if any(isinstance(r, MethodRef) for r in results):
                return MethodRef(ty, attr, target)
            return union(*results)
        kind = kind_of(ty)
        if kind == "object":
            found = ty.field_type(attr)
            if found is not None:
                return found
            if hasattr(dict, attr):
                return MethodRef(ty, attr, target)
            self._warn("W310", f"missing field '{attr}' on {type_name(ty)}", node)
            return UNKNOWN
        owners = {"string": (str,), "array": (list,), "number": (int, float), "boolean": (int,)}
        classes = (tuple,) if isinstance(ty, TupleType) else owners.get(kind, ())
        found = [getattr(owner, attr) for owner in classes if hasattr(owner, attr)]
        if found and not any(callable(f) for f in found):
            # real, imag, numerator, denominator
            if isinstance(ty, Literal):
                try:
                    return Literal(getattr(ty.value, attr))
                except AttributeError:
                    raise SymbolicTypeError(
                        f"'{type_name(ty)}' has no attribute '{attr}'"
                    ) from None
            return NUMBER
        if found:
            return MethodRef(ty, attr, target)
        raise SymbolicTypeError(f"'{type_name(ty)}' has no attribute '{attr}'")

    def _eval_subscript(self, node: ast.Subscript, env: dict[str, Any]) -> TypeExpr:
        container = self._eval_type(node.value, env)
        if isinstance(node.slice, ast.Slice):
            bounds: list[int | None] | None = []
            for part in (node.slice.lower, node.slice.upper, node.slice.step):
                bound = None if part is None else self._eval_type(part, env)
                if bound is None or isinstance(bound, Literal) and isinstance(bound.value, int):
                    if bounds is not None:
                        bounds.append(None if bound is None else int(bound.value))
                else:
                    bounds = None
            return self._slice(container, bounds)
        index = self._eval_type(node.slice, env)
        return self._index(container, index, node)

    def _slice(self, ty: TypeExpr, bounds: list[int | None] | None = None) -> TypeExpr:
        if isinstance(ty, Union):
            return union(*(self._slice(m, bounds) for m in ty.members))
        if isinstance(ty, TupleType):
            if bounds is None:
                return ArrayType(ty.element)
            try:
                return TupleType(ty.elements[slice(*bounds)])
            except ValueError as e:
                raise SymbolicTypeError(str(e)) from None
        kind = kind_of(ty)
        if kind == "string":
            return STRING
        if kind == "array" or isinstance(ty, (UnknownType, NeverType)):
            return ty
        raise SymbolicTypeError(f"'{type_name(ty)}' object is not subscriptable")

    def _index(self, ty: TypeExpr, index: TypeExpr, node: ast.AST) -> TypeExpr:
        if isinstance(ty, (UnknownType, NeverType)):
            return ty
        if isinstance(ty, Union):
            return union(*(self._index(m, index, node) for m in ty.members))
        kind = kind_of(ty)
        if kind == "object":
            if isinstance(index, Literal) and isinstance(index.value, str):
                found = ty.field_type(index.value)
                if found is None:
                    self._warn("W310", f"missing field '{index.value}' on {type_name(ty)}", node)
                    return UNKNOWN
                return found
            values = [t for _, t in ty.fields]
            return union(*values) if values else UNKNOWN
        index_kind = kind_of(index)
        if kind in ("array", "string"):
            if not isinstance(index, (UnknownType, NeverType, Union)) and index_kind not in ("number", "boolean"):
                raise SymbolicTypeError(
                    f"{_sequence_name(ty)} indices must be integers, "
                    f"not '{type_name(index)}'"
                )
            if isinstance(ty, TupleType) and isinstance(index, Literal) and isinstance(index.value, int):
                try:
                    return ty.elements[int(index.value)]
                except IndexError:
                    raise SymbolicTypeError("tuple index out of range") from None
            if kind == "array":
                return ty.element
            if isinstance(ty, Literal) and isinstance(index, Literal):
                try:
                    return Literal(ty.value[index.value])
                except (IndexError, TypeError):
                    return STRING
            return STRING
        raise SymbolicTypeError(f"'{type_name(ty)}' object is not subscriptable")

    def _element_type(self, ty: TypeExpr, node: ast.AST) -> TypeExpr:
        """Type of the items produced by iterating over *ty*."""
        if isinstance(ty, (UnknownType, NeverType)):
            return ty
        if isinstance(ty, Union):
            return union(*(self._element_type(m, node) for m in ty.members))
        kind = kind_of(ty)
        if kind == "array":
            return ty.element
        if kind == "string":
            return STRING
        if kind == "object":
            return union(*(Literal(k) for k, _ in ty.fields)) if ty.fields else STRING
        raise SymbolicTypeError(f"'{type_name(ty)}' object is not iterable")

    # ── Calls ───────────────────────────────────────────────────

    def _eval_call(self, node: ast.Call, env: dict[str, Any]) -> Any:
        func = self._eval(node.func, env)
        args: list[Any] = []
        loose = False
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                self._eval(arg.value, env)
                loose = True
            else:
                args.append(self._eval(arg, env))
        kwargs: dict[str, Any] = {}
        for kw in node.keywords:
            value = self._eval(kw.value, env)
            if kw.arg is None:
                loose = True
            else:
                kwargs[kw.arg] = value
        return self._call(func, args, kwargs, node, env, loose=loose)

    def _call(
        self,
        func: Any,
        args: list[Any],
        kwargs: dict[str, Any],
        node: ast.Call,
        env: dict[str, Any],
        *,
        loose: bool = False,
    ) -> Any:
        if isinstance(func, FunctionRef):
            if loose:
                return UNKNOWN
            fn = self.module.functions[func.name]
            if self._in_recursion(func.name):
                args = [widen(a) if isinstance(a, _TYPE_CLASSES) else a for a in args]
                kwargs = {k: widen(v) if isinstance(v, _TYPE_CLASSES) else v for k, v in kwargs.items()}
            bound = self._bind_call(fn, args, kwargs)
            result = self._call_user(func.name, fn, bound, self._next_depth())
            return self._finish_call(result)
        if isinstance(func, Closure):
            if loose:
                return UNKNOWN
            depth = self._next_depth()
            if depth > self.recursion_limit:
                return UNKNOWN
            bound = self._bind_call(func.node, args, kwargs)
            body = func.node.body
            if isinstance(func.node, ast.Lambda):
                body = [ast.Return(value=body, lineno=func.node.lineno, col_offset=func.node.col_offset)]
            frame = self._execute("<closure>", body, {**func.env, **bound}, depth)
            return self._finish_call(CallResult(union(*frame.returns), tuple(frame.raises), bool(frame.returns)))
        if isinstance(func, BuiltinRef):
            forced = [self._force(a, node) for a in args]
            if _is_exception_class(func.name):
                return UNKNOWN
            return self._call_builtin(func.name, forced, kwargs, node)
        if isinstance(func, MethodRef):
            forced = [self._force(a, node) for a in args]
            return self._call_method(func, forced, kwargs, node, env)
        if isinstance(func, External):
            entry = self._resolve_mock(func)
            if entry is None:
                self._unmocked(func, node)
                return UNKNOWN
            substitute = entry.substitute_type
            if isinstance(substitute, FunctionType):
                return substitute.returns
            return substitute
        return self._call_type(self._as_type(func))

    def _call_type(self, ty: TypeExpr) -> TypeExpr:
        if isinstance(ty, (UnknownType, NeverType)):
            return ty
        if isinstance(ty, FunctionType):
            return ty.returns
        if isinstance(ty, Union):
            return union(*(self._call_type(m) for m in ty.members))
        raise SymbolicTypeError(f"'{type_name(ty)}' object is not callable")

    def _bind_call(self, fn: ast.FunctionDef | ast.Lambda, args: list[Any], kwargs: dict[str, Any]) -> dict[str, Any]:
        try:
            return bind(fn, args, kwargs, self._default, pack=self._pack, pack_kwargs=self._as_type)
        except ArityError as e:
            raise SymbolicTypeError(str(e)) from None

    def _finish_call(self, result: CallResult) -> TypeExpr:
        for name in result.raises:
            self._record_raise(name)
        if not result.returned and result.raises:
            raise _Unreachable()
        return result.returns

    def _call_builtin(
        self, name: str, args: list[TypeExpr], kwargs: dict[str, Any], node: ast.AST,
    ) -> TypeExpr:
        first = args[0] if args else None
        if name == "len":
            if first is None:
                raise SymbolicTypeError("len() takes exactly one argument (0 given)")
            return self._len(first)
        if name in ("str", "repr", "format"):
            if first is None:
                return Literal("")
            if name == "str" and isinstance(first, Literal):
                return Literal(str(first.value))
            return STRING
        if name in ("int", "float"):
            if isinstance(first, Literal) and first.primitive != "string":
                folded = _convert(int if name == "int" else float, first.value)
                if folded is not None:
                    return folded
            for arg in args[:1]:
                self._require(arg, ("number", "boolean", "string"), f"{name}()")
            return NUMBER
        if name in ("abs", "round"):
            if first is None:
                raise SymbolicTypeError(f"{name}() takes at least one argument")
            self._require(first, ("number", "boolean"), f"{name}()")
            if isinstance(first, Literal) and len(args) == 1:
                folded = _convert(abs if name == "abs" else round, first.value)
                if folded is not None:
                    return folded
            return NUMBER
        if name in ("min", "max"):
            if len(args) == 1:
                return self._element_type(first, node)
            if args and all(isinstance(a, Literal) for a in args):
                try:
                    pick = min if name == "min" else max
                    return Literal(pick(a.value for a in args))
                except TypeError:
                    raise SymbolicTypeError(
                        f"'<' not supported between {', '.join(type_name(a) for a in args)}"
                    ) from None
            return union(*args)
        if name == "bool":
            truth = truthiness(first) if first is not None else False
            return BOOLEAN if truth is None else Literal(truth)
        if name in ("isinstance", "callable", "any", "all", "hasattr"):
            return BOOLEAN
        if name == "print":
            return NULL
        if name == "range":
            for arg in args:
                self._require(arg, ("number", "boolean"), "range()")
            return ArrayType(NUMBER)
        if name == "tuple" and isinstance(first, TupleType):
            return first
        if name == "tuple" and first is None:
            return TupleType()
        if name in ("list", "tuple", "set", "sorted", "reversed", "iter"):
            if first is None:
                return ArrayType(NEVER)
            element = self._element_type(first, node)
            return element if name == "iter" else ArrayType(element)
        if name == "sum":
            if first is not None:
                element = self._element_type(first, node)
                self._require(element, ("number", "boolean"), "sum()")
            return NUMBER
        if name == "enumerate":
            element = self._element_type(first, node) if first is not None else NEVER
            return ArrayType(TupleType((NUMBER, element)))
        if name == "zip":
            return ArrayType(TupleType(tuple(self._element_type(a, node) for a in args)))
        if name == "dict":
            fields = {k: self._force(v, node) for k, v in kwargs.items()}
            if first is None:
                return object_type(fields)
            if isinstance(first, ObjectType):
                return object_type({**first.as_dict(), **fields})
            return UNKNOWN
        if name == "map":
            return ArrayType(self._call_type(args[0]) if args else UNKNOWN)
        if name == "filter":
            return ArrayType(self._element_type(args[1], node) if len(args) > 1 else UNKNOWN)
        if name == "divmod":
            for arg in args:
                self._require(arg, ("number", "boolean"), "divmod()")
            return TupleType((NUMBER, NUMBER))
        if name == "pow":
            return binary("**", args[0], args[1]) if len(args) >= 2 else NUMBER
        if name in ("ord", "hash", "id"):
            return NUMBER
        if name == "chr":
            return STRING
        if name == "next" and first is not None:
            return self._element_type(first, node)
        return UNKNOWN

    def _len(self, ty: TypeExpr) -> TypeExpr:
        if isinstance(ty, Literal) and isinstance(ty.value, str):
            return Literal(len(ty.value))
        if isinstance(ty, TupleType):
            return Literal(len(ty.elements))
        for member in members_of(ty):
            if isinstance(member, (UnknownType, NeverType)):
                continue
            if kind_of(member) not in ("string", "array", "object"):
                raise SymbolicTypeError(f"object of type '{type_name(member)}' has no len()")
        return NUMBER

    def _require(self, ty: TypeExpr, kinds: tuple[str, ...], where: str) -> None:
        for member in members_of(ty):
            if isinstance(member, (UnknownType, NeverType)):
                continue
            if kind_of(member) not in kinds:
                raise SymbolicTypeError(f"{where} does not accept '{type_name(member)}'")

    def _call_method(
        self,
        ref: MethodRef,
        args: list[TypeExpr],
        kwargs: dict[str, Any],
        node: ast.AST,
        env: dict[str, Any],
    ) -> TypeExpr:
        results = []
        for receiver in members_of(ref.receiver):
            if isinstance(receiver, (UnknownType, NeverType)):
                results.append(receiver)
                continue
            kind = kind_of(receiver)
            if kind == "string":
                results.append(self._string_method(receiver, ref.name, args))
            elif kind == "array":
                results.append(self._list_method(receiver, ref, args, env))
            elif kind == "object":
                results.append(self._dict_method(receiver, ref, args, env))
            elif ref.name == "is_integer":
                results.append(BOOLEAN)
            else:
                results.append(UNKNOWN)
        return union(*results)

    def _string_method(self, receiver: TypeExpr, name: str, args: list[TypeExpr]) -> TypeExpr:
        if isinstance(receiver, Literal) and not args and name in _FOLDABLE_STRING_METHODS:
            return Literal(getattr(receiver.value, name)())
        if name == "join" and args:
            self._require(self._element_type(args[0], None), ("string",), "str.join()")
        return _STRING_RESULTS.get(name, UNKNOWN)

    def _list_method(
        self, receiver: ArrayType, ref: MethodRef, args: list[TypeExpr], env: dict[str, Any],
    ) -> TypeExpr:
        name = ref.name
        if name in ("append", "insert", "extend"):
            if name == "extend" and args:
                added = self._element_type(args[0], None)
            else:
                added = args[-1] if args else NEVER
            if ref.target is not None and ref.target in env:
                env[ref.target] = ArrayType(union(receiver.element, added))
            return NULL
        if name in ("pop",):
            return receiver.element
        if name in ("index", "count"):
            return NUMBER
        if name == "copy":
            return receiver
        if name in ("sort", "reverse", "clear", "remove"):
            return NULL
        return UNKNOWN

    def _dict_method(
        self, receiver: ObjectType, ref: MethodRef, args: list[TypeExpr], env: dict[str, Any],
    ) -> TypeExpr:
        name = ref.name
        values = [t for _, t in receiver.fields]
        if name in ("get", "pop", "setdefault"):
            fallback = args[1] if len(args) > 1 else (NULL if name == "get" else NEVER)
            key = args[0] if args else UNKNOWN
            if isinstance(key, Literal) and isinstance(key.value, str):
                found = receiver.field_type(key.value)
                return found if found is not None else fallback
            return union(*values, fallback)
        if name == "keys":
            return ArrayType(STRING)
        if name == "values":
            return ArrayType(union(*values))
        if name == "items":
            return ArrayType(TupleType((STRING, union(*values))))
        if name == "copy":
            return receiver
        if name == "update":
            if args and isinstance(args[0], ObjectType) and ref.target in env:
                env[ref.target] = object_type({**receiver.as_dict(), **args[0].as_dict()})
            return NULL
        if name == "clear":
            return NULL
        return UNKNOWN


# ── Type filters ────────────────────────────────────────────────


def _constant_type(value: Any) -> TypeExpr:
    if value is None:
        return NULL
    if isinstance(value, (bool, int, float, str)):
        return Literal(value)
    return UNKNOWN


def _convert(fn: Callable[[Any], Any], value: Any) -> TypeExpr | None:
    """Fold a numeric conversion of a literal; None when Python would raise."""
    try:
        return Literal(fn(value))
    except (OverflowError, ValueError):
        return None


def _refine(env: dict[str, Any], name: str, ty: TypeExpr) -> dict[str, Any] | None:
    if isinstance(ty, NeverType):
        return None
    refined = dict(env)
    refined[name] = ty
    return refined


def _filter(ty: TypeExpr, keep: Callable[[TypeExpr], bool], *, truthy: bool) -> TypeExpr:
    kept = []
    for member in members_of(ty):
        if member == BOOLEAN:
            kept.append(Literal(truthy))
        elif keep(member):
            kept.append(member)
    return union(*kept)


def _sequence_name(ty: TypeExpr) -> str:
    if isinstance(ty, TupleType):
        return "tuple"
    return "list" if kind_of(ty) == "array" else "string"


def _same_shape(ty: TypeExpr) -> TypeExpr:
    """A union of equal-length tuples as one tuple of per-position unions."""
    if not isinstance(ty, Union) or not all(isinstance(m, TupleType) for m in ty.members):
        return ty
    if len({len(m.elements) for m in ty.members}) != 1:
        return ty
    columns = zip(*(m.elements for m in ty.members))
    return TupleType(tuple(union(*column) for column in columns))


def _none_part(ty: TypeExpr) -> TypeExpr:
    if isinstance(ty, UnknownType):
        return NULL
    return NULL if NULL in members_of(ty) else NEVER


def _without_none(ty: TypeExpr) -> TypeExpr:
    return union(*(m for m in members_of(ty) if m != NULL))


def _class_names(node: ast.expr) -> tuple[str, ...]:
    if isinstance(node, ast.Name) and node.id in _ISINSTANCE:
        return (node.id,)
    if isinstance(node, ast.Tuple):
        names = tuple(e.id for e in node.elts if isinstance(e, ast.Name) and e.id in _ISINSTANCE)
        if len(names) == len(node.elts):
            return names
    return ()


def _isinstance_part(ty: TypeExpr, classes: tuple[str, ...], matching: bool) -> TypeExpr:
    kinds = {k for c in classes for k in _ISINSTANCE[c]}
    kept = []
    for member in members_of(ty):
        if isinstance(member, UnknownType):
            if matching:
                known = [_ISINSTANCE_UNKNOWN[c] for c in classes if c in _ISINSTANCE_UNKNOWN]
                kept.append(union(*known) if len(known) == len(classes) else UNKNOWN)
            else:
                kept.append(member)
        elif _isinstance_matches(member, classes, kinds) == matching:
            kept.append(member)
    return union(*kept)


def _isinstance_matches(member: TypeExpr, classes: tuple[str, ...], kinds: set[str]) -> bool:
    # a plain array may stand for a tuple of unknown length
    if isinstance(member, TupleType):
        return "tuple" in classes
    return kind_of(member) in kinds


def _irrefutable(pattern: ast.pattern) -> bool:
    return isinstance(pattern, ast.MatchAs) and pattern.pattern is None


def _is_exception_class(name: str) -> bool:
    obj = getattr(builtins, name, None)
    return isinstance(obj, type) and issubclass(obj, BaseException)


def exception_name(node: ast.expr | None) -> str | None:
    """Name of the exception class in a ``raise`` or ``except`` expression."""
    if node is None:
        return None
    if isinstance(node, ast.Call):
        return exception_name(node.func)
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Tuple) and node.elts:
        return exception_name(node.elts[0])
    return None
