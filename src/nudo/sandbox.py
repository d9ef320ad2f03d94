"""Concrete case execution in a child Python process.

The parent side (:func:`run_in_sandbox`) sends one JSON request on stdin to
``python -m nudo.sandbox`` and reads one JSON reply from stdout, under a
wall-clock timeout. The child executes the analyzed module, installs the
mocks, calls the function and reports the structural type of the result.

This contains crashes, hangs and output; it does not isolate the file
system or network from module-level side effects.
"""

from __future__ import annotations

import ast
import contextlib
import importlib.util
import inspect
import io
import json
import logging
import os
import subprocess
import sys
import types
from pathlib import Path
from typing import Any

from nudo.interpreter import import_bindings
from nudo.types import infer_value_type, type_to_data

logger = logging.getLogger(__name__)

# src/ directory containing the nudo package, for the child's sys.path
_PACKAGE_ROOT = str(Path(__file__).resolve().parent.parent)


class SandboxError(Exception):
    """The child process failed without producing a reply."""

    def __init__(self, message: str, stderr: str = "") -> None:
        self.stderr = stderr
        super().__init__(message)


class SandboxTimeout(SandboxError):
    """The child process exceeded its time budget."""


# ── Parent side ─────────────────────────────────────────────────


def build_request(
    source: str,
    filename: str,
    function: str,
    args: list[Any],
    mocks: list[dict[str, Any]] | None = None,
    directory: str | None = None,
) -> dict[str, Any]:
    """A sandbox request.

    Each mock is ``{"name": dotted.name, "value": ..., "callable": bool}``;
    a callable mock is installed as a function returning ``value``.
    *directory* goes first on the child's ``sys.path``, the way running
    ``python file.py`` puts the script's directory there.
    """
    return {
        "source": source,
        "filename": filename,
        "function": function,
        "args": args,
        "mocks": mocks or [],
        "directory": directory,
    }


def run_in_sandbox(request: dict[str, Any], *, timeout: float) -> dict[str, Any]:
    """Run *request* in a fresh interpreter and return its reply.

    Raises :class:`SandboxTimeout` when *timeout* seconds pass and
    :class:`SandboxError` when the child dies without a reply.
    """
    cmd = [sys.executable, "-m", "nudo.sandbox"]
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (_PACKAGE_ROOT, env.get("PYTHONPATH")) if p
    )
    env["PYTHONDONTWRITEBYTECODE"] = "1"

    logger.debug("sandbox: %s(%s) timeout=%.1fs",
                 request["function"], ", ".join(map(repr, request["args"])), timeout)
    try:
        result = subprocess.run(
            cmd,
            input=json.dumps(request),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        raise SandboxTimeout(f"case exceeded the {timeout:g}s timeout")

    if result.returncode != 0 or not result.stdout.strip():
        detail = result.stderr.strip().splitlines()[-1:] or ["no output"]
        raise SandboxError(
            f"sandbox exited with status {result.returncode}: {detail[0]}",
            stderr=result.stderr,
        )
    try:
        reply = json.loads(result.stdout)
    except json.JSONDecodeError:
        raise SandboxError("sandbox produced an unreadable reply", stderr=result.stderr)
    logger.debug("sandbox reply: %s", reply.get("status"))
    return reply


# ── Child side ──────────────────────────────────────────────────


def called_names(tree: ast.Module) -> set[str]:
    """Dotted names that appear as the callee of a call."""
    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            name = _dotted(node.func)
            if name:
                names.add(name)
    return names


def _dotted(node: ast.expr) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted(node.value)
        return f"{base}.{node.attr}" if base else None
    return None


def _returning(value: Any):
    def mock(*args: Any, **kwargs: Any) -> Any:
        return value
    return mock


def _install(namespace: dict[str, Any], name: str, value: Any) -> None:
    root, *path = name.split(".")
    if not path:
        namespace[root] = value
        return
    obj = namespace.get(root)
    if obj is None:
        obj = namespace[root] = types.SimpleNamespace()
    for part in path[:-1]:
        nxt = getattr(obj, part, None)
        if nxt is None:
            nxt = types.SimpleNamespace()
            setattr(obj, part, nxt)
        obj = nxt
    setattr(obj, path[-1], value)


def _substitute(mock: dict[str, Any], called: bool) -> Any:
    if mock.get("callable") or called:
        return _returning(mock["value"])
    return mock["value"]


def _importable(module: str) -> bool:
    try:
        return importlib.util.find_spec(module) is not None
    except (ImportError, ValueError):
        return False


def stub_missing_modules(tree: ast.Module, mocks: list[dict[str, Any]]) -> list[str]:
    """Register placeholder modules for mocked imports that cannot be found.

    Returns the names of the modules that were stubbed.
    """
    called_tails = {n.rsplit(".", 1)[-1] for n in called_names(tree)}
    stubbed = []
    for stmt in tree.body:
        if isinstance(stmt, ast.Import):
            modules = [alias.name for alias in stmt.names]
        elif isinstance(stmt, ast.ImportFrom) and stmt.level == 0 and stmt.module:
            modules = [stmt.module]
        else:
            continue
        for module in modules:
            prefix = module + "."
            owned = [m for m in mocks if m["name"] == module or m["name"].startswith(prefix)]
            if not owned or module in sys.modules or _importable(module):
                continue
            parts = module.split(".")
            for i in range(1, len(parts) + 1):
                name = ".".join(parts[:i])
                if name not in sys.modules:
                    sys.modules[name] = types.ModuleType(name)
                if i > 1:
                    setattr(sys.modules[".".join(parts[: i - 1])], parts[i - 1], sys.modules[name])
            stub = sys.modules[module]
            for mock in owned:
                if mock["name"] != module:
                    attr = mock["name"][len(prefix):]
                    _install(vars(stub), attr,
                             _substitute(mock, attr.rsplit(".", 1)[-1] in called_tails))
            stubbed.append(module)
    return stubbed


def install_mocks(
    namespace: dict[str, Any], tree: ast.Module, mocks: list[dict[str, Any]],
) -> None:
    """Install substitutes into an executed module's namespace.

    A mock declared under an imported path (``api.fetch``) is also bound
    to the local name the module imported it as.
    """
    called = called_names(tree)
    aliases: dict[str, list[str]] = {}
    for stmt in tree.body:
        if isinstance(stmt, (ast.Import, ast.ImportFrom)):
            for local, path in import_bindings(stmt).items():
                aliases.setdefault(path, []).append(local)

    for mock in mocks:
        name = mock["name"]
        targets = [name]
        for path, locals_ in aliases.items():
            if name == path or name.startswith(path + "."):
                targets.extend(local + name[len(path):] for local in locals_)
        for target in dict.fromkeys(targets):
            _install(namespace, target, _substitute(mock, target in called))


def execute(request: dict[str, Any]) -> dict[str, Any]:
    """Run one request in this process and build the reply."""
    source = request["source"]
    filename = request.get("filename", "<string>")
    tree = ast.parse(source, filename)
    namespace: dict[str, Any] = {"__name__": "__nudo__", "__file__": filename}
    directory = request.get("directory")
    if directory and directory not in sys.path:
        sys.path.insert(0, directory)

    captured = io.StringIO()
    try:
        stub_missing_modules(tree, request.get("mocks", []))
        with contextlib.redirect_stdout(captured):
            exec(compile(tree, filename, "exec"), namespace)
            install_mocks(namespace, tree, request.get("mocks", []))
            func = namespace[request["function"]]
            args = request["args"]
            bound = inspect.signature(func).bind(*args)
            bound.apply_defaults()
            result = func(*args)
    except Exception as e:
        return {"status": "raised", "exception": type(e).__name__, "message": str(e)}

    params = [
        value for name, value in bound.arguments.items()
        if bound.signature.parameters[name].kind in (
            inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD,
        )
    ]
    return {
        "status": "returned",
        "returns": type_to_data(infer_value_type(result)),
        "params": [type_to_data(infer_value_type(v)) for v in params],
    }


def main() -> None:
    request = json.load(sys.stdin)
    reply = execute(request)
    sys.stdout.write(json.dumps(reply))
    sys.stdout.flush()


if __name__ == "__main__":
    main()
