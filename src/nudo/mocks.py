"""Mock registry with scoped lookup for external symbols."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from nudo.source import Span
from nudo.types import ObjectType, TypeExpr
from nudo.values import Concrete, Symbolic, Value, value_type


@dataclass(frozen=True)
class MockEntry:
    symbol_name: str
    substitute: Value
    span: Span | None = None

    @property
    def substitute_type(self) -> TypeExpr:
        return value_type(self.substitute)

    @property
    def substitute_value(self) -> Any:
        """The concrete substitute, or None for a symbolic one."""
        if isinstance(self.substitute, Concrete):
            return self.substitute.literal
        return None

    @property
    def is_symbolic(self) -> bool:
        return isinstance(self.substitute, Symbolic)


class MockRegistry:
    """Substitutes for external symbols, scoped by parent chaining.

    A file registry holds file-scoped mocks; each case gets a
    :meth:`child` so its own mocks override the file's without leaking
    into sibling cases.
    """

    def __init__(self, parent: MockRegistry | None = None, name: str = "file") -> None:
        self.parent = parent
        self.name = name
        self._entries: dict[str, MockEntry] = {}

    def child(self, name: str = "") -> MockRegistry:
        return MockRegistry(parent=self, name=name)

    def register(
        self, symbol_name: str, substitute: Value, span: Span | None = None,
    ) -> MockEntry:
        """Register a substitute in this scope. A later registration wins."""
        entry = MockEntry(symbol_name, substitute, span)
        self._entries[symbol_name] = entry
        return entry

    def lookup_local(self, symbol_name: str) -> MockEntry | None:
        return self._entries.get(symbol_name)

    def _lookup(self, symbol_name: str) -> MockEntry | None:
        entry = self._entries.get(symbol_name)
        if entry is not None:
            return entry
        if self.parent is not None:
            return self.parent._lookup(symbol_name)
        return None

    def resolve(self, symbol_name: str) -> MockEntry | None:
        """Find the substitute for *symbol_name* in this scope chain.

        Dotted names try the full name first, then look the remaining
        path up as fields of a mock registered for the root name.
        """
        entry = self._lookup(symbol_name)
        if entry is not None or "." not in symbol_name:
            return entry

        root, *path = symbol_name.split(".")
        base = self._lookup(root)
        if base is None:
            return None
        substitute = base.substitute
        for part in path:
            substitute = _field(substitute, part)
            if substitute is None:
                return None
        return MockEntry(symbol_name, substitute, base.span)

    def entries(self) -> dict[str, MockEntry]:
        """All visible entries, innermost scope winning."""
        merged = self.parent.entries() if self.parent is not None else {}
        merged.update(self._entries)
        return merged

    def __contains__(self, symbol_name: str) -> bool:
        return self.resolve(symbol_name) is not None


def _field(value: Value, name: str) -> Value | None:
    if isinstance(value, Concrete):
        if isinstance(value.literal, dict) and name in value.literal:
            return Concrete(value.literal[name])
        return None
    if isinstance(value.type, ObjectType):
        ty = value.type.field_type(name)
        return Symbolic(ty) if ty is not None else None
    return None
