# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Variables and the hierarchy of scopes that own them.

A :class:`Scope` maps names to :class:`Variable` objects.  Lookups
(:meth:`Scope.find_var`) fall through to the parent on a miss; creation
(:meth:`Scope.var`) is always local.  A scope owns its children
(``kids``); the child keeps only a weak back-reference to its parent, used
for name resolution and never for lifetime.
"""
from __future__ import annotations

import itertools
import weakref
from typing import Any, Iterable, TypeVar

from .errors import EnforceNotMet, enforce
from .tensor import Tensor

T = TypeVar('T')

_temp_ids = itertools.count()


class Variable:
    """A named slot holding one value (a :class:`Tensor`, a step-scope list, ...)."""

    __slots__ = ('_name', '_value')

    def __init__(self, name: str):
        self._name = name
        self._value: Any = None

    @property
    def name(self) -> str:
        return self._name

    def is_initialized(self) -> bool:
        return self._value is not None

    def is_type(self, cls: type) -> bool:
        return isinstance(self._value, cls)

    def get(self, cls: type[T]) -> T:
        enforce(self._value is not None,
                "variable '%s' holds no value", self._name)
        enforce(isinstance(self._value, cls),
                "variable '%s' holds %s, not %s",
                self._name, type(self._value).__name__, cls.__name__)
        return self._value

    def get_mutable(self, cls: type[T]) -> T:
        if self._value is None:
            self._value = cls()
        elif not isinstance(self._value, cls):
            raise EnforceNotMet(
                f"variable '{self._name}' holds {type(self._value).__name__}, "
                f"requested {cls.__name__}")
        return self._value

    def get_tensor(self) -> Tensor:
        return self.get_mutable(Tensor)

    def __repr__(self) -> str:
        return f"Variable({self._name!r}, {self._value!r})"


class Scope:
    """Name → :class:`Variable` mapping with parent fall-through."""

    __slots__ = ('_vars', '_kids', '_parent', '__weakref__')

    def __init__(self, parent: 'Scope | None' = None):
        self._vars: dict[str, Variable] = {}
        self._kids: list[Scope] = []
        self._parent = weakref.ref(parent) if parent is not None else None

    # ---- Hierarchy ----

    @property
    def parent(self) -> 'Scope | None':
        return self._parent() if self._parent is not None else None

    @property
    def kids(self) -> tuple['Scope', ...]:
        return tuple(self._kids)

    def new_scope(self) -> 'Scope':
        kid = Scope(self)
        self._kids.append(kid)
        return kid

    def delete_scope(self, kid: 'Scope') -> None:
        for i, k in enumerate(self._kids):
            if k is kid:
                del self._kids[i]
                return
        raise EnforceNotMet("scope to delete is not a child of this scope")

    def drop_kids(self) -> None:
        self._kids.clear()

    # ---- Variables ----

    def var(self, name: str) -> Variable:
        """Find *name* in this scope only, creating it when absent."""
        v = self._vars.get(name)
        if v is None:
            v = self._vars[name] = Variable(name)
        return v

    def new_temp_var(self) -> tuple[str, Variable]:
        name = f"@TMP@{id(self):x}.{next(_temp_ids)}"
        return name, self.var(name)

    def find_local_var(self, name: str) -> Variable | None:
        return self._vars.get(name)

    def find_var(self, name: str) -> Variable | None:
        scope: Scope | None = self
        while scope is not None:
            v = scope._vars.get(name)
            if v is not None:
                return v
            scope = scope.parent
        return None

    def find_scope(self, name: str) -> 'Scope | None':
        scope: Scope | None = self
        while scope is not None:
            if name in scope._vars:
                return scope
            scope = scope.parent
        return None

    def erase_vars(self, names: Iterable[str]) -> None:
        for name in names:
            self._vars.pop(name, None)

    def local_var_names(self) -> list[str]:
        return list(self._vars)

    def all_names(self, recursive: bool = False) -> set[str]:
        names = set(self._vars)
        if recursive:
            for kid in self._kids:
                names |= kid.all_names(recursive=True)
        return names

    def __contains__(self, name: str) -> bool:
        return self.find_var(name) is not None

    def __repr__(self) -> str:
        return f"<Scope vars={len(self._vars)} kids={len(self._kids)}>"


_global_scope: Scope | None = None


def global_scope() -> Scope:
    """Process-wide default scope."""
    global _global_scope
    if _global_scope is None:
        _global_scope = Scope()
    return _global_scope
