# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Places (device tags) and the device contexts copies synchronise on."""
from __future__ import annotations

_KNOWN_TYPES = ('cpu', 'cuda', 'mps')


class Place:
    """Location of a tensor's storage (cpu, cuda:N, mps)."""

    __slots__ = ('_type', '_index')

    def __init__(self, type_or_str: 'str | Place' = 'cpu', index: int | None = None):
        if isinstance(type_or_str, Place):
            self._type = type_or_str._type
            self._index = type_or_str._index
            return
        s = str(type_or_str)
        if ':' in s:
            kind, idx = s.split(':', 1)
            self._type = kind
            self._index = int(idx)
        else:
            self._type = s
            self._index = index
        if self._type not in _KNOWN_TYPES:
            raise ValueError(f"Unknown place type: {self._type!r}")
        if self._type == 'cuda' and self._index is None:
            self._index = 0

    @property
    def type(self) -> str:
        return self._type

    @property
    def index(self) -> int | None:
        return self._index

    def is_cpu(self) -> bool:
        return self._type == 'cpu'

    def __eq__(self, other) -> bool:
        if isinstance(other, str):
            other = Place(other)
        if not isinstance(other, Place):
            return NotImplemented
        return self._type == other._type and self._index == other._index

    def __hash__(self) -> int:
        return hash((self._type, self._index))

    def __repr__(self) -> str:
        if self._index is not None:
            return f"Place(type='{self._type}', index={self._index})"
        return f"Place(type='{self._type}')"

    def __str__(self) -> str:
        if self._index is not None:
            return f"{self._type}:{self._index}"
        return self._type


CPU = Place('cpu')


class DeviceContext:
    """Execution context bound to one place.

    Host buffers back every place, so copies complete before they return
    and :meth:`wait` has nothing to drain.
    """

    __slots__ = ('_place',)

    def __init__(self, place: Place | str | None = None):
        self._place = Place(place) if place is not None else CPU

    @property
    def place(self) -> Place:
        return self._place

    def wait(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"DeviceContext({self._place})"


_contexts: dict[Place, DeviceContext] = {}


def get_device_context(place: Place | str | None = None) -> DeviceContext:
    """Return the shared context for *place* (cpu by default)."""
    key = Place(place) if place is not None else CPU
    ctx = _contexts.get(key)
    if ctx is None:
        ctx = _contexts[key] = DeviceContext(key)
    return ctx
