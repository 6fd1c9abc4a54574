# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""steprnn.flags — runtime configuration.

Two knobs are exposed:

``check_nan_inf``
    After every operator the executor scans the operator's outputs and
    raises :class:`~steprnn.errors.EnforceNotMet` on the first NaN/Inf.
``eager_zero_param_grads``
    The recurrent gradient operator zero-fills every parameter gradient
    accumulator before the first step instead of on the first step that
    produces a local gradient.  With the default (``False``) accumulators
    of parameters the step block never touches keep their previous
    contents.

Initial values come from ``STEPRNN_CHECK_NAN_INF`` and
``STEPRNN_EAGER_ZERO_PARAM_GRADS`` (``1``/``true``/``yes``/``on``).
"""
from __future__ import annotations

import os
from typing import Iterable

_TRUTHY = ('1', 'true', 'yes', 'on')


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


class _Config:
    """Module-level configuration singleton."""
    __slots__ = ('_check_nan_inf', '_eager_zero_param_grads')

    def __init__(self):
        self._check_nan_inf = _env_flag('STEPRNN_CHECK_NAN_INF')
        self._eager_zero_param_grads = _env_flag(
            'STEPRNN_EAGER_ZERO_PARAM_GRADS')

    # ── check_nan_inf ──
    @property
    def check_nan_inf(self) -> bool:
        return self._check_nan_inf

    @check_nan_inf.setter
    def check_nan_inf(self, value: bool):
        self._check_nan_inf = bool(value)

    # ── eager_zero_param_grads ──
    @property
    def eager_zero_param_grads(self) -> bool:
        return self._eager_zero_param_grads

    @eager_zero_param_grads.setter
    def eager_zero_param_grads(self, value: bool):
        self._eager_zero_param_grads = bool(value)

    def names(self) -> tuple[str, ...]:
        return tuple(s.lstrip('_') for s in self.__slots__)


config = _Config()


def get_flags(names: str | Iterable[str] | None = None) -> dict[str, bool]:
    """Return the current value of the requested flags (all by default)."""
    if names is None:
        names = config.names()
    elif isinstance(names, str):
        names = [names]
    result = {}
    for name in names:
        if name not in config.names():
            raise ValueError(f"Unknown flag: {name!r}")
        result[name] = getattr(config, name)
    return result


def set_flags(flags: dict[str, bool]) -> None:
    """Update several flags at once, e.g. ``set_flags({'check_nan_inf': True})``."""
    for name, value in flags.items():
        if name not in config.names():
            raise ValueError(f"Unknown flag: {name!r}")
        setattr(config, name, value)


__all__ = ['config', 'get_flags', 'set_flags']
