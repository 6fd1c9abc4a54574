# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Framework exceptions and ``enforce`` helpers.

Every invariant the runtime checks goes through :func:`enforce` (or one of
its shorthands) so that failures surface as :class:`EnforceNotMet` or one
of its subclasses.  Nothing here is retried: a failed check aborts the
current :meth:`Operator.run` call.
"""
from __future__ import annotations

from typing import Any, TypeVar

T = TypeVar('T')


class EnforceNotMet(RuntimeError):
    """A framework invariant does not hold."""


class PreconditionError(EnforceNotMet):
    """Raised before any work is done when the inputs of a run are malformed."""


class ShapeMismatchError(EnforceNotMet, ValueError):
    """Raised when tensor shapes or dtypes disagree mid-run."""


def _format(msg: str, args: tuple) -> str:
    return msg % args if args else msg


def enforce(cond: Any, msg: str = 'enforce failed', *args,
            exc: type[EnforceNotMet] = EnforceNotMet) -> None:
    if not cond:
        raise exc(_format(msg, args))


def enforce_eq(a: Any, b: Any, msg: str = '', *args,
               exc: type[EnforceNotMet] = EnforceNotMet) -> None:
    if a != b:
        detail = _format(msg, args)
        raise exc(f"expected {a!r} == {b!r}" + (f": {detail}" if detail else ''))


def enforce_not_none(value: T | None, msg: str = 'value is None', *args,
                     exc: type[EnforceNotMet] = EnforceNotMet) -> T:
    if value is None:
        raise exc(_format(msg, args))
    return value
