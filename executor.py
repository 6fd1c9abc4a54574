# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Runs one block of a :class:`~steprnn.framework.Program` against a scope."""
from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np

from .device import CPU, Place, get_device_context
from .errors import EnforceNotMet
from .flags import config
from .framework import Program, VarDesc, VarType
from .ops.registry import OperatorBase, OpRegistry
from .scope import Scope, global_scope
from .tensor import Tensor
from .tensor_util import contains_inf, contains_nan, tensor_to_array

logger = logging.getLogger(__name__)


def _create_var(scope: Scope, desc: VarDesc) -> None:
    var = scope.var(desc.name)
    if desc.type is VarType.STEP_SCOPES:
        var.get_mutable(list)
    else:
        var.get_mutable(Tensor)


def _check_outputs(op: OperatorBase, scope: Scope) -> None:
    for name in op.output_arg_names():
        var = scope.find_var(name)
        if var is None or not var.is_type(Tensor):
            continue
        tensor = var.get(Tensor)
        if not tensor.is_initialized():
            continue
        if contains_nan(tensor):
            raise EnforceNotMet(f"op {op.type}: output '{name}' contains NaN")
        if contains_inf(tensor):
            raise EnforceNotMet(f"op {op.type}: output '{name}' contains Inf")


class Executor:
    """Synchronous, in-order block interpreter.

    Example::

        exe = Executor()
        out, = exe.run(program, scope, feed={'x': x}, fetch_list=['y'])
    """

    def __init__(self, place: Place | str | None = None):
        self.place = Place(place) if place is not None else CPU
        self._dev_ctx = get_device_context(self.place)

    def run(self, program: Program, scope: Scope | None = None, block_id: int = 0,
            create_local_scope: bool = True,
            feed: dict[str, Any] | None = None,
            fetch_list: Sequence[str] | None = None) -> list[np.ndarray]:
        """Run block *block_id* of *program* in *scope*.

        With ``create_local_scope`` the block's non-persistable variables
        live in a throwaway child scope; otherwise every declared variable
        is found-or-created directly in *scope*.  Returns copies of the
        ``fetch_list`` variables.
        """
        if scope is None:
            scope = global_scope()
        block = program.block(block_id)
        run_scope = scope.new_scope() if create_local_scope else scope
        try:
            for desc in block.vars.values():
                if create_local_scope and desc.persistable:
                    _create_var(scope, desc)
                else:
                    _create_var(run_scope, desc)

            for name, value in (feed or {}).items():
                var = run_scope.find_var(name) or run_scope.var(name)
                tensor = var.get_mutable(Tensor)
                tensor.set(value.numpy() if isinstance(value, Tensor) else value,
                           self.place)

            for op_desc in block.ops:
                op = OpRegistry.create_op_from_desc(op_desc)
                logger.debug("block %d: run %r", block.idx, op_desc)
                op.run(run_scope, self._dev_ctx)
                if config.check_nan_inf:
                    _check_outputs(op, run_scope)

            results = []
            for name in fetch_list or ():
                var = run_scope.find_var(name)
                if var is None:
                    raise EnforceNotMet(f"fetch variable '{name}' not found")
                results.append(tensor_to_array(var.get(Tensor)))
            return results
        finally:
            if create_local_scope:
                scope.delete_scope(run_scope)
