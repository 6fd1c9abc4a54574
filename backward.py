# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Program differentiation.

:func:`append_backward` walks a block's operators in reverse and appends
the gradient operators produced by each operator's registered grad maker.
The caller feeds the gradients of the targets (``<target>@GRAD``).

Operators carrying a sub-block (``recurrent``) get a differentiated copy
of that block, built by the same walk with the gradients of the
operator's outputs and states as the fed gradients.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Sequence

from .framework import (EMPTY_VAR_NAME, GRAD_SUFFIX, MERGED_SUFFIX, RENAME_SUFFIX,
                        Block, OpDesc, Program, grad_var_name, strip_grad_suffix)
from .ops.registry import OpRegistry

logger = logging.getLogger(__name__)


def _is_grad_name(name: str) -> bool:
    return GRAD_SUFFIX in name and name != EMPTY_VAR_NAME


def _make_grad_ops(program: Program, block: Block, fed: set[str],
                   no_grad: set[str]) -> list[OpDesc]:
    """Gradient ops of *block* (unordered merges not yet resolved)."""
    available = set(fed)
    grad_ops: list[OpDesc] = []

    for op in reversed(block.ops):
        out_grads = [grad_var_name(n) for n in op.output_arg_names()
                     if n != EMPTY_VAR_NAME]
        if not any(g in available for g in out_grads):
            continue
        maker = OpRegistry.grad_maker(op.type)
        if maker is None:
            logger.debug("backward: %s has no gradient, skipped", op.type)
            continue

        grad_sub = None
        sub = op.sub_block()
        if sub is not None:
            info = OpRegistry.info(op.type)
            targets = info.sub_block_targets(op) if info.sub_block_targets else []
            grad_sub = program.create_block(parent_idx=sub.idx)
            sub_fed = {grad_var_name(t) for t in targets}
            for g in _finish(grad_sub, sub, _make_grad_ops(program, sub, sub_fed, no_grad),
                             sub_fed):
                grad_sub.ops.append(g)

        for desc in maker(op, no_grad, grad_sub):
            for name in desc.input_arg_names():
                if _is_grad_name(name) and name not in available:
                    # An output nobody consumed: its gradient is zero.
                    grad_ops.append(OpDesc('fill_zeros_like',
                                           {'X': [strip_grad_suffix(name)]},
                                           {'Out': [name]}))
                    available.add(name)
            grad_ops.append(desc)
            available.update(n for n in desc.output_arg_names() if n != EMPTY_VAR_NAME)

    return grad_ops


def _finish(target: Block, fwd: Block, grad_ops: list[OpDesc],
            fed: set[str]) -> list[OpDesc]:
    """Resolve multiply-written gradients and declare every gradient var."""
    # name -> every (op index, slot, position) writing it
    writers: dict[str, list[tuple[int, str, int]]] = defaultdict(list)
    for i, op in enumerate(grad_ops):
        for slot, names in op.outputs.items():
            for pos, name in enumerate(names):
                if name != EMPTY_VAR_NAME:
                    writers[name].append((i, slot, pos))

    inserts: dict[int, list[OpDesc]] = defaultdict(list)
    merged: dict[str, tuple[int, str]] = {}
    for name, sites in writers.items():
        if len(sites) < 2 and name not in fed:
            continue
        parts = [name] if name in fed else []
        for k, (i, slot, pos) in enumerate(sites):
            new = f"{name}{RENAME_SUFFIX}{k}"
            grad_ops[i].outputs[slot][pos] = new
            parts.append(new)
        last = sites[-1][0]
        out = name + MERGED_SUFFIX if name in fed else name
        inserts[last].append(OpDesc('sum', {'X': parts}, {'Out': [out]}))
        if out != name:
            merged[name] = (last, out)

    result: list[OpDesc] = []
    for i, op in enumerate(grad_ops):
        for name, (last, out) in merged.items():
            if i > last:
                op.rename_input(name, out)
        result.append(op)
        result.extend(inserts.get(i, ()))

    for op in result:
        for name in op.output_arg_names():
            if name == EMPTY_VAR_NAME or target.has_var(name):
                continue
            base = fwd.find_var_recursive(strip_grad_suffix(name))
            if base is None:
                target.create_var(name)
            else:
                target.create_var(name, shape=base.shape, dtype=base.dtype)
    return result


def append_backward(program: Program, targets: Iterable[str],
                    no_grad_set: Sequence[str] | None = None,
                    block_idx: int = 0) -> list[OpDesc]:
    """Append the gradient ops of block *block_idx* for *targets*.

    Args:
        program: program to extend in place.
        targets: forward variables whose gradients (``name@GRAD``) the
            caller feeds when running the block.
        no_grad_set: forward variables that get no gradient.
        block_idx: block to differentiate.

    Returns:
        The appended gradient op descs, in execution order.
    """
    block = program.block(block_idx)
    fed = {grad_var_name(t) for t in targets}
    no_grad = set(no_grad_set or ())
    grad_ops = _finish(block, block, _make_grad_ops(program, block, fed, no_grad), fed)
    for op in grad_ops:
        block.ops.append(op)
    logger.debug("backward: appended %d gradient ops to block %d",
                 len(grad_ops), block_idx)
    return grad_ops
