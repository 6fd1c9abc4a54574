# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Static program description: variables, operators, blocks, programs.

A :class:`Program` is a list of :class:`Block` objects.  Block 0 is the
global block; every other block names a parent block and is used as the
body of a control-flow operator (the recurrent op's ``step_block``).
Nothing in here executes anything; see :mod:`steprnn.executor`.
"""
from __future__ import annotations

import copy
import enum
from collections import OrderedDict
from typing import Any, Sequence

from .dtype import Dtype
from .errors import EnforceNotMet, enforce

GRAD_SUFFIX = '@GRAD'
EMPTY_VAR_NAME = '@EMPTY@'
RENAME_SUFFIX = '@RENAME@'
MERGED_SUFFIX = '@MERGED'


def grad_var_name(name: str) -> str:
    return name + GRAD_SUFFIX


def strip_grad_suffix(name: str) -> str:
    pos = name.find(GRAD_SUFFIX)
    return name[:pos] if pos != -1 else name


class VarType(enum.Enum):
    LOD_TENSOR = 'lod_tensor'
    STEP_SCOPES = 'step_scopes'


class VarDesc:
    """Compile-time description of a variable."""

    __slots__ = ('name', 'type', 'shape', 'dtype', 'persistable')

    def __init__(self, name: str, type: VarType = VarType.LOD_TENSOR,
                 shape: Sequence[int] | None = None,
                 dtype: Dtype | str | None = None,
                 persistable: bool = False):
        self.name = name
        self.type = type
        self.shape = tuple(shape) if shape is not None else None
        self.dtype = Dtype.from_any(dtype) if dtype is not None else Dtype.float32
        self.persistable = persistable

    def __repr__(self) -> str:
        return (f"VarDesc({self.name!r}, {self.type.name}, shape={self.shape}, "
                f"persistable={self.persistable})")


class OpDesc:
    """Compile-time description of one operator invocation."""

    __slots__ = ('type', 'inputs', 'outputs', 'attrs')

    def __init__(self, type: str,
                 inputs: dict[str, Sequence[str]] | None = None,
                 outputs: dict[str, Sequence[str]] | None = None,
                 attrs: dict[str, Any] | None = None):
        self.type = type
        self.inputs: dict[str, list[str]] = {
            k: list(v) for k, v in (inputs or {}).items()}
        self.outputs: dict[str, list[str]] = {
            k: list(v) for k, v in (outputs or {}).items()}
        self.attrs: dict[str, Any] = dict(attrs or {})

    # ---- Slot access ----

    def input(self, slot: str) -> list[str]:
        return self.inputs.get(slot, [])

    def output(self, slot: str) -> list[str]:
        return self.outputs.get(slot, [])

    def set_input(self, slot: str, names: Sequence[str]) -> None:
        self.inputs[slot] = list(names)

    def set_output(self, slot: str, names: Sequence[str]) -> None:
        self.outputs[slot] = list(names)

    def input_arg_names(self) -> list[str]:
        return [n for names in self.inputs.values() for n in names]

    def output_arg_names(self) -> list[str]:
        return [n for names in self.outputs.values() for n in names]

    def attr(self, name: str, default: Any = None) -> Any:
        return self.attrs.get(name, default)

    def has_attr(self, name: str) -> bool:
        return name in self.attrs

    def set_attr(self, name: str, value: Any) -> None:
        self.attrs[name] = value

    def sub_block(self) -> 'Block | None':
        """The block carried in an attribute, if any (control-flow ops)."""
        for value in self.attrs.values():
            if isinstance(value, Block):
                return value
        return None

    # ---- Renaming ----

    def rename_input(self, old: str, new: str) -> None:
        for names in self.inputs.values():
            for i, n in enumerate(names):
                if n == old:
                    names[i] = new

    def rename_output(self, old: str, new: str) -> None:
        for names in self.outputs.values():
            for i, n in enumerate(names):
                if n == old:
                    names[i] = new

    def copy(self) -> 'OpDesc':
        return OpDesc(self.type, self.inputs, self.outputs, copy.copy(self.attrs))

    def __repr__(self) -> str:
        ins = ', '.join(f"{k}={v}" for k, v in self.inputs.items())
        outs = ', '.join(f"{k}={v}" for k, v in self.outputs.items())
        return f"{{{outs}}} = {self.type}({ins})"


class Block:
    """Ordered list of ops plus the variables they declare."""

    def __init__(self, program: 'Program', idx: int, parent_idx: int = -1):
        self.program = program
        self.idx = idx
        self.parent_idx = parent_idx
        self.vars: OrderedDict[str, VarDesc] = OrderedDict()
        self.ops: list[OpDesc] = []

    @property
    def parent_block(self) -> 'Block | None':
        if self.parent_idx < 0:
            return None
        return self.program.block(self.parent_idx)

    # ---- Variables ----

    def create_var(self, name: str, **kwargs) -> VarDesc:
        """Declare *name* in this block (returns the existing desc if declared)."""
        desc = self.vars.get(name)
        if desc is None:
            desc = self.vars[name] = VarDesc(name, **kwargs)
        else:
            if kwargs.get('shape') is not None:
                desc.shape = tuple(kwargs['shape'])
            if kwargs.get('dtype') is not None:
                desc.dtype = Dtype.from_any(kwargs['dtype'])
            if kwargs.get('persistable'):
                desc.persistable = True
        return desc

    def has_var(self, name: str) -> bool:
        return name in self.vars

    def var(self, name: str) -> VarDesc:
        desc = self.vars.get(name)
        if desc is None:
            raise EnforceNotMet(f"variable '{name}' is not declared in block {self.idx}")
        return desc

    def find_var_recursive(self, name: str) -> VarDesc | None:
        block: Block | None = self
        while block is not None:
            if name in block.vars:
                return block.vars[name]
            block = block.parent_block
        return None

    def all_vars(self) -> list[VarDesc]:
        return list(self.vars.values())

    # ---- Operators ----

    def append_op(self, type: str,
                  inputs: dict[str, Sequence[str]] | None = None,
                  outputs: dict[str, Sequence[str]] | None = None,
                  attrs: dict[str, Any] | None = None) -> OpDesc:
        op = OpDesc(type, inputs, outputs, attrs)
        self._declare_outputs(op)
        self.ops.append(op)
        return op

    def insert_op(self, index: int, op: OpDesc) -> OpDesc:
        self._declare_outputs(op)
        self.ops.insert(index, op)
        return op

    def _declare_outputs(self, op: OpDesc) -> None:
        for name in op.output_arg_names():
            if name != EMPTY_VAR_NAME and name not in self.vars:
                self.vars[name] = VarDesc(name)

    def __repr__(self) -> str:
        lines = [f"block {self.idx} (parent {self.parent_idx}):"]
        lines += [f"  {op!r}" for op in self.ops]
        return '\n'.join(lines)


class Program:
    """A collection of blocks; block 0 is the entry block."""

    def __init__(self):
        self.blocks: list[Block] = [Block(self, 0)]

    def global_block(self) -> Block:
        return self.blocks[0]

    def block(self, idx: int) -> Block:
        enforce(0 <= idx < len(self.blocks),
                "block index %d out of range (%d blocks)", idx, len(self.blocks))
        return self.blocks[idx]

    def create_block(self, parent_idx: int | None = None) -> Block:
        parent = 0 if parent_idx is None else parent_idx
        self.block(parent)
        blk = Block(self, len(self.blocks), parent)
        self.blocks.append(blk)
        return blk

    @property
    def num_blocks(self) -> int:
        return len(self.blocks)

    def __repr__(self) -> str:
        return '\n'.join(repr(b) for b in self.blocks)

