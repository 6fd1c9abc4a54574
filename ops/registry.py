# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Operator base classes and the type → operator registry."""
from __future__ import annotations

import numpy as np
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from ..device import DeviceContext
from ..errors import EnforceNotMet, enforce
from ..framework import EMPTY_VAR_NAME, Block, OpDesc
from ..scope import Scope
from ..tensor import Tensor

_MISSING = object()


class OperatorBase:
    """An executable operator: type, named input/output slots, attributes."""

    def __init__(self, type: str,
                 inputs: dict[str, Sequence[str]] | None = None,
                 outputs: dict[str, Sequence[str]] | None = None,
                 attrs: dict[str, Any] | None = None):
        self.type = type
        self._inputs = {k: list(v) for k, v in (inputs or {}).items()}
        self._outputs = {k: list(v) for k, v in (outputs or {}).items()}
        self._attrs = dict(attrs or {})

    # ---- Slots ----

    def input(self, slot: str) -> str:
        names = self.inputs(slot)
        enforce(len(names) == 1, "op %s: input slot '%s' holds %d names, expected 1",
                self.type, slot, len(names))
        return names[0]

    def inputs(self, slot: str) -> list[str]:
        return list(self._inputs.get(slot, []))

    def output(self, slot: str) -> str:
        names = self.outputs(slot)
        enforce(len(names) == 1, "op %s: output slot '%s' holds %d names, expected 1",
                self.type, slot, len(names))
        return names[0]

    def outputs(self, slot: str) -> list[str]:
        return list(self._outputs.get(slot, []))

    def has_input(self, slot: str) -> bool:
        return bool(self._inputs.get(slot))

    def output_arg_names(self) -> list[str]:
        return [n for names in self._outputs.values() for n in names
                if n != EMPTY_VAR_NAME]

    def attr(self, name: str, default: Any = _MISSING) -> Any:
        if name in self._attrs:
            return self._attrs[name]
        if default is _MISSING:
            raise EnforceNotMet(f"op {self.type}: missing attribute '{name}'")
        return default

    def run(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        ins = ', '.join(f"{k}={v}" for k, v in self._inputs.items())
        outs = ', '.join(f"{k}={v}" for k, v in self._outputs.items())
        return f"Op({self.type}: {{{outs}}} <- ({ins}))"


class KernelOp(OperatorBase):
    """Operator computed with NumPy on host buffers.

    Subclasses implement :meth:`compute`.  Outputs are written through
    :meth:`Tensor.mutable_data`, so an output aliasing an existing buffer
    of the right size is updated in place.
    """

    def run(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        self.compute(scope, dev_ctx)

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        raise NotImplementedError

    # ---- Helpers ----

    def in_tensor(self, scope: Scope, name: str) -> Tensor:
        var = scope.find_var(name)
        if var is None:
            raise EnforceNotMet(f"op {self.type}: input variable '{name}' not found")
        tensor = var.get(Tensor)
        enforce(tensor.is_initialized(),
                "op %s: input variable '%s' is not initialized", self.type, name)
        return tensor

    def in_array(self, scope: Scope, slot: str) -> np.ndarray:
        return self.in_tensor(scope, self.input(slot)).data()

    def in_arrays(self, scope: Scope, slot: str) -> list[np.ndarray]:
        return [self.in_tensor(scope, n).data() for n in self.inputs(slot)]

    def out_tensor(self, scope: Scope, name: str) -> Tensor:
        var = scope.find_var(name)
        if var is None:
            var = scope.var(name)
        return var.get_mutable(Tensor)

    def set_output(self, scope: Scope, dev_ctx: DeviceContext, name: str,
                   value: np.ndarray) -> None:
        if name == EMPTY_VAR_NAME:
            return
        value = np.asarray(value)
        tensor = self.out_tensor(scope, name)
        tensor.resize(value.shape)
        buf = tensor.mutable_data(dev_ctx.place, value.dtype)
        np.copyto(buf, value)

    def set_out(self, scope: Scope, dev_ctx: DeviceContext, slot: str,
                value: np.ndarray) -> None:
        names = self.outputs(slot)
        if names:
            self.set_output(scope, dev_ctx, names[0], value)

    def wants_output(self, slot: str) -> bool:
        names = self.outputs(slot)
        return bool(names) and names[0] != EMPTY_VAR_NAME


# ──────────────────────── Registry ────────────────────────────────────

GradMaker = Callable[[OpDesc, set, 'Block | None'], list[OpDesc]]


@dataclass
class OpInfo:
    type: str
    creator: type
    grad_maker: GradMaker | None = None
    # forward names whose gradients a differentiated sub-block receives
    sub_block_targets: Callable[[OpDesc], list[str]] | None = None


_OP_INFO: dict[str, OpInfo] = {}


def register_op(type: str, grad_maker: GradMaker | None = None,
                sub_block_targets: Callable[[OpDesc], list[str]] | None = None):
    """Class decorator registering an operator under *type*."""
    def deco(cls):
        enforce(type not in _OP_INFO, "op type '%s' registered twice", type)
        _OP_INFO[type] = OpInfo(type, cls, grad_maker, sub_block_targets)
        return cls
    return deco


class OpRegistry:
    """Creates operators by type name."""

    @staticmethod
    def has_op(type: str) -> bool:
        return type in _OP_INFO

    @staticmethod
    def info(type: str) -> OpInfo:
        info = _OP_INFO.get(type)
        if info is None:
            raise EnforceNotMet(f"operator '{type}' is not registered")
        return info

    @staticmethod
    def create_op(type: str,
                  inputs: dict[str, Sequence[str]] | None = None,
                  outputs: dict[str, Sequence[str]] | None = None,
                  attrs: dict[str, Any] | None = None) -> OperatorBase:
        info = OpRegistry.info(type)
        return info.creator(type, inputs, outputs, attrs)

    @staticmethod
    def create_op_from_desc(desc: OpDesc) -> OperatorBase:
        return OpRegistry.create_op(desc.type, desc.inputs, desc.outputs, desc.attrs)

    @staticmethod
    def grad_maker(type: str) -> GradMaker | None:
        return OpRegistry.info(type).grad_maker

    @staticmethod
    def registered_types() -> list[str]:
        return sorted(_OP_INFO)
