# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""NumPy kernels for the basic operators and their gradient op makers.

``sum`` and ``fill_constant`` double as the elementwise-sum and
constant-fill building blocks the recurrent operators reuse for gradient
merging and accumulator zeroing.
"""
from __future__ import annotations

import numpy as np

from ..device import DeviceContext
from ..dtype import Dtype
from ..errors import ShapeMismatchError, enforce
from ..framework import EMPTY_VAR_NAME, GRAD_SUFFIX, OpDesc, grad_var_name
from ..scope import Scope
from .registry import KernelOp, register_op

_OUT_G = 'Out' + GRAD_SUFFIX
_X_G = 'X' + GRAD_SUFFIX
_Y_G = 'Y' + GRAD_SUFFIX


def _grad_names(names: list[str], no_grad_set: set) -> list[str]:
    return [EMPTY_VAR_NAME if n in no_grad_set else grad_var_name(n) for n in names]


def _all_empty(names: list[str]) -> bool:
    return all(n == EMPTY_VAR_NAME for n in names)


def _reduce_to_shape(grad: np.ndarray, shape: tuple) -> np.ndarray:
    """Sum a broadcast gradient back down to an operand's shape."""
    shape = tuple(shape)
    if grad.shape == shape:
        return grad
    extra = grad.ndim - len(shape)
    if extra > 0:
        grad = grad.sum(axis=tuple(range(extra)))
    axes = tuple(i for i, d in enumerate(shape) if d == 1 and grad.shape[i] != 1)
    if axes:
        grad = grad.sum(axis=axes, keepdims=True)
    return grad.reshape(shape)


# ──────────────────────── Grad makers ─────────────────────────────────

def _unary_grad_maker(grad_type: str, keep: tuple[str, ...] = ('X',),
                      attrs: tuple[str, ...] = ()):
    def maker(op: OpDesc, no_grad_set: set, sub_block=None) -> list[OpDesc]:
        x_g = _grad_names(op.input('X'), no_grad_set)
        if _all_empty(x_g):
            return []
        inputs = {slot: op.input(slot) if slot != 'Out' else op.output('Out')
                  for slot in keep}
        inputs[_OUT_G] = [grad_var_name(n) for n in op.output('Out')]
        return [OpDesc(grad_type, inputs, {_X_G: x_g},
                       {k: op.attrs[k] for k in attrs if k in op.attrs})]
    return maker


def _binary_grad_maker(grad_type: str):
    def maker(op: OpDesc, no_grad_set: set, sub_block=None) -> list[OpDesc]:
        x_g = _grad_names(op.input('X'), no_grad_set)
        y_g = _grad_names(op.input('Y'), no_grad_set)
        if _all_empty(x_g) and _all_empty(y_g):
            return []
        return [OpDesc(grad_type,
                       {'X': op.input('X'), 'Y': op.input('Y'),
                        _OUT_G: [grad_var_name(n) for n in op.output('Out')]},
                       {_X_G: x_g, _Y_G: y_g})]
    return maker


def _sum_grad_maker(op: OpDesc, no_grad_set: set, sub_block=None) -> list[OpDesc]:
    out_g = grad_var_name(op.output('Out')[0])
    return [OpDesc('assign', {'X': [out_g]}, {'Out': [g]})
            for g in _grad_names(op.input('X'), no_grad_set)
            if g != EMPTY_VAR_NAME]


def _assign_grad_maker(op: OpDesc, no_grad_set: set, sub_block=None) -> list[OpDesc]:
    x_g = _grad_names(op.input('X'), no_grad_set)
    if _all_empty(x_g):
        return []
    return [OpDesc('assign', {'X': [grad_var_name(op.output('Out')[0])]},
                   {'Out': x_g})]


def _scale_grad_maker(op: OpDesc, no_grad_set: set, sub_block=None) -> list[OpDesc]:
    x_g = _grad_names(op.input('X'), no_grad_set)
    if _all_empty(x_g):
        return []
    return [OpDesc('scale', {'X': [grad_var_name(op.output('Out')[0])]},
                   {'Out': x_g},
                   {'scale': op.attr('scale', 1.0), 'bias': 0.0})]


# ──────────────────────── Fill / copy ─────────────────────────────────

@register_op('fill_constant')
class FillConstantOp(KernelOp):
    """Out = full(shape, value) with the requested dtype."""

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        dtype = Dtype.from_any(self.attr('dtype', 'float32'))
        shape = tuple(int(d) for d in self.attr('shape'))
        value = np.full(shape, self.attr('value', 0.0), dtype=dtype.to_numpy())
        self.set_out(scope, dev_ctx, 'Out', value)


@register_op('fill_zeros_like')
class FillZerosLikeOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        self.set_out(scope, dev_ctx, 'Out', np.zeros_like(self.in_array(scope, 'X')))


@register_op('assign', grad_maker=_assign_grad_maker)
class AssignOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        self.set_out(scope, dev_ctx, 'Out', self.in_array(scope, 'X').copy())


@register_op('scale', grad_maker=_scale_grad_maker)
class ScaleOp(KernelOp):
    """Out = X * scale + bias"""

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        x = self.in_array(scope, 'X')
        out = x * np.asarray(self.attr('scale', 1.0), dtype=x.dtype)
        bias = self.attr('bias', 0.0)
        if bias:
            out = out + np.asarray(bias, dtype=x.dtype)
        self.set_out(scope, dev_ctx, 'Out', out)


@register_op('sum', grad_maker=_sum_grad_maker)
class SumOp(KernelOp):
    """Elementwise sum of every tensor in ``X``.

    The result is materialised before it is written, so ``Out`` may be one
    of the inputs (in-place accumulation into a shared buffer).
    """

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        arrays = self.in_arrays(scope, 'X')
        enforce(len(arrays) > 0, "sum op needs at least one input")
        result = np.array(arrays[0], copy=True)
        for name, arr in zip(self.inputs('X')[1:], arrays[1:]):
            if arr.shape != result.shape:
                raise ShapeMismatchError(
                    f"sum op: input '{name}' has shape {arr.shape}, "
                    f"expected {result.shape}")
            result += arr
        self.set_out(scope, dev_ctx, 'Out', result)


# ──────────────────────── Elementwise ─────────────────────────────────

@register_op('elementwise_add', grad_maker=_binary_grad_maker('elementwise_add_grad'))
class ElementwiseAddOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        self.set_out(scope, dev_ctx, 'Out',
                     self.in_array(scope, 'X') + self.in_array(scope, 'Y'))


@register_op('elementwise_sub', grad_maker=_binary_grad_maker('elementwise_sub_grad'))
class ElementwiseSubOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        self.set_out(scope, dev_ctx, 'Out',
                     self.in_array(scope, 'X') - self.in_array(scope, 'Y'))


@register_op('elementwise_mul', grad_maker=_binary_grad_maker('elementwise_mul_grad'))
class ElementwiseMulOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        self.set_out(scope, dev_ctx, 'Out',
                     self.in_array(scope, 'X') * self.in_array(scope, 'Y'))


class _BinaryGradOp(KernelOp):

    def grads(self, x, y, dout):
        raise NotImplementedError

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        x = self.in_array(scope, 'X')
        y = self.in_array(scope, 'Y')
        dout = self.in_array(scope, _OUT_G)
        dx, dy = self.grads(x, y, dout)
        if self.wants_output(_X_G):
            self.set_out(scope, dev_ctx, _X_G, _reduce_to_shape(dx, x.shape))
        if self.wants_output(_Y_G):
            self.set_out(scope, dev_ctx, _Y_G, _reduce_to_shape(dy, y.shape))


@register_op('elementwise_add_grad')
class ElementwiseAddGradOp(_BinaryGradOp):

    def grads(self, x, y, dout):
        return dout, dout


@register_op('elementwise_sub_grad')
class ElementwiseSubGradOp(_BinaryGradOp):

    def grads(self, x, y, dout):
        return dout, -dout


@register_op('elementwise_mul_grad')
class ElementwiseMulGradOp(_BinaryGradOp):

    def grads(self, x, y, dout):
        return dout * y, dout * x


# ──────────────────────── Matrix product ──────────────────────────────

@register_op('mul', grad_maker=_binary_grad_maker('mul_grad'))
class MulOp(KernelOp):
    """Out = X @ Y with X flattened to 2-D over all but its last axis."""

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        x = self.in_array(scope, 'X')
        y = self.in_array(scope, 'Y')
        enforce(y.ndim == 2, "mul op: Y must be 2-D, got shape %s", y.shape)
        if x.shape[-1] != y.shape[0]:
            raise ShapeMismatchError(
                f"mul op: cannot multiply {x.shape} by {y.shape}")
        out = x.reshape(-1, x.shape[-1]) @ y
        self.set_out(scope, dev_ctx, 'Out', out.reshape(x.shape[:-1] + (y.shape[1],)))


@register_op('mul_grad')
class MulGradOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        x = self.in_array(scope, 'X')
        y = self.in_array(scope, 'Y')
        dout = self.in_array(scope, _OUT_G).reshape(-1, y.shape[1])
        if self.wants_output(_X_G):
            self.set_out(scope, dev_ctx, _X_G, (dout @ y.T).reshape(x.shape))
        if self.wants_output(_Y_G):
            self.set_out(scope, dev_ctx, _Y_G, x.reshape(-1, x.shape[-1]).T @ dout)


# ──────────────────────── Activations ─────────────────────────────────

@register_op('tanh', grad_maker=_unary_grad_maker('tanh_grad', keep=('Out',)))
class TanhOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        self.set_out(scope, dev_ctx, 'Out', np.tanh(self.in_array(scope, 'X')))


@register_op('tanh_grad')
class TanhGradOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        out = self.in_array(scope, 'Out')
        dout = self.in_array(scope, _OUT_G)
        self.set_out(scope, dev_ctx, _X_G, dout * (1.0 - out * out))


@register_op('sigmoid', grad_maker=_unary_grad_maker('sigmoid_grad', keep=('Out',)))
class SigmoidOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        x = self.in_array(scope, 'X')
        self.set_out(scope, dev_ctx, 'Out', 1.0 / (1.0 + np.exp(-x)))


@register_op('sigmoid_grad')
class SigmoidGradOp(KernelOp):

    def compute(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        out = self.in_array(scope, 'Out')
        dout = self.in_array(scope, _OUT_G)
        self.set_out(scope, dev_ctx, _X_G, dout * out * (1.0 - out))
