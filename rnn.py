# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""StaticRNN — builds a ``recurrent`` op and its step block.

Example::

    rnn = StaticRNN(program)
    with rnn.step():
        x_t = rnn.step_input('x')
        h_pre = rnn.memory('h0')
        rnn.block.append_op('elementwise_add', {'X': [h_pre], 'Y': [x_t]},
                            {'Out': ['h']})
        rnn.update_memory(h_pre, 'h')
        rnn.step_output('h')
    h_seq, = rnn.output()
"""
from __future__ import annotations

import itertools

from .errors import EnforceNotMet, enforce
from .framework import Block, OpDesc, Program, VarType

_rnn_ids = itertools.count()

_BEFORE, _IN_STEP, _DONE = 'before', 'in_step', 'done'


class _Memory:
    __slots__ = ('boot', 'pre', 'var')

    def __init__(self, boot: str, pre: str):
        self.boot = boot
        self.pre = pre
        self.var: str | None = None


class _StepGuard:
    """Context manager entered by :meth:`StaticRNN.step`."""

    def __init__(self, rnn: 'StaticRNN'):
        self._rnn = rnn

    def __enter__(self) -> Block:
        return self._rnn._enter()

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self._rnn._complete()
        return False


class StaticRNN:
    """Declarative builder for a recurrence over the leading axis."""

    def __init__(self, program: Program, is_train: bool = True, reverse: bool = False,
                 parent_block: Block | None = None, name: str | None = None):
        self.program = program
        self.parent_block = parent_block or program.global_block()
        self.is_train = is_train
        self.reverse = reverse
        self.name = name or f"rnn_{next(_rnn_ids)}"
        self.block: Block | None = None
        self.op: OpDesc | None = None
        self._status = _BEFORE
        self._inlinks: list[tuple[str, str]] = []
        self._outlinks: list[tuple[str, str]] = []
        self._memories: list[_Memory] = []

    # ---- Building ----

    def step(self) -> _StepGuard:
        return _StepGuard(self)

    def _enter(self) -> Block:
        enforce(self._status == _BEFORE, "StaticRNN %s: step() can only be entered once",
                self.name)
        self.block = self.program.create_block(self.parent_block.idx)
        self._status = _IN_STEP
        return self.block

    def _assert_in_step(self, what: str) -> None:
        enforce(self._status == _IN_STEP,
                "StaticRNN %s: %s must be called inside step()", self.name, what)

    def _outer(self, name: str):
        desc = self.parent_block.find_var_recursive(name)
        if desc is None:
            raise EnforceNotMet(
                f"StaticRNN {self.name}: '{name}' is not declared in the enclosing block")
        return desc

    def step_input(self, x: str, name: str | None = None) -> str:
        """Bind sequence *x*; returns the step-block name of one slice."""
        self._assert_in_step('step_input')
        outer = self._outer(x)
        inner = name or f"{x}@{self.name}.t"
        shape = outer.shape[1:] if outer.shape else None
        self.block.create_var(inner, shape=shape, dtype=outer.dtype)
        self._inlinks.append((inner, x))
        return inner

    def memory(self, init: str, name: str | None = None) -> str:
        """Declare a state booted from *init*; returns the previous-state name."""
        self._assert_in_step('memory')
        outer = self._outer(init)
        pre = name or f"{init}@{self.name}.pre"
        self.block.create_var(pre, shape=outer.shape, dtype=outer.dtype)
        self._memories.append(_Memory(init, pre))
        return pre

    def update_memory(self, mem: str, var: str) -> None:
        """Make *var* (computed in the step block) the next value of *mem*."""
        self._assert_in_step('update_memory')
        for m in self._memories:
            if m.pre == mem:
                m.var = var
                return
        raise EnforceNotMet(f"StaticRNN {self.name}: '{mem}' is not a memory")

    def step_output(self, var: str, name: str | None = None) -> str:
        """Collect *var* over all steps; returns the aggregate's name."""
        self._assert_in_step('step_output')
        enforce(self.block.has_var(var),
                "StaticRNN %s: step output '%s' is not declared in the step block",
                self.name, var)
        outer = name or f"{var}@{self.name}.seq"
        self._outlinks.append((var, outer))
        return outer

    def output(self, *vars: str) -> list[str]:
        """Aggregate names of the given step outputs (all of them by default)."""
        enforce(self._status == _DONE, "StaticRNN %s: output() is available after step()",
                self.name)
        if not vars:
            return [outer for _, outer in self._outlinks]
        mapping = dict(self._outlinks)
        missing = [v for v in vars if v not in mapping]
        if missing:
            raise EnforceNotMet(f"StaticRNN {self.name}: {missing} are not step outputs")
        return [mapping[v] for v in vars]

    @property
    def step_scopes_name(self) -> str:
        return f"{self.name}@step_scopes"

    # ---- Completion ----

    def _parameters(self) -> list[str]:
        """Names read in the step block and declared only in an enclosing block."""
        params = []
        for op in self.block.ops:
            for n in op.input_arg_names():
                if self.block.has_var(n) or n in params:
                    continue
                if self.parent_block.find_var_recursive(n) is not None:
                    params.append(n)
        return params

    def _complete(self) -> None:
        for m in self._memories:
            enforce(m.var is not None,
                    "StaticRNN %s: memory '%s' is never updated", self.name, m.pre)
            enforce(self.block.has_var(m.var),
                    "StaticRNN %s: state '%s' is not declared in the step block",
                    self.name, m.var)
        enforce(len(self._inlinks) > 0, "StaticRNN %s needs at least one step_input",
                self.name)

        seq_shape = self._outer(self._inlinks[0][1]).shape
        seq_len = seq_shape[0] if seq_shape else None
        for inner, outer in self._outlinks:
            desc = self.block.var(inner)
            shape = None
            if seq_len is not None and desc.shape is not None:
                shape = (seq_len,) + tuple(desc.shape)
            self.parent_block.create_var(outer, shape=shape, dtype=desc.dtype)

        self.parent_block.create_var(self.step_scopes_name, type=VarType.STEP_SCOPES)
        self.op = self.parent_block.append_op(
            'recurrent',
            inputs={
                'inputs': [outer for _, outer in self._inlinks],
                'initial_states': [m.boot for m in self._memories],
                'parameters': self._parameters(),
            },
            outputs={
                'outputs': [outer for _, outer in self._outlinks],
                'step_scopes': [self.step_scopes_name],
            },
            attrs={
                'ex_states': [m.pre for m in self._memories],
                'states': [m.var for m in self._memories],
                'step_block': self.block,
                'reverse': self.reverse,
                'is_train': self.is_train,
                'inlink_alias': [inner for inner, _ in self._inlinks],
                'outlink_alias': [inner for inner, _ in self._outlinks],
            })
        self._status = _DONE
