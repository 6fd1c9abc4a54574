# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""The ``recurrent`` and ``recurrent_grad`` operators.

The forward operator runs its ``step_block`` once per sequence position,
each time in a dedicated child scope (a *step scope*):

    input slice-in -> state link-in -> run step block -> copy outputs -> advance

Inputs are aliased into the step scope one leading-axis slice at a time;
recurrent state is threaded between positions by aliasing the adjacent
step scope's state tensor, never by copying.  Outputs are copied into an
aggregate with the sequence length prepended.

The gradient operator walks the same step scopes in the opposite order,
runs the differentiated step block, merges state gradients coming from
the next position with gradients supplied from outside, and accumulates
parameter gradients across positions.

Slots (forward)::

    inputs, initial_states, parameters -> outputs, step_scopes

Slots (gradient)::

    inputs, initial_states, parameters, outputs, step_scopes, outputs@GRAD
        -> inputs@GRAD, initial_states@GRAD, parameters@GRAD

Attributes: ``ex_states`` (previous-state names inside the step block),
``states`` (state names inside the step block), ``step_block``,
``reverse``, ``is_train``, and optionally ``inlink_alias`` /
``outlink_alias`` (step-block names of the inputs / outputs when they
differ from the outer names).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..device import DeviceContext
from ..errors import (EnforceNotMet, PreconditionError, ShapeMismatchError, enforce,
                      enforce_eq, enforce_not_none)
from ..executor import Executor
from ..flags import config
from ..framework import (EMPTY_VAR_NAME, GRAD_SUFFIX, Block, OpDesc,
                         grad_var_name)
from ..scope import Scope
from ..tensor import Tensor
from ..tensor_util import drop_leading_dim, prepend_dims
from .registry import OperatorBase, OpRegistry, register_op

logger = logging.getLogger(__name__)

INPUTS = 'inputs'
INITIAL_STATES = 'initial_states'
PARAMETERS = 'parameters'
OUTPUTS = 'outputs'
STEP_SCOPES = 'step_scopes'
EX_STATES = 'ex_states'
STATES = 'states'
STEP_BLOCK = 'step_block'
REVERSE = 'reverse'
IS_TRAIN = 'is_train'
INLINK_ALIAS = 'inlink_alias'
OUTLINK_ALIAS = 'outlink_alias'


# ──────────────────────── Arguments ───────────────────────────────────

@dataclass(frozen=True)
class Link:
    """Step-block name ``internal`` bound to the enclosing-scope name ``external``."""
    internal: str
    external: str


@dataclass(frozen=True)
class MemoryAttr:
    """One recurrent state: ``pre_var`` at step t reads ``var`` of step t-1.

    At the first position ``pre_var`` reads ``boot_var`` from the enclosing
    scope instead.
    """
    var: str
    pre_var: str
    boot_var: str


@dataclass(frozen=True)
class Argument:
    step_block: Block
    step_scopes: str
    inlinks: tuple[Link, ...]
    outlinks: tuple[Link, ...]
    memories: tuple[MemoryAttr, ...]
    parameters: tuple[str, ...]
    reverse: bool
    is_train: bool


def _links(externals: list[str], internals: list[str] | None, what: str) -> tuple[Link, ...]:
    if not internals:
        internals = externals
    enforce(len(internals) == len(externals),
            "recurrent op: %d %s but %d aliases", len(externals), what, len(internals),
            exc=PreconditionError)
    return tuple(Link(i, e) for i, e in zip(internals, externals))


def init_argument(op: OperatorBase, is_grad: bool = False) -> Argument:
    """Collect the slot names and attributes of a recurrent op into an :class:`Argument`."""
    # The gradient op receives the forward outputs and step scopes as inputs.
    fwd_outs = op.inputs if is_grad else op.outputs
    step_block = op.attr(STEP_BLOCK)
    enforce(isinstance(step_block, Block),
            "recurrent op: attribute '%s' must be a Block", STEP_BLOCK,
            exc=PreconditionError)
    step_scopes = fwd_outs(STEP_SCOPES)
    enforce_eq(len(step_scopes), 1,
               "recurrent op: expected one step-scopes variable, got %s", step_scopes,
               exc=PreconditionError)

    ex_states = list(op.attr(EX_STATES, []))
    states = list(op.attr(STATES, []))
    boots = op.inputs(INITIAL_STATES)
    enforce(len(ex_states) == len(states) == len(boots),
            "recurrent op: ex_states (%d), states (%d) and initial_states (%d) "
            "must have the same length", len(ex_states), len(states), len(boots),
            exc=PreconditionError)

    return Argument(
        step_block=step_block,
        step_scopes=step_scopes[0],
        inlinks=_links(op.inputs(INPUTS), op.attr(INLINK_ALIAS, None), 'inputs'),
        outlinks=_links(fwd_outs(OUTPUTS), op.attr(OUTLINK_ALIAS, None), 'outputs'),
        memories=tuple(MemoryAttr(v, p, b) for v, p, b in zip(states, ex_states, boots)),
        parameters=tuple(op.inputs(PARAMETERS)),
        reverse=bool(op.attr(REVERSE, False)),
        is_train=bool(op.attr(IS_TRAIN, True)),
    )


# ──────────────────────── Step scopes ─────────────────────────────────

class StepScopes:
    """Owns the per-position child scopes and walks a cursor over them.

    Forward: the list must be empty on entry and is filled with ``seq_len``
    fresh children of *parent* when training, or 2 (reused ping-pong)
    otherwise.  Backward: training only, on a list already filled by the
    forward pass.
    """

    def __init__(self, parent: Scope, scopes: list, is_train: bool,
                 seq_len: int, is_backward: bool = False):
        enforce(is_train or not is_backward,
                "cannot run backward when is_train is False; the forward pass "
                "only kept two ping-pong step scopes", exc=PreconditionError)
        self._scopes = scopes
        self._is_train = is_train
        self._is_backward = is_backward
        self._counter = seq_len - 1 if is_backward else 0
        if is_backward:
            enforce(len(scopes) == seq_len,
                    "backward needs %d step scopes from the forward pass, found %d",
                    seq_len, len(scopes), exc=PreconditionError)
        else:
            enforce(len(scopes) == 0,
                    "step-scope list must be empty before a forward run, found %d scopes",
                    len(scopes), exc=PreconditionError)
            num = seq_len if is_train else 2
            for _ in range(num):
                scopes.append(parent.new_scope())

    @property
    def counter(self) -> int:
        return self._counter

    def _get(self, i: int) -> Scope:
        if not self._is_train:
            i %= 2
        return self._scopes[i]

    def current_scope(self) -> Scope:
        return self._get(self._counter)

    def adjacent_scope(self) -> Scope:
        """The scope visited one position earlier in the walk direction."""
        if self._is_backward:
            return self._get(self._counter + 1)
        return self._get(self._counter - 1)

    def advance(self) -> None:
        self._counter += -1 if self._is_backward else 1


# ──────────────────────── Shared driver logic ─────────────────────────

def _tensor_of(scope: Scope, name: str, what: str) -> Tensor:
    var = scope.find_var(name)
    if var is None:
        raise PreconditionError(f"{what} variable '{name}' not found in scope")
    tensor = var.get_mutable(Tensor)
    enforce(tensor.is_initialized(), "%s variable '%s' is not initialized",
            what, name, exc=PreconditionError)
    return tensor


def _local_tensor(scope: Scope, name: str) -> Tensor | None:
    """Initialized tensor stored directly in *scope* under *name*, if any."""
    var = scope.find_local_var(name)
    if var is None or not var.is_type(Tensor):
        return None
    tensor = var.get(Tensor)
    return tensor if tensor.is_initialized() else None


class RecurrentBase(OperatorBase):
    """Helpers shared by the forward and gradient recurrent operators."""

    def get_sequence_length(self, scope: Scope, arg: Argument) -> int:
        enforce(len(arg.inlinks) > 0, "recurrent op %s has no sequence inputs",
                self.type, exc=PreconditionError)
        seq_len = None
        for link in arg.inlinks:
            tensor = _tensor_of(scope, link.external, 'sequence input')
            enforce(tensor.ndim >= 1, "sequence input '%s' must be at least 1-D",
                    link.external, exc=PreconditionError)
            if seq_len is None:
                seq_len = tensor.dims[0]
            enforce_eq(tensor.dims[0], seq_len,
                       "sequence input '%s' has length %d, expected %d",
                       link.external, tensor.dims[0], seq_len, exc=PreconditionError)
        enforce(seq_len > 0, "sequence length must be positive", exc=PreconditionError)
        return seq_len

    def step_scope_list(self, scope: Scope, name: str) -> list:
        var = enforce_not_none(scope.find_var(name),
                               "step-scopes variable '%s' not found in scope", name,
                               exc=PreconditionError)
        return var.get_mutable(list)

    @staticmethod
    def link_tensor(src: Tensor, t: int, dst_scope: Scope, dst_name: str) -> Tensor:
        """Alias slice *t* of *src* into *dst_scope* with the leading axis dropped."""
        dst = dst_scope.var(dst_name).get_tensor()
        dst.share_data_with(src.slice(t, t + 1))
        dst.resize(drop_leading_dim(src.dims))
        return dst

    @staticmethod
    def link_out(src: Tensor, aggregate: Tensor, t: int) -> None:
        """Copy one step's tensor into slice *t* of *aggregate*."""
        step_dims = drop_leading_dim(aggregate.dims)
        if src.dims != step_dims or src.dtype != aggregate.dtype:
            raise ShapeMismatchError(
                f"step tensor with dims {src.dims} ({src.dtype.name}) does not fit "
                f"aggregate slice {step_dims} ({aggregate.dtype.name})")
        aggregate.slice(t, t + 1).copy_from(src)

    @staticmethod
    def allocate_aggregate(dst: Tensor, seq_len: int, like: Tensor,
                           dev_ctx: DeviceContext) -> Tensor:
        dst.resize(prepend_dims(seq_len, like.dims))
        dst.mutable_data(dev_ctx.place, like.dtype)
        return dst

    @staticmethod
    def run_op(scope: Scope, dev_ctx: DeviceContext, type: str, inputs=None,
               outputs=None, attrs=None) -> None:
        OpRegistry.create_op(type, inputs, outputs, attrs).run(scope, dev_ctx)

    def fill_zeros(self, scope: Scope, dev_ctx: DeviceContext, name: str,
                   like: Tensor, local: bool = True) -> Tensor:
        """Zero-fill *name* with the dims and dtype of *like*.

        ``local`` creates the variable in *scope* itself; otherwise an
        existing variable in an enclosing scope is reused.
        """
        var = scope.find_local_var(name) if local else scope.find_var(name)
        if var is None:
            var = scope.var(name)
        var.get_mutable(Tensor)
        self.run_op(scope, dev_ctx, 'fill_constant', outputs={'Out': [name]},
                    attrs={'shape': list(like.dims), 'value': 0.0,
                           'dtype': like.dtype})
        return var.get(Tensor)


# ──────────────────────── Forward ─────────────────────────────────────

def _sub_block_targets(op: OpDesc) -> list[str]:
    """Step-block names whose gradients the differentiated block is fed."""
    outs = list(op.attr(OUTLINK_ALIAS) or op.output(OUTPUTS))
    return outs + [s for s in op.attr(STATES, []) if s not in outs]


def _recurrent_grad_maker(op: OpDesc, no_grad_set: set,
                          grad_sub_block: Block | None = None) -> list[OpDesc]:
    enforce(grad_sub_block is not None,
            "recurrent op needs a differentiated step block")
    grads = {}
    for slot in (INPUTS, INITIAL_STATES, PARAMETERS):
        grads[slot + GRAD_SUFFIX] = [
            EMPTY_VAR_NAME if n in no_grad_set else grad_var_name(n)
            for n in op.input(slot)]
    if all(n == EMPTY_VAR_NAME for names in grads.values() for n in names):
        return []
    inputs = {slot: op.input(slot) for slot in (INPUTS, INITIAL_STATES, PARAMETERS)}
    inputs[OUTPUTS] = op.output(OUTPUTS)
    inputs[STEP_SCOPES] = op.output(STEP_SCOPES)
    inputs[OUTPUTS + GRAD_SUFFIX] = [grad_var_name(n) for n in op.output(OUTPUTS)]
    attrs = dict(op.attrs)
    attrs[STEP_BLOCK] = grad_sub_block
    return [OpDesc('recurrent_grad', inputs, grads, attrs)]


@register_op('recurrent', grad_maker=_recurrent_grad_maker,
             sub_block_targets=_sub_block_targets)
class RecurrentOp(RecurrentBase):
    """Runs the step block over every position of the input sequences."""

    def run(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        arg = init_argument(self)
        seq_len = self.get_sequence_length(scope, arg)
        inputs = [_tensor_of(scope, l.external, 'sequence input') for l in arg.inlinks]
        boots = [_tensor_of(scope, m.boot_var, 'initial state') for m in arg.memories]
        outputs = []
        for link in arg.outlinks:
            var = scope.find_var(link.external)
            if var is None:
                raise PreconditionError(
                    f"output variable '{link.external}' not found in scope")
            outputs.append(var.get_mutable(Tensor))
        scopes = self.step_scope_list(scope, arg.step_scopes)

        step_scopes = StepScopes(scope, scopes, arg.is_train, seq_len)
        executor = Executor(dev_ctx.place)
        program = arg.step_block.program

        for i in range(seq_len):
            t = seq_len - i - 1 if arg.reverse else i
            logger.debug("recurrent: operate at time step %d (position %d)", t, i)
            cur_scope = step_scopes.current_scope()

            for link, src in zip(arg.inlinks, inputs):
                self.link_tensor(src, t, cur_scope, link.internal)

            for mem, boot in zip(arg.memories, boots):
                pre = cur_scope.var(mem.pre_var).get_mutable(Tensor)
                if i == 0:
                    pre.share_data_with(boot)
                else:
                    ex = _local_tensor(step_scopes.adjacent_scope(), mem.var)
                    if ex is None:
                        raise EnforceNotMet(
                            f"state '{mem.var}' was not produced at the previous step")
                    pre.share_data_with(ex)

            executor.run(program, cur_scope, arg.step_block.idx,
                         create_local_scope=False)

            if i == 0:
                for mem, boot in zip(arg.memories, boots):
                    state = _local_tensor(cur_scope, mem.var)
                    if state is None:
                        raise EnforceNotMet(f"step block did not produce state '{mem.var}'")
                    if state.dims != boot.dims:
                        raise ShapeMismatchError(
                            f"state '{mem.var}' has dims {state.dims} but its initial "
                            f"state '{mem.boot_var}' has dims {boot.dims}")

            for link, aggregate in zip(arg.outlinks, outputs):
                src = _local_tensor(cur_scope, link.internal)
                if src is None:
                    src = _tensor_of(cur_scope, link.internal, 'step output')
                if i == 0:
                    self.allocate_aggregate(aggregate, seq_len, src, dev_ctx)
                self.link_out(src, aggregate, t)

            step_scopes.advance()


# ──────────────────────── Backward ────────────────────────────────────

@register_op('recurrent_grad')
class RecurrentGradOp(RecurrentBase):
    """Walks the forward step scopes in reverse running the differentiated block."""

    def run(self, scope: Scope, dev_ctx: DeviceContext) -> None:
        arg = init_argument(self, is_grad=True)
        seq_len = self.get_sequence_length(scope, arg)
        scopes = self.step_scope_list(scope, arg.step_scopes)
        step_scopes = StepScopes(scope, scopes, arg.is_train, seq_len, is_backward=True)

        out_grads = self.inputs(OUTPUTS + GRAD_SUFFIX)
        enforce(len(out_grads) == len(arg.outlinks),
                "recurrent_grad: %d output gradients for %d outputs",
                len(out_grads), len(arg.outlinks), exc=PreconditionError)
        og_links = []
        for link, name in zip(arg.outlinks, out_grads):
            if name == EMPTY_VAR_NAME:
                continue
            og_links.append((grad_var_name(link.internal),
                             _tensor_of(scope, name, 'output gradient')))
        og_set = {inner for inner, _ in og_links}

        inputs = [_tensor_of(scope, l.external, 'sequence input') for l in arg.inlinks]
        boots = [_tensor_of(scope, m.boot_var, 'initial state') for m in arg.memories]
        input_grads = self.outputs(INPUTS + GRAD_SUFFIX)
        init_grads = self.outputs(INITIAL_STATES + GRAD_SUFFIX)
        param_grads = self.outputs(PARAMETERS + GRAD_SUFFIX)

        zeroed: set[str] = set()
        if config.eager_zero_param_grads:
            for param, outer in zip(arg.parameters, param_grads):
                if outer == EMPTY_VAR_NAME:
                    continue
                self.fill_zeros(scope, dev_ctx, outer,
                                _tensor_of(scope, param, 'parameter'), local=False)
                zeroed.add(outer)

        executor = Executor(dev_ctx.place)
        program = arg.step_block.program

        for step_id in range(seq_len):
            t = step_id if arg.reverse else seq_len - step_id - 1
            logger.debug("recurrent_grad: operate at time step %d (position %d)",
                         t, step_id)
            cur_scope = step_scopes.current_scope()

            for inner, outer in og_links:
                self.link_tensor(outer, t, cur_scope, inner)

            self._link_state_grads(arg, step_scopes, step_id, og_set, dev_ctx)

            executor.run(program, cur_scope, arg.step_block.idx,
                         create_local_scope=False)

            self._accumulate_param_grads(arg, scope, cur_scope, param_grads,
                                         zeroed, dev_ctx)

            for link, src, outer in zip(arg.inlinks, inputs, input_grads):
                if outer == EMPTY_VAR_NAME:
                    continue
                inner = grad_var_name(link.internal)
                local = _local_tensor(cur_scope, inner)
                if local is None:
                    step_in = src.slice(t, t + 1).resize(drop_leading_dim(src.dims))
                    local = self.fill_zeros(cur_scope, dev_ctx, inner, step_in)
                aggregate = self._outer_tensor(scope, outer)
                if step_id == 0:
                    self.allocate_aggregate(aggregate, seq_len, local, dev_ctx)
                self.link_out(local, aggregate, t)

            if step_id + 1 == seq_len:
                for mem, boot, outer in zip(arg.memories, boots, init_grads):
                    if outer == EMPTY_VAR_NAME:
                        continue
                    inner = grad_var_name(mem.pre_var)
                    local = _local_tensor(cur_scope, inner)
                    if local is None:
                        local = self.fill_zeros(cur_scope, dev_ctx, inner, boot)
                    self._outer_tensor(scope, outer).copy_from(local, dev_ctx.place, dev_ctx)

            step_scopes.advance()

    @staticmethod
    def _outer_tensor(scope: Scope, name: str) -> Tensor:
        var = scope.find_var(name)
        if var is None:
            var = scope.var(name)
        return var.get_mutable(Tensor)

    def _link_state_grads(self, arg: Argument, step_scopes: StepScopes,
                          step_id: int, og_set: set, dev_ctx: DeviceContext) -> None:
        """Give every state's gradient slot its value for this position.

        The gradient of ``var`` at this position is the gradient of
        ``pre_var`` computed one position later in time, plus the gradient
        supplied from outside when ``var`` is also a sequence output.
        """
        cur_scope = step_scopes.current_scope()
        for mem in arg.memories:
            cur_name = grad_var_name(mem.var)
            if step_id == 0:
                if cur_name not in og_set:
                    state = _tensor_of(cur_scope, mem.var, 'state')
                    self.fill_zeros(cur_scope, dev_ctx, cur_name, state)
                continue

            ex_scope = step_scopes.adjacent_scope()
            ex_name = grad_var_name(mem.pre_var)
            ex = _local_tensor(ex_scope, ex_name)
            if ex is None:
                ex = self.fill_zeros(ex_scope, dev_ctx, ex_name,
                                     _tensor_of(ex_scope, mem.pre_var, 'previous state'))

            cur = cur_scope.var(cur_name).get_mutable(Tensor)
            if cur_name in og_set:
                logger.debug("recurrent_grad: sum %s with next step's %s", cur_name, ex_name)
                tmp_name, tmp_var = cur_scope.new_temp_var()
                tmp_var.get_mutable(Tensor).share_data_with(ex)
                sum_name, sum_var = cur_scope.new_temp_var()
                self.run_op(cur_scope, dev_ctx, 'sum',
                            inputs={'X': [cur_name, tmp_name]},
                            outputs={'Out': [sum_name]})
                cur.share_data_with(sum_var.get(Tensor))
                cur_scope.erase_vars([tmp_name, sum_name])
            else:
                logger.debug("recurrent_grad: alias %s to next step's %s", cur_name, ex_name)
                cur.share_data_with(ex)

    def _accumulate_param_grads(self, arg: Argument, scope: Scope, cur_scope: Scope,
                                param_grads: list[str], zeroed: set,
                                dev_ctx: DeviceContext) -> None:
        for param, outer in zip(arg.parameters, param_grads):
            if outer == EMPTY_VAR_NAME:
                continue
            inner = grad_var_name(param)
            local = _local_tensor(cur_scope, inner)
            if local is None:
                continue
            if outer not in zeroed:
                self.fill_zeros(scope, dev_ctx, outer, local, local=False)
                zeroed.add(outer)
            # Summing into an alias of the accumulator updates it in place.
            tmp_name, tmp_var = cur_scope.new_temp_var()
            tmp_var.get_mutable(Tensor).share_data_with(self._outer_tensor(scope, outer))
            self.run_op(cur_scope, dev_ctx, 'sum',
                        inputs={'X': [tmp_name, inner]}, outputs={'Out': [tmp_name]})
            cur_scope.erase_vars([tmp_name])
