# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""
StepRNN — a recurrent execution engine over NumPy tensors.

A step block (a small program) is run once per sequence position, each
time in its own child scope, with recurrent state threaded between
positions by zero-copy aliasing.  The gradient operator walks the same
step scopes backwards and accumulates parameter gradients.

Usage::

    import steprnn
    from steprnn import Program, Executor, StaticRNN, append_backward
"""
from __future__ import annotations

__version__ = "0.1.0"
__author__ = "Pictofeed, LLC"

# ── Errors & configuration ──
from .errors import EnforceNotMet, PreconditionError, ShapeMismatchError
from .flags import get_flags, set_flags

# ── Dtype / device ──
from .dtype import (
    Dtype,
    float16, float32, float64,
    int8, int16, int32, int64,
    uint8, bool_,
)
from .device import CPU, DeviceContext, Place, get_device_context

# ── Tensors & scopes ──
from .tensor import Tensor
from .tensor_util import tensor_copy, tensor_copy_sync, tensor_from_array
from .scope import Scope, Variable, global_scope

# ── Program description ──
from .framework import (
    EMPTY_VAR_NAME, GRAD_SUFFIX,
    Block, OpDesc, Program, VarDesc, VarType,
    grad_var_name,
)

# Operators register on import; ops must load before the executor module.
from . import ops
from .ops import OpRegistry, RecurrentGradOp, RecurrentOp, StepScopes
from .executor import Executor
from .backward import append_backward
from .rnn import StaticRNN

__all__ = [
    "__version__",
    "__author__",

    # Errors / flags
    'EnforceNotMet', 'PreconditionError', 'ShapeMismatchError',
    'get_flags', 'set_flags',

    # Dtype / device
    'Dtype', 'float16', 'float32', 'float64',
    'int8', 'int16', 'int32', 'int64', 'uint8', 'bool_',
    'CPU', 'DeviceContext', 'Place', 'get_device_context',

    # Tensor / scope
    'Tensor', 'tensor_copy', 'tensor_copy_sync', 'tensor_from_array',
    'Scope', 'Variable', 'global_scope',

    # Program
    'EMPTY_VAR_NAME', 'GRAD_SUFFIX',
    'Block', 'OpDesc', 'Program', 'VarDesc', 'VarType', 'grad_var_name',

    # Execution
    'OpRegistry', 'RecurrentOp', 'RecurrentGradOp', 'StepScopes',
    'Executor', 'append_backward', 'StaticRNN',
]
