# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""steprnn.ops — operator registry and the built-in operators."""
from .registry import KernelOp, OperatorBase, OpInfo, OpRegistry, register_op
from . import math_ops
from .recurrent import (
    Argument, Link, MemoryAttr,
    RecurrentBase, RecurrentGradOp, RecurrentOp,
    StepScopes, init_argument,
)

__all__ = [
    'KernelOp', 'OperatorBase', 'OpInfo', 'OpRegistry', 'register_op',
    'Argument', 'Link', 'MemoryAttr',
    'RecurrentBase', 'RecurrentGradOp', 'RecurrentOp',
    'StepScopes', 'init_argument',
]
