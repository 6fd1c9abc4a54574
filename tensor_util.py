# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Free helpers around :class:`~steprnn.tensor.Tensor`."""
from __future__ import annotations

import numpy as np
from typing import Sequence

from .device import DeviceContext, Place, get_device_context
from .dtype import Dtype
from .tensor import Tensor


def tensor_copy(src: Tensor, dst_place: Place | str,
                dev_ctx: DeviceContext, dst: Tensor) -> Tensor:
    """Copy *src* into *dst* on *dst_place* using *dev_ctx* for the transfer."""
    return dst.copy_from(src, dst_place, dev_ctx)


def tensor_copy_sync(src: Tensor, dst_place: Place | str, dst: Tensor) -> Tensor:
    """Blocking copy using the shared context of the destination place."""
    return dst.copy_from(src, dst_place, get_device_context(dst_place))


def tensor_from_array(array, place: Place | str | None = None,
                      dtype=None) -> Tensor:
    """Build a tensor owning a private copy of *array*."""
    np_dtype = Dtype.from_any(dtype).to_numpy() if dtype is not None else None
    arr = np.array(array, dtype=np_dtype)
    return Tensor().set(arr, place)


def tensor_to_array(tensor: Tensor) -> np.ndarray:
    return tensor.numpy()


def contains_nan(tensor: Tensor) -> bool:
    data = tensor.data()
    if not np.issubdtype(data.dtype, np.floating):
        return False
    return bool(np.isnan(data).any())


def contains_inf(tensor: Tensor) -> bool:
    data = tensor.data()
    if not np.issubdtype(data.dtype, np.floating):
        return False
    return bool(np.isinf(data).any())


def prepend_dims(seq_len: int, dims: Sequence[int]) -> tuple[int, ...]:
    """(seq_len, shape) -> (seq_len, *shape)"""
    return (int(seq_len),) + tuple(dims)


def drop_leading_dim(dims: Sequence[int]) -> tuple[int, ...]:
    return tuple(dims[1:])
