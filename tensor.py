# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Dense tensor view over a flat NumPy buffer.

A :class:`Tensor` is a *view*: a shape, an element offset and a reference
to a flat, contiguous ``numpy.ndarray`` (the holder).  Several tensors may
reference the same holder, which is how zero-copy aliasing works:

* :meth:`Tensor.slice` returns a view of a contiguous leading-axis range.
* :meth:`Tensor.share_data_with` makes ``self`` an alias of another view.
* :meth:`Tensor.resize` only changes the shape; storage is (re)allocated
  lazily by :meth:`Tensor.mutable_data`.
* :meth:`Tensor.copy_from` always duplicates storage.
"""
from __future__ import annotations

import numpy as np
from typing import Any, Sequence

from .device import CPU, DeviceContext, Place
from .dtype import Dtype
from .errors import EnforceNotMet, ShapeMismatchError, enforce


def _as_dims(dims: Sequence[int] | int) -> tuple[int, ...]:
    if isinstance(dims, (int, np.integer)):
        dims = (dims,)
    out = tuple(int(d) for d in dims)
    enforce(all(d >= 0 for d in out),
            "tensor dims must be non-negative, got %s", out)
    return out


def _product(dims: tuple[int, ...]) -> int:
    n = 1
    for d in dims:
        n *= d
    return n


class Tensor:
    """Shape + (offset into) a flat holder buffer + dtype + place."""

    __slots__ = ('_holder', '_offset', '_dims', '_dtype', '_place')

    # ------------------------------------------------------------------ #
    #  Construction                                                      #
    # ------------------------------------------------------------------ #

    def __init__(
        self,
        data: Any = None,
        dtype: Dtype | np.dtype | str | None = None,
        place: Place | str | None = None,
    ):
        self._holder: np.ndarray | None = None
        self._offset: int = 0
        self._dims: tuple[int, ...] = ()
        self._dtype: Dtype = Dtype.from_any(dtype) if dtype is not None else Dtype.float32
        self._place: Place = Place(place) if place is not None else CPU
        if data is not None:
            if isinstance(data, Tensor):
                data = data.numpy()
            arr = np.asarray(data)
            if dtype is not None:
                arr = arr.astype(self._dtype.to_numpy(), copy=False)
            self._bind(np.array(arr, copy=True, order='C'))

    def _bind(self, arr: np.ndarray) -> None:
        self._holder = arr.reshape(-1)
        self._offset = 0
        self._dims = tuple(arr.shape)
        self._dtype = Dtype.from_numpy(arr.dtype)

    # ------------------------------------------------------------------ #
    #  Properties                                                        #
    # ------------------------------------------------------------------ #

    @property
    def dims(self) -> tuple[int, ...]:
        return self._dims

    shape = dims

    @property
    def ndim(self) -> int:
        return len(self._dims)

    @property
    def dtype(self) -> Dtype:
        return self._dtype

    @property
    def place(self) -> Place:
        return self._place

    def numel(self) -> int:
        return _product(self._dims)

    def is_initialized(self) -> bool:
        return self._holder is not None

    def memory_size(self) -> int:
        """Bytes addressed by this view."""
        return self.numel() * self._dtype.itemsize

    def holder_id(self) -> int | None:
        """Identity of the underlying buffer (same value ⇔ aliased storage)."""
        return None if self._holder is None else id(self._holder)

    def _capacity(self) -> int:
        if self._holder is None:
            return 0
        return self._holder.size - self._offset

    # ------------------------------------------------------------------ #
    #  Shape & storage                                                   #
    # ------------------------------------------------------------------ #

    def resize(self, dims: Sequence[int] | int) -> 'Tensor':
        self._dims = _as_dims(dims)
        return self

    def mutable_data(self, place: Place | str | None = None,
                     dtype: Dtype | np.dtype | str | None = None) -> np.ndarray:
        """Writable view of ``dims``; allocates when the holder cannot serve it."""
        if place is not None:
            self._place = Place(place)
        want = Dtype.from_any(dtype) if dtype is not None else self._dtype
        need = self.numel()
        if (self._holder is None or want != self._dtype
                or self._capacity() < need):
            self._holder = np.zeros(max(need, 1), dtype=want.to_numpy())
            self._offset = 0
        self._dtype = want
        return self._view()

    def data(self) -> np.ndarray:
        """Read view of the tensor contents."""
        if self._holder is None:
            raise EnforceNotMet("tensor holds no memory; call mutable_data first")
        enforce(self._capacity() >= self.numel(),
                "tensor holder has %d elements but dims %s need %d",
                self._capacity(), self._dims, self.numel())
        return self._view()

    def _view(self) -> np.ndarray:
        n = self.numel()
        return self._holder[self._offset:self._offset + n].reshape(self._dims)

    def slice(self, begin: int, end: int) -> 'Tensor':
        """Leading-axis view ``[begin, end)`` sharing this tensor's holder."""
        enforce(self._holder is not None, "cannot slice an uninitialized tensor")
        enforce(len(self._dims) > 0, "cannot slice a 0-d tensor")
        enforce(0 <= begin < end <= self._dims[0],
                "slice [%d, %d) out of range for leading dim %d",
                begin, end, self._dims[0])
        if begin == 0 and end == self._dims[0]:
            return Tensor._alias(self, self._offset, self._dims)
        stride = _product(self._dims[1:])
        dims = (end - begin,) + self._dims[1:]
        return Tensor._alias(self, self._offset + begin * stride, dims)

    @staticmethod
    def _alias(src: 'Tensor', offset: int, dims: tuple[int, ...]) -> 'Tensor':
        t = Tensor.__new__(Tensor)
        t._holder = src._holder
        t._offset = offset
        t._dims = dims
        t._dtype = src._dtype
        t._place = src._place
        return t

    def share_data_with(self, other: 'Tensor') -> 'Tensor':
        """Become a zero-copy alias of *other* (holder, offset, dims, dtype, place)."""
        enforce(other._holder is not None,
                "cannot share data with an uninitialized tensor")
        self._holder = other._holder
        self._offset = other._offset
        self._dims = other._dims
        self._dtype = other._dtype
        self._place = other._place
        return self

    def copy_from(self, src: 'Tensor', place: Place | str | None = None,
                  dev_ctx: DeviceContext | None = None) -> 'Tensor':
        """Duplicate *src* into this tensor's storage, possibly on another place."""
        values = src.data()
        # A slice keeps its holder region as long as the element count fits.
        self.resize(src.dims)
        dst_place = place if place is not None else src.place
        buf = self.mutable_data(dst_place, src.dtype)
        np.copyto(buf, values)
        if dev_ctx is not None:
            dev_ctx.wait()
        return self

    def set(self, array: Any, place: Place | str | None = None) -> 'Tensor':
        """Replace the contents with a private copy of *array*."""
        arr = np.array(array, copy=True)
        self._bind(np.ascontiguousarray(arr))
        if place is not None:
            self._place = Place(place)
        return self

    def numpy(self) -> np.ndarray:
        return self.data().copy()

    def tolist(self):
        return self.data().tolist()

    # ------------------------------------------------------------------ #
    #  Misc                                                              #
    # ------------------------------------------------------------------ #

    def same_shape(self, other: 'Tensor') -> bool:
        return self._dims == other._dims

    def check_same_shape(self, other: 'Tensor', what: str = 'tensor') -> None:
        if self._dims != other._dims:
            raise ShapeMismatchError(
                f"{what}: shape {self._dims} does not match {other._dims}")

    def __len__(self) -> int:
        if not self._dims:
            raise TypeError("len() of a 0-d tensor")
        return self._dims[0]

    def __repr__(self) -> str:
        if self._holder is None:
            return f"Tensor(<uninitialized>, dims={self._dims})"
        return (f"Tensor({np.array2string(self.data())}, dims={self._dims}, "
                f"dtype={self._dtype.name}, place={self._place})")
