# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StepRNN — Recurrent Execution Engine                                ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Element types of tensors and variable descriptions."""
from __future__ import annotations

import enum
import numpy as np


class Dtype(enum.Enum):
    float16 = "float16"
    float32 = "float32"
    float64 = "float64"
    int8 = "int8"
    int16 = "int16"
    int32 = "int32"
    int64 = "int64"
    uint8 = "uint8"
    bool = "bool"

    def to_numpy(self) -> np.dtype:
        """Convert to numpy dtype."""
        if self is Dtype.bool:
            return np.dtype(np.bool_)
        return np.dtype(self.value)

    @property
    def itemsize(self) -> int:
        return self.to_numpy().itemsize

    @staticmethod
    def from_numpy(np_dtype) -> 'Dtype':
        """Convert numpy dtype to a :class:`Dtype`; unknown kinds raise."""
        np_dtype = np.dtype(np_dtype)
        if np_dtype == np.bool_:
            return Dtype.bool
        try:
            return Dtype(np_dtype.name)
        except ValueError:
            raise ValueError(f"Unsupported numpy dtype: {np_dtype}") from None

    @staticmethod
    def from_any(value) -> 'Dtype':
        """Accept a :class:`Dtype`, its name, or anything numpy understands."""
        if isinstance(value, Dtype):
            return value
        if isinstance(value, str) and value in Dtype.__members__:
            return Dtype[value]
        return Dtype.from_numpy(value)

    def __repr__(self) -> str:
        return f"steprnn.{self.name}"


float16 = Dtype.float16
float32 = Dtype.float32
float64 = Dtype.float64
int8 = Dtype.int8
int16 = Dtype.int16
int32 = Dtype.int32
int64 = Dtype.int64
uint8 = Dtype.uint8
bool_ = Dtype.bool
