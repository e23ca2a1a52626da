from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from .errors import ShapeMismatch


class TensorView:
    """
    Read-only view over a flat numeric buffer with a row-major shape.

    Reshape and transpose return new views sharing the same buffer; nothing is
    copied unless NumPy has to materialise a non-contiguous reshape.
    """

    def __init__(self, buffer: np.ndarray, shape: Sequence[int]):
        flat = np.asarray(buffer).reshape(-1)
        shape = tuple(int(d) for d in shape)
        if any(d < 0 for d in shape):
            raise ShapeMismatch(f"Negative dimension in shape {shape}")
        expected = int(np.prod(shape, dtype=np.int64))
        if flat.size != expected:
            raise ShapeMismatch(f"Buffer has {flat.size} elements but shape {shape} needs {expected}")
        array = flat.reshape(shape)
        array.flags.writeable = False
        self._array = array

    @classmethod
    def from_array(cls, array: np.ndarray) -> "TensorView":
        a = np.asarray(array)
        return cls._wrap(a)

    @classmethod
    def _wrap(cls, array: np.ndarray) -> "TensorView":
        view = cls.__new__(cls)
        a = array.view()
        a.flags.writeable = False
        view._array = a
        return view

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self._array.shape)

    @property
    def ndim(self) -> int:
        return self._array.ndim

    @property
    def size(self) -> int:
        return int(self._array.size)

    def numpy(self) -> np.ndarray:
        """Underlying read-only array (no copy)."""
        return self._array

    def flat(self, index: int) -> float:
        if not 0 <= index < self.size:
            raise IndexError(f"Flat index {index} out of range for size {self.size}")
        # `flat` follows the logical (row-major) order even after a transpose.
        return self._array.flat[index].item()

    def at(self, *index: int) -> float:
        if len(index) != self.ndim:
            raise ShapeMismatch(f"Expected {self.ndim} indices, got {len(index)}")
        return self._array[index].item()

    def reshape(self, shape: Sequence[int]) -> "TensorView":
        shape = tuple(int(d) for d in shape)
        expected = int(np.prod(shape, dtype=np.int64))
        if expected != self.size:
            raise ShapeMismatch(f"Cannot reshape {self.shape} ({self.size} elements) to {shape}")
        return TensorView._wrap(self._array.reshape(shape))

    def transpose(self, axes: Sequence[int]) -> "TensorView":
        axes = tuple(int(a) for a in axes)
        if sorted(axes) != list(range(self.ndim)):
            raise ShapeMismatch(f"Axes {axes} are not a permutation for rank {self.ndim}")
        return TensorView._wrap(self._array.transpose(axes))

    def swap_last_axes(self) -> "TensorView":
        """[B, A, C] -> [B, C, A]."""
        if self.ndim != 3:
            raise ShapeMismatch(f"swap_last_axes expects a rank-3 tensor, got shape {self.shape}")
        return self.transpose((0, 2, 1))

    def squeeze(self) -> "TensorView":
        return TensorView._wrap(np.squeeze(self._array))

    def shares_memory(self, other: "TensorView") -> bool:
        return bool(np.shares_memory(self._array, other._array))

    def __repr__(self) -> str:
        return f"TensorView(shape={self.shape}, dtype={self._array.dtype})"


def as_view(value) -> TensorView:
    if isinstance(value, TensorView):
        return value
    return TensorView.from_array(np.asarray(value))
