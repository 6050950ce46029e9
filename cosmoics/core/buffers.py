"""
Pool of same-shaped host buffers for chunked grid processing.
"""
from contextlib import contextmanager
from typing import Tuple
import numpy as np


class GridPool:
    """
    Hands out zeroed numpy buffers of one shape and takes them back.

    Buffers are only valid inside the `with pool.borrow() as buf:` block
    and return to the pool on every exit path.
    """

    def __init__(self, shape: Tuple[int, ...], dtype=np.float64):
        self.shape = tuple(shape)
        self.dtype = np.dtype(dtype)
        self._free = []
        self.allocated = 0

    @property
    def in_use(self) -> int:
        return self.allocated - len(self._free)

    @contextmanager
    def borrow(self):
        if self._free:
            buf = self._free.pop()
            buf.fill(0)
        else:
            buf = np.zeros(self.shape, dtype=self.dtype)
            self.allocated += 1
        try:
            yield buf
        finally:
            self._free.append(buf)
