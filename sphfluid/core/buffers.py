"""
Typed buffer arena for the per-tick neighbor search structures.

Stage functions never look buffers up by name at run time: handles are
resolved once at setup and the arrays are passed explicitly. Buffers
are reallocated only when their required shape changes.
"""

import logging
from typing import Dict, NamedTuple, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class BufferHandle(NamedTuple):
    """Index into a BufferArena plus the name used in diagnostics."""
    index: int
    name: str


class BufferArena:
    """Owns a set of numpy buffers addressed by BufferHandle."""

    def __init__(self):
        self._buffers: list = []
        self._names: Dict[str, BufferHandle] = {}
        self._released = False

    def allocate(self, name: str, shape: Tuple[int, ...], dtype, fill=0) -> BufferHandle:
        """Allocate (or resize) a named buffer and return its handle.

        An existing buffer with the same name keeps its handle; it is
        only reallocated when shape or dtype differ.
        """
        dtype = np.dtype(dtype)
        shape = tuple(int(s) for s in shape)
        handle = self._names.get(name)

        if handle is not None:
            current = self._buffers[handle.index]
            if current is not None and current.shape == shape and current.dtype == dtype:
                return handle
            logger.debug("Resizing buffer %s to %s", name, shape)
            self._buffers[handle.index] = np.full(shape, fill, dtype=dtype)
            return handle

        handle = BufferHandle(len(self._buffers), name)
        self._buffers.append(np.full(shape, fill, dtype=dtype))
        self._names[name] = handle
        self._released = False
        return handle

    def get(self, handle: BufferHandle) -> np.ndarray:
        """Resolve a handle to its array."""
        if handle.index >= len(self._buffers) or self._buffers[handle.index] is None:
            raise RuntimeError(f"Buffer {handle.name} was released")
        return self._buffers[handle.index]

    def __contains__(self, name: str) -> bool:
        return name in self._names

    @property
    def nbytes(self) -> int:
        return sum(b.nbytes for b in self._buffers if b is not None)

    @property
    def released(self) -> bool:
        return self._released

    def release(self):
        """Drop every buffer; handles become invalid."""
        self._names.clear()
        self._buffers.clear()
        self._released = True
