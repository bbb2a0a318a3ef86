from __future__ import annotations
"""
Buffer ownership bookkeeping.

- BufferRegistry: counts live buffers handed out to a session (allocation counter)
- TrackedBuffer: one owned numpy array; release() is idempotent
- BufferScope: everything allocated/adopted inside a `with` block is released on exit,
  success or failure
"""

import itertools
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np


class TrackedBuffer:
    __slots__ = ("id", "tag", "_array", "_registry")

    def __init__(self, registry: "BufferRegistry", buf_id: int, tag: str, array: np.ndarray):
        self.id = buf_id
        self.tag = tag
        self._array: Optional[np.ndarray] = array
        self._registry = registry

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            raise RuntimeError(f"buffer '{self.tag}' used after release")
        return self._array

    @property
    def released(self) -> bool:
        return self._array is None

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.array.shape

    def release(self) -> None:
        if self._array is None:
            return
        self._array = None
        self._registry._forget(self.id)

    def __repr__(self) -> str:
        state = "released" if self.released else f"shape={self._array.shape}"
        return f"TrackedBuffer(id={self.id}, tag={self.tag!r}, {state})"


class BufferScope:
    """Owns the buffers created through it until the enclosing `with` exits."""

    def __init__(self, registry: "BufferRegistry"):
        self._registry = registry
        self._owned: List[TrackedBuffer] = []

    def allocate(self, shape, dtype=np.uint8, tag: str = "") -> TrackedBuffer:
        buf = self._registry.allocate(shape, dtype=dtype, tag=tag)
        self._owned.append(buf)
        return buf

    def adopt(self, array: np.ndarray, tag: str = "") -> TrackedBuffer:
        buf = self._registry.adopt(array, tag=tag)
        self._owned.append(buf)
        return buf

    def close(self) -> None:
        while self._owned:
            self._owned.pop().release()


class BufferRegistry:
    """
    Allocation counter for session-owned arrays.

    Every buffer a pipeline session holds goes through allocate()/adopt(); `live_count`
    returning to zero after stop() is how tests observe that nothing leaked.
    """

    def __init__(self) -> None:
        self._live: Dict[int, TrackedBuffer] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.total_allocated = 0

    def allocate(self, shape, dtype=np.uint8, tag: str = "") -> TrackedBuffer:
        return self.adopt(np.zeros(shape, dtype=dtype), tag=tag)

    def adopt(self, array: np.ndarray, tag: str = "") -> TrackedBuffer:
        with self._lock:
            buf = TrackedBuffer(self, next(self._ids), tag, array)
            self._live[buf.id] = buf
            self.total_allocated += 1
        return buf

    def _forget(self, buf_id: int) -> None:
        with self._lock:
            self._live.pop(buf_id, None)

    @contextmanager
    def scope(self) -> Iterator[BufferScope]:
        sc = BufferScope(self)
        try:
            yield sc
        finally:
            sc.close()

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def live_tags(self) -> List[str]:
        with self._lock:
            return sorted(b.tag for b in self._live.values())
