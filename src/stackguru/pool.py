"""Reusable scratch buffers for string building.

Formatting a call stack happens on every log event, so the formatter
borrows :class:`io.StringIO` buffers from a bounded pool instead of creating
new ones each time.
"""

from __future__ import annotations

import io
import queue
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass


@dataclass(frozen=True)
class PoolStats:
    pool_size: int
    max_pool_size: int


class ScratchBufferPool:
    """A bounded, thread-safe free list of :class:`io.StringIO` buffers.

    Parameters
    ----------
    max_pool_size:
        Maximum number of idle buffers kept for reuse.
    max_retained_size:
        Buffers that grew beyond this many characters are discarded on
        release instead of being kept.
    """

    def __init__(self, max_pool_size: int = 32, max_retained_size: int = 4096) -> None:
        if max_pool_size < 1:
            msg = f"max_pool_size must be >= 1, got {max_pool_size}"
            raise ValueError(msg)
        if max_retained_size < 0:
            msg = f"max_retained_size must be >= 0, got {max_retained_size}"
            raise ValueError(msg)
        self._max_pool_size = max_pool_size
        self._max_retained_size = max_retained_size
        self._free: queue.LifoQueue[io.StringIO] = queue.LifoQueue(maxsize=max_pool_size)

    def acquire(self) -> io.StringIO:
        """Pop an idle buffer, or allocate a new one if none is available."""
        try:
            buf = self._free.get_nowait()
        except queue.Empty:
            return io.StringIO()
        buf.seek(0)
        buf.truncate(0)
        return buf

    def release(self, buf: io.StringIO | None) -> None:
        """Return *buf* to the pool unless it is oversized or the pool is full."""
        if buf is None or buf.closed:
            return
        if buf.tell() > self._max_retained_size:
            return
        buf.seek(0)
        buf.truncate(0)
        try:
            self._free.put_nowait(buf)
        except queue.Full:
            pass

    @contextmanager
    def buffer(self) -> Iterator[io.StringIO]:
        """Borrow a buffer for the duration of a ``with`` block."""
        buf = self.acquire()
        try:
            yield buf
        finally:
            self.release(buf)

    def render(self, action: Callable[[io.StringIO], object]) -> str:
        """Run *action* against a pooled buffer and return what it wrote."""
        with self.buffer() as buf:
            action(buf)
            return buf.getvalue()

    def stats(self) -> PoolStats:
        return PoolStats(pool_size=self._free.qsize(), max_pool_size=self._max_pool_size)


default_pool = ScratchBufferPool()
