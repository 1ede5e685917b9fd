"""Call-stack snapshots.

A :class:`StackFrame` is an immutable record of one activation in the call
stack: the code object being executed, the module it runs in, and the source
position.  :func:`capture_stack` takes a snapshot of the live interpreter
stack, innermost frame first.
"""

from __future__ import annotations

import itertools
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import CodeType, FrameType
from typing import Any


@dataclass(frozen=True)
class StackFrame:
    """One activation record in a captured call stack.

    Attributes
    ----------
    code:
        The code object executing in this frame (the method handle).
        ``None`` when the frame could not be identified.
    module:
        ``__name__`` of the module whose globals the frame runs with.
    filename:
        Source file path, empty when unknown.
    lineno:
        Line being executed, ``0`` when unknown.
    lasti:
        Byte offset of the current instruction, ``-1`` when unknown.
    namespace:
        The frame's globals, used to reach the function object behind
        *code* (for parameter annotations).
    """

    code: CodeType | None
    module: str | None
    filename: str = ""
    lineno: int = 0
    lasti: int = -1
    namespace: Mapping[str, Any] | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_frame(cls, frame: FrameType) -> StackFrame:
        """Snapshot a live interpreter frame."""
        f_globals = frame.f_globals
        module = f_globals.get("__name__")
        return cls(
            code=frame.f_code,
            module=module if isinstance(module, str) else None,
            filename=frame.f_code.co_filename or "",
            lineno=frame.f_lineno or 0,
            lasti=frame.f_lasti,
            namespace=f_globals,
        )

    @property
    def column(self) -> int:
        """1-based column of the current instruction, ``0`` when unknown."""
        if self.code is None or self.lasti < 0:
            return 0
        return _code_column(self.code, self.lasti)


def _code_column(code: CodeType, lasti: int) -> int:
    try:
        positions = next(itertools.islice(code.co_positions(), lasti // 2, None))
    except StopIteration:
        return 0
    col = positions[2]
    return col + 1 if col is not None else 0


def capture_stack(skip: int = 0, limit: int | None = None) -> list[StackFrame]:
    """Snapshot the current call stack, innermost frame first.

    The snapshot starts at the caller of :func:`capture_stack`; *skip* drops
    that many further frames.  *limit* caps the number of frames captured.
    """
    try:
        frame: FrameType | None = sys._getframe(skip + 1)
    except ValueError:
        return []

    frames: list[StackFrame] = []
    while frame is not None:
        if limit is not None and len(frames) >= limit:
            break
        frames.append(StackFrame.from_frame(frame))
        frame = frame.f_back
    return frames
