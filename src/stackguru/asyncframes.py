"""Asynchronous and compiler-generated frame detection.

Two kinds of frames get special treatment when a call stack is rendered:

- *Asynchronous* frames: coroutines, async generators, and functions
  annotated to return an awaitable (``Awaitable``, ``Coroutine``,
  ``Future``, ``Task``, bare or subscripted).
- *Generated* frames: code objects the compiler creates on behalf of an
  enclosing function (``<genexpr>`` and the comprehension bodies).  Their
  qualified name encodes the function that owns them, e.g.
  ``Handler.process.<locals>.<genexpr>``, which lets a rendered call stack
  show ``Handler.process`` instead of the hidden code object.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from stackguru.cache import EMPTY, FrameInfoCache, ResolvedMethodInfo, default_cache
from stackguru.frames import StackFrame

_GENERATED_QUALNAME = re.compile(
    r"^(?:(?P<owner>.+)\.)?(?P<method>[^.<>]+)\.<locals>\.<(?:genexpr|listcomp|setcomp|dictcomp)>$"
)

_AWAITABLE_RETURN = re.compile(r"^(?:Awaitable|Coroutine|Future|Task)(?:\[.*\])?$")

_DOTTED_PREFIX = re.compile(r"(?:[A-Za-z_]\w*\.)+(?=[A-Za-z_])")


def shorten_annotation(name: str) -> str:
    """Strip module prefixes from every dotted name inside *name*.

    ``"dict[str, app.models.Order]"`` becomes ``"dict[str, Order]"``.
    """
    return _DOTTED_PREFIX.sub("", name)


@dataclass(frozen=True)
class AsyncMethodInfo:
    """The logical method behind a frame."""

    original_method_name: str = ""
    declaring_type_name: str = ""
    is_async: bool = False
    is_state_machine_method: bool = False
    has_async_marker: bool = False


EMPTY_ASYNC_INFO = AsyncMethodInfo()


def _returns_awaitable(info: ResolvedMethodInfo, cache: FrameInfoCache) -> bool:
    if info.return_annotation is EMPTY or info.return_annotation is None:
        return False
    name = shorten_annotation(cache.get_type_name(info.return_annotation)).strip()
    return _AWAITABLE_RETURN.match(name) is not None


def is_async_frame(frame: StackFrame, cache: FrameInfoCache = default_cache) -> bool:
    """Return ``True`` if *frame* runs a coroutine or awaitable-returning function."""
    info = cache.get(frame)
    if not info.is_valid:
        return False
    return info.has_async_marker or _returns_awaitable(info, cache)


def is_state_machine_frame(frame: StackFrame, cache: FrameInfoCache = default_cache) -> bool:
    """Return ``True`` if *frame* runs compiler-generated code."""
    info = cache.get(frame)
    return info.is_valid and info.is_generated


def _resolve_generated(info: ResolvedMethodInfo) -> AsyncMethodInfo:
    match = _GENERATED_QUALNAME.match(info.qualname)
    if match is None:
        # Module-level generated code has no owning function.
        return AsyncMethodInfo(
            original_method_name=info.method_name,
            declaring_type_name=info.type_full_name,
            is_async=info.has_async_marker,
            is_state_machine_method=True,
            has_async_marker=info.has_async_marker,
        )

    owner = match.group("owner")
    owner_parts = [p for p in owner.split(".") if p != "<locals>"] if owner else []
    return AsyncMethodInfo(
        original_method_name=match.group("method"),
        declaring_type_name=".".join([info.module, *owner_parts]),
        is_async=info.has_async_marker,
        is_state_machine_method=True,
        has_async_marker=info.has_async_marker,
    )


def resolve_async_method_info(
    frame: StackFrame,
    cache: FrameInfoCache = default_cache,
) -> AsyncMethodInfo:
    """Map *frame* to the method the developer wrote."""
    info = cache.get(frame)
    if not info.is_valid:
        return EMPTY_ASYNC_INFO
    if info.is_generated:
        return _resolve_generated(info)
    return AsyncMethodInfo(
        original_method_name=info.method_name,
        declaring_type_name=info.type_full_name,
        is_async=info.has_async_marker or _returns_awaitable(info, cache),
        is_state_machine_method=False,
        has_async_marker=info.has_async_marker,
    )


def contains_async_frames(
    frames: Iterable[StackFrame] | None,
    cache: FrameInfoCache = default_cache,
) -> bool:
    if not frames:
        return False
    return any(is_async_frame(frame, cache) for frame in frames)


def filter_async_noise(
    frames: Sequence[StackFrame] | None,
    cache: FrameInfoCache = default_cache,
) -> list[StackFrame]:
    """Drop generated frames that are not themselves asynchronous."""
    if not frames:
        return []
    kept = []
    for frame in frames:
        info = resolve_async_method_info(frame, cache)
        if not info.is_state_machine_method or info.is_async:
            kept.append(frame)
    return kept
