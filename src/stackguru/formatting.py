"""Call-stack rendering.

Two output shapes are supported:

- a chained string, one ``Type.method:line`` segment per frame joined with
  ``" --> "`` (innermost first), like a condensed traceback;
- discrete fields for a single frame (``MethodName``, ``TypeName``,
  ``FileName``, ``LineNumber``, ``ColumnNumber``, ``AssemblyName``).
"""

from __future__ import annotations

import io
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from stackguru.asyncframes import (
    filter_async_noise,
    resolve_async_method_info,
    shorten_annotation,
)
from stackguru.cache import (
    FrameInfoCache,
    ParameterInfo,
    ResolvedMethodInfo,
    default_cache,
    short_type_name,
)
from stackguru.frames import StackFrame
from stackguru.pool import ScratchBufferPool, default_pool
from stackguru.settings import CallStackConfig

CHAIN_SEPARATOR = " --> "


def _parameter_label(param: ParameterInfo, full: bool, cache: FrameInfoCache) -> str:
    if not param.is_annotated:
        return f"{param.kind}{param.name}"
    type_name = cache.get_type_name(param.annotation)
    return f"{param.kind}{type_name if full else shorten_annotation(type_name)}"


def format_method_name(
    info: ResolvedMethodInfo,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
) -> str:
    """Render the method name, with a parameter list if configured.

    Annotated parameters render as their type, unannotated ones as their
    name: ``place_order(Order, quantity)``.
    """
    if not config.include_method_parameters:
        return info.method_name
    if not info.parameters:
        return f"{info.method_name}()"
    labels = ", ".join(
        _parameter_label(p, config.use_full_parameter_types, cache) for p in info.parameters
    )
    return f"{info.method_name}({labels})"


def format_frame(
    frame: StackFrame,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
    pool: ScratchBufferPool = default_pool,
) -> str:
    """Render one chained segment, or ``""`` if there is nothing to show."""
    info = cache.get(frame)
    if not info.is_valid:
        return ""
    if not (config.include_type_name or config.include_method_name):
        return ""

    if info.is_generated:
        logical = resolve_async_method_info(frame, cache)
        method_name = logical.original_method_name
        type_full_name = logical.declaring_type_name
    else:
        method_name = format_method_name(info, config, cache)
        type_full_name = info.type_full_name

    def _write(buf: io.StringIO) -> None:
        if config.include_type_name:
            if config.use_full_type_name:
                buf.write(type_full_name)
            else:
                buf.write(short_type_name(type_full_name))
            buf.write(".")
        buf.write(method_name)
        if config.include_line_number and frame.lineno > 0:
            buf.write(f":{frame.lineno}")

    return pool.render(_write)


def format_chain(
    frames: Sequence[StackFrame] | None,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
    pool: ScratchBufferPool = default_pool,
) -> str:
    """Join the rendered *frames* with :data:`CHAIN_SEPARATOR`.

    Frames that render empty are left out, so the result never contains
    doubled or dangling separators.
    """
    if not frames:
        return ""
    if config.filter_async_noise:
        frames = filter_async_noise(frames, cache)

    def _write(buf: io.StringIO) -> None:
        first = True
        for frame in frames:
            segment = format_frame(frame, config, cache, pool)
            if not segment:
                continue
            if not first:
                buf.write(CHAIN_SEPARATOR)
            buf.write(segment)
            first = False

    return pool.render(_write)


def format_legacy_fields(
    frame: StackFrame,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
) -> dict[str, Any]:
    """Render *frame* as discrete, individually named fields.

    Only enabled fields with a known value are included; line and column
    numbers stay integers.
    """
    info = cache.get(frame)
    if not info.is_valid:
        return {}

    # Generated code reports the function that owns it.
    type_full_name, type_name = info.type_full_name, info.type_name
    if info.is_generated:
        logical = resolve_async_method_info(frame, cache)
        type_full_name = logical.declaring_type_name
        type_name = short_type_name(type_full_name)

    result: dict[str, Any] = {}
    if config.include_method_name:
        if info.is_generated:
            method_name = logical.original_method_name
        else:
            method_name = format_method_name(info, config, cache)
        result[config.method_name_property_name] = method_name

    if config.include_type_name and type_full_name:
        result[config.type_name_property_name] = (
            type_full_name if config.use_full_type_name else type_name
        )

    if config.include_file_name and frame.filename:
        result[config.file_name_property_name] = (
            frame.filename if config.use_full_file_name else Path(frame.filename).name
        )

    if config.include_line_number and frame.lineno > 0:
        result[config.line_number_property_name] = frame.lineno

    if config.include_column_number:
        column = frame.column
        if column > 0:
            result[config.column_number_property_name] = column

    if config.include_assembly_name:
        package = info.module.partition(".")[0]
        if package:
            result[config.assembly_name_property_name] = package

    return result
