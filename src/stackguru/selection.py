"""Frame filtering and selection.

Given a raw, innermost-first call stack, decide which frames are
application code worth reporting.  A frame is skipped when any of these
hold, checked in order:

1. its method or module cannot be resolved;
2. it belongs to the logging framework (``structlog``, stdlib ``logging``);
3. it belongs to this package;
4. it belongs to known infrastructure (import machinery, ``asyncio``,
   ``threading``, test runners, dependency-injection containers);
5. its method is a known infrastructure entry point of the module that
   defines it;
6. its type name starts with a configured skip namespace;
7. its type name equals a configured skip type.

If that leaves nothing, the frames are filtered again skipping only the
logging framework, so an over-eager skip list never blanks the output.

Prefixes are matched with :meth:`str.startswith` against the type name plus
a trailing ``"."``, so ``"threading."`` also covers functions defined at the
top level of the ``threading`` module.
"""

from __future__ import annotations

from collections.abc import Sequence

from stackguru.cache import FrameInfoCache, ResolvedMethodInfo, default_cache
from stackguru.frames import StackFrame
from stackguru.settings import CallStackConfig

LOGGING_NAMESPACES: tuple[str, ...] = ("structlog.", "logging.")

ENRICHER_NAMESPACE = "stackguru."

INFRASTRUCTURE_NAMESPACES: tuple[str, ...] = (
    # interpreter and import machinery
    "importlib.",
    "_frozen_importlib.",
    "_frozen_importlib_external.",
    "runpy.",
    # async and threading machinery
    "asyncio.",
    "concurrent.futures.",
    "threading.",
    "selectors.",
    "contextlib.",
    "functools.",
    "anyio.",
    # test runners
    "_pytest.",
    "pytest.",
    "pluggy.",
    "unittest.",
    "pytest_asyncio.",
    # dependency injection
    "dependency_injector.",
    "injector.",
    "punq.",
    "lagom.",
    "dishka.",
)

#: Infrastructure entry points, keyed by the module that defines them.  A
#: method of the same name in any other module is application code.
INFRASTRUCTURE_METHODS: dict[str, frozenset[str]] = {
    "_frozen_importlib": frozenset({"_call_with_frames_removed"}),
    "importlib._bootstrap": frozenset({"_call_with_frames_removed"}),
    "threading": frozenset({"_bootstrap", "_bootstrap_inner"}),
    "runpy": frozenset({"_run_code", "_run_module_as_main"}),
    "asyncio.base_events": frozenset({"_run_once", "run_forever", "run_until_complete"}),
}

INFRASTRUCTURE_METHOD_PREFIXES: dict[str, tuple[str, ...]] = {
    "asyncio.tasks": ("__step", "__wakeup"),
}


def _scope(info: ResolvedMethodInfo) -> str:
    return info.type_full_name + "."


def should_skip_frame(
    frame: StackFrame,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
) -> bool:
    """Return ``True`` if *frame* is infrastructure or excluded by *config*."""
    info = cache.get(frame)
    if not info.is_valid:
        return True

    scope = _scope(info)
    if scope.startswith(LOGGING_NAMESPACES):
        return True
    if scope.startswith(ENRICHER_NAMESPACE):
        return True
    if scope.startswith(INFRASTRUCTURE_NAMESPACES):
        return True

    if info.method_name in INFRASTRUCTURE_METHODS.get(info.module, ()):
        return True
    if info.method_name.startswith(INFRASTRUCTURE_METHOD_PREFIXES.get(info.module, ())):
        return True

    if config.skip_namespaces and scope.startswith(tuple(config.skip_namespaces)):
        return True
    return info.type_full_name in config.skip_types


def is_logging_frame(frame: StackFrame, cache: FrameInfoCache = default_cache) -> bool:
    """Return ``True`` if *frame* is unresolvable or part of the logging stack."""
    info = cache.get(frame)
    if not info.is_valid:
        return True
    scope = _scope(info)
    return scope.startswith(LOGGING_NAMESPACES) or scope.startswith(ENRICHER_NAMESPACE)


def filter_frames(
    frames: Sequence[StackFrame] | None,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
) -> list[StackFrame]:
    """Return the relevant frames of *frames*, preserving their order."""
    if not frames:
        return []
    relevant = [f for f in frames if not should_skip_frame(f, config, cache)]
    if not relevant:
        relevant = [f for f in frames if not is_logging_frame(f, cache)]
    return relevant


def _start_index(config: CallStackConfig, count: int) -> int:
    return min(config.frame_offset, count - 1)


def select_single_frame(
    frames: Sequence[StackFrame] | None,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
) -> StackFrame | None:
    """Return the relevant frame at ``config.frame_offset`` (clamped)."""
    relevant = filter_frames(frames, config, cache)
    if not relevant:
        return None
    return relevant[_start_index(config, len(relevant))]


def select_frames(
    frames: Sequence[StackFrame] | None,
    config: CallStackConfig,
    cache: FrameInfoCache = default_cache,
) -> list[StackFrame]:
    """Return the relevant frames starting at ``config.frame_offset``.

    At most ``config.max_frames`` frames are returned when it is positive.
    """
    relevant = filter_frames(frames, config, cache)
    if not relevant:
        return []
    selected = relevant[_start_index(config, len(relevant)) :]
    if config.max_frames > 0:
        selected = selected[: config.max_frames]
    return selected
