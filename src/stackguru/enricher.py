"""Call-stack enrichment processor.

:class:`CallStackEnricher` is a structlog processor that captures the call
stack at the point a log event is emitted and attaches where it happened::

    import structlog
    from stackguru import CallStackEnricher

    structlog.configure(
        processors=[CallStackEnricher(), structlog.processors.JSONRenderer()],
    )

    structlog.get_logger().info("order placed")
    # {"event": "order placed", "CallStack": "OrderService.place_order:42 --> views.checkout:17"}

Properties are only ever *added*: a key already present on the event is
left untouched.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, NamedTuple, Protocol

import structlog

from stackguru.cache import FrameInfoCache, default_cache
from stackguru.formatting import format_chain, format_legacy_fields
from stackguru.frames import StackFrame, capture_stack
from stackguru.pool import ScratchBufferPool, default_pool
from stackguru.selection import select_frames, select_single_frame
from stackguru.settings import CallStackConfig

StackProvider = Callable[[], "Sequence[StackFrame] | None"]


class LogProperty(NamedTuple):
    name: str
    value: Any


class PropertyFactory(Protocol):
    """Creates the properties the enricher attaches to an event."""

    def create_property(self, name: str, value: Any) -> LogProperty: ...


class ScalarPropertyFactory:
    """Attach values as they are."""

    def create_property(self, name: str, value: Any) -> LogProperty:
        return LogProperty(name, value)


def add_property_if_absent(event_dict: dict[str, Any], prop: LogProperty) -> None:
    event_dict.setdefault(prop.name, prop.value)


class CallStackEnricher:
    """Structlog processor adding call-stack properties to every event.

    Parameters
    ----------
    config:
        What to attach and how.  Defaults to :class:`CallStackConfig`.
    cache:
        Method-resolution cache.  Defaults to the process-wide cache.
    pool:
        Scratch buffer pool used for formatting.
    stack_provider:
        Zero-argument callable returning the innermost-first frames to
        inspect.  Defaults to :func:`~stackguru.frames.capture_stack`.
    """

    def __init__(
        self,
        config: CallStackConfig | None = None,
        *,
        cache: FrameInfoCache | None = None,
        pool: ScratchBufferPool | None = None,
        stack_provider: StackProvider | None = None,
    ) -> None:
        if config is None:
            config = CallStackConfig()
        elif not isinstance(config, CallStackConfig):
            msg = f"config must be a CallStackConfig, got {type(config)!r}"
            raise TypeError(msg)
        if stack_provider is not None and not callable(stack_provider):
            msg = f"stack_provider must be callable, got {type(stack_provider)!r}"
            raise TypeError(msg)

        self._config = config
        self._cache = cache if cache is not None else default_cache
        self._pool = pool if pool is not None else default_pool
        self._stack_provider = stack_provider or capture_stack
        self._property_factory = ScalarPropertyFactory()

    @property
    def config(self) -> CallStackConfig:
        return self._config

    def __call__(
        self,
        _logger: Any,
        _method_name: str,
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        self.enrich(event_dict)
        return event_dict

    def enrich(
        self,
        event_dict: dict[str, Any],
        property_factory: PropertyFactory | None = None,
    ) -> None:
        """Attach call-stack properties to *event_dict*.

        Failures are swallowed (after notifying ``config.on_exception``)
        unless ``config.suppress_exceptions`` is off.
        """
        factory = property_factory or self._property_factory
        try:
            frames = self._stack_provider()
            if not frames:
                return
            for name, value in self._build_properties(frames).items():
                add_property_if_absent(event_dict, factory.create_property(name, value))
        except structlog.DropEvent:
            raise
        except Exception as exc:
            if not self._config.suppress_exceptions:
                raise
            self._notify(exc)

    def _build_properties(self, frames: Sequence[StackFrame]) -> dict[str, Any]:
        config = self._config
        if config.use_chained_format:
            selected = select_frames(frames, config, self._cache)
            call_stack = format_chain(selected, config, self._cache, self._pool)
            if not call_stack:
                return {}
            return {config.call_stack_property_name: call_stack}

        frame = select_single_frame(frames, config, self._cache)
        if frame is None:
            return {}
        return format_legacy_fields(frame, config, self._cache)

    def _notify(self, exc: Exception) -> None:
        callback = self._config.on_exception
        if callback is None:
            return
        try:
            callback(exc)
        except Exception:
            pass
