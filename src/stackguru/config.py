"""Structlog pipeline configuration with call-stack enrichment.

Configures structlog to produce logs with standardized fields:
- ``timestamp``: ISO 8601 / RFC 3339 in UTC (``Z`` suffix).
- ``service``: application name.
- ``level``: the log level name.
- ``message``: the log message as a string.
- ``CallStack`` (or the discrete ``MethodName``/``TypeName``/... fields):
  where the event was logged from, when call-stack enrichment is enabled.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable, Mapping, Sequence
from logging.handlers import RotatingFileHandler
from typing import Any

import orjson
import structlog
from structlog.contextvars import merge_contextvars

from stackguru.enricher import CallStackEnricher
from stackguru.settings import CallStackConfig

_CALL_STACK_FORMATS = ("chained", "fields")


def _orjson_serializer(obj: object, **_kw: object) -> str:
    """Serialize *obj* to a JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode()


def _to_logging_level(level_name: str) -> int:
    """Convert a human-readable level name to its :mod:`logging` constant."""
    upper_level = level_name.upper()
    if upper_level == "WARN":
        return logging.WARNING
    result: int = getattr(logging, upper_level, logging.INFO)
    return result


def _stream_isatty(stream: Any) -> bool:
    """Check if *stream* is connected to a terminal."""
    try:
        result: bool = stream.isatty()
        return result
    except (AttributeError, ValueError):
        return False


def _add_service(
    service_name: str,
) -> Callable[[Any, str, dict[str, Any]], dict[str, Any]]:
    """Return a processor that adds a ``service`` field to every log record."""

    def _processor(
        _logger: Any,
        _method_name: str,
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return _processor


def _make_enricher(call_stack: CallStackConfig | bool | None) -> CallStackEnricher | None:
    """Build the enricher for the *call_stack* option of :func:`configure_structlog`."""
    if call_stack is None or call_stack is False:
        return None
    if call_stack is True:
        return CallStackEnricher()
    return CallStackEnricher(call_stack)


def _build_shared_processors(
    service: str,
    enricher: CallStackEnricher | None = None,
) -> list[structlog.types.Processor]:
    """Build the shared processor chain used by both structlog and stdlib records."""
    processors: list[structlog.types.Processor] = [
        merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        _add_service(service),  # type: ignore[list-item]
    ]
    if enricher is not None:
        processors.append(enricher)  # type: ignore[arg-type]
    processors.extend(
        [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.EventRenamer("message"),
        ]
    )
    return processors


def _build_formatter_processors(
    renderer: structlog.types.Processor,
    *,
    json_mode: bool = True,
) -> list[structlog.types.Processor]:
    """Build the ``ProcessorFormatter`` processor chain (final rendering stage)."""
    processors: list[structlog.types.Processor] = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
    ]
    if json_mode:
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)
    return processors


def configure_structlog(
    *,
    service: str = "app",
    level: str = "INFO",
    json_logs: bool = True,
    stream: Any = None,
    clear_handlers: bool = True,
    call_stack: CallStackConfig | bool | None = None,
) -> None:
    """Configure structlog with ``ProcessorFormatter`` for stdlib integration.

    The call-stack enricher runs in the shared chain, so events logged
    through structlog and through plain :mod:`logging` loggers are both
    enriched.

    Parameters
    ----------
    service:
        Application/service name added to every log record.
    level:
        Minimum log level (e.g. ``"DEBUG"``, ``"INFO"``).
    json_logs:
        ``True`` for JSON output, ``False`` for colored console output.
    stream:
        Output stream.  Defaults to ``sys.stdout``.
    clear_handlers:
        If ``True`` (default), remove all existing root logger handlers before
        adding the structlog handler.
    call_stack:
        A :class:`~stackguru.settings.CallStackConfig`, ``True`` for the
        default configuration, or ``None``/``False`` to disable enrichment.
    """
    if stream is None:
        stream = sys.stdout

    if call_stack is not None and not isinstance(call_stack, bool | CallStackConfig):
        msg = f"call_stack must be a CallStackConfig or a bool, got {type(call_stack)!r}"
        raise TypeError(msg)

    shared_processors = _build_shared_processors(service, _make_enricher(call_stack))

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(
            _to_logging_level(level),
        ),
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer(serializer=_orjson_serializer)
        if json_logs
        else structlog.dev.ConsoleRenderer(
            colors=_stream_isatty(stream),
            event_key="message",
        )
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=_build_formatter_processors(renderer, json_mode=json_logs),
        foreign_pre_chain=shared_processors,
    )

    root = logging.getLogger()
    if clear_handlers:
        root.handlers.clear()
    root.setLevel(_to_logging_level(level))

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def call_stack_from_env(environ: Mapping[str, str] | None = None) -> CallStackConfig | None:
    """Build a call-stack configuration from environment variables.

    - ``LOG_CALL_STACK``: ``"0"`` disables enrichment (default ``"1"``).
    - ``LOG_CALL_STACK_FORMAT``: ``"chained"`` (default) or ``"fields"``.
    - ``LOG_CALL_STACK_MAX_FRAMES``: frame limit for the chained format.
    """
    if environ is None:
        environ = os.environ
    if environ.get("LOG_CALL_STACK", "1") == "0":
        return None

    fmt = environ.get("LOG_CALL_STACK_FORMAT", "chained").strip().lower()
    if fmt not in _CALL_STACK_FORMATS:
        msg = f"LOG_CALL_STACK_FORMAT must be one of {_CALL_STACK_FORMATS}, got {fmt!r}"
        raise ValueError(msg)

    raw_max_frames = environ.get("LOG_CALL_STACK_MAX_FRAMES", "").strip()
    try:
        max_frames = int(raw_max_frames) if raw_max_frames else None
    except ValueError:
        msg = f"LOG_CALL_STACK_MAX_FRAMES must be an integer, got {raw_max_frames!r}"
        raise ValueError(msg) from None

    return CallStackConfig().with_call_stack_format(
        use_chained=fmt == "chained",
        max_frames=max_frames,
    )


def setup_structlog(
    *,
    service: str = "app",
    suppress_loggers: Sequence[str] = (),
) -> None:
    """Application-level logging setup.

    Reads environment variables:

    - ``LOG_LEVEL`` (default: ``"INFO"``)
    - ``JSON_LOGS`` (``"0"`` = console, default: ``"1"`` = JSON)
    - ``LOG_PATH`` (optional file sink with 50 MB rotation)
    - ``LOG_CALL_STACK*`` (see :func:`call_stack_from_env`)

    Parameters
    ----------
    service:
        Application/service name added to every log record.
    suppress_loggers:
        Logger names to suppress to WARNING level.
    """
    level = os.environ.get("LOG_LEVEL", "INFO")
    json_logs = os.environ.get("JSON_LOGS", "1") != "0"
    call_stack = call_stack_from_env()

    configure_structlog(
        service=service,
        level=level,
        json_logs=json_logs,
        call_stack=call_stack,
    )

    for name in suppress_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    log_path = os.environ.get("LOG_PATH")
    if log_path:
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=50 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        json_renderer = structlog.processors.JSONRenderer(serializer=_orjson_serializer)
        file_formatter = structlog.stdlib.ProcessorFormatter(
            processors=_build_formatter_processors(json_renderer),
            foreign_pre_chain=_build_shared_processors(service, _make_enricher(call_stack)),
        )
        file_handler.setFormatter(file_formatter)
        logging.getLogger().addHandler(file_handler)
