"""stackguru: call-stack enrichment for structlog."""

from stackguru.asyncframes import (
    AsyncMethodInfo,
    contains_async_frames,
    filter_async_noise,
    is_async_frame,
    is_state_machine_frame,
    resolve_async_method_info,
)
from stackguru.cache import FrameInfoCache, ResolvedMethodInfo, default_cache
from stackguru.config import call_stack_from_env, configure_structlog, setup_structlog
from stackguru.enricher import CallStackEnricher, LogProperty, ScalarPropertyFactory
from stackguru.formatting import CHAIN_SEPARATOR, format_chain, format_legacy_fields
from stackguru.frames import StackFrame, capture_stack
from stackguru.pool import ScratchBufferPool, default_pool
from stackguru.selection import filter_frames, select_frames, select_single_frame
from stackguru.settings import CallStackConfig

__version__ = "0.1.0"

__all__ = [
    "CHAIN_SEPARATOR",
    "AsyncMethodInfo",
    "CallStackConfig",
    "CallStackEnricher",
    "FrameInfoCache",
    "LogProperty",
    "ResolvedMethodInfo",
    "ScalarPropertyFactory",
    "ScratchBufferPool",
    "StackFrame",
    "call_stack_from_env",
    "capture_stack",
    "configure_structlog",
    "contains_async_frames",
    "default_cache",
    "default_pool",
    "filter_async_noise",
    "filter_frames",
    "format_chain",
    "format_legacy_fields",
    "is_async_frame",
    "is_state_machine_frame",
    "resolve_async_method_info",
    "select_frames",
    "select_single_frame",
    "setup_structlog",
]
