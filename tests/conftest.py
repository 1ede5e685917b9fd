"""Shared fixtures for stackguru tests."""

from __future__ import annotations

import logging
from collections.abc import Callable

import pytest
import structlog

from stackguru.cache import FrameInfoCache
from stackguru.frames import StackFrame

FrameFactory = Callable[..., StackFrame]


def _template() -> None:
    pass


@pytest.fixture(autouse=True)
def _reset_logging() -> None:  # type: ignore[misc]
    """Reset root logger handlers and level after each test."""
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level

    yield  # type: ignore[misc]

    root.handlers[:] = original_handlers
    root.setLevel(original_level)


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:  # type: ignore[misc]
    """Reset structlog configuration after each test."""
    yield  # type: ignore[misc]
    structlog.reset_defaults()


@pytest.fixture
def cache() -> FrameInfoCache:
    return FrameInfoCache()


@pytest.fixture
def make_frame() -> FrameFactory:
    """Build synthetic frames for an arbitrary qualified name and module.

    The code object is a copy of an empty function with its names, file and
    flags replaced, so it resolves like real code without having to exist.
    """

    def _make(
        qualname: str,
        module: str | None = "app.services",
        *,
        lineno: int = 10,
        filename: str | None = None,
        flags: int = 0,
    ) -> StackFrame:
        if filename is None:
            filename = f"/srv/{(module or 'unknown').replace('.', '/')}.py"
        template = _template.__code__
        code = template.replace(
            co_name=qualname.rpartition(".")[2],
            co_qualname=qualname,
            co_filename=filename,
            co_flags=template.co_flags | flags,
        )
        return StackFrame(code=code, module=module, filename=filename, lineno=lineno)

    return _make
