"""Tests for stackguru.enricher."""

from __future__ import annotations

import asyncio
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest
import structlog
from structlog.testing import LogCapture

from stackguru.cache import FrameInfoCache
from stackguru.enricher import (
    CallStackEnricher,
    LogProperty,
    ScalarPropertyFactory,
    add_property_if_absent,
)
from stackguru.settings import CallStackConfig

MODULE = __name__.rpartition(".")[2]


def _capture(config: CallStackConfig | None = None) -> LogCapture:
    capture = LogCapture()
    structlog.configure(processors=[CallStackEnricher(config), capture])
    return capture


def log_from_function() -> int:
    line = sys._getframe().f_lineno + 1
    structlog.get_logger().info("hello")
    return line


def log_with_parameters(order_id: int, note: str) -> int:
    line = sys._getframe().f_lineno + 1
    structlog.get_logger().info("with parameters", order_id=order_id)
    return line


class OrderService:
    def place_order(self, order_id: int, quantity: int) -> int:
        line = sys._getframe().f_lineno + 1
        structlog.get_logger().info("order placed", order_id=order_id)
        return line

    def checkout(self) -> tuple[int, int]:
        line = sys._getframe().f_lineno + 1
        inner = self.place_order(1, 2)
        return inner, line


class Worker:
    def run_forever(self) -> int:
        line = sys._getframe().f_lineno + 1
        structlog.get_logger().info("tick")
        return line


async def log_from_coroutine() -> int:
    await asyncio.sleep(0)
    line = sys._getframe().f_lineno + 1
    structlog.get_logger().info("async")
    return line


def _price(item: int) -> int:
    structlog.get_logger().info("pricing", item=item)
    return item


def total(items: list[int]) -> int:
    return sum(_price(item) for item in items)


def _segments(event: dict[str, Any]) -> list[str]:
    return event["CallStack"].split(" --> ")


class TestChainedFormat:
    def test_module_function(self) -> None:
        capture = _capture()
        line = log_from_function()
        assert _segments(capture.entries[0])[0] == f"{MODULE}.log_from_function:{line}"

    def test_method_of_class(self) -> None:
        capture = _capture()
        line = OrderService().place_order(7, 1)
        assert _segments(capture.entries[0])[0] == f"OrderService.place_order:{line}"

    def test_nested_calls_innermost_first(self) -> None:
        capture = _capture()
        inner, outer = OrderService().checkout()
        segments = _segments(capture.entries[0])
        assert segments[:2] == [
            f"OrderService.place_order:{inner}",
            f"OrderService.checkout:{outer}",
        ]
        assert segments[2].startswith("TestChainedFormat.test_nested_calls_innermost_first:")

    def test_method_named_like_event_loop_entry_point(self) -> None:
        capture = _capture(CallStackConfig(max_frames=1))
        line = Worker().run_forever()
        assert capture.entries[0]["CallStack"] == f"Worker.run_forever:{line}"

    def test_logging_frames_are_excluded(self) -> None:
        capture = _capture()
        log_from_function()
        call_stack = capture.entries[0]["CallStack"]
        assert "structlog" not in call_stack
        assert "CallStackEnricher" not in call_stack
        assert "pytest" not in call_stack
        assert "pluggy" not in call_stack

    def test_max_frames(self) -> None:
        capture = _capture(CallStackConfig(max_frames=1))
        line = OrderService().place_order(7, 1)
        assert capture.entries[0]["CallStack"] == f"OrderService.place_order:{line}"

    def test_max_frames_bounds_separators(self) -> None:
        capture = _capture(CallStackConfig(max_frames=2))
        OrderService().checkout()
        assert capture.entries[0]["CallStack"].count(" --> ") == 1

    def test_frame_offset(self) -> None:
        capture = _capture(CallStackConfig(frame_offset=1, max_frames=1))
        _, outer = OrderService().checkout()
        assert capture.entries[0]["CallStack"] == f"OrderService.checkout:{outer}"

    def test_method_parameters(self) -> None:
        config = CallStackConfig(max_frames=1).with_method_parameters()
        capture = _capture(config)
        line = OrderService().place_order(7, 1)
        assert capture.entries[0]["CallStack"] == f"OrderService.place_order(int, int):{line}"

    def test_skip_type(self) -> None:
        config = CallStackConfig(max_frames=1).skip_type(f"{__name__}.OrderService")
        capture = _capture(config)
        OrderService().place_order(7, 1)
        assert capture.entries[0]["CallStack"].startswith("TestChainedFormat.test_skip_type:")

    def test_custom_property_name(self) -> None:
        capture = _capture(CallStackConfig().with_call_stack_format(property_name="Origin"))
        log_from_function()
        assert "Origin" in capture.entries[0]
        assert "CallStack" not in capture.entries[0]

    def test_coroutine(self) -> None:
        capture = _capture(CallStackConfig(max_frames=1))
        line = asyncio.run(log_from_coroutine())
        assert capture.entries[0]["CallStack"] == f"{MODULE}.log_from_coroutine:{line}"

    def test_generator_expression_is_hidden(self) -> None:
        # The frame limit counts the generated frame before it is hidden.
        capture = _capture(CallStackConfig(max_frames=3))
        total([1])
        segments = _segments(capture.entries[0])
        assert len(segments) == 2
        assert segments[0].startswith(f"{MODULE}._price:")
        assert segments[1].startswith(f"{MODULE}.total:")

    def test_generator_expression_is_shown_unfiltered(self) -> None:
        capture = _capture(CallStackConfig(max_frames=3, filter_async_noise=False))
        total([1])
        segments = _segments(capture.entries[0])
        assert segments[0].startswith(f"{MODULE}._price:")
        assert segments[1].startswith(f"{MODULE}.total:")
        assert segments[2].startswith(f"{MODULE}.total:")


class TestLegacyFormat:
    def test_generator_expression_reports_owning_function(self) -> None:
        capture = _capture(CallStackConfig(use_chained_format=False))
        total([1])
        event = capture.entries[0]
        assert event["MethodName"] == "_price"

        capture = _capture(CallStackConfig(use_chained_format=False, frame_offset=1))
        total([1])
        event = capture.entries[0]
        assert event["MethodName"] == "total"
        assert event["TypeName"] == MODULE

    def test_discrete_fields(self) -> None:
        capture = _capture(CallStackConfig(use_chained_format=False))
        line = OrderService().place_order(7, 1)
        event = capture.entries[0]
        assert event["MethodName"] == "place_order"
        assert event["TypeName"] == "OrderService"
        assert event["FileName"] == "test_enricher.py"
        assert event["LineNumber"] == line
        assert "CallStack" not in event

    def test_optional_fields(self) -> None:
        config = CallStackConfig(
            use_chained_format=False,
            include_column_number=True,
            include_assembly_name=True,
        )
        capture = _capture(config)
        log_from_function()
        event = capture.entries[0]
        assert isinstance(event["ColumnNumber"], int)
        assert event["ColumnNumber"] > 0
        assert event["AssemblyName"] == __name__.partition(".")[0]

    def test_custom_property_names(self) -> None:
        config = (
            CallStackConfig(use_chained_format=False)
            .with_includes(method_name=True, type_name=True, file_name=False, line_number=False)
            .with_property_names(method_name="CustomMethod", type_name="CustomType")
        )
        capture = _capture(config)
        OrderService().place_order(7, 1)
        event = capture.entries[0]
        assert event["CustomMethod"] == "place_order"
        assert event["CustomType"] == "OrderService"
        assert "MethodName" not in event
        assert "TypeName" not in event

    def test_parameters(self) -> None:
        config = CallStackConfig(use_chained_format=False).with_method_parameters()
        capture = _capture(config)
        log_with_parameters(1, "rush")
        assert capture.entries[0]["MethodName"] == "log_with_parameters(int, str)"

    def test_frame_offset(self) -> None:
        capture = _capture(CallStackConfig(use_chained_format=False, frame_offset=1))
        _, outer = OrderService().checkout()
        assert capture.entries[0]["MethodName"] == "checkout"
        assert capture.entries[0]["LineNumber"] == outer


class TestAddIfAbsent:
    def test_existing_keys_are_kept(self) -> None:
        capture = _capture()
        structlog.get_logger().info("preset", CallStack="caller-supplied")
        assert capture.entries[0]["CallStack"] == "caller-supplied"

    def test_existing_legacy_keys_are_kept(self) -> None:
        capture = _capture(CallStackConfig(use_chained_format=False))
        structlog.get_logger().info("preset", MethodName="custom")
        assert capture.entries[0]["MethodName"] == "custom"
        assert "TypeName" in capture.entries[0]

    def test_helper(self) -> None:
        event: dict[str, Any] = {"a": 1}
        add_property_if_absent(event, LogProperty("a", 2))
        add_property_if_absent(event, LogProperty("b", 3))
        assert event == {"a": 1, "b": 3}


class _BrokenFactory:
    def create_property(self, name: str, value: Any) -> LogProperty:
        raise RuntimeError("factory failed")


class TestErrorHandling:
    def test_failures_are_suppressed_by_default(self) -> None:
        def _provider() -> list:
            raise RuntimeError("no stack")

        enricher = CallStackEnricher(stack_provider=_provider)
        event: dict[str, Any] = {"event": "x"}
        assert enricher(None, "info", event) == {"event": "x"}

    def test_callback_receives_exception(self) -> None:
        errors: list[Exception] = []
        exc = RuntimeError("no stack")

        def _provider() -> list:
            raise exc

        config = CallStackConfig().with_exception_handling(True, errors.append)
        CallStackEnricher(config, stack_provider=_provider)(None, "info", {})
        assert errors == [exc]

    def test_failing_callback_is_contained(self) -> None:
        def _provider() -> list:
            raise RuntimeError("no stack")

        def _callback(exc: Exception) -> None:
            raise ValueError("callback failed")

        config = CallStackConfig(on_exception=_callback)
        CallStackEnricher(config, stack_provider=_provider)(None, "info", {})

    def test_failures_propagate_when_not_suppressed(self) -> None:
        errors: list[Exception] = []

        def _provider() -> list:
            raise RuntimeError("no stack")

        config = CallStackConfig().with_exception_handling(False, errors.append)
        with pytest.raises(RuntimeError, match="no stack"):
            CallStackEnricher(config, stack_provider=_provider)(None, "info", {})
        assert errors == []

    def test_property_factory_failure(self) -> None:
        errors: list[Exception] = []
        config = CallStackConfig(on_exception=errors.append)
        event: dict[str, Any] = {}
        CallStackEnricher(config).enrich(event, _BrokenFactory())
        assert event == {}
        assert isinstance(errors[0], RuntimeError)

    def test_property_factory_failure_not_suppressed(self) -> None:
        config = CallStackConfig(suppress_exceptions=False)
        with pytest.raises(RuntimeError, match="factory failed"):
            CallStackEnricher(config).enrich({}, _BrokenFactory())

    def test_drop_event_propagates(self) -> None:
        def _provider() -> list:
            raise structlog.DropEvent

        with pytest.raises(structlog.DropEvent):
            CallStackEnricher(stack_provider=_provider)(None, "info", {})


class TestEnricher:
    def test_default_config(self) -> None:
        assert CallStackEnricher().config == CallStackConfig()

    def test_rejects_invalid_config(self) -> None:
        with pytest.raises(TypeError, match="CallStackConfig"):
            CallStackEnricher({"max_frames": 3})  # type: ignore[arg-type]

    def test_rejects_invalid_stack_provider(self) -> None:
        with pytest.raises(TypeError, match="stack_provider"):
            CallStackEnricher(stack_provider="frames")  # type: ignore[arg-type]

    def test_returns_same_event_dict(self) -> None:
        event: dict[str, Any] = {"event": "x"}
        assert CallStackEnricher()(None, "info", event) is event

    def test_empty_stack(self) -> None:
        event: dict[str, Any] = {"event": "x"}
        CallStackEnricher(stack_provider=list)(None, "info", event)
        assert event == {"event": "x"}

    def test_none_stack(self) -> None:
        event: dict[str, Any] = {}
        CallStackEnricher(stack_provider=lambda: None)(None, "info", event)
        assert event == {}

    def test_custom_stack_provider(self, make_frame, cache: FrameInfoCache) -> None:
        frames = [
            make_frame("BoundLogger.info", "structlog._native"),
            make_frame("OrderService.place_order", "app.services", lineno=42),
            make_frame("OrderView.post", "app.web", lineno=17),
        ]
        enricher = CallStackEnricher(cache=cache, stack_provider=lambda: frames)
        event = enricher(None, "info", {})
        assert event["CallStack"] == "OrderService.place_order:42 --> OrderView.post:17"

    def test_only_logging_frames(self, make_frame, cache: FrameInfoCache) -> None:
        frames = [make_frame("BoundLogger.info", "structlog._native")]
        enricher = CallStackEnricher(cache=cache, stack_provider=lambda: frames)
        assert enricher(None, "info", {}) == {}

        legacy = CallStackEnricher(
            CallStackConfig(use_chained_format=False),
            cache=cache,
            stack_provider=lambda: frames,
        )
        assert legacy(None, "info", {}) == {}

    def test_scalar_property_factory(self) -> None:
        prop = ScalarPropertyFactory().create_property("LineNumber", 42)
        assert prop == LogProperty("LineNumber", 42)

    def test_concurrent_enrichment(self) -> None:
        capture = _capture(CallStackConfig(max_frames=1))
        service = OrderService()
        with ThreadPoolExecutor(max_workers=8) as pool:
            lines = list(pool.map(lambda i: service.place_order(i, 1), range(50)))
        assert len(capture.entries) == 50
        expected = f"OrderService.place_order:{lines[0]}"
        assert all(e["CallStack"] == expected for e in capture.entries)
