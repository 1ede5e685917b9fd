"""Call-stack enrichment demo.

Run with ``python examples/call_stack_demo.py``; set ``JSON_LOGS=0`` for
console output or ``LOG_CALL_STACK_FORMAT=fields`` for discrete properties.
"""

from __future__ import annotations

import asyncio
import logging

import structlog

from stackguru import setup_structlog

log = structlog.get_logger(__name__)


class OrderRepository:
    def save(self, order_id: int) -> None:
        log.info("order saved", order_id=order_id)


class OrderService:
    def __init__(self) -> None:
        self._repository = OrderRepository()

    def place_order(self, order_id: int, quantity: int) -> None:
        log.info("placing order", order_id=order_id, quantity=quantity)
        self._repository.save(order_id)

    async def place_order_async(self, order_id: int) -> None:
        await asyncio.sleep(0)
        log.info("placing order asynchronously", order_id=order_id)


def legacy_module_logging() -> None:
    logging.getLogger("legacy").warning("stdlib records are enriched too")


def main() -> None:
    setup_structlog(service="call-stack-demo")

    service = OrderService()
    service.place_order(1, quantity=3)
    asyncio.run(service.place_order_async(2))
    legacy_module_logging()


if __name__ == "__main__":
    main()
