import asyncio
import logging
from collections import defaultdict
from functools import partial
from typing import Dict, Set

from api.metrics import metrics
from strategy.execution_types import OrderRequest


logger = logging.getLogger(__name__)


class OrderDispatcher:
    """Fire-and-forget order placement.

    Placements run as background tasks whose completion is only logged. Pending
    tasks are tracked per symbol so the next event for that symbol can wait for
    them to settle before re-reading exchange state.
    """

    def __init__(self, gateway):
        self.gateway = gateway
        self._pending: Dict[str, Set[asyncio.Task]] = defaultdict(set)

    def dispatch(self, kind: str, request: OrderRequest) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(
            self.gateway.place_order(request),
            name=f"{kind}:{request.symbol}",
        )
        self._pending[request.symbol].add(task)
        task.add_done_callback(partial(self._on_done, kind, request))
        return task

    async def settle(self, symbol: str) -> None:
        tasks = list(self._pending.get(symbol, ()))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        tasks = [task for tasks in self._pending.values() for task in tasks]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_done(self, kind: str, request: OrderRequest, task: asyncio.Task) -> None:
        self._pending[request.symbol].discard(task)
        if task.cancelled():
            logger.warning("%s order cancelled before completion: %s", kind, request.describe())
            return
        exc = task.exception()
        if exc is not None:
            metrics.record_order_failed(kind, request.symbol)
            logger.error("%s order failed: %s", kind, exc)
            return
        ticket = task.result()
        if ticket is None:
            metrics.record_order_failed(kind, request.symbol)
            return
        metrics.record_order_placed(kind, request.symbol)
        logger.info("Create %s (order %s)", request.describe(), ticket.id)
