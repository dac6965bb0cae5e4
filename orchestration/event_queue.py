import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from api.metrics import metrics


logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]
_STOP = object()


class SymbolEventQueue:
    """One FIFO and one consumer task per symbol.

    Events for the same symbol are handled strictly one after another; different
    symbols proceed concurrently. ``before_each`` runs ahead of every event
    (used to let in-flight orders for the symbol settle).
    """

    def __init__(self, before_each: Optional[Callable[[str], Awaitable[None]]] = None):
        self.before_each = before_each
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._closed = False

    def submit(self, symbol: str, handler: Handler, event: Any) -> None:
        if self._closed:
            logger.debug("Queue closed; dropping event for %s", symbol)
            return
        queue = self._queues.get(symbol)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[symbol] = queue
            self._workers[symbol] = asyncio.get_running_loop().create_task(
                self._consume(symbol, queue),
                name=f"events:{symbol}",
            )
        queue.put_nowait((handler, event))
        metrics.update_queue_depth(symbol, queue.qsize())

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for queue in list(self._queues.values()):
            await queue.join()

    async def stop(self) -> None:
        self._closed = True
        for queue in self._queues.values():
            queue.put_nowait(_STOP)
        workers = list(self._workers.values())
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()

    async def _consume(self, symbol: str, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            try:
                if item is _STOP:
                    return
                handler, event = item
                await self._run(symbol, handler, event)
            finally:
                queue.task_done()
                metrics.update_queue_depth(symbol, queue.qsize())

    async def _run(self, symbol: str, handler: Handler, event: Any) -> None:
        try:
            if self.before_each is not None:
                await self.before_each(symbol)
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            metrics.record_handler_error(symbol)
            logger.exception("Event handler for %s failed", symbol)
