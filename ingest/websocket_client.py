import asyncio
import hashlib
import hmac
import json
import logging
import random
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional

import websockets

from api.metrics import metrics
from config import config
from monitoring.async_utils import cancel_and_wait, run_tasks_with_cleanup
from strategy.execution_types import Candle, CandleEvent, ExecutionEvent


logger = logging.getLogger(__name__)

PUBLIC_URLS = {
    False: "wss://stream.bybit.com/v5/public/linear",
    True: "wss://stream-testnet.bybit.com/v5/public/linear",
}
PRIVATE_URLS = {
    False: "wss://stream.bybit.com/v5/private",
    True: "wss://stream-testnet.bybit.com/v5/private",
}
# Bybit accepts at most 10 topics per subscribe request
MAX_ARGS_PER_SUBSCRIBE = 10


class BybitWebSocketClient:
    """Kline and execution streams for a fixed set of symbols."""

    def __init__(
        self,
        symbols: Iterable[str],
        interval: str,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        testnet: Optional[bool] = None,
    ):
        self.symbols = list(symbols)
        self.interval = interval
        self.testnet = bool(config.exchange.get("testnet", True)) if testnet is None else testnet
        self.api_key = api_key or _clean(config.exchange.get("api_key"))
        self.api_secret = api_secret or _clean(config.exchange.get("api_secret"))
        self.reconnect_backoff = list(config.websocket.get("reconnect_backoff", [1, 2, 5, 10, 30]))
        self.ping_interval = float(config.websocket.get("ping_interval_s", 20))
        self.stream_timeout = float(config.websocket.get("stream_stale_s", 90))

        self.handlers: Dict[str, Callable] = {}
        self.running = False

    def register_handler(self, stream_type: str, handler: Callable):
        self.handlers[stream_type] = handler

    @property
    def public_url(self) -> str:
        return PUBLIC_URLS[self.testnet]

    @property
    def private_url(self) -> str:
        return PRIVATE_URLS[self.testnet]

    def kline_topics(self) -> List[str]:
        return [f"kline.{self.interval}.{symbol}" for symbol in self.symbols]

    def auth_payload(self, expires_ms: Optional[int] = None) -> Dict[str, Any]:
        if not self.api_key or not self.api_secret:
            raise RuntimeError("Bybit API key/secret required for the private stream")
        expires = expires_ms or int((time.time() + 10) * 1000)
        signature = hmac.new(
            self.api_secret.encode("utf-8"),
            f"GET/realtime{expires}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return {"op": "auth", "args": [self.api_key, expires, signature]}

    @staticmethod
    def parse_kline_message(message: Dict[str, Any]) -> List[CandleEvent]:
        topic = message.get("topic") or ""
        parts = topic.split(".")
        if len(parts) != 3 or parts[0] != "kline":
            return []
        _, topic_interval, symbol = parts
        events = []
        for item in message.get("data") or []:
            candle = Candle(
                symbol=symbol,
                start=int(item["start"]) // 1000,
                open=float(item["open"]),
                high=float(item["high"]),
                low=float(item["low"]),
                close=float(item["close"]),
                volume=float(item.get("volume") or 0.0),
                confirmed=bool(item.get("confirm")),
                interval=str(item.get("interval") or topic_interval),
            )
            events.append(CandleEvent(symbol=symbol, candle=candle, topic_interval=topic_interval))
        return events

    @staticmethod
    def parse_execution_message(message: Dict[str, Any]) -> List[ExecutionEvent]:
        """One event per symbol, preserving the order executions were reported in."""
        if message.get("topic") != "execution":
            return []
        grouped: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for item in message.get("data") or []:
            symbol = item.get("symbol")
            if not symbol:
                continue
            order = {
                "symbol": symbol,
                "side": item.get("side"),
                "order_id": item.get("orderId"),
                "order_type": item.get("orderType"),
                "exec_type": item.get("execType"),
                "exec_price": _as_float(item.get("execPrice")),
                "exec_qty": _as_float(item.get("execQty")),
                "leaves_qty": _as_float(item.get("leavesQty")),
                "info": item,
            }
            grouped.setdefault(symbol, []).append(order)
        return [ExecutionEvent(orders=orders) for orders in grouped.values()]

    async def _handle_reconnect(self, stream: str, backoff_index: int) -> None:
        backoff_index = min(backoff_index, len(self.reconnect_backoff) - 1)
        delay = self.reconnect_backoff[backoff_index] + random.uniform(0, 0.5)
        metrics.record_reconnect(stream)
        logger.info("Reconnecting %s stream in %.1fs", stream, delay)
        await asyncio.sleep(delay)

    async def _ping_loop(self, ws) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            await ws.send(json.dumps({"op": "ping"}))

    async def _subscribe(self, ws, topics: List[str]) -> None:
        for i in range(0, len(topics), MAX_ARGS_PER_SUBSCRIBE):
            chunk = topics[i:i + MAX_ARGS_PER_SUBSCRIBE]
            await ws.send(json.dumps({"op": "subscribe", "args": chunk}))

    def _check_op_response(self, stream: str, data: Dict[str, Any]) -> None:
        op = data.get("op")
        if op in ("pong", "ping"):
            return
        if data.get("success") is False:
            if op == "auth":
                raise ConnectionError(f"{stream} authentication rejected: {data.get('ret_msg')}")
            logger.error("%s %s failed: %s", stream, op, data.get("ret_msg"))
        elif op in ("auth", "subscribe"):
            logger.info("%s %s ok", stream, op)

    async def _run_stream(self, stream: str, url: str, topics: List[str], private: bool = False):
        backoff_index = 0
        while self.running:
            ping_task: Optional[asyncio.Task] = None
            try:
                async with websockets.connect(url, ping_interval=None) as ws:
                    if private:
                        await ws.send(json.dumps(self.auth_payload()))
                    await self._subscribe(ws, topics)
                    ping_task = asyncio.create_task(self._ping_loop(ws))
                    logger.info("Connection open with %s stream", stream)

                    while self.running:
                        try:
                            raw = await asyncio.wait_for(ws.recv(), timeout=self.stream_timeout)
                        except asyncio.TimeoutError:
                            logger.warning("%s stream stale; reconnecting", stream)
                            raise

                        data = json.loads(raw)
                        backoff_index = 0

                        if "op" in data:
                            self._check_op_response(stream, data)
                            continue
                        await self._dispatch(stream, data)

            except asyncio.CancelledError:
                break
            except Exception as e:
                if not self.running:
                    break
                logger.error("%s stream error: %s", stream, e)
                await self._handle_reconnect(stream, backoff_index)
                backoff_index = min(backoff_index + 1, len(self.reconnect_backoff) - 1)
            finally:
                await cancel_and_wait(ping_task)
        logger.info("Connection closed with %s stream", stream)

    async def _dispatch(self, stream: str, data: Dict[str, Any]) -> None:
        if stream == "kline":
            handler = self.handlers.get("candle")
            events = self.parse_kline_message(data)
        else:
            handler = self.handlers.get("execution")
            events = self.parse_execution_message(data)
        if handler is None:
            return
        for event in events:
            await handler(event)

    async def start(self):
        self.running = True
        tasks = [asyncio.create_task(self._run_stream("kline", self.public_url, self.kline_topics()))]
        if self.api_key and self.api_secret:
            tasks.append(asyncio.create_task(
                self._run_stream("execution", self.private_url, ["execution"], private=True)
            ))
        else:
            logger.warning("No Bybit API credentials; execution stream disabled")
        await run_tasks_with_cleanup(tasks)

    async def stop(self):
        self.running = False


def _as_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _clean(value: Optional[str]) -> Optional[str]:
    if not value or (str(value).startswith("${") and str(value).endswith("}")):
        return None
    return value
