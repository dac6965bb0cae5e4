import logging
from typing import Awaitable, Callable, Dict, Mapping, Optional

from ingest.websocket_client import BybitWebSocketClient

logger = logging.getLogger(__name__)

Handler = Callable[[object], Awaitable[None]]


class MarketDataManager:
    """Route websocket payloads to registered async handlers."""

    _WS_EVENT_MAP = {
        'candle': 'candle',
        'execution': 'execution',
    }

    _ALIASES = {
        'candle_handler': 'candle',
        'execution_handler': 'execution',
    }

    def __init__(self, ws_client: BybitWebSocketClient):
        self.ws_client = ws_client
        self._handlers: Dict[str, Handler] = {}

        self._register_ws_handlers()

    def _register_ws_handlers(self) -> None:
        for ws_event, logical_name in self._WS_EVENT_MAP.items():
            self.ws_client.register_handler(ws_event, self._build_dispatcher(logical_name))

    def register_handlers(self, **handlers: Handler) -> None:
        """Register async callbacks per logical event name."""
        normalized = self._normalize_handlers(handlers)
        for name, handler in normalized.items():
            if handler is None:
                continue
            self._handlers[name] = handler

    def _normalize_handlers(self, handlers: Mapping[str, Handler]) -> Dict[str, Optional[Handler]]:
        normalized: Dict[str, Optional[Handler]] = {}
        for key, handler in handlers.items():
            logical = self._ALIASES.get(key, key)
            if logical not in self._WS_EVENT_MAP.values():
                raise ValueError(f"Unknown market data event {key!r}")
            normalized[logical] = handler
        return normalized

    def _build_dispatcher(self, logical_name: str) -> Handler:
        async def _dispatch(payload):
            handler = self._handlers.get(logical_name)
            if not handler:
                return
            try:
                await handler(payload)
            except Exception:
                logger.exception("Market data handler %s failed", logical_name)

        return _dispatch

    async def start(self):
        await self.ws_client.start()

    async def stop(self):
        await self.ws_client.stop()
