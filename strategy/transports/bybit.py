import asyncio
from typing import Any, Dict, List, Optional

from ingest.bybit_rest import BybitAPIError, BybitRESTClient

from risk.position_sizer import quantity_precision
from strategy.errors import PrecisionUnresolvable
from strategy.execution_types import Candle, OrderRequest, OrderTicket, Position, SymbolInfo


__all__ = ["BybitTransport", "BybitAPIError"]

# Hedge mode ("BothSide"): separate long and short positions per symbol
BOTH_SIDE_MODE = 3
# Returned when the requested mode/leverage is already in effect
NOT_MODIFIED_CODES = (110025, 110043)


class BybitTransport:
    """Thin adapter around Bybit v5 REST with typed responses."""

    def __init__(self, category: str = "linear", rest: Optional[BybitRESTClient] = None) -> None:
        self.category = category
        self._rest: Optional[BybitRESTClient] = rest
        self._lock = asyncio.Lock()

    def _client(self) -> BybitRESTClient:
        if self._rest is None:
            self._rest = BybitRESTClient()
        return self._rest

    async def fetch_symbol_info(self, symbol: str) -> Optional[SymbolInfo]:
        rest = self._client()
        data = await rest.get(
            "/v5/market/instruments-info",
            params={"category": self.category, "symbol": symbol},
        )
        items = data.get("list") if isinstance(data, dict) else None
        if not items:
            return None
        return self._parse_symbol_info(items[0])

    async def fetch_klines(
        self,
        symbol: str,
        interval: str,
        limit: int = 200,
        start_ms: Optional[int] = None,
    ) -> List[Candle]:
        rest = self._client()
        data = await rest.get(
            "/v5/market/kline",
            params={
                "category": self.category,
                "symbol": symbol,
                "interval": interval,
                "start": start_ms,
                "limit": limit,
            },
        )
        rows = data.get("list") if isinstance(data, dict) else None
        candles = [self._parse_kline(symbol, interval, row) for row in rows or []]
        # v5 returns newest first
        candles.sort(key=lambda c: c.start)
        return candles

    async def fetch_position(self, symbol: str, position_idx: int = 1) -> Position:
        rest = self._client()
        data = await rest.get(
            "/v5/position/list",
            params={"category": self.category, "symbol": symbol},
            signed=True,
        )
        items = data.get("list") if isinstance(data, dict) else None
        for item in items or []:
            if item.get("symbol") != symbol:
                continue
            idx = self._as_int(item.get("positionIdx"))
            if idx not in (None, 0, position_idx):
                continue
            return self._parse_position(item)
        return Position.flat(symbol)

    async def fetch_open_orders(self, symbol: str) -> List[OrderTicket]:
        rest = self._client()
        data = await rest.get(
            "/v5/order/realtime",
            params={"category": self.category, "symbol": symbol},
            signed=True,
        )
        items = data.get("list") if isinstance(data, dict) else None
        orders: List[OrderTicket] = []
        for item in items or []:
            ticket = self._parse_order(item)
            if ticket:
                orders.append(ticket)
        return orders

    async def fetch_wallet_balance(self, coin: str, account_type: str = "UNIFIED") -> Optional[float]:
        rest = self._client()
        data = await rest.get(
            "/v5/account/wallet-balance",
            params={"accountType": account_type, "coin": coin},
            signed=True,
        )
        accounts = data.get("list") if isinstance(data, dict) else None
        for account in accounts or []:
            for entry in account.get("coin") or []:
                if entry.get("coin") != coin:
                    continue
                balance = self._as_float(entry.get("walletBalance"))
                if balance is not None:
                    return balance
        return None

    async def place_order(self, request: OrderRequest) -> Optional[OrderTicket]:
        rest = self._client()
        data = await rest.post("/v5/order/create", params=request.to_params(self.category))
        if not isinstance(data, dict):
            return None
        return OrderTicket(
            symbol=request.symbol,
            side=request.side,
            type=request.order_type,
            quantity=request.qty,
            status="New",
            price=request.price,
            client_order_id=data.get("orderLinkId") or None,
            exchange_order_id=data.get("orderId") or None,
            raw=data,
        )

    async def cancel_all_orders(self, symbol: str) -> int:
        rest = self._client()
        data = await rest.post(
            "/v5/order/cancel-all",
            params={"category": self.category, "symbol": symbol},
        )
        cancelled = data.get("list") if isinstance(data, dict) else None
        return len(cancelled or [])

    async def set_position_mode(self, symbol: str, mode: int = BOTH_SIDE_MODE) -> bool:
        return await self._post_idempotent(
            "/v5/position/switch-mode",
            {"category": self.category, "symbol": symbol, "mode": mode},
        )

    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        return await self._post_idempotent(
            "/v5/position/set-leverage",
            {
                "category": self.category,
                "symbol": symbol,
                "buyLeverage": str(leverage),
                "sellLeverage": str(leverage),
            },
        )

    async def close(self) -> None:
        async with self._lock:
            if self._rest:
                try:
                    await self._rest.close()
                finally:
                    self._rest = None

    async def _post_idempotent(self, path: str, params: Dict[str, Any]) -> bool:
        """POST a setting change; False when the exchange reports it was already set."""
        try:
            await self._client().post(path, params=params)
            return True
        except BybitAPIError as exc:
            if exc.code in NOT_MODIFIED_CODES:
                return False
            raise

    def _parse_symbol_info(self, payload: Dict[str, Any]) -> SymbolInfo:
        symbol = payload.get("symbol")
        lot = payload.get("lotSizeFilter") or {}
        price_filter = payload.get("priceFilter") or {}
        step = lot.get("qtyStep")
        tick_size = self._as_float(price_filter.get("tickSize"))
        min_qty = self._as_float(lot.get("minOrderQty"))
        if min_qty is None:
            raise PrecisionUnresolvable(f"{symbol}: missing minimum order quantity")
        return SymbolInfo(
            symbol=symbol,
            min_quantity=min_qty,
            quantity_step=str(step),
            precision=quantity_precision(step),
            tick_size=tick_size,
            tick_precision=self._tick_precision(price_filter.get("tickSize")),
            raw=payload,
        )

    def _parse_kline(self, symbol: str, interval: str, row: List[Any]) -> Candle:
        # [startTime(ms), open, high, low, close, volume, turnover]
        return Candle(
            symbol=symbol,
            start=int(row[0]) // 1000,
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            confirmed=True,
            interval=interval,
        )

    def _parse_position(self, payload: Dict[str, Any]) -> Position:
        margin = self._as_float(payload.get("positionIM"))
        if margin is None:
            margin = self._as_float(payload.get("positionMargin")) or 0.0
        return Position(
            symbol=payload.get("symbol", ""),
            side=payload.get("side") or "None",
            size=self._as_float(payload.get("size")) or 0.0,
            entry_price=self._as_float(payload.get("avgPrice")) or 0.0,
            position_margin=margin,
        )

    def _parse_order(self, payload: Any) -> Optional[OrderTicket]:
        if not isinstance(payload, dict):
            return None
        return OrderTicket(
            symbol=payload.get("symbol", ""),
            side=payload.get("side") or "",
            type=payload.get("orderType") or "Limit",
            quantity=self._as_float(payload.get("qty")) or 0.0,
            status=payload.get("orderStatus"),
            price=self._as_float(payload.get("price")),
            client_order_id=payload.get("orderLinkId") or None,
            exchange_order_id=payload.get("orderId") or None,
            raw=payload,
        )

    @staticmethod
    def _tick_precision(tick: Any) -> Optional[int]:
        try:
            return quantity_precision(tick)
        except PrecisionUnresolvable:
            return None

    @staticmethod
    def _as_float(value: Any) -> Optional[float]:
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _as_int(value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
