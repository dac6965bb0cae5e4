import logging
import time
from typing import Dict, Iterable, List, Optional

from config import BotSettings, interval_to_minutes
from strategy.errors import GatewayUnavailable, PrecisionUnresolvable
from strategy.execution_types import Candle, OrderRequest, OrderTicket, Position, SymbolInfo
from strategy.transports.bybit import BybitAPIError, BybitTransport


logger = logging.getLogger(__name__)


class ExecutionManager:
    """Exchange gateway for the trading core: reads raise, mutations are logged."""

    def __init__(self, settings: BotSettings, transport: Optional[BybitTransport] = None):
        self.settings = settings
        self.base = settings.base
        self.transport = transport or BybitTransport(category=settings.category)
        self.symbol_infos: Dict[str, SymbolInfo] = {}

    async def initialize(self, symbols: Iterable[str]) -> None:
        symbols = list(symbols)
        for symbol in symbols:
            await self.prepare_symbol(symbol)
        await self.load_symbol_infos(symbols)

    async def prepare_symbol(self, symbol: str) -> None:
        """Hedge position mode and configured leverage; failures are not fatal."""
        try:
            changed = await self.transport.set_position_mode(symbol)
            logger.info("%s position mode %s", symbol, "set to BothSide" if changed else "already BothSide")
        except Exception as exc:
            self._log_transport_error(f"set position mode on {symbol}", exc, level=logging.WARNING)
        try:
            changed = await self.transport.set_leverage(symbol, self.settings.leverage)
            logger.info(
                "%s leverage %s %sx",
                symbol,
                "set to" if changed else "already",
                self.settings.leverage,
            )
        except Exception as exc:
            self._log_transport_error(f"set leverage on {symbol}", exc, level=logging.WARNING)

    async def load_symbol_infos(self, symbols: Iterable[str]) -> Dict[str, SymbolInfo]:
        for symbol in symbols:
            try:
                info = await self.transport.fetch_symbol_info(symbol)
            except PrecisionUnresolvable:
                raise
            except Exception as exc:
                raise GatewayUnavailable(f"fetch symbol info for {symbol}", exc) from exc
            if info is None:
                raise PrecisionUnresolvable(f"{symbol}: no instrument metadata returned")
            self.symbol_infos[symbol] = info
            logger.info(
                "%s: min qty %s, qty step %s (precision %s)",
                symbol,
                info.min_quantity,
                info.quantity_step,
                info.precision,
            )
        return self.symbol_infos

    def get_symbol_info(self, symbol: str) -> SymbolInfo:
        try:
            return self.symbol_infos[symbol]
        except KeyError as exc:
            raise PrecisionUnresolvable(f"{symbol}: metadata not loaded") from exc

    async def get_position(self, symbol: str) -> Position:
        try:
            return await self.transport.fetch_position(symbol)
        except Exception as exc:
            raise GatewayUnavailable(f"fetch position for {symbol}", exc) from exc

    async def query_active_orders(self, symbol: str) -> List[OrderTicket]:
        try:
            return await self.transport.fetch_open_orders(symbol)
        except Exception as exc:
            raise GatewayUnavailable(f"fetch active orders for {symbol}", exc) from exc

    async def get_balance(self, coin: Optional[str] = None) -> float:
        coin = coin or self.base
        try:
            balance = await self.transport.fetch_wallet_balance(coin)
        except Exception as exc:
            raise GatewayUnavailable(f"fetch {coin} balance", exc) from exc
        if balance is None:
            raise GatewayUnavailable(f"fetch {coin} balance", ValueError("no balance reported"))
        return balance

    async def load_candles(self, symbol: str, interval: str, until: Optional[int] = None) -> List[Candle]:
        """Most recent closed candles, oldest first; bars starting after ``until`` are dropped."""
        limit = self.settings.candle_window
        start_ms = int((time.time() - interval_to_minutes(interval) * 60 * limit) * 1000)
        try:
            candles = await self.transport.fetch_klines(symbol, interval, limit=limit, start_ms=start_ms)
        except Exception as exc:
            raise GatewayUnavailable(f"fetch candles for {symbol}", exc) from exc
        if until is not None:
            candles = [c for c in candles if c.start <= until]
        return candles

    async def place_order(self, request: OrderRequest) -> Optional[OrderTicket]:
        if request.qty <= 0:
            logger.warning("Refusing %s: non-positive quantity", request.describe())
            return None
        try:
            return await self.transport.place_order(request)
        except Exception as exc:
            raise GatewayUnavailable(f"place {request.describe()}", exc) from exc

    async def cancel_all_orders(self, symbol: str) -> Optional[int]:
        """Cancel every open order on ``symbol``; None when the request failed."""
        try:
            cancelled = await self.transport.cancel_all_orders(symbol)
        except Exception as exc:
            self._log_transport_error(f"cancel all orders on {symbol}", exc)
            return None
        if cancelled:
            logger.info("Cancelled %s orders on %s", cancelled, symbol)
        return cancelled

    async def close(self):
        await self.transport.close()

    def _log_transport_error(self, action: str, error: Exception, level: int = logging.ERROR) -> None:
        if isinstance(error, BybitAPIError):
            logger.log(
                level,
                "Bybit %s failed (code=%s, msg=%s)",
                action,
                error.code,
                error.msg,
            )
        else:
            logger.log(level, "%s failed: %s", action, error)
