import logging
from typing import Optional

from analytics.performance import PerformanceReporter
from api.metrics import metrics
from config import BotSettings
from orchestration.dispatcher import OrderDispatcher
from orchestration.event_queue import SymbolEventQueue
from risk.position_sizer import MarginRules, decimal_floor, offset_price, position_size
from strategy.errors import GatewayUnavailable
from strategy.execution_types import (
    CandleEvent,
    ExecutionEvent,
    OrderRequest,
    PositionState,
    SymbolInfo,
    derive_state,
)
from strategy.macd_signal import MacdCrossSignal


logger = logging.getLogger(__name__)


class PositionOrchestrator:
    """Turn candle and execution events into entry, take-profit and repurchase orders.

    No position or order state is kept between events: every handler re-reads
    the exchange and derives FLAT / ENTRY_PENDING / OPEN from that snapshot.
    """

    def __init__(
        self,
        settings: BotSettings,
        gateway,
        reporter: PerformanceReporter,
        signal: Optional[MacdCrossSignal] = None,
        dispatcher: Optional[OrderDispatcher] = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.reporter = reporter
        self.signal = signal or MacdCrossSignal()
        self.margin = MarginRules.from_settings(settings)
        self.dispatcher = dispatcher or OrderDispatcher(gateway)
        self.queue = SymbolEventQueue(before_each=self.dispatcher.settle)
        self.symbols = set(settings.symbols)

    async def on_candle(self, event: CandleEvent) -> None:
        if event.topic_interval != self.settings.interval or not event.candle.confirmed:
            return
        if event.symbol not in self.symbols:
            return
        self.reporter.observe(event.candle.start)
        self.queue.submit(event.symbol, self.handle_candle, event)

    async def on_execution(self, event: ExecutionEvent) -> None:
        symbol = event.symbol
        if symbol not in self.symbols:
            logger.debug("Ignoring execution for untracked symbol %s", symbol)
            return
        self.queue.submit(symbol, self.handle_execution, event)

    async def handle_candle(self, event: CandleEvent) -> None:
        symbol = event.symbol
        candle = event.candle
        metrics.record_event('candle', symbol)

        try:
            position = await self.gateway.get_position(symbol)
            active_orders = await self.gateway.query_active_orders(symbol)
            balance = await self.gateway.get_balance()
        except GatewayUnavailable as exc:
            self._drop_cycle('candle', symbol, exc)
            return

        state = derive_state(position, active_orders)
        if state is not PositionState.FLAT:
            logger.debug("%s is %s; no entry evaluation", symbol, state.value)
            return

        try:
            window = await self.gateway.load_candles(symbol, self.settings.interval, until=candle.start)
        except GatewayUnavailable as exc:
            self._drop_cycle('candle', symbol, exc)
            return

        if not self.signal.should_enter_long(window):
            return

        metrics.record_entry_signal(symbol)
        info = self.gateway.get_symbol_info(symbol)
        quantity = position_size(
            self.margin.entry_budget(balance),
            candle.close,
            info.min_quantity,
            info.precision,
        )
        request = OrderRequest(
            symbol=symbol,
            side='Buy',
            order_type='Limit',
            price=offset_price(candle.close, 0.0, self._price_precision(info)),
            qty=quantity,
        )
        logger.info("Entry signal on %s: buy %s at %s", symbol, quantity, request.price)
        self.dispatcher.dispatch('entry', request)

    async def handle_execution(self, event: ExecutionEvent) -> None:
        symbol = event.symbol
        metrics.record_event('execution', symbol)

        try:
            balance = await self.gateway.get_balance()
            position = await self.gateway.get_position(symbol)
        except GatewayUnavailable as exc:
            self._drop_cycle('execution', symbol, exc)
            return

        if not position.is_open:
            self.reporter.update_balance(balance)
            logger.info("Position closed on %s; balance %s", symbol, balance)
            await self.gateway.cancel_all_orders(symbol)
            return

        await self.gateway.cancel_all_orders(symbol)

        info = self.gateway.get_symbol_info(symbol)
        price_precision = self._price_precision(info)
        size = decimal_floor(position.size, info.precision)

        take_profit = OrderRequest(
            symbol=symbol,
            side='Sell',
            order_type='Limit',
            price=offset_price(position.entry_price, self.settings.take_profit_percent, price_precision),
            qty=size,
        )
        self.dispatcher.dispatch('take_profit', take_profit)

        if self.margin.allows_repurchase(position, balance):
            repurchase = OrderRequest(
                symbol=symbol,
                side='Buy',
                order_type='Limit',
                price=offset_price(position.entry_price, -self.settings.repurchase_percent_delta, price_precision),
                qty=size,
            )
            self.dispatcher.dispatch('repurchase', repurchase)
        else:
            metrics.record_repurchase_skipped(symbol)

    async def stop(self) -> None:
        await self.queue.stop()
        await self.dispatcher.drain()

    def _price_precision(self, info: SymbolInfo) -> int:
        if self.settings.price_precision_from_tick and info.tick_precision is not None:
            return info.tick_precision
        return info.precision

    def _drop_cycle(self, kind: str, symbol: str, exc: Exception) -> None:
        metrics.record_dropped_cycle(kind, symbol)
        logger.warning("Skipping %s cycle for %s: %s", kind, symbol, exc)
