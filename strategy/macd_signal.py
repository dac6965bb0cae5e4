import logging
from typing import Sequence

from analytics.indicators import MacdSnapshot, cross_up, macd_series
from strategy.errors import SignalInsufficientHistory
from strategy.execution_types import Candle


logger = logging.getLogger(__name__)


class MacdCrossSignal:
    """Long entry when MACD crosses above its signal line while the signal is still negative.

    Stateless: every call recomputes the indicator from the supplied window.
    """

    def __init__(self, fast_period: int = 12, slow_period: int = 26, signal_period: int = 9):
        if not 0 < fast_period < slow_period:
            raise ValueError("fast_period must be positive and smaller than slow_period")
        if signal_period <= 0:
            raise ValueError("signal_period must be positive")
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.signal_period = signal_period

    @property
    def min_history(self) -> int:
        return self.slow_period + self.signal_period

    def required_history(self, candles: Sequence[Candle]) -> None:
        if len(candles) < self.min_history:
            raise SignalInsufficientHistory(len(candles), self.min_history)

    def evaluate(self, candles: Sequence[Candle]) -> bool:
        self.required_history(candles)
        macd, signal, hist = macd_series(
            [c.close for c in candles],
            self.fast_period,
            self.slow_period,
            self.signal_period,
        )
        crosses = cross_up(macd, signal)
        snapshot = MacdSnapshot(macd, signal, hist)
        if snapshot.signal is None:
            return False
        decision = bool(crosses[-1]) and snapshot.signal < 0
        logger.debug(
            "MACD %s on %s: %s -> %s",
            candles[-1].symbol,
            candles[-1].start,
            snapshot.to_dict(),
            decision,
        )
        return decision

    def should_enter_long(self, candles: Sequence[Candle]) -> bool:
        try:
            return self.evaluate(candles)
        except SignalInsufficientHistory as exc:
            symbol = candles[-1].symbol if candles else '?'
            logger.debug("Not enough history for %s: %s", symbol, exc)
            return False
