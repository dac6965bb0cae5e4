import numpy as np
import talib
from typing import Dict, Optional, Sequence, Tuple


def macd_series(
    closes: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """EMA-based MACD line, signal line and histogram; leading bars are NaN."""
    prices = np.asarray(closes, dtype=float)
    macd, signal, hist = talib.MACD(
        prices,
        fastperiod=fast_period,
        slowperiod=slow_period,
        signalperiod=signal_period,
    )
    return macd, signal, hist


def cross_up(line_a: Sequence[float], line_b: Sequence[float]) -> np.ndarray:
    """True on bars where line_a moves from at-or-below line_b to strictly above it."""
    a = np.asarray(line_a, dtype=float)
    b = np.asarray(line_b, dtype=float)
    crosses = np.zeros(len(a), dtype=bool)
    if len(a) < 2:
        return crosses
    with np.errstate(invalid='ignore'):
        crosses[1:] = (a[1:] > b[1:]) & (a[:-1] <= b[:-1])
    # NaN comparisons are already False; keep warm-up bars explicit
    valid = ~(np.isnan(a) | np.isnan(b))
    crosses[1:] &= valid[1:] & valid[:-1]
    return crosses


class MacdSnapshot:
    """Last-bar view of a MACD computation, used for logging decisions."""

    def __init__(self, macd: np.ndarray, signal: np.ndarray, hist: np.ndarray):
        self.macd = _last(macd)
        self.signal = _last(signal)
        self.histogram = _last(hist)

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            'macd': self.macd,
            'signal': self.signal,
            'histogram': self.histogram,
        }


def _last(values: np.ndarray) -> Optional[float]:
    if len(values) == 0 or np.isnan(values[-1]):
        return None
    return float(values[-1])
