"""Daily and monthly P&L summaries driven by candle time.

The reporter's clock only advances with observed candles: when a candle opens
a new day (or month) the result of the period that just ended is sent to the
notifier and the window restarts from the current balance snapshot.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from api.metrics import metrics
from risk.position_sizer import decimal_floor


logger = logging.getLogger(__name__)

DAY = 'day'
MONTH = 'month'

# (exclusive lower bound, emoji), checked top-down
MONTH_EMOJIS: Tuple[Tuple[float, str], ...] = (
    (30, '🤩'),
    (20, '🤑'),
    (10, '😍'),
    (0, '🥰'),
    (-10, '😢'),
    (-20, '😰'),
)
MONTH_FLOOR_EMOJI = '😭'


@dataclass
class PerformanceWindow:
    period_label: str
    start_balance: float
    period_key: Tuple[int, ...] = ()


def day_key(moment: datetime) -> Tuple[int, ...]:
    return (moment.year, moment.month, moment.day)


def month_key(moment: datetime) -> Tuple[int, ...]:
    return (moment.year, moment.month)


def day_label(moment: datetime) -> str:
    return moment.strftime('%d/%m/%Y')


def month_label(moment: datetime) -> str:
    return moment.strftime('%m/%Y')


def performance_pct(current_balance: float, start_balance: float) -> float:
    if not start_balance or start_balance <= 0:
        return 0.0
    return decimal_floor((current_balance - start_balance) / start_balance * 100, 2)


def _signed(pct: float) -> str:
    return f"+{pct}%" if pct > 0 else f"{pct}%"


def format_day_message(label: str, pct: float) -> str:
    emoji = '🟢' if pct >= 0 else '🔴'
    shown = f"<b>{_signed(pct)}</b>" if pct > 0 else _signed(pct)
    return f"Day result of {label}: {shown} {emoji}"


def month_emoji(pct: float) -> str:
    for bound, emoji in MONTH_EMOJIS:
        if pct > bound:
            return emoji
    return MONTH_FLOOR_EMOJI


def format_month_message(label: str, pct: float) -> str:
    return f"<b>MONTH RESULT - {label}</b>\n{_signed(pct)} {month_emoji(pct)}"


class PerformanceReporter:
    def __init__(self, notifier, balance: float = 0.0, now: Optional[float] = None):
        self.notifier = notifier
        self.current_balance = balance
        moment = _utc(now if now is not None else time.time())
        self.day = PerformanceWindow(day_label(moment), balance, day_key(moment))
        self.month = PerformanceWindow(month_label(moment), balance, month_key(moment))

    def reset(self, balance: float) -> None:
        """Start both windows from ``balance`` (used once the first balance is known)."""
        self.current_balance = balance
        self.day.start_balance = balance
        self.month.start_balance = balance
        metrics.update_balance(balance)

    def update_balance(self, balance: float) -> None:
        self.current_balance = balance
        metrics.update_balance(balance)

    def observe(self, candle_start: float) -> List[str]:
        """Roll the day/month windows forward to the candle's period; returns sent messages."""
        moment = _utc(candle_start)
        messages: List[str] = []

        if day_key(moment) > self.day.period_key:
            pct = performance_pct(self.current_balance, self.day.start_balance)
            messages.append(format_day_message(self.day.period_label, pct))
            metrics.update_performance(DAY, pct)
            self._advance(self.day, day_label(moment), day_key(moment))

        if month_key(moment) > self.month.period_key:
            pct = performance_pct(self.current_balance, self.month.start_balance)
            messages.append(format_month_message(self.month.period_label, pct))
            metrics.update_performance(MONTH, pct)
            self._advance(self.month, month_label(moment), month_key(moment))

        for message in messages:
            logger.info("Performance report: %s", message.replace('\n', ' '))
            self.notifier.notify(message)
        return messages

    def _advance(self, window: PerformanceWindow, label: str, key: Tuple[int, ...]) -> None:
        window.period_label = label
        window.period_key = key
        window.start_balance = self.current_balance


def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)

