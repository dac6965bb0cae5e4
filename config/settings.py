"""Typed, validated view over the ``bot`` and ``exchange`` config sections."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple

from config.utils import get_config_section

VALID_INTERVALS = ('1', '3', '5', '15', '30', '60', '120', '240', '360', '720', 'D', 'W', 'M')


def interval_to_minutes(interval: str) -> int:
    """Minutes covered by one candle of the given Bybit interval code."""
    if interval == 'D':
        return 60 * 24
    if interval == 'W':
        return 60 * 24 * 7
    if interval == 'M':
        return 60 * 24 * 30
    return int(interval)


@dataclass(frozen=True)
class BotSettings:
    base: str
    assets: Tuple[str, ...]
    max_margin_fraction: float
    initial_margin_fraction: float
    leverage: int
    take_profit_percent: float
    repurchase_percent_delta: float
    interval: str
    candle_window: int = 200
    price_precision_from_tick: bool = False
    category: str = 'linear'
    testnet: bool = True

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(asset + self.base for asset in self.assets)

    @classmethod
    def from_config(cls, source: Any) -> 'BotSettings':
        bot = get_config_section(source, 'bot')
        exchange = get_config_section(source, 'exchange')
        if not bot:
            raise ValueError("Missing 'bot' configuration section")

        try:
            settings = cls(
                base=str(bot['base']).upper(),
                assets=tuple(str(asset).upper() for asset in bot.get('assets') or ()),
                max_margin_fraction=float(bot['max_margin_position']),
                initial_margin_fraction=float(bot['initial_margin_position']),
                leverage=int(bot['leverage']),
                take_profit_percent=float(bot['take_profit_percent']),
                repurchase_percent_delta=float(bot['repurchase_percent_delta']),
                interval=str(bot.get('interval', '1')),
                candle_window=int(bot.get('candle_window', 200)),
                price_precision_from_tick=_as_bool(bot.get('price_precision_from_tick', False)),
                category=str(exchange.get('category', 'linear')),
                testnet=_as_bool(exchange.get('testnet', True)),
            )
        except KeyError as exc:
            raise ValueError(f"Missing bot setting {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid bot setting: {exc}") from exc

        settings.validate()
        return settings

    def validate(self) -> None:
        if not self.base:
            raise ValueError("bot.base must not be empty")
        if not self.assets:
            raise ValueError("bot.assets must list at least one asset")
        if self.leverage <= 0:
            raise ValueError("bot.leverage must be positive")
        for name in ('max_margin_fraction', 'initial_margin_fraction'):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        if self.take_profit_percent < 0:
            raise ValueError("bot.take_profit_percent must be >= 0")
        if self.repurchase_percent_delta < 0:
            raise ValueError("bot.repurchase_percent_delta must be >= 0")
        if self.interval not in VALID_INTERVALS:
            raise ValueError(f"Unsupported candle interval {self.interval!r}")
        if self.candle_window < 2:
            raise ValueError("bot.candle_window must be >= 2")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)
