from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class OrderTicket:
    """Normalized view of an order acknowledgement or open order."""

    symbol: str
    side: str
    type: str
    quantity: float
    status: Optional[str] = None
    price: Optional[float] = None
    client_order_id: Optional[str] = None
    exchange_order_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        if self.exchange_order_id:
            return self.exchange_order_id
        if self.client_order_id:
            return self.client_order_id
        fallback = self.raw.get("orderId")
        if fallback is not None:
            return str(fallback)
        return "order"


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: str
    order_type: str
    price: float
    qty: float
    time_in_force: str = "GoodTillCancel"
    reduce_only: bool = False
    close_on_trigger: bool = False
    # 1: long side of a hedge-mode position
    position_idx: int = 1

    _TIF_CODES = {
        "GoodTillCancel": "GTC",
        "ImmediateOrCancel": "IOC",
        "FillOrKill": "FOK",
        "PostOnly": "PostOnly",
    }

    def to_params(self, category: str = "linear") -> Dict[str, Any]:
        return {
            "category": category,
            "symbol": self.symbol,
            "side": self.side,
            "orderType": self.order_type,
            "qty": _format_number(self.qty),
            "price": _format_number(self.price),
            "timeInForce": self._TIF_CODES.get(self.time_in_force, self.time_in_force),
            "reduceOnly": self.reduce_only,
            "closeOnTrigger": self.close_on_trigger,
            "positionIdx": self.position_idx,
        }

    def describe(self) -> str:
        return f"{self.side} {self.order_type.lower()} {self.qty}{self.symbol} at {self.price}"


@dataclass(frozen=True)
class SymbolInfo:
    symbol: str
    min_quantity: float
    quantity_step: str
    precision: int
    tick_size: Optional[float] = None
    tick_precision: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Candle:
    symbol: str
    start: int  # epoch seconds
    open: float
    high: float
    low: float
    close: float
    volume: float
    confirmed: bool = True
    interval: Optional[str] = None


@dataclass(frozen=True)
class Position:
    symbol: str
    side: str
    size: float
    entry_price: float
    position_margin: float

    @property
    def is_open(self) -> bool:
        return self.position_margin > 0

    @classmethod
    def flat(cls, symbol: str) -> 'Position':
        return cls(symbol=symbol, side="None", size=0.0, entry_price=0.0, position_margin=0.0)


class PositionState(Enum):
    FLAT = "flat"
    ENTRY_PENDING = "entry_pending"
    OPEN = "open"


def derive_state(position: Position, active_orders: Sequence[OrderTicket]) -> PositionState:
    """Symbol state computed from a fresh exchange snapshot; never stored."""
    if position.is_open:
        return PositionState.OPEN
    if active_orders:
        return PositionState.ENTRY_PENDING
    return PositionState.FLAT


@dataclass(frozen=True)
class CandleEvent:
    symbol: str
    candle: Candle
    topic_interval: str


@dataclass(frozen=True)
class ExecutionEvent:
    orders: List[Dict[str, Any]]

    @property
    def symbol(self) -> Optional[str]:
        if not self.orders:
            return None
        return self.orders[0].get("symbol")


def _format_number(value: float) -> str:
    text = f"{value:.10f}".rstrip("0").rstrip(".")
    return text or "0"
