import errno
import logging
from prometheus_client import Counter, Gauge, start_http_server
from typing import Optional

from config import config


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False
_METRICS_PORT: Optional[int] = None


def _get_port_scan_limit() -> int:
    try:
        return int(config.monitoring.get('prometheus_port_scan', 0))
    except Exception:
        return 0


class MetricsCollector:
    def __init__(self):
        self.events_processed = Counter('bot_events_processed_total', 'Inbound events handled', ['kind', 'symbol'])
        self.cycles_dropped = Counter('bot_cycles_dropped_total', 'Decision cycles skipped because a read failed', ['kind', 'symbol'])
        self.handler_errors = Counter('bot_handler_errors_total', 'Unexpected handler exceptions', ['symbol'])

        self.entry_signals = Counter('bot_entry_signals_total', 'MACD entry signals observed while flat', ['symbol'])
        self.orders_placed = Counter('bot_orders_placed_total', 'Orders accepted by the exchange', ['kind', 'symbol'])
        self.orders_failed = Counter('bot_orders_failed_total', 'Order placements that failed', ['kind', 'symbol'])
        self.repurchase_skipped = Counter('bot_repurchase_skipped_total', 'Repurchase orders omitted at the margin cap', ['symbol'])

        self.wallet_balance = Gauge('bot_wallet_balance', 'Last sampled wallet balance')
        self.performance_pct = Gauge('bot_performance_pct', 'Last reported period performance in percent', ['period'])
        self.queue_depth = Gauge('bot_symbol_queue_depth', 'Pending events per symbol queue', ['symbol'])
        self.reconnect_count = Counter('bot_websocket_reconnects_total', 'Total WebSocket reconnects', ['stream'])

    def record_event(self, kind: str, symbol: str):
        self.events_processed.labels(kind=kind, symbol=symbol).inc()

    def record_dropped_cycle(self, kind: str, symbol: str):
        self.cycles_dropped.labels(kind=kind, symbol=symbol).inc()

    def record_handler_error(self, symbol: str):
        self.handler_errors.labels(symbol=symbol).inc()

    def record_entry_signal(self, symbol: str):
        self.entry_signals.labels(symbol=symbol).inc()

    def record_order_placed(self, kind: str, symbol: str):
        self.orders_placed.labels(kind=kind, symbol=symbol).inc()

    def record_order_failed(self, kind: str, symbol: str):
        self.orders_failed.labels(kind=kind, symbol=symbol).inc()

    def record_repurchase_skipped(self, symbol: str):
        self.repurchase_skipped.labels(symbol=symbol).inc()

    def update_balance(self, balance: float):
        if balance is not None:
            self.wallet_balance.set(balance)

    def update_performance(self, period: str, pct: float):
        self.performance_pct.labels(period=period).set(pct)

    def update_queue_depth(self, symbol: str, depth: int):
        self.queue_depth.labels(symbol=symbol).set(depth)

    def record_reconnect(self, stream: str):
        self.reconnect_count.labels(stream=stream).inc()


def start_metrics_server(port: int = 9090):
    global _METRICS_SERVER_STARTED, _METRICS_PORT
    if _METRICS_SERVER_STARTED:
        return
    port_scan_limit = max(0, _get_port_scan_limit())
    last_error: Optional[OSError] = None
    for offset in range(port_scan_limit + 1):
        candidate = port + offset
        try:
            start_http_server(candidate)
        except OSError as exc:
            last_error = exc
            if exc.errno == errno.EADDRINUSE:
                logger.warning(
                    "Prometheus metrics server port %s already in use; trying next candidate",
                    candidate,
                )
                continue
            raise
        _METRICS_SERVER_STARTED = True
        _METRICS_PORT = candidate
        logger.info("Prometheus metrics server started on port %s", candidate)
        return
    if last_error and last_error.errno == errno.EADDRINUSE:
        raise RuntimeError(
            f"Unable to bind Prometheus metrics server on ports {port}-{port + port_scan_limit}"
        ) from last_error
    if last_error:
        raise last_error


metrics = MetricsCollector()
