import argparse
import asyncio
import logging
from typing import Optional

from analytics.performance import PerformanceReporter
from api.alerts import TelegramNotifier
from api.metrics import start_metrics_server
from config import BotSettings, config
from ingest.market_data_manager import MarketDataManager
from ingest.websocket_client import BybitWebSocketClient
from monitoring.async_utils import run_tasks_with_cleanup
from monitoring.logging_utils import setup_logging
from orchestration.services import PositionOrchestrator
from strategy.errors import BotError, GatewayUnavailable
from strategy.execution import ExecutionManager


logger = logging.getLogger(__name__)


class TradingBot:
    """Wire the exchange gateway, feeds, orchestrator and reporter for one process."""

    def __init__(self, config_obj=None, gateway=None, notifier=None, ws_client=None):
        self.config = config_obj or config
        self.settings = BotSettings.from_config(self.config)
        self.monitoring_cfg = self.config.get('monitoring') or {}

        self.execution_manager = gateway or ExecutionManager(self.settings)
        self.notifier = notifier or TelegramNotifier()
        self.reporter = PerformanceReporter(self.notifier)
        self.orchestrator = PositionOrchestrator(
            self.settings,
            self.execution_manager,
            self.reporter,
        )
        self.market_data_manager = MarketDataManager(
            ws_client or BybitWebSocketClient(self.settings.symbols, self.settings.interval)
        )
        self.market_data_manager.register_handlers(
            candle_handler=self.orchestrator.on_candle,
            execution_handler=self.orchestrator.on_execution,
        )
        self.running = False

    async def prepare(self):
        """Configure every symbol and resolve its trading metadata; fails fast."""
        await self.execution_manager.initialize(self.settings.symbols)

    async def run(self):
        self.running = True
        try:
            balance = await self.execution_manager.get_balance()
            self.reporter.reset(balance)
            logger.info("Starting with %s %s", balance, self.settings.base)
        except GatewayUnavailable as exc:
            logger.warning("Initial balance unavailable: %s", exc)

        port = int(self.monitoring_cfg.get('prometheus_port', 0) or 0)
        if port:
            start_metrics_server(port)

        tasks = [asyncio.create_task(self.market_data_manager.start())]

        async def _cleanup():
            await self.stop()

        await run_tasks_with_cleanup(tasks, cleanup=_cleanup)

    async def start(self):
        await self.prepare()
        await self.run()

    async def stop(self):
        if not self.running:
            return
        self.running = False
        await self.market_data_manager.stop()
        await self.orchestrator.stop()
        await self.notifier.drain()
        await self.execution_manager.close()
        logger.info("Bot stopped")


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bybit linear futures MACD ladder bot")
    parser.add_argument('--config', help="Path to the YAML configuration file")
    parser.add_argument('--log-level', help="Override monitoring.log_level")
    return parser.parse_args(argv)


async def main(argv: Optional[list] = None):
    args = parse_args(argv)
    if args.config:
        config.reload(args.config)
    monitoring = config.get('monitoring') or {}
    setup_logging(
        args.log_level or monitoring.get('log_level', 'INFO'),
        log_file=monitoring.get('log_file'),
    )

    bot = TradingBot(config)
    try:
        await bot.prepare()
    except BotError as exc:
        logger.critical("Startup failed: %s", exc)
        await bot.execution_manager.close()
        raise SystemExit(1) from exc

    try:
        await bot.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Bot shutting down on interrupt")
        await bot.stop()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
