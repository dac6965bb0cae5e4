import sys

sys.path.insert(0, '.')

import asyncio
import logging

import pytest

import main
from api.alerts import TelegramNotifier
from main import TradingBot, parse_args
from strategy.errors import PrecisionUnresolvable
from tests.fakes import FakeGateway, FakeNotifier


BOT_CONFIG = {
    'exchange': {'category': 'linear', 'testnet': True},
    'bot': {
        'base': 'USDT',
        'assets': ['BTC', 'ETH'],
        'max_margin_position': 0.3,
        'initial_margin_position': 0.02,
        'leverage': 10,
        'take_profit_percent': 0.01,
        'repurchase_percent_delta': 0.02,
        'interval': '5',
    },
    'monitoring': {'prometheus_port': 0},
}


class FakeWebSocket:
    def __init__(self):
        self.handlers = {}
        self.started = False
        self.stopped = False

    def register_handler(self, stream_type, handler):
        self.handlers[stream_type] = handler

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


class PreparingGateway(FakeGateway):
    def __init__(self, fail=None, **kwargs):
        super().__init__(**kwargs)
        self.fail = fail
        self.initialized = []
        self.closed = False

    async def initialize(self, symbols):
        if self.fail:
            raise self.fail
        self.initialized = list(symbols)

    async def close(self):
        self.closed = True


def test_bot_wires_feeds_to_orchestrator():
    ws = FakeWebSocket()
    gateway = PreparingGateway(balance=2500.0)
    bot = TradingBot(BOT_CONFIG, gateway=gateway, notifier=FakeNotifier(), ws_client=ws)

    async def scenario():
        await bot.start()

    asyncio.run(scenario())
    assert gateway.initialized == ['BTCUSDT', 'ETHUSDT']
    assert set(ws.handlers) == {'candle', 'execution'}
    assert ws.started and ws.stopped
    assert gateway.closed
    assert bot.reporter.day.start_balance == 2500.0
    assert bot.running is False


def test_startup_failure_exits(monkeypatch):
    gateway = PreparingGateway(fail=PrecisionUnresolvable('BTCUSDT: quantity step is missing'))
    monkeypatch.setattr(main, 'setup_logging', lambda *args, **kwargs: None)
    monkeypatch.setattr(
        main,
        'TradingBot',
        lambda cfg: TradingBot(BOT_CONFIG, gateway=gateway, notifier=FakeNotifier(), ws_client=FakeWebSocket()),
    )
    with pytest.raises(SystemExit) as excinfo:
        asyncio.run(main.main([]))
    assert excinfo.value.code == 1
    assert gateway.closed


def test_parse_args():
    args = parse_args(['--config', 'custom.yaml', '--log-level', 'DEBUG'])
    assert args.config == 'custom.yaml'
    assert args.log_level == 'DEBUG'
    assert parse_args([]).config is None


def test_disabled_notifier_logs_messages(caplog):
    notifier = TelegramNotifier(bot_token='${TELEGRAM_BOT_TOKEN}', chat_id='')
    assert notifier.enabled is False

    async def scenario():
        notifier.notify('Day result of 01/01/2024: <b>+5.0%</b> 🟢')
        await notifier.drain()

    with caplog.at_level(logging.INFO):
        asyncio.run(scenario())
    assert any('[Notify] Day result of 01/01/2024' in r.getMessage() for r in caplog.records)


def test_notifier_enabled_with_credentials():
    notifier = TelegramNotifier(bot_token='123:abc', chat_id='42')
    assert notifier.enabled is True
    assert notifier.chat_id == '42'
