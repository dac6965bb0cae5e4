import sys

sys.path.insert(0, '.')

import asyncio
import logging

from analytics.performance import PerformanceReporter
from orchestration.services import PositionOrchestrator
from strategy.execution_types import CandleEvent, ExecutionEvent, OrderTicket, Position
from tests.fakes import FakeGateway, FakeNotifier, StubSignal, make_candle, make_settings


START = 1_704_067_200  # 2024-01-01 00:00 UTC


def _build(gateway=None, decision=True, **settings_overrides):
    gateway = gateway or FakeGateway()
    notifier = FakeNotifier()
    reporter = PerformanceReporter(notifier, balance=gateway.balance, now=START)
    orchestrator = PositionOrchestrator(
        make_settings(**settings_overrides),
        gateway,
        reporter,
        signal=StubSignal(decision),
    )
    return orchestrator, gateway, notifier


def _candle_event(symbol='BTCUSDT', start=START, close=50000.0, confirmed=True, interval='5'):
    return CandleEvent(symbol, make_candle(symbol, start=start, close=close, confirmed=confirmed), interval)


def _execution(symbol='BTCUSDT'):
    return ExecutionEvent(orders=[{'symbol': symbol, 'side': 'Buy', 'exec_qty': 0.2}])


async def _settle(orchestrator):
    await orchestrator.queue.join()
    await orchestrator.dispatcher.drain()
    await orchestrator.stop()


def test_entry_on_signal_when_flat():
    async def scenario():
        orchestrator, gateway, _ = _build()
        await orchestrator.on_candle(_candle_event())
        await _settle(orchestrator)
        return gateway

    gateway = asyncio.run(scenario())
    assert len(gateway.placed) == 1
    order = gateway.placed[0]
    assert order.side == 'Buy'
    assert order.order_type == 'Limit'
    assert order.qty == 0.2
    assert order.price == 50000.0
    assert order.time_in_force == 'GoodTillCancel'
    assert order.position_idx == 1


def test_no_entry_without_signal():
    async def scenario():
        orchestrator, gateway, _ = _build(decision=False)
        await orchestrator.on_candle(_candle_event())
        await _settle(orchestrator)
        return orchestrator, gateway

    orchestrator, gateway = asyncio.run(scenario())
    assert gateway.placed == []
    assert 'load_candles:BTCUSDT' in gateway.calls
    assert len(orchestrator.signal.windows) == 1


def test_no_entry_while_entry_order_pending():
    gateway = FakeGateway()
    gateway.open_orders['BTCUSDT'] = [OrderTicket('BTCUSDT', 'Buy', 'Limit', 0.2, 'New', 49000.0)]

    async def scenario():
        orchestrator, _, _ = _build(gateway)
        await orchestrator.on_candle(_candle_event())
        await _settle(orchestrator)

    asyncio.run(scenario())
    assert gateway.placed == []
    assert 'load_candles:BTCUSDT' not in gateway.calls


def test_no_entry_while_position_open():
    gateway = FakeGateway()
    gateway.positions['BTCUSDT'] = Position('BTCUSDT', 'Buy', 0.2, 50000.0, 1000.0)

    async def scenario():
        orchestrator, _, _ = _build(gateway)
        await orchestrator.on_candle(_candle_event())
        await _settle(orchestrator)

    asyncio.run(scenario())
    assert gateway.placed == []


def test_back_to_back_candles_place_a_single_entry():
    async def scenario():
        orchestrator, gateway, _ = _build()
        await orchestrator.on_candle(_candle_event(start=START))
        await orchestrator.on_candle(_candle_event(start=START + 300))
        await _settle(orchestrator)
        return gateway

    gateway = asyncio.run(scenario())
    assert len(gateway.placed) == 1


def test_candles_with_other_interval_or_unconfirmed_are_ignored():
    async def scenario():
        orchestrator, gateway, _ = _build()
        await orchestrator.on_candle(_candle_event(interval='15'))
        await orchestrator.on_candle(_candle_event(confirmed=False))
        await orchestrator.on_candle(_candle_event(symbol='DOGEUSDT'))
        await _settle(orchestrator)
        return gateway

    gateway = asyncio.run(scenario())
    assert gateway.calls == []


def test_read_failure_drops_the_cycle(caplog):
    gateway = FakeGateway()
    gateway.fail_reads.add('get_balance')

    async def scenario():
        orchestrator, _, _ = _build(gateway)
        await orchestrator.on_candle(_candle_event())
        await _settle(orchestrator)

    with caplog.at_level(logging.WARNING):
        asyncio.run(scenario())
    assert gateway.placed == []
    assert 'load_candles:BTCUSDT' not in gateway.calls
    assert any('Skipping candle cycle for BTCUSDT' in r.getMessage() for r in caplog.records)


def test_placement_failure_is_logged_not_raised(caplog):
    gateway = FakeGateway()
    gateway.fail_place = True

    async def scenario():
        orchestrator, _, _ = _build(gateway)
        await orchestrator.on_candle(_candle_event())
        await orchestrator.on_candle(_candle_event(start=START + 300))
        await _settle(orchestrator)

    with caplog.at_level(logging.ERROR):
        asyncio.run(scenario())
    assert gateway.placed == []
    # the queue keeps going after a failed placement
    assert gateway.calls.count('place_order:BTCUSDT') == 2
    assert any('entry order failed' in r.getMessage() for r in caplog.records)


def test_execution_with_open_position_replaces_orders():
    gateway = FakeGateway()
    gateway.positions['BTCUSDT'] = Position('BTCUSDT', 'Buy', 0.2, 50000.0, 1000.0)
    gateway.open_orders['BTCUSDT'] = [OrderTicket('BTCUSDT', 'Sell', 'Limit', 0.1, 'New', 50500.0)]

    async def scenario():
        orchestrator, _, _ = _build(gateway)
        await orchestrator.on_execution(_execution())
        await _settle(orchestrator)

    asyncio.run(scenario())
    cancel_at = gateway.calls.index('cancel_all_orders:BTCUSDT')
    place_at = gateway.calls.index('place_order:BTCUSDT')
    assert cancel_at < place_at

    sides = {order.side: order for order in gateway.placed}
    assert set(sides) == {'Buy', 'Sell'}
    assert sides['Sell'].price == 50500.0
    assert sides['Sell'].qty == 0.2
    assert sides['Buy'].price == 49000.0
    assert sides['Buy'].qty == 0.2
    # only the fresh take-profit and repurchase remain
    assert len(gateway.open_orders['BTCUSDT']) == 2


def test_execution_truncates_size_to_quantity_precision():
    gateway = FakeGateway()
    gateway.positions['BTCUSDT'] = Position('BTCUSDT', 'Buy', 0.2349, 50000.0, 1000.0)

    async def scenario():
        orchestrator, _, _ = _build(gateway)
        await orchestrator.on_execution(_execution())
        await _settle(orchestrator)

    asyncio.run(scenario())
    assert {order.qty for order in gateway.placed} == {0.234}


def test_repurchase_omitted_at_margin_cap():
    async def scenario(balance):
        gateway = FakeGateway(balance=balance)
        gateway.positions['BTCUSDT'] = Position('BTCUSDT', 'Buy', 10.0, 100.0, 200.0)
        orchestrator, _, _ = _build(gateway, max_margin_fraction=0.4, leverage=5)
        await orchestrator.on_execution(_execution())
        await _settle(orchestrator)
        return gateway

    capped = asyncio.run(scenario(100.0))
    assert [order.side for order in capped.placed] == ['Sell']

    below_cap = asyncio.run(scenario(101.0))
    assert sorted(order.side for order in below_cap.placed) == ['Buy', 'Sell']


def test_execution_when_flat_cancels_and_records_balance():
    gateway = FakeGateway(balance=10250.0)
    gateway.open_orders['BTCUSDT'] = [OrderTicket('BTCUSDT', 'Buy', 'Limit', 0.2, 'New', 49000.0)]

    async def scenario():
        orchestrator, _, _ = _build(gateway)
        orchestrator.reporter.reset(10000.0)
        await orchestrator.on_execution(_execution())
        await orchestrator.on_execution(_execution())
        await _settle(orchestrator)
        return orchestrator

    orchestrator = asyncio.run(scenario())
    assert gateway.placed == []
    assert gateway.open_orders['BTCUSDT'] == []
    assert gateway.calls.count('cancel_all_orders:BTCUSDT') == 2
    assert orchestrator.reporter.current_balance == 10250.0
    assert orchestrator.reporter.day.start_balance == 10000.0


def test_execution_for_untracked_symbol_is_ignored():
    async def scenario():
        orchestrator, gateway, _ = _build()
        await orchestrator.on_execution(_execution('DOGEUSDT'))
        await orchestrator.on_execution(ExecutionEvent(orders=[]))
        await _settle(orchestrator)
        return gateway

    assert asyncio.run(scenario()).calls == []


def test_events_are_serialized_per_symbol():
    gateway = FakeGateway()
    gateway.read_delay = 0.01
    active = {'BTCUSDT': 0, 'ETHUSDT': 0}
    peak = {'BTCUSDT': 0, 'ETHUSDT': 0, 'total': 0}

    async def scenario():
        orchestrator, _, _ = _build(gateway, decision=False, assets=('BTC', 'ETH'))
        original = orchestrator.handle_candle

        async def tracked(event):
            active[event.symbol] += 1
            peak[event.symbol] = max(peak[event.symbol], active[event.symbol])
            peak['total'] = max(peak['total'], sum(active.values()))
            try:
                await original(event)
            finally:
                active[event.symbol] -= 1

        orchestrator.handle_candle = tracked
        for i in range(3):
            for symbol in ('BTCUSDT', 'ETHUSDT'):
                await orchestrator.on_candle(_candle_event(symbol=symbol, start=START + i * 300))
        await _settle(orchestrator)

    asyncio.run(scenario())
    assert peak['BTCUSDT'] == 1
    assert peak['ETHUSDT'] == 1
    assert peak['total'] == 2


def test_new_day_candle_sends_day_report():
    gateway = FakeGateway(balance=10000.0)

    async def scenario():
        orchestrator, _, notifier = _build(gateway, decision=False)
        orchestrator.reporter.update_balance(10500.0)
        await orchestrator.on_candle(_candle_event(start=START + 86_400))
        await _settle(orchestrator)
        return notifier

    notifier = asyncio.run(scenario())
    assert notifier.messages == ['Day result of 01/01/2024: <b>+5.0%</b> 🟢']


def test_accepted_order_is_logged_with_exchange_id(caplog):
    async def scenario():
        orchestrator, _, _ = _build()
        await orchestrator.on_candle(_candle_event())
        await _settle(orchestrator)

    with caplog.at_level(logging.INFO):
        asyncio.run(scenario())
    assert any(
        r.getMessage() == 'Create Buy limit 0.2BTCUSDT at 50000.0 (order 1)' for r in caplog.records
    )
