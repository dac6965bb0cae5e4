import sys

sys.path.insert(0, '.')

import pytest

from analytics.performance import (
    PerformanceReporter,
    format_day_message,
    format_month_message,
    month_emoji,
    performance_pct,
)
from tests.fakes import FakeNotifier


JAN_1 = 1_704_067_200   # 2024-01-01 00:00 UTC
JAN_2 = JAN_1 + 86_400
FEB_1 = 1_706_745_600   # 2024-02-01 00:00 UTC


def test_performance_pct_truncates_to_two_decimals():
    assert performance_pct(10500.0, 10000.0) == 5.0
    assert performance_pct(10012.349, 10000.0) == 0.12
    assert performance_pct(9876.5, 10000.0) == -1.24
    assert performance_pct(500.0, 0.0) == 0.0


def test_day_message_formats():
    assert format_day_message('01/01/2024', 5.0) == 'Day result of 01/01/2024: <b>+5.0%</b> 🟢'
    assert format_day_message('01/01/2024', 0.0) == 'Day result of 01/01/2024: 0.0% 🟢'
    assert format_day_message('01/01/2024', -2.5) == 'Day result of 01/01/2024: -2.5% 🔴'


@pytest.mark.parametrize(
    'pct, emoji',
    [
        (35.0, '🤩'),
        (30.0, '🤑'),
        (20.01, '🤑'),
        (15.0, '😍'),
        (5.0, '🥰'),
        (0.0, '😢'),
        (-10.0, '😰'),
        (-15.0, '😰'),
        (-20.0, '😭'),
        (-50.0, '😭'),
    ],
)
def test_month_emoji_thresholds(pct, emoji):
    assert month_emoji(pct) == emoji


def test_month_message_format():
    assert format_month_message('01/2024', 12.5) == '<b>MONTH RESULT - 01/2024</b>\n+12.5% 😍'
    assert format_month_message('01/2024', -3.0) == '<b>MONTH RESULT - 01/2024</b>\n-3.0% 😢'


def test_day_rollover_reports_previous_day():
    notifier = FakeNotifier()
    reporter = PerformanceReporter(notifier, balance=10000.0, now=JAN_1)
    reporter.update_balance(10500.0)

    messages = reporter.observe(JAN_2)

    assert messages == ['Day result of 01/01/2024: <b>+5.0%</b> 🟢']
    assert notifier.messages == messages
    assert reporter.day.period_label == '02/01/2024'
    assert reporter.day.start_balance == 10500.0
    # month window is untouched within January
    assert reporter.month.start_balance == 10000.0


def test_same_day_and_late_candles_send_nothing():
    notifier = FakeNotifier()
    reporter = PerformanceReporter(notifier, balance=10000.0, now=JAN_1)
    assert reporter.observe(JAN_1 + 3_600) == []

    reporter.observe(JAN_2)
    notifier.messages.clear()
    assert reporter.observe(JAN_1 + 7_200) == []
    assert reporter.observe(JAN_2 + 600) == []
    assert notifier.messages == []


def test_month_rollover_sends_day_and_month_results():
    notifier = FakeNotifier()
    reporter = PerformanceReporter(notifier, balance=10000.0, now=JAN_1)
    reporter.reset(10000.0)
    reporter.observe(FEB_1 - 86_400)  # 31/01/2024
    reporter.update_balance(12500.0)

    messages = reporter.observe(FEB_1)

    assert messages == [
        'Day result of 31/01/2024: <b>+25.0%</b> 🟢',
        '<b>MONTH RESULT - 01/2024</b>\n+25.0% 🤑',
    ]
    assert reporter.month.period_label == '02/2024'
    assert reporter.month.start_balance == 12500.0


def test_reset_restarts_both_windows():
    reporter = PerformanceReporter(FakeNotifier(), balance=0.0, now=JAN_1)
    reporter.reset(2000.0)
    assert reporter.current_balance == 2000.0
    assert reporter.day.start_balance == 2000.0
    assert reporter.month.start_balance == 2000.0
