from __future__ import annotations

import pytest

from bybit_shiprekt.core.enums import Side
from bybit_shiprekt.sources.envelopes import LiquidationEvent
from bybit_shiprekt.transforms.notification import (
    bankruptcy_value,
    build_notification,
    format_event_time,
    separated,
    split_millis,
)


def _event(**overrides: object) -> LiquidationEvent:
    fields: dict[str, object] = {
        "topic": "liquidation.BTCUSDT",
        "symbol": "BTCUSDT",
        "side": Side.BUY,
        "price": 45000.5,
        "quantity": 100,
        "event_time_ms": 1_700_000_000_000,
    }
    fields.update(overrides)
    return LiquidationEvent(**fields)  # type: ignore[arg-type]


def test_split_millis_returns_seconds_and_nanoseconds() -> None:
    assert split_millis(1_700_000_000_123) == (1_700_000_000, 123_000_000)
    assert split_millis(999) == (0, 999_000_000)
    assert split_millis(0) == (0, 0)


def test_format_event_time() -> None:
    assert format_event_time(1_700_000_000_000) == "2023-11-14 22:13:20 UTC"
    assert format_event_time(1_700_000_000_045) == "2023-11-14 22:13:20.045 UTC"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (100, "100"),
        (1_000_000, "1,000,000"),
        (4500050.0, "4,500,050"),
        (45000.5, "45,000.5"),
        (0.1, "0.1"),
        (1234.125, "1,234.125"),
        (1e16, "10,000,000,000,000,000"),
    ],
)
def test_separated(value: float | int, expected: str) -> None:
    assert separated(value) == expected


def test_bankruptcy_value_rounds_to_three_places() -> None:
    assert bankruptcy_value(45000.5, 100) == 4500050.0
    assert bankruptcy_value(0.12345, 1) == 0.123
    assert bankruptcy_value(0.0125, 100) == 1.25
    # half away from zero: 62.5 thousandths rounds up
    assert bankruptcy_value(0.0625, 1) == 0.063


def test_linear_long_notification_matches_template() -> None:
    notification = build_notification(_event())

    assert notification.render() == (
        "Bybit shiprekt a Long position of 100 USDT (worth $4,500,050) on the BTCUSDT "
        "Perpetual futures contract at $45,000.5 - 2023-11-14 22:13:20 UTC"
    )
    assert notification.summary() == (
        "Notified event: Long position of BTCUSDT worth $4,500,050 with 100 USDT at $45,000.5"
    )


def test_inverse_future_short_notification() -> None:
    notification = build_notification(
        _event(symbol="ETHUSDM22", side=Side.SELL, price=1800.25, quantity=12_000, event_time_ms=1_650_000_000_500)
    )

    assert notification.side_label == "Short"
    assert notification.currency == "ETH"
    assert notification.contract_label == "Futures"
    assert notification.quantity == "12,000"
    assert notification.worth == "21,603,000"
    assert notification.timestamp == "2022-04-15 05:20:00.500 UTC"


def test_unknown_base_currency_uses_sentinel() -> None:
    notification = build_notification(_event(symbol="BTCEUR"))

    assert notification.currency == "UNKNOWN"
    assert notification.contract_label == "Perpetual futures"
