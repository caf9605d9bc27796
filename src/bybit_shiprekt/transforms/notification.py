from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from bybit_shiprekt.core.enums import Side
from bybit_shiprekt.core.symbols import classify
from bybit_shiprekt.sources.envelopes import LiquidationEvent

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def split_millis(timestamp_ms: int) -> tuple[int, int]:
    seconds = timestamp_ms // 1000
    subsecond_ns = (timestamp_ms % 1000) * 1_000_000
    return seconds, subsecond_ns


def format_event_time(timestamp_ms: int) -> str:
    seconds, subsecond_ns = split_millis(timestamp_ms)
    moment = _EPOCH + timedelta(seconds=seconds, microseconds=subsecond_ns // 1000)
    text = moment.strftime("%Y-%m-%d %H:%M:%S")
    if subsecond_ns:
        text += f".{subsecond_ns // 1_000_000:03d}"
    return f"{text} UTC"


def bankruptcy_value(price: float, quantity: int) -> float:
    scaled = price * quantity * 1000.0
    # half away from zero, not banker's rounding
    return math.copysign(math.floor(abs(scaled) + 0.5), scaled) / 1000.0


def separated(value: float | int) -> str:
    if isinstance(value, int):
        return f"{value:,}"

    text = format(Decimal(repr(value)), "f")
    sign = "-" if text.startswith("-") else ""
    whole, _, fraction = text.lstrip("-").partition(".")
    fraction = fraction.rstrip("0")
    grouped = f"{int(whole):,}"
    if fraction:
        return f"{sign}{grouped}.{fraction}"
    return f"{sign}{grouped}"


@dataclass(frozen=True, slots=True)
class LiquidationNotification:
    symbol: str
    side_label: str
    quantity: str
    currency: str
    worth: str
    contract_label: str
    price: str
    timestamp: str

    def render(self) -> str:
        return (
            f"Bybit shiprekt a {self.side_label} position of {self.quantity} {self.currency} "
            f"(worth ${self.worth}) on the {self.symbol} {self.contract_label} contract "
            f"at ${self.price} - {self.timestamp}"
        )

    def summary(self) -> str:
        return (
            f"Notified event: {self.side_label} position of {self.symbol} worth ${self.worth} "
            f"with {self.quantity} {self.currency} at ${self.price}"
        )


def build_notification(event: LiquidationEvent) -> LiquidationNotification:
    facts = classify(event.symbol)
    return LiquidationNotification(
        symbol=event.symbol,
        side_label="Long" if event.side is Side.BUY else "Short",
        quantity=separated(event.quantity),
        currency=facts.display_currency,
        worth=separated(bankruptcy_value(event.price, event.quantity)),
        contract_label=facts.contract_label,
        price=separated(event.price),
        timestamp=format_event_time(event.event_time_ms),
    )
