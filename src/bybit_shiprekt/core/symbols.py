"""Instrument taxonomy derived from Bybit ticker strings.

Bybit lists three kinds of derivative contracts:

1. Inverse perpetual, e.g. ``BTCUSD``
2. USDT perpetual (linear perpetual), e.g. ``BTCUSDT``
3. Inverse futures with an expiry suffix, e.g. ``BTCUSDM22`` or ``ETHUSD0325``

Only the second kind is margined in USDT. Everything here is a pure function of
the ticker string.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

UNKNOWN_CURRENCY = "UNKNOWN"
LINEAR_QUOTE_CURRENCY = "USDT"

_QUOTE_MARKER = "USD"
_LINEAR_MARKER = "USDT"
_DATED_FUTURE_PATTERN = re.compile(r"\S+USD\S\S+")


class BaseCurrencyNotFoundError(LookupError):
    """Raised when a ticker carries no USD quote marker."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"no base currency in symbol {symbol!r}")
        self.symbol = symbol


class InstrumentKind(StrEnum):
    LINEAR_PERPETUAL = "linear_perpetual"
    INVERSE_PERPETUAL = "inverse_perpetual"
    INVERSE_FUTURE = "inverse_future"


def base_currency(symbol: str) -> str:
    # USD, USDT, USDM22 and USD0325 all start with USD
    index = symbol.find(_QUOTE_MARKER)
    if index < 0:
        raise BaseCurrencyNotFoundError(symbol)
    return symbol[:index]


def is_linear_perpetual(symbol: str) -> bool:
    # more than one USDT is deliberately not linear
    return symbol.count(_LINEAR_MARKER) == 1


def is_dated_future(symbol: str) -> bool:
    if is_linear_perpetual(symbol):
        return False
    return _DATED_FUTURE_PATTERN.search(symbol) is not None


@dataclass(frozen=True, slots=True)
class SymbolFacts:
    symbol: str
    base_currency: str | None
    is_linear: bool
    is_dated_future: bool

    @property
    def kind(self) -> InstrumentKind:
        if self.is_linear:
            return InstrumentKind.LINEAR_PERPETUAL
        if self.is_dated_future:
            return InstrumentKind.INVERSE_FUTURE
        return InstrumentKind.INVERSE_PERPETUAL

    @property
    def display_currency(self) -> str:
        if self.is_linear:
            return LINEAR_QUOTE_CURRENCY
        if self.base_currency is None:
            return UNKNOWN_CURRENCY
        return self.base_currency

    @property
    def contract_label(self) -> str:
        return "Futures" if self.is_dated_future else "Perpetual futures"


def classify(symbol: str) -> SymbolFacts:
    try:
        base: str | None = base_currency(symbol)
    except BaseCurrencyNotFoundError:
        base = None

    return SymbolFacts(
        symbol=symbol,
        base_currency=base,
        is_linear=is_linear_perpetual(symbol),
        is_dated_future=is_dated_future(symbol),
    )
