"""Decode Bybit realtime text frames.

The feed does not tag its messages, so a frame is matched against the known
shapes in a fixed order and the first shape whose required keys are present and
well typed wins:

1. subscription / request acknowledgement
2. liquidation topic envelope

A liquidation envelope whose keys match but whose numeric strings do not parse
fails with :class:`FieldCoercionError` instead of falling through.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Final

from bybit_shiprekt.core.config import DEFAULT_MAX_QUANTITY
from bybit_shiprekt.core.enums import EventKind, Side

PING_REQUEST: Final = '{"op":"ping"}'
# 9999-12-31 23:59:59.999 UTC, the last renderable millisecond
MAX_EVENT_TIME_MS: Final = 253_402_300_799_999

_DECIMAL_PATTERN = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_UNSIGNED_PATTERN = re.compile(r"\+?\d+")


class DecodeError(ValueError):
    """Raised when a text frame cannot be decoded into a known message."""


class MalformedPayloadError(DecodeError):
    """Raised when a text frame is not JSON at all."""


class NoMatchingVariantError(DecodeError):
    """Raised when a JSON frame matches none of the known message shapes."""


class FieldCoercionError(DecodeError):
    def __init__(self, field_name: str, value: Any) -> None:
        super().__init__(f"cannot coerce field {field_name!r} from {value!r}")
        self.field = field_name
        self.value = value


class _ShapeMismatch(Exception):
    """Internal signal: the payload does not have this variant's shape."""


@dataclass(frozen=True, slots=True)
class SubscriptionAck:
    success: bool
    conn_id: str
    op: str
    args: tuple[str, ...] = ()
    ret_msg: str | None = None
    kind: EventKind = field(default=EventKind.SUBSCRIPTION_ACK, init=False)


@dataclass(frozen=True, slots=True)
class LiquidationEvent:
    topic: str
    symbol: str
    side: Side
    price: float
    quantity: int
    event_time_ms: int
    kind: EventKind = field(default=EventKind.LIQUIDATION, init=False)


DecodedEvent = SubscriptionAck | LiquidationEvent


def subscribe_request(topics: Iterable[str]) -> str:
    return json.dumps({"op": "subscribe", "args": list(topics)}, separators=(",", ":"))


def decode_envelope(text: str | bytes, *, max_quantity: int = DEFAULT_MAX_QUANTITY) -> DecodedEvent:
    # JSONDecodeError, bad UTF-8 and oversized integer literals are all ValueErrors
    try:
        payload = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise MalformedPayloadError(f"frame is not valid JSON: {exc}") from exc

    variants: tuple[Callable[[Any], DecodedEvent], ...] = (
        _decode_subscription_ack,
        lambda candidate: _decode_liquidation(candidate, max_quantity=max_quantity),
    )
    for variant in variants:
        try:
            return variant(payload)
        except _ShapeMismatch:
            continue

    raise NoMatchingVariantError("frame matches no known message shape")


def _require(payload: Any, key: str, expected: type) -> Any:
    if not isinstance(payload, dict) or key not in payload:
        raise _ShapeMismatch(key)
    value = payload[key]
    # bool is an int subclass; JSON true must not pass for a number
    if isinstance(value, bool) and expected is not bool:
        raise _ShapeMismatch(key)
    if not isinstance(value, expected):
        raise _ShapeMismatch(key)
    return value


def _decode_subscription_ack(payload: Any) -> SubscriptionAck:
    success = _require(payload, "success", bool)
    conn_id = _require(payload, "conn_id", str)
    request = _require(payload, "request", dict)
    op = _require(request, "op", str)

    raw_args = request.get("args")
    if raw_args is None:
        args: tuple[str, ...] = ()
    elif isinstance(raw_args, list) and all(isinstance(arg, str) for arg in raw_args):
        args = tuple(raw_args)
    else:
        raise _ShapeMismatch("args")

    ret_msg = payload.get("ret_msg")
    if ret_msg is not None and not isinstance(ret_msg, str):
        raise _ShapeMismatch("ret_msg")

    return SubscriptionAck(success=success, conn_id=conn_id, op=op, args=args, ret_msg=ret_msg)


def _decode_liquidation(payload: Any, *, max_quantity: int) -> LiquidationEvent:
    topic = _require(payload, "topic", str)
    data = _require(payload, "data", dict)
    symbol = _require(data, "symbol", str)
    raw_side = _require(data, "side", str)
    raw_price = _require(data, "price", str)
    raw_qty = _require(data, "qty", str)
    event_time_ms = _require(data, "time", int)

    # shape matched; from here on failures are coercion errors
    if not 0 <= event_time_ms <= MAX_EVENT_TIME_MS:
        raise FieldCoercionError("time", event_time_ms)

    return LiquidationEvent(
        topic=topic,
        symbol=symbol,
        side=_parse_side(raw_side),
        price=_parse_price(raw_price),
        quantity=_parse_quantity(raw_qty, max_quantity=max_quantity),
        event_time_ms=event_time_ms,
    )


def _parse_side(value: str) -> Side:
    try:
        return Side(value)
    except ValueError as exc:
        raise FieldCoercionError("side", value) from exc


def _parse_price(value: str) -> float:
    if _DECIMAL_PATTERN.fullmatch(value) is None:
        raise FieldCoercionError("price", value)
    price = float(value)
    if not math.isfinite(price):
        raise FieldCoercionError("price", value)
    return price


def _parse_quantity(value: str, *, max_quantity: int) -> int:
    if _UNSIGNED_PATTERN.fullmatch(value) is None:
        raise FieldCoercionError("qty", value)
    try:
        quantity = int(value)
    except ValueError as exc:
        raise FieldCoercionError("qty", value[:32]) from exc
    if quantity > max_quantity:
        raise FieldCoercionError("qty", value)
    return quantity
