from __future__ import annotations

from enum import StrEnum


class FrameKind(StrEnum):
    TEXT = "text"
    BINARY = "binary"
    PING = "ping"
    PONG = "pong"
    CLOSE = "close"


class EventKind(StrEnum):
    SUBSCRIPTION_ACK = "subscription_ack"
    LIQUIDATION = "liquidation"


class Side(StrEnum):
    BUY = "Buy"
    SELL = "Sell"


class HeartbeatMode(StrEnum):
    CONTROL = "control"
    TEXT = "text"


class HeartbeatPhase(StrEnum):
    IDLE = "idle"
    AWAITING_ACK = "awaiting_ack"
    TERMINATED = "terminated"


class TransportErrorClass(StrEnum):
    BENIGN = "benign"
    TERMINATED = "terminated"
    PROTOCOL_VIOLATION = "protocol_violation"


class TerminationReason(StrEnum):
    PEER_CLOSED = "peer_closed"
    CONNECTION_LOST = "connection_lost"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    HEARTBEAT_SEND_FAILED = "heartbeat_send_failed"
