"""Keepalive round-trip tracking for one session.

The coordinator never touches the transport itself. The session loop asks it
whether a keepalive is due, reports back whether the send succeeded, and feeds
it acknowledgements as they arrive. A tick that comes due while the previous
keepalive is still unacknowledged kills the session, so at most one round trip
is ever outstanding.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from bybit_shiprekt.core.enums import HeartbeatPhase

logger = logging.getLogger(__name__)


class HeartbeatTimeoutError(RuntimeError):
    """Raised when the feed stops acknowledging keepalives."""


@dataclass(frozen=True, slots=True)
class HeartbeatState:
    last_sent_at: float | None = None
    awaiting_ack: bool = False


class HeartbeatCoordinator:
    def __init__(self, interval_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._state = HeartbeatState()
        self._terminated = False
        self._next_due = clock() + interval_seconds

    @property
    def state(self) -> HeartbeatState:
        return self._state

    @property
    def phase(self) -> HeartbeatPhase:
        if self._terminated:
            return HeartbeatPhase.TERMINATED
        if self._state.awaiting_ack:
            return HeartbeatPhase.AWAITING_ACK
        return HeartbeatPhase.IDLE

    def seconds_until_due(self) -> float:
        return max(0.0, self._next_due - self._clock())

    def poll(self) -> bool:
        """Return True when a keepalive must be sent now."""
        if self._terminated:
            raise HeartbeatTimeoutError("heartbeat already terminated")

        now = self._clock()
        if now < self._next_due:
            return False

        if self._state.awaiting_ack:
            self._terminated = True
            waited = now - (self._state.last_sent_at or now)
            logger.warning("Keepalive not acknowledged", extra={"waited_seconds": round(waited, 3)})
            raise HeartbeatTimeoutError(f"no keepalive acknowledgement after {waited:.3f}s")
        return True

    def mark_sent(self) -> None:
        if self._state.awaiting_ack:
            raise RuntimeError("keepalive already outstanding")
        now = self._clock()
        self._state = HeartbeatState(last_sent_at=now, awaiting_ack=True)
        self._next_due = now + self._interval_seconds

    def mark_send_failed(self, exc: BaseException) -> None:
        self._terminated = True
        logger.warning("Keepalive send failed", extra={"error": repr(exc)})

    def observe_ack(self) -> bool:
        """Clear the outstanding keepalive; returns False for an unsolicited ack."""
        if self._terminated or not self._state.awaiting_ack:
            return False
        self._state = HeartbeatState(last_sent_at=self._state.last_sent_at, awaiting_ack=False)
        logger.debug(
            "Keepalive acknowledged",
            extra={"round_trip_seconds": round(self._clock() - (self._state.last_sent_at or 0.0), 3)},
        )
        return True
