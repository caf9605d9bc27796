from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import NoReturn

from bybit_shiprekt.core.config import DEFAULT_MAX_QUANTITY, Settings
from bybit_shiprekt.core.enums import (
    EventKind,
    FrameKind,
    HeartbeatMode,
    TerminationReason,
    TransportErrorClass,
)
from bybit_shiprekt.notify.telegram import Notifier, NotifierError
from bybit_shiprekt.pipeline.heartbeat import HeartbeatCoordinator, HeartbeatTimeoutError
from bybit_shiprekt.sources.envelopes import (
    PING_REQUEST,
    DecodeError,
    LiquidationEvent,
    SubscriptionAck,
    decode_envelope,
    subscribe_request,
)
from bybit_shiprekt.sources.websocket import (
    Frame,
    Transport,
    WebSocketTransport,
    classify_transport_error,
)
from bybit_shiprekt.transforms.notification import build_notification

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Awaitable[Transport]]


class ConnectError(RuntimeError):
    """Raised when the feed endpoint cannot be reached."""


class SubscriptionError(RuntimeError):
    """Raised when the subscribe request cannot be written."""


class SessionTerminated(Exception):
    def __init__(self, reason: TerminationReason, detail: str) -> None:
        super().__init__(f"{reason}: {detail}")
        self.reason = reason
        self.detail = detail


@dataclass(slots=True)
class SessionCounters:
    frames_received: int = 0
    events_decoded: int = 0
    decode_failures: int = 0
    notifications_sent: int = 0
    notification_failures: int = 0


@dataclass(slots=True)
class Session:
    session_id: str
    transport: Transport
    heartbeat: HeartbeatCoordinator
    topics: tuple[str, ...]
    started_at: datetime
    counters: SessionCounters = field(default_factory=SessionCounters)


@dataclass(frozen=True, slots=True)
class SessionSummary:
    session_id: str
    reason: TerminationReason
    detail: str
    started_at: datetime
    ended_at: datetime
    frames_received: int
    events_decoded: int
    decode_failures: int
    notifications_sent: int
    notification_failures: int


class SessionEngine:
    """Run one feed session from connect to teardown.

    A single cooperative loop multiplexes the heartbeat timer and inbound
    frames: each iteration first services the heartbeat, then waits for a frame
    no longer than the time left until the next tick. Only this loop writes to
    the transport.
    """

    def __init__(
        self,
        *,
        url: str,
        notifier: Notifier,
        connect: TransportFactory | None = None,
        topics: Sequence[str] = ("liquidation",),
        heartbeat_mode: HeartbeatMode = HeartbeatMode.CONTROL,
        heartbeat_interval_seconds: float = 30.0,
        read_timeout_seconds: float = 0.1,
        max_quantity: int = DEFAULT_MAX_QUANTITY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._notifier = notifier
        self._connect = connect or WebSocketTransport.connect
        self._topics = tuple(topics)
        self._heartbeat_mode = heartbeat_mode
        self._heartbeat_interval_seconds = heartbeat_interval_seconds
        self._read_timeout_seconds = read_timeout_seconds
        self._max_quantity = max_quantity
        self._clock = clock
        self._session: Session | None = None
        self._running = False

    @classmethod
    def from_settings(cls, settings: Settings, *, notifier: Notifier) -> SessionEngine:
        async def _connect(url: str) -> Transport:
            return await WebSocketTransport.connect(url, open_timeout=settings.connect_timeout_seconds)

        return cls(
            url=settings.websocket_url,
            notifier=notifier,
            connect=_connect,
            topics=(settings.topic,),
            heartbeat_mode=settings.heartbeat_mode,
            heartbeat_interval_seconds=settings.heartbeat_interval_seconds,
            read_timeout_seconds=settings.read_timeout_seconds,
            max_quantity=settings.max_quantity,
        )

    @property
    def session(self) -> Session | None:
        return self._session

    async def run(self) -> SessionSummary:
        if self._running:
            raise RuntimeError("a session is already running on this engine")

        self._running = True
        try:
            session = await self._open_session()
            self._session = session
            try:
                await self._control_loop(session)
            except SessionTerminated as exc:
                return self._summarize(session, exc)
            finally:
                await self._close_transport_quietly(session.transport)
        finally:
            self._running = False
            self._session = None

    async def _open_session(self) -> Session:
        try:
            transport = await self._connect(self._url)
        except Exception as exc:
            raise ConnectError(f"cannot connect to {self._url}: {exc}") from exc

        try:
            await transport.send(Frame.text(subscribe_request(self._topics)))
        except Exception as exc:
            await self._close_transport_quietly(transport)
            raise SubscriptionError(f"cannot subscribe to {list(self._topics)}: {exc}") from exc

        session = Session(
            session_id=uuid.uuid4().hex,
            transport=transport,
            heartbeat=HeartbeatCoordinator(self._heartbeat_interval_seconds, clock=self._clock),
            topics=self._topics,
            started_at=datetime.now(tz=UTC),
        )
        logger.info(
            "Subscribed to feed topics",
            extra={"session_id": session.session_id, "topics": ",".join(self._topics)},
        )
        return session

    async def _control_loop(self, session: Session) -> NoReturn:
        while True:
            await self._service_heartbeat(session)

            timeout = min(self._read_timeout_seconds, session.heartbeat.seconds_until_due())
            try:
                frame = await session.transport.receive(timeout)
            except Exception as exc:
                self._on_receive_error(session, exc)
                continue

            if frame is None:
                continue
            session.counters.frames_received += 1
            await self._route_frame(session, frame)

    async def _service_heartbeat(self, session: Session) -> None:
        heartbeat = session.heartbeat
        if heartbeat.state.awaiting_ack and heartbeat.seconds_until_due() <= 0:
            await self._drain_pending_ack(session)

        try:
            if not heartbeat.poll():
                return
        except HeartbeatTimeoutError as exc:
            raise SessionTerminated(TerminationReason.HEARTBEAT_TIMEOUT, str(exc)) from exc

        try:
            await session.transport.send(self._keepalive_frame())
        except Exception as exc:
            heartbeat.mark_send_failed(exc)
            raise SessionTerminated(TerminationReason.HEARTBEAT_SEND_FAILED, repr(exc)) from exc
        heartbeat.mark_sent()

    async def _drain_pending_ack(self, session: Session) -> None:
        """Route frames that queued up while the loop was busy, until the ack shows up.

        Draining stops at the first empty read or after one more heartbeat
        interval, so a busy feed that never acknowledges still times out.
        """
        deadline = self._clock() + self._heartbeat_interval_seconds
        while session.heartbeat.state.awaiting_ack and self._clock() < deadline:
            try:
                frame = await session.transport.receive(self._read_timeout_seconds)
            except Exception as exc:
                self._on_receive_error(session, exc)
                return

            if frame is None:
                return
            session.counters.frames_received += 1
            await self._route_frame(session, frame)

    def _keepalive_frame(self) -> Frame:
        if self._heartbeat_mode is HeartbeatMode.TEXT:
            return Frame.text(PING_REQUEST)
        return Frame(kind=FrameKind.PING, payload=PING_REQUEST)

    def _on_receive_error(self, session: Session, exc: Exception) -> None:
        error_class = classify_transport_error(exc)
        if error_class is TransportErrorClass.BENIGN:
            return
        if error_class is TransportErrorClass.PROTOCOL_VIOLATION:
            logger.warning(
                "Protocol violation on feed",
                extra={"session_id": session.session_id, "error": repr(exc)},
            )
            return
        raise SessionTerminated(TerminationReason.CONNECTION_LOST, repr(exc)) from exc

    async def _route_frame(self, session: Session, frame: Frame) -> None:
        if frame.kind is FrameKind.TEXT:
            await self._on_text(session, frame.payload)
        elif frame.kind is FrameKind.PONG:
            if self._heartbeat_mode is HeartbeatMode.CONTROL:
                session.heartbeat.observe_ack()
        elif frame.kind is FrameKind.CLOSE:
            logger.info("Websocket closed by peer", extra={"session_id": session.session_id})
            raise SessionTerminated(TerminationReason.PEER_CLOSED, "close frame received")
        else:
            logger.debug(
                "Ignoring non-text frame",
                extra={"session_id": session.session_id, "frame_kind": str(frame.kind)},
            )

    async def _on_text(self, session: Session, payload: str | bytes) -> None:
        try:
            event = decode_envelope(payload, max_quantity=self._max_quantity)
        except DecodeError as exc:
            session.counters.decode_failures += 1
            logger.warning(
                "Dropping undecodable frame",
                extra={"session_id": session.session_id, "error": str(exc)},
            )
            return

        session.counters.events_decoded += 1
        if event.kind is EventKind.SUBSCRIPTION_ACK:
            self._on_ack(session, event)
        else:
            await self._on_liquidation(session, event)

    def _on_ack(self, session: Session, ack: SubscriptionAck) -> None:
        if ack.op == "ping":
            if self._heartbeat_mode is HeartbeatMode.TEXT:
                session.heartbeat.observe_ack()
            return
        if not ack.success:
            logger.warning(
                "Feed rejected request",
                extra={"session_id": session.session_id, "op": ack.op, "ret_msg": ack.ret_msg},
            )

    async def _on_liquidation(self, session: Session, event: LiquidationEvent) -> None:
        notification = build_notification(event)
        try:
            await self._notifier.send(notification.render())
        except NotifierError as exc:
            session.counters.notification_failures += 1
            logger.error(
                "Notification failed",
                extra={"session_id": session.session_id, "symbol": event.symbol, "error": str(exc)},
            )
            return

        session.counters.notifications_sent += 1
        logger.info(notification.summary(), extra={"session_id": session.session_id})

    def _summarize(self, session: Session, exc: SessionTerminated) -> SessionSummary:
        counters = session.counters
        summary = SessionSummary(
            session_id=session.session_id,
            reason=exc.reason,
            detail=exc.detail,
            started_at=session.started_at,
            ended_at=datetime.now(tz=UTC),
            frames_received=counters.frames_received,
            events_decoded=counters.events_decoded,
            decode_failures=counters.decode_failures,
            notifications_sent=counters.notifications_sent,
            notification_failures=counters.notification_failures,
        )
        logger.warning(
            "Session terminated",
            extra={"session_id": session.session_id, "reason": str(exc.reason), "detail": exc.detail},
        )
        return summary

    @staticmethod
    async def _close_transport_quietly(transport: Transport) -> None:
        try:
            await transport.close()
        except Exception:
            logger.debug("Transport close failed", exc_info=True)
