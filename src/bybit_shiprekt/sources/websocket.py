from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidState,
    InvalidURI,
    PayloadTooBig,
    ProtocolError,
)

from bybit_shiprekt.core.enums import FrameKind, TransportErrorClass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Frame:
    kind: FrameKind
    payload: str | bytes = ""

    @classmethod
    def text(cls, payload: str) -> Frame:
        return cls(kind=FrameKind.TEXT, payload=payload)


class TransportConnectError(ConnectionError):
    """Raised when the websocket handshake cannot be completed."""


class Transport:
    """Streaming transport contract used by the session engine.

    ``receive`` returns ``None`` when no frame arrived within ``timeout``. Any
    other failure is raised and classified with :func:`classify_transport_error`.
    """

    async def send(self, frame: Frame) -> None:
        raise NotImplementedError

    async def receive(self, timeout: float) -> Frame | None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def classify_transport_error(exc: BaseException) -> TransportErrorClass:
    # TimeoutError is an OSError; it must be checked first
    if isinstance(exc, TimeoutError):
        return TransportErrorClass.BENIGN
    if isinstance(exc, (ConnectionClosed, InvalidState)):
        return TransportErrorClass.TERMINATED
    if isinstance(exc, (ProtocolError, PayloadTooBig, UnicodeDecodeError)):
        return TransportErrorClass.PROTOCOL_VIOLATION
    return TransportErrorClass.TERMINATED


class WebSocketTransport(Transport):
    def __init__(self, connection: ClientConnection) -> None:
        self._connection = connection
        self._pong_waiter: asyncio.Future[float] | None = None

    @classmethod
    async def connect(cls, url: str, *, open_timeout: float = 10.0) -> WebSocketTransport:
        try:
            # keepalive is driven by the heartbeat coordinator, not the library
            connection = await websockets.connect(
                url,
                ping_interval=None,
                open_timeout=open_timeout,
                close_timeout=5,
                max_size=2**22,
            )
        except (OSError, InvalidURI, InvalidHandshake) as exc:
            raise TransportConnectError(f"cannot connect to {url}: {exc}") from exc

        logger.info("Connected to websocket", extra={"url": url})
        return cls(connection)

    async def send(self, frame: Frame) -> None:
        if frame.kind is FrameKind.TEXT or frame.kind is FrameKind.BINARY:
            await self._connection.send(frame.payload)
        elif frame.kind is FrameKind.PING:
            self._pong_waiter = await self._connection.ping(frame.payload)
        elif frame.kind is FrameKind.PONG:
            await self._connection.pong(frame.payload)
        else:
            await self._connection.close()

    async def receive(self, timeout: float) -> Frame | None:
        try:
            return await self._receive(timeout)
        except ConnectionClosed as exc:
            # a close frame from the peer arrives as ConnectionClosed with rcvd set
            if exc.rcvd is None:
                raise
            logger.debug("Close frame received", extra={"code": exc.rcvd.code, "close_reason": exc.rcvd.reason})
            return Frame(kind=FrameKind.CLOSE)

    async def _receive(self, timeout: float) -> Frame | None:
        waiter = self._pong_waiter
        if waiter is not None and waiter.done():
            self._pong_waiter = None
            # re-raises ConnectionClosed when the connection died before the pong
            waiter.result()
            return Frame(kind=FrameKind.PONG)

        try:
            payload = await asyncio.wait_for(self._connection.recv(), timeout=timeout)
        except TimeoutError:
            return None

        if isinstance(payload, bytes):
            return Frame(kind=FrameKind.BINARY, payload=payload)
        return Frame.text(payload)

    async def close(self) -> None:
        await self._connection.close()
