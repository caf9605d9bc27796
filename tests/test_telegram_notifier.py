from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from bybit_shiprekt.notify.telegram import NotifierError, TelegramNotifier


def _send(notifier: TelegramNotifier, text: str) -> None:
    async def scenario() -> None:
        try:
            await notifier.send(text)
        finally:
            await notifier.close()

    asyncio.run(scenario())


def test_send_message_posts_chat_id_and_text() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code=200, request=request, json={"ok": True, "result": {"message_id": 1}})

    notifier = TelegramNotifier("123:abc", "-100200", transport=httpx.MockTransport(handler))
    _send(notifier, "Bybit shiprekt a Long position")

    assert len(requests) == 1
    assert requests[0].method == "POST"
    assert requests[0].url.path == "/bot123:abc/sendMessage"
    assert json.loads(requests[0].content) == {"chat_id": "-100200", "text": "Bybit shiprekt a Long position"}


def test_send_retries_on_flood_control_then_succeeds() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            return httpx.Response(
                status_code=429,
                request=request,
                json={"ok": False, "error_code": 429, "parameters": {"retry_after": 0}},
            )
        if call_count == 2:
            return httpx.Response(status_code=502, request=request, headers={"Retry-After": "0"}, text="bad gateway")
        return httpx.Response(status_code=200, request=request, json={"ok": True})

    notifier = TelegramNotifier("t", "c", retries=3, transport=httpx.MockTransport(handler))
    _send(notifier, "hello")

    assert call_count == 3


def test_send_does_not_retry_on_400() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(
            status_code=400,
            request=request,
            json={"ok": False, "error_code": 400, "description": "Bad Request: chat not found"},
        )

    notifier = TelegramNotifier("t", "c", retries=5, transport=httpx.MockTransport(handler))

    with pytest.raises(NotifierError, match="chat not found"):
        _send(notifier, "hello")
    assert call_count == 1


def test_ok_false_body_is_a_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, request=request, json={"ok": False, "description": "nope"})

    notifier = TelegramNotifier("t", "c", transport=httpx.MockTransport(handler))

    with pytest.raises(NotifierError):
        _send(notifier, "hello")


def test_transport_error_becomes_notifier_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier = TelegramNotifier("t", "c", retries=1, transport=httpx.MockTransport(handler))

    with pytest.raises(NotifierError) as exc_info:
        _send(notifier, "hello")
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


def test_exhausted_retries_raise() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(status_code=503, request=request, headers={"Retry-After": "0"}, text="down")

    notifier = TelegramNotifier("t", "c", retries=2, transport=httpx.MockTransport(handler))

    with pytest.raises(NotifierError, match="HTTP 503"):
        _send(notifier, "hello")
    assert call_count == 2
