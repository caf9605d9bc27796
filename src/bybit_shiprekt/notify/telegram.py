from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class NotifierError(RuntimeError):
    """Raised when a notification could not be delivered."""


class Notifier:
    """Outbound notification contract."""

    async def send(self, text: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class TelegramNotifier(Notifier):
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        base_url: str = "https://api.telegram.org",
        timeout_seconds: int = 10,
        retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )
        self._path = f"/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._retries = max(1, retries)
        self._min_retry_delay_seconds = 1.0
        self._max_backoff_seconds = 30.0

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, text: str) -> None:
        body = {"chat_id": self._chat_id, "text": text}

        for attempt in range(1, self._retries + 1):
            try:
                response = await self._client.post(self._path, json=body)
            except httpx.TransportError as exc:
                if attempt >= self._retries:
                    raise NotifierError(f"Telegram request failed: {exc.__class__.__name__}") from exc
                await self._sleep_before_retry(attempt=attempt, status_code=None, reason=exc.__class__.__name__)
                continue

            if response.status_code < 400:
                self._check_ok(response)
                return

            if self._is_retryable_status(response.status_code) and attempt < self._retries:
                await self._sleep_before_retry(
                    attempt=attempt,
                    status_code=response.status_code,
                    reason=f"HTTP {response.status_code}",
                    retry_after_seconds=self._parse_retry_after_seconds(response),
                )
                continue

            raise NotifierError(f"Telegram sendMessage failed with HTTP {response.status_code}: {_description(response)}")

        raise NotifierError("Telegram sendMessage exhausted retries")

    @staticmethod
    def _check_ok(response: httpx.Response) -> None:
        try:
            payload = response.json()
        except ValueError as exc:
            raise NotifierError("Telegram returned a non-JSON response") from exc
        if not isinstance(payload, dict) or payload.get("ok") is not True:
            raise NotifierError(f"Telegram rejected the message: {_description(response)}")

    @staticmethod
    def _is_retryable_status(status_code: int) -> bool:
        return status_code == 429 or 500 <= status_code < 600

    @staticmethod
    def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
        raw_value = response.headers.get("Retry-After")
        if raw_value is not None:
            try:
                return max(0.0, float(raw_value.strip()))
            except ValueError:
                pass

        # Telegram puts the flood-control delay in the body
        try:
            payload: Any = response.json()
        except ValueError:
            return None
        parameters = payload.get("parameters") if isinstance(payload, dict) else None
        if isinstance(parameters, dict) and isinstance(parameters.get("retry_after"), (int, float)):
            return max(0.0, float(parameters["retry_after"]))
        return None

    async def _sleep_before_retry(
        self,
        *,
        attempt: int,
        status_code: int | None,
        reason: str,
        retry_after_seconds: float | None = None,
    ) -> None:
        if retry_after_seconds is not None:
            delay = retry_after_seconds
        else:
            delay = min(
                self._max_backoff_seconds,
                self._min_retry_delay_seconds * (2 ** max(attempt - 1, 0)),
            )
            delay += random.uniform(0.0, 0.3)  # noqa: S311

        logger.warning(
            "Retrying Telegram sendMessage",
            extra={
                "attempt": attempt,
                "max_attempts": self._retries,
                "status_code": status_code,
                "reason": reason,
                "sleep_seconds": round(delay, 3),
            },
        )
        await asyncio.sleep(delay)


def _description(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and isinstance(payload.get("description"), str):
        return payload["description"]
    return response.text[:200]
