from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from bybit_shiprekt.pipeline.session import ConnectError, SessionEngine, SessionSummary, SubscriptionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SupervisorReport:
    sessions_started: int = 0
    reconnect_failures: int = 0
    summaries: list[SessionSummary] = field(default_factory=list)


class SessionSupervisor:
    """Rebuild the feed session after every teardown.

    Only the very first connect and subscribe are fatal; once the feed has been
    reached, every later failure is logged and retried after ``reconnect_seconds``.
    """

    def __init__(
        self,
        engine: SessionEngine,
        *,
        reconnect_seconds: float = 2.0,
        max_sessions: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._reconnect_seconds = reconnect_seconds
        self._max_sessions = max_sessions
        self._sleep = sleep

    async def run(self) -> SupervisorReport:
        report = SupervisorReport()

        while self._max_sessions is None or report.sessions_started < self._max_sessions:
            try:
                summary = await self._engine.run()
            except (ConnectError, SubscriptionError):
                if report.sessions_started == 0:
                    raise
                report.reconnect_failures += 1
                logger.exception(
                    "Reconnect failed",
                    extra={"reconnect_failures": report.reconnect_failures},
                )
            else:
                report.sessions_started += 1
                report.summaries.append(summary)
                logger.info(
                    "Session ended; reconnecting",
                    extra={
                        "reason": str(summary.reason),
                        "notifications_sent": summary.notifications_sent,
                        "reconnect_seconds": self._reconnect_seconds,
                    },
                )

            if self._max_sessions is not None and report.sessions_started >= self._max_sessions:
                break
            await self._sleep(self._reconnect_seconds)

        return report
