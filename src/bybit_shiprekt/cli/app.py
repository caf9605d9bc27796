from __future__ import annotations

import asyncio

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from bybit_shiprekt.core.config import Settings
from bybit_shiprekt.core.enums import EventKind
from bybit_shiprekt.core.logging import configure_logging
from bybit_shiprekt.core.symbols import classify
from bybit_shiprekt.notify.telegram import TelegramNotifier
from bybit_shiprekt.pipeline.session import ConnectError, SessionEngine, SessionSummary, SubscriptionError
from bybit_shiprekt.pipeline.supervisor import SessionSupervisor, SupervisorReport
from bybit_shiprekt.sources.envelopes import DecodeError, decode_envelope
from bybit_shiprekt.transforms.notification import build_notification

app = typer.Typer(help="Relay Bybit liquidations to Telegram")
console = Console()

EXIT_FATAL = 1
EXIT_SESSION_ENDED = 2


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        missing = ", ".join(
            "HX_BYBIT_SHIPREKT_" + str(error["loc"][0]).upper() for error in exc.errors() if error["loc"]
        )
        console.print(f"[red]Invalid configuration:[/red] {missing or exc}")
        raise typer.Exit(code=EXIT_FATAL) from exc


def _notifier_for(settings: Settings) -> TelegramNotifier:
    return TelegramNotifier(
        settings.telegram_bot_token,
        settings.telegram_channel_chat_id,
        base_url=settings.telegram_api_base_url,
        timeout_seconds=settings.notifier_timeout_seconds,
        retries=settings.notifier_max_retries,
    )


def _describe_summary(summary: SessionSummary) -> str:
    return (
        f"Session {summary.session_id[:8]} ended ({summary.reason}): {summary.detail}; "
        f"frames={summary.frames_received} decoded={summary.events_decoded} "
        f"decode_failures={summary.decode_failures} notified={summary.notifications_sent} "
        f"notify_failures={summary.notification_failures}"
    )


async def _run_single(settings: Settings) -> SessionSummary:
    notifier = _notifier_for(settings)
    try:
        return await SessionEngine.from_settings(settings, notifier=notifier).run()
    finally:
        await notifier.close()


async def _run_supervised(settings: Settings) -> SupervisorReport:
    notifier = _notifier_for(settings)
    try:
        engine = SessionEngine.from_settings(settings, notifier=notifier)
        return await SessionSupervisor(engine, reconnect_seconds=settings.reconnect_seconds).run()
    finally:
        await notifier.close()


@app.command("run")
def run() -> None:
    """Run one feed session; exits non-zero when the session ends."""
    settings = _load_settings()
    configure_logging(settings.log_level)

    try:
        summary = asyncio.run(_run_single(settings))
    except (ConnectError, SubscriptionError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=EXIT_FATAL) from exc

    console.print(_describe_summary(summary))
    raise typer.Exit(code=EXIT_SESSION_ENDED)


@app.command("run-forever")
def run_forever() -> None:
    """Run feed sessions back to back, reconnecting after every teardown."""
    settings = _load_settings()
    configure_logging(settings.log_level)

    try:
        asyncio.run(_run_supervised(settings))
    except (ConnectError, SubscriptionError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=EXIT_FATAL) from exc
    except KeyboardInterrupt:
        console.print("Stopped.")


@app.command("classify")
def classify_symbol(symbol: str = typer.Argument(help="Ticker, e.g. BTCUSDT or BTCUSDM22")) -> None:
    facts = classify(symbol)
    console.print(f"symbol           = [bold]{facts.symbol}[/bold]")
    console.print(f"kind             = {facts.kind}")
    console.print(f"base_currency    = {facts.base_currency or '-'}")
    console.print(f"display_currency = {facts.display_currency}")
    console.print(f"contract         = {facts.contract_label}")


@app.command("render")
def render(
    payload: str = typer.Argument(help="Raw text frame as received from the feed"),
    max_quantity: int | None = typer.Option(default=None, min=1, help="Override the quantity bound"),
) -> None:
    """Decode one feed frame and print the notification it would produce."""
    try:
        if max_quantity is None:
            event = decode_envelope(payload)
        else:
            event = decode_envelope(payload, max_quantity=max_quantity)
    except DecodeError as exc:
        console.print(f"[red]{exc.__class__.__name__}:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_FATAL) from exc

    if event.kind is not EventKind.LIQUIDATION:
        console.print(f"[yellow]Not a liquidation:[/yellow] {event.kind}")
        raise typer.Exit(code=EXIT_FATAL)

    console.print(build_notification(event).render(), markup=False, highlight=False, soft_wrap=True)


if __name__ == "__main__":
    app()
