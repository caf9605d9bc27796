from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from bybit_shiprekt.core.config import DEFAULT_MAX_QUANTITY, Settings
from bybit_shiprekt.core.enums import HeartbeatMode


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("HX_BYBIT_SHIPREKT_TELEGRAM_BOT_TOKEN", "HX_BYBIT_SHIPREKT_TELEGRAM_CHANNEL_CHAT_ID"):
        monkeypatch.delenv(name, raising=False)


def test_settings_read_required_identifiers_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HX_BYBIT_SHIPREKT_TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("HX_BYBIT_SHIPREKT_TELEGRAM_CHANNEL_CHAT_ID", "-100200")
    monkeypatch.setenv("HX_BYBIT_SHIPREKT_HEARTBEAT_MODE", "text")

    settings = Settings()

    assert settings.telegram_bot_token == "123:abc"
    assert settings.telegram_channel_chat_id == "-100200"
    assert settings.heartbeat_mode is HeartbeatMode.TEXT
    assert settings.websocket_url == "wss://stream.bybit.com/realtime"
    assert settings.topic == "liquidation"
    assert settings.heartbeat_interval_seconds == 30.0
    assert settings.max_quantity == DEFAULT_MAX_QUANTITY == 4_294_967_295


def test_settings_read_dotenv_file(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "HX_BYBIT_SHIPREKT_TELEGRAM_BOT_TOKEN=from-file\n"
        "HX_BYBIT_SHIPREKT_TELEGRAM_CHANNEL_CHAT_ID=chat\n"
        "HX_BYBIT_SHIPREKT_READ_TIMEOUT_SECONDS=0.5\n",
        encoding="utf-8",
    )

    settings = Settings()

    assert settings.telegram_bot_token == "from-file"
    assert settings.read_timeout_seconds == 0.5


def test_missing_required_identifiers_fail() -> None:
    with pytest.raises(ValidationError) as exc_info:
        Settings()

    missing = {error["loc"][0] for error in exc_info.value.errors()}
    assert missing == {"telegram_bot_token", "telegram_channel_chat_id"}


def test_heartbeat_interval_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(telegram_bot_token="t", telegram_channel_chat_id="c", heartbeat_interval_seconds=0)
