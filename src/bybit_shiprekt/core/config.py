from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from bybit_shiprekt.core.enums import HeartbeatMode

# Quantities arrive as unsigned 32-bit integers on the feed.
DEFAULT_MAX_QUANTITY = 2**32 - 1


class Settings(BaseSettings):
    telegram_bot_token: str = Field(min_length=1)
    telegram_channel_chat_id: str = Field(min_length=1)

    websocket_url: str = Field(default="wss://stream.bybit.com/realtime")
    topic: str = Field(default="liquidation", min_length=1)

    heartbeat_mode: HeartbeatMode = Field(default=HeartbeatMode.CONTROL)
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    read_timeout_seconds: float = Field(default=0.1, gt=0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    max_quantity: int = Field(default=DEFAULT_MAX_QUANTITY, ge=1)

    telegram_api_base_url: str = Field(default="https://api.telegram.org")
    notifier_timeout_seconds: int = Field(default=10, ge=1)
    notifier_max_retries: int = Field(default=3, ge=1)

    reconnect_seconds: float = Field(default=2.0, ge=0)

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="HX_BYBIT_SHIPREKT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
