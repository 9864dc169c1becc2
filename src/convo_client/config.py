from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8000"
    ACCESS_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: float = 10.0

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_EVENTS_CHANNEL: str = "chat.fanout"
    BUS_RECONNECT_DELAY: float = 5.0

    HISTORY_PAGE_SIZE: int = 50

    # Seconds between bus reads while a conversation is on screen / in the background
    FOREGROUND_POLL_INTERVAL: float = 1.0
    BACKGROUND_POLL_INTERVAL: float = 60.0

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
