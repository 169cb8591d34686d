"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    bridge_url: str
    bridge_token: str | None = None
    bridge_poll_timeout_seconds: float = 25.0
    sessions_root: Path = Path("sessions")
    client_name: str = "Whatsapp Controle"
    reconnect_delay_seconds: float = 5.0
    pairing_poll_interval_seconds: float = 0.5
    pairing_poll_attempts: int = 20
    send_autoconnect: bool = True
    host: str = "0.0.0.0"
    port: int = 48501
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
