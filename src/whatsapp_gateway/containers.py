"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from whatsapp_gateway.adapters.bridge_provider import (
    ConnectionProvider,
    HttpxBridgeProvider,
)
from whatsapp_gateway.adapters.file_credential_store import FileCredentialStore
from whatsapp_gateway.config import Settings
from whatsapp_gateway.services.sessions import CredentialStore, SessionManager


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    credential_store: CredentialStore
    provider: ConnectionProvider
    session_manager: SessionManager
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    credential_store = FileCredentialStore(resolved_settings.sessions_root)
    provider = HttpxBridgeProvider.create(
        base_url=resolved_settings.bridge_url,
        token=resolved_settings.bridge_token,
        client_name=resolved_settings.client_name,
        poll_timeout=resolved_settings.bridge_poll_timeout_seconds,
    )
    session_manager = SessionManager(
        credential_store=credential_store,
        provider=provider,
        reconnect_delay=resolved_settings.reconnect_delay_seconds,
        poll_interval=resolved_settings.pairing_poll_interval_seconds,
        poll_attempts=resolved_settings.pairing_poll_attempts,
        send_autoconnect=resolved_settings.send_autoconnect,
    )

    async def close_resources() -> None:
        await provider.close()

    return AppContainer(
        settings=resolved_settings,
        credential_store=credential_store,
        provider=provider,
        session_manager=session_manager,
        close_resources=close_resources,
    )
