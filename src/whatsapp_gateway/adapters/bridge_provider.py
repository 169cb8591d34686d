"""WhatsApp bridge connection provider adapter."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

import httpx

from whatsapp_gateway.domain.credentials import LoadedCredentials
from whatsapp_gateway.domain.sessions import ConnectionEvent, DisconnectReason

logger = logging.getLogger(__name__)

RECIPIENT_SUFFIX = "@s.whatsapp.net"


class ProviderConnection(Protocol):
    """Handle for one provider connection attempt."""

    account_id: str

    def events(self) -> AsyncIterator[ConnectionEvent]:
        """Yield lifecycle events until the connection closes."""


class ConnectionProvider(Protocol):
    """Interface for the component speaking the messaging protocol."""

    async def connect(
        self, account_id: str, credentials: LoadedCredentials
    ) -> ProviderConnection:
        """Begin establishing a connection without waiting for it to open."""

    async def send(
        self,
        connection: ProviderConnection,
        destination: str,
        payload: dict[str, object],
    ) -> None:
        """Send a message payload to a destination number."""

    async def terminate(self, connection: ProviderConnection) -> None:
        """Log the linked device out."""

    async def disconnect(self, connection: ProviderConnection) -> None:
        """Close the transport while keeping the credentials valid."""


def recipient_jid(destination: str) -> str:
    """Return the bridge address for a phone number."""
    if "@" in destination:
        return destination
    return f"{destination}{RECIPIENT_SUFFIX}"


@dataclass
class BridgeConnection:
    """Connection handle issued by the bridge."""

    connection_id: str
    account_id: str
    credentials: LoadedCredentials
    provider: "HttpxBridgeProvider"

    def events(self) -> AsyncIterator[ConnectionEvent]:
        """Yield lifecycle events until the connection closes."""
        return self.provider.stream_events(self)


@dataclass
class HttpxBridgeProvider:
    """Connection provider backed by an HTTP WhatsApp bridge."""

    base_url: str
    http_client: httpx.AsyncClient
    client_name: str = "Whatsapp Controle"
    poll_timeout: float = 25.0

    @classmethod
    def create(
        cls,
        base_url: str,
        token: str | None = None,
        client_name: str = "Whatsapp Controle",
        poll_timeout: float = 25.0,
    ) -> "HttpxBridgeProvider":
        """Create a bridge provider with a managed httpx session."""
        headers = {"Authorization": f"Bearer {token}"} if token else None
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(headers=headers),
            client_name=client_name,
            poll_timeout=poll_timeout,
        )

    async def connect(
        self, account_id: str, credentials: LoadedCredentials
    ) -> BridgeConnection:
        """Open a bridge connection seeded with the stored credentials."""
        response = await self.http_client.post(
            f"{self.base_url}/connections",
            json={
                "account_id": account_id,
                "credentials": credentials.files,
                "browser": [self.client_name, "Web", "110.0.0.0"],
                "print_qr_in_terminal": False,
                "mark_online_on_connect": False,
                "sync_full_history": False,
            },
            timeout=15,
        )
        response.raise_for_status()
        data = response.json()
        return BridgeConnection(
            connection_id=str(data["connection_id"]),
            account_id=account_id,
            credentials=credentials,
            provider=self,
        )

    async def stream_events(
        self, connection: BridgeConnection
    ) -> AsyncIterator[ConnectionEvent]:
        """Long-poll the bridge for connection events.

        Credential updates are persisted through the save hook before the
        next event is yielded. A failed poll ends the stream with a
        connection-lost close.
        """
        url = f"{self.base_url}/connections/{connection.connection_id}/events"
        while True:
            try:
                response = await self.http_client.get(
                    url,
                    params={"timeout": self.poll_timeout},
                    timeout=self.poll_timeout + 10,
                )
                response.raise_for_status()
                events = response.json().get("events", [])
            except httpx.HTTPError:
                logger.exception(
                    "Bridge event poll failed",
                    extra={"account_id": connection.account_id},
                )
                yield ConnectionEvent.closed(DisconnectReason.CONNECTION_LOST)
                return

            for raw in events:
                kind = raw.get("type")
                if kind == "creds":
                    if connection.credentials.save is not None:
                        await connection.credentials.save(raw.get("files") or {})
                elif kind == "qr":
                    yield ConnectionEvent.pairing(str(raw["qr"]))
                elif kind == "open":
                    yield ConnectionEvent.opened()
                elif kind == "close":
                    yield ConnectionEvent.closed(raw.get("status_code"))
                    return

    async def send(
        self,
        connection: BridgeConnection,
        destination: str,
        payload: dict[str, object],
    ) -> None:
        """Send a message through the bridge connection."""
        response = await self.http_client.post(
            f"{self.base_url}/connections/{connection.connection_id}/messages",
            json={"jid": recipient_jid(destination), "message": payload},
            timeout=30,
        )
        response.raise_for_status()

    async def terminate(self, connection: BridgeConnection) -> None:
        """Log the linked device out of the account."""
        response = await self.http_client.post(
            f"{self.base_url}/connections/{connection.connection_id}/logout",
            timeout=10,
        )
        response.raise_for_status()

    async def disconnect(self, connection: BridgeConnection) -> None:
        """Drop the bridge connection without logging out."""
        response = await self.http_client.delete(
            f"{self.base_url}/connections/{connection.connection_id}",
            timeout=10,
        )
        if response.status_code != httpx.codes.NOT_FOUND:
            response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()
