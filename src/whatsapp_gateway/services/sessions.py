"""Session lifecycle manager for per-account provider connections."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from whatsapp_gateway.domain.credentials import LoadedCredentials
from whatsapp_gateway.domain.sessions import (
    AccountState,
    ConnectionEventKind,
    DisconnectReason,
    SessionSnapshot,
    describe_disconnect,
    validate_account_id,
)
from whatsapp_gateway.services.accounts import AccountSlot, AccountTable
from whatsapp_gateway.services.pairing import render_pairing_image

if TYPE_CHECKING:
    from whatsapp_gateway.adapters.bridge_provider import (
        ConnectionProvider,
        ProviderConnection,
    )

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Persistence interface for per-account authentication material."""

    async def load(self, account_id: str) -> LoadedCredentials:
        """Load or initialize credentials for an account."""

    async def delete(self, account_id: str) -> None:
        """Remove all persisted material for an account."""

    async def list_accounts(self) -> list[str]:
        """Return accounts that have persisted material."""

    async def exists(self, account_id: str) -> bool:
        """Return true when an account has persisted material."""


class SessionNotFoundError(LookupError):
    """Raised when an account has no connected session."""


class PairingTimeoutError(TimeoutError):
    """Raised when neither a pairing code nor a connection appeared in time."""


class DispatchError(RuntimeError):
    """Raised when the provider rejects a message."""


@dataclass
class SessionManager:
    """Owns every account connection and drives its state machine."""

    credential_store: CredentialStore
    provider: ConnectionProvider
    reconnect_delay: float = 5.0
    poll_interval: float = 0.5
    poll_attempts: int = 20
    send_autoconnect: bool = True
    render_pairing: Callable[[str], str] = render_pairing_image
    _table: AccountTable = field(default_factory=AccountTable, init=False, repr=False)

    def status(self, account_id: str) -> SessionSnapshot:
        """Return a snapshot of the account's current state."""
        return self._table.snapshot(account_id)

    async def ensure_connected(self, account_id: str) -> SessionSnapshot:
        """Start a connection attempt unless one is live or in flight."""
        validate_account_id(account_id)
        slot = self._table.slot(account_id)
        if slot.session is not None or slot.connecting:
            return slot.snapshot()

        slot.connecting = True
        slot.cancel_reconnect()
        generation = slot.generation
        try:
            async with slot.lock:
                if slot.generation != generation:
                    return slot.snapshot()
                credentials = await self.credential_store.load(account_id)
                connection = await self.provider.connect(account_id, credentials)
                slot.pending = connection
                slot.watcher = asyncio.create_task(
                    self._watch(slot, connection, generation),
                    name=f"session-watch:{account_id}",
                )
        except BaseException:
            if slot.generation == generation:
                slot.connecting = False
                slot.pending = None
            raise
        logger.info(
            "Connecting account %s (registered=%s)",
            account_id,
            credentials.registered,
        )
        return slot.snapshot()

    async def connect_and_wait(self, account_id: str) -> SessionSnapshot:
        """Ensure a connection attempt and wait for pairing data or an open session."""
        snapshot = self.status(account_id)
        if snapshot.connected:
            return snapshot
        if snapshot.state is not AccountState.PAIRING_PENDING:
            await self.ensure_connected(account_id)

        result = await self._poll(
            account_id,
            lambda current: current.state
            in {AccountState.CONNECTED, AccountState.PAIRING_PENDING},
        )
        if result is None:
            raise PairingTimeoutError(account_id)
        return result

    async def send(
        self, account_id: str, destination: str, payload: dict[str, object]
    ) -> None:
        """Dispatch a payload through the account's live session."""
        connection = await self._connected_session(account_id)
        try:
            await self.provider.send(connection, destination, payload)
        except Exception as exc:
            logger.exception(
                "Failed to send message",
                extra={"account_id": account_id, "destination": destination},
            )
            await self._invalidate(account_id, connection)
            raise DispatchError(f"Failed to send message for {account_id}") from exc

    async def close(self, account_id: str) -> bool:
        """Log the account out and purge its credentials.

        Returns whether the account had live or pending state beforehand.
        """
        validate_account_id(account_id)
        slot = self._table.get(account_id)
        if slot is None:
            await self.credential_store.delete(account_id)
            logger.info("Closed account %s", account_id)
            return False
        had_state = slot.has_state()
        slot.generation += 1
        slot.cancel_reconnect()

        async with slot.lock:
            connection = slot.session or slot.pending
            watcher = slot.watcher
            slot.clear()
            if watcher is not None:
                watcher.cancel()
            if connection is not None:
                try:
                    await self.provider.terminate(connection)
                except Exception:
                    logger.exception(
                        "Failed to terminate connection",
                        extra={"account_id": account_id},
                    )
            await self.credential_store.delete(account_id)

        logger.info("Closed account %s", account_id)
        return had_state

    async def recover(self) -> list[str]:
        """Reconnect every account with persisted credentials."""
        accounts = await self.credential_store.list_accounts()
        logger.info("Recovering sessions: %s", ", ".join(accounts) or "none")
        recovered: list[str] = []
        for account_id in accounts:
            try:
                await self.ensure_connected(account_id)
            except Exception:
                logger.exception(
                    "Failed to recover session", extra={"account_id": account_id}
                )
                continue
            recovered.append(account_id)
        return recovered

    async def shutdown(self) -> None:
        """Cancel background tasks and drop connections without logging out."""
        tasks: list[asyncio.Task[None]] = []
        for slot in self._table:
            slot.generation += 1
            slot.cancel_reconnect()
            connection = slot.session or slot.pending
            if slot.watcher is not None:
                slot.watcher.cancel()
                tasks.append(slot.watcher)
            slot.clear()
            if connection is not None:
                await self._disconnect_quietly(slot.account_id, connection)
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _connected_session(self, account_id: str) -> ProviderConnection:
        slot = self._table.get(account_id)
        if slot is not None and slot.session is not None:
            return slot.session
        if self.send_autoconnect and await self.credential_store.exists(account_id):
            await self.ensure_connected(account_id)
            snapshot = await self._poll(account_id, lambda current: current.connected)
            slot = self._table.get(account_id)
            if snapshot is not None and slot is not None and slot.session is not None:
                return slot.session
        raise SessionNotFoundError(account_id)

    async def _poll(
        self, account_id: str, predicate: Callable[[SessionSnapshot], bool]
    ) -> SessionSnapshot | None:
        for _ in range(self.poll_attempts):
            snapshot = self.status(account_id)
            if predicate(snapshot):
                return snapshot
            await asyncio.sleep(self.poll_interval)
        snapshot = self.status(account_id)
        return snapshot if predicate(snapshot) else None

    async def _watch(
        self, slot: AccountSlot, connection: ProviderConnection, generation: int
    ) -> None:
        status_code: int | None = None
        try:
            async for event in connection.events():
                if event.kind is ConnectionEventKind.CLOSED:
                    status_code = event.status_code
                    break
                if event.kind is ConnectionEventKind.PAIRING:
                    image = self.render_pairing(event.pairing_code or "")
                    async with slot.lock:
                        if slot.generation != generation:
                            return
                        slot.pairing = image
                    logger.info("Pairing code ready for %s", slot.account_id)
                elif event.kind is ConnectionEventKind.OPENED:
                    async with slot.lock:
                        if slot.generation != generation:
                            return
                        slot.pairing = None
                        slot.session = connection
                        slot.pending = None
                        slot.connecting = False
                    logger.info("Session connected for %s", slot.account_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Connection event stream failed",
                extra={"account_id": slot.account_id},
            )
        await self._handle_closed(slot, generation, status_code)

    async def _handle_closed(
        self, slot: AccountSlot, generation: int, status_code: int | None
    ) -> None:
        async with slot.lock:
            if slot.generation != generation:
                return
            slot.clear()
            logger.info(
                "Connection closed for %s, reason: %s (%s)",
                slot.account_id,
                describe_disconnect(status_code),
                status_code,
            )
            if status_code != DisconnectReason.LOGGED_OUT:
                self._schedule_reconnect(slot)
                return
            try:
                await self.credential_store.delete(slot.account_id)
            except Exception:
                logger.exception(
                    "Failed to delete credentials after logout",
                    extra={"account_id": slot.account_id},
                )
                return
            logger.info("Credentials deleted for %s after logout", slot.account_id)

    def _schedule_reconnect(self, slot: AccountSlot) -> None:
        slot.reconnect = asyncio.create_task(
            self._reconnect_later(slot, slot.generation),
            name=f"session-reconnect:{slot.account_id}",
        )

    async def _reconnect_later(self, slot: AccountSlot, generation: int) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if slot.generation != generation:
            return
        slot.reconnect = None
        try:
            await self.ensure_connected(slot.account_id)
        except Exception:
            logger.exception(
                "Reconnect attempt failed", extra={"account_id": slot.account_id}
            )
            if slot.generation == generation and not slot.has_state():
                self._schedule_reconnect(slot)

    async def _invalidate(
        self, account_id: str, connection: ProviderConnection
    ) -> None:
        slot = self._table.slot(account_id)
        async with slot.lock:
            if slot.session is not connection:
                return
            slot.generation += 1
            if slot.watcher is not None:
                slot.watcher.cancel()
            slot.clear()
        await self._disconnect_quietly(account_id, connection)

    async def _disconnect_quietly(
        self, account_id: str, connection: ProviderConnection
    ) -> None:
        try:
            await self.provider.disconnect(connection)
        except Exception:
            logger.exception(
                "Failed to disconnect connection", extra={"account_id": account_id}
            )
