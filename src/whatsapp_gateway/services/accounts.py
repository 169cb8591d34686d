"""Per-account state table owned by the session manager."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from whatsapp_gateway.domain.sessions import AccountState, SessionSnapshot

if TYPE_CHECKING:
    from whatsapp_gateway.adapters.bridge_provider import ProviderConnection


@dataclass
class AccountSlot:
    """Mutable connection state for one account.

    Writers hold ``lock``. ``generation`` is bumped whenever the slot is torn
    down from outside the event stream, which turns any watcher, connect
    attempt or reconnect timer started under an older generation into a no-op.
    """

    account_id: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    session: ProviderConnection | None = None
    pairing: str | None = None
    connecting: bool = False
    pending: ProviderConnection | None = None
    generation: int = 0
    watcher: asyncio.Task[None] | None = None
    reconnect: asyncio.Task[None] | None = None

    @property
    def reconnect_pending(self) -> bool:
        return self.reconnect is not None and not self.reconnect.done()

    def has_state(self) -> bool:
        return (
            self.session is not None
            or self.pairing is not None
            or self.connecting
            or self.reconnect_pending
        )

    def snapshot(self) -> SessionSnapshot:
        if self.session is not None:
            state = AccountState.CONNECTED
        elif self.pairing is not None:
            state = AccountState.PAIRING_PENDING
        elif self.connecting:
            state = AccountState.CONNECTING
        else:
            state = AccountState.UNAVAILABLE
        return SessionSnapshot(
            account_id=self.account_id,
            state=state,
            pairing=self.pairing if state is AccountState.PAIRING_PENDING else None,
            reconnect_pending=self.reconnect_pending,
        )

    def clear(self) -> None:
        """Drop the session record, pairing entry and in-flight marker."""
        self.session = None
        self.pairing = None
        self.connecting = False
        self.pending = None
        self.watcher = None

    def cancel_reconnect(self) -> None:
        task, self.reconnect = self.reconnect, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()


@dataclass
class AccountTable:
    """Slots keyed by account id.

    Slots are never removed once created, so every task that captured a slot
    keeps observing the same generation counter as later callers.
    """

    _slots: dict[str, AccountSlot] = field(default_factory=dict)

    def slot(self, account_id: str) -> AccountSlot:
        slot = self._slots.get(account_id)
        if slot is None:
            slot = AccountSlot(account_id=account_id)
            self._slots[account_id] = slot
        return slot

    def get(self, account_id: str) -> AccountSlot | None:
        return self._slots.get(account_id)

    def snapshot(self, account_id: str) -> SessionSnapshot:
        slot = self._slots.get(account_id)
        if slot is None:
            return SessionSnapshot(account_id, AccountState.UNAVAILABLE)
        return slot.snapshot()

    def __iter__(self) -> Iterator[AccountSlot]:
        return iter(list(self._slots.values()))
