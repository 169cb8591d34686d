"""Domain models for account sessions and provider events."""

from dataclasses import dataclass
from enum import IntEnum, StrEnum


class AccountState(StrEnum):
    """Externally visible state of an account connection."""

    CONNECTED = "connected"
    PAIRING_PENDING = "pairing_pending"
    CONNECTING = "connecting"
    UNAVAILABLE = "unavailable"


class DisconnectReason(IntEnum):
    """Status codes reported by the WhatsApp bridge when a connection closes."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


def describe_disconnect(status_code: int | None) -> str:
    """Return a readable name for a disconnect status code."""
    if status_code is None:
        return "unknown"
    try:
        return DisconnectReason(status_code).name.lower()
    except ValueError:
        return "unknown"


def validate_account_id(account_id: str) -> str:
    """Reject account ids that cannot safely name a credential directory."""
    if (
        not account_id
        or account_id in {".", ".."}
        or any(char in account_id for char in ("/", "\\", "\x00"))
    ):
        raise ValueError(f"Invalid account id: {account_id!r}")
    return account_id


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of one account."""

    account_id: str
    state: AccountState
    pairing: str | None = None
    reconnect_pending: bool = False

    @property
    def connected(self) -> bool:
        return self.state is AccountState.CONNECTED


class ConnectionEventKind(StrEnum):
    PAIRING = "pairing"
    OPENED = "opened"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConnectionEvent:
    """Lifecycle event emitted by a provider connection."""

    kind: ConnectionEventKind
    pairing_code: str | None = None
    status_code: int | None = None

    @classmethod
    def pairing(cls, code: str) -> "ConnectionEvent":
        return cls(kind=ConnectionEventKind.PAIRING, pairing_code=code)

    @classmethod
    def opened(cls) -> "ConnectionEvent":
        return cls(kind=ConnectionEventKind.OPENED)

    @classmethod
    def closed(cls, status_code: int | None = None) -> "ConnectionEvent":
        return cls(kind=ConnectionEventKind.CLOSED, status_code=status_code)
