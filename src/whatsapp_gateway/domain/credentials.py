"""Domain models for persisted authentication material."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

SaveHook = Callable[[dict[str, object | None]], Awaitable[None]]


@dataclass(frozen=True)
class LoadedCredentials:
    """Credential files for one account plus the hook that persists changes."""

    account_id: str
    files: dict[str, object] = field(default_factory=dict)
    save: SaveHook | None = None

    @property
    def registered(self) -> bool:
        """Return true when the account has completed pairing before."""
        creds = self.files.get("creds")
        return isinstance(creds, dict) and bool(creds.get("registered"))
