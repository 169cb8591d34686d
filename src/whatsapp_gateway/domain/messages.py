"""Domain models for outgoing messages."""

from dataclasses import dataclass


@dataclass(frozen=True)
class OutgoingMessage:
    """Normalized dispatch request as received from the control surface."""

    text: str | None = None
    media_type: str | None = None
    media_path: str | None = None
