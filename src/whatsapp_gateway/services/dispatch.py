"""Build provider payloads from normalized dispatch requests."""

import logging
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

from whatsapp_gateway.domain.messages import OutgoingMessage

logger = logging.getLogger(__name__)

INVALID_DOCUMENT_TEXT = "Invalid file"
DEFAULT_DOCUMENT_NAME = "document.pdf"
DOCUMENT_MIMETYPE = "application/octet-stream"

_MEDIA_KINDS = {
    "image": "image",
    "imagem": "image",
    "video": "video",
    "document": "document",
    "documento": "document",
}


def build_message_payload(message: OutgoingMessage) -> dict[str, object]:
    """Return the bridge payload for a dispatch request."""
    text = message.text or ""
    if not message.media_type or not message.media_path:
        return {"text": text}

    kind = _MEDIA_KINDS.get(message.media_type.strip().lower())
    if kind is None:
        return {"text": text}

    if kind == "document":
        try:
            file_name = document_file_name(message.media_path)
        except ValueError:
            logger.warning(
                "Falling back to text for unparseable document URL",
                extra={"media_path": message.media_path},
            )
            return {"text": message.text or INVALID_DOCUMENT_TEXT}
        payload: dict[str, object] = {
            "document": {
                "url": message.media_path,
                "mimetype": DOCUMENT_MIMETYPE,
                "fileName": file_name or DEFAULT_DOCUMENT_NAME,
            }
        }
    else:
        payload = {kind: {"url": message.media_path}}

    if message.text:
        payload["caption"] = message.text
    return payload


def document_file_name(url: str) -> str:
    """Recover the display file name from the last path segment of a URL.

    Raises ValueError when the value is not an absolute URL or its path holds
    percent-escapes that do not decode to UTF-8.
    """
    parts = urlsplit(url.strip())
    if not parts.scheme:
        raise ValueError(f"Not an absolute URL: {url!r}")
    name = PurePosixPath(parts.path).name
    return unquote(name, errors="strict")
