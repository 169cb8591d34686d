"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request, status

from whatsapp_gateway.app_logging import configure_logging
from whatsapp_gateway.containers import AppContainer
from whatsapp_gateway.domain.messages import OutgoingMessage
from whatsapp_gateway.domain.sessions import validate_account_id
from whatsapp_gateway.services.dispatch import build_message_payload
from whatsapp_gateway.services.sessions import (
    DispatchError,
    PairingTimeoutError,
    SessionNotFoundError,
)


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            await state_container.session_manager.recover()
        except Exception:
            logger.exception("Failed to recover persisted sessions")
        yield
        await state_container.session_manager.shutdown()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/{account_id}")
    async def account_status(account_id: str, request: Request) -> dict[str, object]:
        """Connect the account if needed and report its session or pairing code."""
        state_container: AppContainer = request.app.state.container
        _require_valid_account(account_id)
        try:
            snapshot = await state_container.session_manager.connect_and_wait(
                account_id
            )
        except PairingTimeoutError as exc:
            raise HTTPException(
                status_code=status.HTTP_408_REQUEST_TIMEOUT,
                detail="Pairing code was not generated in time",
            ) from exc
        except Exception as exc:
            logger.exception(
                "Failed to create session", extra={"account_id": account_id}
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to create session",
            ) from exc
        if snapshot.connected:
            return {"connected": True}
        return {"pairing": snapshot.pairing}

    @app.get("/{account_id}/close")
    async def close_account(account_id: str, request: Request) -> dict[str, bool]:
        """Log the account out and delete its stored credentials."""
        state_container: AppContainer = request.app.state.container
        _require_valid_account(account_id)
        had_state = await state_container.session_manager.close(account_id)
        if not had_state:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
            )
        return {"success": True}

    @app.get("/{account_id}/{destination}/message")
    async def send_message(  # noqa: PLR0913
        account_id: str,
        destination: str,
        request: Request,
        text: str | None = None,
        media_type: str | None = Query(default=None, alias="mediaType"),
        media_path: str | None = Query(default=None, alias="mediaPath"),
    ) -> dict[str, bool]:
        """Send a text or media message through the account's session."""
        state_container: AppContainer = request.app.state.container
        _require_valid_account(account_id)
        payload = build_message_payload(
            OutgoingMessage(text=text, media_type=media_type, media_path=media_path)
        )
        try:
            await state_container.session_manager.send(account_id, destination, payload)
        except SessionNotFoundError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
            ) from exc
        except DispatchError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to send message",
            ) from exc
        return {"success": True}

    return app


def _require_valid_account(account_id: str) -> None:
    """Reject account ids that cannot name a credential directory."""
    try:
        validate_account_id(account_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
