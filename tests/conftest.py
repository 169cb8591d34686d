"""Shared test fixtures."""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import pytest

from whatsapp_gateway.adapters.bridge_provider import ConnectionProvider
from whatsapp_gateway.config import Settings
from whatsapp_gateway.containers import AppContainer
from whatsapp_gateway.domain.credentials import LoadedCredentials
from whatsapp_gateway.domain.sessions import ConnectionEvent, ConnectionEventKind
from whatsapp_gateway.services.sessions import CredentialStore, SessionManager


@dataclass
class InMemoryCredentialStore(CredentialStore):
    """In-memory credential store for tests."""

    accounts: dict[str, dict[str, object]] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    loaded: list[str] = field(default_factory=list)

    async def load(self, account_id: str) -> LoadedCredentials:
        self.loaded.append(account_id)
        files = self.accounts.setdefault(account_id, {})

        async def save(changes: dict[str, object | None]) -> None:
            for key, value in changes.items():
                if value is None:
                    files.pop(key, None)
                else:
                    files[key] = value

        return LoadedCredentials(account_id=account_id, files=dict(files), save=save)

    async def delete(self, account_id: str) -> None:
        self.deleted.append(account_id)
        self.accounts.pop(account_id, None)

    async def list_accounts(self) -> list[str]:
        return sorted(self.accounts)

    async def exists(self, account_id: str) -> bool:
        return account_id in self.accounts


@dataclass
class FakeConnection:
    """Provider connection driven by events pushed from tests."""

    account_id: str
    credentials: LoadedCredentials
    queue: asyncio.Queue[ConnectionEvent] = field(default_factory=asyncio.Queue)

    def emit(self, event: ConnectionEvent) -> None:
        self.queue.put_nowait(event)

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        while True:
            event = await self.queue.get()
            yield event
            if event.kind is ConnectionEventKind.CLOSED:
                return


@dataclass
class FakeConnectionProvider(ConnectionProvider):
    """Fake provider that records calls and replays a scripted event list."""

    script: list[ConnectionEvent] = field(default_factory=list)
    connections: list[FakeConnection] = field(default_factory=list)
    sent: list[tuple[str, str, dict[str, object]]] = field(default_factory=list)
    terminated: list[FakeConnection] = field(default_factory=list)
    disconnected: list[FakeConnection] = field(default_factory=list)
    connect_gate: asyncio.Event | None = None
    fail_connect_for: set[str] = field(default_factory=set)
    fail_send: bool = False
    fail_terminate: bool = False

    async def connect(
        self, account_id: str, credentials: LoadedCredentials
    ) -> FakeConnection:
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if account_id in self.fail_connect_for:
            raise RuntimeError("bridge unavailable")
        connection = FakeConnection(account_id=account_id, credentials=credentials)
        for event in self.script:
            connection.emit(event)
        self.connections.append(connection)
        return connection

    async def send(
        self,
        connection: FakeConnection,
        destination: str,
        payload: dict[str, object],
    ) -> None:
        if self.fail_send:
            raise RuntimeError("send rejected")
        self.sent.append((connection.account_id, destination, payload))

    async def terminate(self, connection: FakeConnection) -> None:
        self.terminated.append(connection)
        if self.fail_terminate:
            raise RuntimeError("logout failed")

    async def disconnect(self, connection: FakeConnection) -> None:
        self.disconnected.append(connection)

    def connects_for(self, account_id: str) -> int:
        return sum(1 for item in self.connections if item.account_id == account_id)


def fake_render(code: str) -> str:
    return f"qr:{code}"


def build_manager(
    store: InMemoryCredentialStore,
    provider: FakeConnectionProvider,
    **overrides: object,
) -> SessionManager:
    options: dict[str, object] = {
        "reconnect_delay": 0.01,
        "poll_interval": 0.01,
        "poll_attempts": 20,
        "render_pairing": fake_render,
    }
    options.update(overrides)
    return SessionManager(
        credential_store=store,
        provider=provider,
        **options,  # type: ignore[arg-type]
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until the predicate holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


async def settle() -> None:
    """Give background tasks a few loop iterations to run."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        bridge_url="http://bridge.test",
        sessions_root=tmp_path / "sessions",
        reconnect_delay_seconds=0.01,
        pairing_poll_interval_seconds=0.01,
        pairing_poll_attempts=20,
    )


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def provider() -> FakeConnectionProvider:
    return FakeConnectionProvider()


@pytest.fixture
def container(
    settings: Settings,
    credential_store: InMemoryCredentialStore,
    provider: FakeConnectionProvider,
) -> AppContainer:
    session_manager = SessionManager(
        credential_store=credential_store,
        provider=provider,
        reconnect_delay=settings.reconnect_delay_seconds,
        poll_interval=settings.pairing_poll_interval_seconds,
        poll_attempts=settings.pairing_poll_attempts,
        send_autoconnect=settings.send_autoconnect,
        render_pairing=fake_render,
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        credential_store=credential_store,
        provider=provider,
        session_manager=session_manager,
        close_resources=close_resources,
    )
