"""Filesystem-backed credential store."""

import asyncio
import json
import logging
import os
import shutil
import tempfile
from collections.abc import Awaitable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote, unquote

from whatsapp_gateway.domain.credentials import LoadedCredentials
from whatsapp_gateway.domain.sessions import validate_account_id
from whatsapp_gateway.services.sessions import CredentialStore

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


@dataclass
class FileCredentialStore(CredentialStore):
    """Stores each account's credential files in its own directory.

    Loads, saves and deletes for one account are serialized. Deleting an
    account invalidates every save hook handed out before the delete, so a
    write that was queued behind it is dropped instead of recreating files.
    """

    root: Path
    _locks: dict[str, asyncio.Lock] = field(
        default_factory=dict, init=False, repr=False
    )
    _epochs: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    async def load(self, account_id: str) -> LoadedCredentials:
        """Load the account's files, creating its directory if needed."""
        directory = self._account_dir(account_id)
        lock = self._lock(account_id)
        async with lock:
            files = await asyncio.to_thread(_read_directory, directory)
            epoch = self._epochs.get(account_id, 0)

        async def save(changes: dict[str, object | None]) -> None:
            async with lock:
                if self._epochs.get(account_id, 0) != epoch:
                    logger.info(
                        "Dropping write for deleted account",
                        extra={"account_id": account_id},
                    )
                    return
                written = await _finish(
                    asyncio.to_thread(_write_files, directory, changes)
                )
            if not written:
                logger.info(
                    "Dropping write for missing account directory",
                    extra={"account_id": account_id},
                )

        return LoadedCredentials(account_id=account_id, files=files, save=save)

    async def delete(self, account_id: str) -> None:
        """Remove every persisted file for the account."""
        directory = self._account_dir(account_id)
        lock = self._locks.get(account_id)
        if lock is None:
            # Never loaded here, so no save hook can be outstanding.
            removed = await asyncio.to_thread(_remove_directory, directory)
        else:
            async with lock:
                self._epochs[account_id] = self._epochs.get(account_id, 0) + 1
                removed = await asyncio.to_thread(_remove_directory, directory)
        if removed:
            logger.info("Deleted credentials", extra={"account_id": account_id})

    async def list_accounts(self) -> list[str]:
        """Return account ids that have a credential directory."""
        return await asyncio.to_thread(_list_directories, self.root)

    async def exists(self, account_id: str) -> bool:
        """Return true when the account has persisted credentials."""
        directory = self._account_dir(account_id)
        return await asyncio.to_thread(directory.is_dir)

    def _account_dir(self, account_id: str) -> Path:
        return self.root / validate_account_id(account_id)

    def _lock(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock


async def _finish(work: Awaitable[bool]) -> bool:
    """Await a threaded write to completion even if the caller is cancelled."""
    task = asyncio.ensure_future(work)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await task
        raise


def _file_name(key: str) -> str:
    return quote(key, safe="-_.@") + _SUFFIX


def _read_directory(directory: Path) -> dict[str, object]:
    directory.mkdir(parents=True, exist_ok=True)
    files: dict[str, object] = {}
    for path in sorted(directory.glob(f"*{_SUFFIX}")):
        try:
            files[unquote(path.name[: -len(_SUFFIX)])] = json.loads(
                path.read_text(encoding="utf-8")
            )
        except json.JSONDecodeError:
            logger.warning("Skipping unreadable credential file", extra={"path": path})
    return files


def _write_files(directory: Path, changes: dict[str, object | None]) -> bool:
    if not directory.is_dir():
        return False
    for key, value in changes.items():
        path = directory / _file_name(key)
        if value is None:
            path.unlink(missing_ok=True)
            continue
        fd, tmp_name = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(value, handle)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    return True


def _remove_directory(directory: Path) -> bool:
    if not directory.exists():
        return False
    shutil.rmtree(directory)
    return True


def _list_directories(root: Path) -> list[str]:
    if not root.is_dir():
        return []
    return sorted(path.name for path in root.iterdir() if path.is_dir())
