"""Local credential storage for linked-device sessions.

This module provides:
- AuthState: in-memory credentials handed to the protocol layer
- SignalKeyStore: per-key files for rolling session key material
- CredentialStore: the per-session directory on disk

Layout of a session directory:

    <sessions_dir>/<session_id>/creds.json
    <sessions_dir>/<session_id>/<category>-<key_id>.json

Security features:
- Directory permissions 700, file permissions 600
- Atomic writes (temp file + rename) so readers never see a torn file
"""

import asyncio
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from linkvault.errors import CredentialsIncomplete, CredentialsNotFound, StorageError

__all__ = [
    "CREDS_FILE",
    "AuthState",
    "CredentialStore",
    "SignalKeyStore",
]

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"
DEFAULT_MIN_SNAPSHOT_SIZE = 100  # bytes


def _key_file_name(category: str, key_id: str) -> str:
    """File name for one key, safe for any key id the protocol emits."""
    safe = f"{category}-{key_id}".replace("/", "__").replace(":", "-")
    return f"{safe}.json"


def _atomic_write(path: Path, content: bytes) -> None:
    """Write atomically via temp file and rename, owner read/write only."""
    temp_path = path.with_name(path.name + ".tmp")
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        os.write(fd, content)
        os.fsync(fd)
    finally:
        os.close(fd)
    os.replace(temp_path, path)


class SignalKeyStore:
    """File-backed store for signal key material.

    Keys are grouped by category (pre-key, session, sender-key, ...) and
    stored one file per key so that rotation only rewrites what changed.
    """

    def __init__(self, directory: Path):
        self._directory = directory

    async def get(self, category: str, ids: list[str]) -> dict[str, Any]:
        """Load keys by id.

        Returns:
            Mapping of id to key data. Missing keys are omitted.
        """
        return await asyncio.to_thread(self._get_sync, category, ids)

    def _get_sync(self, category: str, ids: list[str]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key_id in ids:
            path = self._directory / _key_file_name(category, key_id)
            try:
                result[key_id] = json.loads(path.read_text())
            except FileNotFoundError:
                continue
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(f"Failed to read key {category}/{key_id}: {e}") from e
        return result

    async def set(self, updates: dict[str, dict[str, Any]]) -> None:
        """Write key updates and flush them before returning.

        Args:
            updates: {category: {key_id: data}}. A None value deletes the key.
        """
        await asyncio.to_thread(self._set_sync, updates)

    def _set_sync(self, updates: dict[str, dict[str, Any]]) -> None:
        try:
            for category, keys in updates.items():
                for key_id, value in keys.items():
                    path = self._directory / _key_file_name(category, key_id)
                    if value is None:
                        path.unlink(missing_ok=True)
                    else:
                        _atomic_write(path, json.dumps(value).encode())
        except OSError as e:
            raise StorageError(f"Failed to write keys: {e}") from e


@dataclass
class AuthState:
    """Credentials for one session as seen by the protocol layer.

    The protocol layer mutates ``creds`` in place and must call
    ``save_creds()`` after every mutation. The store flushes synchronously
    to disk before the call returns.

    Attributes:
        creds: Identity and registration credentials.
        keys: Signal key store for rolling key material.
    """

    creds: dict[str, Any]
    keys: SignalKeyStore
    _store: "CredentialStore" = field(repr=False)

    @property
    def registered(self) -> bool:
        """Whether these credentials already belong to a linked device."""
        return bool(self.creds.get("registered"))

    async def save_creds(self) -> None:
        """Flush the current creds to disk."""
        await self._store.write_creds(self.creds)


class CredentialStore:
    """Durable storage for one session's credential bundle.

    Attributes:
        directory: Session directory path.
        min_snapshot_size: Smallest creds file treated as complete.
    """

    def __init__(
        self,
        directory: Path | str,
        min_snapshot_size: int = DEFAULT_MIN_SNAPSHOT_SIZE,
    ) -> None:
        self.directory = Path(directory)
        self.min_snapshot_size = min_snapshot_size

    @property
    def creds_path(self) -> Path:
        return self.directory / CREDS_FILE

    def exists(self) -> bool:
        """Check whether a creds file is present."""
        return self.creds_path.exists()

    async def initialize(self) -> AuthState:
        """Load the existing bundle or start an empty one.

        Returns:
            AuthState wired to flush back into this store.

        Raises:
            StorageError: On disk errors or a corrupt creds file.
        """
        creds = await asyncio.to_thread(self._initialize_sync)
        return AuthState(creds=creds, keys=SignalKeyStore(self.directory), _store=self)

    def _initialize_sync(self) -> dict[str, Any]:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            os.chmod(self.directory, 0o700)
            if not self.creds_path.exists():
                return {}
            return json.loads(self.creds_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to initialize credentials: {e}") from e

    async def write_creds(self, creds: dict[str, Any]) -> None:
        """Persist creds atomically.

        Raises:
            StorageError: On disk errors.
        """
        data = json.dumps(creds, indent=2).encode()
        try:
            await asyncio.to_thread(self._write_creds_sync, data)
        except OSError as e:
            raise StorageError(f"Failed to write credentials: {e}") from e

    def _write_creds_sync(self, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        _atomic_write(self.creds_path, data)

    async def read_snapshot(self) -> bytes:
        """Read the creds file if it is complete.

        Returns:
            Raw bytes of creds.json.

        Raises:
            CredentialsNotFound: If no creds file exists.
            CredentialsIncomplete: If the file is below min_snapshot_size.
            StorageError: On other disk errors.
        """
        try:
            data = await asyncio.to_thread(self.creds_path.read_bytes)
        except FileNotFoundError as e:
            raise CredentialsNotFound(f"No credentials at {self.creds_path}") from e
        except OSError as e:
            raise StorageError(f"Failed to read credentials: {e}") from e

        if len(data) < self.min_snapshot_size:
            raise CredentialsIncomplete(
                f"Credentials file is {len(data)} bytes, "
                f"need at least {self.min_snapshot_size}"
            )
        return data

    async def destroy(self) -> None:
        """Remove every file of this session. Safe to call repeatedly.

        Raises:
            StorageError: On disk errors other than the directory being gone.
        """
        try:
            await asyncio.to_thread(self._destroy_sync)
        except OSError as e:
            raise StorageError(f"Failed to remove {self.directory}: {e}") from e

    def _destroy_sync(self) -> None:
        try:
            shutil.rmtree(self.directory)
        except FileNotFoundError:
            return
        logger.debug(f"Removed credential directory {self.directory}")
