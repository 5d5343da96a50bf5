"""Reconnect retained sessions from their stored credentials.

Usage:
    loader = SessionLoader(sessions_dir, socket_factory, registry)
    result = await loader.load("SESS_abc123")
    ...
    await loader.stop()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

from linkvault.credentials import CREDS_FILE, CredentialStore
from linkvault.errors import CredentialsNotFound
from linkvault.logging import short_id
from linkvault.pairing.validation import validate_session_id
from linkvault.protocols import ConnectionStatus, ConnectionUpdate, SocketFactory, WhatsAppSocket
from linkvault.session_registry import SessionRegistry
from linkvault.timers import TimerSet

logger = logging.getLogger(__name__)


@dataclass
class LoadedSession:
    """A retained session this loader keeps connected.

    Attributes:
        session_id: Session identifier.
        socket: Current socket, None while waiting to reconnect.
        status: "connecting", "open" or "closed".
        failures: Consecutive disconnects without a successful open.
    """

    session_id: str
    socket: Optional[WhatsAppSocket] = None
    status: str = "connecting"
    failures: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class SessionLoader:
    """Keeps retained sessions connected and registered."""

    def __init__(
        self,
        sessions_dir: Path | str,
        socket_factory: SocketFactory,
        registry: SessionRegistry,
        reconnect_delay: float = 5.0,
        reconnect_attempts: int = 3,
    ):
        self.sessions_dir = Path(sessions_dir)
        self.socket_factory = socket_factory
        self.registry = registry
        self.reconnect_delay = reconnect_delay
        self.reconnect_attempts = reconnect_attempts

        self._sessions: Dict[str, LoadedSession] = {}
        self._timers = TimerSet("loader")

    def _store(self, session_id: str) -> CredentialStore:
        return CredentialStore(self.sessions_dir / session_id)

    async def load(self, session_id: str) -> dict:
        """Reconnect a retained session.

        Returns:
            {"sessionId", "status", "message"}; status is "already_active"
            when a live connection exists, "loading" otherwise.

        Raises:
            InvalidSessionId: Malformed id.
            CredentialsNotFound: No stored credentials for the id.
            StorageError: Credentials could not be read.
        """
        validate_session_id(session_id)

        handle = self.registry.get(session_id)
        if handle is not None and handle.is_connected:
            return {
                "sessionId": session_id,
                "status": "already_active",
                "message": "Session is already active",
            }

        store = self._store(session_id)
        if not store.exists():
            raise CredentialsNotFound(f"No stored credentials for session {session_id}")

        loaded = self._sessions.get(session_id)
        if loaded is None:
            loaded = LoadedSession(session_id=session_id)
            self._sessions[session_id] = loaded
        loaded.failures = 0
        self._timers.cancel(session_id)

        try:
            await self._connect(loaded)
        except Exception:
            await self._drop(loaded)
            raise
        logger.info(f"Loading session {short_id(session_id)}")
        return {
            "sessionId": session_id,
            "status": "loading",
            "message": "Session loading",
        }

    async def _connect(self, loaded: LoadedSession) -> None:
        await self._release(loaded)

        auth = await self._store(loaded.session_id).initialize()
        socket = await self.socket_factory(auth)
        loaded.socket = socket
        loaded.status = "connecting"
        self.registry.put(loaded.session_id, socket)
        loaded.task = asyncio.create_task(self._supervise(loaded, socket, socket.updates()))

    async def _supervise(
        self,
        loaded: LoadedSession,
        socket: WhatsAppSocket,
        updates: AsyncIterator[ConnectionUpdate],
    ) -> None:
        """Follow one socket's updates until it closes."""
        status_code: Optional[int] = None
        try:
            async for update in updates:
                if update.connection is ConnectionStatus.OPEN:
                    loaded.status = "open"
                    loaded.failures = 0
                    logger.info(f"Session {short_id(loaded.session_id)} connected")
                elif update.connection is ConnectionStatus.CLOSE:
                    if update.is_logged_out:
                        logger.warning(f"Session {short_id(loaded.session_id)} logged out")
                        await self._drop(loaded)
                        return
                    status_code = update.status_code
                    break
        except Exception as e:
            logger.warning(f"Session {short_id(loaded.session_id)} update stream failed: {e}")

        if loaded.socket is not socket:
            # Replaced by a newer load
            return

        loaded.status = "closed"
        loaded.failures += 1
        await self._release(loaded)

        if loaded.failures > self.reconnect_attempts:
            logger.error(
                f"Session {short_id(loaded.session_id)} gave up after "
                f"{loaded.failures} disconnects"
            )
            await self._drop(loaded)
            return

        logger.info(
            f"Session {short_id(loaded.session_id)} closed (status {status_code}), "
            f"reconnecting in {self.reconnect_delay}s"
        )
        self._timers.schedule(loaded.session_id, self.reconnect_delay, lambda: self._reconnect(loaded))

    async def _reconnect(self, loaded: LoadedSession) -> None:
        if self._sessions.get(loaded.session_id) is not loaded:
            return
        try:
            await self._connect(loaded)
        except Exception as e:
            logger.error(f"Reconnect of {short_id(loaded.session_id)} failed: {e}")
            await self._drop(loaded)

    async def _release(self, loaded: LoadedSession) -> None:
        """Close the current socket, if any, and deregister it."""
        socket = loaded.socket
        loaded.socket = None
        task = loaded.task
        loaded.task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        if socket is None:
            return

        self.registry.remove(loaded.session_id, socket)
        try:
            await socket.close()
        except Exception as e:
            logger.debug(f"Error closing socket for {short_id(loaded.session_id)}: {e}")

    async def _drop(self, loaded: LoadedSession) -> None:
        self._timers.cancel(loaded.session_id)
        if self._sessions.get(loaded.session_id) is loaded:
            del self._sessions[loaded.session_id]
        loaded.status = "closed"
        await self._release(loaded)

    async def disconnect(self, session_id: str) -> bool:
        """Disconnect a loaded session. Stored credentials are kept.

        Returns:
            True if the session was loaded.
        """
        loaded = self._sessions.get(session_id)
        if loaded is None:
            return False
        await self._drop(loaded)
        logger.info(f"Session {short_id(session_id)} disconnected")
        return True

    def get(self, session_id: str) -> Optional[LoadedSession]:
        return self._sessions.get(session_id)

    def list(self) -> list[dict]:
        """Retained sessions on disk with their activity flag."""
        if not self.sessions_dir.is_dir():
            return []

        result = []
        for path in sorted(self.sessions_dir.iterdir()):
            if not (path / CREDS_FILE).is_file():
                continue
            loaded = self._sessions.get(path.name)
            handle = self.registry.get(path.name)
            result.append(
                {
                    "sessionId": path.name,
                    "isActive": bool(handle is not None and handle.is_connected),
                    "status": loaded.status if loaded else None,
                }
            )
        return result

    async def stop(self) -> None:
        """Disconnect every loaded session."""
        self._timers.cancel_all()
        for loaded in list(self._sessions.values()):
            await self._drop(loaded)
        logger.info("Session loader stopped")
