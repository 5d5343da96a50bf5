"""Registry of live protocol connections keyed by session id."""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class RegistryEntry:
    """A registered connection handle.

    The registry indexes the handle for lookup; it does not own the
    connection's lifecycle.
    """

    session_id: str
    handle: Any
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    """Thread-safe registry for live session handles.

    Shared by every running workflow and the session loader. This is a
    simple state container: a hit from ``get`` only says where to route,
    callers must check ``handle.is_connected`` before trusting it.
    """

    def __init__(self):
        """Initialize empty registry."""
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def put(self, session_id: str, handle: Any) -> None:
        """Add or replace the handle for a session.

        Args:
            session_id: Session identifier.
            handle: Live connection handle.
        """
        with self._lock:
            self._entries[session_id] = RegistryEntry(session_id, handle)

    def get(self, session_id: str) -> Optional[Any]:
        """Get handle by session id.

        Returns:
            Handle if registered, None otherwise.
        """
        with self._lock:
            entry = self._entries.get(session_id)
        return entry.handle if entry else None

    def entry(self, session_id: str) -> Optional[RegistryEntry]:
        """Get the full entry by session id."""
        with self._lock:
            return self._entries.get(session_id)

    def remove(self, session_id: str, handle: Any = None) -> Optional[Any]:
        """Remove and return the handle for a session.

        Args:
            session_id: Session identifier.
            handle: If given, only remove when the registered handle is this
                one, so a stale owner cannot evict its replacement.

        Returns:
            Removed handle if found, None otherwise.
        """
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            if handle is not None and entry.handle is not handle:
                return None
            del self._entries[session_id]
        return entry.handle

    def list_active(self) -> list[str]:
        """Snapshot of registered session ids."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._entries
