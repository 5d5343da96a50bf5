"""Persist session records to a JSON file.

Every pairing attempt gets a record. Failures that happen after the HTTP
client already received its QR or pairing code are only observable here.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 1000
TERMINAL_STATUSES = ("completed", "failed")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class SessionRecord:
    """Outcome of one pairing attempt."""

    session_id: str
    mode: str  # "qr" or "code"
    status: str = "pending"  # pending, issued, completed, failed
    phone_number: Optional[str] = None
    locator: Optional[str] = None
    error: Optional[str] = None
    created_at: str = ""
    completed_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SessionRecord":
        """Create from dictionary."""
        return cls(
            session_id=d["session_id"],
            mode=d["mode"],
            status=d.get("status", "pending"),
            phone_number=d.get("phone_number"),
            locator=d.get("locator"),
            error=d.get("error"),
            created_at=d.get("created_at", ""),
            completed_at=d.get("completed_at"),
        )


class SessionIndex:
    """JSON file-based session record storage."""

    def __init__(self, path: Path | str, max_records: int = DEFAULT_MAX_RECORDS):
        """Initialize session index.

        Args:
            path: Path to JSON file for persistence.
            max_records: Finished records beyond this count are dropped,
                oldest first. Pending and issued records are always kept.
        """
        self.path = Path(path)
        self.max_records = max_records
        self._records: dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Load records from file."""
        if not self.path.exists():
            logger.debug(f"No session index at {self.path}")
            return

        try:
            data = json.loads(await asyncio.to_thread(self.path.read_text))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse session index: {e}")
            return
        except OSError as e:
            logger.error(f"Failed to load session index: {e}")
            return

        for item in data.get("sessions", []):
            try:
                record = SessionRecord.from_dict(item)
                self._records[record.session_id] = record
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed session record: {e}")

        self._prune()
        logger.debug(f"Loaded {len(self._records)} session records")

    async def save(self) -> None:
        """Save records to file. Errors are logged, not raised."""
        data = {"sessions": [r.to_dict() for r in self._records.values()]}
        try:
            await asyncio.to_thread(self._save_sync, json.dumps(data, indent=2))
        except OSError as e:
            logger.error(f"Failed to save session index: {e}")

    def _prune(self) -> None:
        """Drop the oldest finished records beyond max_records."""
        excess = len(self._records) - self.max_records
        if excess <= 0:
            return
        finished = [
            session_id
            for session_id, record in self._records.items()
            if record.status in TERMINAL_STATUSES
        ]
        for session_id in finished[:excess]:
            del self._records[session_id]
        logger.debug(f"Pruned {min(excess, len(finished))} finished session records")

    def _save_sync(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        temp_path.write_text(content)
        temp_path.rename(self.path)

    async def create(
        self, session_id: str, mode: str, phone_number: Optional[str] = None
    ) -> SessionRecord:
        """Start a new record, replacing any previous one for the id."""
        record = SessionRecord(
            session_id=session_id,
            mode=mode,
            phone_number=phone_number,
            created_at=_utcnow(),
        )
        async with self._lock:
            self._records.pop(session_id, None)
            self._records[session_id] = record
            self._prune()
            await self.save()
        return record

    async def update(self, session_id: str, **changes: Any) -> Optional[SessionRecord]:
        """Update fields of an existing record.

        A terminal status ("completed" or "failed") stamps completed_at.

        Returns:
            The updated record, or None if the id is unknown.
        """
        async with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None
            for key, value in changes.items():
                setattr(record, key, value)
            if changes.get("status") in TERMINAL_STATUSES:
                record.completed_at = _utcnow()
            await self.save()
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get record by id."""
        return self._records.get(session_id)

    def all(self) -> list[SessionRecord]:
        """Get all records."""
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._records
