"""
Progress ledger.

Remembers which sessions were analyzed and at which content version, so a
rerun only touches sessions that are new or changed. The ledger is saved
after every processed session; an interrupted run loses at most the work
that was in flight.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .errors import LedgerCorruptError
from .persistence import atomic_write_json
from .session_schema import LedgerState, ProgressRecord, SessionIndexEntry

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ProgressLedger:
    """
    Persistent sessionId -> ProgressRecord map.

    A session counts as processed only while its recorded signature equals
    the entry's current `modified` value. Updates from concurrent workers are
    serialized through one lock, and each update is followed by an atomic
    save.
    """

    def __init__(self, state_file: Path):
        self.state_file = Path(state_file)
        self.state = LedgerState()
        self._lock = asyncio.Lock()

    def load(self) -> LedgerState:
        """
        Read the ledger from disk; a missing file is an empty ledger.

        Raises:
            LedgerCorruptError: If the file exists but is not a valid ledger
        """
        if not self.state_file.exists():
            self.state = LedgerState()
            return self.state
        try:
            self.state = LedgerState.model_validate(json.loads(self.state_file.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            raise LedgerCorruptError(
                f"Progress ledger {self.state_file} is corrupt ({e}). "
                "Run `reflector reset` to start over."
            ) from e
        return self.state

    def is_processed(self, entry: SessionIndexEntry) -> bool:
        record = self.state.processed_sessions.get(entry.session_id)
        return record is not None and record.modified_at == entry.modified

    def pending(self, entries: list[SessionIndexEntry]) -> list[SessionIndexEntry]:
        """Entries that are new or changed since they were last processed."""
        return [e for e in entries if not self.is_processed(e)]

    async def mark_processed(self, entry: SessionIndexEntry, findings_count: int) -> None:
        """
        Record a successfully analyzed session and persist immediately.

        The in-memory state only changes once the write succeeds, so a session
        whose save failed is never carried to disk by a later save.
        """
        async with self._lock:
            updated = self.state.model_copy(deep=True)
            updated.processed_sessions[entry.session_id] = ProgressRecord(
                session_id=entry.session_id,
                processed_at=utc_now_iso(),
                modified_at=entry.modified,
                findings_count=findings_count,
            )
            updated.last_run_at = utc_now_iso()
            await asyncio.to_thread(self.save, updated)
            self.state = updated

    def save(self, state: LedgerState | None = None) -> None:
        atomic_write_json(self.state_file, (state if state is not None else self.state).to_json_dict())

    def reset(self) -> bool:
        """
        Delete the ledger file.

        Returns:
            True if a ledger existed
        """
        self.state = LedgerState()
        if self.state_file.exists():
            self.state_file.unlink()
            logger.info(f"Removed progress ledger {self.state_file}")
            return True
        return False


__all__ = ["ProgressLedger", "utc_now_iso"]
