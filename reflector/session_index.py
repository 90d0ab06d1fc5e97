"""
Session discovery.

Reads the sessions-index.json files Claude Code keeps in each project
directory under ~/.claude/projects/, and falls back to scanning the
*.jsonl transcripts directly for sessions the index does not list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .session_schema import SessionIndex, SessionIndexEntry
from .transcript_parser import MESSAGE_ROLES, iter_raw_records

logger = logging.getLogger(__name__)

INDEX_FILENAME = "sessions-index.json"


@dataclass
class ScanFilters:
    """Which discovered sessions a run should consider."""

    excluded_paths: list[str] = field(default_factory=list)
    min_messages: int = 0
    session_id: str | None = None


def normalize_path(path: str) -> str:
    """Expand ~ and strip trailing slashes for prefix comparison."""
    return str(Path(path).expanduser()).rstrip("/") if path else ""


def should_include(entry: SessionIndexEntry, filters: ScanFilters) -> bool:
    """Apply session id, sidechain, message count and excluded path filters."""
    if filters.session_id and entry.session_id != filters.session_id:
        return False
    if entry.is_sidechain:
        return False
    if entry.message_count < filters.min_messages:
        return False

    project_path = normalize_path(entry.project_path)
    for excluded in filters.excluded_paths:
        if project_path.startswith(normalize_path(excluded)):
            return False
    return True


def _mtime_iso(path: Path) -> tuple[float, str]:
    mtime = path.stat().st_mtime
    return mtime, datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _first_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                return block["text"]
    return ""


def entry_from_transcript(path: Path) -> SessionIndexEntry:
    """
    Build an index entry for a transcript the index does not list.

    Makes one streaming pass to collect project path, summary, first prompt,
    message count and creation time.
    """
    project_path = ""
    summary = ""
    first_prompt = ""
    created = ""
    message_count = 0
    is_sidechain = False

    for raw in iter_raw_records(path):
        if not project_path and isinstance(raw.get("cwd"), str):
            project_path = raw["cwd"]
        if not created and isinstance(raw.get("timestamp"), str):
            created = raw["timestamp"]
        if raw.get("type") == "summary" and isinstance(raw.get("summary"), str):
            summary = raw["summary"]
            continue
        if raw.get("isSidechain"):
            is_sidechain = True
            continue
        message = raw.get("message")
        if not isinstance(message, dict) or message.get("role") not in MESSAGE_ROLES:
            continue
        message_count += 1
        if not first_prompt and message.get("role") == "user":
            first_prompt = _first_text(message.get("content"))

    file_mtime, modified = _mtime_iso(path)
    return SessionIndexEntry(
        session_id=path.stem,
        full_path=str(path),
        file_mtime=file_mtime,
        first_prompt=first_prompt,
        summary=summary,
        message_count=message_count,
        created=created or modified,
        modified=modified,
        project_path=project_path,
        is_sidechain=is_sidechain and message_count == 0,
    )


def read_project_entries(project_dir: Path) -> list[SessionIndexEntry]:
    """
    All live sessions of one project directory.

    Index entries whose transcript no longer exists are dropped; transcripts
    missing from the index are discovered directly.
    """
    entries: list[SessionIndexEntry] = []
    indexed_paths: set[str] = set()

    index_path = project_dir / INDEX_FILENAME
    if index_path.exists():
        try:
            index = SessionIndex.model_validate(json.loads(index_path.read_text()))
        except (json.JSONDecodeError, OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable index {index_path}: {e}")
            index = SessionIndex()

        for entry in index.entries:
            indexed_paths.add(str(Path(entry.full_path)))
            if not Path(entry.full_path).exists():
                logger.debug(f"Dropping phantom index entry {entry.session_id}")
                continue
            entries.append(entry)

    for transcript in sorted(project_dir.glob("*.jsonl")):
        if str(transcript) in indexed_paths:
            continue
        try:
            entries.append(entry_from_transcript(transcript))
        except OSError as e:
            logger.warning(f"Skipping unreadable transcript {transcript}: {e}")

    return entries


def _project_dirs(projects_dir: Path) -> list[Path]:
    try:
        return sorted(d for d in projects_dir.iterdir() if d.is_dir())
    except OSError:
        return []


def read_all_session_entries(projects_dir: Path, filters: ScanFilters) -> list[SessionIndexEntry]:
    """
    Discover and filter sessions across all projects.

    Returns:
        Matching entries, most recently modified first
    """
    entries = [
        entry
        for project_dir in _project_dirs(projects_dir)
        for entry in read_project_entries(project_dir)
        if should_include(entry, filters)
    ]
    entries.sort(key=lambda e: e.modified, reverse=True)
    return entries


def session_lookup(projects_dir: Path) -> dict[str, SessionIndexEntry]:
    """Every non-sidechain session by id, ignoring run filters."""
    return {
        entry.session_id: entry
        for entry in read_all_session_entries(projects_dir, ScanFilters())
    }


__all__ = [
    "INDEX_FILENAME",
    "ScanFilters",
    "entry_from_transcript",
    "normalize_path",
    "read_all_session_entries",
    "read_project_entries",
    "session_lookup",
    "should_include",
]
