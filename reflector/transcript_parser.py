"""
Claude Code transcript reader.

Streams the JSONL transcript files that Claude Code maintains at:
~/.claude/projects/{project_hash}/{session_id}.jsonl

Transcripts are append-only and can reach tens of megabytes, so they are
read one line at a time and never held in memory whole. Key entry types:
- "user": User message or tool result
- "assistant": Assistant response with possible tool calls
- "summary": Session summary written by Claude Code
- "progress": Hook and tool execution progress
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SKIPPED_ENTRY_TYPES = frozenset({"summary", "progress"})
MESSAGE_ROLES = frozenset({"user", "assistant"})


@dataclass(frozen=True)
class LogEntry:
    """A single message entry that survived filtering."""

    role: str  # "user" or "assistant"
    content: str | list[Any]
    entry_type: str
    timestamp: str | None = None


def iter_raw_records(path: str | Path) -> Iterator[dict[str, Any]]:
    """
    Yield every parseable JSON object in a transcript, in file order.

    Blank lines, corrupt lines and non-object values are skipped so a single
    damaged line never aborts the session.
    """
    with open(path, encoding="utf-8", errors="replace") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping corrupt line {line_no} in {path}")
                continue
            if isinstance(record, dict):
                yield record


class TranscriptReader:
    """
    Single forward pass over one transcript.

    While streaming, records tool_use id -> tool name for every invocation
    seen so far. Invocations always precede their results in the log, so the
    mapping is complete by the time a result entry is yielded.
    """

    def __init__(self, transcript_path: str | Path):
        self.transcript_path = Path(transcript_path)
        self.tool_names: dict[str, str] = {}

    def entries(self) -> Iterator[LogEntry]:
        """
        Yield message entries, skipping sidechains, summaries and progress markers.

        Raises:
            FileNotFoundError: If the transcript does not exist
        """
        for raw in iter_raw_records(self.transcript_path):
            if raw.get("isSidechain"):
                continue
            entry_type = raw.get("type", "")
            if entry_type in SKIPPED_ENTRY_TYPES:
                continue

            message = raw.get("message")
            if not isinstance(message, dict):
                continue
            role = message.get("role")
            content = message.get("content")
            if role not in MESSAGE_ROLES or not content:
                continue
            if not isinstance(content, (str, list)):
                continue

            if role == "assistant" and isinstance(content, list):
                self._track_tool_uses(content)

            timestamp = raw.get("timestamp")
            yield LogEntry(
                role=role,
                content=content,
                entry_type=entry_type,
                timestamp=timestamp if isinstance(timestamp, str) else None,
            )

    def _track_tool_uses(self, blocks: list[Any]) -> None:
        for block in blocks:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            tool_use_id = block.get("id")
            name = block.get("name")
            if isinstance(tool_use_id, str) and tool_use_id and isinstance(name, str) and name:
                self.tool_names[tool_use_id] = name


__all__ = [
    "LogEntry",
    "TranscriptReader",
    "iter_raw_records",
]
