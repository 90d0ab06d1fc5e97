"""
Transcript condensation.

Turns a streamed transcript into one bounded conversation string plus the
set of skills the assistant invoked. One parameterized code path serves
both regimes:

- bounded mode (Stage 1): assistant prose capped per message, small total
  budget, narrow head/tail window
- full mode (Stage 2): no per-message cap, larger budget and window

User-authored text is never shortened. Tool activity is reduced to one
line per invocation plus rejection/error lines for results; successful
results are dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import BOUNDED_MODE, TOOL_ERROR_CHARS, TOOL_PARAM_CHARS, CondenseConfig
from .session_schema import SessionIndexEntry
from .transcript_parser import TranscriptReader

TRUNCATION_MARKER = "[... middle of conversation truncated ...]"

SKILL_TOOL = "Skill"

# Primary argument per well-known tool
KEY_PARAMS: dict[str, str] = {
    "Bash": "command",
    "Edit": "file_path",
    "Write": "file_path",
    "Read": "file_path",
    "Grep": "pattern",
    "Glob": "pattern",
    "Task": "description",
    "WebSearch": "query",
    "WebFetch": "url",
}

REJECTION_PREFIX = "The user doesn't want"
REJECTION_FEEDBACK_MARKER = "the user said:\n"
NONZERO_EXIT = re.compile(r"Exit code [^0]")


@dataclass
class CondensedSession:
    """Analyzable text for one session, rebuilt on every pass."""

    session_id: str
    project_path: str
    summary: str
    message_count: int
    created: str
    modified: str
    conversation_text: str
    skills_used: list[str] = field(default_factory=list)


@dataclass
class _Message:
    role: str
    text: str

    def render(self) -> str:
        label = "User" if self.role == "user" else "Assistant"
        return f"{label}: {self.text}"


def truncate(text: str, max_chars: int) -> str:
    """Cut text to max_chars, marking the cut with an ellipsis."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


# =============================================================================
# Per-message extraction
# =============================================================================


def extract_text(content: str | list[Any], role: str, mode: CondenseConfig) -> str:
    """
    Displayable text of one message.

    Only plain strings and text blocks count; thinking and tool blocks are
    excluded. Assistant text is capped in bounded mode, user text never is.
    """
    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                parts.append(str(block["text"]))
        text = "\n".join(parts)
    else:
        return ""

    if role == "assistant" and mode.assistant_char_cap is not None:
        return truncate(text, mode.assistant_char_cap)
    return text


def extract_key_param(tool_name: str, tool_input: Any) -> str | None:
    """
    Primary argument of a tool invocation, or None for skill invocations.

    Unknown tools fall back to their first string-valued argument.
    """
    if tool_name == SKILL_TOOL:
        return None
    if not isinstance(tool_input, dict):
        return ""

    param_key = KEY_PARAMS.get(tool_name)
    if param_key:
        value = tool_input.get(param_key)
        return truncate(value, TOOL_PARAM_CHARS) if isinstance(value, str) else ""

    for value in tool_input.values():
        if isinstance(value, str):
            return truncate(value, TOOL_PARAM_CHARS)
    return ""


def extract_result_text(content: Any) -> str:
    """Text of a tool_result block's content."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        )
    return ""


def is_user_rejection(result_text: str) -> bool:
    return result_text.startswith(REJECTION_PREFIX)


def extract_rejection_feedback(result_text: str) -> str:
    """Everything the user typed after declining a tool call, if anything."""
    idx = result_text.lower().find(REJECTION_FEEDBACK_MARKER)
    if idx == -1:
        return ""
    return result_text[idx + len(REJECTION_FEEDBACK_MARKER):].strip()


def is_tool_error(block: dict[str, Any], result_text: str) -> bool:
    return block.get("is_error") is True or bool(NONZERO_EXIT.search(result_text))


def extract_tool_context(content: str | list[Any], role: str, tool_names: dict[str, str]) -> list[str]:
    """
    Labeled tool lines for one message.

    Assistant messages yield one "[tool] param" line per invocation. User
    messages yield "[rejected] ..." or "[error] ..." for results paired with
    a known invocation; anything else about a result is noise.
    """
    if not isinstance(content, list):
        return []

    lines: list[str] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")

        if role == "assistant" and block_type == "tool_use" and isinstance(block.get("name"), str):
            name = block["name"]
            param = extract_key_param(name, block.get("input"))
            if param is not None:
                lines.append(f"[{name.lower()}] {param}" if param else f"[{name.lower()}]")

        elif (
            role == "user"
            and block_type == "tool_result"
            and isinstance(block.get("tool_use_id"), str)
            and block["tool_use_id"] in tool_names
        ):
            result_text = extract_result_text(block.get("content"))
            if not result_text:
                continue
            if is_user_rejection(result_text):
                feedback = extract_rejection_feedback(result_text)
                lines.append(f"[rejected] {feedback}" if feedback else "[rejected]")
            elif is_tool_error(block, result_text):
                lines.append("[error] " + truncate(result_text, TOOL_ERROR_CHARS))

    return lines


def extract_skills(content: str | list[Any]) -> list[str]:
    """Names of skills invoked in one assistant message."""
    if not isinstance(content, list):
        return []
    skills = []
    for block in content:
        if (
            isinstance(block, dict)
            and block.get("type") == "tool_use"
            and block.get("name") == SKILL_TOOL
            and isinstance(block.get("input"), dict)
            and isinstance(block["input"].get("skill"), str)
            and block["input"]["skill"]
        ):
            skills.append(block["input"]["skill"])
    return skills


# =============================================================================
# Assembly and windowing
# =============================================================================


def build_conversation_text(messages: list[_Message], mode: CondenseConfig) -> str:
    """
    Join messages in order, windowing to head and tail if over budget.

    Windowing keeps the first and last `window_size` user messages plus the
    assistant message directly before each, with one marker line between
    the head and the tail. It only applies when there are more than twice
    `window_size` user messages.
    """
    text = "\n".join(m.render() for m in messages)
    if len(text) <= mode.max_total_chars:
        return text

    user_indices = [i for i, m in enumerate(messages) if m.role == "user"]
    window = mode.window_size
    if len(user_indices) <= window * 2:
        return text

    head = _with_preceding_assistant(messages, user_indices[:window])
    tail = _with_preceding_assistant(messages, user_indices[-window:])

    parts = [messages[i].render() for i in sorted(head)]
    parts.append(TRUNCATION_MARKER)
    parts.extend(messages[i].render() for i in sorted(tail))
    return "\n".join(parts)


def _with_preceding_assistant(messages: list[_Message], user_indices: list[int]) -> set[int]:
    keep: set[int] = set()
    for idx in user_indices:
        keep.add(idx)
        if idx > 0 and messages[idx - 1].role == "assistant":
            keep.add(idx - 1)
    return keep


def condense_transcript(path: str | Path, mode: CondenseConfig = BOUNDED_MODE) -> tuple[str, list[str]]:
    """
    Condense one transcript file.

    Returns:
        Tuple of (conversation_text, skills_used). Deterministic for a given
        file and mode.
    """
    reader = TranscriptReader(path)
    messages: list[_Message] = []
    skills_used: dict[str, None] = {}

    for entry in reader.entries():
        if entry.role == "assistant":
            for skill in extract_skills(entry.content):
                skills_used.setdefault(skill, None)

        text = extract_text(entry.content, entry.role, mode)
        tool_lines = extract_tool_context(entry.content, entry.role, reader.tool_names)
        combined = "\n".join(part for part in [text, *tool_lines] if part)
        if combined:
            messages.append(_Message(role=entry.role, text=combined))

    return build_conversation_text(messages, mode), list(skills_used)


def condense_session(entry: SessionIndexEntry, mode: CondenseConfig = BOUNDED_MODE) -> CondensedSession:
    """Condense the transcript behind an index entry."""
    conversation_text, skills_used = condense_transcript(entry.full_path, mode)
    return CondensedSession(
        session_id=entry.session_id,
        project_path=entry.project_path,
        summary=entry.summary,
        message_count=entry.message_count,
        created=entry.created,
        modified=entry.modified,
        conversation_text=conversation_text,
        skills_used=skills_used,
    )


__all__ = [
    "KEY_PARAMS",
    "TRUNCATION_MARKER",
    "CondensedSession",
    "build_conversation_text",
    "condense_session",
    "condense_transcript",
    "extract_key_param",
    "extract_rejection_feedback",
    "extract_text",
    "extract_tool_context",
    "truncate",
]
