"""Transcript builders and an in-memory SDK double shared by the unit tests."""

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any

from reflector.config import ClientConfig
from reflector.llm_client import ClassifierClient


# =============================================================================
# Transcript records
# =============================================================================


def user_text(text: str, **extra: Any) -> dict[str, Any]:
    return {"type": "user", "message": {"role": "user", "content": text}, **extra}


def assistant_text(text: str, **extra: Any) -> dict[str, Any]:
    return {
        "type": "assistant",
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
        **extra,
    }


def tool_use(tool_id: str, name: str, tool_input: dict[str, Any], text: str | None = None) -> dict[str, Any]:
    blocks: list[dict[str, Any]] = []
    if text:
        blocks.append({"type": "text", "text": text})
    blocks.append({"type": "tool_use", "id": tool_id, "name": name, "input": tool_input})
    return {"type": "assistant", "message": {"role": "assistant", "content": blocks}}


def tool_result(tool_id: str, content: Any, is_error: bool = False) -> dict[str, Any]:
    block: dict[str, Any] = {"type": "tool_result", "tool_use_id": tool_id, "content": content}
    if is_error:
        block["is_error"] = True
    return {"type": "user", "message": {"role": "user", "content": [block]}}


def write_transcript(path: Path, records: list[Any]) -> Path:
    """Write records as JSONL; str items are written verbatim as raw lines."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(record if isinstance(record, str) else json.dumps(record))
            f.write("\n")
    return path


# =============================================================================
# SDK double
# =============================================================================


def sdk_response(text: str | None, input_tokens: int = 100, output_tokens: int = 20) -> SimpleNamespace:
    content = [SimpleNamespace(type="text", text=text)] if text is not None else []
    return SimpleNamespace(
        content=content,
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
        stop_reason="end_turn",
    )


class FakeMessages:
    """Replays scripted outcomes; an Exception item is raised, anything else returned."""

    def __init__(self, outcomes: list[Any] | None = None, default: Any = None):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if callable(outcome) and not isinstance(outcome, SimpleNamespace):
            outcome = outcome(kwargs)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, str):
            return sdk_response(outcome)
        return outcome


class FakeSDK:
    def __init__(self, outcomes: list[Any] | None = None, default: Any = "[]"):
        self.messages = FakeMessages(outcomes, default)


def fast_client_config(**overrides: Any) -> ClientConfig:
    settings: dict[str, Any] = {
        "provider": "anthropic",
        "api_key": "test-key",
        "call_delay_seconds": 0.0,
        "initial_backoff_seconds": 0.0,
        "max_backoff_seconds": 0.0,
    }
    settings.update(overrides)
    return ClientConfig(**settings)


def make_client(outcomes: list[Any] | None = None, default: Any = "[]", **overrides: Any) -> ClassifierClient:
    return ClassifierClient(fast_client_config(**overrides), sdk_client=FakeSDK(outcomes, default))
