"""
Configuration management for claude-session-reflector.

Settings live in ~/.claude/reflector-config.json (or the path named by
REFLECTOR_CONFIG). Every section has code defaults, so the file is optional.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

Provider = Literal["anthropic", "vertex", "bedrock"]

CONFIG_PATH = Path.home() / ".claude" / "reflector-config.json"

# Budgets shared by both condensation regimes
TOOL_PARAM_CHARS = 300
TOOL_ERROR_CHARS = 800


def _filter_dataclass_fields(data: Any, cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    if not isinstance(data, dict):
        # A section that is not an object falls back to defaults
        return {}
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


def _reflector_home() -> Path:
    """Directory holding the ledger and reports."""
    env_value = os.getenv("REFLECTOR_HOME")
    if env_value:
        return Path(env_value).expanduser()
    return Path.home() / ".claude" / "reflector"


@dataclass(frozen=True)
class CondenseConfig:
    """
    Size regime for transcript condensation.

    Bounded and full mode differ only in these three knobs.
    """

    assistant_char_cap: int | None
    max_total_chars: int
    window_size: int


BOUNDED_MODE = CondenseConfig(assistant_char_cap=2000, max_total_chars=500_000, window_size=20)
FULL_MODE = CondenseConfig(assistant_char_cap=None, max_total_chars=800_000, window_size=50)


def detect_provider() -> Provider:
    """
    Pick the inference provider from the environment.

    Priority order:
    1. REFLECTOR_PROVIDER (if set)
    2. Vertex when ANTHROPIC_VERTEX_PROJECT_ID is set
    3. Bedrock when AWS_REGION is set and no Anthropic key exists
    4. Direct Anthropic API
    """
    explicit = os.getenv("REFLECTOR_PROVIDER")
    if explicit in ("anthropic", "vertex", "bedrock"):
        return explicit  # type: ignore[return-value]
    if os.getenv("ANTHROPIC_VERTEX_PROJECT_ID"):
        return "vertex"
    has_key = os.getenv("ANTHROPIC_API_KEY") or os.getenv("ANTHROPIC_AUTH_TOKEN")
    if os.getenv("AWS_REGION") and not has_key:
        return "bedrock"
    return "anthropic"


@dataclass
class ClientConfig:
    """Connection and retry settings for the classifier client."""

    provider: Provider = field(default_factory=detect_provider)
    api_key: str | None = None
    base_url: str | None = None
    vertex_project_id: str | None = None
    region: str | None = None

    # Pacing and retry (transient errors only)
    call_delay_seconds: float = 0.5
    max_attempts: int = 3
    initial_backoff_seconds: float = 2.0
    max_backoff_seconds: float = 30.0
    # Per-attempt deadline; expiry counts as a transient failure
    call_timeout_seconds: float = 300.0

    temperature: float = 0.0

    def __post_init__(self) -> None:
        """Fill credentials from the environment if not provided."""
        if self.api_key is None:
            self.api_key = os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_AUTH_TOKEN")
        if self.base_url is None:
            self.base_url = os.environ.get("ANTHROPIC_BASE_URL")
        if self.vertex_project_id is None:
            self.vertex_project_id = os.environ.get("ANTHROPIC_VERTEX_PROJECT_ID")
        if self.region is None:
            if self.provider == "vertex":
                self.region = os.environ.get("CLOUD_ML_REGION")
            elif self.provider == "bedrock":
                self.region = os.environ.get("AWS_REGION")


@dataclass
class PathsConfig:
    """Filesystem locations of collaborators and outputs."""

    projects_dir: Path = field(default_factory=lambda: Path.home() / ".claude" / "projects")
    skills_dir: Path = field(default_factory=lambda: Path.home() / ".claude" / "skills")
    rules_file: Path = field(default_factory=lambda: Path.home() / ".claude" / "CLAUDE.md")
    state_file: Path = field(default_factory=lambda: _reflector_home() / "state.json")
    reports_dir: Path = field(default_factory=lambda: _reflector_home() / "reports")

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            setattr(self, f.name, Path(value).expanduser())


@dataclass
class AnalysisConfig:
    """Run-level analysis settings."""

    scan_model: str = "haiku"
    verify_model: str = "sonnet"
    scan_max_tokens: int = 4096
    verify_max_tokens: int = 8192
    concurrency: int = 5
    min_messages: int = 4
    excluded_paths: list[str] = field(default_factory=list)


@dataclass
class ReflectorConfig:
    """Complete reflector configuration."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    bounded: CondenseConfig = BOUNDED_MODE
    full: CondenseConfig = FULL_MODE

    @classmethod
    def load(cls, path: Path | None = None) -> "ReflectorConfig":
        """
        Load config from file with defaults.

        Args:
            path: Optional config file path. Defaults to REFLECTOR_CONFIG or
                ~/.claude/reflector-config.json

        Returns:
            ReflectorConfig with user settings merged over defaults
        """
        if path is None:
            env_path = os.getenv("REFLECTOR_CONFIG")
            path = Path(env_path).expanduser() if env_path else CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, UnicodeDecodeError, OSError):
                # Use defaults on error
                data = {}
        if not isinstance(data, dict):
            data = {}

        return cls(
            paths=PathsConfig(**_filter_dataclass_fields(data.get("paths", {}), PathsConfig)),
            client=ClientConfig(**_filter_dataclass_fields(data.get("client", {}), ClientConfig)),
            analysis=AnalysisConfig(**_filter_dataclass_fields(data.get("analysis", {}), AnalysisConfig)),
        )


__all__ = [
    "BOUNDED_MODE",
    "FULL_MODE",
    "TOOL_ERROR_CHARS",
    "TOOL_PARAM_CHARS",
    "AnalysisConfig",
    "ClientConfig",
    "CondenseConfig",
    "PathsConfig",
    "Provider",
    "ReflectorConfig",
    "detect_provider",
]
