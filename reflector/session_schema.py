"""
Schema models for claude-session-reflector.

Pydantic models for every shape that crosses a boundary: the session
index written by Claude Code, classifier findings and verdicts, the
progress ledger and the two report files. Field names are snake_case in
Python and camelCase on disk.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict:
        """Dump with on-disk key names, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FindingType(str, Enum):
    """Kind of configuration gap."""

    MISSING_RULE = "missing-rule"
    SKILL_UNUSED = "skill-unused"
    SKILL_CORRECTION = "skill-correction"


class Confidence(str, Enum):
    """Classifier confidence level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


CONFIDENCE_RANK = {Confidence.HIGH: 3, Confidence.MEDIUM: 2, Confidence.LOW: 1}


# =============================================================================
# Session discovery
# =============================================================================


class SessionIndexEntry(CamelModel):
    """One session listed in a project's sessions-index.json."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    session_id: str
    full_path: str
    file_mtime: float = 0.0
    first_prompt: str = ""
    summary: str = ""
    message_count: int = 0
    created: str = ""
    modified: str = ""
    git_branch: str = ""
    project_path: str = ""
    is_sidechain: bool = False

    @field_validator(
        "first_prompt", "summary", "created", "modified", "git_branch", "project_path",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def label(self) -> str:
        """Short human label for progress output."""
        return self.summary or self.session_id[:8]


class SessionIndex(CamelModel):
    """Contents of sessions-index.json."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    version: int = 1
    entries: list[SessionIndexEntry] = Field(default_factory=list)


# =============================================================================
# Stage 1
# =============================================================================


class CandidateFinding(CamelModel):
    """An unverified configuration gap flagged by the broad classifier."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: FindingType
    excerpt: str
    what_happened: str
    recommendation: str
    confidence: Confidence
    suggested_rule: str | None = None
    skill_name: str | None = None

    @field_validator("suggested_rule", "skill_name", mode="before")
    @classmethod
    def _optional_text(cls, value: object) -> object:
        # Optional extras never invalidate an otherwise well-formed finding
        return value if isinstance(value, str) and value else None


class TokenUsage(CamelModel):
    """Token counters from one classifier call."""

    input_tokens: int = 0
    output_tokens: int = 0


class ScanResult(CamelModel):
    """Stage-1 output for one session."""

    session_id: str
    project_path: str = ""
    summary: str = ""
    flags: list[CandidateFinding] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class ScanReport(CamelModel):
    """Aggregate Stage-1 report for one run."""

    generated_at: str
    model: str = ""
    sessions_scanned: int = 0
    sessions_with_findings: int = 0
    total_findings: int = 0
    findings_by_type: dict[str, int] = Field(default_factory=dict)
    estimated_cost: float = 0.0
    results: list[ScanResult] = Field(default_factory=list)


# =============================================================================
# Stage 2
# =============================================================================


class Verdict(CamelModel):
    """Confirm/reject decision over exactly one candidate finding."""

    original_finding: CandidateFinding
    verified: bool = False
    reasoning: str = ""
    refined_recommendation: str | None = None
    refined_suggested_rule: str | None = None
    evidence: list[str] = Field(default_factory=list)
    confidence: Confidence = Confidence.LOW


class VerificationResult(CamelModel):
    """Stage-2 output for one session."""

    session_id: str
    project_path: str = ""
    summary: str = ""
    verdicts: list[Verdict] = Field(default_factory=list)
    confirmed_count: int = 0
    rejected_count: int = 0
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class VerificationReport(CamelModel):
    """Aggregate Stage-2 report for one run."""

    generated_at: str
    source_report: str
    model: str
    sessions_verified: int = 0
    findings_input: int = 0
    findings_confirmed: int = 0
    findings_rejected: int = 0
    estimated_cost: float = 0.0
    results: list[VerificationResult] = Field(default_factory=list)


# =============================================================================
# Progress ledger
# =============================================================================


class ProgressRecord(CamelModel):
    """Ledger entry for one analyzed session."""

    session_id: str
    processed_at: str
    # Content-version signature of the log at processing time
    modified_at: str
    findings_count: int = 0


class LedgerState(CamelModel):
    """Contents of the ledger file."""

    last_run_at: str | None = None
    processed_sessions: dict[str, ProgressRecord] = Field(default_factory=dict)


__all__ = [
    "CONFIDENCE_RANK",
    "CamelModel",
    "CandidateFinding",
    "Confidence",
    "FindingType",
    "LedgerState",
    "ProgressRecord",
    "ScanReport",
    "ScanResult",
    "SessionIndex",
    "SessionIndexEntry",
    "TokenUsage",
    "Verdict",
    "VerificationReport",
    "VerificationResult",
]
