"""claude-session-reflector: surface configuration gaps from Claude Code sessions.

Two-stage analysis over the session transcripts Claude Code keeps in
~/.claude/projects:

- Scan: a fast classifier flags candidate findings in each bounded-size
  transcript (missing CLAUDE.md rules, unused skills, skill corrections)
- Verify: a strict classifier confirms or rejects each candidate against
  the full transcript
"""

__version__ = "0.1.0"

# Transcripts
from .transcript_parser import LogEntry, TranscriptReader
from .condenser import CondensedSession, condense_session, condense_transcript
from .session_index import ScanFilters, read_all_session_entries
from .skill_catalog import ContextInfo, SkillInfo, load_context

# Analysis
from .llm_client import ClassifierClient, ClassifierResponse
from .candidate_analyzer import analyze_session
from .verifier import verify_session
from .progress_ledger import ProgressLedger
from .orchestrator import ReflectorPipeline, RunOutcome, RunStatus, ScanOptions, VerifyOptions

# Types, Config & Errors
from .session_schema import CandidateFinding, Confidence, FindingType, ScanReport, Verdict, VerificationReport
from .config import BOUNDED_MODE, FULL_MODE, CondenseConfig, ReflectorConfig
from .errors import ClassifierError, ContextLoadError, LedgerCorruptError, ReflectorError, ReportNotFoundError

__all__ = [
    # Transcripts
    "LogEntry",
    "TranscriptReader",
    "CondensedSession",
    "condense_session",
    "condense_transcript",
    "ScanFilters",
    "read_all_session_entries",
    "ContextInfo",
    "SkillInfo",
    "load_context",
    # Analysis
    "ClassifierClient",
    "ClassifierResponse",
    "analyze_session",
    "verify_session",
    "ProgressLedger",
    "ReflectorPipeline",
    "RunOutcome",
    "RunStatus",
    "ScanOptions",
    "VerifyOptions",
    # Types, Config & Errors
    "CandidateFinding",
    "Confidence",
    "FindingType",
    "ScanReport",
    "Verdict",
    "VerificationReport",
    "BOUNDED_MODE",
    "FULL_MODE",
    "CondenseConfig",
    "ReflectorConfig",
    "ClassifierError",
    "ContextLoadError",
    "LedgerCorruptError",
    "ReflectorError",
    "ReportNotFoundError",
]
