"""Exception hierarchy for claude-session-reflector."""

from __future__ import annotations


class ReflectorError(Exception):
    """Base class for reflector failures."""


class ClassifierError(ReflectorError):
    """A classifier call failed after all permitted attempts."""


class LedgerCorruptError(ReflectorError):
    """The progress ledger exists but cannot be parsed."""


class ContextLoadError(ReflectorError):
    """Skill directory or rule file exists but cannot be read."""


class ReportNotFoundError(ReflectorError):
    """No Stage-1 report is available to verify or display."""


__all__ = [
    "ClassifierError",
    "ContextLoadError",
    "LedgerCorruptError",
    "ReflectorError",
    "ReportNotFoundError",
]
