"""
Report persistence and plain-text rendering.

Layout under the reports directory:

    reports/
        2026-01-31T12-00-00-000000Z/
            report.json        Stage-1 report for that run
            verified.json      Stage-2 report over it (if verified)
        latest.json            copy of the newest Stage-1 report
        latest-verified.json   copy of the newest Stage-2 report
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .errors import ReportNotFoundError
from .persistence import atomic_write_json
from .session_schema import (
    CONFIDENCE_RANK,
    FindingType,
    ScanReport,
    ScanResult,
    TokenUsage,
    VerificationReport,
    VerificationResult,
)

logger = logging.getLogger(__name__)

LATEST_REPORT = "latest.json"
LATEST_VERIFIED_REPORT = "latest-verified.json"
RUN_REPORT = "report.json"
RUN_VERIFIED_REPORT = "verified.json"

RULE = "-" * 40

TYPE_LABELS: dict[FindingType, tuple[str, str]] = {
    FindingType.MISSING_RULE: ("missing rule", "missing rules"),
    FindingType.SKILL_UNUSED: ("unused skill", "unused skills"),
    FindingType.SKILL_CORRECTION: ("skill correction", "skill corrections"),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def total_usage(usages: list[TokenUsage]) -> TokenUsage:
    return TokenUsage(
        input_tokens=sum(u.input_tokens for u in usages),
        output_tokens=sum(u.output_tokens for u in usages),
    )


# =============================================================================
# Building
# =============================================================================


def build_scan_report(results: list[ScanResult], model: str, estimated_cost: float) -> ScanReport:
    """Aggregate Stage-1 results into a report."""
    by_type = {t.value: 0 for t in FindingType}
    for result in results:
        for flag in result.flags:
            by_type[flag.type.value] += 1

    return ScanReport(
        generated_at=_utc_now().isoformat().replace("+00:00", "Z"),
        model=model,
        sessions_scanned=len(results),
        sessions_with_findings=sum(1 for r in results if r.flags),
        total_findings=sum(by_type.values()),
        findings_by_type=by_type,
        estimated_cost=estimated_cost,
        results=results,
    )


def build_verification_report(
    results: list[VerificationResult],
    source_report: str,
    model: str,
    estimated_cost: float,
) -> VerificationReport:
    """Aggregate Stage-2 results into a report."""
    return VerificationReport(
        generated_at=_utc_now().isoformat().replace("+00:00", "Z"),
        source_report=source_report,
        model=model,
        sessions_verified=len(results),
        findings_input=sum(len(r.verdicts) for r in results),
        findings_confirmed=sum(r.confirmed_count for r in results),
        findings_rejected=sum(r.rejected_count for r in results),
        estimated_cost=estimated_cost,
        results=results,
    )


# =============================================================================
# Persistence
# =============================================================================


def write_report(report: ScanReport, reports_dir: Path) -> Path:
    """
    Write a Stage-1 report to a timestamped run directory and mirror it to latest.json.

    Returns:
        Path of the timestamped report
    """
    timestamp = _utc_now().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    report_path = reports_dir / timestamp / RUN_REPORT
    data = report.to_json_dict()
    atomic_write_json(report_path, data)
    atomic_write_json(reports_dir / LATEST_REPORT, data)
    return report_path


def write_verification_report(report: VerificationReport, reports_dir: Path) -> Path:
    """
    Write a Stage-2 report to latest-verified.json.

    A history copy is also placed beside the source Stage-1 report when that
    report lives in a run directory.

    Returns:
        Path of latest-verified.json
    """
    data = report.to_json_dict()
    latest_path = reports_dir / LATEST_VERIFIED_REPORT
    atomic_write_json(latest_path, data)

    source = Path(report.source_report)
    if source.name == RUN_REPORT and source.parent.is_dir():
        atomic_write_json(source.parent / RUN_VERIFIED_REPORT, data)
    return latest_path


def _read_json(path: Path, missing_hint: str) -> dict:
    if not path.exists():
        raise ReportNotFoundError(f"No report at {path}. {missing_hint}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        raise ReportNotFoundError(f"Report {path} is unreadable: {e}") from e


def load_scan_report(path: Path) -> ScanReport:
    """
    Raises:
        ReportNotFoundError: If the report is missing or unreadable
    """
    data = _read_json(path, 'Run "reflector scan" first.')
    try:
        return ScanReport.model_validate(data)
    except ValidationError as e:
        raise ReportNotFoundError(f"Report {path} is not a scan report: {e}") from e


def load_verification_report(path: Path) -> VerificationReport:
    data = _read_json(path, 'Run "reflector verify" first.')
    try:
        return VerificationReport.model_validate(data)
    except ValidationError as e:
        raise ReportNotFoundError(f"Report {path} is not a verification report: {e}") from e


# =============================================================================
# Rendering
# =============================================================================


def _usage_lines(usage: TokenUsage, cost: float) -> list[str]:
    return [
        f"Tokens: {usage.input_tokens:,} in / {usage.output_tokens:,} out",
        f"Estimated cost: ${cost:.4f}",
    ]


def format_scan_summary(report: ScanReport) -> str:
    """Human-readable Stage-1 summary, findings sorted by confidence."""
    usage = total_usage([r.token_usage for r in report.results])
    lines = [
        "",
        "Reflector Report",
        RULE,
        f"Sessions scanned:     {report.sessions_scanned}",
        f"Sessions w/ findings: {report.sessions_with_findings}",
        f"Total findings:       {report.total_findings}",
        "",
        "By type:",
    ]
    for finding_type in FindingType:
        count = report.findings_by_type.get(finding_type.value, 0)
        lines.append(f"  {finding_type.value + ':':<19}{count}")
    lines += ["", *_usage_lines(usage, report.estimated_cost), "", RULE]

    for result in report.results:
        if not result.flags:
            continue
        lines += ["", result.summary or result.session_id[:8]]

        counts = Counter(flag.type for flag in result.flags)
        parts = [f"{n} {TYPE_LABELS[t][0 if n == 1 else 1]}" for t, n in counts.items()]
        lines += [f"  {', '.join(parts)}", ""]

        ranked = sorted(result.flags, key=lambda f: CONFIDENCE_RANK[f.confidence], reverse=True)
        for i, flag in enumerate(ranked, start=1):
            skill_label = f" {flag.skill_name}" if flag.skill_name else ""
            lines.append(f"  {i}. [{flag.type.value}] ({flag.confidence.value}){skill_label}")
            lines.append(f"     What happened: {flag.what_happened}")
            lines.append(f"     Recommendation: {flag.recommendation}")
            if flag.suggested_rule:
                lines.append(f"     Suggested rule: {flag.suggested_rule}")
            lines.append("")

    lines += [*_usage_lines(usage, report.estimated_cost), ""]
    return "\n".join(lines)


def format_verification_summary(report: VerificationReport) -> str:
    """Human-readable Stage-2 summary: confirmed findings first, then rejections."""
    usage = total_usage([r.token_usage for r in report.results])
    lines = [
        "",
        "Verification Report",
        RULE,
        f"Sessions verified:   {report.sessions_verified}",
        f"Findings input:      {report.findings_input}",
        f"Findings confirmed:  {report.findings_confirmed}",
        f"Findings rejected:   {report.findings_rejected}",
        "",
        *_usage_lines(usage, report.estimated_cost),
        "",
        RULE,
    ]

    for result in report.results:
        if not result.verdicts:
            continue
        confirmed = [v for v in result.verdicts if v.verified]
        rejected = [v for v in result.verdicts if not v.verified]
        lines += [
            "",
            result.summary or result.session_id[:8],
            f"  {len(confirmed)} confirmed, {len(rejected)} rejected",
            "",
        ]

        for verdict in confirmed:
            f = verdict.original_finding
            skill_label = f" {f.skill_name}" if f.skill_name else ""
            lines.append(f"  + [{f.type.value}] ({verdict.confidence.value}){skill_label}")
            lines.append(f"     Reasoning: {verdict.reasoning}")
            lines.append(f"     Recommendation: {verdict.refined_recommendation or f.recommendation}")
            if verdict.refined_suggested_rule:
                lines.append(f"     Suggested rule: {verdict.refined_suggested_rule}")
            if verdict.evidence:
                lines.append("     Evidence:")
                lines += [f"       * {e}" for e in verdict.evidence]
            lines.append("")

        for verdict in rejected:
            f = verdict.original_finding
            lines.append(f"  - [{f.type.value}] {f.skill_name or ''}".rstrip())
            lines.append(f"     Rejected: {verdict.reasoning}")
            lines.append("")

    lines += [*_usage_lines(usage, report.estimated_cost), ""]
    return "\n".join(lines)


def print_summary(report: ScanReport) -> None:
    print(format_scan_summary(report))


def print_verification_summary(report: VerificationReport) -> None:
    print(format_verification_summary(report))


def print_latest_report(reports_dir: Path, verified: bool = False, as_json: bool = False) -> None:
    """
    Print the newest Stage-1 (or Stage-2) report.

    Raises:
        ReportNotFoundError: If no such report has been written yet
    """
    if verified:
        report = load_verification_report(reports_dir / LATEST_VERIFIED_REPORT)
    else:
        report = load_scan_report(reports_dir / LATEST_REPORT)

    if as_json:
        print(json.dumps(report.to_json_dict(), indent=2))
    elif verified:
        print_verification_summary(report)
    else:
        print_summary(report)


__all__ = [
    "LATEST_REPORT",
    "LATEST_VERIFIED_REPORT",
    "build_scan_report",
    "build_verification_report",
    "format_scan_summary",
    "format_verification_summary",
    "load_scan_report",
    "load_verification_report",
    "print_latest_report",
    "print_summary",
    "print_verification_summary",
    "write_report",
    "write_verification_report",
]
