"""
Command line entry point.

Usage:
    reflector scan [--all] [--dry-run] [--exclude PATH ...] [--min-messages N]
                   [--session ID] [--limit N] [--model NAME] [--concurrency N]
    reflector verify [--report PATH] [--model NAME] [--dry-run] [--concurrency N]
    reflector pipeline [--all] [--dry-run] [--exclude PATH ...] [--min-messages N]
                       [--session ID] [--limit N] [--model NAME] [--concurrency N]
    reflector report [--json] [--verified]
    reflector reset

Exit status is 0 for completed runs, including runs where individual
sessions failed, and 1 when the run could not start at all.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .config import ReflectorConfig
from .errors import ClassifierError, ContextLoadError, LedgerCorruptError, ReportNotFoundError
from .orchestrator import ReflectorPipeline, RunOutcome, RunStatus, ScanOptions, VerifyOptions
from .progress_ledger import ProgressLedger
from .reporter import print_latest_report, print_summary, print_verification_summary

logger = logging.getLogger(__name__)

SETUP_ERRORS = (ContextLoadError, LedgerCorruptError, ClassifierError)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s" if verbose else "%(message)s",
    )
    if not verbose:
        # SDK request logs are noise at INFO
        for name in ("httpx", "anthropic"):
            logging.getLogger(name).setLevel(logging.WARNING)


# =============================================================================
# Rendering
# =============================================================================


def print_dry_run(outcome: RunOutcome) -> None:
    print()
    for entry in outcome.sessions:
        print(f"  {entry.session_id[:8]} {entry.summary or entry.first_prompt[:60]}")
        print(f"    {entry.message_count} messages | {entry.project_path} | {entry.modified}")
    for result in outcome.pending_verification:
        print(f"  {result.session_id[:8]} {result.summary}")
        for flag in result.flags:
            skill_label = f" ({flag.skill_name})" if flag.skill_name else ""
            print(f"    * [{flag.type.value}] {flag.confidence.value}{skill_label}")
    print()
    print("(dry run - no API calls made)")


def print_failures(outcome: RunOutcome) -> None:
    if outcome.failed:
        print(f"{len(outcome.failed)} session(s) failed:")
        for failure in outcome.failed:
            print(f"  {failure.session_id[:8]} {failure.message}")


def print_outcome(outcome: RunOutcome) -> None:
    status = outcome.status
    if status == RunStatus.NO_MATCHING_SESSIONS:
        print("No sessions to process.")
    elif status == RunStatus.ALL_PROCESSED:
        print("All matching sessions already processed. Use --all to re-process.")
    elif status == RunStatus.DRY_RUN:
        print_dry_run(outcome)
    elif status == RunStatus.NOTHING_ANALYZED:
        print("No sessions were analyzed.")
    elif status == RunStatus.NOTHING_VERIFIED:
        print("No sessions were verified.")
    elif status == RunStatus.NOTHING_TO_VERIFY:
        if outcome.sessions and outcome.scan_report is not None:
            print_summary(outcome.scan_report)
        print("No findings to verify - all sessions clean.")
    elif status == RunStatus.SCAN_COMPLETE and outcome.scan_report is not None:
        print_summary(outcome.scan_report)
    elif status == RunStatus.VERIFY_COMPLETE and outcome.verification_report is not None:
        print_verification_summary(outcome.verification_report)
    print_failures(outcome)


# =============================================================================
# Commands
# =============================================================================


def _scan_options(args: argparse.Namespace) -> ScanOptions:
    return ScanOptions(
        process_all=args.all,
        dry_run=args.dry_run,
        excluded_paths=args.exclude,
        min_messages=args.min_messages,
        session_id=args.session,
        limit=args.limit,
        concurrency=args.concurrency,
    )


def cmd_scan(pipeline: ReflectorPipeline, args: argparse.Namespace) -> int:
    options = _scan_options(args)
    options.model = args.model
    print_outcome(asyncio.run(pipeline.scan(options)))
    return 0


def cmd_verify(pipeline: ReflectorPipeline, args: argparse.Namespace) -> int:
    options = VerifyOptions(
        report_path=Path(args.report).expanduser() if args.report else None,
        model=args.model,
        dry_run=args.dry_run,
        concurrency=args.concurrency,
    )
    try:
        outcome = asyncio.run(pipeline.verify(options))
    except ReportNotFoundError as e:
        print(str(e))
        # A named report that is missing is an operator error
        return 1 if args.report else 0
    print_outcome(outcome)
    return 0


def cmd_pipeline(pipeline: ReflectorPipeline, args: argparse.Namespace) -> int:
    outcome = asyncio.run(pipeline.run(_scan_options(args), verify_model=args.model))
    if outcome.status == RunStatus.VERIFY_COMPLETE and outcome.scan_report is not None:
        print_summary(outcome.scan_report)
        print("Verified Results")
    print_outcome(outcome)
    return 0


def cmd_report(pipeline: ReflectorPipeline, args: argparse.Namespace) -> int:
    try:
        print_latest_report(pipeline.reports_dir, verified=args.verified, as_json=args.json)
    except ReportNotFoundError as e:
        print(str(e))
    return 0


def cmd_reset(pipeline: ReflectorPipeline, args: argparse.Namespace) -> int:
    if ProgressLedger(pipeline.config.paths.state_file).reset():
        print("State cleared.")
    else:
        print("No state file found.")
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "verify": cmd_verify,
    "pipeline": cmd_pipeline,
    "report": cmd_report,
    "reset": cmd_reset,
}


def _add_filter_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--all", action="store_true", help="Ignore progress, process all sessions")
    parser.add_argument("--exclude", nargs="+", metavar="PATH", default=None, help="Project paths to exclude")
    parser.add_argument("--min-messages", type=int, default=None, help="Minimum message count (default: 4)")
    parser.add_argument("--limit", type=int, default=None, help="Maximum sessions to process")
    parser.add_argument("--concurrency", type=int, default=None, help="Sessions analyzed at once (default: 5)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reflector",
        description="Analyze Claude Code sessions to surface missing rules and skill gaps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    reflector scan --dry-run
    reflector scan --limit 10
    reflector verify --model sonnet
    reflector pipeline --exclude ~/scratch
    reflector report --verified
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--config", default=None, help="Config file (default: ~/.claude/reflector-config.json)")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan sessions for candidate findings")
    _add_filter_options(scan)
    scan.add_argument("--dry-run", action="store_true", help="List sessions without calling the model")
    scan.add_argument("--session", default=None, help="Process a single session by ID")
    scan.add_argument("--model", default=None, help="Scan model, haiku|sonnet or a full model ID (default: haiku)")

    verify = sub.add_parser("verify", help="Verify candidate findings against full conversations")
    verify.add_argument("--report", default=None, help="Stage-1 report to verify (default: latest)")
    verify.add_argument("--model", default=None, help="Verify model, haiku|sonnet or a full model ID (default: sonnet)")
    verify.add_argument("--dry-run", action="store_true", help="Show what would be verified")
    verify.add_argument("--concurrency", type=int, default=None, help="Sessions verified at once (default: 5)")

    pipeline = sub.add_parser("pipeline", help="Scan, verify and report")
    _add_filter_options(pipeline)
    pipeline.add_argument("--dry-run", action="store_true", help="List sessions without calling the model")
    pipeline.add_argument("--session", default=None, help="Process a single session by ID")
    pipeline.add_argument("--model", default=None, help="Verify model (default: sonnet)")

    report = sub.add_parser("report", help="Print the latest report")
    report.add_argument("--json", action="store_true", help="Output raw JSON")
    report.add_argument("--verified", action="store_true", help="Show the verified report")

    sub.add_parser("reset", help="Delete the progress ledger")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = ReflectorConfig.load(Path(args.config).expanduser() if args.config else None)
    pipeline = ReflectorPipeline(config)

    try:
        return COMMANDS[args.command](pipeline, args)
    except SETUP_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n[interrupted]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
