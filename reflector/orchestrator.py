"""
Pipeline orchestrator.

Per run:

    Discover -> Filter -> (dry run | all processed | nothing matched)
        -> Condense + Stage 1 per session (bounded concurrency)
        -> Persist Stage-1 report
        -> Sessions with >= 1 candidate
        -> Condense (full) + Stage 2 per session (bounded concurrency)
        -> Persist Stage-2 report

Stage 2 always reads Stage 1's results back from the persisted report, so
`verify` can run independently of the `scan` that produced its input.
Per-session failures are logged and skipped; they never abort the run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol, TypeVar

from .candidate_analyzer import analyze_session
from .condenser import condense_session
from .config import ReflectorConfig
from .llm_client import ClassifierClient
from .progress_ledger import ProgressLedger
from .reporter import (
    LATEST_REPORT,
    build_scan_report,
    build_verification_report,
    load_scan_report,
    total_usage,
    write_report,
    write_verification_report,
)
from .session_index import ScanFilters, read_all_session_entries, session_lookup
from .session_schema import (
    ScanReport,
    ScanResult,
    SessionIndexEntry,
    VerificationReport,
    VerificationResult,
)
from .skill_catalog import ContextInfo, load_context
from .verifier import verify_session

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Terminal state of one command."""

    NO_MATCHING_SESSIONS = "no-matching-sessions"
    ALL_PROCESSED = "all-processed"
    DRY_RUN = "dry-run"
    NOTHING_ANALYZED = "nothing-analyzed"
    SCAN_COMPLETE = "scan-complete"
    NOTHING_TO_VERIFY = "nothing-to-verify"
    NOTHING_VERIFIED = "nothing-verified"
    VERIFY_COMPLETE = "verify-complete"


@dataclass
class SessionFailure:
    session_id: str
    message: str


@dataclass
class RunOutcome:
    """Everything a command produced, for rendering by the caller."""

    status: RunStatus
    # Sessions selected for work; on a dry run, the sessions that would be analyzed
    sessions: list[SessionIndexEntry] = field(default_factory=list)
    # On a verify dry run, the Stage-1 results that would be verified
    pending_verification: list[ScanResult] = field(default_factory=list)
    scan_report: ScanReport | None = None
    scan_report_path: Path | None = None
    verification_report: VerificationReport | None = None
    verification_report_path: Path | None = None
    failed: list[SessionFailure] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class ScanOptions:
    process_all: bool = False
    dry_run: bool = False
    excluded_paths: list[str] | None = None
    min_messages: int | None = None
    session_id: str | None = None
    limit: int | None = None
    model: str | None = None
    concurrency: int | None = None


@dataclass
class VerifyOptions:
    report_path: Path | None = None
    model: str | None = None
    dry_run: bool = False
    concurrency: int | None = None


class _HasSessionId(Protocol):
    session_id: str


ItemT = TypeVar("ItemT", bound=_HasSessionId)
ResultT = TypeVar("ResultT")


class ReflectorPipeline:
    """
    Drives scan, verify and pipeline runs.

    The classifier client, ledger and context snapshot may be injected;
    otherwise they are built from the config. The context (rules and skill
    catalog) is loaded once and shared read-only by every session.
    """

    def __init__(
        self,
        config: ReflectorConfig | None = None,
        client: ClassifierClient | None = None,
        ledger: ProgressLedger | None = None,
        context: ContextInfo | None = None,
    ):
        self.config = config or ReflectorConfig()
        self.client = client or ClassifierClient(self.config.client)
        self.ledger = ledger or ProgressLedger(self.config.paths.state_file)
        self._context = context

    @property
    def reports_dir(self) -> Path:
        return self.config.paths.reports_dir

    def context(self) -> ContextInfo:
        """
        Raises:
            ContextLoadError: If the skill directory or rule file cannot be read
        """
        if self._context is None:
            self._context = load_context(self.config.paths.skills_dir, self.config.paths.rules_file)
        return self._context

    def filters_for(self, options: ScanOptions) -> ScanFilters:
        analysis = self.config.analysis
        return ScanFilters(
            excluded_paths=options.excluded_paths if options.excluded_paths is not None else analysis.excluded_paths,
            min_messages=options.min_messages if options.min_messages is not None else analysis.min_messages,
            session_id=options.session_id,
        )

    # =========================================================================
    # Bounded fan-out
    # =========================================================================

    async def _run_bounded(
        self,
        items: Sequence[ItemT],
        worker: Callable[[ItemT], Awaitable[ResultT | None]],
        outcome: RunOutcome,
        concurrency: int | None,
    ) -> list[ResultT]:
        """
        Run worker over items with at most `concurrency` in flight.

        A worker returning None marks its item skipped; a worker raising
        marks it failed. Results keep the input order.
        """
        limit = max(1, concurrency or self.config.analysis.concurrency)
        semaphore = asyncio.Semaphore(limit)

        async def run_one(item: ItemT) -> ResultT | None:
            async with semaphore:
                try:
                    result = await worker(item)
                except Exception as e:
                    logger.warning(f"{item.session_id} - failed: {e}")
                    outcome.failed.append(SessionFailure(session_id=item.session_id, message=str(e)))
                    return None
            if result is None:
                outcome.skipped.append(item.session_id)
            return result

        results = await asyncio.gather(*(run_one(item) for item in items))
        return [r for r in results if r is not None]

    # =========================================================================
    # Stage 1
    # =========================================================================

    async def scan(self, options: ScanOptions | None = None) -> RunOutcome:
        """
        Discover, filter and scan sessions, then write the Stage-1 report.

        Raises:
            LedgerCorruptError: If the progress ledger cannot be parsed
            ContextLoadError: If rules or skills cannot be read
            ClassifierError: If the client cannot be built
        """
        options = options or ScanOptions()
        entries = await asyncio.to_thread(
            read_all_session_entries, self.config.paths.projects_dir, self.filters_for(options)
        )
        logger.info(f"Found {len(entries)} sessions matching filters")
        if not entries:
            return RunOutcome(status=RunStatus.NO_MATCHING_SESSIONS)

        # Loaded even with --all so records for sessions outside this run survive
        self.ledger.load()
        pending = entries if options.process_all else self.ledger.pending(entries)
        if not pending:
            return RunOutcome(status=RunStatus.ALL_PROCESSED)
        if options.limit:
            pending = pending[: options.limit]

        if options.dry_run:
            return RunOutcome(status=RunStatus.DRY_RUN, sessions=pending)

        context = self.context()
        self.client.ensure_ready()
        model = options.model or self.config.analysis.scan_model
        logger.info(f"Processing {len(pending)} session(s) with {self.client.resolve_model(model)}")

        outcome = RunOutcome(status=RunStatus.SCAN_COMPLETE, sessions=pending)

        async def scan_one(entry: SessionIndexEntry) -> ScanResult | None:
            session = await asyncio.to_thread(condense_session, entry, self.config.bounded)
            if not session.conversation_text.strip():
                logger.warning(f"{entry.label} - empty conversation, skipping")
                return None

            result = await analyze_session(
                session,
                context,
                self.client,
                model=model,
                max_tokens=self.config.analysis.scan_max_tokens,
            )
            await self.ledger.mark_processed(entry, len(result.flags))
            if result.flags:
                logger.info(f"{entry.label} - {len(result.flags)} finding(s)")
            else:
                logger.info(f"{entry.label} - clean")
            return result

        results = await self._run_bounded(pending, scan_one, outcome, options.concurrency)
        if not results:
            outcome.status = RunStatus.NOTHING_ANALYZED
            return outcome

        cost = self.client.estimate_cost(total_usage([r.token_usage for r in results]), model)
        outcome.scan_report = build_scan_report(results, self.client.resolve_model(model), cost)
        outcome.scan_report_path = write_report(outcome.scan_report, self.reports_dir)
        logger.info(f"Report saved to: {outcome.scan_report_path}")
        return outcome

    # =========================================================================
    # Stage 2
    # =========================================================================

    async def verify(self, options: VerifyOptions | None = None) -> RunOutcome:
        """
        Verify the candidates in a persisted Stage-1 report.

        Raises:
            ReportNotFoundError: If the Stage-1 report does not exist
            ContextLoadError: If rules or skills cannot be read
            ClassifierError: If the client cannot be built
        """
        options = options or VerifyOptions()
        report_path = options.report_path or self.reports_dir / LATEST_REPORT
        scan_report = load_scan_report(report_path)

        with_findings = [r for r in scan_report.results if r.flags]
        if not with_findings:
            return RunOutcome(status=RunStatus.NOTHING_TO_VERIFY, scan_report=scan_report, scan_report_path=report_path)

        model = options.model or self.config.analysis.verify_model
        total = sum(len(r.flags) for r in with_findings)
        logger.info(
            f"Verifying {total} finding(s) across {len(with_findings)} session(s) "
            f"with {self.client.resolve_model(model)}"
        )
        if options.dry_run:
            return RunOutcome(
                status=RunStatus.DRY_RUN,
                pending_verification=with_findings,
                scan_report=scan_report,
                scan_report_path=report_path,
            )

        context = self.context()
        self.client.ensure_ready()
        lookup = await asyncio.to_thread(session_lookup, self.config.paths.projects_dir)

        outcome = RunOutcome(status=RunStatus.VERIFY_COMPLETE, scan_report=scan_report, scan_report_path=report_path)

        async def verify_one(scan_result: ScanResult) -> VerificationResult | None:
            entry = lookup.get(scan_result.session_id)
            if entry is None:
                logger.warning(f"{scan_result.session_id} - session not found, skipping")
                return None

            session = await asyncio.to_thread(condense_session, entry, self.config.full)
            result = await verify_session(
                session,
                scan_result.flags,
                context,
                self.client,
                model=model,
                max_tokens=self.config.analysis.verify_max_tokens,
            )
            logger.info(f"{entry.label} - {result.confirmed_count} confirmed, {result.rejected_count} rejected")
            return result

        results = await self._run_bounded(with_findings, verify_one, outcome, options.concurrency)
        if not results:
            outcome.status = RunStatus.NOTHING_VERIFIED
            return outcome

        cost = self.client.estimate_cost(total_usage([r.token_usage for r in results]), model)
        outcome.verification_report = build_verification_report(
            results, str(report_path), self.client.resolve_model(model), cost
        )
        outcome.verification_report_path = write_verification_report(outcome.verification_report, self.reports_dir)
        logger.info(f"Verified report saved to: {outcome.verification_report_path}")
        return outcome

    # =========================================================================
    # Both stages
    # =========================================================================

    async def run(self, scan_options: ScanOptions | None = None, verify_model: str | None = None) -> RunOutcome:
        """Scan, then verify the report that scan just wrote."""
        scan_options = scan_options or ScanOptions()
        scanned = await self.scan(scan_options)
        if scanned.status != RunStatus.SCAN_COMPLETE:
            return scanned

        verified = await self.verify(
            VerifyOptions(
                report_path=scanned.scan_report_path,
                model=verify_model,
                concurrency=scan_options.concurrency,
            )
        )
        verified.sessions = scanned.sessions
        verified.failed = scanned.failed + verified.failed
        verified.skipped = scanned.skipped + verified.skipped
        return verified


__all__ = [
    "ReflectorPipeline",
    "RunOutcome",
    "RunStatus",
    "ScanOptions",
    "SessionFailure",
    "VerifyOptions",
]
