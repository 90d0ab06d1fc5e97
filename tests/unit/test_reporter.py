"""Tests for report building, persistence and rendering."""

import json

import pytest

from reflector.errors import ReportNotFoundError
from reflector.reporter import (
    LATEST_REPORT,
    LATEST_VERIFIED_REPORT,
    build_scan_report,
    build_verification_report,
    format_scan_summary,
    format_verification_summary,
    load_scan_report,
    print_latest_report,
    write_report,
    write_verification_report,
)
from reflector.session_schema import (
    CandidateFinding,
    Confidence,
    FindingType,
    ScanResult,
    TokenUsage,
    Verdict,
    VerificationResult,
)


def _finding(finding_type=FindingType.MISSING_RULE, confidence=Confidence.MEDIUM, **extra):
    return CandidateFinding(
        type=finding_type,
        excerpt="no, use yarn",
        what_happened=f"{confidence.value} finding",
        recommendation="Add a package manager rule",
        confidence=confidence,
        **extra,
    )


def _scan_result(session_id, flags, summary=""):
    return ScanResult(
        session_id=session_id,
        summary=summary,
        flags=flags,
        token_usage=TokenUsage(input_tokens=1000, output_tokens=100),
    )


@pytest.fixture
def scan_report():
    results = [
        _scan_result(
            "alpha",
            [
                _finding(confidence=Confidence.LOW),
                _finding(FindingType.SKILL_UNUSED, Confidence.HIGH, skill_name="deploy"),
            ],
            summary="Fix the build",
        ),
        _scan_result("beta", []),
    ]
    return build_scan_report(results, "claude-haiku-4-5-20251001", 0.0015)


class TestBuildReports:
    def test_scan_aggregates(self, scan_report):
        assert scan_report.sessions_scanned == 2
        assert scan_report.sessions_with_findings == 1
        assert scan_report.total_findings == 2
        assert scan_report.findings_by_type == {"missing-rule": 1, "skill-unused": 1, "skill-correction": 0}
        assert scan_report.generated_at.endswith("Z")

    def test_verification_aggregates(self):
        finding = _finding()
        result = VerificationResult(
            session_id="alpha",
            verdicts=[
                Verdict(original_finding=finding, verified=True, reasoning="clear", confidence=Confidence.HIGH),
                Verdict(original_finding=finding, verified=False, reasoning="one-off"),
            ],
            confirmed_count=1,
            rejected_count=1,
        )

        report = build_verification_report([result], "/r/report.json", "claude-sonnet-4-20250514", 0.01)

        assert report.sessions_verified == 1
        assert report.findings_input == 2
        assert report.findings_confirmed == 1
        assert report.findings_rejected == 1
        assert report.source_report == "/r/report.json"


class TestPersistence:
    def test_write_report_creates_run_dir_and_latest(self, scan_report, tmp_path):
        path = write_report(scan_report, tmp_path)

        assert path.name == "report.json"
        assert path.parent.parent == tmp_path
        data = json.loads(path.read_text())
        assert data == json.loads((tmp_path / LATEST_REPORT).read_text())
        assert data["sessionsWithFindings"] == 1
        assert "skillName" not in data["results"][0]["flags"][0]

    def test_load_round_trip(self, scan_report, tmp_path):
        path = write_report(scan_report, tmp_path)

        assert load_scan_report(path) == scan_report

    def test_load_missing(self, tmp_path):
        with pytest.raises(ReportNotFoundError, match="reflector scan"):
            load_scan_report(tmp_path / LATEST_REPORT)

    def test_load_directory(self, tmp_path):
        with pytest.raises(ReportNotFoundError, match="unreadable"):
            load_scan_report(tmp_path)

    def test_load_corrupt(self, tmp_path):
        path = tmp_path / LATEST_REPORT
        path.write_text("{not json")

        with pytest.raises(ReportNotFoundError, match="unreadable"):
            load_scan_report(path)

    def test_verified_copy_beside_run_report(self, scan_report, tmp_path):
        source = write_report(scan_report, tmp_path)
        report = build_verification_report([], str(source), "m", 0.0)

        latest = write_verification_report(report, tmp_path)

        assert latest == tmp_path / LATEST_VERIFIED_REPORT
        assert (source.parent / "verified.json").exists()

    def test_no_history_copy_for_latest_source(self, tmp_path):
        report = build_verification_report([], str(tmp_path / LATEST_REPORT), "m", 0.0)

        write_verification_report(report, tmp_path)

        assert sorted(p.name for p in tmp_path.iterdir()) == [LATEST_VERIFIED_REPORT]


class TestRendering:
    def test_scan_summary_ranks_by_confidence(self, scan_report):
        text = format_scan_summary(scan_report)

        assert "Sessions scanned:     2" in text
        assert "Fix the build" in text
        assert "1 missing rule, 1 unused skill" in text
        assert text.index("[skill-unused] (high) deploy") < text.index("[missing-rule] (low)")
        assert "Tokens: 2,000 in / 200 out" in text
        assert "$0.0015" in text

    def test_verification_summary_lists_confirmed_first(self):
        finding = _finding(suggested_rule="Use yarn")
        result = VerificationResult(
            session_id="alpha1234",
            verdicts=[
                Verdict(original_finding=finding, verified=False, reasoning="one-off request"),
                Verdict(
                    original_finding=finding,
                    verified=True,
                    reasoning="repeated twice",
                    refined_suggested_rule="Always use yarn",
                    evidence=["no, use yarn"],
                    confidence=Confidence.HIGH,
                ),
            ],
            confirmed_count=1,
            rejected_count=1,
        )
        report = build_verification_report([result], "src", "m", 0.0)

        text = format_verification_summary(report)

        assert "alpha123" in text
        assert "1 confirmed, 1 rejected" in text
        assert text.index("Reasoning: repeated twice") < text.index("Rejected: one-off request")
        assert "Suggested rule: Always use yarn" in text
        assert "* no, use yarn" in text

    def test_print_latest_json(self, scan_report, tmp_path, capsys):
        write_report(scan_report, tmp_path)

        print_latest_report(tmp_path, as_json=True)

        assert json.loads(capsys.readouterr().out)["totalFindings"] == 2

    def test_print_latest_verified_missing(self, tmp_path):
        with pytest.raises(ReportNotFoundError, match="reflector verify"):
            print_latest_report(tmp_path, verified=True)
