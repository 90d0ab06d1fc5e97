"""Safe JSON parsing for classifier responses."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from .session_schema import CandidateFinding, Confidence, Verdict

logger = logging.getLogger(__name__)

FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)

PARSE_FAILURE_REASON = "Failed to parse verification response"
MISSING_VERDICT_REASON = "No verdict returned by verification model"


def extract_json_text(raw: str) -> str:
    """Strip whitespace and unwrap the first fenced code block, if any."""
    text = raw.strip()
    match = FENCED_BLOCK.search(text)
    if match:
        text = match.group(1).strip()
    return text


def parse_json_array(raw: str) -> list[Any] | None:
    """
    Decode a response that should be a JSON array.

    Returns:
        The list, or None if the response is not valid JSON or not an array
    """
    try:
        parsed = json.loads(extract_json_text(raw))
    except json.JSONDecodeError:
        logger.debug(f"Response is not valid JSON: {raw[:200]!r}")
        return None
    if not isinstance(parsed, list):
        logger.debug(f"Response is JSON but not an array: {type(parsed).__name__}")
        return None
    return parsed


def validate_finding(item: Any) -> CandidateFinding | ValidationError:
    """Validate one raw element, returning the finding or the validation error."""
    try:
        return CandidateFinding.model_validate(item)
    except ValidationError as e:
        return e


def parse_findings(raw: str) -> list[CandidateFinding]:
    """
    Stage-1 response to candidate findings.

    Elements that fail validation are dropped individually; a response that
    is not a JSON array yields no findings.
    """
    items = parse_json_array(raw)
    if items is None:
        return []

    findings = []
    for position, item in enumerate(items):
        result = validate_finding(item)
        if isinstance(result, ValidationError):
            logger.debug(f"Discarding malformed finding at position {position}: {result.error_count()} errors")
            continue
        findings.append(result)
    return findings


def fallback_verdict(finding: CandidateFinding, reason: str) -> Verdict:
    """Fail-closed verdict for a candidate that could not be evaluated."""
    return Verdict(
        original_finding=finding,
        verified=False,
        reasoning=reason,
        evidence=[],
        confidence=Confidence.LOW,
    )


def fallback_verdicts(findings: list[CandidateFinding], reason: str = PARSE_FAILURE_REASON) -> list[Verdict]:
    return [fallback_verdict(f, reason) for f in findings]


def _finding_index(item: Any) -> int | None:
    if not isinstance(item, dict):
        return None
    value = item.get("findingIndex")
    # bool is an int subclass
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _optional_text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def build_verdict(finding: CandidateFinding, item: dict[str, Any]) -> Verdict:
    """Verdict from one raw response object, defaulting fields that are missing or invalid."""
    reasoning = item.get("reasoning")
    evidence = item.get("evidence")
    try:
        confidence = Confidence(item.get("confidence"))
    except ValueError:
        confidence = finding.confidence

    return Verdict(
        original_finding=finding,
        verified=item.get("verified") is True,
        reasoning=reasoning if isinstance(reasoning, str) else "No reasoning provided",
        refined_recommendation=_optional_text(item.get("refinedRecommendation")),
        refined_suggested_rule=_optional_text(item.get("refinedSuggestedRule")),
        evidence=[e for e in evidence if isinstance(e, str)] if isinstance(evidence, list) else [],
        confidence=confidence,
    )


def parse_verdicts(raw: str, findings: list[CandidateFinding]) -> list[Verdict]:
    """
    Stage-2 response to exactly one verdict per candidate, in candidate order.

    Each response object is matched to a candidate by its findingIndex. An
    object without findingIndex falls back to matching by position. Any
    candidate left unmatched gets a fail-closed verdict.
    """
    items = parse_json_array(raw)
    if items is None:
        return fallback_verdicts(findings)

    by_index: dict[int, dict[str, Any]] = {}
    for item in items:
        index = _finding_index(item)
        if index is not None and 0 <= index < len(findings):
            by_index.setdefault(index, item)

    verdicts = []
    for i, finding in enumerate(findings):
        item = by_index.get(i)
        if item is None and i < len(items):
            positional = items[i]
            if isinstance(positional, dict) and _finding_index(positional) is None and "findingIndex" not in positional:
                item = positional
        if item is None:
            verdicts.append(fallback_verdict(finding, MISSING_VERDICT_REASON))
        else:
            verdicts.append(build_verdict(finding, item))
    return verdicts


__all__ = [
    "MISSING_VERDICT_REASON",
    "PARSE_FAILURE_REASON",
    "build_verdict",
    "extract_json_text",
    "fallback_verdicts",
    "parse_findings",
    "parse_json_array",
    "parse_verdicts",
    "validate_finding",
]
