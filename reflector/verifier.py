"""
Stage 2: strict verification.

Re-checks one session's candidate findings against the full-mode
transcript, batching all of them into a single classifier call. Every
candidate gets exactly one verdict; anything the model fails to answer
is rejected.
"""

from __future__ import annotations

import logging

from .condenser import CondensedSession
from .llm_client import ClassifierClient
from .prompts import build_verify_system_prompt, build_verify_user_message
from .response_parser import parse_verdicts
from .session_schema import CandidateFinding, VerificationResult
from .skill_catalog import ContextInfo

logger = logging.getLogger(__name__)


async def verify_session(
    session: CondensedSession,
    findings: list[CandidateFinding],
    context: ContextInfo,
    client: ClassifierClient,
    model: str = "sonnet",
    max_tokens: int = 8192,
) -> VerificationResult:
    """
    Verify a session's candidates.

    Only skills named by the candidates are sent to the model.

    Raises:
        ClassifierError: If the model call itself fails
    """
    relevant_skills = context.referenced(f.skill_name for f in findings)
    system = build_verify_system_prompt(context.rules, relevant_skills)
    user_message = build_verify_user_message(findings, session.conversation_text, session.skills_used)

    response = await client.complete(system, user_message, model=model, max_tokens=max_tokens)
    verdicts = parse_verdicts(response.text, findings)

    confirmed = sum(1 for v in verdicts if v.verified)
    logger.debug(f"{session.session_id}: {confirmed}/{len(verdicts)} findings confirmed")

    return VerificationResult(
        session_id=session.session_id,
        project_path=session.project_path,
        summary=session.summary,
        verdicts=verdicts,
        confirmed_count=confirmed,
        rejected_count=len(verdicts) - confirmed,
        token_usage=response.usage,
    )


__all__ = ["verify_session"]
