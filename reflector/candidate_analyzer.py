"""
Stage 1: broad scan.

One classifier call per bounded-mode session, producing zero or more
candidate findings. Malformed model output degrades to no findings.
"""

from __future__ import annotations

import logging

from .condenser import CondensedSession
from .llm_client import ClassifierClient
from .prompts import build_scan_system_prompt, build_scan_user_message
from .response_parser import parse_findings
from .session_schema import ScanResult
from .skill_catalog import ContextInfo

logger = logging.getLogger(__name__)


async def analyze_session(
    session: CondensedSession,
    context: ContextInfo,
    client: ClassifierClient,
    model: str = "haiku",
    max_tokens: int = 4096,
) -> ScanResult:
    """
    Scan one condensed session for candidate findings.

    Raises:
        ClassifierError: If the model call itself fails
    """
    system = build_scan_system_prompt(context.rules, context.skills)
    user_message = build_scan_user_message(session.conversation_text, session.skills_used)

    response = await client.complete(system, user_message, model=model, max_tokens=max_tokens)
    flags = parse_findings(response.text)
    logger.debug(f"{session.session_id}: {len(flags)} candidate findings")

    return ScanResult(
        session_id=session.session_id,
        project_path=session.project_path,
        summary=session.summary,
        flags=flags,
        token_usage=response.usage,
    )


__all__ = ["analyze_session"]
