"""
Prompt templates for the two classifier stages.

Stage 1 (scan) sees one bounded-mode transcript and the whole skill
catalog. Stage 2 (verify) sees the candidates from Stage 1, the full-mode
transcript and only the skills those candidates reference.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from .session_schema import CandidateFinding
from .skill_catalog import SkillInfo


def format_skills(skills: Sequence[SkillInfo]) -> str:
    return "\n\n---\n\n".join(
        f"### {s.name}\n**Description:** {s.description}\n\n{s.content}" for s in skills
    )


def format_skills_used(skills_used: Sequence[str]) -> str:
    return "\n".join(f"- {s}" for s in skills_used) if skills_used else "(none)"


# =============================================================================
# Stage 1
# =============================================================================

SCAN_SYSTEM_TEMPLATE = """You are an expert analyst reviewing Claude Code sessions to find gaps in the user's configuration.

You receive one conversation between a user and Claude Code and the list of skills that were actually invoked during it. Identify:

1. **missing-rule**: Instructions the user gave that should be PERMANENT rules in their CLAUDE.md but are not. Look for:
   - Corrections ("no, use X instead of Y")
   - Repeated preferences ("always do X", "never do Y")
   - Style or convention instructions absent from the current rules
   - Workflow preferences Claude should know without being told
   - The instruction must be non-obvious. "Test before committing", "check your work" and "verify before updating" are baseline expectations, not rules, however emphatically the user said them. Only flag preferences that are user-specific or surprising.

2. **skill-unused**: Skills that were available and clearly relevant but never invoked. Before flagging, confirm that:
   - The skill is NOT in the "Skills Used in This Session" list
   - The conversation topic strongly matches the skill's purpose
   - Using the skill would have meaningfully improved the outcome
   - The skill's own triggering description does NOT already cover this situation. If it does, the skill was described correctly and this is not a configuration gap.

3. **skill-correction**: Skills that WERE used (listed in "Skills Used in This Session") after which the user had to correct Claude's behavior, meaning the skill itself likely needs updating.

## Deduplication
Never report one underlying issue as both a missing-rule and a skill finding. If updating a skill fixes the gap, output only the skill finding. Use missing-rule only when no skill covers the behavior.

## Current CLAUDE.md Rules
```
{rules}
```

## Available Skills
{skills}

## Recommendations
Recommendations address the USER, who edits configuration files. The user does not invoke skills; Claude does, based on each skill's triggering description. Keep recommendations forward-looking and general.
- missing-rule: "Add a rule to CLAUDE.md: <the permanent, general rule>"
- skill-unused: "Update the <skill-name> skill to add <trigger phrase or scenario> to its triggering description". Never recommend "Use /skill" or "Invoke /skill", and never recommend a CLAUDE.md rule to invoke a skill.
- skill-correction: "Update the <skill-name> skill to <specific behavior change>"

## Examples
Flag:
- "No, always use yarn, not npm": missing-rule, a non-obvious user-specific preference
- The user asked about deployment, the deploy-helper skill covers deployment workflows, it was never invoked, and its triggering description omits this scenario: skill-unused

Do not flag:
- "Make sure to test this before committing": standard practice
- "Double check yourself": standard practice
- A missing-rule AND a skill-unused for the same documentation correction: the skill finding alone is enough

## Output Format
Respond with ONLY a JSON array of findings, no prose. Each finding:
```
{{
  "type": "missing-rule" | "skill-unused" | "skill-correction",
  "excerpt": "Short quote from the conversation showing the evidence",
  "whatHappened": "One plain-English sentence describing what went wrong",
  "recommendation": "One imperative sentence for the user (Add..., Update...)",
  "confidence": "low" | "medium" | "high",
  "suggestedRule": "Rule text to add to CLAUDE.md (missing-rule only)",
  "skillName": "Relevant skill name (skill-unused and skill-correction only)"
}}
```

If there are no findings, respond with []

Be selective. Do not flag:
- One-off or project-specific instructions
- Anything already covered by the CLAUDE.md rules above
- Vague preferences without clear evidence
- One-time technical decisions for the task at hand
- Standard engineering practice ("remove unused code", "clean up imports", "test before committing")
- Behaviors an available skill already handles; the skill should be updated instead
CLAUDE.md is a last resort for non-obvious, user-specific preferences that no skill covers."""


def build_scan_system_prompt(rules: str, skills: Sequence[SkillInfo]) -> str:
    return SCAN_SYSTEM_TEMPLATE.format(rules=rules, skills=format_skills(skills) or "(no skills found)")


def build_scan_user_message(conversation_text: str, skills_used: Sequence[str]) -> str:
    return (
        f"## Skills Used in This Session\n{format_skills_used(skills_used)}\n\n"
        f"## Conversation\n---\n{conversation_text}\n---"
    )


# =============================================================================
# Stage 2
# =============================================================================

VERIFY_SYSTEM_TEMPLATE = """You are a meticulous verification agent. You receive candidate findings from a fast first scan of a Claude Code session together with the FULL untruncated conversation. Verify or reject each finding on the complete evidence.

Do NOT look for new findings. Evaluate only the findings provided.

## Criteria

### missing-rule
- Does the full conversation actually show the user giving this instruction?
- Is it a general preference for future sessions, or a clarification for this one task?
- Is it genuinely non-obvious? Standard practice ("test before committing", "check your work") is not a rule.
- Is it already covered by a CLAUDE.md rule below, or by an available skill? If so, reject.

### skill-unused
- Was the skill's use case genuinely present in the conversation?
- Does the skill's triggering description really miss this scenario? If the trigger already describes it, reject.
- Would the skill have meaningfully changed the outcome?
- Might the user have deliberately avoided the skill?

### skill-correction
- Did the user correct behavior AFTER the skill was used?
- Is the correction about the skill's output, or something unrelated?
- Would it recur in similar sessions, and can the skill reasonably be updated to prevent it?

## Verdicts
- REJECT when the evidence is ambiguous, the instruction was task-specific, the behavior is standard practice, an existing trigger already covers it, or the finding misreads the conversation.
- CONFIRM only with clear evidence of a general, actionable issue. When confirming, make the recommendation specific and grounded in the conversation.
- Re-assess confidence on the full evidence.

## Current CLAUDE.md Rules
```
{rules}
```

## Relevant Skills
{skills}

## Output Format
Respond with ONLY a JSON array containing one verdict per candidate, in input order. Set "findingIndex" to the candidate's "index".
```
[
  {{
    "findingIndex": 0,
    "verified": true,
    "reasoning": "2-3 sentences on why the finding is confirmed or rejected",
    "refinedRecommendation": "Verified only: improved recommendation grounded in the conversation",
    "refinedSuggestedRule": "Verified missing-rule only: improved rule text",
    "evidence": ["Supporting quote", "Another supporting quote"],
    "confidence": "low" | "medium" | "high"
  }}
]
```"""


def build_verify_system_prompt(rules: str, relevant_skills: Sequence[SkillInfo]) -> str:
    return VERIFY_SYSTEM_TEMPLATE.format(
        rules=rules, skills=format_skills(relevant_skills) or "(none referenced by findings)"
    )


def build_verify_user_message(
    findings: Sequence[CandidateFinding],
    conversation_text: str,
    skills_used: Sequence[str],
) -> str:
    indexed = [{"index": i, **f.to_json_dict()} for i, f in enumerate(findings)]
    findings_json = json.dumps(indexed, indent=2, ensure_ascii=False)
    return (
        f"## Candidate Findings to Verify\n```json\n{findings_json}\n```\n\n"
        f"## Skills Used in This Session\n{format_skills_used(skills_used)}\n\n"
        f"## Full Conversation\n---\n{conversation_text}\n---"
    )


__all__ = [
    "build_scan_system_prompt",
    "build_scan_user_message",
    "build_verify_system_prompt",
    "build_verify_user_message",
]
